"""Tests for canonical repository identifiers."""

from utils.canonical_keys import (
    github_full_name_from_url,
    is_github_identifier,
    normalize_repo_identifier,
    registry_identifier,
    slugify_identifier,
)


class TestNormalizeRepoIdentifier:

    def test_lowercases(self):
        assert normalize_repo_identifier("Anthropic/Claude-Skills") == "anthropic/claude-skills"

    def test_strips_git_suffix(self):
        assert normalize_repo_identifier("acme/tool.git") == "acme/tool"

    def test_accepts_urls(self):
        assert normalize_repo_identifier("https://github.com/PatrickJS/awesome-cursorrules.git") == "patrickjs/awesome-cursorrules"

    def test_rejects_non_repos(self):
        assert normalize_repo_identifier("") == ""
        assert normalize_repo_identifier("just-a-name") == ""
        assert normalize_repo_identifier("a/b/c") == ""
        assert normalize_repo_identifier("bad owner/x") == ""


class TestGithubFullNameFromUrl:

    def test_git_plus_url(self):
        assert github_full_name_from_url("git+https://github.com/org/pkg.git#main") == "org/pkg"

    def test_ssh_url(self):
        assert github_full_name_from_url("git@github.com:Org/Pkg.git") == "org/pkg"

    def test_deep_link(self):
        assert github_full_name_from_url("https://github.com/org/pkg/tree/main/packages/x") == "org/pkg"

    def test_reserved_owner(self):
        assert github_full_name_from_url("https://github.com/topics/mcp") is None
        assert github_full_name_from_url("https://github.com/orgs/acme") is None

    def test_not_github(self):
        assert github_full_name_from_url("https://gitlab.com/org/pkg") is None
        assert github_full_name_from_url("") is None


class TestHelpers:

    def test_registry_identifier(self):
        assert registry_identifier("npm", " @Scope/Pkg ") == "npm:@scope/pkg"

    def test_is_github_identifier(self):
        assert is_github_identifier("acme/tool")
        assert not is_github_identifier("npm:@scope/pkg")
        assert not is_github_identifier("pypi:tool")
        assert not is_github_identifier("")

    def test_slugify(self):
        assert slugify_identifier("Owner/Repo.js") == "owner-repojs"
        assert slugify_identifier("npm:@scope/pkg") == "npm-scope-pkg"
