"""
Canonical identifiers for discovered repositories.

Every candidate, artifact and dedup set keys on one identifier:
- GitHub repos: "owner/name", lowercased, ".git" stripped
- registry packages with no GitHub repo: "npm:<pkg>" / "pypi:<pkg>"

Examples:
  - "Anthropic/Claude-Skills" -> "anthropic/claude-skills"
  - "https://github.com/PatrickJS/awesome-cursorrules.git" -> "patrickjs/awesome-cursorrules"
  - "git+https://github.com/org/pkg.git#main" -> "org/pkg"
"""

from __future__ import annotations

import re
from typing import Optional

_GITHUB_URL_RE = re.compile(r"github\.com[/:]([^/\s#?]+)/([^/\s#?]+)", re.IGNORECASE)
_SEGMENT_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_slug_re = re.compile(r"[^a-z0-9-]+")

# First path segments on github.com that are not repository owners
_RESERVED_OWNERS = {
    "orgs", "topics", "features", "marketplace", "sponsors", "settings",
    "collections", "explore", "about", "login", "apps", "search",
}


def _clean_segment(segment: str) -> str:
    segment = (segment or "").strip()
    if segment.lower().endswith(".git"):
        segment = segment[:-4]
    return segment


def normalize_repo_identifier(value: str) -> str:
    """
    Normalize an "owner/name" string or GitHub URL to the canonical form.

    Returns "" when the value does not name a repository.
    """
    v = (value or "").strip()
    if not v:
        return ""

    if "github.com" in v.lower():
        return github_full_name_from_url(v) or ""

    parts = [p for p in v.split("/") if p]
    if len(parts) != 2:
        return ""

    owner, name = _clean_segment(parts[0]), _clean_segment(parts[1])
    if not owner or not name:
        return ""
    if not _SEGMENT_RE.match(owner) or not _SEGMENT_RE.match(name):
        return ""
    return f"{owner}/{name}".lower()


def github_full_name_from_url(url: str) -> Optional[str]:
    """Extract the canonical "owner/name" from any GitHub URL, or None."""
    if not url:
        return None

    m = _GITHUB_URL_RE.search(url)
    if not m:
        return None

    owner, name = _clean_segment(m.group(1)), _clean_segment(m.group(2))
    if not owner or not name or owner.lower() in _RESERVED_OWNERS:
        return None
    if not _SEGMENT_RE.match(owner) or not _SEGMENT_RE.match(name):
        return None
    return f"{owner}/{name}".lower()


def github_url_for(full_name: str) -> str:
    return f"https://github.com/{full_name}"


def registry_identifier(registry: str, package_name: str) -> str:
    """Identifier for a registry package that has no GitHub repository."""
    return f"{registry}:{package_name.strip().lower()}"


def is_github_identifier(identifier: str) -> bool:
    return bool(identifier) and ":" not in identifier and identifier.count("/") == 1


def slugify_identifier(identifier: str) -> str:
    """URL slug for an artifact: "Owner/Repo.js" -> "owner-repojs"."""
    s = (identifier or "").replace("/", "-").replace(":", "-").lower()
    return _slug_re.sub("", s)

