"""
Closed vocabularies for enrichment output.

The model is told to pick from these lists; validate_enrichment() enforces
them on whatever comes back.
"""

from typing import Any, Dict, List, Optional

ARTIFACT_TYPES = (
    "skill",
    "mcp-server",
    "cursor-rules",
    "n8n-node",
    "workflow",
    "langchain-tool",
    "crewai-tool",
)

# Model-facing label -> stored slug
CATEGORY_LABEL_TO_SLUG: Dict[str, str] = {
    "Frontend": "frontend",
    "Backend": "backend",
    "DevOps": "devops",
    "AI / ML": "ai-ml",
    "Database": "database",
    "Security": "security",
    "Automation": "automation",
    "Web Scraping": "web-scraping",
    "Research": "research",
    "Design": "design",
    "Mobile": "mobile",
    "Testing": "testing",
    "Data Engineering": "data-engineering",
    "Documentation": "documentation",
    "Productivity": "productivity",
}

CATEGORY_LABELS = tuple(CATEGORY_LABEL_TO_SLUG)
DEFAULT_CATEGORY = "AI / ML"

PLATFORMS = (
    "Claude Code", "Cursor", "Cline", "Windsurf", "Roo Code", "OpenCode",
    "Kiro CLI", "Continue", "GitHub Copilot", "Aider", "Codex CLI", "Amp",
    "Devin", "Replit Agent", "Bolt", "Lovable", "v0", "Manus", "OpenClaw",
    "Antigravity", "n8n", "LangChain", "CrewAI", "AutoGen", "Semantic Kernel",
    "Zapier", "Make", "Activepieces", "SuperAgent", "E2B", "Composio",
    "Toolhouse", "Browserbase", "Steel", "Firecrawl", "Apify", "Julep", "Letta",
)

# Used when the model returns no compatible platforms
PLATFORM_DEFAULTS: Dict[str, List[str]] = {
    "skill": ["Claude Code", "Cursor", "Windsurf", "Cline", "Roo Code", "OpenCode", "Kiro CLI", "GitHub Copilot"],
    "mcp-server": ["Claude Code", "Cursor", "Cline", "Windsurf", "Roo Code", "OpenCode", "Kiro CLI", "Continue"],
    "cursor-rules": ["Cursor"],
    "n8n-node": ["n8n"],
    "workflow": ["n8n", "LangChain", "CrewAI"],
    "langchain-tool": ["LangChain"],
    "crewai-tool": ["CrewAI"],
}

MAX_TAGS = 7


def category_slug(label: Optional[str]) -> str:
    return CATEGORY_LABEL_TO_SLUG.get(label or "", CATEGORY_LABEL_TO_SLUG[DEFAULT_CATEGORY])


def validate_enrichment(parsed: Any, type_hint: str) -> Optional[Dict[str, Any]]:
    """
    Coerce one model object onto the taxonomy.

    - unknown artifact_type -> the discovery hint
    - unknown category -> "AI / ML"
    - platforms filtered to PLATFORMS
    - tags truncated to MAX_TAGS

    Returns None for anything that is not an object.
    """
    if not isinstance(parsed, dict):
        return None

    fields = dict(parsed)
    if fields.get("artifact_type") not in ARTIFACT_TYPES:
        fields["artifact_type"] = type_hint
    if fields.get("category") not in CATEGORY_LABEL_TO_SLUG:
        fields["category"] = DEFAULT_CATEGORY

    platforms = fields.get("compatible_platforms")
    if isinstance(platforms, list):
        fields["compatible_platforms"] = [p for p in platforms if p in PLATFORMS]
    else:
        fields["compatible_platforms"] = []

    tags = fields.get("tags")
    if isinstance(tags, list):
        fields["tags"] = [str(t) for t in tags if t][:MAX_TAGS]
    else:
        fields["tags"] = []

    return fields
