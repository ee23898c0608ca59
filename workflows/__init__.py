"""
Workflows for the Artifact Radar pipeline

- discover.py: Drive discoverers into the staging store
- enrich.py: Classify pending candidates and publish artifacts
- vibe.py: Recompute downloads, mentions, sentiment and vibe scores
- config.py: PipelineConfig, RunStats and store selection

Usage:
    from workflows.config import PipelineConfig, PipelineMode
    from workflows.discover import build_discoverers, run_discover

    config = PipelineConfig.from_env()
    config.validate(PipelineMode.DISCOVER)
    stats = await run_discover(staging, build_discoverers(config, staging))
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "PipelineConfig",
    "PipelineMode",
    "RunStats",
    "run_discover",
    "run_enrich",
    "run_vibe",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name in ("PipelineConfig", "PipelineMode", "RunStats"):
        from workflows import config
        return getattr(config, name)
    elif name == "run_discover":
        from workflows.discover import run_discover
        return run_discover
    elif name == "run_enrich":
        from workflows.enrich import run_enrich
        return run_enrich
    elif name == "run_vibe":
        from workflows.vibe import run_vibe
        return run_vibe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
