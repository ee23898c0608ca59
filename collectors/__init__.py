"""
Discovery and signal sources for Artifact Radar.

Discoverers (stage candidates):
- github: Search API over query x star-bucket partitions
- bigquery: GH Archive event queries, hydrated through the GitHub API
- npm / pypi: Registry search, mapped to GitHub identifiers where linked
- awesome_lists: GitHub links scraped from curated markdown lists

Mention sources (vibe score):
- hacker_news, reddit, devto
- downloads: weekly npm and PyPI download counts
"""

__version__ = "0.1.0"
