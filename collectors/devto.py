"""
Dev.to mentions via the public articles API.

Dev.to coverage is sparse for small projects, so only artifacts with more
than 50 stars are searched. Articles must mention the artifact name in the
title or description.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from collectors.mentions import Artifact, Mention, MentionSource

logger = logging.getLogger(__name__)

DEVTO_ARTICLES_URL = "https://dev.to/api/articles"
MIN_STARS = 50


def mention_from_article(article: Dict[str, Any]) -> Optional[Mention]:
    article_id = article.get("id")
    if article_id is None:
        return None
    user = article.get("user") or {}
    return Mention(
        source="devto",
        external_id=str(article_id),
        title=article.get("title") or "",
        url=article.get("url") or "",
        author=user.get("username") or "",
        score=article.get("positive_reactions_count") or 0,
        comment_count=article.get("comments_count") or 0,
        snippet=article.get("description") or "",
        mentioned_at=article.get("published_at"),
    )


class DevToSource(MentionSource):
    source_name = "devto"
    api_name = "devto"

    def applies_to(self, artifact: Artifact) -> bool:
        return super().applies_to(artifact) and (artifact.get("stars") or 0) > MIN_STARS

    async def search(self, query: str) -> List[Mention]:
        data = await self._get_json(
            DEVTO_ARTICLES_URL, params={"per_page": 5, "top": 30, "search": query}
        )
        if not isinstance(data, list):
            return []
        return [m for m in (mention_from_article(a) for a in data if isinstance(a, dict)) if m is not None]

    async def mentions_for(self, artifact: Artifact) -> List[Mention]:
        return [m for m in await self.search(artifact["name"]) if m.mentions_name(artifact["name"])]
