"""
Hacker News mentions via the Algolia search API.

API: https://hn.algolia.com/api/v1/search (no authentication required)

Each artifact is searched by its full repo name. Popular artifacts
(stars > 100) with no hits get a second search by bare name, keeping only
stories whose title contains the name.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from collectors.mentions import Artifact, Mention, MentionSource, epoch_to_iso, lookback_epoch

logger = logging.getLogger(__name__)

HN_ALGOLIA_API = "https://hn.algolia.com/api/v1/search"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"
HITS_PER_PAGE = 5
NAME_SEARCH_MIN_STARS = 100


def mention_from_hit(hit: Dict[str, Any]) -> Optional[Mention]:
    object_id = hit.get("objectID")
    if not object_id:
        return None
    title = hit.get("title") or ""
    return Mention(
        source="hackernews",
        external_id=str(object_id),
        title=title,
        url=hit.get("url") or HN_ITEM_URL.format(id=object_id),
        author=hit.get("author") or "",
        score=hit.get("points") or 0,
        comment_count=hit.get("num_comments") or 0,
        snippet=title,
        mentioned_at=epoch_to_iso(hit.get("created_at_i")),
    )


class HackerNewsSource(MentionSource):
    """Stories, Show HN and Ask HN posts from the last 30 days."""

    source_name = "hackernews"
    api_name = "hacker_news"

    async def search(self, query: str) -> List[Mention]:
        data = await self._get_json(
            HN_ALGOLIA_API,
            params={
                "query": query,
                "tags": "(story,show_hn,ask_hn)",
                "numericFilters": f"created_at_i>{lookback_epoch()}",
                "hitsPerPage": HITS_PER_PAGE,
            },
        )
        hits = (data or {}).get("hits") or []
        return [m for m in (mention_from_hit(h) for h in hits) if m is not None]

    async def mentions_for(self, artifact: Artifact) -> List[Mention]:
        mentions = await self.search(artifact["github_repo_full_name"])

        if not mentions and (artifact.get("stars") or 0) > NAME_SEARCH_MIN_STARS:
            name = artifact["name"].lower()
            mentions = [m for m in await self.search(artifact["name"]) if name in m.title.lower()]

        return mentions
