"""
Reddit mentions via the OAuth search API.

Optional: only runs when REDDIT_CLIENT_ID and REDDIT_CLIENT_SECRET are set.
Uses an application-only token (client_credentials grant), fetched once
per run. Searches a fixed set of developer subreddits for the artifact
name and keeps posts whose title or body mentions it.
"""

from __future__ import annotations

import base64
import logging
import os
from typing import Any, Dict, List, Optional

from collectors.mentions import Artifact, Mention, MentionSource, epoch_to_iso

logger = logging.getLogger(__name__)

REDDIT_TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
REDDIT_SEARCH_URL = "https://oauth.reddit.com/r/{subreddits}/search"

SUBREDDITS = (
    "cursor", "ClaudeAI", "ChatGPT", "LocalLLM", "n8n", "langchain",
    "MachineLearning", "artificial", "coding", "webdev", "node",
)


def mention_from_post(post: Dict[str, Any]) -> Optional[Mention]:
    post_id = post.get("id")
    if not post_id:
        return None
    title = post.get("title") or ""
    return Mention(
        source="reddit",
        external_id=str(post_id),
        title=title,
        url=f"https://reddit.com{post.get('permalink') or ''}",
        author=post.get("author") or "",
        score=post.get("score") or 0,
        comment_count=post.get("num_comments") or 0,
        snippet=post.get("selftext") or title,
        mentioned_at=epoch_to_iso(post.get("created_utc")),
    )


class RedditSource(MentionSource):
    source_name = "reddit"
    api_name = "reddit"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        **kwargs,
    ):
        self.client_id = client_id if client_id is not None else os.environ.get("REDDIT_CLIENT_ID", "")
        self.client_secret = client_secret if client_secret is not None else os.environ.get("REDDIT_CLIENT_SECRET", "")
        super().__init__(**kwargs)
        self._token: Optional[str] = None
        self._token_failed = False

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def token(self) -> Optional[str]:
        if self._token or self._token_failed:
            return self._token

        result = await self.fetcher.fetch(
            "POST",
            REDDIT_TOKEN_URL,
            headers={"Authorization": self._basic_auth()},
            data={"grant_type": "client_credentials"},
        )
        data = result.json() if result.ok else None
        self._token = (data or {}).get("access_token")
        if not self._token:
            self._token_failed = True
            logger.warning(f"[reddit] could not obtain OAuth token: {result.error}")
        return self._token

    def _basic_auth(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode()

    async def search(self, query: str) -> List[Mention]:
        token = await self.token()
        if not token:
            return []

        data = await self._get_json(
            REDDIT_SEARCH_URL.format(subreddits="+".join(SUBREDDITS)),
            headers={"Authorization": f"Bearer {token}"},
            params={"q": query, "sort": "new", "limit": 5, "t": "month", "restrict_sr": "on"},
        )
        children = ((data or {}).get("data") or {}).get("children") or []
        posts = [mention_from_post(c.get("data") or {}) for c in children]
        return [m for m in posts if m is not None]

    async def mentions_for(self, artifact: Artifact) -> List[Mention]:
        return [m for m in await self.search(artifact["name"]) if m.mentions_name(artifact["name"])]
