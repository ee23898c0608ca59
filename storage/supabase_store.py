"""
Supabase (PostgREST) implementation of the keyed store.

All three operations are idempotent, so transient failures (5xx, 429,
transport errors) are retried with tenacity. Any other non-2xx response
raises StoreError immediately.

PostgREST mapping:
    upsert -> POST   /rest/v1/<table>?on_conflict=<cols>
              Prefer: resolution=merge-duplicates,return=representation
    select -> GET    /rest/v1/<table>?select=...&<col>=<op>.<value>
    update -> PATCH  /rest/v1/<table>?<filters>
              Prefer: return=representation
"""

from __future__ import annotations

import logging
from itertools import groupby
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from storage.keyed_store import Filter, KeyedStore, Order, Row
from utils.errors import StoreError

logger = logging.getLogger(__name__)

STORE_MAX_RETRIES = 4


class TransientStoreError(StoreError):
    """Retryable store failure (5xx, 429 or transport)."""


def _quote(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def filter_params(filters: Sequence[Filter]) -> List[Tuple[str, str]]:
    """Translate filters to PostgREST query parameters."""
    params: List[Tuple[str, str]] = []
    for f in filters:
        if f.op == "is_null":
            params.append((f.column, "is.null"))
        elif f.op == "in":
            params.append((f.column, f"in.({','.join(_quote(v) for v in f.value)})"))
        else:
            params.append((f.column, f"{f.op}.{_scalar(f.value)}"))
    return params


class SupabaseStore(KeyedStore):
    """Keyed store over Supabase's REST interface."""

    def __init__(
        self,
        url: str,
        service_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.service_key = service_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        logger.info(f"SupabaseStore initialized: {self.base_url}")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    @retry(
        stop=stop_after_attempt(STORE_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TransientStoreError),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[List[Tuple[str, str]]] = None,
        body: Any = None,
        prefer: Optional[str] = None,
    ) -> List[Row]:
        headers = self.headers
        if prefer:
            headers["Prefer"] = prefer

        try:
            response = await self.client.request(
                method, f"{self.base_url}/{table}", params=params, json=body, headers=headers
            )
        except httpx.TransportError as e:
            logger.warning(f"Store {method} {table}: transport error {e.__class__.__name__}")
            raise TransientStoreError(f"{method} {table}: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            logger.warning(f"Store {method} {table}: HTTP {status}, retrying")
            raise TransientStoreError(f"{method} {table}: HTTP {status}", status_code=status)
        if status >= 400:
            raise StoreError(
                f"{method} {table}: HTTP {status} {response.text[:300]}", status_code=status
            )

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def upsert(self, table: str, rows: List[Row], on_conflict: str) -> List[Row]:
        if not rows:
            return []

        # PostgREST bulk inserts need a uniform key set per request
        def key_set(row: Row) -> Tuple[str, ...]:
            return tuple(sorted(row.keys()))

        results: List[Row] = []
        for _, group in groupby(sorted(rows, key=key_set), key=key_set):
            results.extend(await self._request(
                "POST",
                table,
                params=[("on_conflict", on_conflict)],
                body=list(group),
                prefer="resolution=merge-duplicates,return=representation",
            ))
        return results

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: Optional[Sequence[str]] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Row]:
        params = [("select", ",".join(columns) if columns else "*")]
        params.extend(filter_params(filters))
        if order:
            params.append(("order", f"{order.column}.{'desc' if order.descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        return await self._request("GET", table, params=params)

    async def update(self, table: str, filters: Sequence[Filter], values: Row) -> List[Row]:
        if not values:
            return []
        return await self._request(
            "PATCH",
            table,
            params=filter_params(filters),
            body=values,
            prefer="return=representation",
        )
