"""
Thread-pooled access to the Supabase tables behind the cache and database tiers.

supabase-py is synchronous, so every call runs in a small executor and is
bounded by asyncio.wait_for. A store fault must never break a resolution:
errors and timeouts come back as the operation's empty value ([], False or
None) and are logged here.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, TypeVar

from supabase import create_client, Client

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SELECT_TIMEOUT = 5.0
WRITE_TIMEOUT = 10.0


def sanitize_for_json(obj: Any) -> Any:
    """Make a payload safe for PostgREST.

    NaN and infinities become None; values json cannot encode (dates,
    decimals) become strings.
    """
    if obj is None or isinstance(obj, (str, int, bool)):
        return obj
    if isinstance(obj, float):
        return None if math.isnan(obj) or math.isinf(obj) else obj
    if isinstance(obj, dict):
        return {key: sanitize_for_json(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(item) for item in obj]
    try:
        json.dumps(obj)
    except (TypeError, ValueError):
        return str(obj)
    return obj


def apply_filters(
    query: Any,
    eq: Optional[Dict[str, Any]] = None,
    ilike: Optional[Dict[str, str]] = None,
    gte: Optional[Dict[str, Any]] = None,
    lte: Optional[Dict[str, Any]] = None,
    or_filter: Optional[str] = None,
) -> Any:
    """Chain PostgREST filters onto a query builder."""
    for column, value in (eq or {}).items():
        query = query.eq(column, value)
    for column, pattern in (ilike or {}).items():
        query = query.ilike(column, pattern)
    for column, value in (gte or {}).items():
        query = query.gte(column, value)
    for column, value in (lte or {}).items():
        query = query.lte(column, value)
    if or_filter:
        query = query.or_(or_filter)
    return query


class AsyncSupabase:
    """
    Async facade over a supabase-py Client.

    Example:
        >>> db = AsyncSupabase("https://project.supabase.co", "service-key")
        >>> rows = await db.select("market_prices", ilike={"market": "%Adoni%"}, limit=10)
    """

    def __init__(self, url: str, key: str, max_workers: int = 4):
        try:
            self.client: Client = create_client(url, key)
        except Exception as e:
            # supabase-py rejects malformed URLs and keys at construction
            raise ConfigurationError(f"Supabase client could not be created: {e}", details={"url": url}) from e
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="supabase")
        self.url = url
        logger.debug(f"Supabase client for {url} ready ({max_workers} workers)")

    async def _guarded(self, label: str, call: Callable[[], T], timeout: float, fallback: T) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(self.executor, call), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{label} timed out after {timeout}s")
        except Exception as e:
            logger.error(f"{label} failed: {e}", exc_info=True)
        return fallback

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        ilike: Optional[Dict[str, str]] = None,
        gte: Optional[Dict[str, Any]] = None,
        lte: Optional[Dict[str, Any]] = None,
        or_filter: Optional[str] = None,
        order_by: Optional[str] = None,
        order_asc: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
        timeout: float = SELECT_TIMEOUT,
    ) -> List[Dict[str, Any]]:
        """
        Rows matching every filter, newest first unless order_asc is set.

        Args:
            filters: Equality filters
            ilike: Case-insensitive patterns, passed verbatim (callers add the %)
            gte / lte: Inclusive bounds
            or_filter: Raw PostgREST or-expression, e.g. "district.ilike.x,district.is.null"
        """
        def run() -> List[Dict[str, Any]]:
            query = apply_filters(
                self.client.table(table).select(columns),
                eq=filters,
                ilike=ilike,
                gte=gte,
                lte=lte,
                or_filter=or_filter,
            )
            if order_by:
                query = query.order(order_by, desc=not order_asc)
            if limit:
                query = query.limit(limit)
            if offset:
                query = query.offset(offset)
            return query.execute().data or []

        rows = await self._guarded(f"select {table}", run, timeout, [])
        logger.debug(f"{table}: {len(rows)} rows selected")
        return rows

    async def upsert(
        self,
        table: str,
        rows: List[Dict[str, Any]],
        on_conflict: str,
        ignore_duplicates: bool = False,
        timeout: float = WRITE_TIMEOUT,
    ) -> bool:
        """Write a batch keyed by on_conflict; with ignore_duplicates the existing row wins."""
        if not rows:
            return True
        payload = sanitize_for_json(rows)

        def run() -> bool:
            self.client.table(table).upsert(
                payload,
                on_conflict=on_conflict,
                ignore_duplicates=ignore_duplicates,
            ).execute()
            return True

        ok = await self._guarded(f"upsert {table}", run, timeout, False)
        if ok:
            logger.debug(f"{table}: {len(rows)} rows upserted")
        return ok

    async def update(
        self,
        table: str,
        data: Dict[str, Any],
        filters: Dict[str, Any],
        timeout: float = SELECT_TIMEOUT,
    ) -> bool:
        """True when at least one row changed."""
        def run() -> bool:
            query = apply_filters(self.client.table(table).update(sanitize_for_json(data)), eq=filters)
            return bool(query.execute().data)

        return await self._guarded(f"update {table}", run, timeout, False)

    async def rpc(
        self,
        function: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: float = WRITE_TIMEOUT,
    ) -> Any:
        """Call a Postgres function; None when it fails or does not exist."""
        def run() -> Any:
            return self.client.rpc(function, params or {}).execute().data

        return await self._guarded(f"rpc {function}", run, timeout, None)

    def shutdown(self):
        self.executor.shutdown(wait=True)
        logger.debug("Supabase executor stopped")
