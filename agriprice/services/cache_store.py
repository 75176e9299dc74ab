"""
Persistent keyed cache backed by the `market_price_cache` table.

One row per (cache_key, cache_date). Rows are written once per pair and
never overwritten; only `query_count` changes afterwards.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models import CacheEntry, PriceRecord
from ..utils.dates import parse_date
from .async_supabase import AsyncSupabase

logger = logging.getLogger(__name__)


def entry_to_row(entry: CacheEntry) -> Dict[str, Any]:
    return {
        "cache_key": entry.key,
        "cache_date": entry.cache_date.isoformat(),
        "commodity": entry.commodity,
        "state": entry.state,
        "district": entry.district,
        "market": entry.market,
        "price_data": [record.model_dump(mode="json") for record in entry.records],
        "cached_at": (entry.created_at or datetime.now(timezone.utc)).isoformat(),
        "query_count": entry.hit_count,
    }


def row_to_entry(row: Dict[str, Any]) -> Optional[CacheEntry]:
    cache_date = parse_date(row.get("cache_date"))
    if cache_date is None or not row.get("cache_key"):
        return None
    records: List[PriceRecord] = []
    for raw in row.get("price_data") or []:
        try:
            records.append(PriceRecord.model_validate(raw))
        except PydanticValidationError:
            logger.debug(f"Skipping unreadable cached record in {row.get('cache_key')}")
    try:
        return CacheEntry(
            key=row["cache_key"],
            cache_date=cache_date,
            commodity=row.get("commodity"),
            state=row.get("state"),
            district=row.get("district"),
            market=row.get("market"),
            records=records,
            created_at=row.get("cached_at"),
            hit_count=row.get("query_count") or 0,
        )
    except PydanticValidationError as e:
        logger.warning(f"Unreadable cache row {row.get('cache_key')}: {e}")
        return None


def _rows_to_entries(rows: List[Dict[str, Any]]) -> List[CacheEntry]:
    return [entry for entry in (row_to_entry(row) for row in rows) if entry is not None]


class PriceCacheStore:
    """Reads and writes cache entries in Supabase."""

    TABLE = "market_price_cache"
    CONFLICT_TARGET = "cache_key,cache_date"

    def __init__(self, db: AsyncSupabase, table: str = TABLE):
        self.db = db
        self.table = table

    async def get_entry(self, key: str, cache_date: date) -> Optional[CacheEntry]:
        rows = await self.db.select(
            self.table,
            filters={"cache_key": key, "cache_date": cache_date.isoformat()},
            limit=1,
        )
        return row_to_entry(rows[0]) if rows else None

    async def find_same_day(
        self,
        cache_date: date,
        state: Optional[str] = None,
        district: Optional[str] = None,
    ) -> List[CacheEntry]:
        """Entries for the day whose scope covers the given district (or state).

        Entries cached without a district (state-wide or nationwide) are
        included, since their records may still cover the district.
        """
        or_filter = None
        if district:
            or_filter = f"district.ilike.{district},district.is.null"
        elif state:
            or_filter = f"state.ilike.{state},state.is.null"
        rows = await self.db.select(
            self.table,
            filters={"cache_date": cache_date.isoformat()},
            or_filter=or_filter,
            limit=200,
        )
        return _rows_to_entries(rows)

    async def upsert_entries(self, entries: List[CacheEntry]) -> bool:
        return await self.db.upsert(
            self.table,
            [entry_to_row(entry) for entry in entries],
            on_conflict=self.CONFLICT_TARGET,
            ignore_duplicates=True,
        )

    async def increment_hit_count(self, entry: CacheEntry) -> bool:
        return await self.db.update(
            self.table,
            {"query_count": entry.hit_count + 1},
            filters={"cache_key": entry.key, "cache_date": entry.cache_date.isoformat()},
        )

    async def get_history(
        self,
        key: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[CacheEntry]:
        """All entries for a key in [start, end], newest first."""
        gte = {"cache_date": start.isoformat()} if start else None
        lte = {"cache_date": end.isoformat()} if end else None
        rows = await self.db.select(
            self.table,
            filters={"cache_key": key},
            gte=gte,
            lte=lte,
            order_by="cache_date",
            order_asc=False,
        )
        return _rows_to_entries(rows)

    async def get_available_dates(self, key: str) -> List[date]:
        rows = await self.db.select(
            self.table,
            columns="cache_date",
            filters={"cache_key": key},
            order_by="cache_date",
            order_asc=False,
        )
        dates = (parse_date(row.get("cache_date")) for row in rows)
        return [d for d in dates if d is not None]

    async def get_stats(self, today: date) -> Dict[str, Any]:
        rows = await self.db.select(
            self.table,
            columns="cache_key,cache_date,query_count",
            limit=10000,
        )
        return summarize_cache_rows(rows, today)


def summarize_cache_rows(rows: List[Dict[str, Any]], today: date) -> Dict[str, Any]:
    dates = [d for d in (parse_date(row.get("cache_date")) for row in rows) if d]
    total_hits = sum(row.get("query_count") or 0 for row in rows)
    return {
        "total_entries": len(rows),
        "unique_dates": len(set(dates)),
        "today_entries": sum(1 for d in dates if d == today),
        "total_hits": total_hits,
        "avg_hits_per_entry": round(total_hits / len(rows), 2) if rows else 0,
        "oldest_date": min(dates) if dates else None,
        "newest_date": max(dates) if dates else None,
    }
