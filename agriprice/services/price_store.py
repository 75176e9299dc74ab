"""
Relational price store (`market_prices` table).

Rows are keyed by (arrival_date, state, district, market, commodity, variety)
and populated by the bulk/sync jobs plus write-through from provider fetches.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models import MarketCandidate, PriceRecord
from .async_supabase import AsyncSupabase

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def contains_pattern(value: str) -> str:
    return f"%{_escape_like(value)}%"


def exact_pattern(value: str) -> str:
    """ILIKE pattern without wildcards: case-insensitive equality."""
    return _escape_like(value)


def row_to_record(row: Dict[str, Any]) -> Optional[PriceRecord]:
    try:
        return PriceRecord.model_validate(row)
    except PydanticValidationError:
        logger.debug(f"Skipping unreadable price row: {row.get('id')}")
        return None


def record_to_row(record: PriceRecord, data_source: str) -> Dict[str, Any]:
    return {
        "arrival_date": record.arrival_date.isoformat() if record.arrival_date else None,
        "state": record.state,
        "district": record.district,
        "market": record.market,
        "commodity": record.commodity,
        "variety": record.variety or "Unknown",
        "grade": record.grade,
        "min_price": record.min_price,
        "max_price": record.max_price,
        "modal_price": record.modal_price,
        "arrival_quantity": record.arrival_quantity or 0,
        "data_source": data_source,
    }


class PriceStore:
    """Date-scoped queries against the price table."""

    TABLE = "market_prices"
    CONFLICT_TARGET = "arrival_date,state,district,market,commodity,variety"
    FUZZY_RPC = "fuzzy_search_markets"

    def __init__(self, db: AsyncSupabase, table: str = TABLE):
        self.db = db
        self.table = table

    async def query_prices(
        self,
        filters: Dict[str, str],
        exact_market: Optional[str] = None,
        on_date: Optional[date] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
        limit: int = 100,
    ) -> List[PriceRecord]:
        """
        Args:
            filters: Database filters (substring, case-insensitive) by field name
            exact_market: Case-insensitive exact market name; overrides filters["market"]
            on_date: Restrict to one arrival date
            since: Earliest arrival date (inclusive)
            until: Latest arrival date (inclusive)
            limit: Maximum rows, newest first
        """
        ilike = {
            name: contains_pattern(value)
            for name, value in filters.items()
            if value and not (name == "market" and exact_market)
        }
        if exact_market:
            ilike["market"] = exact_pattern(exact_market)

        equals: Dict[str, Any] = {}
        gte: Dict[str, Any] = {}
        lte: Dict[str, Any] = {}
        if on_date:
            equals["arrival_date"] = on_date.isoformat()
        else:
            if since:
                gte["arrival_date"] = since.isoformat()
            if until:
                lte["arrival_date"] = until.isoformat()

        rows = await self.db.select(
            self.table,
            filters=equals or None,
            ilike=ilike or None,
            gte=gte or None,
            lte=lte or None,
            order_by="arrival_date",
            order_asc=False,
            limit=limit,
        )
        return [record for record in (row_to_record(row) for row in rows) if record]

    async def distinct_markets(
        self,
        state: Optional[str] = None,
        district: Optional[str] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
        limit: int = 1000,
    ) -> List[MarketCandidate]:
        """Markets seen in the scope and window, alphabetical, one per name."""
        ilike = {}
        if state:
            ilike["state"] = contains_pattern(state)
        if district:
            ilike["district"] = contains_pattern(district)
        rows = await self.db.select(
            self.table,
            columns="market,district,state",
            ilike=ilike or None,
            gte={"arrival_date": since.isoformat()} if since else None,
            lte={"arrival_date": until.isoformat()} if until else None,
            order_by="market",
            order_asc=True,
            limit=limit,
        )
        candidates: List[MarketCandidate] = []
        seen = set()
        for row in rows:
            name = (row.get("market") or "").strip()
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            candidates.append(
                MarketCandidate(name=name, district=row.get("district"), state=row.get("state"))
            )
        return candidates

    async def fuzzy_search_markets(
        self,
        term: str,
        threshold: float = 0.5,
        max_results: int = 10,
    ) -> Optional[List[MarketCandidate]]:
        """Server-side trigram search; None when the RPC is unavailable."""
        result = await self.db.rpc(
            self.FUZZY_RPC,
            {"search_term": term, "threshold": threshold, "max_results": max_results},
        )
        if not isinstance(result, list):
            return None
        return [
            MarketCandidate(name=row["market"], district=row.get("district"), state=row.get("state"))
            for row in result
            if isinstance(row, dict) and row.get("market")
        ]

    async def upsert_records(self, records: List[PriceRecord], data_source: str = "api_cache") -> bool:
        rows = [record_to_row(record, data_source) for record in records if record.arrival_date]
        if not rows:
            return False
        return await self.db.upsert(
            self.table,
            rows,
            on_conflict=self.CONFLICT_TARGET,
            ignore_duplicates=True,
        )

    async def latest_available(self, filters: Dict[str, str], limit: int = 10) -> List[PriceRecord]:
        """Most recent rows for the scope regardless of age."""
        return await self.query_prices(filters, limit=limit)
