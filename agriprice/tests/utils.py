from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from agriprice.exceptions import DataProviderError
from agriprice.models import CacheEntry, MarketCandidate, PriceRecord
from agriprice.providers.base import BaseProvider
from agriprice.services.cache_store import entry_to_row, summarize_cache_rows


# ============================================================================
# httpx stand-ins
# ============================================================================

INVALID_JSON = object()


class MockAsyncResponse:
    def __init__(
        self,
        json_data: Any,
        *,
        headers: Optional[Dict[str, str]] = None,
        request_url: Optional[str] = None,
        status_code: int = 200,
    ) -> None:
        self._json = json_data
        self.headers = headers or {}
        self.request_url = request_url or "https://example.com/mock"
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("GET", self.request_url)
            raise httpx.HTTPStatusError(
                f"HTTP {self.status_code}",
                request=request,
                response=httpx.Response(self.status_code, request=request),
            )

    def json(self) -> Any:
        if self._json is INVALID_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._json


class MockAsyncClient:
    """Replays queued responses (or raises queued exceptions) and records each call."""

    def __init__(self, responses: Iterable[Union[MockAsyncResponse, Exception]]) -> None:
        self._responses: List[Union[MockAsyncResponse, Exception]] = list(responses)
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def get(self, url: str, *, params: Optional[Dict[str, Any]] = None, **_kwargs) -> MockAsyncResponse:
        self.calls.append((url, dict(params or {})))
        if not self._responses:
            raise AssertionError("No more mock responses available")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        response.request_url = url
        return response


def run(coro):
    """Helper to run async functions in synchronous tests."""
    return asyncio.run(coro)


# ============================================================================
# Records
# ============================================================================

def make_record(**overrides: Any) -> PriceRecord:
    data = {
        "commodity": "Onion",
        "variety": "Local",
        "state": "Andhra Pradesh",
        "district": "Kurnool",
        "market": "Adoni",
        "arrival_date": date(2024, 6, 20),
        "min_price": 1800,
        "max_price": 2400,
        "modal_price": 2100,
    }
    data.update(overrides)
    return PriceRecord(**data)


# ============================================================================
# In-memory collaborators
# ============================================================================

ProviderHandler = Callable[[Dict[str, str], Optional[date]], List[PriceRecord]]


class FakeProvider(BaseProvider):
    """Provider whose answers come from a handler; every call is recorded."""

    def __init__(self, handler: Optional[ProviderHandler] = None, error: Optional[DataProviderError] = None):
        super().__init__(timeout=1.0)
        self.handler = handler or (lambda filters, arrival_date: [])
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def fetch_records(
        self,
        filters: Dict[str, str],
        arrival_date: Optional[date] = None,
        skip_date_filter: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PriceRecord]:
        self.calls.append(
            {"filters": dict(filters), "arrival_date": arrival_date, "skip_date_filter": skip_date_filter}
        )
        if self.error is not None:
            raise self.error
        return list(self.handler(filters, arrival_date))


def records_by_date(*records: PriceRecord) -> ProviderHandler:
    """Handler answering an arrival-date request with the records of that date
    whose fields equal every filter value (case-insensitive)."""

    def handler(filters: Dict[str, str], arrival_date: Optional[date]) -> List[PriceRecord]:
        matched = []
        for record in records:
            if arrival_date is not None and record.arrival_date != arrival_date:
                continue
            if all(getattr(record, name).lower() == value.lower() for name, value in filters.items()):
                matched.append(record)
        return matched

    return handler


class FakeCacheStore:
    """Dict-backed stand-in for PriceCacheStore."""

    def __init__(self, entries: Iterable[CacheEntry] = ()):
        self.entries: Dict[Tuple[str, date], CacheEntry] = {}
        self.upserts: List[List[CacheEntry]] = []
        self.hit_updates: List[str] = []
        for entry in entries:
            self.entries[(entry.key, entry.cache_date)] = entry

    async def get_entry(self, key: str, cache_date: date) -> Optional[CacheEntry]:
        return self.entries.get((key, cache_date))

    async def find_same_day(
        self,
        cache_date: date,
        state: Optional[str] = None,
        district: Optional[str] = None,
    ) -> List[CacheEntry]:
        found = []
        for (_, day), entry in self.entries.items():
            if day != cache_date:
                continue
            if district and entry.district and entry.district.lower() != district.lower():
                continue
            if not district and state and entry.state and entry.state.lower() != state.lower():
                continue
            found.append(entry)
        return found

    async def upsert_entries(self, entries: List[CacheEntry]) -> bool:
        self.upserts.append(list(entries))
        for entry in entries:
            self.entries.setdefault((entry.key, entry.cache_date), entry)
        return True

    async def increment_hit_count(self, entry: CacheEntry) -> bool:
        self.hit_updates.append(entry.key)
        stored = self.entries[(entry.key, entry.cache_date)]
        self.entries[(entry.key, entry.cache_date)] = stored.model_copy(update={"hit_count": stored.hit_count + 1})
        return True

    async def get_history(self, key: str, start: Optional[date] = None, end: Optional[date] = None) -> List[CacheEntry]:
        matched = [
            entry
            for (entry_key, day), entry in self.entries.items()
            if entry_key == key and (start is None or day >= start) and (end is None or day <= end)
        ]
        return sorted(matched, key=lambda entry: entry.cache_date, reverse=True)

    async def get_available_dates(self, key: str) -> List[date]:
        return sorted((day for entry_key, day in self.entries if entry_key == key), reverse=True)

    async def get_stats(self, today: date) -> Dict[str, Any]:
        return summarize_cache_rows([entry_to_row(entry) for entry in self.entries.values()], today)


class FakePriceStore:
    """List-backed stand-in for PriceStore with the same filter semantics."""

    def __init__(self, records: Iterable[PriceRecord] = (), rpc_candidates: Optional[List[MarketCandidate]] = None):
        self.records: List[PriceRecord] = list(records)
        self.rpc_candidates = rpc_candidates
        self.queries: List[Dict[str, Any]] = []
        self.upserted: List[PriceRecord] = []

    async def query_prices(
        self,
        filters: Dict[str, str],
        exact_market: Optional[str] = None,
        on_date: Optional[date] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
        limit: int = 100,
    ) -> List[PriceRecord]:
        self.queries.append(
            {"filters": dict(filters), "exact_market": exact_market, "on_date": on_date, "since": since, "until": until}
        )
        matched = []
        for record in self.records:
            if exact_market and record.market.lower() != exact_market.lower():
                continue
            if any(
                value.lower() not in getattr(record, name).lower()
                for name, value in filters.items()
                if not (name == "market" and exact_market)
            ):
                continue
            day = record.arrival_date
            if on_date and day != on_date:
                continue
            if since and (day is None or day < since):
                continue
            if until and (day is None or day > until):
                continue
            matched.append(record)
        matched.sort(key=lambda record: record.arrival_date or date.min, reverse=True)
        return matched[:limit]

    async def distinct_markets(
        self,
        state: Optional[str] = None,
        district: Optional[str] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
        limit: int = 1000,
    ) -> List[MarketCandidate]:
        seen: Dict[str, MarketCandidate] = {}
        for record in self.records:
            if state and state.lower() not in record.state.lower():
                continue
            if district and district.lower() not in record.district.lower():
                continue
            seen.setdefault(
                record.market.lower(),
                MarketCandidate(name=record.market, district=record.district, state=record.state),
            )
        return [seen[name] for name in sorted(seen)][:limit]

    async def fuzzy_search_markets(self, term: str, threshold: float = 0.5, max_results: int = 10):
        return self.rpc_candidates

    async def upsert_records(self, records: List[PriceRecord], data_source: str = "api_cache") -> bool:
        self.upserted.extend(records)
        return True

    async def latest_available(self, filters: Dict[str, str], limit: int = 10) -> List[PriceRecord]:
        return await self.query_prices(filters, limit=limit)
