"""
Historical date search.

The provider only serves recent days reliably, so a date-anchored query is
answered by probing a short, ordered list of candidate dates:

- year   "2023"        2023-06-15, then 2023-07-01 (data is densest mid-year)
- month  "2023-06"     the first five days of the month
- day    "2023-06-15"  the day itself, then +1, -1, +2, -2, +3, -3

Candidates are probed concurrently in batches; within a batch the earliest
candidate in probe order that has data wins, and the next batch only starts
once the current one has fully returned.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING, List, Optional, Tuple

from ..exceptions import is_transient_error
from ..models import AnchorKind, DateAnchor, PriceQuery, ResolutionResult
from ..utils.dates import chunked
from .normalizer import normalize

if TYPE_CHECKING:
    from .resolver import TieredResolver, TierResult

logger = logging.getLogger(__name__)

YEAR_PROBES = ((6, 15), (7, 1))
MONTH_PROBE_DAYS = 5
DAY_OFFSETS = (0, 1, -1, 2, -2, 3, -3)


def candidate_dates(anchor: DateAnchor) -> List[date]:
    """Dates to probe for an anchor, in probe order."""
    if anchor.kind is AnchorKind.YEAR:
        return [date(anchor.year, month, day) for month, day in YEAR_PROBES]
    if anchor.kind is AnchorKind.MONTH:
        return [date(anchor.year, anchor.month, day) for day in range(1, MONTH_PROBE_DAYS + 1)]
    exact = anchor.as_date
    return [exact + timedelta(days=offset) for offset in DAY_OFFSETS]


def describe_hit(anchor: DateAnchor, hit: date) -> str:
    if anchor.kind is AnchorKind.YEAR:
        month = "June" if hit.month == 6 else "July"
        return f"{anchor.year} mid-year prices ({month})"
    if anchor.kind is AnchorKind.MONTH:
        return f"{anchor.label} prices"
    if hit == anchor.as_date:
        return f"Prices for {anchor.value}"
    return f"{anchor.value} not available. Showing {hit.isoformat()}"


def describe_miss(anchor: DateAnchor) -> str:
    if anchor.kind is AnchorKind.DAY:
        return f"No data available around {anchor.value}"
    return f"No data available for {anchor.label}"


class HistoricalDateSearch:
    """Probes candidate dates through the resolver and persists the first hit."""

    def __init__(self, resolver: "TieredResolver", batch_size: int = 7):
        self.resolver = resolver
        self.batch_size = batch_size

    async def search(self, query: PriceQuery) -> ResolutionResult:
        anchor = query.anchor
        key, _ = normalize(query)

        latest = self.resolver.today_fn()
        candidates = [d for d in candidate_dates(anchor) if d <= latest]
        logger.info(f"Historical search for {key} at {anchor.value}: probing {len(candidates)} dates")

        hit = await self._probe(query, candidates)
        if hit is None:
            return ResolutionResult(
                success=False,
                cache_key=key,
                is_historical=True,
                requested_date=anchor.value,
                message=describe_miss(anchor),
            )

        day, result = hit
        await self.resolver.write_back(query, result, day)
        if anchor.kind is AnchorKind.DAY:
            is_exact = day == anchor.as_date
        else:
            is_exact = anchor.contains(day)
        return ResolutionResult(
            success=True,
            records=result.records,
            source=result.source,
            cache_key=key,
            message=describe_hit(anchor, day),
            is_historical=True,
            requested_date=anchor.value,
            resolved_date=day,
            is_exact_date=is_exact,
            match_status=result.match_status,
            corrected_market=result.corrected_market,
            relaxation=result.relaxation,
        )

    async def _probe(self, query: PriceQuery, candidates: List[date]) -> Optional[Tuple[date, "TierResult"]]:
        for batch in chunked(candidates, self.batch_size):
            outcomes = await asyncio.gather(
                *(self.resolver.fetch_for_date(query, day) for day in batch),
                return_exceptions=True,
            )
            for day, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not is_transient_error(outcome):
                        raise outcome
                    logger.warning(f"Probe for {day} failed: {outcome}")
                    continue
                if outcome.found:
                    logger.info(f"Historical hit on {day} ({outcome.source.value})")
                    return day, outcome
        return None
