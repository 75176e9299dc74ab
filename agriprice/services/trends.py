"""
Price trend aggregation over a bounded trailing window.

Daily snapshots are assembled from three sources, in order of trust:
cached entries, then the price table for days the cache lacks, then provider
probes for days still missing. Records are grouped by their own arrival date,
restricted to the query scope and de-duplicated.
"""
from __future__ import annotations

import asyncio
import logging
import statistics
from datetime import date, timedelta
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Tuple

from ..exceptions import is_transient_error
from ..models import (
    CommodityTrend,
    DateRange,
    MarketWideTrend,
    PriceQuery,
    PriceRecord,
    SingleCommodityTrend,
    TrendDirection,
    TrendFailure,
    TrendPoint,
    TrendReport,
    TrendStrength,
    dedupe_records,
)
from ..utils.dates import chunked, iter_dates, today
from .cache_store import PriceCacheStore
from .normalizer import normalize
from .price_store import PriceStore

if TYPE_CHECKING:
    from .resolver import TieredResolver

logger = logging.getLogger(__name__)

NOT_ENOUGH_DATA = "Not enough historical data for trend analysis. Need at least 2 days of data."

STABLE_BAND = 1.0
MODERATE_FLOOR = 5.0
STRONG_FLOOR = 10.0
VOLATILITY_WARNING_RATIO = 0.1

Snapshots = Dict[date, List[PriceRecord]]


# ============================================================================
# Statistics
# ============================================================================

def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def daily_points(snapshots: Snapshots, commodity: str) -> List[TrendPoint]:
    """Per-day averages for one commodity, oldest first.

    Records without a positive modal price are ignored.
    """
    wanted = commodity.strip().lower()
    points: List[TrendPoint] = []
    for day in sorted(snapshots):
        records = [
            record
            for record in snapshots[day]
            if record.commodity.lower() == wanted and record.modal_price
        ]
        if not records:
            continue
        points.append(
            TrendPoint(
                date=day,
                modal_price=_mean([r.modal_price for r in records]),
                min_price=_mean([r.min_price for r in records if r.min_price is not None]),
                max_price=_mean([r.max_price for r in records if r.max_price is not None]),
                sample_count=len(records),
            )
        )
    return points


def classify(percent_change: float) -> Tuple[TrendDirection, TrendStrength]:
    magnitude = abs(percent_change)
    if magnitude < STABLE_BAND:
        return TrendDirection.STABLE, TrendStrength.MINIMAL
    direction = TrendDirection.INCREASING if percent_change > 0 else TrendDirection.DECREASING
    if magnitude > STRONG_FLOOR:
        strength = TrendStrength.STRONG
    elif magnitude >= MODERATE_FLOOR:
        strength = TrendStrength.MODERATE
    else:
        strength = TrendStrength.SLIGHT
    return direction, strength


def analyze_trend(points: List[TrendPoint], commodity: str) -> CommodityTrend:
    """Statistics for at least two daily points sorted oldest first."""
    if len(points) < 2:
        raise ValueError("analyze_trend needs at least two daily points")

    oldest, newest = points[0], points[-1]
    change = newest.modal_price - oldest.modal_price
    raw_percent = change / oldest.modal_price * 100
    percent = round(raw_percent, 2)
    # Classified before rounding so 0.996% stays inside the stable band
    direction, strength = classify(raw_percent)

    prices = [point.modal_price for point in points]
    peak = max(points, key=lambda point: point.modal_price)
    trough = min(points, key=lambda point: point.modal_price)

    return CommodityTrend(
        commodity=commodity,
        oldest_date=oldest.date,
        newest_date=newest.date,
        days_of_data=len(points),
        current_price=newest.modal_price,
        current_min_price=newest.min_price,
        current_max_price=newest.max_price,
        old_price=oldest.modal_price,
        price_change=round(change, 2),
        percent_change=percent,
        direction=direction,
        strength=strength,
        avg_price=round(statistics.fmean(prices), 2),
        volatility=round(statistics.pstdev(prices), 2),
        peak_price=peak.modal_price,
        peak_date=peak.date,
        trough_price=trough.modal_price,
        trough_date=trough.date,
        price_history=points,
    )


def _commodity_names(snapshots: Snapshots) -> List[str]:
    names: Dict[str, str] = {}
    for records in snapshots.values():
        for record in records:
            names.setdefault(record.commodity.lower(), record.commodity)
    return [names[key] for key in sorted(names)]


def market_trends(snapshots: Snapshots) -> TrendReport:
    """A trend per commodity seen in the window; commodities with one day are skipped."""
    trends: List[CommodityTrend] = []
    for name in _commodity_names(snapshots):
        points = daily_points(snapshots, name)
        if len(points) >= 2:
            trends.append(analyze_trend(points, name))

    if not trends:
        return TrendFailure(message=NOT_ENOUGH_DATA, days_available=len(snapshots))
    return MarketWideTrend(
        commodities=trends,
        total_commodities=len(trends),
        date_range=DateRange(oldest=min(snapshots), newest=max(snapshots)),
        days_available=len(snapshots),
    )


# ============================================================================
# Presentation
# ============================================================================

def time_period_descriptor(days_of_data: int) -> str:
    if days_of_data <= 1:
        return "today"
    if days_of_data <= 2:
        return "last 2 days"
    if days_of_data <= 7:
        return "this week"
    if days_of_data <= 14:
        return "last 2 weeks"
    if days_of_data <= 21:
        return "last 3 weeks"
    return "last month"


def _money(value: float) -> str:
    return f"₹{value:,.2f}".rstrip("0").rstrip(".")


def _day(value: date) -> str:
    return f"{value.day} {value.strftime('%b %Y')}"


def format_trend_summary(trend: CommodityTrend) -> str:
    period = time_period_descriptor(trend.days_of_data)
    changed = "increased" if trend.price_change >= 0 else "decreased"

    lines = [
        f"{trend.commodity} prices have {changed} by {_money(abs(trend.price_change))} "
        f"({abs(trend.percent_change)}%) over {period}.",
        "",
        f"Current Price: {_money(trend.current_price)}",
        f"{'Yesterday' if period == 'today' else _day(trend.oldest_date)}: {_money(trend.old_price)}",
        "",
    ]
    if trend.volatility > trend.avg_price * VOLATILITY_WARNING_RATIO:
        lines.append(f"Prices are volatile (fluctuation: {_money(trend.volatility)})")
    if trend.peak_price != trend.current_price:
        lines.append(f"Peak: {_money(trend.peak_price)} on {_day(trend.peak_date)}")
    if trend.trough_price != trend.current_price:
        lines.append(f"Lowest: {_money(trend.trough_price)} on {_day(trend.trough_date)}")
    return "\n".join(lines).strip()


# ============================================================================
# Aggregation
# ============================================================================

def _group_by_day(
    records: Iterable[PriceRecord],
    query: PriceQuery,
    start: date,
    end: date,
    fallback: Optional[date] = None,
) -> Snapshots:
    grouped: Snapshots = {}
    for record in records:
        day = record.arrival_date or fallback
        if day is None or not start <= day <= end:
            continue
        if not record.in_scope(**query.scope()):
            continue
        grouped.setdefault(day, []).append(record)
    return grouped


def _merge_missing(snapshots: Snapshots, found: Snapshots) -> None:
    """Add days not yet present; days already present are left untouched."""
    for day, records in found.items():
        if day not in snapshots:
            snapshots[day] = records


class PriceTrendAggregator:
    """Builds single-commodity or market-wide trends for a query."""

    def __init__(
        self,
        resolver: "TieredResolver",
        cache_store: Optional[PriceCacheStore] = None,
        price_store: Optional[PriceStore] = None,
        max_days: int = 30,
        batch_size: int = 7,
        today_fn: Callable[[], date] = today,
    ):
        self.resolver = resolver
        self.cache_store = cache_store
        self.price_store = price_store
        self.max_days = max_days
        self.batch_size = batch_size
        self.today_fn = today_fn

    async def trend(self, query: PriceQuery, days: int = 30) -> TrendReport:
        if days > self.max_days:
            logger.warning(f"Trend window of {days} days clamped to {self.max_days}")
            days = self.max_days
        days = max(days, 1)

        snapshots = await self.collect_snapshots(query, days)
        if len(snapshots) < 2:
            return TrendFailure(message=NOT_ENOUGH_DATA, days_available=len(snapshots))

        if not query.commodity:
            return market_trends(snapshots)

        points = daily_points(snapshots, query.commodity)
        if len(points) < 2:
            return TrendFailure(message=NOT_ENOUGH_DATA, days_available=len(points))

        name = next(
            record.commodity
            for records in snapshots.values()
            for record in records
            if record.commodity.lower() == query.commodity.lower()
        )
        trend = analyze_trend(points, name)
        return SingleCommodityTrend(
            trend=trend,
            summary=format_trend_summary(trend),
            days_available=len(snapshots),
        )

    async def collect_snapshots(self, query: PriceQuery, days: int) -> Snapshots:
        end = self.today_fn()
        start = end - timedelta(days=days - 1)
        key, filters = normalize(query)
        snapshots: Snapshots = {}

        if self.cache_store is not None:
            for entry in await self.cache_store.get_history(key, start, end):
                _merge_missing(
                    snapshots, _group_by_day(entry.records, query, start, end, fallback=entry.cache_date)
                )
        from_cache = len(snapshots)

        if self.price_store is not None:
            records = await self.price_store.query_prices(filters.database, since=start, until=end, limit=5000)
            _merge_missing(snapshots, _group_by_day(records, query, start, end))
        from_database = len(snapshots) - from_cache

        missing = [day for day in iter_dates(start, end) if day not in snapshots]
        if missing and self.resolver.provider is not None:
            await self._probe_provider(query, missing, snapshots, start, end)

        for day in snapshots:
            snapshots[day] = dedupe_records(snapshots[day])

        logger.info(
            f"Trend snapshots for {key}: {len(snapshots)} days "
            f"(cache {from_cache}, database {from_database}, "
            f"provider {len(snapshots) - from_cache - from_database})"
        )
        return snapshots

    async def _probe_provider(
        self,
        query: PriceQuery,
        missing: List[date],
        snapshots: Snapshots,
        start: date,
        end: date,
    ) -> None:
        for batch in chunked(missing, self.batch_size):
            outcomes = await asyncio.gather(
                *(
                    self.resolver.fetch_for_date(query, day, relax=False, include_database=False)
                    for day in batch
                ),
                return_exceptions=True,
            )
            for day, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not is_transient_error(outcome):
                        raise outcome
                    logger.warning(f"Trend probe for {day} failed: {outcome}")
                    continue
                _merge_missing(snapshots, _group_by_day(outcome.records, query, start, end, fallback=day))
