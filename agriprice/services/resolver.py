"""
Tiered price resolution.

For the latest prices the tiers are tried strictly in order, stopping at the
first non-empty result:

1. memory      in-process map, 10-minute TTL, today's data only
2. cache       persistent keyed cache for the target date, then a scan of the
               same day's broader entries
3. database    price table over the trailing window; exact market name, then a
               fuzzy-corrected one
4. provider    data.gov.in with progressively relaxed filters

Date-anchored queries go through HistoricalDateSearch, which probes candidate
dates with fetch_for_date (database, then provider without a recency window).

Provider faults are logged and treated as an empty tier. Total failure is a
normal result with success=False.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..exceptions import DataProviderError
from ..models import (
    DataSource,
    MarketCandidate,
    MatchStatus,
    PriceQuery,
    PriceRecord,
    ResolutionResult,
)
from ..providers.base import BaseProvider
from ..utils.dates import today
from .cache_store import PriceCacheStore
from .cache_writer import CacheWriter, filter_in_scope
from .fuzzy_matcher import FuzzyMatcher
from .historical import HistoricalDateSearch
from .memory_cache import MemoryCache
from .normalizer import FilterSet, normalize
from .price_store import PriceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelaxationStep:
    """One provider attempt: which filters to drop, and whether to re-apply
    the requested district client-side as a substring match."""

    name: str
    drop: Tuple[str, ...] = ()
    loose_district: bool = False

    def apply(self, provider_filters: Dict[str, str]) -> Dict[str, str]:
        return {name: value for name, value in provider_filters.items() if name not in self.drop}


# Order is the fallback chain. Commodity is never dropped.
RELAXATION_STEPS: Tuple[RelaxationStep, ...] = (
    RelaxationStep("full"),
    RelaxationStep("drop_market", drop=("market", "district"), loose_district=True),
    RelaxationStep("drop_district", drop=("market", "district")),
)


def _in_locality(candidate: MarketCandidate, query: PriceQuery) -> bool:
    for wanted, actual in ((query.state, candidate.state), (query.district, candidate.district)):
        if wanted and wanted.strip().lower() not in (actual or "").lower():
            return False
    return True


@dataclass
class TierResult:
    """Records found by one database/provider pass plus how the market was matched."""

    records: List[PriceRecord] = field(default_factory=list)
    source: Optional[DataSource] = None
    match_status: MatchStatus = MatchStatus.NOT_REQUESTED
    corrected_market: Optional[str] = None
    suggestions: List[MarketCandidate] = field(default_factory=list)
    relaxation: Optional[str] = None

    @property
    def found(self) -> bool:
        return bool(self.records)

    def effective_query(self, query: PriceQuery) -> PriceQuery:
        """The query the records actually answer (market corrected if it was)."""
        if self.corrected_market:
            return query.model_copy(update={"market": self.corrected_market})
        return query


class TieredResolver:
    """
    Resolves a PriceQuery against memory, cache, database and provider.

    Every collaborator is optional: a store or provider that is not configured
    is None and its tier is skipped for the lifetime of the resolver.

    Example:
        >>> resolver = TieredResolver(cache_store=..., price_store=..., provider=...)
        >>> result = await resolver.resolve(PriceQuery(commodity="Onion", market="Adoni"))
        >>> result.source, result.total
    """

    def __init__(
        self,
        cache_store: Optional[PriceCacheStore] = None,
        price_store: Optional[PriceStore] = None,
        provider: Optional[BaseProvider] = None,
        memory_cache: Optional[MemoryCache] = None,
        matcher: Optional[FuzzyMatcher] = None,
        writer: Optional[CacheWriter] = None,
        window_days: int = 30,
        probe_batch_size: int = 7,
        today_fn: Callable[[], date] = today,
    ):
        self.cache_store = cache_store
        self.price_store = price_store
        self.provider = provider
        self.memory_cache = memory_cache if memory_cache is not None else MemoryCache()
        self.matcher = matcher or FuzzyMatcher()
        self.writer = writer or CacheWriter(cache_store, price_store)
        self.window_days = window_days
        self.today_fn = today_fn
        self.historical = HistoricalDateSearch(self, batch_size=probe_batch_size)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def resolve(self, query: PriceQuery) -> ResolutionResult:
        target = self.today_fn()
        anchor = query.anchor
        if anchor is not None and anchor.as_date != target:
            return await self.historical.search(query)
        return await self._resolve_latest(query, target)

    async def fetch_for_date(
        self,
        query: PriceQuery,
        day: date,
        relax: bool = True,
        include_database: bool = True,
    ) -> TierResult:
        """Database then provider for one arrival date, no recency window.

        Never writes; the caller decides what to persist.
        """
        _, filters = normalize(query)
        result = TierResult()
        if include_database and self.price_store is not None:
            result = await self._from_database(query, filters, on_date=day)
            if result.found:
                return result

        if self.provider is None:
            return result

        provider_query = result.effective_query(query)
        if provider_query is not query:
            _, filters = normalize(provider_query)
        records, step = await self._from_provider(
            provider_query,
            filters,
            arrival_date=day,
            skip_date_filter=True,
            relax=relax,
        )
        if step and step != RELAXATION_STEPS[0].name:
            records = filter_in_scope(provider_query, records)
        if records:
            result.records = records
            result.source = DataSource.PROVIDER
            result.relaxation = step
            if result.match_status is MatchStatus.NO_CONFIDENT_MATCH:
                result.match_status = MatchStatus.NOT_REQUESTED
                result.suggestions = []
        return result

    async def last_available(self, query: PriceQuery) -> ResolutionResult:
        """Most recent database rows for the scope, however old."""
        key, filters = normalize(query)
        if self.price_store is None:
            return ResolutionResult(success=False, cache_key=key, message="Price database is not configured")
        records = await self.price_store.latest_available(filters.database)
        if not records:
            return ResolutionResult(success=False, cache_key=key, message="No historical data found")
        latest = records[0].arrival_date
        return ResolutionResult(
            success=True,
            records=records,
            source=DataSource.DATABASE,
            cache_key=key,
            resolved_date=latest,
            message=f"Last available prices from {latest}" if latest else "Last available prices",
        )

    async def write_back(self, query: PriceQuery, result: TierResult, cache_date: date) -> bool:
        if not result.found or result.source is None:
            return False
        effective = result.effective_query(query)
        key, _ = normalize(effective)
        return await self.writer.write_back(effective, key, result.records, cache_date, result.source)

    # ------------------------------------------------------------------
    # Latest-price path
    # ------------------------------------------------------------------

    async def _resolve_latest(self, query: PriceQuery, target: date) -> ResolutionResult:
        key, filters = normalize(query)

        cached = self.memory_cache.get(key)
        if cached is not None:
            logger.info(f"Memory hit for {key}")
            return cached.model_copy(update={"source": DataSource.MEMORY, "from_cache": True})

        result = await self._from_cache(query, key, target)
        if result is None:
            result = await self._fetch_latest(query, key, filters, target)

        if result.success:
            self.memory_cache.set(key, result)
        return result

    async def _from_cache(self, query: PriceQuery, key: str, target: date) -> Optional[ResolutionResult]:
        if self.cache_store is None:
            return None

        entry = await self.cache_store.get_entry(key, target)
        if entry is not None and entry.records:
            logger.info(f"Cache hit for {key} on {target}")
            await self.cache_store.increment_hit_count(entry)
            return ResolutionResult(
                success=True,
                records=entry.records,
                source=DataSource.CACHE,
                from_cache=True,
                cache_key=key,
                message="Data fetched from cache",
            )

        # Location-wide queries must not be answered from a narrower slice
        if not query.commodity or not query.has_location:
            return None

        for candidate in await self.cache_store.find_same_day(target, state=query.state, district=query.district):
            if candidate.key == key:
                continue
            matching = [record for record in candidate.records if record.in_scope(**query.scope())]
            if matching:
                logger.info(f"Extracted {len(matching)} records for {key} from cached {candidate.key}")
                return ResolutionResult(
                    success=True,
                    records=matching,
                    source=DataSource.CACHE,
                    from_cache=True,
                    cache_key=key,
                    message="Data fetched from cache (extracted from broader query)",
                )
        return None

    async def _fetch_latest(
        self,
        query: PriceQuery,
        key: str,
        filters: FilterSet,
        target: date,
    ) -> ResolutionResult:
        result = TierResult()
        if self.price_store is not None:
            since = target - timedelta(days=self.window_days)
            result = await self._from_database(query, filters, since=since, until=target)
            if result.found:
                logger.info(f"Database returned {len(result.records)} records for {key} ({result.source.value})")
                await self.write_back(query, result, target)
                return self._to_resolution(key, result, "Data fetched from database")

        if self.provider is not None:
            provider_query = result.effective_query(query)
            provider_filters = normalize(provider_query)[1] if provider_query is not query else filters
            records, step = await self._from_provider(provider_query, provider_filters)
            if records:
                logger.info(f"Provider returned {len(records)} records for {key} (step: {step})")
                provider_result = TierResult(
                    records=records,
                    source=DataSource.PROVIDER,
                    match_status=(
                        MatchStatus.CORRECTED if result.corrected_market else MatchStatus.NOT_REQUESTED
                    ),
                    corrected_market=result.corrected_market,
                    relaxation=step,
                )
                await self.write_back(query, provider_result, target)
                return self._to_resolution(key, provider_result, "Data fetched from provider")

        logger.info(f"No data found for {key} in any tier")
        message = "No data found for the requested filters"
        if result.match_status is MatchStatus.NO_CONFIDENT_MATCH:
            message = f"No confident match for market '{query.market}'"
        return ResolutionResult(
            success=False,
            cache_key=key,
            message=message,
            match_status=result.match_status,
            corrected_market=result.corrected_market,
            suggestions=result.suggestions,
        )

    @staticmethod
    def _to_resolution(key: str, result: TierResult, message: str) -> ResolutionResult:
        if result.corrected_market:
            message = f"{message} (market corrected to '{result.corrected_market}')"
        return ResolutionResult(
            success=True,
            records=result.records,
            source=result.source,
            cache_key=key,
            message=message,
            match_status=result.match_status,
            corrected_market=result.corrected_market,
            relaxation=result.relaxation,
        )

    # ------------------------------------------------------------------
    # Database tier
    # ------------------------------------------------------------------

    async def _from_database(
        self,
        query: PriceQuery,
        filters: FilterSet,
        on_date: Optional[date] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
    ) -> TierResult:
        window = dict(on_date=on_date, since=since, until=until, limit=query.limit)

        if not query.market:
            records = await self.price_store.query_prices(filters.database, **window)
            return TierResult(records=records, source=DataSource.DATABASE if records else None)

        records = await self.price_store.query_prices(filters.database, exact_market=query.market, **window)
        if records:
            return TierResult(records=records, source=DataSource.DATABASE, match_status=MatchStatus.EXACT)

        candidates = await self._market_candidates(query, since or on_date, until or on_date)
        if not candidates:
            return TierResult()

        if query.district or query.state:
            best = self.matcher.match_with_locality(
                query.market, candidates, district=query.district, state=query.state
            )
        else:
            best = self.matcher.match(query.market, candidates)

        if best is not None and best.name.lower() == query.market.lower():
            # The exact lookup already came back empty for this name
            return TierResult()

        if best is None:
            suggestions = self.matcher.suggest(query.market, candidates)
            logger.info(
                f"No confident market match for '{query.market}' "
                f"({len(candidates)} candidates, {len(suggestions)} suggestions)"
            )
            return TierResult(match_status=MatchStatus.NO_CONFIDENT_MATCH, suggestions=suggestions)

        logger.info(f"Market '{query.market}' corrected to '{best.name}' (score {best.similarity_score:.2f})")
        records = await self.price_store.query_prices(filters.database, exact_market=best.name, **window)
        return TierResult(
            records=records,
            source=DataSource.DATABASE_FUZZY if records else None,
            match_status=MatchStatus.CORRECTED,
            corrected_market=best.name,
        )

    async def _market_candidates(
        self,
        query: PriceQuery,
        since: Optional[date],
        until: Optional[date],
    ) -> List[MarketCandidate]:
        """Markets with data in the claimed district/state and window.

        Server-side search hits are appended only when they lie in the claimed
        locality; the RPC itself searches every market in the table.
        """
        candidates = await self.price_store.distinct_markets(
            state=query.state, district=query.district, since=since, until=until
        )
        seen = {candidate.name.lower() for candidate in candidates}
        for candidate in await self.price_store.fuzzy_search_markets(query.market) or []:
            if candidate.name.lower() in seen or not _in_locality(candidate, query):
                continue
            seen.add(candidate.name.lower())
            candidates.append(candidate)
        return candidates

    # ------------------------------------------------------------------
    # Provider tier
    # ------------------------------------------------------------------

    async def _from_provider(
        self,
        query: PriceQuery,
        filters: FilterSet,
        arrival_date: Optional[date] = None,
        skip_date_filter: bool = False,
        relax: bool = True,
    ) -> Tuple[List[PriceRecord], Optional[str]]:
        """Walk the relaxation steps; returns (records, step name) of the first hit."""
        steps = RELAXATION_STEPS if relax else RELAXATION_STEPS[:1]
        previous = None
        fetched_for = None
        fetched: List[PriceRecord] = []
        for position, step in enumerate(steps):
            provider_filters = step.apply(filters.provider)
            if position and not provider_filters:
                continue
            request = tuple(sorted(provider_filters.items()))
            loose_district = step.loose_district and bool(query.district)
            if (request, loose_district) == previous:
                continue
            previous = (request, loose_district)

            # Steps that differ only in client-side filtering share one request
            if request != fetched_for:
                try:
                    fetched = await self.provider.fetch_records(
                        provider_filters,
                        arrival_date=arrival_date,
                        skip_date_filter=skip_date_filter,
                        limit=query.limit,
                    )
                except DataProviderError as e:
                    logger.warning(f"Provider fault on step '{step.name}' ({e.__class__.__name__}): {e.message}")
                    return [], None
                fetched_for = request

            records = fetched
            if loose_district:
                wanted = query.district.lower()
                records = [record for record in records if wanted in record.district.lower()]
            if records:
                return records, step.name
            logger.debug(f"Provider step '{step.name}' returned nothing for {provider_filters}")
        return [], None
