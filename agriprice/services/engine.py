"""
Engine facade.

Wires the resolver, trend aggregator and whichever stores and providers are
configured. A collaborator without configuration is left out for the
lifetime of the engine; its tier is simply skipped.
"""
from __future__ import annotations

import logging
from datetime import date
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config import Settings, get_settings
from ..exceptions import ConfigurationError, ValidationError
from ..models import PriceQuery, ResolutionResult, TrendReport
from ..providers.datagov import DataGovProvider
from ..utils.dates import today
from .async_supabase import AsyncSupabase
from .cache_store import PriceCacheStore
from .cache_writer import CacheWriter
from .fuzzy_matcher import FuzzyMatcher
from .http_pool import close_http_pool
from .memory_cache import MemoryCache
from .price_store import PriceStore
from .resolver import TieredResolver
from .trends import PriceTrendAggregator

logger = logging.getLogger(__name__)

QueryInput = Union[PriceQuery, Mapping[str, Any]]


def coerce_query(query: QueryInput, default_limit: Optional[int] = None) -> PriceQuery:
    """Accept a PriceQuery or a plain mapping from the intent layer."""
    if isinstance(query, PriceQuery):
        return query
    data = dict(query)
    if default_limit and data.get("limit") is None:
        data["limit"] = default_limit
    try:
        return PriceQuery.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(f"Invalid query: {first.get('msg')}", field=field) from e


class MarketPriceEngine:
    """Entry point for the surrounding application."""

    def __init__(
        self,
        resolver: TieredResolver,
        trends: PriceTrendAggregator,
        db: Optional[AsyncSupabase] = None,
        default_trend_days: int = 30,
        default_limit: int = 100,
        today_fn: Callable[[], date] = today,
    ):
        self.resolver = resolver
        self.trends = trends
        self.db = db
        self.default_trend_days = default_trend_days
        self.default_limit = default_limit
        self.today_fn = today_fn

    async def resolve(self, query: QueryInput) -> ResolutionResult:
        return await self.resolver.resolve(coerce_query(query, self.default_limit))

    async def trend(self, query: QueryInput, days: Optional[int] = None) -> TrendReport:
        return await self.trends.trend(coerce_query(query, self.default_limit), days or self.default_trend_days)

    async def last_available(self, query: QueryInput) -> ResolutionResult:
        return await self.resolver.last_available(coerce_query(query, self.default_limit))

    async def cache_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"memory": self.resolver.memory_cache.get_stats(), "persistent": None}
        if self.resolver.cache_store is not None:
            stats["persistent"] = await self.resolver.cache_store.get_stats(self.today_fn())
        return stats

    def clear_memory(self) -> None:
        self.resolver.memory_cache.clear()
        logger.info("Memory cache cleared")

    async def close(self) -> None:
        await close_http_pool()
        if self.db is not None:
            self.db.shutdown()


def build_engine(settings: Optional[Settings] = None) -> MarketPriceEngine:
    settings = settings or get_settings()

    db: Optional[AsyncSupabase] = None
    cache_store: Optional[PriceCacheStore] = None
    price_store: Optional[PriceStore] = None
    if settings.supabase_enabled:
        try:
            db = AsyncSupabase(settings.supabase_url, settings.supabase_key)
        except ConfigurationError as e:
            logger.warning(f"Cache and database tiers disabled: {e.message}")
        else:
            cache_store = PriceCacheStore(db)
            price_store = PriceStore(db)
    else:
        logger.info("Supabase not configured; cache and database tiers disabled")

    provider: Optional[DataGovProvider] = None
    try:
        provider = DataGovProvider(
            api_key=settings.data_gov_api_key,
            base_url=settings.data_gov_base_url,
            resource_id=settings.data_gov_resource_id,
            timeout=settings.provider_timeout,
            recency_days=settings.default_window_days,
        )
    except ConfigurationError as e:
        logger.info(f"Provider tier disabled: {e.message}")

    resolver = TieredResolver(
        cache_store=cache_store,
        price_store=price_store,
        provider=provider,
        memory_cache=MemoryCache(ttl=settings.memory_cache_ttl),
        matcher=FuzzyMatcher(
            threshold=settings.fuzzy_threshold,
            locality_threshold=settings.fuzzy_locality_threshold,
            locality_bonus=settings.fuzzy_locality_bonus,
        ),
        writer=CacheWriter(cache_store, price_store),
        window_days=settings.default_window_days,
        probe_batch_size=settings.probe_batch_size,
    )
    trends = PriceTrendAggregator(
        resolver,
        cache_store=cache_store,
        price_store=price_store,
        max_days=settings.max_trend_days,
        batch_size=settings.probe_batch_size,
    )
    return MarketPriceEngine(
        resolver,
        trends,
        db=db,
        default_trend_days=min(settings.default_window_days, settings.max_trend_days),
        default_limit=settings.default_limit,
    )


@lru_cache
def get_engine() -> MarketPriceEngine:
    return build_engine()
