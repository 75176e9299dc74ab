"""
Cache write-back.

A successful fetch is stored twice over:
1. the in-scope subset under the literal query key
2. every (commodity, district, state) group of the full fetch under its own key

The second step lets a later narrow query ("tomato in Kurnool") reuse data
fetched by an earlier broad one ("everything in Kurnool").
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..models import CacheEntry, DataSource, PriceQuery, PriceRecord
from .cache_store import PriceCacheStore
from .normalizer import make_cache_key
from .price_store import PriceStore

logger = logging.getLogger(__name__)


def filter_in_scope(query: PriceQuery, records: List[PriceRecord]) -> List[PriceRecord]:
    """Keep records whose district and market contain the requested values."""
    if not query.district and not query.market:
        return list(records)
    return [
        record
        for record in records
        if record.in_scope(district=query.district, market=query.market)
    ]


def decompose(records: List[PriceRecord], literal_key: str) -> List[Tuple[str, List[PriceRecord]]]:
    """Group records by (commodity, district, state) into (sub-key, records) pairs.

    Groups keep first-seen order. A group whose key equals the literal key is
    left out; the literal entry already covers it.
    """
    groups: Dict[str, List[PriceRecord]] = {}
    for record in records:
        key = make_cache_key(
            commodity=record.commodity,
            state=record.state,
            district=record.district,
        )
        groups.setdefault(key, []).append(record)
    return [(key, group) for key, group in groups.items() if key != literal_key]


class CacheWriter:
    """Persists fetch results into the keyed cache and the price table."""

    def __init__(self, cache_store: Optional[PriceCacheStore], price_store: Optional[PriceStore] = None):
        self.cache_store = cache_store
        self.price_store = price_store

    def build_entries(
        self,
        query: PriceQuery,
        key: str,
        records: List[PriceRecord],
        cache_date: date,
    ) -> List[CacheEntry]:
        now = datetime.now(timezone.utc)
        entries: List[CacheEntry] = []

        scoped = filter_in_scope(query, records)
        if scoped:
            entries.append(
                CacheEntry(
                    key=key,
                    cache_date=cache_date,
                    commodity=query.commodity,
                    state=query.state,
                    district=query.district,
                    market=query.market,
                    records=scoped,
                    created_at=now,
                    hit_count=1,
                )
            )

        for sub_key, group in decompose(records, key):
            first = group[0]
            entries.append(
                CacheEntry(
                    key=sub_key,
                    cache_date=cache_date,
                    commodity=first.commodity,
                    state=first.state or None,
                    district=first.district or None,
                    records=group,
                    created_at=now,
                    hit_count=0,
                )
            )
        return entries

    async def write_back(
        self,
        query: PriceQuery,
        key: str,
        records: List[PriceRecord],
        cache_date: date,
        source: DataSource,
    ) -> bool:
        """Best-effort write; returns False on any failure, never raises."""
        if not records:
            return False

        written = False
        if self.cache_store is not None:
            try:
                entries = self.build_entries(query, key, records, cache_date)
                if entries:
                    written = await self.cache_store.upsert_entries(entries)
                    logger.info(
                        f"Cached {len(entries)} entries for {key} on {cache_date} "
                        f"(1 literal + {len(entries) - 1} decomposed)"
                        if entries[0].key == key
                        else f"Cached {len(entries)} decomposed entries for {key} on {cache_date}"
                    )
            except Exception as e:
                logger.warning(f"Cache write-back failed for {key}: {e}")
                written = False

        if source is DataSource.PROVIDER and self.price_store is not None:
            try:
                await self.price_store.upsert_records(records, data_source="api_cache")
            except Exception as e:
                logger.warning(f"Price table write-through failed for {key}: {e}")

        return written
