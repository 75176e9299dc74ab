"""
Query normalization.

Turns a PriceQuery into:
- a canonical cache key that ignores case, spacing and punctuation
- provider filters (title-cased, the provider matches exactly)
- database filters (trimmed substrings for case-insensitive partial matching)

Everything here is pure; absent fields are simply left out.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from ..models import PriceQuery

# Key prefixes, in key order
_KEY_PARTS = (
    ("commodity", "c"),
    ("state", "s"),
    ("district", "d"),
    ("market", "m"),
)

ALL_KEY = "all"


@dataclass(frozen=True)
class FilterSet:
    provider: Dict[str, str] = field(default_factory=dict)
    database: Dict[str, str] = field(default_factory=dict)


def normalize_component(value: Optional[str]) -> Optional[str]:
    """Lowercase, hyphenate whitespace, strip everything but [a-z0-9-]."""
    if value is None:
        return None
    text = re.sub(r"\s+", "-", value.strip().lower())
    text = re.sub(r"[^a-z0-9-]", "", text)
    return text or None


def make_cache_key(
    commodity: Optional[str] = None,
    state: Optional[str] = None,
    district: Optional[str] = None,
    market: Optional[str] = None,
) -> str:
    values = {"commodity": commodity, "state": state, "district": district, "market": market}
    parts = []
    for name, prefix in _KEY_PARTS:
        component = normalize_component(values[name])
        if component:
            parts.append(f"{prefix}:{component}")
    return "|".join(parts) or ALL_KEY


def title_case(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split())


def normalize(query: PriceQuery) -> Tuple[str, FilterSet]:
    """Return (cache key, filters) for a query."""
    key = make_cache_key(**query.scope())
    provider: Dict[str, str] = {}
    database: Dict[str, str] = {}
    for name, value in query.scope().items():
        if not value or not value.strip():
            continue
        cleaned = " ".join(value.split())
        provider[name] = title_case(cleaned)
        database[name] = cleaned
    return key, FilterSet(provider=provider, database=database)
