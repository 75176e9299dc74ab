from __future__ import annotations

import calendar
import datetime as dt
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import ValidationError
from .utils.dates import parse_date


# ============================================================================
# Price records
# ============================================================================

# Provider versions disagree on casing and separators ("Min_x0020_Price",
# "min_price", "Modal Price"); everything is folded to these field names.
_RECORD_FIELDS = {
    "commodity": "commodity",
    "variety": "variety",
    "grade": "grade",
    "state": "state",
    "district": "district",
    "market": "market",
    "arrival_date": "arrival_date",
    "min_price": "min_price",
    "max_price": "max_price",
    "modal_price": "modal_price",
    "arrival_quantity": "arrival_quantity",
    "arrivals_in_quintal": "arrival_quantity",
    "arrivals": "arrival_quantity",
}

_MISSING_MARKERS = {"", "na", "n/a", "nr", "-", "null", "none"}


def _canonical_key(key: Any) -> str:
    text = str(key).strip().lower().replace("_x0020_", "_")
    return re.sub(r"[\s_]+", "_", text)


def _to_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if text.lower() in _MISSING_MARKERS:
            return None
        try:
            amount = float(text)
        except ValueError:
            return None
    if amount != amount or amount < 0:  # NaN or negative
        return None
    return amount


class PriceRecord(BaseModel):
    """One reported price observation (prices are per quintal).

    min <= modal <= max is not enforced; the upstream feed breaks it often
    enough that rejecting such rows would lose real data.
    """

    commodity: str
    variety: Optional[str] = None
    grade: Optional[str] = None
    state: str = ""
    district: str = ""
    market: str = ""
    arrival_date: Optional[dt.date] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    modal_price: Optional[float] = None
    arrival_quantity: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def fold_field_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        folded: Dict[str, Any] = {}
        for raw_key, value in data.items():
            field = _RECORD_FIELDS.get(_canonical_key(raw_key))
            if field is None:
                continue
            if folded.get(field) is None:
                folded[field] = value
        return folded

    @field_validator("commodity", mode="before")
    @classmethod
    def require_commodity(cls, v: Any) -> str:
        text = str(v).strip() if v is not None else ""
        if not text:
            raise ValueError("commodity is required")
        return text

    @field_validator("state", "district", "market", mode="before")
    @classmethod
    def clean_location(cls, v: Any) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("variety", "grade", mode="before")
    @classmethod
    def clean_optional(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("arrival_date", mode="before")
    @classmethod
    def parse_arrival_date(cls, v: Any) -> Optional[dt.date]:
        return parse_date(v)

    @field_validator("min_price", "max_price", "modal_price", "arrival_quantity", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Optional[float]:
        return _to_amount(v)

    @property
    def identity(self) -> Tuple[Any, ...]:
        """Deduplication identity: (date, state, district, market, commodity, variety)."""
        return (
            self.arrival_date,
            self.state.lower(),
            self.district.lower(),
            self.market.lower(),
            self.commodity.lower(),
            (self.variety or "").lower(),
        )

    def in_scope(
        self,
        commodity: Optional[str] = None,
        state: Optional[str] = None,
        district: Optional[str] = None,
        market: Optional[str] = None,
    ) -> bool:
        """Commodity must match exactly, locations by substring; all case-insensitive."""
        if commodity and self.commodity.lower() != commodity.strip().lower():
            return False
        for wanted, actual in ((state, self.state), (district, self.district), (market, self.market)):
            if wanted and wanted.strip().lower() not in actual.lower():
                return False
        return True


def dedupe_records(records: List[PriceRecord]) -> List[PriceRecord]:
    """Drop repeated observations, keeping the first occurrence."""
    seen = set()
    unique: List[PriceRecord] = []
    for record in records:
        if record.identity in seen:
            continue
        seen.add(record.identity)
        unique.append(record)
    return unique


# ============================================================================
# Queries and date anchors
# ============================================================================

class AnchorKind(str, Enum):
    YEAR = "year"
    MONTH = "month"
    DAY = "day"


_YEAR_RE = re.compile(r"^(\d{4})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_DAY_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")


@dataclass(frozen=True)
class DateAnchor:
    """A query date: a whole year, a year-month, or one calendar day."""

    kind: AnchorKind
    year: int
    month: Optional[int] = None
    day: Optional[int] = None

    @classmethod
    def parse(cls, value: Union[str, dt.date]) -> "DateAnchor":
        if isinstance(value, dt.date):
            return cls(AnchorKind.DAY, value.year, value.month, value.day)
        text = str(value).strip()
        if match := _YEAR_RE.match(text):
            return cls(AnchorKind.YEAR, int(match.group(1)))
        if match := _MONTH_RE.match(text):
            year, month = int(match.group(1)), int(match.group(2))
            if not 1 <= month <= 12:
                raise ValidationError(f"Invalid month in date '{text}'", field="date")
            return cls(AnchorKind.MONTH, year, month)
        if match := _DAY_RE.match(text):
            parts = tuple(int(g) for g in match.groups())
        else:
            # Day-first provider formats ("15-06-2024", "15/06/2024")
            parsed = parse_date(text)
            if parsed is None:
                raise ValidationError(
                    f"Unrecognised date '{text}'; expected YYYY, YYYY-MM or YYYY-MM-DD",
                    field="date",
                )
            parts = (parsed.year, parsed.month, parsed.day)
        try:
            dt.date(*parts)
        except ValueError as e:
            raise ValidationError(f"Invalid date '{text}': {e}", field="date") from e
        return cls(AnchorKind.DAY, *parts)

    @property
    def value(self) -> str:
        if self.kind is AnchorKind.YEAR:
            return f"{self.year:04d}"
        if self.kind is AnchorKind.MONTH:
            return f"{self.year:04d}-{self.month:02d}"
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    @property
    def as_date(self) -> Optional[dt.date]:
        if self.kind is AnchorKind.DAY:
            return dt.date(self.year, self.month, self.day)
        return None

    @property
    def label(self) -> str:
        if self.kind is AnchorKind.MONTH:
            return f"{calendar.month_name[self.month]} {self.year}"
        return self.value

    def contains(self, day: dt.date) -> bool:
        if self.kind is AnchorKind.YEAR:
            return day.year == self.year
        if self.kind is AnchorKind.MONTH:
            return (day.year, day.month) == (self.year, self.month)
        return day == self.as_date


class PriceQuery(BaseModel):
    """Structured filter tuple handed over by the intent-extraction layer."""

    model_config = ConfigDict(frozen=True)

    commodity: Optional[str] = None
    state: Optional[str] = None
    district: Optional[str] = None
    market: Optional[str] = None
    date: Optional[str] = None
    limit: int = Field(default=100, ge=1, le=5000)

    @field_validator("commodity", "state", "district", "market", mode="before")
    @classmethod
    def clean_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = " ".join(str(v).split())
        return text or None

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Optional[str]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return DateAnchor.parse(v).value

    @property
    def anchor(self) -> Optional[DateAnchor]:
        return DateAnchor.parse(self.date) if self.date else None

    @property
    def has_location(self) -> bool:
        return bool(self.state or self.district or self.market)

    def scope(self) -> Dict[str, Optional[str]]:
        return {
            "commodity": self.commodity,
            "state": self.state,
            "district": self.district,
            "market": self.market,
        }


# ============================================================================
# Cache entries and fuzzy candidates
# ============================================================================

class CacheEntry(BaseModel):
    """Persisted result set for one (cache key, data date) pair."""

    key: str
    cache_date: dt.date
    commodity: Optional[str] = None
    state: Optional[str] = None
    district: Optional[str] = None
    market: Optional[str] = None
    records: List[PriceRecord] = Field(default_factory=list)
    created_at: Optional[dt.datetime] = None
    hit_count: int = 0

    @property
    def filters(self) -> Dict[str, Optional[str]]:
        return {
            "commodity": self.commodity,
            "state": self.state,
            "district": self.district,
            "market": self.market,
        }


class MarketCandidate(BaseModel):
    name: str
    district: Optional[str] = None
    state: Optional[str] = None
    similarity_score: float = Field(default=0.0, ge=0.0, le=1.0)


# ============================================================================
# Resolution results
# ============================================================================

class DataSource(str, Enum):
    MEMORY = "memory"
    CACHE = "cache"
    DATABASE = "database"
    DATABASE_FUZZY = "database_fuzzy"
    PROVIDER = "provider"


class MatchStatus(str, Enum):
    NOT_REQUESTED = "not_requested"
    EXACT = "exact"
    CORRECTED = "corrected"
    NO_CONFIDENT_MATCH = "no_confident_match"


class ResolutionResult(BaseModel):
    success: bool
    records: List[PriceRecord] = Field(default_factory=list)
    source: Optional[DataSource] = None
    from_cache: bool = False
    message: str = ""
    cache_key: Optional[str] = None

    # Historical lookups
    is_historical: bool = False
    requested_date: Optional[str] = None
    resolved_date: Optional[dt.date] = None
    is_exact_date: bool = True

    # Market-name correction
    match_status: MatchStatus = MatchStatus.NOT_REQUESTED
    corrected_market: Optional[str] = None
    suggestions: List[MarketCandidate] = Field(default_factory=list)

    # Provider filter relaxation step that produced the records
    relaxation: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.records)


# ============================================================================
# Trends
# ============================================================================

class TrendPoint(BaseModel):
    date: dt.date
    modal_price: float
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sample_count: int = 0


class TrendDirection(str, Enum):
    STABLE = "stable"
    INCREASING = "increasing"
    DECREASING = "decreasing"


class TrendStrength(str, Enum):
    MINIMAL = "minimal"
    SLIGHT = "slight"
    MODERATE = "moderate"
    STRONG = "strong"


class CommodityTrend(BaseModel):
    commodity: str
    oldest_date: dt.date
    newest_date: dt.date
    days_of_data: int

    current_price: float
    current_min_price: Optional[float] = None
    current_max_price: Optional[float] = None
    old_price: float
    price_change: float
    percent_change: float

    direction: TrendDirection
    strength: TrendStrength

    avg_price: float
    volatility: float
    peak_price: float
    peak_date: dt.date
    trough_price: float
    trough_date: dt.date

    price_history: List[TrendPoint] = Field(default_factory=list)


class DateRange(BaseModel):
    oldest: dt.date
    newest: dt.date


class SingleCommodityTrend(BaseModel):
    success: Literal[True] = True
    type: Literal["single_commodity"] = "single_commodity"
    trend: CommodityTrend
    summary: str
    days_available: int


class MarketWideTrend(BaseModel):
    success: Literal[True] = True
    type: Literal["market_wide"] = "market_wide"
    commodities: List[CommodityTrend]
    total_commodities: int
    date_range: DateRange
    days_available: int


class TrendFailure(BaseModel):
    success: Literal[False] = False
    message: str
    days_available: int = 0


TrendReport = Union[SingleCommodityTrend, MarketWideTrend, TrendFailure]
