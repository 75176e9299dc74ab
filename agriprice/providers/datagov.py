"""
data.gov.in provider for daily mandi (market) commodity prices.

The resource only serves recent dates reliably, throttles hard, and has
changed its field casing between versions; PriceRecord folds the casing.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigurationError, MalformedPayloadError, ProviderRateLimitError
from ..models import PriceRecord
from ..services.http_pool import get_http_client
from ..utils.dates import days_ago, to_provider_date
from .base import BaseProvider

logger = logging.getLogger(__name__)


class DataGovProvider(BaseProvider):
    """Provider for the data.gov.in "current daily price" resource."""

    DEFAULT_BASE_URL = "https://api.data.gov.in/resource"
    DEFAULT_RESOURCE_ID = "9ef84268-d588-465a-a308-a864a43d0070"
    DEFAULT_RECENCY_DAYS = 30

    # Query-string names per filter field
    FILTER_PARAMS = {
        "commodity": "filters[commodity]",
        "state": "filters[state]",
        "district": "filters[district]",
        "market": "filters[market]",
    }

    @property
    def provider_name(self) -> str:
        return "data.gov.in"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        resource_id: str = DEFAULT_RESOURCE_ID,
        timeout: float = BaseProvider.DEFAULT_TIMEOUT,
        recency_days: int = DEFAULT_RECENCY_DAYS,
    ):
        """
        Args:
            api_key: data.gov.in API key (required)
            base_url: Resource API root
            resource_id: Dataset resource identifier
            timeout: Per-request timeout in seconds
            recency_days: Trailing window applied when no date is requested
        """
        if not api_key:
            raise ConfigurationError("DATA_GOV_API_KEY is not set", details={"provider": "data.gov.in"})
        super().__init__(timeout=timeout)
        self.api_key = api_key
        self.url = f"{base_url.rstrip('/')}/{resource_id}"
        self.recency_days = recency_days

    def build_params(
        self,
        filters: Dict[str, str],
        arrival_date: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "api-key": self.api_key,
            "format": "json",
            "limit": limit,
            "offset": offset,
        }
        for name, value in filters.items():
            param = self.FILTER_PARAMS.get(name)
            if param and value:
                params[param] = value
        if arrival_date:
            params["filters[arrival_date]"] = to_provider_date(arrival_date)
        return params

    async def fetch_records(
        self,
        filters: Dict[str, str],
        arrival_date: Optional[date] = None,
        skip_date_filter: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PriceRecord]:
        """
        Fetch one page of records.

        Args:
            filters: Title-cased provider filters by field name
            arrival_date: Exact arrival date to request
            skip_date_filter: Keep records of any age (historical lookups)
            limit: Page size
            offset: Page offset

        Raises:
            DataProviderError subclasses on transport, status or payload faults
        """
        if self.is_rate_limited():
            raise ProviderRateLimitError("Still inside provider back-off window", provider=self.provider_name)

        client = get_http_client()
        params = self.build_params(filters, arrival_date=arrival_date, limit=limit, offset=offset)
        logger.debug(f"Fetching {self.provider_name} with filters {filters} date={arrival_date}")
        response = await self._get(client, self.url, params=params)
        payload = self._parse_json_safe(response)

        records = self.parse_records(payload)
        if arrival_date is None and not skip_date_filter:
            cutoff = days_ago(self.recency_days)
            records = [r for r in records if r.arrival_date is None or r.arrival_date >= cutoff]

        logger.info(f"{self.provider_name} returned {len(records)} records for {filters}")
        return records

    def parse_records(self, payload: Any) -> List[PriceRecord]:
        """Validate the envelope and every record, dropping unreadable records."""
        if not isinstance(payload, dict):
            raise MalformedPayloadError("Response is not a JSON object", provider=self.provider_name)
        raw_records = payload.get("records", payload.get("Records"))
        if raw_records is None:
            return []
        if not isinstance(raw_records, list):
            raise MalformedPayloadError("'records' is not a list", provider=self.provider_name)

        records: List[PriceRecord] = []
        skipped = 0
        for raw in raw_records:
            try:
                records.append(PriceRecord.model_validate(raw))
            except PydanticValidationError:
                skipped += 1
        if skipped:
            logger.warning(f"Skipped {skipped} unreadable {self.provider_name} records")
        return records
