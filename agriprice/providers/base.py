"""Base provider class with common HTTP error handling."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import (
    DataNotAvailableError,
    MalformedPayloadError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from ..models import PriceRecord

logger = logging.getLogger(__name__)


class BaseProvider(ABC):
    """Base class for external price providers.

    Provides:
    - a single GET with timeout, mapped onto the provider error hierarchy
    - safe JSON parsing
    - rate-limit bookkeeping

    Retries are deliberately absent: a failed call is reported once and the
    resolver moves on. Scheduled sync jobs own retrying.
    """

    DEFAULT_TIMEOUT = 15.0

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self.rate_limit_reset: Optional[datetime] = None

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Canonical provider name used in logs and errors."""
        pass

    @abstractmethod
    async def fetch_records(
        self,
        filters: Dict[str, str],
        arrival_date: Optional[date] = None,
        skip_date_filter: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PriceRecord]:
        """Fetch price records matching provider filters."""
        pass

    async def _get(self, client: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
        """GET once, translating transport and status errors.

        Raises:
            ProviderTimeoutError: The request exceeded the timeout
            ProviderRateLimitError: The provider answered 429
            DataNotAvailableError: Any other HTTP or connection failure
        """
        try:
            response = await client.get(url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Request timed out after {self.timeout}s", provider=self.provider_name
            ) from e
        except httpx.HTTPError as e:
            raise DataNotAvailableError(f"Request failed: {e}", provider=self.provider_name) from e

        if response.status_code == 429:
            retry_after_header = response.headers.get("Retry-After", "")
            retry_after = int(retry_after_header) if retry_after_header.isdigit() else 60
            self.rate_limit_reset = datetime.now() + timedelta(seconds=retry_after)
            logger.warning(f"{self.provider_name} rate limited. Retry after {retry_after}s")
            raise ProviderRateLimitError(
                "Rate limit exceeded", provider=self.provider_name, retry_after=retry_after
            )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DataNotAvailableError(
                f"API returned {status}", provider=self.provider_name, details={"status": status}
            ) from e
        return response

    def _parse_json_safe(self, response: httpx.Response) -> Any:
        """Parse a JSON body, raising MalformedPayloadError on failure."""
        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayloadError(
                f"Failed to parse response: {e}", provider=self.provider_name
            ) from e

    def is_rate_limited(self) -> bool:
        return bool(self.rate_limit_reset and datetime.now() < self.rate_limit_reset)
