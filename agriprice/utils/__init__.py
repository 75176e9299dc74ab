"""Utility functions for agriprice."""
from .dates import (
    PROVIDER_DATE_FORMAT,
    chunked,
    days_ago,
    iter_dates,
    parse_date,
    to_provider_date,
    today,
)

__all__ = [
    'PROVIDER_DATE_FORMAT',
    'chunked',
    'days_ago',
    'iter_dates',
    'parse_date',
    'to_provider_date',
    'today',
]
