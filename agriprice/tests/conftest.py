"""
Shared pytest fixtures for agriprice tests.

Import fixtures from here instead of defining them in individual test files.
"""
from __future__ import annotations

import os
from datetime import date

import pytest

# Set test environment before importing application modules
os.environ.setdefault("ENVIRONMENT", "test")

from agriprice.config import get_settings
from agriprice.services.engine import get_engine
from agriprice.services.memory_cache import MemoryCache
from agriprice.services.resolver import TieredResolver
from agriprice.tests.utils import FakeCacheStore, FakePriceStore, FakeProvider

TODAY = date(2024, 6, 20)


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def test_environment():
    """Isolate environment variables and cached singletons per test."""
    old_env = os.environ.copy()
    os.environ["ENVIRONMENT"] = "test"
    get_settings.cache_clear()
    get_engine.cache_clear()
    yield
    os.environ.clear()
    os.environ.update(old_env)
    get_settings.cache_clear()
    get_engine.cache_clear()


@pytest.fixture
def no_backends_env(monkeypatch):
    """Remove every credential so no tier can be configured."""
    for key in (
        "DATA_GOV_API_KEY",
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "SUPABASE_SERVICE_KEY",
    ):
        monkeypatch.delenv(key, raising=False)
    # A developer .env must not leak into these tests
    monkeypatch.chdir(os.path.dirname(__file__))


# ============================================================================
# Collaborator Fixtures
# ============================================================================

@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def cache_store() -> FakeCacheStore:
    return FakeCacheStore()


@pytest.fixture
def price_store() -> FakePriceStore:
    return FakePriceStore()


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache(ttl=600)


@pytest.fixture
def resolver(cache_store, price_store, provider, memory_cache) -> TieredResolver:
    return TieredResolver(
        cache_store=cache_store,
        price_store=price_store,
        provider=provider,
        memory_cache=memory_cache,
        today_fn=lambda: TODAY,
    )
