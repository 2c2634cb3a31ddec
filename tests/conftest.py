"""Shared pytest fixtures for staybook tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

TEST_SIGNING_SECRET = "test_quote_signing_secret_32bytes!"


@pytest.fixture(autouse=True)
def _quote_signing_secret(monkeypatch):
    """Quotes are signed on creation; every test needs a secret."""
    monkeypatch.setenv("QUOTE_SIGNING_SECRET", TEST_SIGNING_SECRET)


@pytest.fixture
def clock():
    from staybook.infra.time import ManualClock

    return ManualClock()


@pytest.fixture
def quote_cache(clock):
    from staybook.domain.quote_cache import QuoteCache

    return QuoteCache(ttl_seconds=300, max_entries=100, clock=clock)
