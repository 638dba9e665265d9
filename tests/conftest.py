"""Pytest configuration and fixtures."""

from datetime import UTC, datetime

import pytest

from solana_signal.ingestor.models import LIQUIDITY_AUX_CLASS, LIQUIDITY_CLASS, Source


@pytest.fixture
def sample_wallet_address() -> str:
    """Sample Solana wallet address for testing."""
    return "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


@pytest.fixture
def fixed_now() -> datetime:
    """A fixed UTC instant used as "now" in time-dependent tests."""
    return datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def primary_sources() -> list[Source]:
    """A three-source liquidity failover chain."""
    return [
        Source(name="raydium-primary", url="https://a.test/pairs", source_class=LIQUIDITY_CLASS, priority=0),
        Source(name="backup-1", url="https://b.test/search", source_class=LIQUIDITY_CLASS, priority=1),
        Source(name="backup-2", url="https://c.test/tokens", source_class=LIQUIDITY_CLASS, priority=2),
    ]


@pytest.fixture
def aux_source() -> Source:
    """A single auxiliary liquidity source."""
    return Source(name="pump-aux", url="https://d.test/pump", source_class=LIQUIDITY_AUX_CLASS, priority=0)
