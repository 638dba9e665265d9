"""Tests for the service orchestrator."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from solana_signal.config import Settings
from solana_signal.ingestor.fetcher import BoundedFetcher, FetchOutcome, NetworkError
from solana_signal.ingestor.snapshot import NOT_POLLED
from solana_signal.profiler.ledger import WalletLedgerError
from solana_signal.service import LIQUIDITY_JOB, ServiceState, SignalService

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOURCE_A = "https://a.test/pairs"
SOURCE_B = "https://b.test/pairs"
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Create settings with two sources and one seeded wallet."""
    monkeypatch.setenv("LIQUIDITY_SOURCES", f"a={SOURCE_A},b={SOURCE_B}")
    monkeypatch.setenv("LIQUIDITY_AUX_SOURCES", "")
    monkeypatch.setenv("WALLET_INITIAL_WALLETS", f"{WALLET}:seed")
    monkeypatch.setenv("WALLET_HISTORY_URL_TEMPLATE", "https://history.test/{address}")
    monkeypatch.delenv("REDIS_URL", raising=False)
    return Settings(_env_file=None)


def fake_fetcher() -> MagicMock:
    """Fetcher where source A is down, B has two pairs and the wallet has one swap."""
    ts = int((NOW - timedelta(minutes=30)).timestamp())
    responses = {
        SOURCE_A: FetchOutcome(url=SOURCE_A, ok=False, error=NetworkError("refused")),
        SOURCE_B: FetchOutcome(
            url=SOURCE_B,
            ok=True,
            payload={"pairs": [{"pairAddress": "p1"}, {"pairAddress": "p2"}]},
        ),
        f"https://history.test/{WALLET}": FetchOutcome(
            url=f"https://history.test/{WALLET}",
            ok=True,
            payload=[
                {"signature": "s1", "timestamp": ts, "type": "SWAP", "mints": [MINT]},
                {"signature": "s2", "timestamp": ts + 60, "type": "SWAP", "mints": [MINT]},
            ],
        ),
    }

    async def fetch(url: str, **kwargs: Any) -> FetchOutcome:
        return responses[url]

    fetcher = MagicMock(spec=BoundedFetcher)
    fetcher.fetch = AsyncMock(side_effect=fetch)
    return fetcher


class TestServiceReadInterface:
    """The read interface works before start()."""

    def test_initial_state(self, settings: Settings) -> None:
        service = SignalService(settings)

        assert service.state == ServiceState.STOPPED
        assert service.get_snapshot()["activeSource"] == NOT_POLLED
        assert service.get_snapshot()["lastPoll"] is None
        assert service.get_tracked_addresses() == {"count": 0, "sample": []}
        assert service.list_wallets() == [{"address": WALLET, "label": "seed", "tokenCount": 0}]
        assert service.health()["state"] == "stopped"

    def test_wallet_registration(self, settings: Settings) -> None:
        service = SignalService(settings)
        other = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"

        assert service.add_wallet(other, "new") == {
            "address": other,
            "label": "new",
            "tokenCount": 0,
        }
        assert service.remove_wallet(other) is True
        assert service.remove_wallet(other) is False
        with pytest.raises(WalletLedgerError):
            service.add_wallet("not-a-wallet")

    def test_wallet_stats_empty(self, settings: Settings) -> None:
        stats = SignalService(settings).get_wallet_stats(now=NOW)
        assert stats["global"] == {"tokens": 0, "wins": 0, "winRate": 0.0}
        assert stats["survivalThresholdSeconds"] == 300.0


class TestServiceLifecycle:
    """Tests for start/stop and the poll cycles."""

    @pytest.mark.asyncio
    async def test_poll_liquidity_once(self, settings: Settings) -> None:
        with patch("solana_signal.service.BoundedFetcher", return_value=fake_fetcher()):
            service = SignalService(settings)
            await service.start(schedule=False)
            try:
                assert service.state == ServiceState.RUNNING
                assert await service.poll_liquidity_once() is True
            finally:
                await service.stop()

        snapshot = service.get_snapshot()
        assert snapshot["activeSource"] == "b"
        assert snapshot["backupUsed"] is True
        assert snapshot["tokenCount"] == 2
        assert service.get_tracked_addresses()["count"] == 2
        assert service.stats.liquidity_cycles == 1
        assert service.state == ServiceState.STOPPED

    @pytest.mark.asyncio
    async def test_poll_wallets_once(self, settings: Settings) -> None:
        with patch("solana_signal.service.BoundedFetcher", return_value=fake_fetcher()):
            service = SignalService(settings, clock=lambda: NOW)
            await service.start(schedule=False)
            try:
                await service.poll_wallets_once()
            finally:
                await service.stop()

        stats = service.get_wallet_stats(now=NOW)
        assert stats["global"] == {"tokens": 1, "wins": 1, "winRate": 100.0}
        assert service.list_wallets()[0]["tokenCount"] == 1

    @pytest.mark.asyncio
    async def test_rewatched_wallet_rebuilds_from_history(self, settings: Settings) -> None:
        with patch("solana_signal.service.BoundedFetcher", return_value=fake_fetcher()):
            service = SignalService(settings, clock=lambda: NOW)
            await service.start(schedule=False)
            try:
                await service.poll_wallets_once()
                assert service.remove_wallet(WALLET) is True
                service.add_wallet(WALLET, "again")
                await service.poll_wallets_once()
            finally:
                await service.stop()

        assert service.list_wallets() == [{"address": WALLET, "label": "again", "tokenCount": 1}]
        stats = service.get_wallet_stats(now=NOW)
        assert stats["global"] == {"tokens": 1, "wins": 1, "winRate": 100.0}

    @pytest.mark.asyncio
    async def test_cycle_before_start_is_contained(self, settings: Settings) -> None:
        service = SignalService(settings)

        assert await service.poll_liquidity_once() is True

        job = service.scheduler.get(LIQUIDITY_JOB)
        assert job.stats.failures == 1
        assert job.stats.last_error == "Service is not started"
        assert service.get_snapshot()["activeSource"] == NOT_POLLED

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, settings: Settings) -> None:
        with patch("solana_signal.service.BoundedFetcher", return_value=fake_fetcher()):
            service = SignalService(settings)
            await service.start(schedule=False)
            try:
                with pytest.raises(RuntimeError):
                    await service.start()
            finally:
                await service.stop()

    @pytest.mark.asyncio
    async def test_context_manager_runs_scheduled_cycle(self, settings: Settings) -> None:
        with patch("solana_signal.service.BoundedFetcher", return_value=fake_fetcher()):
            async with SignalService(settings) as service:
                for _ in range(100):
                    if service.snapshot.version >= 1:
                        break
                    await asyncio.sleep(0.01)
                assert service.is_running

        assert service.snapshot.version >= 1
        assert service.state == ServiceState.STOPPED

    @pytest.mark.asyncio
    async def test_snapshot_mirrored_to_redis(
        self, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
        settings = Settings(_env_file=None)
        redis = AsyncMock()

        with (
            patch("solana_signal.service.BoundedFetcher", return_value=fake_fetcher()),
            patch("solana_signal.service.Redis") as redis_cls,
        ):
            redis_cls.from_url.return_value = redis
            service = SignalService(settings)
            await service.start(schedule=False)
            try:
                await service.poll_liquidity_once()
            finally:
                await service.stop()

        redis_cls.from_url.assert_called_once_with("redis://localhost:6379/0")
        redis.setex.assert_awaited_once()
        assert service.stats.snapshots_mirrored == 1
        redis.aclose.assert_awaited_once()
