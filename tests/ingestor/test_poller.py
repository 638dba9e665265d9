"""Tests for the failover poller."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from solana_signal.ingestor.dedup import DedupLedger
from solana_signal.ingestor.fetcher import (
    BoundedFetcher,
    FetchError,
    FetchOutcome,
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
    ParseError,
)
from solana_signal.ingestor.models import Source
from solana_signal.ingestor.poller import AttemptStatus, FailoverPoller, PollState
from solana_signal.ingestor.registry import SourceRegistry
from solana_signal.ingestor.snapshot import ALL_FAILED, NOT_POLLED, SnapshotCache

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def ok(url: str, payload: Any) -> FetchOutcome:
    return FetchOutcome(url=url, ok=True, payload=payload, byte_count=100, status=200)


def failed(url: str, error: FetchError) -> FetchOutcome:
    return FetchOutcome(url=url, ok=False, error=error)


def pairs(*ids: str) -> dict[str, list[dict[str, str]]]:
    return {"pairs": [{"pairAddress": i} for i in ids]}


def make_fetcher(responses: dict[str, FetchOutcome | Exception]) -> MagicMock:
    """Build a fetcher whose fetch() answers by URL."""

    async def fetch(url: str, **kwargs: Any) -> FetchOutcome:
        response = responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    fetcher = MagicMock(spec=BoundedFetcher)
    fetcher.fetch = AsyncMock(side_effect=fetch)
    return fetcher


def ticking_clock(start: datetime = T0) -> Callable[[], datetime]:
    state = {"now": start}

    def clock() -> datetime:
        state["now"] += timedelta(seconds=1)
        return state["now"]

    return clock


class TestFailoverPoller:
    """Tests for FailoverPoller."""

    @pytest.mark.asyncio
    async def test_primary_success_stops_chain(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher({a: ok(a, pairs("p1", "p2")), b: ok(b, pairs("x")), c: ok(c, [])})
        cache = SnapshotCache()
        poller = FailoverPoller(fetcher, SourceRegistry(primary_sources), cache, clock=ticking_clock())

        result = await poller.run_cycle()

        assert result.snapshot.active_source == "raydium-primary"
        assert result.snapshot.token_count == 2
        assert result.snapshot.backup_used is False
        assert fetcher.fetch.await_count == 1
        assert poller.state == PollState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_failed_primary_falls_back(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher(
            {
                a: failed(a, NetworkError("connection refused")),
                b: ok(b, pairs("1", "2", "3", "4", "5")),
                c: ok(c, pairs("never")),
            }
        )
        cache = SnapshotCache()
        poller = FailoverPoller(fetcher, SourceRegistry(primary_sources), cache, clock=ticking_clock())

        result = await poller.run_cycle()

        snapshot = cache.current
        assert snapshot.active_source == "backup-1"
        assert snapshot.backup_used is True
        assert snapshot.token_count == 5
        assert [a.status for a in result.primary.attempts] == [
            AttemptStatus.NETWORK_ERROR,
            AttemptStatus.USABLE,
        ]
        assert poller.stats.backup_cycles == 1

    @pytest.mark.asyncio
    async def test_empty_result_is_not_usable(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher({a: ok(a, pairs()), b: ok(b, {"data": ["m1", "m2", "m3"]}), c: ok(c, [])})
        cache = SnapshotCache()
        poller = FailoverPoller(fetcher, SourceRegistry(primary_sources), cache, clock=ticking_clock())

        result = await poller.run_cycle()

        assert cache.current.active_source == "backup-1"
        assert cache.current.token_count == 3
        assert result.primary.attempts[0].status == AttemptStatus.EMPTY

    @pytest.mark.asyncio
    async def test_unrecognized_shape_is_empty(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher(
            {a: ok(a, {"error": "rate limited"}), b: ok(b, {"m1": "SOL/M1"}), c: ok(c, [])}
        )
        poller = FailoverPoller(fetcher, SourceRegistry(primary_sources), SnapshotCache(), clock=ticking_clock())

        result = await poller.run_cycle()

        assert result.snapshot.active_source == "backup-1"
        assert result.snapshot.token_count == 1

    @pytest.mark.asyncio
    async def test_price_map_source_is_usable(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher(
            {a: ok(a, {"mintA": 0.123, "mintB": 4.5}), b: ok(b, pairs("x")), c: ok(c, [])}
        )
        poller = FailoverPoller(fetcher, SourceRegistry(primary_sources), SnapshotCache(), clock=ticking_clock())

        result = await poller.run_cycle()

        assert result.snapshot.active_source == "raydium-primary"
        assert result.snapshot.backup_used is False
        assert result.snapshot.token_count == 2

    @pytest.mark.asyncio
    async def test_all_failed(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher(
            {
                a: failed(a, FetchTimeoutError("timed out")),
                b: failed(b, HttpStatusError(503)),
                c: failed(c, ParseError("truncated")),
            }
        )
        cache = SnapshotCache()
        poller = FailoverPoller(fetcher, SourceRegistry(primary_sources), cache, clock=ticking_clock())
        assert cache.current.active_source == NOT_POLLED

        first = await poller.run_cycle()
        second = await poller.run_cycle()

        assert first.snapshot.active_source == ALL_FAILED
        assert first.snapshot.token_count == 0
        assert first.snapshot.backup_used is False
        assert first.snapshot.last_poll_time is not None
        assert second.snapshot.last_poll_time > first.snapshot.last_poll_time
        assert [a.status for a in first.primary.attempts] == [
            AttemptStatus.TIMEOUT,
            AttemptStatus.HTTP_ERROR,
            AttemptStatus.PARSE_ERROR,
        ]
        assert poller.state == PollState.FAILED
        assert poller.stats.failed_cycles == 2
        assert "backup-1: HTTP 503" in (poller.stats.last_error or "")

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher({a: RuntimeError("bug"), b: ok(b, pairs("x")), c: ok(c, [])})
        poller = FailoverPoller(fetcher, SourceRegistry(primary_sources), SnapshotCache(), clock=ticking_clock())

        result = await poller.run_cycle()

        assert result.primary.attempts[0].status == AttemptStatus.ERROR
        assert result.snapshot.active_source == "backup-1"

    @pytest.mark.asyncio
    async def test_source_headers_are_forwarded(self) -> None:
        source = Source(
            name="keyed",
            url="https://keyed.test",
            source_class="liquidity",
            priority=0,
            headers={"x-api-key": "k"},
        )
        fetcher = make_fetcher({source.url: ok(source.url, pairs("x"))})
        poller = FailoverPoller(fetcher, SourceRegistry([source]), SnapshotCache(), clock=ticking_clock())

        await poller.run_cycle()

        fetcher.fetch.assert_awaited_once_with(source.url, headers={"x-api-key": "k"})

    @pytest.mark.asyncio
    async def test_auxiliary_adds_to_count(
        self, primary_sources: list[Source], aux_source: Source
    ) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher(
            {
                a: ok(a, pairs("p1", "p2", "p3")),
                b: ok(b, []),
                c: ok(c, []),
                aux_source.url: ok(aux_source.url, ["pumpA", "pumpB"]),
            }
        )
        poller = FailoverPoller(
            fetcher,
            SourceRegistry([*primary_sources, aux_source]),
            SnapshotCache(),
            clock=ticking_clock(),
        )

        result = await poller.run_cycle()

        assert result.snapshot.token_count == 5
        assert result.snapshot.active_source == "raydium-primary"
        assert result.snapshot.backup_used is False
        assert result.auxiliary[0].token_count == 2

    @pytest.mark.asyncio
    async def test_auxiliary_failure_does_not_affect_primary(
        self, primary_sources: list[Source], aux_source: Source
    ) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher(
            {
                a: ok(a, pairs("p1")),
                b: ok(b, []),
                c: ok(c, []),
                aux_source.url: failed(aux_source.url, NetworkError("down")),
            }
        )
        poller = FailoverPoller(
            fetcher,
            SourceRegistry([*primary_sources, aux_source]),
            SnapshotCache(),
            clock=ticking_clock(),
        )

        result = await poller.run_cycle()

        assert result.snapshot.token_count == 1
        assert result.snapshot.active_source == "raydium-primary"
        assert result.succeeded is True

    @pytest.mark.asyncio
    async def test_winner_identifiers_recorded_in_ledger(self, primary_sources: list[Source]) -> None:
        a, b, c = (s.url for s in primary_sources)
        fetcher = make_fetcher(
            {a: failed(a, NetworkError("down")), b: ok(b, pairs("p1", "p2")), c: ok(c, [])}
        )
        ledger = DedupLedger()
        poller = FailoverPoller(
            fetcher,
            SourceRegistry(primary_sources),
            SnapshotCache(),
            ledger=ledger,
            clock=ticking_clock(),
        )

        await poller.run_cycle()
        await poller.run_cycle()

        assert len(ledger) == 2
        entry = ledger.get("p1")
        assert entry is not None
        assert entry.source == "backup-1"
        assert entry.last_seen > entry.first_seen

    @pytest.mark.asyncio
    async def test_no_sources_configured(self) -> None:
        fetcher = make_fetcher({})
        poller = FailoverPoller(fetcher, SourceRegistry([]), SnapshotCache(), clock=ticking_clock())

        result = await poller.run_cycle()

        assert result.snapshot.active_source == ALL_FAILED
        assert poller.stats.last_error == "no sources configured"
