"""Failover poller for redundant liquidity sources.

Each cycle walks the primary chain in strict priority order and stops at
the first source that returns usable data. Auxiliary sources are polled
alongside it and only add to the token count. Whatever happens, the cycle
ends by replacing the snapshot, so ``lastPoll`` always advances.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from solana_signal.ingestor.dedup import DedupLedger
from solana_signal.ingestor.fetcher import (
    BoundedFetcher,
    FetchOutcome,
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
    ParseError,
)
from solana_signal.ingestor.models import (
    LIQUIDITY_AUX_CLASS,
    LIQUIDITY_CLASS,
    ResponseShape,
    Source,
    classify_payload,
)
from solana_signal.ingestor.registry import SourceRegistry
from solana_signal.ingestor.snapshot import ALL_FAILED, Snapshot, SnapshotCache

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class PollState(str, Enum):
    """State of the most recent poll cycle."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    """Classification of a single source attempt."""

    USABLE = "usable"
    EMPTY = "empty"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    ERROR = "error"


@dataclass(frozen=True)
class SourceAttempt:
    """What happened when one source was tried."""

    source: str
    priority: int
    status: AttemptStatus
    token_count: int = 0
    byte_count: int = 0
    error: str | None = None

    @property
    def usable(self) -> bool:
        return self.status == AttemptStatus.USABLE


@dataclass(frozen=True)
class ChainResult:
    """Outcome of walking one source chain."""

    source_class: str
    winner: Source | None
    token_count: int
    attempts: tuple[SourceAttempt, ...]

    @property
    def succeeded(self) -> bool:
        return self.winner is not None

    @property
    def backup_used(self) -> bool:
        return self.winner is not None and not self.winner.is_primary


@dataclass(frozen=True)
class PollResult:
    """Outcome of one full poll cycle."""

    snapshot: Snapshot
    primary: ChainResult
    auxiliary: tuple[ChainResult, ...]
    started_at: datetime
    finished_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.primary.succeeded

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class PollStats:
    """Statistics for the failover poller."""

    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    backup_cycles: int = 0
    last_cycle_time: datetime | None = None
    last_error: str | None = None


def _failure_status(outcome: FetchOutcome) -> AttemptStatus:
    error = outcome.error
    if isinstance(error, FetchTimeoutError):
        return AttemptStatus.TIMEOUT
    if isinstance(error, NetworkError):
        return AttemptStatus.NETWORK_ERROR
    if isinstance(error, HttpStatusError):
        return AttemptStatus.HTTP_ERROR
    if isinstance(error, ParseError):
        return AttemptStatus.PARSE_ERROR
    return AttemptStatus.ERROR


class FailoverPoller:
    """Polls a source registry and publishes the result as a snapshot.

    Example:
        ```python
        poller = FailoverPoller(fetcher, registry, SnapshotCache(), ledger=DedupLedger())
        result = await poller.run_cycle()
        print(result.snapshot.status_line())
        ```
    """

    def __init__(
        self,
        fetcher: BoundedFetcher,
        registry: SourceRegistry,
        cache: SnapshotCache,
        *,
        ledger: DedupLedger | None = None,
        primary_class: str = LIQUIDITY_CLASS,
        aux_class: str = LIQUIDITY_AUX_CLASS,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the poller.

        Args:
            fetcher: Bounded fetcher used for every source call.
            registry: Source chains keyed by data class.
            cache: Snapshot cache replaced at the end of every cycle.
            ledger: Optional ledger that receives identifiers from usable results.
            primary_class: Data class walked as the failover chain.
            aux_class: Data class whose sources only add to the count.
            clock: Time source (UTC).
        """
        self._fetcher = fetcher
        self._registry = registry
        self._cache = cache
        self._ledger = ledger
        self._primary_class = primary_class
        self._aux_class = aux_class
        self._clock = clock

        self._state = PollState.IDLE
        self._stats = PollStats()
        self._last_result: PollResult | None = None

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def stats(self) -> PollStats:
        return self._stats

    @property
    def last_result(self) -> PollResult | None:
        return self._last_result

    async def run_cycle(self) -> PollResult:
        """Run one cycle and replace the snapshot with its outcome."""
        started_at = self._clock()
        self._state = PollState.RUNNING
        self._stats.total_cycles += 1

        aux_sources = self._registry.for_class(self._aux_class)
        primary, *auxiliary = await asyncio.gather(
            self.poll_chain(self._registry.for_class(self._primary_class)),
            *(self.poll_chain((source,)) for source in aux_sources),
        )

        aux_count = sum(r.token_count for r in auxiliary)
        token_count = primary.token_count + aux_count
        active_source = primary.winner.name if primary.winner else ALL_FAILED

        finished_at = self._clock()
        snapshot = self._cache.replace(
            token_count=token_count,
            active_source=active_source,
            backup_used=primary.backup_used,
            polled_at=finished_at,
        )

        if primary.succeeded:
            self._state = PollState.SUCCEEDED
            self._stats.successful_cycles += 1
            if primary.backup_used:
                self._stats.backup_cycles += 1
            self._stats.last_error = None
            logger.info(
                "Liquidity cycle succeeded via %s%s: %d tokens (%d auxiliary)",
                active_source,
                " (backup)" if primary.backup_used else "",
                token_count,
                aux_count,
            )
        else:
            self._state = PollState.FAILED
            self._stats.failed_cycles += 1
            self._stats.last_error = "; ".join(
                f"{a.source}: {a.error or a.status.value}" for a in primary.attempts
            ) or "no sources configured"
            logger.warning(
                "Liquidity cycle failed: all %d sources exhausted (%s)",
                len(primary.attempts),
                self._stats.last_error,
            )
        self._stats.last_cycle_time = finished_at

        result = PollResult(
            snapshot=snapshot,
            primary=primary,
            auxiliary=tuple(auxiliary),
            started_at=started_at,
            finished_at=finished_at,
        )
        self._last_result = result
        return result

    async def poll_chain(self, sources: Sequence[Source]) -> ChainResult:
        """Try ``sources`` in order and stop at the first usable one."""
        source_class = sources[0].source_class if sources else self._primary_class
        attempts: list[SourceAttempt] = []
        for source in sources:
            attempt, shape = await self._attempt(source)
            attempts.append(attempt)
            if attempt.usable and shape is not None:
                self._record_identifiers(source, shape)
                return ChainResult(
                    source_class=source_class,
                    winner=source,
                    token_count=attempt.token_count,
                    attempts=tuple(attempts),
                )
        return ChainResult(
            source_class=source_class,
            winner=None,
            token_count=0,
            attempts=tuple(attempts),
        )

    async def _attempt(self, source: Source) -> tuple[SourceAttempt, ResponseShape | None]:
        try:
            outcome = await self._fetcher.fetch(source.url, headers=source.headers)
        except Exception as e:
            logger.warning("Source %s raised unexpectedly: %s", source.name, e)
            return (
                SourceAttempt(
                    source=source.name,
                    priority=source.priority,
                    status=AttemptStatus.ERROR,
                    error=str(e),
                ),
                None,
            )

        if not outcome.ok:
            status = _failure_status(outcome)
            logger.warning(
                "Source %s failed (%s): %s", source.name, status.value, outcome.error_message
            )
            return (
                SourceAttempt(
                    source=source.name,
                    priority=source.priority,
                    status=status,
                    byte_count=outcome.byte_count,
                    error=outcome.error_message,
                ),
                None,
            )

        shape = classify_payload(outcome.payload)
        if shape.count == 0:
            logger.warning(
                "Source %s returned no usable data (shape=%s)", source.name, shape.kind.value
            )
            return (
                SourceAttempt(
                    source=source.name,
                    priority=source.priority,
                    status=AttemptStatus.EMPTY,
                    byte_count=outcome.byte_count,
                ),
                None,
            )

        logger.debug(
            "Source %s usable: %d tokens (shape=%s)", source.name, shape.count, shape.kind.value
        )
        return (
            SourceAttempt(
                source=source.name,
                priority=source.priority,
                status=AttemptStatus.USABLE,
                token_count=shape.count,
                byte_count=outcome.byte_count,
            ),
            shape,
        )

    def _record_identifiers(self, source: Source, shape: ResponseShape) -> None:
        if self._ledger is None:
            return
        now = self._clock()
        new = 0
        for identifier in shape.identifiers():
            if self._ledger.upsert(identifier, source.name, now):
                new += 1
        if new:
            logger.debug("Tracked %d new identifiers from %s", new, source.name)
