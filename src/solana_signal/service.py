"""Service orchestrator for Solana Signal.

This module provides the SignalService class that wires together the
liquidity poller, wallet ingestion and win-rate evaluation, and runs the
periodic cycles on a single-flight scheduler.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import aiohttp
from redis.asyncio import Redis

from solana_signal.config import Settings, get_settings
from solana_signal.ingestor.dedup import DedupLedger
from solana_signal.ingestor.fetcher import BoundedFetcher
from solana_signal.ingestor.models import LIQUIDITY_AUX_CLASS, LIQUIDITY_CLASS
from solana_signal.ingestor.poller import Clock, FailoverPoller, utc_now
from solana_signal.ingestor.registry import SourceRegistry
from solana_signal.ingestor.snapshot import Snapshot, SnapshotCache, SnapshotMirror
from solana_signal.profiler.ingest import SwapClassifier, WalletIngestor
from solana_signal.profiler.ledger import WalletSwapLedger
from solana_signal.profiler.winrate import WinRateEvaluator
from solana_signal.scheduler import Scheduler

logger = logging.getLogger(__name__)

LIQUIDITY_JOB = "liquidity"
WALLETS_JOB = "wallets"


class ServiceState(str, Enum):
    """Service lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class ServiceStats:
    """Statistics for the service."""

    started_at: datetime | None = None
    liquidity_cycles: int = 0
    wallet_cycles: int = 0
    snapshots_mirrored: int = 0
    last_error: str | None = None


class SignalService:
    """Main orchestrator for liquidity polling and wallet tracking.

    In-memory state (source registry, snapshot cache, ledgers, evaluator
    and scheduler) exists from construction, so the read interface works
    before :meth:`start`. Network resources are opened by :meth:`start`
    and released by :meth:`stop`.

    Example:
        ```python
        from solana_signal.config import get_settings
        from solana_signal.service import SignalService

        service = SignalService(get_settings())

        await service.start()
        print(service.get_snapshot())
        await service.stop()
        ```
    """

    def __init__(self, settings: Settings | None = None, *, clock: Clock = utc_now) -> None:
        """Initialize the service.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            clock: Time source (UTC) shared by the poller, ingestion and evaluator.
        """
        self._settings = settings or get_settings()
        self._clock = clock
        settings = self._settings

        self._state = ServiceState.STOPPED
        self._stats = ServiceStats()

        self._registry = SourceRegistry.from_settings(settings.sources)
        self._cache = SnapshotCache()
        self._tracked = DedupLedger(max_entries=settings.poll.dedup_max_entries)
        self._seen_events = DedupLedger(max_entries=settings.poll.dedup_max_entries)
        self._wallets = WalletSwapLedger()
        for address, label in settings.wallet.initial_wallet_entries:
            self._wallets.add_wallet(address, label)
        self._classifier = SwapClassifier(
            settings.wallet.keyword_set,
            ignored_mints=settings.wallet.ignored_mint_set,
        )
        self._evaluator = WinRateEvaluator(settings.wallet.survival_threshold)

        self._scheduler = Scheduler()
        self._scheduler.add_job(
            LIQUIDITY_JOB,
            settings.poll.liquidity_interval_seconds,
            self._run_liquidity_cycle,
        )
        self._scheduler.add_job(
            WALLETS_JOB,
            settings.poll.wallet_interval_seconds,
            self._run_wallet_cycle,
        )

        # Network components (initialized in start())
        self._session: aiohttp.ClientSession | None = None
        self._fetcher: BoundedFetcher | None = None
        self._poller: FailoverPoller | None = None
        self._ingestor: WalletIngestor | None = None
        self._redis: Redis | None = None
        self._mirror: SnapshotMirror | None = None

        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> ServiceState:
        """Current service state."""
        return self._state

    @property
    def stats(self) -> ServiceStats:
        """Current service statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == ServiceState.RUNNING

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def snapshot(self) -> Snapshot:
        return self._cache.current

    async def start(self, *, schedule: bool = True) -> None:
        """Start the service.

        Args:
            schedule: If False, open resources without starting the periodic
                timers (cycles then only run via the ``poll_*_once`` methods).

        Raises:
            RuntimeError: If the service is not stopped.
        """
        if self._state != ServiceState.STOPPED:
            raise RuntimeError(f"Cannot start service in state {self._state}")

        self._state = ServiceState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting service...")

        try:
            await self._initialize_components()
            if schedule:
                await self._scheduler.start()
            self._stats.started_at = self._clock()
            self._state = ServiceState.RUNNING
            logger.info("Service started successfully")
        except Exception as e:
            self._state = ServiceState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start service: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop timers, cancel in-flight cycles and release resources."""
        if self._state == ServiceState.STOPPED:
            return

        self._state = ServiceState.STOPPING
        logger.info("Stopping service...")

        if self._stop_event:
            self._stop_event.set()

        await self._scheduler.stop()
        await self._cleanup()

        self._state = ServiceState.STOPPED
        logger.info("Service stopped")

    async def _initialize_components(self) -> None:
        settings = self._settings

        logger.debug("Opening HTTP session...")
        self._session = aiohttp.ClientSession()
        self._fetcher = BoundedFetcher(
            self._session,
            timeout_seconds=settings.fetch.timeout_seconds,
            max_bytes=settings.fetch.max_bytes,
        )

        self._poller = FailoverPoller(
            self._fetcher,
            self._registry,
            self._cache,
            ledger=self._tracked,
            clock=self._clock,
        )

        api_key = (
            settings.wallet.history_api_key.get_secret_value()
            if settings.wallet.history_api_key
            else None
        )
        self._ingestor = WalletIngestor(
            self._fetcher,
            self._wallets,
            url_template=settings.wallet.history_url_template,
            api_key=api_key,
            classifier=self._classifier,
            concurrency=settings.poll.wallet_concurrency,
            seen_events=self._seen_events,
            clock=self._clock,
        )

        if settings.redis.url:
            logger.debug("Initializing Redis snapshot mirror...")
            self._redis = Redis.from_url(settings.redis.url)
            self._mirror = SnapshotMirror(
                self._redis,
                key=settings.redis.snapshot_key,
                ttl_seconds=settings.redis.snapshot_ttl_seconds,
            )

        logger.info(
            "Components initialized: %d primary sources, %d auxiliary, %d wallets",
            len(self._registry.for_class(LIQUIDITY_CLASS)),
            len(self._registry.for_class(LIQUIDITY_AUX_CLASS)),
            len(self._wallets),
        )

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._session:
            await self._session.close()
            self._session = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        self._mirror = None
        self._fetcher = None
        self._poller = None
        self._ingestor = None
        logger.debug("Resources cleaned up")

    async def _run_liquidity_cycle(self) -> None:
        if self._poller is None:
            raise RuntimeError("Service is not started")
        result = await self._poller.run_cycle()
        self._stats.liquidity_cycles += 1
        if self._mirror and await self._mirror.publish(result.snapshot):
            self._stats.snapshots_mirrored += 1

    async def _run_wallet_cycle(self) -> None:
        if self._ingestor is None:
            raise RuntimeError("Service is not started")
        if not len(self._wallets):
            logger.debug("No watched wallets; skipping wallet poll")
            return
        await self._ingestor.ingest_all()
        self._stats.wallet_cycles += 1

    async def poll_liquidity_once(self) -> bool:
        """Run one liquidity cycle now (no-op if one is already running)."""
        return await self._scheduler.trigger(LIQUIDITY_JOB)

    async def poll_wallets_once(self) -> bool:
        """Run one wallet ingestion cycle now (no-op if one is already running)."""
        return await self._scheduler.trigger(WALLETS_JOB)

    # Read / registration interface

    def get_snapshot(self) -> dict[str, object]:
        return self._cache.current.to_dict()

    def get_status_line(self) -> str:
        return self._cache.current.status_line()

    def get_tracked_addresses(self, limit: int = 10) -> dict[str, object]:
        return {
            "count": self._tracked.count,
            "sample": [entry.to_dict() for entry in self._tracked.sample(limit)],
        }

    def add_wallet(self, address: str, label: str | None = None) -> dict[str, object]:
        """Watch a wallet.

        Raises:
            WalletLedgerError: If the address is not a valid Solana address.
        """
        return self._wallets.add_wallet(address, label).summary()

    def remove_wallet(self, address: str) -> bool:
        if not self._wallets.remove_wallet(address):
            return False
        dropped = self._seen_events.discard_source(address.strip())
        logger.debug("Stopped watching %s (%d seen events dropped)", address, dropped)
        return True

    def list_wallets(self) -> list[dict[str, object]]:
        return self._wallets.list_wallets()

    def get_wallet_stats(self, now: datetime | None = None) -> dict[str, object]:
        report = self._evaluator.report(self._wallets.wallets(), now or self._clock())
        return report.to_dict()

    def health(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "snapshotVersion": self._cache.current.version,
            "wallets": len(self._wallets),
            "tracked": self._tracked.count,
            "jobs": {
                name: {
                    "state": job.state.value,
                    "runs": job.stats.runs,
                    "skipped": job.stats.skipped,
                    "lastError": job.stats.last_error,
                }
                for name, job in self._scheduler.jobs.items()
            },
        }

    async def run(self) -> None:
        """Start the service and run until stopped.

        Example:
            ```python
            service = SignalService()
            try:
                await service.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> SignalService:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
