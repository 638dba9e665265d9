"""Swap-event ingestion for watched wallets.

Fetches each wallet's transaction history, keeps only swap-like events,
and records them in the :class:`WalletSwapLedger`. Wallets are processed
independently: one wallet's failure is logged and recorded, never raised
to the batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from solana_signal.ingestor.dedup import DedupLedger
from solana_signal.ingestor.fetcher import BoundedFetcher
from solana_signal.profiler.ledger import WalletNotFoundError, WalletSwapLedger

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
EVENT_LIST_KEYS = ("data", "transactions", "result")


class WalletIngestError(Exception):
    """Raised when one wallet's history cannot be ingested."""

    def __init__(self, address: str, message: str) -> None:
        super().__init__(f"{address}: {message}")
        self.address = address


@dataclass(frozen=True)
class SwapEvent:
    """Provider-neutral transaction event from a wallet's history."""

    wallet: str
    occurred_at: datetime
    kind_hint: str
    mints: tuple[str, ...]
    signature: str | None = None

    @property
    def event_key(self) -> str:
        """Identity of the event within this wallet's history."""
        if self.signature:
            return f"{self.wallet}:{self.signature}"
        return f"{self.wallet}:{self.occurred_at.isoformat()}:{self.kind_hint}:{','.join(self.mints)}"


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            value = float(raw)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts <= 0:
            return None
        if ts >= 1e12:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    return None


def _event_mints(item: Mapping[str, Any]) -> tuple[str, ...]:
    mints: list[str] = []
    transfers = item.get("tokenTransfers")
    if isinstance(transfers, list):
        for transfer in transfers:
            if isinstance(transfer, Mapping):
                mint = transfer.get("mint")
                if isinstance(mint, str) and mint:
                    mints.append(mint)
    extra = item.get("mints")
    if isinstance(extra, list):
        mints.extend(m for m in extra if isinstance(m, str) and m)
    # Preserve first-appearance order while dropping repeats.
    return tuple(dict.fromkeys(mints))


def parse_swap_events(wallet: str, payload: Any) -> list[SwapEvent]:
    """Map a transaction-history payload to :class:`SwapEvent` values.

    Accepts a top-level list or a mapping with the list under one of
    ``data``, ``transactions`` or ``result``. Items without a usable
    timestamp are skipped.
    """
    items: Any = payload
    if isinstance(payload, Mapping):
        items = next(
            (payload[k] for k in EVENT_LIST_KEYS if isinstance(payload.get(k), list)),
            [],
        )
    if not isinstance(items, list):
        return []

    events: list[SwapEvent] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        occurred_at = _parse_timestamp(item.get("timestamp", item.get("blockTime")))
        if occurred_at is None:
            continue
        hint = " ".join(
            str(item[k]) for k in ("type", "source") if isinstance(item.get(k), str) and item[k]
        )
        signature = item.get("signature")
        events.append(
            SwapEvent(
                wallet=wallet,
                occurred_at=occurred_at,
                kind_hint=hint,
                mints=_event_mints(item),
                signature=signature if isinstance(signature, str) and signature else None,
            )
        )
    return events


class SwapClassifier:
    """Decides which events are swaps and which mints they trade."""

    def __init__(self, keywords: Iterable[str], *, ignored_mints: Iterable[str] = ()) -> None:
        self._keywords = frozenset(k.upper() for k in keywords if k)
        if not self._keywords:
            raise ValueError("At least one swap keyword is required")
        self._ignored = frozenset(ignored_mints)

    def is_swap(self, event: SwapEvent) -> bool:
        hint = event.kind_hint.upper()
        return any(keyword in hint for keyword in self._keywords)

    def traded_mints(self, event: SwapEvent) -> tuple[str, ...]:
        return tuple(m for m in event.mints if m not in self._ignored)


@dataclass
class IngestStats:
    """Statistics for wallet ingestion runs."""

    total_runs: int = 0
    wallets_polled: int = 0
    wallets_failed: int = 0
    swaps_recorded: int = 0
    events_discarded: int = 0
    last_run_time: datetime | None = None
    failures: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class IngestRunResult:
    """Outcome of one pass over all watched wallets."""

    succeeded: tuple[str, ...]
    failed: Mapping[str, str]
    swaps_recorded: int


class WalletIngestor:
    """Polls watched wallets' transaction history into the swap ledger.

    Example:
        ```python
        ingestor = WalletIngestor(
            fetcher,
            ledger,
            url_template="https://api.helius.xyz/v0/addresses/{address}/transactions?api-key={api_key}",
            api_key="...",
            classifier=SwapClassifier(["SWAP", "RAYDIUM"]),
        )
        result = await ingestor.ingest_all()
        ```
    """

    def __init__(
        self,
        fetcher: BoundedFetcher,
        ledger: WalletSwapLedger,
        *,
        url_template: str,
        classifier: SwapClassifier,
        api_key: str | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        seen_events: DedupLedger | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._fetcher = fetcher
        self._ledger = ledger
        self._url_template = url_template
        self._classifier = classifier
        self._api_key = api_key or ""
        self._concurrency = max(1, concurrency)
        self._seen = seen_events if seen_events is not None else DedupLedger()
        self._clock = clock
        self._stats = IngestStats()

    @property
    def stats(self) -> IngestStats:
        return self._stats

    def history_url(self, address: str) -> str:
        return self._url_template.format(address=address, api_key=self._api_key)

    async def ingest_wallet(self, address: str) -> int:
        """Fetch and record one wallet's swaps.

        Returns:
            Number of (wallet, mint) swaps recorded.

        Raises:
            WalletIngestError: If the history cannot be fetched.
        """
        outcome = await self._fetcher.fetch(self.history_url(address))
        if not outcome.ok:
            raise WalletIngestError(address, outcome.error_message or "fetch failed")

        events = sorted(parse_swap_events(address, outcome.payload), key=lambda e: e.occurred_at)
        recorded = 0
        discarded = 0
        now = self._clock()
        removed = False
        for event in events:
            if not self._classifier.is_swap(event):
                discarded += 1
                continue
            if not self._seen.upsert(event.event_key, address, now):
                continue
            for mint in self._classifier.traded_mints(event):
                try:
                    self._ledger.record_swap(address, mint, event.occurred_at)
                except WalletNotFoundError:
                    logger.debug("Wallet %s was removed during ingestion", address)
                    removed = True
                    break
                recorded += 1
            if removed:
                break

        self._stats.events_discarded += discarded
        logger.debug(
            "Wallet %s: %d events, %d swaps recorded, %d discarded",
            address,
            len(events),
            recorded,
            discarded,
        )
        return recorded

    async def ingest_all(self) -> IngestRunResult:
        """Ingest every watched wallet; failures are isolated per wallet."""
        addresses = self._ledger.addresses()
        self._stats.total_runs += 1
        semaphore = asyncio.Semaphore(self._concurrency)

        async def ingest_one(address: str) -> int:
            async with semaphore:
                return await self.ingest_wallet(address)

        results = await asyncio.gather(
            *(ingest_one(a) for a in addresses),
            return_exceptions=True,
        )

        succeeded: list[str] = []
        failed: dict[str, str] = {}
        swaps = 0
        for address, result in zip(addresses, results, strict=True):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("Wallet ingestion failed for %s: %s", address, result)
                failed[address] = str(result)
                self._stats.failures[address] = str(result)
                continue
            succeeded.append(address)
            swaps += result
            self._stats.failures.pop(address, None)

        self._stats.wallets_polled += len(addresses)
        self._stats.wallets_failed += len(failed)
        self._stats.swaps_recorded += swaps
        self._stats.last_run_time = self._clock()
        logger.info(
            "Wallet poll: %d wallets, %d failed, %d swaps recorded",
            len(addresses),
            len(failed),
            swaps,
        )
        return IngestRunResult(succeeded=tuple(succeeded), failed=failed, swaps_recorded=swaps)
