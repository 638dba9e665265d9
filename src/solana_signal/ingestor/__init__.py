"""Data ingestion layer - bounded fetching and liquidity source failover."""

from solana_signal.ingestor.dedup import DedupLedger, TrackedAddress
from solana_signal.ingestor.fetcher import (
    BoundedFetcher,
    FetchError,
    FetchOutcome,
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
    ParseError,
)
from solana_signal.ingestor.models import Source, classify_payload
from solana_signal.ingestor.poller import FailoverPoller, PollResult
from solana_signal.ingestor.registry import SourceRegistry, SourceRegistryError
from solana_signal.ingestor.snapshot import Snapshot, SnapshotCache, SnapshotMirror

__all__ = [
    "BoundedFetcher",
    "DedupLedger",
    "FailoverPoller",
    "FetchError",
    "FetchOutcome",
    "FetchTimeoutError",
    "HttpStatusError",
    "NetworkError",
    "ParseError",
    "PollResult",
    "Snapshot",
    "SnapshotCache",
    "SnapshotMirror",
    "Source",
    "SourceRegistry",
    "SourceRegistryError",
    "TrackedAddress",
    "classify_payload",
]
