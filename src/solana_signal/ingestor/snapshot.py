"""Liquidity snapshot value, its in-process cache, and an optional Redis mirror."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

ALL_FAILED = "All failed"
NOT_POLLED = "Not polled"

DEFAULT_SNAPSHOT_KEY = "solana_signal:snapshot"
DEFAULT_SNAPSHOT_TTL_SECONDS = 600


@dataclass(frozen=True)
class Snapshot:
    """Summary of one completed liquidity poll cycle.

    Attributes:
        token_count: Tokens reported by the winning source (plus auxiliaries).
        last_poll_time: When the cycle finished, or None before the first cycle.
        active_source: Winning source name, or ``"All failed"``.
        backup_used: True when the winner is not the priority-0 source.
        version: Monotonic counter, incremented on every replacement.
    """

    token_count: int
    last_poll_time: datetime | None
    active_source: str
    backup_used: bool
    version: int = 0

    @classmethod
    def initial(cls) -> Snapshot:
        return cls(
            token_count=0,
            last_poll_time=None,
            active_source=NOT_POLLED,
            backup_used=False,
            version=0,
        )

    @property
    def all_failed(self) -> bool:
        return self.active_source == ALL_FAILED

    def to_dict(self) -> dict[str, object]:
        """Serialize to the public read interface."""
        return {
            "tokenCount": self.token_count,
            "lastPoll": self.last_poll_time.isoformat() if self.last_poll_time else None,
            "activeSource": self.active_source,
            "backupUsed": self.backup_used,
        }

    def to_json(self) -> str:
        data = self.to_dict()
        data["version"] = self.version
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> Snapshot:
        data = json.loads(raw)
        last_poll = data.get("lastPoll")
        return cls(
            token_count=int(data["tokenCount"]),
            last_poll_time=datetime.fromisoformat(str(last_poll)) if last_poll else None,
            active_source=str(data["activeSource"]),
            backup_used=bool(data["backupUsed"]),
            version=int(data.get("version", 0)),
        )

    def status_line(self) -> str:
        """Plain-text one-line summary."""
        last = self.last_poll_time.isoformat() if self.last_poll_time else "never"
        source = self.active_source
        if self.backup_used:
            source = f"{source} (backup)"
        return f"Tokens: {self.token_count} | Source: {source} | Last poll: {last}"


class SnapshotCache:
    """Holds the single live :class:`Snapshot`.

    Replacement swaps one reference to an immutable value, so readers on
    the event loop always see a complete snapshot of some finished cycle.
    """

    def __init__(self, initial: Snapshot | None = None) -> None:
        self._current = initial or Snapshot.initial()

    @property
    def current(self) -> Snapshot:
        return self._current

    def replace(
        self,
        *,
        token_count: int,
        active_source: str,
        backup_used: bool,
        polled_at: datetime | None = None,
    ) -> Snapshot:
        """Publish the outcome of a finished cycle and return the new snapshot."""
        if token_count < 0:
            raise ValueError("token_count must be >= 0")
        polled_at = polled_at or datetime.now(UTC)
        previous = self._current
        if previous.last_poll_time is not None and polled_at <= previous.last_poll_time:
            # Keep lastPoll strictly increasing even under clock adjustments.
            polled_at = previous.last_poll_time + timedelta(microseconds=1)
        snapshot = Snapshot(
            token_count=token_count,
            last_poll_time=polled_at,
            active_source=active_source,
            backup_used=backup_used,
            version=previous.version + 1,
        )
        self._current = snapshot
        return snapshot


class SnapshotMirror:
    """Publishes snapshots to Redis for out-of-process readers.

    Mirroring is best-effort: failures are logged and never affect the
    in-process cache.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        key: str = DEFAULT_SNAPSHOT_KEY,
        ttl_seconds: int = DEFAULT_SNAPSHOT_TTL_SECONDS,
    ) -> None:
        self._redis = redis
        self._key = key
        self._ttl = ttl_seconds

    async def publish(self, snapshot: Snapshot) -> bool:
        try:
            await self._redis.setex(self._key, self._ttl, snapshot.to_json())
            return True
        except Exception as e:
            logger.warning("Failed to mirror snapshot v%d to Redis: %s", snapshot.version, e)
            return False

    async def load(self) -> Snapshot | None:
        try:
            raw = await self._redis.get(self._key)
        except Exception as e:
            logger.warning("Failed to read mirrored snapshot: %s", e)
            return None
        if not raw:
            return None
        try:
            if isinstance(raw, bytes):
                raw = raw.decode()
            return Snapshot.from_json(str(raw))
        except Exception as e:
            logger.warning("Failed to parse mirrored snapshot: %s", e)
            return None
