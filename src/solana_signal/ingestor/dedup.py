"""First-seen / last-seen ledger for identifiers observed across polls."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10


@dataclass(frozen=True)
class TrackedAddress:
    """One deduplicated identifier.

    ``source`` and ``first_seen`` are fixed by the first observation;
    later observations only move ``last_seen`` forward.
    """

    address: str
    source: str
    first_seen: datetime
    last_seen: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "address": self.address,
            "source": self.source,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
        }


class DedupLedger:
    """Mapping of identifier to :class:`TrackedAddress`.

    Entries are kept in least-recently-seen order so that an optional
    ``max_entries`` bound can evict the stalest identifier first.
    Without a bound the ledger grows for the lifetime of the process.
    """

    def __init__(self, *, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._entries: OrderedDict[str, TrackedAddress] = OrderedDict()
        self._max_entries = max_entries
        self._evicted = 0

    def upsert(self, address: str, source: str, now: datetime) -> bool:
        """Record a sighting of ``address``.

        Returns:
            True if the address was not in the ledger before this call.
        """
        existing = self._entries.get(address)
        if existing is not None:
            if now > existing.last_seen:
                self._entries[address] = replace(existing, last_seen=now)
                self._entries.move_to_end(address)
            return False

        self._entries[address] = TrackedAddress(
            address=address,
            source=source,
            first_seen=now,
            last_seen=now,
        )
        self._evict_overflow()
        return True

    def _evict_overflow(self) -> None:
        if self._max_entries is None:
            return
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
            if self._evicted == 0:
                logger.warning(
                    "Dedup ledger reached capacity (%d); evicting least-recently-seen entries",
                    self._max_entries,
                )
            self._evicted += 1

    def get(self, address: str) -> TrackedAddress | None:
        return self._entries.get(address)

    def discard_source(self, source: str) -> int:
        """Drop every entry first seen from ``source``; returns how many were dropped."""
        stale = [key for key, entry in self._entries.items() if entry.source == source]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def evicted(self) -> int:
        """Number of entries dropped by the capacity bound."""
        return self._evicted

    def sample(self, limit: int = DEFAULT_SAMPLE_SIZE) -> list[TrackedAddress]:
        """Return up to ``limit`` entries, most recently seen first."""
        if limit <= 0:
            return []
        result: list[TrackedAddress] = []
        for address in reversed(self._entries):
            result.append(self._entries[address])
            if len(result) >= limit:
                break
        return result
