"""Ordered registry of upstream sources per data class."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from solana_signal.config import SourceEntry, SourceSettings
from solana_signal.ingestor.models import LIQUIDITY_AUX_CLASS, LIQUIDITY_CLASS, Source

logger = logging.getLogger(__name__)


class SourceRegistryError(Exception):
    """Raised when the source definitions are inconsistent."""


class SourceRegistry:
    """Immutable, priority-ordered source chains keyed by data class.

    Sources are fixed at construction time. Lookups always return a chain
    sorted by priority, so callers can iterate it as a failover order.

    Example:
        ```python
        registry = SourceRegistry.from_settings(settings.sources)
        for source in registry.for_class("liquidity"):
            ...
        ```
    """

    def __init__(self, sources: Iterable[Source]) -> None:
        by_class: dict[str, list[Source]] = {}
        seen_names: set[str] = set()
        for source in sources:
            if source.name in seen_names:
                raise SourceRegistryError(f"Duplicate source name: {source.name}")
            seen_names.add(source.name)
            by_class.setdefault(source.source_class, []).append(source)

        self._chains: dict[str, tuple[Source, ...]] = {}
        for source_class, chain in by_class.items():
            ordered = sorted(chain, key=lambda s: s.priority)
            priorities = [s.priority for s in ordered]
            if len(set(priorities)) != len(priorities):
                raise SourceRegistryError(f"Duplicate priority in class {source_class!r}")
            self._chains[source_class] = tuple(ordered)

    @classmethod
    def from_entries(
        cls,
        primary: Iterable[SourceEntry],
        *,
        aux: Iterable[SourceEntry] = (),
        headers: Mapping[str, Mapping[str, str]] | None = None,
    ) -> SourceRegistry:
        """Build a registry from parsed ``name=url`` entries."""
        headers = headers or {}
        sources: list[Source] = []
        for source_class, entries in ((LIQUIDITY_CLASS, primary), (LIQUIDITY_AUX_CLASS, aux)):
            for priority, entry in enumerate(entries):
                sources.append(
                    Source(
                        name=entry.name,
                        url=entry.url,
                        source_class=source_class,
                        priority=priority,
                        headers=dict(headers.get(entry.name, {})),
                    )
                )
        unknown = set(headers) - {s.name for s in sources}
        if unknown:
            logger.warning("Headers configured for unknown sources: %s", ", ".join(sorted(unknown)))
        return cls(sources)

    @classmethod
    def from_settings(cls, settings: SourceSettings) -> SourceRegistry:
        return cls.from_entries(
            settings.primary_entries,
            aux=settings.aux_entries,
            headers=settings.source_headers,
        )

    def for_class(self, source_class: str) -> tuple[Source, ...]:
        """Return the chain for ``source_class`` in priority order (empty if unknown)."""
        return self._chains.get(source_class, ())

    def classes(self) -> tuple[str, ...]:
        return tuple(self._chains)

    def get(self, name: str) -> Source | None:
        for chain in self._chains.values():
            for source in chain:
                if source.name == name:
                    return source
        return None

    def __len__(self) -> int:
        return sum(len(chain) for chain in self._chains.values())
