"""Data models for liquidity sources and their upstream response shapes."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

LIQUIDITY_CLASS = "liquidity"
LIQUIDITY_AUX_CLASS = "liquidity-aux"

# Fields checked, in order, for an identifier on each list item.
ITEM_ID_FIELDS = ("ammId", "pairAddress", "address", "id", "mint", "baseMint")

# Wrapper keys that mark a mapping as an envelope rather than a keyed map.
ENVELOPE_KEYS = frozenset({"pairs", "data", "error", "errors"})


@dataclass(frozen=True)
class Source:
    """A candidate upstream endpoint for one data class.

    Attributes:
        name: Unique, human-readable source name (e.g. ``raydium-primary``).
        url: Endpoint returning JSON via HTTP GET.
        source_class: Data class the source serves (e.g. ``liquidity``).
        priority: Position in the class's failover chain (0 = primary).
        headers: Source-specific request headers (auth keys).
    """

    name: str
    url: str
    source_class: str
    priority: int
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_primary(self) -> bool:
        return self.priority == 0


class ShapeKind(str, Enum):
    """Recognized upstream response layouts."""

    KEYED_MAP = "keyed_map"
    PAIR_LIST = "pair_list"
    DATA_LIST = "data_list"
    BARE_LIST = "bare_list"
    UNRECOGNIZED = "unrecognized"


def _item_identifier(item: Any) -> str | None:
    if isinstance(item, str):
        return item or None
    if isinstance(item, Mapping):
        for key in ITEM_ID_FIELDS:
            value = item.get(key)
            if isinstance(value, str) and value:
                return value
    return None


@dataclass(frozen=True)
class KeyedMap:
    """``{"<key>": <value>, ...}`` - one token per key, whatever the values are."""

    entries: Mapping[str, Any]
    kind: ShapeKind = ShapeKind.KEYED_MAP

    @property
    def count(self) -> int:
        return len(self.entries)

    def identifiers(self) -> list[str]:
        return [k for k in self.entries if k]


@dataclass(frozen=True)
class ItemList:
    """An array of pairs/tokens, either bare or under a ``pairs``/``data`` key."""

    items: Sequence[Any]
    kind: ShapeKind

    @property
    def count(self) -> int:
        return len(self.items)

    def identifiers(self) -> list[str]:
        ids = (_item_identifier(item) for item in self.items)
        return [i for i in ids if i is not None]


@dataclass(frozen=True)
class Unrecognized:
    """Anything else. Counts as zero tokens, not as an error."""

    type_name: str
    kind: ShapeKind = ShapeKind.UNRECOGNIZED

    @property
    def count(self) -> int:
        return 0

    def identifiers(self) -> list[str]:
        return []


ResponseShape = Union[KeyedMap, ItemList, Unrecognized]


def classify_payload(payload: Any) -> ResponseShape:
    """Classify a decoded JSON payload into one of the known shapes."""
    if isinstance(payload, list):
        return ItemList(items=payload, kind=ShapeKind.BARE_LIST)
    if isinstance(payload, Mapping):
        pairs = payload.get("pairs")
        if isinstance(pairs, list):
            return ItemList(items=pairs, kind=ShapeKind.PAIR_LIST)
        data = payload.get("data")
        if isinstance(data, list):
            return ItemList(items=data, kind=ShapeKind.DATA_LIST)
        if payload and ENVELOPE_KEYS.isdisjoint(payload):
            return KeyedMap(entries=dict(payload))
    return Unrecognized(type_name=type(payload).__name__)
