"""Per-wallet swap ledger.

Each watched wallet maps token mints to a :class:`TradeRecord`. The
first observed swap fixes ``first_seen``; every later swap of the same
mint only increments ``swap_count``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

logger = logging.getLogger(__name__)

# Solana addresses are base58-encoded 32-byte keys.
_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class WalletLedgerError(Exception):
    """Raised for invalid wallet registration requests."""


class WalletNotFoundError(WalletLedgerError):
    """Raised when a swap is recorded for a wallet that is not watched."""


def validate_address(address: str) -> str:
    """Return the stripped address, or raise if it is not base58."""
    candidate = address.strip()
    if not _BASE58_ADDRESS.match(candidate):
        raise WalletLedgerError(f"Invalid wallet address: {address!r}")
    return candidate


@dataclass
class TradeRecord:
    """Swap statistics for one mint in one wallet."""

    mint: str
    first_seen: datetime
    swap_count: int = 1

    def to_dict(self) -> dict[str, object]:
        return {
            "mint": self.mint,
            "first_seen": self.first_seen.isoformat(),
            "swap_count": self.swap_count,
        }


@dataclass
class Wallet:
    """A watched wallet and its accumulated trades."""

    address: str
    label: str | None = None
    trades: dict[str, TradeRecord] = field(default_factory=dict)

    @property
    def token_count(self) -> int:
        return len(self.trades)

    def record_swap(self, mint: str, occurred_at: datetime) -> TradeRecord:
        record = self.trades.get(mint)
        if record is None:
            record = TradeRecord(mint=mint, first_seen=occurred_at, swap_count=1)
            self.trades[mint] = record
        else:
            record.swap_count += 1
        return record

    def summary(self) -> dict[str, object]:
        return {"address": self.address, "label": self.label, "tokenCount": self.token_count}


class WalletSwapLedger:
    """Registry of watched wallets and their swap records.

    Wallets are never expired automatically; they live until removed.
    """

    def __init__(self) -> None:
        self._wallets: dict[str, Wallet] = {}

    def add_wallet(self, address: str, label: str | None = None) -> Wallet:
        """Start watching ``address``. Re-adding keeps trades and updates the label."""
        address = validate_address(address)
        wallet = self._wallets.get(address)
        if wallet is None:
            wallet = Wallet(address=address, label=label)
            self._wallets[address] = wallet
            logger.info("Watching wallet %s (%s)", address, label or "no label")
        elif label is not None:
            wallet.label = label
        return wallet

    def remove_wallet(self, address: str) -> bool:
        removed = self._wallets.pop(address.strip(), None)
        if removed is not None:
            logger.info("Stopped watching wallet %s", removed.address)
        return removed is not None

    def get_wallet(self, address: str) -> Wallet | None:
        return self._wallets.get(address.strip())

    def list_wallets(self) -> list[dict[str, object]]:
        return [wallet.summary() for wallet in self._wallets.values()]

    def wallets(self) -> list[Wallet]:
        return list(self._wallets.values())

    def addresses(self) -> list[str]:
        return list(self._wallets)

    def record_swap(self, address: str, mint: str, occurred_at: datetime) -> TradeRecord:
        wallet = self._wallets.get(address)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet is not watched: {address}")
        return wallet.record_swap(mint, occurred_at)

    def __contains__(self, address: object) -> bool:
        return address in self._wallets

    def __len__(self) -> int:
        return len(self._wallets)
