"""Win-rate evaluation over the wallet swap ledger.

A token counts as a win when it has survived at least the configured
threshold since the wallet's first swap of it, and the wallet swapped it
at least twice. Both conditions are required.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from solana_signal.profiler.ledger import TradeRecord, Wallet

MIN_WIN_SWAP_COUNT = 2


@dataclass(frozen=True)
class WalletWinRate:
    """Win-rate for one wallet."""

    address: str
    label: str | None
    tokens: int
    wins: int
    winning_mints: tuple[str, ...] = ()

    @property
    def win_rate(self) -> float:
        return self.wins / self.tokens if self.tokens else 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "address": self.address,
            "label": self.label,
            "tokens": self.tokens,
            "wins": self.wins,
            "winRate": round(self.win_rate * 100, 2),
            "winningMints": list(self.winning_mints),
        }


@dataclass(frozen=True)
class GlobalWinRate:
    tokens: int
    wins: int

    @property
    def win_rate(self) -> float:
        return self.wins / self.tokens if self.tokens else 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "tokens": self.tokens,
            "wins": self.wins,
            "winRate": round(self.win_rate * 100, 2),
        }


@dataclass(frozen=True)
class WinRateReport:
    """Derived, read-only report over all watched wallets."""

    per_wallet: tuple[WalletWinRate, ...]
    global_stats: GlobalWinRate
    evaluated_at: datetime
    survival_threshold: timedelta

    def to_dict(self) -> dict[str, object]:
        return {
            "perWallet": [w.to_dict() for w in self.per_wallet],
            "global": self.global_stats.to_dict(),
            "evaluatedAt": self.evaluated_at.isoformat(),
            "survivalThresholdSeconds": self.survival_threshold.total_seconds(),
        }


def is_win(record: TradeRecord, *, now: datetime, survival_threshold: timedelta) -> bool:
    alive = now - record.first_seen
    return alive >= survival_threshold and record.swap_count >= MIN_WIN_SWAP_COUNT


def evaluate_wallet(
    wallet: Wallet,
    *,
    now: datetime,
    survival_threshold: timedelta,
) -> WalletWinRate:
    winning = tuple(
        mint
        for mint, record in wallet.trades.items()
        if is_win(record, now=now, survival_threshold=survival_threshold)
    )
    return WalletWinRate(
        address=wallet.address,
        label=wallet.label,
        tokens=len(wallet.trades),
        wins=len(winning),
        winning_mints=winning,
    )


def build_report(
    wallets: Iterable[Wallet],
    *,
    now: datetime,
    survival_threshold: timedelta,
) -> WinRateReport:
    """Evaluate every wallet and pool wins/tokens for the global ratio."""
    per_wallet = tuple(
        evaluate_wallet(w, now=now, survival_threshold=survival_threshold) for w in wallets
    )
    return WinRateReport(
        per_wallet=per_wallet,
        global_stats=GlobalWinRate(
            tokens=sum(w.tokens for w in per_wallet),
            wins=sum(w.wins for w in per_wallet),
        ),
        evaluated_at=now,
        survival_threshold=survival_threshold,
    )


class WinRateEvaluator:
    """Binds the configured survival threshold to the pure evaluation functions."""

    def __init__(self, survival_threshold: timedelta) -> None:
        if survival_threshold < timedelta(0):
            raise ValueError("survival_threshold must be >= 0")
        self._threshold = survival_threshold

    @property
    def survival_threshold(self) -> timedelta:
        return self._threshold

    def evaluate(self, wallet: Wallet, now: datetime) -> WalletWinRate:
        return evaluate_wallet(wallet, now=now, survival_threshold=self._threshold)

    def report(self, wallets: Iterable[Wallet], now: datetime) -> WinRateReport:
        return build_report(wallets, now=now, survival_threshold=self._threshold)
