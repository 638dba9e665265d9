"""Wallet profiling - swap ledger, ingestion and win-rate evaluation."""

from solana_signal.profiler.ingest import (
    SwapClassifier,
    SwapEvent,
    WalletIngestError,
    WalletIngestor,
    parse_swap_events,
)
from solana_signal.profiler.ledger import (
    TradeRecord,
    Wallet,
    WalletLedgerError,
    WalletNotFoundError,
    WalletSwapLedger,
)
from solana_signal.profiler.winrate import WinRateEvaluator, WinRateReport

__all__ = [
    "SwapClassifier",
    "SwapEvent",
    "TradeRecord",
    "Wallet",
    "WalletIngestError",
    "WalletIngestor",
    "WalletLedgerError",
    "WalletNotFoundError",
    "WalletSwapLedger",
    "WinRateEvaluator",
    "WinRateReport",
    "parse_swap_events",
]
