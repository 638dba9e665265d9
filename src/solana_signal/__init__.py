"""Solana Signal - resilient liquidity polling and wallet win-rate tracking."""

__version__ = "0.1.0"
