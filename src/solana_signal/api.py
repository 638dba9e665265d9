"""HTTP read interface for the signal service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from solana_signal import __version__
from solana_signal.profiler.ledger import WalletLedgerError
from solana_signal.service import SignalService

logger = logging.getLogger(__name__)

TRACKED_SAMPLE_LIMIT = 10


class WalletRegistration(BaseModel):
    address: str = Field(min_length=1)
    label: str | None = None


def create_app(service: SignalService, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the FastAPI app around ``service``.

    Args:
        service: The service whose state is exposed.
        manage_lifecycle: If True, the app's lifespan starts and stops the service.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(title="Solana Signal", version=__version__, lifespan=lifespan)

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"ok": True, "msg": "Solana Signal liquidity and wallet tracker"}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return service.health()

    @app.get("/liquidity")
    async def liquidity() -> dict[str, Any]:
        return service.get_snapshot()

    @app.get("/status", response_class=PlainTextResponse)
    async def status() -> str:
        return service.get_status_line()

    @app.get("/tracked")
    async def tracked(limit: int = TRACKED_SAMPLE_LIMIT) -> dict[str, Any]:
        return service.get_tracked_addresses(max(0, min(limit, 100)))

    @app.get("/wallets")
    async def list_wallets() -> list[dict[str, Any]]:
        return service.list_wallets()

    @app.post("/wallets", status_code=201)
    async def add_wallet(body: WalletRegistration) -> dict[str, Any]:
        try:
            return service.add_wallet(body.address, body.label)
        except WalletLedgerError as e:
            logger.info("Rejected wallet registration: %s", e)
            raise HTTPException(status_code=400, detail=str(e)) from e

    @app.delete("/wallets/{address}")
    async def remove_wallet(address: str) -> dict[str, Any]:
        if not service.remove_wallet(address):
            raise HTTPException(status_code=404, detail="wallet not watched")
        return {"ok": True, "address": address}

    @app.get("/wallets/stats")
    async def wallet_stats() -> dict[str, Any]:
        return service.get_wallet_stats()

    return app
