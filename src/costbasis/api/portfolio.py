"""Portfolio API: cost basis and P/L of one wallet in one token."""

import asyncio
import contextlib
import logging
import re
from decimal import Decimal
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.requests import Request

from costbasis.api.deps import get_portfolio_service
from costbasis.api.schemas.portfolio import PortfolioResponse
from costbasis.exceptions import ExternalServiceError
from costbasis.portfolio.service import ComputationHandle, PortfolioService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])

ServiceDep = Annotated[PortfolioService, Depends(get_portfolio_service)]

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
DISCONNECT_POLL_SECONDS = 1.0


async def _abandon_on_disconnect(request: Request, handle: ComputationHandle) -> None:
    """Drop the liveness flag once the client goes away."""
    while handle.alive:
        if await request.is_disconnected():
            logger.info("Client disconnected from %s, abandoning computation", request.url.path)
            handle.abandon()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.get("/{wallet_address}", response_model=PortfolioResponse)
async def get_portfolio(
    wallet_address: str,
    request: Request,
    service: ServiceDep,
    token: str = Query(..., description="Token contract address"),
    current_price: Optional[Decimal] = Query(None, ge=0, description="Current token price in USD for unrealized P/L"),
) -> PortfolioResponse:
    if not ADDRESS_RE.match(wallet_address):
        raise HTTPException(status_code=400, detail=f"Invalid wallet address: {wallet_address}")
    if not ADDRESS_RE.match(token):
        raise HTTPException(status_code=400, detail=f"Invalid token address: {token}")

    handle = ComputationHandle()
    watcher = asyncio.create_task(_abandon_on_disconnect(request, handle))
    try:
        result = await service.compute_portfolio(wallet_address, token, handle)
    except ExternalServiceError as e:
        raise HTTPException(status_code=502, detail=f"Transfer feed unavailable: {e}")
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

    if result is None:
        # Client is gone; nothing meaningful to send
        raise HTTPException(status_code=499, detail="Client closed request")

    return PortfolioResponse(
        wallet_address=wallet_address.lower(),
        token_address=token.lower(),
        total_tokens=result.total_tokens,
        avg_entry_price=result.avg_entry_price,
        total_invested_usd=result.total_invested_usd,
        total_received_usd=result.total_received_usd,
        realized_profit_loss=result.realized_profit_loss,
        unrealized_profit_loss=(
            result.unrealized_profit_loss(current_price) if current_price is not None else None
        ),
        transaction_count=result.transaction_count,
        buy_count=result.buy_count,
        sell_count=result.sell_count,
        first_buy_timestamp=result.first_buy_timestamp,
        last_activity_timestamp=result.last_activity_timestamp,
        errors=result.errors,
        warnings=result.warnings,
        no_activity=result.no_activity,
    )
