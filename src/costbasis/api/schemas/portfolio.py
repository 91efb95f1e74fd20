"""Pydantic schemas for the portfolio API."""

from decimal import Decimal

from pydantic import BaseModel


class PortfolioResponse(BaseModel):
    wallet_address: str
    token_address: str
    total_tokens: Decimal
    avg_entry_price: Decimal
    total_invested_usd: Decimal
    total_received_usd: Decimal
    realized_profit_loss: Decimal
    unrealized_profit_loss: Decimal | None = None  # only when current_price is given
    transaction_count: int
    buy_count: int
    sell_count: int
    first_buy_timestamp: int | None = None
    last_activity_timestamp: int | None = None
    errors: list[str] = []
    warnings: list[str] = []
    no_activity: bool = False
