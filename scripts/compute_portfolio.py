"""Compute cost basis and P/L of one wallet in one token.

Usage:
    PYTHONPATH=src python scripts/compute_portfolio.py <wallet> <token> [current_price]
"""

import asyncio
import logging
import sys
from datetime import UTC, datetime
from decimal import Decimal

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s - %(message)s")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _fmt_ts(ts: int | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m-%d %H:%M UTC")


async def main(wallet: str, token: str, current_price: Decimal | None) -> None:
    from costbasis.container import Container
    from costbasis.db.session import init_db

    container = Container()
    await init_db(container.engine())
    try:
        service = container.portfolio_service()
        result = await service.compute_portfolio(wallet, token)
    finally:
        await container.explorer_http().close()
        await container.price_http().close()
        await container.engine().dispose()

    if result is None:
        print("Computation abandoned")
        return
    if result.no_activity:
        print(f"No activity for {wallet} in {token}")
        return

    print(f"\nWallet {wallet}  token {token}")
    print(f"  Net tokens:        {result.total_tokens:,.4f}")
    print(f"  Avg entry:         ${result.avg_entry_price:.8f}")
    print(f"  Total invested:    ${result.total_invested_usd:,.2f}")
    print(f"  Total received:    ${result.total_received_usd:,.2f}")
    print(f"  Realized P/L:      ${result.realized_profit_loss:,.2f}")
    if current_price is not None:
        print(f"  Unrealized P/L:    ${result.unrealized_profit_loss(current_price):,.2f}  (at ${current_price})")
    print(f"  Transfers:         {result.transaction_count} ({result.buy_count} buys, {result.sell_count} sells)")
    print(f"  First buy:         {_fmt_ts(result.first_buy_timestamp)}")
    print(f"  Last activity:     {_fmt_ts(result.last_activity_timestamp)}")
    for err in result.errors:
        print(f"  ERROR   {err}")
    for warn in result.warnings:
        print(f"  WARNING {warn}")


if __name__ == "__main__":
    if len(sys.argv) not in (3, 4):
        print(__doc__)
        sys.exit(1)
    price = Decimal(sys.argv[3]) if len(sys.argv) == 4 else None
    asyncio.run(main(sys.argv[1], sys.argv[2], price))
