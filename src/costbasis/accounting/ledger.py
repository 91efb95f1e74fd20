"""Average-cost ledger: fold classified, valued transfers into running totals.

Pure accumulation, no I/O. All sells draw from one blended average-cost pool;
there is no lot matching. Derived figures (average entry, cost basis of sold
tokens, realized P/L) are computed once in ``finalize`` after every transfer has
been folded: the average cost is a function of all buys.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from costbasis.domain.enums.flow import FlowKind
from costbasis.domain.models.portfolio import PortfolioResult, TransferEvent, ValuationResult


@dataclass
class LedgerState:
    """Mutable accumulator for one (wallet, token) computation."""

    tokens_bought: Decimal = Decimal(0)
    tokens_sold: Decimal = Decimal(0)
    total_usd_spent: Decimal = Decimal(0)
    total_usd_received: Decimal = Decimal(0)
    buy_count: int = 0
    sell_count: int = 0
    transaction_count: int = 0
    first_buy_timestamp: int | None = None
    last_activity_timestamp: int | None = None

    # Set by finalize()
    avg_entry_price: Decimal = Decimal(0)
    cost_basis_sold: Decimal = Decimal(0)
    realized_pl: Decimal = Decimal(0)

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def net_tokens(self) -> Decimal:
        return self.tokens_bought - self.tokens_sold

    def snapshot(self) -> PortfolioResult:
        """Freeze the ledger into the result returned to callers."""
        return PortfolioResult(
            total_tokens=self.net_tokens,
            avg_entry_price=self.avg_entry_price,
            total_invested_usd=self.total_usd_spent,
            total_received_usd=self.total_usd_received,
            realized_profit_loss=self.realized_pl,
            transaction_count=self.transaction_count,
            buy_count=self.buy_count,
            sell_count=self.sell_count,
            first_buy_timestamp=self.first_buy_timestamp,
            last_activity_timestamp=self.last_activity_timestamp,
            errors=list(self.errors),
            warnings=list(self.warnings),
        )


def fold(
    ledger: LedgerState,
    event: TransferEvent,
    valuation: ValuationResult | None,
    kind: FlowKind,
) -> LedgerState:
    """Apply one transfer to the ledger. Returns the same ledger for chaining."""
    ts = event.timestamp
    ledger.transaction_count += 1
    if ledger.last_activity_timestamp is None or ts > ledger.last_activity_timestamp:
        ledger.last_activity_timestamp = ts

    amount = event.amount
    usd = valuation.usd if valuation is not None else Decimal(0)

    if kind == FlowKind.INFLOW:
        ledger.tokens_bought += amount
        ledger.buy_count += 1
        if ledger.first_buy_timestamp is None or ts < ledger.first_buy_timestamp:
            ledger.first_buy_timestamp = ts
        if usd > 0:
            ledger.total_usd_spent += usd
        else:
            ledger.warnings.append(
                f"Buy {ledger.buy_count} ({event.tx_hash}): Unable to determine cost"
                f" - might be airdrop/transfer{_note_suffix(valuation)}"
            )

    elif kind == FlowKind.OUTFLOW:
        ledger.tokens_sold += amount
        ledger.sell_count += 1
        if usd > 0:
            ledger.total_usd_received += usd
        else:
            ledger.warnings.append(
                f"Sell {ledger.sell_count} ({event.tx_hash}): Unable to determine proceeds"
                f" - might be transfer/gift{_note_suffix(valuation)}"
            )

    return ledger


def finalize(ledger: LedgerState) -> LedgerState:
    """Compute average entry, cost basis of sold tokens and realized P/L."""
    if ledger.tokens_bought > 0:
        ledger.avg_entry_price = ledger.total_usd_spent / ledger.tokens_bought
    else:
        ledger.avg_entry_price = Decimal(0)
    ledger.cost_basis_sold = ledger.tokens_sold * ledger.avg_entry_price
    ledger.realized_pl = ledger.total_usd_received - ledger.cost_basis_sold
    return ledger


def _note_suffix(valuation: ValuationResult | None) -> str:
    if valuation is None or not valuation.note:
        return ""
    return f" ({valuation.note})"
