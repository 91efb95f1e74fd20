"""Domain types for wallet cost-basis accounting."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from costbasis.domain.enums.valuation import ValuationSource


class TransferEvent(BaseModel):
    """One on-chain movement of the tracked token. Immutable once sourced."""

    model_config = ConfigDict(frozen=True)

    block_number: int
    timestamp: int  # Unix seconds
    tx_hash: str
    from_address: str
    to_address: str
    raw_amount: int  # smallest unit
    decimals: int = 18

    @property
    def amount(self) -> Decimal:
        return Decimal(self.raw_amount) / Decimal(10) ** self.decimals


class ValuationResult(BaseModel):
    """USD value of one transfer leg and where it came from."""

    model_config = ConfigDict(frozen=True)

    usd: Decimal = Field(default=Decimal(0), ge=0)
    source: ValuationSource = ValuationSource.UNRESOLVED
    native_amount: Decimal | None = None  # ETH / WETH used for the conversion, if any
    note: str | None = None

    @property
    def resolved(self) -> bool:
        return self.source != ValuationSource.UNRESOLVED and self.usd > 0


class InternalTransfer(BaseModel):
    """Native value moved by a contract call (Etherscan txlistinternal row)."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    from_address: str
    to_address: str
    value_wei: int


class TxDetail(BaseModel):
    """The parts of a transaction the valuation waterfall needs."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    from_address: str
    to_address: str | None = None  # None for contract creation
    value_wei: int = 0


class LogEntry(BaseModel):
    """A raw receipt log: emitting contract, topics, data payload."""

    model_config = ConfigDict(frozen=True)

    address: str
    topics: list[str] = []
    data: str = "0x"


class PortfolioResult(BaseModel):
    """Reconciled position for one (wallet, token) pair."""

    model_config = ConfigDict(frozen=True)

    total_tokens: Decimal = Decimal(0)  # net holdings: bought - sold
    avg_entry_price: Decimal = Decimal(0)
    total_invested_usd: Decimal = Decimal(0)
    total_received_usd: Decimal = Decimal(0)
    realized_profit_loss: Decimal = Decimal(0)
    transaction_count: int = 0
    buy_count: int = 0
    sell_count: int = 0
    first_buy_timestamp: int | None = None
    last_activity_timestamp: int | None = None
    errors: list[str] = []
    warnings: list[str] = []
    no_activity: bool = False  # transfer feed returned nothing

    def unrealized_profit_loss(self, current_price: Decimal) -> Decimal:
        """Mark-to-market P/L of the tokens still held, against the average entry."""
        if self.total_tokens <= 0:
            return Decimal(0)
        return self.total_tokens * (current_price - self.avg_entry_price)

    @classmethod
    def empty(cls) -> "PortfolioResult":
        """Canonical zero result for a wallet with no activity on the token."""
        return cls(no_activity=True)
