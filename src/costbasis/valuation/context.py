"""ValuationContext: lazily-fetched working set for valuing one transfer."""

import logging
from decimal import Decimal

import httpx

from costbasis.domain.enums.flow import Direction
from costbasis.domain.models.portfolio import LogEntry, TransferEvent, TxDetail
from costbasis.exceptions import ExternalServiceError
from costbasis.infra.blockchain.base import ChainDataSource
from costbasis.infra.price.oracle import HistoricalPriceOracle

logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal(10) ** 18

# Failures of a single lookup that degrade the valuation instead of aborting it
LOOKUP_ERRORS = (ExternalServiceError, httpx.HTTPError, ValueError)


class ValuationContext:
    """Per-transfer state shared by the valuation strategies.

    Transaction detail and receipt logs are fetched at most once, on first use.
    A failed lookup is remembered as a note and reads as "no data".
    """

    def __init__(
        self,
        event: TransferEvent,
        wallet_address: str,
        direction: Direction,
        chain: ChainDataSource,
        oracle: HistoricalPriceOracle,
        internal_wei_by_tx: dict[str, int] | None = None,
    ) -> None:
        self.event = event
        self.wallet = wallet_address.lower()
        self.direction = direction
        self.oracle = oracle
        self._chain = chain
        self._internal_wei_by_tx = internal_wei_by_tx or {}
        self._tx: TxDetail | None = None
        self._tx_loaded = False
        self._logs: list[LogEntry] | None = None
        self._logs_loaded = False
        self.notes: list[str] = []

    async def transaction(self) -> TxDetail | None:
        if not self._tx_loaded:
            self._tx_loaded = True
            try:
                self._tx = await self._chain.get_transaction(self.event.tx_hash)
            except LOOKUP_ERRORS as e:
                logger.warning("Transaction lookup failed for %s: %s", self.event.tx_hash, e)
                self.notes.append(f"transaction lookup failed: {e}")
        return self._tx

    async def logs(self) -> list[LogEntry]:
        if not self._logs_loaded:
            self._logs_loaded = True
            try:
                self._logs = await self._chain.get_receipt_logs(self.event.tx_hash)
            except LOOKUP_ERRORS as e:
                logger.warning("Receipt lookup failed for %s: %s", self.event.tx_hash, e)
                self.notes.append(f"receipt lookup failed: {e}")
        return self._logs or []

    def internal_native_received(self) -> Decimal:
        wei = self._internal_wei_by_tx.get(self.event.tx_hash.lower(), 0)
        return Decimal(wei) / WEI_PER_ETH

    async def native_to_usd(self, native_amount: Decimal) -> Decimal:
        price = await self.oracle.price_at(self.event.timestamp)
        return native_amount * price

    def note(self) -> str | None:
        return "; ".join(self.notes) if self.notes else None
