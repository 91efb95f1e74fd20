"""PortfolioService: transfers -> prices -> valuation -> ledger -> diagnostics.

Transfers are processed strictly one after another; every valuation chains
dependent explorer lookups and the price oracle is rate limited.
"""

import logging
import time
from collections import defaultdict
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from costbasis.accounting.classifier import classify
from costbasis.accounting.diagnostics import validate
from costbasis.accounting.ledger import LedgerState, finalize, fold
from costbasis.domain.enums.flow import Direction, FlowKind
from costbasis.domain.models.portfolio import InternalTransfer, PortfolioResult, TransferEvent, ValuationResult
from costbasis.exceptions import ComputationAbandonedError
from costbasis.infra.blockchain.base import ChainDataSource
from costbasis.infra.price.cache import PriceCacheStore
from costbasis.infra.price.coingecko import HistoricalPriceProvider
from costbasis.infra.price.oracle import (
    DEFAULT_FALLBACK_PRICE,
    DEFAULT_REQUEST_DELAY_SECONDS,
    HistoricalPriceOracle,
    SleepFn,
    utc_date,
)
from costbasis.valuation.context import LOOKUP_ERRORS
from costbasis.valuation.resolver import ValuationResolver

logger = logging.getLogger(__name__)

_DIRECTION_BY_KIND = {
    FlowKind.INFLOW: Direction.SENT,  # buy: wallet pays
    FlowKind.OUTFLOW: Direction.RECEIVED,  # sell: wallet is paid
}


class ComputationHandle:
    """Liveness flag owned by whoever requested the computation."""

    def __init__(self) -> None:
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def abandon(self) -> None:
        self._alive = False


def _ensure_alive(handle: ComputationHandle | None) -> None:
    if handle is not None and not handle.alive:
        raise ComputationAbandonedError("computation abandoned by caller")


def internal_wei_received(transfers: Iterable[InternalTransfer], wallet_address: str) -> dict[str, int]:
    """tx hash -> total native wei paid to the wallet by internal transfers."""
    wallet = wallet_address.lower()
    by_tx: dict[str, int] = defaultdict(int)
    for itx in transfers:
        if itx.to_address.lower() == wallet and itx.value_wei > 0:
            by_tx[itx.tx_hash.lower()] += itx.value_wei
    return dict(by_tx)


class PortfolioService:
    def __init__(
        self,
        chain: ChainDataSource,
        price_provider: HistoricalPriceProvider,
        price_cache: PriceCacheStore,
        fallback_price: Decimal = DEFAULT_FALLBACK_PRICE,
        price_request_delay: float = DEFAULT_REQUEST_DELAY_SECONDS,
        sleep: SleepFn | None = None,
    ) -> None:
        self._chain = chain
        self._price_provider = price_provider
        self._price_cache = price_cache
        self._fallback_price = fallback_price
        self._price_request_delay = price_request_delay
        self._sleep = sleep

    def build_oracle(self) -> HistoricalPriceOracle:
        """A fresh oracle per computation; the cache behind it is shared."""
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        return HistoricalPriceOracle(
            self._price_provider,
            self._price_cache,
            fallback_price=self._fallback_price,
            request_delay=self._price_request_delay,
            **kwargs,
        )

    async def compute_portfolio(
        self,
        wallet_address: str,
        token_address: str,
        handle: ComputationHandle | None = None,
    ) -> PortfolioResult | None:
        """Reconciled position for one wallet/token pair.

        Returns the canonical zero result when the wallet never touched the token,
        and None if the caller abandoned the computation. Raises ExternalServiceError
        only when the transfer feed itself is unavailable.
        """
        logger.info("Fetching %s transfers for wallet %s", token_address, wallet_address)
        transfers = await self._chain.get_token_transfers(wallet_address, token_address)
        if not transfers:
            logger.info("No transactions found for wallet %s and token %s", wallet_address, token_address)
        return await self.compute_from_transfers(transfers, wallet_address, handle)

    async def compute_from_transfers(
        self,
        transfers: list[TransferEvent],
        wallet_address: str,
        handle: ComputationHandle | None = None,
    ) -> PortfolioResult | None:
        try:
            _ensure_alive(handle)
            if not transfers:
                return PortfolioResult.empty()
            return await self._run(transfers, wallet_address, handle)
        except ComputationAbandonedError:
            logger.info("Computation for %s abandoned, discarding partial ledger", wallet_address)
            return None

    async def _run(
        self,
        transfers: list[TransferEvent],
        wallet_address: str,
        handle: ComputationHandle | None,
    ) -> PortfolioResult:
        started = time.monotonic()
        ordered = sorted(transfers, key=lambda t: (t.timestamp, t.block_number))
        logger.info("Processing %d transfers for %s", len(ordered), wallet_address)

        oracle = self.build_oracle()
        await oracle.batch_resolve(t.timestamp for t in ordered)
        _ensure_alive(handle)

        ledger = LedgerState()
        internal = await self._internal_wei_map(ordered, wallet_address, ledger)
        _ensure_alive(handle)

        resolver = ValuationResolver(self._chain, oracle, internal_wei_by_tx=internal)
        fallback_used: set[date] = set()

        for event in ordered:
            kind = classify(event, wallet_address)
            valuation: ValuationResult | None = None
            direction = _DIRECTION_BY_KIND.get(kind)

            if direction is not None:
                try:
                    valuation = await resolver.resolve(event, wallet_address, direction)
                except Exception as e:
                    side = "BUY" if kind == FlowKind.INFLOW else "SELL"
                    logger.exception("Error processing %s transaction %s", side, event.tx_hash)
                    ledger.errors.append(f"Error processing {side} transaction {event.tx_hash}: {e}")
            elif kind == FlowKind.NEITHER:
                ledger.warnings.append(f"Transfer {event.tx_hash} does not involve wallet {wallet_address}")

            _ensure_alive(handle)
            fold(ledger, event, valuation, kind)
            priced_in_eth = valuation is not None and valuation.native_amount is not None
            if priced_in_eth and oracle.is_fallback(event.timestamp):
                fallback_used.add(utc_date(event.timestamp))

        for day in sorted(fallback_used):
            ledger.warnings.append(
                f"No historical ETH price for {day.isoformat()}, used fallback ${oracle.fallback_price}"
            )

        finalize(ledger)
        validate(ledger)
        _ensure_alive(handle)

        logger.info(
            "Calculation complete in %.0fms: net=%s avg_entry=%s invested=%s received=%s realized=%s "
            "(%d transfers, %d buys, %d sells, %d remote price lookups, %d errors, %d warnings)",
            (time.monotonic() - started) * 1000,
            ledger.net_tokens, ledger.avg_entry_price, ledger.total_usd_spent,
            ledger.total_usd_received, ledger.realized_pl, ledger.transaction_count,
            ledger.buy_count, ledger.sell_count, oracle.remote_calls,
            len(ledger.errors), len(ledger.warnings),
        )
        return ledger.snapshot()

    async def _internal_wei_map(
        self,
        ordered: list[TransferEvent],
        wallet_address: str,
        ledger: LedgerState,
    ) -> dict[str, int]:
        """Batch-load internal ETH transfers for the sell side. Only needed if the wallet sold."""
        if not any(classify(t, wallet_address) == FlowKind.OUTFLOW for t in ordered):
            return {}

        blocks = [t.block_number for t in ordered]
        first_block, last_block = min(blocks), max(blocks)
        try:
            internal = await self._chain.get_internal_transfers(wallet_address, first_block, last_block)
        except LOOKUP_ERRORS as e:
            logger.warning("Internal transfer lookup failed for %s: %s", wallet_address, e)
            ledger.warnings.append(f"Internal transfer lookup failed, ETH sell proceeds may be missing: {e}")
            return {}

        logger.info("Found %d internal ETH transfers in blocks %d-%d", len(internal), first_block, last_block)
        return internal_wei_received(internal, wallet_address)
