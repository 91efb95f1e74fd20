"""ValuationResolver: runs the strategy chain for one transfer leg."""

import logging

from costbasis.domain.enums.flow import Direction
from costbasis.domain.enums.valuation import ValuationSource
from costbasis.domain.models.portfolio import TransferEvent, ValuationResult
from costbasis.infra.blockchain.base import ChainDataSource
from costbasis.infra.price.oracle import HistoricalPriceOracle
from costbasis.valuation.context import ValuationContext
from costbasis.valuation.strategies import ValuationStrategy, default_strategies

logger = logging.getLogger(__name__)


class ValuationResolver:
    """Strategies are tried in order; the first non-None result wins.

    Falls back to an ``unresolved`` zero-USD result (airdrop, gift, plain transfer).
    """

    def __init__(
        self,
        chain: ChainDataSource,
        oracle: HistoricalPriceOracle,
        internal_wei_by_tx: dict[str, int] | None = None,
        strategies: list[ValuationStrategy] | None = None,
    ) -> None:
        self._chain = chain
        self._oracle = oracle
        self._internal_wei_by_tx = internal_wei_by_tx or {}
        self._strategies = strategies if strategies is not None else default_strategies()

    async def resolve(self, event: TransferEvent, wallet_address: str, direction: Direction) -> ValuationResult:
        ctx = ValuationContext(
            event=event,
            wallet_address=wallet_address,
            direction=direction,
            chain=self._chain,
            oracle=self._oracle,
            internal_wei_by_tx=self._internal_wei_by_tx,
        )

        for strategy in self._strategies:
            result = await strategy.try_resolve(ctx)
            if result is None:
                continue
            logger.debug("%s valued via %s: $%s", event.tx_hash, result.source.value, result.usd)
            lookup_note = ctx.note()
            if lookup_note:
                note = f"{result.note}; {lookup_note}" if result.note else lookup_note
                result = result.model_copy(update={"note": note})
            return result

        logger.info("No USD value found for %s (%s)", event.tx_hash, direction.value)
        return ValuationResult(usd=0, source=ValuationSource.UNRESOLVED, note=ctx.note())
