"""Valuation strategies, one per on-chain source of a transfer's USD value."""

from abc import ABC, abstractmethod
from decimal import Decimal

from costbasis.domain.enums.flow import Direction
from costbasis.domain.enums.valuation import ValuationSource
from costbasis.domain.models.portfolio import ValuationResult
from costbasis.valuation.context import WEI_PER_ETH, ValuationContext
from costbasis.valuation.logs import stablecoin_usd, wrapped_native_amount


class ValuationStrategy(ABC):
    """Minimal interface all strategies implement."""

    SOURCE: ValuationSource = ValuationSource.UNRESOLVED

    @abstractmethod
    async def try_resolve(self, ctx: ValuationContext) -> ValuationResult | None:
        """USD value of the transfer leg, or None to fall through to the next strategy."""

    async def _from_native(self, ctx: ValuationContext, native_amount: Decimal) -> ValuationResult:
        usd = await ctx.native_to_usd(native_amount)
        note = None
        if ctx.oracle.is_fallback(ctx.event.timestamp):
            note = f"fallback ETH price ${ctx.oracle.fallback_price} used"
        return ValuationResult(usd=usd, source=self.SOURCE, native_amount=native_amount, note=note)


class StableAssetLogStrategy(ValuationStrategy):
    """USDC/USDT/DAI moved by the wallet in the same transaction, taken 1:1 as USD."""

    SOURCE = ValuationSource.STABLE_ASSET_LOG

    async def try_resolve(self, ctx: ValuationContext) -> ValuationResult | None:
        usd = stablecoin_usd(await ctx.logs(), ctx.wallet, ctx.direction)
        if usd <= 0:
            return None
        return ValuationResult(usd=usd, source=self.SOURCE)


class NativeValueStrategy(ValuationStrategy):
    """ETH attached to the transaction itself (router swapExactETHForTokens and friends). Buy side."""

    SOURCE = ValuationSource.NATIVE_DIRECT

    async def try_resolve(self, ctx: ValuationContext) -> ValuationResult | None:
        if ctx.direction != Direction.SENT:
            return None
        tx = await ctx.transaction()
        if tx is None or tx.value_wei <= 0:
            return None
        return await self._from_native(ctx, Decimal(tx.value_wei) / WEI_PER_ETH)


class WrappedNativeLogStrategy(ValuationStrategy):
    """WETH Transfer events for the wallet in the matching direction."""

    SOURCE = ValuationSource.WRAPPED_NATIVE_LOG

    async def try_resolve(self, ctx: ValuationContext) -> ValuationResult | None:
        amount = wrapped_native_amount(await ctx.logs(), ctx.wallet, ctx.direction)
        if amount <= 0:
            return None
        return await self._from_native(ctx, amount)


class InternalNativeTransferStrategy(ValuationStrategy):
    """ETH paid out to the wallet by a contract call (DEX router unwrapping on sell). Sell side."""

    SOURCE = ValuationSource.INTERNAL_NATIVE_TRANSFER

    async def try_resolve(self, ctx: ValuationContext) -> ValuationResult | None:
        if ctx.direction != Direction.RECEIVED:
            return None
        amount = ctx.internal_native_received()
        if amount <= 0:
            return None
        return await self._from_native(ctx, amount)


def default_strategies() -> list[ValuationStrategy]:
    """Priority order: first non-None result wins."""
    return [
        StableAssetLogStrategy(),
        NativeValueStrategy(),
        WrappedNativeLogStrategy(),
        InternalNativeTransferStrategy(),
    ]
