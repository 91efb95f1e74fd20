"""Tests for PortfolioService: end-to-end computation over a fake chain."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from costbasis.domain.models.portfolio import InternalTransfer, PortfolioResult, TransferEvent, TxDetail
from costbasis.exceptions import ExternalServiceError, RateLimitedError
from costbasis.infra.price.cache import InMemoryPriceCache
from costbasis.portfolio.service import ComputationHandle, PortfolioService, internal_wei_received

WALLET = "0x" + "a" * 40
POOL = "0x" + "b" * 40
ROUTER = "0x" + "d" * 40
TOKEN = "0x" + "c" * 40
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"

DAY1 = 1700000000  # 2023-11-14
DAY2 = DAY1 + 86400
DAY3 = DAY2 + 86400


def _tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


def _buy(n: int, tokens: int, ts: int, block: int | None = None) -> TransferEvent:
    return TransferEvent(
        block_number=block or n * 10, timestamp=ts, tx_hash=_tx_hash(n),
        from_address=POOL, to_address=WALLET, raw_amount=tokens * 10**18,
    )


def _sell(n: int, tokens: int, ts: int, block: int | None = None) -> TransferEvent:
    return TransferEvent(
        block_number=block or n * 10, timestamp=ts, tx_hash=_tx_hash(n),
        from_address=WALLET, to_address=POOL, raw_amount=tokens * 10**18,
    )


@pytest.fixture()
def provider():
    p = MagicMock()
    p.get_price_on_date = AsyncMock(return_value=Decimal("2000"))
    return p


@pytest.fixture()
def cache():
    return InMemoryPriceCache()


@pytest.fixture()
def sleep():
    return AsyncMock()


@pytest.fixture()
def service(fake_chain, provider, cache, sleep):
    return PortfolioService(fake_chain, provider, cache, fallback_price=Decimal("2400"), sleep=sleep)


class TestNoActivity:
    async def test_empty_feed(self, service, fake_chain, provider):
        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result == PortfolioResult.empty()
        assert result.no_activity
        assert result.total_tokens == 0
        assert result.errors == [] and result.warnings == []
        assert fake_chain.lookup_calls() == 0
        provider.get_price_on_date.assert_not_called()

    async def test_empty_transfer_list(self, service):
        result = await service.compute_from_transfers([], WALLET)
        assert result.no_activity


class TestComputation:
    async def test_stablecoin_buy_and_sell(self, service, fake_chain, transfer_log):
        fake_chain.transfers = [_buy(1, 1000, DAY1), _sell(2, 400, DAY2)]
        fake_chain.logs[_tx_hash(1)] = [transfer_log(USDC, WALLET, POOL, 100 * 10**6)]
        fake_chain.logs[_tx_hash(2)] = [transfer_log(USDC, POOL, WALLET, 60 * 10**6)]

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.total_tokens == Decimal("600")
        assert result.avg_entry_price == Decimal("0.1")
        assert result.total_invested_usd == Decimal("100")
        assert result.total_received_usd == Decimal("60")
        assert result.realized_profit_loss == Decimal("20")
        assert result.unrealized_profit_loss(Decimal("0.15")) == Decimal("30")
        assert (result.buy_count, result.sell_count, result.transaction_count) == (1, 1, 2)
        assert result.first_buy_timestamp == DAY1
        assert result.last_activity_timestamp == DAY2
        assert result.errors == []
        assert result.warnings == []
        assert not result.no_activity

    async def test_unresolved_buy_warns_once(self, service, fake_chain, transfer_log):
        fake_chain.transfers = [_buy(1, 1000, DAY1), _buy(2, 500, DAY2)]
        fake_chain.logs[_tx_hash(1)] = [transfer_log(USDC, WALLET, POOL, 100 * 10**6)]
        fake_chain.txs[_tx_hash(2)] = TxDetail(tx_hash=_tx_hash(2), from_address=WALLET, to_address=ROUTER)

        result = await service.compute_portfolio(WALLET, TOKEN)

        unresolved = [w for w in result.warnings if "Unable to determine cost" in w]
        assert len(unresolved) == 1
        assert _tx_hash(2) in unresolved[0]
        assert result.total_tokens == Decimal("1500")
        assert result.total_invested_usd == Decimal("100")

    async def test_oversold_flags_negative_holdings(self, service, fake_chain, transfer_log):
        fake_chain.transfers = [_buy(1, 100, DAY1), _sell(2, 150, DAY2)]
        fake_chain.logs[_tx_hash(1)] = [transfer_log(USDC, WALLET, POOL, 10 * 10**6)]
        fake_chain.logs[_tx_hash(2)] = [transfer_log(USDC, POOL, WALLET, 30 * 10**6)]

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.total_tokens == Decimal("-50")
        assert any("Negative holdings" in w for w in result.warnings)
        # Reported figures stay internally consistent
        assert result.realized_profit_loss == result.total_received_usd - Decimal("150") * result.avg_entry_price

    async def test_transfers_processed_in_time_order(self, service, fake_chain, transfer_log):
        fake_chain.transfers = [_sell(2, 400, DAY2), _buy(1, 1000, DAY1)]
        fake_chain.logs[_tx_hash(1)] = [transfer_log(USDC, WALLET, POOL, 100 * 10**6)]
        fake_chain.logs[_tx_hash(2)] = [transfer_log(USDC, POOL, WALLET, 60 * 10**6)]

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.warnings == []
        assert result.first_buy_timestamp == DAY1
        assert result.last_activity_timestamp == DAY2

    async def test_eth_buy_and_internal_eth_sell(self, service, fake_chain, cache):
        await cache.set(date(2023, 11, 14), Decimal("2000"))
        await cache.set(date(2023, 11, 15), Decimal("2500"))
        fake_chain.transfers = [_buy(1, 1000, DAY1, block=100), _sell(2, 500, DAY2, block=250)]
        fake_chain.txs[_tx_hash(1)] = TxDetail(
            tx_hash=_tx_hash(1), from_address=WALLET, to_address=ROUTER, value_wei=5 * 10**16,
        )
        fake_chain.internal = [
            InternalTransfer(tx_hash=_tx_hash(2), from_address=ROUTER, to_address=WALLET, value_wei=4 * 10**16),
        ]

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.total_invested_usd == Decimal("100")
        assert result.total_received_usd == Decimal("100")
        assert result.avg_entry_price == Decimal("0.1")
        assert result.realized_profit_loss == Decimal("50")
        assert fake_chain.internal_ranges == [(100, 250)]
        assert result.warnings == []

    async def test_internal_lookup_skipped_without_sells(self, service, fake_chain, transfer_log):
        fake_chain.transfers = [_buy(1, 1000, DAY1)]
        fake_chain.logs[_tx_hash(1)] = [transfer_log(USDC, WALLET, POOL, 100 * 10**6)]

        await service.compute_portfolio(WALLET, TOKEN)

        assert fake_chain.calls["internal"] == 0

    async def test_internal_lookup_failure_degrades(self, service, fake_chain, transfer_log):
        fake_chain.transfers = [_buy(1, 1000, DAY1), _sell(2, 400, DAY2)]
        fake_chain.logs[_tx_hash(1)] = [transfer_log(USDC, WALLET, POOL, 100 * 10**6)]
        fake_chain.errors["internal"] = ExternalServiceError("Etherscan returned HTTP 502")

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert any("Internal transfer lookup failed" in w for w in result.warnings)
        assert any("Unable to determine proceeds" in w for w in result.warnings)
        assert result.total_received_usd == 0
        assert result.errors == []

    async def test_unexpected_error_recorded_per_transfer(self, service, fake_chain):
        fake_chain.transfers = [_buy(1, 1000, DAY1)]
        fake_chain.logs[_tx_hash(1)] = []
        fake_chain.errors[f"tx:{_tx_hash(1)}"] = RuntimeError("decoder blew up")

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Error processing BUY transaction {_tx_hash(1)}")
        assert "decoder blew up" in result.errors[0]
        # Still counted, at zero cost
        assert result.buy_count == 1
        assert result.total_tokens == Decimal("1000")

    async def test_transfer_not_involving_wallet(self, service, fake_chain):
        stranger = TransferEvent(
            block_number=10, timestamp=DAY1, tx_hash=_tx_hash(9),
            from_address=POOL, to_address=ROUTER, raw_amount=10**18,
        )

        result = await service.compute_from_transfers([stranger], WALLET)

        assert any("does not involve wallet" in w for w in result.warnings)
        assert result.transaction_count == 1
        assert result.buy_count == 0 and result.sell_count == 0


class TestPriceOracleIntegration:
    async def test_one_remote_lookup_per_day(self, service, fake_chain, provider, sleep, cache):
        fake_chain.transfers = [_buy(1, 10, DAY1), _buy(2, 10, DAY1 + 60), _buy(3, 10, DAY3)]
        for n in (1, 2, 3):
            fake_chain.txs[_tx_hash(n)] = TxDetail(
                tx_hash=_tx_hash(n), from_address=WALLET, to_address=ROUTER, value_wei=10**16,
            )

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert provider.get_price_on_date.await_count == 2
        assert result.total_invested_usd == Decimal("60")
        assert await cache.get(date(2023, 11, 16)) == Decimal("2000")
        sleep.assert_awaited_once_with(1.5)

    async def test_rate_limited_price_retried(self, service, fake_chain, provider, sleep, cache):
        provider.get_price_on_date.side_effect = [RateLimitedError("429"), RateLimitedError("429"), Decimal("2000")]
        fake_chain.transfers = [_buy(1, 1000, DAY1)]
        fake_chain.txs[_tx_hash(1)] = TxDetail(
            tx_hash=_tx_hash(1), from_address=WALLET, to_address=ROUTER, value_wei=5 * 10**16,
        )

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.total_invested_usd == Decimal("100")
        assert result.errors == [] and result.warnings == []
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]
        assert await cache.get(date(2023, 11, 14)) == Decimal("2000")

    async def test_fallback_price_surfaces_warning(self, service, fake_chain, provider, cache):
        provider.get_price_on_date.return_value = None
        fake_chain.transfers = [_buy(1, 1000, DAY1)]
        fake_chain.txs[_tx_hash(1)] = TxDetail(
            tx_hash=_tx_hash(1), from_address=WALLET, to_address=ROUTER, value_wei=5 * 10**16,
        )

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.total_invested_usd == Decimal("120")
        assert any("used fallback $2400" in w and "2023-11-14" in w for w in result.warnings)
        assert await cache.get(date(2023, 11, 14)) is None

    async def test_fallback_day_without_eth_valuation_not_reported(
        self, service, fake_chain, provider, transfer_log
    ):
        provider.get_price_on_date.return_value = None
        fake_chain.transfers = [_buy(1, 1000, DAY1)]
        fake_chain.logs[_tx_hash(1)] = [transfer_log(USDC, WALLET, POOL, 100 * 10**6)]

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.total_invested_usd == Decimal("100")
        assert result.warnings == []

    async def test_locked_price_cache_does_not_fail_computation(self, fake_chain, provider, sleep):
        class LockedCache(InMemoryPriceCache):
            async def set(self, day, price):
                raise OperationalError("INSERT", {}, Exception("database is locked"))

        service = PortfolioService(fake_chain, provider, LockedCache(), sleep=sleep)
        fake_chain.transfers = [_buy(1, 1000, DAY1)]
        fake_chain.txs[_tx_hash(1)] = TxDetail(
            tx_hash=_tx_hash(1), from_address=WALLET, to_address=ROUTER, value_wei=5 * 10**16,
        )

        result = await service.compute_portfolio(WALLET, TOKEN)

        assert result.total_invested_usd == Decimal("100")
        assert result.errors == []
        assert result.warnings == []


class TestFailuresAndAbandonment:
    async def test_feed_failure_propagates(self, service, fake_chain):
        fake_chain.errors["feed"] = ExternalServiceError("Etherscan error: NOTOK")

        with pytest.raises(ExternalServiceError):
            await service.compute_portfolio(WALLET, TOKEN)

    async def test_abandoned_before_start(self, service, fake_chain, provider):
        fake_chain.transfers = [_buy(1, 1000, DAY1)]
        handle = ComputationHandle()
        handle.abandon()

        assert await service.compute_portfolio(WALLET, TOKEN, handle) is None
        provider.get_price_on_date.assert_not_called()

    async def test_abandoned_with_empty_feed(self, service):
        handle = ComputationHandle()
        handle.abandon()

        assert await service.compute_portfolio(WALLET, TOKEN, handle) is None

    async def test_abandoned_mid_computation(self, service, fake_chain, transfer_log):
        fake_chain.transfers = [_buy(1, 1000, DAY1), _buy(2, 1000, DAY2), _buy(3, 1000, DAY3)]
        for n in (1, 2, 3):
            fake_chain.logs[_tx_hash(n)] = [transfer_log(USDC, WALLET, POOL, 100 * 10**6)]
        handle = ComputationHandle()

        real_fetch = fake_chain.get_receipt_logs

        async def abandon_on_second(tx_hash):
            if tx_hash == _tx_hash(2):
                handle.abandon()
            return await real_fetch(tx_hash)

        fake_chain.get_receipt_logs = abandon_on_second

        assert await service.compute_portfolio(WALLET, TOKEN, handle) is None
        assert fake_chain.calls[f"receipt:{_tx_hash(3)}"] == 0


class TestInternalWeiReceived:
    def test_sums_per_tx_for_wallet_only(self):
        transfers = [
            InternalTransfer(tx_hash="0xAA", from_address=ROUTER, to_address=WALLET.upper().replace("0X", "0x"), value_wei=1),
            InternalTransfer(tx_hash="0xaa", from_address=ROUTER, to_address=WALLET, value_wei=2),
            InternalTransfer(tx_hash="0xbb", from_address=WALLET, to_address=ROUTER, value_wei=5),
        ]

        assert internal_wei_received(transfers, WALLET) == {"0xaa": 3}
