from collections import defaultdict

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import costbasis.db.models  # noqa: F401  register all models
from costbasis.db.session import Base
from costbasis.domain.models.portfolio import InternalTransfer, LogEntry, TransferEvent, TxDetail
from costbasis.infra.blockchain.base import ChainDataSource
from costbasis.valuation.logs import TRANSFER_EVENT_TOPIC


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


def _address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address.lower()[2:]


def make_transfer_log(token: str, from_addr: str, to_addr: str, value: int) -> LogEntry:
    """Receipt log of an ERC-20 Transfer(from, to, value)."""
    return LogEntry(
        address=token.lower(),
        topics=[TRANSFER_EVENT_TOPIC, _address_topic(from_addr), _address_topic(to_addr)],
        data="0x" + format(value, "064x"),
    )


@pytest.fixture()
def transfer_log():
    return make_transfer_log


class FakeChain(ChainDataSource):
    """In-memory ChainDataSource that counts lookups per tx hash."""

    def __init__(self) -> None:
        self.transfers: list[TransferEvent] = []
        self.txs: dict[str, TxDetail] = {}
        self.logs: dict[str, list[LogEntry]] = {}
        self.internal: list[InternalTransfer] = []
        self.errors: dict[str, Exception] = {}  # "tx:<hash>", "receipt:<hash>", "internal", "feed"
        self.calls: dict[str, int] = defaultdict(int)
        self.internal_ranges: list[tuple[int, int]] = []

    def _maybe_fail(self, key: str) -> None:
        if key in self.errors:
            raise self.errors[key]

    async def get_token_transfers(self, wallet_address, token_address):
        self.calls["feed"] += 1
        self._maybe_fail("feed")
        return list(self.transfers)

    async def get_transaction(self, tx_hash):
        self.calls[f"tx:{tx_hash}"] += 1
        self._maybe_fail(f"tx:{tx_hash}")
        return self.txs.get(tx_hash)

    async def get_receipt_logs(self, tx_hash):
        self.calls[f"receipt:{tx_hash}"] += 1
        self._maybe_fail(f"receipt:{tx_hash}")
        return self.logs.get(tx_hash)

    async def get_internal_transfers(self, wallet_address, from_block, to_block):
        self.calls["internal"] += 1
        self.internal_ranges.append((from_block, to_block))
        self._maybe_fail("internal")
        return list(self.internal)

    def lookup_calls(self) -> int:
        return sum(n for key, n in self.calls.items() if key != "feed")


@pytest.fixture()
def fake_chain():
    return FakeChain()
