"""Date-keyed price cache stores. Historical prices never change, so entries never expire."""

import logging
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from costbasis.db.models.price_cache import DailyPriceCache

logger = logging.getLogger(__name__)


class PriceCacheStore(ABC):
    """Key-value store: calendar date -> USD price."""

    @abstractmethod
    async def get(self, day: date) -> Decimal | None:
        """Cached price for the day, None if absent."""

    @abstractmethod
    async def set(self, day: date, price: Decimal) -> None:
        """Store a price. Writing a date that is already present is a no-op."""


class InMemoryPriceCache(PriceCacheStore):
    def __init__(self, initial: dict[date, Decimal] | None = None) -> None:
        self._prices: dict[date, Decimal] = dict(initial or {})

    async def get(self, day: date) -> Decimal | None:
        return self._prices.get(day)

    async def set(self, day: date, price: Decimal) -> None:
        self._prices.setdefault(day, price)

    def __len__(self) -> int:
        return len(self._prices)


class SqlPriceCache(PriceCacheStore):
    """Cache backed by the ``daily_price_cache`` table; one short session per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        symbol: str = "ETH",
        source: str = "coingecko",
    ) -> None:
        self._session_factory = session_factory
        self._symbol = symbol.upper()
        self._source = source

    async def get(self, day: date) -> Decimal | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DailyPriceCache.price_usd).where(
                    DailyPriceCache.symbol == self._symbol,
                    DailyPriceCache.day == day,
                )
            )
            return result.scalar_one_or_none()

    async def set(self, day: date, price: Decimal) -> None:
        async with self._session_factory() as session:
            session.add(DailyPriceCache(symbol=self._symbol, day=day, price_usd=price, source=self._source))
            try:
                await session.commit()
            except IntegrityError:
                # Another request cached this date first
                await session.rollback()
                logger.debug("Price for %s on %s already cached", self._symbol, day)
