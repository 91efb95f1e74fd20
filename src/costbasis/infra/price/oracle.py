"""HistoricalPriceOracle: native-asset USD price per UTC calendar date.

Cache lookup -> paced remote lookup with rate-limit retry -> cache store.
A price that cannot be resolved degrades to a fixed fallback and is recorded in
``fallback_dates``; it never fails the computation.

One oracle serves one computation: it memoizes what it resolved (fallbacks
included) so each date hits the remote side at most once per request.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from costbasis.exceptions import RateLimitedError
from costbasis.infra.price.cache import PriceCacheStore
from costbasis.infra.price.coingecko import HistoricalPriceProvider

logger = logging.getLogger(__name__)

# Wait before retry N after a 429: 2s, 4s, 6s
RATE_LIMIT_BACKOFF_SECONDS: tuple[float, ...] = (2.0, 4.0, 6.0)
DEFAULT_REQUEST_DELAY_SECONDS = 1.5
DEFAULT_FALLBACK_PRICE = Decimal("2400")

SleepFn = Callable[[float], Awaitable[None]]


def utc_date(timestamp: int) -> date:
    """Canonical cache key: the UTC calendar date of a Unix timestamp."""
    return datetime.fromtimestamp(timestamp, tz=UTC).date()


class HistoricalPriceOracle:
    def __init__(
        self,
        provider: HistoricalPriceProvider,
        cache: PriceCacheStore,
        fallback_price: Decimal = DEFAULT_FALLBACK_PRICE,
        request_delay: float = DEFAULT_REQUEST_DELAY_SECONDS,
        backoff: Iterable[float] = RATE_LIMIT_BACKOFF_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._fallback_price = fallback_price
        self._request_delay = request_delay
        self._backoff = tuple(backoff)
        self._sleep = sleep
        self._resolved: dict[date, Decimal] = {}
        self._remote_calls = 0
        self.fallback_dates: list[date] = []

    @property
    def fallback_price(self) -> Decimal:
        return self._fallback_price

    @property
    def remote_calls(self) -> int:
        return self._remote_calls

    async def price_on_date(self, day: date) -> Decimal:
        """USD price for the day. Never raises; degrades to the fallback price."""
        if day in self._resolved:
            return self._resolved[day]

        cached = await self._cache_get(day)
        if cached is not None:
            self._resolved[day] = cached
            return cached

        price = await self._fetch_remote(day)
        if price is None:
            logger.warning("No ETH price for %s, using fallback $%s", day, self._fallback_price)
            self.fallback_dates.append(day)
            self._resolved[day] = self._fallback_price
            return self._fallback_price

        await self._cache_set(day, price)
        self._resolved[day] = price
        return price

    async def _cache_get(self, day: date) -> Decimal | None:
        try:
            return await self._cache.get(day)
        except SQLAlchemyError as e:
            logger.warning("Price cache read failed for %s, treating as miss: %s", day, e)
            return None

    async def _cache_set(self, day: date, price: Decimal) -> None:
        try:
            await self._cache.set(day, price)
        except SQLAlchemyError as e:
            logger.warning("Price cache write failed for %s, price not persisted: %s", day, e)

    async def batch_resolve(self, timestamps: Iterable[int]) -> dict[date, Decimal]:
        """Resolve every distinct UTC date among the timestamps."""
        days = sorted({utc_date(ts) for ts in timestamps})
        logger.info("Need ETH prices for %d unique dates", len(days))

        prices: dict[date, Decimal] = {}
        hits = 0
        for day in days:
            calls_before = self._remote_calls
            prices[day] = await self.price_on_date(day)
            if self._remote_calls == calls_before:
                hits += 1

        logger.info("Price cache hits: %d/%d", hits, len(days))
        return prices

    async def price_at(self, timestamp: int) -> Decimal:
        return await self.price_on_date(utc_date(timestamp))

    def is_fallback(self, timestamp: int) -> bool:
        return utc_date(timestamp) in self.fallback_dates

    async def _fetch_remote(self, day: date) -> Decimal | None:
        """One logical remote lookup: paced, retried on rate-limit signals only."""
        if self._remote_calls > 0 and self._request_delay > 0:
            await self._sleep(self._request_delay)
        self._remote_calls += 1

        attempt = 0
        while True:
            try:
                return await self._provider.get_price_on_date(day)
            except RateLimitedError:
                if attempt >= len(self._backoff):
                    logger.error("Rate limit exceeded after %d retries for %s", attempt, day)
                    return None
                wait = self._backoff[attempt]
                attempt += 1
                logger.warning("Rate limited fetching %s, waiting %.0fs before retry %d", day, wait, attempt)
                await self._sleep(wait)
