"""CoinGecko provider: historical daily USD price of the native asset."""

import logging
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal, InvalidOperation

import httpx

from costbasis.exceptions import RateLimitedError
from costbasis.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)

BASE_URL = "https://api.coingecko.com"

NATIVE_COIN_ID = "ethereum"


class HistoricalPriceProvider(ABC):
    """Remote lookup of one day's USD price."""

    @abstractmethod
    async def get_price_on_date(self, day: date) -> Decimal | None:
        """USD price for the day, None if unavailable.

        Raises RateLimitedError when the remote side signals too many requests.
        """


def _coingecko_date(day: date) -> str:
    """CoinGecko's /history endpoint wants DD-MM-YYYY."""
    return day.strftime("%d-%m-%Y")


class CoinGeckoHistoryProvider(HistoricalPriceProvider):
    """Single-shot lookup against /coins/{id}/history. Retrying is the caller's job."""

    def __init__(self, http_client: RateLimitedClient, api_key: str = "", coin_id: str = NATIVE_COIN_ID) -> None:
        self._http = http_client
        self._api_key = api_key
        self._coin_id = coin_id

    async def get_price_on_date(self, day: date) -> Decimal | None:
        params: dict[str, str] = {"date": _coingecko_date(day), "localization": "false"}
        if self._api_key:
            params["x_cg_demo_api_key"] = self._api_key

        url = f"{BASE_URL}/api/v3/coins/{self._coin_id}/history"
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError:
            logger.exception("CoinGecko request failed for %s", day)
            return None

        if response.status_code == 429:
            raise RateLimitedError(f"CoinGecko 429 for {self._coin_id} on {day}")

        if response.status_code != 200:
            logger.warning("CoinGecko returned %d for %s on %s", response.status_code, self._coin_id, day)
            return None

        try:
            data = response.json()
            price = Decimal(str(data["market_data"]["current_price"]["usd"]))
        except (ValueError, KeyError, TypeError, InvalidOperation):
            logger.warning("Could not read %s price for %s from CoinGecko payload", self._coin_id, day)
            return None

        if price <= 0:
            return None
        return price
