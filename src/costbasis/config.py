from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    etherscan_api_key: str = ""
    coingecko_api_key: str = ""
    chain_id: int = 1  # Ethereum mainnet
    database_url: str = "sqlite+aiosqlite:///./costbasis.db"
    fallback_native_price_usd: Decimal = Decimal("2400")  # Used when no historical ETH price resolves
    price_request_delay_seconds: float = 1.5
    http_rate_per_second: float = 5.0
    http_timeout_seconds: float = 30.0
    debug: bool = False

    class Config:
        env_file = ".env"
