from dependency_injector import containers, providers

from costbasis.config import Settings
from costbasis.db.session import build_engine, build_session_factory
from costbasis.infra.blockchain.evm.etherscan_client import EtherscanClient
from costbasis.infra.http.rate_limited_client import RateLimitedClient
from costbasis.infra.price.cache import SqlPriceCache
from costbasis.infra.price.coingecko import CoinGeckoHistoryProvider
from costbasis.portfolio.service import PortfolioService


class Container(containers.DeclarativeContainer):
    wiring_config = containers.WiringConfiguration(modules=["costbasis.api.deps"])

    settings = providers.Singleton(Settings)

    engine = providers.Singleton(
        build_engine,
        database_url=settings.provided.database_url,
        echo=settings.provided.debug,
    )

    session_factory = providers.Singleton(
        build_session_factory,
        engine=engine,
    )

    # Separate clients: Etherscan and CoinGecko have independent rate budgets
    explorer_http = providers.Singleton(
        RateLimitedClient,
        rate_per_second=settings.provided.http_rate_per_second,
        timeout=settings.provided.http_timeout_seconds,
    )

    price_http = providers.Singleton(
        RateLimitedClient,
        rate_per_second=settings.provided.http_rate_per_second,
        timeout=settings.provided.http_timeout_seconds,
    )

    etherscan = providers.Singleton(
        EtherscanClient,
        api_key=settings.provided.etherscan_api_key,
        http_client=explorer_http,
        chain_id=settings.provided.chain_id,
    )

    price_provider = providers.Singleton(
        CoinGeckoHistoryProvider,
        http_client=price_http,
        api_key=settings.provided.coingecko_api_key,
    )

    price_cache = providers.Singleton(
        SqlPriceCache,
        session_factory=session_factory,
    )

    portfolio_service = providers.Factory(
        PortfolioService,
        chain=etherscan,
        price_provider=price_provider,
        price_cache=price_cache,
        fallback_price=settings.provided.fallback_native_price_usd,
        price_request_delay=settings.provided.price_request_delay_seconds,
    )
