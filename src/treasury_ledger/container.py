from dependency_injector import containers, providers

from treasury_ledger.config import Settings
from treasury_ledger.db.session import build_engine, build_session_factory
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
from treasury_ledger.infra.history.nearblocks import build_history_sources
from treasury_ledger.infra.http.rate_limited_client import RateLimitedClient, bearer_headers


class Container(containers.DeclarativeContainer):
    wiring_config = containers.WiringConfiguration(modules=["treasury_ledger.api.deps"])

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

    rpc_http_client = providers.Singleton(
        RateLimitedClient,
        rate_per_second=settings.provided.rpc_rate_per_second,
        timeout=settings.provided.rpc_timeout,
        headers=providers.Callable(bearer_headers, settings.provided.fastnear_api_key),
    )

    near_rpc = providers.Singleton(
        NearRPCClient,
        rpc_url=settings.provided.near_rpc_url,
        http_client=rpc_http_client,
    )

    history_sources = providers.Singleton(
        build_history_sources,
        api_key=settings.provided.nearblocks_api_key,
    )
