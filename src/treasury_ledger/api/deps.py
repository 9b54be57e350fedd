from typing import AsyncGenerator

from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from treasury_ledger.config import Settings
from treasury_ledger.container import Container
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
from treasury_ledger.ledger.coordinator import TransferHistorySource


@inject
async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(Provide[Container.session_factory]),
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@inject
def get_settings(settings: Settings = Depends(Provide[Container.settings])) -> Settings:
    return settings


@inject
def get_rpc(rpc: NearRPCClient = Depends(Provide[Container.near_rpc])) -> NearRPCClient:
    return rpc


@inject
def get_history_sources(
    sources: list[TransferHistorySource] = Depends(Provide[Container.history_sources]),
) -> list[TransferHistorySource]:
    return sources
