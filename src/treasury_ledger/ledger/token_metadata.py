"""Token decimals and metadata, cached in the counterparties table."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.repos.counterparty_repo import CounterpartyRepo
from treasury_ledger.domain.models.asset import NATIVE_DECIMALS, Asset, NativeAsset
from treasury_ledger.exceptions import ContractCallError
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient

logger = logging.getLogger(__name__)


class TokenMetadataService:
    """Resolve decimals per asset; ft_metadata is queried once per token and stored."""

    def __init__(self, session: AsyncSession, rpc: NearRPCClient) -> None:
        self._repo = CounterpartyRepo(session)
        self._rpc = rpc
        self._decimals: dict[str, int] = {}

    async def decimals_for(self, asset: Asset) -> int:
        if isinstance(asset, NativeAsset):
            return NATIVE_DECIMALS
        return await self.ensure_ft_metadata(asset.asset_id, asset.metadata_contract)

    async def ensure_ft_metadata(self, token_id: str, metadata_contract: str) -> int:
        """Return decimals for a token, querying and storing its metadata on first use.

        Intents holdings read metadata from the underlying contract but are stored
        under their full composite id.
        """
        if token_id in self._decimals:
            return self._decimals[token_id]

        decimals = await self._repo.get_decimals(token_id)
        if decimals is not None:
            self._decimals[token_id] = decimals
            return decimals

        metadata = await self._rpc.call_function(metadata_contract, "ft_metadata")
        if not isinstance(metadata, dict) or not isinstance(metadata.get("decimals"), int):
            raise ContractCallError(f"{metadata_contract}.ft_metadata returned no decimals")

        decimals = metadata["decimals"]
        await self._repo.upsert_token(
            token_id,
            decimals=decimals,
            symbol=metadata.get("symbol"),
            name=metadata.get("name"),
            icon=metadata.get("icon"),
        )
        logger.info(
            "Discovered FT token %s (%s) with %d decimals (contract: %s)",
            token_id,
            metadata.get("symbol"),
            decimals,
            metadata_contract,
        )
        self._decimals[token_id] = decimals
        return decimals
