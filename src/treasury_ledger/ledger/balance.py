"""Point-in-time balance queries over the three asset kinds."""

import logging
from decimal import Decimal

from treasury_ledger.domain.models.amount import raw_to_decimal
from treasury_ledger.domain.models.asset import (
    NATIVE_DECIMALS,
    Asset,
    FungibleToken,
    IntentsToken,
    NativeAsset,
    parse_asset,
)
from treasury_ledger.exceptions import AccountNotFound, BlockNotIndexed
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
from treasury_ledger.ledger.token_metadata import TokenMetadataService

logger = logging.getLogger(__name__)

# NEAR skips heights; state at a skipped height equals the last produced block
SKIPPED_BLOCK_LOOKBACK = 10


class BalanceQueryService:
    """balance_at(account, asset, block) for native, NEP-141 and intents holdings.

    Amounts are returned human-readable (raw / 10^decimals). No retries: RPC
    failures propagate to the caller.
    """

    def __init__(self, rpc: NearRPCClient, metadata: TokenMetadataService) -> None:
        self._rpc = rpc
        self._metadata = metadata

    async def balance_at(self, account_id: str, asset: Asset | str, block_height: int) -> Decimal:
        if isinstance(asset, str):
            asset = parse_asset(asset)

        last_error: BlockNotIndexed | None = None
        for offset in range(SKIPPED_BLOCK_LOOKBACK + 1):
            height = block_height - offset
            if height < 1:
                break
            try:
                return await self._query(account_id, asset, height)
            except BlockNotIndexed as e:
                last_error = e
                logger.debug("Block %d not available for %s/%s, trying previous", height, account_id, asset.asset_id)

        raise BlockNotIndexed(
            f"No block available at or below {block_height} (within {SKIPPED_BLOCK_LOOKBACK} heights): {last_error}",
            block_height=block_height,
        )

    async def balance_change_at(self, account_id: str, asset: Asset | str, block_height: int) -> tuple[Decimal, Decimal]:
        """(balance before, balance after) the given block."""
        after = await self.balance_at(account_id, asset, block_height)
        before = await self.balance_at(account_id, asset, block_height - 1) if block_height > 1 else Decimal(0)
        return before, after

    async def raw_to_human(self, asset: Asset, raw_amount: str | int) -> Decimal:
        decimals = await self._metadata.decimals_for(asset)
        return raw_to_decimal(raw_amount, decimals)

    async def _query(self, account_id: str, asset: Asset, block_height: int) -> Decimal:
        if isinstance(asset, NativeAsset):
            return await self._native(account_id, block_height)
        if isinstance(asset, FungibleToken):
            return await self._fungible(account_id, asset, block_height)
        if isinstance(asset, IntentsToken):
            return await self._intents(account_id, asset, block_height)
        raise TypeError(f"Unsupported asset: {asset!r}")

    async def _native(self, account_id: str, block_height: int) -> Decimal:
        try:
            account = await self._rpc.view_account(account_id, block_height)
        except AccountNotFound:
            # Account not created yet at this height
            return Decimal(0)
        return raw_to_decimal(account["amount"], NATIVE_DECIMALS)

    async def _fungible(self, account_id: str, token: FungibleToken, block_height: int) -> Decimal:
        decimals = await self._metadata.decimals_for(token)
        try:
            raw = await self._rpc.call_function(
                token.contract_id, "ft_balance_of", {"account_id": account_id}, block_height
            )
        except AccountNotFound:
            # Token contract not deployed yet at this height
            return Decimal(0)
        return raw_to_decimal(raw or "0", decimals)

    async def _intents(self, account_id: str, token: IntentsToken, block_height: int) -> Decimal:
        decimals = await self._metadata.decimals_for(token)
        try:
            raw = await self._rpc.call_function(
                token.contract_id,
                "mt_balance_of",
                {"account_id": account_id, "token_id": token.token_id},
                block_height,
            )
        except AccountNotFound:
            return Decimal(0)
        return raw_to_decimal(raw or "0", decimals)
