"""Find the assets an account holds beyond what the ledger already tracks.

Native NEAR is always tracked. NEP-141 tokens surface indirectly, through the
receipts of native-balance changes and through counterparties that answer
``ft_balance_of``. Intents holdings are polled from the intents contract and
bootstrapped with a SNAPSHOT record.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.repos.balance_change_repo import BalanceChangeRepo
from treasury_ledger.db.repos.counterparty_repo import CounterpartyRepo
from treasury_ledger.domain.enums import CounterpartyType, ReservedCounterparty
from treasury_ledger.domain.models.asset import NATIVE_ASSET_ID, intents_asset
from treasury_ledger.exceptions import AccountNotFound, BlockNotFound, BlockNotIndexed, ContractCallError
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
from treasury_ledger.ledger.block_info import BlockInfoService
from treasury_ledger.ledger.gap_filler import GapFiller
from treasury_ledger.ledger.token_metadata import TokenMetadataService

logger = logging.getLogger(__name__)

# Heuristic classes that are never token contracts
_NOT_TOKENS = {
    CounterpartyType.DAO.value,
    CounterpartyType.STAKING_POOL.value,
    CounterpartyType.SYSTEM.value,
}


class TokenDiscovery:
    def __init__(
        self,
        session: AsyncSession,
        rpc: NearRPCClient,
        block_info: BlockInfoService,
        metadata: TokenMetadataService,
        intents_contract: str = "intents.near",
        ft_receipt_lookahead_blocks: int = 3,
    ) -> None:
        self._changes = BalanceChangeRepo(session)
        self._counterparties = CounterpartyRepo(session)
        self._rpc = rpc
        self._block_info = block_info
        self._metadata = metadata
        self._intents_contract = intents_contract
        self._lookahead = ft_receipt_lookahead_blocks

    async def tracked_assets(self, account_id: str) -> list[str]:
        """Native first, then every token already present in the ledger."""
        tokens = await self._changes.known_tokens(account_id)
        return [NATIVE_ASSET_ID] + [t for t in tokens if t != NATIVE_ASSET_ID]

    async def discover_fungible_tokens(
        self, account_id: str, change_blocks: list[int] | None = None
    ) -> list[str]:
        """NEP-141 contracts the account interacted with that the ledger does not track yet.

        change_blocks are heights of new native (non-snapshot) records to inspect.
        """
        known = set(await self._changes.known_tokens(account_id))
        found: set[str] = set()

        for block_height in change_blocks or []:
            found |= await self._ft_contracts_near(account_id, block_height)

        found |= await self._probe_counterparties(account_id)
        new_tokens = sorted(found - known)
        if new_tokens:
            logger.info("Discovered FT tokens for %s: %s", account_id, ", ".join(new_tokens))
        return new_tokens

    async def intents_holdings(self, account_id: str, block_height: int | None = None) -> dict[str, int]:
        """Current intents holdings with a nonzero raw balance, keyed by composite token id."""
        entries = await self._rpc.call_function(
            self._intents_contract, "mt_tokens_for_owner", {"account_id": account_id}, block_height
        )
        token_ids = [entry["token_id"] for entry in entries or []]
        if not token_ids:
            return {}

        balances = await self._rpc.call_function(
            self._intents_contract,
            "mt_batch_balance_of",
            {"account_id": account_id, "token_ids": token_ids},
            block_height,
        )
        holdings = {}
        for token_id, raw in zip(token_ids, balances or []):
            if int(raw) > 0:
                holdings[intents_asset(self._intents_contract, token_id).asset_id] = int(raw)
        return holdings

    async def bootstrap_intents(self, account_id: str, filler: GapFiller, upper_bound: int) -> list[str]:
        """SNAPSHOT record at upper_bound for every held intents token not yet in the ledger.

        Returns the token ids bootstrapped.
        """
        known = set(await self._changes.known_tokens(account_id))
        created = []
        for token_id in await self.intents_holdings(account_id, upper_bound):
            if token_id in known:
                continue
            asset = intents_asset(*token_id.split(":", 1))
            change = await filler.record_change_at(
                account_id, asset, upper_bound, counterparty=ReservedCounterparty.SNAPSHOT.value
            )
            if change is not None:
                logger.info("Bootstrapped intents holding %s for %s at block %d", token_id, account_id, upper_bound)
                created.append(token_id)
        return created

    async def _ft_contracts_near(self, account_id: str, block_height: int) -> set[str]:
        """Token contracts named by FT calls in a change block and the few blocks after it."""
        contracts: set[str] = set()
        for height in range(block_height, block_height + self._lookahead + 1):
            try:
                receipts = await self._block_info.receipts_for(account_id, height)
            except BlockNotIndexed:
                # Skipped heights produce no receipts; past the head there is nothing left
                if height > await self._block_info.latest_height():
                    break
                continue
            except BlockNotFound:
                break
            for receipt in receipts:
                for method in receipt.method_names:
                    if method in ("ft_transfer", "ft_transfer_call") and receipt.predecessor_id == account_id:
                        contracts.add(receipt.receiver_id)
                    elif method == "ft_on_transfer" and receipt.receiver_id == account_id:
                        contracts.add(receipt.predecessor_id)
        contracts.discard(account_id)
        return contracts

    async def _probe_counterparties(self, account_id: str) -> set[str]:
        tokens: set[str] = set()
        for candidate in await self._changes.distinct_counterparties(account_id, NATIVE_ASSET_ID):
            if candidate == account_id:
                continue
            known = await self._counterparties.get(candidate)
            if known is not None and known.is_token:
                tokens.add(candidate)
                continue
            if known is not None and (known.account_type in _NOT_TOKENS or known.last_verified_at is not None):
                continue

            try:
                await self._rpc.call_function(candidate, "ft_balance_of", {"account_id": account_id})
                await self._metadata.ensure_ft_metadata(candidate, candidate)
            except (ContractCallError, AccountNotFound):
                keep = CounterpartyType(known.account_type) if known is not None else CounterpartyType.OTHER
                await self._counterparties.mark_verified(candidate, keep)
                continue
            tokens.add(candidate)
        return tokens
