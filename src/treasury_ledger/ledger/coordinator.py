"""Ordered chain of transfer-history sources in front of the RPC binary search."""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from treasury_ledger.domain.models.asset import Asset
from treasury_ledger.exceptions import ExternalServiceError, RateLimited
from treasury_ledger.ledger.binary_search import BinarySearchEngine

logger = logging.getLogger(__name__)


class TransferHistorySource(ABC):
    """Strategy interface for third-party history APIs."""

    name: str = "history"

    @abstractmethod
    async def candidate_blocks(self, account_id: str, asset: Asset, start_block: int, end_block: int) -> list[int]:
        """Blocks in [start_block, end_block] where the source saw activity for the account/asset."""


class APICoordinator:
    """Tries each history source in order, then falls back to binary search.

    A candidate from a source is only accepted after RPC confirms the balance
    transition at that block, so a wrong or stale source cannot corrupt the ledger.
    """

    def __init__(self, sources: list[TransferHistorySource], search: BinarySearchEngine) -> None:
        self._sources = sources
        self._search = search

    async def find_change_block(
        self,
        account_id: str,
        asset: Asset,
        start_block: int,
        end_block: int,
        expected_after: Decimal,
    ) -> int | None:
        for source in self._sources:
            try:
                candidates = await source.candidate_blocks(account_id, asset, start_block + 1, end_block - 1)
            except RateLimited:
                logger.info("History source %s rate limited; trying next source", source.name)
                continue
            except ExternalServiceError as e:
                logger.warning("History source %s failed: %s; trying next source", source.name, e)
                continue

            for block in sorted(set(candidates), reverse=True):
                if not start_block < block < end_block:
                    continue
                if await self._verify(account_id, asset, block, expected_after):
                    logger.debug("History source %s located change at block %d", source.name, block)
                    return block

        return await self._search.find_change_block(account_id, asset, start_block, end_block, expected_after)

    async def _verify(self, account_id: str, asset: Asset, block: int, expected_after: Decimal) -> bool:
        after = await self._search.probe(account_id, asset, block)
        if after != expected_after:
            return False
        before = await self._search.probe(account_id, asset, block - 1)
        return before != after
