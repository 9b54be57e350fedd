"""Locate the block in which a balance changed, with O(log range) probes."""

import logging
from decimal import Decimal

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from treasury_ledger.domain.models.asset import Asset
from treasury_ledger.exceptions import RateLimited, RpcUnavailable
from treasury_ledger.ledger.balance import BalanceQueryService

logger = logging.getLogger(__name__)


class BinarySearchEngine:
    """Binary search over block heights using archival balance queries.

    The effect of a receipt executed in block N is visible when querying at N,
    which is the same state as the start of N+1. A search over (start, end)
    therefore probes heights start..end-1 and returns the first height whose
    balance equals the expected after-value.
    """

    def __init__(
        self,
        balances: BalanceQueryService,
        probe_attempts: int = 3,
        backoff_seconds: float = 2.0,
    ) -> None:
        self._balances = balances
        self._probe_attempts = probe_attempts
        self._backoff_seconds = backoff_seconds
        self.probe_count = 0

    async def probe(self, account_id: str, asset: Asset, block_height: int) -> Decimal:
        """One balance query; transient upstream failures are retried with backoff."""
        balance = Decimal(0)
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((RpcUnavailable, RateLimited)),
            stop=stop_after_attempt(self._probe_attempts),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=30),
            reraise=True,
        ):
            with attempt:
                self.probe_count += 1
                balance = await self._balances.balance_at(account_id, asset, block_height)
        return balance

    async def find_change_block(
        self,
        account_id: str,
        asset: Asset,
        start_block: int,
        end_block: int,
        expected_after: Decimal,
    ) -> int | None:
        """Smallest height in (start_block, end_block - 1] whose balance is expected_after.

        Returns None when the balance at end_block - 1 is not expected_after, or
        when start_block already holds it (no change inside the range).
        """
        hi = end_block - 1
        if hi < start_block:
            return None

        hi_balance = await self.probe(account_id, asset, hi)
        if hi_balance != expected_after:
            logger.info(
                "Balance of %s/%s at block %d is %s, expected %s; no change block in range",
                account_id,
                asset.asset_id,
                hi,
                hi_balance,
                expected_after,
            )
            return None

        if hi == start_block:
            return None
        start_balance = await self.probe(account_id, asset, start_block)
        if start_balance == expected_after:
            return None

        # Invariant: balance(lo) != expected_after, balance(hi) == expected_after
        lo = start_block
        while hi - lo > 1:
            mid = (lo + hi) // 2
            if await self.probe(account_id, asset, mid) == expected_after:
                hi = mid
            else:
                lo = mid

        logger.debug("Change for %s/%s found at block %d", account_id, asset.asset_id, hi)
        return hi
