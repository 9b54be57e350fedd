"""Turn detected gaps into ledger records until the chain for a pair is closed.

GapFiller is the only consistency-repair mechanism. It never stores partial
progress: a gap that cannot be filled now is left for the next cycle, where
GapDetector reports it again.
"""

import logging
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.models.balance_change import BalanceChange
from treasury_ledger.db.repos.balance_change_repo import BalanceChangeRepo
from treasury_ledger.domain.enums import ReservedCounterparty
from treasury_ledger.domain.models.amount import delta
from treasury_ledger.domain.models.asset import Asset, NativeAsset, parse_asset
from treasury_ledger.domain.models.receipt import ReceiptRecord
from treasury_ledger.exceptions import ExternalServiceError, GapNotResolvable
from treasury_ledger.ledger.balance import BalanceQueryService
from treasury_ledger.ledger.block_info import BlockInfoService, block_time_from_ns
from treasury_ledger.ledger.counterparty import CounterpartyResolver
from treasury_ledger.ledger.gap_detector import BalanceGap, GapDetector

logger = logging.getLogger(__name__)


class ChangeLocator(Protocol):
    """Anything that can pin a balance change to a block (binary search, history APIs)."""

    async def find_change_block(
        self,
        account_id: str,
        asset: Asset,
        start_block: int,
        end_block: int,
        expected_after: Decimal,
    ) -> int | None: ...


class GapFiller:
    def __init__(
        self,
        session: AsyncSession,
        balances: BalanceQueryService,
        block_info: BlockInfoService,
        locator: ChangeLocator,
        resolver: CounterpartyResolver,
        seed_lookback_blocks: int = 2_592_000,
        past_lookback_blocks: int = 600_000,
        max_fill_iterations: int = 50,
    ) -> None:
        self._session = session
        self._repo = BalanceChangeRepo(session)
        self._detector = GapDetector(session)
        self._balances = balances
        self._block_info = block_info
        self._locator = locator
        self._resolver = resolver
        self._seed_lookback = seed_lookback_blocks
        self._past_lookback = past_lookback_blocks
        self._max_iterations = max_fill_iterations

    async def fill(self, gap: BalanceGap) -> BalanceChange:
        """Insert the record that explains a gap. Raises GapNotResolvable if none is found."""
        asset = parse_asset(gap.token_id)
        block = await self._locator.find_change_block(
            gap.account_id, asset, gap.start_block, gap.end_block, gap.actual_before
        )
        if block is None:
            raise GapNotResolvable(
                f"No change to {gap.actual_before} found for {gap.account_id}/{gap.token_id} "
                f"in blocks {gap.start_block}..{gap.end_block}"
            )

        change = await self.record_change_at(gap.account_id, asset, block)
        if change is None:
            raise GapNotResolvable(f"Block {block} already recorded for {gap.account_id}/{gap.token_id}")
        return change

    async def fill_all(
        self,
        account_id: str,
        asset: Asset | str,
        upper_bound: int,
        current_balance: Decimal | None = None,
    ) -> list[BalanceChange]:
        """Seed, extend to present, extend to past, then fill every gap below upper_bound.

        Returns the records created. Running it again right after a run that
        reached a zero starting balance creates nothing.
        """
        if isinstance(asset, str):
            asset = parse_asset(asset)
        created: list[BalanceChange] = []

        if current_balance is None:
            current_balance = await self._balances.balance_at(account_id, asset, upper_bound)

        latest = await self._repo.latest(account_id, asset.asset_id)
        if latest is None:
            seeded = await self._seed(account_id, asset, upper_bound, current_balance)
            if seeded is None:
                return created
            created.append(seeded)
        else:
            present = await self._fill_to_present(account_id, asset, upper_bound, latest, current_balance)
            if present is not None:
                created.append(present)

        # Walk back change by change; a SNAPSHOT boundary ends the walk for this cycle
        for _ in range(self._max_iterations):
            past = await self._fill_to_past(account_id, asset)
            if past is None:
                break
            created.append(past)
            if past.is_snapshot:
                break

        created.extend(await self._fill_gaps(account_id, asset, upper_bound))
        return created

    async def record_change_at(
        self,
        account_id: str,
        asset: Asset,
        block_height: int,
        counterparty: str | None = None,
    ) -> BalanceChange | None:
        """Measure, attribute and insert the change at one block.

        Returns None when the block is already recorded for the pair. An explicit
        counterparty (e.g. SNAPSHOT) skips receipt lookup.
        """
        before, after = await self._balances.balance_change_at(account_id, asset, block_height)
        timestamp = await self._block_info.timestamp_of(block_height)

        receipts: list[ReceiptRecord] = []
        if counterparty is None:
            contract_id = None if isinstance(asset, NativeAsset) else asset.contract_id
            receipts = await self._block_info.receipts_for(
                account_id, block_height, contract_id=contract_id, with_logs=contract_id is not None
            )
            counterparty = self._resolver.resolve(account_id, asset, receipts)

        change = BalanceChange(
            account_id=account_id,
            token_id=asset.asset_id,
            block_height=block_height,
            block_timestamp=timestamp,
            block_time=block_time_from_ns(timestamp),
            counterparty=counterparty,
            amount=delta(before, after),
            balance_before=before,
            balance_after=after,
            actions=_actions_payload(account_id, receipts),
            raw_data={"receipts": [r.to_payload() for r in receipts]} if receipts else None,
        )
        if not await self._repo.insert(change):
            logger.debug("Block %d already recorded for %s/%s", block_height, account_id, asset.asset_id)
            return None

        await self._resolver.remember(counterparty)
        await self._session.commit()
        logger.info(
            "Inserted balance change at block %d for %s/%s: %s -> %s (%s)",
            block_height,
            account_id,
            asset.asset_id,
            before,
            after,
            counterparty,
        )
        return change

    async def _seed(
        self, account_id: str, asset: Asset, upper_bound: int, current_balance: Decimal
    ) -> BalanceChange | None:
        if current_balance == 0:
            return None

        start = max(1, upper_bound - self._seed_lookback)
        block = await self._locator.find_change_block(
            account_id, asset, _exclusive_lower(start), upper_bound + 1, current_balance
        )
        if block is None:
            logger.info(
                "Balance %s of %s/%s predates block %d; recording snapshot at %d",
                current_balance,
                account_id,
                asset.asset_id,
                start,
                upper_bound,
            )
            return await self.record_change_at(
                account_id, asset, upper_bound, counterparty=ReservedCounterparty.SNAPSHOT.value
            )
        return await self.record_change_at(account_id, asset, block)

    async def _fill_to_present(
        self,
        account_id: str,
        asset: Asset,
        upper_bound: int,
        latest: BalanceChange,
        current_balance: Decimal,
    ) -> BalanceChange | None:
        if latest.balance_after == current_balance or latest.block_height >= upper_bound:
            return None

        block = await self._locator.find_change_block(
            account_id, asset, latest.block_height, upper_bound + 1, current_balance
        )
        if block is None:
            logger.info(
                "No change to %s found for %s/%s after block %d",
                current_balance,
                account_id,
                asset.asset_id,
                latest.block_height,
            )
            return None
        return await self.record_change_at(account_id, asset, block)

    async def _fill_to_past(self, account_id: str, asset: Asset) -> BalanceChange | None:
        earliest = await self._repo.earliest(account_id, asset.asset_id)
        if earliest is None or earliest.balance_before == 0 or earliest.block_height <= 1:
            return None

        start = max(1, earliest.block_height - self._past_lookback)
        try:
            block = await self._locator.find_change_block(
                account_id, asset, _exclusive_lower(start), earliest.block_height, earliest.balance_before
            )
            if block is not None:
                return await self.record_change_at(account_id, asset, block)
            if start == 1:
                logger.info("Balance of %s/%s predates retained history", account_id, asset.asset_id)
                return None
            # Move the observation boundary back; the next cycle continues from here
            return await self.record_change_at(
                account_id, asset, start, counterparty=ReservedCounterparty.SNAPSHOT.value
            )
        except ExternalServiceError as e:
            logger.warning(
                "Error searching for gap to past for %s/%s: %s - will retry on next cycle",
                account_id,
                asset.asset_id,
                e,
            )
            return None

    async def _fill_gaps(self, account_id: str, asset: Asset, upper_bound: int) -> list[BalanceChange]:
        created: list[BalanceChange] = []
        abandoned: set[tuple[int, int]] = set()

        for _ in range(self._max_iterations):
            gaps = [
                gap
                for gap in await self._detector.find_gaps(account_id, asset.asset_id, upper_bound)
                if (gap.start_block, gap.end_block) not in abandoned
            ]
            if not gaps:
                break

            gap = gaps[0]
            try:
                created.append(await self.fill(gap))
            except (GapNotResolvable, ExternalServiceError) as e:
                logger.warning(
                    "Leaving gap %d..%d of %s/%s for the next cycle: %s",
                    gap.start_block,
                    gap.end_block,
                    account_id,
                    asset.asset_id,
                    e,
                )
                abandoned.add((gap.start_block, gap.end_block))
        else:
            logger.warning("Stopped filling %s/%s after %d iterations", account_id, asset.asset_id, self._max_iterations)

        return created


def _actions_payload(account_id: str, receipts: list[ReceiptRecord]) -> list[dict] | None:
    own = [
        {"receipt_id": r.receipt_id, "actions": r.actions}
        for r in receipts
        if account_id in (r.receiver_id, r.predecessor_id) and r.actions
    ]
    return own or None


def _exclusive_lower(first_block: int) -> int:
    """Search lower bound that still lets a change at first_block itself be found."""
    return first_block - 1 if first_block > 1 else first_block
