"""Sequential monitoring loop over enabled accounts and their assets."""

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from treasury_ledger.config import Settings
from treasury_ledger.db.repos.balance_change_repo import BalanceChangeRepo
from treasury_ledger.db.repos.monitored_account_repo import MonitoredAccountRepo
from treasury_ledger.domain.models.asset import NATIVE_ASSET_ID, parse_asset
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
from treasury_ledger.ledger.balance import BalanceQueryService
from treasury_ledger.ledger.binary_search import BinarySearchEngine
from treasury_ledger.ledger.block_info import BlockInfoService
from treasury_ledger.ledger.coordinator import APICoordinator, TransferHistorySource
from treasury_ledger.ledger.counterparty import CounterpartyResolver
from treasury_ledger.ledger.gap_filler import GapFiller
from treasury_ledger.ledger.token_discovery import TokenDiscovery
from treasury_ledger.ledger.token_metadata import TokenMetadataService

logger = logging.getLogger(__name__)


@dataclass
class AccountSyncReport:
    account_id: str
    assets_processed: int = 0
    records_created: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class AccountMonitor:
    """One account at a time, one asset at a time.

    There is no first-run mode and no cursor: every cycle re-derives the work
    from the ledger. A failure aborts only its account/asset unit.
    """

    def __init__(
        self,
        session: AsyncSession,
        balances: BalanceQueryService,
        block_info: BlockInfoService,
        filler: GapFiller,
        discovery: TokenDiscovery,
    ) -> None:
        self._session = session
        self._accounts = MonitoredAccountRepo(session)
        self._changes = BalanceChangeRepo(session)
        self._balances = balances
        self._block_info = block_info
        self._filler = filler
        self._discovery = discovery

    @classmethod
    def build(
        cls,
        session: AsyncSession,
        rpc: NearRPCClient,
        settings: Settings,
        history_sources: list[TransferHistorySource] | None = None,
    ) -> "AccountMonitor":
        metadata = TokenMetadataService(session, rpc)
        balances = BalanceQueryService(rpc, metadata)
        block_info = BlockInfoService(rpc)
        search = BinarySearchEngine(
            balances,
            probe_attempts=settings.probe_attempts,
            backoff_seconds=settings.probe_backoff_seconds,
        )
        locator = APICoordinator(history_sources, search) if history_sources else search
        filler = GapFiller(
            session,
            balances,
            block_info,
            locator,
            CounterpartyResolver(session),
            seed_lookback_blocks=settings.seed_lookback_blocks,
            past_lookback_blocks=settings.past_lookback_blocks,
            max_fill_iterations=settings.max_fill_iterations,
        )
        discovery = TokenDiscovery(
            session,
            rpc,
            block_info,
            metadata,
            intents_contract=settings.intents_contract,
            ft_receipt_lookahead_blocks=settings.ft_receipt_lookahead_blocks,
        )
        return cls(session, balances, block_info, filler, discovery)

    async def run_cycle(
        self, upper_bound: int | None = None, account_ids: list[str] | None = None
    ) -> list[AccountSyncReport]:
        """Sync every enabled account (or the enabled subset named in account_ids)."""
        if upper_bound is None:
            upper_bound = await self._block_info.latest_height()

        # Rollbacks expire loaded rows, so only ids are carried across units
        enabled = [account.account_id for account in await self._accounts.list_enabled()]
        if account_ids is not None:
            enabled = [account_id for account_id in enabled if account_id in account_ids]
        account_ids = enabled
        logger.info("Monitor cycle up to block %d over %d accounts", upper_bound, len(account_ids))

        reports = []
        for account_id in account_ids:
            reports.append(await self.sync_account(account_id, upper_bound))
        return reports

    async def sync_account(self, account_id: str, upper_bound: int) -> AccountSyncReport:
        report = AccountSyncReport(account_id=account_id)
        native_blocks: list[int] = []

        try:
            assets = await self._discovery.tracked_assets(account_id)
        except Exception as e:
            logger.exception("Could not list assets for %s", account_id)
            report.errors.append(f"assets: {e}")
            return report

        for token_id in assets:
            created = await self._sync_unit(report, token_id, upper_bound)
            if token_id == NATIVE_ASSET_ID:
                native_blocks = created

        try:
            new_tokens = await self._discovery.discover_fungible_tokens(account_id, native_blocks)
            await self._session.commit()
        except Exception as e:
            await self._session.rollback()
            logger.exception("FT discovery failed for %s", account_id)
            report.errors.append(f"ft discovery: {e}")
            new_tokens = []
        for token_id in new_tokens:
            if token_id not in assets:
                await self._sync_unit(report, token_id, upper_bound)

        try:
            bootstrapped = await self._discovery.bootstrap_intents(account_id, self._filler, upper_bound)
        except Exception as e:
            await self._session.rollback()
            logger.exception("Intents discovery failed for %s", account_id)
            report.errors.append(f"intents discovery: {e}")
            bootstrapped = []
        report.records_created += len(bootstrapped)
        for token_id in bootstrapped:
            if token_id not in assets:
                await self._sync_unit(report, token_id, upper_bound)

        if report.assets_processed:
            account = await self._accounts.get(account_id)
            if account is not None:
                await self._accounts.mark_synced(account)
                await self._session.commit()

        logger.info(
            "Synced %s: %d assets, %d new records, %d errors",
            account_id,
            report.assets_processed,
            report.records_created,
            len(report.errors),
        )
        return report

    async def _sync_unit(self, report: AccountSyncReport, token_id: str, upper_bound: int) -> list[int]:
        """Reconcile one account/asset pair. Returns heights of new transfer records."""
        account_id = report.account_id
        try:
            asset = parse_asset(token_id)
            current = await self._balances.balance_at(account_id, asset, upper_bound)
            latest = await self._changes.latest(account_id, asset.asset_id)
            if latest is not None and latest.balance_after != current:
                logger.info(
                    "Balance of %s/%s moved from %s to %s",
                    account_id,
                    token_id,
                    latest.balance_after,
                    current,
                )
            created = await self._filler.fill_all(account_id, asset, upper_bound, current_balance=current)
        except Exception as e:
            await self._session.rollback()
            logger.exception("Failed to sync %s/%s", account_id, token_id)
            report.errors.append(f"{token_id}: {e}")
            return []

        report.assets_processed += 1
        report.records_created += len(created)
        return [change.block_height for change in created if not change.is_snapshot]


async def run_forever(
    session_factory: async_sessionmaker[AsyncSession],
    rpc: NearRPCClient,
    settings: Settings,
    history_sources: list[TransferHistorySource] | None = None,
) -> None:
    """Run monitor cycles back to back, sleeping monitor_interval_seconds between them."""
    while True:
        async with session_factory() as session:
            monitor = AccountMonitor.build(session, rpc, settings, history_sources)
            try:
                await monitor.run_cycle()
            except Exception:
                logger.exception("Monitor cycle failed")
        await asyncio.sleep(settings.monitor_interval_seconds)
