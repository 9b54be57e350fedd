"""Celery tasks for background processing."""

import asyncio
import logging

from treasury_ledger.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="monitor_cycle", max_retries=0)
def monitor_cycle_task(self, account_id: str | None = None) -> dict:
    """Run one monitor cycle over enabled accounts.

    Bridges to async code via asyncio.run(). Each task invocation
    creates its own engine + session (no shared state with FastAPI).
    """
    return asyncio.run(_monitor_cycle_async(account_id))


async def _monitor_cycle_async(account_id: str | None) -> dict:
    from treasury_ledger.config import settings
    from treasury_ledger.db.session import build_engine, build_session_factory
    from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
    from treasury_ledger.infra.history.nearblocks import build_history_sources
    from treasury_ledger.infra.http.rate_limited_client import RateLimitedClient, bearer_headers
    from treasury_ledger.ledger.account_monitor import AccountMonitor

    engine = build_engine(settings.database_url, echo=False)
    session_factory = build_session_factory(engine)

    try:
        async with session_factory() as session:
            try:
                async with RateLimitedClient(
                    rate_per_second=settings.rpc_rate_per_second,
                    timeout=settings.rpc_timeout,
                    headers=bearer_headers(settings.fastnear_api_key),
                ) as http_client:
                    rpc = NearRPCClient(rpc_url=settings.near_rpc_url, http_client=http_client)
                    monitor = AccountMonitor.build(
                        session, rpc, settings, build_history_sources(settings.nearblocks_api_key)
                    )
                    reports = await monitor.run_cycle(account_ids=[account_id] if account_id else None)
            except Exception as e:
                await session.rollback()
                logger.exception("Monitor cycle failed")
                return {"status": "error", "message": str(e)}
    finally:
        await engine.dispose()

    created = sum(r.records_created for r in reports)
    failed = [r.account_id for r in reports if not r.ok]
    logger.info("Monitor cycle done: %d accounts, %d new records, %d with errors", len(reports), created, len(failed))
    return {
        "status": "ok" if not failed else "partial",
        "accounts": len(reports),
        "new_records": created,
        "failed_accounts": failed,
    }
