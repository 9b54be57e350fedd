"""Run the balance monitor loop in the foreground.

Usage:
    PYTHONPATH=src python scripts/run_monitor.py            # loop forever
    PYTHONPATH=src python scripts/run_monitor.py --once     # one cycle, then exit
    PYTHONPATH=src python scripts/run_monitor.py --add my-treasury.sputnik-dao.near
"""

import argparse
import asyncio
import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s - %(message)s")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger("run_monitor")


async def main(once: bool, add: list[str]) -> None:
    from treasury_ledger.config import settings
    from treasury_ledger.db.repos.monitored_account_repo import MonitoredAccountRepo
    from treasury_ledger.db.session import build_engine, build_session_factory
    from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
    from treasury_ledger.infra.history.nearblocks import build_history_sources
    from treasury_ledger.infra.http.rate_limited_client import RateLimitedClient, bearer_headers
    from treasury_ledger.ledger.account_monitor import AccountMonitor, run_forever

    engine = build_engine(settings.database_url, echo=False)
    sf = build_session_factory(engine)

    if add:
        async with sf() as session:
            repo = MonitoredAccountRepo(session)
            for account_id in add:
                await repo.upsert(account_id)
                logger.info("Monitoring %s", account_id)
            await session.commit()

    sources = build_history_sources(settings.nearblocks_api_key)
    async with RateLimitedClient(
        rate_per_second=settings.rpc_rate_per_second,
        timeout=settings.rpc_timeout,
        headers=bearer_headers(settings.fastnear_api_key),
    ) as http:
        rpc = NearRPCClient(rpc_url=settings.near_rpc_url, http_client=http)
        if once:
            async with sf() as session:
                reports = await AccountMonitor.build(session, rpc, settings, sources).run_cycle()
            for r in reports:
                status = "ok" if r.ok else "; ".join(r.errors)
                print(f"  {r.account_id:<50} assets={r.assets_processed:<3} new={r.records_created:<4} {status}")
        else:
            await run_forever(sf, rpc, settings, sources)

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--once", action="store_true", help="run a single cycle")
    parser.add_argument("--add", nargs="*", default=[], help="accounts to start monitoring first")
    args = parser.parse_args()
    asyncio.run(main(args.once, args.add))
