from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from treasury_ledger.db.repos.balance_change_repo import BalanceChangeRepo
from treasury_ledger.db.repos.counterparty_repo import CounterpartyRepo
from treasury_ledger.db.repos.monitored_account_repo import MonitoredAccountRepo
from treasury_ledger.domain.enums import CounterpartyType
from treasury_ledger.domain.models.amount import delta
from treasury_ledger.exceptions import BalanceError

DAO = "treasury.sputnik-dao.near"


class TestBalanceChangeModel:
    def test_validate_consistent_ok(self, make_change):
        make_change(100, 0, 5).validate_consistent()

    def test_validate_rejects_wrong_amount(self, make_change):
        change = make_change(100, 0, 5)
        change.amount = Decimal(4)
        with pytest.raises(BalanceError):
            change.validate_consistent()

    def test_validate_rejects_empty_counterparty(self, make_change):
        change = make_change(100, 0, 5, counterparty="")
        with pytest.raises(BalanceError):
            change.validate_consistent()


class TestBalanceChangeRepo:
    async def test_insert_and_read_back_exact(self, session, make_change):
        repo = BalanceChangeRepo(session)
        before = Decimal("12.345678901234567890123456")
        after = Decimal("340282366920938.463463374607431768211455")
        assert await repo.insert(make_change(100, before, after))
        await session.commit()
        session.expunge_all()

        row = await repo.get_at(DAO, "near", 100)
        assert row.balance_before == before
        assert row.balance_after == after
        assert row.amount == delta(before, after)

    async def test_insert_duplicate_returns_false(self, session, make_change):
        repo = BalanceChangeRepo(session)
        assert await repo.insert(make_change(100, 0, 5))
        await session.commit()

        assert not await repo.insert(make_change(100, 0, 5, counterparty="bob.near"))
        assert await repo.count(DAO, "near") == 1

    async def test_insert_rejects_inconsistent(self, session, make_change):
        repo = BalanceChangeRepo(session)
        change = make_change(100, 0, 5)
        change.amount = Decimal(1)
        with pytest.raises(BalanceError):
            await repo.insert(change)

    async def test_same_block_other_token_allowed(self, session, make_change):
        repo = BalanceChangeRepo(session)
        assert await repo.insert(make_change(100, 0, 5))
        assert await repo.insert(make_change(100, 0, 7, token_id="wrap.near"))
        await session.commit()
        assert await repo.known_tokens(DAO) == ["near", "wrap.near"]

    async def test_latest_and_earliest(self, session, make_change):
        repo = BalanceChangeRepo(session)
        for block, before, after in [(300, 8, 9), (100, 0, 5), (200, 5, 8)]:
            await repo.insert(make_change(block, before, after))
        await session.commit()

        assert (await repo.latest(DAO, "near")).block_height == 300
        assert (await repo.earliest(DAO, "near")).block_height == 100
        assert [c.block_height for c in await repo.list_chain(DAO, "near")] == [100, 200, 300]

    async def test_distinct_counterparties_excludes_reserved(self, session, make_change):
        repo = BalanceChangeRepo(session)
        await repo.insert(make_change(100, 0, 5, counterparty="alice.near"))
        await repo.insert(make_change(200, 5, 6, counterparty="SNAPSHOT"))
        await repo.insert(make_change(300, 6, 7, counterparty="UNKNOWN"))
        await repo.insert(make_change(400, 7, 8, counterparty="wrap.near"))
        await repo.insert(make_change(500, 8, 9, counterparty="alice.near"))
        await session.commit()

        assert await repo.distinct_counterparties(DAO, "near") == ["alice.near", "wrap.near"]

    async def test_list_for_account_pagination(self, session, make_change):
        repo = BalanceChangeRepo(session)
        for i in range(5):
            await repo.insert(make_change(100 + i, i, i + 1))
        await repo.insert(make_change(100, 0, 3, token_id="wrap.near"))
        await session.commit()

        rows, total = await repo.list_for_account(DAO, limit=2, offset=0)
        assert total == 6
        assert [r.block_height for r in rows] == [104, 103]

        rows, total = await repo.list_for_account(DAO, token_id="wrap.near")
        assert total == 1
        assert rows[0].token_id == "wrap.near"

    async def test_prior_balances_per_token(self, session, make_change):
        repo = BalanceChangeRepo(session)
        await repo.insert(make_change(100, 0, 5))
        await repo.insert(make_change(200, 5, 8))
        await repo.insert(make_change(150, 0, 2, token_id="wrap.near"))
        await repo.insert(make_change(5000, 8, 1))
        await session.commit()

        cutoff = (await repo.get_at(DAO, "near", 200)).block_time + timedelta(seconds=1)
        prior = await repo.prior_balances(DAO, cutoff)
        assert prior == {"near": Decimal(8), "wrap.near": Decimal(2)}

        prior = await repo.prior_balances(DAO, cutoff, token_ids=["wrap.near"])
        assert prior == {"wrap.near": Decimal(2)}

    async def test_list_in_window(self, session, make_change):
        repo = BalanceChangeRepo(session)
        await repo.insert(make_change(100, 0, 5))
        await repo.insert(make_change(200, 5, 8))
        await session.commit()

        first = await repo.get_at(DAO, "near", 100)
        rows = await repo.list_in_window(DAO, first.block_time, first.block_time + timedelta(seconds=50))
        assert [r.block_height for r in rows] == [100]


class TestCounterpartyRepo:
    async def test_upsert_token_and_decimals(self, session):
        repo = CounterpartyRepo(session)
        await repo.upsert_token("usdt.tether-token.near", decimals=6, symbol="USDt")
        await session.commit()

        assert await repo.get_decimals("usdt.tether-token.near") == 6
        assert await repo.symbols_for(["usdt.tether-token.near", "other.near"]) == {"usdt.tether-token.near": "USDt"}

    async def test_decimals_only_for_tokens(self, session):
        repo = CounterpartyRepo(session)
        await repo.ensure("alice.near", CounterpartyType.PERSONAL)
        assert await repo.get_decimals("alice.near") is None

    async def test_ensure_keeps_existing_classification(self, session):
        repo = CounterpartyRepo(session)
        await repo.upsert_token("wrap.near", decimals=24, symbol="wNEAR")
        cp = await repo.ensure("wrap.near", CounterpartyType.UNKNOWN)
        assert cp.account_type == "ft_token"

    async def test_mark_verified_never_downgrades_token(self, session):
        repo = CounterpartyRepo(session)
        await repo.upsert_token("wrap.near", decimals=24)
        cp = await repo.mark_verified("wrap.near", CounterpartyType.OTHER)
        assert cp.is_token
        assert cp.last_verified_at is not None

    async def test_mark_verified_creates_row(self, session):
        repo = CounterpartyRepo(session)
        cp = await repo.mark_verified("bob.near", CounterpartyType.PERSONAL)
        assert cp.account_type == "personal"
        assert cp.last_verified_at is not None


class TestMonitoredAccountRepo:
    async def test_upsert_creates_then_updates(self, session):
        repo = MonitoredAccountRepo(session)
        await repo.upsert(DAO)
        await session.commit()
        account = await repo.upsert(DAO, enabled=False)
        await session.commit()

        assert account.enabled is False
        assert len(await repo.list_all()) == 1

    async def test_list_enabled_orders_never_synced_first(self, session):
        repo = MonitoredAccountRepo(session)
        a = await repo.upsert("a.sputnik-dao.near")
        b = await repo.upsert("b.sputnik-dao.near")
        await repo.upsert("c.sputnik-dao.near")
        await repo.upsert("d.sputnik-dao.near", enabled=False)
        now = datetime.now(UTC)
        await repo.mark_synced(a, at=now)
        await repo.mark_synced(b, at=now - timedelta(hours=1))
        await session.commit()

        ids = [acc.account_id for acc in await repo.list_enabled()]
        assert ids == ["c.sputnik-dao.near", "b.sputnik-dao.near", "a.sputnik-dao.near"]

    async def test_list_all_filter(self, session):
        repo = MonitoredAccountRepo(session)
        await repo.upsert("a.sputnik-dao.near")
        await repo.upsert("b.sputnik-dao.near", enabled=False)
        await session.commit()

        assert [a.account_id for a in await repo.list_all(enabled=False)] == ["b.sputnik-dao.near"]

    async def test_delete(self, session):
        repo = MonitoredAccountRepo(session)
        account = await repo.upsert(DAO)
        await session.commit()
        await repo.delete(account)
        await session.commit()
        assert await repo.get(DAO) is None
