import math
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from treasury_ledger.domain.models.asset import NativeAsset
from treasury_ledger.exceptions import ContractCallError, ExternalServiceError, RateLimited, RpcUnavailable
from treasury_ledger.ledger.balance import BalanceQueryService
from treasury_ledger.ledger.binary_search import BinarySearchEngine
from treasury_ledger.ledger.coordinator import APICoordinator, TransferHistorySource
from treasury_ledger.ledger.token_metadata import TokenMetadataService

DAO = "treasury.sputnik-dao.near"
NEAR = NativeAsset()


@pytest.fixture()
def search(session, rpc):
    balances = BalanceQueryService(rpc, TokenMetadataService(session, rpc))
    return BinarySearchEngine(balances, probe_attempts=3, backoff_seconds=0)


class TestFindChangeBlock:
    @pytest.mark.parametrize("change_block", [101, 102, 150, 377, 998, 999])
    async def test_finds_single_step_anywhere(self, search, chain, change_block):
        chain.set_balance(DAO, "near", 1, "1")
        chain.set_balance(DAO, "near", change_block, "2")

        found = await search.find_change_block(DAO, NEAR, 100, 1000, Decimal(2))
        assert found == change_block

    async def test_probe_count_is_logarithmic(self, search, chain):
        chain.set_balance(DAO, "near", 1, "1")
        chain.set_balance(DAO, "near", 654_321, "2")
        chain.head = 1_000_000

        await search.find_change_block(DAO, NEAR, 1, 1_000_000, Decimal(2))
        assert search.probe_count <= math.ceil(math.log2(1_000_000)) + 2

    async def test_returns_first_height_with_expected_value(self, search, chain):
        # Balance passes through the expected value, leaves it and comes back
        chain.set_balance(DAO, "near", 1, "1")
        chain.set_balance(DAO, "near", 300, "2")
        chain.set_balance(DAO, "near", 400, "3")
        chain.set_balance(DAO, "near", 700, "2")

        found = await search.find_change_block(DAO, NEAR, 500, 1000, Decimal(2))
        assert found == 700

    async def test_none_when_end_does_not_hold_expected(self, search, chain):
        chain.set_balance(DAO, "near", 1, "1")
        assert await search.find_change_block(DAO, NEAR, 100, 1000, Decimal(5)) is None

    async def test_none_when_start_already_holds_expected(self, search, chain):
        chain.set_balance(DAO, "near", 1, "5")
        assert await search.find_change_block(DAO, NEAR, 100, 1000, Decimal(5)) is None

    async def test_none_for_empty_range(self, search, chain):
        assert await search.find_change_block(DAO, NEAR, 100, 100, Decimal(5)) is None
        assert search.probe_count == 0

    async def test_adjacent_blocks(self, search, chain):
        chain.set_balance(DAO, "near", 101, "5")
        assert await search.find_change_block(DAO, NEAR, 100, 102, Decimal(5)) == 101


class TestProbeRetry:
    async def test_transient_failures_are_retried(self, search, chain):
        chain.set_balance(DAO, "near", 500, "2")
        chain.failures.extend([RpcUnavailable("node down"), RateLimited("slow down")])

        assert await search.find_change_block(DAO, NEAR, 1, 1000, Decimal(2)) == 500
        assert chain.failures == []

    async def test_gives_up_after_attempts(self, search, chain):
        chain.failures.extend([RpcUnavailable("down")] * 3)
        with pytest.raises(RpcUnavailable):
            await search.probe(DAO, NEAR, 10)
        assert search.probe_count == 3

    async def test_non_transient_errors_not_retried(self):
        balances = AsyncMock()
        balances.balance_at.side_effect = ContractCallError("no such method")
        search = BinarySearchEngine(balances, probe_attempts=5, backoff_seconds=0)

        with pytest.raises(ContractCallError):
            await search.probe(DAO, NEAR, 10)
        assert balances.balance_at.await_count == 1


class _StaticSource(TransferHistorySource):
    name = "static"

    def __init__(self, blocks=None, error=None):
        self.blocks = blocks or []
        self.error = error
        self.calls = 0

    async def candidate_blocks(self, account_id, asset, start_block, end_block):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.blocks


class TestAPICoordinator:
    async def test_uses_verified_candidate(self, search, chain):
        chain.set_balance(DAO, "near", 640, "2")
        coordinator = APICoordinator([_StaticSource([900, 640, 20])], search)

        assert await coordinator.find_change_block(DAO, NEAR, 100, 1000, Decimal(2)) == 640
        # Two probes per candidate checked (900 rejected on before == after, then 640)
        assert search.probe_count == 4

    async def test_wrong_candidates_fall_back_to_search(self, search, chain):
        chain.set_balance(DAO, "near", 640, "2")
        source = _StaticSource([700, 300])
        coordinator = APICoordinator([source], search)

        assert await coordinator.find_change_block(DAO, NEAR, 100, 1000, Decimal(2)) == 640

    async def test_failing_source_is_skipped(self, search, chain):
        chain.set_balance(DAO, "near", 640, "2")
        limited = _StaticSource(error=RateLimited("429"))
        broken = _StaticSource(error=ExternalServiceError("500"))
        good = _StaticSource([640])
        coordinator = APICoordinator([limited, broken, good], search)

        assert await coordinator.find_change_block(DAO, NEAR, 100, 1000, Decimal(2)) == 640
        assert (limited.calls, broken.calls, good.calls) == (1, 1, 1)

    async def test_candidates_outside_range_ignored(self, search, chain):
        chain.set_balance(DAO, "near", 640, "2")
        coordinator = APICoordinator([_StaticSource([5000, 100])], search)

        assert await coordinator.find_change_block(DAO, NEAR, 100, 1000, Decimal(2)) == 640
