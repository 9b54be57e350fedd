from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from treasury_ledger.config import Settings
from treasury_ledger.db.models.balance_change import BalanceChange
from treasury_ledger.db.session import Base
import treasury_ledger.db.models  # noqa: F401
from treasury_ledger.domain.models.amount import EXACT_CONTEXT, delta
from treasury_ledger.domain.models.asset import NATIVE_ASSET_ID, NATIVE_DECIMALS, IntentsToken
from treasury_ledger.exceptions import BlockNotIndexed, ContractCallError
from treasury_ledger.ledger.balance import BalanceQueryService
from treasury_ledger.ledger.binary_search import BinarySearchEngine
from treasury_ledger.ledger.block_info import BlockInfoService, block_time_from_ns
from treasury_ledger.ledger.counterparty import CounterpartyResolver
from treasury_ledger.ledger.gap_filler import GapFiller
from treasury_ledger.ledger.token_metadata import TokenMetadataService

DAO = "treasury.sputnik-dao.near"
GENESIS_NS = 1_700_000_000_000_000_000
BLOCK_NS = 1_000_000_000


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await eng.dispose()


@pytest.fixture()
async def session(engine) -> AsyncSession:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as sess:
        yield sess


def block_timestamp(block_height: int) -> int:
    return GENESIS_NS + block_height * BLOCK_NS


class FakeChain:
    """Scripted chain state: step-function balances per (account, token) plus receipts by block.

    Balances are human-readable; FakeNearRPC scales them to raw units.
    """

    def __init__(self, head: int = 2_000, intents_contract: str = "intents.near") -> None:
        self.head = head
        self.intents_contract = intents_contract
        self.skipped: set[int] = set()
        self.tokens: dict[str, dict] = {}
        self.receipts: dict[int, list[dict]] = {}
        self.logs: dict[str, list[str]] = {}
        self.failures: list[Exception] = []
        self.balance_queries = 0
        self._history: dict[tuple[str, str], list[tuple[int, Decimal]]] = {}

    def set_balance(self, account_id: str, token_id: str, from_block: int, balance) -> None:
        history = self._history.setdefault((account_id, token_id), [])
        history.append((from_block, Decimal(balance)))
        history.sort()

    def balance(self, account_id: str, token_id: str, block_height: int) -> Decimal:
        result = Decimal(0)
        for height, balance in self._history.get((account_id, token_id), []):
            if height > block_height:
                break
            result = balance
        return result

    def add_token(self, contract_id: str, decimals: int, symbol: str = "TKN") -> None:
        self.tokens[contract_id] = {"decimals": decimals, "symbol": symbol, "name": symbol}

    def add_receipt(
        self,
        block_height: int,
        receipt_id: str,
        predecessor_id: str,
        receiver_id: str,
        actions: list | None = None,
        logs: list[str] | None = None,
        signer_id: str | None = None,
    ) -> None:
        self.receipts.setdefault(block_height, []).append(
            {
                "receipt_id": receipt_id,
                "predecessor_id": predecessor_id,
                "receiver_id": receiver_id,
                "receipt": {"Action": {"signer_id": signer_id or predecessor_id, "actions": actions or []}},
            }
        )
        if logs is not None:
            self.logs[receipt_id] = logs

    def intents_tokens(self, account_id: str) -> list[str]:
        prefix = f"{self.intents_contract}:"
        return sorted(
            token_id[len(prefix):]
            for account, token_id in self._history
            if account == account_id and token_id.startswith(prefix)
        )


def _to_raw(balance: Decimal, decimals: int) -> str:
    return str(int(EXACT_CONTEXT.scaleb(balance, decimals)))


class FakeNearRPC:
    """Stands in for NearRPCClient over a FakeChain."""

    def __init__(self, chain: FakeChain) -> None:
        self.chain = chain

    def _check_block(self, block_height: int | None) -> int:
        height = self.chain.head if block_height is None else block_height
        if height > self.chain.head or height in self.chain.skipped:
            raise BlockNotIndexed(f"UNKNOWN_BLOCK {height}", block_height=height)
        return height

    def _balance_query(self) -> None:
        self.chain.balance_queries += 1
        if self.chain.failures:
            raise self.chain.failures.pop(0)

    async def view_account(self, account_id: str, block_height: int | None = None) -> dict:
        self._balance_query()
        height = self._check_block(block_height)
        return {"amount": _to_raw(self.chain.balance(account_id, NATIVE_ASSET_ID, height), NATIVE_DECIMALS)}

    async def call_function(self, contract_id, method_name, args=None, block_height=None):
        args = args or {}
        if contract_id == self.chain.intents_contract:
            return await self._intents_call(method_name, args, block_height)
        if contract_id not in self.chain.tokens:
            raise ContractCallError(f"NO_CONTRACT_CODE {contract_id}")
        metadata = self.chain.tokens[contract_id]
        if method_name == "ft_metadata":
            return dict(metadata)
        if method_name == "ft_balance_of":
            self._balance_query()
            height = self._check_block(block_height)
            return _to_raw(self.chain.balance(args["account_id"], contract_id, height), metadata["decimals"])
        raise ContractCallError(f"{contract_id} has no method {method_name}")

    async def _intents_call(self, method_name, args, block_height):
        height = self._check_block(block_height)
        account_id = args["account_id"]
        if method_name == "mt_tokens_for_owner":
            return [{"token_id": t} for t in self.chain.intents_tokens(account_id)]
        if method_name == "mt_batch_balance_of":
            return [self._intents_raw(account_id, t, height) for t in args["token_ids"]]
        if method_name == "mt_balance_of":
            self._balance_query()
            return self._intents_raw(account_id, args["token_id"], height)
        raise ContractCallError(f"intents has no method {method_name}")

    def _intents_raw(self, account_id: str, token_id: str, height: int) -> str:
        token = IntentsToken(self.chain.intents_contract, token_id)
        decimals = self.chain.tokens[token.metadata_contract]["decimals"]
        return _to_raw(self.chain.balance(account_id, token.asset_id, height), decimals)

    async def block(self, block_height: int | None = None) -> dict:
        height = self._check_block(block_height)
        return {
            "header": {"height": height, "hash": f"hash-{height}", "timestamp_nanosec": str(block_timestamp(height))},
            "chunks": [{"chunk_hash": f"chunk-{height}", "height_included": height}],
        }

    async def chunk(self, chunk_hash: str) -> dict:
        height = int(chunk_hash.rsplit("-", 1)[1])
        return {"receipts": self.chain.receipts.get(height, [])}

    async def receipt_outcome(self, receipt_id: str, receiver_id: str, light_client_head: str) -> dict:
        return {"logs": self.chain.logs.get(receipt_id, [])}


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def rpc(chain) -> FakeNearRPC:
    return FakeNearRPC(chain)


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        probe_backoff_seconds=0,
        seed_lookback_blocks=5_000,
        past_lookback_blocks=1_000,
        nearblocks_api_key="",
        fastnear_api_key="",
    )


@pytest.fixture()
def make_filler(session, rpc, test_settings):
    """Build a GapFiller (plus its search engine) wired to the fake node."""

    def _make(**overrides) -> tuple[GapFiller, BinarySearchEngine]:
        metadata = TokenMetadataService(session, rpc)
        balances = BalanceQueryService(rpc, metadata)
        search = BinarySearchEngine(balances, probe_attempts=3, backoff_seconds=0)
        options = {
            "seed_lookback_blocks": test_settings.seed_lookback_blocks,
            "past_lookback_blocks": test_settings.past_lookback_blocks,
            "max_fill_iterations": test_settings.max_fill_iterations,
        }
        options.update(overrides)
        filler = GapFiller(session, balances, BlockInfoService(rpc), search, CounterpartyResolver(session), **options)
        return filler, search

    return _make


@pytest.fixture()
def make_change():
    """Build a consistent BalanceChange row for direct insertion."""

    def _make(
        block_height: int,
        before,
        after,
        token_id: str = NATIVE_ASSET_ID,
        account_id: str = DAO,
        counterparty: str = "alice.near",
    ) -> BalanceChange:
        ts = block_timestamp(block_height)
        return BalanceChange(
            account_id=account_id,
            token_id=token_id,
            block_height=block_height,
            block_timestamp=ts,
            block_time=block_time_from_ns(ts),
            counterparty=counterparty,
            amount=delta(Decimal(before), Decimal(after)),
            balance_before=Decimal(before),
            balance_after=Decimal(after),
        )

    return _make
