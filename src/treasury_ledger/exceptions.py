"""Error taxonomy for the balance reconciliation engine.

Upstream failures derive from ExternalServiceError. Callers scope them to the
smallest unit of work (one gap, one account/asset pair); none of them should
escape the monitoring loop.
"""


class TreasuryLedgerError(Exception):
    """Base class for all treasury-ledger errors."""


class ExternalServiceError(TreasuryLedgerError):
    """An upstream service (RPC node, history API) failed."""


class RpcUnavailable(ExternalServiceError):
    """Node unreachable, erroring or not synced. Retryable by re-invocation."""


class RateLimited(ExternalServiceError):
    """Upstream throttled the request (HTTP 429 or equivalent)."""


class BlockNotFound(ExternalServiceError):
    """Block height is beyond the chain head or outside retained history."""

    def __init__(self, message: str, block_height: int | None = None) -> None:
        super().__init__(message)
        self.block_height = block_height


class BlockNotIndexed(BlockNotFound):
    """The node cannot serve state at the requested height."""


class HistoricalStateUnavailable(BlockNotFound):
    """State at this height was garbage collected on the queried node."""


class AccountNotFound(ExternalServiceError):
    """Account does not exist at the requested block."""


class ContractCallError(ExternalServiceError):
    """A view call was rejected by the contract (missing method, bad args, no code)."""


class MalformedReceipt(TreasuryLedgerError):
    """A receipt or its event log could not be parsed."""


class BalanceError(TreasuryLedgerError):
    """A ledger record violates amount == balance_after - balance_before."""


class GapNotResolvable(TreasuryLedgerError):
    """Binary search could not locate the block that explains a gap."""
