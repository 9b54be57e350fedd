"""NEAR JSON-RPC client for archival state queries, blocks, chunks and receipt outcomes."""

import base64
import json
import logging
from typing import Any

import httpx

from treasury_ledger.exceptions import (
    AccountNotFound,
    BlockNotIndexed,
    ContractCallError,
    ExternalServiceError,
    HistoricalStateUnavailable,
    RateLimited,
    RpcUnavailable,
)
from treasury_ledger.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)

_UNAVAILABLE_CAUSES = {"NO_SYNCED_BLOCKS", "NOT_SYNCED_YET", "TIMEOUT_ERROR", "INTERNAL_ERROR"}
_UNKNOWN_BLOCK_CAUSES = {"UNKNOWN_BLOCK", "UNKNOWN_CHUNK", "INVALID_SHARD_ID"}
_CONTRACT_CAUSES = {"NO_CONTRACT_CODE", "CONTRACT_EXECUTION_ERROR", "INVALID_ACCOUNT"}


class NearRPCClient:
    """Minimal NEAR JSON-RPC client.

    Does not retry: callers decide whether a failure is worth another attempt.
    """

    def __init__(self, rpc_url: str, http_client: RateLimitedClient) -> None:
        self._rpc_url = rpc_url
        self._http = http_client

    async def _call(self, method: str, params: dict | list) -> Any:
        """Execute a JSON-RPC call and return the result field."""
        payload = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": method,
            "params": params,
        }
        try:
            resp = await self._http.post(self._rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RpcUnavailable(f"NEAR RPC transport error ({method}): {e}") from e

        if resp.status_code == 429:
            raise RateLimited(f"NEAR RPC rate limited ({method})")

        try:
            data = resp.json()
        except ValueError as e:
            raise RpcUnavailable(f"NEAR RPC returned non-JSON body ({method}), HTTP {resp.status_code}") from e

        if isinstance(data, dict) and "error" in data:
            raise _map_error(method, data["error"], _block_of(params))

        if resp.status_code >= 400:
            raise RpcUnavailable(f"NEAR RPC HTTP {resp.status_code} ({method})")

        return data.get("result")

    async def view_account(self, account_id: str, block_height: int | None = None) -> dict:
        params: dict[str, Any] = {"request_type": "view_account", "account_id": account_id}
        params.update(_block_reference(block_height))
        return await self._call("query", params)

    async def call_function(
        self,
        contract_id: str,
        method_name: str,
        args: dict | None = None,
        block_height: int | None = None,
    ) -> Any:
        """Run a view method and decode its JSON return value."""
        args_base64 = base64.b64encode(json.dumps(args or {}).encode()).decode()
        params: dict[str, Any] = {
            "request_type": "call_function",
            "account_id": contract_id,
            "method_name": method_name,
            "args_base64": args_base64,
        }
        params.update(_block_reference(block_height))
        result = await self._call("query", params)

        # Older nodes report contract failures inside the result
        if isinstance(result, dict) and result.get("error"):
            raise ContractCallError(f"{contract_id}.{method_name} failed: {result['error']}")

        raw = bytes((result or {}).get("result", []))
        if not raw:
            return None
        try:
            return json.loads(raw.decode())
        except (UnicodeDecodeError, ValueError) as e:
            raise ContractCallError(f"{contract_id}.{method_name} returned non-JSON data") from e

    async def block(self, block_height: int | None = None) -> dict:
        """Fetch a block by height, or the latest final block."""
        if block_height is None:
            return await self._call("block", {"finality": "final"})
        return await self._call("block", {"block_id": block_height})

    async def chunk(self, chunk_hash: str) -> dict:
        return await self._call("chunk", {"chunk_id": chunk_hash})

    async def receipt_outcome(self, receipt_id: str, receiver_id: str, light_client_head: str) -> dict:
        """Execution outcome of a receipt (logs, status), proven against a later final block."""
        result = await self._call(
            "light_client_proof",
            {
                "type": "receipt",
                "receipt_id": receipt_id,
                "receiver_id": receiver_id,
                "light_client_head": light_client_head,
            },
        )
        return (result or {}).get("outcome_proof", {}).get("outcome", {})


def _block_reference(block_height: int | None) -> dict[str, Any]:
    if block_height is None:
        return {"finality": "final"}
    return {"block_id": block_height}


def _block_of(params: dict | list) -> int | None:
    if isinstance(params, dict):
        block_id = params.get("block_id")
        if isinstance(block_id, int):
            return block_id
    return None


def _map_error(method: str, error: dict | str, block_height: int | None) -> ExternalServiceError:
    if not isinstance(error, dict):
        return ExternalServiceError(f"NEAR RPC error ({method}): {error}")

    cause = error.get("cause") or {}
    cause_name = cause.get("name", "") if isinstance(cause, dict) else ""
    info = cause.get("info") if isinstance(cause, dict) else None
    msg = f"NEAR RPC error ({method}): {cause_name or error.get('name', '')} {error.get('data') or error.get('message', '')}".strip()

    if cause_name in _UNAVAILABLE_CAUSES:
        return RpcUnavailable(msg)
    if cause_name in _UNKNOWN_BLOCK_CAUSES:
        return BlockNotIndexed(msg, block_height=block_height)
    if cause_name == "GARBAGE_COLLECTED_BLOCK":
        return HistoricalStateUnavailable(msg, block_height=block_height)
    if cause_name == "UNKNOWN_ACCOUNT":
        return AccountNotFound(msg)
    if cause_name in _CONTRACT_CAUSES:
        return ContractCallError(msg)

    logger.debug("Unmapped NEAR RPC error for %s: %s (info=%s)", method, error, info)
    return ExternalServiceError(msg)
