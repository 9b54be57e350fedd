"""Tests for NearRPCClient: JSON-RPC payloads and error mapping."""

import base64
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from treasury_ledger.exceptions import (
    AccountNotFound,
    BlockNotIndexed,
    ContractCallError,
    ExternalServiceError,
    HistoricalStateUnavailable,
    RateLimited,
    RpcUnavailable,
)
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient


@pytest.fixture()
def mock_http():
    return AsyncMock()


@pytest.fixture()
def rpc(mock_http):
    return NearRPCClient(rpc_url="https://archival-rpc.mainnet.near.org", http_client=mock_http)


def _mock_response(data, status_code: int = 200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    return resp


def _error(cause_name: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": "dontcare",
        "error": {"name": "HANDLER_ERROR", "cause": {"name": cause_name, "info": {}}, "code": -32000},
    }


def _payload(mock_http) -> dict:
    call_args = mock_http.post.call_args
    return call_args[1]["json"] if "json" in call_args[1] else call_args[0][1]


class TestViewAccount:
    async def test_returns_result_at_block(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response(
            {"jsonrpc": "2.0", "id": "dontcare", "result": {"amount": "5000000000000000000000000"}}
        )

        result = await rpc.view_account("treasury.sputnik-dao.near", 1000)
        assert result["amount"] == "5000000000000000000000000"

        params = _payload(mock_http)["params"]
        assert params["request_type"] == "view_account"
        assert params["account_id"] == "treasury.sputnik-dao.near"
        assert params["block_id"] == 1000

    async def test_latest_uses_final(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response({"result": {"amount": "0"}})

        await rpc.view_account("a.near")
        params = _payload(mock_http)["params"]
        assert params["finality"] == "final"
        assert "block_id" not in params


class TestCallFunction:
    async def test_decodes_json_result(self, rpc, mock_http):
        raw = list(json.dumps("2500000").encode())
        mock_http.post.return_value = _mock_response({"result": {"result": raw, "logs": []}})

        result = await rpc.call_function("usdt.tether-token.near", "ft_balance_of", {"account_id": "a.near"}, 42)
        assert result == "2500000"

        params = _payload(mock_http)["params"]
        assert params["method_name"] == "ft_balance_of"
        assert json.loads(base64.b64decode(params["args_base64"])) == {"account_id": "a.near"}
        assert params["block_id"] == 42

    async def test_empty_result_is_none(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response({"result": {"result": [], "logs": []}})
        assert await rpc.call_function("x.near", "noop") is None

    async def test_error_inside_result(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response(
            {"result": {"error": "wasm execution failed with error: MethodNotFound", "logs": []}}
        )
        with pytest.raises(ContractCallError):
            await rpc.call_function("alice.near", "ft_balance_of", {"account_id": "a.near"})

    async def test_non_json_return_value(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response({"result": {"result": list(b"\xff\xfe"), "logs": []}})
        with pytest.raises(ContractCallError):
            await rpc.call_function("x.near", "weird")


class TestBlocks:
    async def test_block_by_height(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response({"result": {"header": {"height": 7}}})
        block = await rpc.block(7)
        assert block["header"]["height"] == 7
        assert _payload(mock_http)["params"] == {"block_id": 7}

    async def test_latest_final_block(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response({"result": {"header": {"height": 9}}})
        await rpc.block()
        assert _payload(mock_http)["params"] == {"finality": "final"}

    async def test_receipt_outcome_uses_light_client_proof(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response(
            {"result": {"outcome_proof": {"outcome": {"logs": ["EVENT_JSON:{}"]}}}}
        )
        outcome = await rpc.receipt_outcome("rcpt", "wrap.near", "headhash")
        assert outcome["logs"] == ["EVENT_JSON:{}"]

        payload = _payload(mock_http)
        assert payload["method"] == "light_client_proof"
        assert payload["params"]["type"] == "receipt"
        assert payload["params"]["light_client_head"] == "headhash"


class TestErrorMapping:
    @pytest.mark.parametrize(
        "cause,exc",
        [
            ("UNKNOWN_BLOCK", BlockNotIndexed),
            ("GARBAGE_COLLECTED_BLOCK", HistoricalStateUnavailable),
            ("UNKNOWN_ACCOUNT", AccountNotFound),
            ("NO_CONTRACT_CODE", ContractCallError),
            ("NO_SYNCED_BLOCKS", RpcUnavailable),
            ("TIMEOUT_ERROR", RpcUnavailable),
            ("SOMETHING_NEW", ExternalServiceError),
        ],
    )
    async def test_cause_names(self, rpc, mock_http, cause, exc):
        mock_http.post.return_value = _mock_response(_error(cause))
        with pytest.raises(exc):
            await rpc.view_account("a.near", 100)

    async def test_unknown_block_carries_height(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response(_error("UNKNOWN_BLOCK"))
        with pytest.raises(BlockNotIndexed) as info:
            await rpc.view_account("a.near", 123)
        assert info.value.block_height == 123

    async def test_http_429(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response({}, status_code=429)
        with pytest.raises(RateLimited):
            await rpc.block()

    async def test_http_500_without_error_body(self, rpc, mock_http):
        mock_http.post.return_value = _mock_response({"result": None}, status_code=503)
        with pytest.raises(RpcUnavailable):
            await rpc.block()

    async def test_non_json_body(self, rpc, mock_http):
        resp = _mock_response(None, status_code=502)
        resp.json.side_effect = ValueError("not json")
        mock_http.post.return_value = resp
        with pytest.raises(RpcUnavailable):
            await rpc.block()

    async def test_transport_error(self, rpc, mock_http):
        mock_http.post.side_effect = httpx.ConnectError("refused")
        with pytest.raises(RpcUnavailable):
            await rpc.block()
