"""Block timestamps and receipts, cached by height.

Final blocks never change, so the caches have no invalidation.
"""

import logging
from dataclasses import replace
from datetime import UTC, datetime

from treasury_ledger.domain.models.receipt import ReceiptRecord
from treasury_ledger.exceptions import ExternalServiceError
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient

logger = logging.getLogger(__name__)


def block_time_from_ns(timestamp_ns: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ns // 1_000_000_000, tz=UTC).replace(
        microsecond=(timestamp_ns % 1_000_000_000) // 1000
    )


class BlockInfoService:
    def __init__(self, rpc: NearRPCClient) -> None:
        self._rpc = rpc
        self._timestamps: dict[int, int] = {}
        self._receipts: dict[int, list[ReceiptRecord]] = {}
        self._logs: dict[str, list[str]] = {}
        self._proof_head: str | None = None

    async def latest_height(self) -> int:
        block = await self._rpc.block()
        header = block["header"]
        self._timestamps[header["height"]] = _header_timestamp(header)
        return header["height"]

    async def timestamp_of(self, block_height: int) -> int:
        """Block timestamp in nanoseconds since the Unix epoch."""
        if block_height not in self._timestamps:
            block = await self._rpc.block(block_height)
            self._timestamps[block_height] = _header_timestamp(block["header"])
        return self._timestamps[block_height]

    async def block_time(self, block_height: int) -> datetime:
        return block_time_from_ns(await self.timestamp_of(block_height))

    async def receipts_in_block(self, block_height: int) -> list[ReceiptRecord]:
        """Every receipt in the block's chunks produced at this height."""
        if block_height in self._receipts:
            return self._receipts[block_height]

        block = await self._rpc.block(block_height)
        self._timestamps[block_height] = _header_timestamp(block["header"])

        receipts: list[ReceiptRecord] = []
        for chunk_header in block.get("chunks", []):
            # A shard without a new chunk repeats its previous header
            if chunk_header.get("height_included", block_height) != block_height:
                continue
            chunk = await self._rpc.chunk(chunk_header["chunk_hash"])
            for raw in chunk.get("receipts", []):
                receipts.append(_parse_receipt(raw))

        self._receipts[block_height] = receipts
        return receipts

    async def receipts_for(
        self,
        account_id: str,
        block_height: int,
        contract_id: str | None = None,
        with_logs: bool = False,
    ) -> list[ReceiptRecord]:
        """Receipts sent or received by the account, plus receipts executed on contract_id.

        with_logs attaches execution-outcome logs to receipts executed on contract_id.
        """
        matched = []
        for receipt in await self.receipts_in_block(block_height):
            involves_account = account_id in (receipt.receiver_id, receipt.predecessor_id)
            on_contract = contract_id is not None and receipt.receiver_id == contract_id
            if not (involves_account or on_contract):
                continue
            if with_logs and on_contract:
                receipt = await self._with_logs(receipt)
            matched.append(receipt)
        return matched

    async def _with_logs(self, receipt: ReceiptRecord) -> ReceiptRecord:
        if receipt.receipt_id not in self._logs:
            try:
                if self._proof_head is None:
                    head = await self._rpc.block()
                    self._proof_head = head["header"]["hash"]
                outcome = await self._rpc.receipt_outcome(receipt.receipt_id, receipt.receiver_id, self._proof_head)
            except ExternalServiceError as e:
                logger.warning("Could not load outcome logs for receipt %s: %s", receipt.receipt_id, e)
                return replace(receipt, logs_unavailable=True)
            self._logs[receipt.receipt_id] = list(outcome.get("logs", []))

        return ReceiptRecord(
            receipt_id=receipt.receipt_id,
            predecessor_id=receipt.predecessor_id,
            receiver_id=receipt.receiver_id,
            signer_id=receipt.signer_id,
            actions=receipt.actions,
            logs=self._logs[receipt.receipt_id],
        )


def _header_timestamp(header: dict) -> int:
    if "timestamp_nanosec" in header:
        return int(header["timestamp_nanosec"])
    return int(header["timestamp"])


def _parse_receipt(raw: dict) -> ReceiptRecord:
    body = raw.get("receipt", {})
    action = body.get("Action", {}) if isinstance(body, dict) else {}
    return ReceiptRecord(
        receipt_id=raw["receipt_id"],
        predecessor_id=raw["predecessor_id"],
        receiver_id=raw["receiver_id"],
        signer_id=action.get("signer_id"),
        actions=[a if isinstance(a, dict) else {a: {}} for a in action.get("actions", [])],
    )
