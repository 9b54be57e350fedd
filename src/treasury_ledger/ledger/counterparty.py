"""Counterparty attribution for balance changes.

Native changes are attributed from receipt routing (predecessor/receiver).
Token changes are attributed from NEP-141 / NEP-245 ``EVENT_JSON`` logs
emitted by the token contract, falling back to the transfer call arguments.
Resolution never fails: undeterminable or malformed data yields ``UNKNOWN``.
"""

import base64
import json
import logging
import re
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.repos.counterparty_repo import CounterpartyRepo
from treasury_ledger.domain.enums import CounterpartyType, ReservedCounterparty
from treasury_ledger.domain.models.asset import Asset, FungibleToken, IntentsToken, NativeAsset
from treasury_ledger.domain.models.receipt import ReceiptRecord
from treasury_ledger.exceptions import MalformedReceipt

logger = logging.getLogger(__name__)

EVENT_JSON_PREFIX = "EVENT_JSON:"
SYSTEM_ACCOUNT = "system"
FT_TRANSFER_METHODS = ("ft_transfer", "ft_transfer_call")

_IMPLICIT_ACCOUNT = re.compile(r"^[0-9a-f]{64}$")


def classify_account(account_id: str) -> CounterpartyType:
    """Heuristic classification from the account name alone."""
    if account_id == SYSTEM_ACCOUNT:
        return CounterpartyType.SYSTEM
    if account_id.endswith(".sputnik-dao.near"):
        return CounterpartyType.DAO
    if account_id.endswith(".poolv1.near") or account_id.endswith(".pool.near"):
        return CounterpartyType.STAKING_POOL
    if _IMPLICIT_ACCOUNT.match(account_id) or account_id.endswith(".tg"):
        return CounterpartyType.PERSONAL
    if account_id.endswith(".near") and account_id.count(".") == 1:
        return CounterpartyType.PERSONAL
    return CounterpartyType.UNKNOWN


def parse_events(logs: list[str], standard: str) -> list[dict[str, Any]]:
    """EVENT_JSON entries of the given standard. Raises MalformedReceipt on bad JSON."""
    events = []
    for log in logs:
        if not log.startswith(EVENT_JSON_PREFIX):
            continue
        try:
            event = json.loads(log[len(EVENT_JSON_PREFIX):])
        except ValueError as e:
            raise MalformedReceipt(f"Unparseable event log: {log[:120]}") from e
        if not isinstance(event, dict) or not isinstance(event.get("data", []), list):
            raise MalformedReceipt(f"Event log has unexpected shape: {log[:120]}")
        if event.get("standard") == standard:
            events.append(event)
    return events


def decode_args(call: dict[str, Any]) -> dict[str, Any]:
    """JSON arguments of a FunctionCall action (base64 on the wire)."""
    args = call.get("args")
    if not args:
        return {}
    if isinstance(args, dict):
        return args
    try:
        decoded = json.loads(base64.b64decode(args))
    except ValueError as e:
        raise MalformedReceipt(f"Undecodable args for {call.get('method_name')}") from e
    return decoded if isinstance(decoded, dict) else {}


class CounterpartyResolver:
    def __init__(self, session: AsyncSession | None = None) -> None:
        self._repo = CounterpartyRepo(session) if session is not None else None

    def resolve(self, account_id: str, asset: Asset, receipts: list[ReceiptRecord]) -> str:
        try:
            if isinstance(asset, NativeAsset):
                return self._resolve_native(account_id, receipts)
            if isinstance(asset, FungibleToken):
                return self._resolve_fungible(account_id, asset, receipts)
            if isinstance(asset, IntentsToken):
                return self._resolve_intents(account_id, asset, receipts)
        except MalformedReceipt as e:
            logger.warning("Counterparty for %s/%s degraded to UNKNOWN: %s", account_id, asset.asset_id, e)
        return ReservedCounterparty.UNKNOWN.value

    async def remember(self, counterparty: str) -> None:
        """Store a first-seen real counterparty with its heuristic classification."""
        if self._repo is None or counterparty in {r.value for r in ReservedCounterparty}:
            return
        await self._repo.ensure(counterparty, classify_account(counterparty))

    def _resolve_native(self, account_id: str, receipts: list[ReceiptRecord]) -> str:
        incoming = [r for r in receipts if r.receiver_id == account_id and r.predecessor_id != account_id]
        outgoing = [r for r in receipts if r.predecessor_id == account_id and r.receiver_id != account_id]

        for receipt in incoming:
            if _carries_deposit(receipt):
                return receipt.predecessor_id
        for receipt in outgoing:
            if _carries_deposit(receipt):
                return receipt.receiver_id
        if incoming:
            return incoming[0].predecessor_id
        if outgoing:
            return outgoing[0].receiver_id
        return ReservedCounterparty.UNKNOWN.value

    def _resolve_fungible(self, account_id: str, token: FungibleToken, receipts: list[ReceiptRecord]) -> str:
        on_contract = [r for r in receipts if r.receiver_id == token.contract_id]

        for receipt in on_contract:
            for event in parse_events(receipt.logs, "nep141"):
                counterparty = _nep141_counterparty(account_id, token.contract_id, event)
                if counterparty:
                    return counterparty

        for receipt in on_contract:
            for call in receipt.function_calls:
                if call.get("method_name") not in FT_TRANSFER_METHODS:
                    continue
                receiver = decode_args(call).get("receiver_id")
                if receipt.predecessor_id == account_id and receiver:
                    return receiver
                if receiver == account_id:
                    return receipt.predecessor_id
        return ReservedCounterparty.UNKNOWN.value

    def _resolve_intents(self, account_id: str, token: IntentsToken, receipts: list[ReceiptRecord]) -> str:
        on_contract = [r for r in receipts if r.receiver_id == token.contract_id]
        for receipt in on_contract:
            for event in parse_events(receipt.logs, "nep245"):
                counterparty = _nep245_counterparty(account_id, token, event)
                if counterparty:
                    return counterparty
        if any(r.logs_unavailable for r in on_contract):
            return ReservedCounterparty.UNKNOWN.value
        # Settled by a third party on the intents ledger
        return ReservedCounterparty.SNAPSHOT.value


def _carries_deposit(receipt: ReceiptRecord) -> bool:
    for action in receipt.actions:
        if "Transfer" in action:
            return True
        call = action.get("FunctionCall")
        if call and str(call.get("deposit", "0")) not in ("0", ""):
            return True
    return False


def _nep141_counterparty(account_id: str, contract_id: str, event: dict[str, Any]) -> str | None:
    kind = event.get("event")
    for entry in event.get("data", []):
        if not isinstance(entry, dict):
            raise MalformedReceipt(f"nep141 {kind} entry is not an object")
        if kind == "ft_transfer":
            if entry.get("old_owner_id") == account_id:
                return entry.get("new_owner_id")
            if entry.get("new_owner_id") == account_id:
                return entry.get("old_owner_id")
        elif kind in ("ft_mint", "ft_burn") and entry.get("owner_id") == account_id:
            return contract_id
    return None


def _nep245_counterparty(account_id: str, token: IntentsToken, event: dict[str, Any]) -> str | None:
    kind = event.get("event")
    for entry in event.get("data", []):
        if not isinstance(entry, dict):
            raise MalformedReceipt(f"nep245 {kind} entry is not an object")
        if token.token_id not in entry.get("token_ids", []):
            continue
        if kind == "mt_transfer":
            if entry.get("old_owner_id") == account_id:
                return entry.get("new_owner_id")
            if entry.get("new_owner_id") == account_id:
                return entry.get("old_owner_id")
        elif kind in ("mt_mint", "mt_burn") and entry.get("owner_id") == account_id:
            return token.metadata_contract
    return None
