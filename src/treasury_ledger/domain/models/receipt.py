from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ReceiptRecord:
    """A receipt executed in a block, reduced to what attribution needs."""

    receipt_id: str
    predecessor_id: str
    receiver_id: str
    signer_id: str | None = None
    actions: list[dict[str, Any]] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    # Outcome logs were requested but could not be fetched
    logs_unavailable: bool = False

    @property
    def function_calls(self) -> list[dict[str, Any]]:
        """FunctionCall action bodies ({method_name, args, gas, deposit})."""
        calls = []
        for action in self.actions:
            if isinstance(action, dict) and "FunctionCall" in action:
                calls.append(action["FunctionCall"])
        return calls

    @property
    def method_names(self) -> list[str]:
        return [call.get("method_name", "") for call in self.function_calls]

    def to_payload(self) -> dict[str, Any]:
        return {
            "receipt_id": self.receipt_id,
            "predecessor_id": self.predecessor_id,
            "receiver_id": self.receiver_id,
            "signer_id": self.signer_id,
        }
