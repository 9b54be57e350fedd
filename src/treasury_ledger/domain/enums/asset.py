from enum import Enum


class AssetKind(str, Enum):
    """Closed set of asset kinds the ledger tracks."""

    NATIVE = "NATIVE"
    FUNGIBLE_TOKEN = "FUNGIBLE_TOKEN"
    INTENTS = "INTENTS"
