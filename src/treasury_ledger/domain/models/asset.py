"""Asset identifiers as a closed tagged variant.

Ledger rows store a flat ``token_id`` string; everything above the repository
layer works with one of the three dataclasses below, parsed once with
``parse_asset``:

- ``"near"`` (case-insensitive)             -> NativeAsset
- ``"<contract>:<token>"``                  -> IntentsToken (split on the first colon)
- anything else                             -> FungibleToken (NEP-141 contract account)
"""

from dataclasses import dataclass
from typing import ClassVar, Union

from treasury_ledger.domain.enums import AssetKind

NATIVE_ASSET_ID = "near"
NATIVE_DECIMALS = 24

INTENTS_NEP141_PREFIX = "nep141:"
INTENTS_NEP245_PREFIX = "nep245:"


@dataclass(frozen=True)
class NativeAsset:
    kind: ClassVar[AssetKind] = AssetKind.NATIVE

    @property
    def asset_id(self) -> str:
        return NATIVE_ASSET_ID


@dataclass(frozen=True)
class FungibleToken:
    kind: ClassVar[AssetKind] = AssetKind.FUNGIBLE_TOKEN

    contract_id: str

    @property
    def asset_id(self) -> str:
        return self.contract_id

    @property
    def metadata_contract(self) -> str:
        return self.contract_id


@dataclass(frozen=True)
class IntentsToken:
    """A holding on the multi-token intents contract, e.g. intents.near:nep141:wrap.near."""

    kind: ClassVar[AssetKind] = AssetKind.INTENTS

    contract_id: str
    token_id: str

    @property
    def asset_id(self) -> str:
        return f"{self.contract_id}:{self.token_id}"

    @property
    def metadata_contract(self) -> str:
        """Contract whose ft_metadata describes this holding."""
        for prefix in (INTENTS_NEP141_PREFIX, INTENTS_NEP245_PREFIX):
            if self.token_id.startswith(prefix):
                return self.token_id[len(prefix):]
        return self.token_id


Asset = Union[NativeAsset, FungibleToken, IntentsToken]


def parse_asset(asset_id: str) -> Asset:
    asset_id = asset_id.strip()
    if not asset_id:
        raise ValueError("Empty asset id")
    if asset_id.lower() == NATIVE_ASSET_ID:
        return NativeAsset()
    if ":" in asset_id:
        contract_id, token_id = asset_id.split(":", 1)
        if not contract_id or not token_id:
            raise ValueError(f"Invalid intents token id: {asset_id}")
        return IntentsToken(contract_id=contract_id, token_id=token_id)
    return FungibleToken(contract_id=asset_id)


def intents_asset(contract_id: str, token_id: str) -> IntentsToken:
    """Build an intents holding from an mt_tokens_for_owner entry."""
    return IntentsToken(contract_id=contract_id, token_id=token_id)
