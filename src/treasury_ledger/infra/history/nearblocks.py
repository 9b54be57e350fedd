"""NearBlocks indexer API as a transfer-history source."""

import logging
from typing import Any

from treasury_ledger.domain.models.asset import Asset, FungibleToken, NativeAsset
from treasury_ledger.exceptions import ExternalServiceError, RateLimited
from treasury_ledger.infra.http.rate_limited_client import RateLimitedClient, bearer_headers
from treasury_ledger.ledger.coordinator import TransferHistorySource

logger = logging.getLogger(__name__)

BASE_URL = "https://api.nearblocks.io/v1"
PER_PAGE = 25
MAX_PAGES = 4


class NearBlocksSource(TransferHistorySource):
    """Recent receipts (native) and FT transactions per account.

    Pages newest-first and stops once results fall below start_block. Intents
    holdings are not indexed here.
    """

    name = "nearblocks"

    def __init__(self, http_client: RateLimitedClient, base_url: str = BASE_URL) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")

    async def _get(self, path: str, params: dict[str, Any]) -> dict:
        resp = await self._http.get(f"{self._base_url}{path}", params=params)
        if resp.status_code == 429:
            raise RateLimited("NearBlocks rate limited")
        if resp.status_code >= 400:
            raise ExternalServiceError(f"NearBlocks HTTP {resp.status_code} for {path}")
        try:
            return resp.json()
        except ValueError as e:
            raise ExternalServiceError(f"NearBlocks returned non-JSON body for {path}") from e

    async def candidate_blocks(self, account_id: str, asset: Asset, start_block: int, end_block: int) -> list[int]:
        if isinstance(asset, NativeAsset):
            path, params, key = f"/account/{account_id}/receipts", {}, "txns"
        elif isinstance(asset, FungibleToken):
            path, params, key = f"/account/{account_id}/ft-txns", {"contract": asset.contract_id}, "txns"
        else:
            return []

        blocks: list[int] = []
        for page in range(1, MAX_PAGES + 1):
            data = await self._get(path, {**params, "page": page, "per_page": PER_PAGE, "order": "desc"})
            rows = data.get(key) or []
            if not rows:
                break

            heights = [_block_height(row) for row in rows]
            heights = [h for h in heights if h is not None]
            blocks.extend(h for h in heights if start_block <= h <= end_block)
            if heights and min(heights) < start_block:
                break

        return blocks


def _block_height(row: dict) -> int | None:
    block = row.get("block") or {}
    height = block.get("block_height", row.get("block_height"))
    return int(height) if height is not None else None


def build_history_sources(api_key: str, rate_per_second: float = 1.0) -> list[TransferHistorySource]:
    """History sources to try before binary search; empty when no API key is configured."""
    if not api_key:
        return []
    http_client = RateLimitedClient(rate_per_second=rate_per_second, headers=bearer_headers(api_key))
    return [NearBlocksSource(http_client)]
