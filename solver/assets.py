"""Resolve on-chain tokens to custodial payment API assets."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .exceptions import AssetNotFound
from .payment_client import PaymentClient

NATIVE_TOKEN_SENTINELS = frozenset({"", "0x0", "0x0000000000000000000000000000000000000000"})


def is_native_token(token_address: Optional[str]) -> bool:
    return (token_address or "").strip().lower() in NATIVE_TOKEN_SENTINELS


@dataclass(frozen=True)
class ResolvedAsset:
    asset_id: str
    decimals: int


class AssetResolver:
    """Maps ``(network, token)`` pairs to payment API asset ids.

    Asset identity and precision never change, so successful lookups are
    cached for the lifetime of the process. Failures are not cached.
    """

    def __init__(self, payment_client: PaymentClient, logger: Optional[logging.Logger] = None):
        self.payment_client = payment_client
        self.logger = logger or logging.getLogger(__name__)
        self._cache: Dict[Tuple[str, str], ResolvedAsset] = {}

    async def resolve(self, token_address: str, network_id: str) -> ResolvedAsset:
        """Return the asset id and decimals for a token.

        Raises:
            AssetNotFound: no single asset matches, or its decimals are unknown.
        """
        key = (str(network_id), (token_address or "").strip().lower())
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if is_native_token(token_address):
            resolved = await self._resolve_native(network_id, token_address)
        else:
            resolved = await self._resolve_token(network_id, token_address)

        self._cache[key] = resolved
        self.logger.debug(f"Resolved {token_address} on {network_id} -> {resolved.asset_id} ({resolved.decimals} decimals)")
        return resolved

    async def _resolve_native(self, network_id: str, token_address: str) -> ResolvedAsset:
        network = await self.payment_client.get_network(network_id)
        asset_id = network.get("nativeAssetId")
        if not asset_id:
            raise AssetNotFound(network_id, token_address, "network has no native asset")
        asset = await self.payment_client.get_asset(asset_id)
        return ResolvedAsset(asset_id=str(asset_id), decimals=_decimals(asset, network_id, token_address))

    async def _resolve_token(self, network_id: str, token_address: str) -> ResolvedAsset:
        assets = await self.payment_client.get_assets(network_id, token_address)
        if not assets:
            raise AssetNotFound(network_id, token_address)
        if len(assets) > 1:
            ids = ", ".join(str(a.get("assetId")) for a in assets)
            raise AssetNotFound(network_id, token_address, f"ambiguous match ({ids})")

        asset = assets[0]
        asset_id = asset.get("assetId")
        if not asset_id:
            raise AssetNotFound(network_id, token_address, "asset has no id")
        return ResolvedAsset(asset_id=str(asset_id), decimals=_decimals(asset, network_id, token_address))


def _decimals(asset: Dict, network_id: str, token_address: str) -> int:
    try:
        decimals = int(asset["decimals"])
    except (KeyError, TypeError, ValueError):
        raise AssetNotFound(network_id, token_address, "asset decimals unknown") from None
    if decimals < 0:
        raise AssetNotFound(network_id, token_address, f"invalid decimals {decimals}")
    return decimals
