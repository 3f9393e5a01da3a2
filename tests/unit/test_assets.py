"""Tests for resolving tokens to payment API assets."""
import asyncio

import pytest

from solver.assets import AssetResolver, ResolvedAsset, is_native_token
from solver.exceptions import AssetNotFound


@pytest.mark.parametrize("token", ["", "0x0", "0x0000000000000000000000000000000000000000", None])
def test_native_sentinels(token):
    assert is_native_token(token)


def test_contract_address_is_not_native():
    assert not is_native_token("0xdAC17F958D2ee523a2206206994597C13D831ec7")


def test_resolve_native_token(payments):
    payments.add_native("ETH", "ETH", 18)
    resolver = AssetResolver(payments)

    result = asyncio.run(resolver.resolve("0x0", "ETH"))
    assert result == ResolvedAsset(asset_id="ETH", decimals=18)


def test_resolve_contract_token(payments):
    payments.add_token("TRX", "0xquote", "USDT_TRX", 6)
    resolver = AssetResolver(payments)

    result = asyncio.run(resolver.resolve("0xquote", "TRX"))
    assert result == ResolvedAsset(asset_id="USDT_TRX", decimals=6)


def test_unknown_token_raises(payments):
    resolver = AssetResolver(payments)
    with pytest.raises(AssetNotFound) as exc_info:
        asyncio.run(resolver.resolve("0xmissing", "TRX"))
    assert exc_info.value.network_id == "TRX"


def test_ambiguous_match_raises(payments):
    payments.add_token("TRX", "0xquote", "USDT_A", 6)
    payments.add_token("TRX", "0xquote", "USDT_B", 6)
    resolver = AssetResolver(payments)

    with pytest.raises(AssetNotFound, match="ambiguous"):
        asyncio.run(resolver.resolve("0xquote", "TRX"))


def test_native_network_without_asset_raises(payments):
    payments.networks["BTC"] = {"networkId": "BTC"}
    resolver = AssetResolver(payments)

    with pytest.raises(AssetNotFound, match="no native asset"):
        asyncio.run(resolver.resolve("", "BTC"))


def test_missing_decimals_raises(payments):
    payments.token_assets[("TRX", "0xquote")] = [{"assetId": "USDT_TRX"}]
    resolver = AssetResolver(payments)

    with pytest.raises(AssetNotFound, match="decimals"):
        asyncio.run(resolver.resolve("0xquote", "TRX"))


def test_successful_lookups_are_cached(payments):
    payments.add_token("ETH", "0xBase", "USDC_ETH", 6)
    resolver = AssetResolver(payments)

    async def run_test():
        first = await resolver.resolve("0xBase", "ETH")
        second = await resolver.resolve("0xbase", "ETH")
        return first, second

    # Address case does not matter for the cache key
    first, second = asyncio.run(run_test())
    assert first == second
    assert payments.lookup_calls == 1


def test_failures_are_not_cached(payments):
    resolver = AssetResolver(payments)
    with pytest.raises(AssetNotFound):
        asyncio.run(resolver.resolve("0xquote", "TRX"))

    payments.add_token("TRX", "0xquote", "USDT_TRX", 6)
    assert asyncio.run(resolver.resolve("0xquote", "TRX")).asset_id == "USDT_TRX"
