# gateway/pipelines/crypto.py
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Sequence

import httpx

from ..clients.sources import fetch_source_json
from ..errors import MalformedPayload, ParameterError
from ..models import PricedAsset
from ..utils.normalize import to_float, to_int, utc_now_iso
from ..utils.validation import coerce_limit, optional_str
from .base import Failure, FailureKind, FallbackChainPipeline, Upstream


# ----------------------------------------------------------------------------
# CoinGecko
# ----------------------------------------------------------------------------
async def _coingecko_markets(http: httpx.AsyncClient, query: Dict[str, Any]) -> Any:
    return await fetch_source_json(http, "coingecko", "/coins/markets", params={
        "vs_currency": "usd",
        "order": "market_cap_desc",
        "per_page": query["limit"],
        "page": 1,
        "sparkline": "false",
        "price_change_percentage": "24h",
    })


def coingecko_markets_to_assets(payload: Any, query: Dict[str, Any]) -> List[PricedAsset]:
    if not isinstance(payload, list):
        raise MalformedPayload("coingecko", "markets response is not a list")
    return [
        PricedAsset(
            id=str(c["id"]),
            symbol=(c.get("symbol") or "").upper() or None,
            name=c.get("name"),
            price_usd=to_float(c.get("current_price")),
            change_24h=to_float(c.get("price_change_percentage_24h")),
            market_cap=to_float(c.get("market_cap")),
            volume_24h=to_float(c.get("total_volume")),
            rank=to_int(c.get("market_cap_rank")),
        )
        for c in payload
        if isinstance(c, dict) and c.get("id")
    ]


async def _coingecko_price(http: httpx.AsyncClient, query: Dict[str, Any]) -> Any:
    return await fetch_source_json(http, "coingecko", "/simple/price", params={
        "ids": query["coin"],
        "vs_currencies": "usd",
        "include_24hr_change": "true",
        "include_market_cap": "true",
        "include_24hr_vol": "true",
    })


def coingecko_price_to_assets(payload: Any, query: Dict[str, Any]) -> List[PricedAsset]:
    if not isinstance(payload, dict):
        raise MalformedPayload("coingecko", "simple/price response is not an object")
    row = payload.get(query["coin"])
    if not isinstance(row, dict):
        return []
    return [PricedAsset(
        id=query["coin"],
        price_usd=to_float(row.get("usd")),
        change_24h=to_float(row.get("usd_24h_change")),
        market_cap=to_float(row.get("usd_market_cap")),
        volume_24h=to_float(row.get("usd_24h_vol")),
    )]


# ----------------------------------------------------------------------------
# CoinCap
# ----------------------------------------------------------------------------
def _coincap_asset(c: Dict[str, Any]) -> PricedAsset:
    return PricedAsset(
        id=str(c["id"]),
        symbol=c.get("symbol"),
        name=c.get("name"),
        price_usd=to_float(c.get("priceUsd")),
        change_24h=to_float(c.get("changePercent24Hr")),
        market_cap=to_float(c.get("marketCapUsd")),
        volume_24h=to_float(c.get("volumeUsd24Hr")),
        rank=to_int(c.get("rank")),
    )


async def _coincap_assets(http: httpx.AsyncClient, query: Dict[str, Any]) -> Any:
    return await fetch_source_json(http, "coincap", "/assets", params={"limit": query["limit"]})


def coincap_assets_to_assets(payload: Any, query: Dict[str, Any]) -> List[PricedAsset]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        raise MalformedPayload("coincap", "assets response lacks a data list")
    return [_coincap_asset(c) for c in data if isinstance(c, dict) and c.get("id")]


async def _coincap_asset_one(http: httpx.AsyncClient, query: Dict[str, Any]) -> Any:
    return await fetch_source_json(http, "coincap", f"/assets/{query['coin']}")


def coincap_asset_to_assets(payload: Any, query: Dict[str, Any]) -> List[PricedAsset]:
    if not isinstance(payload, dict):
        raise MalformedPayload("coincap", "asset response is not an object")
    data = payload.get("data")
    if not isinstance(data, dict) or not data.get("id"):
        return []
    return [_coincap_asset(data)]


LIST_CHAIN = (
    Upstream("coingecko", _coingecko_markets, coingecko_markets_to_assets),
    Upstream("coincap", _coincap_assets, coincap_assets_to_assets),
)
COIN_CHAIN = (
    Upstream("coingecko", _coingecko_price, coingecko_price_to_assets),
    Upstream("coincap", _coincap_asset_one, coincap_asset_to_assets),
)


_COIN_ID_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{0,63}$")


class CryptoPipeline(FallbackChainPipeline):
    name = "crypto"
    items_key = "coins"
    example = "/api/crypto?coin=bitcoin"

    def parse(self, params: Mapping[str, str]) -> Dict[str, Any]:
        coin = optional_str(params, "coin")
        if coin:
            coin = coin.lower()
            if not _COIN_ID_RE.match(coin):
                raise ParameterError(f"Invalid coin id: {coin!r}", example=self.example)
        return {
            "coin": coin,
            "limit": coerce_limit(params, "limit", default=self.caps.default_limit, cap=self.caps.max_limit, example=self.example),
        }

    def chain(self, query: Dict[str, Any]) -> Sequence[Upstream]:
        return COIN_CHAIN if query["coin"] else LIST_CHAIN

    def flatten(self, query: Dict[str, Any]) -> bool:
        return bool(query["coin"])

    def meta(self, query: Dict[str, Any]) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"updated": utc_now_iso()}
        if query["coin"]:
            meta["coin"] = query["coin"]
        return meta

    def exhausted(self, query: Dict[str, Any], answered_empty: bool) -> Failure:
        if query["coin"] and answered_empty:
            return Failure(
                FailureKind.NOT_FOUND,
                f'Coin "{query["coin"]}" not found',
                {"suggestion": "Use a CoinGecko/CoinCap id (e.g., bitcoin, ethereum, solana)"},
            )
        return Failure(
            FailureKind.UPSTREAM_UNAVAILABLE,
            "Crypto APIs unavailable",
            {"message": "Try again later, or ?coin=bitcoin for a single coin lookup"},
        )
