"""
Reputation Intel — MARKET_DATA source (DexScreener).

Contracts are looked up directly; tickers go through pair search and only
exact symbol matches count. The most liquid pair represents the token.
"""
from typing import Any, Dict, List, Optional

import structlog

from repintel.intel.errors import ProviderMalformedResponse, ProviderNoData
from repintel.intel.extractor import normalize_address
from repintel.intel.models import Confidence, EntityKind, ProviderResult, ResolvedEntity, SourceId
from repintel.sources.base import FetchContext, SourceAdapter, request_json

logger = structlog.get_logger()


def _num(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _liquidity(pair: Dict[str, Any]) -> float:
    return _num((pair.get("liquidity") or {}).get("usd")) or 0.0


def select_pair(pairs: List[Dict[str, Any]], entity: ResolvedEntity) -> Optional[Dict[str, Any]]:
    candidates = [p for p in pairs if isinstance(p, dict)]
    if entity.kind == EntityKind.CONTRACT and entity.chain:
        on_chain = [p for p in candidates if p.get("chainId") == entity.chain]
        candidates = on_chain or candidates
    elif entity.kind == EntityKind.TICKER:
        symbol = entity.normalized_value.upper()
        candidates = [
            p for p in candidates
            if str((p.get("baseToken") or {}).get("symbol", "")).upper() == symbol
        ]
    if not candidates:
        return None
    return max(candidates, key=_liquidity)


def pair_to_fields(pair: Dict[str, Any]) -> Dict[str, Any]:
    base = pair.get("baseToken") or {}
    txns = (pair.get("txns") or {}).get("h24") or {}
    info = pair.get("info") or {}
    websites = [w.get("url") for w in info.get("websites") or [] if w.get("url")]
    socials = [s for s in info.get("socials") or [] if s.get("url")]
    created_ms = pair.get("pairCreatedAt")
    address = base.get("address")

    return {
        "token_symbol": base.get("symbol"),
        "token_name": base.get("name"),
        "contract_address": (normalize_address(address) or address) if address else None,
        "chain": pair.get("chainId"),
        "price_usd": _num(pair.get("priceUsd")),
        "price_change_24h": _num((pair.get("priceChange") or {}).get("h24")),
        "volume_24h": _num((pair.get("volume") or {}).get("h24")),
        "liquidity_usd": _liquidity(pair) or None,
        "market_cap": _num(pair.get("marketCap")) or _num(pair.get("fdv")),
        "buys_24h": txns.get("buys"),
        "sells_24h": txns.get("sells"),
        "pair_address": pair.get("pairAddress"),
        "dex_id": pair.get("dexId"),
        "pair_created_at": int(created_ms) // 1000 if created_ms else None,
        "website": websites[0] if websites else None,
        "socials": socials or None,
    }


class MarketDataAdapter(SourceAdapter):
    source_id = SourceId.MARKET_DATA

    async def fetch(self, entity: ResolvedEntity, context: FetchContext) -> ProviderResult:
        base = self.settings.DEXSCREENER_BASE_URL.rstrip("/")
        if entity.kind == EntityKind.CONTRACT:
            data = await request_json(context, self.source_id, "GET",
                                      f"{base}/latest/dex/tokens/{entity.normalized_value}")
        elif entity.kind == EntityKind.TICKER:
            data = await request_json(context, self.source_id, "GET",
                                      f"{base}/latest/dex/search", params={"q": entity.normalized_value})
        else:
            raise ProviderNoData(self.name, "market data needs a ticker or contract")

        if not isinstance(data, dict):
            raise ProviderMalformedResponse(self.name, "DexScreener response is not an object")
        pair = select_pair(data.get("pairs") or [], entity)
        if pair is None:
            raise ProviderNoData(self.name, "no trading pair found")

        fields = pair_to_fields(pair)
        logger.info("market_data_fetched", entity=entity.cache_key,
                    pair=fields["pair_address"], liquidity=fields["liquidity_usd"])
        return ProviderResult(source_id=self.source_id, fields=fields, confidence=Confidence.HIGH)
