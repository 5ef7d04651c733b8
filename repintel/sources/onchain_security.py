"""
Reputation Intel — ONCHAIN_SECURITY source.

    solana   → RugCheck token report
    ethereum → GoPlus token security

Both are keyless public APIs. Only contract targets have anything to look
up; every other entity kind is "no data" for this source.
"""
from typing import Any, Dict, List, Optional

import structlog

from repintel.intel.errors import ProviderMalformedResponse, ProviderNoData
from repintel.intel.models import Confidence, ProviderResult, ResolvedEntity, SourceId
from repintel.sources.base import FetchContext, SourceAdapter, request_json

logger = structlog.get_logger()

GOPLUS_CHAIN_IDS = {"ethereum": "1"}

# GoPlus flags that make a token dangerous to hold, with display names
GOPLUS_DANGER_FLAGS = {
    "is_honeypot": "Honeypot",
    "cannot_sell_all": "Cannot sell all tokens",
    "owner_change_balance": "Owner can change balances",
    "hidden_owner": "Hidden owner",
    "selfdestruct": "Self-destruct",
}
GOPLUS_WARN_FLAGS = {
    "is_blacklisted": "Blacklist function",
    "is_proxy": "Upgradeable proxy",
    "slippage_modifiable": "Modifiable tax",
}


def _pct(value: Any) -> Optional[float]:
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return None


def _flag(value: Any) -> bool:
    return str(value) == "1"


def parse_rugcheck(report: Dict[str, Any]) -> Dict[str, Any]:
    meta = report.get("tokenMeta") or {}
    holders = report.get("topHolders") or []
    markets = report.get("markets") or []
    lp_locked = [
        _pct((m.get("lp") or {}).get("lpLockedPct"))
        for m in markets
        if (m.get("lp") or {}).get("lpLockedPct") is not None
    ]
    risks = [
        {
            "name": r.get("name", ""),
            "level": str(r.get("level", "")).lower(),
            "description": r.get("description", ""),
        }
        for r in report.get("risks") or []
    ]
    return {
        "token_symbol": meta.get("symbol"),
        "token_name": meta.get("name"),
        "mint_authority_enabled": bool(report.get("mintAuthority")),
        "freeze_authority_enabled": bool(report.get("freezeAuthority")),
        "top_holder_pct": _pct(holders[0].get("pct")) if holders else None,
        "lp_locked_pct": max(lp_locked) if lp_locked else None,
        "liquidity_usd": _pct(report.get("totalMarketLiquidity")),
        "security_risks": risks,
    }


def parse_goplus(token: Dict[str, Any]) -> Dict[str, Any]:
    holders = token.get("holders") or []
    lp_holders = token.get("lp_holders") or []
    locked = sum(
        float(h.get("percent") or 0)
        for h in lp_holders
        if str(h.get("is_locked")) == "1"
    )
    risks: List[Dict[str, str]] = []
    for key, name in GOPLUS_DANGER_FLAGS.items():
        if _flag(token.get(key)):
            risks.append({"name": name, "level": "danger", "description": key})
    for key, name in GOPLUS_WARN_FLAGS.items():
        if _flag(token.get(key)):
            risks.append({"name": name, "level": "warn", "description": key})

    top = _pct(holders[0].get("percent")) if holders else None
    return {
        "token_symbol": token.get("token_symbol"),
        "token_name": token.get("token_name"),
        "mint_authority_enabled": _flag(token.get("is_mintable")),
        "freeze_authority_enabled": _flag(token.get("transfer_pausable")),
        "top_holder_pct": round(top * 100, 2) if top is not None else None,  # GoPlus reports fractions
        "lp_locked_pct": round(locked * 100, 2) if lp_holders else None,
        "security_risks": risks,
    }


class OnchainSecurityAdapter(SourceAdapter):
    source_id = SourceId.ONCHAIN_SECURITY

    async def fetch(self, entity: ResolvedEntity, context: FetchContext) -> ProviderResult:
        if not entity.is_contract:
            raise ProviderNoData(self.name, "no contract address to inspect")

        if entity.chain == "solana":
            url = f"{self.settings.RUGCHECK_BASE_URL.rstrip('/')}/tokens/{entity.normalized_value}/report"
            report = await request_json(context, self.source_id, "GET", url)
            if not isinstance(report, dict):
                raise ProviderMalformedResponse(self.name, "RugCheck report is not an object")
            fields = parse_rugcheck(report)

        elif entity.chain in GOPLUS_CHAIN_IDS:
            url = f"{self.settings.GOPLUS_BASE_URL.rstrip('/')}/token_security/{GOPLUS_CHAIN_IDS[entity.chain]}"
            data = await request_json(
                context, self.source_id, "GET", url,
                params={"contract_addresses": entity.normalized_value},
            )
            result = (data or {}).get("result") if isinstance(data, dict) else None
            if not isinstance(result, dict):
                raise ProviderMalformedResponse(self.name, "GoPlus response has no result object")
            token = result.get(entity.normalized_value.lower())
            if not token:
                raise ProviderNoData(self.name, "token unknown to GoPlus")
            fields = parse_goplus(token)

        else:
            raise ProviderNoData(self.name, f"unsupported chain: {entity.chain}")

        fields["contract_address"] = entity.normalized_value
        fields["chain"] = entity.chain
        logger.info("onchain_security_fetched", entity=entity.cache_key,
                    risks=len(fields["security_risks"]))
        return ProviderResult(source_id=self.source_id, fields=fields, confidence=Confidence.HIGH)
