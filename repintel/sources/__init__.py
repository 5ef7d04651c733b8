"""Reputation Intel — evidence sources. All four implement SourceAdapter.fetch()."""
from typing import List

from repintel.sources.ai_social import AiSocialAdapter
from repintel.sources.base import FetchContext, SourceAdapter, build_http_client, request_json
from repintel.sources.market_data import MarketDataAdapter
from repintel.sources.onchain_security import OnchainSecurityAdapter
from repintel.sources.web_research import WebResearchAdapter


def default_adapters(settings) -> List[SourceAdapter]:
    return [
        AiSocialAdapter(settings),
        WebResearchAdapter(settings),
        OnchainSecurityAdapter(settings),
        MarketDataAdapter(settings),
    ]


__all__ = [
    "AiSocialAdapter",
    "FetchContext",
    "MarketDataAdapter",
    "OnchainSecurityAdapter",
    "SourceAdapter",
    "WebResearchAdapter",
    "build_http_client",
    "default_adapters",
    "request_json",
]
