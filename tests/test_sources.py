import json

import httpx
import pytest

from repintel.intel.errors import (
    ProviderMalformedResponse, ProviderNoData, ProviderRateLimited, ProviderUnavailable,
)
from repintel.intel.models import Confidence, EntityKind, ResolvedEntity, SourceId
from repintel.sources.ai_social import AiSocialAdapter, SocialAnalysis, extract_output, to_fields
from repintel.sources.base import FetchContext, parse_json_text, request_json
from repintel.sources.market_data import MarketDataAdapter, select_pair
from repintel.sources.onchain_security import OnchainSecurityAdapter, parse_goplus, parse_rugcheck
from repintel.sources.web_research import ProjectResearch, WebResearchAdapter
from repintel.sources.web_research import to_fields as web_to_fields
from tests.conftest import SOL_ADDRESS


def scripted(responses):
    """MockTransport replaying (status, body) pairs in order and recording requests."""
    seen = []

    def handler(request):
        seen.append(request)
        status, body = responses[min(len(seen), len(responses)) - 1]
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, content=body or b"", headers={"Retry-After": "7"})

    return httpx.MockTransport(handler), seen


def context(transport, settings, sleeper):
    return FetchContext(
        client=httpx.AsyncClient(transport=transport),
        settings=settings,
        max_attempts=3,
        backoff_seconds=1.0,
        sleep=sleeper,
    )


@pytest.mark.asyncio
async def test_transient_503_is_retried_with_backoff(settings, sleeper):
    transport, seen = scripted([(503, b""), (200, {"ok": True})])
    data = await request_json(context(transport, settings, sleeper), SourceId.MARKET_DATA, "GET", "https://api.test/x")
    assert data == {"ok": True}
    assert len(seen) == 2
    assert sleeper.calls == [1.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_last_error(settings, sleeper):
    transport, seen = scripted([(503, b"")])
    with pytest.raises(ProviderUnavailable):
        await request_json(context(transport, settings, sleeper), SourceId.MARKET_DATA, "GET", "https://api.test/x")
    assert len(seen) == 3
    assert sleeper.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after(settings, sleeper):
    transport, _ = scripted([(429, b"slow down")])
    with pytest.raises(ProviderRateLimited) as exc:
        await request_json(context(transport, settings, sleeper), SourceId.AI_SOCIAL, "POST", "https://api.test/x")
    assert exc.value.retry_after == 7
    assert exc.value.kind == "rate_limited"


@pytest.mark.asyncio
async def test_404_is_no_data_without_retry(settings, sleeper):
    transport, seen = scripted([(404, b"")])
    with pytest.raises(ProviderNoData):
        await request_json(context(transport, settings, sleeper), SourceId.MARKET_DATA, "GET", "https://api.test/x")
    assert len(seen) == 1
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_other_4xx_is_not_retried(settings, sleeper):
    transport, seen = scripted([(401, b"")])
    with pytest.raises(ProviderUnavailable) as exc:
        await request_json(context(transport, settings, sleeper), SourceId.WEB_RESEARCH, "POST", "https://api.test/x")
    assert exc.value.status_code == 401
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_unparseable_body_is_malformed(settings, sleeper):
    transport, seen = scripted([(200, b"<html>maintenance</html>")])
    with pytest.raises(ProviderMalformedResponse):
        await request_json(context(transport, settings, sleeper), SourceId.MARKET_DATA, "GET", "https://api.test/x")
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried(settings, sleeper):
    seen = []

    def handler(request):
        seen.append(request)
        if len(seen) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        if len(seen) == 2:
            raise httpx.ReadTimeout("read timed out", request=request)
        return httpx.Response(200, json={"ok": True})

    data = await request_json(
        context(httpx.MockTransport(handler), settings, sleeper),
        SourceId.WEB_RESEARCH, "POST", "https://api.test/x",
    )
    assert data == {"ok": True}
    assert len(seen) == 3
    assert sleeper.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_persistent_timeouts_end_unavailable(settings, sleeper):
    def handler(request):
        raise httpx.ConnectTimeout("connect timed out", request=request)

    with pytest.raises(ProviderUnavailable) as exc:
        await request_json(
            context(httpx.MockTransport(handler), settings, sleeper),
            SourceId.WEB_RESEARCH, "POST", "https://api.test/x",
        )
    assert "ConnectTimeout" in exc.value.reason


def test_parse_json_text_tolerates_fences_and_preamble():
    text = 'Here is the analysis:\n```json\n{"handle": "pepe", "posts_analyzed": 3}\n```'
    assert parse_json_text(SourceId.AI_SOCIAL, text) == {"handle": "pepe", "posts_analyzed": 3}
    with pytest.raises(ProviderMalformedResponse):
        parse_json_text(SourceId.AI_SOCIAL, "no json here")


# ── Market data ──────────────────────────────────────

def pair(symbol, liquidity, chain="ethereum", address="0xAAAA"):
    return {
        "chainId": chain,
        "dexId": "uniswap",
        "pairAddress": f"pair-{symbol}-{liquidity}",
        "baseToken": {"symbol": symbol, "name": symbol.title(), "address": address},
        "priceUsd": "0.0000012",
        "liquidity": {"usd": liquidity},
        "volume": {"h24": 5000},
        "txns": {"h24": {"buys": 10, "sells": 4}},
        "fdv": 1_000_000,
        "pairCreatedAt": 1_700_000_000_000,
        "info": {"websites": [{"url": "https://pepe.vip"}], "socials": []},
    }


def test_ticker_pair_selection_requires_exact_symbol(ticker_entity):
    chosen = select_pair([pair("PEPE", 1000), pair("PEPE2", 50_000), pair("PEPE", 9000)], ticker_entity)
    assert chosen["pairAddress"] == "pair-PEPE-9000"
    assert select_pair([pair("PEPE2", 1)], ticker_entity) is None


def test_contract_pair_selection_prefers_entity_chain(eth_entity):
    chosen = select_pair([pair("PEPE", 90_000, chain="bsc"), pair("PEPE", 1000)], eth_entity)
    assert chosen["chainId"] == "ethereum"


@pytest.mark.asyncio
async def test_market_adapter_fetches_contract(settings, sleeper, eth_entity):
    transport, seen = scripted([(200, {"pairs": [pair("PEPE", 1000, address=eth_entity.raw_value)]})])
    result = await MarketDataAdapter(settings).fetch(eth_entity, context(transport, settings, sleeper))
    assert seen[0].url.path == f"/latest/dex/tokens/{eth_entity.normalized_value}"
    assert result.source_id == SourceId.MARKET_DATA
    assert result.confidence == Confidence.HIGH
    assert result.fields["contract_address"] == eth_entity.normalized_value
    assert result.fields["price_usd"] == pytest.approx(0.0000012)
    assert result.fields["market_cap"] == 1_000_000
    assert result.fields["pair_created_at"] == 1_700_000_000
    assert result.fields["website"] == "https://pepe.vip"


@pytest.mark.asyncio
async def test_market_adapter_has_nothing_for_handles(settings, sleeper):
    transport, seen = scripted([(200, {})])
    handle = ResolvedEntity(EntityKind.HANDLE, "@pepe", "pepe")
    with pytest.raises(ProviderNoData):
        await MarketDataAdapter(settings).fetch(handle, context(transport, settings, sleeper))
    assert seen == []


# ── On-chain security ────────────────────────────────

RUGCHECK_REPORT = {
    "tokenMeta": {"symbol": "BONK", "name": "Bonk"},
    "mintAuthority": None,
    "freezeAuthority": "FrzAuth111",
    "topHolders": [{"pct": 62.5}, {"pct": 3.1}],
    "markets": [{"lp": {"lpLockedPct": 12.5}}, {"lp": {"lpLockedPct": 97.0}}, {"lp": {}}],
    "totalMarketLiquidity": 250000.129,
    "risks": [{"name": "Freeze Authority still enabled", "level": "DANGER", "description": "..."}],
}


def test_parse_rugcheck():
    fields = parse_rugcheck(RUGCHECK_REPORT)
    assert fields["mint_authority_enabled"] is False
    assert fields["freeze_authority_enabled"] is True
    assert fields["top_holder_pct"] == 62.5
    assert fields["lp_locked_pct"] == 97.0
    assert fields["security_risks"][0]["level"] == "danger"


def test_parse_goplus_converts_fractions():
    fields = parse_goplus({
        "is_mintable": "1",
        "transfer_pausable": "0",
        "is_honeypot": "1",
        "is_proxy": "1",
        "holders": [{"percent": "0.62"}],
        "lp_holders": [{"percent": "0.3", "is_locked": 1}, {"percent": "0.5", "is_locked": 0}],
    })
    assert fields["mint_authority_enabled"] is True
    assert fields["freeze_authority_enabled"] is False
    assert fields["top_holder_pct"] == 62.0
    assert fields["lp_locked_pct"] == 30.0
    assert [r["level"] for r in fields["security_risks"]] == ["danger", "warn"]


@pytest.mark.asyncio
async def test_onchain_adapter_uses_rugcheck_for_solana(settings, sleeper, sol_entity):
    transport, seen = scripted([(200, RUGCHECK_REPORT)])
    result = await OnchainSecurityAdapter(settings).fetch(sol_entity, context(transport, settings, sleeper))
    assert seen[0].url.path == f"/v1/tokens/{SOL_ADDRESS}/report"
    assert result.fields["chain"] == "solana"
    assert result.fields["contract_address"] == SOL_ADDRESS


@pytest.mark.asyncio
async def test_onchain_adapter_has_nothing_for_tickers(settings, sleeper, ticker_entity):
    transport, _ = scripted([(200, {})])
    with pytest.raises(ProviderNoData):
        await OnchainSecurityAdapter(settings).fetch(ticker_entity, context(transport, settings, sleeper))


# ── AI sources ───────────────────────────────────────

@pytest.mark.asyncio
async def test_unconfigured_ai_sources_are_unavailable(settings, sleeper, ticker_entity):
    transport, seen = scripted([(200, {})])
    for adapter in (AiSocialAdapter(settings), WebResearchAdapter(settings)):
        assert not adapter.is_configured
        with pytest.raises(ProviderUnavailable):
            await adapter.fetch(ticker_entity, context(transport, settings, sleeper))
    assert seen == []


def responses_payload(analysis):
    return {
        "output": [
            {"type": "reasoning"},
            {"type": "message", "role": "assistant", "content": [{
                "type": "output_text",
                "text": "```json\n" + json.dumps(analysis) + "\n```",
                "annotations": [{"type": "url_citation", "url": "https://x.com/pepe/status/1"}],
            }]},
        ],
    }


@pytest.mark.asyncio
async def test_ai_social_adapter_parses_analysis(settings, sleeper, ticker_entity):
    settings.XAI_API_KEY = "test-key"
    analysis = {
        "handle": "@PepeDev",
        "posts_analyzed": 120,
        "profile": {"display_name": "Pepe Dev", "followers": 5400},
        "shilled_entities": [{"name": "Frog", "ticker": "FROG", "promo_intensity": 80}],
        "key_findings": ["Launched three tokens this year"],
        "confidence": "high",
    }
    transport, seen = scripted([(200, responses_payload(analysis))])
    result = await AiSocialAdapter(settings).fetch(ticker_entity, context(transport, settings, sleeper))

    assert seen[0].headers["authorization"] == "Bearer test-key"
    assert result.confidence == Confidence.HIGH
    assert result.citations == ("https://x.com/pepe/status/1",)
    assert result.fields["handle"] == "pepedev"
    assert result.fields["followers"] == 5400
    assert result.fields["shilled_entities"][0]["id"] == "shill:0"
    assert result.fields["behavior_metrics"] is None


def test_social_fields_fall_back_to_keyword_analysis():
    posts = [
        {"id": str(i), "text": "this is a scam, stay away @watchdog", "timestamp": "2024-05-01T10:00:00Z"}
        for i in range(3)
    ]
    fields = to_fields(SocialAnalysis.model_validate({"posts": posts}))
    assert fields["posts_analyzed"] == 3
    assert fields["behavior_metrics"]["toxicity"] == 0
    assert fields["backlash_events"][0]["sources"] == ["@watchdog"]
    assert {e["id"] for e in fields["evidence"]} == {"post:0", "post:1", "post:2"}


def test_extract_output_requires_assistant_message():
    with pytest.raises(ProviderMalformedResponse):
        extract_output({"output": [{"type": "reasoning"}]})


# ── Web research ─────────────────────────────────────

def completion(content, citations=None):
    body = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    if citations is not None:
        body["citations"] = citations
    return body


RESEARCH = {
    "project_name": "Pepe",
    "description": "Frog-themed meme token",
    "identifiers": {"website": "https://pepe.vip", "ticker": "$pepe", "chain": "Ethereum"},
    "team_members": [{"name": "anon", "role": "dev"}],
    "audit": {"has_audit": True, "auditor": "CertiK"},
    "controversies": ["Team wallet sold 10% at launch"],
}


@pytest.mark.asyncio
async def test_web_research_adapter_parses_cited_facts(settings, sleeper, ticker_entity):
    settings.PERPLEXITY_API_KEY = "pplx-key"
    transport, seen = scripted([
        (200, completion(json.dumps(RESEARCH), ["https://pepe.vip", "https://news.test/pepe", 7])),
    ])
    result = await WebResearchAdapter(settings).fetch(ticker_entity, context(transport, settings, sleeper))

    assert seen[0].headers["authorization"] == "Bearer pplx-key"
    assert seen[0].url.path.endswith("/chat/completions")
    assert result.source_id == SourceId.WEB_RESEARCH
    assert result.confidence == Confidence.HIGH
    assert result.citations == ("https://pepe.vip", "https://news.test/pepe")
    assert result.fields["token_symbol"] == "PEPE"
    assert result.fields["chain"] == "ethereum"
    assert result.fields["team_size"] == 1
    assert result.fields["audit_status"] == "audited"
    assert result.fields["auditor"] == "CertiK"


@pytest.mark.asyncio
async def test_web_research_without_citations_is_medium_confidence(settings, sleeper, ticker_entity):
    settings.PERPLEXITY_API_KEY = "pplx-key"
    transport, _ = scripted([(200, completion("```json\n" + json.dumps(RESEARCH) + "\n```"))])
    result = await WebResearchAdapter(settings).fetch(ticker_entity, context(transport, settings, sleeper))
    assert result.confidence == Confidence.MEDIUM
    assert result.citations == ()


@pytest.mark.parametrize("audit, expected", [
    ({"has_audit": True}, "audited"),
    ({"has_audit": False}, "unaudited"),
    ({"has_audit": None}, None),
    (None, None),
])
def test_web_research_audit_status(audit, expected):
    research = ProjectResearch.model_validate({"project_name": "Pepe", "audit": audit})
    assert web_to_fields(research)["audit_status"] == expected


@pytest.mark.asyncio
async def test_web_research_without_completion_is_malformed(settings, sleeper, ticker_entity):
    settings.PERPLEXITY_API_KEY = "pplx-key"
    transport, _ = scripted([(200, {"choices": []})])
    with pytest.raises(ProviderMalformedResponse):
        await WebResearchAdapter(settings).fetch(ticker_entity, context(transport, settings, sleeper))


@pytest.mark.asyncio
async def test_web_research_all_null_is_no_data(settings, sleeper, ticker_entity):
    settings.PERPLEXITY_API_KEY = "pplx-key"
    empty = {"project_name": None, "identifiers": {}, "controversies": [], "key_findings": []}
    transport, _ = scripted([(200, completion(json.dumps(empty), ["https://pepe.vip"]))])
    with pytest.raises(ProviderNoData) as exc:
        await WebResearchAdapter(settings).fetch(ticker_entity, context(transport, settings, sleeper))
    assert exc.value.reason == "no_data: no citable facts found"
