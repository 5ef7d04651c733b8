"""
Reputation Intel — WEB_RESEARCH source (Perplexity Sonar, grounded web search).

Only cited facts are wanted: the prompt demands null for anything the model
cannot source. Citations returned by the API become the result's citations.
"""
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from repintel.intel.errors import ProviderMalformedResponse, ProviderNoData
from repintel.intel.extractor import normalize_address
from repintel.intel.models import Confidence, EntityKind, ProviderResult, ResolvedEntity, SourceId
from repintel.sources.base import FetchContext, SourceAdapter, parse_json_text, request_json

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are a research assistant. Only state facts you can cite. "
    "Use null for unknowns. Do NOT guess. Respond with a single JSON object and nothing else."
)

RESEARCH_PROMPT = """Research {subject} and return structured factual data.

- Search for team, funding, audits, controversies and recent news.
- Search dexscreener.com, coingecko.com and coinmarketcap.com for the token contract address.
- Search github.com and the official website for project identifiers.
- If you cannot find information for a field, use null.

Return ONLY this JSON object:
{{
  "project_name": null, "description": null,
  "identifiers": {{"token_address": null, "website": null, "github_url": null, "ticker": null, "chain": null}},
  "founding_date": null,
  "team_members": [{{"name": "", "role": "", "is_doxxed": false, "x_handle": null}}],
  "legal_entity": {{"company_name": null, "jurisdiction": null, "is_registered": false}},
  "funding_history": [{{"round": "", "amount": null, "date": null, "investors": []}}],
  "audit": {{"has_audit": false, "auditor": null, "audit_url": null}},
  "recent_news": [{{"date": "", "headline": "", "url": ""}}],
  "controversies": [], "key_findings": [], "the_story": null,
  "confidence": "low|medium|high"
}}"""


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Identifiers(_Lenient):
    token_address: Optional[str] = None
    website: Optional[str] = None
    github_url: Optional[str] = None
    ticker: Optional[str] = None
    chain: Optional[str] = None


class LegalEntity(_Lenient):
    company_name: Optional[str] = None
    jurisdiction: Optional[str] = None
    is_registered: Optional[bool] = None


class Audit(_Lenient):
    has_audit: Optional[bool] = None
    auditor: Optional[str] = None
    audit_url: Optional[str] = None


class ProjectResearch(_Lenient):
    project_name: Optional[str] = None
    description: Optional[str] = None
    identifiers: Identifiers = Field(default_factory=Identifiers)
    founding_date: Optional[str] = None
    team_members: List[Dict[str, Any]] = Field(default_factory=list)
    legal_entity: Optional[LegalEntity] = None
    funding_history: List[Dict[str, Any]] = Field(default_factory=list)
    audit: Optional[Audit] = None
    recent_news: List[Dict[str, Any]] = Field(default_factory=list)
    controversies: List[str] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    the_story: Optional[str] = None
    confidence: Optional[str] = None


def _subject(entity: ResolvedEntity) -> str:
    if entity.kind == EntityKind.TICKER:
        return f'the cryptocurrency project with ticker "${entity.normalized_value}"'
    if entity.kind == EntityKind.CONTRACT:
        return f'the {entity.chain or "crypto"} token with contract address "{entity.normalized_value}"'
    if entity.kind == EntityKind.DOMAIN:
        return f'the crypto project whose website is "{entity.normalized_value}"'
    return f'the crypto project or founder behind the X account "@{entity.normalized_value}"'


def to_fields(research: ProjectResearch) -> Dict[str, Any]:
    ids = research.identifiers
    contract = normalize_address(ids.token_address) if ids.token_address else None
    ticker = (ids.ticker or "").lstrip("$").upper() or None
    return {
        "project_name": research.project_name,
        "description": research.description,
        "website": ids.website,
        "github": ids.github_url,
        "contract_address": contract,
        "token_symbol": ticker,
        "chain": (ids.chain or "").lower() or None,
        "founding_date": research.founding_date,
        "team_size": len(research.team_members) or None,
        "team_members": research.team_members or None,
        "legal_entity": research.legal_entity.company_name if research.legal_entity else None,
        "audit_status": (
            None if research.audit is None or research.audit.has_audit is None
            else ("audited" if research.audit.has_audit else "unaudited")
        ),
        "auditor": research.audit.auditor if research.audit else None,
        "funding_rounds": len(research.funding_history) or None,
        "recent_news": research.recent_news or None,
        "controversies": research.controversies,
        "key_findings": research.key_findings,
        "story": research.the_story,
    }


class WebResearchAdapter(SourceAdapter):
    source_id = SourceId.WEB_RESEARCH

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.PERPLEXITY_API_KEY)

    async def fetch(self, entity: ResolvedEntity, context: FetchContext) -> ProviderResult:
        self.require_configured()

        payload = {
            "model": self.settings.PERPLEXITY_MODEL,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": RESEARCH_PROMPT.format(subject=_subject(entity))},
            ],
            "temperature": 0.1,
            "return_citations": True,
        }
        data = await request_json(
            context, self.source_id, "POST",
            f"{self.settings.PERPLEXITY_BASE_URL.rstrip('/')}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self.settings.PERPLEXITY_API_KEY}"},
        )

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderMalformedResponse(self.name, "no completion in response") from e

        try:
            research = ProjectResearch.model_validate(parse_json_text(self.source_id, text))
        except ValidationError as e:
            raise ProviderMalformedResponse(self.name, f"unexpected research shape: {e.error_count()} errors") from e

        fields = to_fields(research)
        if not any(v for v in fields.values()):
            raise ProviderNoData(self.name, "no citable facts found")

        citations = [c for c in data.get("citations") or [] if isinstance(c, str)]
        logger.info("web_research_fetched", entity=entity.cache_key, citations=len(citations))
        return ProviderResult(
            source_id=self.source_id,
            fields=fields,
            confidence=Confidence.HIGH if citations else Confidence.MEDIUM,
            citations=tuple(citations),
        )
