"""
Reputation Intel — AI_SOCIAL source (xAI Responses API with live X search).

The model is asked to research the entity on X and return one JSON object
describing the account: profile, promoted tokens, backlash, behavior and
network metrics, citable evidence and, where it can, the raw posts it read.
The answer is validated with pydantic before it becomes a ProviderResult.

When the model returns posts but no behavior metrics, the keyword analyzer
derives them from the posts.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from repintel.intel.behavior import analyze_behavior, detect_backlash, parse_timestamp, post_evidence_id
from repintel.intel.errors import ProviderMalformedResponse, ProviderNoData
from repintel.intel.models import Confidence, EntityKind, ProviderResult, ResolvedEntity, SourceId
from repintel.sources.base import FetchContext, SourceAdapter, parse_json_text, request_json

logger = structlog.get_logger()

MAX_POSTS = 100
MAX_EVIDENCE = 50

ANALYSIS_PROMPT = """You are an investigative crypto researcher. Research {subject} on X thoroughly.

Search their own posts going back 6-12 months, search for allegations
("scam", "rug", "fraud") and search what other accounts say about them.

Return ONLY one JSON object, no markdown, with this shape:
{{
  "handle": "",
  "posts_analyzed": 0,
  "profile": {{"display_name": "", "bio": "", "verified": false, "followers": 0,
               "following": 0, "created_at": "YYYY-MM-DD"}},
  "shilled_entities": [{{"id": "", "name": "", "ticker": "$XXX", "mention_count": 0, "promo_count": 0,
                        "promo_intensity": 0, "first_seen": "", "last_seen": "", "evidence_ids": []}}],
  "backlash_events": [{{"id": "", "category": "", "severity": "low|medium|high|critical",
                       "start_date": "", "end_date": "", "sources": ["@accuser"], "summary": "",
                       "evidence_ids": []}}],
  "behavior_metrics": {{"toxicity": 0, "vulgarity": 0, "hype": 0, "hype_keywords": [], "aggression": 0,
                        "aggression_targets": [], "consistency": 100, "topic_drift": 0,
                        "contradictions": [], "burst_periods": 0}},
  "network_metrics": {{"top_interactions": [{{"handle": "", "count": 0}}], "mention_list": [],
                       "reply_ratio": 0, "retweet_ratio": 0, "avg_engagement_rate": 0,
                       "suspicious_patterns": []}},
  "posts": [{{"id": "", "text": "", "timestamp": "ISO-8601"}}],
  "evidence": [{{"id": "", "excerpt": "post text, 280 chars max", "url": "", "label": "", "timestamp": ""}}],
  "key_findings": [], "controversies": [], "the_story": "",
  "website": null, "github": null, "contract_address": null,
  "confidence": "low|medium|high"
}}
All 0-100 metrics must be numbers. Every evidence_ids entry must match an evidence id.
Base every claim on posts you actually found."""


# =============================================
# RESPONSE MODELS
# =============================================

class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SocialProfile(_Lenient):
    display_name: Optional[str] = None
    bio: Optional[str] = None
    verified: Optional[bool] = None
    followers: Optional[int] = None
    following: Optional[int] = None
    created_at: Optional[str] = None


class ShillItem(_Lenient):
    id: Optional[str] = None
    name: str = ""
    ticker: Optional[str] = None
    mention_count: int = 0
    promo_count: int = 0
    promo_intensity: float = Field(0, ge=0, le=100)
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    evidence_ids: List[str] = Field(default_factory=list)


class BacklashItem(_Lenient):
    id: Optional[str] = None
    category: str = "other"
    severity: str = "low"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    summary: str = ""
    evidence_ids: List[str] = Field(default_factory=list)


class BehaviorItem(_Lenient):
    toxicity: float = Field(0, ge=0, le=100)
    vulgarity: float = Field(0, ge=0, le=100)
    hype: float = Field(0, ge=0, le=100)
    hype_keywords: List[str] = Field(default_factory=list)
    aggression: float = Field(0, ge=0, le=100)
    aggression_targets: List[str] = Field(default_factory=list)
    consistency: float = Field(100, ge=0, le=100)
    topic_drift: float = Field(0, ge=0, le=100)
    contradictions: List[str] = Field(default_factory=list)
    burst_periods: int = 0
    evidence_ids: Dict[str, List[str]] = Field(default_factory=dict)


class NetworkItem(_Lenient):
    top_interactions: List[Dict[str, Any]] = Field(default_factory=list)
    mention_list: List[str] = Field(default_factory=list)
    reply_ratio: float = Field(0, ge=0, le=1)
    retweet_ratio: float = Field(0, ge=0, le=1)
    avg_engagement_rate: float = 0
    suspicious_patterns: List[str] = Field(default_factory=list)
    evidence_ids: List[str] = Field(default_factory=list)


class PostItem(_Lenient):
    id: str
    text: str
    timestamp: Optional[str] = None


class EvidenceItem(_Lenient):
    id: Optional[str] = None
    excerpt: str
    url: Optional[str] = None
    label: str = ""
    timestamp: Optional[str] = None


class SocialAnalysis(_Lenient):
    handle: Optional[str] = None
    posts_analyzed: int = 0
    profile: SocialProfile = Field(default_factory=SocialProfile)
    shilled_entities: List[ShillItem] = Field(default_factory=list)
    backlash_events: List[BacklashItem] = Field(default_factory=list)
    behavior_metrics: Optional[BehaviorItem] = None
    network_metrics: Optional[NetworkItem] = None
    posts: List[PostItem] = Field(default_factory=list)
    evidence: List[EvidenceItem] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    controversies: List[str] = Field(default_factory=list)
    the_story: Optional[str] = None
    website: Optional[str] = None
    github: Optional[str] = None
    contract_address: Optional[str] = None
    confidence: Optional[str] = None


# =============================================
# ADAPTER
# =============================================

def _subject(entity: ResolvedEntity) -> str:
    if entity.kind == EntityKind.HANDLE:
        return f"the X account @{entity.normalized_value}"
    if entity.kind == EntityKind.TICKER:
        return f"the token ${entity.normalized_value} and the accounts behind it"
    if entity.kind == EntityKind.CONTRACT:
        return f"the {entity.chain or ''} token contract {entity.normalized_value} and the accounts behind it"
    return f"the project at {entity.normalized_value} and the accounts behind it"


def _account_age_days(created_at: Optional[str]) -> Optional[int]:
    created = parse_timestamp(created_at)
    if not created:
        return None
    return max(0, (datetime.now(timezone.utc) - created).days)


def extract_output(data: Dict[str, Any]):
    """Assistant text and url citations from a Responses API payload."""
    if data.get("error"):
        raise ProviderMalformedResponse(SourceId.AI_SOCIAL.value, f"API error: {data['error']}")
    for item in data.get("output") or []:
        if item.get("type") == "message" and item.get("role") == "assistant":
            for content in item.get("content") or []:
                if content.get("text"):
                    citations = [
                        a.get("url") for a in content.get("annotations") or []
                        if a.get("type") == "url_citation" and a.get("url")
                    ]
                    return content["text"], citations
    raise ProviderMalformedResponse(SourceId.AI_SOCIAL.value, "no assistant message in response")


def to_fields(analysis: SocialAnalysis) -> Dict[str, Any]:
    posts = [p.model_dump() for p in analysis.posts[:MAX_POSTS]]

    evidence = []
    for i, item in enumerate(analysis.evidence[:MAX_EVIDENCE]):
        entry = item.model_dump()
        entry["id"] = entry["id"] or f"ev:{i}"
        entry["source_id"] = SourceId.AI_SOCIAL.value
        evidence.append(entry)
    for post in posts[:MAX_EVIDENCE]:
        evidence.append({
            "id": post_evidence_id(post["id"]),
            "excerpt": post["text"][:280],
            "label": "post",
            "timestamp": post["timestamp"],
            "source_id": SourceId.AI_SOCIAL.value,
        })

    shilled = []
    for i, item in enumerate(analysis.shilled_entities):
        entry = item.model_dump()
        entry["id"] = entry["id"] or f"shill:{i}"
        shilled.append(entry)

    backlash = []
    for i, item in enumerate(analysis.backlash_events):
        entry = item.model_dump()
        entry["id"] = entry["id"] or f"backlash:{i}"
        backlash.append(entry)

    if analysis.behavior_metrics is not None:
        behavior = analysis.behavior_metrics.model_dump()
    elif posts:
        behavior = analyze_behavior(posts).to_dict()
    else:
        behavior = None

    if not backlash and posts:
        backlash = [e.to_dict() for e in detect_backlash(posts)]

    profile = analysis.profile
    return {
        "handle": (analysis.handle or "").lstrip("@").lower() or None,
        "display_name": profile.display_name,
        "bio": profile.bio,
        "verified": profile.verified,
        "followers": profile.followers,
        "following": profile.following,
        "account_age_days": _account_age_days(profile.created_at),
        "posts_analyzed": analysis.posts_analyzed or len(posts),
        "posts": posts,
        "shilled_entities": shilled,
        "backlash_events": backlash,
        "behavior_metrics": behavior,
        "network_metrics": analysis.network_metrics.model_dump() if analysis.network_metrics else None,
        "evidence": evidence,
        "key_findings": analysis.key_findings,
        "controversies": analysis.controversies,
        "story": analysis.the_story,
        "website": analysis.website,
        "github": analysis.github,
        "contract_address": analysis.contract_address,
    }


class AiSocialAdapter(SourceAdapter):
    source_id = SourceId.AI_SOCIAL

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.XAI_API_KEY)

    async def fetch(self, entity: ResolvedEntity, context: FetchContext) -> ProviderResult:
        self.require_configured()

        payload = {
            "model": self.settings.XAI_MODEL,
            "input": [{"role": "user", "content": ANALYSIS_PROMPT.format(subject=_subject(entity))}],
            "tools": [{"type": "x_search"}, {"type": "web_search"}],
            "temperature": 0.3,
        }
        data = await request_json(
            context, self.source_id, "POST",
            f"{self.settings.XAI_BASE_URL.rstrip('/')}/responses",
            json=payload,
            headers={"Authorization": f"Bearer {self.settings.XAI_API_KEY}"},
        )
        text, citations = extract_output(data)

        try:
            analysis = SocialAnalysis.model_validate(parse_json_text(self.source_id, text))
        except ValidationError as e:
            raise ProviderMalformedResponse(self.name, f"unexpected analysis shape: {e.error_count()} errors") from e

        fields = to_fields(analysis)
        if not fields["posts_analyzed"] and not fields["evidence"] and not fields["key_findings"]:
            raise ProviderNoData(self.name, "no posts or findings for this entity")

        confidence = (analysis.confidence or "").lower()
        logger.info("ai_social_fetched", entity=entity.cache_key,
                    posts=fields["posts_analyzed"], citations=len(citations))
        return ProviderResult(
            source_id=self.source_id,
            fields=fields,
            confidence=Confidence(confidence) if confidence in ("low", "medium", "high") else Confidence.MEDIUM,
            citations=tuple(citations),
        )
