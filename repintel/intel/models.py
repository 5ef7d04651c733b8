"""
Reputation Intel — Domain Model

Everything the pipeline passes between stages lives here:

    ResolvedEntity → ProviderResult (x4) → ReconciledEntityRecord → ReputationScore

Evidence groups (shilled entities, backlash events, behavior and network
metrics) travel through ProviderResult.fields as plain JSON-shaped dicts so
they can be cached verbatim. The dataclasses below are the typed views the
scoring engine and report builder read them through.
"""
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from types import MappingProxyType
from typing import Optional, Dict, Any, List, Mapping, Tuple


# =============================================
# ENUMS
# =============================================

class EntityKind(str, Enum):
    TICKER   = "ticker"
    HANDLE   = "handle"
    CONTRACT = "contract"
    DOMAIN   = "domain"


class SourceId(str, Enum):
    """The four independent evidence sources."""
    AI_SOCIAL        = "ai_social"         # inferential, social graph + posts
    WEB_RESEARCH     = "web_research"      # citation-backed prose
    ONCHAIN_SECURITY = "onchain_security"  # machine-verified token security
    MARKET_DATA      = "market_data"       # machine-verified DEX market data


class Confidence(str, Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


def max_confidence(*levels: Confidence) -> Confidence:
    return max(levels, key=lambda c: c.rank)


def lower_confidence(level: Confidence) -> Confidence:
    """One step down. LOW stays LOW."""
    if level == Confidence.HIGH:
        return Confidence.MEDIUM
    return Confidence.LOW


class RiskLevel(str, Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


class Severity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class FactorType(str, Enum):
    SERIAL_SHILL         = "serial_shill"
    BACKLASH_DENSITY     = "backlash_density"
    TOXIC_VULGAR         = "toxic_vulgar"
    HYPE_MERCHANT        = "hype_merchant"
    CONSISTENCY          = "consistency"
    ENGAGEMENT_SUSPICION = "engagement_suspicion"
    ONCHAIN_RISK         = "onchain_risk"


# =============================================
# RESOLUTION & EXTRACTION
# =============================================

@dataclass(frozen=True)
class ResolvedEntity:
    kind: EntityKind
    raw_value: str
    normalized_value: str
    chain: Optional[str] = None

    @property
    def cache_key(self) -> str:
        return f"{self.kind.value}:{self.normalized_value}"

    @property
    def is_contract(self) -> bool:
        return self.kind == EntityKind.CONTRACT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "raw_value": self.raw_value,
            "normalized_value": self.normalized_value,
            "chain": self.chain,
        }


@dataclass
class Mention:
    type: str
    value: str
    count: int = 1
    first_seen_index: int = 0
    chain: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d["chain"] is None:
            del d["chain"]
        return d


# =============================================
# PROVIDER RESULTS & RECONCILIATION
# =============================================

@dataclass(frozen=True)
class ProviderResult:
    """
    One adapter call's worth of evidence. Fields are exposed read-only;
    results are merged downstream, never edited.
    """
    source_id: SourceId
    fields: Mapping[str, Any]
    confidence: Confidence = Confidence.MEDIUM
    citations: Tuple[str, ...] = ()
    fetched_at: float = field(default_factory=time.time)

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        object.__setattr__(self, "citations", tuple(self.citations))


@dataclass
class SourceAttribution:
    field: str
    value: Any
    source_id: str
    confidence: Confidence

    @property
    def evidence_id(self) -> str:
        return f"{self.source_id}:{self.field}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "source_id": self.source_id,
            "confidence": self.confidence.value,
            "evidence_id": self.evidence_id,
        }


@dataclass
class SourceConflict:
    field: str
    candidates: List[Dict[str, Any]]
    resolution: str  # winning source id

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "candidates": self.candidates, "resolution": self.resolution}


@dataclass
class ReconciledEntityRecord:
    entity: ResolvedEntity
    values: Dict[str, Any] = field(default_factory=dict)
    attributions: Dict[str, SourceAttribution] = field(default_factory=dict)
    conflicts: List[SourceConflict] = field(default_factory=list)
    sources_used: List[str] = field(default_factory=list)
    sources_failed: Dict[str, str] = field(default_factory=dict)
    citations: List[str] = field(default_factory=list)

    def get(self, name: str, default: Any = None) -> Any:
        value = self.values.get(name)
        return default if value is None else value

    def evidence_id_for(self, name: str) -> Optional[str]:
        attribution = self.attributions.get(name)
        return attribution.evidence_id if attribution else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "values": self.values,
            "attributions": [a.to_dict() for a in self.attributions.values()],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "sources_used": self.sources_used,
            "sources_failed": self.sources_failed,
            "citations": self.citations,
        }


# =============================================
# EVIDENCE GROUPS
# =============================================

def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _int(value: Any, default: int = 0) -> int:
    return int(_float(value, default))


def _strings(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None]


@dataclass
class Evidence:
    id: str
    excerpt: str
    label: str = ""
    url: Optional[str] = None
    source_id: Optional[str] = None
    timestamp: Optional[str] = None
    confidence: Confidence = Confidence.MEDIUM

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Evidence":
        return cls(
            id=str(data.get("id", "")),
            excerpt=str(data.get("excerpt") or data.get("text") or ""),
            label=str(data.get("label") or ""),
            url=data.get("url"),
            source_id=data.get("source_id"),
            timestamp=data.get("timestamp"),
            confidence=Confidence(data.get("confidence") or "medium"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["confidence"] = self.confidence.value
        return d


@dataclass
class ShilledEntity:
    id: str
    name: str
    ticker: Optional[str] = None
    mention_count: int = 0
    promo_count: int = 0
    promo_intensity: float = 0.0  # 0-100
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    evidence_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShilledEntity":
        return cls(
            id=str(data.get("id") or data.get("name") or ""),
            name=str(data.get("name") or data.get("ticker") or ""),
            ticker=data.get("ticker"),
            mention_count=_int(data.get("mention_count")),
            promo_count=_int(data.get("promo_count")),
            promo_intensity=_float(data.get("promo_intensity")),
            first_seen=data.get("first_seen"),
            last_seen=data.get("last_seen"),
            evidence_ids=_strings(data.get("evidence_ids")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BacklashEvent:
    id: str
    category: str
    severity: Severity = Severity.LOW
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    sources: List[str] = field(default_factory=list)  # accusing handles
    summary: str = ""
    evidence_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BacklashEvent":
        severity = str(data.get("severity") or "low").lower()
        if severity not in Severity._value2member_map_:
            severity = "low"
        return cls(
            id=str(data.get("id") or ""),
            category=str(data.get("category") or "other"),
            severity=Severity(severity),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            sources=_strings(data.get("sources")),
            summary=str(data.get("summary") or ""),
            evidence_ids=_strings(data.get("evidence_ids")),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["severity"] = self.severity.value
        return d


@dataclass
class BehaviorMetrics:
    """
    Sub-scores are 0-100. Defaults are the neutral profile: nothing toxic,
    nothing hyped, fully consistent, no bursts.
    """
    toxicity: float = 0.0
    vulgarity: float = 0.0
    hype: float = 0.0
    hype_keywords: List[str] = field(default_factory=list)
    aggression: float = 0.0
    aggression_targets: List[str] = field(default_factory=list)
    consistency: float = 100.0
    topic_drift: float = 0.0
    contradictions: List[str] = field(default_factory=list)
    burst_periods: int = 0
    evidence_ids: Dict[str, List[str]] = field(default_factory=dict)  # keyed by metric name

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BehaviorMetrics":
        if not data:
            return cls()
        evidence = data.get("evidence_ids") or {}
        return cls(
            toxicity=_float(data.get("toxicity")),
            vulgarity=_float(data.get("vulgarity")),
            hype=_float(data.get("hype")),
            hype_keywords=_strings(data.get("hype_keywords")),
            aggression=_float(data.get("aggression")),
            aggression_targets=_strings(data.get("aggression_targets")),
            consistency=_float(data.get("consistency"), 100.0),
            topic_drift=_float(data.get("topic_drift")),
            contradictions=_strings(data.get("contradictions")),
            burst_periods=_int(data.get("burst_periods")),
            evidence_ids={k: _strings(v) for k, v in evidence.items()} if isinstance(evidence, dict) else {},
        )

    def evidence_for(self, *metrics: str) -> List[str]:
        ids: List[str] = []
        for metric in metrics:
            for eid in self.evidence_ids.get(metric, []):
                if eid not in ids:
                    ids.append(eid)
        return ids

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NetworkMetrics:
    top_interactions: List[Dict[str, Any]] = field(default_factory=list)
    mention_list: List[str] = field(default_factory=list)
    reply_ratio: float = 0.0
    retweet_ratio: float = 0.0
    avg_engagement_rate: float = 0.0
    suspicious_patterns: List[str] = field(default_factory=list)
    evidence_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NetworkMetrics":
        if not data:
            return cls()
        return cls(
            top_interactions=list(data.get("top_interactions") or []),
            mention_list=_strings(data.get("mention_list")),
            reply_ratio=_float(data.get("reply_ratio")),
            retweet_ratio=_float(data.get("retweet_ratio")),
            avg_engagement_rate=_float(data.get("avg_engagement_rate")),
            suspicious_patterns=_strings(data.get("suspicious_patterns")),
            evidence_ids=_strings(data.get("evidence_ids")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================
# SCORE
# =============================================

@dataclass
class ScoreFactor:
    type: FactorType
    points: int
    max_points: int
    description: str = ""
    evidence_ids: List[str] = field(default_factory=list)

    @property
    def severity_ratio(self) -> float:
        return self.points / self.max_points if self.max_points else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "points": self.points,
            "max_points": self.max_points,
            "description": self.description,
            "evidence_ids": self.evidence_ids,
        }


@dataclass
class ReputationScore:
    overall: int
    risk_level: RiskLevel
    confidence: Confidence
    factors: List[ScoreFactor] = field(default_factory=list)
    degraded: bool = False

    @property
    def total_points(self) -> int:
        return sum(f.points for f in self.factors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "risk_level": self.risk_level.value,
            "confidence": self.confidence.value,
            "degraded": self.degraded,
            "factors": [f.to_dict() for f in self.factors],
        }
