"""
Reputation Intel — Explainable Scoring Engine

Seven independent factor calculators each deduct points from a clean 100:

    serial_shill           max 25   promoting many tokens, coordinated bursts
    backlash_density       max 25   severity-weighted, corroborated callouts
    toxic_vulgar           max 15   aggression > toxicity > vulgarity
    hype_merchant          max 15   hype rate, non-linear above 60
    consistency            max 10   topic drift and contradictions
    engagement_suspicion   max 10   bot-like ratios and automation patterns
    onchain_risk           max 10   live authorities, holder concentration, LP

    overall    = clamp(100 − Σ points, 0, 100)
    risk_level = low ≥ 75 > medium ≥ 45 > high
    confidence = evidence volume vs. CONFIDENCE_LOW_SAMPLE / CONFIDENCE_HIGH_SAMPLE,
                 one step lower when any source failed

Calculators are pure. Given zeroed input they return 0 points.
Every factor with points > 0 carries at least one evidence id: item ids
where the evidence group has them, else the "{source}:{field}" id of the
reconciled fact it was computed from.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from repintel.intel.behavior import HYPE_KEYWORDS
from repintel.intel.models import (
    BacklashEvent, BehaviorMetrics, Confidence, FactorType, NetworkMetrics,
    ReconciledEntityRecord, ReputationScore, RiskLevel, ScoreFactor,
    Severity, ShilledEntity, lower_confidence,
)

logger = structlog.get_logger()


MAX_POINTS = {
    FactorType.SERIAL_SHILL: 25,
    FactorType.BACKLASH_DENSITY: 25,
    FactorType.TOXIC_VULGAR: 15,
    FactorType.HYPE_MERCHANT: 15,
    FactorType.CONSISTENCY: 10,
    FactorType.ENGAGEMENT_SUSPICION: 10,
    FactorType.ONCHAIN_RISK: 10,
}

LOW_RISK_MIN = 75
MEDIUM_RISK_MIN = 45

SEVERITY_WEIGHT = {
    Severity.CRITICAL: 6,
    Severity.HIGH: 4,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

HYPE_THRESHOLD = 60
HIGH_PROMO_INTENSITY = 70
NEW_ACCOUNT_DAYS = 90
HIGH_VOLUME_POSTS = 500
TOP_HOLDER_LIMIT = 50.0
LP_LOCKED_MIN = 50.0


@dataclass
class ScoringConfig:
    low_sample: int = 100
    high_sample: int = 500

    @classmethod
    def from_settings(cls, settings) -> "ScoringConfig":
        return cls(
            low_sample=settings.CONFIDENCE_LOW_SAMPLE,
            high_sample=settings.CONFIDENCE_HIGH_SAMPLE,
        )


@dataclass
class ScoreInput:
    shilled_entities: List[ShilledEntity] = field(default_factory=list)
    backlash_events: List[BacklashEvent] = field(default_factory=list)
    behavior: BehaviorMetrics = field(default_factory=BehaviorMetrics)
    network: NetworkMetrics = field(default_factory=NetworkMetrics)
    posts_analyzed: int = 0
    account_age_days: Optional[int] = None
    onchain: Dict[str, Any] = field(default_factory=dict)
    # field name → "{source}:{field}" id of the reconciled fact
    fact_ids: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ReconciledEntityRecord) -> "ScoreInput":
        onchain_fields = (
            "mint_authority_enabled", "freeze_authority_enabled",
            "top_holder_pct", "lp_locked_pct", "security_risks",
        )
        age = record.get("account_age_days")
        return cls(
            shilled_entities=[ShilledEntity.from_dict(e) for e in record.get("shilled_entities", []) if isinstance(e, dict)],
            backlash_events=[BacklashEvent.from_dict(e) for e in record.get("backlash_events", []) if isinstance(e, dict)],
            behavior=BehaviorMetrics.from_dict(record.get("behavior_metrics")),
            network=NetworkMetrics.from_dict(record.get("network_metrics")),
            posts_analyzed=_to_int(record.get("posts_analyzed", 0)),
            account_age_days=_to_int(age) if age is not None else None,
            onchain={k: record.values[k] for k in onchain_fields if record.values.get(k) is not None},
            fact_ids={name: a.evidence_id for name, a in record.attributions.items()},
        )

    def fact(self, *names: str) -> List[str]:
        return [self.fact_ids[n] for n in names if n in self.fact_ids]


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _cap(factor_type: FactorType, points: float) -> int:
    return max(0, min(MAX_POINTS[factor_type], int(round(points))))


def _unique(ids: List[str]) -> List[str]:
    seen: List[str] = []
    for eid in ids:
        if eid and eid not in seen:
            seen.append(eid)
    return seen


def _factor(factor_type: FactorType, points: float, description: str,
            evidence: List[str], fallback: List[str]) -> ScoreFactor:
    capped = _cap(factor_type, points)
    evidence_ids = _unique(evidence)
    if capped > 0 and not evidence_ids:
        evidence_ids = _unique(fallback)
    return ScoreFactor(
        type=factor_type,
        points=capped,
        max_points=MAX_POINTS[factor_type],
        description=description,
        evidence_ids=evidence_ids,
    )


# =============================================
# FACTOR CALCULATORS
# =============================================

def shill_factor(data: ScoreInput) -> ScoreFactor:
    entities = data.shilled_entities
    unique_tokens = len(entities)
    points = 0

    if unique_tokens >= 20:
        points += 12
    elif unique_tokens >= 10:
        points += 8
    elif unique_tokens >= 5:
        points += 4

    intense = [e for e in entities if e.promo_intensity > HIGH_PROMO_INTENSITY]
    if len(intense) >= 5:
        points += 8
    elif len(intense) >= 3:
        points += 5
    elif len(intense) >= 1:
        points += 2

    # coordinated promotion: only repeated bursts count
    bursts = data.behavior.burst_periods
    if bursts >= 2:
        points += min(5, bursts * 2)

    evidence = [eid for e in entities[:5] for eid in e.evidence_ids[:2]]
    if bursts >= 2:
        evidence += data.behavior.evidence_for("spam_burst")

    if points > 15:
        description = f"Promotes {unique_tokens} tokens with aggressive patterns"
    elif points > 5:
        description = f"Moderate promotional activity across {unique_tokens} tokens"
    else:
        description = "Minimal promotional patterns detected"

    return _factor(FactorType.SERIAL_SHILL, points, description, evidence,
                   data.fact("shilled_entities", "behavior_metrics"))


def corroboration_factor(distinct_sources: int) -> float:
    if distinct_sources >= 3:
        return 1.5
    if distinct_sources == 2:
        return 1.25
    return 1.0


def backlash_factor(data: ScoreInput) -> ScoreFactor:
    events = data.backlash_events
    raw = 0.0
    for event in events:
        accusers = {s.strip().lstrip("@").lower() for s in event.sources if s.strip()}
        raw += SEVERITY_WEIGHT[event.severity] * corroboration_factor(len(accusers))

    critical = sum(1 for e in events if e.severity == Severity.CRITICAL)
    evidence = [eid for e in events[:5] for eid in e.evidence_ids[:2]]

    if raw > 15:
        description = f"{len(events)} backlash events including {critical} critical"
    elif raw > 5:
        description = f"{len(events)} backlash events detected"
    else:
        description = "Minimal public backlash"

    return _factor(FactorType.BACKLASH_DENSITY, raw, description, evidence,
                   data.fact("backlash_events"))


def toxicity_factor(data: ScoreInput) -> ScoreFactor:
    b = data.behavior
    combined = b.toxicity * 0.3 + b.vulgarity * 0.2 + b.aggression * 0.5
    points = combined / 100 * MAX_POINTS[FactorType.TOXIC_VULGAR]

    if points > 10:
        description = "High toxicity and aggressive language patterns"
    elif points > 5:
        description = "Moderate profanity or confrontational tone"
    else:
        description = "Generally civil discourse"

    return _factor(FactorType.TOXIC_VULGAR, points, description,
                   b.evidence_for("aggression", "toxicity", "vulgarity"),
                   data.fact("behavior_metrics"))


def hype_factor(data: ScoreInput) -> ScoreFactor:
    b = data.behavior
    points = b.hype / 100 * 10
    if b.hype > HYPE_THRESHOLD:
        points += 3 * ((b.hype - HYPE_THRESHOLD) / (100 - HYPE_THRESHOLD)) ** 2

    known = [k for k in b.hype_keywords if k.lower() in HYPE_KEYWORDS]
    points += min(2.0, 0.5 * len(known))

    capped = _cap(FactorType.HYPE_MERCHANT, points)
    if capped > 10:
        description = "Heavy hype language: " + ", ".join(b.hype_keywords[:5])
    elif capped > 5:
        description = "Moderate hype patterns detected"
    else:
        description = "Measured promotional language"

    return _factor(FactorType.HYPE_MERCHANT, points, description,
                   b.evidence_for("hype"), data.fact("behavior_metrics"))


def consistency_factor(data: ScoreInput) -> ScoreFactor:
    b = data.behavior
    inconsistency = max(b.topic_drift, 100 - b.consistency)
    points = 0.0 if inconsistency < 25 else inconsistency / 100 * 6
    points = round(points) + min(4, len(b.contradictions))

    if points > 7:
        description = f"High topic drift ({b.topic_drift:.0f}%) with {len(b.contradictions)} contradictions"
    elif points > 3:
        description = "Some inconsistency detected"
    else:
        description = "Generally consistent messaging"

    return _factor(FactorType.CONSISTENCY, points, description,
                   b.evidence_for("consistency"), data.fact("behavior_metrics"))


def engagement_factor(data: ScoreInput) -> ScoreFactor:
    n = data.network
    points = 2 * len(n.suspicious_patterns)
    if n.reply_ratio > 0.8:
        points += 2
    if n.retweet_ratio > 0.7:
        points += 2
    if (
        data.account_age_days is not None
        and 0 < data.account_age_days < NEW_ACCOUNT_DAYS
        and data.posts_analyzed > HIGH_VOLUME_POSTS
    ):
        points += 3

    if points > 7:
        description = "Multiple suspicious engagement patterns"
    elif points > 3:
        description = "Some unusual engagement behavior"
    else:
        description = "Normal engagement patterns"

    return _factor(FactorType.ENGAGEMENT_SUSPICION, points, description,
                   n.evidence_ids, data.fact("network_metrics", "account_age_days", "posts_analyzed"))


def onchain_factor(data: ScoreInput) -> ScoreFactor:
    chain = data.onchain
    points = 0
    flags: List[str] = []
    evidence: List[str] = []

    if chain.get("mint_authority_enabled") is True:
        points += 3
        flags.append("mint authority live")
        evidence += data.fact("mint_authority_enabled")
    if chain.get("freeze_authority_enabled") is True:
        points += 3
        flags.append("freeze authority live")
        evidence += data.fact("freeze_authority_enabled")

    top_holder = chain.get("top_holder_pct")
    if isinstance(top_holder, (int, float)) and top_holder > TOP_HOLDER_LIMIT:
        points += 2
        flags.append(f"top holder owns {top_holder:.0f}%")
        evidence += data.fact("top_holder_pct")

    lp_locked = chain.get("lp_locked_pct")
    if isinstance(lp_locked, (int, float)) and lp_locked < LP_LOCKED_MIN:
        points += 2
        flags.append(f"only {lp_locked:.0f}% of LP locked")
        evidence += data.fact("lp_locked_pct")

    dangers = [
        r for r in chain.get("security_risks") or []
        if isinstance(r, dict) and str(r.get("level", "")).lower() == "danger"
    ]
    if dangers:
        points += len(dangers)
        flags.append(f"{len(dangers)} danger-level contract risks")
        evidence += data.fact("security_risks")

    description = "Token risks: " + "; ".join(flags) if flags else "No on-chain red flags"
    return _factor(FactorType.ONCHAIN_RISK, points, description, evidence, [])


CALCULATORS = (
    shill_factor,
    backlash_factor,
    toxicity_factor,
    hype_factor,
    consistency_factor,
    engagement_factor,
    onchain_factor,
)


# =============================================
# AGGREGATE
# =============================================

def risk_level_for(overall: int) -> RiskLevel:
    if overall >= LOW_RISK_MIN:
        return RiskLevel.LOW
    if overall >= MEDIUM_RISK_MIN:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def confidence_for(evidence_volume: int, config: ScoringConfig) -> Confidence:
    if evidence_volume >= config.high_sample:
        return Confidence.HIGH
    if evidence_volume < config.low_sample:
        return Confidence.LOW
    return Confidence.MEDIUM


def score_input(data: ScoreInput, config: Optional[ScoringConfig] = None,
                evidence_volume: Optional[int] = None, degraded_sources: int = 0) -> ReputationScore:
    config = config or ScoringConfig()
    factors = [calc(data) for calc in CALCULATORS]
    deducted = sum(f.points for f in factors)
    overall = max(0, min(100, 100 - deducted))

    volume = data.posts_analyzed if evidence_volume is None else evidence_volume
    confidence = confidence_for(volume, config)
    if degraded_sources:
        confidence = lower_confidence(confidence)

    return ReputationScore(
        overall=overall,
        risk_level=risk_level_for(overall),
        confidence=confidence,
        factors=factors,
        degraded=bool(degraded_sources) or volume < config.low_sample,
    )


def score(record: ReconciledEntityRecord, config: Optional[ScoringConfig] = None) -> ReputationScore:
    """Score a reconciled record. Always computable, even from an empty record."""
    data = ScoreInput.from_record(record)
    result = score_input(
        data,
        config=config,
        evidence_volume=data.posts_analyzed + len(record.citations),
        degraded_sources=len(record.sources_failed),
    )
    if result.degraded:
        logger.info(
            "scoring_degraded",
            entity=record.entity.cache_key,
            confidence=result.confidence.value,
            sources_failed=sorted(record.sources_failed),
        )
    return result


# =============================================
# SUMMARIES
# =============================================

def top_risk_factors(factors: List[ScoreFactor], min_ratio: float = 0.5) -> List[ScoreFactor]:
    """Factors at or above `min_ratio` of their maximum, worst first."""
    hits = [f for f in factors if f.points > 0 and f.severity_ratio >= min_ratio]
    return sorted(hits, key=lambda f: -f.severity_ratio)


def factor_summary(factors: List[ScoreFactor], limit: int = 3) -> List[str]:
    ranked = sorted((f for f in factors if f.points > 0), key=lambda f: -f.points)
    return [f"{f.type.value}: -{f.points}/{f.max_points} ({f.description})" for f in ranked[:limit]]
