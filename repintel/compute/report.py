"""
Reputation Intel — Report builder.

Turns a reconciled record + score into the payload callers poll for.
Every finding points at evidence ids that resolve inside `evidence`:

    post:{id} / ev:{n}      excerpts the social source quoted
    cite:{n}                web citations
    {source}:{field}        reconciled facts (one per attributed field)
    gap:{source}            sources that returned nothing

Excerpts pass through the content filter before they are stored; a
rejected excerpt is withheld but its id stays resolvable.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from repintel.intel.content_filter import contains_prohibited_content
from repintel.intel.extractor import ExtractionResult, to_linked_entities
from repintel.intel.models import (
    BacklashEvent, ReconciledEntityRecord, ReputationScore, ResolvedEntity,
    ShilledEntity, SourceId,
)
from repintel.intel.reconcile import UNVERIFIED_PREFIX
from repintel.intel.resolver import normalize_domain
from repintel.intel.scoring import top_risk_factors

DISCLAIMER = (
    "This report is an automated analysis of public information from third-party sources. "
    "It may be incomplete or inaccurate and is not financial advice. Always do your own research."
)

SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}

PROFILE_FIELDS = (
    "handle", "display_name", "bio", "verified", "followers", "following",
    "account_age_days", "project_name", "description", "website", "github",
    "contract_address", "chain", "token_symbol", "token_name", "price_usd",
    "market_cap", "liquidity_usd", "volume_24h", "founding_date",
    "legal_entity", "audit_status", "team_size", "story",
)
FILTERED_PROFILE_FIELDS = ("bio", "description", "story", "display_name")


def _withheld(reason: str) -> str:
    return f"[withheld: {reason}]"


def _safe(text: Optional[str]) -> Optional[str]:
    if not text:
        return text
    reason = contains_prohibited_content(text)
    return _withheld(reason) if reason else text


def _fact_excerpt(field_name: str, value: Any) -> str:
    if isinstance(value, list):
        return f"{field_name}: {len(value)} items"
    if isinstance(value, dict):
        return f"{field_name}: {len(value)} attributes"
    text = str(value)
    return f"{field_name}: {text[:200]}"


# =============================================
# SECTIONS
# =============================================

def build_evidence(record: ReconciledEntityRecord) -> List[Dict[str, Any]]:
    evidence: List[Dict[str, Any]] = []
    seen = set()

    def add(entry: Dict[str, Any]):
        if entry["id"] in seen:
            return
        seen.add(entry["id"])
        reason = contains_prohibited_content(entry.get("excerpt"))
        if reason:
            entry = dict(entry, excerpt=_withheld(reason), withheld=True)
        evidence.append(entry)

    for item in record.get("evidence", []):
        if isinstance(item, dict) and item.get("id"):
            add({
                "id": str(item["id"]),
                "excerpt": str(item.get("excerpt") or ""),
                "label": item.get("label") or "",
                "url": item.get("url"),
                "timestamp": item.get("timestamp"),
                "source_id": item.get("source_id") or SourceId.AI_SOCIAL.value,
            })

    for i, url in enumerate(record.citations):
        add({"id": f"cite:{i}", "excerpt": url, "label": "citation", "url": url,
             "source_id": SourceId.WEB_RESEARCH.value})

    for name, attribution in record.attributions.items():
        if name == "evidence":
            continue
        add({
            "id": attribution.evidence_id,
            "excerpt": _fact_excerpt(name, attribution.value),
            "label": "fact",
            "source_id": attribution.source_id,
            "confidence": attribution.confidence.value,
        })

    # losing candidates of a conflict are still citable
    for conflict in record.conflicts:
        for candidate in conflict.candidates:
            add({
                "id": f"{candidate['source_id']}:{conflict.field}",
                "excerpt": _fact_excerpt(conflict.field, candidate["value"]),
                "label": "conflicting_fact",
                "source_id": candidate["source_id"],
            })

    for source, reason in record.sources_failed.items():
        add({"id": f"gap:{source}", "excerpt": reason, "label": "source_gap", "source_id": source})

    return evidence


def build_key_findings(record: ReconciledEntityRecord, score: ReputationScore) -> List[Dict[str, Any]]:
    findings: List[Dict[str, Any]] = []

    for factor in top_risk_factors(score.factors):
        findings.append({
            "id": f"factor:{factor.type.value}",
            "severity": "critical" if factor.severity_ratio >= 0.8 else "warning",
            "title": factor.type.value.replace("_", " ").title(),
            "detail": f"{factor.description} (-{factor.points}/{factor.max_points})",
            "evidence_ids": list(factor.evidence_ids),
        })

    for conflict in record.conflicts:
        values = ", ".join(f"{c['source_id']}={c['value']}" for c in conflict.candidates)
        findings.append({
            "id": f"conflict:{conflict.field}",
            "severity": "warning",
            "title": f"Sources disagree on {conflict.field}",
            "detail": f"{values}; using {conflict.resolution}",
            "evidence_ids": [f"{c['source_id']}:{conflict.field}" for c in conflict.candidates],
        })

    for i, text in enumerate(record.get("controversies", [])):
        findings.append({
            "id": f"controversy:{i}",
            "severity": "warning",
            "title": "Controversy",
            "detail": _safe(str(text)),
            "evidence_ids": [record.evidence_id_for("controversies")],
        })

    for i, text in enumerate(record.get("key_findings", [])):
        findings.append({
            "id": f"finding:{i}",
            "severity": "info",
            "title": "Unverified finding" if str(text).startswith(UNVERIFIED_PREFIX) else "Finding",
            "detail": _safe(str(text)),
            "evidence_ids": [record.evidence_id_for("key_findings")],
        })

    for source, reason in record.sources_failed.items():
        findings.append({
            "id": f"gap:{source}",
            "severity": "info",
            "title": f"No data from {source}",
            "detail": f"This report was built without {source} ({reason}).",
            "evidence_ids": [f"gap:{source}"],
        })

    return sorted(findings, key=lambda f: SEVERITY_ORDER[f["severity"]])


def build_linked_entities(record: ReconciledEntityRecord, extraction: ExtractionResult) -> Dict[str, List[Dict]]:
    linked = to_linked_entities(extraction)

    def add(kind: str, value: Optional[str], **extra):
        if not value:
            return
        group = linked.setdefault(kind, [])
        if any(e["value"] == value for e in group):
            return
        group.insert(0, dict({"value": value, "mentions": 0, "confidence": "high", "source": "reconciled"}, **extra))

    website = record.get("website")
    if isinstance(website, str):
        add("domain", normalize_domain(website))
    github = record.get("github")
    if isinstance(github, str):
        add("github", github.lower().split("github.com/")[-1].strip("/"))
    contract = record.get("contract_address")
    if isinstance(contract, str):
        add("wallet", contract, chain=record.get("chain"))
    return linked


def _chronological(events: List[BacklashEvent]) -> List[BacklashEvent]:
    return sorted(events, key=lambda e: (e.start_date is None, e.start_date or ""))


def build_report(
    entity: ResolvedEntity,
    record: ReconciledEntityRecord,
    score: ReputationScore,
    extraction: ExtractionResult,
    scan_time: Optional[datetime] = None,
) -> Dict[str, Any]:
    profile: Dict[str, Any] = {"entity": entity.to_dict()}
    for name in PROFILE_FIELDS:
        value = record.get(name)
        if value is not None:
            profile[name] = _safe(value) if name in FILTERED_PROFILE_FIELDS else value
    profile["sources_used"] = list(record.sources_used)

    shilled = sorted(
        (ShilledEntity.from_dict(e) for e in record.get("shilled_entities", []) if isinstance(e, dict)),
        key=lambda e: -e.promo_intensity,
    )
    backlash = _chronological([
        BacklashEvent.from_dict(e) for e in record.get("backlash_events", []) if isinstance(e, dict)
    ])

    return {
        "entity": entity.to_dict(),
        "profile": profile,
        "score": score.to_dict(),
        "key_findings": build_key_findings(record, score),
        "shilled_entities": [e.to_dict() for e in shilled],
        "backlash_events": [e.to_dict() for e in backlash],
        "behavior_metrics": record.get("behavior_metrics"),
        "network_metrics": record.get("network_metrics"),
        "linked_entities": build_linked_entities(record, extraction),
        "evidence": build_evidence(record),
        "source_attribution": [a.to_dict() for a in record.attributions.values()],
        "conflicts": [c.to_dict() for c in record.conflicts],
        "sources_used": list(record.sources_used),
        "sources_failed": dict(record.sources_failed),
        "posts_analyzed": int(record.get("posts_analyzed", 0) or 0),
        "scan_time": (scan_time or datetime.now(timezone.utc)).isoformat(),
        "cached": False,
        "disclaimer": DISCLAIMER,
    }
