"""
Reputation Intel — Cross-Reference Reconciler

Merges the per-source ProviderResults into one ReconciledEntityRecord.

Priority (default, configurable via SOURCE_PRIORITY):

    onchain_security > market_data > web_research > ai_social

Behavioral fields only the social source really observes (posts, metrics,
shill lists) rank ai_social first instead.

Per field:
    1 source reports it        → accept, that source's confidence
    N sources, all agree       → top-priority value, max confidence
    N sources, any diverge     → top-priority value + one SourceConflict

Agreement: numbers within NUMERIC_TOLERANCE relative difference, strings
equal after normalization (case, whitespace, protocol, www, trailing slash),
everything else by equality. List fields in `union_fields` are merged and
de-duplicated instead, and never conflict.
"""
import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from repintel.intel.models import (
    Confidence, ProviderResult, ReconciledEntityRecord, ResolvedEntity,
    SourceAttribution, SourceConflict, SourceId, max_confidence,
)

logger = structlog.get_logger()

DEFAULT_SOURCE_PRIORITY = [
    SourceId.ONCHAIN_SECURITY.value,
    SourceId.MARKET_DATA.value,
    SourceId.WEB_RESEARCH.value,
    SourceId.AI_SOCIAL.value,
]

_SOCIAL_FIRST = [SourceId.AI_SOCIAL.value, SourceId.WEB_RESEARCH.value]

BEHAVIORAL_FIELDS = (
    "display_name", "bio", "followers", "following", "account_age_days",
    "posts_analyzed", "posts", "shilled_entities", "backlash_events",
    "behavior_metrics", "network_metrics", "verified",
)

UNION_FIELDS = frozenset({"key_findings", "controversies", "evidence"})

UNVERIFIED_PREFIX = "[Unverified] "
_CORROBORATION_CHARS = 30


@dataclass
class ReconciliationPolicy:
    source_priority: List[str] = field(default_factory=lambda: list(DEFAULT_SOURCE_PRIORITY))
    field_priority: Dict[str, List[str]] = field(
        default_factory=lambda: {name: list(_SOCIAL_FIRST) for name in BEHAVIORAL_FIELDS}
    )
    numeric_tolerance: float = 0.05
    union_fields: frozenset = UNION_FIELDS

    @classmethod
    def from_settings(cls, settings) -> "ReconciliationPolicy":
        return cls(
            source_priority=list(settings.SOURCE_PRIORITY),
            numeric_tolerance=settings.NUMERIC_TOLERANCE,
        )

    def rank_for(self, field_name: str) -> List[str]:
        """Full source order for a field: override first, then global order."""
        order = list(self.field_priority.get(field_name, []))
        for source in self.source_priority:
            if source not in order:
                order.append(source)
        return order

    def sort_results(self, field_name: str, results: Iterable[ProviderResult]) -> List[ProviderResult]:
        order = self.rank_for(field_name)
        return sorted(
            results,
            key=lambda r: (order.index(_sid(r)) if _sid(r) in order else len(order), _sid(r)),
        )


def _sid(result: ProviderResult) -> str:
    return result.source_id.value if isinstance(result.source_id, SourceId) else str(result.source_id)


# =============================================
# VALUE COMPARISON
# =============================================

_PROTOCOL_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")


def normalize_text(value: str) -> str:
    clean = value.strip().lower()
    clean = _PROTOCOL_RE.sub("", clean)
    if clean.startswith("www."):
        clean = clean[4:]
    return clean.rstrip("/")


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _coerce_number(value: Any) -> Optional[float]:
    number = _as_number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", ""))
        except ValueError:
            return None
    return None


def within_tolerance(a: float, b: float, tolerance: float) -> bool:
    if a == b:
        return True
    scale = max(abs(a), abs(b))
    return abs(a - b) / scale <= tolerance


def values_agree(a: Any, b: Any, tolerance: float = 0.05) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b or (isinstance(a, bool) and isinstance(b, bool) and a == b)

    num_a, num_b = _as_number(a), _as_number(b)
    if num_a is not None or num_b is not None:
        # Allow "0.0012" against 0.0012; anything non-numeric disagrees.
        num_a = num_a if num_a is not None else _coerce_number(a)
        num_b = num_b if num_b is not None else _coerce_number(b)
        if num_a is None or num_b is None:
            return False
        return within_tolerance(num_a, num_b, tolerance)

    if isinstance(a, str) and isinstance(b, str):
        return normalize_text(a) == normalize_text(b)

    return a == b


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# =============================================
# RECONCILE
# =============================================

def reconcile(
    entity: ResolvedEntity,
    results: Sequence[ProviderResult],
    failures: Optional[Dict[str, str]] = None,
    policy: Optional[ReconciliationPolicy] = None,
) -> ReconciledEntityRecord:
    """
    Build a fresh record from every successful result. `failures` maps
    source id → reason for the sources that returned nothing.
    """
    policy = policy or ReconciliationPolicy()
    record = ReconciledEntityRecord(entity=entity, sources_failed=dict(failures or {}))

    seen_sources = set()
    unique: List[ProviderResult] = []
    for result in policy.sort_results("", results):
        if _sid(result) in seen_sources:
            logger.warning("duplicate_source_result", source=_sid(result))
            continue
        seen_sources.add(_sid(result))
        unique.append(result)
    record.sources_used = [_sid(r) for r in unique]

    field_names: List[str] = []
    for result in unique:
        for name in result.fields:
            if name not in field_names:
                field_names.append(name)

    for name in field_names:
        ranked = policy.sort_results(name, unique)
        if name in policy.union_fields:
            _merge_union(record, name, ranked)
        else:
            _merge_scalar(record, name, ranked, policy.numeric_tolerance)

    for result in unique:
        for citation in result.citations:
            if citation and citation not in record.citations:
                record.citations.append(citation)

    if record.conflicts:
        logger.info(
            "reconciliation_conflicts",
            entity=entity.cache_key,
            fields=[c.field for c in record.conflicts],
        )
    return record


def _merge_scalar(
    record: ReconciledEntityRecord,
    name: str,
    ranked: List[ProviderResult],
    tolerance: float,
):
    candidates: List[Tuple[str, Any, Confidence]] = [
        (_sid(r), r.fields.get(name), r.confidence)
        for r in ranked
        if not _is_missing(r.fields.get(name))
    ]
    if not candidates:
        return

    winner_source, winner_value, _ = candidates[0]
    agreeing = [c for c in candidates if values_agree(winner_value, c[1], tolerance)]

    record.values[name] = copy.deepcopy(winner_value)
    record.attributions[name] = SourceAttribution(
        field=name,
        value=record.values[name],
        source_id=winner_source,
        confidence=max_confidence(*(c[2] for c in agreeing)),
    )

    if len(agreeing) < len(candidates):
        record.conflicts.append(SourceConflict(
            field=name,
            candidates=[{"source_id": s, "value": copy.deepcopy(v)} for s, v, _ in candidates],
            resolution=winner_source,
        ))


def _item_key(item: Any) -> str:
    if isinstance(item, dict):
        if item.get("id"):
            return f"id:{item['id']}"
        return normalize_text(str(item.get("excerpt") or item.get("text") or sorted(item.items())))
    return normalize_text(str(item))


def _merge_union(record: ReconciledEntityRecord, name: str, ranked: List[ProviderResult]):
    merged: List[Any] = []
    keys = set()
    corroborating: List[str] = []  # normalized prose from non-social sources
    contributors: List[ProviderResult] = []

    for result in ranked:
        items = result.fields.get(name)
        if _is_missing(items):
            continue
        if not isinstance(items, (list, tuple)):
            items = [items]
        source = _sid(result)
        added = False
        for item in items:
            if _is_missing(item):
                continue
            key = _item_key(item)
            if key in keys:
                continue
            keys.add(key)
            if isinstance(item, str):
                prefix = key[:_CORROBORATION_CHARS]
                if source == SourceId.AI_SOCIAL.value:
                    if not any(c.startswith(prefix) or prefix.startswith(c[:_CORROBORATION_CHARS])
                               for c in corroborating):
                        item = UNVERIFIED_PREFIX + item
                else:
                    corroborating.append(key)
            merged.append(copy.deepcopy(item))
            added = True
        if added:
            contributors.append(result)

    if not merged:
        return
    record.values[name] = merged
    record.attributions[name] = SourceAttribution(
        field=name,
        value=merged,
        source_id=_sid(contributors[0]),
        confidence=max_confidence(*(r.confidence for r in contributors)),
    )
