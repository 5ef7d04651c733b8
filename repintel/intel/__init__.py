"""Reputation Intel — pure analysis core (no I/O)."""
from repintel.intel.extractor import extract, classify_address, to_linked_entities
from repintel.intel.reconcile import reconcile, ReconciliationPolicy
from repintel.intel.resolver import resolve_target
from repintel.intel.scoring import score, ScoringConfig

__all__ = [
    "extract",
    "classify_address",
    "to_linked_entities",
    "reconcile",
    "ReconciliationPolicy",
    "resolve_target",
    "score",
    "ScoringConfig",
]
