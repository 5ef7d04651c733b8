import pytest

from repintel.intel.models import (
    BacklashEvent, BehaviorMetrics, Confidence, FactorType, NetworkMetrics,
    ProviderResult, RiskLevel, Severity, ShilledEntity, SourceId,
)
from repintel.intel.reconcile import reconcile
from repintel.intel.scoring import (
    CALCULATORS, MAX_POINTS, ScoreInput, ScoringConfig, backlash_factor,
    confidence_for, consistency_factor, engagement_factor, onchain_factor,
    risk_level_for, score, score_input, top_risk_factors,
)


def heavy_social_fields():
    return {
        "posts_analyzed": 300,
        "shilled_entities": [
            {"id": f"shill:{i}", "name": f"Token{i}", "ticker": f"TK{i}",
             "promo_intensity": 85, "evidence_ids": [f"post:{i}"]}
            for i in range(20)
        ],
        "backlash_events": [
            {"id": f"backlash:{i}", "category": "rug_pull", "severity": "critical",
             "sources": ["@a", "@b", "@c"], "evidence_ids": [f"post:b{i}"]}
            for i in range(3)
        ],
        "behavior_metrics": {
            "hype": 90, "hype_keywords": ["100x", "moon", "gem", "lambo"],
            "burst_periods": 3,
        },
    }


def test_neutral_input_scores_clean():
    result = score_input(ScoreInput())
    assert result.overall > 90
    assert result.overall == 100
    assert result.risk_level == RiskLevel.LOW
    assert len(result.factors) == 7
    assert all(f.points == 0 for f in result.factors)


def test_every_calculator_is_zero_on_zero_input():
    for calc in CALCULATORS:
        assert calc(ScoreInput()).points == 0


def test_heavy_shill_input_scores_low(ticker_entity):
    record = reconcile(ticker_entity, [ProviderResult(SourceId.AI_SOCIAL, heavy_social_fields())])
    result = score(record)
    assert result.overall < 50
    assert result.risk_level in (RiskLevel.MEDIUM, RiskLevel.HIGH)
    by_type = {f.type: f for f in result.factors}
    assert by_type[FactorType.SERIAL_SHILL].points == 25
    assert by_type[FactorType.BACKLASH_DENSITY].points == 25
    assert by_type[FactorType.HYPE_MERCHANT].points == 13


def test_overall_is_100_minus_points(ticker_entity):
    record = reconcile(ticker_entity, [ProviderResult(SourceId.AI_SOCIAL, heavy_social_fields())])
    result = score(record)
    assert result.overall == 100 - result.total_points
    assert 0 <= result.overall <= 100


def test_overall_clamps_at_zero():
    data = ScoreInput(
        shilled_entities=[ShilledEntity(id=f"s{i}", name="x", promo_intensity=90, evidence_ids=["e"]) for i in range(25)],
        backlash_events=[BacklashEvent(id="b", category="x", severity=Severity.CRITICAL, sources=["a", "b", "c"], evidence_ids=["e"])] * 5,
        behavior=BehaviorMetrics(toxicity=100, vulgarity=100, aggression=100, hype=100,
                                 hype_keywords=["100x", "moon", "gem", "lambo"], consistency=0, topic_drift=100,
                                 contradictions=["a", "b", "c", "d"], burst_periods=5),
        network=NetworkMetrics(suspicious_patterns=["a", "b", "c", "d", "e"], reply_ratio=0.9, retweet_ratio=0.9),
        onchain={"mint_authority_enabled": True, "freeze_authority_enabled": True,
                 "top_holder_pct": 90.0, "lp_locked_pct": 0.0},
    )
    result = score_input(data)
    assert result.total_points == sum(MAX_POINTS.values())
    assert result.overall == 0
    assert result.risk_level == RiskLevel.HIGH


def test_every_deducting_factor_cites_evidence(ticker_entity):
    fields = heavy_social_fields()
    fields["behavior_metrics"].update({"toxicity": 80, "aggression": 90, "topic_drift": 70})
    fields["network_metrics"] = {"suspicious_patterns": ["reply spam"], "reply_ratio": 0.95}
    record = reconcile(ticker_entity, [ProviderResult(SourceId.AI_SOCIAL, fields)])
    result = score(record)
    deducting = [f for f in result.factors if f.points > 0]
    assert len(deducting) >= 5
    for factor in deducting:
        assert factor.evidence_ids, factor.type


@pytest.mark.parametrize("overall,level", [
    (100, RiskLevel.LOW), (80, RiskLevel.LOW), (75, RiskLevel.LOW),
    (74, RiskLevel.MEDIUM), (50, RiskLevel.MEDIUM), (45, RiskLevel.MEDIUM),
    (44, RiskLevel.HIGH), (30, RiskLevel.HIGH), (0, RiskLevel.HIGH),
])
def test_risk_thresholds(overall, level):
    assert risk_level_for(overall) == level


def test_confidence_thresholds_are_configurable():
    config = ScoringConfig()
    assert confidence_for(99, config) == Confidence.LOW
    assert confidence_for(100, config) == Confidence.MEDIUM
    assert confidence_for(500, config) == Confidence.HIGH
    assert confidence_for(50, ScoringConfig(low_sample=10, high_sample=40)) == Confidence.HIGH


def test_failed_source_lowers_confidence(ticker_entity):
    fields = {"posts_analyzed": 600}
    clean = score(reconcile(ticker_entity, [ProviderResult(SourceId.AI_SOCIAL, fields)]))
    degraded = score(reconcile(ticker_entity, [ProviderResult(SourceId.AI_SOCIAL, fields)],
                               failures={"web_research": "unavailable: timeout"}))
    assert clean.confidence == Confidence.HIGH
    assert not clean.degraded
    assert degraded.confidence == Confidence.MEDIUM
    assert degraded.degraded
    assert degraded.overall == clean.overall


def test_backlash_corroboration_multiplier():
    event = BacklashEvent(id="b", category="x", severity=Severity.HIGH, sources=["@a", "@B", "b"], evidence_ids=["e"])
    # "@B" and "b" are the same accuser
    assert backlash_factor(ScoreInput(backlash_events=[event])).points == 5


def test_consistency_ignores_small_drift():
    assert consistency_factor(ScoreInput(behavior=BehaviorMetrics(consistency=90, topic_drift=20))).points == 0
    factor = consistency_factor(ScoreInput(behavior=BehaviorMetrics(
        consistency=50, topic_drift=50, contradictions=["a", "b"])))
    assert factor.points == 5


def test_engagement_new_high_volume_account():
    data = ScoreInput(
        network=NetworkMetrics(suspicious_patterns=["a", "b"], reply_ratio=0.9),
        account_age_days=30,
        posts_analyzed=600,
    )
    assert engagement_factor(data).points == 9


def test_onchain_factor_caps_at_max():
    data = ScoreInput(onchain={
        "mint_authority_enabled": True,
        "freeze_authority_enabled": True,
        "top_holder_pct": 60.0,
        "lp_locked_pct": 20.0,
        "security_risks": [{"level": "danger"}, {"level": "danger"}, {"level": "warn"}],
    }, fact_ids={"mint_authority_enabled": "onchain_security:mint_authority_enabled"})
    factor = onchain_factor(data)
    assert factor.points == 10
    assert factor.evidence_ids == ["onchain_security:mint_authority_enabled"]


def test_top_risk_factors_sorted_by_severity():
    data = ScoreInput(
        onchain={"mint_authority_enabled": True, "freeze_authority_enabled": True},
        network=NetworkMetrics(suspicious_patterns=["a", "b", "c", "d", "e"]),
    )
    top = top_risk_factors(score_input(data).factors)
    assert [f.type for f in top] == [FactorType.ENGAGEMENT_SUSPICION, FactorType.ONCHAIN_RISK]
