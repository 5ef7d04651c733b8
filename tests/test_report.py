import re

from repintel.compute import report as report_module
from repintel.compute.report import DISCLAIMER, build_report
from repintel.intel.content_filter import PROHIBITED_REASON, contains_prohibited_content
from repintel.intel.extractor import extract
from repintel.intel.models import ProviderResult, SourceId
from repintel.intel.reconcile import reconcile
from repintel.intel.scoring import score


def test_content_filter_with_custom_patterns():
    patterns = [re.compile(r"fr[o0]bn[i1]cate", re.IGNORECASE)]
    assert contains_prohibited_content("please FR0BNICATE", patterns) == PROHIBITED_REASON
    assert contains_prohibited_content("clean text", patterns) is None
    assert contains_prohibited_content(None, patterns) is None


def build(ticker_entity, results, failures=None):
    record = reconcile(ticker_entity, results, failures=failures)
    return build_report(ticker_entity, record, score(record), extract([]))


def test_report_shape(ticker_entity):
    report = build(ticker_entity, [
        ProviderResult(SourceId.MARKET_DATA, {"price_usd": 1.5, "website": "https://www.pepe.vip/"}),
    ], failures={"ai_social": "unavailable: not configured"})

    assert report["disclaimer"] == DISCLAIMER
    assert report["cached"] is False
    assert report["profile"]["price_usd"] == 1.5
    assert report["linked_entities"]["domain"][0]["value"] == "pepe.vip"
    assert report["sources_failed"] == {"ai_social": "unavailable: not configured"}
    assert {a["field"] for a in report["source_attribution"]} == {"price_usd", "website"}
    assert report["key_findings"][-1]["id"] == "gap:ai_social"


def test_shills_by_intensity_and_backlash_chronological(ticker_entity):
    report = build(ticker_entity, [ProviderResult(SourceId.AI_SOCIAL, {
        "shilled_entities": [
            {"id": "shill:0", "name": "A", "promo_intensity": 20},
            {"id": "shill:1", "name": "B", "promo_intensity": 90},
        ],
        "backlash_events": [
            {"id": "backlash:0", "start_date": "2024-03-01"},
            {"id": "backlash:1", "start_date": "2023-11-01"},
            {"id": "backlash:2"},
        ],
    })])
    assert [e["id"] for e in report["shilled_entities"]] == ["shill:1", "shill:0"]
    assert [e["id"] for e in report["backlash_events"]] == ["backlash:1", "backlash:0", "backlash:2"]


def test_prohibited_excerpts_are_withheld(ticker_entity, monkeypatch):
    monkeypatch.setattr(
        report_module, "contains_prohibited_content",
        lambda text: PROHIBITED_REASON if text and "forbidden" in text else None,
    )
    report = build(ticker_entity, [ProviderResult(SourceId.AI_SOCIAL, {
        "bio": "forbidden bio",
        "evidence": [{"id": "post:9", "excerpt": "forbidden words"}, {"id": "post:10", "excerpt": "fine"}],
    })])

    by_id = {e["id"]: e for e in report["evidence"]}
    assert by_id["post:9"]["withheld"] is True
    assert by_id["post:9"]["excerpt"] == f"[withheld: {PROHIBITED_REASON}]"
    assert "withheld" not in by_id["post:10"]
    assert report["profile"]["bio"] == f"[withheld: {PROHIBITED_REASON}]"
