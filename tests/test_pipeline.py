import asyncio

import pytest

from repintel.compute.cache import MemoryReportCache, ReportCache
from repintel.compute.jobs import ScanJob, ScanStatus
from repintel.compute.pipeline import CircuitBreaker, ScanOrchestrator
from repintel.intel.errors import (
    CacheUnavailable, InvalidTransition, ProviderNoData, ProviderUnavailable,
)
from repintel.intel.models import Confidence, ProviderResult, SourceId
from repintel.sources.base import SourceAdapter


class StubAdapter(SourceAdapter):
    def __init__(self, source_id, settings, fields=None, error=None, delay=0.0, gate=None, configured=True):
        super().__init__(settings)
        self.source_id = source_id
        self.fields = fields or {}
        self.error = error
        self.delay = delay
        self.gate = gate
        self.configured = configured
        self.calls = 0

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def fetch(self, entity, context):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error(self.name)
        return ProviderResult(source_id=self.source_id, fields=self.fields, confidence=Confidence.HIGH)


class BrokenCache(ReportCache):
    backend = "broken"

    def get(self, key):
        raise CacheUnavailable("down")

    def put(self, key, report, ttl):
        raise CacheUnavailable("down")

    def delete(self, key):
        raise CacheUnavailable("down")

    def age_seconds(self, key):
        raise CacheUnavailable("down")


SOCIAL_FIELDS = {
    "posts_analyzed": 600,
    "display_name": "Pepe",
    "shilled_entities": [{"id": f"shill:{i}", "name": f"T{i}", "promo_intensity": 80} for i in range(20)],
    "key_findings": ["Launched three tokens this year"],
}
MARKET_FIELDS = {"price_usd": 0.0000012, "liquidity_usd": 250_000.0, "token_symbol": "PEPE"}


def adapters(settings, **overrides):
    plan = {
        SourceId.AI_SOCIAL: {"fields": SOCIAL_FIELDS},
        SourceId.WEB_RESEARCH: {"error": ProviderNoData},
        SourceId.ONCHAIN_SECURITY: {"error": ProviderNoData},
        SourceId.MARKET_DATA: {"fields": MARKET_FIELDS},
    }
    for name, kwargs in overrides.items():
        plan[SourceId(name)] = kwargs
    return [StubAdapter(source_id, settings, **kwargs) for source_id, kwargs in plan.items()]


@pytest.fixture
def cache(clock):
    return MemoryReportCache(clock=clock)


def orchestrator_for(settings, cache, clock, sleeper, stubs):
    return ScanOrchestrator(cache=cache, adapters=stubs, settings=settings, sleep=sleeper, clock=clock)


@pytest.mark.asyncio
async def test_fresh_cache_entry_short_circuits(settings, cache, clock, sleeper):
    stubs = adapters(settings)
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)
    cache.put("ticker:PEPE", {"score": {"overall": 81}, "cached": False}, ttl=settings.CACHE_TTL_SECONDS)
    clock.advance(120)

    job = await orchestrator.submit("$pepe")

    assert job.status == ScanStatus.CACHED
    assert job.visited == ["queued", "cached"]
    assert job.result["cached"] is True
    assert job.result["cache_age_seconds"] == 120
    assert all(stub.calls == 0 for stub in stubs)


@pytest.mark.asyncio
async def test_complete_scan_walks_every_stage_and_fills_cache(settings, cache, clock, sleeper):
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, adapters(settings))

    job = await orchestrator.submit("$PEPE")
    assert job.status == ScanStatus.QUEUED
    await orchestrator.wait(job.id)

    assert job.status == ScanStatus.COMPLETE
    assert job.visited == ["queued", "fetching", "extracting", "analyzing", "scoring", "complete"]
    assert job.progress == 100
    report = job.result
    assert report["cached"] is False
    assert report["entity"]["normalized_value"] == "PEPE"
    assert report["sources_used"] == ["market_data", "ai_social"]
    assert cache.get("ticker:PEPE")["score"] == report["score"]


@pytest.mark.asyncio
async def test_every_finding_cites_resolvable_evidence(settings, cache, clock, sleeper):
    stubs = adapters(settings, onchain_security={"fields": {"liquidity_usd": 400_000.0}})
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)

    job = await orchestrator.submit("$PEPE")
    await orchestrator.wait(job.id)

    report = job.result
    evidence_ids = {e["id"] for e in report["evidence"]}
    assert any(f["id"] == "conflict:liquidity_usd" for f in report["key_findings"])
    for finding in report["key_findings"]:
        assert finding["evidence_ids"]
        assert set(finding["evidence_ids"]) <= evidence_ids, finding["id"]


@pytest.mark.asyncio
async def test_failed_sources_lower_confidence_and_are_noted(settings, cache, clock, sleeper):
    stubs = adapters(settings, web_research={"error": ProviderUnavailable})
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)

    job = await orchestrator.submit("$PEPE")
    await orchestrator.wait(job.id)

    report = job.result
    assert job.status == ScanStatus.COMPLETE
    # 600 posts would be high confidence with every source present
    assert report["score"]["confidence"] == "medium"
    assert report["score"]["degraded"] is True
    assert set(report["sources_failed"]) == {"web_research", "onchain_security"}
    assert report["sources_failed"]["web_research"].startswith("unavailable")
    gap_ids = {f["id"] for f in report["key_findings"] if f["id"].startswith("gap:")}
    assert gap_ids == {"gap:web_research", "gap:onchain_security"}


@pytest.mark.asyncio
async def test_all_sources_failing_fails_the_job(settings, cache, clock, sleeper):
    stubs = [
        StubAdapter(source_id, settings, error=ProviderUnavailable)
        for source_id in SourceId
    ]
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)

    job = await orchestrator.submit("@someone")
    await orchestrator.wait(job.id)

    assert job.status == ScanStatus.FAILED
    assert job.error.startswith("All sources failed")
    assert job.result is None
    assert cache.get("handle:someone") is None


@pytest.mark.asyncio
async def test_unconfigured_sources_count_as_failed(settings, cache, clock, sleeper):
    stubs = [StubAdapter(source_id, settings, configured=False) for source_id in SourceId]
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)

    job = await orchestrator.submit("@someone")
    await orchestrator.wait(job.id)

    assert job.status == ScanStatus.FAILED
    assert "not configured" in job.error
    assert all(stub.calls == 0 for stub in stubs)


@pytest.mark.asyncio
async def test_unresolvable_target_fails_immediately(settings, cache, clock, sleeper):
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, adapters(settings))

    job = await orchestrator.submit("hello world")

    assert job.status == ScanStatus.FAILED
    assert job.visited == ["queued", "failed"]
    assert "Could not resolve" in job.error
    assert orchestrator.get(job.id) is job


@pytest.mark.asyncio
async def test_one_job_per_entity_while_in_flight(settings, cache, clock, sleeper):
    gate = asyncio.Event()
    stubs = adapters(settings, market_data={"fields": MARKET_FIELDS, "gate": gate})
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)

    first = await orchestrator.submit("$pepe")
    second = await orchestrator.submit("#PEPE")
    forced = await orchestrator.submit("$PEPE", force=True)
    assert first is second is forced

    gate.set()
    await orchestrator.wait(first.id)
    assert first.status == ScanStatus.COMPLETE
    assert stubs[3].calls == 1

    again = await orchestrator.submit("$pepe")
    assert again.id != first.id
    assert again.status == ScanStatus.CACHED


@pytest.mark.asyncio
async def test_force_bypasses_cache(settings, cache, clock, sleeper):
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, adapters(settings))
    cache.put("ticker:PEPE", {"stale": True}, ttl=settings.CACHE_TTL_SECONDS)

    job = await orchestrator.submit("$PEPE", force=True)
    await orchestrator.wait(job.id)

    assert job.status == ScanStatus.COMPLETE
    assert "stale" not in cache.get("ticker:PEPE")


@pytest.mark.asyncio
async def test_slow_source_times_out_without_failing_scan(settings, cache, clock, sleeper):
    settings.ADAPTER_DEADLINE_SECONDS = 0.05
    stubs = adapters(settings, web_research={"fields": {"description": "late"}, "delay": 1.0})
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)

    job = await orchestrator.submit("$PEPE")
    await orchestrator.wait(job.id)

    assert job.status == ScanStatus.COMPLETE
    assert job.result["sources_failed"]["web_research"] == "unavailable: timeout"


@pytest.mark.asyncio
async def test_cache_outage_never_fails_a_scan(settings, clock, sleeper):
    orchestrator = orchestrator_for(settings, BrokenCache(), clock, sleeper, adapters(settings))

    job = await orchestrator.submit("$PEPE")
    await orchestrator.wait(job.id)

    assert job.status == ScanStatus.COMPLETE
    assert job.result["score"]["overall"] <= 100


@pytest.mark.asyncio
async def test_scoring_crash_fails_job_with_stage(settings, cache, clock, sleeper, monkeypatch):
    def explode(record, config=None):
        raise RuntimeError("boom")

    monkeypatch.setattr("repintel.compute.pipeline.score", explode)
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, adapters(settings))

    job = await orchestrator.submit("$PEPE")
    await orchestrator.wait(job.id)

    assert job.status == ScanStatus.FAILED
    assert job.error == "Scan failed while scoring: RuntimeError"
    assert cache.get("ticker:PEPE") is None


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures(settings, cache, clock, sleeper):
    stubs = adapters(settings, web_research={"error": ProviderUnavailable})
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, stubs)

    for target in ("$AAA", "$BBB", "$CCC", "$DDD"):
        job = await orchestrator.submit(target)
        await orchestrator.wait(job.id)

    assert stubs[1].calls == 3
    assert job.result["sources_failed"]["web_research"] == "unavailable: circuit open"
    status = orchestrator.pipeline_status()
    assert status["circuit_breakers"]["web_research"]["state"] == "open"
    # no_data is an answer, not an outage
    assert status["circuit_breakers"]["onchain_security"]["state"] == "closed"


@pytest.mark.asyncio
async def test_finished_jobs_are_pruned_after_retention(settings, cache, clock, sleeper):
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, adapters(settings))
    job = await orchestrator.submit("$PEPE")
    await orchestrator.wait(job.id)

    clock.advance(settings.JOB_RETENTION_SECONDS - 1)
    assert orchestrator.prune() == 0
    clock.advance(2)
    assert orchestrator.prune() == 1
    assert orchestrator.get(job.id) is None


@pytest.mark.asyncio
async def test_cached_report_and_invalidate(settings, cache, clock, sleeper):
    orchestrator = orchestrator_for(settings, cache, clock, sleeper, adapters(settings))
    job = await orchestrator.submit("$PEPE")
    await orchestrator.wait(job.id)

    entity, report = orchestrator.cached_report("$pepe")
    assert report["cached"] is True
    assert orchestrator.invalidate(entity) is True
    assert orchestrator.cached_report("$pepe")[1] is None


def test_breaker_half_opens_after_recovery(clock):
    breaker = CircuitBreaker("x", threshold=2, recovery_timeout=60, clock=clock)
    breaker.record_failure()
    breaker.record_failure()
    assert not breaker.can_execute()
    clock.advance(61)
    assert breaker.can_execute()
    assert breaker.state == "half-open"
    breaker.record_failure()
    assert breaker.state == "open"


def test_job_transitions_only_move_forward(clock):
    job = ScanJob(target="$PEPE", clock=clock)
    with pytest.raises(InvalidTransition):
        job.advance(ScanStatus.COMPLETE)
    job.advance(ScanStatus.FETCHING)
    with pytest.raises(InvalidTransition):
        job.advance(ScanStatus.CACHED)
    with pytest.raises(InvalidTransition):
        job.advance(ScanStatus.QUEUED)
    job.fail("gone")
    assert job.is_terminal
    with pytest.raises(InvalidTransition):
        job.fail("again")
    assert job.to_dict()["error"] == "gone"
