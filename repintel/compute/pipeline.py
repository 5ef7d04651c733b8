"""
Reputation Intel — Scan Pipeline

Every scan request flows through this orchestrator:

    Submit → Resolve → Cache Check → [Fetch x4] → Extract → Reconcile → Score → Cache → Complete

The pipeline handles:
    - Cache-first strategy (a fresh report short-circuits to `cached`)
    - At most one in-flight job per entity (repeat submits join the running job)
    - Parallel source fan-out with per-source timeouts and circuit breakers
    - Graceful degradation (any subset of sources may fail)
    - Best-effort caching (a cache outage never fails a scan)

Jobs run as independent asyncio tasks. Callers poll; nothing is pushed.
A job keeps running after its caller stops polling and still fills the cache.
"""
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import structlog

from repintel.compute.cache import ReportCache, build_cache
from repintel.compute.jobs import ScanJob, ScanStatus
from repintel.compute.report import build_report
from repintel.intel.errors import CacheUnavailable, EntityUnresolvable, ProviderError, ScanFailed
from repintel.intel.extractor import extract
from repintel.intel.models import ProviderResult, ResolvedEntity
from repintel.intel.reconcile import ReconciliationPolicy, reconcile
from repintel.intel.resolver import resolve_target
from repintel.intel.scoring import ScoringConfig, score
from repintel.sources.base import FetchContext, SourceAdapter, build_http_client

logger = structlog.get_logger()


# =============================================
# CIRCUIT BREAKER
# =============================================

class CircuitBreaker:
    """
    Prevents repeated calls to a failing source.
    After `threshold` failures, the circuit opens and skips calls
    for `recovery_timeout` seconds before trying again.
    """
    def __init__(self, name: str, threshold: int = 3, recovery_timeout: int = 60,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.threshold = threshold
        self.recovery_timeout = recovery_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "closed"  # closed = healthy, open = failing, half-open = testing
        self._clock = clock

    def can_execute(self) -> bool:
        if self.state == "closed":
            return True
        if self.state == "open":
            if self._clock() - self.last_failure_time > self.recovery_timeout:
                self.state = "half-open"
                return True
            return False
        # half-open: allow one test request
        return True

    def record_success(self):
        self.failures = 0
        self.state = "closed"

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = self._clock()
        if self.failures >= self.threshold or self.state == "half-open":
            self.state = "open"
            logger.warning("circuit_breaker_opened", source=self.name, failures=self.failures)

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "failures": self.failures,
            "threshold": self.threshold,
        }


# =============================================
# THE ORCHESTRATOR
# =============================================

def _texts(results: Sequence[ProviderResult]) -> List[str]:
    """Free text the extractor runs over: posts first, then prose fields."""
    texts: List[str] = []
    for result in results:
        for post in result.fields.get("posts") or []:
            if isinstance(post, dict) and post.get("text"):
                texts.append(str(post["text"]))
    for result in results:
        for name in ("bio", "description", "story"):
            value = result.fields.get(name)
            if isinstance(value, str) and value:
                texts.append(value)
    return texts


class ScanOrchestrator:
    def __init__(
        self,
        cache: ReportCache,
        adapters: Sequence[SourceAdapter],
        settings,
        client_factory: Callable[[Any], httpx.AsyncClient] = build_http_client,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.adapters = list(adapters)
        self.settings = settings
        self.policy = ReconciliationPolicy.from_settings(settings)
        self.scoring_config = ScoringConfig.from_settings(settings)
        self._client_factory = client_factory
        self._sleep = sleep
        self._clock = clock
        self._jobs: Dict[str, ScanJob] = {}
        self._inflight: Dict[str, str] = {}  # cache key → job id
        self._tasks: Dict[str, asyncio.Task] = {}
        # One circuit breaker per source
        self._breakers: Dict[str, CircuitBreaker] = {
            a.name: CircuitBreaker(
                a.name,
                threshold=settings.BREAKER_THRESHOLD,
                recovery_timeout=settings.BREAKER_RECOVERY_SECONDS,
                clock=clock,
            )
            for a in self.adapters
        }

    # ── Public API ───────────────────────────────────────

    async def submit(self, target: str, force: bool = False) -> ScanJob:
        """
        Start (or join) a scan. Returns immediately with the job; the scan
        itself runs in the background.

        Flow:
            1. Resolve target (unresolvable → job failed)
            2. Join an in-flight job for the same entity, if any
            3. Check cache unless force (fresh hit → job cached)
            4. Spawn the scan task
        """
        self.prune()
        job = ScanJob(target=target, force=force, clock=self._clock)

        # ── Step 1: Resolve ──────────────────────────────
        try:
            entity = self.resolve(target)
        except EntityUnresolvable as e:
            job.fail(str(e))
            self._jobs[job.id] = job
            logger.info("scan_rejected", target=target[:80], reason=str(e))
            return job
        job.cache_key = entity.cache_key

        # ── Step 2: Join in-flight job ───────────────────
        running_id = self._inflight.get(entity.cache_key)
        if running_id and running_id in self._jobs:
            logger.info("scan_joined", key=entity.cache_key, job_id=running_id)
            return self._jobs[running_id]

        # ── Step 3: Cache ────────────────────────────────
        if not force:
            cached = self._cache_get(entity.cache_key)
            if cached is not None:
                cached["cached"] = True
                cached["cache_age_seconds"] = self._cache_age(entity.cache_key)
                job.complete(cached, cached=True)
                self._jobs[job.id] = job
                logger.info("scan_cached", key=entity.cache_key, job_id=job.id)
                return job

        # ── Step 4: Spawn ────────────────────────────────
        self._jobs[job.id] = job
        self._inflight[entity.cache_key] = job.id
        task = asyncio.create_task(self._run(job, entity))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        logger.info("scan_queued", key=entity.cache_key, job_id=job.id, force=force)
        return job

    def get(self, job_id: str) -> Optional[ScanJob]:
        return self._jobs.get(job_id)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[ScanJob]:
        """Block until the job is terminal. Mostly for tests and CLI use."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self._jobs.get(job_id)

    def resolve(self, target: str) -> ResolvedEntity:
        return resolve_target(target)

    def cached_report(self, target: str) -> Tuple[ResolvedEntity, Optional[Dict[str, Any]]]:
        entity = self.resolve(target)
        report = self._cache_get(entity.cache_key)
        if report is not None:
            report["cached"] = True
            report["cache_age_seconds"] = self._cache_age(entity.cache_key)
        return entity, report

    def invalidate(self, entity: ResolvedEntity) -> bool:
        try:
            return self.cache.delete(entity.cache_key)
        except CacheUnavailable as e:
            logger.warning("cache_delete_failed", key=entity.cache_key, error=str(e))
            return False

    def prune(self) -> int:
        """Drop terminal jobs older than the retention window."""
        cutoff = self._clock() - self.settings.JOB_RETENTION_SECONDS
        stale = [
            job_id for job_id, job in self._jobs.items()
            if job.is_terminal and job.updated_at < cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]
        return len(stale)

    # ── The scan ─────────────────────────────────────────

    async def _run(self, job: ScanJob, entity: ResolvedEntity):
        start = self._clock()
        try:
            job.advance(ScanStatus.FETCHING)
            results, failures = await self._fetch_all(job, entity)
            if not results:
                detail = "; ".join(f"{s}: {r}" for s, r in sorted(failures.items()))
                raise ScanFailed(f"All sources failed ({detail})")

            job.advance(ScanStatus.EXTRACTING)
            extraction = extract(_texts(results))

            job.advance(ScanStatus.ANALYZING)
            record = reconcile(entity, results, failures=failures, policy=self.policy)

            job.advance(ScanStatus.SCORING)
            reputation = score(record, self.scoring_config)
            report = build_report(entity, record, reputation, extraction)

            # Cache before the job exposes the result
            self._cache_put(entity.cache_key, report)
            job.complete(report)

            logger.info(
                "scan_complete",
                job_id=job.id,
                key=entity.cache_key,
                score=reputation.overall,
                risk_level=reputation.risk_level.value,
                confidence=reputation.confidence.value,
                sources_used=record.sources_used,
                conflicts=len(record.conflicts),
                pipeline_ms=round((self._clock() - start) * 1000, 2),
            )

        except ScanFailed as e:
            job.fail(str(e))
            logger.warning("scan_failed", job_id=job.id, key=entity.cache_key, reason=str(e))
        except Exception as e:
            stage = job.status.value
            job.fail(f"Scan failed while {stage}: {type(e).__name__}")
            logger.error("scan_crashed", job_id=job.id, key=entity.cache_key,
                         stage=stage, error=str(e), type=type(e).__name__)
        finally:
            if self._inflight.get(entity.cache_key) == job.id:
                del self._inflight[entity.cache_key]

    async def _fetch_all(
        self, job: ScanJob, entity: ResolvedEntity,
    ) -> Tuple[List[ProviderResult], Dict[str, str]]:
        """
        Run every adapter in parallel. Each one is independently guarded;
        fan-in waits for all of them to settle.
        """
        failures: Dict[str, str] = {}

        async def _guarded(adapter: SourceAdapter, ctx: FetchContext) -> Optional[ProviderResult]:
            name = adapter.name
            if not adapter.is_configured:
                failures[name] = "unavailable: not configured"
                return None
            breaker = self._breakers.get(name)
            if breaker and not breaker.can_execute():
                failures[name] = "unavailable: circuit open"
                return None

            try:
                result = await asyncio.wait_for(
                    adapter.fetch(entity, ctx),
                    timeout=self.settings.ADAPTER_DEADLINE_SECONDS,
                )
            except asyncio.TimeoutError:
                if breaker:
                    breaker.record_failure()
                failures[name] = "unavailable: timeout"
            except ProviderError as e:
                if breaker and e.kind != "no_data":
                    breaker.record_failure()
                elif breaker:
                    breaker.record_success()
                failures[name] = e.reason
            except Exception as e:
                if breaker:
                    breaker.record_failure()
                failures[name] = f"unavailable: {type(e).__name__}"
                logger.error("adapter_crashed", source=name, job_id=job.id, error=str(e)[:200])
            else:
                if breaker:
                    breaker.record_success()
                return result

            logger.info("source_degraded", source=name, job_id=job.id, reason=failures[name])
            return None

        async with self._client_factory(self.settings) as client:
            ctx = FetchContext.from_settings(client, self.settings, sleep=self._sleep, job_id=job.id)
            outcomes = await asyncio.gather(
                *[_guarded(adapter, ctx) for adapter in self.adapters],
                return_exceptions=True,
            )

        results = []
        for adapter, outcome in zip(self.adapters, outcomes):
            if isinstance(outcome, ProviderResult):
                results.append(outcome)
            elif isinstance(outcome, BaseException):
                failures.setdefault(adapter.name, f"unavailable: {type(outcome).__name__}")
        return results, failures

    # ── Cache (best effort) ──────────────────────────────

    def _cache_get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            return self.cache.get(key)
        except CacheUnavailable as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None

    def _cache_age(self, key: str) -> Optional[float]:
        try:
            age = self.cache.age_seconds(key)
        except CacheUnavailable:
            return None
        return round(age, 1) if age is not None else None

    def _cache_put(self, key: str, report: Dict[str, Any]):
        try:
            self.cache.put(key, report, self.settings.CACHE_TTL_SECONDS)
        except CacheUnavailable as e:
            logger.warning("cache_write_failed", key=key, error=str(e))

    # ── Status ───────────────────────────────────────────

    def pipeline_status(self) -> Dict[str, Any]:
        """Return health/status of the entire scan pipeline."""
        by_status: Dict[str, int] = {}
        for job in self._jobs.values():
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1
        return {
            "cache": self.cache.stats(),
            "sources": {a.name: {"configured": a.is_configured} for a in self.adapters},
            "circuit_breakers": {
                name: breaker.status()
                for name, breaker in self._breakers.items()
            },
            "jobs": {"in_flight": len(self._inflight), "tracked": len(self._jobs), "by_status": by_status},
        }


# =============================================
# SINGLETON
# =============================================

_orchestrator: Optional[ScanOrchestrator] = None


def get_orchestrator() -> ScanOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        from repintel.config import get_settings
        from repintel.sources import default_adapters

        settings = get_settings()
        _orchestrator = ScanOrchestrator(
            cache=build_cache(settings),
            adapters=default_adapters(settings),
            settings=settings,
        )
    return _orchestrator


async def shutdown():
    """Clean shutdown of pipeline resources. Running scans are allowed to finish."""
    global _orchestrator
    if _orchestrator:
        pending = list(_orchestrator._tasks.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        _orchestrator.cache.close()
    _orchestrator = None
    logger.info("pipeline_shutdown")
