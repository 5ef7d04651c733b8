"""
Reputation Intel — Scan API

Public endpoints:
    POST   /v1/scan              - Submit a scan (returns a job id immediately)
    GET    /v1/scan/{job_id}     - Poll job status, progress and result
    GET    /v1/report            - Cached report for a target, with its age
    DELETE /v1/report            - Invalidate the cached report for a target
    GET    /v1/health            - Pipeline health (cache, sources, breakers, jobs)

Progress is poll-only. A job keeps running after its caller stops polling.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
import structlog

from repintel.compute.pipeline import ScanOrchestrator, get_orchestrator
from repintel.intel.errors import EntityUnresolvable
from repintel.rate_limit import rate_limit_scan

logger = structlog.get_logger()


# =============================================
# REQUEST/RESPONSE MODELS
# =============================================

class ScanRequest(BaseModel):
    target: str = Field(..., min_length=1, max_length=300,
                        description="Ticker ($PEPE), handle (@name), contract address or domain")
    force: bool = Field(False, description="Bypass the report cache")


class ScanSubmitResponse(BaseModel):
    job_id: str
    status: str
    cached: bool


class StatusEntry(BaseModel):
    status: str
    at: float


class ScanStatusResponse(BaseModel):
    job_id: str
    target: str
    status: str
    progress: int
    created_at: float
    updated_at: float
    history: List[StatusEntry] = []
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class InvalidateResponse(BaseModel):
    target: str
    cache_key: str
    deleted: bool


router = APIRouter(prefix="/v1", tags=["scan"])


# =============================================
# ENDPOINTS
# =============================================

@router.post("/scan", response_model=ScanSubmitResponse, status_code=202)
async def submit_scan(
    body: ScanRequest,
    request: Request,
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    """
    Start a reputation scan. Returns at once with the job id.

    A fresh cached report completes the job immediately with status `cached`.
    Submitting a target that is already being scanned returns the running job.
    An unresolvable target produces a `failed` job with the reason in `error`.
    """
    await rate_limit_scan(request, body.target)

    job = await orchestrator.submit(body.target.strip(), force=body.force)
    return ScanSubmitResponse(
        job_id=job.id,
        status=job.status.value,
        cached=job.status.value == "cached",
    )


@router.get("/scan/{job_id}", response_model=ScanStatusResponse, response_model_exclude_none=True)
async def scan_status(
    job_id: str,
    include_result: bool = Query(True, description="Include the report once the job is terminal"),
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    job = orchestrator.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Scan job '{job_id}' not found.")
    return job.to_dict(include_result=include_result)


@router.get("/report")
async def get_report(
    target: str = Query(..., min_length=1, max_length=300),
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    """Return the cached report for a target without starting a scan."""
    try:
        entity, report = orchestrator.cached_report(target.strip())
    except EntityUnresolvable as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    if report is None:
        raise HTTPException(status_code=404, detail=f"No cached report for '{entity.normalized_value}'.")
    return report


@router.delete("/report", response_model=InvalidateResponse)
async def invalidate_report(
    target: str = Query(..., min_length=1, max_length=300),
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    try:
        entity = orchestrator.resolve(target.strip())
    except EntityUnresolvable as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    deleted = orchestrator.invalidate(entity)
    logger.info("report_invalidated", key=entity.cache_key, deleted=deleted)
    return InvalidateResponse(target=target, cache_key=entity.cache_key, deleted=deleted)


@router.get("/health")
async def health(orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    return {"status": "ok", "pipeline": orchestrator.pipeline_status()}
