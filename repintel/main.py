"""
Reputation Intel — Scan Service
Entity resolution + multi-source reputation scoring for crypto projects and influencers.

Start with:
    uvicorn repintel.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from repintel import __version__
from repintel.api.scan import router as scan_router
from repintel.config import settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("service_starting", version=__version__, environment=settings.ENVIRONMENT)

    from repintel.compute.pipeline import get_orchestrator, shutdown as pipeline_shutdown
    orchestrator = get_orchestrator()
    logger.info("pipeline_initialized",
                cache_backend=settings.CACHE_BACKEND,
                sources=[a.name for a in orchestrator.adapters if a.is_configured])

    yield

    await pipeline_shutdown()
    logger.info("service_stopped")


app = FastAPI(
    title="Reputation Intel",
    description=(
        "Reputation scans for crypto tickers, social handles, contract addresses and domains. "
        "Submit a scan, poll the job, read the evidence-backed report."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "Retry-After"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())[:8]
    start = time.time()
    request.state.request_id = request_id
    response = await call_next(request)
    duration_ms = round((time.time() - start) * 1000, 2)
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms}ms"
    # Pollers hit /v1/scan/{id} constantly; keep those out of the request log
    if request.url.path != "/v1/health" and not (
        request.method == "GET" and request.url.path.startswith("/v1/scan/")
    ):
        logger.info("request",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                    request_id=request_id)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "Something went wrong.",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


app.include_router(scan_router)


@app.get("/")
async def root():
    return {
        "service": "reputation-intel",
        "version": __version__,
        "docs": "/docs",
        "endpoints": ["POST /v1/scan", "GET /v1/scan/{job_id}", "GET /v1/report", "DELETE /v1/report", "GET /v1/health"],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("repintel.main:app", host=settings.RI_HOST, port=settings.RI_PORT)
