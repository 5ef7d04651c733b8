"""
Reputation Intel — Source adapter contract.

Every adapter exposes exactly one coroutine:

    await adapter.fetch(entity, context) -> ProviderResult

and signals failure only through ProviderError subclasses. The orchestrator
treats any failure as "no data from this source".

Retry policy (request_json):
    transient  → timeouts, transport errors, 429, 502, 503, 504
                 retried with exponential backoff up to max_attempts
    permanent  → 404 (ProviderNoData), other 4xx (ProviderUnavailable),
                 unparseable body (ProviderMalformedResponse); never retried
"""
import abc
import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog

from repintel.intel.errors import (
    ProviderError, ProviderMalformedResponse, ProviderNoData,
    ProviderRateLimited, ProviderUnavailable,
)
from repintel.intel.models import ProviderResult, ResolvedEntity, SourceId

logger = structlog.get_logger()

USER_AGENT = "ReputationIntel/1.0 (+https://github.com/reputation-intel)"
TRANSIENT_STATUS = frozenset({429, 502, 503, 504})


@dataclass
class FetchContext:
    client: httpx.AsyncClient
    settings: Any
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    job_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings, **kwargs) -> "FetchContext":
        return cls(
            client=client,
            settings=settings,
            max_attempts=max(1, settings.ADAPTER_MAX_ATTEMPTS),
            backoff_seconds=settings.ADAPTER_BACKOFF_SECONDS,
            **kwargs,
        )


def build_http_client(settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        follow_redirects=True,
        verify=True,
        timeout=httpx.Timeout(settings.ADAPTER_TIMEOUT_SECONDS, connect=5.0),
    )


def _retry_after(response: httpx.Response, default: int = 60) -> int:
    try:
        return int(response.headers.get("retry-after", default))
    except ValueError:
        return default


async def request_json(
    ctx: FetchContext,
    source_id: SourceId,
    method: str,
    url: str,
    **kwargs,
) -> Any:
    """HTTP call with the shared retry policy. Returns the decoded JSON body."""
    source = source_id.value
    last_error: Optional[ProviderError] = None

    for attempt in range(1, ctx.max_attempts + 1):
        try:
            response = await ctx.client.request(method, url, **kwargs)
        except httpx.TransportError as e:  # includes timeouts
            last_error = ProviderUnavailable(source, f"{type(e).__name__} calling {source}")
        else:
            status = response.status_code
            if status == 404:
                raise ProviderNoData(source, "resource not found", status_code=404)
            if status == 429:
                last_error = ProviderRateLimited(source, retry_after=_retry_after(response), status_code=429)
            elif status in TRANSIENT_STATUS:
                last_error = ProviderUnavailable(source, f"upstream returned {status}", status_code=status)
            elif status >= 400:
                raise ProviderUnavailable(source, f"upstream returned {status}", status_code=status)
            else:
                try:
                    return response.json()
                except ValueError as e:
                    raise ProviderMalformedResponse(source, "response body is not JSON") from e

        if attempt < ctx.max_attempts:
            delay = ctx.backoff_seconds * (2 ** (attempt - 1))
            logger.info("provider_retry", source=source, attempt=attempt,
                        delay=delay, reason=str(last_error))
            await ctx.sleep(delay)

    raise last_error


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_json_text(source_id: SourceId, text: str) -> Dict[str, Any]:
    """Decode a JSON object an LLM returned as text, tolerating code fences and preamble."""
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ProviderMalformedResponse(source_id.value, "no JSON object in model output")
    try:
        data = json.loads(cleaned[start:end + 1])
    except ValueError as e:
        raise ProviderMalformedResponse(source_id.value, f"invalid JSON in model output: {e}") from e
    if not isinstance(data, dict):
        raise ProviderMalformedResponse(source_id.value, "model output is not a JSON object")
    return data


class SourceAdapter(abc.ABC):
    """One evidence source. Subclasses set `source_id` and implement fetch()."""
    source_id: SourceId

    def __init__(self, settings):
        self.settings = settings

    @property
    def name(self) -> str:
        return self.source_id.value

    @property
    def is_configured(self) -> bool:
        return True

    def require_configured(self):
        if not self.is_configured:
            raise ProviderUnavailable(self.name, f"{self.name} API key not configured")

    @abc.abstractmethod
    async def fetch(self, entity: ResolvedEntity, context: FetchContext) -> ProviderResult:
        ...
