"""
Reputation Intel — Error taxonomy.

Only EntityUnresolvable and "every source failed" (ScanFailed) end a job.
Provider errors degrade one source to absent; cache errors are logged and
the job still returns a fresh result.

Source disagreements are not errors: they are recorded as SourceConflict
entries on the reconciled record. Thin evidence is not an error either: it
lowers ReputationScore.confidence and sets ReputationScore.degraded.
"""
from typing import Optional


class IntelError(Exception):
    def __init__(self, message: str, status_code: int = 0, detail: Optional[dict] = None):
        self.status_code = status_code
        self.detail = detail or {}
        super().__init__(message)


class EntityUnresolvable(IntelError):
    def __init__(self, query: str):
        self.query = query
        shown = query if len(query) <= 80 else query[:77] + "..."
        super().__init__(f"Could not resolve '{shown}' to a ticker, handle, contract or domain",
                         status_code=422)


# =============================================
# PROVIDER ERRORS
# =============================================

class ProviderError(IntelError):
    """A single source adapter failed. Never fatal on its own."""
    kind = "unavailable"

    def __init__(self, source_id: str, message: str = "", status_code: int = 0):
        self.source_id = source_id
        super().__init__(message or self.kind.replace("_", " "), status_code=status_code)

    @property
    def reason(self) -> str:
        return f"{self.kind}: {self}"


class ProviderUnavailable(ProviderError):
    kind = "unavailable"


class ProviderRateLimited(ProviderError):
    kind = "rate_limited"

    def __init__(self, source_id: str, retry_after: int = 60, **kwargs):
        self.retry_after = retry_after
        super().__init__(source_id, f"Rate limited. Retry after {retry_after}s", **kwargs)


class ProviderNoData(ProviderError):
    kind = "no_data"


class ProviderMalformedResponse(ProviderError):
    kind = "malformed_response"


# =============================================
# PIPELINE ERRORS
# =============================================

class CacheUnavailable(IntelError):
    pass


class InvalidTransition(IntelError):
    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: illegal transition {current} -> {target}")


class ScanFailed(IntelError):
    """A job-fatal error. The message is the user-visible failure reason."""
