"""
Reputation Intel — Scan job lifecycle.

    queued → fetching → extracting → analyzing → scoring → complete
       │                                                 ↘
       └──────────────→ cached                      failed (from any non-terminal)

Transitions only move forward. Terminal states are final.
"""
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from repintel.intel.errors import InvalidTransition


class ScanStatus(str, Enum):
    QUEUED     = "queued"
    FETCHING   = "fetching"
    EXTRACTING = "extracting"
    ANALYZING  = "analyzing"
    SCORING    = "scoring"
    COMPLETE   = "complete"
    CACHED     = "cached"
    FAILED     = "failed"


TERMINAL = frozenset({ScanStatus.COMPLETE, ScanStatus.CACHED, ScanStatus.FAILED})

ALLOWED_TRANSITIONS = {
    ScanStatus.QUEUED:     {ScanStatus.FETCHING, ScanStatus.CACHED, ScanStatus.FAILED},
    ScanStatus.FETCHING:   {ScanStatus.EXTRACTING, ScanStatus.FAILED},
    ScanStatus.EXTRACTING: {ScanStatus.ANALYZING, ScanStatus.FAILED},
    ScanStatus.ANALYZING:  {ScanStatus.SCORING, ScanStatus.FAILED},
    ScanStatus.SCORING:    {ScanStatus.COMPLETE, ScanStatus.FAILED},
}

PROGRESS = {
    ScanStatus.QUEUED: 0,
    ScanStatus.FETCHING: 15,
    ScanStatus.EXTRACTING: 30,
    ScanStatus.ANALYZING: 55,
    ScanStatus.SCORING: 75,
    ScanStatus.COMPLETE: 100,
    ScanStatus.CACHED: 100,
    ScanStatus.FAILED: 0,
}


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ScanJob:
    target: str
    id: str = field(default_factory=new_job_id)
    force: bool = False
    cache_key: Optional[str] = None
    status: ScanStatus = ScanStatus.QUEUED
    created_at: float = 0.0
    updated_at: float = 0.0
    history: List[Tuple[str, float]] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    clock: Callable[[], float] = field(default=time.time, repr=False)

    def __post_init__(self):
        now = self.clock()
        self.created_at = self.created_at or now
        self.updated_at = self.created_at
        if not self.history:
            self.history.append((self.status.value, self.created_at))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    @property
    def progress(self) -> int:
        return PROGRESS[self.status]

    @property
    def visited(self) -> List[str]:
        return [status for status, _ in self.history]

    def advance(self, status: ScanStatus):
        if status not in ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidTransition(self.id, self.status.value, status.value)
        self.status = status
        self.updated_at = self.clock()
        self.history.append((status.value, self.updated_at))

    def complete(self, result: Dict[str, Any], cached: bool = False):
        self.advance(ScanStatus.CACHED if cached else ScanStatus.COMPLETE)
        self.result = result

    def fail(self, reason: str):
        self.advance(ScanStatus.FAILED)
        self.error = reason

    def to_dict(self, include_result: bool = True) -> Dict[str, Any]:
        d = {
            "job_id": self.id,
            "target": self.target,
            "status": self.status.value,
            "progress": self.progress,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "history": [{"status": s, "at": t} for s, t in self.history],
        }
        if self.error:
            d["error"] = self.error
        if include_result and self.result is not None:
            d["result"] = self.result
        return d
