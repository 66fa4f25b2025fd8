"""Fingerprint-keyed memoisation of synthesized schedules."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, Optional

from ..models import ScheduleRequest, ScheduleResult

DEFAULT_TTL_SECONDS = 120
_EXCLUDED_FIELDS = {"debug"}


def _json_default(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Unsupported fingerprint value: {type(value)!r}")


def build_schedule_fingerprint(request: ScheduleRequest) -> str:
    """Canonical serialisation of a request: sorted keys, ISO dates, no debug flag."""
    payload = request.model_dump(mode="json", exclude=_EXCLUDED_FIELDS)
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_json_default)


@dataclass
class _ScheduleEntry:
    result: ScheduleResult
    cached_at: datetime


class ScheduleCache:
    """Process-local TTL cache for schedule synthesis results."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._ttl_seconds = max(ttl_seconds, 0)
        self._clock = clock
        self._entries: Dict[str, _ScheduleEntry] = {}
        self._lock = Lock()

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def configure(self, ttl_seconds: int) -> None:
        with self._lock:
            self._ttl_seconds = max(ttl_seconds, 0)

    def get(self, fingerprint: str) -> Optional[ScheduleResult]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            age = (self._clock() - entry.cached_at).total_seconds()
            if age > self._ttl_seconds:
                self._entries.pop(fingerprint, None)
                return None
            return entry.result.model_copy(deep=True)

    def set(self, fingerprint: str, result: ScheduleResult) -> None:
        with self._lock:
            self._entries[fingerprint] = _ScheduleEntry(
                result=result.model_copy(deep=True),
                cached_at=self._clock(),
            )

    def invalidate(self, fingerprint: str) -> None:
        with self._lock:
            self._entries.pop(fingerprint, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


schedule_cache = ScheduleCache()

__all__ = ["ScheduleCache", "build_schedule_fingerprint", "schedule_cache"]
