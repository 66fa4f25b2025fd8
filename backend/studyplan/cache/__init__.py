"""In-memory caches shared across planner services."""

from .schedule_cache import ScheduleCache, build_schedule_fingerprint, schedule_cache

__all__ = ["ScheduleCache", "build_schedule_fingerprint", "schedule_cache"]
