"""Caches passed explicitly to the service layer."""

from .schedule_cache import ScheduleCache

__all__ = ["ScheduleCache"]
