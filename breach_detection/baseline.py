from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from cachetools import TTLCache

from .config import EngineConfig
from .geolocation import LOCAL, GeoResolver
from .models import AccessHours, Action, ActivityFilter, Resource, UserAccessPattern
from .stores import ActivityLog

logger = logging.getLogger(__name__)

TAIL_FRACTION = 0.1


def hour_histogram(hours: Sequence[int]) -> List[int]:
    buckets = [0] * 24
    for hour in hours:
        buckets[hour] += 1
    return buckets


def typical_access_hours(buckets: Sequence[int]) -> Optional[AccessHours]:
    """Hour range holding the central ~80% of activity.

    Walks the cumulative histogram, starting at the first hour where 10% of
    requests have been seen and ending after the hour that reaches 90%.
    No smoothing is applied, so sparse or bimodal activity yields a wide range.
    """
    total = sum(buckets)
    if total == 0:
        return None
    tail = total * TAIL_FRACTION
    start: Optional[int] = None
    end = 24
    cumulative = 0
    for hour, count in enumerate(buckets):
        cumulative += count
        if start is None and cumulative >= tail:
            start = hour
        if cumulative >= total - tail:
            end = hour + 1
            break
    return AccessHours(start=start if start is not None else 0, end=end)


class BaselineBuilder:
    """Derives a user's rolling behavioral profile from the activity log."""

    def __init__(
        self,
        activity_log: ActivityLog,
        geo: GeoResolver,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.activity_log = activity_log
        self.geo = geo
        self.config = config or EngineConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))
        ttl = self.config.baseline_cache_ttl.total_seconds()
        self.cache: Optional[TTLCache] = (
            TTLCache(maxsize=self.config.cooldown_capacity, ttl=ttl, timer=lambda: self.clock().timestamp())
            if ttl > 0
            else None
        )
        self._cache_lock = threading.Lock()

    def build_baseline(self, user_id: str) -> Optional[UserAccessPattern]:
        if self.cache is not None:
            with self._cache_lock:
                cached = self.cache.get(user_id)
            if cached is not None:
                return cached

        pattern = self._calculate(user_id)
        if self.cache is not None and pattern is not None:
            with self._cache_lock:
                self.cache[user_id] = pattern
        return pattern

    def invalidate(self, user_id: str) -> None:
        if self.cache is not None:
            with self._cache_lock:
                self.cache.pop(user_id, None)

    def _calculate(self, user_id: str) -> Optional[UserAccessPattern]:
        now = self.clock()
        since = now - self.config.baseline_window
        rows = self.activity_log.list_recent_activity(None, user_id, since, self.config.baseline_row_limit)
        if not rows:
            return None

        days = self.config.baseline_days
        export_count = self.activity_log.count_activity(
            None, user_id, since, ActivityFilter(action=Action.EXPORT.value)
        )
        view_count = self.activity_log.count_activity(
            None, user_id, since, ActivityFilter(action=Action.VIEW.value, resource=Resource.CLIENT.value)
        )

        buckets = hour_histogram([row.timestamp.astimezone(self.tz).hour for row in rows])
        hours = typical_access_hours(buckets)

        countries = set()
        resolved = self.geo.resolve_many(row.ip for row in rows if row.ip)
        for country in resolved.values():
            if country and country != LOCAL:
                countries.add(country)

        pattern = UserAccessPattern(
            user_id=user_id,
            avg_daily_exports=export_count / days,
            avg_daily_client_views=view_count / days,
            typical_access_hours=hours,
            known_countries=sorted(countries),
            avg_requests_per_minute=len(rows) / (days * 24 * 60),
            last_calculated=now,
        )
        logger.debug(
            "Built access baseline for %s from %d rows: hours=%s-%s countries=%s",
            user_id,
            len(rows),
            hours.start,
            hours.end,
            pattern.known_countries,
        )
        return pattern
