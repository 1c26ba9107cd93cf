"""
Sun Times Service
=================

Sunrise and sunset for the property, in local wall-clock time. The irrigation
advisor anchors tomorrow's watering start to sunrise.

Lookups go to the free sunrise-sunset.org API (no key, rate-limited), which
answers in UTC. Successful answers are cached per (lat, lng, date). Without
coordinates, or when the API misbehaves, a month-by-month table is used, so
callers always get an answer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

import requests

from homecontrol.utils.time import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)

# Local sunrise/sunset by month for a subtropical US site, DST applied
# March through early November.
MONTHLY_SUN_TIMES: Dict[int, Tuple[time, time]] = {
    1: (time(7, 5), time(17, 55)),
    2: (time(6, 55), time(18, 15)),
    3: (time(7, 25), time(19, 30)),
    4: (time(6, 55), time(19, 45)),
    5: (time(6, 35), time(20, 0)),
    6: (time(6, 30), time(20, 15)),
    7: (time(6, 40), time(20, 15)),
    8: (time(6, 55), time(19, 55)),
    9: (time(7, 5), time(19, 20)),
    10: (time(7, 20), time(18, 50)),
    11: (time(6, 40), time(17, 35)),
    12: (time(6, 55), time(17, 35)),
}

CacheKey = Tuple[float, float, str]


def _hours_between(start: time, end: time) -> float:
    return max(0.0, ((end.hour - start.hour) * 60 + end.minute - start.minute) / 60.0)


@dataclass
class SunTimes:
    """Sunrise/sunset on one date, local time."""
    date: date
    sunrise: time
    sunset: time
    day_length_hours: float
    source: str = "api"  # or "fallback"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "sunrise": self.sunrise.strftime("%H:%M"),
            "sunset": self.sunset.strftime("%H:%M"),
            "day_length_hours": round(self.day_length_hours, 2),
            "source": self.source,
        }


class SunTimesService:
    """Sunrise/sunset lookup for one location. Never raises."""

    API_URL = "https://api.sunrise-sunset.org/json"

    def __init__(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        timezone: str = "UTC",
        cache_hours: int = 12,
        timeout: float = 10,
        clock: Optional[Clock] = None,
    ):
        self.latitude = latitude
        self.longitude = longitude
        self.timezone = timezone
        self.cache_hours = cache_hours
        self.timeout = timeout
        self._clock = clock or SYSTEM_CLOCK
        # key -> (value, expires_at)
        self._cache: Dict[CacheKey, Tuple[SunTimes, datetime]] = {}

        logger.info("SunTimesService initialized (lat=%s, lng=%s, tz=%s)", latitude, longitude, timezone)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def get_sun_times(self, target_date: Optional[date] = None) -> SunTimes:
        """Sun times for ``target_date``, defaulting to today in the configured zone."""
        zone = ZoneInfo(self.timezone)
        day = target_date or self._clock.now().astimezone(zone).date()

        if not self.has_location:
            logger.debug("No coordinates configured; using the monthly table for %s", day)
            return self.fallback(day)

        key: CacheKey = (float(self.latitude), float(self.longitude), day.isoformat())
        hit = self._cache.get(key)
        now = self._clock.now()
        if hit is not None:
            value, expires_at = hit
            if now <= expires_at:
                return value
            self._cache.pop(key, None)

        looked_up = self._request(key[0], key[1], day, zone)
        if looked_up is None:
            return self.fallback(day)
        self._cache[key] = (looked_up, now + timedelta(hours=self.cache_hours))
        return looked_up

    def _request(self, latitude: float, longitude: float, day: date, zone: ZoneInfo) -> Optional[SunTimes]:
        try:
            response = requests.get(
                self.API_URL,
                params={"lat": latitude, "lng": longitude, "date": day.isoformat(), "formatted": 0},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Sun times request failed: %s", e)
            return None

        if payload.get("status") != "OK":
            logger.error("Sun times API answered %s", payload.get("status"))
            return None

        results = payload.get("results") or {}
        sunrise = self._local_time(results.get("sunrise"), zone)
        sunset = self._local_time(results.get("sunset"), zone)
        if sunrise is None or sunset is None:
            logger.warning("Sun times API response lacked usable times: %s", results)
            return None

        seconds = results.get("day_length")
        hours = seconds / 3600.0 if isinstance(seconds, (int, float)) else _hours_between(sunrise, sunset)
        return SunTimes(date=day, sunrise=sunrise, sunset=sunset, day_length_hours=hours)

    @staticmethod
    def _local_time(stamp: Optional[str], zone: ZoneInfo) -> Optional[time]:
        if not isinstance(stamp, str) or not stamp:
            return None
        try:
            moment = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
        except ValueError:
            return None
        return moment.astimezone(zone).time().replace(second=0, microsecond=0)

    @staticmethod
    def fallback(day: date) -> SunTimes:
        sunrise, sunset = MONTHLY_SUN_TIMES[day.month]
        return SunTimes(
            date=day,
            sunrise=sunrise,
            sunset=sunset,
            day_length_hours=_hours_between(sunrise, sunset),
            source="fallback",
        )

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Sun times cache cleared")

    def set_location(self, latitude: float, longitude: float, timezone: Optional[str] = None) -> None:
        """Move to a new location; cached values are dropped."""
        self.latitude = latitude
        self.longitude = longitude
        if timezone:
            self.timezone = timezone
        self._cache.clear()
        logger.info("SunTimesService location updated (lat=%s, lng=%s)", latitude, longitude)
