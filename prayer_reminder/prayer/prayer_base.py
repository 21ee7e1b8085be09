import asyncio
import requests
from typing import Dict, Any, Optional
import logging
from abc import ABC, abstractmethod

from .errors import FormatError, SourceDataInvalid, SourceUnavailable
from .models import PRAYER_NAMES, JurisprudenceSchool, PrayerTimes
from .timeutils import api_date, normalize_clock, parse_clock


class PrayerTimesSource(ABC):
    """Base class for prayer time lookups"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def fetch_times(
        self,
        lat: float,
        lng: float,
        method: int,
        school: JurisprudenceSchool,
        local_date: str,
    ) -> PrayerTimes:
        """Get prayer times for one date
        Args:
            lat, lng: coordinates of the device
            method: calculation method id
            school: Asr convention
            local_date: device-local YYYY-MM-DD
        Returns:
            PrayerTimes with validated HH:MM values and the lookup's timezone
        Raises:
            SourceUnavailable, SourceDataInvalid
        """
        pass


class AladhanBackend(PrayerTimesSource):
    """Prayer times backend using api.aladhan.com"""

    DEFAULT_API_URL = "https://api.aladhan.com/v1"

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        super().__init__(config)
        self.api_url = str(config.get("api_url") or self.DEFAULT_API_URL).rstrip("/")
        self.timeout = float(config.get("timeout", 15))
        self.session = session or requests.Session()

    async def fetch_times(self, lat, lng, method, school, local_date) -> PrayerTimes:
        return await asyncio.to_thread(self._fetch_times, lat, lng, method, school, local_date)

    def _fetch_times(
        self,
        lat: float,
        lng: float,
        method: int,
        school: JurisprudenceSchool,
        local_date: str,
    ) -> PrayerTimes:
        url = f"{self.api_url}/timings/{api_date(local_date)}"
        params = {
            'latitude': lat,
            'longitude': lng,
            'method': int(method),
            'school': int(school),
        }

        self.logger.info(f"Making API request to {url} with params {params}")
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SourceUnavailable(f"Failed to fetch prayer times: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise SourceDataInvalid(f"Prayer times response is not JSON: {e}") from e

        if not isinstance(data, dict) or data.get('code') != 200:
            code = data.get('code') if isinstance(data, dict) else None
            raise SourceUnavailable(f"Failed to fetch prayer times (status code {code})")

        return self._parse_response(data)

    def _parse_response(self, data: Dict[str, Any]) -> PrayerTimes:
        payload = data.get('data')
        if not isinstance(payload, dict):
            raise SourceDataInvalid("Prayer times response has no data")

        timings = payload.get('timings') or {}
        missing = [prayer for prayer in PRAYER_NAMES if not timings.get(prayer)]
        if missing:
            raise SourceDataInvalid(f"Prayer times response is missing {', '.join(missing)}")

        timezone = (payload.get('meta') or {}).get('timezone')
        if not timezone:
            raise SourceDataInvalid("Prayer times response is missing the timezone")

        times = {}
        for prayer in PRAYER_NAMES:
            try:
                hhmm = normalize_clock(timings[prayer])
                parse_clock(hhmm)
            except FormatError as e:
                raise SourceDataInvalid(f"{prayer}: {e}") from e
            times[prayer] = hhmm

        readable = (payload.get('date') or {}).get('readable')
        self.logger.info(f"Fetched prayer times for {readable} tz={timezone}: {times}")
        return PrayerTimes(times=times, timezone=str(timezone))
