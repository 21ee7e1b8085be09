"""
Location providers: where the device is, as a latitude/longitude fix.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .errors import LocationUnavailable, PermissionDenied
from .models import Coordinates


class LocationProvider(ABC):
    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.allowed = bool(config.get("allow", True))
        self.logger = logging.getLogger(self.__class__.__name__)

    async def request_permission(self) -> bool:
        return self.allowed

    async def current_position(self) -> Coordinates:
        """Return the current fix. Raises PermissionDenied or LocationUnavailable."""
        if not self.allowed:
            raise PermissionDenied("Location permission denied")
        coords = await self._locate()
        self.logger.debug(f"Location fix: {coords.latitude:.5f}, {coords.longitude:.5f}")
        return coords

    @abstractmethod
    async def _locate(self) -> Coordinates:
        pass

    @staticmethod
    def validate(lat: Any, lon: Any) -> Coordinates:
        try:
            lat, lon = float(lat), float(lon)
        except (TypeError, ValueError):
            raise LocationUnavailable("Invalid latitude or longitude values") from None
        if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
            raise LocationUnavailable("Latitude must be between -90 and 90, longitude between -180 and 180")
        return Coordinates(latitude=lat, longitude=lon)


class ConfiguredLocationProvider(LocationProvider):
    """Fixed coordinates from the location section of the config."""

    async def _locate(self) -> Coordinates:
        lat, lon = self.config.get("lat"), self.config.get("lon")
        if lat is None or lon is None:
            raise LocationUnavailable("Latitude and longitude must be configured")
        return self.validate(lat, lon)


class IpLocationProvider(LocationProvider):
    """Approximate position from the public IP address (ip-api.com)."""

    URL = "http://ip-api.com/json/"

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        super().__init__(config)
        self.session = session or requests.Session()
        self.timeout = float(config.get("timeout", 5))

    async def _locate(self) -> Coordinates:
        return await asyncio.to_thread(self._lookup)

    def _lookup(self) -> Coordinates:
        try:
            response = self.session.get(self.URL, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise LocationUnavailable(f"IP geolocation failed: {e}") from e
        if data.get("status") != "success":
            raise LocationUnavailable(f"IP geolocation failed: {data.get('message', 'unknown error')}")
        return self.validate(data.get("lat"), data.get("lon"))


def create_location_provider(config: Dict[str, Any]) -> LocationProvider:
    """Create location provider based on configuration"""
    source = config.get("source", "config")
    if source == "config":
        return ConfiguredLocationProvider(config)
    elif source == "ip":
        return IpLocationProvider(config)
    else:
        raise ValueError(f"Unknown location source: {source}")
