"""
Schedule state and value types shared by the pipeline.
ScheduleState is the single persisted record; validation enforces its invariants.
"""
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Union

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import FormatError
from .timeutils import parse_clock

# Display order; scheduling does not depend on it
PRAYER_NAMES = ("Fajr", "Dhuhr", "Asr", "Maghrib", "Isha")

DEFAULT_CALCULATION_METHOD = 20


class JurisprudenceSchool(IntEnum):
    """Asr convention; the value is the lookup's school id."""
    SHAFI = 0
    HANAFI = 1

    @classmethod
    def parse(cls, value: Union[str, int, "JurisprudenceSchool"]) -> "JurisprudenceSchool":
        """Accept 0/1, "shafi"/"hanafi" (any case) or a member."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and not value.strip().isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown school: {value}") from None
        return cls(int(value))

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PrayerTimes:
    """Normalized lookup result: prayer name -> HH:MM, plus the lookup's IANA timezone."""
    times: Dict[str, str]
    timezone: str


class ScheduleState(BaseModel):
    """Last computed schedule, persisted as one JSON record."""

    model_config = ConfigDict(frozen=True)

    schedule_date: str  # device-local YYYY-MM-DD
    latitude: float
    longitude: float
    calculation_method: int
    jurisprudence_school: JurisprudenceSchool
    times: Dict[str, str]
    timezone: str

    @field_validator("jurisprudence_school", mode="before")
    @classmethod
    def _parse_school(cls, value):
        return JurisprudenceSchool.parse(value)

    @field_validator("times")
    @classmethod
    def _check_times(cls, value: Dict[str, str]) -> Dict[str, str]:
        if set(value) != set(PRAYER_NAMES):
            raise ValueError(f"times must contain exactly {', '.join(PRAYER_NAMES)}")
        for hhmm in value.values():
            try:
                parse_clock(hhmm)
            except FormatError as e:
                raise ValueError(str(e)) from e
        # Keep display order stable regardless of input order
        return {name: value[name] for name in PRAYER_NAMES}
