"""
Error taxonomy for the refresh-and-reschedule pipeline.
"""


class PrayerReminderError(Exception):
    """Base class for pipeline errors. str(e) is suitable to show to the user."""


class PermissionDenied(PrayerReminderError):
    """Location or notification permission was refused."""


class LocationUnavailable(PrayerReminderError):
    """The location fix could not be obtained."""


class SourceUnavailable(PrayerReminderError):
    """The prayer-time lookup could not be reached or reported failure."""


class SourceDataInvalid(PrayerReminderError):
    """The prayer-time lookup answered with a malformed or incomplete body."""


class FormatError(PrayerReminderError):
    """A clock string could not be parsed."""


class PersistenceError(PrayerReminderError):
    """Reading or writing the persisted schedule failed."""
