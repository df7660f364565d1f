from __future__ import annotations

from datetime import date, datetime, timedelta

from spontaneous_connect.scheduling.models import (
    UserSchedulingProfile,
    ValidationResult,
    Weekday,
    as_utc,
)
from spontaneous_connect.shared.exceptions import ConfigurationError

OUTSIDE_DAILY_WINDOW = "outside_daily_window"
INACTIVE_DAY = "inactive_day"


class TimeWindowEvaluator:
    """Checks instants against a profile's daily window and active weekdays.

    Pure: every answer depends only on the instant and the profile. Returned
    instants are aware UTC datetimes.
    """

    def evaluate(self, instant: datetime, profile: UserSchedulingProfile) -> ValidationResult:
        local = self.to_local(instant, profile)
        window = profile.daily_window
        time_of_day = local.time()

        if not window.contains(time_of_day):
            if time_of_day < window.morning_start:
                nearest = self.morning_start_on(local.date(), profile)
            else:
                nearest = self.morning_start_on(local.date() + timedelta(days=1), profile)
            return ValidationResult.rejected(OUTSIDE_DAILY_WINDOW, nearest)

        if Weekday.of(local) not in profile.active_days:
            return ValidationResult.rejected(INACTIVE_DAY, self.next_active_morning(local.date(), profile))

        return ValidationResult.accepted()

    def clamp(self, instant: datetime, profile: UserSchedulingProfile) -> datetime:
        """Move ``instant`` into the daily window, ignoring active days."""
        local = self.to_local(instant, profile)
        window = profile.daily_window
        if local.time() < window.morning_start:
            return self.morning_start_on(local.date(), profile)
        if local.time() >= window.evening_end:
            return self.morning_start_on(local.date() + timedelta(days=1), profile)
        return as_utc(instant)

    def next_active_morning(self, after: date, profile: UserSchedulingProfile) -> datetime:
        """Morning start of the first active weekday strictly after ``after``."""
        if not profile.active_days:
            raise ConfigurationError(
                "Profile has no active days; no call can ever be scheduled",
                details={"timezone": profile.timezone},
            )
        for offset in range(1, 8):
            candidate = after + timedelta(days=offset)
            if Weekday.of(candidate) in profile.active_days:
                return self.morning_start_on(candidate, profile)
        raise ConfigurationError("No active weekday found within a week")

    @staticmethod
    def morning_start_on(local_date: date, profile: UserSchedulingProfile) -> datetime:
        local = datetime.combine(local_date, profile.daily_window.morning_start, tzinfo=profile.tz)
        return as_utc(local)

    @staticmethod
    def to_local(instant: datetime, profile: UserSchedulingProfile) -> datetime:
        return as_utc(instant).astimezone(profile.tz)
