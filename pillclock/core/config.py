from typing import Literal

import pytz
from pydantic import field_validator
from pydantic_settings import BaseSettings

from pillclock.scheduling.lead_time import MAX_LEAD_TIME


class Settings(BaseSettings):
    # Any SQLAlchemy async URL; postgres:// is rewritten to postgresql+asyncpg://
    database_url: str = "sqlite+aiosqlite:///./pillclock.db"
    sql_echo: bool = False

    # Device-local clock the engine resolves occurrences against
    timezone: str = "America/Toronto"

    # "calendar-native" platforms repeat on calendar fields,
    # "interval-only" ones can only repeat on a fixed number of seconds
    notification_capability: Literal["calendar-native", "interval-only"] = "calendar-native"
    notifications_permitted: bool = True
    os_call_timeout: float = 10.0

    default_lead_minutes: int = 0
    default_snooze_minutes: int = 15
    late_threshold_minutes: int = 20

    daily_reset_hour: int = 0
    daily_reset_minute: int = 1
    daily_reset_grace_seconds: int = 60 * 60 * 6

    log_level: str = "INFO"

    class Config:
        env_prefix = "PILLCLOCK_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("default_lead_minutes")
    @classmethod
    def _lead_within_a_day(cls, value: int) -> int:
        if not 0 <= value <= MAX_LEAD_TIME:
            raise ValueError(f"Lead time must be between 0 and {MAX_LEAD_TIME} minutes")
        return value

    @property
    def tz(self):
        return pytz.timezone(self.timezone)
