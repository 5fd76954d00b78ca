from typing import Optional


class ReminderError(Exception):
    """Base class for every error raised by the reminder engine."""


class InvalidTimeFormat(ReminderError, ValueError):
    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid time format: {value}. Expected HH:MM")


class InvalidTimeValue(ReminderError, ValueError):
    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid time values: {value}. Hours: 0-23, Minutes: 0-59")


class PermissionDenied(ReminderError):
    def __init__(self, message: str = "Notification permissions denied"):
        super().__init__(message)


class SchedulingFailed(ReminderError):
    def __init__(self, medication_id: str, reason: Optional[str] = None):
        self.medication_id = medication_id
        self.reason = reason
        message = f"Failed to schedule reminder for {medication_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ResetFailed(ReminderError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to reset daily statuses: {reason}")
