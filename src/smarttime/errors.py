"""Exception hierarchy shared across SmartTime components."""

from __future__ import annotations


class SmartTimeError(RuntimeError):
    """Base class for SmartTime errors."""


class SettingsLoadError(SmartTimeError):
    """Raised when a settings file cannot be read or validated."""


class LockTimeoutError(SmartTimeError):
    """Raised when the data directory lock cannot be acquired in time."""


class InvalidRequestError(SmartTimeError):
    """Raised when an operation request cannot be applied because it is malformed."""


__all__ = [
    "InvalidRequestError",
    "LockTimeoutError",
    "SettingsLoadError",
    "SmartTimeError",
]
