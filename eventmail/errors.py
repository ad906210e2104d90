from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EventMailErrorCode:
    code: str
    message: str


EVT_001_STORE_UNAVAILABLE = EventMailErrorCode(
    "EVT_001_STORE_UNAVAILABLE",
    "Backing store could not be reached.",
)
EVT_002_ACTION_FAILED = EventMailErrorCode(
    "EVT_002_ACTION_FAILED",
    "Job action failed after exhausting its attempts.",
)
EVT_003_NOTIFICATION_FAILED = EventMailErrorCode(
    "EVT_003_NOTIFICATION_FAILED",
    "Notifier failed to deliver the alert.",
)
EVT_004_CONFIGURATION_INVALID = EventMailErrorCode(
    "EVT_004_CONFIGURATION_INVALID",
    "Configuration is missing or malformed.",
)
EVT_005_PARAMETER_SCHEMA_INVALID = EventMailErrorCode(
    "EVT_005_PARAMETER_SCHEMA_INVALID",
    "Stored procedure parameter schema is malformed.",
)


class EventMailError(RuntimeError):
    default_code = EVT_004_CONFIGURATION_INVALID

    def __init__(self, detail: str = "", *, err: EventMailErrorCode | None = None) -> None:
        err = err or self.default_code
        suffix = f" detail={detail}" if detail else ""
        super().__init__(f"{err.code}: {err.message}{suffix}")
        self.err = err
        self.detail = detail


class StoreUnavailable(EventMailError):
    default_code = EVT_001_STORE_UNAVAILABLE


class ActionExecutionFailure(EventMailError):
    default_code = EVT_002_ACTION_FAILED


class NotificationFailure(EventMailError):
    default_code = EVT_003_NOTIFICATION_FAILED


class ConfigurationError(EventMailError):
    default_code = EVT_004_CONFIGURATION_INVALID


class ParameterSchemaError(ConfigurationError):
    default_code = EVT_005_PARAMETER_SCHEMA_INVALID


class Cancelled(Exception):
    """Raised at a suspension point once the owning loop has been cancelled."""
