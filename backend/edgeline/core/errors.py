from datetime import datetime


class EdgelineError(Exception):
    """Base error for pipeline failures that callers are expected to handle."""


class ConfigurationError(EdgelineError):
    """Missing or invalid configuration; raised before any state is touched."""


class CalibrationError(ConfigurationError):
    """Calibration table cannot produce a win probability."""


class OddsApiError(EdgelineError):
    def __init__(self, sport_key: str, timestamp: datetime, reason: str) -> None:
        self.sport_key = sport_key
        self.timestamp = timestamp
        self.reason = reason
        super().__init__(f"{sport_key} @ {timestamp.isoformat()}: {reason}")


class OddsApiHttpError(OddsApiError):
    def __init__(self, sport_key: str, timestamp: datetime, status_code: int, body_preview: str = "") -> None:
        self.status_code = status_code
        self.body_preview = body_preview
        super().__init__(sport_key, timestamp, f"HTTP {status_code}")


class OddsApiRetriesExhausted(OddsApiError):
    def __init__(self, sport_key: str, timestamp: datetime, attempts: int, last_reason: str) -> None:
        self.attempts = attempts
        self.last_reason = last_reason
        super().__init__(sport_key, timestamp, f"gave up after {attempts} attempts ({last_reason})")
