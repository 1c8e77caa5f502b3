from typing import Any


class ClickStatsError(Exception):
    """Base error for the click analytics pipeline. All fatal faults inherit from this."""

    error_code: str = "clickstats_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class SourceError(ClickStatsError):
    """The byte source could not be opened or read."""

    error_code = "source_error"

    def __init__(self, path: str, reason: str):
        super().__init__(f"cannot read {path}: {reason}", path=path)
        self.path = path


class FramingError(ClickStatsError):
    """The event source is not framed as a top-level array."""

    error_code = "framing_error"


class DecodeError(ClickStatsError):
    """A record is structurally broken. ``index`` is None when the failing record is unknown."""

    error_code = "decode_error"

    def __init__(self, index: int | None, reason: str):
        where = f"record {index}" if index is not None else "records"
        super().__init__(f"error decoding {where}: {reason}", index=index)
        self.index = index


class TimestampError(ClickStatsError):
    error_code = "timestamp_error"

    def __init__(self, timestamp: str):
        super().__init__(f"error parsing timestamp {timestamp!r}", timestamp=timestamp)
        self.timestamp = timestamp


class ConfigError(ClickStatsError):
    error_code = "config_error"
