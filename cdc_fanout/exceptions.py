"""Custom exception hierarchy for cdc-fanout."""


class CdcFanoutError(Exception):
    """Base exception for all cdc-fanout errors."""


class DecodeError(CdcFanoutError):
    """Raised when a change record carries an unrecognized or malformed value."""


class ValidationError(CdcFanoutError):
    """Raised when a change record lacks required identity fields."""

    def __init__(self, message: str, missing_fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_fields = missing_fields or []


class SinkError(CdcFanoutError):
    """Raised when a sink operation fails.

    ``retryable`` tells the dispatcher whether redelivering the event can
    succeed (timeouts, throttling) or not (documents rejected by the backend).
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProvisioningError(SinkError):
    """Raised when a sink cannot create its backing index scope."""


class ConfigurationError(CdcFanoutError):
    """Raised when configuration is invalid or missing."""


class BatchRedeliveryError(CdcFanoutError):
    """Raised to make the transport redeliver the whole batch."""

    def __init__(self, message: str, record_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.record_ids = record_ids or []
