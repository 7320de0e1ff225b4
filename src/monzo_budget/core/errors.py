class MonzoBudgetError(Exception):
    """Base class for all errors raised by monzo_budget."""


class InvalidConfigError(MonzoBudgetError, ValueError):
    """A configuration value is missing or out of range. Never retried."""


class RecordNotFoundError(MonzoBudgetError, KeyError):
    def __init__(self, table: str, record_id: str) -> None:
        super().__init__(f"{table} record '{record_id}' not found")
        self.table = table
        self.record_id = record_id

    def __str__(self) -> str:
        return str(self.args[0])


class RemoteAPIError(MonzoBudgetError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class AuthenticationError(RemoteAPIError):
    """The bearer token was rejected or is missing."""


class RateLimitError(RemoteAPIError):
    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class InvalidTimeRangeError(RemoteAPIError):
    """The requested since/before window is wider than the API accepts."""


class TransportFailure(RemoteAPIError):
    """The request never produced an HTTP response."""


class SyncError(MonzoBudgetError):
    def __init__(self, message: str, *, account_id: str | None = None) -> None:
        super().__init__(message)
        self.account_id = account_id


class RetriesExhaustedError(SyncError):
    pass


class TimeRangeError(SyncError):
    pass
