"""
Analytics error taxonomy.

ValidationError is raised before any store call when request parameters or
metric samples are malformed. StoreUnavailableError wraps every record-store
failure, timeouts included; the engine never retries and never returns
partial results.
"""


class AnalyticsError(Exception):
    """Base class for analytics failures"""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AnalyticsError):
    """Malformed window parameters, grouping parameters or metric samples"""

    status_code = 400

    @property
    def public_message(self) -> str:
        return self.message


class StoreUnavailableError(AnalyticsError):
    """Record store query failed or timed out"""

    def __init__(self, message: str, operation: str = "", cause: Exception = None):
        super().__init__(message)
        self.operation = operation
        self.cause = cause
