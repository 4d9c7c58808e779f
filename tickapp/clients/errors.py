"""Errors raised by the upstream connection pool."""


class PoolError(Exception):
    """Base class for connection pool failures."""


class NoConnectionError(PoolError):
    """No pooled connection is open."""


class RequestTimeoutError(PoolError):
    """No response arrived for a request within the timeout."""

    def __init__(self, req_id: int, timeout: float):
        super().__init__(f"Request {req_id} timed out after {timeout}s")
        self.req_id = req_id
        self.timeout = timeout


class UpstreamError(PoolError):
    """The upstream answered a request with an error payload."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
