"""Exception types shared by the engine, the API client and the CLI."""
from typing import Any, Optional


class ValidationError(ValueError):
    """Operator input rejected locally; never reaches the network."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class AuthorizationError(Exception):
    """The remote service answered a request with 401 Unauthorized."""
    pass


class SessionLocked(AuthorizationError):
    """Raised instead of sending a request once the session gate is locked."""

    def __init__(self) -> None:
        super().__init__("Session locked; reload with fresh credentials")


class RequestError(Exception):
    """Any non-2xx response (other than 401) or transport failure."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None) -> None:
        self.status = status
        self.payload = payload
        super().__init__(message or "Request failed")


class RemoteReadError(Exception):
    """A delivered read result that carries an error message instead of data."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
