# src/session_guard/error_handler.py

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import httpx

lib_logger = logging.getLogger("session_guard")


class SessionError(Exception):
    """Base class for every failure surfaced by the session layer."""

    pass


class CredentialUnavailable(SessionError):
    """Raised when there is no session credential to attach to a request."""

    pass


class CredentialRenewalFailed(SessionError):
    """
    Raised when the credential source could not issue a fresh credential
    after all renewal attempts. Fatal to the session: the credential has been
    cleared and the host application told to log out.

    Attributes:
        attempts: Number of renewal attempts made
        last_error: The exception raised by the final attempt
    """

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed to refresh credential after {attempts} attempt(s): {last_error}")


class RequestTimeout(SessionError):
    """Raised when a request kept timing out after every retry."""

    def __init__(self, method: str, url: str, attempts: int):
        self.method = method
        self.url = url
        self.attempts = attempts
        super().__init__(f"{method} {url} timed out after {attempts} attempt(s)")


class ServerError(SessionError):
    """Raised when the server kept answering 5xx after every retry."""

    def __init__(self, method: str, url: str, status_code: Optional[int], attempts: int):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(
            f"{method} {url} failed with HTTP {status_code} after {attempts} attempt(s)"
        )


class NetworkUnreachable(SessionError):
    """
    Signals that no response arrived at all. Never surfaced to callers of
    the dispatcher: it converts the call into a queued, pending request.
    """

    pass


class AuthorizationDenied(SessionError):
    """Raised when the server keeps rejecting the credential, or the verified subject is not allowed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class QueueCleared(SessionError):
    """Delivered to every queued request discarded by an explicit teardown."""

    def __init__(self, message: str = "Request queue cleared"):
        super().__init__(message)


class RequestEvicted(QueueCleared):
    """Delivered to the oldest queued request when the queue reaches its bound."""

    def __init__(self, max_size: int):
        self.max_size = max_size
        super().__init__(f"Request evicted from offline queue (limit {max_size} entries)")


class ErrorClass(str, Enum):
    AUTHORIZATION = "authorization"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    NETWORK_UNREACHABLE = "network_unreachable"
    CLIENT_ERROR = "client_error"


# Error classes the dispatcher recovers from; anything else goes straight to the caller
RECOVERABLE_ERROR_CLASSES = frozenset(
    {
        ErrorClass.AUTHORIZATION,
        ErrorClass.TIMEOUT,
        ErrorClass.SERVER_ERROR,
        ErrorClass.NETWORK_UNREACHABLE,
    }
)


def mask_credential(credential: Optional[str]) -> str:
    """
    Mask a credential for safe display in logs and error messages.
    Shows only the last 6 characters (e.g., "...xyz123").
    """
    if not credential:
        return "<none>"
    if len(credential) > 6:
        return f"...{credential[-6:]}"
    return "***"


class ClassifiedError:
    """A structured representation of a failed transport attempt."""

    def __init__(
        self,
        error_class: ErrorClass,
        original: Union[BaseException, httpx.Response],
        status_code: Optional[int] = None,
    ):
        self.error_class = error_class
        self.original = original
        self.status_code = status_code

    @property
    def response(self) -> Optional[httpx.Response]:
        return self.original if isinstance(self.original, httpx.Response) else None

    @property
    def is_recoverable(self) -> bool:
        return self.error_class in RECOVERABLE_ERROR_CLASSES

    def __str__(self):
        return (
            f"ClassifiedError(class={self.error_class.value}, status={self.status_code}, "
            f"original={self.original!r})"
        )


def classify_error(outcome: Union[BaseException, httpx.Response]) -> ClassifiedError:
    """
    Classifies a failed attempt into exactly one error class.

    - 401 response: authorization (renew credential, retry)
    - 5xx response: server_error (linear backoff, retry)
    - other 4xx: client_error (not retried)
    - httpx.TimeoutException: timeout (exponential backoff, retry)
    - any other httpx.TransportError: network_unreachable (queue for replay)

    Anything else is not a transport failure and is re-raised by the caller.
    """
    if isinstance(outcome, httpx.Response):
        status_code = outcome.status_code
        if status_code == 401:
            return ClassifiedError(ErrorClass.AUTHORIZATION, outcome, status_code)
        if status_code >= 500:
            return ClassifiedError(ErrorClass.SERVER_ERROR, outcome, status_code)
        return ClassifiedError(ErrorClass.CLIENT_ERROR, outcome, status_code)

    if isinstance(outcome, httpx.HTTPStatusError):
        return classify_error(outcome.response)

    # TimeoutException is a TransportError subclass, so it must be checked first
    if isinstance(outcome, httpx.TimeoutException):
        return ClassifiedError(ErrorClass.TIMEOUT, outcome)

    if isinstance(outcome, httpx.TransportError):
        return ClassifiedError(ErrorClass.NETWORK_UNREACHABLE, outcome)

    raise TypeError(f"Cannot classify {type(outcome).__name__} as a transport failure")


@dataclass
class AttemptResult:
    """Outcome of one transmission: exactly one of response or error is set."""

    response: Optional[httpx.Response] = None
    error: Optional[ClassifiedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_response(cls, response: httpx.Response) -> "AttemptResult":
        if response.status_code < 400:
            return cls(response=response)
        return cls(error=classify_error(response))

    @classmethod
    def from_exception(cls, exc: BaseException) -> "AttemptResult":
        return cls(error=classify_error(exc))
