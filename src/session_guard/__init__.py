import logging

from .clock import Clock, LoopClock
from .config import SessionConfig
from .config_exceptions import ConfigLoadError, ConfigValidationError
from .connection_monitor import (
    ConnectionMonitor,
    ConnectionState,
    ConnectivitySignalSource,
    ManualSignalSource,
    ReachabilityProbe,
)
from .credential_source import (
    CallableCredentialSource,
    CredentialSource,
    RefreshTokenCredentialSource,
)
from .credential_store import (
    Credential,
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
)
from .dispatcher import RequestDispatcher
from .error_handler import (
    AuthorizationDenied,
    CredentialRenewalFailed,
    CredentialUnavailable,
    NetworkUnreachable,
    QueueCleared,
    RequestEvicted,
    RequestTimeout,
    ServerError,
    SessionError,
)
from .notifier import ConsoleNotifier, Notifier
from .request_queue import RequestDescriptor, RequestQueue
from .session import AuthenticatedSession
from .token_manager import RenewalState, TokenLifecycleManager

# The host application configures handlers
logging.getLogger("session_guard").addHandler(logging.NullHandler())

__all__ = [
    "AuthenticatedSession",
    "AuthorizationDenied",
    "CallableCredentialSource",
    "Clock",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConnectionMonitor",
    "ConnectionState",
    "ConnectivitySignalSource",
    "ConsoleNotifier",
    "Credential",
    "CredentialRenewalFailed",
    "CredentialSource",
    "CredentialStore",
    "CredentialUnavailable",
    "FileCredentialStore",
    "LoopClock",
    "ManualSignalSource",
    "MemoryCredentialStore",
    "NetworkUnreachable",
    "Notifier",
    "QueueCleared",
    "ReachabilityProbe",
    "RefreshTokenCredentialSource",
    "RenewalState",
    "RequestDescriptor",
    "RequestDispatcher",
    "RequestEvicted",
    "RequestQueue",
    "RequestTimeout",
    "ServerError",
    "SessionConfig",
    "SessionError",
    "TokenLifecycleManager",
]
