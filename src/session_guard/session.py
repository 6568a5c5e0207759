# src/session_guard/session.py

import logging
from typing import Any, Callable, Dict, Optional

import httpx

from .clock import Clock, LoopClock
from .config import SessionConfig
from .connection_monitor import (
    ConnectionMonitor,
    ConnectionState,
    ManualSignalSource,
    ReachabilityProbe,
)
from .credential_source import CredentialSource
from .credential_store import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .dispatcher import RequestDispatcher
from .error_handler import AuthorizationDenied, SessionError
from .notifier import ConsoleNotifier, Notifier
from .request_queue import RequestDescriptor, RequestQueue
from .token_manager import TokenLifecycleManager

lib_logger = logging.getLogger("session_guard")


class AuthenticatedSession:
    """
    Composition root for the authenticated request layer.

    Builds exactly one credential store, token lifecycle manager, connection
    monitor, request queue and dispatcher, wires them together, and exposes
    the caller-facing API. Use as an async context manager to release the
    HTTP client and background tasks.
    """

    def __init__(
        self,
        source: CredentialSource,
        config: Optional[SessionConfig] = None,
        store: Optional[CredentialStore] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_logout: Optional[Callable[[], None]] = None,
    ):
        self.config = config or SessionConfig()
        self.clock = clock or LoopClock()
        self.notifier = notifier or ConsoleNotifier(
            clock=self.clock, dedupe_seconds=self.config.notify_dedupe_seconds
        )
        self.store = store or self._build_store()
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.request_timeout)
        self._on_logout = on_logout
        self.subject: Optional[Dict[str, Any]] = None

        self.monitor = ConnectionMonitor(notifier=self.notifier)
        self.signals = ManualSignalSource(self.monitor)
        self.queue = RequestQueue(max_size=self.config.queue_max_size, clock=self.clock)
        self.token_manager = TokenLifecycleManager(
            source=source,
            store=self.store,
            config=self.config,
            clock=self.clock,
            notifier=self.notifier,
            on_session_expired=self._on_session_expired,
        )
        self.dispatcher = RequestDispatcher(
            http_client=self.http_client,
            token_manager=self.token_manager,
            queue=self.queue,
            monitor=self.monitor,
            config=self.config,
            clock=self.clock,
            notifier=self.notifier,
            on_force_logout=self.logout,
        )
        self.probe: Optional[ReachabilityProbe] = None
        if self.config.probe_enabled:
            self.probe = ReachabilityProbe(
                self.monitor,
                self.http_client,
                self.config.base_url,
                clock=self.clock,
                interval=self.config.probe_interval_seconds,
            )

    def _build_store(self) -> CredentialStore:
        if not self.config.credential_file:
            return MemoryCredentialStore()
        return FileCredentialStore(
            self.config.credential_file,
            clock=self.clock,
            max_age_seconds=self.config.credential_max_age_seconds,
            secure=self.config.secure_only,
            same_site=self.config.same_site,
        )

    async def bootstrap(self) -> Dict[str, Any]:
        """
        Sign the session in: force a fresh credential, have the backend verify
        it, and check the subject's role. Any failure logs the session out
        before the error propagates.
        """
        try:
            await self.token_manager.start(force_refresh=True)
            response = await self.dispatcher.send(
                RequestDescriptor("POST", self.config.verify_path, json={}, embed_credential=True),
                defer_when_offline=False,
            )
            data = response.json()
            if not (data.get("success") or data.get("valid")):
                raise AuthorizationDenied(
                    data.get("message") or "Token verification failed", response.status_code
                )
            subject = data.get("data") or {}
            role = subject.get("role")
            if self.config.allowed_roles and role not in self.config.allowed_roles:
                lib_logger.error(f"User role not allowed: {role}")
                raise AuthorizationDenied(f"Role '{role}' is not authorized for this application")
        except Exception as e:
            lib_logger.error(f"Session bootstrap failed: {e}")
            self.logout()
            raise

        self.subject = subject
        lib_logger.info(f"Session verified for role '{role}'")
        return subject

    def logout(self) -> None:
        """Tear down the credential, timers and queue. Pending queued calls get QueueCleared."""
        self.dispatcher.reset()
        self.token_manager.teardown()
        self.queue.clear()
        self.subject = None
        if self._on_logout:
            self._on_logout()

    def _on_session_expired(self, error: SessionError) -> None:
        self.dispatcher.reset()
        self.queue.clear()
        self.subject = None
        if self._on_logout:
            self._on_logout()

    async def extend_session(self) -> bool:
        try:
            await self.token_manager.renew_token()
        except SessionError as e:
            lib_logger.error(f"Failed to extend session: {e}")
            self.notifier.error("Failed to extend session. Please log in again.")
            return False
        self.notifier.success("Session extended successfully")
        return True

    def session_time_remaining(self) -> int:
        return self.token_manager.session_time_remaining()

    def on_visibility_regained(self) -> None:
        self.token_manager.on_visibility_regained()

    def get_connection_status(self) -> ConnectionState:
        return self.monitor.state

    def get_queue_length(self) -> int:
        return len(self.queue)

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.dispatcher.get(path, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.dispatcher.post(path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.dispatcher.put(path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.dispatcher.patch(path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.dispatcher.delete(path, **kwargs)

    def get_status(self) -> Dict[str, Any]:
        return {
            "connection": self.monitor.state.value,
            "queue_length": len(self.queue),
            "session_minutes_remaining": self.session_time_remaining(),
            "subject": self.subject,
            "token": self.token_manager.get_status(),
        }

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Stop background work, reject queued calls and close the HTTP client. The stored credential is kept."""
        self.token_manager.stop_timers()
        self.queue.cancel_drain()
        # Nothing can be replayed once closed
        self.queue.clear()
        if self.probe:
            await self.probe.stop()
        if self._owns_http_client and self.http_client:
            await self.http_client.aclose()
