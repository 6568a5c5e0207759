# src/session_guard/dispatcher.py

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from .clock import Clock, LoopClock
from .config import SessionConfig
from .connection_monitor import ConnectionMonitor
from .credential_store import Credential
from .error_handler import (
    AttemptResult,
    AuthorizationDenied,
    ClassifiedError,
    CredentialUnavailable,
    ErrorClass,
    NetworkUnreachable,
    RequestTimeout,
    ServerError,
)
from .failure_logger import log_failure
from .notifier import Notifier
from .request_queue import RequestDescriptor, RequestQueue
from .token_manager import TokenLifecycleManager

lib_logger = logging.getLogger("session_guard")


@dataclass
class RetryContext:
    """Per-call bookkeeping for the retry loop."""

    started_at: float
    transmissions: int = 0
    failures: Counter = field(default_factory=Counter)

    def record(self, error_class: ErrorClass) -> int:
        """Count a failure of this class; returns how many this call has seen."""
        self.failures[error_class] += 1
        return self.failures[error_class]


class RequestDispatcher:
    """
    The single entry point for authenticated calls.

    Every attempt attaches a fresh look at the credential, transmits, and
    classifies the outcome:
    - 401: renew the credential and resend, at most auth_max_retries times,
      then force logout and raise AuthorizationDenied
    - timeout: resend after exponential backoff (1s, 2s, 4s), then raise RequestTimeout
    - 5xx: resend after linear backoff (2s, 4s), then raise ServerError
    - no response: mark the connection offline and park the call in the queue;
      the caller keeps waiting until it is replayed or the queue is cleared
    - other 4xx: raise httpx.HTTPStatusError without retrying
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: TokenLifecycleManager,
        queue: RequestQueue,
        monitor: ConnectionMonitor,
        config: Optional[SessionConfig] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        on_force_logout: Optional[Callable[[], None]] = None,
    ):
        self._http_client = http_client
        self._token_manager = token_manager
        self._queue = queue
        self._monitor = monitor
        self._config = config or SessionConfig()
        self._clock = clock or LoopClock()
        self._notifier = notifier
        self._on_force_logout = on_force_logout
        # Bumped by reset(); results of attempts started before it are discarded
        self._generation = 0

        monitor.add_online_listener(self.drain_queue)

    def build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def reset(self) -> None:
        self._generation += 1

    def drain_queue(self) -> None:
        """Replay queued calls through the full pipeline, oldest first."""
        if len(self._queue):
            self._queue.drain(self._replay)

    async def _replay(self, descriptor: RequestDescriptor) -> httpx.Response:
        try:
            return await self._execute(descriptor)
        except NetworkUnreachable:
            # The queue keeps the entry; stop sending until the network returns
            self._monitor.mark_unreachable(notify=False)
            raise

    async def send(
        self, descriptor: RequestDescriptor, defer_when_offline: bool = True
    ) -> httpx.Response:
        """
        Dispatch a call. While offline (or if no response arrives) the call is
        queued and this waits until it is replayed or the queue is cleared;
        with defer_when_offline=False NetworkUnreachable is raised instead.
        """
        if not defer_when_offline:
            return await self._execute(descriptor)

        if not self._monitor.is_online:
            lib_logger.info(
                f"Connection is {self._monitor.state.value}; queueing {descriptor} without sending"
            )
            return await self._queue.enqueue(descriptor)

        try:
            return await self._execute(descriptor)
        except NetworkUnreachable:
            if self._notifier:
                self._notifier.warning(
                    "Connection lost. Request will be retried when connection is restored."
                )
            self._monitor.mark_unreachable(notify=False)
            return await self._queue.enqueue(descriptor)

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.send(RequestDescriptor("GET", path, **kwargs))

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.send(RequestDescriptor("POST", path, json=json, **kwargs))

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.send(RequestDescriptor("PUT", path, json=json, **kwargs))

    async def patch(self, path: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.send(RequestDescriptor("PATCH", path, json=json, **kwargs))

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.send(RequestDescriptor("DELETE", path, **kwargs))

    def _should_embed_credential(self, descriptor: RequestDescriptor) -> bool:
        if descriptor.embed_credential:
            return True
        return descriptor.method.upper() == "POST" and descriptor.path.rstrip("/").endswith(
            self._config.verify_path.rstrip("/")
        )

    async def _transmit(
        self, descriptor: RequestDescriptor, url: str, credential: Credential
    ) -> AttemptResult:
        headers: Dict[str, str] = dict(descriptor.headers)
        headers["Authorization"] = f"Bearer {credential.value}"

        body = descriptor.json
        if self._should_embed_credential(descriptor):
            body = {**(body or {}), "token": credential.value}

        try:
            response = await self._http_client.request(
                descriptor.method,
                url,
                json=body,
                params=descriptor.params,
                headers=headers,
                timeout=descriptor.timeout or self._config.request_timeout,
            )
        except httpx.TransportError as e:
            return AttemptResult.from_exception(e)
        return AttemptResult.from_response(response)

    async def _execute(self, descriptor: RequestDescriptor) -> httpx.Response:
        """
        Run one call through the retry loop until it succeeds or fails for good.

        Raises NetworkUnreachable when no response arrived at all; send() and
        the queue drain turn that into a (re)queued entry.
        """
        url = self.build_url(descriptor.path)
        ctx = RetryContext(started_at=self._clock.time())

        while True:
            generation = self._generation
            credential = await self._token_manager.get_valid_token()
            if self._config.secure_only and not url.startswith("https://"):
                raise CredentialUnavailable(
                    f"Refusing to send the session credential over insecure transport: {url}"
                )

            ctx.transmissions += 1
            result = await self._transmit(descriptor, url, credential)

            if generation != self._generation:
                lib_logger.info(f"Discarding result of {descriptor}: session ended while in flight")
                raise CredentialUnavailable("Session ended while the request was in flight")

            if result.ok:
                if not self._monitor.is_online:
                    self._monitor.mark_reachable()
                return result.response

            error = result.error
            if not error.is_recoverable:
                # The request itself is wrong, retrying cannot help
                error.response.raise_for_status()
            count = ctx.record(error.error_class)

            if error.error_class == ErrorClass.AUTHORIZATION:
                if count <= self._config.auth_max_retries:
                    lib_logger.warning(
                        f"{descriptor} rejected credential (HTTP 401), renewing and retrying "
                        f"({count}/{self._config.auth_max_retries})"
                    )
                    await self._token_manager.renew_token()
                    continue
                self._fail(descriptor, url, ctx, error, credential)
                self._force_logout()
                raise AuthorizationDenied(
                    f"{descriptor.method} {url} still unauthorized after "
                    f"{self._config.auth_max_retries} credential renewal(s)",
                    status_code=error.status_code,
                )

            if error.error_class == ErrorClass.TIMEOUT:
                if count <= self._config.timeout_max_retries:
                    delay = min(
                        self._config.timeout_backoff_base * (2 ** (count - 1)),
                        self._config.timeout_backoff_cap,
                    )
                    lib_logger.warning(
                        f"{descriptor} timed out, retrying in {delay:.1f}s "
                        f"({count}/{self._config.timeout_max_retries})"
                    )
                    await self._clock.sleep(delay)
                    continue
                exc = RequestTimeout(descriptor.method, url, ctx.transmissions)
                self._fail(descriptor, url, ctx, error, credential)
                if self._notifier:
                    self._notifier.error("Request timed out. Please check your connection.")
                raise exc from error.original

            if error.error_class == ErrorClass.SERVER_ERROR:
                if count <= self._config.server_max_retries:
                    delay = self._config.server_backoff_step * count
                    lib_logger.warning(
                        f"{descriptor} failed with HTTP {error.status_code}, retrying in {delay:.1f}s "
                        f"({count}/{self._config.server_max_retries})"
                    )
                    await self._clock.sleep(delay)
                    continue
                exc = ServerError(descriptor.method, url, error.status_code, ctx.transmissions)
                self._fail(descriptor, url, ctx, error, credential)
                if self._notifier:
                    self._notifier.error("Server error. Please try again later.")
                raise exc

            if error.error_class == ErrorClass.NETWORK_UNREACHABLE:
                lib_logger.warning(f"{descriptor} got no response: {error.original}")
                raise NetworkUnreachable(str(error.original)) from error.original

    def _fail(
        self,
        descriptor: RequestDescriptor,
        url: str,
        ctx: RetryContext,
        error: ClassifiedError,
        credential: Credential,
    ) -> None:
        original = error.original
        if isinstance(original, httpx.Response):
            original = httpx.HTTPStatusError(
                f"HTTP {original.status_code}", request=original.request, response=original
            )
        log_failure(
            method=descriptor.method,
            url=url,
            attempts=ctx.transmissions,
            error=original,
            request_headers=dict(descriptor.headers),
            error_class=error.error_class.value,
            credential=credential.value,
        )

    def _force_logout(self) -> None:
        lib_logger.error("Credential rejected after renewal; forcing logout")
        if self._on_force_logout:
            self._on_force_logout()
        else:
            self.reset()
            self._token_manager.teardown()
            self._queue.clear()
