# src/session_guard/token_manager.py

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .clock import Clock, LoopClock, TimerHandle
from .config import SessionConfig
from .credential_source import CredentialSource
from .credential_store import Credential, CredentialStore
from .error_handler import (
    CredentialRenewalFailed,
    CredentialUnavailable,
    SessionError,
    mask_credential,
)
from .notifier import Notifier

lib_logger = logging.getLogger("session_guard")


class RenewalState(str, Enum):
    IDLE = "idle"
    RENEWING = "renewing"
    FAILED = "failed"


SessionExpiredCallback = Callable[[SessionError], Optional[Awaitable[Any]]]


class TokenLifecycleManager:
    """
    Keeps a valid session credential available at all times.

    Responsibilities:
    - Hands out the current credential while it is outside the expiry buffer
    - Renews it through the credential source when it is not, with bounded
      exponential backoff, sharing one in-flight renewal between every caller
    - Renews proactively on a timer after each successful renewal
    - Re-checks validity on a heartbeat and when the host regains visibility
    - Tears the session down when renewal is exhausted

    Only this class writes to the credential store.
    """

    def __init__(
        self,
        source: CredentialSource,
        store: CredentialStore,
        config: Optional[SessionConfig] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        on_session_expired: Optional[SessionExpiredCallback] = None,
    ):
        self._source = source
        self._store = store
        self._config = config or SessionConfig()
        self._clock = clock or LoopClock()
        self._notifier = notifier
        self._on_session_expired = on_session_expired

        self._state = RenewalState.IDLE
        self._renewal_task: Optional[asyncio.Task] = None
        self._refresh_timer: Optional[TimerHandle] = None
        self._heartbeat_timer: Optional[TimerHandle] = None
        self._background_tasks: Set[asyncio.Task] = set()

        # Bumped on teardown so a renewal finishing afterwards is discarded
        self._generation = 0
        self._terminated = False

        self._total_renewals = 0
        self._failed_renewals = 0
        self._source_calls = 0
        self.last_failure: Optional[SessionError] = None

    @property
    def renewal_state(self) -> RenewalState:
        return self._state

    @property
    def is_active(self) -> bool:
        return not self._terminated

    def set_session_expired_callback(self, callback: Optional[SessionExpiredCallback]) -> None:
        self._on_session_expired = callback

    def _is_valid(self, credential: Credential) -> bool:
        return credential.is_valid(self._clock.time(), self._config.expiry_buffer_seconds)

    def current_credential(self) -> Optional[Credential]:
        """The stored credential, valid or not. Never triggers renewal."""
        return self._store.get()

    async def get_valid_token(self) -> Credential:
        """
        Return a credential that stays valid beyond the expiry buffer,
        renewing first if the stored one does not.

        Raises:
            CredentialUnavailable: The session was torn down, or there is no
                authenticated identity to renew for
            CredentialRenewalFailed: Renewal was exhausted (session torn down)
        """
        if self._terminated:
            raise CredentialUnavailable("Session has been logged out")

        credential = self._store.get()
        if credential is not None and self._is_valid(credential):
            return credential

        return await self.renew_token()

    async def renew_token(self) -> Credential:
        """
        Obtain a fresh credential. Concurrent callers share one renewal.
        """
        if self._terminated:
            raise CredentialUnavailable("Session has been logged out")

        if self._renewal_task is None or self._renewal_task.done():
            self._renewal_task = asyncio.get_running_loop().create_task(
                self._perform_renewal()
            )
        else:
            lib_logger.debug("Credential renewal already in flight, joining it")

        # Shielded so one cancelled caller cannot cancel the renewal for everyone
        return await asyncio.shield(self._renewal_task)

    async def _perform_renewal(self) -> Credential:
        self._state = RenewalState.RENEWING
        generation = self._generation
        max_attempts = self._config.renewal_max_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            try:
                lib_logger.debug(f"Credential renewal attempt {attempt}/{max_attempts}")
                self._source_calls += 1
                credential = await self._source.issue_fresh_credential()
                if not self._is_valid(credential):
                    raise ValueError(
                        f"Issued credential expires within the {int(self._config.expiry_buffer_seconds)}s buffer"
                    )
            except CredentialUnavailable:
                # Nobody is signed in; retrying cannot help
                self._state = RenewalState.IDLE
                if generation == self._generation:
                    self._store.clear()
                raise
            except Exception as e:
                last_error = e
                lib_logger.warning(
                    f"Credential renewal attempt {attempt}/{max_attempts} failed: {e}"
                )
                if attempt < max_attempts:
                    delay = self._config.renewal_backoff_base * (
                        self._config.renewal_backoff_factor ** (attempt - 1)
                    )
                    lib_logger.info(f"Retrying credential renewal in {delay:.1f}s...")
                    await self._clock.sleep(delay)
                continue

            if generation != self._generation:
                self._state = RenewalState.IDLE
                lib_logger.info("Discarding credential renewed after session teardown")
                raise CredentialUnavailable("Session ended during credential renewal")

            self._store.set(credential)
            self._state = RenewalState.IDLE
            self._total_renewals += 1
            lib_logger.info(
                f"Credential {mask_credential(credential.value)} renewed, valid for "
                f"{int(credential.seconds_remaining(self._clock.time()))}s"
            )
            self.schedule_next_refresh()
            return credential

        self._state = RenewalState.FAILED
        self._failed_renewals += 1
        error = CredentialRenewalFailed(max_attempts, last_error)
        if generation == self._generation:
            self._handle_renewal_failure(error)
        else:
            self._state = RenewalState.IDLE
        raise error

    def _handle_renewal_failure(self, error: CredentialRenewalFailed) -> None:
        lib_logger.error(f"Credential renewal failed completely: {error}")
        self.last_failure = error
        self.teardown()
        if self._notifier:
            self._notifier.error("Session expired. Please log in again.")
        if self._on_session_expired:
            result = self._on_session_expired(error)
            if inspect.isawaitable(result):
                self._spawn(result)

    def schedule_next_refresh(self) -> None:
        """Arm the proactive renewal timer, replacing any timer already armed."""
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
        self._refresh_timer = self._clock.call_later(
            self._config.refresh_interval_seconds, self._on_refresh_timer
        )

    def _on_refresh_timer(self) -> None:
        self._refresh_timer = None
        lib_logger.info("Scheduled credential refresh triggered")
        self._spawn(self._scheduled_refresh())

    async def _scheduled_refresh(self) -> None:
        try:
            await self.renew_token()
        except SessionError as e:
            lib_logger.error(f"Scheduled credential refresh failed: {e}")

    def start_heartbeat(self) -> None:
        """Arm the periodic validity check, replacing any heartbeat already armed."""
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
        self._heartbeat_timer = self._clock.call_later(
            self._config.heartbeat_interval_seconds, self._on_heartbeat
        )

    def _on_heartbeat(self) -> None:
        self._heartbeat_timer = None
        self.start_heartbeat()
        self._spawn(self.check_and_refresh_token())

    def on_visibility_regained(self) -> None:
        """Host hook: the application came back to the foreground."""
        lib_logger.debug("Application visible again, checking credential validity")
        self._spawn(self.check_and_refresh_token())

    async def check_and_refresh_token(self) -> None:
        """Renew only if the stored credential is missing or inside the buffer."""
        if self._terminated:
            return
        credential = self._store.get()
        if credential is not None and self._is_valid(credential):
            return
        lib_logger.info("Credential invalid or expiring soon, refreshing...")
        try:
            await self.renew_token()
        except SessionError as e:
            lib_logger.error(f"Error checking credential: {e}")

    async def start(self, force_refresh: bool = False) -> Credential:
        """
        Activate the session: obtain a credential, then arm the proactive
        refresh timer and the heartbeat.
        """
        self._terminated = False
        credential = await (self.renew_token() if force_refresh else self.get_valid_token())
        self.schedule_next_refresh()
        self.start_heartbeat()
        lib_logger.info("Token lifecycle manager started")
        return credential

    def stop_timers(self) -> None:
        """Cancel the refresh timer and heartbeat, keeping the stored credential."""
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def teardown(self) -> None:
        """Clear the credential and cancel every timer. The session is logged out afterwards."""
        self._generation += 1
        self._terminated = True
        self._renewal_task = None
        self.stop_timers()
        self._store.clear()
        self._state = RenewalState.IDLE
        lib_logger.info("Session torn down: credential cleared, timers cancelled")

    def session_time_remaining(self) -> int:
        """Whole minutes until the stored credential expires (0 when there is none)."""
        credential = self._store.get()
        if credential is None:
            return 0
        return int(credential.seconds_remaining(self._clock.time()) // 60)

    def _spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(awaitable)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def get_status(self) -> Dict[str, Any]:
        """Current lifecycle status for debugging/monitoring."""
        credential = self._store.get()
        now = self._clock.time()
        return {
            "active": not self._terminated,
            "renewal_state": self._state.value,
            "has_credential": credential is not None,
            "credential_valid": credential is not None and self._is_valid(credential),
            "expires_in": credential.seconds_remaining(now) if credential else None,
            "refresh_timer_armed": self._refresh_timer is not None,
            "heartbeat_armed": self._heartbeat_timer is not None,
            "stats": {
                "renewals": self._total_renewals,
                "failed_renewals": self._failed_renewals,
                "source_calls": self._source_calls,
            },
        }
