# src/session_guard/credential_source.py

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

import httpx

from .clock import Clock, LoopClock
from .credential_store import Credential
from .error_handler import CredentialUnavailable

lib_logger = logging.getLogger("session_guard")


class CredentialSource(ABC):
    """
    Issues fresh signed credentials on demand.

    Implementations must be safe to call repeatedly and must not themselves
    require a valid session credential. Raising CredentialUnavailable means
    there is no authenticated identity to issue for; the lifecycle manager
    does not retry that.
    """

    @abstractmethod
    async def issue_fresh_credential(self) -> Credential:
        pass


class CallableCredentialSource(CredentialSource):
    """
    Adapts any async callable returning a Credential or a bare JWT string,
    e.g. an identity provider SDK's ``get_id_token(force_refresh=True)``.
    """

    def __init__(
        self,
        issue: Callable[[], Awaitable[Union[Credential, str]]],
        clock: Optional[Clock] = None,
    ):
        self._issue = issue
        self._clock = clock or LoopClock()

    async def issue_fresh_credential(self) -> Credential:
        result = await self._issue()
        if isinstance(result, Credential):
            return result
        if not result:
            raise CredentialUnavailable("No authenticated user found")
        return Credential.from_jwt(result, now=self._clock.time())


class RefreshTokenCredentialSource(CredentialSource):
    """
    Exchanges a long-lived refresh token for a short-lived access token at
    an OAuth2-style token endpoint.

    The response must carry ``access_token`` (or ``id_token``). Expiry is
    taken from ``expires_in`` when present, otherwise from the token's own
    ``exp`` claim. A rotated ``refresh_token`` in the response replaces the
    current one.
    """

    def __init__(
        self,
        token_url: str,
        refresh_token: Optional[str],
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
        timeout: float = 30.0,
    ):
        self.token_url = token_url
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self._http_client = http_client
        self._clock = clock or LoopClock()
        self._timeout = timeout

    async def issue_fresh_credential(self) -> Credential:
        if not self.refresh_token:
            raise CredentialUnavailable("No authenticated user: refresh token missing")

        data = {"grant_type": "refresh_token", "refresh_token": self.refresh_token}
        if self.client_id:
            data["client_id"] = self.client_id
        if self.client_secret:
            data["client_secret"] = self.client_secret

        if self._http_client is not None:
            response = await self._http_client.post(
                self.token_url, data=data, timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(self.token_url, data=data, timeout=self._timeout)

        # A rejected refresh token will not start working on retry
        if response.status_code in (401, 403) or (
            response.status_code == 400 and "invalid_grant" in response.text.lower()
        ):
            lib_logger.warning(
                f"Refresh token rejected by token endpoint (HTTP {response.status_code})"
            )
            raise CredentialUnavailable(
                f"Refresh token rejected (HTTP {response.status_code}); sign in again"
            )
        response.raise_for_status()

        payload = response.json()
        token = payload.get("access_token") or payload.get("id_token")
        if not token:
            raise ValueError("Token endpoint response carried no access_token or id_token")

        if payload.get("refresh_token"):
            self.refresh_token = payload["refresh_token"]

        now = self._clock.time()
        if "expires_in" in payload:
            return Credential.from_lifetime(token, float(payload["expires_in"]), now=now)
        return Credential.from_jwt(token, now=now)
