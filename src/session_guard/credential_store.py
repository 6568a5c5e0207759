# src/session_guard/credential_store.py

import base64
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .clock import Clock, LoopClock
from .config import MAX_CREDENTIAL_LIFETIME_SECONDS
from .utils.resilient_io import safe_read_json, safe_remove, safe_write_json

lib_logger = logging.getLogger("session_guard")


@dataclass(frozen=True)
class Credential:
    """A signed session token and its validity window (Unix timestamps)."""

    value: str
    issued_at: float
    expires_at: float

    def seconds_remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def is_valid(self, now: float, buffer_seconds: float = 0.0) -> bool:
        """True only if the credential outlives now by more than the buffer window."""
        return self.expires_at > now + buffer_seconds

    @classmethod
    def from_lifetime(
        cls, value: str, lifetime_seconds: float, now: Optional[float] = None
    ) -> "Credential":
        issued = time.time() if now is None else now
        return cls(value=value, issued_at=issued, expires_at=issued + lifetime_seconds)

    @classmethod
    def from_jwt(cls, token: str, now: Optional[float] = None) -> "Credential":
        """
        Build a credential from a JWT, reading the ``exp`` and ``iat`` claims.

        The signature is not checked here; that is the backend's job. A token
        whose payload cannot be decoded yields a credential that is already
        expired, so it is never handed out as valid.
        """
        issued = time.time() if now is None else now
        try:
            payload_segment = token.split(".")[1]
            padded = payload_segment + "=" * (-len(payload_segment) % 4)
            claims = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
            expires_at = float(claims["exp"])
            issued_at = float(claims.get("iat", issued))
        except (IndexError, KeyError, TypeError, ValueError, UnicodeError) as e:
            lib_logger.warning(f"Could not read expiry from token: {e}")
            return cls(value=token, issued_at=issued, expires_at=issued)
        return cls(value=token, issued_at=issued_at, expires_at=expires_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        return cls(
            value=str(data["value"]),
            issued_at=float(data["issued_at"]),
            expires_at=float(data["expires_at"]),
        )


class CredentialStore(ABC):
    """
    Process-wide slot holding the current credential.

    The slot is replaced as a whole on every renewal and never partially
    updated. Only the token lifecycle manager writes to it.
    """

    @abstractmethod
    def get(self) -> Optional[Credential]:
        pass

    @abstractmethod
    def set(self, credential: Credential) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryCredentialStore(CredentialStore):
    """Credential slot that lives only as long as the process."""

    def __init__(self):
        self._credential: Optional[Credential] = None

    def get(self) -> Optional[Credential]:
        return self._credential

    def set(self, credential: Credential) -> None:
        self._credential = credential

    def clear(self) -> None:
        self._credential = None


class FileCredentialStore(CredentialStore):
    """
    Credential slot persisted to a JSON file so it survives restarts.

    The file is stamped with the time it was written and a maximum age
    (at most 7 days). Once the slot is older than that it is treated as
    absent and deleted, no matter what the credential's own expiry says.
    Like a cookie, it also records whether it may only travel over HTTPS
    and its same-site policy.
    """

    def __init__(
        self,
        path: Union[str, Path],
        clock: Optional[Clock] = None,
        max_age_seconds: float = MAX_CREDENTIAL_LIFETIME_SECONDS,
        secure: bool = False,
        same_site: str = "strict",
    ):
        self.path = Path(path)
        self._clock = clock or LoopClock()
        self.max_age_seconds = min(max_age_seconds, MAX_CREDENTIAL_LIFETIME_SECONDS)
        self.secure = secure
        self.same_site = same_site
        self._credential: Optional[Credential] = None
        self._stored_at: Optional[float] = None
        self._loaded = False

    def _load(self) -> None:
        self._loaded = True
        data = safe_read_json(self.path, lib_logger)
        if data is None:
            return
        try:
            self._credential = Credential.from_dict(data["credential"])
            self._stored_at = float(data["stored_at"])
        except (KeyError, TypeError, ValueError) as e:
            lib_logger.warning(f"Discarding malformed credential slot '{self.path.name}': {e}")
            self.clear()
            return
        lib_logger.debug(f"Loaded persisted credential from '{self.path.name}'")

    def _slot_expired(self) -> bool:
        if self._stored_at is None:
            return False
        return self._clock.time() >= self._stored_at + self.max_age_seconds

    def get(self) -> Optional[Credential]:
        if not self._loaded:
            self._load()
        if self._credential is not None and self._slot_expired():
            lib_logger.info(
                f"Persisted credential slot exceeded its lifetime ({int(self.max_age_seconds)}s), removing it"
            )
            self.clear()
        return self._credential

    def set(self, credential: Credential) -> None:
        # Memory first: a failed disk write must not lose the renewed credential
        self._loaded = True
        self._credential = credential
        self._stored_at = self._clock.time()
        slot = {
            "credential": credential.to_dict(),
            "stored_at": self._stored_at,
            "max_age": self.max_age_seconds,
            "secure": self.secure,
            "same_site": self.same_site,
        }
        if not safe_write_json(self.path, slot, lib_logger, secure_permissions=True):
            lib_logger.warning("Credential cached in memory only; persisting it to disk failed.")

    def clear(self) -> None:
        self._loaded = True
        self._credential = None
        self._stored_at = None
        safe_remove(self.path, lib_logger)
