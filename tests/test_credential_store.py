"""Credential values, the in-memory slot and the persisted file slot."""

import base64
import json
import os
import stat
import sys

import pytest

from session_guard import (
    Credential,
    CredentialSource,
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    Notifier,
)
from tests.fixtures.virtual_clock import START_TIME, VirtualClock


def _jwt(claims: dict) -> str:
    def segment(data: dict) -> str:
        raw = json.dumps(data).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    return f"{segment({'alg': 'RS256'})}.{segment(claims)}.signature"


class TestCredential:
    def test_validity_respects_buffer(self):
        credential = Credential.from_lifetime("t", 10 * 60, now=START_TIME)
        assert credential.is_valid(START_TIME, buffer_seconds=5 * 60)
        assert not credential.is_valid(START_TIME + 6 * 60, buffer_seconds=5 * 60)
        assert credential.is_valid(START_TIME + 6 * 60)

    def test_expiry_read_from_jwt_claims(self):
        token = _jwt({"iat": START_TIME, "exp": START_TIME + 3600, "sub": "u1"})
        credential = Credential.from_jwt(token, now=START_TIME)
        assert credential.issued_at == START_TIME
        assert credential.expires_at == START_TIME + 3600

    def test_undecodable_token_is_never_valid(self):
        credential = Credential.from_jwt("not-a-jwt", now=START_TIME)
        assert not credential.is_valid(START_TIME)

    def test_dict_round_trip(self):
        credential = Credential.from_lifetime("t", 60, now=START_TIME)
        assert Credential.from_dict(credential.to_dict()) == credential


@pytest.mark.parametrize("interface", [CredentialStore, CredentialSource, Notifier])
def test_interfaces_cannot_be_instantiated(interface):
    with pytest.raises(TypeError):
        interface()


def test_memory_store_replaces_whole_slot():
    store = MemoryCredentialStore()
    assert store.get() is None
    first = Credential.from_lifetime("a", 60, now=START_TIME)
    second = Credential.from_lifetime("b", 60, now=START_TIME)
    store.set(first)
    store.set(second)
    assert store.get() == second
    store.clear()
    assert store.get() is None


class TestFileCredentialStore:
    def test_persists_across_instances(self, tmp_path):
        clock = VirtualClock()
        path = tmp_path / "creds" / "session.json"
        credential = Credential.from_lifetime("persisted", 3600, now=clock.time())

        FileCredentialStore(path, clock=clock, secure=True).set(credential)
        reloaded = FileCredentialStore(path, clock=clock)

        assert reloaded.get() == credential
        slot = json.loads(path.read_text())
        assert slot["secure"] is True
        assert slot["same_site"] == "strict"
        assert slot["max_age"] == 7 * 24 * 3600

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_slot_is_owner_only(self, tmp_path):
        path = tmp_path / "session.json"
        FileCredentialStore(path, clock=VirtualClock()).set(
            Credential.from_lifetime("secret", 60, now=START_TIME)
        )
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_slot_older_than_max_age_is_removed(self, tmp_path):
        clock = VirtualClock()
        path = tmp_path / "session.json"
        store = FileCredentialStore(path, clock=clock, max_age_seconds=3600)
        store.set(Credential.from_lifetime("long-lived", 10 * 24 * 3600, now=clock.time()))

        await clock.advance(3600)

        assert store.get() is None
        assert not path.exists()

    def test_max_age_capped_at_seven_days(self, tmp_path):
        store = FileCredentialStore(tmp_path / "s.json", max_age_seconds=30 * 24 * 3600)
        assert store.max_age_seconds == 7 * 24 * 3600

    def test_malformed_slot_is_discarded(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"credential": {"value": "x"}}))

        store = FileCredentialStore(path, clock=VirtualClock())

        assert store.get() is None
        assert not path.exists()

    def test_write_failure_keeps_credential_in_memory(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = FileCredentialStore(blocker / "session.json", clock=VirtualClock())
        credential = Credential.from_lifetime("memory-only", 60, now=START_TIME)

        store.set(credential)

        assert store.get() == credential

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "session.json"
        store = FileCredentialStore(path, clock=VirtualClock())
        store.set(Credential.from_lifetime("t", 60, now=START_TIME))

        store.clear()

        assert store.get() is None
        assert not path.exists()
