#!/usr/bin/env python3
"""
Admin authentication tests

- Key generation and challenge signing
- Registration
- Challenge expiry and single use
- JWT issue/verify, tampering, expiry
- Allowlist checks
"""

import time
from datetime import datetime, timedelta, timezone

import pytest
from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from filehandles.auth import (
    AdminAuth,
    address_for,
    generate_admin_keypair,
    sign_challenge,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def auth(tmp_path):
    return AdminAuth(db_path=tmp_path / "auth.db", jwt_secret_file=tmp_path / ".jwt_secret")


@pytest.fixture
def keypair():
    return generate_admin_keypair()


@pytest.fixture
def registered(auth, keypair):
    private_key, public_key = keypair
    address = auth.register("ops", public_key)
    return {"private_key": private_key, "public_key": public_key, "address": address}


def _expire_challenge(auth, address):
    import sqlite3
    past = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
    conn = sqlite3.connect(auth.db_path)
    conn.execute("UPDATE challenges SET expires_at = ? WHERE address = ?", (past, address))
    conn.commit()
    conn.close()


# =============================================================================
# KEYS AND SIGNATURES
# =============================================================================

class TestKeys:
    def test_keypair_is_hex(self):
        private_key, public_key = generate_admin_keypair()
        assert len(private_key) == 64
        assert len(public_key) == 64
        assert SigningKey(private_key, encoder=HexEncoder).verify_key.encode(encoder=HexEncoder) == public_key

    def test_signature_verifies_only_for_signed_challenge(self, keypair):
        private_key, public_key = keypair
        signature = bytes.fromhex(sign_challenge(private_key, b"challenge-one").decode())
        verify_key = VerifyKey(public_key, encoder=HexEncoder)

        verify_key.verify(b"challenge-one", signature)
        with pytest.raises(BadSignatureError):
            verify_key.verify(b"challenge-two", signature)


# =============================================================================
# REGISTRATION
# =============================================================================

class TestRegistration:
    def test_address_derived_from_public_key(self, auth, keypair):
        _, public_key = keypair
        address = auth.register("ops", public_key)
        assert address == address_for(public_key.decode())
        assert len(address) == 16

    def test_duplicate_key_rejected(self, auth, keypair):
        _, public_key = keypair
        auth.register("ops", public_key)
        with pytest.raises(ValueError, match="already registered"):
            auth.register("ops-again", public_key)

    def test_malformed_key_rejected(self, auth):
        with pytest.raises(ValueError, match="Invalid Ed25519 public key"):
            auth.register("ops", b"zz" * 32)

    def test_registration_is_logged(self, auth, registered):
        log = auth.list_log()
        assert log[0]["action"] == "registered"
        assert log[0]["address"] == registered["address"]


# =============================================================================
# CHALLENGE / RESPONSE
# =============================================================================

class TestChallenge:
    def test_round_trip_issues_token(self, auth, registered):
        challenge = auth.create_challenge(registered["address"])
        result = auth.verify_challenge(
            registered["address"], sign_challenge(registered["private_key"], challenge)
        )
        assert result.success
        assert result.admin.name == "ops"
        assert auth.verify_jwt(result.token)["sub"] == registered["address"]

    def test_unknown_address(self, auth):
        with pytest.raises(ValueError):
            auth.create_challenge("0000000000000000")

    def test_challenge_is_single_use(self, auth, registered):
        challenge = auth.create_challenge(registered["address"])
        signature = sign_challenge(registered["private_key"], challenge)
        assert auth.verify_challenge(registered["address"], signature).success
        replay = auth.verify_challenge(registered["address"], signature)
        assert not replay.success
        assert replay.error == "No pending challenge"

    def test_expired_challenge(self, auth, registered):
        challenge = auth.create_challenge(registered["address"])
        _expire_challenge(auth, registered["address"])
        result = auth.verify_challenge(
            registered["address"], sign_challenge(registered["private_key"], challenge)
        )
        assert not result.success
        assert result.error == "Challenge expired"

    def test_wrong_key_signature(self, auth, registered):
        other_private, _ = generate_admin_keypair()
        challenge = auth.create_challenge(registered["address"])
        result = auth.verify_challenge(registered["address"], sign_challenge(other_private, challenge))
        assert not result.success
        assert result.error == "Invalid signature"
        assert auth.list_log(limit=1)[0]["action"] == "auth_failed"

    def test_revoked_key_cannot_log_in(self, auth, registered):
        auth.revoke(registered["address"], "lost laptop")
        with pytest.raises(ValueError):
            auth.create_challenge(registered["address"])
        assert auth.get_admin(registered["address"]) is None


# =============================================================================
# JWT
# =============================================================================

class TestJWT:
    def _token(self, auth, registered):
        challenge = auth.create_challenge(registered["address"])
        return auth.verify_challenge(
            registered["address"], sign_challenge(registered["private_key"], challenge)
        ).token

    def test_tampered_payload_rejected(self, auth, registered):
        header, payload, signature = self._token(auth, registered).split(".")
        tampered = f"{header}.{payload[:-2]}xx.{signature}"
        assert auth.verify_jwt(tampered) is None

    def test_garbage_rejected(self, auth):
        assert auth.verify_jwt("not-a-jwt") is None
        assert auth.verify_jwt("a.b.c") is None

    def test_expired_token_rejected(self, auth, registered):
        token = auth._create_jwt(registered["address"], "ops", datetime.now(timezone.utc) - timedelta(hours=1))
        assert auth.verify_jwt(token) is None

    def test_secret_survives_restart(self, tmp_path, registered, auth):
        token = self._token(auth, registered)
        again = AdminAuth(db_path=auth.db_path, jwt_secret_file=auth.jwt_secret_file)
        assert again.verify_jwt(token)["sub"] == registered["address"]

    def test_token_carries_expiry(self, auth, registered):
        payload = auth.verify_jwt(self._token(auth, registered))
        assert payload["exp"] > time.time()


# =============================================================================
# ALLOWLIST
# =============================================================================

class TestAllowlist:
    def test_empty_allowlist_admits_nobody(self, auth, registered, monkeypatch):
        monkeypatch.setenv("FHC_ADMIN_ALLOWLIST", "")
        assert not auth.is_admin(registered["address"])

    def test_listed_address_is_admin(self, auth, registered, monkeypatch):
        monkeypatch.setenv("FHC_ADMIN_ALLOWLIST", f"someone-else, {registered['address']}")
        assert auth.is_admin(registered["address"])

    def test_long_entries_are_hashed(self, auth, registered, monkeypatch):
        # A full public key in the allowlist maps to its address
        monkeypatch.setenv("FHC_ADMIN_ALLOWLIST", registered["public_key"].decode())
        assert auth.is_admin(registered["address"])
