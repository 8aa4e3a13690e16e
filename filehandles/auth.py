"""
File handle console — admin authentication

Ed25519 challenge-response. Only public keys are stored; a verified
signature is exchanged for a short-lived HMAC-signed JWT. Being registered
is not enough to use the console: the address must also be on
FHC_ADMIN_ALLOWLIST.

Usage:
    from filehandles.auth import AdminAuth, generate_admin_keypair, sign_challenge

    private_key, public_key = generate_admin_keypair()

    auth = AdminAuth()
    address = auth.register("ops", public_key)

    challenge = auth.create_challenge(address)
    signature = sign_challenge(private_key, challenge)
    result = auth.verify_challenge(address, signature)
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Tuple

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .config import (
    CHALLENGE_TTL_SECONDS,
    JWT_SECRET_FILE,
    JWT_TTL_HOURS,
    get_admin_allowlist,
    get_db_path,
)

logger = logging.getLogger(__name__)


# =============================================================================
# KEY GENERATION (client side)
# =============================================================================

def generate_admin_keypair() -> Tuple[bytes, bytes]:
    """
    Generate an Ed25519 keypair.

    Returns:
        (private_key_hex, public_key_hex) - both hex-encoded bytes

    The private key stays with the administrator; only the public key is
    registered with the console.
    """
    signing_key = SigningKey.generate()
    private_key_hex = signing_key.encode(encoder=HexEncoder)
    public_key_hex = signing_key.verify_key.encode(encoder=HexEncoder)
    return private_key_hex, public_key_hex


def sign_challenge(private_key_hex: bytes, challenge: bytes) -> bytes:
    """Sign a challenge, returning the hex-encoded signature."""
    signing_key = SigningKey(private_key_hex, encoder=HexEncoder)
    signed = signing_key.sign(challenge)
    return signed.signature.hex().encode()


def address_for(public_key_hex: str) -> str:
    return hashlib.sha256(public_key_hex.encode()).hexdigest()[:16]


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _unb64url(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class Admin:
    """Registered console user."""
    address: str
    name: str
    public_key_hex: str
    created_at: str
    last_seen: Optional[str] = None


@dataclass
class AuthResult:
    """Result of authentication attempt."""
    success: bool
    token: Optional[str] = None
    admin: Optional[Admin] = None
    error: Optional[str] = None
    expires_at: Optional[str] = None


# =============================================================================
# ADMIN AUTHENTICATION
# =============================================================================

class AdminAuth:
    def __init__(self, db_path: Optional[Path] = None, jwt_secret_file: Path = JWT_SECRET_FILE):
        self.db_path = db_path or get_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.jwt_secret_file = jwt_secret_file
        self._init_db()
        self._jwt_secret = self._load_or_create_jwt_secret()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS admins (
                    address TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    public_key_hex TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    last_seen TEXT,
                    is_revoked INTEGER DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS challenges (
                    address TEXT PRIMARY KEY,
                    challenge_hex TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)
            # Append-only record of auth events
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auth_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    action TEXT NOT NULL,
                    address TEXT,
                    detail TEXT NOT NULL DEFAULT '{}'
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _load_or_create_jwt_secret(self) -> bytes:
        self.jwt_secret_file.parent.mkdir(parents=True, exist_ok=True)
        if self.jwt_secret_file.exists():
            return self.jwt_secret_file.read_bytes()

        secret = secrets.token_bytes(32)
        self.jwt_secret_file.write_bytes(secret)
        self.jwt_secret_file.chmod(0o600)
        return secret

    def _log(self, action: str, address: Optional[str], detail: dict):
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO auth_log (timestamp, action, address, detail) VALUES (?, ?, ?, ?)",
                (datetime.now(timezone.utc).isoformat(), action, address,
                 json.dumps(detail, sort_keys=True)),
            )
            conn.commit()
        finally:
            conn.close()

    def list_log(self, limit: int = 50) -> list:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT timestamp, action, address, detail FROM auth_log ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        return [
            {"timestamp": ts, "action": action, "address": address, "detail": json.loads(detail)}
            for ts, action, address, detail in rows
        ]

    def register(self, name: str, public_key_hex: bytes) -> str:
        """
        Register a public key.

        Returns:
            The address derived from the public key.

        Raises:
            ValueError: If the public key is malformed or already registered.
        """
        if isinstance(public_key_hex, bytes):
            public_key_hex = public_key_hex.decode()
        try:
            VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        except Exception as e:
            raise ValueError(f"Invalid Ed25519 public key: {e}") from e

        address = address_for(public_key_hex)
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO admins (address, name, public_key_hex, created_at) VALUES (?, ?, ?, ?)",
                (address, name, public_key_hex, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise ValueError(f"Key already registered: {address}")
        finally:
            conn.close()

        self._log("registered", address, {"name": name})
        logger.info("Registered console key %s (%s)", address, name)
        return address

    def create_challenge(self, address: str) -> bytes:
        """
        Create a 32-byte challenge for ``address``, valid for
        CHALLENGE_TTL_SECONDS. A new challenge replaces any pending one.
        """
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT address FROM admins WHERE address = ? AND is_revoked = 0", (address,)
            ).fetchone()
            if not row:
                raise ValueError(f"Unknown or revoked key: {address}")

            challenge = secrets.token_bytes(32)
            now = datetime.now(timezone.utc)
            expires = now + timedelta(seconds=CHALLENGE_TTL_SECONDS)
            conn.execute("""
                INSERT OR REPLACE INTO challenges (address, challenge_hex, created_at, expires_at)
                VALUES (?, ?, ?, ?)
            """, (address, challenge.hex(), now.isoformat(), expires.isoformat()))
            conn.commit()
        finally:
            conn.close()
        return challenge

    def verify_challenge(self, address: str, signature_hex: bytes) -> AuthResult:
        """Verify the signed challenge and issue a JWT."""
        if isinstance(signature_hex, bytes):
            signature_hex = signature_hex.decode()

        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT a.public_key_hex, c.challenge_hex, c.expires_at, a.name, a.created_at
                FROM admins a
                JOIN challenges c ON a.address = c.address
                WHERE a.address = ? AND a.is_revoked = 0
            """, (address,)).fetchone()
            if not row:
                return AuthResult(success=False, error="No pending challenge")

            public_key_hex, challenge_hex, expires_at, name, created_at = row

            # Single use, whatever the outcome
            conn.execute("DELETE FROM challenges WHERE address = ?", (address,))
            conn.commit()

            if datetime.fromisoformat(expires_at) < datetime.now(timezone.utc):
                return AuthResult(success=False, error="Challenge expired")

            try:
                verify_key = VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
                verify_key.verify(bytes.fromhex(challenge_hex), bytes.fromhex(signature_hex))
            except (BadSignatureError, ValueError):
                self._log("auth_failed", address, {"reason": "bad_signature"})
                return AuthResult(success=False, error="Invalid signature")

            now = datetime.now(timezone.utc)
            conn.execute("UPDATE admins SET last_seen = ? WHERE address = ?", (now.isoformat(), address))
            conn.commit()
        finally:
            conn.close()

        expires = now + timedelta(hours=JWT_TTL_HOURS)
        token = self._create_jwt(address, name, expires)
        self._log("auth_success", address, {"expires": expires.isoformat()})

        return AuthResult(
            success=True,
            token=token,
            admin=Admin(address, name, public_key_hex, created_at, now.isoformat()),
            expires_at=expires.isoformat(),
        )

    def _create_jwt(self, address: str, name: str, expires_at: datetime) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        payload = {
            "sub": address,
            "name": name,
            "exp": int(expires_at.timestamp()),
            "iat": int(time.time()),
        }
        message = f"{_b64url(json.dumps(header).encode())}.{_b64url(json.dumps(payload).encode())}"
        signature = hmac.new(self._jwt_secret, message.encode(), hashlib.sha256).digest()
        return f"{message}.{_b64url(signature)}"

    def verify_jwt(self, token: str) -> Optional[dict]:
        """Return the JWT payload if the signature is ours and it has not expired."""
        parts = token.split(".")
        if len(parts) != 3:
            return None
        header_b64, payload_b64, signature_b64 = parts

        expected = hmac.new(
            self._jwt_secret, f"{header_b64}.{payload_b64}".encode(), hashlib.sha256
        ).digest()
        try:
            actual = _unb64url(signature_b64)
            payload = json.loads(_unb64url(payload_b64))
        except (ValueError, TypeError):
            return None

        if not hmac.compare_digest(expected, actual):
            return None
        if not isinstance(payload, dict) or payload.get("exp", 0) < time.time():
            return None
        return payload

    def get_admin(self, address: str) -> Optional[Admin]:
        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT address, name, public_key_hex, created_at, last_seen
                FROM admins WHERE address = ? AND is_revoked = 0
            """, (address,)).fetchone()
        finally:
            conn.close()
        return Admin(*row) if row else None

    def is_admin(self, address: str) -> bool:
        """Allowlist membership. An empty allowlist admits nobody."""
        return address in get_admin_allowlist()

    def revoke(self, address: str, reason: str):
        conn = self._connect()
        try:
            conn.execute("UPDATE admins SET is_revoked = 1 WHERE address = ?", (address,))
            conn.commit()
        finally:
            conn.close()
        self._log("revoked", address, {"reason": reason})
