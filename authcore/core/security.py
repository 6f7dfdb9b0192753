"""Security utilities - password hashing, JWT access tokens, refresh tokens, CSRF"""

import hashlib
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from authcore.config import Settings
from authcore.core.exceptions import ConfigError, InvalidTokenError

# bcrypt only looks at the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72
REFRESH_TOKEN_BYTES = 32


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from storage"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PasswordHasher:
    """bcrypt hashing with a configurable cost factor"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        # Verified against when the identity is unknown so both paths cost the same.
        self._dummy_hash = self.hash(secrets.token_urlsafe(16))

    @staticmethod
    def _encode(password: str) -> bytes:
        return password.encode("utf-8")[:BCRYPT_MAX_BYTES]

    def hash(self, password: str) -> str:
        """
        Hash a password using bcrypt

        Args:
            password: Plain text password

        Returns:
            str: Hashed password
        """
        return bcrypt.hashpw(
            self._encode(password),
            bcrypt.gensalt(rounds=self.rounds)
        ).decode("utf-8")

    def verify(self, password: str, hashed_password: str) -> bool:
        """
        Verify a password against its hash

        Args:
            password: Plain text password
            hashed_password: Hashed password

        Returns:
            bool: True if password matches
        """
        try:
            return bcrypt.checkpw(self._encode(password), hashed_password.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, password: str) -> bool:
        """Spend one verification on a throwaway hash; always False"""
        self.verify(password, self._dummy_hash)
        return False


@dataclass(frozen=True)
class AuthContext:
    """Verified access-token claims for the current request"""

    subject: str
    email: str
    role: str
    issued_at: datetime
    expires_at: datetime
    token_id: str = ""


class TokenIssuer:
    """Mint signed access tokens and opaque refresh tokens"""

    def __init__(self, settings: Settings):
        if not settings.SECRET_KEY:
            raise ConfigError("SECRET_KEY is not configured")
        self._secret = settings.SECRET_KEY
        self._algorithm = settings.ALGORITHM
        self.access_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def issue_access_token(self, email: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
        """
        Create JWT access token

        Args:
            email: Token subject
            role: Role claim
            expires_delta: Token lifetime, defaults to the configured TTL

        Returns:
            str: Encoded JWT token
        """
        now = utcnow()
        claims: Dict[str, Any] = {
            "sub": email,
            "email": email,
            "role": role,
            "typ": "access",
            "iat": now,
            "exp": now + (expires_delta if expires_delta is not None else self.access_ttl),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode_access_token(self, token: str) -> AuthContext:
        """
        Decode and verify JWT access token

        Raises:
            InvalidTokenError: bad signature, expired, or not an access token
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as exc:
            raise InvalidTokenError() from exc

        if payload.get("typ") != "access" or not payload.get("sub"):
            raise InvalidTokenError()

        try:
            return AuthContext(
                subject=str(payload["sub"]),
                email=str(payload.get("email") or payload["sub"]),
                role=str(payload.get("role") or "user"),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
                token_id=str(payload.get("jti") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError() from exc

    @staticmethod
    def issue_refresh_token() -> str:
        """Random opaque refresh token (256 bits)"""
        return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)

    @staticmethod
    def hash_refresh_token(token: str) -> str:
        """Deterministic storage key for a refresh token"""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_csrf_token() -> str:
    """
    Generate CSRF token

    Returns:
        str: Random CSRF token
    """
    return secrets.token_urlsafe(32)


def csrf_tokens_match(cookie_value: Optional[str], header_value: Optional[str]) -> bool:
    if not cookie_value or not header_value:
        return False
    return secrets.compare_digest(cookie_value, header_value)


_POLICY_CHECKS = (
    re.compile(r"[A-Z]"),
    re.compile(r"[a-z]"),
    re.compile(r"[0-9]"),
    re.compile(r"[^A-Za-z0-9]"),
)


def validate_password_policy(password: str) -> bool:
    """At least 8 chars with upper, lower, digit and special character"""
    if len(password) < 8:
        return False
    return all(check.search(password) for check in _POLICY_CHECKS)
