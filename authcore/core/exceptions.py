"""Custom exception classes for the application

Core auth failures are tagged with an ``AuthErrorKind`` and carry no HTTP
status; the API layer maps kinds to status codes. Failures that only exist
at the HTTP boundary derive from ``BaseAPIException`` and carry their status.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class AuthErrorKind(str, Enum):
    """Stable error kinds produced by the auth core"""
    EMAIL_EXISTS = "email_exists"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    INVALID_TOKEN = "invalid_token"
    USER_NOT_FOUND = "user_not_found"
    WEAK_PASSWORD = "weak_password"
    CONFIG_ERROR = "config_error"


class AuthError(Exception):
    """Base error for the auth core"""

    kind: AuthErrorKind = AuthErrorKind.INVALID_CREDENTIALS

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EmailExistsError(AuthError):
    """Email is already registered"""
    kind = AuthErrorKind.EMAIL_EXISTS

    def __init__(self):
        super().__init__("Email already registered")


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password (deliberately indistinguishable)"""
    kind = AuthErrorKind.INVALID_CREDENTIALS

    def __init__(self):
        super().__init__("Invalid credentials")


class AccountLockedError(AuthError):
    """Login attempts are suspended for this identity"""
    kind = AuthErrorKind.ACCOUNT_LOCKED

    def __init__(self, locked_until: datetime, retry_after: int):
        self.locked_until = locked_until
        self.retry_after = retry_after
        super().__init__(
            "Account is temporarily locked",
            details={"locked_until": locked_until.isoformat(), "retry_after": retry_after},
        )


class InvalidTokenError(AuthError):
    """Token is missing, revoked, expired or malformed (deliberately indistinguishable)"""
    kind = AuthErrorKind.INVALID_TOKEN

    def __init__(self):
        super().__init__("Invalid token")


class UserNotFoundError(AuthError):
    """Token subject no longer exists"""
    kind = AuthErrorKind.USER_NOT_FOUND

    def __init__(self):
        super().__init__("User not found")


class WeakPasswordError(AuthError):
    """Password does not meet complexity requirements"""
    kind = AuthErrorKind.WEAK_PASSWORD

    def __init__(self):
        super().__init__("Password does not meet complexity requirements")


class ConfigError(AuthError):
    """Fatal misconfiguration, raised at startup"""
    kind = AuthErrorKind.CONFIG_ERROR


class BaseAPIException(Exception):
    """Base exception for HTTP-boundary errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(BaseAPIException):
    """Request carries no usable credentials"""
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=401)


class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


class CsrfError(BaseAPIException):
    """Missing or mismatched CSRF token"""
    def __init__(self, message: str = "CSRF token missing or invalid"):
        super().__init__(message, status_code=403)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status_code=429)
