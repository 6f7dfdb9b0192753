"""Mapping of auth error kinds to HTTP status codes"""

from typing import Dict

from fastapi import status

from authcore.core.exceptions import AuthError, AuthErrorKind

STATUS_BY_KIND: Dict[AuthErrorKind, int] = {
    AuthErrorKind.EMAIL_EXISTS: status.HTTP_409_CONFLICT,
    AuthErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.ACCOUNT_LOCKED: status.HTTP_423_LOCKED,
    AuthErrorKind.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.USER_NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.WEAK_PASSWORD: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.CONFIG_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: AuthError) -> int:
    return STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def headers_for(exc: AuthError) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if exc.kind is AuthErrorKind.ACCOUNT_LOCKED:
        headers["Retry-After"] = str(exc.details.get("retry_after", 60))
    elif status_for(exc) == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return headers
