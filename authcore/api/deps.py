"""API dependencies - authentication, authorization and CSRF"""

from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authcore.api.cookies import csrf_cookie_name, refresh_cookie_name
from authcore.config import Settings
from authcore.core.exceptions import AuthenticationError, AuthorizationError, CsrfError
from authcore.core.security import AuthContext, csrf_tokens_match
from authcore.schemas.user import UserRole
from authcore.services.auth_service import AuthService
from authcore.services.rate_limiter import InMemoryRateLimiter

# HTTP Bearer token scheme; missing credentials are reported by get_auth_context
security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_rate_limiter(request: Request) -> InMemoryRateLimiter:
    return request.app.state.rate_limiter


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthContext:
    """
    Verify the bearer access token once per request

    Raises:
        AuthenticationError: no bearer token supplied
        InvalidTokenError: bad signature, expired or wrong token type
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return auth_service.issuer.decode_access_token(credentials.credentials)


def require_role(role: UserRole) -> Callable[..., AuthContext]:
    """Dependency factory for role-gated routes"""

    async def _require_role(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if context.role != role.value:
            raise AuthorizationError(f"{role.value.capitalize()} access required")
        return context

    return _require_role


def refresh_token_from_request(
    request: Request,
    body_token: Optional[str],
    settings: Settings,
) -> Optional[str]:
    """
    Body tokens are bearer-style and used as given. Cookie tokens ride along
    with every request from the browser, so they need the double-submit
    CSRF header.
    """
    if body_token:
        return body_token

    cookie_token = request.cookies.get(refresh_cookie_name(settings))
    if not cookie_token:
        return None

    csrf_cookie = request.cookies.get(csrf_cookie_name(settings))
    csrf_header = request.headers.get(settings.CSRF_HEADER_NAME)
    if not csrf_tokens_match(csrf_cookie, csrf_header):
        raise CsrfError()
    return cookie_token
