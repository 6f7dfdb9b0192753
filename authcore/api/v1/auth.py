"""Authentication routes"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from authcore.api.cookies import clear_refresh_cookie, set_csrf_cookie, set_refresh_cookie
from authcore.api.deps import (
    client_ip,
    get_auth_context,
    get_auth_service,
    get_rate_limiter,
    get_settings,
    refresh_token_from_request,
    require_role,
)
from authcore.config import Settings
from authcore.core.exceptions import RateLimitExceededError
from authcore.core.security import AuthContext, generate_csrf_token
from authcore.schemas.auth import (
    CsrfTokenResponse,
    LogoutRequest,
    RefreshTokenRequest,
    TokenPair,
    TokenResponse,
)
from authcore.schemas.user import UserCreate, UserLogin, UserResponse, UserRole
from authcore.services.auth_service import AuthService
from authcore.services.rate_limiter import InMemoryRateLimiter

router = APIRouter()


def _token_response(pair: TokenPair, settings: Settings) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=pair.user,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: UserCreate,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Create an account; the client logs in separately"""
    user = await auth_service.register(payload.email, payload.password)
    return {"user": user}


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
async def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    auth_service: AuthService = Depends(get_auth_service),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
):
    """
    Login endpoint - authenticate user and return JWT token

    The refresh token is set as an HttpOnly cookie and also returned in the
    body for non-browser clients.
    """
    ip = client_ip(request)
    if not rate_limiter.allow(f"login:min:{ip}", settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many login attempts. Please wait a minute.")
    if not rate_limiter.allow(f"login:hour:{ip}", settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many login attempts. Please try again later.")

    pair = await auth_service.login(credentials.email, credentials.password)
    set_refresh_cookie(response, settings, pair.refresh_token)
    return _token_response(pair, settings)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    settings: Settings = Depends(get_settings),
    auth_service: AuthService = Depends(get_auth_service),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
):
    """Rotate the refresh token from the body, or from the cookie with a CSRF header"""
    ip = client_ip(request)
    if not rate_limiter.allow(f"refresh:min:{ip}", settings.REFRESH_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many refresh attempts. Slow down.")

    presented = refresh_token_from_request(request, body.refresh_token if body else None, settings)
    pair = await auth_service.refresh(presented)
    set_refresh_cookie(response, settings, pair.refresh_token)
    return _token_response(pair, settings)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    settings: Settings = Depends(get_settings),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke the presented refresh token and clear the cookie"""
    presented = refresh_token_from_request(request, body.refresh_token if body else None, settings)
    await auth_service.logout(presented)

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(response, settings)
    return response


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Get current user information"""
    user = await auth_service.me(context)
    return UserResponse(email=user.email, role=user.role, created_at=user.created_at)


@router.get("/csrf-token", response_model=CsrfTokenResponse)
async def csrf_token(
    response: Response,
    settings: Settings = Depends(get_settings),
):
    """Issue a CSRF token; echo it in the CSRF header on cookie-authenticated calls"""
    token = generate_csrf_token()
    set_csrf_cookie(response, settings, token)
    return CsrfTokenResponse(csrf_token=token)


@router.get("/admin/ping")
async def admin_ping(
    context: AuthContext = Depends(require_role(UserRole.ADMIN)),
):
    return {"ok": True, "email": context.email}
