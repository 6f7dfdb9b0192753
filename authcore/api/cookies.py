"""Refresh and CSRF cookie policy"""

from fastapi import Response

from authcore.config import Settings


def _cookie_kwargs(settings: Settings) -> dict:
    return {
        "path": "/",
        "domain": settings.COOKIE_DOMAIN or None,
        "secure": settings.SESSION_SECURE,
        "httponly": True,
        "samesite": "strict",
    }


def refresh_cookie_name(settings: Settings) -> str:
    return settings.cookie_name(settings.REFRESH_COOKIE_NAME)


def csrf_cookie_name(settings: Settings) -> str:
    return settings.cookie_name(settings.CSRF_COOKIE_NAME)


def set_refresh_cookie(response: Response, settings: Settings, refresh_token: str) -> None:
    response.set_cookie(
        refresh_cookie_name(settings),
        refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        **_cookie_kwargs(settings),
    )


def clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(refresh_cookie_name(settings), **_cookie_kwargs(settings))


def set_csrf_cookie(response: Response, settings: Settings, csrf_token: str) -> None:
    response.set_cookie(csrf_cookie_name(settings), csrf_token, **_cookie_kwargs(settings))
