"""Database models"""

from authcore.models.user import User
from authcore.models.security import RefreshToken, FailedLogin

__all__ = ["User", "RefreshToken", "FailedLogin"]
