"""SQLAlchemy models."""
from .authenticator import Authenticator
from .client import OAuthClient
from .setting import SystemSetting
from .user import User, UserRole

__all__ = [
    "Authenticator",
    "OAuthClient",
    "SystemSetting",
    "User",
    "UserRole",
]
