from src.modules.auth.models import ServiceCategory, User, UserRole
from src.modules.auth.router import router

__all__ = [
    "User",
    "UserRole",
    "ServiceCategory",
    "router",
]
