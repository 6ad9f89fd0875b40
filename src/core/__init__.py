from src.core.config import settings
from src.core.database import get_db
from src.core.security import create_access_token, token_subject

__all__ = ["settings", "get_db", "create_access_token", "token_subject"]
