"""Core app configuration, security primitives and database."""

from signwise.core.config import get_settings, settings
from signwise.core.database import get_db

__all__ = ["get_settings", "settings", "get_db"]
