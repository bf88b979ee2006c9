"""Core app configuration, database and shared error types."""

from aegis.core.config import get_settings, settings
from aegis.core.database import get_db

__all__ = ["get_settings", "settings", "get_db"]
