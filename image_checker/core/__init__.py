"""Core module exports"""
from .config import settings, Settings
from .clock import Clock, utcnow
from .database import engine, async_session_maker, create_tables, enable_sqlite_foreign_keys, get_db

__all__ = ["settings", "Settings", "Clock", "utcnow", "engine", "async_session_maker", "create_tables", "enable_sqlite_foreign_keys", "get_db"]
