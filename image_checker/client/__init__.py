"""Client module exports"""
from .session_store import AutoSaver, SessionStore

__all__ = ["AutoSaver", "SessionStore"]
