"""Models module exports"""
from .database import Base, ReviewSession, SessionActivityLog

__all__ = ["Base", "ReviewSession", "SessionActivityLog"]
