"""API module exports"""
from .endpoints import router
from .errors import register_exception_handlers

__all__ = ["router", "register_exception_handlers"]
