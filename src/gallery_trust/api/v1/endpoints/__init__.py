# src/gallery_trust/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .account import router as account_router
from .admin import router as admin_router
from .messages import router as messages_router
from .system import router as system_router

__all__ = [
    "account_router",
    "admin_router",
    "messages_router",
    "system_router",
]
