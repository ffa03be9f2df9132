# src/gallery_trust/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    account_router,
    admin_router,
    messages_router,
    system_router,
)

__all__ = [
    "account_router",
    "admin_router",
    "messages_router",
    "system_router",
]
