"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

import math

from pydantic import BaseModel, Field


class Pagination(BaseModel):
    """Page-based pagination block returned by list endpoints."""

    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    pages: int = Field(..., ge=0)

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> Pagination:
        """Return a pagination block for ``total`` rows split into ``limit`` pages."""
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit))
