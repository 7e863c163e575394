"""Limit/offset clamping shared by every list operation."""
from typing import Optional, Tuple

from sqlalchemy.orm import Query

from marketplace.core.config import settings


def clamp(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    """Default limit 10, capped at 100; negative offsets become 0."""
    limit = settings.PAGE_SIZE_DEFAULT if not limit or limit < 1 else min(limit, settings.PAGE_SIZE_MAX)
    offset = max(offset or 0, 0)
    return limit, offset


def paginate(query: Query, limit: Optional[int] = None, offset: Optional[int] = None) -> list:
    limit, offset = clamp(limit, offset)
    return query.limit(limit).offset(offset).all()
