"""Shared skip/limit query parameters for list endpoints."""
from typing import Optional

from fastapi import Query

from app.config import settings
from app.errors import ValidationFailed


class Page:
    """
    Offset pagination. `skip` must be ≥ 0 and `limit` within
    1..settings.max_page_size; anything else is rejected with a 400.
    """

    def __init__(
        self,
        skip: int = Query(0, ge=0),
        limit: Optional[int] = Query(None, ge=1),
    ):
        if limit is None:
            limit = settings.default_page_size
        elif limit > settings.max_page_size:
            raise ValidationFailed(f"limit must be at most {settings.max_page_size}")
        self.skip = skip
        self.limit = limit
