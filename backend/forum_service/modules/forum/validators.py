"""
Input normalization shared by the forum services.
"""

import math
from dataclasses import dataclass
from typing import Generic, TypeVar

from forum_service.core.config import settings
from forum_service.core.exceptions import ValidationError

T = TypeVar("T")


def require_text(value: str | None, field_name: str) -> str:
    """Return the trimmed value or raise if it is missing/blank."""
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required")
    return text


def normalize_tags(tags: list[str] | None) -> list[str]:
    """
    Trim tags and drop blanks and duplicates, keeping first-seen order.

    Raises:
        ValidationError: too many tags or a tag over the length limit
    """
    result: list[str] = []
    for raw in tags or []:
        tag = (raw or "").strip()
        if not tag or tag in result:
            continue
        if len(tag) > settings.forum_max_tag_length:
            raise ValidationError(
                f"Tags must be at most {settings.forum_max_tag_length} characters"
            )
        result.append(tag)

    if len(result) > settings.forum_max_tags:
        raise ValidationError(f"At most {settings.forum_max_tags} tags are allowed")
    return result


def check_page(page: int, limit: int) -> None:
    """Validate pagination arguments."""
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > settings.forum_max_page_size:
        raise ValidationError(
            f"limit must be between 1 and {settings.forum_max_page_size}"
        )


@dataclass
class Page(Generic[T]):
    """One page of a listing plus the numbers needed to page through it."""

    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
