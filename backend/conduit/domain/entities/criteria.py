"""Query criteria for listing articles."""

from collections.abc import Sequence
from dataclasses import dataclass


@dataclass
class ListCriteria:
    """Optional filters and paging for article listings.

    An empty ``author_emails`` means "any author"; ``limit=None`` means no cap.
    Filters combine with AND.
    """

    tag: str | None = None
    author_emails: Sequence[str] = ()
    favorited_by_user_email: str | None = None
    limit: int | None = 20
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must not be negative, got {self.limit}")
        if self.offset < 0:
            raise ValueError(f"offset must not be negative, got {self.offset}")
