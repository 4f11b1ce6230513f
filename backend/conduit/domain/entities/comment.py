"""Domain entity for a comment left on an article."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from conduit.domain.exceptions import InvalidFieldError, RequiredFieldsMissingError
from conduit.domain.validation import is_email


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Comment:
    """A comment on a single article.

    ``id`` is only unique within the parent article. An id of ``0`` marks a
    comment that has not been stored yet; the repository assigns the real id.
    Comments are never edited, only deleted.
    """

    body: str
    author_email: str
    id: int = 0
    created_at: datetime = field(default_factory=utcnow)

    @property
    def updated_at(self) -> datetime:
        return self.created_at

    @property
    def is_new(self) -> bool:
        return self.id == 0

    def validate(self) -> None:
        """Raise a DomainValidationError unless every field is well-formed."""
        missing = [
            name
            for name, value in (("body", self.body), ("author_email", self.author_email))
            if not value
        ]
        if missing:
            raise RequiredFieldsMissingError("Comment", missing)
        if self.id < 0:
            raise InvalidFieldError("Comment", "id", str(self.id))
        if not is_email(self.author_email):
            raise InvalidFieldError("Comment", "author_email", self.author_email)
