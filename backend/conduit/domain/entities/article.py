"""Domain entities for articles and their read-only projections."""

from collections.abc import Iterable
from dataclasses import dataclass, field, fields
from datetime import datetime

from slugify import slugify

from conduit.domain.entities.comment import Comment, utcnow
from conduit.domain.entities.user import User
from conduit.domain.exceptions import (
    InvalidFieldError,
    InvalidSlugError,
    RequiredFieldsMissingError,
)
from conduit.domain.validation import fold_key, is_email, is_slug


def make_slug(title: str) -> str:
    """Derive the slug for a title: ASCII-folded, lowercased, hyphen separated."""
    return slugify(title or "")


def unique_tags(tags: Iterable[str]) -> list[str]:
    """Drop blank and case-insensitively repeated tags, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        if not tag or not tag.strip():
            continue
        key = fold_key(tag)
        if key in seen:
            continue
        seen.add(key)
        result.append(tag.strip())
    return result


@dataclass
class Article:
    """A post written by a single user.

    The slug is derived from the title and doubles as the article's identity,
    so it should only ever change through ``set_title``.
    """

    slug: str
    title: str
    description: str
    body: str
    author_email: str
    tag_list: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    favorited_by: set[str] = field(default_factory=set)

    @classmethod
    def new(
        cls,
        title: str,
        description: str,
        body: str,
        author_email: str,
        *tags: str,
    ) -> "Article":
        """Create a validated article, slugifying its title."""
        _require(title=title, description=description, body=body, author_email=author_email)
        slug = make_slug(title)
        if not is_slug(slug):
            raise InvalidSlugError(title)

        now = utcnow()
        article = cls(
            slug=slug,
            title=title,
            description=description,
            body=body,
            author_email=author_email,
            tag_list=unique_tags(tags),
            created_at=now,
            updated_at=now,
        )
        article.validate()
        return article

    def validate(self) -> None:
        """Raise a DomainValidationError unless every field is well-formed."""
        _require(
            slug=self.slug,
            title=self.title,
            description=self.description,
            body=self.body,
            author_email=self.author_email,
        )
        if not is_slug(self.slug):
            raise InvalidSlugError(self.slug)
        if not is_email(self.author_email):
            raise InvalidFieldError("Article", "author_email", self.author_email)

    def set_title(self, title: str) -> None:
        """Change the title and re-derive the slug from it."""
        if not title:
            raise RequiredFieldsMissingError("Article", ["title"])
        slug = make_slug(title)
        if not is_slug(slug):
            raise InvalidSlugError(title)
        self.slug = slug
        self.title = title

    def update(
        self,
        title: str | None = None,
        description: str | None = None,
        body: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> None:
        """Merge the non-empty values into this article and refresh updated_at."""
        if title:
            self.set_title(title)
        if description:
            self.description = description
        if body:
            self.body = body
        if tags is not None:
            self.tag_list = unique_tags(tags)
        self.updated_at = utcnow()

    def is_favorited_by(self, user_email: str) -> bool:
        if not user_email:
            return False
        return fold_key(user_email) in self.favorited_by

    def favorite(self, user_email: str) -> None:
        if not is_email(user_email):
            return
        self.favorited_by.add(fold_key(user_email))

    def unfavorite(self, user_email: str) -> None:
        if not user_email:
            return
        self.favorited_by.discard(fold_key(user_email))


@dataclass
class AuthoredArticle(Article):
    """An article together with its resolved author."""

    author: User | None = None

    @classmethod
    def of(cls, article: Article, author: User) -> "AuthoredArticle":
        return cls(**_article_fields(article), author=author)

    @property
    def favorite_count(self) -> int:
        return len(self.favorited_by)


@dataclass
class CommentedArticle(Article):
    """An article together with its comments, oldest first."""

    comments: list[Comment] = field(default_factory=list)

    @classmethod
    def of(cls, article: Article, comments: Iterable[Comment]) -> "CommentedArticle":
        # sorted() is stable, so equal timestamps keep their insertion order
        ordered = sorted(comments, key=lambda c: c.created_at)
        return cls(**_article_fields(article), comments=ordered)

    def comment_by_id(self, comment_id: int) -> Comment | None:
        if comment_id == 0:
            return None
        return next((c for c in self.comments if c.id == comment_id), None)

    def add_comment(self, body: str, author_email: str) -> Comment:
        """Append a new (not yet stored) comment and return it."""
        comment = Comment(body=body, author_email=author_email)
        comment.validate()
        self.comments.append(comment)
        return comment

    def remove_comment(self, comment_id: int) -> None:
        """Remove the comment with this id; unknown ids are ignored."""
        if comment_id == 0:
            return
        for index, comment in enumerate(self.comments):
            if comment.id == comment_id:
                del self.comments[index]
                return


def _require(**values: str) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise RequiredFieldsMissingError("Article", missing)


def _article_fields(article: Article) -> dict:
    return {f.name: getattr(article, f.name) for f in fields(Article)}
