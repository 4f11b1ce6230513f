"""In-memory implementation of the Repository port.

All state lives in two dicts keyed by case-folded natural key (email and
slug) and is guarded by a single ``asyncio.Lock``: every operation is
serialized. This backend exists for tests and demos, not for throughput.

Transforms run while the lock is held, so they must not call back into the
repository. Every update computes and validates the complete next state
before any record is touched; a transform that raises, a duplicate key, or
a missing author leaves the store exactly as it was.
"""

import asyncio
import itertools
import logging
from datetime import datetime, timedelta

from conduit.application.interfaces import (
    ArticleTransform,
    CommentsTransform,
    FanboyTransform,
    Repository,
    UserTransform,
)
from conduit.domain.entities import (
    Article,
    AuthoredArticle,
    Comment,
    CommentedArticle,
    Fanboy,
    ListCriteria,
    User,
)
from conduit.domain.entities.article import unique_tags
from conduit.domain.entities.comment import utcnow
from conduit.domain.exceptions import (
    ArticleNotFoundError,
    DuplicateArticleError,
    DuplicateUserError,
    NoAuthorError,
    UserNotFoundError,
)
from conduit.domain.validation import fold_key, is_email

from .records import ArticleRecord, CommentRecord, UserRecord

logger = logging.getLogger(__name__)


class InMemoryRepository(Repository):
    """Reference store for users and articles — construct one per process or test."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._users: dict[str, UserRecord] = {}
        self._articles: dict[str, ArticleRecord] = {}
        self._sequence = itertools.count(1)

    # ── Users ────────────────────────────────────────────────────────

    async def create_user(self, user: User) -> User:
        async with self._lock:
            user.validate()
            self._ensure_unique_user(user.email, user.username)

            record = UserRecord.from_user(user)
            self._users[record.key] = record
            logger.info("Created user '%s' <%s>", record.username, record.email)
            return record.to_user()

    async def get_user_by_email(self, email: str) -> Fanboy:
        async with self._lock:
            return self._get_user_record(email).to_fanboy()

    async def get_user_by_username(self, username: str) -> User:
        async with self._lock:
            wanted = fold_key(username)
            for record in self._users.values():
                if fold_key(record.username) == wanted:
                    return record.to_user()
            raise UserNotFoundError(username)

    async def update_user_by_email(self, email: str, transform: UserTransform) -> User:
        async with self._lock:
            return self._update_user(email, transform)

    async def update_fanboy_by_email(self, email: str, transform: FanboyTransform) -> None:
        async with self._lock:
            current = self._get_user_record(email).to_fanboy()
            updated = transform(current)
            if not isinstance(updated, Fanboy):
                raise TypeError(f"fanboy transform returned {type(updated).__name__}, expected Fanboy")

            following = self._known_following(updated.following)
            favorites = self._known_favorites(updated.favorites)
            user = updated.as_user()
            self._update_user(
                email,
                lambda _: user,
                following=following,
                favorites=favorites,
            )

    def _get_user_record(self, email: str) -> UserRecord:
        record = self._users.get(fold_key(email)) if email else None
        if record is None:
            raise UserNotFoundError(email)
        return record

    def _ensure_unique_user(self, email: str, username: str, ignore_key: str | None = None) -> None:
        email_key = fold_key(email)
        username_key = fold_key(username)
        for key, record in self._users.items():
            if key == ignore_key:
                continue
            if key == email_key:
                logger.warning("Rejected duplicate email <%s>", email)
                raise DuplicateUserError("email", email)
            if fold_key(record.username) == username_key:
                logger.warning("Rejected duplicate username '%s'", username)
                raise DuplicateUserError("username", username)

    def _update_user(
        self,
        email: str,
        transform: UserTransform,
        following: set[str] | None = None,
        favorites: set[str] | None = None,
    ) -> User:
        """Run a user update with the lock already held.

        The old record is only replaced once the transformed user has passed
        validation and the uniqueness scan (which skips the old record itself).
        """
        record = self._get_user_record(email)
        old_key = record.key

        updated = transform(record.to_user())
        if not isinstance(updated, User):
            raise TypeError(f"user transform returned {type(updated).__name__}, expected User")
        updated.validate()
        self._ensure_unique_user(updated.email, updated.username, ignore_key=old_key)

        replacement = UserRecord.from_user(
            updated,
            following=record.following if following is None else following,
            favorites=record.favorites if favorites is None else favorites,
        )
        del self._users[old_key]
        self._users[replacement.key] = replacement

        if replacement.email != record.email:
            self._propagate_email_change(old_key, replacement.email)
        return replacement.to_user()

    def _propagate_email_change(self, old_key: str, new_email: str) -> None:
        """Rewrite every reference to the old email: follows, authorship, comments.

        Follows hold case-folded keys and only move when the key changes;
        authorship and comments take the new spelling even for a case-only change.
        """
        new_key = fold_key(new_email)
        followers = 0
        if new_key != old_key:
            for record in self._users.values():
                if old_key in record.following:
                    record.following.discard(old_key)
                    record.following.add(new_key)
                    followers += 1

        authored = 0
        for article in self._articles.values():
            if fold_key(article.author_email) == old_key:
                article.author_email = new_email
                authored += 1
            for comment in article.comments:
                if fold_key(comment.author_email) == old_key:
                    comment.author_email = new_email

        logger.info(
            "Propagated email change <%s> -> <%s> (followers=%d, articles=%d)",
            old_key,
            new_email,
            followers,
            authored,
        )

    def _known_following(self, emails: set[str]) -> set[str]:
        keys = {fold_key(email) for email in emails if is_email(email)}
        known = {key for key in keys if key in self._users}
        if len(known) != len(emails):
            logger.debug("Dropped %d unknown or malformed follow entries", len(emails) - len(known))
        return known

    def _known_favorites(self, slugs: set[str]) -> set[str]:
        keys = {fold_key(slug) for slug in slugs if slug}
        known = {key for key in keys if key in self._articles}
        if len(known) != len(slugs):
            logger.debug("Dropped %d unknown favorite entries", len(slugs) - len(known))
        return known

    # ── Articles ─────────────────────────────────────────────────────

    async def create_article(self, article: Article) -> AuthoredArticle:
        async with self._lock:
            article.validate()
            key = fold_key(article.slug)
            if key in self._articles:
                logger.warning("Rejected duplicate slug '%s'", article.slug)
                raise DuplicateArticleError(article.slug)
            if fold_key(article.author_email) not in self._users:
                raise NoAuthorError(article.author_email)

            now = utcnow()
            record = ArticleRecord(
                slug=article.slug,
                title=article.title,
                description=article.description,
                body=article.body,
                author_email=article.author_email,
                tag_list=unique_tags(article.tag_list),
                created_at=now,
                updated_at=now,
                sequence=next(self._sequence),
            )
            self._articles[key] = record
            self._apply_favorites(key, set(), _fold_all(article.favorited_by))
            logger.info("Created article '%s' by <%s>", record.slug, record.author_email)
            return self._authored(record)

    async def get_article_by_slug(self, slug: str) -> AuthoredArticle:
        async with self._lock:
            return self._authored(self._get_article_record(slug))

    async def get_comments_by_slug(self, slug: str) -> CommentedArticle:
        async with self._lock:
            record = self._get_article_record(slug)
            return CommentedArticle.of(
                record.to_article(self._favorited_by(record.key)),
                record.to_comments(),
            )

    async def update_article_by_slug(
        self, slug: str, transform: ArticleTransform
    ) -> AuthoredArticle:
        async with self._lock:
            record = self._get_article_record(slug)
            old_key = record.key
            previous_favorites = self._favorited_by(old_key)

            updated = transform(record.to_article(previous_favorites))
            if not isinstance(updated, Article):
                raise TypeError(f"article transform returned {type(updated).__name__}, expected Article")
            updated.validate()

            new_key = fold_key(updated.slug)
            if new_key != old_key and new_key in self._articles:
                logger.warning("Rejected rename of '%s' to duplicate slug '%s'", record.slug, updated.slug)
                raise DuplicateArticleError(updated.slug)
            if fold_key(updated.author_email) not in self._users:
                raise NoAuthorError(updated.author_email)

            replacement = ArticleRecord(
                slug=updated.slug,
                title=updated.title,
                description=updated.description,
                body=updated.body,
                author_email=updated.author_email,
                tag_list=unique_tags(updated.tag_list),
                created_at=record.created_at,
                updated_at=_advance(record.updated_at),
                sequence=record.sequence,
                comments=record.comments,
            )
            del self._articles[old_key]
            self._articles[new_key] = replacement

            if new_key != old_key:
                self._propagate_slug_change(old_key, new_key)
            self._apply_favorites(new_key, previous_favorites, _fold_all(updated.favorited_by))
            return self._authored(replacement)

    async def update_comments_by_slug(
        self, slug: str, transform: CommentsTransform
    ) -> Comment | None:
        async with self._lock:
            record = self._get_article_record(slug)
            current = CommentedArticle.of(
                record.to_article(self._favorited_by(record.key)),
                record.to_comments(),
            )

            updated = transform(current)
            if not isinstance(updated, CommentedArticle):
                raise TypeError(
                    f"comments transform returned {type(updated).__name__}, expected CommentedArticle"
                )

            stored_ids = {comment.id for comment in record.comments}
            retained_ids: set[int] = set()
            added: list[Comment] = []
            for comment in updated.comments:
                if comment.is_new:
                    comment.validate()
                    if fold_key(comment.author_email) not in self._users:
                        raise NoAuthorError(comment.author_email)
                    added.append(comment)
                elif comment.id in stored_ids:
                    retained_ids.add(comment.id)
                else:
                    logger.debug("Ignored unknown comment id %d on '%s'", comment.id, record.slug)

            kept = [comment for comment in record.comments if comment.id in retained_ids]
            # ids freed by this same transform are not handed out again
            next_id = max(stored_ids, default=0) + 1
            now = utcnow()
            created: list[CommentRecord] = []
            for comment in added:
                created.append(
                    CommentRecord(
                        id=next_id,
                        body=comment.body,
                        author_email=comment.author_email,
                        created_at=now,
                    )
                )
                next_id += 1

            removed = len(record.comments) - len(kept)
            record.comments = kept + created
            logger.debug(
                "Updated comments on '%s' (added=%d, removed=%d)", record.slug, len(created), removed
            )
            return created[0].to_entity() if len(created) == 1 else None

    async def delete_article(self, article: Article | None) -> None:
        if article is None:
            return
        async with self._lock:
            key = fold_key(article.slug)
            record = self._articles.pop(key, None)
            if record is None:
                return
            for user in self._users.values():
                user.favorites.discard(key)
            logger.info("Deleted article '%s'", record.slug)

    async def latest_articles_by_criteria(self, criteria: ListCriteria) -> list[AuthoredArticle]:
        async with self._lock:
            records = sorted(
                self._articles.values(),
                key=lambda r: (r.created_at, r.sequence),
                reverse=True,
            )

            authors = _fold_all(criteria.author_emails)
            if authors:
                records = [r for r in records if fold_key(r.author_email) in authors]

            if criteria.favorited_by_user_email:
                fan = self._get_user_record(criteria.favorited_by_user_email)
                records = [r for r in records if r.key in fan.favorites]

            if criteria.tag:
                tag = fold_key(criteria.tag)
                records = [r for r in records if tag in _fold_all(r.tag_list)]

            results: list[AuthoredArticle] = []
            for record in records:
                try:
                    results.append(self._authored(record))
                except NoAuthorError:
                    logger.warning("Skipped article '%s' with missing author", record.slug)

            page = results[criteria.offset:]
            if criteria.limit is not None:
                page = page[: criteria.limit]
            return page

    async def distinct_tags(self) -> list[str]:
        async with self._lock:
            tags: dict[str, str] = {}
            for record in self._articles.values():
                for tag in record.tag_list:
                    tags.setdefault(fold_key(tag), tag)
            return list(tags.values())

    def _get_article_record(self, slug: str) -> ArticleRecord:
        record = self._articles.get(fold_key(slug)) if slug else None
        if record is None:
            raise ArticleNotFoundError(slug)
        return record

    def _favorited_by(self, slug_key: str) -> set[str]:
        return {key for key, user in self._users.items() if slug_key in user.favorites}

    def _authored(self, record: ArticleRecord) -> AuthoredArticle:
        author = self._users.get(fold_key(record.author_email))
        if author is None:
            raise NoAuthorError(record.author_email)
        return AuthoredArticle.of(
            record.to_article(self._favorited_by(record.key)),
            author.to_user(),
        )

    def _apply_favorites(self, slug_key: str, before: set[str], after: set[str]) -> None:
        """Write an article's favorited-by changes back to the users' favorites."""
        for email in after - before:
            user = self._users.get(email)
            if user is None:
                logger.debug("Ignored favorite from unknown user <%s>", email)
                continue
            user.favorites.add(slug_key)
        for email in before - after:
            user = self._users.get(email)
            if user is not None:
                user.favorites.discard(slug_key)

    def _propagate_slug_change(self, old_key: str, new_key: str) -> None:
        fans = 0
        for user in self._users.values():
            if old_key in user.favorites:
                user.favorites.discard(old_key)
                user.favorites.add(new_key)
                fans += 1
        logger.info("Propagated slug change '%s' -> '%s' (fans=%d)", old_key, new_key, fans)


def _fold_all(values) -> set[str]:
    return {fold_key(value) for value in values if value}


def _advance(previous: datetime) -> datetime:
    """Current time, nudged forward if the clock has not moved past *previous*."""
    return max(utcnow(), previous + timedelta(microseconds=1))
