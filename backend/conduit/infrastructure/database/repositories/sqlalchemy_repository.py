"""Concrete Repository implementation backed by SQLAlchemy.

Records reference each other through surrogate integer ids, so renaming a
user's email or an article's slug needs no explicit propagation: follows,
favorites, authorship and comments keep pointing at the same rows.

Each contract call runs in its own transaction. Anything raised inside it,
including exceptions from caller-supplied transforms, rolls the whole call
back.
"""

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

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
from conduit.infrastructure.database.models import (
    ArticleModel,
    ArticleTagModel,
    CommentModel,
    FavoriteModel,
    FollowModel,
    UserModel,
)

logger = logging.getLogger(__name__)


class SQLAlchemyRepository(Repository):
    """Implements the Repository port using SQLAlchemy async sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ):
        self._session_factory = session_factory
        # only an engine handed over here is disposed by close()
        self._engine = engine

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("Disposed database engine")

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    # ── Users ────────────────────────────────────────────────────────

    async def create_user(self, user: User) -> User:
        user.validate()
        try:
            async with self._transaction() as session:
                await self._ensure_unique_user(session, user.email, user.username)
                model = UserModel(
                    email=user.email,
                    email_key=fold_key(user.email),
                    username=user.username,
                    username_key=fold_key(user.username),
                    bio=user.bio,
                    image=user.image,
                    password_hash=user.password,
                )
                session.add(model)
                await session.flush()
        except IntegrityError as exc:
            # lost a race against a concurrent insert of the same keys
            raise DuplicateUserError("email", user.email) from exc

        logger.info("Created user '%s' <%s>", model.username, model.email)
        return self._to_user(model)

    async def get_user_by_email(self, email: str) -> Fanboy:
        async with self._transaction() as session:
            model = await self._get_user_model(session, email)
            return await self._to_fanboy(session, model)

    async def get_user_by_username(self, username: str) -> User:
        async with self._transaction() as session:
            model = await session.scalar(
                select(UserModel).where(UserModel.username_key == fold_key(username))
            )
            if model is None:
                raise UserNotFoundError(username)
            return self._to_user(model)

    async def update_user_by_email(self, email: str, transform: UserTransform) -> User:
        try:
            async with self._transaction() as session:
                model = await self._get_user_model(session, email)
                updated = transform(self._to_user(model))
                if not isinstance(updated, User):
                    raise TypeError(f"user transform returned {type(updated).__name__}, expected User")
                await self._apply_user(session, model, updated)
                return self._to_user(model)
        except IntegrityError as exc:
            raise DuplicateUserError("email", email) from exc

    async def update_fanboy_by_email(self, email: str, transform: FanboyTransform) -> None:
        try:
            async with self._transaction() as session:
                model = await self._get_user_model(session, email)
                updated = transform(await self._to_fanboy(session, model))
                if not isinstance(updated, Fanboy):
                    raise TypeError(f"fanboy transform returned {type(updated).__name__}, expected Fanboy")

                await self._replace_following(session, model.id, updated.following)
                await self._replace_favorites(session, model.id, updated.favorites)
                await self._apply_user(session, model, updated.as_user())
        except IntegrityError as exc:
            raise DuplicateUserError("email", email) from exc

    async def _get_user_model(self, session: AsyncSession, email: str) -> UserModel:
        model = None
        if email:
            model = await session.scalar(
                select(UserModel).where(UserModel.email_key == fold_key(email))
            )
        if model is None:
            raise UserNotFoundError(email)
        return model

    async def _ensure_unique_user(
        self,
        session: AsyncSession,
        email: str,
        username: str,
        ignore_id: int | None = None,
    ) -> None:
        email_key = fold_key(email)
        username_key = fold_key(username)
        stmt = select(UserModel).where(
            or_(UserModel.email_key == email_key, UserModel.username_key == username_key)
        )
        if ignore_id is not None:
            stmt = stmt.where(UserModel.id != ignore_id)

        for clash in (await session.scalars(stmt)).all():
            if clash.email_key == email_key:
                logger.warning("Rejected duplicate email <%s>", email)
                raise DuplicateUserError("email", email)
            logger.warning("Rejected duplicate username '%s'", username)
            raise DuplicateUserError("username", username)

    async def _apply_user(self, session: AsyncSession, model: UserModel, user: User) -> None:
        user.validate()
        await self._ensure_unique_user(session, user.email, user.username, ignore_id=model.id)

        if fold_key(user.email) != model.email_key:
            logger.info("Changed email <%s> -> <%s>", model.email, user.email)
        model.email = user.email
        model.email_key = fold_key(user.email)
        model.username = user.username
        model.username_key = fold_key(user.username)
        model.bio = user.bio
        model.image = user.image
        model.password_hash = user.password
        await session.flush()

    async def _replace_following(
        self, session: AsyncSession, follower_id: int, emails: Iterable[str]
    ) -> None:
        keys = {fold_key(email) for email in emails if is_email(email)}
        followed_ids = set()
        if keys:
            followed_ids = set(
                (await session.scalars(select(UserModel.id).where(UserModel.email_key.in_(keys)))).all()
            )
        await session.execute(delete(FollowModel).where(FollowModel.follower_id == follower_id))
        session.add_all(
            FollowModel(follower_id=follower_id, followed_id=followed_id)
            for followed_id in followed_ids
        )

    async def _replace_favorites(
        self, session: AsyncSession, user_id: int, slugs: Iterable[str]
    ) -> None:
        keys = {fold_key(slug) for slug in slugs if slug}
        article_ids = set()
        if keys:
            article_ids = set(
                (await session.scalars(select(ArticleModel.id).where(ArticleModel.slug_key.in_(keys)))).all()
            )
        await session.execute(delete(FavoriteModel).where(FavoriteModel.user_id == user_id))
        session.add_all(
            FavoriteModel(user_id=user_id, article_id=article_id) for article_id in article_ids
        )

    def _to_user(self, model: UserModel) -> User:
        """Map ORM model → domain entity."""
        return User(
            email=model.email,
            username=model.username,
            bio=model.bio,
            image=model.image,
            password=model.password_hash,
        )

    async def _to_fanboy(self, session: AsyncSession, model: UserModel) -> Fanboy:
        following = await session.scalars(
            select(UserModel.email_key)
            .join(FollowModel, FollowModel.followed_id == UserModel.id)
            .where(FollowModel.follower_id == model.id)
        )
        favorites = await session.scalars(
            select(ArticleModel.slug_key)
            .join(FavoriteModel, FavoriteModel.article_id == ArticleModel.id)
            .where(FavoriteModel.user_id == model.id)
        )
        return Fanboy(
            email=model.email,
            username=model.username,
            bio=model.bio,
            image=model.image,
            password=model.password_hash,
            following=set(following.all()),
            favorites=set(favorites.all()),
        )

    # ── Articles ─────────────────────────────────────────────────────

    async def create_article(self, article: Article) -> AuthoredArticle:
        article.validate()
        try:
            async with self._transaction() as session:
                await self._ensure_unique_slug(session, article.slug)
                author = await self._get_author(session, article.author_email)

                now = utcnow()
                model = ArticleModel(
                    slug=article.slug,
                    slug_key=fold_key(article.slug),
                    title=article.title,
                    description=article.description,
                    body=article.body,
                    author_id=author.id,
                    created_at=now,
                    updated_at=now,
                )
                session.add(model)
                await session.flush()

                await self._replace_tags(session, model.id, article.tag_list)
                await self._replace_favorited_by(session, model.id, article.favorited_by)
                await session.flush()
                logger.info("Created article '%s' by <%s>", model.slug, author.email)
                return await self._to_authored(session, model)
        except IntegrityError as exc:
            raise DuplicateArticleError(article.slug) from exc

    async def get_article_by_slug(self, slug: str) -> AuthoredArticle:
        async with self._transaction() as session:
            model = await self._get_article_model(session, slug)
            return await self._to_authored(session, model)

    async def get_comments_by_slug(self, slug: str) -> CommentedArticle:
        async with self._transaction() as session:
            model = await self._get_article_model(session, slug)
            return CommentedArticle.of(
                await self._to_article(session, model),
                await self._to_comments(session, model.id),
            )

    async def update_article_by_slug(
        self, slug: str, transform: ArticleTransform
    ) -> AuthoredArticle:
        try:
            async with self._transaction() as session:
                model = await self._get_article_model(session, slug)
                current = await self._to_article(session, model)
                previous_favorites = set(current.favorited_by)

                updated = transform(current)
                if not isinstance(updated, Article):
                    raise TypeError(
                        f"article transform returned {type(updated).__name__}, expected Article"
                    )
                updated.validate()

                new_key = fold_key(updated.slug)
                if new_key != model.slug_key:
                    await self._ensure_unique_slug(session, updated.slug)
                    logger.info("Renamed article '%s' -> '%s'", model.slug, updated.slug)
                author = await self._get_author(session, updated.author_email)

                model.slug = updated.slug
                model.slug_key = new_key
                model.title = updated.title
                model.description = updated.description
                model.body = updated.body
                model.author_id = author.id
                model.updated_at = _advance(_as_utc(model.updated_at))

                await self._replace_tags(session, model.id, updated.tag_list)
                target_favorites = {fold_key(email) for email in updated.favorited_by if email}
                if target_favorites != previous_favorites:
                    await self._replace_favorited_by(session, model.id, target_favorites)
                await session.flush()
                return await self._to_authored(session, model)
        except IntegrityError as exc:
            raise DuplicateArticleError(slug) from exc

    async def update_comments_by_slug(
        self, slug: str, transform: CommentsTransform
    ) -> Comment | None:
        async with self._transaction() as session:
            model = await self._get_article_model(session, slug)
            current = CommentedArticle.of(
                await self._to_article(session, model),
                await self._to_comments(session, model.id),
            )

            updated = transform(current)
            if not isinstance(updated, CommentedArticle):
                raise TypeError(
                    f"comments transform returned {type(updated).__name__}, expected CommentedArticle"
                )

            stored = {
                comment.local_id: comment
                for comment in (
                    await session.scalars(
                        select(CommentModel).where(CommentModel.article_id == model.id)
                    )
                ).all()
            }
            retained_ids: set[int] = set()
            added: list[tuple[Comment, UserModel]] = []
            for comment in updated.comments:
                if comment.is_new:
                    comment.validate()
                    author = await self._get_author(session, comment.author_email)
                    added.append((comment, author))
                elif comment.id in stored:
                    retained_ids.add(comment.id)
                else:
                    logger.debug("Ignored unknown comment id %d on '%s'", comment.id, model.slug)

            for local_id, comment_model in stored.items():
                if local_id not in retained_ids:
                    await session.delete(comment_model)
            # deletes must hit the table before a freed local_id is reused
            await session.flush()

            next_id = max(stored, default=0) + 1
            now = utcnow()
            created: list[Comment] = []
            for comment, author in added:
                session.add(
                    CommentModel(
                        article_id=model.id,
                        local_id=next_id,
                        body=comment.body,
                        author_id=author.id,
                        created_at=now,
                    )
                )
                created.append(
                    Comment(id=next_id, body=comment.body, author_email=author.email, created_at=now)
                )
                next_id += 1
            await session.flush()

            logger.debug(
                "Updated comments on '%s' (added=%d, removed=%d)",
                model.slug,
                len(created),
                len(stored) - len(retained_ids),
            )
            return created[0] if len(created) == 1 else None

    async def delete_article(self, article: Article | None) -> None:
        if article is None:
            return
        async with self._transaction() as session:
            model = await session.scalar(
                select(ArticleModel).where(ArticleModel.slug_key == fold_key(article.slug))
            )
            if model is None:
                return
            # children are removed explicitly; SQLite does not enforce ON DELETE by default
            await session.execute(delete(FavoriteModel).where(FavoriteModel.article_id == model.id))
            await session.execute(delete(ArticleTagModel).where(ArticleTagModel.article_id == model.id))
            await session.execute(delete(CommentModel).where(CommentModel.article_id == model.id))
            await session.delete(model)
            logger.info("Deleted article '%s'", model.slug)

    async def latest_articles_by_criteria(self, criteria: ListCriteria) -> list[AuthoredArticle]:
        async with self._transaction() as session:
            stmt = select(ArticleModel).join(UserModel, UserModel.id == ArticleModel.author_id)

            authors = {fold_key(email) for email in criteria.author_emails if email}
            if authors:
                stmt = stmt.where(UserModel.email_key.in_(authors))

            if criteria.favorited_by_user_email:
                fan = await self._get_user_model(session, criteria.favorited_by_user_email)
                stmt = stmt.where(
                    ArticleModel.id.in_(
                        select(FavoriteModel.article_id).where(FavoriteModel.user_id == fan.id)
                    )
                )

            if criteria.tag:
                stmt = stmt.where(
                    ArticleModel.id.in_(
                        select(ArticleTagModel.article_id).where(
                            ArticleTagModel.tag_key == fold_key(criteria.tag)
                        )
                    )
                )

            stmt = stmt.order_by(ArticleModel.created_at.desc(), ArticleModel.id.desc())
            stmt = stmt.offset(criteria.offset)
            if criteria.limit is not None:
                stmt = stmt.limit(criteria.limit)

            models = (await session.scalars(stmt)).all()
            return [await self._to_authored(session, model) for model in models]

    async def distinct_tags(self) -> list[str]:
        async with self._transaction() as session:
            rows = await session.execute(
                select(ArticleTagModel.tag_key, ArticleTagModel.tag).order_by(ArticleTagModel.id)
            )
            tags: dict[str, str] = {}
            for tag_key, tag in rows.all():
                tags.setdefault(tag_key, tag)
            return list(tags.values())

    async def _get_article_model(self, session: AsyncSession, slug: str) -> ArticleModel:
        model = None
        if slug:
            model = await session.scalar(
                select(ArticleModel).where(ArticleModel.slug_key == fold_key(slug))
            )
        if model is None:
            raise ArticleNotFoundError(slug)
        return model

    async def _ensure_unique_slug(self, session: AsyncSession, slug: str) -> None:
        clash = await session.scalar(
            select(ArticleModel.id).where(ArticleModel.slug_key == fold_key(slug))
        )
        if clash is not None:
            logger.warning("Rejected duplicate slug '%s'", slug)
            raise DuplicateArticleError(slug)

    async def _get_author(self, session: AsyncSession, email: str) -> UserModel:
        author = await session.scalar(select(UserModel).where(UserModel.email_key == fold_key(email)))
        if author is None:
            raise NoAuthorError(email)
        return author

    async def _replace_tags(self, session: AsyncSession, article_id: int, tags: Iterable[str]) -> None:
        await session.execute(delete(ArticleTagModel).where(ArticleTagModel.article_id == article_id))
        session.add_all(
            ArticleTagModel(article_id=article_id, tag=tag, tag_key=fold_key(tag))
            for tag in unique_tags(tags)
        )

    async def _replace_favorited_by(
        self, session: AsyncSession, article_id: int, emails: Iterable[str]
    ) -> None:
        keys = {fold_key(email) for email in emails if email}
        user_ids = set()
        if keys:
            user_ids = set(
                (await session.scalars(select(UserModel.id).where(UserModel.email_key.in_(keys)))).all()
            )
        await session.execute(delete(FavoriteModel).where(FavoriteModel.article_id == article_id))
        session.add_all(FavoriteModel(user_id=user_id, article_id=article_id) for user_id in user_ids)

    async def _to_article(self, session: AsyncSession, model: ArticleModel) -> Article:
        """Map ORM model (plus its tags, author and favorites) → domain entity."""
        author_email = await session.scalar(
            select(UserModel.email).where(UserModel.id == model.author_id)
        )
        tags = await session.scalars(
            select(ArticleTagModel.tag)
            .where(ArticleTagModel.article_id == model.id)
            .order_by(ArticleTagModel.id)
        )
        favorited_by = await session.scalars(
            select(UserModel.email_key)
            .join(FavoriteModel, FavoriteModel.user_id == UserModel.id)
            .where(FavoriteModel.article_id == model.id)
        )
        return Article(
            slug=model.slug,
            title=model.title,
            description=model.description,
            body=model.body,
            author_email=author_email,
            tag_list=list(tags.all()),
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
            favorited_by=set(favorited_by.all()),
        )

    async def _to_authored(self, session: AsyncSession, model: ArticleModel) -> AuthoredArticle:
        author = await session.get(UserModel, model.author_id)
        if author is None:
            raise NoAuthorError(str(model.author_id))
        return AuthoredArticle.of(await self._to_article(session, model), self._to_user(author))

    async def _to_comments(self, session: AsyncSession, article_id: int) -> list[Comment]:
        rows = await session.execute(
            select(CommentModel, UserModel.email)
            .join(UserModel, UserModel.id == CommentModel.author_id)
            .where(CommentModel.article_id == article_id)
            .order_by(CommentModel.created_at, CommentModel.id)
        )
        return [
            Comment(
                id=comment.local_id,
                body=comment.body,
                author_email=email,
                created_at=_as_utc(comment.created_at),
            )
            for comment, email in rows.all()
        ]


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _advance(previous: datetime) -> datetime:
    return max(utcnow(), previous + timedelta(microseconds=1))
