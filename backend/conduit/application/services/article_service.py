"""Application service (use case) for articles, comments and favorites."""

import logging
from collections.abc import Sequence

from conduit.application.interfaces import Repository
from conduit.domain.entities import (
    Article,
    AuthoredArticle,
    Comment,
    CommentedArticle,
    ListCriteria,
)
from conduit.domain.exceptions import NotAuthorizedError, UserNotFoundError
from conduit.domain.validation import fold_key

logger = logging.getLogger(__name__)


class ArticleService:
    """Orchestrates article business logic.

    Authorization rules (only authors may edit or delete their articles and
    comments) live here, inside the transforms handed to the repository.
    """

    def __init__(self, repository: Repository, page_size: int = 20):
        self._repository = repository
        self._page_size = page_size

    async def create_article(
        self,
        author_email: str,
        title: str,
        description: str,
        body: str,
        tags: Sequence[str] = (),
    ) -> AuthoredArticle:
        article = Article.new(title, description, body, author_email, *tags)
        created = await self._repository.create_article(article)
        logger.info("Published '%s'", created.slug)
        return created

    async def get_article(self, slug: str) -> AuthoredArticle:
        return await self._repository.get_article_by_slug(slug)

    async def list_articles(
        self,
        *,
        tag: str | None = None,
        author: str | None = None,
        favorited: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AuthoredArticle]:
        """List articles newest first; ``author`` and ``favorited`` are usernames."""
        criteria = ListCriteria(
            tag=tag,
            limit=self._page_size if limit is None else limit,
            offset=offset,
        )
        try:
            if author:
                criteria.author_emails = [(await self._repository.get_user_by_username(author)).email]
            if favorited:
                fan = await self._repository.get_user_by_username(favorited)
                criteria.favorited_by_user_email = fan.email
        except UserNotFoundError:
            return []
        return await self._repository.latest_articles_by_criteria(criteria)

    async def feed(
        self, viewer_email: str, limit: int | None = None, offset: int = 0
    ) -> list[AuthoredArticle]:
        """Latest articles written by the users the viewer follows."""
        viewer = await self._repository.get_user_by_email(viewer_email)
        following = viewer.following_emails()
        if not following:
            return []
        return await self._repository.latest_articles_by_criteria(
            ListCriteria(
                author_emails=following,
                limit=self._page_size if limit is None else limit,
                offset=offset,
            )
        )

    async def update_article(
        self,
        viewer_email: str,
        slug: str,
        *,
        title: str | None = None,
        description: str | None = None,
        body: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> AuthoredArticle:
        def apply(article: Article) -> Article:
            _ensure_owner(article.author_email, viewer_email, "update this article")
            article.update(title=title, description=description, body=body, tags=tags)
            return article

        return await self._repository.update_article_by_slug(slug, apply)

    async def delete_article(self, viewer_email: str, slug: str) -> None:
        article = await self._repository.get_article_by_slug(slug)
        _ensure_owner(article.author_email, viewer_email, "delete this article")
        await self._repository.delete_article(article)
        logger.info("Deleted '%s'", slug)

    async def favorite(self, viewer_email: str, slug: str) -> AuthoredArticle:
        viewer = await self._repository.get_user_by_email(viewer_email)

        def apply(article: Article) -> Article:
            article.favorite(viewer.email)
            return article

        return await self._repository.update_article_by_slug(slug, apply)

    async def unfavorite(self, viewer_email: str, slug: str) -> AuthoredArticle:
        viewer = await self._repository.get_user_by_email(viewer_email)

        def apply(article: Article) -> Article:
            article.unfavorite(viewer.email)
            return article

        return await self._repository.update_article_by_slug(slug, apply)

    async def list_comments(self, slug: str) -> list[Comment]:
        return (await self._repository.get_comments_by_slug(slug)).comments

    async def add_comment(self, viewer_email: str, slug: str, body: str) -> Comment | None:
        def apply(article: CommentedArticle) -> CommentedArticle:
            article.add_comment(body, viewer_email)
            return article

        return await self._repository.update_comments_by_slug(slug, apply)

    async def delete_comment(self, viewer_email: str, slug: str, comment_id: int) -> None:
        def apply(article: CommentedArticle) -> CommentedArticle:
            comment = article.comment_by_id(comment_id)
            if comment is None:
                return article
            _ensure_owner(comment.author_email, viewer_email, "delete this comment")
            article.remove_comment(comment_id)
            return article

        await self._repository.update_comments_by_slug(slug, apply)

    async def tags(self) -> list[str]:
        return await self._repository.distinct_tags()


def _ensure_owner(owner_email: str, viewer_email: str, action: str) -> None:
    if fold_key(owner_email) != fold_key(viewer_email or ""):
        raise NotAuthorizedError(action)
