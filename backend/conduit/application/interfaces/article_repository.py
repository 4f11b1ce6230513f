"""Abstract repository interface (port) for articles and their comments."""

from abc import ABC, abstractmethod
from collections.abc import Callable

from conduit.domain.entities import (
    Article,
    AuthoredArticle,
    Comment,
    CommentedArticle,
    ListCriteria,
)

ArticleTransform = Callable[[Article], Article]
CommentsTransform = Callable[[CommentedArticle], CommentedArticle]


class ArticleRepository(ABC):
    """Port for article persistence — implemented in the infrastructure layer."""

    @abstractmethod
    async def create_article(self, article: Article) -> AuthoredArticle:
        """Persist a new article.

        Raises DuplicateArticleError if the slug is taken and NoAuthorError if
        the author does not exist.
        """
        ...

    @abstractmethod
    async def get_article_by_slug(self, slug: str) -> AuthoredArticle:
        """Return the article with this slug. Raises ArticleNotFoundError."""
        ...

    @abstractmethod
    async def get_comments_by_slug(self, slug: str) -> CommentedArticle:
        """Return the article with this slug and its comments, oldest first.

        Raises ArticleNotFoundError.
        """
        ...

    @abstractmethod
    async def update_article_by_slug(
        self, slug: str, transform: ArticleTransform
    ) -> AuthoredArticle:
        """Apply *transform* to the article with this slug and store the result.

        Raises ArticleNotFoundError, DuplicateArticleError, NoAuthorError, or
        whatever the transform raises. A slug change is propagated to every
        user that favors the article.
        """
        ...

    @abstractmethod
    async def update_comments_by_slug(
        self, slug: str, transform: CommentsTransform
    ) -> Comment | None:
        """Apply *transform* to the article's comments and store the result.

        Returns the newly created comment when the transform added exactly
        one, otherwise None. Raises ArticleNotFoundError, NoAuthorError, or
        whatever the transform raises.
        """
        ...

    @abstractmethod
    async def delete_article(self, article: Article | None) -> None:
        """Delete the article if it exists. ``None`` is a no-op."""
        ...

    @abstractmethod
    async def latest_articles_by_criteria(self, criteria: ListCriteria) -> list[AuthoredArticle]:
        """List articles newest first, filtered and paged by *criteria*.

        Raises UserNotFoundError when filtering by a user that does not exist.
        """
        ...

    @abstractmethod
    async def distinct_tags(self) -> list[str]:
        """Return every tag in use, de-duplicated case-insensitively."""
        ...
