"""Combined repository port — one backend serves both aggregate families."""

from abc import ABC

from .article_repository import ArticleRepository
from .user_repository import UserRepository


class Repository(UserRepository, ArticleRepository, ABC):
    """A storage backend implementing both the user and the article ports.

    Both halves share one store so that identity changes on one aggregate
    (e.g. a user's email) can be propagated to the other atomically.
    """

    async def close(self) -> None:
        """Release any resources held by the backend; the default holds none."""
