from .user_service import UserService
from .article_service import ArticleService

__all__ = [
    "UserService",
    "ArticleService",
]
