from .user_repository import UserRepository, UserTransform, FanboyTransform
from .article_repository import ArticleRepository, ArticleTransform, CommentsTransform
from .repository import Repository

__all__ = [
    "UserRepository",
    "UserTransform",
    "FanboyTransform",
    "ArticleRepository",
    "ArticleTransform",
    "CommentsTransform",
    "Repository",
]
