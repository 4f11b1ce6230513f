from .user import UserModel, FollowModel
from .article import ArticleModel, ArticleTagModel, FavoriteModel, CommentModel

__all__ = [
    "UserModel",
    "FollowModel",
    "ArticleModel",
    "ArticleTagModel",
    "FavoriteModel",
    "CommentModel",
]
