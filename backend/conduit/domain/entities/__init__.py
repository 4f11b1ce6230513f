from .user import User, Fanboy, Profile
from .comment import Comment
from .article import Article, AuthoredArticle, CommentedArticle, make_slug
from .criteria import ListCriteria

__all__ = [
    "User",
    "Fanboy",
    "Profile",
    "Comment",
    "Article",
    "AuthoredArticle",
    "CommentedArticle",
    "make_slug",
    "ListCriteria",
]
