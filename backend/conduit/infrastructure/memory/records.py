"""Internal record types held by the in-memory repository.

Records are never handed to callers; every read builds fresh domain
entities from them so callers cannot alias the store's state.
"""

from dataclasses import dataclass, field
from datetime import datetime

from conduit.domain.entities import Article, Comment, Fanboy, User
from conduit.domain.validation import fold_key


@dataclass
class UserRecord:
    email: str
    username: str
    bio: str
    image: str | None
    password: bytes
    following: set[str] = field(default_factory=set)
    favorites: set[str] = field(default_factory=set)

    @property
    def key(self) -> str:
        return fold_key(self.email)

    @classmethod
    def from_user(
        cls,
        user: User,
        following: set[str] | None = None,
        favorites: set[str] | None = None,
    ) -> "UserRecord":
        return cls(
            email=user.email,
            username=user.username,
            bio=user.bio,
            image=user.image,
            password=user.password,
            following=set(following or ()),
            favorites=set(favorites or ()),
        )

    def to_user(self) -> User:
        return User(
            email=self.email,
            username=self.username,
            bio=self.bio,
            image=self.image,
            password=self.password,
        )

    def to_fanboy(self) -> Fanboy:
        return Fanboy(
            email=self.email,
            username=self.username,
            bio=self.bio,
            image=self.image,
            password=self.password,
            following=set(self.following),
            favorites=set(self.favorites),
        )


@dataclass
class CommentRecord:
    id: int
    body: str
    author_email: str
    created_at: datetime

    def to_entity(self) -> Comment:
        return Comment(
            id=self.id,
            body=self.body,
            author_email=self.author_email,
            created_at=self.created_at,
        )


@dataclass
class ArticleRecord:
    slug: str
    title: str
    description: str
    body: str
    author_email: str
    tag_list: list[str]
    created_at: datetime
    updated_at: datetime
    # insertion order, breaks ties between equal created_at values
    sequence: int
    comments: list[CommentRecord] = field(default_factory=list)

    @property
    def key(self) -> str:
        return fold_key(self.slug)

    def to_article(self, favorited_by: set[str]) -> Article:
        return Article(
            slug=self.slug,
            title=self.title,
            description=self.description,
            body=self.body,
            author_email=self.author_email,
            tag_list=list(self.tag_list),
            created_at=self.created_at,
            updated_at=self.updated_at,
            favorited_by=set(favorited_by),
        )

    def to_comments(self) -> list[Comment]:
        return [comment.to_entity() for comment in self.comments]
