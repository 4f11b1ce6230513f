"""SQLAlchemy ORM models for users and follow relationships."""

from sqlalchemy import ForeignKey, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from conduit.infrastructure.database.base import Base


class UserModel(Base):
    """ORM model — maps to the 'users' table.

    The ``*_key`` columns hold case-folded copies of the natural keys and
    carry the uniqueness constraints; the plain columns keep the casing the
    user chose.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    email_key: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    username_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    bio: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    password_hash: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    def __repr__(self) -> str:
        return f"<UserModel(id={self.id}, email='{self.email}')>"


class FollowModel(Base):
    """ORM model — maps to the 'followed_users' join table."""

    __tablename__ = "followed_users"

    follower_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    followed_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
