"""Shared fixtures: fresh repositories and small entity factories."""

import pytest
import pytest_asyncio

from conduit.domain.entities import Article, User
from conduit.infrastructure.database import (
    SQLAlchemyRepository,
    create_database_engine,
    create_schema,
    create_session_factory,
)
from conduit.infrastructure.memory import InMemoryRepository

# cheapest bcrypt work factor; tests hash a lot of passwords
TEST_ROUNDS = 4
TEST_PASSWORD = "Test1234!"


def build_user(adj: str) -> User:
    user = User.register(f"user@{adj}.com", f"{adj} username", TEST_PASSWORD, rounds=TEST_ROUNDS)
    user.bio = f"{adj} bio"
    user.image = f"http://{adj}.com/profile.png"
    return user


def build_author(adj: str) -> User:
    author = build_user(adj)
    author.email = f"author@{adj}.com"
    return author


def build_article(adj: str, *extra_tags: str) -> Article:
    return Article.new(
        f"{adj} title",
        f"{adj} description",
        f"{adj} body",
        f"author@{adj}.com",
        f"{adj} one",
        f"{adj} two",
        f"{adj} three",
        *extra_tags,
    )


@pytest.fixture
def memory_repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest_asyncio.fixture(params=["memory", "sqlalchemy"])
async def repository(request):
    """Every Repository implementation, each starting empty."""
    if request.param == "memory":
        yield InMemoryRepository()
        return

    engine = create_database_engine(url="sqlite://")
    await create_schema(engine)
    repository = SQLAlchemyRepository(create_session_factory(engine), engine=engine)
    try:
        yield repository
    finally:
        await repository.close()
