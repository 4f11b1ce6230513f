"""Dependency wiring: builds the repository and services from Settings."""

import logging
from dataclasses import dataclass

from conduit.application.interfaces import Repository
from conduit.application.services import ArticleService, UserService
from conduit.config import Settings, get_settings
from conduit.infrastructure.database import (
    SQLAlchemyRepository,
    create_database_engine,
    create_schema,
    create_session_factory,
)
from conduit.infrastructure.memory import InMemoryRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    users: UserService
    articles: ArticleService


async def create_repository(settings: Settings | None = None) -> Repository:
    """Provides the Repository selected by ``settings.repository_backend``.

    The SQL backend creates any missing tables before it is returned and owns
    its engine; call ``close()`` on the repository to dispose of it.
    """
    settings = settings or get_settings()
    if settings.repository_backend == "sqlalchemy":
        engine = create_database_engine(settings)
        await create_schema(engine)
        logger.info("Using SQL repository at %s", engine.url.render_as_string(hide_password=True))
        return SQLAlchemyRepository(create_session_factory(engine), engine=engine)

    logger.info("Using in-memory repository")
    return InMemoryRepository()


def create_services(repository: Repository, settings: Settings | None = None) -> Services:
    """Provides the application services wired to *repository*."""
    settings = settings or get_settings()
    return Services(
        users=UserService(repository, password_rounds=settings.password_hash_rounds),
        articles=ArticleService(repository, page_size=settings.default_page_size),
    )
