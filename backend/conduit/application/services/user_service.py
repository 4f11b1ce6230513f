"""Application service (use case) for registration, profiles and follows."""

import logging

from conduit.application.interfaces import UserRepository
from conduit.domain.entities import Fanboy, Profile, User
from conduit.domain.exceptions import InvalidCredentialsError, UserNotFoundError
from conduit.domain.passwords import DEFAULT_ROUNDS

logger = logging.getLogger(__name__)


class UserService:
    """Orchestrates user business logic. Depends on the repository port (DI)."""

    def __init__(self, repository: UserRepository, password_rounds: int = DEFAULT_ROUNDS):
        self._repository = repository
        self._password_rounds = password_rounds

    async def register(self, email: str, username: str, password: str) -> User:
        user = User.register(email, username, password, rounds=self._password_rounds)
        created = await self._repository.create_user(user)
        logger.info("Registered user '%s'", created.username)
        return created

    async def login(self, email: str, password: str) -> Fanboy:
        """Return the user when the credentials match, else raise InvalidCredentialsError."""
        try:
            user = await self._repository.get_user_by_email(email)
        except UserNotFoundError:
            raise InvalidCredentialsError() from None
        if not user.has_password(password):
            logger.info("Rejected login for <%s>", email)
            raise InvalidCredentialsError()
        return user

    async def current_user(self, email: str) -> Fanboy:
        return await self._repository.get_user_by_email(email)

    async def update_user(
        self,
        email: str,
        *,
        new_email: str | None = None,
        username: str | None = None,
        password: str | None = None,
        bio: str | None = None,
        image: str | None = None,
    ) -> User:
        """Change any of the given profile fields; ``None`` leaves a field as is."""
        def apply(user: User) -> User:
            if new_email:
                user.email = new_email
            if username:
                user.username = username
            if password:
                user.set_password(password, rounds=self._password_rounds)
            if bio is not None:
                user.bio = bio
            if image is not None:
                user.image = image or None
            return user

        return await self._repository.update_user_by_email(email, apply)

    async def get_profile(self, username: str, viewer_email: str | None = None) -> Profile:
        user = await self._repository.get_user_by_username(username)
        following = False
        if viewer_email:
            viewer = await self._repository.get_user_by_email(viewer_email)
            following = viewer.is_following(user.email)
        return Profile(user=user, following=following)

    async def follow(self, viewer_email: str, username: str) -> Profile:
        target = await self._repository.get_user_by_username(username)

        def start(fanboy: Fanboy) -> Fanboy:
            fanboy.start_following(target.email)
            return fanboy

        await self._repository.update_fanboy_by_email(viewer_email, start)
        return Profile(user=target, following=True)

    async def unfollow(self, viewer_email: str, username: str) -> Profile:
        target = await self._repository.get_user_by_username(username)

        def stop(fanboy: Fanboy) -> Fanboy:
            fanboy.stop_following(target.email)
            return fanboy

        await self._repository.update_fanboy_by_email(viewer_email, stop)
        return Profile(user=target, following=False)
