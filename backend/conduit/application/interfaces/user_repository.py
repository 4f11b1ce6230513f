"""Abstract repository interface (port) for users and their relationships."""

from abc import ABC, abstractmethod
from collections.abc import Callable

from conduit.domain.entities import Fanboy, User

UserTransform = Callable[[User], User]
FanboyTransform = Callable[[Fanboy], Fanboy]


class UserRepository(ABC):
    """Port for user persistence — implemented in the infrastructure layer.

    Updates follow a read-modify-write contract: callers pass a transform that
    receives a copy of the current state and returns the desired next state,
    or raises to abort. The repository checks its invariants around the
    transform and applies the result atomically.
    """

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Persist a new user.

        Raises DuplicateUserError if the email or username is already taken.
        """
        ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Fanboy:
        """Return the user with this email, with follows and favorites.

        Raises UserNotFoundError.
        """
        ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> User:
        """Return the user with this username. Raises UserNotFoundError."""
        ...

    @abstractmethod
    async def update_user_by_email(self, email: str, transform: UserTransform) -> User:
        """Apply *transform* to the user with this email and store the result.

        Raises UserNotFoundError, DuplicateUserError, or whatever the
        transform raises. An email change is propagated to every record
        that refers to the old email.
        """
        ...

    @abstractmethod
    async def update_fanboy_by_email(self, email: str, transform: FanboyTransform) -> None:
        """Apply *transform* to the user's follow/favorite sets and store the result.

        Raises UserNotFoundError, DuplicateUserError, or whatever the
        transform raises.
        """
        ...
