"""Domain entities for users and their follow/favorite relationships."""

from dataclasses import dataclass, field

from conduit.domain.exceptions import InvalidFieldError, RequiredFieldsMissingError
from conduit.domain.passwords import (
    DEFAULT_ROUNDS,
    MAX_PASSWORD_BYTES,
    check_password,
    hash_password,
)
from conduit.domain.validation import fold_key, is_email, is_http_url, is_slug


@dataclass
class User:
    """A registered user.

    ``email`` is the primary natural key and ``username`` a secondary one;
    both are unique among all users, compared case-insensitively.
    ``password`` always holds a bcrypt hash, never the plain text.
    """

    email: str
    username: str
    bio: str = ""
    image: str | None = None
    password: bytes = b""

    @classmethod
    def register(
        cls,
        email: str,
        username: str,
        password: str,
        rounds: int = DEFAULT_ROUNDS,
    ) -> "User":
        """Build a validated new user, hashing the given plain-text password."""
        user = cls(email=email, username=username)
        user.set_password(password, rounds=rounds)
        user.validate()
        return user

    def validate(self) -> None:
        """Raise a DomainValidationError unless every field is well-formed."""
        missing = [
            name
            for name, value in (
                ("email", self.email),
                ("username", self.username),
                ("password", self.password),
            )
            if not value
        ]
        if missing:
            raise RequiredFieldsMissingError("User", missing)
        if not is_email(self.email):
            raise InvalidFieldError("User", "email", self.email)
        if self.image and not is_http_url(self.image):
            raise InvalidFieldError("User", "image", self.image)

    def set_password(self, password: str, rounds: int = DEFAULT_ROUNDS) -> None:
        """Replace the stored hash with one derived from *password*."""
        if not password:
            raise RequiredFieldsMissingError("User", ["password"])
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidFieldError("User", "password", "<too long>")
        self.password = hash_password(password, rounds=rounds)

    def has_password(self, password: str) -> bool:
        """Check *password* against the stored hash.

        Raises InvalidPasswordHashError when the stored hash is malformed.
        """
        return check_password(password, self.password)


@dataclass
class Fanboy(User):
    """A User together with the users it follows and the articles it favors.

    Both sets hold case-folded keys: emails in ``following``, slugs in
    ``favorites``. Malformed values are ignored rather than rejected.
    """

    following: set[str] = field(default_factory=set)
    favorites: set[str] = field(default_factory=set)

    def as_user(self) -> User:
        return User(
            email=self.email,
            username=self.username,
            bio=self.bio,
            image=self.image,
            password=self.password,
        )

    def following_emails(self) -> list[str]:
        return sorted(email for email in self.following if email)

    def is_following(self, email: str) -> bool:
        if not is_email(email):
            return False
        return fold_key(email) in self.following

    def start_following(self, email: str) -> None:
        if not is_email(email):
            return
        self.following.add(fold_key(email))

    def stop_following(self, email: str) -> None:
        if not email:
            return
        self.following.discard(fold_key(email))

    def favorited_slugs(self) -> list[str]:
        return sorted(slug for slug in self.favorites if slug)

    def favors(self, slug: str) -> bool:
        if not slug:
            return False
        return fold_key(slug) in self.favorites

    def favorite(self, slug: str) -> None:
        if not slug or not is_slug(fold_key(slug)):
            return
        self.favorites.add(fold_key(slug))

    def unfavorite(self, slug: str) -> None:
        if not slug:
            return
        self.favorites.discard(fold_key(slug))


@dataclass
class Profile:
    """A user as seen by another (possibly anonymous) user."""

    user: User
    following: bool = False
