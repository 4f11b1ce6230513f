"""Domain-specific exceptions — framework-independent."""


class EntityNotFoundError(Exception):
    """Raised when a requested entity does not exist."""

    def __init__(self, entity_type: str, key: int | str):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} '{key}' not found")


class UserNotFoundError(EntityNotFoundError):
    """Raised when no user matches the requested email or username."""

    def __init__(self, key: str):
        super().__init__("User", key)


class ArticleNotFoundError(EntityNotFoundError):
    """Raised when no article matches the requested slug."""

    def __init__(self, key: str):
        super().__init__("Article", key)


class DuplicateEntityError(Exception):
    """Raised when attempting to create a duplicate entity."""

    def __init__(self, entity_type: str, field: str, value: str):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type} with {field}='{value}' already exists")


class DuplicateUserError(DuplicateEntityError):
    """Raised when a user would share an email or username with another user."""

    def __init__(self, field: str, value: str):
        super().__init__("User", field, value)


class DuplicateArticleError(DuplicateEntityError):
    """Raised when an article would share its slug with another article."""

    def __init__(self, value: str):
        super().__init__("Article", "slug", value)


class NoAuthorError(Exception):
    """Raised when an article or comment references a user that does not exist."""

    def __init__(self, author_email: str):
        self.author_email = author_email
        super().__init__(f"author '{author_email}' not found")


class DomainValidationError(ValueError):
    """Base class for entities that fail their own validation rules."""


class RequiredFieldsMissingError(DomainValidationError):
    """Raised when an entity is built without all of its required fields."""

    def __init__(self, entity_type: str, fields: list[str]):
        self.entity_type = entity_type
        self.fields = fields
        super().__init__(f"{entity_type} is missing required fields: {', '.join(fields)}")


class InvalidSlugError(DomainValidationError):
    """Raised when a slug is empty or not well-formed."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"'{value}' does not produce a valid slug")


class InvalidFieldError(DomainValidationError):
    """Raised when a field holds a malformed value (e.g. an email or URL)."""

    def __init__(self, entity_type: str, field: str, value: str):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type}.{field} has an invalid value '{value}'")


class InvalidPasswordHashError(Exception):
    """Raised when a stored password hash cannot be interpreted.

    This is a hard error, distinct from a password that simply does not match.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"stored password hash is malformed: {reason}")


class NotAuthorizedError(Exception):
    """Raised when a user attempts to change something they do not own."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"not authorized to {action}")


class InvalidCredentialsError(Exception):
    """Raised when a login attempt does not match any user/password pair."""

    def __init__(self) -> None:
        super().__init__("email or password is invalid")
