"""Small validation helpers shared by the domain entities."""

import re
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email


def is_email(value: str | None) -> bool:
    """Return True when *value* is a syntactically valid email address."""
    if not value:
        return False
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_http_url(value: str | None) -> bool:
    """Return True when *value* is an absolute http(s) URL."""
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def fold_key(value: str) -> str:
    """Case-fold a natural key (email, username, slug) for comparisons and lookups."""
    return value.strip().lower()


_SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def is_slug(value: str | None) -> bool:
    """Return True for lowercase, hyphen-separated ASCII slugs such as ``my-first-post``."""
    return bool(value) and _SLUG_PATTERN.match(value) is not None
