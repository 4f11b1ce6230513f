"""Logging setup for conduit.

``setup_logging()`` installs one stderr handler on the root logger and then
applies the per-category levels from Settings, so the SQL echo of SQLAlchemy
can stay quiet while repository cascades are logged at DEBUG.

Calling it again (for instance after changing Settings in a test) re-applies
the levels without stacking a second handler.
"""

import logging
import sys

from conduit.config import Settings, get_settings

_HANDLER_NAME = "conduit-stderr"
_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Settings field -> logger names whose level it controls
_CATEGORY_MAP: dict[str, tuple[str, ...]] = {
    "log_level_sql": ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite"),
    "log_level_repository": ("conduit.infrastructure.memory", "conduit.infrastructure.database"),
    "log_level_services": ("conduit.application.services",),
}


def setup_logging(settings: Settings | None = None) -> dict[str, int]:
    """Configure logging from *settings* and return the level applied per logger name.

    The root logger is reported under ``""``.
    """
    settings = settings or get_settings()
    root = logging.getLogger()
    root.setLevel(_parse_level(settings.log_level))
    if not any(handler.get_name() == _HANDLER_NAME for handler in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)

    applied = {"": root.level}
    for field_name, logger_names in _CATEGORY_MAP.items():
        level = _parse_level(getattr(settings, field_name))
        for name in logger_names:
            logging.getLogger(name).setLevel(level)
            applied[name] = level

    logging.getLogger(__name__).debug(
        "Logging configured for %s (%s): %s",
        settings.app_title,
        settings.app_env,
        {name or "root": logging.getLevelName(level) for name, level in applied.items()},
    )
    return applied


def _parse_level(raw: str) -> int:
    """Map a level name such as ``"debug"`` to its logging constant; unknown names give INFO."""
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO
