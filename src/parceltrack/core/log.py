"""Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)`` and attach structured
context with ``extra={...}``. Entry points call ``configure_logging`` once.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Configure the root logger.

    Args:
        level: Level name (e.g. ``"DEBUG"``) or numeric level.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    # SQL statement logging is controlled by PARCELTRACK_DATABASE__ECHO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
