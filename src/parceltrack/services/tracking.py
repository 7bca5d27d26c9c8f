"""Human-readable tracking codes.

Codes look like ``OFF-2026-7KQ2ZD``: a configurable prefix, the year the
delivery was created and six random upper-case letters or digits. They are
printed on labels and used for unauthenticated tracking lookups, so they
come from ``secrets`` rather than a predictable generator.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select

from parceltrack.db.models.deliveries import Delivery
from parceltrack.services.errors import TrackingCodeExhaustedError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_SUFFIX_LENGTH = 6

_CODE_PATTERN = re.compile(r"^[A-Z0-9]{1,8}-\d{4}-[A-Z0-9]{6}$")


def generate_tracking_code(prefix: str = "OFF", now: datetime | None = None) -> str:
    """Build a random tracking code.

    Args:
        prefix: Code prefix.
        now: Creation time; defaults to the current UTC time.

    Returns:
        A code such as ``OFF-2026-7KQ2ZD``.
    """
    year = (now or datetime.now(UTC)).year
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"{prefix}-{year}-{suffix}"


def is_tracking_code(value: str) -> bool:
    """Whether ``value`` has the shape of a tracking code."""
    return bool(_CODE_PATTERN.match(value))


async def allocate_tracking_code(
    session: AsyncSession,
    *,
    prefix: str = "OFF",
    max_attempts: int = 10,
) -> str:
    """Generate a tracking code not yet used by any delivery.

    The unique constraint on ``deliveries.tracking_code`` still guards the
    insert if a concurrent writer picks the same code.

    Raises:
        TrackingCodeExhaustedError: If every attempt collided.
    """
    for attempt in range(1, max_attempts + 1):
        code = generate_tracking_code(prefix)
        result = await session.execute(
            select(Delivery.delivery_id).where(Delivery.tracking_code == code)
        )
        if result.scalar_one_or_none() is None:
            return code
        logger.info("Tracking code collision on attempt %d", attempt)

    raise TrackingCodeExhaustedError(max_attempts)
