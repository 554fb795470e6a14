"""Creation timestamps embedded in board card identifiers.

Card identifiers are 24-character object IDs whose first 8 hex characters are
a big-endian 32-bit count of seconds since the Unix epoch.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from .utils.datetime import now_utc


logger = logging.getLogger(__name__)

# Returned for an empty identifier: "unknown, caller should substitute now".
ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)

_TIMESTAMP_PREFIX = re.compile(r"[0-9a-fA-F]{8}")


class DecodeError(ValueError):
    """An identifier does not start with a hex-encoded timestamp."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        super().__init__(f"ID '{identifier}' failed to convert to timestamp: {reason}")


def id_to_time(identifier: str) -> datetime:
    """Extract the creation time encoded in an identifier.

    Args:
        identifier: Card identifier

    Returns:
        Creation time in UTC, or ZERO_TIME for an empty identifier

    Raises:
        DecodeError: If the first 8 characters are not hexadecimal
    """
    if not identifier:
        return ZERO_TIME

    prefix = identifier[:8]
    try:
        if not _TIMESTAMP_PREFIX.fullmatch(prefix):
            raise ValueError(f"invalid hexadecimal timestamp {prefix!r}")
        seconds = int(prefix, 16)
    except ValueError as e:
        raise DecodeError(identifier, str(e)) from e

    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def id_to_time_or_now(identifier: str, now: Optional[datetime] = None) -> datetime:
    """Like id_to_time, but substitutes the current time when unknown."""
    fallback = now or now_utc()
    try:
        created = id_to_time(identifier)
    except DecodeError as e:
        logger.debug(f"Using current time for card creation: {e}")
        return fallback

    if created == ZERO_TIME:
        return fallback
    return created
