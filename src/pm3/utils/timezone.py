"""Centralized timezone resolution utilities."""

import logging
from typing import Optional

import pytz
from pytz import BaseTzInfo

logger = logging.getLogger(__name__)


def resolve_pytz(tz_string: Optional[str], fallback_to_utc: bool = False) -> BaseTzInfo:
    """Resolve an IANA timezone name to a pytz timezone object.

    Calendar bin counts depend on the zone's spring-forward date, so an
    unknown name is an error unless *fallback_to_utc* is requested.

    Args:
        tz_string: IANA timezone (e.g. 'US/Eastern', 'America/New_York').
        fallback_to_utc: Return UTC, with a warning, for a missing or
            unknown name instead of raising.

    Returns:
        pytz timezone object.

    Raises:
        ValueError: If the name is missing or unknown and
            *fallback_to_utc* is ``False``.
    """
    if not tz_string:
        if not fallback_to_utc:
            raise ValueError("No timezone provided")
        logger.warning("No timezone provided; falling back to UTC.")
        return pytz.utc

    try:
        return pytz.timezone(tz_string)
    except pytz.UnknownTimeZoneError:
        if not fallback_to_utc:
            raise ValueError(f"Unknown timezone '{tz_string}'") from None
        logger.warning(
            f"Unknown timezone '{tz_string}'; falling back to UTC.",
            extra={"timezone": tz_string},
        )
        return pytz.utc
