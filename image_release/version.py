"""Release version derivation.

A version is ``YYYY.MM.DD-<run ordinal>``: the run's calendar date plus
the increasing run number supplied by the invoking environment. It is
used both as an image tag and as the revision tag name.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

DATE_FORMAT = "%Y.%m.%d"
VERSION_PATTERN = re.compile(r"^(?P<date>\d{4}\.\d{2}\.\d{2})-(?P<ordinal>\d+)$")


def utc_today() -> date:
    """Return the current calendar date in UTC, the default run date."""
    return datetime.now(timezone.utc).date()


def resolve_version(current_date: date, run_ordinal: int) -> str:
    """Compute the version identifier for a run.

    Args:
        current_date: The run's calendar date. Datetimes are truncated
            to their date.
        run_ordinal: The run number supplied by the environment.

    Returns:
        Version string, e.g. ``2024.05.01-7``.

    Raises:
        ValueError: If the ordinal is negative or not an integer.
    """
    if isinstance(run_ordinal, bool) or not isinstance(run_ordinal, int):
        raise ValueError(f"run ordinal must be an integer, got {run_ordinal!r}")
    if run_ordinal < 0:
        raise ValueError(f"run ordinal must be non-negative, got {run_ordinal}")
    if isinstance(current_date, datetime):
        current_date = current_date.date()
    return f"{current_date.strftime(DATE_FORMAT)}-{run_ordinal}"


def parse_version(version: str) -> tuple[date, int]:
    """Split a version string back into its date and run ordinal.

    Raises:
        ValueError: If the string is not a release version.
    """
    match = VERSION_PATTERN.match(version)
    if not match:
        raise ValueError(f"Not a release version: {version!r}")
    run_date = datetime.strptime(match.group("date"), DATE_FORMAT).date()
    return run_date, int(match.group("ordinal"))


def version_sort_key(version: str) -> tuple[date, int]:
    """Sort key ordering versions by date, then by ordinal numerically."""
    return parse_version(version)


__all__ = [
    "DATE_FORMAT",
    "parse_version",
    "resolve_version",
    "utc_today",
    "version_sort_key",
]
