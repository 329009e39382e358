"""Error taxonomy for the progression engine.

Uniqueness conflicts on grant rows are not part of this taxonomy: they are
resolved inside the database and reported as "already granted".
"""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for errors raised by the engine."""


class NotFoundError(ProgressionError, LookupError):
    """A user or catalog entry does not exist."""


class ValidationError(ProgressionError, ValueError):
    """Malformed trigger input (unknown activity type, negative XP, ...)."""


class StorageError(ProgressionError, RuntimeError):
    """Transaction or commit failure. Nothing was committed, so it is safe to retry."""
