"""Hard failures of the matching pipeline.

Anything raised from here aborts the whole match and is surfaced to the caller.
Signal-level problems (no face, embedding timeout, empty vision reply) are not
errors at this level; they degrade into a missing signal instead.
"""
from __future__ import annotations


class MatchingError(Exception):
    """Raised when the matching pipeline cannot produce a ranking."""
    pass


class CatalogError(MatchingError):
    """Raised when the reference catalog is empty or unreadable."""
    pass


class NoSignalAvailable(MatchingError):
    """Raised when no candidate received any similarity signal."""
    pass


class LengthMismatch(MatchingError, ValueError):
    """Raised when two embeddings of different dimension are compared."""
    pass


class MatchingCancelled(MatchingError):
    """Raised when the overall matching budget expires before fusion."""
    pass
