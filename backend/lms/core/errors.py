"""Error taxonomy surfaced by the service layer.

Services translate every store-level failure into one of these before it
reaches the HTTP layer, which maps ``status_code`` onto the response.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError


class LmsError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidReference(LmsError):
    """A course was asked to require itself."""

    status_code = 400


class DuplicateEdge(LmsError):
    status_code = 400


class NotFound(LmsError):
    status_code = 404


class ConstraintViolation(LmsError):
    """Uniqueness or foreign-key violation with a caller-facing message."""

    status_code = 409


class TransactionFailed(LmsError):
    """A multi-row write was rolled back in full."""

    status_code = 500


# PostgreSQL SQLSTATE class 23 codes
_PG_CODES = {
    "23505": "unique",
    "23514": "check",
    "23503": "foreign_key",
    "23502": "not_null",
}


def classify_integrity_error(exc: IntegrityError) -> str:
    """Return ``unique``, ``check``, ``foreign_key``, ``not_null`` or ``other``."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _PG_CODES:
        return _PG_CODES[code]
    text = str(orig if orig is not None else exc).upper()
    if "UNIQUE" in text or "DUPLICATE KEY" in text:
        return "unique"
    if "CHECK CONSTRAINT" in text:
        return "check"
    if "FOREIGN KEY" in text:
        return "foreign_key"
    if "NOT NULL" in text:
        return "not_null"
    return "other"
