"""
Exceptions shared across the storage layer and its collaborators.
"""

from __future__ import annotations


class StorageError(Exception):
    """A backend could not perform a write."""


class ConflictError(StorageError):
    """A write would violate a uniqueness constraint (e.g. duplicate email)."""


class PdfExtractionError(Exception):
    """The uploaded bytes could not be read as a PDF."""


class AuthError(Exception):
    """A token is missing, malformed, expired or signed with another key."""
