"""
Exceptions
==========

Every failure is fatal to the call that raised it; nothing is retried here.
"""

from __future__ import annotations

from typing import Sequence


class XtractoError(RuntimeError):
    """Base class for xtracto failures."""


class ValidationError(XtractoError):
    """Raised when the request arguments are inconsistent."""


class NotFoundError(XtractoError):
    """Raised when a dataset identifier has no registry entry."""


class OutOfBoundsError(XtractoError):
    """Raised when a requested region lies outside the dataset coverage."""

    def __init__(self, message: str, axes: Sequence[str] = ()):
        super().__init__(message)
        self.axes = tuple(axes)


class TransportError(XtractoError):
    """Raised when a download from the ERDDAP server fails."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class DecodeError(XtractoError):
    """Raised when a downloaded grid file cannot be read."""
