# farmplot/errors.py
"""
Domain errors raised by the services and the entity store.

They carry no HTTP knowledge; farmplot.main maps each class onto a status
code and the standard error payload.
"""
from __future__ import annotations

from typing import List, Optional


class FarmPlotError(Exception):
    """Base class for every error the service layer raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ResourceNotFoundError(FarmPlotError):
    """Entity absent, or present under another tenant; callers cannot tell the two apart."""

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = str(identifier)
        super().__init__(f"{resource} not found with identifier: {self.identifier}")


class ValidationFailedError(FarmPlotError):
    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors


class ConflictError(FarmPlotError):
    """Stale optimistic-lock version or unique constraint violation."""
