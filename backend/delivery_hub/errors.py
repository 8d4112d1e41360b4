# Overview: Exception taxonomy shared by services and routes.

"""
Every failure a service reports to its caller is one of these.

Routes never build error responses by hand for them: the handler registered
in create_app() turns any DeliveryHubError into
``{"error": message, **details}`` with the class status code.
"""

from __future__ import annotations

from typing import Any


class DeliveryHubError(Exception):
    """Base class for business and storage failures surfaced to callers."""

    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, **self.details}


class ValidationError(DeliveryHubError):
    """400-level input problem. Never retried; the caller must fix the input."""

    status_code = 400


class AuthorizationError(DeliveryHubError):
    """403-level role or ownership mismatch."""

    status_code = 403


class NotFoundError(DeliveryHubError):
    """404-level missing entity."""

    status_code = 404


class ConflictError(DeliveryHubError):
    """
    409-level lost race: already-processed request, claimed lock,
    duplicate tracking number or request binding.

    The caller may re-fetch and decide; blind retries will lose again.
    """

    status_code = 409


class PreconditionError(DeliveryHubError):
    """422-level: the entity exists but is in the wrong state for the transition."""

    status_code = 422


class InternalError(DeliveryHubError):
    """500-level storage/transport failure after the open transaction was rolled back."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", *, transient: bool = False, **details: Any):
        super().__init__(message, transient=transient, **details)
        self.transient = transient
