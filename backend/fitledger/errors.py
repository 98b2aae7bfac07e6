# Overview: Error taxonomy shared by services and the HTTP boundary.

"""
Service errors carry the HTTP status they map to. Services raise them at
the point of detection; only routes (via error_response) and decorators
translate them to wire responses.

Scope violations are reported as NotFound, never Forbidden, so a caller
cannot learn whether a row exists in another tenant or branch.
"""

from __future__ import annotations

from flask import jsonify


class ServiceError(Exception):
    """Base class for errors that cross the service/route boundary."""
    status_code = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class Unauthorized(ServiceError):
    """Authentication required"""
    status_code = 401


class Forbidden(ServiceError):
    """Permission denied"""
    status_code = 403


class NotFound(ServiceError):
    """Not found"""
    status_code = 404


class InvalidState(ServiceError):
    """Operation not valid for the current status"""
    status_code = 400


class Conflict(ServiceError):
    """Conflicts with an existing record"""
    status_code = 409


class AlreadyRecorded(Conflict):
    """Gateway movement already recorded"""


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""
    status_code = 400


class RefundExceedsPaid(ValidationError):
    """Refund amount exceeds total paid amount"""


class UsageLimitReached(ValidationError):
    """Coupon usage limit reached"""


class SignatureError(ServiceError):
    """Invalid webhook signature"""
    status_code = 401


def error_response(exc: ServiceError):
    """Translate a ServiceError into the structured error body."""
    return jsonify({"success": False, "error": exc.message}), exc.status_code
