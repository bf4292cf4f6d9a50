"""
Error taxonomy for the visitor desk and the DRF exception handler that turns
it into the standard {"success": False, "error": ..., "details": ...} envelope.
"""

import logging

from django.core.exceptions import ObjectDoesNotExist
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class DeskError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "error"

    def __init__(self, message, error_code=None, field=None, data=None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.field = field
        self.data = data

    def details(self):
        details = {"code": self.error_code}
        if self.field:
            details["field"] = self.field
        if self.data:
            details.update(self.data)
        return details


class ValidationFailed(DeskError):
    """Missing or conflicting input. Nothing was changed."""
    default_code = "ValidationError"


class RoleNotPermitted(DeskError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "PermissionDenied"


class InvariantViolation(DeskError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "InvariantViolation"


class LastAdminProtected(InvariantViolation):
    default_code = "LastAdminProtected"


class SelfDeleteForbidden(InvariantViolation):
    default_code = "SelfDeleteForbidden"


class InvalidTransition(DeskError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "InvalidTransition"


class ChatLocked(DeskError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "ChatLocked"


class InvalidCredentials(DeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "InvalidCredentials"


class CollaboratorFailure(DeskError):
    """The chat backend or the snapshot store could not be reached."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "CollaboratorFailure"


def desk_exception_handler(exc, context):
    if isinstance(exc, DeskError):
        if isinstance(exc, CollaboratorFailure):
            logger.warning("Collaborator failure: %s", exc.message)
        return Response(
            {"success": False, "error": exc.message, "details": exc.details()},
            status=exc.status_code,
        )
    if isinstance(exc, ObjectDoesNotExist):
        return Response(
            {"success": False, "error": "Not found.", "details": None},
            status=status.HTTP_404_NOT_FOUND,
        )

    response = exception_handler(exc, context)
    if response is None:
        return None
    detail = response.data.get("detail") if isinstance(response.data, dict) else None
    response.data = {
        "success": False,
        "error": str(detail) if detail is not None else "Request failed.",
        "details": None if detail is not None else response.data,
    }
    return response
