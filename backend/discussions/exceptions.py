"""
Domain errors and the DRF exception handler.

Services raise the DiscussionError family; the handler turns them into the
same {"error": ..., "details": ...} shape DRF errors get, so the frontend
sees one error format.

Unique-constraint conflicts inside toggle operators never reach this module:
services.py recovers from them and returns the current state.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class DiscussionError(Exception):
    """Base class for errors raised by the discussions services."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid request.'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class NotFoundError(DiscussionError):
    """Discussion or reply does not exist, is private, or was deleted."""
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found.'


class NotOwnerError(DiscussionError):
    """Caller is not the owner of the resource for an owner-only action."""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'Only the owner can perform this action.'


class InvalidTargetError(DiscussionError):
    """Malformed toggle target or reply placement, rejected before any write."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid target.'


class DiscussionClosedError(DiscussionError):
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Cannot add replies to a resolved discussion.'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Renders DiscussionError subclasses with their own status code
    2. Converts Django exceptions to DRF responses
    3. Logs anything unexpected
    """
    if isinstance(exc, DiscussionError):
        data = {'error': exc.message}
        if exc.details is not None:
            data['details'] = exc.details
        return Response(data, status=exc.status_code)

    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, IntegrityError):
        logger.warning("IntegrityError: %s", exc)
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, ValueError):
        return Response(
            {'error': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    logger.exception("Unhandled exception: %s", exc)

    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
