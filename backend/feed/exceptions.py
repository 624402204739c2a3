"""
Errors raised by the feed services, and the DRF exception handler that
turns them into a consistent `{"error": ..., "details": ...}` response.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = 'This content no longer exists.'
TRANSIENT_ERROR_MESSAGE = 'Something went wrong. Try again later!'


class FeedValidationError(ValueError):
    """Input rejected before anything touched the database."""


class ReactionValidationError(FeedValidationError):
    """Unknown reaction type, unknown target type or missing ids."""


class ReactionConflictError(Exception):
    """
    A toggle kept colliding with a concurrent toggle on the same
    (user, entity) pair, even after re-reading and re-applying it.
    """

    def __init__(self, target_type, target_id, user_id):
        super().__init__(
            f"Concurrent reaction update on {target_type} {target_id} by user {user_id}"
        )
        self.target_type = target_type
        self.target_id = target_id
        self.user_id = user_id


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Logs all exceptions
    2. Converts service and Django exceptions to DRF responses
    3. Provides consistent error format
    """
    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, ReactionConflictError):
        logger.warning("Giving up on reaction toggle: %s", exc)
        return Response(
            {'error': TRANSIENT_ERROR_MESSAGE},
            status=status.HTTP_409_CONFLICT
        )

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


def is_unique_violation(error: IntegrityError) -> bool:
    """Return True when the IntegrityError indicates a unique-constraint conflict."""
    original = getattr(error, '__cause__', None)
    sqlstate = getattr(original, 'sqlstate', None) or getattr(original, 'pgcode', None)
    if sqlstate == '23505':
        return True
    message = str(original or error).lower()
    return 'duplicate key' in message or 'unique constraint' in message
