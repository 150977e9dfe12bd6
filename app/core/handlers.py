"""
DRF exception handler for the application error hierarchy.

Configured as REST_FRAMEWORK["EXCEPTION_HANDLER"]. Maps:
    - BaseApplicationError subclasses -> e.to_dict() with e.status_code
    - DRF APIException (auth, throttling, serializer errors) -> DRF default
    - Anything else (DatabaseError included) -> logged, generic 500

The generic 500 body never carries the underlying error text.
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {
    "error": "Internal server error",
    "error_code": "INTERNAL_ERROR",
}


def api_exception_handler(exc, context):
    """
    Convert exceptions raised inside DRF views into JSON responses.

    Args:
        exc: The raised exception
        context: DRF handler context (contains the view and request)

    Returns:
        Response for every exception type
    """
    if isinstance(exc, BaseApplicationError):
        if exc.status_code >= 500:
            logger.error(f"Application error in {_view_name(context)}: {exc}")
        return Response(exc.to_dict(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None or isinstance(exc, APIException):
        return response

    logger.exception(f"Unhandled error in {_view_name(context)}: {exc.__class__.__name__}")
    return Response(INTERNAL_ERROR_BODY, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _view_name(context) -> str:
    view = context.get("view") if context else None
    return view.__class__.__name__ if view is not None else "unknown view"
