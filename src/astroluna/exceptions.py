from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler, set_rollback
import logging

logger = logging.getLogger('django.request')


class ServiceError(APIException):
    """Base class for domain errors raised from service modules.

    Rendered as ``{"error": <detail>, **extra}`` by `api_exception_handler`.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "service_error"

    def __init__(self, detail=None, code=None, **extra):
        super().__init__(detail=detail, code=code)
        self.extra = extra


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        # anything DRF does not know how to render is a server fault
        view = context.get('view') if context else None
        logger.exception(
            "unhandled error in %s: %s", type(view).__name__ if view else "view", exc, exc_info=exc,
        )
        set_rollback()
        return Response({"error": "Internal server error"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if isinstance(exc, ValidationError):
        response.data = {"error": "Validation failed", "details": response.data}
    elif isinstance(exc, ServiceError):
        response.data = {"error": str(exc.detail), **exc.extra}
    return response
