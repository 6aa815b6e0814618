import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class LedgerError(ValueError):
    code = "invalid_state"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidPaymentError(LedgerError):
    code = "invalid_payment"


class InvalidStateError(LedgerError):
    code = "invalid_state"


class ConcurrentUpdateError(LedgerError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


def api_exception_handler(exc, context):
    if isinstance(exc, LedgerError):
        view = context.get("view")
        logger.warning("%s rejected by %s: %s", exc.code, type(view).__name__ if view else "-", exc)
        return Response({"code": exc.code, "detail": str(exc), "fields": {}}, status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(response.data, dict):
        detail = response.data.get("detail", "Request failed")
        fields = {k: v for k, v in response.data.items() if k != "detail"}
    else:
        detail = "Request failed"
        fields = {}

    response.data = {
        "code": getattr(exc, "default_code", "error"),
        "detail": detail,
        "fields": fields,
    }
    return response
