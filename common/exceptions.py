"""API error rendering.

Every error response has the same body::

    {"code": "<stable snake_case code>", "message": "...", "errors": ..., "status": 400}

Purchasing service errors carry their own ``kind`` and details; everything
else goes through DRF's default handler first and is re-shaped here.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from purchasing.errors import CalculationInconsistency, ProcurementError

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

# Checked in order; Django's own 404/403 are converted by DRF but keep their type here.
STABLE_CODES: tuple[tuple[type[Exception], str], ...] = (
    (exceptions.ValidationError, "validation_error"),
    (exceptions.NotAuthenticated, "not_authenticated"),
    (exceptions.AuthenticationFailed, "authentication_failed"),
    (exceptions.PermissionDenied, "permission_denied"),
    (DjangoPermissionDenied, "permission_denied"),
    (exceptions.NotFound, "not_found"),
    (Http404, "not_found"),
    (exceptions.MethodNotAllowed, "method_not_allowed"),
    (exceptions.NotAcceptable, "not_acceptable"),
    (exceptions.UnsupportedMediaType, "unsupported_media_type"),
    (exceptions.ParseError, "parse_error"),
    (exceptions.Throttled, "throttled"),
)


def error_body(*, code: str, message: str, errors: Any = None, status_code: int) -> dict[str, Any]:
    return {"code": code, "message": message, "errors": errors, "status": status_code}


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    if isinstance(exc, ProcurementError):
        return procurement_error_response(exc, context.get("request"))

    response = drf_exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception(
            "Unhandled API exception in %s",
            view.__class__.__name__ if view else "unknown",
            extra={"path": getattr(context.get("request"), "path", None)},
        )
        return Response(
            error_body(
                code="internal_server_error",
                message=GENERIC_SERVER_ERROR_MESSAGE,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    response.data = error_body(
        code=_stable_code(exc),
        message=_message(exc, response.data),
        errors=_errors(response.data),
        status_code=response.status_code,
    )
    return response


def procurement_error_response(exc: ProcurementError, request=None) -> Response:
    # A calculation mismatch means stored or supplied amounts disagree with the rules.
    log = logger.error if isinstance(exc, CalculationInconsistency) else logger.info
    log(
        "procurement_error",
        extra={
            "error_kind": exc.kind,
            "status_code": exc.status_code,
            "request_id": getattr(request, "request_id", None),
            "path": getattr(request, "path", None),
        },
    )
    return Response(
        error_body(code=exc.kind, message=exc.message, errors=exc.as_dict(), status_code=exc.status_code),
        status=exc.status_code,
    )


def _stable_code(exc: Exception) -> str:
    for exception_type, code in STABLE_CODES:
        if isinstance(exc, exception_type):
            return code
    if isinstance(exc, exceptions.APIException):
        return str(exc.default_code)
    return "internal_server_error"


def _message(exc: Exception, data: Any) -> str:
    if isinstance(exc, exceptions.ValidationError):
        return "Validation failed."
    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    return str(getattr(exc, "detail", "Request failed."))


def _errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        return None if set(data) == {"detail"} else data
    if isinstance(data, Sequence) and not isinstance(data, str):
        return data
    return None
