"""DRF integration for domain errors."""

from __future__ import annotations

import logging

from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler  # type: ignore

from shared.domain.errors import BookingCoreError

logger = logging.getLogger(__name__)


def core_exception_handler(exc, context):  # type: ignore
    """Render :class:`BookingCoreError` as ``{code, detail, retryable}``.

    Everything else falls through to the stock DRF handler.
    """
    if isinstance(exc, BookingCoreError):
        view = context.get("view")
        logger.warning(
            "Request rejected by %s: %s (%s)",
            view.__class__.__name__ if view else "unknown view",
            exc.code,
            exc.message,
        )
        return Response(exc.to_dict(), status=exc.http_status)
    return exception_handler(exc, context)
