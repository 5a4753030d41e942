"""Structured exception hierarchy following RFC 7807 Problem Details.

Every HTTP-facing batchops error extends ``BatchOpsError`` and is turned
into an ``application/problem+json`` response by the handler registered in
``create_app``. Batch engine operations never raise these; they report
per-item outcomes instead.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class BatchOpsError(Exception):
    """Base exception for all batchops API errors."""

    status_code: int = 500
    error_type: str = "about:blank"
    title: str = "Internal Server Error"

    def __init__(
        self,
        detail: str = "",
        *,
        instance: str = "",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.detail = detail or self.title
        self.instance = instance
        self.extra = extra or {}
        super().__init__(self.detail)

    def to_problem_detail(self) -> dict[str, Any]:
        """RFC 7807 Problem Details JSON object."""
        body: dict[str, Any] = {
            "type": self.error_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            body["instance"] = self.instance
        if self.extra:
            body.update(self.extra)
        return body


class ValidationError(BatchOpsError):
    status_code = 422
    error_type = "urn:batchops:error:validation"
    title = "Validation Error"


class ServiceUnavailableError(BatchOpsError):
    status_code = 503
    error_type = "urn:batchops:error:service-unavailable"
    title = "Service Unavailable"


def batchops_exception_handler(request: Request, exc: BatchOpsError) -> JSONResponse:
    """FastAPI exception handler for BatchOpsError subclasses."""
    logger.warning(
        "batchops_error",
        error_type=exc.error_type,
        status=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    if not exc.instance:
        exc.instance = request.url.path
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem_detail(),
        media_type="application/problem+json",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register the batchops exception handler on the FastAPI app."""
    app.add_exception_handler(BatchOpsError, batchops_exception_handler)  # type: ignore[arg-type]
