"""doratrack error types rendered as RFC 7807 problem documents.

Only the reporting boundary (unknown developer or team, bad filter, engine
not wired yet) and upstream fetches raise these. Missing graph data or an
empty period is a normal result, never an error.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger()

PROBLEM_JSON = "application/problem+json"


class DoraTrackError(Exception):
    """Root of the doratrack error tree.

    Subclasses pin the HTTP status, a short title and a ``urn:doratrack``
    problem slug. ``context`` is merged into the rendered problem body.
    """

    status_code: ClassVar[int] = 500
    slug: ClassVar[str] = "internal"
    title: ClassVar[str] = "Internal Server Error"

    def __init__(self, detail: str = "", **context: Any) -> None:
        self.detail = detail or self.title
        self.context = context
        super().__init__(self.detail)

    @property
    def error_type(self) -> str:
        return f"urn:doratrack:error:{self.slug}"

    def problem(self, instance: str | None = None) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "type": self.error_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
            **self.context,
        }
        if instance:
            doc["instance"] = instance
        return doc


class NotFoundError(DoraTrackError):
    """Unknown developer, team or other scope key."""

    status_code = 404
    slug = "not-found"
    title = "Not Found"


class ValidationError(DoraTrackError):
    """Filter that cannot be evaluated, e.g. an inverted date range."""

    status_code = 422
    slug = "validation"
    title = "Validation Error"


class ExternalServiceError(DoraTrackError):
    """Source-control or incident-management API failure."""

    status_code = 502
    slug = "external-service"
    title = "External Service Error"


class ServiceUnavailableError(DoraTrackError):
    """Engine or dashboard service not initialised (no database)."""

    status_code = 503
    slug = "unavailable"
    title = "Service Unavailable"


@contextmanager
def error_context(
    error_cls: type[DoraTrackError] = DoraTrackError,
    detail: str = "",
    **context: Any,
) -> Iterator[None]:
    """Re-raise anything that is not already a :class:`DoraTrackError` as *error_cls*.

    The original exception is chained as ``__cause__``::

        with error_context(ExternalServiceError, detail="fetch failed", key=key):
            runs = await source.fetch_workflow_runs(owner, repo, workflow, since)
    """
    try:
        yield
    except DoraTrackError:
        raise
    except Exception as exc:
        raise error_cls(detail or str(exc), **context) from exc


def doratrack_exception_handler(request: Request, exc: DoraTrackError) -> JSONResponse:
    logger.warning(
        "api.problem",
        path=request.url.path,
        status=exc.status_code,
        error_type=exc.error_type,
        detail=exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem(instance=request.url.path),
        media_type=PROBLEM_JSON,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DoraTrackError, doratrack_exception_handler)  # type: ignore[arg-type]
