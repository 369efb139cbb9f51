from __future__ import annotations


class TabletopError(ValueError):
    """Base class for errors surfaced to API callers.

    Subclasses pin an HTTP status and a stable code so routes can translate
    them without inspecting messages.
    """

    status_code: int = 500
    code: str = "INTERNAL"


class NotFoundError(TabletopError):
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(TabletopError):
    status_code = 403
    code = "FORBIDDEN"


class PreconditionFailedError(TabletopError):
    status_code = 412
    code = "PRECONDITION_FAILED"


class BadRequestError(TabletopError):
    status_code = 400
    code = "BAD_REQUEST"


class InternalError(TabletopError):
    status_code = 500
    code = "INTERNAL"
