"""
Normalized MAPI errors.

Callers only ever see these. Upstream codes and transport failures are
translated once, at the client boundary, into one of these kinds.
"""


class MapiError(Exception):
    """Base exception for all normalized MAPI errors."""

    rest_code = "InternalError"
    status_code = 500

    def __init__(
        self,
        message: str,
        rest_code: str | None = None,
        upstream_status: int | None = None,
        upstream_code: str | None = None,
    ):
        self.message = message
        if rest_code is not None:
            self.rest_code = rest_code
        self.upstream_status = upstream_status
        self.upstream_code = upstream_code
        super().__init__(message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MapiError):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.message == other.message
            and self.rest_code == other.rest_code
            and self.status_code == other.status_code
        )

    def __hash__(self) -> int:
        return hash((type(self), self.message, self.rest_code))

    def to_dict(self) -> dict[str, str]:
        return {"code": self.rest_code, "message": self.message}


class InvalidArgumentError(MapiError):
    """The request carried an invalid argument."""

    rest_code = "InvalidArgument"
    status_code = 409


class ResourceNotFoundError(MapiError):
    """The addressed resource does not exist."""

    rest_code = "ResourceNotFound"
    status_code = 404


class ConflictError(MapiError):
    """The resource is in a state that does not allow the transition."""

    rest_code = "InvalidState"
    status_code = 409


class ServiceUnavailableError(MapiError):
    """Upstream cannot service the request right now."""

    rest_code = "InsufficientCapacity"
    status_code = 503


class InternalError(MapiError):
    """Catch-all for unknown failures and protocol violations."""

    rest_code = "InternalError"
    status_code = 500


class DecodeError(InternalError):
    """A successful response carried a body that is not valid JSON."""

    pass
