"""
Upstream error translation.

Maps a failed MAPI call (status, raw body, response headers) onto exactly
one normalized MapiError. Unknown codes fall through to InternalError and
are logged so the table below can be extended.
"""

import json
from dataclasses import dataclass
from typing import Any, Mapping

import httpx
from loguru import logger

from mapi.errors import (
    ConflictError,
    InternalError,
    InvalidArgumentError,
    MapiError,
    ResourceNotFoundError,
    ServiceUnavailableError,
)
from mapi.request import ERROR_CODE_HEADER
from mapi.utils import capitalize

GENERIC_MESSAGE = "An unexpected error occurred"
INTERNAL_MESSAGE = "Internal error"
BAD_REQUEST_MESSAGE = "Bad request"


@dataclass(frozen=True)
class Translation:
    """How one upstream code maps onto a normalized error."""

    error_class: type[MapiError]
    rest_code: str | None = None
    # None means "use the first upstream message"
    message: str | None = None


_INVALID = Translation(InvalidArgumentError)
_CAPACITY = Translation(ServiceUnavailableError, "InsufficientCapacity")
_STATE = Translation(ConflictError, "InvalidState")

TRANSLATIONS: dict[str, Translation] = {
    "DuplicateAliasError": Translation(
        InvalidArgumentError, message="name is already in use"
    ),
    "InvalidHostnameError": Translation(
        InvalidArgumentError, message="name syntax is invalid"
    ),
    "NotFoundError": Translation(ResourceNotFoundError),
    "NoAvailableServersError": _CAPACITY,
    "NoAvailableServersWithDatasetError": _CAPACITY,
    "SetupError": Translation(
        ServiceUnavailableError,
        "InternalError",
        "System is unavailable for provisioning",
    ),
    "TransitionConflictError": _STATE,
    "TransitionToCurrentStatusError": _STATE,
    "UnacceptableTransitionError": _STATE,
    "InsufficientRamForDatasetError": _INVALID,
    "InvalidParamError": _INVALID,
    "UnknownDatasetError": _INVALID,
    "UnknownPackageError": _INVALID,
    "TooMuchRamForDatasetError": _INVALID,
}


def _parse_body(body: str | bytes | None) -> dict[str, Any] | None:
    """Parse an error body; anything that is not a JSON object yields None."""
    if not body:
        return None
    try:
        parsed = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        # Upstream sometimes answers with HTML error pages
        return None
    return parsed if isinstance(parsed, dict) else None


def _messages(parsed: dict[str, Any]) -> list[Any]:
    if "messages" in parsed:
        messages = parsed["messages"]
    elif "errors" in parsed:
        messages = parsed["errors"]
    elif isinstance(parsed.get("message"), str) and parsed["message"]:
        messages = [capitalize(parsed["message"])]
    else:
        messages = [GENERIC_MESSAGE]

    if not isinstance(messages, list):
        messages = [messages]
    return messages


def _first_message(messages: list[Any]) -> str:
    if not messages:
        return GENERIC_MESSAGE
    first = messages[0]
    if isinstance(first, dict):
        first = first.get("message") or first.get("msg") or json.dumps(first)
    return str(first)


def translate_error(
    status: int | None = None,
    body: str | bytes | None = None,
    headers: Mapping[str, str] | None = None,
    cause: BaseException | None = None,
) -> MapiError:
    """
    Translate a failed call into a normalized error.

    Args:
        status: HTTP status of the failed response, if any
        body: Raw response body, if any
        headers: Response headers, used as a fallback carrier of the code
        cause: The original exception, reported to the log on internal errors

    Returns:
        Exactly one MapiError. This function does not raise.
    """
    parsed = _parse_body(body)
    messages = _messages(parsed) if parsed is not None else []

    code = parsed.get("code") if parsed is not None else None
    if not code and headers:
        code = httpx.Headers(headers).get(ERROR_CODE_HEADER)

    translation = TRANSLATIONS.get(code) if isinstance(code, str) else None
    if translation is not None:
        message = translation.message or _first_message(messages)
        return translation.error_class(
            message,
            rest_code=translation.rest_code,
            upstream_status=status,
            upstream_code=code,
        )

    if code:
        logger.warning(f"Untranslated MAPI error code: {code}")

    if status == 400:
        return InvalidArgumentError(
            BAD_REQUEST_MESSAGE, upstream_status=status, upstream_code=code
        )

    excerpt = body[:500] if body else None
    logger.error(
        f"MAPI internal error: status={status} code={code} "
        f"body={excerpt!r} cause={cause!r}"
    )
    return InternalError(INTERNAL_MESSAGE, upstream_status=status, upstream_code=code)


def translate_exception(exc: BaseException) -> MapiError:
    """Translate an httpx (or any other) exception raised by a call."""
    if isinstance(exc, MapiError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return translate_error(
            status=response.status_code,
            body=response.content,
            headers=response.headers,
            cause=exc,
        )

    return translate_error(cause=exc)
