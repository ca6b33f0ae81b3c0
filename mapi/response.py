"""
Response decoding for successful MAPI calls.
"""

import json
from enum import Enum
from typing import Any, Mapping
from urllib.parse import unquote

import httpx
from loguru import logger

from mapi.errors import DecodeError, InternalError, ResourceNotFoundError
from mapi.request import TRANSITION_HEADER


class ResponseShape(str, Enum):
    """What a successful call is expected to return."""

    LIST = "list"
    OBJECT = "object"
    HEADERS = "headers"


def _loads(raw: str | bytes) -> Any:
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"Unparsable MAPI response body: {raw[:500]!r}")
        raise DecodeError(f"Invalid JSON in MAPI response: {e}") from e


def decode_body(
    raw: str | bytes | None,
    shape: ResponseShape,
    resource: str = "",
    allow_empty: bool = False,
) -> Any:
    """
    Decode a successful response body.

    LIST: empty body is an empty list.
    OBJECT: empty body (or empty JSON value) means the resource is absent
        and raises ResourceNotFoundError with the resource segment, unless
        allow_empty is set, in which case an empty mapping is returned.
    HEADERS: the body is ignored; returns None.

    Raises:
        DecodeError: the body is present but not valid JSON
        ResourceNotFoundError: OBJECT shape with an empty body
    """
    if shape is ResponseShape.HEADERS:
        return None

    if shape is ResponseShape.LIST:
        if not raw or not raw.strip():
            return []
        data = _loads(raw)
        if data is None:
            return []
        if not isinstance(data, list):
            raise DecodeError(f"Expected a JSON list, got {type(data).__name__}")
        return data

    if not raw or not raw.strip():
        if allow_empty:
            return {}
        raise ResourceNotFoundError(resource)
    data = _loads(raw)
    if allow_empty and data in (None, {}):
        return {}
    # A present but empty object means the resource row is absent
    if data is None or data == {} or data == "":
        raise ResourceNotFoundError(resource)
    return data


def resource_segment(path: str) -> str:
    """Return the last path segment of path, ignoring any query string."""
    return unquote(path.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1])


def transition_id(headers: Mapping[str, str]) -> str:
    """
    Extract the new resource identifier from a transition header.

    Raises:
        InternalError: the header is missing or empty
    """
    location = httpx.Headers(headers).get(TRANSITION_HEADER)
    if not location:
        logger.error(f"MAPI response without {TRANSITION_HEADER}: {dict(headers)}")
        raise InternalError(
            f"MAPI response is missing the {TRANSITION_HEADER} header"
        )
    resource_id = resource_segment(location)
    if not resource_id:
        raise InternalError(f"Malformed {TRANSITION_HEADER} header: {location}")
    return resource_id
