"""
Request building for MAPI calls.

Turns (path, tenant, options) into a final path with query string and the
per-request headers. No network I/O happens here.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import httpx

# Sent on every request by the client transport
FULL_ERROR_MESSAGES_HEADER = "X-Joyent-Full-Error-Messages"
IGNORE_PROVISION_STATE_HEADER = "X-Joyent-Ignore-Provision-State"

# Per-request headers
TENANT_HEADER = "User"
REQUEST_ID_HEADER = "x-request-id"

# Response headers
ERROR_CODE_HEADER = "x-joyent-error-code"
TRANSITION_HEADER = "x-joyent-transition-location"

TENANT_PARAM = "owner_uuid"
TAG_PREFIX = "tag."


@dataclass(frozen=True)
class RequestDescriptor:
    """A fully built request: final path (with query) and headers."""

    path: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


def flatten_tags(tags: Mapping[str, Any] | None) -> dict[str, Any]:
    """Expand {"role": "db"} into {"tag.role": "db"}."""
    if not tags:
        return {}
    return {f"{TAG_PREFIX}{key}": value for key, value in tags.items()}


def encode_query(params: Mapping[str, Any]) -> str:
    """Serialize a flat mapping into a percent-encoded query string."""
    if not params:
        return ""
    return str(httpx.QueryParams(dict(params)))


def build_request(
    path: str,
    tenant: str = "",
    options: Mapping[str, Any] | None = None,
) -> RequestDescriptor:
    """
    Build the request descriptor for path.

    Args:
        path: Resource path, e.g. "/machines/abc"
        tenant: Owning customer; empty means unscoped
        options: Caller's option bag. Never mutated.

    Returns:
        RequestDescriptor with the query string appended to path
    """
    params = dict(options or {})
    headers = dict(params.pop("headers", None) or {})

    if tenant:
        params[TENANT_PARAM] = tenant
        headers[TENANT_HEADER] = tenant

    if "requestId" in params:
        headers[REQUEST_ID_HEADER] = str(params.pop("requestId"))

    if "tags" in params:
        params.update(flatten_tags(params.pop("tags")))

    # Encoders disagree on empty maps, so never hand them one
    if params:
        path = f"{path}?{encode_query(params)}"

    return RequestDescriptor(path=path, headers=headers)
