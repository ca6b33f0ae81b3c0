"""
MAPI client - typed async access to the MAPI infrastructure API.

Provides:
- MapiClient: operation facade over machines, datasets, packages, networks,
  servers, snapshots, tags, boot parameters and NICs
- ResponseCache: read-through, write-invalidated TTL cache
- build_request / translate_error / decode_body: the request and response layer
- Normalized errors callers can branch on
"""

from mapi.errors import (
    MapiError,
    InvalidArgumentError,
    ResourceNotFoundError,
    ConflictError,
    ServiceUnavailableError,
    InternalError,
    DecodeError,
)
from mapi.cache import ResponseCache, CacheEntry, CacheStats
from mapi.request import RequestDescriptor, build_request
from mapi.response import ResponseShape, decode_body
from mapi.translate import translate_error, translate_exception
from mapi.filters import filter_machines
from mapi.settings import Settings
from mapi.client import MapiClient, RequestResult, get_mapi_client, close_mapi_client

__all__ = [
    # Errors
    "MapiError",
    "InvalidArgumentError",
    "ResourceNotFoundError",
    "ConflictError",
    "ServiceUnavailableError",
    "InternalError",
    "DecodeError",
    # Cache
    "ResponseCache",
    "CacheEntry",
    "CacheStats",
    # Request / response layer
    "RequestDescriptor",
    "build_request",
    "ResponseShape",
    "decode_body",
    "translate_error",
    "translate_exception",
    "filter_machines",
    # Client
    "Settings",
    "MapiClient",
    "RequestResult",
    "get_mapi_client",
    "close_mapi_client",
]
