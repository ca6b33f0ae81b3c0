"""
MapiClient - async client for the MAPI infrastructure API.

Every operation funnels through `_request`, which combines:
- build_request for the final path, query string and headers
- ResponseCache for idempotent reads (read-through, write-invalidated)
- translate_exception for failed calls
- decode_body for successful responses
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Generic, Iterable, TypeVar
from urllib.parse import quote

import httpx
from loguru import logger

from mapi.cache import DEFAULT_TTL, ResponseCache
from mapi.errors import InvalidArgumentError
from mapi.filters import filter_machines, split_filters
from mapi.request import (
    FULL_ERROR_MESSAGES_HEADER,
    IGNORE_PROVISION_STATE_HEADER,
    build_request,
    flatten_tags,
)
from mapi.response import ResponseShape, decode_body, resource_segment, transition_id
from mapi.settings import Settings
from mapi.translate import translate_exception

T = TypeVar("T")

# Options that still apply to the follow-up read after a create
_PASSTHROUGH_OPTIONS = ("headers", "requestId")


@dataclass
class RequestResult(Generic[T]):
    """Result from a MAPI request."""

    data: T
    headers: dict[str, str] = field(default_factory=dict)
    from_cache: bool = False


def _seg(value: Any) -> str:
    """Quote a value for use as a single path segment."""
    return quote(str(value), safe="")


def _passthrough(options: dict[str, Any] | None) -> dict[str, Any]:
    return {k: v for k, v in (options or {}).items() if k in _PASSTHROUGH_OPTIONS}


def _mutation_body(params: dict[str, Any] | None) -> dict[str, Any]:
    """Copy params, flattening a `tags` mapping into `tag.<name>` fields."""
    body = dict(params or {})
    tags = body.pop("tags", None)
    body.update(flatten_tags(tags))
    return body


class MapiClient:
    """
    Client for MAPI.

    Usage:
        async with MapiClient(
            "http://mapi.example.com", "admin", "secret",
            cache_ttl=timedelta(minutes=1),
        ) as client:
            machines = await client.list_machines(tenant, options={"type": "zone"})
            machine = await client.get_machine(machines[0]["uuid"], tenant)

    Every operation either returns its result or raises exactly one
    MapiError subclass.
    """

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        cache: bool = True,
        cache_ttl: timedelta = DEFAULT_TTL,
        timeout: float = 30.0,
        retries: int = 0,
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
    ):
        self.url = url
        self._username = username
        self._password = password
        self._timeout = timeout
        self._retries = retries
        self._transport = transport
        self._debug = debug

        self._cache = ResponseCache(enabled=cache, ttl=cache_ttl, debug=debug)

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs) -> "MapiClient":
        """Create a client from Settings (environment by default)."""
        settings = settings or Settings.from_env()
        options: dict[str, Any] = {
            "url": settings.url,
            "username": settings.username,
            "password": settings.password,
            "cache": settings.cache_enabled,
            "cache_ttl": settings.cache_ttl,
            "timeout": settings.timeout,
            "retries": settings.retries,
            "debug": settings.debug,
        }
        options.update(kwargs)
        return cls(**options)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.url,
                auth=(self._username, self._password) if self._username else None,
                headers={
                    "Accept": "application/json",
                    FULL_ERROR_MESSAGES_HEADER: "true",
                    IGNORE_PROVISION_STATE_HEADER: "true",
                },
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport
                or httpx.AsyncHTTPTransport(retries=self._retries),
            )
        return self._http_client

    async def _request(
        self,
        method: str,
        path: str,
        tenant: str = "",
        options: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        shape: ResponseShape = ResponseShape.OBJECT,
        cache: bool = False,
        allow_empty: bool = False,
        invalidate: Iterable[str] = (),
    ) -> RequestResult[Any]:
        """
        Make a MAPI request.

        Args:
            method: HTTP method
            path: Resource path without query string
            tenant: Owning customer, empty for unscoped calls
            options: Caller's option bag
            body: JSON body for POST/PUT
            shape: Expected response shape
            cache: Read-through cache for this GET
            allow_empty: Empty OBJECT bodies decode to {} instead of not found
            invalidate: Extra resource paths to drop from the cache on success.
                Non-GET requests always drop their own path.

        Raises:
            MapiError: normalized failure
        """
        try:
            request = build_request(path, tenant, options)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(f"Invalid request options: {e}") from e

        if cache:
            cached = await self._cache.get(request.path)
            if cached is not None:
                return RequestResult(data=cached, from_cache=True)

        client = await self._get_http_client()
        logger.debug(f"MAPI {method} {request.path}")

        try:
            response = await client.request(
                method,
                request.path,
                headers=dict(request.headers),
                json=body,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise translate_exception(e) from e
        except (TypeError, ValueError) as e:
            # Unencodable headers or body; nothing was sent
            raise InvalidArgumentError(f"Invalid request: {e}") from e
        except Exception as e:
            raise translate_exception(e) from e

        data = decode_body(
            response.content, shape, resource_segment(path), allow_empty=allow_empty
        )

        if cache:
            await self._cache.set(request.path, data)

        if method != "GET":
            await self._cache.set(request.path, None)
            for stale in invalidate:
                await self._cache.set(build_request(stale, tenant, options).path, None)

        return RequestResult(data=data, headers=dict(response.headers))

    async def _list(
        self, path: str, tenant: str = "", options: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        result = await self._request(
            "GET", path, tenant, options, shape=ResponseShape.LIST, cache=True
        )
        return result.data

    async def _get(
        self, path: str, tenant: str = "", options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        result = await self._request("GET", path, tenant, options, cache=True)
        return result.data

    async def _action(
        self,
        path: str,
        tenant: str = "",
        options: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        method: str = "POST",
        invalidate: Iterable[str] = (),
    ) -> dict[str, str]:
        result = await self._request(
            method,
            path,
            tenant,
            options,
            body=body,
            shape=ResponseShape.HEADERS,
            invalidate=invalidate,
        )
        return result.headers

    # Machines

    async def list_machines(
        self, tenant: str = "", *, options: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """
        List machines, optionally filtered.

        Filter options (applied client-side): type, alias, name, package,
        id, dataset, tags, tombstone.
        """
        request_options, filters = split_filters(options)
        machines = await self._list("/machines", tenant, request_options)
        return filter_machines(machines, filters)

    async def count_machines(
        self, tenant: str = "", *, options: dict[str, Any] | None = None
    ) -> int:
        """Count machines matching the same filters as list_machines."""
        return len(await self.list_machines(tenant, options=options))

    async def get_machine(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get(f"/machines/{_seg(machine_id)}", tenant, options)

    async def create_machine(
        self,
        params: dict[str, Any],
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Provision a machine and return it once MAPI reports its location.

        Raises:
            InternalError: MAPI did not return a transition location
        """
        result = await self._request(
            "POST",
            "/machines",
            tenant,
            options,
            body=_mutation_body(params),
            shape=ResponseShape.HEADERS,
        )
        machine_id = transition_id(result.headers)
        logger.info(f"Provisioning machine {machine_id}")
        return await self.get_machine(
            machine_id, tenant, options=_passthrough(options)
        )

    async def update_machine(
        self,
        machine_id: str,
        params: dict[str, Any],
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        result = await self._request(
            "PUT",
            f"/machines/{_seg(machine_id)}",
            tenant,
            options,
            body=_mutation_body(params),
            allow_empty=True,
        )
        return result.data

    async def delete_machine(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        return await self._action(
            f"/machines/{_seg(machine_id)}", tenant, options, method="DELETE"
        )

    async def _machine_action(
        self,
        machine_id: str,
        action: str,
        tenant: str,
        options: dict[str, Any] | None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        machine_path = f"/machines/{_seg(machine_id)}"
        return await self._action(
            f"{machine_path}/{action}",
            tenant,
            options,
            body=body,
            invalidate=[machine_path],
        )

    async def shutdown_machine(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        return await self._machine_action(machine_id, "shutdown", tenant, options)

    async def startup_machine(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        return await self._machine_action(machine_id, "startup", tenant, options)

    async def reboot_machine(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        return await self._machine_action(machine_id, "reboot", tenant, options)

    async def resize_machine(
        self,
        machine_id: str,
        params: dict[str, Any],
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        return await self._machine_action(
            machine_id, "resize", tenant, options, body=dict(params)
        )

    # Snapshots

    async def list_machine_snapshots(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        return await self._list(
            f"/machines/{_seg(machine_id)}/snapshots", tenant, options
        )

    async def get_machine_snapshot(
        self,
        machine_id: str,
        name: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get(
            f"/machines/{_seg(machine_id)}/snapshots/{_seg(name)}", tenant, options
        )

    async def create_machine_snapshot(
        self,
        machine_id: str,
        name: str | None = None,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Snapshot a machine and return the new snapshot."""
        result = await self._request(
            "POST",
            f"/machines/{_seg(machine_id)}/snapshots",
            tenant,
            options,
            body={"name": name} if name else None,
            shape=ResponseShape.HEADERS,
        )
        snapshot_name = transition_id(result.headers)
        return await self.get_machine_snapshot(
            machine_id, snapshot_name, tenant, options=_passthrough(options)
        )

    async def boot_machine_snapshot(
        self,
        machine_id: str,
        name: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        """Roll a machine back to a snapshot and boot it."""
        machine_path = f"/machines/{_seg(machine_id)}"
        return await self._action(
            f"{machine_path}/snapshots/{_seg(name)}/boot",
            tenant,
            options,
            invalidate=[machine_path],
        )

    async def delete_machine_snapshot(
        self,
        machine_id: str,
        name: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        snapshots_path = f"/machines/{_seg(machine_id)}/snapshots"
        return await self._action(
            f"{snapshots_path}/{_seg(name)}",
            tenant,
            options,
            method="DELETE",
            invalidate=[snapshots_path],
        )

    # Tags

    async def list_machine_tags(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        result = await self._request(
            "GET",
            f"/machines/{_seg(machine_id)}/tags",
            tenant,
            options,
            cache=True,
            allow_empty=True,
        )
        return result.data

    async def get_machine_tag(
        self,
        machine_id: str,
        tag: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> Any:
        return await self._get(
            f"/machines/{_seg(machine_id)}/tags/{_seg(tag)}", tenant, options
        )

    async def add_machine_tags(
        self,
        machine_id: str,
        tags: dict[str, Any],
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Add tags to a machine, keeping existing ones."""
        result = await self._request(
            "POST",
            f"/machines/{_seg(machine_id)}/tags",
            tenant,
            options,
            body=flatten_tags(tags),
            allow_empty=True,
        )
        return result.data

    async def replace_machine_tags(
        self,
        machine_id: str,
        tags: dict[str, Any],
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Replace all tags on a machine."""
        result = await self._request(
            "PUT",
            f"/machines/{_seg(machine_id)}/tags",
            tenant,
            options,
            body=flatten_tags(tags),
            allow_empty=True,
        )
        return result.data

    async def delete_machine_tag(
        self,
        machine_id: str,
        tag: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        tags_path = f"/machines/{_seg(machine_id)}/tags"
        return await self._action(
            f"{tags_path}/{_seg(tag)}",
            tenant,
            options,
            method="DELETE",
            invalidate=[tags_path],
        )

    async def delete_machine_tags(
        self,
        machine_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, str]:
        return await self._action(
            f"/machines/{_seg(machine_id)}/tags", tenant, options, method="DELETE"
        )

    # Datasets, packages, networks

    async def list_datasets(
        self, tenant: str = "", *, options: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._list("/datasets", tenant, options)

    async def get_dataset(
        self,
        dataset_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get(f"/datasets/{_seg(dataset_id)}", tenant, options)

    async def list_packages(
        self, tenant: str = "", *, options: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._list("/packages", tenant, options)

    async def get_package(
        self,
        name: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get(f"/packages/{_seg(name)}", tenant, options)

    async def list_networks(
        self, tenant: str = "", *, options: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._list("/networks", tenant, options)

    async def get_network(
        self,
        network_id: str,
        tenant: str = "",
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get(f"/networks/{_seg(network_id)}", tenant, options)

    # Servers, boot parameters and NICs (administrative, unscoped)

    async def list_servers(
        self, *, options: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._list("/servers", "", options)

    async def get_server(
        self, server_id: str, *, options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._get(f"/servers/{_seg(server_id)}", "", options)

    async def get_boot_params(
        self,
        mac: str,
        ip: str | None = None,
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Look up boot parameters for a NIC by MAC and last known IP."""
        options = dict(options or {})
        if ip:
            options["ip"] = ip
        result = await self._request("GET", f"/boot/{_seg(mac)}", "", options)
        return result.data

    async def create_nic(
        self,
        mac: str,
        params: dict[str, Any] | None = None,
        *,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Register a NIC by MAC address."""
        body = dict(params or {})
        body["mac"] = mac
        result = await self._request("POST", "/nics", "", options, body=body)
        return result.data

    # Lifecycle and cache

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("MapiClient closed")

    async def __aenter__(self) -> "MapiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.get_stats().to_dict()


# Global client instance
_global_client: MapiClient | None = None


def get_mapi_client() -> MapiClient:
    """Get the global client instance, configured from the environment."""
    global _global_client
    if _global_client is None:
        _global_client = MapiClient.from_settings()
    return _global_client


async def close_mapi_client() -> None:
    """Close the global client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
