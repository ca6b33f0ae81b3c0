"""
Client-side filtering of machine listings.

MAPI does not filter machine listings by these fields yet, so the client
filters the full list after decoding. Remove each filter once upstream
supports it server-side.
"""

from datetime import datetime, timezone
from typing import Any, Mapping

from mapi.utils import parse_timestamp

# Option keys consumed here and never sent in the query string
FILTER_OPTIONS = (
    "type",
    "alias",
    "name",
    "package",
    "id",
    "dataset",
    "tombstone",
)

DATASET_FIELDS = ("dataset_uuid", "dataset_urn", "dataset_name")


def split_filters(
    options: Mapping[str, Any] | None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Split an option bag into (request options, client-side filters).

    Tags stay in the request options (they become `tag.<name>` query
    parameters) and are also checked client-side.
    """
    request_options: dict[str, Any] = {}
    filters: dict[str, Any] = {}
    for key, value in (options or {}).items():
        if key in FILTER_OPTIONS:
            filters[key] = value
        else:
            request_options[key] = value
    if request_options.get("tags"):
        filters["tags"] = dict(request_options["tags"])
    return request_options, filters


def _package_name(machine: Mapping[str, Any]) -> Any:
    metadata = machine.get("internal_metadata") or {}
    if not isinstance(metadata, Mapping):
        return None
    return metadata.get("package_name")


def _matches_dataset(machine: Mapping[str, Any], dataset: Any) -> bool:
    return any(machine.get(field) == dataset for field in DATASET_FIELDS)


def _matches_tags(machine: Mapping[str, Any], tags: Mapping[str, Any]) -> bool:
    machine_tags = machine.get("tags") or {}
    if not isinstance(machine_tags, Mapping):
        return False
    return all(machine_tags.get(key) == value for key, value in tags.items())


def _is_visible(
    machine: Mapping[str, Any],
    tombstone: float | None,
    now: datetime,
) -> bool:
    """Destroyed machines are hidden unless within the tombstone window."""
    destroyed = machine.get("destroyed_at")
    if not destroyed:
        return True
    if tombstone is None:
        return False

    destroyed_at = parse_timestamp(destroyed)
    if destroyed_at is None:
        return False
    return (now - destroyed_at).total_seconds() <= float(tombstone)


def filter_machines(
    machines: list[dict[str, Any]],
    filters: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """
    Apply client-side filters to a machine listing.

    Filters are applied in order: type, alias, name, package, id, dataset,
    tags. Then destroyed machines are dropped unless `tombstone` (seconds)
    covers their destruction time.

    Args:
        machines: Decoded machine list
        filters: Filter options (see FILTER_OPTIONS)
        now: Reference time for the tombstone window (defaults to UTC now)

    Returns:
        New list with the matching machines, original order preserved
    """
    filters = filters or {}
    now = now or datetime.now(timezone.utc)
    result = list(machines)

    for key in ("type", "alias", "name"):
        if filters.get(key) is not None:
            result = [m for m in result if m.get(key) == filters[key]]

    if filters.get("package") is not None:
        result = [m for m in result if _package_name(m) == filters["package"]]

    if filters.get("id") is not None:
        result = [m for m in result if m.get("uuid") == filters["id"]]

    if filters.get("dataset") is not None:
        result = [m for m in result if _matches_dataset(m, filters["dataset"])]

    if filters.get("tags"):
        result = [m for m in result if _matches_tags(m, filters["tags"])]

    tombstone = filters.get("tombstone")
    return [m for m in result if _is_visible(m, tombstone, now)]
