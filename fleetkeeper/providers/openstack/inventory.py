"""Server status model, deterministic ordering and ownership helpers.

Pure functions over openstacksdk resources. Nothing here talks to the
provider, so the rules can be exercised without a cloud.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import Any

from loguru import logger

log = logger.bind(component="inventory")

FINGERPRINT_KEY = "fleetkeeper-instance"

_ID_PATTERN = re.compile(r"[0-9a-f-]{36}")


class ServerStatus(StrEnum):
    ACTIVE = "ACTIVE"
    BUILD = "BUILD"
    REBUILD = "REBUILD"
    REBOOT = "REBOOT"
    HARD_REBOOT = "HARD_REBOOT"
    PASSWORD = "PASSWORD"
    RESIZE = "RESIZE"
    VERIFY_RESIZE = "VERIFY_RESIZE"
    REVERT_RESIZE = "REVERT_RESIZE"
    PAUSED = "PAUSED"
    SUSPENDED = "SUSPENDED"
    RESCUE = "RESCUE"
    SHELVED = "SHELVED"
    SHELVED_OFFLOADED = "SHELVED_OFFLOADED"
    SOFT_DELETED = "SOFT_DELETED"
    SHUTOFF = "SHUTOFF"
    MIGRATING = "MIGRATING"
    DELETED = "DELETED"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def parse(cls, raw: str | None) -> ServerStatus:
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.upper())
        except ValueError:
            return cls.UNRECOGNIZED


def is_occupied(server: Any) -> bool:
    """Whether the server must be treated as in service.

    Anything not known to be stopped counts as occupied so that a running
    machine is never leaked.
    """
    match ServerStatus.parse(server.status):
        case ServerStatus.UNKNOWN | ServerStatus.MIGRATING | ServerStatus.SHUTOFF | ServerStatus.DELETED:
            return False
        case ServerStatus.UNRECOGNIZED:
            log.warning(
                "Server status {status!r} not recognized, treating {name} as occupied",
                status=server.status,
                name=server.name,
            )
            return True
        case _:
            return True


def fingerprint_of(server: Any) -> str | None:
    return (server.metadata or {}).get(FINGERPRINT_KEY)


def is_owned_by(server: Any, fingerprint: str) -> bool:
    """The sole ownership test: the stamped fingerprint equals ours."""
    return fingerprint_of(server) == fingerprint


def looks_like_id(text: str) -> bool:
    return _ID_PATTERN.fullmatch(text) is not None


def _nulls_first(value: Any) -> tuple[bool, Any]:
    return (value is not None, value if value is not None else "")


def image_date_key(image: Any) -> tuple[Any, ...]:
    return (_nulls_first(image.updated_at), _nulls_first(image.created_at), image.id)


def snapshot_date_key(snapshot: Any) -> tuple[Any, ...]:
    return (_nulls_first(snapshot.created_at), snapshot.id)


def name_key(resource: Any) -> tuple[str, str]:
    return ((resource.name or "").casefold(), resource.id or "")


def sort_by_name(resources: Iterable[Any]) -> list[Any]:
    return sorted(resources, key=name_key)


def index_by_name(resources: Iterable[Any], date_key: Callable[[Any], Any]) -> dict[str, list[Any]]:
    """Group resources by name (or id when unnamed), case-insensitively.

    Keys come out in case-insensitive order; the first spelling seen wins.
    Each group is ordered oldest first according to ``date_key``.
    """
    groups: dict[str, tuple[str, list[Any]]] = {}
    for resource in resources:
        label = resource.name or resource.id
        groups.setdefault(label.casefold(), (label, []))[1].append(resource)

    return {
        label: sorted(members, key=date_key)
        for _, (label, members) in sorted(groups.items())
    }


def ids_oldest_first(resources: Iterable[Any], date_key: Callable[[Any], Any]) -> list[str]:
    """Distinct ids of ``resources`` in ascending date order."""
    unique = {r.id: r for r in resources}
    return [r.id for r in sorted(unique.values(), key=date_key)]


def _addresses(server: Any) -> Iterable[dict[str, Any]]:
    for addresses in (server.addresses or {}).values():
        yield from addresses


def public_address(server: Any) -> str | None:
    """Floating address if any, otherwise the last fixed one."""
    fixed = None
    for addr in _addresses(server):
        if addr.get("OS-EXT-IPS:type") == "floating":
            return addr.get("addr")
        fixed = addr.get("addr")
    return fixed


def public_address_ipv4(server: Any) -> str | None:
    """Like public_address, but only IPv4 fixed addresses qualify."""
    fixed = None
    for addr in _addresses(server):
        if addr.get("OS-EXT-IPS:type") == "floating":
            return addr.get("addr")
        if addr.get("version") == 4:
            fixed = addr.get("addr")
    return fixed


def describe_fault(server: Any) -> str:
    fault = getattr(server, "fault", None)
    if not fault:
        return "none"
    return f"{fault.get('code')}: {fault.get('message')} ({fault.get('details')})"
