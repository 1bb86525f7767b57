"""Options applied to the nodes a cloud or template provisions.

Options are layered: built-in defaults, then the cloud's defaults, then
the template's own options. Any field left as None inherits from the
layer beneath.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any

from fleetkeeper.core.exceptions import ConfigurationError
from fleetkeeper.providers.openstack.boot import BootSource, boot_source


@dataclass(frozen=True, slots=True)
class NodeOptions:
    """Per-node settings.

    Args:
        boot_source: Image or volume snapshot to boot from.
        flavor_id: Hardware flavor.
        network_id: Network to attach the server to.
        floating_ip_pool: External network to allocate a public address
            from. No floating IP is assigned when unset.
        security_groups: Security group names.
        availability_zone: Zone to boot in.
        key_pair: Name of the key pair injected into the server.
        user_data: Cloud-init template, see fleetkeeper.fleet.template.
        fs_root: Working directory for the job-execution agent.
        startup_timeout: Seconds to wait for the server to become active.
        retention_time: Idle minutes before termination. 0 means never
            reuse, negative means keep forever.
        instances_min: Nodes kept even when idle.
        instance_cap: Maximum running nodes.
    """

    boot_source: BootSource | None = None
    flavor_id: str | None = None
    network_id: str | None = None
    floating_ip_pool: str | None = None
    security_groups: tuple[str, ...] | None = None
    availability_zone: str | None = None
    key_pair: str | None = None
    user_data: str | None = None
    fs_root: str | None = None
    startup_timeout: float | None = None
    retention_time: int | None = None
    instances_min: int | None = None
    instance_cap: int | None = None

    def override(self, other: NodeOptions) -> NodeOptions:
        """Options where every field set in ``other`` replaces ours."""
        changes = {
            f.name: value
            for f in fields(other)
            if (value := getattr(other, f.name)) is not None
        }
        return replace(self, **changes)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> NodeOptions:
        """Build options from a configuration table.

        The boot source is given as either ``image = "name"`` or
        ``volume_snapshot = "name"``.
        """
        raw = dict(raw)
        image = raw.pop("image", None)
        snapshot = raw.pop("volume_snapshot", None)
        if image is not None and snapshot is not None:
            raise ConfigurationError("Specify either 'image' or 'volume_snapshot', not both")

        known = {f.name for f in fields(cls)} - {"boot_source"}
        unknown = set(raw) - known
        if unknown:
            raise ConfigurationError(f"Unknown node options: {', '.join(sorted(unknown))}")

        if "security_groups" in raw:
            raw["security_groups"] = tuple(raw["security_groups"])

        source = None
        if image is not None:
            source = boot_source("image", image)
        elif snapshot is not None:
            source = boot_source("volume_snapshot", snapshot)

        return cls(boot_source=source, **raw)


DEFAULTS = NodeOptions(
    startup_timeout=600.0,
    retention_time=30,
    instances_min=0,
)
