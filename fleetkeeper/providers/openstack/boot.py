"""The source a server boots from.

A boot source is a plain tagged value, either an image or a volume
snapshot, named the way a human picked it. The three capabilities every
source offers (resolving ids, decorating a boot request, and the
post-provision hook) dispatch on the tag.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias

from loguru import logger

from fleetkeeper.core.exceptions import ProvisioningFailed

if TYPE_CHECKING:
    from .client import Openstack
    from .types import ServerRequest

log = logger.bind(component="boot-source")

BootSourceKind: TypeAlias = Literal["image", "volume_snapshot"]


@dataclass(frozen=True, slots=True)
class ImageSource:
    name: str

    def __str__(self) -> str:
        return f"Image {self.name}"


@dataclass(frozen=True, slots=True)
class VolumeSnapshotSource:
    name: str

    def __str__(self) -> str:
        return f"VolumeSnapshot {self.name}"


BootSource: TypeAlias = ImageSource | VolumeSnapshotSource


def boot_source(kind: BootSourceKind, name: str) -> BootSource:
    match kind:
        case "image":
            return ImageSource(name)
        case "volume_snapshot":
            return VolumeSnapshotSource(name)
        case _:
            raise ValueError(f"Unknown boot source kind {kind!r}")


def resolve_ids(source: BootSource, openstack: Openstack) -> list[str]:
    """All ids matching the source's name or id, oldest first."""
    match source:
        case ImageSource(name=name):
            return openstack.get_image_ids_for(name)
        case VolumeSnapshotSource(name=name):
            return openstack.get_volume_snapshot_ids_for(name)


def most_recent(source: BootSource, ids: list[str]) -> str | None:
    """Pick the newest candidate. Ambiguity is logged, not fatal."""
    if not ids:
        return None
    chosen = ids[-1]
    if len(ids) > 1:
        log.warning(
            "{n} candidates match {source}. Using the most recent one: {id}",
            n=len(ids),
            source=source,
            id=chosen,
        )
    return chosen


def decorate(source: BootSource, request: ServerRequest, openstack: Openstack) -> None:
    """Make ``request`` boot from ``source``.

    Raises:
        ProvisioningFailed: Nothing matches the source; do not provision.
    """
    chosen = most_recent(source, resolve_ids(source, openstack))
    if chosen is None:
        raise ProvisioningFailed(f"No {source} found")

    request.image_id = chosen
    match source:
        case VolumeSnapshotSource():
            request.block_device_mapping.append(
                {
                    "source_type": "snapshot",
                    "destination_type": "volume",
                    "uuid": chosen,
                    "delete_on_termination": True,
                    "boot_index": 0,
                }
            )
        case ImageSource():
            pass


def after_provisioning(source: BootSource, server: Any, openstack: Openstack) -> None:
    """Amend a freshly booted server.

    The volume a server boots from gets neither name nor description from
    OpenStack; name it after the server so humans can recognize it.
    """
    match source:
        case VolumeSnapshotSource(name=name):
            description = f"For {server.name} ({server.id}), from VolumeSnapshot {name}."
            volumes = server.attached_volumes or []
            for i, volume in enumerate(volumes):
                openstack.set_volume_name_and_description(
                    volume["id"], f"{server.name}[{i}]", description
                )
        case ImageSource():
            pass
