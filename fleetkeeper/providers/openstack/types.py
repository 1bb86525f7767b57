"""OpenStack-specific types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ServerRequest:
    """Boot request assembled before a server is created.

    Mutable so that boot sources and the client can decorate it in turn.
    """

    name: str
    flavor_id: str | None = None
    image_id: str | None = None
    networks: list[str] = field(default_factory=list)
    key_name: str | None = None
    availability_zone: str | None = None
    security_groups: list[str] = field(default_factory=list)
    user_data: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    block_device_mapping: list[dict[str, Any]] = field(default_factory=list)

    def add_metadata_item(self, key: str, value: str) -> None:
        self.metadata[key] = value

    def to_attrs(self) -> dict[str, Any]:
        """Keyword arguments for ``conn.compute.create_server``."""
        attrs: dict[str, Any] = {"name": self.name, "metadata": dict(self.metadata)}
        if self.flavor_id:
            attrs["flavor_id"] = self.flavor_id
        if self.image_id:
            attrs["image_id"] = self.image_id
        if self.networks:
            attrs["networks"] = [{"uuid": net} for net in self.networks]
        if self.key_name:
            attrs["key_name"] = self.key_name
        if self.availability_zone:
            attrs["availability_zone"] = self.availability_zone
        if self.security_groups:
            attrs["security_groups"] = [{"name": group} for group in self.security_groups]
        if self.user_data:
            attrs["user_data"] = self.user_data
        if self.block_device_mapping:
            attrs["block_device_mapping"] = [dict(bdm) for bdm in self.block_device_mapping]
        return attrs


@dataclass(frozen=True, slots=True)
class FloatingIp:
    """Public address allocated from an external network."""

    id: str
    address: str
    instance_id: str | None = None
