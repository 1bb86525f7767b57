"""Node templates: named option sets that provision servers."""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass, field
from string import Template
from typing import TYPE_CHECKING, Any

from loguru import logger
from openstack import exceptions

from fleetkeeper.api.options import NodeOptions
from fleetkeeper.core.exceptions import (
    FleetError,
    NoFloatingIpCapability,
    ProvisioningFailed,
)
from fleetkeeper.providers.openstack import boot
from fleetkeeper.providers.openstack.types import ServerRequest

if TYPE_CHECKING:
    from .cloud import Cloud

TEMPLATE_KEY = "fleetkeeper-template"


def render_user_data(text: str, variables: dict[str, str]) -> str:
    """Substitute ``${VAR}`` placeholders, leaving unknown ones untouched."""
    return Template(text).safe_substitute(variables)


@dataclass(frozen=True, slots=True)
class NodeTemplate:
    """Recipe for a class of nodes.

    Args:
        name: Template name, also the prefix of every server name.
        labels: Space separated labels the job-execution layer routes on.
        options: Options overriding the cloud defaults.
    """

    name: str
    labels: str = ""
    options: NodeOptions = field(default_factory=NodeOptions)

    def server_name(self) -> str:
        return f"{self.name}-{secrets.token_hex(4)}"

    def build_request(self, name: str, options: NodeOptions, fleet_url: str) -> ServerRequest:
        if options.flavor_id is None:
            raise ProvisioningFailed(f"No flavor configured for template {self.name}")

        request = ServerRequest(
            name=name,
            flavor_id=options.flavor_id,
            networks=[options.network_id] if options.network_id else [],
            key_name=options.key_pair,
            availability_zone=options.availability_zone,
            security_groups=list(options.security_groups or ()),
        )
        request.add_metadata_item(TEMPLATE_KEY, self.name)

        if options.user_data:
            rendered = render_user_data(
                options.user_data,
                {
                    "NODE_NAME": name,
                    "NODE_LABELS": self.labels,
                    "NODE_FS_ROOT": options.fs_root or "",
                    "FLEET_URL": fleet_url,
                },
            )
            request.user_data = base64.b64encode(rendered.encode()).decode()
        return request

    def provision(self, cloud: Cloud, timeout: float | None = None) -> Any:
        """Boot a server for this template and prepare it for use.

        Args:
            cloud: Cloud to provision in.
            timeout: Seconds to wait for the server to become active,
                overriding the configured startup timeout.

        Raises:
            ProvisioningFailed: The server could not be booted or prepared.
                A server that was booted is destroyed before raising.
            ActionFailed: The provider refused the boot request.
        """
        options = cloud.effective_options(self)
        openstack = cloud.openstack
        name = self.server_name()
        log = logger.bind(component="template", template=self.name, node=name)

        if options.boot_source is None:
            raise ProvisioningFailed(f"No boot source configured for template {self.name}")

        request = self.build_request(name, options, cloud.config.root_url)
        boot.decorate(options.boot_source, request, openstack)

        log.info("Provisioning new node {name}", name=name)
        if timeout is None:
            timeout = options.startup_timeout or 600.0
        server = openstack.boot_and_wait_active(request, timeout)

        try:
            if options.floating_ip_pool:
                try:
                    openstack.assign_floating_ip(server, options.floating_ip_pool)
                except NoFloatingIpCapability as e:
                    log.info("Floating IPs are not available, skipping: {err}", err=e)
                server = openstack.update_info(server)
            boot.after_provisioning(options.boot_source, server, openstack)
        except (FleetError, LookupError, exceptions.SDKException) as e:
            err = ProvisioningFailed(f"Unable to prepare {name}: {e}", status=server.status)
            try:
                openstack.destroy_server(server)
            except FleetError as cleanup:
                err.attach_cleanup_error(cleanup)
            raise err from e

        log.info("Node {name} provisioned as {id}", name=name, id=server.id)
        return server
