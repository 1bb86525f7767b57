"""A configured OpenStack cloud and the nodes it manages.

This is the surface the orchestration layer talks to: name resolution,
provisioning, floating IPs, destruction and the retention check.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Concatenate, ParamSpec, TypeVar

from loguru import logger

from fleetkeeper.api.options import DEFAULTS, NodeOptions
from fleetkeeper.core.exceptions import AuthenticationFailure, FleetError, ProvisioningFailed
from fleetkeeper.providers.openstack import boot
from fleetkeeper.providers.openstack.boot import BootSourceKind
from fleetkeeper.providers.openstack.cache import SessionCache
from fleetkeeper.providers.openstack.client import Openstack
from fleetkeeper.providers.openstack.session import Credentials
from fleetkeeper.providers.openstack.types import FloatingIp

from .disposal import dispose
from .node import ManagedNode, NodeRegistry
from .retention import FleetPolicy, RetentionStrategy, RetentionTimer, TemplateMinimumPolicy
from .template import TEMPLATE_KEY, NodeTemplate


@dataclass(frozen=True, slots=True)
class CloudConfig:
    """Immutable description of one cloud.

    Args:
        name: Cloud name, unique within the configuration.
        credentials: Keystone endpoint, identity and secret.
        root_url: URL of the job-execution master. Doubles as the
            ownership fingerprint stamped on every server.
        defaults: Options every template inherits.
        templates: Node templates, by declaration order.
    """

    name: str
    credentials: Credentials
    root_url: str
    defaults: NodeOptions = field(default_factory=NodeOptions)
    templates: tuple[NodeTemplate, ...] = ()


def _rejected_credentials(error: BaseException | None) -> bool:
    while error is not None:
        if isinstance(error, AuthenticationFailure):
            return True
        error = error.__cause__
    return False


P = ParamSpec("P")
R = TypeVar("R")


def _invalidates_session(
    fn: Callable[Concatenate[Cloud, P], R],
) -> Callable[Concatenate[Cloud, P], R]:
    """Drop the cached session when the provider rejects its credentials."""

    @wraps(fn)
    def wrapper(self: Cloud, *args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return fn(self, *args, **kwargs)
        except FleetError as e:
            if _rejected_credentials(e):
                self._log.warning("Credentials rejected, dropping cached session")
                self._cache.invalidate(self.config.credentials)
            raise

    return wrapper


class Cloud:
    """Lifecycle operations for one cloud.

    Every operation obtains its ``Openstack`` view through the session
    cache, so tokens are shared and renewed transparently.
    """

    def __init__(
        self,
        config: CloudConfig,
        cache: SessionCache,
        registry: NodeRegistry | None = None,
        policy: FleetPolicy | None = None,
        *,
        poll_interval: float = 5.0,
    ) -> None:
        self.config = config
        self.registry = registry if registry is not None else NodeRegistry()
        self.retention = RetentionStrategy(policy or TemplateMinimumPolicy(self.registry))
        self._cache = cache
        self._poll_interval = poll_interval
        self._log = logger.bind(component="cloud", cloud=config.name)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def openstack(self) -> Openstack:
        session = self._cache.get(self.config.credentials)
        return Openstack(session, self.config.root_url, poll_interval=self._poll_interval)

    def template(self, name: str) -> NodeTemplate:
        for template in self.config.templates:
            if template.name == name:
                return template
        available = ", ".join(t.name for t in self.config.templates) or "none"
        raise KeyError(f"Template '{name}' not found in {self.name}. Available: {available}")

    def effective_options(self, template: NodeTemplate) -> NodeOptions:
        return DEFAULTS.override(self.config.defaults).override(template.options)

    @_invalidates_session
    def resolve_names(self, kind: BootSourceKind, text: str) -> list[str]:
        """Ids of images or volume snapshots matching ``text``, oldest first."""
        return boot.resolve_ids(boot.boot_source(kind, text), self.openstack)

    @_invalidates_session
    def list_owned_running_nodes(self) -> list[Any]:
        return self.openstack.get_running_nodes()

    @_invalidates_session
    def provision(self, template: NodeTemplate | str, timeout: float | None = None) -> ManagedNode:
        """Provision one node from ``template`` and start tracking it.

        Raises:
            ProvisioningFailed: The template's instance cap is reached, or
                the server could not be booted and prepared.
        """
        if isinstance(template, str):
            template = self.template(template)

        cap = self.effective_options(template).instance_cap
        if cap is not None:
            running = [
                s for s in self.list_owned_running_nodes()
                if (s.metadata or {}).get(TEMPLATE_KEY) == template.name
            ]
            if len(running) >= cap:
                raise ProvisioningFailed(
                    f"Instance cap of {cap} reached for template {template.name}"
                )

        server = template.provision(self, timeout)
        node = ManagedNode(
            name=server.name,
            server_id=server.id,
            template=template.name,
            options=self.effective_options(template),
        )
        self.registry.register(node)
        self._log.info("Tracking node {node} ({id})", node=node.name, id=node.server_id)
        return node

    @_invalidates_session
    def assign_floating_ip(self, node: ManagedNode, pool: str | None = None) -> FloatingIp:
        openstack = self.openstack
        server = openstack.get_server_by_id(node.server_id)
        return openstack.assign_floating_ip(server, pool or node.options.floating_ip_pool)

    @_invalidates_session
    def destroy(self, node: ManagedNode) -> None:
        """Tear the node's server down and stop tracking it."""
        dispose(node, self.openstack, self.registry)

    def check(self, node: ManagedNode) -> bool:
        return self.retention.check(node)

    def task_completed(self, node: ManagedNode) -> None:
        self.retention.task_completed(node)

    def retention_timer(self, interval: float = 60.0) -> RetentionTimer:
        """Timer checking every tracked node; call ``start()`` on it."""
        return RetentionTimer(self.retention, self.registry, interval)
