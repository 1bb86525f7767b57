"""Reliable teardown of condemned nodes.

Server deletion tends to fail a couple of times before it succeeds, so
disposal retries ``destroy_server`` until it goes through or the attempts
run out. Nodes stay registered (and pending delete) until their server is
confirmed gone.
"""

from __future__ import annotations

from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from fleetkeeper.core.exceptions import ActionFailed, FleetError
from fleetkeeper.providers.openstack.client import Openstack

from .node import ManagedNode, NodeRegistry

log = logger.bind(component="disposal")

DEFAULT_ATTEMPTS = 5
DEFAULT_WAIT = wait_exponential(multiplier=1, min=2, max=30)


def dispose(
    node: ManagedNode,
    openstack: Openstack,
    registry: NodeRegistry | None = None,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    wait: wait_base = DEFAULT_WAIT,
) -> None:
    """Destroy the node's server, retrying on provider failures.

    Raises:
        ActionFailed: The server could not be destroyed in ``attempts`` tries.
    """

    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait,
        retry=retry_if_exception_type(ActionFailed),
        reraise=True,
    )
    def _destroy() -> None:
        try:
            server = openstack.get_server_by_id(node.server_id)
        except LookupError:
            return
        openstack.destroy_server(server)

    log.info("Disposing {node} ({id})", node=node.name, id=node.server_id)
    _destroy()
    if registry is not None:
        registry.unregister(node.name)


def dispose_pending(
    registry: NodeRegistry,
    openstack: Openstack,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    wait: wait_base = DEFAULT_WAIT,
) -> list[ManagedNode]:
    """Dispose every pending-delete node. Returns the nodes that remain."""
    failed = []
    for node in registry.pending:
        try:
            dispose(node, openstack, registry, attempts=attempts, wait=wait)
        except FleetError as e:
            log.warning("Failed to dispose {node}: {err}", node=node.name, err=e)
            failed.append(node)
    return failed


def release_free_floating_ips(openstack: Openstack) -> list[str]:
    """Delete floating IPs not bound to any port. Returns the released ids."""
    released = []
    for fip_id in openstack.get_free_fip_ids():
        try:
            openstack.destroy_fip(fip_id)
        except ActionFailed as e:
            log.warning("Failed to release floating IP {id}: {err}", id=fip_id, err=e)
            continue
        log.debug("Released floating IP {id}", id=fip_id)
        released.append(fip_id)
    return released
