"""OpenStack facade used by every lifecycle operation.

Servers are fingerprinted: each server booted through this class carries
the deployment fingerprint in its metadata, and every server lookup
filters on it. The class pretends no other machines exist in the tenant
and so never manipulates servers it does not own.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, NoReturn

from loguru import logger
from openstack import exceptions
from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from fleetkeeper.core.exceptions import (
    ActionFailed,
    AuthenticationFailure,
    FleetError,
    NoFloatingIpCapability,
    ProvisioningFailed,
)
from fleetkeeper.internal.rethrow import rethrow

from .inventory import (
    FINGERPRINT_KEY,
    ServerStatus,
    describe_fault,
    ids_oldest_first,
    image_date_key,
    index_by_name,
    is_occupied,
    is_owned_by,
    looks_like_id,
    snapshot_date_key,
    sort_by_name,
)
from .session import SessionProvider
from .types import FloatingIp, ServerRequest

log = logger.bind(component="openstack")


def _detail(e: exceptions.SDKException) -> str:
    status = getattr(e, "status_code", None)
    return f"{e} ({status})" if status is not None else str(e)


def _failure(
    message: str,
    e: BaseException,
    kind: type[ActionFailed] = ActionFailed,
) -> FleetError:
    """``kind(message)``, or AuthenticationFailure when the token was rejected."""
    if getattr(e, "status_code", None) == 401:
        return AuthenticationFailure(f"{message} (credentials rejected)")
    return kind(message)


def _action_failed(e: exceptions.SDKException) -> FleetError:
    return _failure(_detail(e), e)


def _is_server_error(e: BaseException) -> bool:
    return isinstance(e, exceptions.HttpException) and (e.status_code or 0) >= 500


_provider_errors = rethrow(exceptions.SDKException, _action_failed)


class _ServerPendingError(Exception):
    """Server still building - poll again."""


class Openstack:
    """Thread-safe, immutable view of one OpenStack tenant.

    Args:
        session: Source of per-call connections.
        fingerprint: Identity of this deployment, stamped on every server
            it boots and required on every server it touches.
        poll_interval: Seconds between status polls while booting.
    """

    def __init__(
        self,
        session: SessionProvider,
        fingerprint: str,
        *,
        poll_interval: float = 5.0,
    ) -> None:
        self._session = session
        self._fingerprint = fingerprint
        self._poll_interval = poll_interval

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def expires_at(self) -> datetime:
        """Moment until which this instance may be used."""
        return self._session.expires_at

    def _conn(self) -> Any:
        return self._session.current()

    # =========================================================================
    # Inventory
    # =========================================================================

    @_provider_errors
    def get_sorted_networks(self) -> list[Any]:
        return sort_by_name(self._conn().network.networks())

    @_provider_errors
    def get_images(self) -> dict[str, list[Any]]:
        """All images indexed by name (or id), each group oldest first."""
        return index_by_name(self._conn().image.images(), image_date_key)

    @_provider_errors
    def get_volume_snapshots(self) -> dict[str, list[Any]]:
        """Available volume snapshots indexed by name (or id), oldest first."""
        snapshots = [
            s for s in self._conn().block_storage.snapshots(details=True)
            if (s.status or "").lower() == "available"
        ]
        return index_by_name(snapshots, snapshot_date_key)

    @_provider_errors
    def get_sorted_flavors(self) -> list[Any]:
        return sort_by_name(self._conn().compute.flavors(details=True))

    @_provider_errors
    def get_sorted_ip_pools(self) -> list[str]:
        """Names of external networks floating IPs can be allocated from."""
        try:
            networks = self._external_networks(self._conn())
        except exceptions.ForbiddenException:
            return []
        return [net.name for net in networks]

    @_provider_errors
    def get_availability_zones(self) -> list[Any]:
        return sorted(self._conn().compute.availability_zones(), key=lambda z: z.name or "")

    @_provider_errors
    def get_sorted_key_pair_names(self) -> list[str]:
        return sorted(kp.name for kp in self._conn().compute.keypairs())

    @_provider_errors
    def get_running_nodes(self) -> list[Any]:
        """Our servers that are still occupied."""
        return [
            server for server in self._conn().compute.servers(details=True)
            if is_occupied(server) and is_owned_by(server, self._fingerprint)
        ]

    @_provider_errors
    def get_floating_ips(self) -> list[FloatingIp]:
        return self._list_floating_ips(self._conn())

    @_provider_errors
    def get_free_fip_ids(self) -> list[str]:
        """Ids of floating IPs not bound to any port."""
        return [ip.id for ip in self._conn().network.ips() if ip.fixed_ip_address is None]

    @_provider_errors
    def get_image_ids_for(self, name_or_id: str) -> list[str]:
        """Ids of active images with the given name or id, oldest first."""
        conn = self._conn()
        found = list(conn.image.images(name=name_or_id, status="active"))
        if looks_like_id(name_or_id):
            try:
                image = conn.image.get_image(name_or_id)
            except exceptions.NotFoundException:
                image = None
            if image is not None and (image.status or "").lower() == "active":
                found.append(image)
        return ids_oldest_first(found, image_date_key)

    @_provider_errors
    def get_volume_snapshot_ids_for(self, name_or_id: str) -> list[str]:
        """Ids of available volume snapshots with the given name or id, oldest first."""
        # The block-storage API cannot filter by name, so fetch all and search.
        folded = name_or_id.casefold()
        found = [
            snapshot
            for name, snapshots in self.get_volume_snapshots().items()
            if name.casefold() == folded
            for snapshot in snapshots
        ]
        if looks_like_id(name_or_id):
            try:
                snapshot = self._conn().block_storage.get_snapshot(name_or_id)
            except exceptions.NotFoundException:
                snapshot = None
            if snapshot is not None and (snapshot.status or "").lower() == "available":
                found.append(snapshot)
        return ids_oldest_first(found, snapshot_date_key)

    @_provider_errors
    def set_volume_name_and_description(self, volume_id: str, name: str, description: str) -> None:
        """Label a volume so humans can recognize it in the dashboard."""
        self._conn().block_storage.update_volume(volume_id, name=name, description=description)

    def get_server_by_id(self, server_id: str) -> Any:
        try:
            return self._conn().compute.get_server(server_id)
        except exceptions.NotFoundException as e:
            raise LookupError(f"No such server running: {server_id}") from e
        except exceptions.SDKException as e:
            raise _action_failed(e) from e

    @_provider_errors
    def get_servers_by_name(self, name: str) -> list[Any]:
        return [
            server for server in self._conn().compute.servers(details=True, name=name)
            if server.name == name and is_owned_by(server, self._fingerprint)
        ]

    def update_info(self, server: Any) -> Any:
        """Fetch updated info about the server."""
        return self.get_server_by_id(server.id)

    # =========================================================================
    # Provisioning
    # =========================================================================

    def boot_and_wait_active(self, request: ServerRequest, timeout: float) -> Any:
        """Boot a server and wait until it is active.

        Raises:
            ProvisioningFailed: The server did not become active in time,
                ended in an erroneous state, or could no longer be polled.
                The server is destroyed in that case, when it can be
                identified.
            ActionFailed: The provider refused the boot request.
            AuthenticationFailure: The provider rejected the session token.
        """
        log.debug("Booting machine {name}", name=request.name)
        request.add_metadata_item(FINGERPRINT_KEY, self._fingerprint)
        try:
            conn = self._conn()
            created = conn.compute.create_server(**request.to_attrs())
        except exceptions.SDKException as e:
            raise _failure(f"Failed to boot {request.name}: {_detail(e)}", e) from e

        try:
            server = self._wait_for_active(conn, created.id, timeout)
        except exceptions.SDKException as e:
            err = _failure(
                f"Lost track of {request.name} ({created.id}) while booting: {_detail(e)}",
                e,
                ProvisioningFailed,
            )
            self._destroy_after_failure(created, err)
            raise err from e

        if server is None:
            self._fail_timed_out(request.name, timeout)

        log.debug("Machine started: {name}", name=server.name)
        self._throw_if_failed(server)
        return server

    def _wait_for_active(self, conn: Any, server_id: str, timeout: float) -> Any | None:
        """Poll until the server leaves BUILD. None when the deadline passes first.

        Provider 5xx responses are polled through like a pending server; a
        persistent one is raised once the deadline passes.
        """

        @retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self._poll_interval),
            retry=(
                retry_if_exception_type((_ServerPendingError, exceptions.NotFoundException))
                | retry_if_exception(_is_server_error)
            ),
            reraise=True,
        )
        def _poll() -> Any:
            server = conn.compute.get_server(server_id)
            if ServerStatus.parse(server.status) is ServerStatus.BUILD:
                raise _ServerPendingError()
            return server

        try:
            return _poll()
        except (_ServerPendingError, exceptions.NotFoundException):
            return None

    def _fail_timed_out(self, name: str, timeout: float) -> NoReturn:
        servers = self.get_servers_by_name(name)
        err = ProvisioningFailed(
            f"Failed to provision the server in time ({timeout}s): "
            f"{[(s.id, s.status) for s in servers]}",
            status=ServerStatus.BUILD,
        )
        try:
            # Without the id there is no telling which one is ours.
            if len(servers) == 1:
                self.destroy_server(servers[0])
                err.add_note(f"Cleanup: destroyed {servers[0].id}")
            elif len(servers) > 1:
                log.warning(
                    "Unable to destroy server {name} as there are {n} of them",
                    name=name,
                    n=len(servers),
                )
                err.add_note(f"Cleanup: left {len(servers)} servers named {name} in place")
        except (FleetError, exceptions.SDKException) as cleanup:
            err.attach_cleanup_error(cleanup)
        raise err

    def _throw_if_failed(self, server: Any) -> None:
        status = ServerStatus.parse(server.status)
        if status is ServerStatus.ACTIVE:
            return

        fault = describe_fault(server)
        when = " in time:" if status is ServerStatus.BUILD else ":"
        err = ProvisioningFailed(
            f"Failed to boot server {server.name}{when} status={server.status} "
            f"vmState={getattr(server, 'vm_state', None)} fault={fault}",
            status=server.status,
            fault=fault,
        )
        self._destroy_after_failure(server, err)
        log.warning("Machine provisioning failed: {name} ({id})", name=server.name, id=server.id)
        raise err

    def _destroy_after_failure(self, server: Any, err: FleetError) -> None:
        """Destroy a server that failed to boot, noting a failed cleanup on ``err``."""
        try:
            self.destroy_server(server)
        except FleetError as cleanup:
            if isinstance(err, ProvisioningFailed):
                err.attach_cleanup_error(cleanup)
            else:
                err.add_note(f"Cleanup failed: {type(cleanup).__name__}: {cleanup}")

    # =========================================================================
    # Floating IPs
    # =========================================================================

    def _external_networks(self, conn: Any) -> list[Any]:
        return sort_by_name(conn.network.networks(is_router_external=True))

    def _list_floating_ips(self, conn: Any) -> list[FloatingIp]:
        devices: dict[str, str | None] = {}
        result = []
        for ip in conn.network.ips():
            instance_id = None
            if ip.port_id:
                if ip.port_id not in devices:
                    try:
                        devices[ip.port_id] = conn.network.get_port(ip.port_id).device_id
                    except exceptions.NotFoundException:
                        devices[ip.port_id] = None
                instance_id = devices[ip.port_id]
            result.append(FloatingIp(id=ip.id, address=ip.floating_ip_address, instance_id=instance_id))
        return result

    def _floating_network(self, conn: Any, pool_name: str | None) -> Any:
        networks = self._external_networks(conn)
        if pool_name:
            networks = [net for net in networks if pool_name in (net.name, net.id)]
        if not networks:
            raise ActionFailed(f"No floating IP pool {pool_name or '(default)'} available")
        return networks[0]

    def assign_floating_ip(self, server: Any, pool_name: str | None = None) -> FloatingIp:
        """Allocate a floating IP and bind it to the server.

        The server object becomes outdated on success: it does not contain
        the new address until fetched again.

        Args:
            server: Server to assign the address to.
            pool_name: External network to allocate from; the first one
                (by name) when None.

        Raises:
            NoFloatingIpCapability: The account may not manage floating IPs.
            ActionFailed: Allocation or binding failed. A bound failure
                releases the allocated address before raising.
        """
        log.debug("Allocating floating IP for {name}", name=server.name)
        conn = self._conn()
        try:
            network = self._floating_network(conn, pool_name)
            ip = conn.network.create_ip(floating_network_id=network.id)
        except exceptions.ForbiddenException as e:
            raise NoFloatingIpCapability(f"Not permitted to allocate floating IPs: {e}") from e
        except exceptions.SDKException as e:
            raise _failure(f"{_detail(e)} Allocating for {server.name}", e) from e
        log.debug("Floating IP allocated {address}", address=ip.floating_ip_address)

        try:
            log.debug("Assigning floating IP to {name}", name=server.name)
            self._bind(conn, ip, server)
            log.debug("Floating IP assigned")
        except Exception as e:
            err = e if isinstance(e, FleetError) else _failure(
                f"Unable to assign floating IP for {server.name}: {e}", e
            )
            released = self._release(conn, ip)
            if released is not None:
                err.add_note(
                    f"Cleanup failed: releasing {ip.floating_ip_address}: {_detail(released)}"
                )
            if err is e:
                raise
            raise err from e

        return FloatingIp(id=ip.id, address=ip.floating_ip_address, instance_id=server.id)

    def _bind(self, conn: Any, ip: Any, server: Any) -> None:
        ports = list(conn.network.ports(device_id=server.id))
        if not ports:
            raise ActionFailed(f"Server {server.name} has no port to bind {ip.floating_ip_address} to")
        conn.network.update_ip(ip, port_id=ports[0].id)

    def _release(self, conn: Any, ip: Any) -> exceptions.SDKException | None:
        """Give back an allocated address. Returns the failure instead of raising."""
        try:
            conn.network.delete_ip(ip, ignore_missing=True)
        except exceptions.SDKException as e:
            log.warning(
                "Failed to release floating IP {address} after failed binding: {err}",
                address=ip.floating_ip_address,
                err=_detail(e),
            )
            return e
        return None

    def destroy_fip(self, fip_id: str) -> None:
        """Delete a floating IP. Already deleted counts as success."""
        try:
            self._conn().network.delete_ip(fip_id, ignore_missing=False)
        except exceptions.NotFoundException:
            return
        except exceptions.SDKException as e:
            raise _failure(f"Floating IP {fip_id} deletion failed: {_detail(e)}", e) from e

    # =========================================================================
    # Destroy
    # =========================================================================

    def destroy_server(self, server: Any) -> None:
        """Release the server's floating IPs and delete it.

        Idempotent: a server that is already gone counts as destroyed. Any
        other failure raises; deletion tends to fail a couple of times
        before it succeeds, see fleetkeeper.fleet.disposal for retries.
        """
        node_id = server.id
        conn = self._conn()

        try:
            bound = [
                ip
                for port in conn.network.ports(device_id=node_id)
                for ip in conn.network.ips(port_id=port.id)
            ]
        except exceptions.ForbiddenException:
            bound = []
        except exceptions.SDKException as e:
            raise _failure(f"Unable to list floating IPs of {node_id}: {_detail(e)}", e) from e

        for ip in bound:
            try:
                conn.network.delete_ip(ip.id, ignore_missing=False)
            except exceptions.NotFoundException:
                pass
            except exceptions.SDKException as e:
                raise _failure(
                    f"Floating IP deallocation failed for {ip.floating_ip_address}: {_detail(e)}", e
                ) from e
            log.debug("Deallocated Floating IP {address}", address=ip.floating_ip_address)

        try:
            current = conn.compute.get_server(node_id)
        except exceptions.NotFoundException:
            current = None
        except exceptions.SDKException as e:
            raise _failure(f"Unable to fetch server {node_id}: {_detail(e)}", e) from e

        if current is None or ServerStatus.parse(current.status) is ServerStatus.DELETED:
            log.debug("Machine destroyed: {id}", id=node_id)
            return

        try:
            conn.compute.delete_server(node_id, ignore_missing=False)
        except exceptions.NotFoundException:
            pass
        except exceptions.SDKException as e:
            raise _failure(f"Failed to delete server {node_id}: {_detail(e)}", e) from e
        log.debug("Machine destroyed: {id}", id=node_id)

    def sanity_check(self) -> Exception | None:
        """Talk to every endpoint the lifecycle relies on.

        Returns the failure instead of raising, so callers can report it.
        """
        try:
            conn = self._conn()
            next(iter(conn.network.networks(limit=1)), None)
            next(iter(conn.image.images(limit=1)), None)
            next(iter(conn.compute.flavors(details=False)), None)
        except Exception as e:
            return e
        return None
