from __future__ import annotations

import pytest

from fleetkeeper.api.options import NodeOptions
from fleetkeeper.core.exceptions import ActionFailed, AuthenticationFailure, ProvisioningFailed
from fleetkeeper.fleet.cloud import Cloud
from fleetkeeper.fleet.template import TEMPLATE_KEY, NodeTemplate
from fleetkeeper.providers.openstack.boot import ImageSource
from fleetkeeper.providers.openstack.cache import SessionCache, SessionFactory
from fleetkeeper.providers.openstack.inventory import FINGERPRINT_KEY
from fleetkeeper.providers.openstack.session import StaticSession

from .fakes import FAR_FUTURE, FINGERPRINT, server_error, unauthorized

pytestmark = [pytest.mark.timeout(30)]


class TestCloud:
    def test_provision_tracks_node(self, cloud, state):
        node = cloud.provision("builder")

        assert cloud.registry.get(node.name) is node
        assert node.server_id in state.servers
        assert node.template == "builder"
        assert node.options.flavor_id == "m1.small"
        assert node.connecting

    def test_unknown_template(self, cloud):
        with pytest.raises(KeyError, match="Template 'gpu' not found"):
            cloud.provision("gpu")

    def test_instance_cap(self, cloud, state):
        capped = NodeTemplate("capped", options=NodeOptions(boot_source=ImageSource("ubuntu"), instance_cap=1))
        cloud.provision(capped)

        with pytest.raises(ProvisioningFailed, match="Instance cap of 1 reached"):
            cloud.provision(capped)
        assert len(state.servers) == 1

    def test_instance_cap_ignores_foreign_servers(self, cloud, state):
        state.add_server("x", metadata={FINGERPRINT_KEY: "https://other/", TEMPLATE_KEY: "capped"})
        capped = NodeTemplate("capped", options=NodeOptions(boot_source=ImageSource("ubuntu"), instance_cap=1))

        cloud.provision(capped)

    def test_list_owned_running_nodes(self, cloud, state):
        node = cloud.provision("builder")
        state.add_server("foreign", metadata={FINGERPRINT_KEY: "https://other/"})

        assert [s.id for s in cloud.list_owned_running_nodes()] == [node.server_id]

    def test_resolve_names(self, cloud, state):
        assert cloud.resolve_names("image", "ubuntu") == [state.images[0].id]
        assert cloud.resolve_names("volume_snapshot", "ubuntu") == []

    def test_assign_floating_ip(self, cloud, state):
        node = cloud.provision("builder")
        fip = cloud.assign_floating_ip(node, "public")
        assert fip.instance_id == node.server_id

    def test_destroy(self, cloud, state):
        node = cloud.provision("builder")

        cloud.destroy(node)
        cloud.destroy(node)

        assert state.servers == {}
        assert len(cloud.registry) == 0

    def test_zero_retention_node_condemned_after_task(self, cloud):
        single_use = NodeTemplate("once", options=NodeOptions(boot_source=ImageSource("ubuntu"), retention_time=0))
        node = cloud.provision(single_use)
        node.connected()

        node.task_accepted()
        cloud.task_completed(node)

        assert node.pending_delete

    def test_check_delegates_to_retention(self, cloud):
        node = cloud.provision("builder")
        assert cloud.check(node)
        assert not node.pending_delete

    def test_sessions_are_cached(self, cloud_config, conn):
        created = []

        def factory(credentials):
            created.append(credentials)
            return StaticSession(conn, expires_at=FAR_FUTURE)

        cloud = Cloud(cloud_config, SessionCache(SessionFactory(factory)), poll_interval=0.01)
        cloud.list_owned_running_nodes()
        cloud.resolve_names("image", "ubuntu")

        assert len(created) == 1
        assert cloud.openstack.fingerprint == FINGERPRINT


class TestRejectedCredentials:
    @pytest.fixture
    def created(self):
        return []

    @pytest.fixture
    def counted(self, cloud_config, conn, created):
        def factory(credentials):
            created.append(credentials)
            return StaticSession(conn, expires_at=FAR_FUTURE)

        return Cloud(cloud_config, SessionCache(SessionFactory(factory)), poll_interval=0.01)

    def test_rejected_token_drops_cached_session(self, counted, state, created):
        counted.list_owned_running_nodes()
        state.fail("servers", unauthorized())

        with pytest.raises(AuthenticationFailure):
            counted.list_owned_running_nodes()
        counted.list_owned_running_nodes()

        assert len(created) == 2

    def test_rejection_during_destroy(self, counted, state, created):
        node = counted.provision("builder")
        state.fail("delete_server", unauthorized())

        with pytest.raises(AuthenticationFailure):
            counted.destroy(node)
        counted.destroy(node)

        assert len(created) == 2
        assert state.servers == {}

    def test_other_failures_keep_session(self, counted, state, created):
        counted.list_owned_running_nodes()
        state.fail("servers", server_error("boom"))

        with pytest.raises(ActionFailed, match="boom"):
            counted.list_owned_running_nodes()
        counted.list_owned_running_nodes()

        assert len(created) == 1
