from __future__ import annotations

import pytest

from fleetkeeper.api.options import NodeOptions
from fleetkeeper.fleet.cloud import Cloud, CloudConfig
from fleetkeeper.fleet.template import NodeTemplate
from fleetkeeper.providers.openstack.boot import ImageSource
from fleetkeeper.providers.openstack.cache import SessionCache, SessionFactory
from fleetkeeper.providers.openstack.client import Openstack
from fleetkeeper.providers.openstack.session import Credentials, StaticSession

from .fakes import FAR_FUTURE, FINGERPRINT, FakeCloudState, FakeConnection

@pytest.fixture
def state() -> FakeCloudState:
    state = FakeCloudState()
    state.add_network("private")
    state.add_network("public", external=True)
    state.add_image("ubuntu", created_at="2024-01-01T00:00:00Z")
    return state

@pytest.fixture
def conn(state: FakeCloudState) -> FakeConnection:
    return FakeConnection(state)

@pytest.fixture
def openstack(conn: FakeConnection) -> Openstack:
    return Openstack(StaticSession(conn, expires_at=FAR_FUTURE), FINGERPRINT, poll_interval=0.01)

@pytest.fixture
def credentials() -> Credentials:
    return Credentials.of("https://keystone.example.com:5000/v3", "project:user:Default", "secret")

@pytest.fixture
def template() -> NodeTemplate:
    return NodeTemplate(
        name="builder",
        labels="linux docker",
        options=NodeOptions(boot_source=ImageSource("ubuntu")),
    )

@pytest.fixture
def cloud_config(credentials: Credentials, template: NodeTemplate) -> CloudConfig:
    return CloudConfig(
        name="main",
        credentials=credentials,
        root_url=FINGERPRINT,
        defaults=NodeOptions(flavor_id="m1.small", startup_timeout=5.0),
        templates=(template,),
    )

@pytest.fixture
def cloud(cloud_config: CloudConfig, conn: FakeConnection) -> Cloud:
    factory = SessionFactory(lambda _: StaticSession(conn, expires_at=FAR_FUTURE))
    return Cloud(cloud_config, SessionCache(factory), poll_interval=0.01)

