"""Fleetkeeper - elastic worker nodes on OpenStack.

Example:

    from fleetkeeper import Cloud, CloudModule, FleetModule, resolve_cloud
    from injector import Injector

    config = resolve_cloud("main")
    cloud = Injector([FleetModule(), CloudModule(config)]).get(Cloud)

    node = cloud.provision("builder")
    ...
    cloud.destroy(node)
"""

from loguru import logger

from fleetkeeper.api.options import DEFAULTS, NodeOptions
from fleetkeeper.config import load_config, resolve_cloud
from fleetkeeper.core.exceptions import (
    ActionFailed,
    AuthenticationFailure,
    ConfigurationError,
    FleetError,
    InvalidCredentials,
    NoFloatingIpCapability,
    ProvisioningFailed,
)
from fleetkeeper.fleet import (
    Cloud,
    CloudConfig,
    ManagedNode,
    NodeRegistry,
    NodeTemplate,
    RetentionStrategy,
    RetentionTimer,
)
from fleetkeeper.module import CloudModule, FleetModule
from fleetkeeper.observability.logging import LogConfig, setup_logging, teardown_logging
from fleetkeeper.providers.openstack import (
    Credentials,
    Openstack,
    SessionCache,
    SessionFactory,
    SessionProvider,
    StaticSession,
)

# Library code stays quiet until the host application calls setup_logging.
logger.disable("fleetkeeper")

__all__ = [
    "DEFAULTS",
    "ActionFailed",
    "AuthenticationFailure",
    "Cloud",
    "CloudConfig",
    "CloudModule",
    "ConfigurationError",
    "Credentials",
    "FleetError",
    "FleetModule",
    "InvalidCredentials",
    "LogConfig",
    "ManagedNode",
    "NoFloatingIpCapability",
    "NodeOptions",
    "NodeRegistry",
    "NodeTemplate",
    "Openstack",
    "ProvisioningFailed",
    "RetentionStrategy",
    "RetentionTimer",
    "SessionCache",
    "SessionFactory",
    "SessionProvider",
    "StaticSession",
    "load_config",
    "resolve_cloud",
    "setup_logging",
    "teardown_logging",
]
