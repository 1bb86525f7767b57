"""DI modules for fleetkeeper.

FleetModule provides the process-wide pieces every cloud shares:
- SessionFactory (singleton)
- SessionCache (singleton)

CloudModule binds one CloudConfig and provides the Cloud built on it.
"""

from __future__ import annotations

from datetime import timedelta

from injector import Binder, Module, provider, singleton

from .fleet.cloud import Cloud, CloudConfig
from .fleet.node import NodeRegistry
from .providers.openstack.cache import DEFAULT_TTL, SessionCache, SessionFactory


class FleetModule(Module):
    """Core module providing shared dependencies.

    Usage:
        injector = Injector([FleetModule(), CloudModule(config)])
        cloud = injector.get(Cloud)
    """

    def __init__(self, ttl: timedelta = DEFAULT_TTL) -> None:
        self._ttl = ttl

    @singleton
    @provider
    def provide_session_factory(self) -> SessionFactory:
        return SessionFactory()

    @singleton
    @provider
    def provide_session_cache(self, factory: SessionFactory) -> SessionCache:
        return SessionCache(factory, ttl=self._ttl)


class CloudModule(Module):
    """Module binding a single cloud's configuration."""

    def __init__(self, config: CloudConfig, poll_interval: float = 5.0) -> None:
        self._config = config
        self._poll_interval = poll_interval

    def configure(self, binder: Binder) -> None:
        binder.bind(CloudConfig, to=self._config)
        binder.bind(NodeRegistry, to=NodeRegistry(), scope=singleton)

    @singleton
    @provider
    def provide_cloud(self, config: CloudConfig, cache: SessionCache, registry: NodeRegistry) -> Cloud:
        return Cloud(config, cache, registry, poll_interval=self._poll_interval)


__all__ = [
    "CloudModule",
    "FleetModule",
]
