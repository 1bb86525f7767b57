"""Fleet lifecycle: templates, tracked nodes, retention and disposal."""

from .cloud import Cloud, CloudConfig
from .disposal import dispose, dispose_pending, release_free_floating_ips
from .node import ManagedNode, NodeRegistry
from .retention import (
    ConfigSink,
    FleetPolicy,
    LogConfigSink,
    RetentionStrategy,
    RetentionTimer,
    TemplateMinimumPolicy,
)
from .template import NodeTemplate, render_user_data

__all__ = [
    "Cloud",
    "CloudConfig",
    "ConfigSink",
    "FleetPolicy",
    "LogConfigSink",
    "ManagedNode",
    "NodeRegistry",
    "NodeTemplate",
    "RetentionStrategy",
    "RetentionTimer",
    "TemplateMinimumPolicy",
    "dispose",
    "dispose_pending",
    "release_free_floating_ips",
    "render_user_data",
]
