"""Locally tracked node records."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime

from fleetkeeper.api.options import DEFAULTS, NodeOptions
from fleetkeeper.providers.openstack.cache import utcnow


@dataclass(eq=False)
class ManagedNode:
    """A provisioned server as the job-execution layer sees it.

    ``pending_delete`` is terminal: once marked, the node is never
    scheduled again and never re-evaluated by the retention check.
    """

    name: str
    server_id: str
    template: str
    options: NodeOptions
    connecting: bool = True
    idle: bool = True
    idle_since: datetime = field(default_factory=utcnow)
    offline_by_user: bool = False
    _pending_delete: bool = field(default=False, init=False, repr=False)

    @property
    def pending_delete(self) -> bool:
        return self._pending_delete

    def mark_pending_delete(self) -> None:
        self._pending_delete = True

    @property
    def retention_time(self) -> int:
        if self.options.retention_time is None:
            return DEFAULTS.retention_time or 0
        return self.options.retention_time

    def connected(self, now: datetime | None = None) -> None:
        self.connecting = False
        self.idle = True
        self.idle_since = now or utcnow()

    def task_accepted(self) -> None:
        self.idle = False

    def task_completed(self, now: datetime | None = None) -> None:
        self.idle = True
        self.idle_since = now or utcnow()


@dataclass
class NodeRegistry:
    """Tracks the nodes a cloud manages.

    Shared between the provisioning side and the retention timer thread.
    """

    _nodes: dict[str, ManagedNode] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register(self, node: ManagedNode) -> None:
        with self._lock:
            self._nodes[node.name] = node

    def unregister(self, name: str) -> None:
        with self._lock:
            self._nodes.pop(name, None)

    def get(self, name: str) -> ManagedNode | None:
        with self._lock:
            return self._nodes.get(name)

    @property
    def nodes(self) -> list[ManagedNode]:
        """Snapshot of every tracked node."""
        with self._lock:
            return list(self._nodes.values())

    @property
    def pending(self) -> list[ManagedNode]:
        return [n for n in self.nodes if n.pending_delete]

    def for_template(self, template: str) -> list[ManagedNode]:
        return [n for n in self.nodes if n.template == template]

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)
