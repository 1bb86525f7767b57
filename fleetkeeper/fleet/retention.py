"""Retention decision engine.

Decides when an idle node should stop taking work and be torn down. A
check runs on a periodic timer for every managed node, and right after a
node with zero retention finishes a task.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Protocol

from loguru import logger

from fleetkeeper.providers.openstack.cache import Clock, utcnow

from .node import ManagedNode, NodeRegistry

log = logger.bind(component="retention")


class FleetPolicy(Protocol):
    """Answers whether the fleet still needs a node it could release."""

    def should_retain(self, node: ManagedNode) -> bool: ...


class ConfigSink(Protocol):
    """Records a node's configuration right before it is condemned."""

    def record(self, node: ManagedNode) -> None: ...


class TemplateMinimumPolicy:
    """Keeps nodes while their template has no more than ``instances_min`` alive."""

    def __init__(self, registry: NodeRegistry) -> None:
        self._registry = registry

    def should_retain(self, node: ManagedNode) -> bool:
        minimum = node.options.instances_min or 0
        if minimum <= 0:
            return False
        alive = [n for n in self._registry.for_template(node.template) if not n.pending_delete]
        return len(alive) <= minimum


class LogConfigSink:
    def record(self, node: ManagedNode) -> None:
        log.debug("Node configuration {node!r}", node=node)


class RetentionStrategy:
    """Per-node retention check guarded by a single try-lock.

    At most one check runs at a time. A check that finds the lock taken is
    dropped, not queued; the next timer tick evaluates the node again.

    Args:
        policy: Minimum-capacity policy consulted before condemning a node.
        sink: Audit sink written just before a node is condemned. Failures
            are logged and ignored.
        clock: Source of the current time.
        disabled: Turn every check into a no-op.
    """

    def __init__(
        self,
        policy: FleetPolicy,
        sink: ConfigSink | None = None,
        clock: Clock = utcnow,
        *,
        disabled: bool = False,
    ) -> None:
        self._policy = policy
        self._sink = sink or LogConfigSink()
        self._clock = clock
        self._lock = threading.Lock()
        self.disabled = disabled

    def check(self, node: ManagedNode) -> bool:
        """Evaluate ``node``. Returns False when the check was skipped."""
        if self.disabled:
            log.debug("Skipping check - disabled")
            return False

        if not self._lock.acquire(blocking=False):
            log.info("Failed to acquire retention lock - skipping {node}", node=node.name)
            return False
        try:
            self._do_check(node)
        finally:
            self._lock.release()
        return True

    def _do_check(self, node: ManagedNode) -> None:
        if node.pending_delete:
            return
        # Idle time means nothing before the first connection.
        if node.connecting:
            return

        retention = node.retention_time
        if retention < 0:
            return
        if retention != 0 and not node.idle:
            return
        if node.offline_by_user:
            return

        idle_for = self._clock() - node.idle_since
        if retention != 0 and idle_for <= timedelta(minutes=retention):
            return

        try:
            retain = self._policy.should_retain(node)
        except Exception as e:
            log.error("Minimum capacity check failed for {node}: {err}", node=node.name, err=e)
            raise
        if retain:
            log.info("Keeping {node} to meet minimum requirements", node=node.name)
            return

        log.info(
            "Scheduling {node} for termination as it was idle since {since}",
            node=node.name,
            since=node.idle_since,
        )
        try:
            self._sink.record(node)
        except Exception as e:
            log.warning("Failed to dump node config of {node}: {err}", node=node.name, err=e)
        node.mark_pending_delete()

    def task_accepted(self, node: ManagedNode) -> None:
        node.task_accepted()

    def task_completed(self, node: ManagedNode, now: datetime | None = None) -> None:
        """Record the finished task; a zero-retention node is condemned at once."""
        node.task_completed(now or self._clock())
        if node.retention_time == 0:
            self.check(node)


class RetentionTimer:
    """Runs the retention check for every registered node on an interval."""

    def __init__(
        self,
        strategy: RetentionStrategy,
        registry: NodeRegistry,
        interval: float = 60.0,
    ) -> None:
        self.strategy = strategy
        self.registry = registry
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start checking in a background thread."""
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._check_loop, daemon=True, name="retention")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.interval + 1)

    def tick(self) -> None:
        """Check every node once."""
        for node in self.registry.nodes:
            try:
                self.strategy.check(node)
            except Exception:
                log.exception("Retention check failed for {node}", node=node.name)

    def _check_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.tick()
