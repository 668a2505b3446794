"""
Liveness Tracker - heartbeat bookkeeping and stale-node sweeps

Nodes move Unknown -> Active on registration or heartbeat, and Active -> Stale
when a periodic sweep finds ``now - last_seen > heartbeat_timeout``. Stale is
not terminal for the node row: the next heartbeat makes it Active again
without re-registration.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from ..shared.exceptions import UnknownNodeError
from .models import NodeHealth, utcnow
from .registry import RegistryStore

logger = logging.getLogger(__name__)

StaleListener = Callable[[str], None]


class LivenessTracker:
    """Tracks last-seen timestamps and flags nodes that stopped heartbeating."""

    def __init__(
        self,
        store: RegistryStore,
        heartbeat_timeout: float = 3600.0,
        sweep_interval: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.heartbeat_timeout = heartbeat_timeout
        self.sweep_interval = sweep_interval
        self._clock = clock or utcnow
        self._stale_listeners: list[StaleListener] = []
        self._sweep_task: asyncio.Task | None = None
        self._sweeping = False

    def add_stale_listener(self, listener: StaleListener) -> None:
        """Call ``listener(node_id)`` whenever a node turns stale."""
        self._stale_listeners.append(listener)

    def heartbeat(self, node_id: str, timestamp: datetime | None = None) -> None:
        """Record a heartbeat from ``node_id``.

        ``last_seen`` only ever moves forward; a heartbeat stamped earlier than
        the stored value still reactivates the node but keeps the later time.
        """
        node = self.store.get_node(node_id)
        if node is None:
            raise UnknownNodeError(f"Unknown node: {node_id}")

        incoming = timestamp or self._clock()
        last_seen = max(node.last_seen, incoming)
        if not node.alive:
            logger.info(f"Node {node_id} is active again")
        self.store.update_liveness(node_id, True, last_seen)
        logger.trace(f"Heartbeat from {node_id}")

    def is_active(self, node_id: str) -> bool:
        return self.store.is_alive(node_id)

    def sweep(self) -> list[str]:
        """Mark nodes whose heartbeat expired as stale.

        Returns the ids that turned stale during this sweep. A sweep requested
        while another is still running returns an empty list.
        """
        if self._sweeping:
            logger.debug("Sweep already in progress, skipping")
            return []

        self._sweeping = True
        try:
            now = self._clock()
            newly_stale = []
            for node in self.store.list_nodes():
                elapsed = (now - node.last_seen).total_seconds()
                if elapsed > self.heartbeat_timeout:
                    self.store.update_liveness(node.id, False)
                    newly_stale.append(node.id)
                    logger.warning(
                        f"Node {node.id} is stale - no heartbeat for {elapsed:.1f}s"
                    )

            for node_id in newly_stale:
                for listener in self._stale_listeners:
                    try:
                        listener(node_id)
                    except Exception as e:
                        logger.error(f"Stale listener failed for {node_id}: {e}")
            return newly_stale
        finally:
            self._sweeping = False

    def health(self, node_id: str) -> NodeHealth:
        """Get the liveness view of a single node."""
        node = self.store.get_node(node_id)
        if node is None:
            raise UnknownNodeError(f"Unknown node: {node_id}")

        elapsed = (self._clock() - node.last_seen).total_seconds()
        if node.alive:
            message = f"Node active - last heartbeat {elapsed:.1f}s ago"
        else:
            message = f"Node stale - no heartbeat for {elapsed:.1f}s"

        return NodeHealth(
            node_id=node_id,
            alive=node.alive,
            last_seen=node.last_seen,
            seconds_since_heartbeat=elapsed,
            heartbeat_timeout=self.heartbeat_timeout,
            message=message,
        )

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                stale = self.sweep()
                if stale:
                    logger.info(f"Liveness sweep: marked {len(stale)} node(s) stale")
            except Exception as e:
                logger.error(f"Error in liveness sweep: {e}")
