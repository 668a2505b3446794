"""
Registry Store - authoritative record of mesh membership and capabilities

Holds every node that ever registered plus the tools, resources and prompts
they offer. Nodes are never removed: a node that stops heartbeating is only
flagged as not alive, which hides its descriptors from discovery until it
heartbeats again.

All methods are synchronous and never await, so under asyncio each call runs
to completion without interleaving. That gives the single-writer guarantee
without a lock.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..shared.exceptions import (
    RegistrationError,
    UnknownNodeError,
    UnknownTargetError,
)
from .models import (
    Node,
    NodeCapabilities,
    NodeKind,
    PromptArgument,
    PromptDescriptor,
    RegistrySnapshot,
    ResourceDescriptor,
    ToolDescriptor,
    qualify,
    utcnow,
)

logger = logging.getLogger(__name__)

Descriptor = ToolDescriptor | ResourceDescriptor | PromptDescriptor


class RegistryStore:
    """In-memory registry with a change counter and watch queues."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._nodes: dict[str, Node] = {}
        self._tools: dict[str, ToolDescriptor] = {}
        self._resources: dict[str, ResourceDescriptor] = {}
        self._prompts: dict[str, PromptDescriptor] = {}
        self._watchers: list[asyncio.Queue] = []
        self._version = 0
        self._clock = clock or utcnow

    @property
    def version(self) -> int:
        """Counter bumped on every change that should be persisted."""
        return self._version

    # Nodes

    def register_node(
        self,
        node_id: str,
        kind: str | NodeKind = NodeKind.CLIENT,
        capabilities: NodeCapabilities | dict[str, bool] | None = None,
    ) -> Node:
        """Register or update a node.

        Re-registration overwrites metadata and reactivates the node but keeps
        every descriptor it registered before.
        """
        if isinstance(capabilities, dict):
            capabilities = NodeCapabilities(**capabilities)
        now = self._clock()
        existing = self._nodes.get(node_id)

        if existing:
            node = existing.model_copy(
                update={
                    "kind": NodeKind.parse(kind),
                    "capabilities": capabilities or existing.capabilities,
                    "connected_at": now,
                    "last_seen": max(existing.last_seen, now),
                    "alive": True,
                }
            )
        else:
            node = Node(
                id=node_id,
                kind=kind,
                capabilities=capabilities or NodeCapabilities(),
                connected_at=now,
                last_seen=now,
                alive=True,
            )

        self._nodes[node_id] = node
        self._changed()
        self._notify_watchers("MODIFIED" if existing else "ADDED", "node", node)
        logger.info(
            f"Node {'re-registered' if existing else 'registered'}: "
            f"{node_id} ({node.kind.value})"
        )
        return node

    def get_node(self, node_id: str) -> Node | None:
        """Get node by id."""
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def is_alive(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        return bool(node and node.alive)

    def list_nodes(self, include_stale: bool = False) -> list[Node]:
        """List nodes in registration order."""
        return [
            node for node in self._nodes.values() if include_stale or node.alive
        ]

    def update_liveness(
        self, node_id: str, alive: bool, last_seen: datetime | None = None
    ) -> Node:
        """Set a node's liveness flag and optionally its last-seen time.

        Liveness is not persisted, so this does not bump ``version``.
        """
        node = self._require_node(node_id)
        was_alive = node.alive
        node.alive = alive
        if last_seen is not None:
            node.last_seen = last_seen
        if was_alive != alive:
            self._notify_watchers("MODIFIED" if alive else "STALE", "node", node)
        return node

    # Descriptors

    def register_tool(
        self,
        owner_node_id: str,
        name: str,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> ToolDescriptor:
        """Register a tool under ``<owner>.<name>``.

        The owner must be known; it does not need to be alive, so a node that
        re-registers right after reconnecting never races its own staleness.
        """
        self._require_node(owner_node_id)
        tool = ToolDescriptor(
            id=qualify(owner_node_id, name),
            node_id=owner_node_id,
            name=name,
            description=description or "",
            input_schema=input_schema,
        )
        existing = self._claim(self._tools, tool.id, owner_node_id, "tool")
        self._tools[tool.id] = tool
        self._changed()
        self._notify_watchers("MODIFIED" if existing else "ADDED", "tool", tool)
        logger.info(f"Tool registered: {tool.id}")
        return tool

    def register_resource(
        self,
        owner_node_id: str,
        uri: str,
        name: str,
        description: str | None = None,
        mime_type: str | None = None,
    ) -> ResourceDescriptor:
        """Register a resource keyed by its URI.

        A URI already owned by another node is rejected.
        """
        self._require_node(owner_node_id)
        resource = ResourceDescriptor(
            uri=uri,
            node_id=owner_node_id,
            name=name,
            description=description or "",
            mime_type=mime_type or "text/plain",
        )
        existing = self._claim(self._resources, uri, owner_node_id, "resource")
        self._resources[uri] = resource
        self._changed()
        self._notify_watchers(
            "MODIFIED" if existing else "ADDED", "resource", resource
        )
        logger.info(f"Resource registered: {uri} ({owner_node_id})")
        return resource

    def register_prompt(
        self,
        owner_node_id: str,
        prompt_id: str,
        name: str,
        description: str | None = None,
        arguments: list[PromptArgument | dict[str, Any]] | None = None,
    ) -> PromptDescriptor:
        """Register a prompt under ``<owner>.<prompt_id>``."""
        self._require_node(owner_node_id)
        prompt = PromptDescriptor(
            id=qualify(owner_node_id, prompt_id),
            node_id=owner_node_id,
            prompt_id=prompt_id,
            name=name,
            description=description or "",
            arguments=[
                arg if isinstance(arg, PromptArgument) else PromptArgument(**arg)
                for arg in arguments or []
            ],
        )
        existing = self._claim(self._prompts, prompt.id, owner_node_id, "prompt")
        self._prompts[prompt.id] = prompt
        self._changed()
        self._notify_watchers("MODIFIED" if existing else "ADDED", "prompt", prompt)
        logger.info(f"Prompt registered: {prompt.id}")
        return prompt

    def list_tools(self, include_stale: bool = False) -> list[ToolDescriptor]:
        """List tools in insertion order, hiding those of stale owners."""
        return self._visible(self._tools.values(), include_stale)

    def list_resources(self, include_stale: bool = False) -> list[ResourceDescriptor]:
        return self._visible(self._resources.values(), include_stale)

    def list_prompts(self, include_stale: bool = False) -> list[PromptDescriptor]:
        return self._visible(self._prompts.values(), include_stale)

    def lookup_tool(self, tool_id: str) -> ToolDescriptor:
        tool = self._tools.get(tool_id)
        if tool is None:
            raise UnknownTargetError(f"Unknown tool: {tool_id}")
        return tool

    def lookup_resource(self, uri: str) -> ResourceDescriptor:
        resource = self._resources.get(uri)
        if resource is None:
            raise UnknownTargetError(f"Unknown resource: {uri}")
        return resource

    def lookup_prompt(self, prompt_id: str) -> PromptDescriptor:
        prompt = self._prompts.get(prompt_id)
        if prompt is None:
            raise UnknownTargetError(f"Unknown prompt: {prompt_id}")
        return prompt

    def lookup(self, qualified_id_or_uri: str) -> Descriptor:
        """Find any descriptor by qualified id or URI, tools first."""
        for table in (self._tools, self._resources, self._prompts):
            if qualified_id_or_uri in table:
                return table[qualified_id_or_uri]
        raise UnknownTargetError(f"Unknown target: {qualified_id_or_uri}")

    # Persistence support

    def snapshot(self) -> RegistrySnapshot:
        """Deep copy of the persisted state."""
        return RegistrySnapshot(
            nodes={k: v.model_copy(deep=True) for k, v in self._nodes.items()},
            tools={k: v.model_copy(deep=True) for k, v in self._tools.items()},
            resources={
                k: v.model_copy(deep=True) for k, v in self._resources.items()
            },
            prompts={k: v.model_copy(deep=True) for k, v in self._prompts.items()},
        )

    def restore(self, snapshot: RegistrySnapshot) -> None:
        """Replace the registry contents with a snapshot.

        Every restored node is assumed to reconnect: it is marked alive and its
        last-seen time reset to now, so it gets a full heartbeat timeout to
        come back before the sweep hides it.
        """
        now = self._clock()
        self._nodes = {}
        for node_id, node in snapshot.nodes.items():
            self._nodes[node_id] = node.model_copy(
                update={"alive": True, "last_seen": now}
            )
        self._tools = dict(snapshot.tools)
        self._resources = dict(snapshot.resources)
        self._prompts = dict(snapshot.prompts)
        self._changed()

    # Watches

    def create_watcher(self, maxsize: int = 100) -> asyncio.Queue:
        """Create a new watcher queue for registry events."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._watchers.append(queue)
        return queue

    def remove_watcher(self, queue: asyncio.Queue) -> None:
        if queue in self._watchers:
            self._watchers.remove(queue)

    def is_watching(self, queue: asyncio.Queue) -> bool:
        return queue in self._watchers

    def _notify_watchers(self, event_type: str, kind: str, obj: Any) -> None:
        """Push an event to every watcher, dropping watchers that fell behind."""
        if not self._watchers:
            return
        event = {
            "type": event_type,
            "kind": kind,
            "object": obj.to_wire(),
            "timestamp": self._clock().isoformat(),
        }
        for watcher_queue in self._watchers[:]:
            try:
                watcher_queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping registry watcher that fell behind")
                self._watchers.remove(watcher_queue)

    # Internals

    def _require_node(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise UnknownNodeError(f"Unknown node: {node_id}")
        return node

    def _claim(
        self, table: dict[str, Descriptor], key: str, owner_node_id: str, kind: str
    ) -> bool:
        """Whether ``key`` is already registered; raise if another node owns it."""
        current = table.get(key)
        if current is not None and current.node_id != owner_node_id:
            raise RegistrationError(
                f"{kind.capitalize()} {key} is already registered by node "
                f"{current.node_id}"
            )
        return current is not None

    def _visible(self, descriptors, include_stale: bool) -> list:
        return [
            d for d in descriptors if include_stale or self.is_alive(d.node_id)
        ]

    def _changed(self) -> None:
        self._version += 1
