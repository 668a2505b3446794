"""
Pydantic models for the MCP Tools Mesh hub

Contains all data models used by the hub and its clients to avoid circular
imports. Attributes are snake_case; wire names are camelCase aliases.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def qualify(node_id: str, name: str) -> str:
    """Build the mesh-wide id of a tool or prompt owned by ``node_id``.

    Local names never contain a dot, so the owner is everything before the
    last one.
    """
    return f"{node_id}.{name}"


class MeshModel(BaseModel):
    """Base model accepting both attribute and wire names."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON shape sent across the transport."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NodeKind(str, Enum):
    """Role of a node in the mesh."""

    CLIENT = "client"
    SERVER = "server"
    ORCHESTRATOR = "orchestrator"

    @classmethod
    def parse(cls, value: "str | NodeKind") -> "NodeKind":
        """Parse a kind, mapping LLM-host aliases onto ``orchestrator``."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("llm", "claude"):
            return cls.ORCHESTRATOR
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Node type must be one of: {valid}")


class NodeCapabilities(MeshModel):
    """Which kinds of capability a node offers to the mesh."""

    tools: bool = True
    resources: bool = True
    prompts: bool = True


class Node(MeshModel):
    """A process participating in the mesh."""

    id: str
    kind: NodeKind = NodeKind.CLIENT
    capabilities: NodeCapabilities = Field(default_factory=NodeCapabilities)
    connected_at: datetime = Field(default_factory=utcnow, alias="connectedAt")
    last_seen: datetime = Field(default_factory=utcnow, alias="lastSeen")
    alive: bool = True

    @field_validator("id")
    @classmethod
    def validate_node_id(cls, v):
        """Node ids must be non-empty and free of surrounding whitespace."""
        if not v or v != v.strip():
            raise ValueError("Node id must be a non-empty string without padding")
        return v

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, v):
        return NodeKind.parse(v)


class ToolDescriptor(MeshModel):
    """A callable tool registered by a node."""

    id: str
    node_id: str = Field(alias="nodeId")
    name: str
    description: str = ""
    input_schema: dict[str, Any] | None = Field(default=None, alias="inputSchema")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v:
            raise ValueError("Tool name must not be empty")
        if "." in v:
            raise ValueError(f"Tool name must not contain '.': {v}")
        return v


class ResourceDescriptor(MeshModel):
    """A readable resource registered by a node, keyed by URI."""

    uri: str
    node_id: str = Field(alias="nodeId")
    name: str
    description: str = ""
    mime_type: str = Field(default="text/plain", alias="mimeType")

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v):
        if not v:
            raise ValueError("Resource URI must not be empty")
        return v


class PromptArgument(MeshModel):
    """One argument accepted by a prompt."""

    name: str
    description: str = ""
    required: bool = False


class PromptDescriptor(MeshModel):
    """An invocable prompt registered by a node."""

    id: str
    node_id: str = Field(alias="nodeId")
    prompt_id: str = Field(alias="promptId")
    name: str
    description: str = ""
    arguments: list[PromptArgument] = Field(default_factory=list)

    @field_validator("prompt_id")
    @classmethod
    def validate_prompt_id(cls, v):
        if not v:
            raise ValueError("Prompt id must not be empty")
        if "." in v:
            raise ValueError(f"Prompt id must not contain '.': {v}")
        return v


class OperationResult(MeshModel):
    """Outcome of a registration or heartbeat call.

    Heartbeats also report whether the hub holds an executor for the node.
    """

    success: bool
    error: str | None = None
    error_code: str | None = Field(default=None, alias="errorCode")
    executor_bound: bool | None = Field(default=None, alias="executorBound")


class TextContent(MeshModel):
    type: str = "text"
    text: str


class CallToolResult(MeshModel):
    """Outcome of a routed tool call.

    ``result`` is the executor's return value, untouched. ``content`` is its
    text rendering in MCP content form.
    """

    success: bool
    content: list[TextContent] = Field(default_factory=list)
    result: Any = None
    error: str | None = None
    error_code: str | None = Field(default=None, alias="errorCode")

    @property
    def text(self) -> str:
        """Text of the first content block, or the error string."""
        if self.content:
            return self.content[0].text
        return self.error or ""


class ResourceContent(MeshModel):
    uri: str
    mime_type: str = Field(default="text/plain", alias="mimeType")
    text: str


class ReadResourceResult(MeshModel):
    success: bool
    contents: list[ResourceContent] | None = None
    error: str | None = None
    error_code: str | None = Field(default=None, alias="errorCode")


class PromptMessage(MeshModel):
    role: str = "user"
    content: str


class GetPromptResult(MeshModel):
    success: bool
    messages: list[PromptMessage] | None = None
    error: str | None = None
    error_code: str | None = Field(default=None, alias="errorCode")


class NodeHealth(MeshModel):
    """Liveness view of a single node."""

    node_id: str = Field(alias="nodeId")
    alive: bool
    last_seen: datetime = Field(alias="lastSeen")
    seconds_since_heartbeat: float = Field(alias="secondsSinceHeartbeat")
    heartbeat_timeout: float = Field(alias="heartbeatTimeout")
    message: str


class RegistrySnapshot(MeshModel):
    """Persisted registry state."""

    nodes: dict[str, Node] = Field(default_factory=dict)
    tools: dict[str, ToolDescriptor] = Field(default_factory=dict)
    resources: dict[str, ResourceDescriptor] = Field(default_factory=dict)
    prompts: dict[str, PromptDescriptor] = Field(default_factory=dict)
