"""
Pydantic models for the Learning Path Graph Engine.

Schema: node-type definitions and their field definitions.
Document: nodes, connections, record-store config, the learning path itself.
Runtime: per-learner node progress, validation and delivery results.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =========================================================================
# Literals
# =========================================================================

Category = Literal["control", "content", "package"]
FieldKind = Literal[
    "text",
    "textarea",
    "richtext",
    "url",
    "number",
    "checkbox",
    "select",
    "content-reference",
]
PathStatus = Literal["draft", "published"]
ProgressStatus = Literal["pending", "active", "completed", "passed", "failed"]

START_TYPE = "start"
END_TYPE = "end"
PRIMARY_PORT = "next"


# =========================================================================
# Node-type schema
# =========================================================================


class FieldDefinition(BaseModel):
    """One editable field of a node type."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: FieldKind
    label: str
    required: bool = False
    default: Any = None
    options: Optional[List[str]] = None


class NodeTypeDefinition(BaseModel):
    """Schema of one category of learning-path step."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    label: str
    category: Category
    color: str = "#555555"
    icon: str = "?"
    max_instances: Optional[int] = Field(default=None, alias="maxInstances")
    inputs: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    fields: List[FieldDefinition] = Field(default_factory=list)

    def get_field(self, name: str) -> Optional[FieldDefinition]:
        for fd in self.fields:
            if fd.name == name:
                return fd
        return None

    @property
    def primary_output(self) -> Optional[str]:
        """The default forward port: ``next`` if declared, else the first output."""
        if PRIMARY_PORT in self.outputs:
            return PRIMARY_PORT
        return self.outputs[0] if self.outputs else None

    def default_data(self) -> Dict[str, Any]:
        """Initial ``data`` mapping for a fresh instance of this type."""
        return {fd.name: fd.default for fd in self.fields if fd.default is not None}


# =========================================================================
# Path document
# =========================================================================


class PathNode(BaseModel):
    """A single step of a learning path. ``x``/``y`` are layout only."""

    id: str
    type: str
    x: float = 0.0
    y: float = 0.0
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def title(self) -> Optional[str]:
        value = self.data.get("title")
        return value if value else None


class Connection(BaseModel):
    """Directed edge ``(from, fromPort) → (to, toPort)``."""

    model_config = ConfigDict(populate_by_name=True)

    from_node: str = Field(alias="from")
    from_port: str = Field(alias="fromPort")
    to_node: str = Field(alias="to")
    to_port: str = Field(alias="toPort")

    def key(self) -> tuple:
        return (self.from_node, self.from_port, self.to_node, self.to_port)

    def touches(self, node_id: str) -> bool:
        return self.from_node == node_id or self.to_node == node_id


class LrsConfig(BaseModel):
    """Record-store (LRS) endpoint and basic-auth credentials."""

    endpoint: str = ""
    key: str = ""
    secret: str = ""


class LearningPath(BaseModel):
    """The unit of persistence and of traversal."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    title: str = "Untitled Learning Path"
    description: str = ""
    status: PathStatus = "draft"
    nodes: List[PathNode] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    lrs_config: Optional[LrsConfig] = Field(default=None, alias="lrsConfig")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    def to_document(self) -> Dict[str, Any]:
        """Return the persisted JSON shape (camelCase keys)."""
        return self.model_dump(by_alias=True, mode="json")

    def node(self, node_id: str) -> Optional[PathNode]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def nodes_of_type(self, type_id: str) -> List[PathNode]:
        return [n for n in self.nodes if n.type == type_id]


class PathSummary(BaseModel):
    """One row of the path listing."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str = ""
    status: PathStatus = "draft"
    node_count: int = Field(default=0, alias="nodeCount")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


# =========================================================================
# Runtime results
# =========================================================================


class NodeProgressState(BaseModel):
    """Per-learner, per-session progress of one node. Never persisted."""

    status: ProgressStatus = "pending"
    score: Optional[float] = None
    start_time: Optional[datetime] = None


class ValidationResult(BaseModel):
    """Outcome of a structural check; errors are ordered messages."""

    valid: bool
    errors: List[str] = Field(default_factory=list)


class SendResult(BaseModel):
    """Outcome of one record-store delivery. Failures are values, not raises."""

    model_config = ConfigDict(populate_by_name=True)

    stored: bool
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    reason: Optional[str] = None
    response: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Learner(BaseModel):
    """Identity used to build the statement actor."""

    name: Optional[str] = None
    email: Optional[str] = None
