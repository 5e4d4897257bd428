"""
Authoritative in-memory graph of one learning path.

All node and connection creation and destruction goes through
:class:`PathGraphModel`, which keeps the structural invariants:

- node ids are unique;
- a node type's ``max_instances`` cap is enforced at creation;
- connections reference existing nodes and declared ports;
- an input port has at most one incoming connection;
- an output port has at most one outgoing connection;
- deleting a node cascades to every connection touching it.

Connection mutations that would break an invariant are rejected by
returning ``False``; they never raise.
"""

import logging
import uuid
from typing import Any, List, Optional

from pathgraph.models import Connection, LearningPath, LrsConfig, PathNode
from pathgraph.node_types import NodeTypeRegistry, default_registry

logger = logging.getLogger(__name__)


# =========================================================================
# Errors
# =========================================================================


class CapacityExceeded(Exception):
    """Raised by :meth:`PathGraphModel.add_node` when a type's cap is reached."""

    def __init__(self, type_id: str, label: str, limit: int) -> None:
        self.type_id = type_id
        self.label = label
        self.limit = limit
        super().__init__(f"Only {limit} {label} node(s) allowed")


class NodeNotFound(KeyError):
    """Raised when an operation names a node id absent from the path."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(node_id)

    def __str__(self) -> str:
        return f"Node not found: {self.node_id}"


def new_node_id() -> str:
    return f"node_{uuid.uuid4().hex[:12]}"


# =========================================================================
# Model
# =========================================================================


class PathGraphModel:
    """Mutation surface over a :class:`LearningPath`.

    ``revision`` increases on every change (structural or not) so views
    such as the minimap can cache against it.
    """

    def __init__(
        self,
        path: Optional[LearningPath] = None,
        registry: Optional[NodeTypeRegistry] = None,
    ) -> None:
        self.path = path if path is not None else LearningPath()
        self.registry = registry or default_registry()
        self.revision = 0

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------

    @property
    def nodes(self) -> List[PathNode]:
        return self.path.nodes

    @property
    def connections(self) -> List[Connection]:
        return self.path.connections

    def get_node(self, node_id: str) -> PathNode:
        node = self.path.node(node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def count_type(self, type_id: str) -> int:
        return sum(1 for n in self.path.nodes if n.type == type_id)

    def incoming(self, node_id: str, port: str) -> Optional[Connection]:
        for c in self.path.connections:
            if c.to_node == node_id and c.to_port == port:
                return c
        return None

    def outgoing(self, node_id: str, port: str) -> Optional[Connection]:
        for c in self.path.connections:
            if c.from_node == node_id and c.from_port == port:
                return c
        return None

    def has_connection(self, from_id: str, from_port: str, to_id: str, to_port: str) -> bool:
        key = (from_id, from_port, to_id, to_port)
        return any(c.key() == key for c in self.path.connections)

    # ---------------------------------------------------------------------
    # Node mutations
    # ---------------------------------------------------------------------

    def add_node(self, type_id: str, x: float = 0.0, y: float = 0.0) -> PathNode:
        """Create a node of *type_id* at ``(x, y)`` with default field values.

        Raises:
            UnknownNodeType: *type_id* is not registered.
            CapacityExceeded: the type's ``max_instances`` is already reached.
        """
        definition = self.registry.require(type_id)
        if definition.max_instances is not None:
            if self.count_type(type_id) >= definition.max_instances:
                logger.warning(
                    "Rejected add_node(%s): cap of %d reached.",
                    type_id, definition.max_instances,
                )
                raise CapacityExceeded(type_id, definition.label, definition.max_instances)

        node_id = new_node_id()
        while self.path.node(node_id) is not None:
            node_id = new_node_id()

        node = PathNode(id=node_id, type=type_id, x=x, y=y, data=definition.default_data())
        self.path.nodes.append(node)
        self._touch()
        logger.debug("Added node %s (%s) at (%.1f, %.1f).", node_id, type_id, x, y)
        return node

    def move_node(self, node_id: str, x: float, y: float) -> None:
        node = self.get_node(node_id)
        node.x = x
        node.y = y
        self._touch()

    def delete_node(self, node_id: str) -> List[Connection]:
        """Remove a node and every connection touching it.

        Returns:
            The connections removed by the cascade.
        """
        node = self.get_node(node_id)
        removed = [c for c in self.path.connections if c.touches(node_id)]
        self.path.connections = [c for c in self.path.connections if not c.touches(node_id)]
        self.path.nodes = [n for n in self.path.nodes if n.id != node.id]
        self._touch()
        logger.debug(
            "Deleted node %s (%s); cascaded %d connection(s).",
            node_id, node.type, len(removed),
        )
        return removed

    def update_node_field(self, node_id: str, field_name: str, value: Any) -> None:
        node = self.get_node(node_id)
        node.data[field_name] = value
        self._touch()

    # ---------------------------------------------------------------------
    # Connection mutations
    # ---------------------------------------------------------------------

    def check_connection(
        self, from_id: str, from_port: str, to_id: str, to_port: str,
    ) -> Optional[str]:
        """Return why a connection would be rejected, or ``None`` if allowed."""
        if self.has_connection(from_id, from_port, to_id, to_port):
            return "Connection already exists"
        source = self.path.node(from_id)
        target = self.path.node(to_id)
        if source is None or target is None:
            return "Connection endpoint does not exist"
        source_def = self.registry.get(source.type)
        target_def = self.registry.get(target.type)
        if source_def is None or from_port not in source_def.outputs:
            return f"Unknown output port: {from_port}"
        if target_def is None or to_port not in target_def.inputs:
            return f"Unknown input port: {to_port}"
        if self.incoming(to_id, to_port) is not None:
            return "Input port already connected"
        if self.outgoing(from_id, from_port) is not None:
            return "Output port already connected"
        return None

    def add_connection(self, from_id: str, from_port: str, to_id: str, to_port: str) -> bool:
        """Add ``(from_id, from_port) → (to_id, to_port)``.

        Returns:
            ``True`` if added, ``False`` if rejected (duplicate edge,
            occupied input or output port, unknown node or port).
        """
        reason = self.check_connection(from_id, from_port, to_id, to_port)
        if reason is not None:
            logger.info(
                "Rejected connection %s:%s → %s:%s (%s).",
                from_id, from_port, to_id, to_port, reason,
            )
            return False
        self.path.connections.append(
            Connection(from_node=from_id, from_port=from_port, to_node=to_id, to_port=to_port)
        )
        self._touch()
        logger.debug("Connected %s:%s → %s:%s.", from_id, from_port, to_id, to_port)
        return True

    def remove_connection(self, from_id: str, from_port: str, to_id: str, to_port: str) -> bool:
        """Remove a connection if present. Returns whether anything was removed."""
        key = (from_id, from_port, to_id, to_port)
        before = len(self.path.connections)
        self.path.connections = [c for c in self.path.connections if c.key() != key]
        if len(self.path.connections) == before:
            return False
        self._touch()
        return True

    # ---------------------------------------------------------------------
    # Path-level metadata
    # ---------------------------------------------------------------------

    def set_title(self, title: str) -> None:
        self.path.title = title
        self._touch()

    def set_lrs_config(self, config: Optional[LrsConfig]) -> None:
        self.path.lrs_config = config
        self._touch()

    def _touch(self) -> None:
        self.revision += 1
