"""
Structural validation and graph metrics for learning paths.

Validation never mutates the path and never looks at learner progress.
Errors are accumulated as human-readable messages and returned as data.

Uses ``networkx.DiGraph`` for the default-forward cycle check and for
reachability / depth metrics.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

import networkx as nx

from pathgraph.models import (
    END_TYPE,
    START_TYPE,
    LearningPath,
    PathNode,
    ValidationResult,
)
from pathgraph.node_types import NodeTypeRegistry, default_registry

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


# =========================================================================
# Forward graph
# =========================================================================


def forward_graph(path: LearningPath, registry: NodeTypeRegistry) -> nx.DiGraph:
    """DiGraph holding only each node's default-forward edge.

    The default forward edge leaves through the type's primary output
    port (``next``, else the first declared output). When several
    connections share that port the first one in document order wins.
    """
    G = nx.DiGraph()
    node_ids = {n.id for n in path.nodes}
    for node in path.nodes:
        G.add_node(node.id)
    for node in path.nodes:
        definition = registry.get(node.type)
        port = definition.primary_output if definition else None
        if port is None:
            continue
        for c in path.connections:
            if c.from_node == node.id and c.from_port == port and c.to_node in node_ids:
                G.add_edge(node.id, c.to_node)
                break
    return G


def full_graph(path: LearningPath) -> nx.DiGraph:
    """DiGraph over every connection whose endpoints exist."""
    G = nx.DiGraph()
    node_ids = {n.id for n in path.nodes}
    G.add_nodes_from(node_ids)
    for c in path.connections:
        if c.from_node in node_ids and c.to_node in node_ids:
            G.add_edge(c.from_node, c.to_node)
    return G


# =========================================================================
# Validator
# =========================================================================


class GraphValidator:
    """Read-only checker over a :class:`LearningPath` snapshot."""

    def __init__(self, registry: Optional[NodeTypeRegistry] = None) -> None:
        self.registry = registry or default_registry()

    def display_title(self, node: PathNode) -> str:
        """Node title, falling back to the type label, then the node id."""
        title = node.data.get("title")
        if not _is_empty(title):
            return str(title)
        definition = self.registry.get(node.type)
        if definition is not None:
            return definition.label
        return node.id

    def validate_node(self, node: PathNode) -> List[str]:
        """Unprefixed errors for one node against its type definition."""
        definition = self.registry.get(node.type)
        if definition is None:
            return [f"Unknown node type: {node.type}"]
        return [
            f"{fd.label} is required"
            for fd in definition.fields
            if fd.required and _is_empty(node.data.get(fd.name))
        ]

    def validate(self, path: LearningPath) -> ValidationResult:
        errors: List[str] = []

        # --- 1. non-empty ---
        if not path.nodes:
            return ValidationResult(
                valid=False, errors=["Learning path must have at least one node"]
            )

        # --- 2. start / end cardinality ---
        starts = path.nodes_of_type(START_TYPE)
        ends = path.nodes_of_type(END_TYPE)
        if not starts:
            errors.append("Learning path must have a Start node")
        if len(starts) > 1:
            errors.append("Learning path can only have one Start node")
        if not ends:
            errors.append("Learning path must have an End node")

        type_counts = Counter(n.type for n in path.nodes)
        for type_id, count in type_counts.items():
            definition = self.registry.get(type_id)
            if type_id == START_TYPE or definition is None:
                continue
            if definition.max_instances is not None and count > definition.max_instances:
                errors.append(
                    f"Learning path can only have {definition.max_instances} "
                    f"{definition.label} node(s)"
                )

        # --- 3. per-node required fields ---
        for node in path.nodes:
            node_errors = self.validate_node(node)
            if node_errors:
                label = self.display_title(node)
                errors.extend(f"[{label}] {err}" for err in node_errors)

        # --- 4. connection endpoints ---
        errors.extend(self._connection_errors(path))

        # --- 5. default-forward cycle ---
        if len(starts) == 1:
            cycle_error = self._cycle_error(path, starts[0])
            if cycle_error:
                errors.append(cycle_error)

        result = ValidationResult(valid=not errors, errors=errors)
        logger.info(
            "Validated path %s: valid=%s, %d error(s).",
            path.id, result.valid, len(errors),
        )
        return result

    def _connection_errors(self, path: LearningPath) -> List[str]:
        errors: List[str] = []
        nodes = {n.id: n for n in path.nodes}
        in_use: Counter = Counter()
        out_use: Counter = Counter()

        for c in path.connections:
            source = nodes.get(c.from_node)
            target = nodes.get(c.to_node)
            if source is None:
                errors.append(f"Connection references non-existent source node: {c.from_node}")
            if target is None:
                errors.append(f"Connection references non-existent target node: {c.to_node}")

            if source is not None:
                definition = self.registry.get(source.type)
                if definition is not None and c.from_port not in definition.outputs:
                    errors.append(
                        f"[{self.display_title(source)}] Unknown output port: {c.from_port}"
                    )
                out_use[(c.from_node, c.from_port)] += 1
            if target is not None:
                definition = self.registry.get(target.type)
                if definition is not None and c.to_port not in definition.inputs:
                    errors.append(
                        f"[{self.display_title(target)}] Unknown input port: {c.to_port}"
                    )
                in_use[(c.to_node, c.to_port)] += 1

        for (node_id, port), count in out_use.items():
            if count > 1:
                errors.append(
                    f"[{self.display_title(nodes[node_id])}] Output port '{port}' "
                    f"has {count} outgoing connections"
                )
        for (node_id, port), count in in_use.items():
            if count > 1:
                errors.append(
                    f"[{self.display_title(nodes[node_id])}] Input port '{port}' "
                    f"has {count} incoming connections"
                )
        return errors

    def _cycle_error(self, path: LearningPath, start: PathNode) -> Optional[str]:
        G = forward_graph(path, self.registry)
        try:
            cycle = nx.find_cycle(G, source=start.id, orientation="original")
        except nx.NetworkXNoCycle:
            return None
        # cycle is list of (u, v, direction); v of the last edge closes the loop
        reentry = path.node(cycle[-1][1])
        label = self.display_title(reentry) if reentry else cycle[-1][1]
        return f"Learning path contains a cycle returning to [{label}]"


def validate_path(
    path: LearningPath, registry: Optional[NodeTypeRegistry] = None,
) -> ValidationResult:
    """Convenience wrapper around :meth:`GraphValidator.validate`."""
    return GraphValidator(registry).validate(path)


# =========================================================================
# Metrics
# =========================================================================


def compute_metrics(
    path: LearningPath, registry: Optional[NodeTypeRegistry] = None,
) -> Dict[str, Any]:
    """Compute graph summary metrics.

    Returns dict with: total_nodes, total_connections, unreachable_nodes,
    forward_chain_length, has_cycle.
    """
    registry = registry or default_registry()
    G = full_graph(path)
    starts = path.nodes_of_type(START_TYPE)

    if len(starts) == 1:
        reachable = nx.descendants(G, starts[0].id) | {starts[0].id}
        unreachable = sorted(n.id for n in path.nodes if n.id not in reachable)
    else:
        unreachable = []

    F = forward_graph(path, registry)
    has_cycle = not nx.is_directed_acyclic_graph(G)
    if nx.is_directed_acyclic_graph(F) and F.number_of_edges() > 0:
        chain = nx.dag_longest_path_length(F)
    else:
        chain = 0

    return {
        "total_nodes": len(path.nodes),
        "total_connections": len(path.connections),
        "unreachable_nodes": unreachable,
        "forward_chain_length": chain,
        "has_cycle": has_cycle,
    }
