"""
Learner-facing traversal of a learning path.

``build_play_order`` flattens the graph into a linear play order by
following each node's default-forward connection from the Start node.
:class:`TraversalEngine` walks a learner through that order, keeps
per-node :class:`NodeProgressState` for the session, resolves gate and
branch decisions, and reports ``launched`` / ``completed`` events to an
:class:`~pathgraph.xapi.ActivityTracker`.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from pathgraph.models import (
    END_TYPE,
    START_TYPE,
    Connection,
    LearningPath,
    NodeProgressState,
    PathNode,
)
from pathgraph.node_types import NodeTypeRegistry, default_registry
from pathgraph.utils import format_duration, utc_now
from pathgraph.xapi import ActivityTracker

logger = logging.getLogger(__name__)

DONE_STATUSES = ("completed", "passed")


# =========================================================================
# Linearization
# =========================================================================


def default_successor(
    path: LearningPath, registry: NodeTypeRegistry, node: PathNode,
) -> Optional[Connection]:
    """The connection leaving *node* through its type's primary output port."""
    definition = registry.get(node.type)
    port = definition.primary_output if definition else None
    if port is None:
        return None
    for c in path.connections:
        if c.from_node == node.id and c.from_port == port:
            return c
    return None


def walk_forward(
    path: LearningPath,
    registry: NodeTypeRegistry,
    start: PathNode,
    visited: Optional[Set[str]] = None,
) -> List[PathNode]:
    """Follow default-forward connections from *start* (inclusive).

    Stops at a node without a default successor, at a dangling
    connection, or at the first revisit of a node in *visited*.
    """
    visited = set() if visited is None else visited
    walked: List[PathNode] = []
    current: Optional[PathNode] = start
    while current is not None and current.id not in visited:
        visited.add(current.id)
        walked.append(current)
        conn = default_successor(path, registry, current)
        if conn is None:
            break
        current = path.node(conn.to_node)
        if current is not None and current.id in visited:
            logger.warning(
                "Play order truncated: %s loops back to %s.", conn.from_node, current.id,
            )
    return walked


def build_play_order(
    path: LearningPath, registry: Optional[NodeTypeRegistry] = None,
) -> List[PathNode]:
    """Linear play order of *path*, Start excluded.

    Without a Start node the order is every node except Start and End in
    document order; if the walk from Start yields nothing playable the
    order is every node except Start.
    """
    registry = registry or default_registry()
    start = next((n for n in path.nodes if n.type == START_TYPE), None)
    if start is None:
        return [n for n in path.nodes if n.type not in (START_TYPE, END_TYPE)]

    ordered = [n for n in walk_forward(path, registry, start) if n.type != START_TYPE]
    if not ordered:
        return [n for n in path.nodes if n.type != START_TYPE]
    return ordered


# =========================================================================
# Views
# =========================================================================


@dataclass
class NodeView:
    """What the player shows for one node."""

    node_id: str
    type: str
    type_label: str
    title: str
    icon: str
    color: str
    status: str
    description: Optional[str] = None
    estimated_minutes: Optional[float] = None
    data: Dict[str, Any] = field(default_factory=dict)
    # (port, label) pairs offered by a branch
    choices: List[Tuple[str, str]] = field(default_factory=list)
    required_score: Optional[float] = None
    completion_message: Optional[str] = None


# =========================================================================
# Session
# =========================================================================


class TraversalEngine:
    """One learner's session over one learning path.

    Progress state lives only as long as the engine; nothing here is
    persisted with the path.
    """

    def __init__(
        self,
        path: LearningPath,
        registry: Optional[NodeTypeRegistry] = None,
        tracker: Optional[ActivityTracker] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.path = path
        self.registry = registry or default_registry()
        self.tracker = tracker
        self.clock = clock
        self.order: List[PathNode] = build_play_order(path, self.registry)
        self.states: Dict[str, NodeProgressState] = {
            n.id: NodeProgressState() for n in self.order
        }
        self.current_index = -1
        self.finished = False
        logger.info(
            "Session opened on path %s with %d playable node(s).",
            path.id, len(self.order),
        )

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------

    @property
    def current(self) -> Optional[PathNode]:
        if 0 <= self.current_index < len(self.order):
            return self.order[self.current_index]
        return None

    @property
    def order_ids(self) -> List[str]:
        return [n.id for n in self.order]

    def state(self, node_id: str) -> NodeProgressState:
        return self.states[node_id]

    def completed_count(self) -> int:
        return sum(1 for n in self.order if self.states[n.id].status in DONE_STATUSES)

    def progress(self) -> float:
        """Fraction of play-order entries completed or passed."""
        if not self.order:
            return 0.0
        return self.completed_count() / len(self.order)

    def index_of(self, node_id: str) -> int:
        for idx, node in enumerate(self.order):
            if node.id == node_id:
                return idx
        return -1

    # ---------------------------------------------------------------------
    # Navigation
    # ---------------------------------------------------------------------

    def start(self) -> Optional[PathNode]:
        """Visit the first node of the order."""
        self.navigate_to(0)
        return self.current

    def navigate_to(self, index: int) -> bool:
        """Visit ``order[index]``; leaving an active node completes it."""
        if index < 0 or index >= len(self.order):
            return False

        previous = self.current
        if (
            previous is not None
            and index != self.current_index
            and self.states[previous.id].status == "active"
        ):
            self._mark_completed(previous)

        self.current_index = index
        node = self.order[index]
        state = self.states[node.id]
        if state.status not in DONE_STATUSES:
            state.status = "active"
        state.start_time = self.clock()
        self._emit("launched", node)

        if node.type == END_TYPE:
            self._finish(node)
        return True

    def next(self) -> Optional[PathNode]:
        """Complete the current node and move to the following one."""
        node = self.current
        if node is None:
            return self.start()
        self._mark_completed(node)
        if self.current_index < len(self.order) - 1:
            self.navigate_to(self.current_index + 1)
        return self.current

    def prev(self) -> Optional[PathNode]:
        if self.current_index > 0:
            self.navigate_to(self.current_index - 1)
        return self.current

    def pass_gate(self) -> Optional[PathNode]:
        """Any gate interaction counts as a pass; no score is checked here."""
        node = self.current
        if node is not None and node.type != "gate":
            logger.debug("pass_gate() called on non-gate node %s.", node.id)
        return self.next()

    def choose_branch(self, port: str) -> Optional[PathNode]:
        """Follow the current node's *port* connection.

        A destination outside the play order replaces the rest of the order
        with the walk from that destination. Without a matching connection
        traversal falls back to :meth:`next`.
        """
        node = self.current
        if node is None:
            return None
        conn = next(
            (c for c in self.path.connections if c.from_node == node.id and c.from_port == port),
            None,
        )
        target = self.path.node(conn.to_node) if conn is not None else None
        if target is None:
            logger.info("Branch %s has no target on %r; continuing in order.", node.id, port)
            return self.next()

        target_index = self.index_of(target.id)
        if target_index < 0:
            target_index = self._reroute(target)

        self._mark_completed(node)
        self.navigate_to(target_index)
        return self.current

    def close(self) -> None:
        """End the session: hand queued statements over and discard progress."""
        logger.info(
            "Session closed on path %s at %.0f%% progress.", self.path.id, self.progress() * 100,
        )
        if self.tracker is not None:
            self.tracker.close()
        self.states = {}
        self.order = []
        self.current_index = -1

    # ---------------------------------------------------------------------
    # Views
    # ---------------------------------------------------------------------

    def view(self, index: Optional[int] = None) -> Optional[NodeView]:
        idx = self.current_index if index is None else index
        if not 0 <= idx < len(self.order):
            return None
        node = self.order[idx]
        definition = self.registry.get(node.type)
        type_label = definition.label if definition else node.type
        data = node.data

        nv = NodeView(
            node_id=node.id,
            type=node.type,
            type_label=type_label,
            title=data.get("title") or type_label,
            icon=definition.icon if definition else "?",
            color=definition.color if definition else "#555555",
            status=self.states[node.id].status,
            description=data.get("description") or None,
            estimated_minutes=data.get("estimatedMinutes") or None,
            data=dict(data),
        )
        if node.type == "branch":
            nv.title = data.get("title") or "Choose your path"
            nv.choices = [
                ("pathA", data.get("pathALabel") or "Path A"),
                ("pathB", data.get("pathBLabel") or "Path B"),
            ]
        elif node.type == "gate":
            nv.title = data.get("title") or "Progress Check"
            nv.required_score = data.get("requiredScore") or 70
        elif node.type == END_TYPE:
            nv.completion_message = data.get("completionMessage") or (
                "Congratulations! You have completed this learning path."
            )
        return nv

    def outline(self) -> List[NodeView]:
        """Views for every order entry, for a sidebar."""
        return [v for v in (self.view(i) for i in range(len(self.order))) if v is not None]

    # ---------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------

    def _reroute(self, target: PathNode) -> int:
        keep = self.order[: self.current_index + 1]
        visited = {n.id for n in keep}
        tail = [n for n in walk_forward(self.path, self.registry, target, visited)
                if n.type != START_TYPE]
        self.order = keep + tail
        for n in tail:
            self.states.setdefault(n.id, NodeProgressState())
        logger.info(
            "Play order rerouted through %s: %d node(s) ahead.", target.id, len(tail),
        )
        return self.current_index + 1

    def _mark_completed(self, node: PathNode) -> None:
        state = self.states[node.id]
        if state.status in DONE_STATUSES:
            return
        state.status = "completed"
        result: Dict[str, Any] = {"completion": True}
        if state.start_time is not None:
            result["duration"] = format_duration(state.start_time, self.clock())
        self._emit("completed", node, result)

    def _finish(self, end_node: PathNode) -> None:
        self._mark_completed(end_node)
        if self.finished:
            return
        self.finished = True
        self._emit("completed", None, {"completion": True})
        if self.tracker is not None:
            self.tracker.flush(wait=False)
        logger.info("Learner finished path %s.", self.path.id)

    def _emit(
        self, verb: str, node: Optional[PathNode], result: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.tracker is not None:
            self.tracker.record(verb, node, result)
