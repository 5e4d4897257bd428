"""
Canvas geometry: node boxes, port anchors, connection curves, hit testing.

All coordinates here are world coordinates.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pathgraph.models import Connection, LearningPath, NodeTypeDefinition, PathNode
from pathgraph.node_types import NodeTypeRegistry

NODE_WIDTH = 180.0
NODE_HEIGHT = 54.0
PORT_RADIUS = 5.0
PORT_HIT_RADIUS = 8.0
CONNECTION_HIT_DISTANCE = 6.0
GRID_STEP = 10.0
CURVE_SAMPLES = 24

Point = Tuple[float, float]


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return (self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2

    def pad(self, amount: float) -> "Bounds":
        return Bounds(
            self.min_x - amount, self.min_y - amount,
            self.max_x + amount, self.max_y + amount,
        )

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y


def snap(value: float, step: float = GRID_STEP) -> float:
    return round(value / step) * step


def node_bounds(node: PathNode) -> Bounds:
    return Bounds(node.x, node.y, node.x + NODE_WIDTH, node.y + NODE_HEIGHT)


def nodes_bounds(nodes: List[PathNode]) -> Optional[Bounds]:
    """Bounding box over every node box, or ``None`` for no nodes."""
    if not nodes:
        return None
    return Bounds(
        min(n.x for n in nodes),
        min(n.y for n in nodes),
        max(n.x + NODE_WIDTH for n in nodes),
        max(n.y + NODE_HEIGHT for n in nodes),
    )


# =========================================================================
# Ports
# =========================================================================


def _port_offset(ports: List[str], port: str) -> float:
    idx = ports.index(port) if port in ports else 0
    return NODE_HEIGHT / (len(ports) + 1) * (idx + 1)


def output_port_position(
    node: PathNode, definition: Optional[NodeTypeDefinition], port: str,
) -> Point:
    outputs = definition.outputs if definition else []
    return node.x + NODE_WIDTH, node.y + _port_offset(outputs, port)


def input_port_position(
    node: PathNode, definition: Optional[NodeTypeDefinition], port: str,
) -> Point:
    inputs = definition.inputs if definition else []
    return node.x, node.y + _port_offset(inputs, port)


# =========================================================================
# Curves
# =========================================================================


def _controls(x1: float, y1: float, x2: float, y2: float) -> Tuple[Point, Point]:
    dx = abs(x2 - x1) * 0.5
    return (x1 + dx, y1), (x2 - dx, y2)


def curve_path(x1: float, y1: float, x2: float, y2: float) -> str:
    """SVG path data for the horizontal S-curve between two anchors."""
    (c1x, c1y), (c2x, c2y) = _controls(x1, y1, x2, y2)
    return f"M{x1:g},{y1:g} C{c1x:g},{c1y:g} {c2x:g},{c2y:g} {x2:g},{y2:g}"


def curve_points(x1: float, y1: float, x2: float, y2: float,
                 samples: int = CURVE_SAMPLES) -> List[Point]:
    """Points along the cubic Bézier used by :func:`curve_path`."""
    (c1x, c1y), (c2x, c2y) = _controls(x1, y1, x2, y2)
    points = []
    for i in range(samples + 1):
        t = i / samples
        u = 1 - t
        px = u ** 3 * x1 + 3 * u * u * t * c1x + 3 * u * t * t * c2x + t ** 3 * x2
        py = u ** 3 * y1 + 3 * u * u * t * c1y + 3 * u * t * t * c2y + t ** 3 * y2
        points.append((px, py))
    return points


def _segment_distance(p: Point, a: Point, b: Point) -> float:
    ax, ay = a
    bx, by = b
    px, py = p
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return math.hypot(px - ax, py - ay)
    t = max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / length_sq))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def connection_anchors(
    path: LearningPath, registry: NodeTypeRegistry, conn: Connection,
) -> Optional[Tuple[Point, Point]]:
    source = path.node(conn.from_node)
    target = path.node(conn.to_node)
    if source is None or target is None:
        return None
    start = output_port_position(source, registry.get(source.type), conn.from_port)
    end = input_port_position(target, registry.get(target.type), conn.to_port)
    return start, end


# =========================================================================
# Hit testing
# =========================================================================


@dataclass
class Hit:
    """What lies under a world-space point."""

    kind: str  # "port" | "node" | "connection" | "canvas"
    node_id: Optional[str] = None
    port: Optional[str] = None
    direction: Optional[str] = None  # "input" | "output"
    connection: Optional[Connection] = None


def hit_test(
    path: LearningPath, registry: NodeTypeRegistry, wx: float, wy: float,
) -> Hit:
    """Resolve ``(wx, wy)`` to a port, node body, connection or the canvas.

    Later nodes are drawn on top, so they win ties.
    """
    for node in reversed(path.nodes):
        definition = registry.get(node.type)
        if definition is None:
            continue
        for port in definition.outputs:
            px, py = output_port_position(node, definition, port)
            if math.hypot(wx - px, wy - py) <= PORT_HIT_RADIUS:
                return Hit("port", node.id, port, "output")
        for port in definition.inputs:
            px, py = input_port_position(node, definition, port)
            if math.hypot(wx - px, wy - py) <= PORT_HIT_RADIUS:
                return Hit("port", node.id, port, "input")

    for node in reversed(path.nodes):
        if node_bounds(node).contains(wx, wy):
            return Hit("node", node.id)

    for conn in reversed(path.connections):
        anchors = connection_anchors(path, registry, conn)
        if anchors is None:
            continue
        (x1, y1), (x2, y2) = anchors
        points = curve_points(x1, y1, x2, y2)
        for a, b in zip(points, points[1:]):
            if _segment_distance((wx, wy), a, b) <= CONNECTION_HIT_DISTANCE:
                return Hit("connection", connection=conn)

    return Hit("canvas")
