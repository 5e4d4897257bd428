"""
Minimap: a proportional miniature of the whole graph plus the camera's
visible rectangle.
"""

from dataclasses import dataclass, field
from typing import List, Tuple
from xml.sax.saxutils import quoteattr

from pathgraph.editor.camera import Camera
from pathgraph.editor.geometry import NODE_HEIGHT, NODE_WIDTH, Bounds, nodes_bounds
from pathgraph.models import LearningPath
from pathgraph.node_types import NodeTypeRegistry

MINIMAP_PADDING = 100.0
EMPTY_BOUNDS = Bounds(0.0, 0.0, 800.0, 600.0)


@dataclass
class MiniNode:
    node_id: str
    x: float
    y: float
    color: str


@dataclass
class MiniLine:
    x1: float
    y1: float
    x2: float
    y2: float


@dataclass
class Minimap:
    view_box: Bounds
    viewport: Bounds
    nodes: List[MiniNode] = field(default_factory=list)
    lines: List[MiniLine] = field(default_factory=list)

    def scale(self, width: float, height: float) -> float:
        """Screen pixels per world unit when drawn into ``width × height``."""
        return min(width / self.view_box.width, height / self.view_box.height)

    def to_world(self, mx: float, my: float, width: float, height: float) -> Tuple[float, float]:
        """Map a point on a ``width × height`` minimap back to world space."""
        s = self.scale(width, height)
        # the drawing is centred on the unused axis
        off_x = (width - self.view_box.width * s) / 2
        off_y = (height - self.view_box.height * s) / 2
        return (
            self.view_box.min_x + (mx - off_x) / s,
            self.view_box.min_y + (my - off_y) / s,
        )

    def to_svg(self) -> str:
        vb = self.view_box
        parts = [
            f'<svg xmlns="http://www.w3.org/2000/svg" '
            f'viewBox="{vb.min_x:g} {vb.min_y:g} {vb.width:g} {vb.height:g}">'
        ]
        for n in self.nodes:
            parts.append(
                f'<rect x="{n.x:g}" y="{n.y:g}" width="{NODE_WIDTH:g}" '
                f'height="{NODE_HEIGHT:g}" rx="3" fill={quoteattr(n.color)} opacity="0.8"/>'
            )
        for ln in self.lines:
            parts.append(
                f'<line x1="{ln.x1:g}" y1="{ln.y1:g}" x2="{ln.x2:g}" y2="{ln.y2:g}" '
                f'stroke="#555" stroke-width="2"/>'
            )
        vp = self.viewport
        parts.append(
            f'<rect class="viewport-rect" x="{vp.min_x:g}" y="{vp.min_y:g}" '
            f'width="{vp.width:g}" height="{vp.height:g}"/>'
        )
        parts.append("</svg>")
        return "".join(parts)


def compute_minimap(
    path: LearningPath, registry: NodeTypeRegistry, camera: Camera,
) -> Minimap:
    """Padded bounds over all nodes, node boxes, straight edge lines, viewport."""
    bounds = nodes_bounds(path.nodes) or EMPTY_BOUNDS
    minimap = Minimap(view_box=bounds.pad(MINIMAP_PADDING), viewport=camera.view_bounds)

    for node in path.nodes:
        definition = registry.get(node.type)
        minimap.nodes.append(
            MiniNode(node.id, node.x, node.y, definition.color if definition else "#555555")
        )

    for conn in path.connections:
        source = path.node(conn.from_node)
        target = path.node(conn.to_node)
        if source is None or target is None:
            continue
        minimap.lines.append(MiniLine(
            source.x + NODE_WIDTH, source.y + NODE_HEIGHT / 2,
            target.x, target.y + NODE_HEIGHT / 2,
        ))
    return minimap
