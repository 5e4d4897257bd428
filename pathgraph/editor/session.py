"""
Headless visual-editor session.

:class:`EditorSession` owns everything the authoring surface needs between
input events: the pointer interaction state, the selection, the camera,
pending notices and the content picker. Hosts feed it screen-space input
events; it translates them into :class:`PathGraphModel` mutations.

Exactly one interaction state is active at a time:

- ``Idle``
- ``DraggingNode``      (node id + pointer offset)
- ``DrawingConnection`` (source node/port + live endpoint)
- ``Panning``           (camera drag origin)

The selection (which drives the property panel) is tracked alongside the
pointer state, so a node can be selected and dragged at once. Every event
handler accepts every state: a pointer-down that arrives mid-gesture first
abandons the stale gesture.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError

from pathgraph.editor.camera import Camera
from pathgraph.editor.geometry import (
    NODE_HEIGHT,
    NODE_WIDTH,
    Point,
    curve_path,
    hit_test,
    nodes_bounds,
    output_port_position,
    snap,
)
from pathgraph.editor.minimap import Minimap, compute_minimap
from pathgraph.editor.panel import (
    ContentItem,
    ContentPicker,
    PanelView,
    build_panel,
    coerce_field_value,
)
from pathgraph.graph_model import CapacityExceeded, PathGraphModel
from pathgraph.models import LrsConfig, PathNode, ValidationResult
from pathgraph.node_types import UnknownNodeType
from pathgraph.storage import PathStore
from pathgraph.validator import GraphValidator

logger = logging.getLogger(__name__)

# screen pixels a press may travel and still count as a click
CLICK_SLOP = 3.0

DELETE_KEYS = ("Delete", "Backspace")


# =========================================================================
# Interaction states
# =========================================================================


class Mode(str, Enum):
    IDLE = "idle"
    DRAGGING_NODE = "dragging_node"
    DRAWING_CONNECTION = "drawing_connection"
    PANNING = "panning"


@dataclass(frozen=True)
class Idle:
    mode = Mode.IDLE


@dataclass(frozen=True)
class DraggingNode:
    node_id: str
    offset_x: float
    offset_y: float
    mode = Mode.DRAGGING_NODE


@dataclass(frozen=True)
class DrawingConnection:
    from_node_id: str
    from_port: str
    origin: Point
    end: Point
    mode = Mode.DRAWING_CONNECTION


@dataclass(frozen=True)
class Panning:
    start_sx: float
    start_sy: float
    origin_x: float
    origin_y: float
    moved: bool = False
    mode = Mode.PANNING


InteractionState = Union[Idle, DraggingNode, DrawingConnection, Panning]


@dataclass
class Notice:
    """A transient message for the author."""

    message: str
    level: str = "info"  # "info" | "success" | "error"


# =========================================================================
# Session
# =========================================================================


@dataclass
class EditorSession:
    model: PathGraphModel
    camera: Camera = field(default_factory=Camera)
    content_items: List[ContentItem] = field(default_factory=list)
    store: Optional[PathStore] = None

    state: InteractionState = field(default_factory=Idle)
    selected_node_id: Optional[str] = None
    dirty: bool = False
    notices: List[Notice] = field(default_factory=list)
    picker: ContentPicker = field(default_factory=ContentPicker)

    _minimap: Optional[Minimap] = field(default=None, init=False, repr=False)
    _minimap_key: Optional[Tuple] = field(default=None, init=False, repr=False)

    # ---------------------------------------------------------------------
    # Views
    # ---------------------------------------------------------------------

    @property
    def mode(self) -> Mode:
        return self.state.mode

    @property
    def transient_curve(self) -> Optional[str]:
        """SVG path of the connection being drawn, if any."""
        if isinstance(self.state, DrawingConnection):
            (x1, y1), (x2, y2) = self.state.origin, self.state.end
            return curve_path(x1, y1, x2, y2)
        return None

    @property
    def minimap(self) -> Minimap:
        """Minimap, recomputed whenever the graph or the camera changed."""
        key = (self.model.revision, self.camera.state())
        if self._minimap is None or key != self._minimap_key:
            self._minimap = compute_minimap(self.model.path, self.model.registry, self.camera)
            self._minimap_key = key
        return self._minimap

    @property
    def panel(self) -> Optional[PanelView]:
        return build_panel(self.model, self.selected_node_id, self.content_items)

    def drain_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices

    # ---------------------------------------------------------------------
    # Pointer events (screen coordinates)
    # ---------------------------------------------------------------------

    def pointer_down(self, sx: float, sy: float) -> None:
        if not isinstance(self.state, Idle):
            logger.debug("pointer_down during %s; abandoning it.", self.mode.value)
            self.state = Idle()

        wx, wy = self.camera.screen_to_world(sx, sy)
        hit = hit_test(self.model.path, self.model.registry, wx, wy)

        if hit.kind == "port":
            if hit.direction == "output":
                node = self.model.get_node(hit.node_id)
                origin = output_port_position(
                    node, self.model.registry.get(node.type), hit.port,
                )
                self.state = DrawingConnection(hit.node_id, hit.port, origin, (wx, wy))
            return

        if hit.kind == "node":
            node = self.model.get_node(hit.node_id)
            self.select(node.id)
            self.state = DraggingNode(node.id, wx - node.x, wy - node.y)
            return

        self.state = Panning(sx, sy, self.camera.x, self.camera.y)

    def pointer_move(self, sx: float, sy: float) -> None:
        state = self.state
        if isinstance(state, DraggingNode):
            wx, wy = self.camera.screen_to_world(sx, sy)
            node = self.model.path.node(state.node_id)
            if node is None:
                self.state = Idle()
                return
            x = snap(wx - state.offset_x)
            y = snap(wy - state.offset_y)
            if (x, y) != (node.x, node.y):
                self.model.move_node(node.id, x, y)
                self.dirty = True
        elif isinstance(state, DrawingConnection):
            self.state = DrawingConnection(
                state.from_node_id, state.from_port, state.origin,
                self.camera.screen_to_world(sx, sy),
            )
        elif isinstance(state, Panning):
            dx = sx - state.start_sx
            dy = sy - state.start_sy
            self.camera.pan_to(
                state.origin_x - dx / self.camera.zoom,
                state.origin_y - dy / self.camera.zoom,
            )
            if not state.moved and max(abs(dx), abs(dy)) > CLICK_SLOP:
                self.state = Panning(
                    state.start_sx, state.start_sy, state.origin_x, state.origin_y, True,
                )

    def pointer_up(self, sx: float, sy: float) -> None:
        state = self.state
        self.state = Idle()

        if isinstance(state, DrawingConnection):
            wx, wy = self.camera.screen_to_world(sx, sy)
            hit = hit_test(self.model.path, self.model.registry, wx, wy)
            if (
                hit.kind == "port"
                and hit.direction == "input"
                and hit.node_id != state.from_node_id
            ):
                self._connect(state.from_node_id, state.from_port, hit.node_id, hit.port)
        elif isinstance(state, Panning) and not state.moved:
            self.select(None)

    def double_click(self, sx: float, sy: float) -> None:
        """Double-clicking a connection removes it."""
        wx, wy = self.camera.screen_to_world(sx, sy)
        hit = hit_test(self.model.path, self.model.registry, wx, wy)
        if hit.kind == "connection" and hit.connection is not None:
            c = hit.connection
            if self.model.remove_connection(c.from_node, c.from_port, c.to_node, c.to_port):
                self.dirty = True

    def wheel(self, sx: float, sy: float, delta_y: float) -> None:
        self.camera.wheel(sx, sy, delta_y)

    def drop(self, sx: float, sy: float, type_id: str) -> Optional[PathNode]:
        """A palette item dropped at screen ``(sx, sy)``: add a node centred there."""
        wx, wy = self.camera.screen_to_world(sx, sy)
        return self.add_node(type_id, wx - NODE_WIDTH / 2, wy - NODE_HEIGHT / 2)

    # ---------------------------------------------------------------------
    # Keyboard
    # ---------------------------------------------------------------------

    def key_down(
        self, key: str, ctrl: bool = False, meta: bool = False, text_focus: bool = False,
    ) -> Optional[str]:
        """Handle a key press; returns the name of the action taken, if any."""
        if key == "Escape":
            self.state = Idle()
            self.picker.close()
            return "cancel"
        if key in DELETE_KEYS and self.selected_node_id and not text_focus:
            self.delete_selected()
            return "delete"
        if (ctrl or meta) and key.lower() == "s":
            if self.store is not None:
                self.save()
            return "save"
        return None

    # ---------------------------------------------------------------------
    # Commands
    # ---------------------------------------------------------------------

    def select(self, node_id: Optional[str]) -> None:
        if node_id is not None and self.model.path.node(node_id) is None:
            node_id = None
        self.selected_node_id = node_id

    def add_node(self, type_id: str, x: float, y: float) -> Optional[PathNode]:
        try:
            node = self.model.add_node(type_id, snap(x), snap(y))
        except UnknownNodeType as exc:
            logger.warning("Dropped unknown node type %r.", type_id)
            self.notify(str(exc), "error")
            return None
        except CapacityExceeded as exc:
            self.notify(str(exc), "error")
            return None
        self.dirty = True
        self.select(node.id)
        return node

    def delete_node(self, node_id: str) -> None:
        if self.model.path.node(node_id) is None:
            return
        self.model.delete_node(node_id)
        if self.selected_node_id == node_id:
            self.selected_node_id = None
        self.state = Idle()
        self.dirty = True

    def delete_selected(self) -> None:
        if self.selected_node_id is not None:
            self.delete_node(self.selected_node_id)
        self.selected_node_id = None
        self.state = Idle()

    def update_field(self, field_name: str, raw: object) -> None:
        """Write a property-panel edit into the selected node."""
        if self.selected_node_id is None:
            return
        node = self.model.get_node(self.selected_node_id)
        definition = self.model.registry.get(node.type)
        fd = definition.get_field(field_name) if definition else None
        value = coerce_field_value(fd, raw) if fd is not None else raw
        self.model.update_node_field(node.id, field_name, value)
        self.dirty = True

    def set_title(self, title: str) -> None:
        self.model.set_title(title)
        self.dirty = True

    def set_lrs_config(self, endpoint: str, key: str, secret: str) -> None:
        self.model.set_lrs_config(LrsConfig(
            endpoint=endpoint.strip(), key=key.strip(), secret=secret.strip(),
        ))
        self.dirty = True
        self.notify("LRS configuration updated", "success")

    def notify(self, message: str, level: str = "info") -> None:
        self.notices.append(Notice(message, level))

    # ---------------------------------------------------------------------
    # Content picker
    # ---------------------------------------------------------------------

    def open_picker(self, field_name: str) -> None:
        if self.selected_node_id is not None:
            self.picker.open(field_name)

    def pick_content(self, content_id: str) -> None:
        self.picker.pick(content_id)

    def confirm_pick(self) -> None:
        if self.picker.field_name and self.picker.selected:
            self.update_field(self.picker.field_name, self.picker.selected)
        self.picker.close()

    # ---------------------------------------------------------------------
    # Camera commands
    # ---------------------------------------------------------------------

    def zoom_in(self) -> None:
        self.camera.zoom_in()

    def zoom_out(self) -> None:
        self.camera.zoom_out()

    def zoom_fit(self) -> None:
        bounds = nodes_bounds(self.model.path.nodes)
        if bounds is not None:
            self.camera.fit(bounds)

    def minimap_click(self, mx: float, my: float, width: float, height: float) -> None:
        """Centre the camera on the world point under a minimap click."""
        wx, wy = self.minimap.to_world(mx, my, width, height)
        self.camera.center_on(wx, wy)

    # ---------------------------------------------------------------------
    # Persistence / validation
    # ---------------------------------------------------------------------

    def save(self) -> bool:
        if self.store is None:
            self.notify("No store attached", "error")
            return False
        try:
            doc = self.store.save(self.model.path)
        except (sqlite3.Error, OSError, ValidationError) as exc:
            logger.error("Save failed: %s", exc)
            self.notify(f"Failed to save: {exc}", "error")
            return False
        self.model.path.id = doc["id"]
        self.model.path.created_at = doc.get("createdAt")
        self.model.path.updated_at = doc.get("updatedAt")
        self.dirty = False
        self.notify("Learning path saved", "success")
        return True

    def validate(self) -> ValidationResult:
        result = GraphValidator(self.model.registry).validate(self.model.path)
        if result.valid:
            self.notify("Learning path is valid!", "success")
        else:
            self.notify("Validation errors:\n" + "\n".join(result.errors), "error")
        return result

    def _connect(self, from_id: str, from_port: str, to_id: str, to_port: str) -> None:
        reason = self.model.check_connection(from_id, from_port, to_id, to_port)
        if reason is not None:
            if reason != "Connection already exists":
                self.notify(reason, "error")
            return
        if self.model.add_connection(from_id, from_port, to_id, to_port):
            self.dirty = True
