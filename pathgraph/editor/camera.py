"""
2-D camera for the authoring canvas: pan offset + zoom factor.

``(x, y)`` is the world coordinate shown at the viewport's top-left
corner; one world unit spans ``zoom`` screen pixels. The viewport size is
in screen pixels.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from pathgraph.editor.geometry import Bounds

logger = logging.getLogger(__name__)

MIN_ZOOM = 0.2
MAX_ZOOM = 5.0
WHEEL_FACTOR = 1.1
BUTTON_FACTOR = 1.25
FIT_PADDING = 80.0

DEFAULT_ORIGIN = (-200.0, -100.0)
DEFAULT_VIEWPORT = (1600.0, 900.0)


def clamp_zoom(zoom: float) -> float:
    return max(MIN_ZOOM, min(MAX_ZOOM, zoom))


@dataclass
class Camera:
    x: float = DEFAULT_ORIGIN[0]
    y: float = DEFAULT_ORIGIN[1]
    zoom: float = 1.0
    viewport_width: float = DEFAULT_VIEWPORT[0]
    viewport_height: float = DEFAULT_VIEWPORT[1]

    # ---------------------------------------------------------------------
    # Transforms
    # ---------------------------------------------------------------------

    def screen_to_world(self, sx: float, sy: float) -> Tuple[float, float]:
        return self.x + sx / self.zoom, self.y + sy / self.zoom

    def world_to_screen(self, wx: float, wy: float) -> Tuple[float, float]:
        return (wx - self.x) * self.zoom, (wy - self.y) * self.zoom

    @property
    def view_bounds(self) -> Bounds:
        """The world-space rectangle currently visible."""
        return Bounds(
            self.x,
            self.y,
            self.x + self.viewport_width / self.zoom,
            self.y + self.viewport_height / self.zoom,
        )

    @property
    def zoom_label(self) -> str:
        return f"{round(self.zoom * 100)}%"

    def state(self) -> Tuple[float, float, float, float, float]:
        return (self.x, self.y, self.zoom, self.viewport_width, self.viewport_height)

    # ---------------------------------------------------------------------
    # Movement
    # ---------------------------------------------------------------------

    def resize(self, width: float, height: float) -> None:
        self.viewport_width = width
        self.viewport_height = height

    def pan_to(self, x: float, y: float) -> None:
        self.x = x
        self.y = y

    def zoom_at(self, sx: float, sy: float, new_zoom: float) -> None:
        """Rescale around screen point ``(sx, sy)`` keeping its world point fixed."""
        wx, wy = self.screen_to_world(sx, sy)
        self.zoom = clamp_zoom(new_zoom)
        self.x = wx - sx / self.zoom
        self.y = wy - sy / self.zoom

    def wheel(self, sx: float, sy: float, delta_y: float) -> None:
        """Scroll down zooms out, scroll up zooms in."""
        if delta_y == 0:
            return
        factor = 1 / WHEEL_FACTOR if delta_y > 0 else WHEEL_FACTOR
        self.zoom_at(sx, sy, self.zoom * factor)

    def zoom_in(self) -> None:
        self.zoom_at(self.viewport_width / 2, self.viewport_height / 2, self.zoom * BUTTON_FACTOR)

    def zoom_out(self) -> None:
        self.zoom_at(self.viewport_width / 2, self.viewport_height / 2, self.zoom / BUTTON_FACTOR)

    def fit(self, bounds: Bounds, padding: float = FIT_PADDING) -> None:
        """Zoom and centre so *bounds* (plus *padding*) fills the viewport."""
        padded = bounds.pad(padding)
        self.zoom = clamp_zoom(min(
            self.viewport_width / padded.width,
            self.viewport_height / padded.height,
        ))
        cx, cy = padded.center
        self.x = cx - self.viewport_width / (2 * self.zoom)
        self.y = cy - self.viewport_height / (2 * self.zoom)
        logger.debug("Camera fit to %s at zoom %.2f.", padded, self.zoom)

    def center_on(self, wx: float, wy: float) -> None:
        self.x = wx - self.viewport_width / (2 * self.zoom)
        self.y = wy - self.viewport_height / (2 * self.zoom)
