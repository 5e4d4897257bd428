"""Headless authoring surface: camera, hit testing, minimap, panel, session."""

from pathgraph.editor.camera import Camera
from pathgraph.editor.minimap import Minimap, compute_minimap
from pathgraph.editor.panel import ContentItem, ContentPicker, PanelView, build_panel
from pathgraph.editor.session import EditorSession, Mode, Notice

__all__ = [
    "Camera",
    "ContentItem",
    "ContentPicker",
    "EditorSession",
    "Minimap",
    "Mode",
    "Notice",
    "PanelView",
    "build_panel",
    "compute_minimap",
]
