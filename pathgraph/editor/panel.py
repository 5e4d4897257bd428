"""
Side property panel for the selected node, and the content-reference picker.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from pathgraph.graph_model import PathGraphModel
from pathgraph.models import START_TYPE, FieldDefinition

logger = logging.getLogger(__name__)


@dataclass
class ContentItem:
    """One entry of the external content catalog offered by the picker."""

    id: str
    title: str


@dataclass
class PanelField:
    name: str
    label: str
    kind: str
    value: Any
    required: bool = False
    options: List[str] = field(default_factory=list)
    # resolved title of a picked content reference
    display: Optional[str] = None


@dataclass
class PanelView:
    node_id: str
    type_id: str
    heading: str
    fields: List[PanelField]
    can_delete: bool


def coerce_field_value(fd: FieldDefinition, raw: Any) -> Any:
    """Convert raw widget input the way the field's kind implies."""
    if fd.kind == "number":
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return None
        try:
            number = float(raw)
        except (TypeError, ValueError):
            return None
        return int(number) if number.is_integer() else number
    if fd.kind == "checkbox":
        if isinstance(raw, str):
            return raw.strip().lower() in ("1", "true", "on", "yes")
        return bool(raw)
    if raw is None:
        return ""
    return raw if isinstance(raw, str) else str(raw)


def build_panel(
    model: PathGraphModel,
    node_id: Optional[str],
    content_items: Optional[List[ContentItem]] = None,
) -> Optional[PanelView]:
    """The panel for *node_id*, or ``None`` when nothing is selected."""
    if node_id is None:
        return None
    node = model.path.node(node_id)
    if node is None:
        return None

    definition = model.registry.get(node.type)
    titles = {str(item.id): item.title for item in content_items or []}
    fields: List[PanelField] = []
    for fd in definition.fields if definition else []:
        value = node.data.get(fd.name)
        if value is None:
            value = fd.default if fd.default is not None else ""
        pf = PanelField(
            name=fd.name,
            label=fd.label,
            kind=fd.kind,
            value=value,
            required=fd.required,
            options=list(fd.options or []),
        )
        if fd.kind == "content-reference" and value:
            pf.display = titles.get(str(value), str(value))
        fields.append(pf)

    sole_start = node.type == START_TYPE and model.count_type(START_TYPE) <= 1
    heading = f"{definition.icon} {definition.label}" if definition else node.type
    return PanelView(
        node_id=node.id,
        type_id=node.type,
        heading=heading,
        fields=fields,
        can_delete=not sole_start,
    )


@dataclass
class ContentPicker:
    """Modal picker state: which field it writes to and the pending choice."""

    field_name: Optional[str] = None
    selected: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.field_name is not None

    def open(self, field_name: str) -> None:
        self.field_name = field_name
        self.selected = None

    def pick(self, content_id: str) -> None:
        if self.is_open:
            self.selected = str(content_id)

    def close(self) -> None:
        self.field_name = None
        self.selected = None
