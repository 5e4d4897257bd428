"""
Node-type registry: the static catalog of learning-path step schemas.

Every other component (graph model, validator, editor, player) resolves
ports, fields and instance caps through this table rather than switching
on the type id, so adding a node type means adding one entry below.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from pathgraph.models import FieldDefinition, NodeTypeDefinition

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    "control": "Flow Control",
    "content": "Content Nodes",
    "package": "Package Nodes",
}


class UnknownNodeType(KeyError):
    """Raised when a node type id is not in the registry."""

    def __init__(self, type_id: str) -> None:
        self.type_id = type_id
        super().__init__(type_id)

    def __str__(self) -> str:
        return f"Unknown node type: {self.type_id}"


# =========================================================================
# Built-in catalog
# =========================================================================


def _f(name: str, kind: str, label: str, **kwargs: Any) -> FieldDefinition:
    return FieldDefinition(name=name, kind=kind, label=label, **kwargs)


_TITLE = _f("title", "text", "Title", required=True)
_DESCRIPTION = _f("description", "textarea", "Description")


def _minutes(default: int) -> FieldDefinition:
    return _f("estimatedMinutes", "number", "Estimated Duration (min)", default=default)


def _passing(default: int) -> FieldDefinition:
    return _f("passingScore", "number", "Passing Score (%)", default=default)


BUILTIN_NODE_TYPES: List[NodeTypeDefinition] = [
    # --- control: start / end ---
    NodeTypeDefinition(
        id="start", label="Start", category="control",
        color="#4CAF50", icon="▶", max_instances=1,
        inputs=[], outputs=["next"], fields=[],
    ),
    NodeTypeDefinition(
        id="end", label="End", category="control",
        color="#f44336", icon="⏹", max_instances=1,
        inputs=["prev"], outputs=[],
        fields=[
            _f("completionMessage", "text", "Completion Message",
               default="Congratulations! You have completed this learning path."),
        ],
    ),
    # --- content ---
    NodeTypeDefinition(
        id="theory", label="Theory Unit", category="content",
        color="#2196F3", icon="📖", inputs=["prev"], outputs=["next"],
        fields=[
            _TITLE, _DESCRIPTION,
            _f("content", "richtext", "Content (HTML)"),
            _minutes(15), _passing(0),
        ],
    ),
    NodeTypeDefinition(
        id="guidedLab", label="Guided Lab", category="content",
        color="#FF9800", icon="🔬", inputs=["prev"], outputs=["next"],
        fields=[
            _TITLE, _DESCRIPTION,
            _f("labUrl", "url", "Lab Environment URL"),
            _f("instructions", "richtext", "Instructions (HTML)"),
            _minutes(45), _passing(70),
        ],
    ),
    NodeTypeDefinition(
        id="wiki", label="Wiki Page", category="content",
        color="#9C27B0", icon="📝", inputs=["prev"], outputs=["next"],
        fields=[
            _TITLE, _DESCRIPTION,
            _f("content", "richtext", "Wiki Content (HTML)"),
            _minutes(10),
        ],
    ),
    NodeTypeDefinition(
        id="url", label="Website URL", category="content",
        color="#00BCD4", icon="🌐", inputs=["prev"], outputs=["next"],
        fields=[
            _TITLE, _DESCRIPTION,
            _f("url", "url", "URL", required=True),
            _f("openInNewTab", "checkbox", "Open in new tab", default=False),
            _minutes(10),
        ],
    ),
    # --- packages ---
    NodeTypeDefinition(
        id="h5p", label="H5P Package", category="package",
        color="#1a73e8", icon="🎓", inputs=["prev"], outputs=["next"],
        fields=[
            _TITLE, _DESCRIPTION,
            _f("h5pContentId", "content-reference", "H5P Content"),
            _minutes(20), _passing(70),
        ],
    ),
    NodeTypeDefinition(
        id="cmi5", label="cmi5 Package", category="package",
        color="#E91E63", icon="📦", inputs=["prev"], outputs=["next"],
        fields=[
            _TITLE, _DESCRIPTION,
            _f("packageUrl", "url", "Package URL / Launch URL", required=True),
            _f("activityId", "text", "Activity ID (IRI)"),
            _f("moveOn", "select", "Move On Criteria",
               options=["Completed", "Passed", "CompletedOrPassed",
                        "CompletedAndPassed", "NotApplicable"],
               default="CompletedOrPassed"),
            _f("masteryScore", "number", "Mastery Score (%)", default=70),
            _minutes(30),
        ],
    ),
    NodeTypeDefinition(
        id="scorm", label="SCORM Package", category="package",
        color="#795548", icon="📚", inputs=["prev"], outputs=["next"],
        fields=[
            _TITLE, _DESCRIPTION,
            _f("packageUrl", "url", "SCORM Package URL / Launch URL", required=True),
            _f("scormVersion", "select", "SCORM Version",
               options=["1.2", "2004 3rd Edition", "2004 4th Edition"],
               default="2004 4th Edition"),
            _passing(70), _minutes(30),
        ],
    ),
    # --- flow control ---
    NodeTypeDefinition(
        id="gate", label="Gate (Pass Required)", category="control",
        color="#FF5722", icon="🚧", inputs=["prev"], outputs=["pass", "fail"],
        fields=[
            _f("title", "text", "Gate Title", default="Progress Check"),
            _f("requiredScore", "number", "Required Score (%)", default=70),
        ],
    ),
    NodeTypeDefinition(
        id="branch", label="Branch", category="control",
        color="#607D8B", icon="🔀", inputs=["prev"], outputs=["pathA", "pathB"],
        fields=[
            _f("title", "text", "Branch Title"),
            _f("conditionType", "select", "Condition",
               options=["score-based", "learner-choice", "random"],
               default="learner-choice"),
            _f("pathALabel", "text", "Path A Label", default="Path A"),
            _f("pathBLabel", "text", "Path B Label", default="Path B"),
        ],
    ),
]


# =========================================================================
# Registry
# =========================================================================


class NodeTypeRegistry:
    """Immutable lookup table ``type id → NodeTypeDefinition``."""

    def __init__(self, definitions: Iterable[NodeTypeDefinition]) -> None:
        table: Dict[str, NodeTypeDefinition] = {}
        for definition in definitions:
            if definition.id in table:
                raise ValueError(f"Duplicate node type id: {definition.id}")
            table[definition.id] = definition
        self._types: Mapping[str, NodeTypeDefinition] = MappingProxyType(table)
        logger.debug("Node-type registry loaded with %d types.", len(table))

    def get(self, type_id: str) -> Optional[NodeTypeDefinition]:
        return self._types.get(type_id)

    def require(self, type_id: str) -> NodeTypeDefinition:
        """Like :meth:`get` but raises :class:`UnknownNodeType`."""
        definition = self._types.get(type_id)
        if definition is None:
            raise UnknownNodeType(type_id)
        return definition

    def list(self) -> Dict[str, List[NodeTypeDefinition]]:
        """All definitions grouped by category, in declaration order."""
        grouped: Dict[str, List[NodeTypeDefinition]] = {}
        for definition in self._types.values():
            grouped.setdefault(definition.category, []).append(definition)
        return grouped

    def palette(self) -> List[Dict[str, Any]]:
        """Palette sections: ``[{category, label, items: [...]}, ...]``."""
        return [
            {
                "category": category,
                "label": CATEGORY_LABELS.get(category, category),
                "items": [
                    {"type": d.id, "label": d.label, "icon": d.icon, "color": d.color}
                    for d in items
                ],
            }
            for category, items in self.list().items()
        ]

    def as_table(self) -> Dict[str, Dict[str, Any]]:
        """The verbatim JSON catalog served to clients."""
        return {
            type_id: d.model_dump(by_alias=True, mode="json")
            for type_id, d in self._types.items()
        }

    def label_for(self, type_id: str) -> str:
        definition = self._types.get(type_id)
        return definition.label if definition else type_id

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._types

    def __iter__(self) -> Iterator[NodeTypeDefinition]:
        return iter(self._types.values())

    def __len__(self) -> int:
        return len(self._types)


_DEFAULT: Optional[NodeTypeRegistry] = None  # lazy singleton


def default_registry() -> NodeTypeRegistry:
    """Return the registry over the built-in catalog (built once)."""
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = NodeTypeRegistry(BUILTIN_NODE_TYPES)
    return _DEFAULT
