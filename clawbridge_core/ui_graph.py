"""Convert freeform agent UI payloads into structured surface operations.

Agents describe UI loosely, e.g.::

    {"type": "table", "columns": ["A", "B"], "rows": [["1", "2"]]}
    {"type": "createSurface", "id": "x", "content": {"type": "Table", ...}}
    {"surfaceUpdate": {...}}   (already structured)

The renderer accepts exactly four operations::

    {"surfaceUpdate": {"surfaceId", "components": [{"id", "component": {Type: props}}]}}
    {"beginRendering": {"surfaceId", "root"}}
    {"dataModelUpdate": {"surfaceId", ...}}
    {"deleteSurface": {"surfaceId"}}

Scalar properties are wrapped as ``literalString`` / ``literalNumber`` /
``literalBoolean``; children become ``{"explicitList": [ids]}``. Widgets the
renderer lacks (Table, Progress, CodeBlock) are decomposed into Text, Divider
and Column primitives.

Component ids are unique within one ``convert`` call; every referenced child
id is emitted in the same call.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .config import DEFAULT_SURFACE_ID

_LOGGER = logging.getLogger(__name__)

OP_SURFACE_UPDATE = "surfaceUpdate"
OP_BEGIN_RENDERING = "beginRendering"
OP_DATA_MODEL_UPDATE = "dataModelUpdate"
OP_DELETE_SURFACE = "deleteSurface"

STRUCTURED_OPERATIONS = (
    OP_SURFACE_UPDATE,
    OP_BEGIN_RENDERING,
    OP_DATA_MODEL_UPDATE,
    OP_DELETE_SURFACE,
)

CELL_SEPARATOR = " │ "
BAR_WIDTH = 20
BAR_FILLED = "█"
BAR_EMPTY = "░"
DEFAULT_TITLE = "Canvas"

# Field aliases accepted for the same concept, tried in order. Tuples are
# key paths into the payload.
ALIASES: dict[str, tuple[tuple[str, ...], ...]] = {
    "surface_id": (("id",), ("surface", "id"), ("surfaceId",)),
    "component_list": (("components",), ("surface", "components")),
    "single_component": (("component",), ("content",), ("body",), ("ui",)),
    "column_label": (("label",), ("title",), ("header",), ("name",), ("key",)),
    "title_text": (("title",), ("text",), ("label",)),
    "code": (("code",), ("content",), ("text",)),
    "language": (("language",), ("lang",)),
}

TITLE_TYPES = frozenset({"page", "header", "title"})
FRAME_TYPES = frozenset({"event", "res", "req"})
CREATE_SURFACE = "createSurface"


def resolve_alias(raw: dict[str, Any], concept: str) -> Any:
    """Return the first non-null value among the aliases for ``concept``."""
    for path in ALIASES[concept]:
        value: Any = raw
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None
        if value is not None:
            return value
    return None


# --------------------------------------------------------------------------
# Values and components
# --------------------------------------------------------------------------


def wrap_value(value: Any) -> Any:
    """Wrap a scalar leaf property for the renderer."""
    if value is None:
        return {"literalString": ""}
    if isinstance(value, bool):
        return {"literalBoolean": value}
    if isinstance(value, str):
        return {"literalString": value}
    if isinstance(value, (int, float)):
        return {"literalNumber": value}
    # Nested structures are references the renderer resolves itself.
    return value


def stringify(value: Any) -> str:
    """Render a cell or label value as display text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


class IdAllocator:
    """Batch-scoped component id counter."""

    def __init__(self) -> None:
        self._counter = 0

    def next(self, prefix: str = "c") -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"


@dataclass(frozen=True)
class ComponentNode:
    """One renderer component with wrapped properties."""

    id: str
    type_name: str
    properties: dict[str, Any] = field(default_factory=lambda: {})
    child_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        props = dict(self.properties)
        if self.child_ids:
            props["children"] = {"explicitList": list(self.child_ids)}
        return {"id": self.id, "component": {self.type_name: props}}


def make_component(
    node_id: str,
    type_name: str,
    props: dict[str, Any],
    child_ids: Sequence[str] = (),
) -> ComponentNode:
    wrapped = {
        key: wrap_value(value)
        for key, value in props.items()
        if key not in ("type", "id", "children")
    }
    return ComponentNode(node_id, type_name, wrapped, tuple(child_ids))


@dataclass
class Extraction:
    """Components produced for one freeform subtree, root last."""

    components: list[ComponentNode]
    root_id: str


# --------------------------------------------------------------------------
# Parsed input variants
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class StructuredMessage:
    raw: dict[str, Any]


@dataclass(frozen=True)
class CreateSurfaceMessage:
    surface_id: str
    components: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class BareComponent:
    raw: dict[str, Any]


@dataclass(frozen=True)
class UnknownMessage:
    raw: Any


UIMessage = StructuredMessage | CreateSurfaceMessage | BareComponent | UnknownMessage


def is_structured(raw: Any) -> bool:
    return isinstance(raw, dict) and any(key in raw for key in STRUCTURED_OPERATIONS)


def _is_frame(raw: dict[str, Any]) -> bool:
    raw_type = raw.get("type")
    return isinstance(raw_type, str) and raw_type in FRAME_TYPES


def parse_message(raw: Any) -> UIMessage:
    """Classify one payload object."""
    if not isinstance(raw, dict):
        return UnknownMessage(raw)

    if is_structured(raw):
        return StructuredMessage(raw)

    wrapper = raw.get(CREATE_SURFACE)
    if raw.get("type") == CREATE_SURFACE or wrapper:
        body = wrapper if isinstance(wrapper, dict) else raw
        surface_id = resolve_alias(body, "surface_id")
        components = resolve_alias(body, "component_list")
        if not isinstance(components, list):
            single = resolve_alias(body, "single_component")
            components = [single] if isinstance(single, dict) else []
        return CreateSurfaceMessage(
            surface_id=stringify(surface_id) if surface_id is not None else DEFAULT_SURFACE_ID,
            components=tuple(c for c in components if isinstance(c, dict)),
        )

    if isinstance(raw.get("type"), str) and not _is_frame(raw):
        return BareComponent(raw)

    return UnknownMessage(raw)


# --------------------------------------------------------------------------
# Extraction and decomposition
# --------------------------------------------------------------------------


def _type_name(raw: dict[str, Any]) -> str:
    raw_type = raw.get("type")
    if not isinstance(raw_type, str) or not raw_type:
        return "Text"
    return raw_type[0].upper() + raw_type[1:]


def extract_components(raw: dict[str, Any], ids: IdAllocator) -> Extraction:
    """Flatten a freeform component tree, children before their parent."""
    raw_id = raw.get("id")
    if raw_id is not None:
        node_id = stringify(raw_id)
    else:
        node_id = ids.next()

    components: list[ComponentNode] = []
    child_ids: list[str] = []
    raw_children = raw.get("children")
    if isinstance(raw_children, list):
        for child in raw_children:
            if isinstance(child, dict):
                result = extract_components(child, ids)
                components.extend(result.components)
                child_ids.append(result.root_id)

    mapped = _decompose(_type_name(raw), raw, node_id, child_ids, ids)
    components.extend(mapped.components)
    return Extraction(components, mapped.root_id)


def _decompose(
    type_name: str,
    raw: dict[str, Any],
    node_id: str,
    child_ids: list[str],
    ids: IdAllocator,
) -> Extraction:
    if type_name == "Table":
        return table_components(raw, node_id, ids)
    if type_name == "Progress":
        return progress_components(raw, node_id)
    if type_name in ("Codeblock", "CodeBlock"):
        return code_block_components(raw, node_id)
    return Extraction([make_component(node_id, type_name, raw, child_ids)], node_id)


def _column_label(column: Any) -> str:
    if isinstance(column, str):
        return column
    if isinstance(column, dict):
        return stringify(resolve_alias(column, "column_label"))
    return stringify(column)


def _row_cells(row: Any, columns: list[Any]) -> list[str]:
    if isinstance(row, list):
        return [stringify(value) for value in row]
    if isinstance(row, dict):
        if columns and isinstance(columns[0], dict):
            keys = [
                stringify(column.get("key")) if isinstance(column, dict) else ""
                for column in columns
            ]
            return [stringify(row.get(key)) for key in keys]
        return [stringify(value) for value in row.values()]
    return [stringify(row)]


def table_components(raw: dict[str, Any], node_id: str, ids: IdAllocator) -> Extraction:
    """Header line, divider and one text line per row inside a Column."""
    columns = raw.get("columns")
    columns = columns if isinstance(columns, list) else []
    rows = raw.get("rows")
    rows = rows if isinstance(rows, list) else []

    components: list[ComponentNode] = []
    line_ids: list[str] = []

    labels = [_column_label(column) for column in columns]
    if labels:
        header_id = ids.next("hdr")
        components.append(
            make_component(
                header_id,
                "Text",
                {"text": CELL_SEPARATOR.join(labels), "usageHint": "h3"},
            )
        )
        line_ids.append(header_id)

        divider_id = ids.next("div")
        components.append(make_component(divider_id, "Divider", {}))
        line_ids.append(divider_id)

    for row in rows:
        row_id = ids.next("row")
        components.append(
            make_component(
                row_id,
                "Text",
                {"text": CELL_SEPARATOR.join(_row_cells(row, columns)), "usageHint": "body"},
            )
        )
        line_ids.append(row_id)

    components.append(make_component(node_id, "Column", {}, line_ids))
    return Extraction(components, node_id)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _as_number(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def progress_percent(value: Any, maximum: Any) -> int:
    """Percentage of ``value`` over ``maximum``, clamped to 0..100."""
    current = _as_number(value, 0.0)
    limit = _as_number(maximum, 100.0)
    if limit <= 0:
        return 100 if current > 0 else 0
    ratio = min(1.0, max(0.0, current / limit))
    return _round_half_up(ratio * 100)


def progress_bar(percent: int) -> str:
    filled = _round_half_up(percent / 5)
    return BAR_FILLED * filled + BAR_EMPTY * (BAR_WIDTH - filled)


def progress_components(raw: dict[str, Any], node_id: str) -> Extraction:
    """Single Text: label line then a 20-glyph bar."""
    percent = progress_percent(raw.get("value"), raw.get("max"))
    label = stringify(raw["label"]) if raw.get("label") else f"{percent}%"
    text = f"{label}\n{progress_bar(percent)}"
    return Extraction(
        [make_component(node_id, "Text", {"text": text, "usageHint": "body"})],
        node_id,
    )


def code_block_components(raw: dict[str, Any], node_id: str) -> Extraction:
    """Single Text with the code, prefixed by filename or language."""
    code = stringify(resolve_alias(raw, "code"))
    language = resolve_alias(raw, "language")
    filename = raw.get("filename")

    if filename:
        prefix = stringify(filename)
    elif language:
        prefix = f"[{stringify(language)}]"
    else:
        prefix = ""

    text = f"{prefix}\n{code}" if prefix else code
    return Extraction(
        [make_component(node_id, "Text", {"text": text, "usageHint": "body"})],
        node_id,
    )


# --------------------------------------------------------------------------
# Operations
# --------------------------------------------------------------------------


def surface_operations(
    surface_id: str, components: Iterable[ComponentNode], root_id: str
) -> list[dict[str, Any]]:
    return [
        {
            OP_SURFACE_UPDATE: {
                "surfaceId": surface_id,
                "components": [component.to_dict() for component in components],
            }
        },
        {OP_BEGIN_RENDERING: {"surfaceId": surface_id, "root": root_id}},
    ]


def delete_surface_operation(surface_id: str = DEFAULT_SURFACE_ID) -> dict[str, Any]:
    return {OP_DELETE_SURFACE: {"surfaceId": surface_id}}


class UIGraphConverter:
    """Turn batches of freeform UI payloads into structured operations.

    Stateless: every call allocates its own ids, so one instance may be
    shared between callers.
    """

    def convert(self, payloads: Sequence[Any]) -> list[dict[str, Any]]:
        """Convert one batch.

        - every payload already structured: returned unchanged
        - some structured or createSurface payloads: converted one by one
        - only bare components: one surface with a title and a root Column
        """
        if not payloads:
            return []

        messages = [parse_message(raw) for raw in payloads]

        if all(isinstance(message, StructuredMessage) for message in messages):
            return list(payloads)

        ids = IdAllocator()

        if any(
            isinstance(message, (StructuredMessage, CreateSurfaceMessage))
            for message in messages
        ):
            operations: list[dict[str, Any]] = []
            for message in messages:
                operations.extend(self._convert_one(message, ids))
            return operations

        return self._convert_bare_batch(messages, ids)

    def convert_jsonl(self, text: str) -> list[dict[str, Any]]:
        """Parse JSON Lines and convert the resulting batch.

        Unparseable lines are logged and skipped.
        """
        parsed: list[Any] = []
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                parsed.append(json.loads(line))
            except ValueError:
                _LOGGER.warning("Failed to parse JSONL line: %s", line[:200])
        return self.convert(parsed)

    def _convert_one(self, message: UIMessage, ids: IdAllocator) -> list[dict[str, Any]]:
        if isinstance(message, StructuredMessage):
            return [message.raw]

        if isinstance(message, CreateSurfaceMessage):
            if not message.components:
                _LOGGER.warning(
                    "createSurface %s has no components, skipping", message.surface_id
                )
                return []

            components: list[ComponentNode] = []
            top_level_ids: list[str] = []
            for raw in message.components:
                result = extract_components(raw, ids)
                components.extend(result.components)
                top_level_ids.append(result.root_id)

            if len(top_level_ids) == 1:
                root_id = top_level_ids[0]
            else:
                root_id = ids.next("root")
                components.append(make_component(root_id, "Column", {}, top_level_ids))
            return surface_operations(message.surface_id, components, root_id)

        if isinstance(message, BareComponent):
            result = extract_components(message.raw, ids)
            root_id = ids.next("root")
            components = [
                *result.components,
                make_component(root_id, "Column", {}, [result.root_id]),
            ]
            return surface_operations(DEFAULT_SURFACE_ID, components, root_id)

        self._log_unknown(message)
        return []

    def _convert_bare_batch(
        self, messages: list[UIMessage], ids: IdAllocator
    ) -> list[dict[str, Any]]:
        components: list[ComponentNode] = []
        top_level_ids: list[str] = []
        title = DEFAULT_TITLE

        for message in messages:
            raw = getattr(message, "raw", None)
            if not isinstance(raw, dict) or _is_frame(raw):
                self._log_unknown(message)
                continue

            if isinstance(raw.get("type"), str) and raw["type"] in TITLE_TYPES:
                value = resolve_alias(raw, "title_text")
                if value is not None:
                    title = stringify(value)
                continue

            result = extract_components(raw, ids)
            components.extend(result.components)
            top_level_ids.append(result.root_id)

        if not top_level_ids:
            return []

        title_id = ids.next("title")
        components.append(
            make_component(title_id, "Text", {"text": title, "usageHint": "h1"})
        )
        root_id = ids.next("root")
        components.append(
            make_component(root_id, "Column", {}, [title_id, *top_level_ids])
        )
        return surface_operations(DEFAULT_SURFACE_ID, components, root_id)

    @staticmethod
    def _log_unknown(message: UIMessage) -> None:
        raw = getattr(message, "raw", None)
        keys = ",".join(str(key) for key in raw) if isinstance(raw, dict) else type(raw).__name__
        _LOGGER.warning("Skipping unknown UI message format, keys=%s", keys)
