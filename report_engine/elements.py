"""Element model for report templates.

A template canvas holds two disjoint kinds of element:

- ``StaticElement``: fixed content (titles, headers, labels) rendered verbatim
  after HTML escaping.
- ``DynamicField``: a ``{{fieldName}}`` placeholder bound to a data mapping
  key and filled in at report-generation time.

``Element`` is the tagged union of both. Elements are frozen dataclasses;
edits produce new instances through ``update_element`` so that an element
can never change its id or switch between the static and dynamic variants.

Wire format
-----------
Elements are persisted with the camelCase keys used by the template store::

    {"id": "title-1", "type": "text", "content": "...", "isDynamic": false,
     "position": {"x": 100, "y": 50}, "size": {"width": 400, "height": 40},
     "style": {"fontSize": 24, "fontWeight": "bold", ...}}

    {"id": "field-1", "fieldName": "field_1", "fieldType": "text",
     "label": "Text Field", "required": false, "isDynamic": true,
     "position": {...}, "size": {...}, "dataMapping": "patient.name"}

The transient ``isEditing`` flag is never written.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .enums import ElementType, FieldType, FontWeight, TextAlign
from .geometry import Position, Size
from .utils import (
    field_name_from_label,
    is_valid_field_name,
    new_element_id,
    string_or_empty,
)

LOG = logging.getLogger(__name__)

DEFAULT_FONT_SIZE = 14
DEFAULT_FONT_WEIGHT = FontWeight.NORMAL
DEFAULT_TEXT_ALIGN = TextAlign.LEFT
DEFAULT_COLOR = "#333333"

DEFAULT_STATIC_SIZE = Size(200, 30)
DEFAULT_FIELD_SIZE = Size(200, 30)
DEFAULT_SELECT_OPTIONS = ("Option 1", "Option 2")

# Keys accepted by update_element in their wire (camelCase) spelling
_ALIASES = {
    "fieldName": "field_name",
    "fieldType": "field_type",
    "dataMapping": "data_mapping",
    "isEditing": "is_editing",
}
_IMMUTABLE_KEYS = {"id", "is_dynamic", "isDynamic", "kind"}

_STYLE_ALIASES = {
    "fontSize": "font_size",
    "fontWeight": "font_weight",
    "textAlign": "text_align",
}


@dataclass(frozen=True)
class ElementStyle:
    """Text styling for a static element; unset fields use renderer defaults."""

    font_size: Optional[float] = None
    font_weight: Optional[FontWeight] = None
    text_align: Optional[TextAlign] = None
    color: Optional[str] = None

    def with_defaults(self) -> "ElementStyle":
        return ElementStyle(
            font_size=self.font_size if self.font_size is not None else DEFAULT_FONT_SIZE,
            font_weight=self.font_weight or DEFAULT_FONT_WEIGHT,
            text_align=self.text_align or DEFAULT_TEXT_ALIGN,
            color=self.color or DEFAULT_COLOR,
        )

    def merged(self, updates: Mapping[str, Any]) -> "ElementStyle":
        """Return a copy with the given style keys replaced.

        Accepts snake_case or camelCase keys. ``None`` clears a key back to
        its renderer default.

        Raises
        ------
        ValueError
            If a key is not a style property or a value is invalid.
        """
        current = {
            "font_size": self.font_size,
            "font_weight": self.font_weight,
            "text_align": self.text_align,
            "color": self.color,
        }
        for key, value in updates.items():
            name = _STYLE_ALIASES.get(key, key)
            if name not in current:
                raise ValueError(
                    f"Unknown style property: {key}. "
                    f"Valid options: {', '.join(sorted(current))}"
                )
            current[name] = value
        return style_from_dict(current)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.font_size is not None:
            data["fontSize"] = self.font_size
        if self.font_weight is not None:
            data["fontWeight"] = self.font_weight.value
        if self.text_align is not None:
            data["textAlign"] = self.text_align.value
        if self.color is not None:
            data["color"] = self.color
        return data


def style_from_dict(data: Mapping[str, Any] | None) -> ElementStyle:
    """Build an ElementStyle from a camelCase or snake_case mapping."""
    if not data:
        return ElementStyle()
    if not isinstance(data, Mapping):
        raise ValueError(f"style must be a mapping, got {type(data).__name__}")

    def pick(camel: str, snake: str) -> Any:
        return data.get(camel, data.get(snake))

    font_size = pick("fontSize", "font_size")
    if font_size is not None and (
        isinstance(font_size, bool) or not isinstance(font_size, (int, float))
    ):
        raise ValueError(
            f"fontSize must be a number, got {type(font_size).__name__}"
        )
    if font_size is not None and not math.isfinite(font_size):
        raise ValueError(f"fontSize must be finite, got {font_size}")

    font_weight = pick("fontWeight", "font_weight")
    if font_weight is not None and not isinstance(font_weight, FontWeight):
        font_weight = FontWeight.from_string(str(font_weight))

    text_align = pick("textAlign", "text_align")
    if text_align is not None and not isinstance(text_align, TextAlign):
        text_align = TextAlign.from_string(str(text_align))

    color = data.get("color")
    return ElementStyle(
        font_size=font_size,
        font_weight=font_weight,
        text_align=text_align,
        color=str(color) if color is not None else None,
    )


@dataclass(frozen=True)
class StaticElement:
    """Fixed, non-data-driven content on the canvas."""

    id: str
    type: ElementType = ElementType.TEXT
    content: str = ""
    position: Position = field(default_factory=Position)
    size: Size = DEFAULT_STATIC_SIZE
    style: ElementStyle = field(default_factory=ElementStyle)
    is_editing: bool = False

    @property
    def is_dynamic(self) -> bool:
        return False


@dataclass(frozen=True)
class DynamicField:
    """Placeholder bound to a data-mapping key.

    ``data_mapping`` is a dotted path (``patient.name``), the literal
    ``custom``, a system key (``test_date``/``report_date``), or the empty
    string meaning "unmapped". A template cannot be saved while any field is
    unmapped.
    """

    id: str
    field_name: str
    field_type: FieldType = FieldType.TEXT
    label: str = ""
    placeholder: str = ""
    required: bool = False
    options: Tuple[str, ...] = ()
    position: Position = field(default_factory=Position)
    size: Size = DEFAULT_FIELD_SIZE
    data_mapping: str = ""

    @property
    def is_dynamic(self) -> bool:
        return True

    @property
    def is_mapped(self) -> bool:
        return bool(self.data_mapping)


Element = Union[StaticElement, DynamicField]


def create_static_element(
    content: str = "",
    position: Position | None = None,
    size: Size | None = None,
    style: ElementStyle | Mapping[str, Any] | None = None,
    *,
    element_type: ElementType = ElementType.TEXT,
    is_editing: bool = False,
) -> StaticElement:
    """Create a static element with a fresh id and fully defaulted style.

    Parameters
    ----------
    content : str
        Raw text; escaped at render time, never here.
    position, size : Position, Size, optional
        Placement on the canvas (defaults: origin, 200x30).
    style : ElementStyle or mapping, optional
        Partial style; missing keys take ``fontSize=14``, ``fontWeight=normal``,
        ``textAlign=left``, ``color=#333333``.
    """
    if style is None:
        resolved_style = ElementStyle()
    elif isinstance(style, ElementStyle):
        resolved_style = style
    else:
        resolved_style = style_from_dict(style)

    return StaticElement(
        id=new_element_id(element_type.value),
        type=element_type,
        content=content,
        position=position or Position(),
        size=size or DEFAULT_STATIC_SIZE,
        style=resolved_style.with_defaults(),
        is_editing=is_editing,
    )


def create_dynamic_field(
    field_type: FieldType | str,
    position: Position | None = None,
    size: Size | None = None,
    existing_count: int = 0,
) -> DynamicField:
    """Create an unmapped dynamic field with generated name and label.

    The field name is ``field_<existing_count + 1>`` and the label is the
    capitalized field type followed by " Field". ``data_mapping`` starts
    empty, which is what forces the author to configure it before saving.

    Examples
    --------
    >>> f = create_dynamic_field("date", existing_count=2)
    >>> f.field_name, f.label, f.data_mapping
    ('field_3', 'Date Field', '')
    """
    if not isinstance(field_type, FieldType):
        field_type = FieldType.from_string(field_type)

    options = DEFAULT_SELECT_OPTIONS if field_type is FieldType.SELECT else ()
    return DynamicField(
        id=new_element_id("field"),
        field_name=f"field_{existing_count + 1}",
        field_type=field_type,
        label=f"{field_type.value.capitalize()} Field",
        placeholder=f"Enter {field_type.value}",
        required=False,
        options=options,
        position=position or Position(),
        size=size or DEFAULT_FIELD_SIZE,
        data_mapping="",
    )


def _coerce_update(element: Element, name: str, value: Any) -> Any:
    if name == "position":
        return Position.from_value(value)
    if name == "size":
        return Size.from_value(value)
    if name == "style":
        if isinstance(value, ElementStyle):
            return value
        return element.style.merged(value)
    if name == "type":
        return value if isinstance(value, ElementType) else ElementType.from_string(value)
    if name == "field_type":
        return value if isinstance(value, FieldType) else FieldType.from_string(value)
    if name == "options":
        if isinstance(value, str):
            value = [value]
        return tuple(string_or_empty(option) for option in (value or ()))
    if name == "required" or name == "is_editing":
        return bool(value)
    if name == "field_name":
        if not is_valid_field_name(value):
            raise ValueError(
                f"Invalid field name {value!r} for element {element.id}: "
                "must match [A-Za-z0-9_]+"
            )
        return value
    if name in ("content", "label", "placeholder", "field_name", "data_mapping"):
        return "" if value is None else str(value)
    return value


def update_element(element: Element, updates: Mapping[str, Any]) -> Element:
    """Merge a partial update into an element and return the new element.

    Parameters
    ----------
    element : StaticElement or DynamicField
        Element to update.
    updates : Mapping[str, Any]
        Attribute names (snake_case or wire camelCase) to new values. A
        ``style`` mapping is merged into the existing style rather than
        replacing it.

    Returns
    -------
    StaticElement or DynamicField
        Updated copy of the same variant.

    Raises
    ------
    ValueError
        If the update tries to change ``id`` or the element kind, names an
        attribute that the variant does not have, or carries an invalid value.
    """
    allowed = {f.name for f in fields(element)}
    changes: Dict[str, Any] = {}
    for key, value in updates.items():
        if key in _IMMUTABLE_KEYS:
            raise ValueError(
                f"Cannot change {key!r} of element {element.id}: "
                "element ids and kinds are fixed for the lifetime of a template"
            )
        name = _ALIASES.get(key, key)
        if name not in allowed:
            kind = "dynamic field" if element.is_dynamic else "static element"
            raise ValueError(f"Unknown attribute {key!r} for {kind} {element.id}")
        changes[name] = _coerce_update(element, name, value)
    return replace(element, **changes)


def element_to_dict(element: Element) -> Dict[str, Any]:
    """Serialize an element to its persisted camelCase form."""
    if isinstance(element, StaticElement):
        return {
            "id": element.id,
            "type": element.type.value,
            "content": element.content,
            "position": element.position.to_dict(),
            "size": element.size.to_dict(),
            "style": element.style.to_dict(),
            "isDynamic": False,
        }
    if isinstance(element, DynamicField):
        data: Dict[str, Any] = {
            "id": element.id,
            "fieldName": element.field_name,
            "fieldType": element.field_type.value,
            "label": element.label,
            "placeholder": element.placeholder,
            "required": element.required,
            "position": element.position.to_dict(),
            "size": element.size.to_dict(),
            "dataMapping": element.data_mapping,
            "isDynamic": True,
        }
        if element.options:
            data["options"] = list(element.options)
        return data
    raise TypeError(f"Unsupported element type: {type(element)!r}")


def _safe(value: Any, factory, fallback, *, element_id: str, attribute: str):
    """Apply factory to value, falling back (with a warning) on bad data."""
    if value is None:
        return fallback
    try:
        return factory(value)
    except (TypeError, ValueError) as exc:
        LOG.warning(
            "Element %s has malformed %s (%s); using default", element_id, attribute, exc
        )
        return fallback


def static_element_from_dict(
    data: Mapping[str, Any],
    index: int = 0,
    *,
    default_position: Position | None = None,
) -> StaticElement:
    """Deserialize a static element, filling best-effort defaults.

    Library and legacy payloads frequently omit ids, positions or sizes; the
    missing pieces are generated so a malformed entry never aborts loading.
    """
    element_id = string_or_empty(data.get("id")) or f"static_{index}"
    content = data.get("content")
    if content is None:
        content = data.get("label", "")
    return StaticElement(
        id=element_id,
        type=_safe(
            data.get("type"), ElementType.from_string, ElementType.TEXT,
            element_id=element_id, attribute="type",
        ),
        content=str(content),
        position=_safe(
            data.get("position"), Position.from_value,
            default_position or Position(), element_id=element_id, attribute="position",
        ),
        size=_safe(
            data.get("size"), Size.from_value, DEFAULT_STATIC_SIZE,
            element_id=element_id, attribute="size",
        ),
        style=_safe(
            data.get("style"), style_from_dict, ElementStyle(),
            element_id=element_id, attribute="style",
        ),
    )


def dynamic_field_from_dict(
    data: Mapping[str, Any],
    index: int = 0,
    *,
    default_position: Position | None = None,
) -> DynamicField:
    """Deserialize a dynamic field, filling best-effort defaults.

    ``dbMapping`` (the older key used by the report generator) is accepted as
    an alias of ``dataMapping``.
    """
    element_id = string_or_empty(data.get("id")) or f"field_{index}"
    label = string_or_empty(data.get("label"))
    raw_name = string_or_empty(data.get("fieldName"))
    field_name = raw_name or field_name_from_label(label, index)
    if not is_valid_field_name(field_name):
        field_name = field_name_from_label(raw_name, index)
        LOG.warning(
            "Element %s has invalid fieldName %r; using %s", element_id, raw_name, field_name
        )
    mapping = data.get("dataMapping")
    if mapping is None:
        mapping = data.get("dbMapping", "")
    options = data.get("options") or ()
    if isinstance(options, str):
        options = [options]
    return DynamicField(
        id=element_id,
        field_name=field_name,
        field_type=_safe(
            data.get("fieldType"), FieldType.from_string, FieldType.TEXT,
            element_id=element_id, attribute="fieldType",
        ),
        label=label or "Field",
        placeholder=string_or_empty(data.get("placeholder")),
        required=bool(data.get("required", False)),
        options=tuple(string_or_empty(option) for option in options),
        position=_safe(
            data.get("position"), Position.from_value,
            default_position or Position(), element_id=element_id, attribute="position",
        ),
        size=_safe(
            data.get("size"), Size.from_value, DEFAULT_FIELD_SIZE,
            element_id=element_id, attribute="size",
        ),
        data_mapping=string_or_empty(mapping),
    )


def element_from_dict(data: Mapping[str, Any], index: int = 0) -> Element:
    """Deserialize either variant, dispatching on the ``isDynamic`` tag.

    Payloads without the tag are treated as dynamic when they carry a
    ``fieldName`` or ``fieldType`` key.
    """
    is_dynamic = data.get("isDynamic")
    if is_dynamic is None:
        is_dynamic = "fieldName" in data or "fieldType" in data
    if is_dynamic:
        return dynamic_field_from_dict(data, index)
    return static_element_from_dict(data, index)
