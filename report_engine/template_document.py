"""Template document model: the persisted aggregate of one report template.

A ``TemplateDocument`` is frozen. Every edit returns a new document, which
keeps save/load round-trips and editor transitions free of aliasing bugs.

**Save contract:**
- ``validate_for_save`` evaluates every check (never short-circuits) and
  returns the findings as a list so the author can fix them all at once.
- ``save`` refuses to persist while any error-severity violation exists.
- The ``mappings`` dictionary and the ``staticContent`` HTML are derived at
  serialization time and never stored on the document itself.

**Wire format** (camelCase JSON, shared with the template store)::

    {
      "templateId": "tpl-...",            # absent until first save
      "templateName": "CBC",
      "description": "",
      "category": "BLOOD_TEST",
      "staticContent": {"content": "<div ...>...</div>", "elements": [...]},
      "dynamicFields": {"fields": [...], "mappings": {"name": "patient.name"}},
      "layoutConfig": {"canvasSize": {"width": 800, "height": 600},
                       "elements": [...]}
    }
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .data_models import Violation
from .elements import (
    DynamicField,
    Element,
    ElementStyle,
    StaticElement,
    create_dynamic_field,
    create_static_element,
    dynamic_field_from_dict,
    element_to_dict,
    static_element_from_dict,
)
from .elements import update_element as update_element_value
from .enums import FieldType, FontWeight, TemplateCategory, TextAlign, ViolationSeverity
from .geometry import CanvasSize, Position, Size, fits_within
from .mapping_resolver import SUGGESTION_THRESHOLD, is_known_mapping, suggest_mapping
from .renderer import render_template_html
from .utils import is_valid_field_name, string_or_empty

LOG = logging.getLogger(__name__)

# Violation codes, in the order validate_for_save evaluates them
MISSING_NAME = "MISSING_NAME"
NO_ELEMENTS = "NO_ELEMENTS"
UNMAPPED_FIELDS = "UNMAPPED_FIELDS"
INVALID_FIELD_NAMES = "INVALID_FIELD_NAMES"
DUPLICATE_FIELD_NAMES = "DUPLICATE_FIELD_NAMES"
INVALID_SELECT_OPTIONS = "INVALID_SELECT_OPTIONS"
DUPLICATE_ELEMENT_IDS = "DUPLICATE_ELEMENT_IDS"
UNKNOWN_MAPPINGS = "UNKNOWN_MAPPINGS"
OUT_OF_BOUNDS = "OUT_OF_BOUNDS"


class TemplateValidationError(ValueError):
    """Raised when a document with error-severity violations is saved."""

    def __init__(self, violations: List[Violation]):
        self.violations = list(violations)
        messages = "; ".join(v.message for v in self.violations if v.is_error)
        super().__init__(f"Template cannot be saved: {messages}")


class ElementNotFoundError(KeyError):
    """Raised when an element id is not present in the document."""

    def __init__(self, element_id: str):
        self.element_id = element_id
        super().__init__(f"Element not found: {element_id}")

    def __str__(self) -> str:
        return self.args[0]


@dataclass(frozen=True)
class TemplateDocument:
    """One report template: metadata, ordered elements and canvas size.

    Parameters
    ----------
    template_name : str
        Required, non-blank at save time.
    description : str
        Optional free text.
    category : TemplateCategory
        Report category used for store lookups.
    static_elements : Tuple[StaticElement, ...]
        Static elements in render order.
    dynamic_fields : Tuple[DynamicField, ...]
        Dynamic fields in render order.
    canvas_size : CanvasSize
        Logical page size (default 800x600).
    template_id : Optional[str]
        Store-assigned id; None until the first successful save.
    """

    template_name: str = ""
    description: str = ""
    category: TemplateCategory = TemplateCategory.BLOOD_TEST
    static_elements: Tuple[StaticElement, ...] = ()
    dynamic_fields: Tuple[DynamicField, ...] = ()
    canvas_size: CanvasSize = field(default_factory=CanvasSize)
    template_id: Optional[str] = None

    @property
    def elements(self) -> List[Element]:
        """Static elements followed by dynamic fields, in render order."""
        return list(self.static_elements) + list(self.dynamic_fields)

    @property
    def mappings(self) -> Dict[str, str]:
        """Derived ``fieldName -> dataMapping`` view, recomputed on access."""
        return {f.field_name: f.data_mapping for f in self.dynamic_fields}

    @property
    def unmapped_fields(self) -> List[DynamicField]:
        return [f for f in self.dynamic_fields if not f.is_mapped]

    @property
    def is_empty(self) -> bool:
        return not self.static_elements and not self.dynamic_fields


def load_blank_preset(canvas_size: CanvasSize | None = None) -> TemplateDocument:
    """Return an empty, unnamed template document."""
    return TemplateDocument(canvas_size=canvas_size or CanvasSize())


def load_default_preset(canvas_size: CanvasSize | None = None) -> TemplateDocument:
    """Return the first-time-creation preset: a title and a section header.

    Examples
    --------
    >>> doc = load_default_preset()
    >>> [e.content for e in doc.static_elements]
    ['Medical Report Template', 'Patient Information']
    >>> doc.static_elements[0].style.font_size
    24
    """
    title = StaticElement(
        id="title-1",
        content="Medical Report Template",
        position=Position(100, 50),
        size=Size(400, 40),
        style=ElementStyle(
            font_size=24,
            font_weight=FontWeight.BOLD,
            text_align=TextAlign.CENTER,
            color="#333333",
        ),
    )
    header = StaticElement(
        id="header-1",
        content="Patient Information",
        position=Position(50, 120),
        size=Size(200, 30),
        style=ElementStyle(
            font_size=16,
            font_weight=FontWeight.BOLD,
            text_align=TextAlign.LEFT,
            color="#666666",
        ),
    )
    return TemplateDocument(
        static_elements=(title, header),
        canvas_size=canvas_size or CanvasSize(),
    )


# Element-level document operations


def find_element(document: TemplateDocument, element_id: str) -> Element:
    """Return the element with the given id.

    Raises
    ------
    ElementNotFoundError
        If no static element or dynamic field has that id.
    """
    for element in document.elements:
        if element.id == element_id:
            return element
    raise ElementNotFoundError(element_id)


def has_element(document: TemplateDocument, element_id: str) -> bool:
    return any(element.id == element_id for element in document.elements)


def next_field_number(document: TemplateDocument) -> int:
    """Return the count used for the next generated ``field_N`` name.

    Starts from the current field count and skips past names already taken,
    so deleting a field and adding another never produces a duplicate.
    """
    taken = {f.field_name for f in document.dynamic_fields}
    count = len(document.dynamic_fields)
    while f"field_{count + 1}" in taken:
        count += 1
    return count


def add_static_element(
    document: TemplateDocument,
    content: str = "",
    position: Position | None = None,
    size: Size | None = None,
    style: ElementStyle | Mapping[str, Any] | None = None,
    *,
    is_editing: bool = False,
) -> Tuple[TemplateDocument, StaticElement]:
    """Append a new static element; returns the new document and element."""
    element = create_static_element(
        content, position, size, style, is_editing=is_editing
    )
    return replace(document, static_elements=document.static_elements + (element,)), element


def add_dynamic_field(
    document: TemplateDocument,
    field_type: FieldType | str,
    position: Position | None = None,
    size: Size | None = None,
) -> Tuple[TemplateDocument, DynamicField]:
    """Append a new, unmapped dynamic field; returns the new document and field."""
    new_field = create_dynamic_field(
        field_type, position, size, existing_count=next_field_number(document)
    )
    return replace(document, dynamic_fields=document.dynamic_fields + (new_field,)), new_field


def update_element(
    document: TemplateDocument, element_id: str, updates: Mapping[str, Any]
) -> TemplateDocument:
    """Merge a partial update into one element.

    Raises
    ------
    ElementNotFoundError
        If the id is unknown.
    ValueError
        If the update is invalid (see ``elements.update_element``).
    """
    for index, element in enumerate(document.static_elements):
        if element.id == element_id:
            updated = list(document.static_elements)
            updated[index] = update_element_value(element, updates)
            return replace(document, static_elements=tuple(updated))
    for index, element in enumerate(document.dynamic_fields):
        if element.id == element_id:
            updated = list(document.dynamic_fields)
            updated[index] = update_element_value(element, updates)
            return replace(document, dynamic_fields=tuple(updated))
    raise ElementNotFoundError(element_id)


def delete_element(document: TemplateDocument, element_id: str) -> TemplateDocument:
    """Remove an element from whichever collection holds it.

    Raises
    ------
    ElementNotFoundError
        If the id is unknown.
    """
    if not has_element(document, element_id):
        raise ElementNotFoundError(element_id)
    return replace(
        document,
        static_elements=tuple(e for e in document.static_elements if e.id != element_id),
        dynamic_fields=tuple(f for f in document.dynamic_fields if f.id != element_id),
    )


# Validation


def _duplicates(values: List[str]) -> List[str]:
    counts = Counter(values)
    return [value for value in dict.fromkeys(values) if counts[value] > 1]


def validate_for_save(
    document: TemplateDocument,
    suggestion_threshold: int = SUGGESTION_THRESHOLD,
) -> List[Violation]:
    """Check whether a document may be persisted.

    All checks run, in this order: name present; at least one element; every
    dynamic field mapped; field names usable as placeholders; field names
    unique; select options consistent with field type; element ids unique;
    mapping keys recognized (warning); elements within the canvas (warning).

    Parameters
    ----------
    document : TemplateDocument
        Document to check.
    suggestion_threshold : int
        Minimum rapidfuzz score for "did you mean" mapping suggestions.

    Returns
    -------
    List[Violation]
        Findings in check order; empty when the document is clean.
    """
    violations: List[Violation] = []
    fields_list = list(document.dynamic_fields)

    if not document.template_name.strip():
        violations.append(Violation(MISSING_NAME, "Template name is required"))

    if document.is_empty:
        violations.append(
            Violation(NO_ELEMENTS, "Template must contain at least one element")
        )

    unmapped = document.unmapped_fields
    if unmapped:
        violations.append(
            Violation(
                UNMAPPED_FIELDS,
                f"{len(unmapped)} dynamic field(s) need mapping",
                count=len(unmapped),
                element_ids=[f.id for f in unmapped],
            )
        )

    invalid = [f for f in fields_list if not is_valid_field_name(f.field_name)]
    if invalid:
        names = ", ".join(repr(f.field_name) for f in invalid)
        violations.append(
            Violation(
                INVALID_FIELD_NAMES,
                f"{len(invalid)} field name(s) must match [A-Za-z0-9_]+: {names}",
                count=len(invalid),
                element_ids=[f.id for f in invalid],
            )
        )

    duplicate_names = _duplicates([f.field_name for f in fields_list])
    if duplicate_names:
        violations.append(
            Violation(
                DUPLICATE_FIELD_NAMES,
                f"Duplicate field names: {', '.join(duplicate_names)}",
                count=len(duplicate_names),
                element_ids=[f.id for f in fields_list if f.field_name in duplicate_names],
            )
        )

    bad_options = [
        f
        for f in fields_list
        if (f.field_type is FieldType.SELECT) != bool(f.options)
    ]
    if bad_options:
        violations.append(
            Violation(
                INVALID_SELECT_OPTIONS,
                f"{len(bad_options)} field(s) have options inconsistent with their "
                "type (select fields need options; other types must have none)",
                count=len(bad_options),
                element_ids=[f.id for f in bad_options],
            )
        )

    duplicate_ids = _duplicates([e.id for e in document.elements])
    if duplicate_ids:
        violations.append(
            Violation(
                DUPLICATE_ELEMENT_IDS,
                f"Duplicate element ids: {', '.join(duplicate_ids)}",
                count=len(duplicate_ids),
                element_ids=duplicate_ids,
            )
        )

    unknown = [f for f in fields_list if f.is_mapped and not is_known_mapping(f.data_mapping)]
    if unknown:
        details = []
        for unknown_field in unknown:
            suggestion = suggest_mapping(unknown_field.data_mapping, suggestion_threshold)
            if suggestion:
                details.append(f"{unknown_field.data_mapping} (did you mean {suggestion}?)")
            else:
                details.append(unknown_field.data_mapping)
        violations.append(
            Violation(
                UNKNOWN_MAPPINGS,
                f"Unrecognized data mappings will not auto-fill: {', '.join(details)}",
                count=len(unknown),
                severity=ViolationSeverity.WARNING,
                element_ids=[f.id for f in unknown],
            )
        )

    outside = [
        e
        for e in document.elements
        if not fits_within(e.position, e.size, document.canvas_size)
    ]
    if outside:
        violations.append(
            Violation(
                OUT_OF_BOUNDS,
                f"{len(outside)} element(s) extend beyond the "
                f"{document.canvas_size.width}x{document.canvas_size.height} canvas",
                count=len(outside),
                severity=ViolationSeverity.WARNING,
                element_ids=[e.id for e in outside],
            )
        )

    return violations


def blocking_violations(violations: List[Violation]) -> List[Violation]:
    return [v for v in violations if v.is_error]


# Serialization


def to_payload(document: TemplateDocument) -> Dict[str, Any]:
    """Serialize a document to its persisted wire form.

    ``mappings`` and ``staticContent.content`` are derived here from the
    structured elements; they are never read back as a source of truth.
    """
    static = [element_to_dict(e) for e in document.static_elements]
    dynamic = [element_to_dict(f) for f in document.dynamic_fields]
    payload: Dict[str, Any] = {
        "templateName": document.template_name,
        "description": document.description,
        "category": document.category.value,
        "staticContent": {
            "content": render_template_html(document),
            "elements": static,
        },
        "dynamicFields": {
            "fields": dynamic,
            "mappings": document.mappings,
        },
        "layoutConfig": {
            "canvasSize": document.canvas_size.to_dict(),
            "elements": static + dynamic,
        },
    }
    if document.template_id is not None:
        payload["templateId"] = document.template_id
    return payload


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key)
    if isinstance(value, Mapping):
        return value
    if value is not None and not isinstance(value, str):
        LOG.warning("Template payload has malformed %s; ignoring it", key)
    return {}


def _element_list(section: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    items = section.get(key) or []
    if not isinstance(items, list):
        LOG.warning("Template payload has malformed %s list; using empty list", key)
        return []
    valid = [item for item in items if isinstance(item, Mapping)]
    if len(valid) != len(items):
        LOG.warning("Skipping %d malformed %s entries", len(items) - len(valid), key)
    return valid


def from_payload(payload: Mapping[str, Any]) -> TemplateDocument:
    """Rebuild a document from its persisted wire form.

    Tolerant of legacy and malformed payloads: ``staticContent`` may be a
    bare HTML string (elements are then taken from ``layoutConfig``),
    missing sections become empty, and unreadable elements fall back to
    defaults with a warning.

    Raises
    ------
    ValueError
        If the payload is not a mapping.
    """
    if not isinstance(payload, Mapping):
        raise ValueError(
            f"Template payload must be a JSON object, got {type(payload).__name__}"
        )

    static_section = _section(payload, "staticContent")
    dynamic_section = _section(payload, "dynamicFields")
    layout_section = _section(payload, "layoutConfig")

    static_items = _element_list(static_section, "elements")
    field_items = _element_list(dynamic_section, "fields")
    if not static_items and not field_items:
        layout_items = _element_list(layout_section, "elements")
        static_items = [item for item in layout_items if not item.get("isDynamic")]
        field_items = [item for item in layout_items if item.get("isDynamic")]

    try:
        category = TemplateCategory.from_string(payload.get("category"))
    except ValueError as exc:
        LOG.warning("%s; using %s", exc, TemplateCategory.BLOOD_TEST.value)
        category = TemplateCategory.BLOOD_TEST

    try:
        canvas_size = CanvasSize.from_value(layout_section.get("canvasSize") or {})
    except ValueError as exc:
        LOG.warning("Malformed canvas size (%s); using default", exc)
        canvas_size = CanvasSize()

    template_id = payload.get("templateId", payload.get("id"))
    return TemplateDocument(
        template_name=string_or_empty(payload.get("templateName")),
        description=string_or_empty(payload.get("description")),
        category=category,
        static_elements=tuple(
            static_element_from_dict(item, index) for index, item in enumerate(static_items)
        ),
        dynamic_fields=tuple(
            dynamic_field_from_dict(item, index) for index, item in enumerate(field_items)
        ),
        canvas_size=canvas_size,
        template_id=string_or_empty(template_id) or None,
    )


def save(
    document: TemplateDocument,
    store,
    config: Optional[Dict[str, Any]] = None,
) -> TemplateDocument:
    """Validate and persist a document through a template store.

    Parameters
    ----------
    document : TemplateDocument
        Document to persist as a whole.
    store : TemplateStore
        Persistence backend; ``create`` is used for new documents and
        ``update`` for documents that already carry a ``template_id``.
    config : Dict[str, Any], optional
        Parsed parameters.yaml; supplies ``mapping.suggestion_threshold``.

    Returns
    -------
    TemplateDocument
        The document as returned by the store (with its id assigned).

    Raises
    ------
    TemplateValidationError
        If any error-severity violation exists. Nothing is sent to the store.
    TemplateStoreError
        Propagated unchanged from the store; the caller's document is
        untouched so the save can be retried.
    """
    threshold = (config or {}).get("mapping", {}).get(
        "suggestion_threshold", SUGGESTION_THRESHOLD
    )
    violations = validate_for_save(document, threshold)
    for violation in violations:
        if not violation.is_error:
            LOG.warning("Template %r: %s", document.template_name, violation.message)

    errors = blocking_violations(violations)
    if errors:
        raise TemplateValidationError(violations)

    if document.template_id is None:
        saved = store.create(document)
        LOG.info("Created template %r as %s", document.template_name, saved.template_id)
    else:
        saved = store.update(document.template_id, document)
        LOG.info("Updated template %r (%s)", document.template_name, saved.template_id)
    return saved
