"""Interactive editor controller for the template designer canvas.

The editor is a single state value plus pure transition functions. Each
transition takes ``(state, document, ...)`` and returns a new
``(state, document)`` pair, so impossible combinations such as dragging
while editing text cannot be represented.

**States:**
- ``NoSelection``
- ``ElementSelected(element_id)``
- ``Dragging(element_id, grab_offset)``: the pointer offset from the
  element's top-left corner recorded at mouse-down
- ``EditingText(element_id, draft)``: inline editing of a static element
- ``ConfiguringProperties(element_id)``: properties panel open

Leaving ``EditingText`` through any other event (selecting something else,
deselecting, dropping a field) commits the draft, matching blur-to-commit
behaviour of the inline editor.

``EditorSession`` wraps one document with its state, notifications and
store round-trips. Store responses carry a session token; a response whose
token is stale (a newer load or save has started since) is ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .data_models import Notification
from .elements import DEFAULT_FIELD_SIZE, DynamicField, StaticElement
from .enums import FieldType, NotificationLevel, TemplateCategory
from .geometry import Number, Position
from .store import TemplateStoreError
from .template_document import (
    TemplateDocument,
    TemplateValidationError,
    add_dynamic_field,
    add_static_element,
    delete_element,
    find_element,
    load_default_preset,
    save,
    update_element,
)

LOG = logging.getLogger(__name__)

# A dropped field is centred roughly on the drop point
DROP_OFFSET = (50, 15)
NEW_TEXT_CONTENT = "Click to edit text"
NEW_TEXT_POSITION = Position(100, 200)


@dataclass(frozen=True)
class NoSelection:
    pass


@dataclass(frozen=True)
class ElementSelected:
    element_id: str


@dataclass(frozen=True)
class Dragging:
    element_id: str
    grab_offset: Tuple[Number, Number] = DROP_OFFSET


@dataclass(frozen=True)
class EditingText:
    element_id: str
    draft: str = ""


@dataclass(frozen=True)
class ConfiguringProperties:
    element_id: str


EditorState = Union[NoSelection, ElementSelected, Dragging, EditingText, ConfiguringProperties]
Transition = Tuple[EditorState, TemplateDocument]


def selected_element_id(state: EditorState) -> Optional[str]:
    """Return the id the state refers to, or None for NoSelection."""
    return getattr(state, "element_id", None)


def _settle(state: EditorState, document: TemplateDocument) -> Transition:
    """Finish any in-progress interaction, committing text drafts."""
    if isinstance(state, EditingText):
        return commit_text(state, document)
    if isinstance(state, (Dragging, ConfiguringProperties)):
        return ElementSelected(state.element_id), document
    return state, document


def select_element(
    state: EditorState, document: TemplateDocument, element_id: str
) -> Transition:
    """Select an element. Clicks are ignored while a drag is in progress.

    Raises
    ------
    ElementNotFoundError
        If the id is not in the document.
    """
    if isinstance(state, Dragging):
        return state, document
    find_element(document, element_id)
    if isinstance(state, EditingText) and state.element_id == element_id:
        return state, document
    _, document = _settle(state, document)
    return ElementSelected(element_id), document


def deselect(state: EditorState, document: TemplateDocument) -> Transition:
    _, document = _settle(state, document)
    return NoSelection(), document


def drop_field(
    state: EditorState,
    document: TemplateDocument,
    field_type: FieldType | str,
    drop_x: Number,
    drop_y: Number,
) -> Transition:
    """Create a dynamic field where a field-type token was dropped.

    The field is placed at ``drop - (50, 15)`` clamped to the canvas origin
    with the default 200x30 size, and becomes the selection.

    Examples
    --------
    >>> state, doc = drop_field(NoSelection(), TemplateDocument(), "text", 150, 150)
    >>> doc.dynamic_fields[0].position
    Position(x=100, y=135)
    """
    _, document = _settle(state, document)
    position = Position.clamped(drop_x - DROP_OFFSET[0], drop_y - DROP_OFFSET[1])
    document, new_field = add_dynamic_field(
        document, field_type, position, DEFAULT_FIELD_SIZE
    )
    return ElementSelected(new_field.id), document


def add_static_text(
    state: EditorState,
    document: TemplateDocument,
    content: str = NEW_TEXT_CONTENT,
    position: Position = NEW_TEXT_POSITION,
) -> Transition:
    """Add a static text element and start editing it inline."""
    _, document = _settle(state, document)
    document, element = add_static_element(document, content, position)
    return EditingText(element.id, element.content), document


def mouse_down(
    state: EditorState,
    document: TemplateDocument,
    element_id: str,
    pointer_x: Number,
    pointer_y: Number,
) -> Transition:
    """Start dragging an element, remembering where it was grabbed.

    Mouse-down inside the element being edited keeps editing (the pointer
    is placing the text cursor, not moving the element).
    """
    if isinstance(state, EditingText) and state.element_id == element_id:
        return state, document
    element = find_element(document, element_id)
    _, document = _settle(state, document)
    grab_offset = (pointer_x - element.position.x, pointer_y - element.position.y)
    return Dragging(element_id, grab_offset), document


def mouse_move(
    state: EditorState,
    document: TemplateDocument,
    pointer_x: Number,
    pointer_y: Number,
) -> Transition:
    """Move the dragged element with the pointer; no-op when not dragging."""
    if not isinstance(state, Dragging):
        return state, document
    offset_x, offset_y = state.grab_offset
    position = Position.clamped(pointer_x - offset_x, pointer_y - offset_y)
    return state, update_element(document, state.element_id, {"position": position})


def mouse_up(state: EditorState, document: TemplateDocument) -> Transition:
    """Finish a drag, keeping the last position."""
    if isinstance(state, Dragging):
        return ElementSelected(state.element_id), document
    return state, document


def double_click(
    state: EditorState, document: TemplateDocument, element_id: str
) -> Transition:
    """Enter inline text editing for a static element; selects dynamic fields."""
    element = find_element(document, element_id)
    if isinstance(state, EditingText) and state.element_id == element_id:
        return state, document
    _, document = _settle(state, document)
    if isinstance(element, StaticElement):
        return EditingText(element_id, element.content), document
    return ElementSelected(element_id), document


def edit_text(state: EditorState, document: TemplateDocument, text: str) -> Transition:
    """Replace the inline-editing draft; ignored outside EditingText."""
    if not isinstance(state, EditingText):
        return state, document
    return replace(state, draft=text), document


def commit_text(state: EditorState, document: TemplateDocument) -> Transition:
    """Write the draft into the element (Enter or blur)."""
    if not isinstance(state, EditingText):
        return state, document
    document = update_element(document, state.element_id, {"content": state.draft})
    return ElementSelected(state.element_id), document


def cancel_text(state: EditorState, document: TemplateDocument) -> Transition:
    """Leave inline editing without changing the element (Escape)."""
    if not isinstance(state, EditingText):
        return state, document
    return ElementSelected(state.element_id), document


def open_properties(
    state: EditorState, document: TemplateDocument, element_id: Optional[str] = None
) -> Transition:
    """Open the properties panel for the given or currently selected element."""
    element_id = element_id or selected_element_id(state)
    if element_id is None:
        return state, document
    find_element(document, element_id)
    _, document = _settle(state, document)
    return ConfiguringProperties(element_id), document


def close_properties(state: EditorState, document: TemplateDocument) -> Transition:
    if isinstance(state, ConfiguringProperties):
        return ElementSelected(state.element_id), document
    return state, document


def update_properties(
    state: EditorState, document: TemplateDocument, updates: Mapping[str, Any]
) -> Transition:
    """Apply a property-panel edit to the selected element.

    Raises
    ------
    ValueError
        If nothing is selected or the update is invalid.
    """
    element_id = selected_element_id(state)
    if element_id is None:
        raise ValueError("No element selected")
    return state, update_element(document, element_id, updates)


def delete_selected(state: EditorState, document: TemplateDocument) -> Transition:
    """Delete the selected element and clear the selection."""
    element_id = selected_element_id(state)
    if element_id is None:
        return state, document
    return NoSelection(), delete_element(document, element_id)


def selection_is_unmapped(state: EditorState, document: TemplateDocument) -> bool:
    """True when the selection is a dynamic field with no data mapping."""
    element_id = selected_element_id(state)
    if element_id is None:
        return False
    element = find_element(document, element_id)
    return isinstance(element, DynamicField) and not element.is_mapped


class EditorSession:
    """One template being edited, with its selection state and store access.

    Parameters
    ----------
    document : TemplateDocument, optional
        Starting document; defaults to the default preset.
    store : TemplateStore, optional
        Persistence backend used by ``save`` and ``load``.
    config : Dict[str, Any], optional
        Parsed parameters.yaml.
    """

    def __init__(
        self,
        document: TemplateDocument | None = None,
        store=None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.document = document if document is not None else load_default_preset()
        self.state: EditorState = NoSelection()
        self.store = store
        self.config = config or {}
        self.notifications: List[Notification] = []
        self._token = 0

    # Notifications

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        self.notifications.append(Notification(message, level))

    def clear_notifications(self) -> None:
        self.notifications = []

    @property
    def last_notification(self) -> Optional[Notification]:
        return self.notifications[-1] if self.notifications else None

    # Transitions

    def _apply(self, transition: Transition) -> EditorState:
        self.state, self.document = transition
        return self.state

    def select(self, element_id: str) -> EditorState:
        return self._apply(select_element(self.state, self.document, element_id))

    def deselect(self) -> EditorState:
        return self._apply(deselect(self.state, self.document))

    def drop_field(self, field_type: FieldType | str, x: Number, y: Number) -> EditorState:
        state = self._apply(drop_field(self.state, self.document, field_type, x, y))
        self.notify(
            "Dynamic field added! Please configure the data mapping in the properties panel."
        )
        return state

    def add_static_text(self) -> EditorState:
        state = self._apply(add_static_text(self.state, self.document))
        self.notify("Static text element added! Click the text to edit its content.")
        return state

    def mouse_down(self, element_id: str, x: Number, y: Number) -> EditorState:
        return self._apply(mouse_down(self.state, self.document, element_id, x, y))

    def mouse_move(self, x: Number, y: Number) -> EditorState:
        return self._apply(mouse_move(self.state, self.document, x, y))

    def mouse_up(self) -> EditorState:
        return self._apply(mouse_up(self.state, self.document))

    def double_click(self, element_id: str) -> EditorState:
        return self._apply(double_click(self.state, self.document, element_id))

    def edit_text(self, text: str) -> EditorState:
        return self._apply(edit_text(self.state, self.document, text))

    def commit_text(self) -> EditorState:
        return self._apply(commit_text(self.state, self.document))

    def cancel_text(self) -> EditorState:
        return self._apply(cancel_text(self.state, self.document))

    def open_properties(self, element_id: Optional[str] = None) -> EditorState:
        return self._apply(open_properties(self.state, self.document, element_id))

    def close_properties(self) -> EditorState:
        return self._apply(close_properties(self.state, self.document))

    def update_properties(self, updates: Mapping[str, Any]) -> EditorState:
        return self._apply(update_properties(self.state, self.document, updates))

    def delete_selected(self) -> EditorState:
        return self._apply(delete_selected(self.state, self.document))

    def set_metadata(
        self,
        template_name: Optional[str] = None,
        description: Optional[str] = None,
        category: TemplateCategory | str | None = None,
    ) -> None:
        """Update the document's name, description or category."""
        changes: Dict[str, Any] = {}
        if template_name is not None:
            changes["template_name"] = template_name
        if description is not None:
            changes["description"] = description
        if category is not None:
            if not isinstance(category, TemplateCategory):
                category = TemplateCategory.from_string(category)
            changes["category"] = category
        self.document = replace(self.document, **changes)

    @property
    def selection_is_unmapped(self) -> bool:
        return selection_is_unmapped(self.state, self.document)

    # Store round-trips

    def begin_request(self) -> int:
        """Start a store request; any earlier in-flight request becomes stale."""
        self._token += 1
        return self._token

    def is_current(self, token: int) -> bool:
        return token == self._token

    def complete_save(self, token: int, saved: TemplateDocument) -> bool:
        """Adopt the store-assigned id from a save response.

        Only the id is taken from the response, so edits made while the
        request was in flight are kept. Returns False (and changes nothing)
        when the response is stale.
        """
        if not self.is_current(token):
            LOG.info("Discarding stale save response for %s", saved.template_id)
            return False
        self.document = replace(self.document, template_id=saved.template_id)
        return True

    def complete_load(self, token: int, loaded: TemplateDocument) -> bool:
        """Replace the document with a loaded one unless the response is stale."""
        if not self.is_current(token):
            LOG.info("Discarding stale load response for %s", loaded.template_id)
            return False
        self.document = loaded
        self.state = NoSelection()
        return True

    def _require_store(self):
        if self.store is None:
            raise RuntimeError("Editor session has no template store configured")
        return self.store

    def save(self) -> Optional[TemplateDocument]:
        """Validate and persist the current document.

        Returns
        -------
        TemplateDocument or None
            The saved document, or None when validation blocked the save
            (each blocking violation is reported as an error notification).

        Raises
        ------
        TemplateStoreError
            Propagated unchanged after an error notification; the in-memory
            document is kept so the save can be retried.
        """
        store = self._require_store()
        # Commit an open text draft before validating
        self.state, self.document = _settle(self.state, self.document)
        token = self.begin_request()
        try:
            saved = save(self.document, store, self.config)
        except TemplateValidationError as exc:
            for violation in exc.violations:
                if violation.is_error:
                    self.notify(violation.message, NotificationLevel.ERROR)
            return None
        except TemplateStoreError as exc:
            self.notify(f"Failed to save template: {exc}", NotificationLevel.ERROR)
            raise
        self.complete_save(token, saved)
        self.notify("Template saved successfully!", NotificationLevel.SUCCESS)
        return saved

    def load(self, template_id: str) -> TemplateDocument:
        """Load a stored template, replacing the current document.

        Raises
        ------
        TemplateStoreError
            Propagated unchanged; the current document is kept.
        """
        store = self._require_store()
        token = self.begin_request()
        try:
            loaded = store.get_by_id(template_id)
        except TemplateStoreError as exc:
            self.notify(f"Failed to load template: {exc}", NotificationLevel.ERROR)
            raise
        self.complete_load(token, loaded)
        return self.document
