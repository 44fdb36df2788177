"""Unit tests for template_document module - the persisted template aggregate.

Tests cover:
- Blank and default presets
- Add, update and delete of elements by id
- Save validation: check order, unmapped-field gate, warnings vs errors
- Wire payload serialization and tolerant deserialization
- save() routing to store create/update

Real-world significance:
- A template with an unmapped field would print an empty box on every
  report generated from it, so saving must be blocked
- Stored templates come from older clients and hand edits; loading must
  survive missing or malformed sections
"""

from __future__ import annotations

import pytest

from report_engine.elements import DynamicField, StaticElement
from report_engine.enums import FieldType, TemplateCategory, ViolationSeverity
from report_engine.geometry import CanvasSize, Position, Size
from report_engine.store import InMemoryTemplateStore
from report_engine.template_document import (
    DUPLICATE_ELEMENT_IDS,
    DUPLICATE_FIELD_NAMES,
    INVALID_FIELD_NAMES,
    INVALID_SELECT_OPTIONS,
    MISSING_NAME,
    NO_ELEMENTS,
    OUT_OF_BOUNDS,
    UNKNOWN_MAPPINGS,
    UNMAPPED_FIELDS,
    ElementNotFoundError,
    TemplateDocument,
    TemplateValidationError,
    add_dynamic_field,
    add_static_element,
    blocking_violations,
    delete_element,
    find_element,
    from_payload,
    load_blank_preset,
    load_default_preset,
    next_field_number,
    save,
    to_payload,
    update_element,
    validate_for_save,
)


@pytest.mark.unit
class TestPresets:
    """Unit tests for load_blank_preset and load_default_preset."""

    def test_blank_is_empty(self) -> None:
        document = load_blank_preset()
        assert document.is_empty
        assert document.template_name == ""
        assert document.canvas_size == CanvasSize(800, 600)

    def test_default_preset_contents(self) -> None:
        document = load_default_preset()
        title, header = document.static_elements
        assert (title.id, title.content) == ("title-1", "Medical Report Template")
        assert title.position == Position(100, 50)
        assert title.size == Size(400, 40)
        assert title.style.font_size == 24
        assert (header.content, header.style.color) == ("Patient Information", "#666666")
        assert document.dynamic_fields == ()

    def test_default_preset_needs_only_a_name(self) -> None:
        codes = [v.code for v in validate_for_save(load_default_preset())]
        assert codes == [MISSING_NAME]


@pytest.mark.unit
class TestElementOperations:
    """Unit tests for find/add/update/delete element operations."""

    def test_add_dynamic_field_appends_unmapped(self, mapped_document: TemplateDocument) -> None:
        document, field = add_dynamic_field(mapped_document, "date", Position(10, 10))
        assert document.dynamic_fields[-1] == field
        assert field.field_name == "field_4"
        assert field.data_mapping == ""
        assert len(mapped_document.dynamic_fields) == 3

    def test_field_numbers_skip_taken_names(self) -> None:
        """Verify deleting then adding a field never reuses a taken name.

        Real-world significance:
        - Duplicate field names would make two report boxes share a value
        """
        document, first = add_dynamic_field(load_blank_preset(), "text")
        document, second = add_dynamic_field(document, "text")
        document = delete_element(document, first.id)
        document, third = add_dynamic_field(document, "text")
        assert (first.field_name, second.field_name) == ("field_1", "field_2")
        assert third.field_name == "field_3"
        assert next_field_number(document) == 3

    def test_add_static_element(self) -> None:
        document, element = add_static_element(
            load_blank_preset(), "Notes", Position(5, 5), is_editing=True
        )
        assert document.static_elements == (element,)
        assert element.is_editing

    def test_find_element(self, mapped_document: TemplateDocument) -> None:
        assert find_element(mapped_document, "field-doctor").field_name == "doctor"
        with pytest.raises(ElementNotFoundError, match="Element not found: nope"):
            find_element(mapped_document, "nope")

    def test_update_element_keeps_order(self, mapped_document: TemplateDocument) -> None:
        document = update_element(mapped_document, "field-name", {"dataMapping": "custom"})
        assert [f.id for f in document.dynamic_fields] == ["field-name", "field-id", "field-doctor"]
        assert document.dynamic_fields[0].data_mapping == "custom"
        assert mapped_document.dynamic_fields[0].data_mapping == "patient.name"

    def test_update_unknown_id(self, mapped_document: TemplateDocument) -> None:
        with pytest.raises(ElementNotFoundError):
            update_element(mapped_document, "missing", {"label": "x"})

    def test_delete_element(self, mapped_document: TemplateDocument) -> None:
        document = delete_element(mapped_document, "title-1")
        assert document.static_elements == ()
        assert len(document.dynamic_fields) == 3
        with pytest.raises(ElementNotFoundError):
            delete_element(document, "title-1")

    def test_mappings_are_derived(self, mapped_document: TemplateDocument) -> None:
        assert mapped_document.mappings == {
            "patient_name": "patient.name",
            "patient_id": "patient.id",
            "doctor": "visit.doctor",
        }


@pytest.mark.unit
class TestValidateForSave:
    """Unit tests for validate_for_save."""

    def test_clean_document(self, mapped_document: TemplateDocument) -> None:
        assert validate_for_save(mapped_document) == []

    def test_blank_reports_all_errors_in_order(self) -> None:
        violations = validate_for_save(load_blank_preset())
        assert [v.code for v in violations] == [MISSING_NAME, NO_ELEMENTS]
        assert violations[0].message == "Template name is required"
        assert violations[1].message == "Template must contain at least one element"

    def test_whitespace_name_is_missing(self, mapped_document: TemplateDocument) -> None:
        document = TemplateDocument(
            template_name="   ", static_elements=mapped_document.static_elements
        )
        assert [v.code for v in validate_for_save(document)] == [MISSING_NAME]

    def test_unmapped_fields_block_save(self, mapped_document: TemplateDocument) -> None:
        """Verify unmapped fields are counted and identified.

        Real-world significance:
        - The editor highlights the offending fields using element_ids
        """
        document, first = add_dynamic_field(mapped_document, "text")
        document, second = add_dynamic_field(document, "number")
        violations = validate_for_save(document)
        assert len(violations) == 1
        unmapped = violations[0]
        assert unmapped.code == UNMAPPED_FIELDS
        assert unmapped.message == "2 dynamic field(s) need mapping"
        assert unmapped.count == 2
        assert unmapped.element_ids == [first.id, second.id]
        assert unmapped.is_error

    def test_invalid_and_duplicate_field_names(self) -> None:
        document = TemplateDocument(
            template_name="T",
            dynamic_fields=(
                DynamicField(id="a", field_name="bad name", data_mapping="custom"),
                DynamicField(id="b", field_name="dup", data_mapping="custom"),
                DynamicField(id="c", field_name="dup", data_mapping="custom"),
            ),
        )
        codes = [v.code for v in validate_for_save(document)]
        assert codes == [INVALID_FIELD_NAMES, DUPLICATE_FIELD_NAMES]

    def test_select_options_consistency(self) -> None:
        document = TemplateDocument(
            template_name="T",
            dynamic_fields=(
                DynamicField(
                    id="a", field_name="a", field_type=FieldType.SELECT, data_mapping="custom"
                ),
                DynamicField(id="b", field_name="b", options=("x",), data_mapping="custom"),
            ),
        )
        violation = validate_for_save(document)[0]
        assert violation.code == INVALID_SELECT_OPTIONS
        assert violation.element_ids == ["a", "b"]

    def test_duplicate_element_ids(self) -> None:
        document = TemplateDocument(
            template_name="T",
            static_elements=(StaticElement(id="x"),),
            dynamic_fields=(DynamicField(id="x", field_name="f", data_mapping="custom"),),
        )
        assert [v.code for v in validate_for_save(document)] == [DUPLICATE_ELEMENT_IDS]

    def test_unknown_mapping_is_warning_with_suggestion(self) -> None:
        document = TemplateDocument(
            template_name="T",
            dynamic_fields=(DynamicField(id="a", field_name="a", data_mapping="patient.nmae"),),
        )
        violations = validate_for_save(document)
        assert [v.code for v in violations] == [UNKNOWN_MAPPINGS]
        assert violations[0].severity is ViolationSeverity.WARNING
        assert "did you mean patient.name?" in violations[0].message
        assert blocking_violations(violations) == []

    def test_out_of_bounds_is_warning(self) -> None:
        document = TemplateDocument(
            template_name="T",
            static_elements=(StaticElement(id="s", position=Position(700, 0), size=Size(200, 30)),),
        )
        violations = validate_for_save(document)
        assert [v.code for v in violations] == [OUT_OF_BOUNDS]
        assert "800x600 canvas" in violations[0].message
        assert not violations[0].is_error


@pytest.mark.unit
class TestPayload:
    """Unit tests for to_payload and from_payload."""

    def test_wire_shape(self, mapped_document: TemplateDocument) -> None:
        payload = to_payload(mapped_document)
        assert payload["templateName"] == "CBC"
        assert payload["category"] == "BLOOD_TEST"
        assert "templateId" not in payload
        assert payload["dynamicFields"]["mappings"]["doctor"] == "visit.doctor"
        assert "{{patient_name}}" in payload["staticContent"]["content"]
        assert payload["layoutConfig"]["canvasSize"] == {"width": 800, "height": 600}
        assert len(payload["layoutConfig"]["elements"]) == 4

    def test_round_trip(self, mapped_document: TemplateDocument) -> None:
        assert from_payload(to_payload(mapped_document)) == mapped_document

    def test_round_trip_with_id(self, mapped_document: TemplateDocument) -> None:
        document = TemplateDocument(
            template_name=mapped_document.template_name,
            dynamic_fields=mapped_document.dynamic_fields,
            template_id="tpl-1",
        )
        payload = to_payload(document)
        assert payload["templateId"] == "tpl-1"
        assert from_payload(payload) == document

    def test_legacy_string_static_content(self) -> None:
        """Verify a payload whose staticContent is raw HTML still loads.

        Real-world significance:
        - Older templates stored only rendered HTML plus layoutConfig
        """
        payload = {
            "id": "legacy-7",
            "templateName": "Legacy",
            "category": "X_RAY",
            "staticContent": "<div>old</div>",
            "layoutConfig": {
                "canvasSize": {"width": 600, "height": 400},
                "elements": [
                    {"id": "s1", "content": "Findings", "isDynamic": False},
                    {"id": "f1", "fieldName": "findings", "isDynamic": True,
                     "dataMapping": "custom"},
                ],
            },
        }
        document = from_payload(payload)
        assert document.template_id == "legacy-7"
        assert document.category is TemplateCategory.X_RAY
        assert document.canvas_size == CanvasSize(600, 400)
        assert [e.id for e in document.static_elements] == ["s1"]
        assert [f.field_name for f in document.dynamic_fields] == ["findings"]

    def test_malformed_sections_tolerated(self) -> None:
        document = from_payload(
            {
                "templateName": "Broken",
                "category": "MRI",
                "dynamicFields": {"fields": ["not-a-field", {"fieldName": "ok"}]},
                "layoutConfig": {"canvasSize": {"width": -1}},
            }
        )
        assert document.category is TemplateCategory.BLOOD_TEST
        assert document.canvas_size == CanvasSize()
        assert [f.field_name for f in document.dynamic_fields] == ["ok"]

    def test_numeric_enum_values_fall_back(self) -> None:
        """Verify numeric category and fieldType values load with defaults.

        Real-world significance:
        - Legacy stored templates must open instead of failing the load
        """
        document = from_payload(
            {
                "templateName": "Legacy",
                "category": 2,
                "dynamicFields": {
                    "fields": [{"fieldName": "Heart Rate", "fieldType": 4, "dataMapping": "custom"}]
                },
            }
        )
        assert document.category is TemplateCategory.BLOOD_TEST
        field = document.dynamic_fields[0]
        assert field.field_type is FieldType.TEXT
        assert field.field_name == "heart_rate"

    def test_non_mapping_rejected(self) -> None:
        with pytest.raises(ValueError, match="must be a JSON object"):
            from_payload(["not", "a", "template"])


@pytest.mark.unit
class TestSave:
    """Unit tests for save."""

    def test_create_assigns_id(self, mapped_document: TemplateDocument) -> None:
        store = InMemoryTemplateStore()
        saved = save(mapped_document, store)
        assert saved.template_id is not None
        assert store.get_by_id(saved.template_id).template_name == "CBC"

    def test_update_existing(self, mapped_document: TemplateDocument) -> None:
        store = InMemoryTemplateStore()
        saved = save(mapped_document, store)
        renamed = TemplateDocument(
            template_name="CBC v2",
            static_elements=saved.static_elements,
            dynamic_fields=saved.dynamic_fields,
            template_id=saved.template_id,
        )
        updated = save(renamed, store)
        assert updated.template_id == saved.template_id
        assert len(store) == 1
        assert store.get_by_id(saved.template_id).template_name == "CBC v2"

    def test_validation_error_sends_nothing(self) -> None:
        store = InMemoryTemplateStore()
        with pytest.raises(TemplateValidationError) as exc_info:
            save(load_blank_preset(), store)
        assert len(store) == 0
        assert [v.code for v in exc_info.value.violations] == [MISSING_NAME, NO_ELEMENTS]
        assert "Template name is required" in str(exc_info.value)

    def test_warnings_do_not_block(self, caplog) -> None:
        document = TemplateDocument(
            template_name="T",
            dynamic_fields=(DynamicField(id="a", field_name="a", data_mapping="lab.hb"),),
        )
        store = InMemoryTemplateStore()
        with caplog.at_level("WARNING"):
            save(document, store)
        assert len(store) == 1
        assert "Unrecognized data mappings" in caplog.text
