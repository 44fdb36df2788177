"""Predefined template library, laboratory templates and bulk template upload.

Library entries are loosely shaped preview data (lists of static elements
and dynamic fields with optional ids, positions and names). Turning one into
a ``TemplateDocument`` is best-effort: a malformed entry never aborts the
copy, each missing piece falls back to a default and a warning is logged.

Lab templates are generated from a test name (e.g. "ELECTROLYTE") with a
standard layout: heading, patient block, result and reference range,
test-specific rows, test date, technician, doctor and notes.

Bulk upload takes template JSON files written by hand or exported from
another installation, reports problems per file and creates the valid ones.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .data_models import LabImportResult, TemplateUploadResult
from .elements import (
    DynamicField,
    ElementStyle,
    StaticElement,
    dynamic_field_from_dict,
    static_element_from_dict,
)
from .enums import FieldType, FontWeight, TemplateCategory, TextAlign
from .geometry import CanvasSize, Position, Size
from .store import TemplateStore, find_by_name
from .template_document import (
    TemplateDocument,
    TemplateValidationError,
    from_payload,
    save,
)
from .utils import field_name_from_label, is_valid_field_name, string_or_empty

LOG = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"
DEFAULT_STATIC_CONTENT = "Static Content"


@dataclass(frozen=True)
class LibraryEntry:
    """A predefined template offered in the template library."""

    id: str
    name: str
    description: str
    category: str
    tags: Tuple[str, ...] = ()
    rating: float = 0.0
    downloads: int = 0
    created_by: str = ""
    is_official: bool = False
    preview_data: Optional[Mapping[str, Any]] = field(default=None)


def _heading(content: str) -> Dict[str, Any]:
    return {"content": content, "style": {"fontSize": 24, "fontWeight": "bold"}}


def _section(content: str) -> Dict[str, Any]:
    return {"content": content, "style": {"fontSize": 16, "fontWeight": "bold"}}


def _field(label: str, field_type: str, mapping: str) -> Dict[str, Any]:
    return {"label": label, "fieldType": field_type, "dataMapping": mapping}


PREDEFINED_TEMPLATES: List[LibraryEntry] = [
    LibraryEntry(
        id="blood-test-basic",
        name="Basic Blood Test Report",
        description=(
            "Standard blood test report template with common parameters like "
            "CBC, glucose, cholesterol"
        ),
        category="BLOOD_TEST",
        tags=("blood", "CBC", "glucose", "cholesterol", "basic"),
        rating=4.8,
        downloads=1250,
        created_by="Medical Center Team",
        is_official=True,
        preview_data={
            "staticElements": [_heading("BLOOD TEST REPORT"), _section("Patient Information")],
            "dynamicFields": [
                _field("Patient Name", "text", "patient.name"),
                _field("Test Date", "date", "report.date"),
                _field("Hemoglobin", "number", "lab.hemoglobin"),
            ],
        },
    ),
    LibraryEntry(
        id="xray-chest",
        name="Chest X-Ray Report",
        description=(
            "Professional chest X-ray report template with radiologist findings "
            "and recommendations"
        ),
        category="X_RAY",
        tags=("x-ray", "chest", "radiology", "lungs"),
        rating=4.6,
        downloads=890,
        created_by="Dr. Smith Radiology",
        preview_data={
            "staticElements": [_heading("CHEST X-RAY REPORT"), _section("Radiological Findings")],
            "dynamicFields": [
                _field("Patient Name", "text", "patient.name"),
                _field("Study Date", "date", "report.date"),
                _field("Findings", "textarea", "radiology.findings"),
            ],
        },
    ),
    LibraryEntry(
        id="ecg-standard",
        name="Standard ECG Report",
        description=(
            "Comprehensive ECG report template with rhythm analysis and cardiac "
            "assessment"
        ),
        category="ECG",
        tags=("ECG", "cardiology", "heart", "rhythm"),
        rating=4.9,
        downloads=756,
        created_by="Cardiology Department",
        is_official=True,
        preview_data={
            "staticElements": [_heading("ELECTROCARDIOGRAM REPORT"), _section("Cardiac Analysis")],
            "dynamicFields": [
                _field("Patient Name", "text", "patient.name"),
                _field("Heart Rate", "number", "ecg.heartRate"),
                _field("Rhythm", "text", "ecg.rhythm"),
            ],
        },
    ),
    LibraryEntry(
        id="urine-analysis",
        name="Complete Urine Analysis",
        description=(
            "Detailed urine analysis report including physical, chemical, and "
            "microscopic examination"
        ),
        category="URINE_TEST",
        tags=("urine", "urinalysis", "microscopic", "chemical"),
        rating=4.7,
        downloads=623,
        created_by="Lab Tech Solutions",
        preview_data={
            "staticElements": [_heading("URINE ANALYSIS REPORT"), _section("Laboratory Results")],
            "dynamicFields": [
                _field("Patient Name", "text", "patient.name"),
                _field("Color", "text", "urine.color"),
                _field("Specific Gravity", "number", "urine.specificGravity"),
            ],
        },
    ),
    LibraryEntry(
        id="general-medical",
        name="General Medical Report",
        description=(
            "Versatile medical report template suitable for general consultations "
            "and follow-ups"
        ),
        category="GENERAL_REPORT",
        tags=("general", "consultation", "medical", "versatile"),
        rating=4.5,
        downloads=1100,
        created_by="Medical Center Team",
        is_official=True,
        preview_data={
            "staticElements": [_heading("MEDICAL REPORT"), _section("Patient Assessment")],
            "dynamicFields": [
                _field("Patient Name", "text", "patient.name"),
                _field("Chief Complaint", "textarea", "visit.symptoms"),
                _field("Diagnosis", "textarea", "visit.diagnosis"),
            ],
        },
    ),
    LibraryEntry(
        id="ultrasound-abdominal",
        name="Abdominal Ultrasound Report",
        description="Comprehensive abdominal ultrasound report with organ-specific findings",
        category="ULTRASOUND",
        tags=("ultrasound", "abdominal", "sonography", "imaging"),
        rating=4.4,
        downloads=445,
        created_by="Imaging Center",
        preview_data={
            "staticElements": [
                _heading("ABDOMINAL ULTRASOUND REPORT"),
                _section("Sonographic Findings"),
            ],
            "dynamicFields": [
                _field("Patient Name", "text", "patient.name"),
                _field("Liver Findings", "textarea", "ultrasound.liver"),
                _field("Gallbladder", "textarea", "ultrasound.gallbladder"),
            ],
        },
    ),
]


def get_library_entry(entry_id: str) -> LibraryEntry:
    """Return a predefined entry by id.

    Raises
    ------
    KeyError
        If no entry has that id. The message lists the valid ids.
    """
    for entry in PREDEFINED_TEMPLATES:
        if entry.id == entry_id:
            return entry
    raise KeyError(
        f"Unknown library template: {entry_id}. "
        f"Valid options: {', '.join(e.id for e in PREDEFINED_TEMPLATES)}"
    )


def search_library(
    term: str = "",
    category: str | None = None,
    sort_by: str = "popular",
) -> List[LibraryEntry]:
    """Filter and sort library entries.

    Parameters
    ----------
    term : str
        Case-insensitive substring matched against name, description and tags.
    category : str, optional
        Category value to restrict to; empty or None means all.
    sort_by : str
        "popular" (downloads, default), "rating" or "name".
    """
    needle = term.strip().lower()

    def matches(entry: LibraryEntry) -> bool:
        if category and entry.category != category:
            return False
        if not needle:
            return True
        return (
            needle in entry.name.lower()
            or needle in entry.description.lower()
            or any(needle in tag.lower() for tag in entry.tags)
        )

    results = [entry for entry in PREDEFINED_TEMPLATES if matches(entry)]
    if sort_by == "rating":
        return sorted(results, key=lambda e: e.rating, reverse=True)
    if sort_by == "name":
        return sorted(results, key=lambda e: e.name)
    return sorted(results, key=lambda e: e.downloads, reverse=True)


def _as_list(value: Any, what: str) -> List[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        LOG.warning("Library %s is not a list; using empty list", what)
        return []
    items = [item for item in value if isinstance(item, Mapping)]
    if len(items) != len(value):
        LOG.warning("Skipping %d malformed library %s", len(value) - len(items), what)
    return items


def transform_static_elements(items: Any) -> List[StaticElement]:
    """Turn loose library static elements into StaticElements.

    Missing ids become ``static_<i>``; missing positions fall back to the
    staggered layout ``(50 + 30i, 50 + 40i)``.
    """
    elements = []
    for index, item in enumerate(_as_list(items, "static elements")):
        if not item.get("id"):
            LOG.warning("Library static element %d has no id; using static_%d", index, index)
        if item.get("content") is None and item.get("label") is None:
            item = {**item, "content": DEFAULT_STATIC_CONTENT}
        elements.append(
            static_element_from_dict(
                item,
                index,
                default_position=Position(50 + index * 30, 50 + index * 40),
            )
        )
    return elements


def transform_dynamic_fields(items: Any) -> List[DynamicField]:
    """Turn loose library dynamic fields into DynamicFields.

    Missing ids become ``field_<i>``; missing names derive from the label;
    missing positions fall back to ``(50 + 30i, 200 + 40i)``.
    """
    fields_list = []
    for index, item in enumerate(_as_list(items, "dynamic fields")):
        if not item.get("fieldName"):
            LOG.warning(
                "Library field %d has no fieldName; deriving %s",
                index,
                field_name_from_label(string_or_empty(item.get("label")), index),
            )
        fields_list.append(
            dynamic_field_from_dict(
                item,
                index,
                default_position=Position(50 + index * 30, 200 + index * 40),
            )
        )
    return fields_list


def transform_library_entry(entry: LibraryEntry | Mapping[str, Any]) -> TemplateDocument:
    """Build an editable copy of a library entry.

    Accepts a ``LibraryEntry`` or a raw mapping with ``name``, ``description``,
    ``category`` and ``previewData`` keys. Never raises for malformed data;
    see the module docstring.
    """
    if isinstance(entry, LibraryEntry):
        name, description = entry.name, entry.description
        category_value, preview = entry.category, entry.preview_data
    else:
        name = string_or_empty(entry.get("name")) or "Untitled Template"
        description = string_or_empty(entry.get("description"))
        category_value = entry.get("category")
        preview = entry.get("previewData")

    if not isinstance(preview, Mapping):
        if preview is not None:
            LOG.warning("Library template %r has malformed preview data", name)
        preview = {}

    try:
        category = TemplateCategory.from_string(category_value)
    except ValueError as exc:
        LOG.warning("%s; using %s", exc, TemplateCategory.GENERAL_REPORT.value)
        category = TemplateCategory.GENERAL_REPORT

    return TemplateDocument(
        template_name=f"{name}{COPY_SUFFIX}",
        description=description,
        category=category,
        static_elements=tuple(transform_static_elements(preview.get("staticElements"))),
        dynamic_fields=tuple(transform_dynamic_fields(preview.get("dynamicFields"))),
        canvas_size=CanvasSize(),
    )


def use_library_template(
    entry: LibraryEntry | Mapping[str, Any],
    store: TemplateStore,
    config: Optional[Dict[str, Any]] = None,
) -> TemplateDocument:
    """Copy a library entry into the store and return the saved copy."""
    return save(transform_library_entry(entry), store, config)


# Laboratory templates

LAB_TESTS: List[str] = [
    "ALK PHOSPATASE",
    "AMYLASE",
    "BILIRUBIN",
    "CHLORIDE",
    "CHOLESTEROL",
    "C.K",
    "CREATININE",
    "ELECTROLYTE",
    "GAMMAGT",
    "FBS",
    "RBS",
    "PPBS",
    "G.T.T.",
    "G.T.T. (NORMAL)",
    "G.T.T. (SPOT)",
    "POTASSIUM",
    "PROTEIN",
    "ACETONE",
    "ALBUMIN",
    "S.G.O.T. (AST)",
    "S.G.P.T. (ALT)",
]

LAB_LEFT_COLUMN = 50
LAB_RIGHT_COLUMN = 400
LAB_FIRST_ROW = 100
LAB_ROW_HEIGHT = 40
LAB_LABEL_SIZE = Size(120, 30)
LAB_VALUE_SIZE = Size(200, 30)
LAB_LABEL_STYLE = ElementStyle(
    font_size=12,
    font_weight=FontWeight.BOLD,
    text_align=TextAlign.LEFT,
    color="#333333",
)

# (label, field type, data mapping); one tuple per row, two cells at most
_PATIENT_ROWS = [
    (("Patient Name", "text", "patient.name"), ("Patient ID", "text", "patient.id")),
    (("Age", "text", "patient.age"), ("Gender", "text", "patient.gender")),
]
_RESULT_ROWS = [
    (("Result", "text", "custom"),),
    (("Reference Range", "text", "custom"),),
]
_CLOSING_ROWS = [
    (("Test Date", "date", "test_date"),),
    (("Lab Technician", "text", "custom"), ("Doctor's Signature", "text", "visit.doctor")),
    (("Notes", "textarea", "custom"),),
]


def lab_test_extra_rows(test_name: str) -> List[Tuple[Tuple[str, str, str], ...]]:
    """Return the test-specific rows for a lab test.

    Examples
    --------
    >>> [cell[0] for row in lab_test_extra_rows("FBS") for cell in row]
    ['Glucose Level', 'Collection Time']
    """
    name = test_name.strip().upper()
    if name == "ELECTROLYTE":
        return [
            (("Sodium", "text", "custom"), ("Potassium", "text", "custom")),
            (("Chloride", "text", "custom"), ("Bicarbonate", "text", "custom")),
        ]
    if "G.T.T" in name:
        return [
            (("Fasting", "text", "custom"), ("30 Minutes", "text", "custom")),
            (("60 Minutes", "text", "custom"), ("120 Minutes", "text", "custom")),
        ]
    if name in ("FBS", "RBS", "PPBS"):
        return [(("Glucose Level", "text", "custom"), ("Collection Time", "text", "custom"))]
    return []


def create_lab_template(test_name: str) -> TemplateDocument:
    """Build a laboratory report template for one test.

    Every value cell is a mapped dynamic field (patient details auto-fill,
    the test date uses today's date, result cells are ``custom``) preceded by
    a bold static label.

    Raises
    ------
    ValueError
        If test_name is blank.
    """
    test_name = string_or_empty(test_name)
    if not test_name:
        raise ValueError("Lab test name is required")

    static_elements = [
        StaticElement(
            id="lab-heading",
            content=test_name,
            position=Position(200, 40),
            size=Size(400, 30),
            style=ElementStyle(
                font_size=18,
                font_weight=FontWeight.BOLD,
                text_align=TextAlign.CENTER,
                color="#333333",
            ),
        )
    ]
    dynamic_fields: List[DynamicField] = []

    rows = _PATIENT_ROWS + _RESULT_ROWS + lab_test_extra_rows(test_name) + _CLOSING_ROWS
    for row_index, row in enumerate(rows):
        y = LAB_FIRST_ROW + row_index * LAB_ROW_HEIGHT
        for column, (label, field_type, mapping) in zip(
            (LAB_LEFT_COLUMN, LAB_RIGHT_COLUMN), row
        ):
            field_name = field_name_from_label(label, len(dynamic_fields) + 1)
            static_elements.append(
                StaticElement(
                    id=f"label-{field_name}",
                    content=f"{label}:",
                    position=Position(column, y),
                    size=LAB_LABEL_SIZE,
                    style=LAB_LABEL_STYLE,
                )
            )
            dynamic_fields.append(
                DynamicField(
                    id=f"field-{field_name}",
                    field_name=field_name,
                    field_type=FieldType.from_string(field_type),
                    label=label,
                    placeholder=f"Enter {label.lower()}",
                    position=Position(column + LAB_LABEL_SIZE.width + 10, y),
                    size=LAB_VALUE_SIZE if column == LAB_LEFT_COLUMN else Size(180, 30),
                    data_mapping=mapping,
                )
            )

    return TemplateDocument(
        template_name=test_name,
        description=f"{test_name} laboratory report",
        category=TemplateCategory.BLOOD_TEST,
        static_elements=tuple(static_elements),
        dynamic_fields=tuple(dynamic_fields),
        canvas_size=CanvasSize(),
    )


_HEADER_NAMES = {"name", "names", "test", "tests", "test name", "test_name", "report name"}


def _clean_names(values: Iterable[Any]) -> List[str]:
    names = [string_or_empty(value) for value in values]
    names = [name for name in names if name]
    if names and names[0].lower() in _HEADER_NAMES:
        names = names[1:]
    return names


def read_lab_test_names(file_path: Path) -> List[str]:
    """Read lab test names from a text, CSV or Excel file.

    Text files hold one name per line. CSV and Excel files are read from
    their first column; a leading header cell such as "Test Name" is
    dropped. Blank entries are skipped.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file type is unsupported or a CSV cannot be decoded.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Lab test list not found: {file_path}")

    ext = file_path.suffix.lower()
    if ext in ("", ".txt"):
        return _clean_names(file_path.read_text(encoding="utf-8").splitlines())

    if ext in (".xlsx", ".xls"):
        df = pd.read_excel(file_path, engine="openpyxl", header=None, dtype=str)
    elif ext == ".csv":
        for enc in ["utf-8-sig", "latin-1", "cp1252"]:
            try:
                df = pd.read_csv(file_path, header=None, dtype=str, encoding=enc)
                break
            except UnicodeDecodeError:
                continue
        else:
            raise ValueError(f"Could not decode CSV with common encodings: {file_path}")
    else:
        raise ValueError(
            f"Unsupported lab test list type: {ext}. Valid options: .txt, .csv, .xlsx"
        )

    if df.empty:
        return []
    names = _clean_names(df.iloc[:, 0].tolist())
    LOG.info("Loaded %s lab test names from %s", len(names), file_path)
    return names


def import_lab_templates(
    names: Sequence[str] | None,
    store: TemplateStore,
    *,
    skip_existing: bool = True,
    config: Optional[Dict[str, Any]] = None,
) -> LabImportResult:
    """Create lab templates in a store, one per test name.

    Parameters
    ----------
    names : Sequence[str], optional
        Test names; defaults to ``LAB_TESTS``. Blank and repeated names are
        ignored.
    store : TemplateStore
        Destination store.
    skip_existing : bool
        If True, names already present in the store are reported as skipped
        instead of created again.

    Returns
    -------
    LabImportResult
        Created and skipped template names, in input order.
    """
    created: List[str] = []
    skipped: List[str] = []
    seen = set()
    for raw_name in names if names is not None else LAB_TESTS:
        name = string_or_empty(raw_name)
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())

        if skip_existing and find_by_name(store, name) is not None:
            LOG.info("Skipping lab template %s: already exists", name)
            skipped.append(name)
            continue

        save(create_lab_template(name), store, config)
        created.append(name)

    LOG.info("Lab import: %d created, %d skipped", len(created), len(skipped))
    return LabImportResult(created=created, skipped=skipped)


# Bulk template upload

def validate_upload_payload(payload: Any) -> List[str]:
    """Check an uploaded template payload before it is created.

    A payload needs a ``templateName``, a known ``category`` and at least
    one of ``staticContent``/``dynamicFields``. Every entry of
    ``dynamicFields.fields`` needs a placeholder-safe ``fieldName``, a known
    ``fieldType`` and a ``dataMapping``.

    Returns
    -------
    List[str]
        Human-readable problems, numbered by field position; empty when the
        payload can be uploaded.
    """
    if not isinstance(payload, Mapping):
        return ["Template must be a JSON object"]

    errors: List[str] = []
    if not string_or_empty(payload.get("templateName")):
        errors.append("Template name is required")

    category = payload.get("category")
    if not category:
        errors.append("Template category is required")
    else:
        try:
            TemplateCategory.from_string(category)
        except ValueError as exc:
            errors.append(str(exc))

    if not payload.get("staticContent") and not payload.get("dynamicFields"):
        errors.append("Template must have either static content or dynamic fields")

    dynamic_section = payload.get("dynamicFields")
    items = dynamic_section.get("fields") if isinstance(dynamic_section, Mapping) else None
    if items is not None and not isinstance(items, list):
        errors.append("dynamicFields.fields must be a list")
        items = None

    for number, item in enumerate(items or [], start=1):
        if not isinstance(item, Mapping):
            errors.append(f"Dynamic field {number}: must be an object")
            continue
        field_name = item.get("fieldName")
        if not field_name:
            errors.append(f"Dynamic field {number}: fieldName is required")
        elif not is_valid_field_name(field_name):
            errors.append(
                f"Dynamic field {number}: fieldName {field_name!r} must match [A-Za-z0-9_]+"
            )
        field_type = item.get("fieldType")
        if not field_type:
            errors.append(f"Dynamic field {number}: fieldType is required")
        else:
            try:
                FieldType.from_string(field_type)
            except ValueError as exc:
                errors.append(f"Dynamic field {number}: {exc}")
        if not string_or_empty(item.get("dataMapping")):
            errors.append(f"Dynamic field {number}: dataMapping is required")
    return errors


def _read_upload(path: Path) -> Tuple[Any, List[str]]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        LOG.warning("Cannot read template upload %s: %s", path, exc)
        return None, ["Failed to read file content"]
    try:
        return json.loads(text), []
    except json.JSONDecodeError:
        return None, ["Invalid JSON format"]


def import_template_files(
    paths: Iterable[Path],
    store: TemplateStore,
    *,
    validate_only: bool = False,
    config: Optional[Dict[str, Any]] = None,
) -> List[TemplateUploadResult]:
    """Validate template JSON files and create the valid ones in a store.

    Each file is handled on its own: an unreadable, malformed or invalid
    file is reported in its result and never stops the rest of the batch.
    Uploaded templates are always created as new templates; an id carried
    in the file is ignored.

    Parameters
    ----------
    paths : Iterable[Path]
        Template JSON files, in upload order.
    store : TemplateStore
        Destination store.
    validate_only : bool
        If True, only report per-file problems; nothing is written.
    config : Dict[str, Any], optional
        Parsed parameters.yaml, passed through to ``save``.

    Returns
    -------
    List[TemplateUploadResult]
        One result per file, in input order.

    Raises
    ------
    TemplateStoreError
        Propagated from the store; templates created before the failure
        stay in the store.
    """
    results: List[TemplateUploadResult] = []
    for path in paths:
        path = Path(path)
        payload, errors = _read_upload(path)
        if not errors:
            errors = validate_upload_payload(payload)

        name = path.stem
        if isinstance(payload, Mapping):
            name = string_or_empty(payload.get("templateName")) or name

        if errors or validate_only:
            if errors:
                LOG.warning("Template upload %s rejected: %s", path, "; ".join(errors))
            results.append(TemplateUploadResult(path=path, template_name=name, errors=errors))
            continue

        document = replace(from_payload(payload), template_id=None)
        try:
            saved = save(document, store, config)
        except TemplateValidationError as exc:
            messages = [v.message for v in exc.violations if v.is_error]
            LOG.warning("Template upload %s rejected: %s", path, "; ".join(messages))
            results.append(TemplateUploadResult(path=path, template_name=name, errors=messages))
            continue
        results.append(
            TemplateUploadResult(
                path=path, template_name=name, errors=[], template_id=saved.template_id
            )
        )

    uploaded = sum(1 for result in results if result.uploaded)
    LOG.info(
        "Template upload: %d file(s), %d valid, %d created",
        len(results),
        sum(1 for result in results if result.is_valid),
        uploaded,
    )
    return results
