"""Shared pytest fixtures for unit, integration, and e2e tests.

This module provides:
- Temporary directory fixtures for file I/O testing
- Configuration fixtures for parameter testing
- Sample template documents and data contexts
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
import yaml

from report_engine.data_models import DataContext
from report_engine.elements import DynamicField, ElementStyle, StaticElement
from report_engine.enums import FieldType, FontWeight, TemplateCategory, TextAlign
from report_engine.geometry import CanvasSize, Position, Size
from report_engine.store import InMemoryTemplateStore
from report_engine.template_document import TemplateDocument


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after each test.

    Real-world significance:
    - Isolates file I/O tests (template store, report output) from each other
    - Prevents test artifacts from polluting the file system

    Yields
    ------
    Path
        Absolute path to temporary directory (automatically deleted after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def default_config() -> Dict[str, Any]:
    """Provide a complete report-engine configuration for testing.

    Real-world significance:
    - Matches the production config/parameters.yaml schema
    - Tests can override single keys without rebuilding the whole dict

    Returns
    -------
    Dict[str, Any]
        Configuration dict with all standard sections
    """
    return {
        "canvas": {"width": 800, "height": 600},
        "print": {"page_size": "A4", "page_margin": "2cm"},
        "dates": {"locale": "en_US", "format": "short"},
        "mapping": {"suggestion_threshold": 80},
        "report": {
            "enforce_required": True,
            "keep_unresolved_placeholders": False,
        },
        "pdf": {"expected_pages": 1},
        "store": {"directory": "templates"},
    }


@pytest.fixture
def config_file(tmp_test_dir: Path, default_config: Dict[str, Any]) -> Path:
    """Write default_config to a parameters.yaml file.

    Returns
    -------
    Path
        Path to the written configuration file
    """
    config_path = tmp_test_dir / "parameters.yaml"
    config_path.write_text(yaml.safe_dump(default_config), encoding="utf-8")
    return config_path


@pytest.fixture
def title_element() -> StaticElement:
    return StaticElement(
        id="title-1",
        content="Complete Blood Count",
        position=Position(100, 50),
        size=Size(400, 40),
        style=ElementStyle(
            font_size=24,
            font_weight=FontWeight.BOLD,
            text_align=TextAlign.CENTER,
            color="#333333",
        ),
    )


@pytest.fixture
def mapped_document(title_element: StaticElement) -> TemplateDocument:
    """Provide a savable template with one static element and three fields.

    Real-world significance:
    - Represents a typical lab report: title, patient name/id, doctor
    - Every field is mapped, so validate_for_save reports no errors
    """
    fields = (
        DynamicField(
            id="field-name",
            field_name="patient_name",
            label="Patient Name",
            position=Position(50, 120),
            data_mapping="patient.name",
        ),
        DynamicField(
            id="field-id",
            field_name="patient_id",
            field_type=FieldType.NUMBER,
            label="Patient ID",
            position=Position(300, 120),
            data_mapping="patient.id",
        ),
        DynamicField(
            id="field-doctor",
            field_name="doctor",
            label="Doctor",
            position=Position(50, 170),
            data_mapping="visit.doctor",
        ),
    )
    return TemplateDocument(
        template_name="CBC",
        description="Complete blood count",
        category=TemplateCategory.BLOOD_TEST,
        static_elements=(title_element,),
        dynamic_fields=fields,
        canvas_size=CanvasSize(800, 600),
    )


@pytest.fixture
def patient_context() -> DataContext:
    """Provide a data context with only a patient record."""
    return DataContext(patient={"name": "Jane Doe", "patientId": 42, "age": 37})


@pytest.fixture
def full_context() -> DataContext:
    """Provide a data context with patient, visit and report records."""
    return DataContext(
        patient={
            "name": "Jane Doe",
            "patientId": 42,
            "age": 37,
            "gender": "Female",
            "phoneNumber": "555-0100",
            "address": "12 Main St",
        },
        visit={
            "visitDate": "2025-01-15T09:30:00Z",
            "doctorName": "Dr. Adams",
            "notes": "Fasting sample",
        },
        report={"reportId": "R1"},
    )


@pytest.fixture
def memory_store() -> InMemoryTemplateStore:
    return InMemoryTemplateStore()
