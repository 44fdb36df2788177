"""Integration tests for the template lifecycle across modules.

Tests cover:
- Designing a template in an EditorSession and saving it to a JSON store
- Re-opening the stored template in a fresh session
- Generating a report from the stored template with file-backed records

Real-world significance:
- Templates are designed once and used for reports long after the
  designer session ended; everything the author placed must survive the
  round trip through the store
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from report_engine.editor import EditorSession, NoSelection
from report_engine.enums import TemplateCategory
from report_engine.geometry import Position
from report_engine.report_generator import (
    generate_report_from_store,
    write_report,
)
from report_engine.store import JsonDataContextProvider, JsonFileTemplateStore
from report_engine.template_document import find_element, to_payload


@pytest.fixture
def records_dir(tmp_test_dir: Path) -> Path:
    records = tmp_test_dir / "records"
    records.mkdir()
    (records / "patients.json").write_text(
        json.dumps([{"patientId": "P7", "name": "Ada Lovelace", "age": 36, "gender": "F"}]),
        encoding="utf-8",
    )
    (records / "visits.json").write_text(
        json.dumps(
            [
                {
                    "visitId": "V3",
                    "patientId": "P7",
                    "visitDate": "2025-01-15",
                    "doctorName": "Dr. Babbage",
                }
            ]
        ),
        encoding="utf-8",
    )
    return records


def _design_template(session: EditorSession) -> None:
    session.set_metadata(template_name="Consultation", category=TemplateCategory.GENERAL_REPORT)
    session.double_click("title-1")
    session.edit_text("Consultation Note")
    for field_type, (x, y), mapping in [
        ("text", (300, 150), "patient.name"),
        ("date", (300, 200), "visit.date"),
        ("text", (300, 250), "visit.doctor"),
        ("textarea", (300, 300), "custom"),
    ]:
        session.drop_field(field_type, x, y)
        session.open_properties()
        session.update_properties({"dataMapping": mapping})
        session.close_properties()


@pytest.mark.integration
class TestTemplateLifecycle:
    """Integration tests for design, save, reload and generate."""

    def test_design_save_and_reload(self, tmp_test_dir: Path) -> None:
        store = JsonFileTemplateStore(tmp_test_dir / "templates")
        session = EditorSession(store=store)
        _design_template(session)

        saved = session.save()
        assert saved is not None
        assert session.document.template_id == saved.template_id

        reopened = EditorSession(store=JsonFileTemplateStore(tmp_test_dir / "templates"))
        loaded = reopened.load(saved.template_id)
        assert reopened.state == NoSelection()
        assert to_payload(loaded) == to_payload(session.document)
        assert find_element(loaded, "title-1").content == "Consultation Note"
        assert [f.position for f in loaded.dynamic_fields] == [
            Position(250, 135),
            Position(250, 185),
            Position(250, 235),
            Position(250, 285),
        ]

    def test_resave_updates_in_place(self, tmp_test_dir: Path) -> None:
        store = JsonFileTemplateStore(tmp_test_dir / "templates")
        session = EditorSession(store=store)
        _design_template(session)
        first = session.save()

        session.mouse_down("header-1", 60, 125)
        session.mouse_move(70, 135)
        session.mouse_up()
        second = session.save()

        assert second.template_id == first.template_id
        assert len(list((tmp_test_dir / "templates").glob("*.json"))) == 1
        stored = store.get_by_id(first.template_id)
        assert find_element(stored, "header-1").position == Position(60, 130)

    def test_generate_from_stored_template(self, tmp_test_dir: Path, records_dir: Path, default_config) -> None:
        """Verify a stored template fills from patient and visit records.

        Real-world significance:
        - This is the daily flow: pick a template, pick a visit, print
        """
        store = JsonFileTemplateStore(tmp_test_dir / "templates")
        session = EditorSession(store=store)
        _design_template(session)
        saved = session.save()

        default_config["dates"]["format"] = "long"
        report = generate_report_from_store(
            saved.template_id,
            store,
            JsonDataContextProvider(records_dir),
            visit_id="V3",
            manual_values={"field_4": "Follow up in two weeks"},
            config=default_config,
        )
        assert ">Ada Lovelace</div>" in report.body_html
        assert ">January 15, 2025</div>" in report.body_html
        assert ">Dr. Babbage</div>" in report.body_html
        assert ">Follow up in two weeks</div>" in report.body_html
        assert ">Consultation Note</div>" in report.body_html
        assert report.gaps == []

        path = write_report(report, tmp_test_dir / "reports", "consultation")
        assert "Ada Lovelace" in path.read_text(encoding="utf-8")

    def test_unmapped_template_never_reaches_store(self, tmp_test_dir: Path) -> None:
        store = JsonFileTemplateStore(tmp_test_dir / "templates")
        session = EditorSession(store=store)
        session.set_metadata(template_name="Draft")
        session.drop_field("text", 200, 200)
        assert session.save() is None
        assert store.list_all() == []
