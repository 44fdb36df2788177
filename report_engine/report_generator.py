"""Generate printable reports from a template and a data context.

Generation runs in three steps:

1. Resolve dynamic fields against the data context (``mapping_resolver``),
   keeping any values the user typed by hand.
2. Enforce ``required`` fields (configurable via ``report.enforce_required``).
3. Render the canvas with values substituted and wrap it in the print
   document shell.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .data_models import DataContext, FieldValues, GeneratedReport
from .mapping_resolver import DEFAULT_DATE_FORMAT, DEFAULT_LOCALE, resolve_fields
from .renderer import (
    DEFAULT_PAGE_MARGIN,
    DEFAULT_PAGE_SIZE,
    render_print_document,
    render_template_html,
    substitute_placeholders,
)
from .template_document import TemplateDocument
from .utils import is_blank

LOG = logging.getLogger(__name__)


class MissingRequiredFieldsError(ValueError):
    """Raised when required fields have no value at generation time."""

    def __init__(self, field_names: List[str]):
        self.field_names = list(field_names)
        super().__init__(
            f"{len(self.field_names)} required field(s) have no value: "
            f"{', '.join(self.field_names)}"
        )


def missing_required_fields(document: TemplateDocument, values: FieldValues) -> List[str]:
    """Return names of required fields whose value is blank, in field order."""
    return [
        f.field_name
        for f in document.dynamic_fields
        if f.required and is_blank(values.get(f.field_name))
    ]


def generate_report(
    document: TemplateDocument,
    context: DataContext,
    *,
    manual_values: Mapping[str, Any] | FieldValues | None = None,
    enforce_required: bool = True,
    keep_unresolved: bool = False,
    generated_at: datetime | None = None,
    today: date | None = None,
    locale: str = DEFAULT_LOCALE,
    date_format: str = DEFAULT_DATE_FORMAT,
    page_size: str = DEFAULT_PAGE_SIZE,
    page_margin: str = DEFAULT_PAGE_MARGIN,
) -> GeneratedReport:
    """Fill a template from a data context and render the printable report.

    Parameters
    ----------
    document : TemplateDocument
        Template to fill.
    context : DataContext
        Patient/visit/report records for this report.
    manual_values : Mapping or FieldValues, optional
        Values typed by the user, keyed by field name. They take precedence
        over auto-filled data.
    enforce_required : bool
        If True, blank required fields raise MissingRequiredFieldsError.
    keep_unresolved : bool
        If True, fields without a value keep their ``{{fieldName}}`` token in
        the output; otherwise they render empty.
    generated_at : datetime, optional
        Timestamp for the footer; omitted from the output when None.

    Returns
    -------
    GeneratedReport
        Full HTML, the canvas body, final values and resolution gaps.

    Raises
    ------
    MissingRequiredFieldsError
        If required fields are blank and enforcement is on.
    """
    if isinstance(manual_values, FieldValues):
        initial = manual_values
    else:
        initial = FieldValues.from_manual(manual_values)

    values, gaps = resolve_fields(
        document.dynamic_fields,
        context,
        initial,
        today=today,
        locale=locale,
        date_format=date_format,
    )
    for gap in gaps:
        LOG.info("Unresolved mapping %s: %s", gap.mapping or "(unmapped)", gap.reason)

    missing = missing_required_fields(document, values)
    if missing:
        if enforce_required:
            raise MissingRequiredFieldsError(missing)
        LOG.warning("Generating report with blank required fields: %s", ", ".join(missing))

    # Render with tokens, then substitute; substitution escapes every value
    body_html = substitute_placeholders(
        render_template_html(document),
        values.as_dict(),
        keep_unresolved=keep_unresolved,
    )
    html = render_print_document(
        body_html,
        title=document.template_name or "Report",
        generated_at=generated_at,
        page_size=page_size,
        page_margin=page_margin,
    )
    return GeneratedReport(
        template_name=document.template_name,
        html=html,
        body_html=body_html,
        values=values,
        gaps=gaps,
    )


def report_options(config: Dict[str, Any]) -> Dict[str, Any]:
    """Translate parameters.yaml sections into generate_report keywords."""
    report_config = config.get("report", {})
    dates_config = config.get("dates", {})
    print_config = config.get("print", {})
    return {
        "enforce_required": report_config.get("enforce_required", True),
        "keep_unresolved": report_config.get("keep_unresolved_placeholders", False),
        "locale": dates_config.get("locale", DEFAULT_LOCALE),
        "date_format": dates_config.get("format", DEFAULT_DATE_FORMAT),
        "page_size": print_config.get("page_size", DEFAULT_PAGE_SIZE),
        "page_margin": print_config.get("page_margin", DEFAULT_PAGE_MARGIN),
    }


def generate_report_from_store(
    template_id: str,
    store,
    provider,
    *,
    patient_id: Optional[str] = None,
    visit_id: Optional[str] = None,
    manual_values: Mapping[str, Any] | None = None,
    config: Optional[Dict[str, Any]] = None,
    generated_at: datetime | None = None,
) -> GeneratedReport:
    """Load a stored template and generate a report for a patient/visit.

    Store and provider errors propagate unchanged.
    """
    document = store.get_by_id(template_id)
    context = provider.get_context(patient_id=patient_id, visit_id=visit_id)
    LOG.info(
        "Generating %r for patient=%s visit=%s (available: %s)",
        document.template_name,
        patient_id,
        visit_id,
        ", ".join(sorted(context.available_namespaces)) or "none",
    )
    return generate_report(
        document,
        context,
        manual_values=manual_values,
        generated_at=generated_at,
        **report_options(config or {}),
    )


def write_report(report: GeneratedReport, output_dir: Path, stem: str) -> Path:
    """Write the report HTML to ``<output_dir>/<stem>.html``."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / f"{stem}.html"
    target.write_text(report.html, encoding="utf-8")
    LOG.info("Wrote report %s", target)
    return target
