"""Resolve dynamic-field data mappings against patient/visit/report records.

**Mapping syntax:**
- ``"<namespace>.<field>"`` lowercase dotted key, namespace one of
  ``patient``, ``visit``, ``report``
- ``"custom"``: free text, never auto-filled
- ``"test_date"`` / ``"report_date"``: today's date, locale-formatted
- ``""``: unmapped (blocks saving; never auto-filled)

**Auto-fill table** (mapping key -> source record field):

===================  =========================================
``patient.name``     ``patient["name"]``
``patient.id``       ``patient["patientId"]``
``patient.age``      ``patient["age"]``
``patient.gender``   ``patient["gender"]``
``patient.phone``    ``patient["phoneNumber"]``
``patient.address``  ``patient["address"]``
``visit.date``       ``visit["visitDate"]`` formatted as a locale date
``visit.doctor``     ``visit["doctorName"]``
``visit.notes``      ``visit["notes"]``
===================  =========================================

Other keys offered by the designer (``patient.email``, ``visit.diagnosis``,
``report.type``, ...) are valid mappings but resolve to no auto-fill.

**Resolution contract:**
- Additive and best-effort: a missing namespace, missing source value or
  unparseable date is a resolution gap. The field keeps whatever value it had.
- Never raises for data problems; gaps are logged for diagnostics only.
- Manual values (typed by the user) are never overwritten by auto-fill.
- Idempotent: resolving the same context twice yields identical values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from babel.dates import format_date
from rapidfuzz import fuzz, process

from .data_models import DataContext, FieldValues, Resolution
from .elements import DynamicField
from .enums import MappingNamespace

LOG = logging.getLogger(__name__)

CUSTOM_MAPPING = "custom"
SYSTEM_DATE_MAPPINGS = frozenset({"test_date", "report_date"})

DEFAULT_LOCALE = "en_US"
DEFAULT_DATE_FORMAT = "short"
SUGGESTION_THRESHOLD = 80


@dataclass(frozen=True)
class SourceField:
    """Where an auto-filled mapping reads its value from."""

    namespace: MappingNamespace
    field: str
    is_date: bool = False


AUTO_FILL_TABLE: Dict[str, SourceField] = {
    "patient.name": SourceField(MappingNamespace.PATIENT, "name"),
    "patient.id": SourceField(MappingNamespace.PATIENT, "patientId"),
    "patient.age": SourceField(MappingNamespace.PATIENT, "age"),
    "patient.gender": SourceField(MappingNamespace.PATIENT, "gender"),
    "patient.phone": SourceField(MappingNamespace.PATIENT, "phoneNumber"),
    "patient.address": SourceField(MappingNamespace.PATIENT, "address"),
    "visit.date": SourceField(MappingNamespace.VISIT, "visitDate", is_date=True),
    "visit.doctor": SourceField(MappingNamespace.VISIT, "doctorName"),
    "visit.notes": SourceField(MappingNamespace.VISIT, "notes"),
}

# Mapping choices offered to template authors, in display order
MAPPING_OPTIONS: List[Tuple[str, str]] = [
    ("patient.name", "Patient Name"),
    ("patient.id", "Patient ID"),
    ("patient.age", "Patient Age"),
    ("patient.gender", "Patient Gender"),
    ("patient.address", "Patient Address"),
    ("patient.phone", "Patient Phone"),
    ("patient.email", "Patient Email"),
    ("visit.date", "Visit Date"),
    ("visit.symptoms", "Visit Symptoms"),
    ("visit.diagnosis", "Visit Diagnosis"),
    ("visit.prescription", "Visit Prescription"),
    ("visit.doctor", "Doctor Name"),
    ("visit.notes", "Visit Notes"),
    ("report.date", "Report Date"),
    ("report.type", "Report Type"),
    ("test_date", "Test Date (today)"),
    ("report_date", "Report Date (today)"),
    (CUSTOM_MAPPING, "Custom Field"),
]


def known_mappings() -> List[str]:
    """Return every mapping key a template author may choose."""
    return [key for key, _ in MAPPING_OPTIONS]


def is_known_mapping(mapping: str) -> bool:
    return mapping in {key for key, _ in MAPPING_OPTIONS}


def parse_mapping(mapping: str | None) -> Tuple[Optional[str], Optional[str]]:
    """Split a mapping key into ``(namespace, field)``.

    Returns ``(None, None)`` for unmapped, custom and system keys, and for
    anything that is not a ``<namespace>.<field>`` path over a known
    namespace.

    Examples
    --------
    >>> parse_mapping("patient.name")
    ('patient', 'name')
    >>> parse_mapping("custom")
    (None, None)
    """
    if not mapping or "." not in mapping:
        return None, None
    namespace, _, field_name = mapping.partition(".")
    if namespace not in MappingNamespace.all_values() or not field_name:
        return None, None
    return namespace, field_name


def suggest_mapping(
    mapping: str, threshold: int = SUGGESTION_THRESHOLD
) -> Optional[str]:
    """Suggest the closest known mapping key for a mistyped one.

    Uses the same fuzzy-matching approach as input column mapping: the best
    ``fuzz.ratio`` match among known keys is returned when its score reaches
    ``threshold``.

    Examples
    --------
    >>> suggest_mapping("patient.nmae")
    'patient.name'
    >>> suggest_mapping("zzz") is None
    True
    """
    if not mapping:
        return None
    match = process.extractOne(
        query=mapping.strip().lower(),
        choices=known_mappings(),
        scorer=fuzz.ratio,
    )
    if match is None:
        return None
    best, score, _ = match
    if score >= threshold:
        return best
    return None


def parse_record_date(value: Any) -> date:
    """Parse a record date (date, datetime or ISO 8601 string).

    Raises
    ------
    ValueError
        If the value cannot be interpreted as a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            raise ValueError(f"Unrecognized date format: {value}")
    raise ValueError(f"Unrecognized date value: {value!r}")


def format_display_date(
    value: date,
    locale: str = DEFAULT_LOCALE,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> str:
    """Format a date for display using Babel's locale data.

    Parameters
    ----------
    value : date
        Date to format.
    locale : str
        Babel locale identifier (default: "en_US").
    date_format : str
        Babel format name ("short", "medium", "long", "full") or a CLDR
        pattern such as "dd/MM/yyyy".

    Examples
    --------
    >>> format_display_date(date(2025, 1, 15), "en_US", "long")
    'January 15, 2025'
    """
    return format_date(value, format=date_format, locale=locale)


def resolve_mapping(
    mapping: str | None,
    context: DataContext,
    *,
    today: date | None = None,
    locale: str = DEFAULT_LOCALE,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> Resolution:
    """Resolve one mapping key against a data context.

    Parameters
    ----------
    mapping : str | None
        Data mapping key of a dynamic field.
    context : DataContext
        Records available for this report.
    today : date, optional
        Date used for ``test_date``/``report_date``; defaults to today.
    locale, date_format : str
        Babel formatting for date values.

    Returns
    -------
    Resolution
        ``resolved=True`` with the raw source value (dates formatted), or a
        gap with the reason. Never raises.
    """
    mapping = mapping or ""

    if mapping in SYSTEM_DATE_MAPPINGS:
        return Resolution(
            mapping=mapping,
            resolved=True,
            value=format_display_date(today or date.today(), locale, date_format),
        )

    if not mapping:
        return Resolution(mapping=mapping, resolved=False, reason="unmapped")

    if mapping == CUSTOM_MAPPING:
        return Resolution(mapping=mapping, resolved=False, reason="custom field")

    source = AUTO_FILL_TABLE.get(mapping)
    if source is None:
        return Resolution(
            mapping=mapping, resolved=False, reason="no auto-fill for mapping"
        )

    record = context.record(source.namespace)
    if record is None:
        return Resolution(
            mapping=mapping,
            resolved=False,
            reason=f"{source.namespace.value} record not available",
        )
    if not isinstance(record, Mapping):
        LOG.warning(
            "%s record is a %s, not an object; leaving %s unresolved",
            source.namespace.value,
            type(record).__name__,
            mapping,
        )
        return Resolution(
            mapping=mapping,
            resolved=False,
            reason=f"{source.namespace.value} record is malformed",
        )

    value = record.get(source.field)
    if value is None or value == "":
        return Resolution(
            mapping=mapping,
            resolved=False,
            reason=f"{source.namespace.value}.{source.field} is empty",
        )

    if source.is_date:
        try:
            value = format_display_date(parse_record_date(value), locale, date_format)
        except ValueError as exc:
            LOG.warning("Cannot format %s for mapping %s: %s", source.field, mapping, exc)
            return Resolution(mapping=mapping, resolved=False, reason=str(exc))

    return Resolution(mapping=mapping, resolved=True, value=value)


def resolve_fields(
    fields: Iterable[DynamicField],
    context: DataContext,
    values: FieldValues | None = None,
    *,
    today: date | None = None,
    locale: str = DEFAULT_LOCALE,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> Tuple[FieldValues, List[Resolution]]:
    """Auto-fill field values from a data context.

    Resolution is additive: unresolvable mappings leave the existing value in
    place, and manually entered values are never replaced. Values that were
    previously auto-filled are refreshed, so re-running after the context
    changes picks up the new data.

    Parameters
    ----------
    fields : Iterable[DynamicField]
        Dynamic fields of the template, in document order.
    context : DataContext
        Records available for this report.
    values : FieldValues, optional
        Current values and provenance; defaults to empty.

    Returns
    -------
    Tuple[FieldValues, List[Resolution]]
        Updated values and the list of resolution gaps (excluding custom
        fields, which are expected to be typed by hand).
    """
    values = values or FieldValues()
    merged: Dict[str, Any] = dict(values.values)
    auto_filled = set(values.auto_filled)
    gaps: List[Resolution] = []
    seen: set[str] = set()

    for dynamic_field in fields:
        name = dynamic_field.field_name
        if name in seen:
            LOG.warning(
                "Duplicate field name %s; later field overrides earlier value", name
            )
        seen.add(name)

        if name in values.manual:
            continue

        resolution = resolve_mapping(
            dynamic_field.data_mapping,
            context,
            today=today,
            locale=locale,
            date_format=date_format,
        )
        if resolution.resolved:
            merged[name] = resolution.value
            auto_filled.add(name)
            continue

        if dynamic_field.data_mapping != CUSTOM_MAPPING:
            LOG.debug(
                "Resolution gap for field %s (%s): %s",
                name,
                resolution.mapping or "unmapped",
                resolution.reason,
            )
            gaps.append(resolution)

    return (
        FieldValues(values=merged, manual=values.manual, auto_filled=frozenset(auto_filled)),
        gaps,
    )


def make_resolver(config: Dict[str, Any]) -> Callable[..., Tuple[FieldValues, List[Resolution]]]:
    """Bind ``resolve_fields`` to the date settings from parameters.yaml."""
    dates_config = config.get("dates", {})
    locale = dates_config.get("locale", DEFAULT_LOCALE)
    date_format = dates_config.get("format", DEFAULT_DATE_FORMAT)

    def resolver(fields, context, values=None, *, today=None):
        return resolve_fields(
            fields, context, values, today=today, locale=locale, date_format=date_format
        )

    return resolver
