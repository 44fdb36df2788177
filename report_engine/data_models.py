"""Unified data models for the report-template engine.

This module provides the dataclasses passed between the resolver, the
template document model, the renderer and report generation. Template
elements themselves live in ``elements.py``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from .enums import MappingNamespace, NotificationLevel, ViolationSeverity


@dataclass(frozen=True)
class DataContext:
    """Read-only bag of records used to auto-fill dynamic fields.

    Supplied by the external data provider per report-generation request.
    A namespace that is ``None`` is simply unavailable (e.g. no patient id
    was given), which the resolver treats as a resolution gap, not an error.

    Fields
    ------
    patient : Optional[Mapping[str, Any]]
        Patient record, e.g. ``{"name": "Jane Doe", "patientId": 42,
        "age": 37, "gender": "F", "phoneNumber": "...", "address": "..."}``.
    visit : Optional[Mapping[str, Any]]
        Visit record, e.g. ``{"visitDate": "2025-01-15", "doctorName": "...",
        "notes": "..."}``.
    report : Optional[Mapping[str, Any]]
        Report record; no mapping currently reads from it.
    """

    patient: Optional[Mapping[str, Any]] = None
    visit: Optional[Mapping[str, Any]] = None
    report: Optional[Mapping[str, Any]] = None

    def record(self, namespace: MappingNamespace) -> Optional[Mapping[str, Any]]:
        return getattr(self, namespace.value)

    @property
    def available_namespaces(self) -> FrozenSet[str]:
        return frozenset(
            namespace.value
            for namespace in MappingNamespace
            if self.record(namespace) is not None
        )


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one mapping key against a data context.

    ``resolved`` is False for a resolution gap; ``reason`` then explains why
    (namespace unavailable, source field missing, unparseable date, custom or
    unrecognized mapping).
    """

    mapping: str
    resolved: bool
    value: Any = None
    reason: str = ""


@dataclass(frozen=True)
class FieldValues:
    """Field-name-keyed report values with provenance.

    ``manual`` names fields whose value was typed by a user; auto-fill never
    overwrites them. ``auto_filled`` names fields whose current value came
    from the data context and may be refreshed by re-resolution.
    """

    values: Dict[str, Any] = field(default_factory=dict)
    manual: FrozenSet[str] = frozenset()
    auto_filled: FrozenSet[str] = frozenset()

    @classmethod
    def from_manual(cls, values: Mapping[str, Any] | None) -> "FieldValues":
        values = dict(values or {})
        return cls(values=values, manual=frozenset(values))

    def get(self, field_name: str, default: Any = None) -> Any:
        return self.values.get(field_name, default)

    def with_manual(self, field_name: str, value: Any) -> "FieldValues":
        """Record a user edit; the field stops being auto-filled."""
        values = dict(self.values)
        values[field_name] = value
        return FieldValues(
            values=values,
            manual=self.manual | {field_name},
            auto_filled=self.auto_filled - {field_name},
        )

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.values)


@dataclass(frozen=True)
class Violation:
    """A save-time validation finding.

    Parameters
    ----------
    code : str
        Stable machine-readable identifier (e.g. ``UNMAPPED_FIELDS``).
    message : str
        Human-readable message shown to the template author.
    count : Optional[int]
        Number of offending elements where applicable.
    severity : ViolationSeverity
        ERROR blocks saving; WARNING is advisory.
    element_ids : List[str]
        Ids of the offending elements, for highlighting in the editor.
    """

    code: str
    message: str
    count: Optional[int] = None
    severity: ViolationSeverity = ViolationSeverity.ERROR
    element_ids: List[str] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.severity is ViolationSeverity.ERROR


@dataclass(frozen=True)
class Notification:
    """A transient editor message (field added, save failed, ...)."""

    message: str
    level: NotificationLevel = NotificationLevel.INFO


@dataclass(frozen=True)
class GeneratedReport:
    """A rendered report ready for print or PDF export.

    Parameters
    ----------
    template_name : str
        Name of the template the report was generated from.
    html : str
        Full print document (shell, stylesheet, content, footer).
    body_html : str
        The positioned canvas only; comparable across runs because the
        generated-at timestamp is kept out of it.
    values : FieldValues
        Final field values with provenance.
    gaps : List[Resolution]
        Mappings that could not be resolved from the data context.
    """

    template_name: str
    html: str
    body_html: str
    values: FieldValues
    gaps: List[Resolution]


@dataclass(frozen=True)
class LabImportResult:
    """Result of a lab-template batch import.

    Parameters
    ----------
    created : List[str]
        Template names created in the store.
    skipped : List[str]
        Template names skipped because a template with that name existed.
    """

    created: List[str]
    skipped: List[str]


@dataclass(frozen=True)
class TemplateUploadResult:
    """Outcome of uploading one template JSON file.

    Parameters
    ----------
    path : Path
        File that was read.
    template_name : str
        Name found in the file, or the file stem when it has none.
    errors : List[str]
        Problems that kept the file out of the store; empty when valid.
    template_id : Optional[str]
        Store id of the created template; None for invalid files and for
        validate-only runs.
    """

    path: Path
    template_name: str
    errors: List[str]
    template_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def uploaded(self) -> bool:
        return self.template_id is not None


@dataclass(frozen=True)
class PdfValidationResult:
    """Result of checking an exported report PDF."""

    pdf_path: Path
    page_count: int
    warnings: List[str]

    @property
    def passed(self) -> bool:
        return not self.warnings
