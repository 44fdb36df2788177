"""Template persistence and data-context providers.

The report engine never owns persistence; it talks to collaborators through
two small protocols:

- ``TemplateStore``: whole-document create/update/get/delete/list.
- ``DataContextProvider``: patient/visit/report records by id.

Two template stores ship with the package. ``InMemoryTemplateStore`` backs
tests and short-lived editor sessions; ``JsonFileTemplateStore`` writes one
``<templateId>.json`` payload per template into a directory, the same JSON
artifact layout the CLI reads back. Any store failure is raised as
``TemplateStoreError`` so callers can surface it unchanged.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .data_models import DataContext
from .enums import TemplateCategory
from .template_document import TemplateDocument, from_payload, to_payload
from .utils import new_element_id, string_or_empty

LOG = logging.getLogger(__name__)


class TemplateStoreError(RuntimeError):
    """A template store operation failed."""


class TemplateNotFoundError(TemplateStoreError):
    """The requested template id does not exist in the store."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class TemplateStore(Protocol):
    def create(self, document: TemplateDocument) -> TemplateDocument: ...

    def update(self, template_id: str, document: TemplateDocument) -> TemplateDocument: ...

    def get_by_id(self, template_id: str) -> TemplateDocument: ...

    def delete(self, template_id: str) -> None: ...

    def list_by_category(self, category: TemplateCategory) -> List[TemplateDocument]: ...

    def list_all(self) -> List[TemplateDocument]: ...


class DataContextProvider(Protocol):
    def get_context(
        self, patient_id: Optional[str] = None, visit_id: Optional[str] = None
    ) -> DataContext: ...


def _new_template_id() -> str:
    return new_element_id("tpl")


class InMemoryTemplateStore:
    """Dictionary-backed template store.

    Documents are frozen, so storing them directly never leaks later edits
    into the store.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, TemplateDocument] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def create(self, document: TemplateDocument) -> TemplateDocument:
        saved = replace(document, template_id=_new_template_id())
        self._documents[saved.template_id] = saved
        return saved

    def update(self, template_id: str, document: TemplateDocument) -> TemplateDocument:
        if template_id not in self._documents:
            raise TemplateNotFoundError(template_id)
        saved = replace(document, template_id=template_id)
        self._documents[template_id] = saved
        return saved

    def get_by_id(self, template_id: str) -> TemplateDocument:
        try:
            return self._documents[template_id]
        except KeyError:
            raise TemplateNotFoundError(template_id) from None

    def delete(self, template_id: str) -> None:
        if self._documents.pop(template_id, None) is None:
            raise TemplateNotFoundError(template_id)

    def list_by_category(self, category: TemplateCategory) -> List[TemplateDocument]:
        return [doc for doc in self._documents.values() if doc.category is category]

    def list_all(self) -> List[TemplateDocument]:
        return list(self._documents.values())


def read_template_file(path: Path) -> TemplateDocument:
    """Load a template document from a JSON payload file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file is not valid JSON or not a JSON object.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Template file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Template file is not valid JSON: {path}") from exc
    return from_payload(payload)


def write_template_file(document: TemplateDocument, path: Path) -> Path:
    """Write a document's wire payload to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_payload(document), indent=2), encoding="utf-8")
    return path


class JsonFileTemplateStore:
    """Directory of ``<templateId>.json`` payload files.

    Parameters
    ----------
    directory : Path
        Store directory; created on first write.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, template_id: str) -> Path:
        if not template_id or "/" in template_id or "\\" in template_id:
            raise TemplateStoreError(f"Invalid template id: {template_id!r}")
        return self.directory / f"{template_id}.json"

    def _write(self, document: TemplateDocument) -> TemplateDocument:
        try:
            write_template_file(document, self._path(document.template_id))
        except OSError as exc:
            raise TemplateStoreError(
                f"Cannot write template {document.template_id} to {self.directory}: {exc}"
            ) from exc
        return document

    def _read(self, path: Path) -> TemplateDocument:
        try:
            document = read_template_file(path)
        except (OSError, ValueError) as exc:
            raise TemplateStoreError(f"Cannot read template file {path}: {exc}") from exc
        if document.template_id != path.stem:
            document = replace(document, template_id=path.stem)
        return document

    def create(self, document: TemplateDocument) -> TemplateDocument:
        saved = self._write(replace(document, template_id=_new_template_id()))
        LOG.info("Stored template %s in %s", saved.template_id, self.directory)
        return saved

    def update(self, template_id: str, document: TemplateDocument) -> TemplateDocument:
        if not self._path(template_id).exists():
            raise TemplateNotFoundError(template_id)
        return self._write(replace(document, template_id=template_id))

    def get_by_id(self, template_id: str) -> TemplateDocument:
        path = self._path(template_id)
        if not path.exists():
            raise TemplateNotFoundError(template_id)
        return self._read(path)

    def delete(self, template_id: str) -> None:
        path = self._path(template_id)
        if not path.exists():
            raise TemplateNotFoundError(template_id)
        path.unlink()

    def list_all(self) -> List[TemplateDocument]:
        if not self.directory.exists():
            return []
        return [self._read(path) for path in sorted(self.directory.glob("*.json"))]

    def list_by_category(self, category: TemplateCategory) -> List[TemplateDocument]:
        return [doc for doc in self.list_all() if doc.category is category]


def find_by_name(store: TemplateStore, template_name: str) -> Optional[TemplateDocument]:
    """Return the first stored template with the given name (case-insensitive)."""
    wanted = template_name.strip().lower()
    for document in store.list_all():
        if document.template_name.strip().lower() == wanted:
            return document
    return None


def _index_records(records: Any, id_keys: tuple[str, ...], source: Path) -> Dict[str, Mapping[str, Any]]:
    if isinstance(records, Mapping):
        return {str(key): value for key, value in records.items() if isinstance(value, Mapping)}
    if not isinstance(records, list):
        raise ValueError(f"Expected a list or object of records in {source}")
    indexed: Dict[str, Mapping[str, Any]] = {}
    for record in records:
        if not isinstance(record, Mapping):
            continue
        for key in id_keys:
            record_id = string_or_empty(record.get(key))
            if record_id:
                indexed[record_id] = record
                break
    return indexed


class JsonDataContextProvider:
    """Serve data contexts from ``patients.json``/``visits.json``/``reports.json``.

    Each file holds either a list of records (looked up by their id key, e.g.
    ``patientId`` or ``id``) or an object keyed by id. Missing files simply
    make that namespace unavailable.

    Parameters
    ----------
    directory : Path
        Directory containing the record files.
    """

    FILES = {
        "patient": ("patients.json", ("patientId", "id", "_id")),
        "visit": ("visits.json", ("visitId", "id", "_id")),
        "report": ("reports.json", ("reportId", "id", "_id")),
    }

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._cache: Dict[str, Dict[str, Mapping[str, Any]]] = {}

    def _records(self, namespace: str) -> Dict[str, Mapping[str, Any]]:
        if namespace not in self._cache:
            filename, id_keys = self.FILES[namespace]
            path = self.directory / filename
            if not path.exists():
                LOG.debug("No %s records at %s", namespace, path)
                self._cache[namespace] = {}
            else:
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except json.JSONDecodeError as exc:
                    raise ValueError(f"Record file is not valid JSON: {path}") from exc
                self._cache[namespace] = _index_records(data, id_keys, path)
        return self._cache[namespace]

    def _lookup(self, namespace: str, record_id: Optional[str]) -> Optional[Mapping[str, Any]]:
        if record_id is None or string_or_empty(record_id) == "":
            return None
        record = self._records(namespace).get(string_or_empty(record_id))
        if record is None:
            LOG.info("No %s record with id %s", namespace, record_id)
        return record

    def get_context(
        self, patient_id: Optional[str] = None, visit_id: Optional[str] = None
    ) -> DataContext:
        """Return the records for the given ids.

        The report record is the one whose ``visitId`` matches the visit, if
        any. An absent or unknown id leaves that namespace unavailable.
        """
        visit = self._lookup("visit", visit_id)
        if patient_id is None and visit is not None:
            patient_id = string_or_empty(visit.get("patientId")) or None

        report = None
        if visit_id is not None:
            for candidate in self._records("report").values():
                if string_or_empty(candidate.get("visitId")) == string_or_empty(visit_id):
                    report = candidate
                    break

        return DataContext(
            patient=self._lookup("patient", patient_id),
            visit=visit,
            report=report,
        )
