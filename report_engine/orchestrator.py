"""Command-line entry point for the report engine (``medreport``).

Sub-commands:

- ``validate TEMPLATE_JSON``: report save-time violations of a template file.
- ``render TEMPLATE_JSON``: fill a template from a data context and write the
  report HTML (and optionally a PDF).
- ``import-lab [NAMES_FILE]``: create laboratory templates in a store.
- ``upload FILE...``: validate template JSON files and create the valid ones.
- ``library [ENTRY_ID]``: list library entries or copy one into a store.

**Error Handling Philosophy:**

- Infrastructure errors (missing files, invalid JSON/YAML, bad config) are
  reported on stderr and exit with code 1.
- Validation failures (blocking template violations, missing required
  fields) also exit with code 1 after listing every problem.
- Resolution gaps and advisory warnings never fail a command.

**Exit Codes:**
- 0: Command completed successfully
- 1: Command failed (validation or infrastructure error)
- 2: Usage error (invalid arguments)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import library, pdf_export, report_generator
from .config_loader import load_config
from .data_models import DataContext
from .store import (
    JsonDataContextProvider,
    JsonFileTemplateStore,
    TemplateStoreError,
    read_template_file,
)
from .template_document import TemplateValidationError, validate_for_save

SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
DEFAULT_OUTPUT_DIR = ROOT_DIR / "output"
DEFAULT_CONFIG_PATH = ROOT_DIR / "config" / "parameters.yaml"

LOG = logging.getLogger(__name__)


def configure_logging(output_dir: Path, run_id: str, name: str = "medreport") -> Path:
    """Configure file logging for one CLI run.

    Parameters
    ----------
    output_dir : Path
        Root output directory where the logs subdirectory will be created.
    run_id : str
        Unique run identifier used in the log filename.
    name : str
        Log filename prefix.

    Returns
    -------
    Path
        Path to the created log file.
    """
    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{name}_{run_id}.log"

    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
        existing.close()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(handler)

    return log_path


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="medreport",
        description="Validate, render and import medical report templates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s validate templates/cbc.json
  %(prog)s render templates/cbc.json --data context.json --pdf
  %(prog)s import-lab lab_tests.txt --store templates/
  %(prog)s upload exported/*.json --store templates/
  %(prog)s library ecg-standard --store templates/
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        dest="config_path",
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        dest="output_dir",
        help=f"Output directory for reports and logs (default: {DEFAULT_OUTPUT_DIR})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser(
        "validate", help="Check a template file for save-time violations"
    )
    validate_parser.add_argument("template", type=Path, help="Template JSON payload")

    render_parser = subparsers.add_parser(
        "render", help="Generate a report from a template and a data context"
    )
    render_parser.add_argument("template", type=Path, help="Template JSON payload")
    render_parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help='Data context JSON ({"patient": {...}, "visit": {...}, "report": {...}})',
    )
    render_parser.add_argument(
        "--records",
        type=Path,
        default=None,
        help="Directory with patients.json/visits.json/reports.json",
    )
    render_parser.add_argument("--patient-id", default=None, help="Patient id in --records")
    render_parser.add_argument("--visit-id", default=None, help="Visit id in --records")
    render_parser.add_argument(
        "--values",
        type=Path,
        default=None,
        help="JSON object of manually entered values keyed by field name",
    )
    render_parser.add_argument(
        "--allow-missing-required",
        action="store_true",
        help="Generate even when required fields have no value",
    )
    render_parser.add_argument("--pdf", action="store_true", help="Also export a PDF")

    import_parser = subparsers.add_parser(
        "import-lab", help="Create laboratory report templates in a store"
    )
    import_parser.add_argument(
        "names_file",
        type=Path,
        nargs="?",
        default=None,
        help="Test names (.txt one per line, .csv or .xlsx first column); "
        "defaults to the built-in lab test list",
    )
    import_parser.add_argument("--store", type=Path, default=None, dest="store_dir")
    import_parser.add_argument(
        "--no-skip-existing",
        action="store_false",
        dest="skip_existing",
        help="Create templates even when one with the same name exists",
    )

    upload_parser = subparsers.add_parser(
        "upload", help="Validate template JSON files and create the valid ones"
    )
    upload_parser.add_argument(
        "files", type=Path, nargs="+", help="Template JSON files to upload"
    )
    upload_parser.add_argument("--store", type=Path, default=None, dest="store_dir")
    upload_parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Report problems per file without creating any template",
    )

    library_parser = subparsers.add_parser(
        "library", help="List library templates or copy one into a store"
    )
    library_parser.add_argument(
        "entry_id", nargs="?", default=None, help="Library entry to copy"
    )
    library_parser.add_argument("--store", type=Path, default=None, dest="store_dir")
    library_parser.add_argument("--search", default="", help="Filter entries when listing")

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """Validate command-line arguments and raise errors if invalid."""
    template = getattr(args, "template", None)
    if template is not None and not template.exists():
        raise FileNotFoundError(f"Template file not found: {template}")

    if args.command == "render":
        if args.data is not None and args.records is not None:
            raise ValueError("Use either --data or --records, not both")
        if args.records is None and (args.patient_id or args.visit_id):
            raise ValueError("--patient-id/--visit-id require --records")
        for path in (args.data, args.records, args.values):
            if path is not None and not path.exists():
                raise FileNotFoundError(f"File not found: {path}")

    if args.command == "upload":
        for path in args.files:
            if not path.exists():
                raise FileNotFoundError(f"Template file not found: {path}")

    if args.command == "import-lab" and args.names_file is not None:
        if not args.names_file.exists():
            raise FileNotFoundError(f"Lab test list not found: {args.names_file}")


def print_step(description: str) -> None:
    """Print a command header."""
    print()
    print(f"{'=' * 60}")
    print(description)
    print(f"{'=' * 60}")


def _read_json_object(path: Path, what: str) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{what} is not valid JSON: {path}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a JSON object: {path}")
    return data


def load_context_file(path: Path) -> DataContext:
    """Read a data context JSON file; absent namespaces stay unavailable.

    Raises
    ------
    ValueError
        If a namespace is present but is not a JSON object.
    """
    data = _read_json_object(path, "Data context")
    records: Dict[str, Any] = {}
    for namespace in ("patient", "visit", "report"):
        record = data.get(namespace)
        if record is not None and not isinstance(record, dict):
            raise ValueError(
                f"Data context {path}: '{namespace}' must be a JSON object, "
                f"got {type(record).__name__}"
            )
        records[namespace] = record
    return DataContext(**records)


def _store_for(args: argparse.Namespace, config: Dict[str, Any]) -> JsonFileTemplateStore:
    store_dir = args.store_dir
    if store_dir is None:
        store_dir = ROOT_DIR / config.get("store", {}).get("directory", "templates")
    return JsonFileTemplateStore(store_dir)


def run_validate(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    print_step(f"Validating {args.template}")
    document = read_template_file(args.template)
    threshold = config.get("mapping", {}).get("suggestion_threshold", 80)
    violations = validate_for_save(document, threshold)

    if not violations:
        print(f"✅ {document.template_name or args.template.name}: no violations")
        return 0

    for violation in violations:
        marker = "❌" if violation.is_error else "⚠️ "
        print(f"{marker} [{violation.code}] {violation.message}")

    errors = [v for v in violations if v.is_error]
    print(f"{len(errors)} error(s), {len(violations) - len(errors)} warning(s)")
    return 1 if errors else 0


def run_render(
    args: argparse.Namespace, config: Dict[str, Any], output_dir: Path, run_id: str
) -> int:
    print_step(f"Rendering {args.template}")
    document = read_template_file(args.template)

    if args.records is not None:
        provider = JsonDataContextProvider(args.records)
        context = provider.get_context(patient_id=args.patient_id, visit_id=args.visit_id)
    elif args.data is not None:
        context = load_context_file(args.data)
    else:
        context = DataContext()

    manual_values = None
    if args.values is not None:
        manual_values = _read_json_object(args.values, "Values file")

    options = report_generator.report_options(config)
    if args.allow_missing_required:
        options["enforce_required"] = False

    report = report_generator.generate_report(
        document,
        context,
        manual_values=manual_values,
        generated_at=datetime.now(),
        **options,
    )
    stem = f"{args.template.stem}_{run_id}"
    html_path = report_generator.write_report(report, output_dir / "reports", stem)
    print(f"📄 Report HTML: {html_path}")
    if report.gaps:
        print(f"ℹ️  {len(report.gaps)} field(s) could not be auto-filled")

    if args.pdf:
        pdf_path = pdf_export.html_to_pdf(
            report.html, output_dir / "reports" / f"{stem}.pdf", base_url=str(output_dir)
        )
        expected_pages = config.get("pdf", {}).get("expected_pages")
        result = pdf_export.validate_report_pdf(pdf_path, expected_pages)
        print(f"📄 Report PDF: {pdf_path} ({result.page_count} page(s))")
        for warning in result.warnings:
            print(f"⚠️  {warning}")
    return 0


def run_import_lab(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    print_step("Importing laboratory templates")
    names = None
    if args.names_file is not None:
        names = library.read_lab_test_names(args.names_file)
        if not names:
            print(f"Error: no test names found in {args.names_file}", file=sys.stderr)
            return 1

    store = _store_for(args, config)
    result = library.import_lab_templates(
        names, store, skip_existing=args.skip_existing, config=config
    )
    print(f"✅ Created {len(result.created)} template(s) in {store.directory}")
    for name in result.skipped:
        print(f"  - skipped {name} (already exists)")
    return 0


def run_upload(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    print_step(f"Uploading {len(args.files)} template file(s)")
    store = _store_for(args, config)
    results = library.import_template_files(
        args.files, store, validate_only=args.validate_only, config=config
    )

    for result in results:
        if result.errors:
            print(f"❌ {result.path.name}: {result.template_name}")
            for error in result.errors:
                print(f"    - {error}")
        elif result.uploaded:
            print(
                f"✅ {result.path.name}: created {result.template_name!r} "
                f"as {result.template_id}"
            )
        else:
            print(f"✅ {result.path.name}: {result.template_name} is valid")

    invalid = [result for result in results if result.errors]
    uploaded = [result for result in results if result.uploaded]
    print(f"{len(uploaded)} created, {len(invalid)} invalid of {len(results)} file(s)")
    return 1 if invalid else 0


def run_library(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    if args.entry_id is None:
        print_step("Template library")
        for entry in library.search_library(args.search):
            official = " (official)" if entry.is_official else ""
            print(f"  - {entry.id:<22} {entry.name} [{entry.category}]{official}")
        return 0

    print_step(f"Copying library template {args.entry_id}")
    entry = library.get_library_entry(args.entry_id)
    store = _store_for(args, config)
    saved = library.use_library_template(entry, store, config)
    print(f"✅ Created {saved.template_name!r} as {saved.template_id}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI."""
    try:
        args = parse_args(argv)
        validate_args(args)
    except (ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    output_dir = args.output_dir.resolve()
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")

    try:
        config = load_config(args.config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    log_path = configure_logging(output_dir, run_id)
    LOG.info("medreport %s (run %s)", args.command, run_id)

    try:
        if args.command == "validate":
            return run_validate(args, config)
        if args.command == "render":
            return run_render(args, config, output_dir, run_id)
        if args.command == "upload":
            return run_upload(args, config)
        if args.command == "import-lab":
            return run_import_lab(args, config)
        return run_library(args, config)
    except report_generator.MissingRequiredFieldsError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1
    except TemplateValidationError as exc:
        for violation in exc.violations:
            if violation.is_error:
                print(f"❌ [{violation.code}] {violation.message}", file=sys.stderr)
        return 1
    except (FileNotFoundError, ValueError, KeyError, RuntimeError, TemplateStoreError) as exc:
        LOG.error("medreport %s failed: %s", args.command, exc)
        print(f"\n❌ {args.command} failed: {exc}", file=sys.stderr)
        print(f"See log: {log_path}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
