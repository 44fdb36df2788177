"""PDF export and validation for generated reports.

**Export:** HTML print documents are converted with WeasyPrint, which honours
the ``@page`` rule of the print stylesheet (A4, 2cm margins by default).
WeasyPrint needs system libraries (Pango); when it cannot be imported,
``html_to_pdf`` raises ``RuntimeError`` and HTML output remains usable.

**Validation:** exported PDFs are re-opened with pypdf. Unreadable files
raise immediately; an unexpected page count is a non-fatal warning.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from pypdf import PdfReader

from .data_models import PdfValidationResult

LOG = logging.getLogger(__name__)

try:
    from weasyprint import HTML
except (ImportError, OSError):  # pragma: no cover - depends on system libraries
    HTML = None


def weasyprint_available() -> bool:
    return HTML is not None


def html_to_pdf(html: str, output_path: Path, *, base_url: str | None = None) -> Path:
    """Render an HTML document to a PDF file.

    Parameters
    ----------
    html : str
        Complete print document (see ``renderer.render_print_document``).
    output_path : Path
        Destination file; parent directories are created.
    base_url : str, optional
        Base for resolving relative URLs (images, stylesheets).

    Returns
    -------
    Path
        The written PDF path.

    Raises
    ------
    RuntimeError
        If WeasyPrint is not available.
    """
    if HTML is None:
        raise RuntimeError("WeasyPrint not available. Install with: pip install weasyprint")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    HTML(string=html, base_url=base_url).write_pdf(str(output_path))
    LOG.info("Wrote PDF %s", output_path)
    return output_path


def count_pdf_pages(pdf_path: Path) -> int:
    """Return the number of pages in a PDF.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    pdf_path = Path(pdf_path)
    if not pdf_path.exists():
        raise FileNotFoundError(f"PDF not found: {pdf_path}")
    reader = PdfReader(str(pdf_path))
    return len(reader.pages)


def validate_report_pdf(
    pdf_path: Path, expected_pages: Optional[int] = None
) -> PdfValidationResult:
    """Check an exported report PDF.

    Parameters
    ----------
    pdf_path : Path
        PDF to check.
    expected_pages : int, optional
        Expected page count (``pdf.expected_pages`` in parameters.yaml); no
        page-count check when None.

    Returns
    -------
    PdfValidationResult
        Page count plus any warnings; ``passed`` is True when there are none.
    """
    pdf_path = Path(pdf_path)
    page_count = count_pdf_pages(pdf_path)
    warnings: List[str] = []

    if page_count == 0:
        warnings.append("empty_pdf: has no pages")
    elif expected_pages is not None and page_count != expected_pages:
        warnings.append(
            f"page_count: has {page_count} pages (expected {expected_pages})"
        )

    for warning in warnings:
        LOG.warning("%s: %s", pdf_path.name, warning)
    return PdfValidationResult(pdf_path=pdf_path, page_count=page_count, warnings=warnings)
