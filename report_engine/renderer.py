"""Serialize template documents into positioned, printable HTML.

**Output contract:**
- One outer container ``div`` sized exactly to the canvas, ``position:
  relative``.
- Static elements first, then dynamic fields, each in document order, as
  absolutely positioned ``div`` elements matching the designer canvas.
- Static text is HTML-escaped (``& < > " '``) and its braces are emitted as
  character references, so static content can never form a ``{{token}}``
  that the substitution pass would replace.
- Dynamic fields contain their ``{{fieldName}}`` token, or their escaped
  value when values are supplied.
- An empty template renders the "Template Content" placeholder only.
- Rendering is deterministic: identical input gives byte-identical output.
  The only time-dependent part of a print document (the generated-at
  footer) sits outside the content region.
"""

from __future__ import annotations

import html
import re
from datetime import datetime
from typing import Any, List, Mapping, Optional

from .elements import DynamicField, Element, StaticElement
from .geometry import format_px
from .utils import PLACEHOLDER_PATTERN, placeholder_token, string_or_empty

EMPTY_TEMPLATE_TEXT = "Template Content"
DEFAULT_PAGE_SIZE = "A4"
DEFAULT_PAGE_MARGIN = "2cm"

# CSS colors are restricted so a style value can never break out of the
# inline style attribute
_COLOR_PATTERN = re.compile(r"^(#[0-9A-Fa-f]{3,8}|[A-Za-z]+|rgba?\([0-9.,%\s]+\))$")
_PAGE_VALUE_PATTERN = re.compile(r"^[A-Za-z0-9.\s]+$")


def escape_text(value: Any) -> str:
    """Escape a value for insertion into HTML element content.

    Escapes ``& < > " '`` plus ``{`` and ``}`` so that unescaping the
    result recovers the original text exactly.

    Examples
    --------
    >>> escape_text('<b>"Tom" & \\'Jerry\\'</b>')
    '&lt;b&gt;&quot;Tom&quot; &amp; &#x27;Jerry&#x27;&lt;/b&gt;'
    >>> escape_text("{{x}}")
    '&#123;&#123;x&#125;&#125;'
    """
    text = value if isinstance(value, str) else string_or_empty(value)
    escaped = html.escape(text, quote=True)
    return escaped.replace("{", "&#123;").replace("}", "&#125;")


def _safe_color(color: str | None, default: str) -> str:
    if color and _COLOR_PATTERN.match(color.strip()):
        return color.strip()
    return default


def _box_style(element: Element) -> List[str]:
    return [
        "position: absolute",
        f"left: {format_px(element.position.x)}",
        f"top: {format_px(element.position.y)}",
        f"width: {format_px(element.size.width)}",
        f"height: {format_px(element.size.height)}",
    ]


def _render_static(element: StaticElement) -> str:
    style = element.style.with_defaults()
    declarations = _box_style(element) + [
        f"font-size: {format_px(style.font_size)}",
        f"font-weight: {style.font_weight.value}",
        f"text-align: {style.text_align.value}",
        f"color: {_safe_color(style.color, '#333333')}",
        "overflow: hidden",
        "word-wrap: break-word",
    ]
    return (
        f'<div class="static-element element-{element.type.value}" '
        f'data-element-id="{escape_text(element.id)}" '
        f'style="{"; ".join(declarations)};">'
        f"{escape_text(element.content)}</div>"
    )


def _render_dynamic(
    dynamic_field: DynamicField, values: Optional[Mapping[str, Any]]
) -> str:
    declarations = _box_style(dynamic_field) + [
        "overflow: hidden",
        "word-wrap: break-word",
    ]
    if values is not None and dynamic_field.field_name in values:
        inner = escape_text(values[dynamic_field.field_name])
    else:
        inner = placeholder_token(dynamic_field.field_name)
    return (
        f'<div class="dynamic-field field-{dynamic_field.field_type.value}" '
        f'data-field-name="{escape_text(dynamic_field.field_name)}" '
        f'style="{"; ".join(declarations)};">'
        f"{inner}</div>"
    )


def render_element(
    element: Element, values: Optional[Mapping[str, Any]] = None
) -> str:
    """Render one element as an absolutely positioned div."""
    if isinstance(element, StaticElement):
        return _render_static(element)
    if isinstance(element, DynamicField):
        return _render_dynamic(element, values)
    raise TypeError(f"Unsupported element type: {type(element)!r}")


def render_template_html(document, values: Optional[Mapping[str, Any]] = None) -> str:
    """Render a template document's canvas as HTML.

    Parameters
    ----------
    document : TemplateDocument
        Template to render.
    values : Mapping[str, Any], optional
        Field values keyed by field name. Fields present here are rendered
        with their escaped value; all others keep their ``{{fieldName}}``
        token for a later substitution pass.

    Returns
    -------
    str
        Container div with one child per element, newline-separated.
    """
    canvas = document.canvas_size
    container_style = (
        f"position: relative; width: {format_px(canvas.width)}; "
        f"height: {format_px(canvas.height)}; overflow: hidden;"
    )
    elements = list(document.static_elements) + list(document.dynamic_fields)
    if not elements:
        return (
            f'<div class="report-canvas" style="{container_style}">\n'
            f'<div class="template-placeholder" style="width: 100%; '
            f"line-height: {format_px(canvas.height)}; text-align: center; "
            f'color: #999999;">{EMPTY_TEMPLATE_TEXT}</div>\n'
            "</div>"
        )

    children = "\n".join(render_element(element, values) for element in elements)
    return f'<div class="report-canvas" style="{container_style}">\n{children}\n</div>'


def extract_placeholders(content: str) -> List[str]:
    """Return every ``{{fieldName}}`` token name in content, in order."""
    return PLACEHOLDER_PATTERN.findall(content)


def substitute_placeholders(
    content: str,
    values: Mapping[str, Any],
    *,
    keep_unresolved: bool = False,
) -> str:
    """Replace ``{{fieldName}}`` tokens with escaped values in one pass.

    Parameters
    ----------
    content : str
        Pre-substitution HTML (e.g. a template's persisted static content).
    values : Mapping[str, Any]
        Field values keyed by field name.
    keep_unresolved : bool
        If True, tokens without a value are left in place; otherwise they
        are replaced with an empty string.

    Returns
    -------
    str
        HTML with tokens substituted. Substituted values are escaped, so a
        value can never introduce markup or a new token.
    """

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name in values:
            return escape_text(values[name])
        return match.group(0) if keep_unresolved else ""

    return PLACEHOLDER_PATTERN.sub(replace, content)


def _page_value(value: str, default: str) -> str:
    if value and _PAGE_VALUE_PATTERN.match(value):
        return value
    return default


def render_print_document(
    body_html: str,
    *,
    title: str,
    generated_at: datetime | None = None,
    page_size: str = DEFAULT_PAGE_SIZE,
    page_margin: str = DEFAULT_PAGE_MARGIN,
) -> str:
    """Wrap rendered canvas HTML in a complete printable document.

    The fixed print stylesheet (``@page { size: A4; margin: 2cm }`` by
    default) keeps pagination identical across browsers and PDF renderers.
    When ``generated_at`` is given it is rendered in a footer outside the
    ``report-content`` region.
    """
    size = _page_value(page_size, DEFAULT_PAGE_SIZE)
    margin = _page_value(page_margin, DEFAULT_PAGE_MARGIN)
    footer = ""
    if generated_at is not None:
        footer = (
            '<footer class="report-generated-at">Generated at '
            f"{escape_text(generated_at.strftime('%Y-%m-%d %H:%M:%S'))}</footer>\n"
        )
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{escape_text(title)}</title>\n"
        "<style>\n"
        f"@page {{ size: {size}; margin: {margin}; }}\n"
        "body { font-family: Arial, sans-serif; margin: 0; }\n"
        ".report-content { margin: 0 auto; }\n"
        ".report-generated-at { font-size: 10px; color: #999999; margin-top: 8px; }\n"
        "@media print { .no-print { display: none; } }\n"
        "</style>\n"
        "</head>\n"
        "<body>\n"
        f'<main class="report-content">\n{body_html}\n</main>\n'
        f"{footer}"
        "</body>\n"
        "</html>\n"
    )
