"""Configuration loading utilities for the report engine.

Provides a centralized way to load and validate the parameters.yaml
configuration file used by the CLI, the editor session and report
generation.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from babel import Locale, UnknownLocaleError

from .geometry import CanvasSize

SCRIPT_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = SCRIPT_DIR.parent / "config" / "parameters.yaml"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and parse the parameters.yaml configuration file.

    Automatically validates the configuration after loading. Raises
    clear exceptions if validation fails, enabling fail-fast behavior
    for infrastructure errors.

    Parameters
    ----------
    config_path : Path, optional
        Path to the configuration file. If not provided, uses the default
        location (config/parameters.yaml in the project root).

    Returns
    -------
    Dict[str, Any]
        Parsed and validated YAML configuration as a nested dictionary.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    yaml.YAMLError
        If the configuration file is invalid YAML.
    ValueError
        If the configuration fails validation (see validate_config).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    validate_config(config)
    return config


def _require_mapping(config: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = config.get(key, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"{key} must be a mapping, got {type(section).__name__}")
    return section


def _require_bool(section: Dict[str, Any], name: str, default: bool) -> None:
    value = section.get(name, default)
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean, got {type(value).__name__}")


def canvas_size_from_config(config: Dict[str, Any]) -> CanvasSize:
    """Return the configured default canvas size (800x600 if unset)."""
    return CanvasSize.from_value(config.get("canvas") or {})


def validate_config(config: Dict[str, Any]) -> None:
    """Validate the entire configuration for consistency and required values.

    Parameters
    ----------
    config : Dict[str, Any]
        Configuration dictionary (result of load_config).

    Raises
    ------
    ValueError
        If required configuration is missing or invalid.

    Notes
    -----
    **Validation checks:**

    - **Canvas:** canvas.width and canvas.height must be positive numbers
    - **Dates:** dates.locale must be a locale Babel knows; dates.format a string
    - **Mapping:** mapping.suggestion_threshold must be an integer in 0..100
    - **Report:** enforce_required and keep_unresolved_placeholders are booleans
    - **Print:** page_size and page_margin are non-empty strings
    - **PDF:** pdf.expected_pages, if set, is a positive integer

    **Validation philosophy:**
    - Infrastructure errors (missing config) raise immediately (fail-fast)
    - All error messages are clear and actionable
    - Config is validated once at load time, not per-command
    """
    # Validate canvas config
    canvas_config = _require_mapping(config, "canvas")
    try:
        CanvasSize.from_value(canvas_config)
    except ValueError as exc:
        raise ValueError(f"Invalid canvas size in config/parameters.yaml: {exc}") from exc

    # Validate dates config
    dates_config = _require_mapping(config, "dates")
    locale = dates_config.get("locale", "en_US")
    if not isinstance(locale, str):
        raise ValueError(f"dates.locale must be a string, got {type(locale).__name__}")
    try:
        Locale.parse(locale)
    except (UnknownLocaleError, ValueError) as exc:
        raise ValueError(
            f"dates.locale {locale!r} is not a known locale. "
            "Use an identifier such as en_US or en_GB."
        ) from exc
    date_format = dates_config.get("format", "short")
    if not isinstance(date_format, str) or not date_format.strip():
        raise ValueError("dates.format must be a non-empty string")

    # Validate mapping config
    mapping_config = _require_mapping(config, "mapping")
    threshold = mapping_config.get("suggestion_threshold", 80)
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValueError(
            f"mapping.suggestion_threshold must be an integer, got {type(threshold).__name__}"
        )
    if not 0 <= threshold <= 100:
        raise ValueError(
            f"mapping.suggestion_threshold must be between 0 and 100, got {threshold}"
        )

    # Validate report config
    report_config = _require_mapping(config, "report")
    _require_bool(report_config, "enforce_required", True)
    _require_bool(report_config, "keep_unresolved_placeholders", False)

    # Validate print config
    print_config = _require_mapping(config, "print")
    for name in ("page_size", "page_margin"):
        value = print_config.get(name, "A4")
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"print.{name} must be a non-empty string")

    # Validate PDF config
    pdf_config = _require_mapping(config, "pdf")
    expected_pages = pdf_config.get("expected_pages")
    if expected_pages is not None:
        if isinstance(expected_pages, bool) or not isinstance(expected_pages, int):
            raise ValueError(
                f"pdf.expected_pages must be an integer, got {type(expected_pages).__name__}"
            )
        if expected_pages <= 0:
            raise ValueError(f"pdf.expected_pages must be positive, got {expected_pages}")

    # Validate store config
    store_config = _require_mapping(config, "store")
    directory = store_config.get("directory", "templates")
    if not isinstance(directory, str) or not directory.strip():
        raise ValueError("store.directory must be a non-empty string")
