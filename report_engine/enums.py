"""Enumerations for the report-template engine."""

from enum import Enum


class ElementType(Enum):
    """Kind of static element placed on a template canvas.

    Only ``TEXT`` is fully rendered; the other kinds are carried through
    persistence and rendered as plain positioned boxes.
    """

    TEXT = "text"
    IMAGE = "image"
    LINE = "line"
    TABLE = "table"

    @classmethod
    def from_string(cls, value: str | None) -> "ElementType":
        """Convert string to ElementType, defaulting to TEXT for None.

        Raises
        ------
        ValueError
            If value is not a valid element type.
        """
        if value is None:
            return cls.TEXT

        if not isinstance(value, str):
            raise ValueError(f"Element type must be a string, got {type(value).__name__}")

        value_lower = value.lower()
        for element_type in cls:
            if element_type.value == value_lower:
                return element_type

        raise ValueError(
            f"Unknown element type: {value}. "
            f"Valid options: {', '.join(t.value for t in cls)}"
        )


class FieldType(Enum):
    """Input type of a dynamic field."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"

    @classmethod
    def from_string(cls, value: str | None) -> "FieldType":
        """Convert string to FieldType.

        Parameters
        ----------
        value : str | None
            Field type name ('text', 'number', 'date', 'textarea', 'select',
            'checkbox'), or None for default (TEXT). Case-insensitive.

        Returns
        -------
        FieldType
            Corresponding FieldType enum value.

        Raises
        ------
        ValueError
            If value is not a valid field type. Error message lists all
            available options.

        Examples
        --------
        >>> FieldType.from_string("Date")
        <FieldType.DATE: 'date'>
        """
        if value is None:
            return cls.TEXT

        if not isinstance(value, str):
            raise ValueError(f"Field type must be a string, got {type(value).__name__}")

        value_lower = value.lower()
        for field_type in cls:
            if field_type.value == value_lower:
                return field_type

        raise ValueError(
            f"Unknown field type: {value}. "
            f"Valid options: {', '.join(t.value for t in cls)}"
        )

    @classmethod
    def all_values(cls) -> set[str]:
        """Get set of all field type names."""
        return {field_type.value for field_type in cls}


class FontWeight(Enum):
    NORMAL = "normal"
    BOLD = "bold"

    @classmethod
    def from_string(cls, value: str | None) -> "FontWeight":
        if value is None:
            return cls.NORMAL

        if not isinstance(value, str):
            raise ValueError(f"Font weight must be a string, got {type(value).__name__}")

        value_lower = value.lower()
        for weight in cls:
            if weight.value == value_lower:
                return weight

        raise ValueError(
            f"Unknown font weight: {value}. "
            f"Valid options: {', '.join(w.value for w in cls)}"
        )


class TextAlign(Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"

    @classmethod
    def from_string(cls, value: str | None) -> "TextAlign":
        if value is None:
            return cls.LEFT

        if not isinstance(value, str):
            raise ValueError(f"Text alignment must be a string, got {type(value).__name__}")

        value_lower = value.lower()
        for align in cls:
            if align.value == value_lower:
                return align

        raise ValueError(
            f"Unknown text alignment: {value}. "
            f"Valid options: {', '.join(a.value for a in cls)}"
        )


class TemplateCategory(Enum):
    """Report template categories offered by the designer.

    Category values are persisted verbatim by the template store and used by
    ``list_by_category`` lookups.
    """

    BLOOD_TEST = "BLOOD_TEST"
    URINE_TEST = "URINE_TEST"
    X_RAY = "X_RAY"
    ECG = "ECG"
    ULTRASOUND = "ULTRASOUND"
    GENERAL_REPORT = "GENERAL_REPORT"

    @classmethod
    def from_string(cls, value: str | None) -> "TemplateCategory":
        """Convert string to TemplateCategory.

        Accepts the persisted upper-case value as well as the display form
        with spaces (e.g. "BLOOD TEST", "x ray").

        Parameters
        ----------
        value : str | None
            Category name, or None for default (BLOOD_TEST, the designer's
            initial selection).

        Returns
        -------
        TemplateCategory
            Corresponding category.

        Raises
        ------
        ValueError
            If value is not a valid category.
        """
        if value is None:
            return cls.BLOOD_TEST

        if not isinstance(value, str):
            raise ValueError(f"Template category must be a string, got {type(value).__name__}")

        value_upper = value.strip().upper().replace(" ", "_").replace("-", "_")
        for category in cls:
            if category.value == value_upper:
                return category

        raise ValueError(
            f"Unknown template category: {value}. "
            f"Valid options: {', '.join(c.value for c in cls)}"
        )

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ")


class MappingNamespace(Enum):
    """Record namespaces available in a data context."""

    PATIENT = "patient"
    VISIT = "visit"
    REPORT = "report"

    @classmethod
    def all_values(cls) -> set[str]:
        return {namespace.value for namespace in cls}


class ViolationSeverity(Enum):
    """Severity of a save-time validation finding.

    ERROR findings block saving; WARNING findings are advisory only.
    """

    ERROR = "error"
    WARNING = "warning"


class NotificationLevel(Enum):
    """Level of a message shown to the template author by the editor."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
