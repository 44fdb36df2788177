"""Unit tests for utils module - placeholder tokens and string helpers.

Tests cover:
- The ``{{fieldName}}`` wire syntax and field-name validation
- Placeholder extraction (duplicates preserved)
- Label-to-field-name derivation used by library transforms
- Safe string conversion of resolved values

Real-world significance:
- The placeholder syntax is shared with stored templates and must stay exact
- Field names derived from labels become placeholders in saved templates
"""

from __future__ import annotations

import pytest

from report_engine import utils


@pytest.mark.unit
class TestPlaceholderToken:
    """Unit tests for placeholder_token and is_valid_field_name."""

    def test_token_has_no_padding(self) -> None:
        assert utils.placeholder_token("patient_name") == "{{patient_name}}"

    @pytest.mark.parametrize("name", ["", "patient name", "patient-name", "naïve", "a.b"])
    def test_invalid_names_rejected(self, name: str) -> None:
        """Verify names outside [A-Za-z0-9_]+ cannot become placeholders.

        Real-world significance:
        - A space or dot in a token would never be matched by substitution,
          leaving raw ``{{...}}`` text in a printed report
        """
        assert not utils.is_valid_field_name(name)
        with pytest.raises(ValueError, match="Invalid field name"):
            utils.placeholder_token(name)

    def test_none_is_invalid(self) -> None:
        assert not utils.is_valid_field_name(None)


@pytest.mark.unit
class TestExtractPlaceholders:
    """Unit tests for extract_placeholders."""

    def test_keeps_order_and_duplicates(self) -> None:
        html = "<div>{{a}}</div><div>{{b}}</div><div>{{a}}</div>"
        assert utils.extract_placeholders(html) == ["a", "b", "a"]

    def test_ignores_padded_tokens(self) -> None:
        assert utils.extract_placeholders("{{ a }} {a} {{b}}") == ["b"]


@pytest.mark.unit
class TestFieldNameFromLabel:
    """Unit tests for field_name_from_label."""

    def test_lowercases_and_joins_words(self) -> None:
        assert utils.field_name_from_label("Patient Name", 0) == "patient_name"

    def test_drops_punctuation(self) -> None:
        assert utils.field_name_from_label("Doctor's Signature", 0) == "doctors_signature"

    def test_falls_back_to_index(self) -> None:
        """Verify unusable labels produce field_<index>.

        Real-world significance:
        - Library entries without a label must still yield a valid placeholder
        """
        assert utils.field_name_from_label(None, 4) == "field_4"
        assert utils.field_name_from_label("???", 2) == "field_2"


@pytest.mark.unit
class TestStringOrEmpty:
    """Unit tests for string_or_empty and is_blank."""

    def test_none_and_nan_are_empty(self) -> None:
        assert utils.string_or_empty(None) == ""
        assert utils.string_or_empty(float("nan")) == ""

    def test_numbers_and_booleans(self) -> None:
        assert utils.string_or_empty(42) == "42"
        assert utils.string_or_empty(True) == "true"

    def test_strips_whitespace(self) -> None:
        assert utils.string_or_empty("  x ") == "x"

    def test_is_blank(self) -> None:
        assert utils.is_blank("   ")
        assert not utils.is_blank(0)


@pytest.mark.unit
def test_new_element_id_is_unique_and_prefixed() -> None:
    ids = {utils.new_element_id("field") for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("field-") for i in ids)
