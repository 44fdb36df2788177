"""Unit tests for geometry module - canvas positions, sizes and bounds.

Tests cover:
- Non-negative invariants on Position and Size
- Clamping of pointer-derived coordinates
- Coercion from wire mappings and tuples
- Advisory canvas bounds checks
- CSS pixel formatting

Real-world significance:
- Every element on a report canvas is placed with these types
- Negative or non-numeric coordinates would produce broken print layouts
"""

from __future__ import annotations

import json

import pytest

from report_engine.geometry import (
    CanvasSize,
    Position,
    Size,
    clamp_non_negative,
    fits_within,
    format_px,
)


@pytest.mark.unit
class TestPosition:
    """Unit tests for Position."""

    def test_negative_coordinates_rejected(self) -> None:
        """Verify a negative position cannot be constructed.

        Real-world significance:
        - Elements left or above the canvas origin would be clipped in print
        """
        with pytest.raises(ValueError, match="non-negative"):
            Position(-1, 10)

    def test_non_numeric_coordinates_rejected(self) -> None:
        with pytest.raises(ValueError, match="must be a number"):
            Position("10", 10)

    def test_boolean_coordinates_rejected(self) -> None:
        with pytest.raises(ValueError):
            Position(True, 0)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_coordinates_rejected(self, value: float) -> None:
        """Verify NaN and infinity never reach the rendered CSS.

        Real-world significance:
        - ``json.loads`` accepts ``NaN`` and ``Infinity``; they would render
          as ``nanpx``/``infpx`` and break the page layout
        """
        with pytest.raises(ValueError, match="must be finite"):
            Position(value, 0)
        with pytest.raises(ValueError, match="must be finite"):
            Size(100, value)

    def test_from_value_rejects_nan_from_json(self) -> None:
        payload = json.loads('{"x": NaN, "y": 10}')
        with pytest.raises(ValueError, match="must be finite"):
            Position.from_value(payload)

    def test_clamped_moves_negative_components_to_zero(self) -> None:
        """Verify drop points near the canvas edge clamp to the origin.

        Real-world significance:
        - Dropping a field at (10, 5) with the (50, 15) centring offset
          must not produce a negative position
        """
        assert Position.clamped(10 - 50, 5 - 15) == Position(0, 0)
        assert Position.clamped(150 - 50, 150 - 15) == Position(100, 135)

    def test_offset_clamps(self) -> None:
        assert Position(20, 20).offset(-30, 5) == Position(0, 25)

    def test_from_value_accepts_mapping_and_tuple(self) -> None:
        assert Position.from_value({"x": 5, "y": 7}) == Position(5, 7)
        assert Position.from_value((5, 7)) == Position(5, 7)
        existing = Position(1, 2)
        assert Position.from_value(existing) is existing

    def test_from_value_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            Position.from_value("top-left")

    def test_to_dict_uses_wire_keys(self) -> None:
        assert Position(3, 4).to_dict() == {"x": 3, "y": 4}


@pytest.mark.unit
class TestSize:
    """Unit tests for Size."""

    def test_negative_size_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            Size(10, -1)

    def test_zero_size_allowed(self) -> None:
        assert Size(0, 0).to_dict() == {"width": 0, "height": 0}

    def test_from_value_mapping(self) -> None:
        assert Size.from_value({"width": 200, "height": 30}) == Size(200, 30)

    def test_half(self) -> None:
        assert Size(200, 30).half == (100, 15)


@pytest.mark.unit
class TestCanvasSize:
    """Unit tests for CanvasSize."""

    def test_default_is_800_by_600(self) -> None:
        canvas = CanvasSize()
        assert (canvas.width, canvas.height) == (800, 600)

    def test_zero_canvas_rejected(self) -> None:
        """Verify a canvas must have positive dimensions.

        Real-world significance:
        - A zero-height canvas would render an invisible report
        """
        with pytest.raises(ValueError, match="positive"):
            CanvasSize(0, 600)

    def test_from_value_fills_missing_dimension(self) -> None:
        assert CanvasSize.from_value({"width": 816}) == CanvasSize(816, 600)


@pytest.mark.unit
class TestBoundsAndFormatting:
    """Unit tests for fits_within, clamp_non_negative and format_px."""

    def test_fits_within_exact_edge(self) -> None:
        assert fits_within(Position(600, 570), Size(200, 30), CanvasSize())

    def test_fits_within_overflow(self) -> None:
        assert not fits_within(Position(700, 0), Size(200, 30), CanvasSize())

    def test_clamp_non_negative(self) -> None:
        assert clamp_non_negative(-3) == 0
        assert clamp_non_negative(4.5) == 4.5

    @pytest.mark.parametrize(
        "value, expected",
        [(100, "100px"), (10.0, "10px"), (12.5, "12.5px"), (0.333333, "0.33px"), (0, "0px")],
    )
    def test_format_px(self, value, expected) -> None:
        assert format_px(value) == expected
