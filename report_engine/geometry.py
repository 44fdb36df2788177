"""Canvas geometry for report templates.

All element positions are absolute pixel offsets from the top-left corner of
a fixed-size canvas. Positions and sizes are never negative; helpers clamp
pointer-derived coordinates to zero instead of rejecting them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

Number = int | float

DEFAULT_CANVAS_WIDTH = 800
DEFAULT_CANVAS_HEIGHT = 600


def clamp_non_negative(value: Number) -> Number:
    """Clamp a coordinate to zero or above."""
    return value if value > 0 else 0


def _require_number(name: str, value: Any) -> Number:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {type(value).__name__}")
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite, got {value}")
    return value


@dataclass(frozen=True)
class Position:
    """Top-left offset of an element within the canvas, in pixels."""

    x: Number = 0
    y: Number = 0

    def __post_init__(self) -> None:
        _require_number("x", self.x)
        _require_number("y", self.y)
        if self.x < 0 or self.y < 0:
            raise ValueError(
                f"Position must be non-negative, got ({self.x}, {self.y})"
            )

    @classmethod
    def clamped(cls, x: Number, y: Number) -> "Position":
        """Build a position with both components clamped to >= 0."""
        return cls(clamp_non_negative(x), clamp_non_negative(y))

    def offset(self, dx: Number, dy: Number) -> "Position":
        return Position.clamped(self.x + dx, self.y + dy)

    @classmethod
    def from_value(cls, value: Any) -> "Position":
        """Coerce a Position, ``{"x": .., "y": ..}`` mapping or (x, y) pair.

        Raises
        ------
        ValueError
            If the value cannot be interpreted as a position.
        """
        if isinstance(value, Position):
            return value
        if isinstance(value, Mapping):
            return cls(value.get("x", 0), value.get("y", 0))
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(value[0], value[1])
        raise ValueError(f"Cannot interpret {value!r} as a position")

    def to_dict(self) -> dict[str, Number]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Size:
    """Width and height of an element's bounding box, in pixels."""

    width: Number = 0
    height: Number = 0

    def __post_init__(self) -> None:
        _require_number("width", self.width)
        _require_number("height", self.height)
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Size must be non-negative, got ({self.width}, {self.height})"
            )

    @classmethod
    def from_value(cls, value: Any) -> "Size":
        """Coerce a Size, ``{"width": .., "height": ..}`` mapping or pair."""
        if isinstance(value, Size):
            return value
        if isinstance(value, Mapping):
            return cls(value.get("width", 0), value.get("height", 0))
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(value[0], value[1])
        raise ValueError(f"Cannot interpret {value!r} as a size")

    @property
    def half(self) -> tuple[Number, Number]:
        return self.width / 2, self.height / 2

    def to_dict(self) -> dict[str, Number]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class CanvasSize:
    """Logical page size of a template; every element lives inside it."""

    width: Number = DEFAULT_CANVAS_WIDTH
    height: Number = DEFAULT_CANVAS_HEIGHT

    def __post_init__(self) -> None:
        _require_number("width", self.width)
        _require_number("height", self.height)
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Canvas size must be positive, got ({self.width}, {self.height})"
            )

    @classmethod
    def from_value(cls, value: Any) -> "CanvasSize":
        if isinstance(value, CanvasSize):
            return value
        if isinstance(value, Mapping):
            return cls(
                value.get("width", DEFAULT_CANVAS_WIDTH),
                value.get("height", DEFAULT_CANVAS_HEIGHT),
            )
        raise ValueError(f"Cannot interpret {value!r} as a canvas size")

    def to_dict(self) -> dict[str, Number]:
        return {"width": self.width, "height": self.height}


def fits_within(position: Position, size: Size, canvas: CanvasSize) -> bool:
    """Return True if the element's bounding box lies inside the canvas.

    Bounds are advisory: out-of-bounds elements are still saved and rendered
    (the container clips them), but validation reports a warning.
    """
    return (
        position.x + size.width <= canvas.width
        and position.y + size.height <= canvas.height
    )


def format_px(value: Number) -> str:
    """Format a coordinate for inline CSS without float noise.

    Examples
    --------
    >>> format_px(100)
    '100px'
    >>> format_px(12.5)
    '12.5px'
    >>> format_px(10.0)
    '10px'
    """
    if isinstance(value, float):
        if value.is_integer():
            return f"{int(value)}px"
        return f"{value:.2f}".rstrip("0").rstrip(".") + "px"
    return f"{value}px"
