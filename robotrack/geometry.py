"""Small value types for points, speeds, angles and rectangles."""

from __future__ import annotations

import math
from dataclasses import dataclass, field


@dataclass(frozen=True)
class FloatTuple:
    """A pair of floats used for locations, speeds and angles."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: FloatTuple) -> FloatTuple:
        return FloatTuple(self.x + other.x, self.y + other.y)

    def __sub__(self, other: FloatTuple) -> FloatTuple:
        return FloatTuple(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> FloatTuple:
        return FloatTuple(self.x * factor, self.y * factor)

    def __truediv__(self, divisor: float) -> FloatTuple:
        return FloatTuple(self.x / divisor, self.y / divisor)


Angle = FloatTuple
Location = FloatTuple
Speed = FloatTuple


@dataclass(frozen=True)
class Rect:
    """An axis-aligned integer rectangle given by its top-left corner and size."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def area(self) -> int:
        return self.width * self.height

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def __and__(self, other: Rect) -> Rect:
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        if right - left <= 0 or bottom - top <= 0:
            return Rect()
        return Rect(left, top, right - left, bottom - top)

    def center(self) -> FloatTuple:
        return FloatTuple(self.x + self.width / 2.0, self.y + self.height / 2.0)


@dataclass(frozen=True)
class RotatedRect:
    """A rectangle rotated by ``angle`` degrees around its centre."""

    center: FloatTuple = field(default_factory=FloatTuple)
    width: float = 0.0
    height: float = 0.0
    angle: float = 0.0

    def _corners(self) -> list[FloatTuple]:
        theta = math.radians(self.angle)
        b = math.cos(theta) * 0.5
        a = math.sin(theta) * 0.5
        cx, cy = self.center.x, self.center.y
        w, h = self.width, self.height
        p0 = FloatTuple(cx - a * h - b * w, cy + b * h - a * w)
        p1 = FloatTuple(cx + a * h - b * w, cy - b * h - a * w)
        p2 = FloatTuple(2 * cx - p0.x, 2 * cy - p0.y)
        p3 = FloatTuple(2 * cx - p1.x, 2 * cy - p1.y)
        return [p0, p1, p2, p3]

    def bounding_rect(self) -> Rect:
        """The smallest integer rectangle holding every corner."""
        corners = self._corners()
        xs = [p.x for p in corners]
        ys = [p.y for p in corners]
        left = math.floor(min(xs))
        top = math.floor(min(ys))
        right = math.floor(max(xs))
        bottom = math.floor(max(ys))
        return Rect(left, top, right - left + 1, bottom - top + 1)