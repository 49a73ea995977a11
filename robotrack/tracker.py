"""Aiming logic: turns the target's pixel offset into gimbal angles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from robotrack.geometry import Angle, FloatTuple, Location, Speed

logger = logging.getLogger(__name__)

STABLE_MATCHES = 16


def local_milliseconds() -> int:
    """Milliseconds since local midnight."""
    now = datetime.now()
    return ((now.hour * 60 + now.minute) * 60 + now.second) * 1000 + now.microsecond // 1000


def one_angle(dx, dx_mid, dx_max, angle_min, angle_mid, angle_max) -> float:
    """Map an offset to an angle along two linear segments, clamped to ``angle_max``."""
    sign = 1.0 if dx > 0 else -1.0
    if abs(dx) < dx_mid:
        k1 = (angle_mid - angle_min) / dx_mid
        angle = k1 * dx + sign * angle_min
    else:
        k2 = (angle_max - angle_mid) / (dx_max - dx_mid)
        angle = k2 * (dx - dx_mid * sign) + sign * angle_mid
    if abs(angle) > angle_max:
        angle = sign * angle_max
    return angle


@dataclass
class _ZeroCrossing:
    count: int = 0
    time: int = -1


class Tracker:
    """Follows the target's offset from the aim point and computes the next angle."""

    def __init__(
        self,
        width,
        height,
        center_x,
        center_y,
        bound_w,
        bound_h,
        clock: Callable[[], int] = local_milliseconds,
    ):
        self._clock = clock
        self.set_parameters(width, height, center_x, center_y, bound_w, bound_h)
        self.clear_pre()

    def set_parameters(self, width, height, center_x, center_y, bound_w, bound_h) -> None:
        self.width = width
        self.height = height
        self.center_x = center_x
        self.center_y = center_y
        self.bound_w = bound_w
        self.bound_h = bound_h

    def timestamp(self) -> int:
        return self._clock()

    def clear_pre(self) -> None:
        """Forget all motion history."""
        self.pre_time = -1
        self.pre_location = Location()
        self.pre_angle = Angle()
        self.pre_speed = Speed()
        self.a_speed = Speed()
        self.match_count = 0
        self.x_count = self.y_count = 5
        self.is_stable = False
        self._clear_slow()
        self.x_slow = self.y_slow = True

    def _clear_slow(self) -> None:
        self._x_zero = _ZeroCrossing()
        self._y_zero = _ZeroCrossing()
        self.x_slow = self.y_slow = False

    def _speed(self, location: Location) -> Speed:
        now = self.timestamp()
        speed = Speed()
        if self.pre_time > 0:
            delta = now - self.pre_time + 0.0001
            speed = (location - self.pre_location) / delta
            speed = (speed + self.pre_speed) / 2.0
            self.a_speed = (speed - self.pre_speed) / delta
        self.pre_speed = speed
        self.pre_time = now
        return speed

    def _angle(self, location: Location) -> Angle:
        x_min = 0 if self.x_slow else 1
        x_mid = 4 if self.x_slow else 6
        x_max = 8 if self.x_slow else 12
        x_k1 = 3.0 if self.x_slow else 4.0
        y_min = 0
        y_mid = 2 if self.y_slow else 3
        y_max = 3 if self.y_slow else 5
        x_angle = one_angle(location.x, self.width / x_k1, self.width / 2.0, x_min, x_mid, x_max)
        y_angle = one_angle(location.y, self.height / 3.0, self.height / 2.0, y_min, y_mid, y_max)
        return Angle(x_angle, y_angle)

    def _adjust_x(self, angle: float, threshold: float) -> float:
        """Halve the angle for a while if it stays large, so the gimbal cannot stick."""
        if abs(angle) > threshold:
            self.x_count -= 1
        else:
            self.x_count = 3
        if self.x_count == 0:
            self.x_count = -2
        if self.x_count < 0:
            self.x_count += 1
            return angle / 2.0
        return angle

    def _to_slower(self, current: float, previous: float, state: _ZeroCrossing) -> bool:
        now = self.timestamp()
        if current * previous < 0:
            state.count += 1
        if state.count == 1 and state.time <= 0:
            state.time = now
        if state.count >= 1:
            logger.info("slow now")
            return True
        if now - state.time > 1000:
            state.count = 0
        return False

    def _slower(self, location: Location) -> None:
        if not self.x_slow:
            self.x_slow = self._to_slower(location.x, self.pre_location.x, self._x_zero)
        if not self.y_slow:
            self.y_slow = self._to_slower(location.y, self.pre_location.y, self._y_zero)

    def is_matched(self, dx, dy, r) -> bool:
        return abs(dx) < r

    def update_stability(self, matched) -> bool:
        """Count consecutive matches; the aim is stable after enough of them."""
        if matched:
            self.match_count += 1
            if self.match_count >= STABLE_MATCHES:
                self.is_stable = True
        else:
            self.match_count = 0
            self.is_stable = False
        return self.is_stable

    def tracking(self, dx, dy, r) -> bool:
        """Feed one offset; updates ``pre_angle`` and returns whether it is on target."""
        location = Location(dx, dy)
        speed = self._speed(location)
        if abs(speed.x) > 1.0 or abs(speed.y) > 0.5:
            self.clear_pre()
        matched = self.is_matched(dx, dy, r)
        self.update_stability(matched)
        if self.is_stable:
            speed = speed + self.a_speed * 4000
            location = Location(location.x + speed.x * 100, location.y + speed.y * 60)
            self._clear_slow()
        else:
            self._slower(Location(dx, dy))
        angle = (self._angle(location) * 5.0 + self.pre_angle * 1.0) / 6.0
        angle = FloatTuple(self._adjust_x(angle.x, 4), angle.y)
        self.pre_location = Location(dx, dy)
        self.pre_angle = angle
        return matched