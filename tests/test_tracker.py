import itertools

import pytest

from robotrack.tracker import Tracker, local_milliseconds, one_angle


def make_tracker(step=1000):
    ticks = itertools.count(1000, step)
    return Tracker(640, 480, 320, 300, 52, 45, clock=lambda: next(ticks))


def test_one_angle_clamps_to_max():
    assert one_angle(1000, 4, 8, 0, 2, 3) == 3


def test_one_angle_at_mid_gives_mid_angle():
    assert one_angle(4, 4, 8, 1, 6, 12) == pytest.approx(6)


@pytest.mark.parametrize("dx", [0.5, 3.0, 5.0, 50.0])
def test_one_angle_is_odd(dx):
    assert one_angle(-dx, 4, 8, 1, 6, 12) == pytest.approx(-one_angle(dx, 4, 8, 1, 6, 12))


def test_one_angle_never_exceeds_max():
    for dx in range(-300, 301, 7):
        assert abs(one_angle(dx, 100, 200, 0, 4, 8)) <= 8


def test_local_milliseconds_within_a_day():
    assert 0 <= local_milliseconds() < 24 * 60 * 60 * 1000


def test_timestamp_uses_clock():
    tracker = Tracker(640, 480, 320, 300, 52, 45, clock=lambda: 1234)
    assert tracker.timestamp() == 1234


def test_fresh_tracker_state():
    tracker = make_tracker()
    assert tracker.match_count == 0
    assert tracker.is_stable is False
    assert tracker.x_slow and tracker.y_slow


def test_is_matched_uses_horizontal_offset_only():
    tracker = make_tracker()
    assert tracker.is_matched(5, 1000, 10)
    assert not tracker.is_matched(-10, 0, 10)


def test_stability_needs_sixteen_matches():
    tracker = make_tracker()
    for _ in range(15):
        assert tracker.update_stability(True) is False
    assert tracker.update_stability(True) is True
    assert tracker.update_stability(False) is False
    assert tracker.match_count == 0


def test_tracking_returns_match_and_records_location():
    tracker = make_tracker()
    assert tracker.tracking(3, -2, 20) is True
    assert tracker.pre_location.x == 3
    assert tracker.pre_location.y == -2
    assert tracker.tracking(50, 0, 20) is False


def test_centered_target_gives_zero_angle():
    tracker = make_tracker()
    tracker.tracking(0, 0, 20)
    assert tracker.pre_angle.x == 0
    assert tracker.pre_angle.y == 0


def test_angle_follows_sign_of_offset():
    tracker = make_tracker()
    tracker.tracking(200, 0, 20)
    assert 0 < tracker.pre_angle.x <= 8
    other = make_tracker()
    other.tracking(-200, 0, 20)
    assert other.pre_angle.x == pytest.approx(-tracker.pre_angle.x)


def test_stable_after_repeated_matches_clears_slow_mode():
    tracker = make_tracker()
    for _ in range(16):
        tracker.tracking(0, 0, 20)
    assert tracker.is_stable is True
    assert tracker.x_slow is False


def test_fast_jump_resets_history():
    tracker = make_tracker(step=1)
    for _ in range(5):
        tracker.tracking(0, 0, 20)
    assert tracker.match_count == 5
    tracker.tracking(10, 0, 20)
    assert tracker.match_count == 1


def test_angle_stays_bounded_under_large_offsets():
    tracker = make_tracker()
    for _ in range(20):
        tracker.tracking(600, 400, 20)
        assert abs(tracker.pre_angle.x) <= 12
        assert abs(tracker.pre_angle.y) <= 5


def test_set_parameters_updates_geometry():
    tracker = make_tracker()
    tracker.set_parameters(800, 600, 400, 310, 60, 50)
    assert (tracker.width, tracker.height, tracker.center_x, tracker.center_y) == (800, 600, 400, 310)