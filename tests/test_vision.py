import numpy as np
import pytest

from robotrack.geometry import Rect
from robotrack.vision import (
    back_project,
    best_box,
    bgr_to_hsv,
    blob_boxes,
    calc_hist,
    camshift,
    hist_mask,
    hsv_to_bgr,
    in_range,
    is_legal_rect,
    normalize_minmax,
    open_close,
    plot_hist,
)


def _pixel(bgr):
    return np.array([[bgr]], dtype=np.uint8)


def test_pure_red_and_blue_hue():
    assert bgr_to_hsv(_pixel((0, 0, 255)))[0, 0].tolist() == [0, 255, 255]
    assert bgr_to_hsv(_pixel((255, 0, 0)))[0, 0].tolist() == [120, 255, 255]


def test_grey_has_no_saturation():
    hsv = bgr_to_hsv(_pixel((77, 77, 77)))[0, 0]
    assert hsv[1] == 0 and hsv[2] == 77


@pytest.mark.parametrize("bgr", [(0, 0, 255), (0, 255, 0), (255, 0, 0), (255, 255, 0), (0, 0, 0)])
def test_primary_colours_round_trip(bgr):
    assert hsv_to_bgr(bgr_to_hsv(_pixel(bgr)))[0, 0].tolist() == list(bgr)


def test_random_round_trip_is_close():
    rng = np.random.default_rng(1)
    image = rng.integers(0, 256, size=(20, 20, 3), dtype=np.uint8)
    back = hsv_to_bgr(bgr_to_hsv(image)).astype(int)
    assert np.abs(back - image.astype(int)).max() <= 6


def test_in_range_is_inclusive():
    image = np.array([[[10, 20, 30], [11, 20, 30]]], dtype=np.uint8)
    mask = in_range(image, (0, 20, 30), (10, 20, 30))
    assert mask.tolist() == [[255, 0]]


def test_calc_hist_counts_masked_pixels():
    hue = np.full((4, 5), 10, dtype=np.uint8)
    mask = np.zeros((4, 5), dtype=np.uint8)
    mask[:2] = 255
    hist = calc_hist(hue, mask, 180)
    assert hist.shape == (180,)
    assert hist[10] == 10
    assert hist.sum() == 10


def test_normalize_minmax_bounds():
    out = normalize_minmax(np.array([3.0, 9.0, 5.0]), 0, 255)
    assert out.min() == 0 and out.max() == 255
    assert np.array_equal(np.argsort(out), np.array([0, 2, 1]))


def test_normalize_constant_gives_low():
    out = normalize_minmax(np.array([4.0, 4.0]), 0, 255)
    assert out.tolist() == [0.0, 0.0]


def test_back_project_looks_up_hist():
    hist = np.zeros(180, dtype=np.float32)
    hist[30] = 200
    hue = np.array([[30, 31]], dtype=np.uint8)
    assert back_project(hue, hist).tolist() == [[200, 0]]


@pytest.mark.parametrize("w,h,legal", [(6, 4, True), (5, 10, False), (10, 3, False)])
def test_is_legal_rect(w, h, legal):
    assert is_legal_rect(w, h) is legal


def test_open_close_removes_specks_keeps_blocks():
    mask = np.zeros((30, 30), dtype=np.uint8)
    mask[2, 2] = 255
    mask[10:22, 10:22] = 255
    out = open_close(mask, 2, 1)
    assert out[2, 2] == 0
    assert np.array_equal(out[10:22, 10:22], mask[10:22, 10:22])


def test_blob_boxes_finds_outer_blobs():
    mask = np.zeros((40, 40), dtype=np.uint8)
    mask[2:6, 3:10] = 255
    mask[20:35, 20:35] = 255
    mask[23:32, 23:32] = 0
    mask[26:28, 26:28] = 255
    boxes = blob_boxes(mask)
    assert set(boxes) == {Rect(3, 2, 7, 4), Rect(20, 20, 15, 15)}


def test_hist_mask_thresholds():
    hist = np.zeros(180, dtype=np.float32)
    hist[100] = 255
    hsv = np.array([[[100, 200, 200], [100, 50, 200], [90, 200, 200]]], dtype=np.uint8)
    assert hist_mask(hsv, hist, vmin=50, smin=110).tolist() == [[255, 0, 0]]


def test_best_box_prefers_rightmost_legal():
    boxes = [Rect(0, 0, 10, 10), Rect(200, 0, 2, 2), Rect(100, 0, 10, 10)]
    assert best_box(boxes, 300) == Rect(100, 0, 10, 10)


def test_best_box_none_when_all_illegal():
    assert best_box([Rect(0, 0, 3, 3)], 300) is None


def test_best_box_keeps_first_on_tie():
    first, second = Rect(0, 0, 10, 10), Rect(0, 50, 10, 10)
    assert best_box([first, second], 300) is first


def test_camshift_finds_blob():
    prob = np.zeros((100, 100), dtype=np.uint8)
    prob[40:60, 50:70] = 255
    box, window = camshift(prob, Rect(35, 30, 30, 30))
    assert 50 <= box.center.x <= 70
    assert 40 <= box.center.y <= 60
    assert window & Rect(50, 40, 20, 20) == Rect(50, 40, 20, 20)


def test_camshift_empty_probability():
    prob = np.zeros((50, 50), dtype=np.uint8)
    box, _ = camshift(prob, Rect(10, 10, 10, 10))
    assert (box.width, box.height) == (0.0, 0.0)


def test_plot_hist_draws_bar():
    hist = np.zeros(180, dtype=np.float32)
    hist[0] = 100
    image = plot_hist(hist)
    assert image.shape == (200, 320, 3)
    assert image[199, 0].tolist() == [0, 0, 255]
    assert image[0, 0].tolist() == [0, 0, 0]