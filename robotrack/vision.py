"""Image operations for colour-based target detection and CamShift tracking."""

from __future__ import annotations

import math

import numpy as np
from scipy import ndimage

from robotrack.geometry import FloatTuple, Rect, RotatedRect

HUE_RANGE = 180
HIST_SIZE = 180
HIST_IMG_ROWS = 200
HIST_IMG_COLS = 320
MIN_VAL = 50
_TOLERANCE = 10
_SQUARE = np.ones((3, 3), dtype=bool)


def bgr_to_hsv(image) -> np.ndarray:
    """Convert an 8-bit BGR image to HSV with hue in 0..179."""
    img = np.asarray(image, dtype=np.float64)
    b, g, r = img[..., 0], img[..., 1], img[..., 2]
    v = img.max(axis=-1)
    diff = v - img.min(axis=-1)
    s = np.where(v > 0, diff * 255.0 / np.where(v > 0, v, 1.0), 0.0)
    safe = np.where(diff > 0, diff, 1.0)
    h = np.where(
        v == r,
        60.0 * (g - b) / safe,
        np.where(v == g, 120.0 + 60.0 * (b - r) / safe, 240.0 + 60.0 * (r - g) / safe),
    )
    h = np.where(diff > 0, h, 0.0)
    h = np.where(h < 0, h + 360.0, h)
    hue = np.rint(h / 2.0) % HUE_RANGE
    return np.stack([hue, np.rint(s), v], axis=-1).astype(np.uint8)


def hsv_to_bgr(image) -> np.ndarray:
    """Convert an 8-bit HSV image (hue in 0..179) back to BGR."""
    img = np.asarray(image, dtype=np.float64)
    h6 = (img[..., 0] * 2.0 / 60.0) % 6.0
    s = img[..., 1] / 255.0
    v = img[..., 2] / 255.0
    sector = np.floor(h6).astype(int)
    f = h6 - sector
    p = v * (1 - s)
    q = v * (1 - s * f)
    t = v * (1 - s * (1 - f))
    conds = [sector == k for k in range(6)]
    r = np.select(conds, [v, q, p, p, t, v])
    g = np.select(conds, [t, v, v, q, p, p])
    b = np.select(conds, [p, p, t, v, v, q])
    return np.clip(np.rint(np.stack([b, g, r], axis=-1) * 255.0), 0, 255).astype(np.uint8)


def in_range(image, low, high) -> np.ndarray:
    """255 where every channel lies within [low, high], else 0."""
    img = np.asarray(image)
    low_arr = np.asarray(low, dtype=np.float64)
    high_arr = np.asarray(high, dtype=np.float64)
    inside = (img >= low_arr) & (img <= high_arr)
    if img.ndim == 3:
        inside = inside.all(axis=-1)
    return np.where(inside, 255, 0).astype(np.uint8)


def _bins(values: np.ndarray, size: int) -> tuple[np.ndarray, np.ndarray]:
    valid = (values >= 0) & (values < HUE_RANGE)
    idx = np.floor(np.where(valid, values, 0) * size / HUE_RANGE).astype(int)
    return np.clip(idx, 0, size - 1), valid


def calc_hist(hue, mask=None, size=HIST_SIZE) -> np.ndarray:
    """Histogram of hue values over 0..180 in ``size`` bins, counting masked pixels."""
    values = np.asarray(hue, dtype=np.float64).ravel()
    selected = np.ones(values.shape, dtype=bool) if mask is None else np.asarray(mask).ravel() != 0
    idx, valid = _bins(values, size)
    counts = np.bincount(idx[selected & valid], minlength=size)
    return counts[:size].astype(np.float32)


def normalize_minmax(hist, low, high) -> np.ndarray:
    """Linearly stretch values so their minimum is ``low`` and maximum ``high``."""
    data = np.asarray(hist, dtype=np.float64)
    if data.size == 0:
        return data.astype(np.float32)
    smin, smax = data.min(), data.max()
    scale = (high - low) / (smax - smin) if smax - smin > np.finfo(float).eps else 0.0
    return ((data - smin) * scale + low).astype(np.float32)


def back_project(hue, hist) -> np.ndarray:
    """Replace each hue by its histogram value, saturated to 8 bits."""
    values = np.asarray(hue, dtype=np.float64)
    table = np.asarray(hist, dtype=np.float64).ravel()
    idx, valid = _bins(values, table.size)
    projected = np.clip(np.rint(table[idx]), 0, 255)
    return np.where(valid, projected, 0).astype(np.uint8)


def is_legal_rect(width, height) -> bool:
    """Whether a box is large enough to be a target."""
    return not (width <= 5 or height <= 3)


def _erode(mask: np.ndarray, n: int) -> np.ndarray:
    if n <= 0:
        return mask
    return ndimage.binary_erosion(mask, structure=_SQUARE, iterations=n, border_value=1)


def _dilate(mask: np.ndarray, n: int) -> np.ndarray:
    if n <= 0:
        return mask
    return ndimage.binary_dilation(mask, structure=_SQUARE, iterations=n)


def open_close(mask, open_iterations=2, close_iterations=1) -> np.ndarray:
    """Morphological opening then closing with a 3x3 square."""
    binary = np.asarray(mask) != 0
    binary = _dilate(_erode(binary, open_iterations), open_iterations)
    binary = _erode(_dilate(binary, close_iterations), close_iterations)
    return np.where(binary, 255, 0).astype(np.uint8)


def blob_boxes(mask) -> list[Rect]:
    """Bounding boxes of the outermost blobs, in raster order of their first pixel."""
    binary = np.asarray(mask) != 0
    filled = ndimage.binary_fill_holes(binary)
    labels, _ = ndimage.label(filled, structure=_SQUARE)
    return [
        Rect(sx.start, sy.start, sx.stop - sx.start, sy.stop - sy.start)
        for sy, sx in ndimage.find_objects(labels)
    ]


def hist_mask(hsv, hist, vmin, smin, min_val=MIN_VAL) -> np.ndarray:
    """255 where a pixel is bright and saturated enough and its hue is common in ``hist``."""
    img = np.asarray(hsv)
    table = np.asarray(hist, dtype=np.float64).ravel()
    hue = np.clip(img[..., 0].astype(int), 0, table.size - 1)
    keep = (img[..., 2] > vmin) & (img[..., 1] > smin) & (table[hue] > min_val)
    return np.where(keep, 255, 0).astype(np.uint8)


def best_box(boxes, center_y) -> Rect | None:
    """Pick the legal box scoring highest; the first one wins ties."""
    best = None
    best_score = 0
    for rect in boxes:
        if not is_legal_rect(rect.width, rect.height):
            continue
        rp_x = round(rect.x + rect.width / 2.0)
        score = (rp_x - center_y) * 2
        if best is None or best_score < score:
            best, best_score = rect, score
    return best


def _moments(roi: np.ndarray):
    m00 = roi.sum()
    if abs(m00) < np.finfo(float).eps:
        return None
    xs = np.arange(roi.shape[1], dtype=np.float64)
    ys = np.arange(roi.shape[0], dtype=np.float64)
    col = roi.sum(axis=0)
    row = roi.sum(axis=1)
    m10 = xs @ col
    m01 = ys @ row
    m20 = (xs * xs) @ col
    m02 = (ys * ys) @ row
    m11 = ys @ roi @ xs
    xbar, ybar = m10 / m00, m01 / m00
    return m00, m10, m01, m20 - xbar * m10, m11 - xbar * m01, m02 - ybar * m01


def _mean_shift(prob: np.ndarray, window: Rect, max_iter: int, eps: float) -> Rect:
    rows, cols = prob.shape
    frame = Rect(0, 0, cols, rows)
    eps_sq = round(eps * eps)
    cur = window
    for _ in range(max(1, max_iter)):
        cur = cur & frame
        if cur == Rect():
            cur = Rect(cols // 2, rows // 2, 0, 0)
        cur = Rect(cur.x, cur.y, max(cur.width, 1), max(cur.height, 1))
        m = _moments(prob[cur.y:cur.y + cur.height, cur.x:cur.x + cur.width])
        if m is None:
            break
        m00, m10, m01 = m[:3]
        dx = round(m10 / m00 - window.width * 0.5)
        dy = round(m01 / m00 - window.height * 0.5)
        nx = min(max(cur.x + dx, 0), cols - cur.width)
        ny = min(max(cur.y + dy, 0), rows - cur.height)
        dx, dy = nx - cur.x, ny - cur.y
        cur = Rect(nx, ny, cur.width, cur.height)
        if dx * dx + dy * dy < eps_sq:
            break
    return cur


def camshift(prob, window: Rect, max_iter=10, eps=1.0) -> tuple[RotatedRect, Rect]:
    """Continuously adaptive mean shift; returns the found box and the next search window."""
    mat = np.asarray(prob, dtype=np.float64)
    rows, cols = mat.shape
    win = _mean_shift(mat, window, max_iter, eps)

    x = max(win.x - _TOLERANCE, 0)
    y = max(win.y - _TOLERANCE, 0)
    w = min(win.width + 2 * _TOLERANCE, cols - x)
    h = min(win.height + 2 * _TOLERANCE, rows - y)
    win = Rect(x, y, w, h)

    m = _moments(mat[y:y + h, x:x + w])
    if m is None:
        return RotatedRect(), win
    m00, m10, m01, mu20, mu11, mu02 = m
    inv = 1.0 / m00
    xc = round(m10 * inv + x)
    yc = round(m01 * inv + y)
    a, b, c = mu20 * inv, mu11 * inv, mu02 * inv
    square = math.sqrt(4 * b * b + (a - c) ** 2)
    theta = math.atan2(2 * b, a - c + square)
    cs, sn = math.cos(theta), math.sin(theta)
    rotate_a = max(0.0, cs * cs * mu20 + 2 * cs * sn * mu11 + sn * sn * mu02)
    rotate_c = max(0.0, sn * sn * mu20 - 2 * cs * sn * mu11 + cs * cs * mu02)
    length = math.sqrt(rotate_a * inv) * 4
    width = math.sqrt(rotate_c * inv) * 4
    if length < width:
        length, width = width, length
        cs, sn = sn, cs
        theta = math.pi / 2 + theta

    new_w = min(max(round(abs(length * cs)), round(abs(width * sn))) + 2, (cols - xc) * 2)
    new_h = min(max(round(abs(length * sn)), round(abs(width * cs))) + 2, (rows - yc) * 2)
    nx = max(0, xc - new_w // 2)
    ny = max(0, yc - new_h // 2)
    new_w = min(cols - nx, new_w)
    new_h = min(rows - ny, new_h)
    win = Rect(nx, ny, new_w, new_h)

    angle = (math.pi * 0.5 + theta) * 180.0 / math.pi
    angle %= 360.0
    if angle >= 180:
        angle -= 180
    center = FloatTuple(nx + new_w * 0.5, ny + new_h * 0.5)
    return RotatedRect(center, width, length, angle), win


def plot_hist(hist, width=HIST_IMG_COLS, height=HIST_IMG_ROWS) -> np.ndarray:
    """Draw a hue histogram as coloured bars in a BGR image."""
    values = np.asarray(hist, dtype=np.float64).ravel()
    hsize = values.size
    hsv = np.zeros((height, width, 3), dtype=np.uint8)
    if hsize == 0:
        return hsv
    bin_w = width / hsize
    for i, value in enumerate(values):
        val = int(value)
        if val <= 0:
            continue
        x0 = int(i * bin_w)
        x1 = min(int((i + 1) * bin_w), width - 1)
        y0 = max(height - val, 0)
        hue = min(max(round(i * 180.0 / hsize), 0), 255)
        hsv[y0:height, x0:x1 + 1] = (hue, 255, 255)
    return hsv_to_bgr(hsv)