"""Target selection, CamShift tracking and aiming for a turret camera."""

from __future__ import annotations

import argparse
import contextlib
import logging
import math
import queue
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import product
from pathlib import Path
from typing import Callable

import imageio.v2 as iio
import numpy as np

from robotrack.geometry import Location, Rect, RotatedRect
from robotrack.protocol import PortUnavailable, open_first_port
from robotrack.settings import (
    BLUE_HIST_FILE,
    HIST_FILE,
    RED_HIST_FILE,
    SETTINGS_FILE,
    Settings,
    SettingsError,
    load_hist,
    load_settings,
    save_hist,
    save_settings,
)
from robotrack.tracker import Tracker
from robotrack.vision import (
    HIST_SIZE,
    MIN_VAL,
    back_project,
    best_box,
    bgr_to_hsv,
    blob_boxes,
    calc_hist,
    camshift,
    hist_mask,
    in_range,
    is_legal_rect,
    normalize_minmax,
    open_close,
    plot_hist,
)

logger = logging.getLogger(__name__)

ESC = 27
RESET_PREFIX = 0xAA
RESET_BYTE = 0x00
TRACK_COLOR = (255, 0, 0)


class AimResult(IntEnum):
    """Outcome of one aiming step."""

    LOST = 0
    MATCHED = 1
    STABLE = 2

    @property
    def color(self) -> tuple[int, int, int]:
        return _AIM_COLORS[self]


_AIM_COLORS = {
    AimResult.LOST: (0, 0, 255),
    AimResult.MATCHED: (255, 0, 0),
    AimResult.STABLE: (0, 255, 0),
}


@dataclass
class FrameResult:
    """The image to show for a frame and the aiming outcome, if aiming ran."""

    image: np.ndarray
    aim: AimResult | None


def _slice(rect: Rect) -> tuple[slice, slice]:
    return slice(rect.y, rect.y + rect.height), slice(rect.x, rect.x + rect.width)


def _draw_ellipse(image: np.ndarray, box: RotatedRect, color, thickness: int) -> None:
    rows, cols = image.shape[:2]
    a, b = box.width / 2.0, box.height / 2.0
    theta = math.radians(box.angle)
    steps = max(64, int(4 * math.pi * max(a, b)))
    t = np.linspace(0.0, 2.0 * np.pi, steps, endpoint=False)
    ct, st = np.cos(t), np.sin(t)
    xs = np.rint(box.center.x + a * ct * math.cos(theta) - b * st * math.sin(theta)).astype(int)
    ys = np.rint(box.center.y + a * ct * math.sin(theta) + b * st * math.cos(theta)).astype(int)
    half = thickness // 2
    for ox, oy in product(range(-half, half + 1), repeat=2):
        px, py = xs + ox, ys + oy
        keep = (px >= 0) & (px < cols) & (py >= 0) & (py < rows)
        image[py[keep], px[keep]] = color


@dataclass
class Selector:
    """Rubber-band selection of a target rectangle with the mouse."""

    on_select: Callable[[Rect], None] | None = None
    origin: tuple[int, int] = (0, 0)
    selection: Rect = field(default_factory=Rect)
    active: bool = False

    def press(self, x, y) -> None:
        self.origin = (x, y)
        self.selection = Rect(x, y, 0, 0)
        self.active = True

    def drag(self, x, y, frame_width, frame_height) -> Rect:
        """Stretch the selection to ``(x, y)``, kept inside the frame."""
        if self.active:
            ox, oy = self.origin
            rect = Rect(min(x, ox), min(y, oy), abs(x - ox), abs(y - oy))
            self.selection = rect & Rect(0, 0, frame_width, frame_height)
        return self.selection

    def release(self) -> Rect | None:
        """Finish selecting; returns the selection if it is not empty."""
        self.active = False
        if self.selection.is_empty():
            return None
        if self.on_select is not None:
            self.on_select(self.selection)
        return self.selection


class TargetSession:
    """Finds a coloured target in each frame, follows it and aims at it."""

    def __init__(self, settings, hist, tracker, link):
        self.settings: Settings = settings
        self.hist = np.asarray([] if hist is None else hist, dtype=np.float32).ravel()
        self.tracker: Tracker = tracker
        self.link = link
        self.settings_path = SETTINGS_FILE
        self.hist_path = HIST_FILE
        self.red_hist_path = RED_HIST_FILE
        self.blue_hist_path = BLUE_HIST_FILE
        self.camshift_working = 0
        self.selection = Rect()
        self.track_window = Rect()
        self.track_box = RotatedRect()
        self.pre_box = RotatedRect()
        self.auto_kw = 1.0
        self.auto_kh = 1.0
        self.paused = False
        self.backproj_mode = False
        self.show_hist = True
        self.show_fps = False
        self.auto_shoot = False
        self.image: np.ndarray | None = None
        self.histimg = plot_hist(self.hist)
        self.center_bound = self._bound(settings.bound_w, settings.bound_h)
        self.selector = Selector(on_select=self._select)
        self._reset = threading.Event()
        self._change_target = threading.Event()
        self._change_color = threading.Event()

    @property
    def reset_requested(self) -> bool:
        return self._reset.is_set()

    @property
    def target_change_requested(self) -> bool:
        return self._change_target.is_set()

    @property
    def color_change_requested(self) -> bool:
        return self._change_color.is_set()

    def _bound(self, w: float, h: float) -> tuple[float, float, float, float]:
        s = self.settings
        return (s.center_x - w / 2.0, s.center_y - h / 2.0, w, h)

    def _select(self, rect: Rect) -> None:
        self.selection = rect
        self.camshift_working = -1

    def clear_track(self) -> None:
        """Drop the current target so it is searched for again."""
        self.request_reset()

    def request_reset(self) -> None:
        self._reset.set()

    def request_change_target(self) -> None:
        self._change_target.set()
        self.camshift_working = 0

    def request_change_color(self) -> None:
        self._change_color.set()

    def _load_color(self) -> None:
        path = self.red_hist_path if self.settings.select_red else self.blue_hist_path
        try:
            self.hist = load_hist(path)
        except SettingsError as error:
            logger.warning("%s", error)
            self.hist = np.zeros(0, dtype=np.float32)
        self.histimg = plot_hist(self.hist)

    def _apply_color_change(self) -> bool:
        if not self._change_color.is_set():
            return False
        self.clear_track()
        self.settings.select_red = not self.settings.select_red
        try:
            save_settings(self.settings, self.settings_path)
        except OSError as error:
            logger.warning("save settings failed: %s", error)
        self._load_color()
        self._change_color.clear()
        return True

    def _apply_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.tracker.set_parameters(
            settings.width,
            settings.height,
            settings.center_x,
            settings.center_y,
            settings.bound_w,
            settings.bound_h,
        )
        self.tracker.clear_pre()
        self.center_bound = self._bound(settings.bound_w, settings.bound_h)

    def next_box(self, kw=1.3, kh=1.2) -> Rect:
        """Where the target is expected next: the last box moved by its speed and scaled."""
        box = self.pre_box.bounding_rect()
        if box.width <= 1 and box.height <= 1:
            box = Rect(0, 0, 2, 2)
            center = Location(self.settings.width // 2, self.settings.height // 2)
        else:
            center = self.pre_box.center
        speed = self.tracker.pre_speed
        cx = center.x - speed.x * 80
        cy = center.y - speed.y * 50
        w = int(box.width * kw)
        h = int(box.height * kh)
        return Rect(int(cx - w / 2.0), int(cy - h / 2.0), w, h)

    def auto_select(self, hsv) -> Rect | None:
        """Pick a target from the colour histogram; returns it, or None if none fits."""
        if self.hist.size == 0:
            return None
        hsv = np.asarray(hsv)
        rows, cols = hsv.shape[:2]
        s = self.settings
        mask = open_close(hist_mask(hsv, self.hist, s.vmin, s.smin, MIN_VAL), 2, 1)
        if not self._reset.is_set():
            bound = Rect(0, 0, cols, rows)
            roi_mask = np.full((rows, cols), 255, dtype=np.uint8)
            if self._change_target.is_set():
                roi_mask[_slice(self.pre_box.bounding_rect() & bound)] = 0
            else:
                last = self.next_box(self.auto_kw, self.auto_kh) & bound
                if not last.is_empty():
                    roi_mask = np.zeros((rows, cols), dtype=np.uint8)
                    roi_mask[_slice(last)] = 255
                    if last.width < s.width or last.height < s.height:
                        self.auto_kh *= 1.2
                        self.auto_kw *= 1.3
            mask &= roi_mask
        chosen = best_box(blob_boxes(mask), s.center_y)
        self.selection = chosen or Rect()
        if chosen is None:
            return None
        self.auto_kw = self.auto_kh = 1.1
        self._change_target.clear()
        self._reset.clear()
        self.camshift_working = -2
        logger.debug("auto set selection: %s", chosen)
        return chosen

    def aim(self) -> AimResult:
        """Steer towards the tracked box; sends an angle unless already on target."""
        box = self.track_box.bounding_rect()
        if not self.camshift_working or not is_legal_rect(box.width, box.height):
            self.tracker.clear_pre()
            return AimResult.LOST
        r = min(max(min(box.width, box.height) / 2.0, 20.0), 40.0)
        s = self.settings
        self.center_bound = (s.center_x - r / 2.0, s.center_y - r / 2.0, r, r)
        dx = s.center_x - self.track_box.center.x
        dy = s.center_y - self.track_box.center.y
        if self.tracker.tracking(dx, dy, r):
            return AimResult.STABLE if self.tracker.is_stable else AimResult.MATCHED
        angle = self.tracker.pre_angle
        if self.link is not None:
            self.link.send_angle(angle.x, angle.y)
        logger.debug("angle: %s, %s", angle.x, angle.y)
        return AimResult.LOST

    def _color_mask(self, hsv: np.ndarray) -> np.ndarray:
        s = self.settings
        v_low, v_high = min(s.vmin, s.vmax), max(s.vmin, s.vmax)
        if s.select_red:
            mask = in_range(hsv, (0, s.smin, v_low), (180, 255, v_high))
            low_red = in_range(hsv, (0, 0, 0), (8, 255, 255))
            high_red = in_range(hsv, (174, 0, 0), (180, 255, 255))
            return (low_red | high_red) & mask
        return in_range(hsv, (100, s.smin, v_low), (110, 255, v_high))

    def _track(self, frame: np.ndarray) -> bool:
        self.image = frame.copy()
        hsv = bgr_to_hsv(self.image)
        if self._change_target.is_set():
            self.camshift_working = 0
        if not self.camshift_working or self._reset.is_set():
            self.auto_select(hsv)
            return True
        mask = self._color_mask(hsv)
        hue = hsv[..., 0]
        if self.camshift_working < 0:
            if self.camshift_working == -1 or self.hist.size == 0:
                region = _slice(self.selection)
                counts = calc_hist(hue[region], mask[region], HIST_SIZE)
                self.hist = normalize_minmax(counts, 0, 255)
                self.histimg = plot_hist(self.hist)
            self.track_window = self.selection
            self.camshift_working = 0 if self.track_window.is_empty() else 1
            if not self.camshift_working:
                return False
        backproj = back_project(hue, self.hist) & mask
        self.pre_box = self.track_box
        self.track_box, self.track_window = camshift(backproj, self.track_window, 10, 1.0)
        if self.track_window.area() <= 1:
            rows, cols = backproj.shape
            r = (min(cols, rows) + 5) // 6
            tw = self.track_window
            self.track_window = Rect(tw.x - r, tw.y - r, tw.x + r, tw.y + r) & Rect(0, 0, cols, rows)
        if self.backproj_mode:
            self.image = np.repeat(backproj[..., None], 3, axis=-1)
        box = self.track_box.bounding_rect()
        if is_legal_rect(box.width, box.height):
            _draw_ellipse(self.image, self.track_box, TRACK_COLOR, 3)
        else:
            self.camshift_working = 0
            logger.debug("lost")
        return True

    def process_frame(self, frame) -> FrameResult | None:
        """Run one step on a BGR frame; returns what to show, or None to skip it."""
        if self._apply_color_change():
            logger.info("change color: %s", self.settings.select_red)
        if not self.paused:
            if frame is None:
                return None
            frame = np.asarray(frame, dtype=np.uint8)
            if frame.size == 0 or not self._track(frame):
                return None
        elif self.camshift_working < 0:
            self.paused = False
        if self.image is None:
            return None
        aim = None if self.paused else self.aim()
        return FrameResult(self.image, aim)

    def _save(self) -> None:
        try:
            save_hist(self.hist, self.hist_path)
        except (SettingsError, OSError) as error:
            logger.warning("%s", error)
        try:
            save_settings(self.settings, self.settings_path)
        except OSError as error:
            logger.warning("save settings failed: %s", error)

    def _reload_settings(self) -> None:
        try:
            loaded = load_settings(self.settings_path)
        except SettingsError as error:
            logger.warning("%s", error)
            return
        self._apply_settings(loaded)

    def handle_key(self, key) -> bool:
        """React to a key press; returns False when the program should stop."""
        if isinstance(key, int):
            code = key
        else:
            code = ord(key) if key else -1
        if code == ESC:
            return False
        char = chr(code) if 0 <= code < 0x110000 else ""
        if char == "r":
            self.request_change_color()
        elif char == "b":
            self.backproj_mode = not self.backproj_mode
        elif char == "c":
            self.clear_track()
        elif char == "h":
            self.show_hist = not self.show_hist
        elif char == "p":
            self.paused = not self.paused
        elif char == "x":
            self.request_change_target()
        elif char == "f":
            self.show_fps = not self.show_fps
        elif char == "s":
            self._save()
        elif char == "l":
            self._reload_settings()
        elif char == "k":
            self.auto_shoot = not self.auto_shoot
        return True


class ResetListener:
    """Watches the serial line for the controller's reset request."""

    def __init__(self, link, session):
        self.link = link
        self.session = session
        self.previous = RESET_PREFIX
        self.stopped = threading.Event()

    def feed(self, byte) -> bool:
        """Take one received byte; returns True if it completed a reset request."""
        triggered = byte == RESET_BYTE and self.previous == RESET_PREFIX
        if triggered:
            self.session.request_reset()
            logger.info("reset camshift")
        self.previous = byte
        return triggered

    def run(self) -> None:
        """Read bytes until stopped or the line fails."""
        while not self.stopped.is_set():
            try:
                data = self.link.read(1)
            except OSError as error:
                logger.warning("serial read stopped: %s", error)
                break
            for byte in data:
                self.feed(byte)


def _read_keys(keys: queue.Queue) -> None:
    for line in sys.stdin:
        for char in line.rstrip("\n"):
            keys.put(char)


def _drain_keys(keys: queue.Queue, session: TargetSession) -> bool:
    while True:
        try:
            key = keys.get_nowait()
        except queue.Empty:
            return True
        if not session.handle_key(key):
            return False


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="robotrack", description="Track a coloured target in a video and aim at it."
    )
    parser.add_argument("video", help="video file or device to read frames from")
    parser.add_argument("--port", action="append", dest="ports", help="serial port to try (repeatable)")
    parser.add_argument("--data-dir", type=Path, default=SETTINGS_FILE.parent)
    parser.add_argument("--output", type=Path, help="write the annotated frames to this video")
    parser.add_argument("--fps", type=float, default=30.0)
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    data_dir: Path = args.data_dir
    settings_path = data_dir / SETTINGS_FILE.name
    try:
        settings = load_settings(settings_path)
    except SettingsError as error:
        logger.warning("%s", error)
        settings = Settings()
    tracker = Tracker(
        settings.width,
        settings.height,
        settings.center_x,
        settings.center_y,
        settings.bound_w,
        settings.bound_h,
    )

    with contextlib.ExitStack() as stack:
        ports = args.ports or [f"COM{n}" for n in range(1, 10)]
        try:
            _, link = open_first_port(ports)
        except PortUnavailable as error:
            logger.warning("%s", error)
            link = None
        session = TargetSession(settings, None, tracker, link)
        session.settings_path = settings_path
        session.hist_path = data_dir / HIST_FILE.name
        session.red_hist_path = data_dir / RED_HIST_FILE.name
        session.blue_hist_path = data_dir / BLUE_HIST_FILE.name
        session._load_color()

        if link is not None:
            stack.callback(link.close)
            listener = ResetListener(link, session)
            stack.callback(listener.stopped.set)
            threading.Thread(target=listener.run, daemon=True).start()

        try:
            reader = iio.get_reader(args.video)
        except (OSError, ValueError, RuntimeError, ImportError) as error:
            logger.error("***Could not initialize capturing...*** %s", error)
            return 1
        stack.callback(reader.close)

        writer = None
        if args.output is not None:
            writer = iio.get_writer(args.output, fps=args.fps)
            stack.callback(writer.close)

        keys: queue.Queue = queue.Queue()
        threading.Thread(target=_read_keys, args=(keys,), daemon=True).start()

        frames = iter(reader)
        while True:
            if session.paused:
                frame = None
                time.sleep(0.005)
            else:
                try:
                    rgb = np.asarray(next(frames))
                except StopIteration:
                    break
                frame = rgb[..., :3][..., ::-1]
            result = session.process_frame(frame)
            if result is not None and writer is not None:
                writer.append_data(np.ascontiguousarray(result.image[..., ::-1]))
            if not _drain_keys(keys, session):
                break
    return 0