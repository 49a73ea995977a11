"""Persistent tracker settings and colour histograms, stored as XML."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, fields
from pathlib import Path

import numpy as np

from robotrack.vision import normalize_minmax

logger = logging.getLogger(__name__)

ROOT_TAG = "opencv_storage"
SETTINGS_FILE = Path("robomasters") / "settings.xml"
HIST_FILE = Path("robomasters") / "hist.xml"
RED_HIST_FILE = Path("robomasters") / "red.xml"
BLUE_HIST_FILE = Path("robomasters") / "blue.xml"

_STORED_FIELDS = ("width", "height", "center_x", "center_y", "select_red", "vmin", "vmax", "smin")
_XML_NAMES = {"center_x": "centerX", "center_y": "centerY", "select_red": "selectRed"}


class SettingsError(ValueError):
    """A settings or histogram file is missing, unreadable or incomplete."""


@dataclass
class Settings:
    """Frame geometry, aim point, colour choice and the HSV thresholds."""

    width: int = 640
    height: int = 480
    center_x: int = 320
    center_y: int = 300
    select_red: bool = False
    vmin: int = 50
    vmax: int = 256
    smin: int = 110
    bound_w: float = 52.0
    bound_h: float = 45.0


def _xml_name(name: str) -> str:
    return _XML_NAMES.get(name, name)


def _write_tree(root: ET.Element, path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ET.indent(root)
    ET.ElementTree(root).write(path, encoding="utf-8", xml_declaration=True)


def _read_root(path) -> ET.Element:
    try:
        return ET.parse(Path(path)).getroot()
    except (OSError, ET.ParseError) as error:
        raise SettingsError(f"cannot read {path}: {error}") from error


def save_settings(settings: Settings, path=SETTINGS_FILE) -> None:
    root = ET.Element(ROOT_TAG)
    for name in _STORED_FIELDS:
        value = getattr(settings, name)
        ET.SubElement(root, _xml_name(name)).text = str(int(value))
    _write_tree(root, path)
    logger.info("save settings successfully: %s", settings)


def _read_int(root: ET.Element, name: str) -> int:
    node = root.find(_xml_name(name))
    if node is None or not (node.text or "").strip():
        return 0
    try:
        return int(float(node.text.strip()))
    except ValueError as error:
        raise SettingsError(f"bad value for {name}: {node.text!r}") from error


def load_settings(path=SETTINGS_FILE) -> Settings:
    """Read settings; a file without a width or height is rejected."""
    root = _read_root(path)
    values = {name: _read_int(root, name) for name in _STORED_FIELDS}
    if values["width"] == 0 or values["height"] == 0:
        raise SettingsError(f"load settings failed: {path} has no frame size")
    values["select_red"] = bool(values["select_red"])
    known = {f.name for f in fields(Settings)}
    settings = Settings(**{k: v for k, v in values.items() if k in known})
    logger.info("load settings successfully: %s", settings)
    return settings


def save_hist(hist, path=HIST_FILE) -> None:
    data = np.asarray(hist, dtype=np.float32).ravel()
    if data.size == 0:
        raise SettingsError("save hist failed: histogram is empty")
    root = ET.Element(ROOT_TAG)
    node = ET.SubElement(root, "hist", type_id="opencv-matrix")
    ET.SubElement(node, "rows").text = str(data.size)
    ET.SubElement(node, "cols").text = "1"
    ET.SubElement(node, "dt").text = "f"
    ET.SubElement(node, "data").text = " ".join(f"{v:.9g}" for v in data)
    _write_tree(root, path)
    logger.info("save hist successfully")


def load_hist(path=HIST_FILE) -> np.ndarray:
    """Read a histogram and stretch it to the range 0..255."""
    root = _read_root(path)
    node = root.find("hist")
    if node is None:
        raise SettingsError(f"load hist failed: {path} has no histogram")
    try:
        rows = int(node.findtext("rows", "0"))
        cols = int(node.findtext("cols", "0"))
        values = [float(v) for v in (node.findtext("data") or "").split()]
    except ValueError as error:
        raise SettingsError(f"load hist failed: {error}") from error
    if rows <= 0 or cols <= 0 or len(values) != rows * cols:
        raise SettingsError(f"load hist failed: {path} holds no usable histogram")
    hist = np.asarray(values, dtype=np.float32)
    logger.info("load hist successfully")
    return normalize_minmax(hist, 0, 255)