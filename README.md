# robotrack

Tracks a coloured target in a video and sends aiming angles to a turret
controller over a serial line.

A hue histogram of the target colour (red or blue) picks out candidate
regions in each frame. The best candidate is followed with CamShift. From
the target's offset to the aiming point, a `Tracker` works out horizontal and
vertical correction angles. It smooths them, slows down when the target
keeps crossing the centre, and marks the lock as stable after 16 matched
frames in a row. `SerialLink` sends the angles as checksummed packets.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

Video is read with imageio, so the source must be something one of
imageio's installed plugins can open.

## Command line

```
robotrack VIDEO [--port PORT ...] [--data-dir DIR] [--output FILE] [--fps FPS]
```

- `VIDEO`: the video file or device to read frames from.
- `--port PORT`: a serial port to try; give it more than once to try
  several. Without it, `COM1` to `COM9` are tried in turn. If no port opens,
  tracking still runs but no angles are sent.
- `--data-dir DIR`: where `settings.xml`, `hist.xml`, `red.xml` and
  `blue.xml` are kept (default: `robomasters` in the current directory).
  If `settings.xml` is missing or has no frame size, built-in defaults are used.
  The histogram for the chosen colour is loaded from `red.xml` or `blue.xml`.
- `--output FILE`: write the annotated frames (tracked box drawn as an
  ellipse) to this video.
- `--fps FPS`: frame rate of the output video (default 30).

The command runs until the video ends or Esc is read. Commands are read
from standard input as single characters; type them and press Enter:

| key   | action                                          |
|-------|-------------------------------------------------|
| `r`   | switch between red and blue targets (saves settings and loads that colour's histogram) |
| `b`   | toggle back-projection view in the output frames |
| `c`   | clear the current target                        |
| `p`   | pause / resume tracking                         |
| `x`   | move to a different target                      |
| `s`   | save the histogram to `hist.xml` and the settings |
| `l`   | reload settings                                 |
| `h`, `f`, `k` | toggle the `show_hist`, `show_fps` and `auto_shoot` flags |
| Esc   | quit                                            |

If the controller sends the byte `0x00` right after `0xAA` on the serial
line, the target is searched for again (`ResetListener`).

## What it does not do

The command opens no window. It shows no live video, draws no histogram
on screen and takes no mouse input. The toggles `h`, `f` and `k` only flip
flags on the session. Manual selection of a target with the mouse exists
only as the `Selector` class, for a front end to drive. The command itself
always finds its target from the colour histogram.

## Library use

```python
from robotrack.protocol import angle_packet, checksum
from robotrack.tracker import Tracker

packet = angle_packet(1.5, -0.5)      # two little-endian floats + XOR checksum
assert packet[-1] == checksum(packet[:-1])

tracker = Tracker(640, 480, 320, 300, 52, 45, clock=lambda: 0)
matched = tracker.tracking(dx=10.0, dy=4.0, r=20.0)
print(matched, tracker.pre_angle)
```

Modules:

- `robotrack.geometry`: `FloatTuple` (with the aliases `Angle`,
  `Location` and `Speed`), `Rect` and `RotatedRect`.
- `robotrack.tracker`: `Tracker`, the piecewise `one_angle` mapping and
  `local_milliseconds`.
- `robotrack.protocol`: the packet builders (`action_packet`, `shoot_packet`,
  `location_packet`, `angle_packet`, `angle_location_packet`, `ok_packet`),
  `checksum`, the `SerialLink` wrapper (a context manager) and
  `open_first_port`, which raises `PortUnavailable` when no port opens.
- `robotrack.settings`: the `Settings` dataclass, `save_settings`,
  `load_settings`, `save_hist` and `load_hist`. Files are XML; problems raise
  `SettingsError`.
- `robotrack.vision`: `bgr_to_hsv`, `hsv_to_bgr`, `in_range`, `calc_hist`,
  `normalize_minmax`, `back_project`, `open_close`, `blob_boxes`,
  `hist_mask`, `best_box`, `is_legal_rect`, `camshift` and `plot_hist`, all
  on numpy arrays.
- `robotrack.app`: `TargetSession` (per-frame processing with
  `process_frame`, key handling with `handle_key`), `Selector`,
  `ResetListener` and `main`.