"""Colour-histogram target tracking with CamShift and serial turret aiming."""

__version__ = "0.1.0"
__all__ = ["geometry", "tracker", "protocol", "settings", "vision", "app"]