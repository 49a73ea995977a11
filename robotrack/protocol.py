"""Serial packets for the gimbal controller and a link that sends them."""

from __future__ import annotations

import logging
import struct
from functools import reduce
from operator import xor
from typing import Iterable

import serial

logger = logging.getLogger(__name__)

BAUD_RATE = 115200


class PortUnavailable(OSError):
    """No candidate serial port could be opened."""


def checksum(data: bytes) -> int:
    """XOR of every byte."""
    return reduce(xor, data, 0)


def _short(value: int) -> bytes:
    return (int(value) & 0xFFFF).to_bytes(2, "little")


def action_packet(direction: int, speed: int = 0) -> bytes:
    body = bytes([0xFE, 0x55, 0xAA, 0x01, ((speed << 7) | direction) & 0xFF, 0, 0, 0])
    return body + bytes([checksum(body)])


def shoot_packet() -> bytes:
    body = bytes([0xFE, 0x55, 0, 0, 0, 0, 0xFF])
    return body + bytes([checksum(body)])


def location_packet(angle: int, speed: int) -> bytes:
    angle &= 0xFFFF
    body = bytes([0xFE, 0x55, 0xAA, 0x02, angle >> 8, angle & 0xFF, speed & 0xFF, 0])
    return body + bytes([checksum(body)])


def angle_packet(horizontal: float, vertical: float) -> bytes:
    body = struct.pack("<ff", horizontal, vertical)
    return body + bytes([checksum(body)])


def angle_location_packet(horizontal: int, vertical: int, pixel_x: int, pixel_y: int) -> bytes:
    return (
        b"\xaa\x55"
        + _short(horizontal)
        + _short(vertical)
        + _short(pixel_x)
        + _short(pixel_y)
        + b"\xbb"
    )


def ok_packet() -> bytes:
    return bytes([0xAA, 0x55, 0x01, 0xBB])


class SerialLink:
    """Sends command packets over a byte stream such as a serial port."""

    def __init__(self, stream):
        self.stream = stream

    @classmethod
    def open(cls, port: str) -> SerialLink:
        stream = serial.Serial(
            port,
            baudrate=BAUD_RATE,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=0.1,
        )
        stream.reset_input_buffer()
        stream.reset_output_buffer()
        return cls(stream)

    def read(self, size: int) -> bytes:
        return self.stream.read(size)

    def write(self, data: bytes) -> int:
        if not data:
            return 0
        written = self.stream.write(data)
        return len(data) if written is None else written

    def close(self) -> None:
        self.stream.close()
        logger.info("Com closed!")

    def __enter__(self) -> SerialLink:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def send_action(self, direction: int, speed: int = 0) -> int:
        return self.write(action_packet(direction, speed))

    def send_shoot(self) -> int:
        return self.write(shoot_packet())

    def send_location(self, angle: int, speed: int) -> int:
        return self.write(location_packet(angle, speed))

    def send_angle(self, horizontal: float, vertical: float) -> int:
        return self.write(angle_packet(horizontal, vertical))

    def send_angle_location(self, horizontal, vertical, pixel_x, pixel_y) -> int:
        return self.write(angle_location_packet(horizontal, vertical, pixel_x, pixel_y))

    def send_ok(self) -> int:
        return self.write(ok_packet())


def open_first_port(candidates: Iterable[str]) -> tuple[str, SerialLink]:
    """Open the first port that works; returns its name and the link."""
    tried = []
    for port in candidates:
        try:
            link = SerialLink.open(port)
        except (serial.SerialException, OSError) as error:
            logger.info("open com failed: %s (%s)", port, error)
            tried.append(port)
            continue
        logger.info("open com succ: %s", port)
        return port, link
    raise PortUnavailable(f"no serial port could be opened: {', '.join(tried) or 'none given'}")