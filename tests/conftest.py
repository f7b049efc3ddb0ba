"""
Shared fixtures: a fake ST drive that speaks eSCL.

FakeDrive looks like a pyserial port (write/read_until) and like a socket
(send/recv) so it can sit behind either CommPort.
"""

import re
import threading
from typing import Dict, List, Optional
from unittest.mock import patch

import pytest

from appliedmotion import MotorConfig, STMotor
from appliedmotion.protocol import PREAMBLE, TERMINATOR


STEPS_PER_REV = 20000


class FakeDrive:
    """Mock ST drive for testing without hardware."""

    def __init__(self, acceleration: float = 100.0, deceleration: float = 100.0):
        self.acceleration = acceleration
        self.deceleration = deceleration
        self.max_acceleration = 0.0
        self.velocity = 0.0
        self.distance = 0
        self.position = 0          # steps
        self.status = 0x0009       # enabled + in position

        # Polls that report the drive busy after FL/FP.
        self.moving_polls_per_move = 2
        self.busy_polls_per_move = 2
        self._moving_polls = 0
        self._busy_polls = 0

        self.commands: List[str] = []
        self.responses: Dict[str, str] = {}   # exact command -> forced response
        self.short_write = False
        self.is_open = True
        self.close_count = 0
        self._pending: Optional[bytes] = None
        self._lock = threading.Lock()

    # -- serial interface ----------------------------------------------------

    def write(self, data: bytes) -> int:
        assert data.startswith(PREAMBLE) and data.endswith(TERMINATOR), data
        command = data[len(PREAMBLE):-len(TERMINATOR)].decode("ascii")
        with self._lock:
            self.commands.append(command)
            response = self.responses.get(command)
            if response is None:
                response = self._handle(command)
            self._pending = PREAMBLE + response.encode("ascii") + TERMINATOR
        return len(data) - 1 if self.short_write else len(data)

    def read_until(self, expected: bytes = TERMINATOR, size: Optional[int] = None) -> bytes:
        with self._lock:
            data, self._pending = self._pending or b"", None
        return data

    def close(self) -> None:
        self.is_open = False
        self.close_count += 1

    # -- socket interface ----------------------------------------------------

    def send(self, data: bytes) -> int:
        return self.write(data)

    def recv(self, size: int) -> bytes:
        return self.read_until(TERMINATOR, size)

    def setsockopt(self, *args) -> None:
        pass

    # -- drive behaviour -----------------------------------------------------

    def _start_move(self, target: int) -> None:
        self.position = target
        self._moving_polls = self.moving_polls_per_move
        self._busy_polls = self.busy_polls_per_move

    def _handle(self, command: str) -> str:
        if command == "AC":
            return f"AC={self.acceleration:.3f}"
        if command == "DE":
            return f"DE={self.deceleration:.3f}"
        if command == "SC":
            status = self.status
            if self._moving_polls > 0:
                self._moving_polls -= 1
                status |= 0x0010
            return f"SC={status:04X}"
        if command == "BS":
            if self._busy_polls > 0:
                self._busy_polls -= 1
                return "BS=62"
            return "BS=63"
        if command == "IP":
            return f"IP={self.position & 0xFFFFFFFF:08X}"
        if command == "FL":
            self._start_move(self.position + self.distance)
            return "%"
        if command == "FP":
            self._start_move(self.distance)
            return "%"
        if command == "SK":
            self._moving_polls = 0
            self._busy_polls = 0
            return "%"
        if command == "SJ":
            return "%"

        match = re.fullmatch(r"(AC|DE|AM|VE)(-?\d+\.\d+)", command)
        if match:
            attr = {"AC": "acceleration", "DE": "deceleration",
                    "AM": "max_acceleration", "VE": "velocity"}[match.group(1)]
            setattr(self, attr, float(match.group(2)))
            return "%"
        match = re.fullmatch(r"(DI|EP|SP)(-?\d+)", command)
        if match:
            if match.group(1) == "DI":
                self.distance = int(match.group(2))
            else:
                self.position = int(match.group(2))
            return "%"
        return "?"

    # -- helpers -------------------------------------------------------------

    def count(self, command: str) -> int:
        with self._lock:
            return self.commands.count(command)

    def clear_commands(self) -> None:
        with self._lock:
            self.commands.clear()


def default_config(**overrides) -> MotorConfig:
    values = dict(
        protocol="rs232",
        uri="/dev/test",
        steps_per_rev=STEPS_PER_REV,
        min_rpm=0,
        max_rpm=900,
        connect_timeout=1,
        acceleration=100,
        deceleration=100,
    )
    values.update(overrides)
    return MotorConfig(**values)


@pytest.fixture
def drive():
    """Create a fake drive."""
    return FakeDrive()


@pytest.fixture
def fast_polling(monkeypatch):
    monkeypatch.setattr(STMotor, "POLL_INTERVAL", 0.001)


@pytest.fixture
def make_motor(drive, fast_polling):
    """Build motors on top of the fake drive (serial.Serial is patched)."""
    motors = []

    with patch('serial.Serial') as mock_serial_class:
        mock_serial_class.return_value = drive

        def _make(**config_overrides) -> STMotor:
            motor = STMotor(default_config(**config_overrides))
            motors.append(motor)
            return motor

        yield _make

    for motor in motors:
        motor.close()


@pytest.fixture
def motor(make_motor, drive):
    """A motor connected to the fake drive, with the startup traffic cleared."""
    m = make_motor()
    drive.clear_commands()
    return m
