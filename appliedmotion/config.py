"""
Configuration for an ST motor.

Example
-------
>>> config = MotorConfig.from_dict({
...     "protocol": "ip",
...     "uri": "10.10.10.10:7776",
...     "steps_per_rev": 20000,
...     "max_rpm": 900,
... })
>>> config.validate()
"""

import numbers
from dataclasses import dataclass, fields
from typing import Any, Dict, List

from .errors import ConfigValidationError
from .limits import Limits


PROTOCOLS = ("ip", "rs485", "rs232")

DEFAULT_CONNECT_TIMEOUT = 5.0  # seconds
DEFAULT_BAUDRATE = 9600

_TEXT_FIELDS = ("protocol", "uri")
_INTEGER_FIELDS = ("steps_per_rev", "baudrate")


@dataclass
class MotorConfig:
    """
    Configuration for an ST motor.

    Attributes
    ----------
    protocol : str
        "ip", "rs485" or "rs232" ("can" is not supported)
    uri : str
        "host:port" for ip, device path for serial
    steps_per_rev : int
        Motor resolution (steps per revolution)
    min_rpm, max_rpm : float
        Speed bounds; a min of 0 is no bound
    connect_timeout : float
        TCP connect timeout in seconds; 0 means 5 seconds
    baudrate : int
        Serial baudrate (rs232/rs485 only)
    acceleration, deceleration : float
        Defaults written to the drive on (re)configure, rev/s^2; 0 leaves
        the drive's own setting alone
    min_acceleration, max_acceleration, min_deceleration, max_deceleration : float
        Bounds for per-move overrides; 0 is no bound
    """
    protocol: str = ""
    uri: str = ""
    steps_per_rev: int = 0
    min_rpm: float = 0.0
    max_rpm: float = 0.0
    connect_timeout: float = 0.0
    baudrate: int = DEFAULT_BAUDRATE
    acceleration: float = 0.0
    deceleration: float = 0.0
    min_acceleration: float = 0.0
    max_acceleration: float = 0.0
    min_deceleration: float = 0.0
    max_deceleration: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MotorConfig':
        """Create from a dictionary of attributes; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigValidationError(f"unknown config attributes: {', '.join(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def timeout(self) -> float:
        """Connect timeout in seconds, with the default filled in."""
        return self.connect_timeout or DEFAULT_CONNECT_TIMEOUT

    @property
    def rpm_limits(self) -> Limits:
        return Limits("rpm", self.min_rpm, self.max_rpm)

    @property
    def acceleration_limits(self) -> Limits:
        return Limits("acceleration", self.min_acceleration, self.max_acceleration)

    @property
    def deceleration_limits(self) -> Limits:
        return Limits("deceleration", self.min_deceleration, self.max_deceleration)

    def validate(self) -> None:
        """
        Check the configuration.

        Raises:
            ConfigValidationError: Listing every problem found
        """
        problems = self._type_problems()
        if problems:
            # The range checks below cannot run on values of the wrong type.
            raise ConfigValidationError("; ".join(problems))

        if not self.protocol:
            problems.append("protocol is required")
        elif self.protocol.lower() == "can":
            problems.append("protocol can is not supported")
        elif self.protocol.lower() not in PROTOCOLS:
            problems.append(f"protocol must be one of {', '.join(PROTOCOLS)}")
        if not self.uri:
            problems.append("uri is required")
        if self.steps_per_rev <= 0:
            problems.append("steps_per_rev must be > 0")
        if self.connect_timeout < 0:
            problems.append("connect_timeout must be >= 0")

        if self.min_rpm < 0:
            problems.append("min_rpm must be >= 0")
        if self.max_rpm <= 0:
            problems.append("max_rpm must be > 0")
        elif self.max_rpm < self.min_rpm:
            problems.append("max_rpm must be >= min_rpm")

        for prefix in ("ac", "de"):
            name = f"{prefix}celeration"
            low = getattr(self, f"min_{name}")
            default = getattr(self, name)
            high = getattr(self, f"max_{name}")

            for label, value in ((f"min_{name}", low), (name, default), (f"max_{name}", high)):
                if value < 0:
                    problems.append(f"{label} must be >= 0")

            # 0 is "not set", and anything is fine next to an unset value.
            for label_a, a, label_b, b in ((f"min_{name}", low, f"max_{name}", high),
                                           (f"min_{name}", low, name, default),
                                           (name, default, f"max_{name}", high)):
                if a != 0 and b != 0 and a > b:
                    problems.append(f"{label_a} must be <= {label_b}")

        if problems:
            raise ConfigValidationError("; ".join(problems))

    def _type_problems(self) -> List[str]:
        problems: List[str] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _TEXT_FIELDS:
                if not isinstance(value, str):
                    problems.append(f"{f.name} must be a string, got {value!r}")
            elif f.name in _INTEGER_FIELDS:
                if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                    problems.append(f"{f.name} must be an integer, got {value!r}")
            elif isinstance(value, bool) or not isinstance(value, numbers.Real):
                problems.append(f"{f.name} must be a number, got {value!r}")
        return problems
