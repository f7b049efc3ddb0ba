"""
appliedmotion - Applied Motion Products ST Stepper Driver
=========================================================

A Python library for driving Applied Motion Products ST-series stepper
drives over Ethernet (TCP) or RS-232/RS-485 using eSCL commands.

Example:
    >>> from appliedmotion import new_motor
    >>>
    >>> with new_motor({"protocol": "rs232", "uri": "/dev/ttyUSB0",
    ...                 "steps_per_rev": 20000, "max_rpm": 900}) as motor:
    ...     motor.go_for(600, 1.0)  # One revolution at 600 rpm
    ...     motor.stop()
"""

from .motor import STMotor, new_motor, MODEL
from .config import MotorConfig
from .comms import CommPort, IpCommPort, SerialCommPort, get_comm
from .limits import Limits
from .overrides import OverrideSnapshot, apply_overrides
from .protocol import Command, StatusWord, BUFFER_EMPTY
from .errors import (
    STError,
    TransportError,
    ShortWriteError,
    ProtocolError,
    StatusLengthError,
    AcknowledgementError,
    UnsupportedProtocolError,
    ConfigValidationError,
    OverrideValueError,
    MoveCancelledError,
    NotSupportedError,
    MultiError,
    combine,
)

__version__ = "0.1.0"
__all__ = [
    "STMotor",
    "new_motor",
    "MODEL",
    "MotorConfig",
    "CommPort",
    "IpCommPort",
    "SerialCommPort",
    "get_comm",
    "Limits",
    "OverrideSnapshot",
    "apply_overrides",
    "Command",
    "StatusWord",
    "BUFFER_EMPTY",
    "STError",
    "TransportError",
    "ShortWriteError",
    "ProtocolError",
    "StatusLengthError",
    "AcknowledgementError",
    "UnsupportedProtocolError",
    "ConfigValidationError",
    "OverrideValueError",
    "MoveCancelledError",
    "NotSupportedError",
    "MultiError",
    "combine",
]
