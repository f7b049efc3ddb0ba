"""
eSCL Protocol for Applied Motion Products ST Drives
===================================================

This module defines the ASCII command/response protocol used to talk to
the ST drive over Ethernet (TCP) or RS-232/RS-485.

Packet Format
-------------
Every packet, in both directions, is wrapped the same way:

    0x00 0x07 <ASCII payload> 0x0D

The payload is a 2-character mnemonic, optionally followed by an argument:

    DI20000      - set distance/position to 20000 steps
    VE1.5000     - set velocity to 1.5 rev/s
    AC           - query acceleration, answered with "AC=100.000"

Responses (Drive -> Host):
    %            - command executed
    *            - command buffered (queued)
    SC=0009      - status word, 4 hex digits
    BS=63        - free slots in the command buffer
    IP=FFFFFFFF  - immediate position, 32-bit hex

Reference: Host Command Reference 920-0002, page 336 (eSCL packet format).
"""

from dataclasses import dataclass
from typing import Optional

from .errors import ProtocolError, StatusLengthError


PREAMBLE = b"\x00\x07"
TERMINATOR = b"\r"

# Largest response we ever read in one go.
READ_BUFFER_SIZE = 1024

# BS reports free slots out of 63; 63 means nothing is queued.
BUFFER_EMPTY = 63


class Command:
    """Mnemonics sent from host to drive."""
    DISTANCE = "DI"          # Set distance (FL) or target position (FP), steps
    VELOCITY = "VE"          # Set velocity, rev/s
    FEED_LENGTH = "FL"       # Relative move by DI steps
    FEED_POSITION = "FP"     # Absolute move to DI steps
    ACCELERATION = "AC"      # Acceleration, rev/s^2
    DECELERATION = "DE"      # Deceleration, rev/s^2
    MAX_ACCELERATION = "AM"  # Deceleration used when a move is stopped
    STATUS_CODE = "SC"       # Read status word
    BUFFER_STATUS = "BS"     # Read free command buffer slots
    IMMEDIATE_POSITION = "IP"  # Read current position, steps
    ENCODER_POSITION = "EP"  # Write encoder position
    SET_POSITION = "SP"      # Write internal position
    STOP_KILL = "SK"         # Stop and clear the command buffer
    STOP_JOG = "SJ"          # Stop continuous jogging


class Ack:
    """Acknowledgements returned by store-style commands."""
    EXECUTED = "%"
    QUEUED = "*"


class StatusBit:
    """Bit positions inside the low byte of the SC status word."""
    MOTOR_ENABLED = 0
    IN_POSITION = 3
    MOVING = 4


def frame(command: str) -> bytes:
    """
    Wrap a command in the eSCL packet preamble and terminator.

    Args:
        command: Unframed command, e.g. "AC100.0000"

    Returns:
        Bytes ready to be written to the stream

    Raises:
        ValueError: If the command is not ASCII or contains a carriage return
    """
    if "\r" in command:
        raise ValueError(f"command must not contain a carriage return: {command!r}")
    try:
        payload = command.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"command must be ASCII: {command!r}") from None
    return PREAMBLE + payload + TERMINATOR


def unframe(data: bytes) -> str:
    """
    Strip the packet preamble and terminator from a response.

    Raises:
        ProtocolError: If the preamble or terminator is missing
    """
    if (len(data) < len(PREAMBLE) + len(TERMINATOR)
            or not data.startswith(PREAMBLE)
            or not data.endswith(TERMINATOR)):
        raise ProtocolError(f"unexpected response from motor controller: {data!r}")
    return data[len(PREAMBLE):-len(TERMINATOR)].decode("ascii", errors="replace")


def format_store(command: str, value: float) -> str:
    """Format a store-style command. Most parameters only take 3 digits but
    some take 4; the drive rounds to whatever it can handle."""
    return f"{command}{value:.4f}"


def response_data(response: str, default_width: Optional[int] = None) -> str:
    """
    Extract the data part of a query response.

    The drive answers queries as "<CMD>=<data>", optionally followed by
    "{" and extra fields (e.g. "SC=0009{63"). Without a "{" the data is
    taken to be at most `default_width` characters long.
    """
    start = response.find("=")
    if start == -1:
        raise ProtocolError(f"unable to find response data in {response!r}")
    end = response.find("{", start)
    if end == -1:
        end = len(response) if default_width is None else start + 1 + default_width
    return response[start + 1:end]


def to_int32(value: int) -> int:
    """Wrap an integer into the signed 32-bit range (two's complement)."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


@dataclass(frozen=True)
class StatusWord:
    """
    Status word parsed from an SC response.

    Format: SC=<4 hex digits>[{...]

    The bits we care about all live in the low byte (raw[1]).
    """
    raw: bytes

    @classmethod
    def from_response(cls, response: str) -> 'StatusWord':
        """
        Parse the status word out of an SC response.

        Raises:
            ProtocolError: If the response has no data or it is not hex
            StatusLengthError: If the data does not decode to exactly 2 bytes
        """
        data = response_data(response, default_width=4)
        try:
            raw = bytes.fromhex(data)
        except ValueError as e:
            raise ProtocolError(f"status word is not hex: {response!r}") from e
        if len(raw) != 2:
            raise StatusLengthError(f"status message incorrect length: {response!r}")
        return cls(raw)

    def bit(self, position: int) -> bool:
        return (self.raw[1] >> position) & 1 == 1

    @property
    def is_powered(self) -> bool:
        return self.bit(StatusBit.MOTOR_ENABLED)

    @property
    def in_position(self) -> bool:
        return self.bit(StatusBit.IN_POSITION)

    @property
    def is_moving(self) -> bool:
        return self.bit(StatusBit.MOVING)

    def __str__(self) -> str:
        return (f"Status(0x{self.raw.hex().upper()}, powered={self.is_powered}, "
                f"in_position={self.in_position}, moving={self.is_moving})")


def parse_buffer_status(response: str) -> int:
    """Parse a BS response ("BS=63") into the number of free buffer slots."""
    data = response_data(response, default_width=2)
    try:
        return int(data)
    except ValueError as e:
        raise ProtocolError(f"unexpected buffer status response: {response!r}") from e


def parse_position(response: str, steps_per_rev: int) -> float:
    """
    Parse an IP response into revolutions.

    The wire value has no sign character: it is the 32-bit two's
    complement bit pattern written out in hex.
    """
    data = response_data(response)
    try:
        unsigned = int(data, 16)
    except ValueError as e:
        raise ProtocolError(f"unexpected position response: {response!r}") from e
    if unsigned > 0xFFFFFFFF:
        raise ProtocolError(f"position does not fit in 32 bits: {response!r}")
    return to_int32(unsigned) / steps_per_rev
