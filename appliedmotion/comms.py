"""
Byte-Stream Transport for ST Drives
===================================

A CommPort owns one open stream to the drive (a TCP socket or a serial
device) and runs one command/response round trip at a time over it.

Responses carry no command identifier, so the only way to match a response
to its command is to never have two commands in flight. `send` holds the
port's lock from the first byte written to the last byte read; concurrent
callers queue up behind it.

Example
-------
>>> with IpCommPort.connect("10.10.10.10:7776", timeout=5.0) as comm:
...     comm.store("AC", 100)      # "AC100.0000" -> "%"
...     comm.send("IP")            # -> "IP=00004E20"
"""

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

import serial

from .config import MotorConfig
from .errors import (
    AcknowledgementError,
    ShortWriteError,
    TransportError,
    UnsupportedProtocolError,
)
from .protocol import Ack, READ_BUFFER_SIZE, TERMINATOR, format_store, frame, unframe


logger = logging.getLogger(__name__)

_IO_ERRORS = (OSError, serial.SerialException)


class CommPort(ABC):
    """
    One exclusive stream to a drive.

    Subclasses only move bytes: `_write` a packet, `_read` a response and
    `_close_handle`. Framing, locking and acknowledgement checks live here.
    """

    def __init__(self, handle: Any, uri: str, log: Optional[logging.Logger] = None):
        self.handle = handle
        self.uri = uri
        self.logger = log or logger
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> 'CommPort':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.uri!r})"

    @property
    def is_closed(self) -> bool:
        return self._closed

    @abstractmethod
    def _write(self, packet: bytes) -> int:
        """Write the packet once and return how many bytes went out."""

    @abstractmethod
    def _read(self) -> bytes:
        """Read one response (at most READ_BUFFER_SIZE bytes)."""

    @abstractmethod
    def _close_handle(self) -> None:
        """Release the underlying stream."""

    def send(self, command: str) -> str:
        """
        Send one command and return the drive's unframed response.

        Args:
            command: Unframed command, e.g. "SC" or "DI20000"

        Returns:
            Response payload, e.g. "SC=0009"

        Raises:
            TransportError: If the stream fails or is closed
            ShortWriteError: If only part of the packet was written
            ProtocolError: If the response is not a valid packet
        """
        packet = frame(command)
        with self._lock:
            if self._closed:
                raise TransportError(f"{self.uri} is closed")

            self.logger.debug("Sending command: %r", command)
            self.logger.debug("Sending buffer: %r", packet)
            try:
                written = self._write(packet)
            except _IO_ERRORS as e:
                raise TransportError(f"failed to write {command!r} to {self.uri}: {e}") from e
            if written != len(packet):
                raise ShortWriteError(
                    f"failed to write all bytes of {command!r}: {written} of {len(packet)}")

            try:
                data = self._read()
            except _IO_ERRORS as e:
                raise TransportError(f"failed to read response to {command!r} from {self.uri}: {e}") from e
            if not data:
                raise TransportError(f"no response to {command!r} from {self.uri}")

            response = unframe(data)
            self.logger.debug("Response: %r", response)
            return response

    def store(self, command: str, value: float) -> None:
        """
        Set a parameter and check the drive acknowledged it.

        Executed commands are acknowledged with "%", buffered ones with "*".

        Raises:
            AcknowledgementError: If the response is anything else
        """
        result = self.send(format_store(command, value))
        if result not in (Ack.EXECUTED, Ack.QUEUED):
            raise AcknowledgementError(
                f"got non-ack response when trying to set {command} to {value:f}: {result!r}")

    def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.logger.debug("Closing %s", self.uri)
            try:
                self._close_handle()
            except _IO_ERRORS as e:
                raise TransportError(f"failed to close {self.uri}: {e}") from e


class IpCommPort(CommPort):
    """CommPort over a TCP socket (ST-IP drives, eSCL on port 7776)."""

    @classmethod
    def connect(cls, uri: str, timeout: float,
                log: Optional[logging.Logger] = None) -> 'IpCommPort':
        """
        Dial "host:port".

        Raises:
            TransportError: If the connection cannot be made within `timeout`
        """
        (log or logger).debug("Dialing %s", uri)
        host, sep, port = uri.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise TransportError(f"expected host:port, got {uri!r}")

        try:
            sock = socket.create_connection((host, int(port)), timeout=timeout)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        except OSError as e:
            raise TransportError(f"failed to connect to {uri}: {e}") from e
        return cls(sock, uri, log)

    def _write(self, packet: bytes) -> int:
        # A single send(), not sendall(), so a short write shows up.
        return self.handle.send(packet)

    def _read(self) -> bytes:
        return self.handle.recv(READ_BUFFER_SIZE)

    def _close_handle(self) -> None:
        self.handle.close()


class SerialCommPort(CommPort):
    """CommPort over an RS-232 or RS-485 serial device."""

    @classmethod
    def open(cls, path: str, baudrate: int, timeout: float,
             log: Optional[logging.Logger] = None) -> 'SerialCommPort':
        """
        Open a serial device.

        Raises:
            TransportError: If the device cannot be opened
        """
        (log or logger).debug("Opening %s", path)
        try:
            ser = serial.Serial(path, baudrate=baudrate, timeout=timeout)
        except _IO_ERRORS as e:
            raise TransportError(f"failed to open {path}: {e}") from e
        return cls(ser, path, log)

    def _write(self, packet: bytes) -> int:
        return self.handle.write(packet)

    def _read(self) -> bytes:
        return self.handle.read_until(TERMINATOR, READ_BUFFER_SIZE)

    def _close_handle(self) -> None:
        self.handle.close()


def get_comm(config: MotorConfig, log: Optional[logging.Logger] = None) -> CommPort:
    """
    Open the CommPort described by the configuration.

    Raises:
        UnsupportedProtocolError: For "can" or an unknown protocol
        TransportError: If the stream cannot be opened
    """
    log = log or logger
    protocol = config.protocol.lower()

    if protocol == "can":
        raise UnsupportedProtocolError(f"unsupported comm type {config.protocol}")
    if protocol == "ip":
        log.debug("Creating IP comm port")
        if not config.connect_timeout:
            log.debug("Setting default connect timeout to %s seconds", config.timeout)
        return IpCommPort.connect(config.uri, config.timeout, log)
    if protocol in ("rs485", "rs232"):
        log.debug("Creating %s comm port", protocol.upper())
        return SerialCommPort.open(config.uri, config.baudrate, config.timeout, log)
    raise UnsupportedProtocolError(f"unknown comm type {config.protocol}")
