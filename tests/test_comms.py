"""
Tests for the byte-stream transport.

Run with:
    pytest tests/test_comms.py -v
"""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import serial

from appliedmotion import (
    AcknowledgementError,
    IpCommPort,
    ProtocolError,
    SerialCommPort,
    ShortWriteError,
    TransportError,
    UnsupportedProtocolError,
    get_comm,
)
from appliedmotion.protocol import PREAMBLE, TERMINATOR

from conftest import FakeDrive, default_config


class ScriptedStream:
    """Serial-like stream that answers every write with a fixed reply."""

    def __init__(self, reply: bytes):
        self.reply = reply
        self.written = []
        self.closed = 0

    def write(self, data: bytes) -> int:
        self.written.append(data)
        return len(data)

    def read_until(self, expected=TERMINATOR, size=None) -> bytes:
        return self.reply

    def close(self):
        self.closed += 1


class EchoStream:
    """
    Serial-like stream that echoes each command back and records any
    write that arrives while a response is still outstanding.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = None
        self.interleaved = 0
        self.writes = 0

    def write(self, data: bytes) -> int:
        with self._lock:
            if self._pending is not None:
                self.interleaved += 1
            self._pending = data
            self.writes += 1
        # Give other threads a chance to barge in.
        time.sleep(0.0005)
        return len(data)

    def read_until(self, expected=TERMINATOR, size=None) -> bytes:
        time.sleep(0.0005)
        with self._lock:
            data, self._pending = self._pending, None
        return data

    def close(self):
        pass


# =============================================================================
# SEND
# =============================================================================

class TestSend:
    """Test one command/response round trip."""

    def test_writes_framed_command(self):
        stream = ScriptedStream(b"\x00\x07SC=0009\r")
        comm = SerialCommPort(stream, "/dev/test")

        assert comm.send("SC") == "SC=0009"
        assert stream.written == [b"\x00\x07SC\r"]

    def test_short_write_is_fatal(self):
        drive = FakeDrive()
        drive.short_write = True
        comm = SerialCommPort(drive, "/dev/test")

        with pytest.raises(ShortWriteError):
            comm.send("SC")

    def test_short_write_is_transport_error(self):
        drive = FakeDrive()
        drive.short_write = True
        with pytest.raises(TransportError):
            SerialCommPort(drive, "/dev/test").send("SC")

    def test_garbage_response(self):
        comm = SerialCommPort(ScriptedStream(b"garbage"), "/dev/test")
        with pytest.raises(ProtocolError):
            comm.send("SC")

    def test_missing_terminator(self):
        comm = SerialCommPort(ScriptedStream(b"\x00\x07SC=0009"), "/dev/test")
        with pytest.raises(ProtocolError):
            comm.send("SC")

    def test_no_response(self):
        """A read timeout returns nothing from pyserial."""
        comm = SerialCommPort(ScriptedStream(b""), "/dev/test")
        with pytest.raises(TransportError):
            comm.send("SC")

    def test_write_failure_wrapped(self):
        stream = MagicMock()
        stream.write.side_effect = serial.SerialException("device unplugged")
        comm = SerialCommPort(stream, "/dev/test")

        with pytest.raises(TransportError) as excinfo:
            comm.send("SC")
        assert isinstance(excinfo.value.__cause__, serial.SerialException)

    def test_read_failure_wrapped(self):
        sock = MagicMock()
        sock.send.side_effect = lambda data: len(data)
        sock.recv.side_effect = ConnectionResetError("reset by peer")
        comm = IpCommPort(sock, "10.10.10.10:7776")

        with pytest.raises(TransportError):
            comm.send("SC")

    def test_ip_port_uses_single_send(self):
        sock = MagicMock()
        sock.send.side_effect = lambda data: len(data)
        sock.recv.return_value = b"\x00\x07%\r"
        comm = IpCommPort(sock, "10.10.10.10:7776")

        assert comm.send("SK") == "%"
        sock.send.assert_called_once_with(b"\x00\x07SK\r")
        sock.sendall.assert_not_called()
        sock.recv.assert_called_once_with(1024)

    def test_ip_short_write(self):
        sock = MagicMock()
        sock.send.return_value = 2
        comm = IpCommPort(sock, "10.10.10.10:7776")

        with pytest.raises(ShortWriteError):
            comm.send("SK")
        sock.recv.assert_not_called()

    def test_debug_logging(self, caplog):
        comm = SerialCommPort(ScriptedStream(b"\x00\x07%\r"), "/dev/test")
        with caplog.at_level("DEBUG", logger="appliedmotion.comms"):
            comm.send("SK")
        assert "Sending command: 'SK'" in caplog.text
        assert "Response: '%'" in caplog.text


# =============================================================================
# STORE
# =============================================================================

class TestStore:
    """Test store-style commands and their acknowledgements."""

    def test_executed_ack(self):
        drive = FakeDrive()
        comm = SerialCommPort(drive, "/dev/test")

        comm.store("AC", 25)
        assert drive.commands == ["AC25.0000"]
        assert drive.acceleration == 25.0

    def test_queued_ack(self):
        comm = SerialCommPort(ScriptedStream(b"\x00\x07*\r"), "/dev/test")
        comm.store("VE", 10)

    def test_non_ack_rejected(self):
        comm = SerialCommPort(ScriptedStream(b"\x00\x07?4\r"), "/dev/test")
        with pytest.raises(AcknowledgementError) as excinfo:
            comm.store("VE", 10)
        assert "VE" in str(excinfo.value)


# =============================================================================
# CLOSE
# =============================================================================

class TestClose:

    def test_close_is_idempotent(self):
        stream = ScriptedStream(b"\x00\x07%\r")
        comm = SerialCommPort(stream, "/dev/test")

        comm.close()
        comm.close()
        assert stream.closed == 1
        assert comm.is_closed

    def test_send_after_close(self):
        stream = ScriptedStream(b"\x00\x07%\r")
        comm = SerialCommPort(stream, "/dev/test")
        comm.close()

        with pytest.raises(TransportError):
            comm.send("SC")
        assert stream.written == []

    def test_context_manager(self):
        stream = ScriptedStream(b"\x00\x07%\r")
        with SerialCommPort(stream, "/dev/test") as comm:
            comm.send("SK")
        assert stream.closed == 1


# =============================================================================
# CONCURRENCY
# =============================================================================

class TestConcurrency:
    """Concurrent senders must never interleave on the wire."""

    def test_round_trips_are_atomic(self):
        stream = EchoStream()
        comm = SerialCommPort(stream, "/dev/test")
        results = {}
        errors = []

        def worker(n):
            try:
                for i in range(20):
                    command = f"DI{n * 1000 + i}"
                    results[command] = comm.send(command)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert stream.interleaved == 0
        assert stream.writes == 160
        # Every caller got its own command echoed back.
        assert all(command == response for command, response in results.items())
        assert len(results) == 160


# =============================================================================
# FACTORY
# =============================================================================

class TestGetComm:
    """Test building a CommPort from configuration."""

    def test_rs232(self):
        with patch('serial.Serial') as mock_serial_class:
            comm = get_comm(default_config(protocol="rs232", baudrate=115200))
        assert isinstance(comm, SerialCommPort)
        mock_serial_class.assert_called_once_with("/dev/test", baudrate=115200, timeout=1)

    def test_rs485_case_insensitive(self):
        with patch('serial.Serial'):
            comm = get_comm(default_config(protocol="RS485"))
        assert isinstance(comm, SerialCommPort)

    def test_ip(self):
        drive = FakeDrive()
        with patch('socket.create_connection', return_value=drive) as connect:
            comm = get_comm(default_config(protocol="ip", uri="10.10.10.10:7776",
                                           connect_timeout=2))
        assert isinstance(comm, IpCommPort)
        connect.assert_called_once_with(("10.10.10.10", 7776), timeout=2)
        assert comm.send("BS") == "BS=63"

    def test_ip_default_timeout(self):
        with patch('socket.create_connection', return_value=FakeDrive()) as connect:
            get_comm(default_config(protocol="ip", uri="10.10.10.10:7776",
                                    connect_timeout=0))
        connect.assert_called_once_with(("10.10.10.10", 7776), timeout=5.0)

    def test_ip_bad_uri(self):
        with pytest.raises(TransportError):
            get_comm(default_config(protocol="ip", uri="10.10.10.10"))

    def test_ip_connect_failure(self):
        with patch('socket.create_connection', side_effect=ConnectionRefusedError()):
            with pytest.raises(TransportError):
                get_comm(default_config(protocol="ip", uri="10.10.10.10:7776"))

    def test_serial_open_failure(self):
        with patch('serial.Serial', side_effect=serial.SerialException("no such device")):
            with pytest.raises(TransportError):
                get_comm(default_config(protocol="rs232"))

    def test_can_unsupported(self):
        with pytest.raises(UnsupportedProtocolError, match="unsupported"):
            get_comm(default_config(protocol="can"))

    def test_unknown_protocol(self):
        with pytest.raises(UnsupportedProtocolError, match="unknown"):
            get_comm(default_config(protocol="usb"))
