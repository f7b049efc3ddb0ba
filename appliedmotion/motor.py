"""
Applied Motion Products ST Motor Driver
=======================================

Drives an ST-series stepper drive over Ethernet or serial using eSCL
commands.

Example:
    >>> from appliedmotion import new_motor
    >>>
    >>> with new_motor({"protocol": "ip", "uri": "10.10.10.10:7776",
    ...                 "steps_per_rev": 20000, "max_rpm": 900}) as motor:
    ...     motor.reset_zero_position(0)
    ...     motor.go_for(600, 0.1)     # 0.1 rev forward at 600 rpm
    ...     motor.position()
    0.1

Moves block until the drive reports the move finished. Pass a
threading.Event as `cancel` to give up early; the motor is stopped before
the call returns.

Locking
-------
Two locks are involved:

- the CommPort lock makes every command/response round trip atomic;
- the motor lock is held for a whole move, and for reconfigure/close, so
  two moves cannot interleave their overrides and the port cannot be
  swapped out mid-move.

`is_moving`, `is_powered` and `stop` skip the motor lock so they work while
a move is in progress.
"""

import logging
import threading
import time
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .comms import CommPort, get_comm
from .config import MotorConfig
from .errors import (
    MoveCancelledError,
    NotSupportedError,
    TransportError,
    combine,
)
from .overrides import apply_overrides
from .protocol import (
    BUFFER_EMPTY,
    Command,
    StatusWord,
    parse_buffer_status,
    parse_position,
    to_int32,
)
from .tools import log_exceptions


MODEL = "viam-labs:appliedmotion:st"

ConfigLike = Union[MotorConfig, Mapping[str, Any]]


def _as_config(config: ConfigLike) -> MotorConfig:
    if isinstance(config, MotorConfig):
        return config
    return MotorConfig.from_dict(dict(config))


class STMotor:
    """
    ST stepper motor.

    Attributes:
        POLL_INTERVAL: Seconds between completion checks while a move runs
    """

    POLL_INTERVAL = 0.1

    def __init__(
        self,
        config: ConfigLike,
        logger: Optional[logging.Logger] = None,
        name: str = "motor",
    ):
        """
        Initialize and connect.

        Args:
            config: MotorConfig or a dict of its attributes
            logger: Logger for warnings and command traces
            name: Name used in log messages

        Raises:
            ConfigValidationError: If the configuration is invalid
            UnsupportedProtocolError: If the protocol cannot be opened
            TransportError: If the connection fails
        """
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._comm: Optional[CommPort] = None
        try:
            self.reconfigure(config)
        except Exception:
            self.close()
            raise

    def __enter__(self) -> 'STMotor':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"STMotor({self.name!r}, {self._comm!r})"

    @property
    def comm(self) -> CommPort:
        """The live CommPort."""
        comm = self._comm
        if comm is None:
            raise TransportError(f"{self.name} is not connected")
        return comm

    # =========================================================================
    # Configuration
    # =========================================================================

    @log_exceptions
    def reconfigure(self, config: ConfigLike) -> None:
        """
        Apply a new configuration.

        Closes the current port, opens a new one and writes the configured
        default acceleration/deceleration to the drive. If that fails the
        new port is closed too and the motor is left disconnected.
        """
        config = _as_config(config)
        config.validate()

        with self._lock:
            self.logger.debug("Reconfiguring %s", self.name)
            self.config = config
            self.steps_per_rev = config.steps_per_rev
            self.rpm_limits = config.rpm_limits
            self.acceleration_limits = config.acceleration_limits
            self.deceleration_limits = config.deceleration_limits

            if self._comm is not None:
                old, self._comm = self._comm, None
                old.close()

            comm = get_comm(config, self.logger)
            try:
                self._store_defaults(comm, config)
            except Exception:
                comm.close()
                raise
            self._comm = comm

    def _store_defaults(self, comm: CommPort, config: MotorConfig) -> None:
        if config.acceleration > 0:
            comm.store(Command.ACCELERATION, config.acceleration)
        if config.deceleration > 0:
            comm.store(Command.DECELERATION, config.deceleration)

        # Deceleration used when a move is stopped part way through.
        stop_decel = max(config.acceleration, config.deceleration)
        if stop_decel > 0:
            comm.store(Command.MAX_ACCELERATION, stop_decel)

    # =========================================================================
    # Motion
    # =========================================================================

    @log_exceptions
    def go_for(
        self,
        rpm: float,
        revolutions: float,
        extra: Optional[Dict[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Move a relative distance and wait for the move to finish.

        Args:
            rpm: Speed; a negative value reverses the direction
            revolutions: Distance; its sign gives the direction
            extra: Optional "acceleration"/"deceleration" overrides (rev/s^2)
            cancel: Event that aborts the wait (and stops the motor) when set

        Raises:
            MoveCancelledError: If `cancel` was set before the move finished
        """
        self.logger.debug("GoFor: rpm=%s, revolutions=%s, extra=%s", rpm, revolutions, extra)
        # The drive only takes positive speeds; direction is the distance sign.
        if rpm < 0:
            rpm, revolutions = -rpm, -revolutions
        self._move(Command.FEED_LENGTH, rpm, revolutions, extra, cancel)

    @log_exceptions
    def go_to(
        self,
        rpm: float,
        position_revolutions: float,
        extra: Optional[Dict[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Move to an absolute position and wait for the move to finish.

        Args:
            rpm: Speed; the sign is ignored
            position_revolutions: Target position, in revolutions from zero
            extra: Optional "acceleration"/"deceleration" overrides (rev/s^2)
            cancel: Event that aborts the wait (and stops the motor) when set
        """
        self.logger.debug("GoTo: rpm=%s, position=%s, extra=%s", rpm, position_revolutions, extra)
        self._move(Command.FEED_POSITION, abs(rpm), position_revolutions, extra, cancel)

    def _move(
        self,
        start_command: str,
        rpm: float,
        revolutions: float,
        extra: Optional[Dict[str, Any]],
        cancel: Optional[threading.Event],
    ) -> None:
        with self._lock:
            comm = self.comm
            # Make sure we are not still jogging from something else.
            comm.send(Command.STOP_JOG)

            rpm = self.rpm_limits.bound(rpm, self.logger)
            snapshot, error = apply_overrides(
                comm, extra, self.acceleration_limits, self.deceleration_limits, self.logger)

            try:
                if error is not None:
                    raise error
                self._configure_move(comm, revolutions, rpm)
                comm.send(start_command)
                self._wait_for_move_command_to_complete(comm, cancel)
            except BaseException as e:
                # Also on KeyboardInterrupt, or the override stays on the drive.
                restore_error = snapshot.restore(comm)
                if restore_error is None:
                    raise
                if not isinstance(e, Exception):
                    self.logger.error("Failed to restore overrides: %s", restore_error)
                    raise
                raise combine(e, restore_error) from e

            restore_error = snapshot.restore(comm)
            if restore_error is not None:
                raise restore_error

    def _configure_move(self, comm: CommPort, revolutions: float, rpm: float) -> None:
        steps = int(revolutions * self.steps_per_rev)
        rev_sec = rpm / 60

        # DI is the distance for FL and the target position for FP. Ethernet
        # drives do not accept a position argument on FP itself.
        comm.send(f"{Command.DISTANCE}{steps}")
        if rev_sec != 0:
            comm.store(Command.VELOCITY, rev_sec)

    def _wait_for_move_command_to_complete(
        self, comm: CommPort, cancel: Optional[threading.Event]
    ) -> None:
        while True:
            if cancel is None:
                time.sleep(self.POLL_INTERVAL)
            elif cancel.wait(self.POLL_INTERVAL):
                self.logger.debug("Wait for %s cancelled, stopping", self.name)
                cancelled = MoveCancelledError("move cancelled before it completed")
                # Not tied to `cancel`: the hardware still has to stop.
                try:
                    comm.send(Command.STOP_KILL)
                except Exception as e:
                    raise combine(cancelled, e) from e
                raise cancelled

            buffer_empty = self.is_buffer_empty()
            moving = self.is_moving()
            if buffer_empty and not moving:
                return

    @log_exceptions
    def stop(self, extra: Optional[Dict[str, Any]] = None) -> None:
        """
        Stop the current move and clear any queued moves (SK).

        Does not take the motor lock, so it can interrupt a running move.
        """
        self.logger.debug("Stop: extra=%s", extra)
        self.comm.send(Command.STOP_KILL)

    def set_power(self, power_pct: float, extra: Optional[Dict[str, Any]] = None) -> None:
        """
        Not supported.

        A stepper drive has no throttle; the closest thing would be a very
        long move at a scaled speed, which is not what callers expect.
        """
        raise NotSupportedError("set power is not supported for this motor")

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> StatusWord:
        """Read the status word (SC)."""
        return StatusWord.from_response(self.comm.send(Command.STATUS_CODE))

    def get_buffer_status(self) -> int:
        """Read the number of free command buffer slots (BS)."""
        return parse_buffer_status(self.comm.send(Command.BUFFER_STATUS))

    def is_buffer_empty(self) -> bool:
        return self.get_buffer_status() == BUFFER_EMPTY

    def in_position(self) -> bool:
        return self.get_status().in_position

    def is_moving(self) -> bool:
        """
        Check if the motor is moving.

        Does not take the motor lock, otherwise it would block until any
        running move had finished.
        """
        self.logger.debug("IsMoving")
        return self.get_status().is_moving

    def is_powered(self, extra: Optional[Dict[str, Any]] = None) -> Tuple[bool, float]:
        """
        Check if the motor is enabled.

        Returns:
            (powered, power fraction). A stepper has no meaningful power
            fraction, so the second value is always 0.0.
        """
        self.logger.debug("IsPowered: extra=%s", extra)
        return self.get_status().is_powered, 0.0

    @log_exceptions
    def position(self, extra: Optional[Dict[str, Any]] = None) -> float:
        """Current position in revolutions (IP)."""
        with self._lock:
            self.logger.debug("Position: extra=%s", extra)
            return parse_position(self.comm.send(Command.IMMEDIATE_POSITION), self.steps_per_rev)

    @log_exceptions
    def reset_zero_position(self, offset: float, extra: Optional[Dict[str, Any]] = None) -> None:
        """
        Make the current position read as `-offset` revolutions.

        Both the encoder position (EP) and the internal position (SP) have
        to be written for the reset to take.
        """
        with self._lock:
            self.logger.debug("ResetZeroPosition: offset=%s", offset)
            steps = to_int32(int(-offset * self.steps_per_rev))
            comm = self.comm
            comm.send(f"{Command.ENCODER_POSITION}{steps}")
            comm.send(f"{Command.SET_POSITION}{steps}")

    def properties(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, bool]:
        return {"position_reporting": True}

    # =========================================================================
    # Passthrough
    # =========================================================================

    @log_exceptions
    def do_command(self, cmd: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Send a raw eSCL command.

        Args:
            cmd: {"command": "<unframed command>"}

        Returns:
            {"response": "<unframed response>"}
        """
        command = cmd.get("command")
        if not isinstance(command, str) or not command:
            raise ValueError(f"do_command needs a 'command' string, got {cmd!r}")

        with self._lock:
            self.logger.debug("DoCommand: %r", command)
            return {"response": self.comm.send(command)}

    # =========================================================================
    # Connection Management
    # =========================================================================

    def close(self) -> None:
        """Close the port. Safe to call more than once."""
        with self._lock:
            if self._comm is None:
                return
            self.logger.debug("Closing comm port")
            comm, self._comm = self._comm, None
            comm.close()


def new_motor(
    config: ConfigLike,
    logger: Optional[logging.Logger] = None,
    name: str = "motor",
) -> STMotor:
    """
    Build a connected STMotor from configuration.

    This is the constructor a host runtime registers for MODEL.
    """
    (logger or logging.getLogger(__name__)).info("Starting Applied Motion Products ST motor driver")
    return STMotor(config, logger, name)
