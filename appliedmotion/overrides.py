"""
Per-move acceleration/deceleration overrides.

A move may ask for its own acceleration or deceleration through its
`extra` map. The drive's values are swapped in before the move and the
previous ones written back afterwards, so a move never permanently changes
the configured defaults.

Errors never short-circuit here: every problem with either axis is
collected and returned, together with whatever was captured, so the caller
can always undo the part that did get applied.
"""

import logging
import numbers
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from .comms import CommPort
from .errors import OverrideValueError, ProtocolError, combine
from .limits import Limits
from .protocol import Command


logger = logging.getLogger(__name__)


@dataclass
class OverrideSnapshot:
    """
    Values the drive had before an override.

    0.0 means "not captured" (no override was applied for that axis). A
    drive whose previous value really was 0 is treated the same way.
    """
    acceleration: float = 0.0
    deceleration: float = 0.0

    def restore(self, comm: CommPort) -> Optional[BaseException]:
        """
        Write the captured values back to the drive.

        Both axes are always attempted.

        Returns:
            None on success, otherwise the combined error(s)
        """
        errors: List[Optional[BaseException]] = []
        for command, value in ((Command.ACCELERATION, self.acceleration),
                               (Command.DECELERATION, self.deceleration)):
            if value == 0.0:
                continue
            try:
                comm.store(command, value)
            except Exception as e:
                errors.append(e)
        return combine(*errors)


def query_value(comm: CommPort, command: str) -> float:
    """Read a parameter by sending the bare command ("AC" -> "AC=100.000")."""
    response = comm.send(command)
    if not response.startswith(command + "="):
        # The drive answered some other request, something is badly wrong.
        raise ProtocolError(f"unexpected response to {command}: {response!r}")
    try:
        return float(response[len(command) + 1:])
    except ValueError as e:
        raise ProtocolError(f"unexpected response to {command}: {response!r}") from e


def apply_overrides(
    comm: CommPort,
    extra: Optional[Mapping[str, Any]],
    acceleration_limits: Limits,
    deceleration_limits: Limits,
    log: Optional[logging.Logger] = None,
) -> Tuple[OverrideSnapshot, Optional[BaseException]]:
    """
    Apply the "acceleration"/"deceleration" entries of `extra`.

    Args:
        comm: Port to the drive
        extra: Caller's extra map; missing keys are left alone
        acceleration_limits: Clamp for the acceleration override
        deceleration_limits: Clamp for the deceleration override
        log: Logger for clamp warnings

    Returns:
        (snapshot of previous values, combined error or None)
    """
    log = log or logger
    extra = extra or {}
    snapshot = OverrideSnapshot()
    errors: List[Optional[BaseException]] = []

    for key, command, limits in (("acceleration", Command.ACCELERATION, acceleration_limits),
                                 ("deceleration", Command.DECELERATION, deceleration_limits)):
        if key not in extra:
            continue
        value = extra[key]
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            errors.append(OverrideValueError(f"non-numeric value for {key}: {value!r}"))
            continue

        value = limits.bound(float(value), log)
        if value == 0:
            # 0 means "drive default"; nothing to send or undo.
            continue
        try:
            previous = query_value(comm, command)
            # Recorded before the store so a failed store is still undone.
            setattr(snapshot, key, previous)
            log.debug("Overriding %s: %f -> %f", key, previous, value)
            comm.store(command, value)
        except Exception as e:
            errors.append(e)

    return snapshot, combine(*errors)
