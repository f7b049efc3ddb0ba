import logging
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Limits:
    """
    Safe range for one setpoint (rpm, acceleration or deceleration).

    A bound of 0 means "no bound", so a real bound of exactly 0 cannot be
    expressed. That matches the drive, where 0 means "use the default".
    """
    name: str
    minimum: float = 0.0
    maximum: float = 0.0

    def bound(self, value: float, log: Optional[logging.Logger] = None) -> float:
        """
        Return the value, or the min/max it violates (with a warning).

        A value of 0 is returned as-is: it means "use the device default"
        and is never sent.
        """
        log = log or logger
        if value == 0:
            return value

        if self.minimum != 0 and value < self.minimum:
            log.warning("%s is too low: asked for %f but setting to minimum %f",
                        self.name, value, self.minimum)
            return self.minimum

        if self.maximum != 0 and value > self.maximum:
            log.warning("%s is too high: asked for %f but setting to maximum %f",
                        self.name, value, self.maximum)
            return self.maximum

        return value
