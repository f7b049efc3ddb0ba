"""
Exceptions raised by the ST driver.

Everything derives from STError. A broken link (TransportError) is kept
apart from a drive that answered badly (ProtocolError, AcknowledgementError).
"""

from typing import List, Optional


class STError(Exception):
    """Base exception for all ST driver errors."""


class TransportError(STError):
    """Reading from or writing to the byte stream failed."""


class ShortWriteError(TransportError):
    """Fewer bytes were written than the framed packet holds."""


class ProtocolError(STError):
    """The drive's response did not match the packet or data format."""


class StatusLengthError(ProtocolError):
    """The SC status payload did not decode to exactly 2 bytes."""


class AcknowledgementError(STError):
    """A store-style command was answered with something other than % or *."""


class UnsupportedProtocolError(STError):
    """The configuration names a transport this driver cannot open."""


class ConfigValidationError(STError):
    """The motor configuration is invalid."""


class OverrideValueError(STError):
    """An acceleration/deceleration override is not a number."""


class MoveCancelledError(STError):
    """Waiting for a move was cancelled by the caller."""


class NotSupportedError(STError):
    """The operation has no equivalent on a stepper drive."""


class MultiError(STError):
    """Several errors from one operation, kept in the order they happened."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))

    def __iter__(self):
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)


def combine(*errors: Optional[BaseException]) -> Optional[BaseException]:
    """
    Combine errors into one.

    `None` entries are dropped and nested MultiErrors are flattened.
    Returns None when nothing is left, the error itself when only one
    is left, otherwise a MultiError holding all of them.
    """
    flat: List[BaseException] = []
    for error in errors:
        if error is None:
            continue
        if isinstance(error, MultiError):
            flat.extend(error.errors)
        else:
            flat.append(error)

    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return MultiError(flat)
