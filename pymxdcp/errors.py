"""Exception hierarchy for pymxdcp.

All exceptions inherit from MixerError so callers can catch every
client failure with a single except clause:

    try:
        await mixer.async_recall_preset(3)
    except MixerError as e:
        print(f"Error: {e}")

MixerError
├── MixerConnectionError - socket-level failure (refused, reset, not connected)
│   └── MixerTimeoutError - no line arrived within the configured timeout
├── MixerProtocolError - unexpected or missing text from the device
├── MixerAuthenticationError - wrong password
│   └── SessionOccupiedError - another client holds the session
├── PresetRejectedError - device refused a SET command
├── PresetVerificationError - recall confirmed but a later read disagrees
└── InvalidPresetError - preset number out of range (no I/O performed)
"""

from typing import Optional


class MixerError(Exception):
    """Base exception for all pymxdcp errors."""
    pass


class MixerConnectionError(MixerError):
    """Socket-level failure: refused, reset, closed, or not yet connected."""
    pass


class MixerTimeoutError(MixerConnectionError):
    """No line was received from the mixer before the read timeout."""
    pass


class MixerProtocolError(MixerError):
    """The mixer sent something unexpected, or nothing at all.

    Attributes:
        response: The raw offending line, or None on end-of-stream.
    """

    def __init__(self, message: str, response: Optional[str] = None):
        super().__init__(message)
        self.response = response


class MixerAuthenticationError(MixerError):
    """Login was refused."""

    def __init__(self, message: str, response: Optional[str] = None):
        super().__init__(message)
        self.response = response


class SessionOccupiedError(MixerAuthenticationError):
    """Another user is already connected; the mixer allows a single session."""
    pass


class PresetRejectedError(MixerError):
    """The mixer answered a recall command with something other than OK."""

    def __init__(self, message: str, response: str):
        super().__init__(message)
        self.response = response


class PresetVerificationError(MixerError):
    """The recall was accepted and confirmed, but the settled state differs.

    The I/O succeeded; this signals a device-state problem such as another
    controller recalling a different preset in the meantime.

    Attributes:
        expected: The preset number that was recalled.
        actual: The preset number reported afterwards, or None if none is active.
    """

    def __init__(self, message: str, expected: int, actual: Optional[int]):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class InvalidPresetError(MixerError, ValueError):
    """A caller-supplied preset number or wait is out of range."""
    pass
