"""pymxdcp Python Package

Python library for listing and recalling presets on Tascam MX-DCP series mixers.
"""

from pymxdcp.errors import (
    InvalidPresetError,
    MixerAuthenticationError,
    MixerConnectionError,
    MixerError,
    MixerProtocolError,
    MixerTimeoutError,
    PresetRejectedError,
    PresetVerificationError,
    SessionOccupiedError,
)
from pymxdcp.mixer import MXDCPMixer, RecallState
from pymxdcp.preset import Preset

__all__ = [
    "MXDCPMixer",
    "Preset",
    "RecallState",
    "MixerError",
    "MixerConnectionError",
    "MixerTimeoutError",
    "MixerProtocolError",
    "MixerAuthenticationError",
    "SessionOccupiedError",
    "PresetRejectedError",
    "PresetVerificationError",
    "InvalidPresetError",
]
