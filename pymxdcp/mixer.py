"""MX-DCP Mixer - preset listing and recall.

This module contains the high-level mixer abstraction with:
- Preset directory queries, batched to stay under the mixer's message limit
- The recall sequence: pre-check, SET, NOTIFY wait, settle delay, verification
- MixerProtocol instance creation and management

The mixer talks to the device through a single MixerProtocol session and
never has more than one command in flight."""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from pymxdcp.errors import (
    InvalidPresetError,
    PresetRejectedError,
    PresetVerificationError,
    MixerProtocolError,
)
from pymxdcp.listener import MixerListener, MultiplexingListener
from pymxdcp.preset import MAX_PRESET_NUMBER, Preset
from pymxdcp.protocol import (
    DEFAULT_PORT,
    DEFAULT_RECALL_WAIT,
    DEFAULT_TIMEOUT,
    GET_ACCEPTED,
    GLOBAL_CID_COUNTER,
    PRESET_BATCH_SIZE,
    SET_ACCEPTED,
    CorrelationCounter,
    MixerProtocol,
    build_current_preset_query,
    build_preset_batch_query,
    build_recall_command,
    is_recall_notification,
    parse_current_preset_response,
    parse_preset_batch_response,
    recall_notification_prefix,
)


class RecallState(Enum):
    IDLE = "idle"
    COMMAND_SENT = "command_sent"
    AWAITING_NOTIFICATION = "awaiting_notification"
    STABILIZING = "stabilizing"
    VERIFIED = "verified"
    FAILED = "failed"


class MXDCPMixer:
    """High-level control of the presets on a Tascam MX-DCP series mixer.

    Usage:
        async with MXDCPMixer("192.168.1.100", password="secret") as mixer:
            for preset in await mixer.async_list_presets():
                print(preset.number, preset.name)
            await mixer.async_recall_preset(3)
    """

    def __init__(self, hostname, port=DEFAULT_PORT, password: str = "",
                 timeout: float = DEFAULT_TIMEOUT,
                 recall_wait: float = DEFAULT_RECALL_WAIT,
                 batch_size: int = PRESET_BATCH_SIZE,
                 cid_counter: Optional[CorrelationCounter] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """Initialize mixer.

        Args:
            hostname: Mixer hostname or IP
            port: TCP port (usually 54726)
            password: Login password, empty if none is set
            timeout: Seconds to wait for the connection and for each line
            recall_wait: Default seconds to let the mixer settle after a recall
                before verifying it. 0 skips verification.
            batch_size: Preset slots queried per GET command
            cid_counter: Correlation id source, defaults to the process-wide counter
            sleep: Coroutine function used for the settle delay
        """
        if batch_size < 1:
            raise ValueError(f"Batch size must be at least 1, got {batch_size}")
        if recall_wait < 0:
            raise ValueError(f"Recall wait cannot be negative, got {recall_wait}")

        self._hostname: str = hostname
        self._port = port
        self._password = password
        self._recall_wait = recall_wait
        self._sleep = sleep
        self._cid_counter = cid_counter if cid_counter is not None else GLOBAL_CID_COUNTER

        self._logger = logging.getLogger(__name__)

        # MX-DCP has 50 preset slots, queried a few at a time
        self._preset_count: int = MAX_PRESET_NUMBER
        self._batch_size: int = batch_size

        self._recall_state = RecallState.IDLE
        self._recall_failed_at: Optional[RecallState] = None

        # Create multiplexing listener for external listeners
        self._multiplex_callback = MultiplexingListener()

        # Create protocol instance
        self._protocol = MixerProtocol(self._multiplex_callback, timeout=timeout)

    async def __aenter__(self):
        await self.async_connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    @property
    def protocol(self) -> MixerProtocol:
        return self._protocol

    @property
    def recall_state(self) -> RecallState:
        """State of the most recent recall."""
        return self._recall_state

    @property
    def recall_failed_at(self) -> Optional[RecallState]:
        """Stage the most recent recall was in when it failed, None if it did not fail."""
        return self._recall_failed_at

    def register_listener(self, listener: MixerListener):
        """Register external listener for mixer events."""
        self._multiplex_callback.register_listener(listener)

    def unregister_listener(self, listener: MixerListener):
        """Unregister external listener."""
        self._multiplex_callback.unregister_listener(listener)

    async def async_connect(self):
        """Connect to the mixer and log in."""
        await self._protocol.async_connect(self._hostname, self._port, self._password)

    def close(self):
        """Close the connection."""
        self._protocol.close()

    # ========== Preset directory ==========

    async def async_list_presets(self) -> list[Preset]:
        """Return every non-cleared preset, sorted by slot number."""
        presets: dict[int, Preset] = {}
        for start in range(1, self._preset_count + 1, self._batch_size):
            command = build_preset_batch_query(
                start, self._batch_size, self._preset_count, self._cid_counter.next_id()
            )
            response = await self._protocol.async_send_command(command)
            if not response.startswith(GET_ACCEPTED):
                self._logger.warning(f"Preset query starting at {start} was not answered: {response}")
            for preset in parse_preset_batch_response(response):
                presets[preset.number] = preset
        self._logger.debug(f"Found {len(presets)} presets")
        return sorted(presets.values(), key=lambda preset: preset.number)

    async def async_get_current_preset(self) -> Optional[Preset]:
        """Return the active preset, or None if no preset is active.

        Lock status is never reported by this query, so the result's locked is None.
        """
        command = build_current_preset_query(self._cid_counter.next_id())
        response = await self._protocol.async_send_command(command)
        return parse_current_preset_response(response)

    # ========== Recall ==========

    async def async_recall_preset(self, preset_number: int, wait: Optional[float] = None):
        """Recall a preset and wait until the mixer has switched to it.

        The recall is sent even when the preset is already active, since its
        stored settings may differ from the live ones. In that case the mixer
        sends no NOTIFY, so the wait for one is skipped.

        Args:
            preset_number: Slot to recall (1-50)
            wait: Seconds to let the mixer settle before verifying the active
                preset. 0 skips verification. None uses the mixer's recall_wait.

        Raises:
            InvalidPresetError: preset_number or wait is out of range (no I/O is performed).
            PresetRejectedError: The mixer did not accept the SET command.
            MixerProtocolError: The mixer closed the stream before confirming.
            MixerTimeoutError: No confirmation arrived within the timeout.
            PresetVerificationError: After settling, a different preset (or none) is active.
        """
        if not (1 <= preset_number <= self._preset_count):
            raise InvalidPresetError(
                f"Preset number must be between 1 and {self._preset_count}, got {preset_number}"
            )
        if wait is None:
            wait = self._recall_wait
        if wait < 0:
            raise InvalidPresetError(f"Recall wait cannot be negative, got {wait}")

        self._recall_state = RecallState.IDLE
        self._recall_failed_at = None
        try:
            await self._async_recall(preset_number, wait)
        except Exception as e:
            self._recall_failed_at = self._recall_state
            self._recall_state = RecallState.FAILED
            self._logger.error(f"Recall of preset {preset_number} failed ({self._recall_failed_at.value}): {e}")
            self._multiplex_callback.error(f"Recall of preset {preset_number} failed: {e}")
            raise
        except BaseException:
            self._recall_failed_at = self._recall_state
            self._recall_state = RecallState.FAILED
            raise
        self._recall_state = RecallState.VERIFIED
        self._multiplex_callback.preset_recalled(preset_number)

    async def _async_recall(self, preset_number: int, wait: float):
        current = await self.async_get_current_preset()
        already_active = current is not None and current.number == preset_number

        command = build_recall_command(preset_number, self._cid_counter.next_id())
        self._recall_state = RecallState.COMMAND_SENT
        response = await self._protocol.async_send_command(command)
        if not response.startswith(SET_ACCEPTED):
            raise PresetRejectedError(f"Failed to recall preset {preset_number}: {response}", response)

        # The mixer sends no NOTIFY when the preset was already active
        if not already_active:
            self._recall_state = RecallState.AWAITING_NOTIFICATION
            await self._async_wait_for_recall_notification(preset_number)

        if wait > 0:
            self._recall_state = RecallState.STABILIZING
            await self._sleep(wait)
            await self._async_verify_preset(preset_number)
            self._logger.info(f"Preset {preset_number} recalled and verified")
        else:
            self._logger.info(f"Preset {preset_number} recalled (verification skipped)")

    async def _async_wait_for_recall_notification(self, preset_number: int):
        """Read lines until NOTIFY PRESET/CUR:<n> arrives.

        The mixer sends other NOTIFYs (mutes, levels, etc.) first as the preset
        loads; those are skipped.
        """
        expected = recall_notification_prefix(preset_number)
        while True:
            line = await self._protocol.async_read_notification()
            if line is None:
                raise MixerProtocolError(
                    f"Connection closed before preset {preset_number} was confirmed"
                )
            if is_recall_notification(line, preset_number):
                self._logger.debug(f"Preset change confirmed: {line}")
                return
            self._logger.debug(f"Skipping while waiting for {expected}: {line}")

    async def _async_verify_preset(self, expected_number: int):
        current = await self.async_get_current_preset()
        if current is None:
            raise PresetVerificationError(
                f"Failed to verify preset {expected_number} after recall: no preset is active",
                expected_number, None,
            )
        if current.number != expected_number:
            raise PresetVerificationError(
                f"Preset recall verification failed: expected {expected_number} but got {current.number}",
                expected_number, current.number,
            )
