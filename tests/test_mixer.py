"""
Tests for MXDCPMixer
====================

Preset listing, current preset and the recall sequence, run end-to-end
against the fake mixer. The settle delay is replaced by a recording sleep
so no test waits for real.
"""

import logging
import time

import pytest

from fake_mixer import FakeMixerServer
from pymxdcp.errors import (
    InvalidPresetError,
    MixerAuthenticationError,
    MixerConnectionError,
    MixerProtocolError,
    MixerTimeoutError,
    PresetRejectedError,
    PresetVerificationError,
)
from pymxdcp.listener import MixerListener
from pymxdcp.mixer import MXDCPMixer, RecallState
from pymxdcp.preset import MAX_PRESET_NUMBER, Preset
from pymxdcp.protocol import CorrelationCounter

PRESETS = {
    1: ("Default Mix", False),
    2: ("Quiet Mode", False),
    5: ("Evensong", True),
}


class RecordingSleep:

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class RecallListener(MixerListener):

    def __init__(self):
        self.recalled = []
        self.notifications = []
        self.errors = []

    def connected(self):
        pass

    def disconnected(self):
        pass

    def notification_received(self, line: str):
        self.notifications.append(line)

    def preset_recalled(self, preset_number: int):
        self.recalled.append(preset_number)

    def error(self, error_message: str):
        self.errors.append(error_message)


def make_mixer(server, **kwargs) -> MXDCPMixer:
    kwargs.setdefault("timeout", 1.0)
    kwargs.setdefault("cid_counter", CorrelationCounter(1000))
    kwargs.setdefault("sleep", RecordingSleep())
    return MXDCPMixer("127.0.0.1", server.port, **kwargs)


# =============================================================================
# Listing presets
# =============================================================================

class TestListPresets:

    @pytest.mark.asyncio
    async def test_single_preset(self):
        async with FakeMixerServer({1: ("Default Mix", False)}, current=1) as server:
            async with make_mixer(server) as mixer:
                assert await mixer.async_list_presets() == [Preset(1, "Default Mix", locked=False)]

    @pytest.mark.asyncio
    async def test_multiple_presets_sorted_with_lock_status(self):
        async with FakeMixerServer(PRESETS, current=2) as server:
            async with make_mixer(server) as mixer:
                assert await mixer.async_list_presets() == [
                    Preset(1, "Default Mix", locked=False),
                    Preset(2, "Quiet Mode", locked=False),
                    Preset(5, "Evensong", locked=True),
                ]

    @pytest.mark.asyncio
    async def test_no_presets(self):
        async with FakeMixerServer({}, current=0) as server:
            async with make_mixer(server) as mixer:
                assert await mixer.async_list_presets() == []

    @pytest.mark.asyncio
    async def test_locked_preset_appears_exactly_once(self):
        async with FakeMixerServer({5: ("Evensong", True)}) as server:
            async with make_mixer(server) as mixer:
                presets = await mixer.async_list_presets()
        assert presets.count(Preset(5, "Evensong", locked=True)) == 1
        assert len(presets) == 1

    @pytest.mark.asyncio
    async def test_queries_every_slot_in_batches_of_five(self):
        async with FakeMixerServer(PRESETS) as server:
            async with make_mixer(server) as mixer:
                await mixer.async_list_presets()
        assert len(server.commands) == 10
        assert server.commands[0] == (
            "GET PRESET/1/NAME PRESET/1/LOCK PRESET/1/CLEARED "
            "PRESET/2/NAME PRESET/2/LOCK PRESET/2/CLEARED "
            "PRESET/3/NAME PRESET/3/LOCK PRESET/3/CLEARED "
            "PRESET/4/NAME PRESET/4/LOCK PRESET/4/CLEARED "
            "PRESET/5/NAME PRESET/5/LOCK PRESET/5/CLEARED CID:1000"
        )
        assert server.commands[-1].startswith("GET PRESET/46/NAME")
        assert server.commands[-1].endswith("PRESET/50/CLEARED CID:1009")

    @pytest.mark.parametrize("batch_size", [1, 3, 7, 50])
    @pytest.mark.asyncio
    async def test_any_batch_size_gives_sorted_unique_presets(self, batch_size):
        presets = {number: (f"Preset {number}", number % 2 == 0) for number in (50, 3, 17, 1, 8, 49)}
        async with FakeMixerServer(presets) as server:
            async with make_mixer(server, batch_size=batch_size) as mixer:
                result = await mixer.async_list_presets()

        numbers = [preset.number for preset in result]
        assert numbers == sorted(presets)
        assert len(set(numbers)) == len(numbers)
        expected_batches = -(-MAX_PRESET_NUMBER // batch_size)
        assert len(server.commands) == expected_batches

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            MXDCPMixer("127.0.0.1", batch_size=0)

    @pytest.mark.asyncio
    async def test_notifications_between_batches_are_tolerated(self):
        async with FakeMixerServer(PRESETS, notify_before_get="NOTIFY LEVEL/CH/4:-20.0") as server:
            async with make_mixer(server) as mixer:
                presets = await mixer.async_list_presets()
        assert [preset.number for preset in presets] == [1, 2, 5]

    @pytest.mark.asyncio
    async def test_preset_name_containing_cid(self):
        async with FakeMixerServer({1: ("Band CID:7", False), 2: ("CID:1000", True)}) as server:
            async with make_mixer(server, timeout=0.5) as mixer:
                presets = await mixer.async_list_presets()
        assert presets == [
            Preset(1, "Band CID:7", locked=False),
            Preset(2, "CID:1000", locked=True),
        ]

    @pytest.mark.asyncio
    async def test_rejected_query_is_logged(self, caplog):
        async with FakeMixerServer(PRESETS, reject_gets=True) as server:
            async with make_mixer(server) as mixer:
                with caplog.at_level(logging.WARNING, logger="pymxdcp.mixer"):
                    presets = await mixer.async_list_presets()
        assert presets == []
        assert "Preset query starting at 1 was not answered: NG GET" in caplog.text
        assert "Preset query starting at 46 was not answered" in caplog.text


# =============================================================================
# Current preset
# =============================================================================

class TestCurrentPreset:

    @pytest.mark.asyncio
    async def test_current_preset_has_unknown_lock(self):
        async with FakeMixerServer(PRESETS, current=5) as server:
            async with make_mixer(server) as mixer:
                current = await mixer.async_get_current_preset()
        assert current == Preset(5, "Evensong")
        assert current.locked is None

    @pytest.mark.asyncio
    async def test_no_current_preset(self):
        async with FakeMixerServer(PRESETS, current=0) as server:
            async with make_mixer(server) as mixer:
                assert await mixer.async_get_current_preset() is None

    @pytest.mark.asyncio
    async def test_correlation_ids_increase_across_commands(self):
        async with FakeMixerServer(PRESETS, current=1) as server:
            async with make_mixer(server, cid_counter=CorrelationCounter(2000)) as mixer:
                await mixer.async_get_current_preset()
                await mixer.async_get_current_preset()
        assert server.commands == [
            "GET PRESET/CUR PRESET/NAME CID:2000",
            "GET PRESET/CUR PRESET/NAME CID:2001",
        ]

    @pytest.mark.asyncio
    async def test_wrong_password_fails_before_any_query(self):
        async with FakeMixerServer(PRESETS, password="secret") as server:
            mixer = make_mixer(server, password="wrong")
            with pytest.raises(MixerAuthenticationError):
                await mixer.async_connect()
            with pytest.raises(MixerConnectionError):
                await mixer.async_get_current_preset()
        assert server.commands == []


# =============================================================================
# Recall
# =============================================================================

class TestRecallPreset:

    @pytest.mark.asyncio
    async def test_recall_changes_preset_and_verifies(self):
        sleep = RecordingSleep()
        async with FakeMixerServer(PRESETS, current=2) as server:
            async with make_mixer(server, sleep=sleep, recall_wait=5.0) as mixer:
                await mixer.async_recall_preset(1)
                assert mixer.recall_state == RecallState.VERIFIED
        assert server.current == 1
        assert sleep.calls == [5.0]
        assert server.commands == [
            "GET PRESET/CUR PRESET/NAME CID:1000",
            "SET PRESET/LOAD:1 CID:1001",
            "GET PRESET/CUR PRESET/NAME CID:1002",
        ]

    @pytest.mark.asyncio
    async def test_wait_argument_overrides_default(self):
        sleep = RecordingSleep()
        async with FakeMixerServer(PRESETS, current=2) as server:
            async with make_mixer(server, sleep=sleep, recall_wait=5.0) as mixer:
                await mixer.async_recall_preset(5, 2.5)
        assert sleep.calls == [2.5]

    @pytest.mark.asyncio
    async def test_zero_wait_skips_verification(self):
        sleep = RecordingSleep()
        async with FakeMixerServer(PRESETS, current=2, current_after_recall=1) as server:
            async with make_mixer(server, sleep=sleep) as mixer:
                await mixer.async_recall_preset(5, 0)
                assert mixer.recall_state == RecallState.VERIFIED
        assert sleep.calls == []
        assert server.recall_commands == ["SET PRESET/LOAD:5 CID:1001"]
        assert len(server.commands) == 2

    @pytest.mark.asyncio
    async def test_skips_other_notifications(self):
        listener = RecallListener()
        async with FakeMixerServer(PRESETS, current=1) as server:
            async with make_mixer(server) as mixer:
                mixer.register_listener(listener)
                await mixer.async_recall_preset(2)
        assert listener.notifications[-1] == "NOTIFY PRESET/CUR:2"
        assert len(listener.notifications) == 4
        assert listener.recalled == [2]

    @pytest.mark.asyncio
    async def test_notification_before_acknowledgement_is_not_lost(self):
        async with FakeMixerServer(PRESETS, current=1, notify_before_ack=True) as server:
            async with make_mixer(server, timeout=0.5) as mixer:
                await mixer.async_recall_preset(2)
                assert mixer.recall_state == RecallState.VERIFIED

    @pytest.mark.asyncio
    async def test_already_active_still_sends_recall_without_waiting(self):
        sleep = RecordingSleep()
        async with FakeMixerServer(PRESETS, current=2) as server:
            # The fake sends no NOTIFY for the active preset; waiting would time out
            async with make_mixer(server, sleep=sleep, timeout=2.0) as mixer:
                started = time.monotonic()
                await mixer.async_recall_preset(2)
                elapsed = time.monotonic() - started
        assert server.recall_commands == ["SET PRESET/LOAD:2 CID:1001"]
        assert sleep.calls == [5.0]
        assert elapsed < 1.0

    @pytest.mark.parametrize("number", [0, MAX_PRESET_NUMBER + 1, -3])
    @pytest.mark.asyncio
    async def test_out_of_range_fails_without_io(self, number):
        async with FakeMixerServer(PRESETS, current=1) as server:
            async with make_mixer(server) as mixer:
                with pytest.raises(InvalidPresetError):
                    await mixer.async_recall_preset(number)
        assert server.commands == []

    @pytest.mark.asyncio
    async def test_out_of_range_is_a_value_error_even_unconnected(self):
        mixer = MXDCPMixer("127.0.0.1")
        with pytest.raises(ValueError):
            await mixer.async_recall_preset(0)

    @pytest.mark.asyncio
    async def test_negative_wait_fails_without_io(self):
        async with FakeMixerServer(PRESETS, current=1) as server:
            async with make_mixer(server) as mixer:
                with pytest.raises(InvalidPresetError):
                    await mixer.async_recall_preset(2, -1)
        assert server.commands == []

    @pytest.mark.asyncio
    async def test_rejected_recall(self):
        async with FakeMixerServer(PRESETS, current=1, reject_recall=True) as server:
            async with make_mixer(server) as mixer:
                with pytest.raises(PresetRejectedError) as excinfo:
                    await mixer.async_recall_preset(2)
                assert mixer.recall_state == RecallState.FAILED
        assert excinfo.value.response.startswith("NG SET PRESET/LOAD:ERR5")
        assert "NG SET" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_cleared_slot_is_rejected(self):
        async with FakeMixerServer(PRESETS, current=1) as server:
            async with make_mixer(server) as mixer:
                with pytest.raises(PresetRejectedError):
                    await mixer.async_recall_preset(9)

    @pytest.mark.asyncio
    async def test_missing_notification_times_out(self):
        async with FakeMixerServer(PRESETS, current=1, send_recall_notification=False) as server:
            async with make_mixer(server, timeout=0.3) as mixer:
                started = time.monotonic()
                with pytest.raises(MixerTimeoutError):
                    await mixer.async_recall_preset(2)
                elapsed = time.monotonic() - started
                assert mixer.recall_state == RecallState.FAILED
        assert elapsed < 2.0

    @pytest.mark.asyncio
    async def test_verification_reports_both_presets(self):
        async with FakeMixerServer(PRESETS, current=1, current_after_recall=5) as server:
            async with make_mixer(server) as mixer:
                with pytest.raises(PresetVerificationError) as excinfo:
                    await mixer.async_recall_preset(2)
                assert mixer.recall_state == RecallState.FAILED
        assert excinfo.value.expected == 2
        assert excinfo.value.actual == 5
        assert "expected 2 but got 5" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_verification_with_no_active_preset(self):
        async with FakeMixerServer(PRESETS, current=1, current_after_recall=0) as server:
            async with make_mixer(server) as mixer:
                with pytest.raises(PresetVerificationError) as excinfo:
                    await mixer.async_recall_preset(2)
        assert excinfo.value.actual is None

    @pytest.mark.asyncio
    async def test_connection_closed_while_waiting(self):
        async with FakeMixerServer(PRESETS, current=1, send_recall_notification=False,
                                   hang_up_after_ack=True) as server:
            async with make_mixer(server, timeout=5.0) as mixer:
                with pytest.raises(MixerProtocolError):
                    await mixer.async_recall_preset(2)
                assert mixer.recall_state == RecallState.FAILED
        assert mixer.recall_failed_at == RecallState.AWAITING_NOTIFICATION

    @pytest.mark.asyncio
    async def test_unanswered_recall_fails_at_command_stage(self):
        async with FakeMixerServer(PRESETS, current=1, ignore_recall=True) as server:
            async with make_mixer(server, timeout=0.3) as mixer:
                with pytest.raises(MixerTimeoutError):
                    await mixer.async_recall_preset(2)
                assert mixer.recall_state == RecallState.FAILED
                assert mixer.recall_failed_at == RecallState.COMMAND_SENT
        assert server.recall_commands == ["SET PRESET/LOAD:2 CID:1001"]

    @pytest.mark.asyncio
    async def test_failed_verification_is_recorded_at_stabilizing(self):
        async with FakeMixerServer(PRESETS, current=1, current_after_recall=5) as server:
            async with make_mixer(server) as mixer:
                with pytest.raises(PresetVerificationError):
                    await mixer.async_recall_preset(2)
                assert mixer.recall_failed_at == RecallState.STABILIZING

    @pytest.mark.asyncio
    async def test_failure_is_reported_to_listeners(self):
        listener = RecallListener()
        async with FakeMixerServer(PRESETS, current=1, reject_recall=True) as server:
            async with make_mixer(server) as mixer:
                mixer.register_listener(listener)
                with pytest.raises(PresetRejectedError):
                    await mixer.async_recall_preset(2)
        assert len(listener.errors) == 1
        assert listener.errors[0].startswith("Recall of preset 2 failed: ")
        assert "NG SET" in listener.errors[0]
        assert listener.recalled == []

    @pytest.mark.asyncio
    async def test_successful_recall_clears_failure_stage(self):
        listener = RecallListener()
        async with FakeMixerServer(PRESETS, current=1) as server:
            async with make_mixer(server) as mixer:
                mixer.register_listener(listener)
                await mixer.async_recall_preset(2)
                assert mixer.recall_failed_at is None
        assert listener.errors == []
