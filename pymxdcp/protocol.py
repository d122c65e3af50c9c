import asyncio
import logging
import re
import threading
from collections import deque
from enum import Enum
from typing import Optional

from pymxdcp.errors import (
    MixerAuthenticationError,
    MixerConnectionError,
    MixerProtocolError,
    MixerTimeoutError,
    SessionOccupiedError,
)
from pymxdcp.listener import MixerListener
from pymxdcp.preset import Preset

# MX-DCP external control port and timing
DEFAULT_PORT = 54726
DEFAULT_TIMEOUT = 10.0  # Seconds, applied to connect and to every line read
# Seconds to let the mixer settle after a preset load before verifying it
DEFAULT_RECALL_WAIT = 5.0

# The mixer rejects messages over 1024 bytes. Five slots per GET keeps the
# response under that limit even with maximum length preset names.
PRESET_BATCH_SIZE = 5

CID_START = 1000

LINE_TERMINATOR = "\r\n"

# Login handshake markers
PASSWORD_PROMPT = "Enter Password"
LOGIN_SUCCESSFUL = "Login Successful"
ALREADY_CONNECTED = "Another User Already Connected"

# Response to an accepted SET: OK SET CID:1003
SET_ACCEPTED = "OK SET"
# Response to an accepted GET: OK GET PRESET/CUR:3 ... CID:1002
GET_ACCEPTED = "OK GET"

# Unsolicited state change: NOTIFY PRESET/CUR:3 or NOTIFY MUTE/CH/1:ON
NOTIFY_PREFIX = "NOTIFY "

# Per-slot fields in a GET response, in any order and mixed with other fields:
# OK GET PRESET/5/NAME:"Evensong" PRESET/5/LOCK:ON PRESET/5/CLEARED:FALSE CID:1000
PRESET_NAME_RESPONSE = re.compile(r'PRESET/(\d+)/NAME:"([^"]+)"')
PRESET_LOCK_RESPONSE = re.compile(r"PRESET/(\d+)/LOCK:(ON|OFF)")
PRESET_CLEARED_RESPONSE = re.compile(r"PRESET/(\d+)/CLEARED:(TRUE|FALSE)")

# Current preset fields: OK GET PRESET/CUR:5 PRESET/NAME:"Evensong" CID:1001
# PRESET/NAME has no slot number, which is what separates it from PRESET/<n>/NAME
CURRENT_PRESET_RESPONSE = re.compile(r"PRESET/CUR:(\d+)")
CURRENT_NAME_RESPONSE = re.compile(r'PRESET/NAME:"([^"]+)"')

# Correlation id echoed at the end of responses: ... CID:1000
# Only the trailing token counts; a quoted preset name may contain "CID:"
CID_TOKEN = re.compile(r"\bCID:(\S+)\s*$")

_logger = logging.getLogger(__name__)


def build_preset_batch_query(start_preset: int, batch_size: int, max_preset: int, cid: str) -> str:
    """Build a GET for NAME, LOCK and CLEARED of each slot in one batch.

    Covers slots start_preset to min(start_preset + batch_size - 1, max_preset).
    """
    if batch_size < 1:
        raise ValueError(f"Batch size must be at least 1, got {batch_size}")
    if not (1 <= start_preset <= max_preset):
        raise ValueError(f"Start preset {start_preset} is outside 1-{max_preset}")
    last_preset = min(start_preset + batch_size - 1, max_preset)
    fields = []
    for number in range(start_preset, last_preset + 1):
        fields.append(f"PRESET/{number}/NAME")
        fields.append(f"PRESET/{number}/LOCK")
        fields.append(f"PRESET/{number}/CLEARED")
    return f"GET {' '.join(fields)} CID:{cid}"


def build_current_preset_query(cid: str) -> str:
    """Build a GET for the active slot number and its name (never its lock status)."""
    return f"GET PRESET/CUR PRESET/NAME CID:{cid}"


def build_recall_command(preset_number: int, cid: str) -> str:
    return f"SET PRESET/LOAD:{preset_number} CID:{cid}"


def recall_notification_prefix(preset_number: int) -> str:
    """The NOTIFY line the mixer emits once a recalled preset has taken effect."""
    return f"{NOTIFY_PREFIX}PRESET/CUR:{preset_number}"


def is_recall_notification(line: str, preset_number: int) -> bool:
    """Whether line confirms preset_number; NOTIFY PRESET/CUR:10 does not confirm 1."""
    prefix = recall_notification_prefix(preset_number)
    if not line.startswith(prefix):
        return False
    rest = line[len(prefix):]
    return not rest[:1].isdigit()


def is_notification(line: str) -> bool:
    return line.startswith(NOTIFY_PREFIX)


def response_cid(line: str) -> Optional[str]:
    """Return the correlation id carried by a command or response line, if any."""
    match = CID_TOKEN.search(line)
    return match.group(1) if match else None


def parse_preset_batch_response(response: str) -> list[Preset]:
    """Extract the non-cleared presets described in one GET response.

    Name, lock and cleared fields are scanned independently. A slot becomes a
    Preset only when it has a name and its CLEARED field is present and FALSE;
    a slot with no CLEARED field is treated as cleared. Lock status is attached
    when reported, otherwise left unknown.
    """
    names: dict[int, str] = {}
    locks: dict[int, bool] = {}
    cleared: dict[int, bool] = {}

    for match in PRESET_NAME_RESPONSE.finditer(response):
        names[int(match.group(1))] = match.group(2)
    for match in PRESET_LOCK_RESPONSE.finditer(response):
        locks[int(match.group(1))] = match.group(2) == "ON"
    for match in PRESET_CLEARED_RESPONSE.finditer(response):
        cleared[int(match.group(1))] = match.group(2) == "TRUE"

    presets = []
    for number, name in names.items():
        if cleared.get(number, True):
            continue
        try:
            presets.append(Preset(number, name, locks.get(number)))
        except ValueError as e:
            _logger.warning(f"Skipping preset {number} ({name!r}): {e}")
    return presets


def parse_current_preset_response(response: str) -> Optional[Preset]:
    """Parse the active preset, or None if the response does not name one.

    Slot 0 means no preset is active.
    """
    number_match = CURRENT_PRESET_RESPONSE.search(response)
    name_match = CURRENT_NAME_RESPONSE.search(response)
    if not number_match or not name_match:
        return None

    number = int(number_match.group(1))
    if number == 0:
        return None
    try:
        return Preset(number, name_match.group(1))
    except ValueError as e:
        _logger.warning(f"Ignoring current preset {number}: {e}")
        return None


class CorrelationCounter:
    """Hands out increasing correlation ids, safe to share between sessions."""

    def __init__(self, start: int = CID_START):
        self._next = start
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            value = self._next
            self._next += 1
        return str(value)


# Shared by every session in the process so ids are never reused within a run
GLOBAL_CID_COUNTER = CorrelationCounter()


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PASSWORD = "awaiting_password"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class MixerProtocol(asyncio.Protocol):
    """Line-oriented session with an MX-DCP mixer.

    Incoming bytes are split into CRLF-terminated lines and queued; callers
    read them one at a time with a fixed timeout. Only one command may be in
    flight at a time.
    """

    _transport: Optional[asyncio.Transport]
    _lines: asyncio.Queue
    _notifications: deque

    def __init__(self, callback: MixerListener, timeout: float = DEFAULT_TIMEOUT):
        self._logger = logging.getLogger(__name__)
        self._callback = callback
        self._timeout = timeout

        self._state = SessionState.DISCONNECTED
        # Whether listeners were told about this connection
        self._logged_in = False
        self._transport = None
        self.peer_name = None
        self._buffer = b""
        # Received lines; None marks end-of-stream and stays queued once seen
        self._lines = asyncio.Queue()
        # NOTIFY lines that arrived while waiting for a command response
        self._notifications = deque()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state == SessionState.AUTHENTICATED

    async def async_connect(self, hostname: str, port: int, password: str = ""):
        """Open the connection and log in.

        Raises:
            MixerConnectionError: The socket could not be opened.
            MixerTimeoutError: The mixer did not answer within the timeout.
            MixerProtocolError: The mixer did not prompt for a password.
            MixerAuthenticationError: The password was refused.
            SessionOccupiedError: Another user is already connected.
        """
        if self._state != SessionState.DISCONNECTED:
            raise MixerConnectionError(f"Cannot connect a session that is {self._state.value}")

        self._state = SessionState.CONNECTING
        self._logger.debug(f"Connecting to {hostname}:{port}")
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.create_connection(lambda: self, host=hostname, port=port),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            self.close()
            raise MixerTimeoutError(f"Timed out connecting to {hostname}:{port}") from e
        except OSError as e:
            self.close()
            raise MixerConnectionError(f"Could not connect to {hostname}:{port}: {e}") from e

        try:
            await self._async_login(password)
        except BaseException:
            self.close()
            raise

    async def _async_login(self, password: str):
        # The mixer only prompts after it receives a line
        self._state = SessionState.AWAITING_PASSWORD
        self._write_line("")

        prompt = await self.async_read_line()
        if prompt is None or PASSWORD_PROMPT not in prompt:
            raise MixerProtocolError(f"Unexpected response: {prompt}", prompt)

        self._logger.debug("Sending password")
        self._write_line(password, log=False)

        result = await self.async_read_line()
        if result is None:
            raise MixerProtocolError("No response after password")
        if ALREADY_CONNECTED in result:
            raise SessionOccupiedError("Another user is already connected to the mixer", result)
        if LOGIN_SUCCESSFUL not in result:
            raise MixerAuthenticationError(f"Login failed: {result}", result)

        self._state = SessionState.AUTHENTICATED
        self._logged_in = True
        self._logger.info(f"Login successful: {self.peer_name}")
        self._callback.connected()

    def close(self):
        """Release the connection. Safe to call repeatedly or before connecting."""
        if self._state in (SessionState.DISCONNECTED, SessionState.CLOSED) and self._transport is None:
            return
        self._logger.debug("Closing connection")
        self._state = SessionState.CLOSED
        transport, self._transport = self._transport, None
        self._lines.put_nowait(None)
        if transport is not None:
            try:
                transport.close()
            except OSError as e:
                self._logger.debug(f"Ignoring error while closing: {e}")

    def connection_made(self, transport):
        """Method from asyncio.Protocol"""
        self._transport = transport
        self.peer_name = transport.get_extra_info("peername")
        self._logger.info(f"Connection Made: {self.peer_name}")

    def connection_lost(self, exc):
        """Method from asyncio.Protocol"""
        if exc is not None:
            self._logger.warning(f"Connection lost: {exc}")
            try:
                self._callback.error(f"Connection lost: {exc}")
            except Exception as e:
                self._logger.error(f"Exception in error() callback: {e}")
        else:
            self._logger.debug("Connection closed")
        if self._buffer:
            self._queue_line(self._buffer)
            self._buffer = b""
        self._lines.put_nowait(None)
        self._transport = None
        if self._state != SessionState.CLOSED:
            self._logger.info("Disconnected by mixer")
        self._state = SessionState.CLOSED
        if not self._logged_in:
            return
        self._logged_in = False
        try:
            self._callback.disconnected()
        except Exception as e:
            self._logger.error(f"Exception in disconnected() callback: {e}")

    def data_received(self, data):
        """Method from asyncio.Protocol"""
        self._buffer += data
        while b"\n" in self._buffer:
            raw, self._buffer = self._buffer.split(b"\n", 1)
            self._queue_line(raw)

    def _queue_line(self, raw: bytes):
        line = raw.rstrip(b"\r").decode("utf-8", errors="replace")
        self._logger.debug(f"RECV: {line}")
        if is_notification(line):
            try:
                self._callback.notification_received(line)
            except Exception as e:
                self._logger.error(f"Exception in notification_received() callback: {e}")
        self._lines.put_nowait(line)

    def _write_line(self, text: str, log: bool = True):
        if self._transport is None or self._transport.is_closing():
            raise MixerConnectionError("Not connected to mixer")
        if log:
            self._logger.debug(f"SEND: {text}")
        self._transport.write((text + LINE_TERMINATOR).encode("utf-8"))

    async def async_read_line(self) -> Optional[str]:
        """Read the next line, or None once the mixer has closed the stream.

        Raises:
            MixerTimeoutError: Nothing arrived within the timeout.
        """
        try:
            line = await asyncio.wait_for(self._lines.get(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise MixerTimeoutError(f"No data received from mixer within {self._timeout}s") from e
        if line is None:
            self._lines.put_nowait(None)
        return line

    async def async_read_notification(self) -> Optional[str]:
        """Read the next line, starting with any NOTIFY lines held back by the last command."""
        if self._notifications:
            return self._notifications.popleft()
        return await self.async_read_line()

    async def async_send_command(self, command: str) -> str:
        """Send a command and return its response line.

        NOTIFY lines that arrive first are held for async_read_notification.
        A line carrying a different correlation id is a stale response and is
        skipped. A line with the matching id, or with no id at all, is the
        response.

        Raises:
            MixerConnectionError: The session is not logged in.
            MixerTimeoutError: No response arrived within the timeout.
            MixerProtocolError: The mixer closed the stream before responding.
        """
        if self._state != SessionState.AUTHENTICATED:
            raise MixerConnectionError("Not connected to mixer")

        cid = response_cid(command)
        self._notifications.clear()
        self._write_line(command)

        while True:
            line = await self.async_read_line()
            if line is None:
                raise MixerProtocolError("No response from device")
            if not line.strip():
                continue
            if is_notification(line):
                self._notifications.append(line)
                continue
            line_cid = response_cid(line)
            if cid is not None and line_cid is not None and line_cid != cid:
                self._logger.warning(f"Ignoring stale response while waiting for CID:{cid}: {line}")
                continue
            return line
