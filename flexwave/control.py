"""Control-channel protocol for Flex 6000/8000 series radios.

The session is independent of any socket: bytes received from the radio are
handed to :meth:`FlexControlSession.feed`, commands leave through the
``write`` callable, and events for the rest of the system leave through the
``publish`` callable.
"""

from __future__ import annotations

import logging
import re
import time
from enum import IntEnum
from typing import Callable, Optional

from flexwave.keyvalue import parse_parameters
from flexwave.messages import (
    DisableReporting,
    EnableReporting,
    FrequencyChange,
    RadioConnectionStatus,
    RequestFreeDVMode,
    RequestRx,
    RequestTx,
)

log = logging.getLogger(__name__)

CONTROL_PORT = 4992
COMMAND_TIMEOUT_S = 0.5
FAILURE_CODE = 0xFFFFFFFF
TIMEOUT_MESSAGE = "Timed out waiting for response from radio"

ResponseHandler = Callable[[int, str], None]

_RESPONSE = re.compile(r"\s*([+-]?\d+)\s*(\S)\s*([0-9a-fA-F]+)?")
_STATUS = re.compile(r"\s*[0-9a-fA-F]+\s*\S\s*(\S+)(.*)", re.DOTALL)
_SLICE_ID = re.compile(r"\s*([+-]?\d+)(.*)", re.DOTALL)
_FLOAT_PREFIX = re.compile(
    r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
)


class FreeDVMode(IntEnum):
    """FreeDV modes, in the order their filter widths are kept."""

    ANALOG = 0
    FREEDV_700D = 1
    FREEDV_700E = 2
    FREEDV_1600 = 3


# Low/high cut in Hz for each mode; sent to the radio on mode changes.
FILTER_WIDTHS: dict[FreeDVMode, tuple[int, int]] = {
    FreeDVMode.ANALOG: (150, 2850),
    FreeDVMode.FREEDV_700D: (750, 2250),
    FreeDVMode.FREEDV_700E: (500, 2500),
    FreeDVMode.FREEDV_1600: (687, 2313),
}


def _atof(text: str) -> float:
    """Read the leading number of ``text``, or 0.0 when there is none."""
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else 0.0


def _mhz_to_hz(text: str) -> int:
    return int(_atof(text) * 1_000_000)


class FlexControlSession:
    """State machine for the SmartSDR TCP control protocol."""

    def __init__(
        self,
        write: Callable[[bytes], object],
        publish: Optional[Callable[[object], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        on_write_error: Optional[Callable[[OSError], None]] = None,
    ) -> None:
        self._write = write
        self._publish = publish or (lambda message: None)
        self._clock = clock
        self._on_write_error = on_write_error

        self.connected = False
        self.sequence_number = 0
        self.active_slice = -1
        self.is_lsb = False
        self.tx_slice = -1
        self.transmitting = False
        self.slice_frequencies: dict[int, str] = {}
        self.active_slices: dict[int, bool] = {}
        self.current_width = FILTER_WIDTHS[FreeDVMode.ANALOG]
        self.timeout_deadline: Optional[float] = None

        self._handlers: dict[int, Optional[ResponseHandler]] = {}
        self._buffer = bytearray()

    @property
    def pending(self) -> list[int]:
        """Sequence numbers of commands still waiting for a response."""
        return sorted(self._handlers)

    def on_connected(self) -> None:
        """Mark the connection as established and announce it."""
        self.connected = True
        self.sequence_number = 0
        log.info("Connected to radio successfully")
        self._publish(RadioConnectionStatus(True))
        self._publish(RequestFreeDVMode())

    def feed(self, data: bytes) -> None:
        """Take bytes from the radio and process every completed line."""
        self._buffer.extend(data)
        while True:
            end = self._buffer.find(b"\n")
            if end < 0:
                return
            line = bytes(self._buffer[:end]).decode("utf-8", errors="replace")
            del self._buffer[: end + 1]
            self.process_line(line)

    def process_line(self, line: str) -> None:
        """Handle one line received from the radio."""
        kind, rest = line[:1], line[1:]
        if kind == "V":
            log.info("Radio is using protocol version %s", rest)
        elif kind == "H":
            log.info("Connection handle is %s", rest)
            self._initialize_waveform()
        elif kind == "R":
            self._handle_response(rest)
        elif kind == "S":
            self._handle_status(rest)
        else:
            log.warning("Got unhandled command %s", line)

    def send_command(
        self, command: str, callback: Optional[ResponseHandler] = None
    ) -> None:
        """Send ``command``; ``callback(rv, message)`` runs on its response."""
        if not self.connected:
            return

        seq = self.sequence_number
        log.info("Sending '%s' as command %d", command, seq)
        try:
            self._write(f"C{seq}|{command}\n".encode("utf-8"))
        except OSError as exc:
            log.error("Failed writing command to radio!")
            self.reset()
            if self._on_write_error is not None:
                self._on_write_error(exc)
            if callback is not None:
                callback(FAILURE_CODE, str(exc))
            return

        self._handlers[seq] = callback
        self.sequence_number += 1
        self.timeout_deadline = self._clock() + COMMAND_TIMEOUT_S

    def handle_timeout(self) -> None:
        """Fail every outstanding command so that processing can go on."""
        log.warning("Timed out waiting for response from radio.")
        handlers = list(self._handlers.items())
        self._handlers.clear()
        self.timeout_deadline = None
        for seq, handler in handlers:
            if handler is not None:
                log.info("Calling response handler for command %d", seq)
                handler(FAILURE_CODE, TIMEOUT_MESSAGE)

    def set_mode(self, mode: FreeDVMode | int) -> None:
        """Select the filter for a FreeDV mode and apply it to the active slice."""
        self.current_width = FILTER_WIDTHS[FreeDVMode(mode)]
        self._set_filter(*self.current_width)

    def request_tx(self) -> None:
        """Key the radio if a slice is active and it is not already keyed."""
        if self.active_slice >= 0 and not self.transmitting:
            self.transmitting = True
            self.send_command("xmit 1")

    def request_rx(self) -> None:
        """Unkey the radio if a slice is active and it is keyed."""
        if self.active_slice >= 0 and self.transmitting:
            self.transmitting = False
            self.send_command("xmit 0")

    def report_callsign(self, callsign: str, timestamp: Optional[float] = None) -> None:
        """Add a spot for a received callsign on the active slice."""
        if self.active_slice < 0 or not callsign:
            return
        when = int(time.time() if timestamp is None else timestamp)
        frequency = self.slice_frequencies.get(self.active_slice, "")
        self.send_command(
            f"spot add rx_freq={frequency} callsign={callsign} "
            f"mode=FREEDV timestamp={when}"
        )

    def shutdown(self, on_done: Optional[Callable[[], None]] = None) -> None:
        """Restore the slice mode, unsubscribe and then close the session."""
        done = on_done or (lambda: None)
        if not self.connected:
            done()
            return
        self._cleanup_waveform(done)

    def reset(self) -> None:
        """Drop the connection state, announcing the disconnect if connected."""
        if self.connected:
            self._publish(RadioConnectionStatus(False))
        self.connected = False
        self.active_slice = -1
        self.is_lsb = False
        self.tx_slice = -1
        self._handlers.clear()
        self._buffer.clear()
        self.timeout_deadline = None

    def _initialize_waveform(self) -> None:
        self._create_waveform("FreeDV-USB", "FDVU", "DIGU")
        self._create_waveform("FreeDV-LSB", "FDVL", "LSB")
        self.send_command("sub slice all")

    def _create_waveform(self, name: str, short_name: str, underlying_mode: str) -> None:
        log.info("Creating waveform %s (abbreviated %s in SmartSDR)", name, short_name)
        prefix = f"waveform set {name} "

        def configure(rv: int, message: str) -> None:
            if rv == 0:
                self.send_command(prefix + "tx=1")
                self.send_command(prefix + "rx_filter depth=256")
                self.send_command(prefix + "tx_filter depth=256")
                self.send_command(prefix + f"udpport={CONTROL_PORT}")

        self.send_command(
            f"waveform create name={name} mode={short_name} "
            f"underlying_mode={underlying_mode} version=2.0.0",
            configure,
        )

    def _cleanup_waveform(self, on_done: Callable[[], None]) -> None:
        if not self.connected:
            on_done()
            return

        if self.active_slice >= 0:
            mode = "LSB" if self.is_lsb else "USB"
            command = f"slice set {self.active_slice} mode={mode}"
            self._publish(DisableReporting())

            def after_mode(rv: int, message: str) -> None:
                self.active_slice = -1
                self._cleanup_waveform(on_done)

            self.send_command(command, after_mode)
            return

        def after_unsubscribe(rv: int, message: str) -> None:
            self.reset()
            on_done()

        self.send_command("unsub slice all", after_unsubscribe)

    def _handle_response(self, body: str) -> None:
        log.info("Received response R%s", body)
        seq, rv = 0, 0
        match = _RESPONSE.match(body)
        if match:
            seq = int(match.group(1))
            if match.group(3):
                rv = int(match.group(3), 16) & 0xFFFFFFFF
        if rv != 0:
            log.error("Command %d returned error %x", seq, rv)

        handler = self._handlers.pop(seq, None)
        if handler is not None:
            handler(rv, body)
        if not self._handlers:
            self.timeout_deadline = None

    def _handle_status(self, body: str) -> None:
        log.info("Received status update S%s", body)
        match = _STATUS.match(body)
        if not match:
            log.warning("Unknown status update type %s", "")
            return
        status_name, rest = match.group(1), match.group(2)
        if status_name == "slice":
            self._handle_slice_status(rest)
        elif status_name == "interlock":
            self._handle_interlock_status(rest)
        else:
            log.warning("Unknown status update type %s", status_name)

    def _handle_slice_status(self, rest: str) -> None:
        match = _SLICE_ID.match(rest)
        if not match:
            return
        slice_id = int(match.group(1))
        parameters = parse_parameters(match.group(2))

        if parameters.get("tx") == "1":
            self.tx_slice = slice_id

        frequency = parameters.get("RF_frequency")
        if frequency is not None:
            self.slice_frequencies[slice_id] = frequency
            if self.active_slice == slice_id:
                self._publish(FrequencyChange(_mhz_to_hz(frequency)))

        in_use = parameters.get("in_use")
        if in_use is not None:
            self.active_slices[slice_id] = in_use == "1"
            if slice_id == self.active_slice and not self.active_slices[slice_id]:
                self._publish(DisableReporting())
                self.active_slice = -1

        mode = parameters.get("mode")
        if mode is None:
            return
        if mode in ("FDVU", "FDVL"):
            if slice_id == self.active_slice:
                return
            log.info("Switching slice %d to FreeDV mode", slice_id)
            if self.active_slice == -1:
                self._publish(EnableReporting())
            else:
                log.warning(
                    "Attempted to activate FDVU/FDVL from a second slice "
                    "(id = %d, active = %d)",
                    slice_id,
                    self.active_slice,
                )
            self.active_slice = slice_id
            self.is_lsb = mode == "FDVL"
            self._set_filter(*self.current_width)
            current = self.slice_frequencies.get(self.active_slice, "")
            self._publish(FrequencyChange(_mhz_to_hz(current)))
        elif slice_id == self.active_slice:
            self._publish(DisableReporting())
            self.active_slice = -1

    def _handle_interlock_status(self, rest: str) -> None:
        parameters = parse_parameters(rest)
        state = parameters.get("state")
        if (
            state == "PTT_REQUESTED"
            and self.active_slice == self.tx_slice
            and parameters.get("source") != "TUNE"
        ):
            log.info("Radio went into transmit")
            self.transmitting = True
            self._publish(RequestTx())
        elif state == "UNKEY_REQUESTED":
            log.info("Radio went out of transmit")
            self.transmitting = False
            self._publish(RequestRx())

    def _set_filter(self, low: int, high: int) -> None:
        if self.active_slice < 0:
            return
        low_cut, high_cut = (-high, -low) if self.is_lsb else (low, high)
        self.send_command(f"filt {self.active_slice} {low_cut} {high_cut}")