"""VITA-49 audio streaming between a Flex radio and the local audio FIFOs.

:class:`FlexVitaStream` holds no socket. Datagrams from the radio go to
:meth:`FlexVitaStream.handle_datagram`. Outgoing packets are produced by
:meth:`FlexVitaStream.send_audio_out` and handed to the ``send`` callable.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from enum import Enum
from typing import Callable, Optional

from flexwave.keyvalue import parse_parameters
from flexwave.messages import FlexRadioDiscoveredMessage, SendVitaMessage
from flexwave.resample import FLOAT_TO_SHORT, OS_RATIO, Downsampler, Upsampler
from flexwave.vita import (
    AUDIO_CLASS_ID,
    HEADER_SIZE,
    PACKET_TYPE_IF_DATA_WITH_STREAM_ID,
    STREAM_BITS_IN,
    STREAM_BITS_MASK,
    STREAM_BITS_WAVEFORM,
    VitaPacket,
    encode_float_samples,
)

log = logging.getLogger(__name__)

VITA_PORT = 4992
MAX_VITA_SAMPLES = 42  # 5.25 ms per block at 8 kHz
SAMPLES_PER_PACKET = MAX_VITA_SAMPLES * OS_RATIO
MIN_VITA_PACKETS_TO_SEND = 4
MAX_VITA_PACKETS_TO_SEND = 10
US_OF_AUDIO_PER_VITA_PACKET = 5250
VITA_IO_TIME_INTERVAL_US = US_OF_AUDIO_PER_VITA_PACKET * MIN_VITA_PACKETS_TO_SEND
MAX_JITTER_US = 500
PACKET_LENGTH = HEADER_SIZE + SAMPLES_PER_PACKET * 2 * 4
TX_SCALE_FACTOR = math.exp(9.0 / 20.0 * math.log(10.0))

_INT16_MIN = -32768
_INT16_MAX = 32767


class Channel(Enum):
    """Audio channels shared with the rest of the system."""

    USER = "user"
    RADIO = "radio"


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _trunc_mod(a: int, b: int) -> int:
    return a - b * _trunc_div(a, b)


def _to_short(value: float) -> int:
    if math.isnan(value):
        return 0
    scaled = value * FLOAT_TO_SHORT
    if scaled >= _INT16_MAX:
        return _INT16_MAX
    if scaled <= _INT16_MIN:
        return _INT16_MIN
    return int(scaled)


def _now_us() -> int:
    return time.monotonic_ns() // 1000


class FlexVitaStream:
    """Converts between VITA audio packets and 8 kHz sample FIFOs.

    ``audio_in`` holds samples waiting to go to the radio, per channel;
    ``audio_out`` receives samples decoded from the radio, per channel.
    """

    def __init__(
        self,
        send: Optional[Callable[[SendVitaMessage], None]] = None,
        publish: Optional[Callable[[object], None]] = None,
        *,
        now_us: Optional[int] = None,
        wall_clock: Callable[[], float] = time.time,
        can_send: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._send = send or (lambda message: None)
        self._publish = publish or (lambda message: None)
        self._wall_clock = wall_clock
        self._can_send = can_send or (lambda: True)

        self.audio_in: dict[Channel, deque[int]] = {c: deque() for c in Channel}
        self.audio_out: dict[Channel, deque[int]] = {c: deque() for c in Channel}

        self.audio_enabled = False
        self.transmitting = False

        self._upsampler = Upsampler()
        self._downsampler = Downsampler()
        self._pending_24k: list[int] = []

        self.rx_stream_id = 0
        self.tx_stream_id = 0
        self.audio_seq_num = 0
        self.current_time = 0
        self.min_packets_required = MIN_VITA_PACKETS_TO_SEND
        self.time_beyond_expected_us = 0
        self.last_generation_time_us = 0
        self.reset(now_us)

    def reset(self, now_us: Optional[int] = None) -> None:
        """Forget the streams and restart packet timing from ``now_us``."""
        self.rx_stream_id = 0
        self.tx_stream_id = 0
        self.audio_seq_num = 0
        self.current_time = 0
        self._pending_24k.clear()
        self._restart_timing(now_us)

    def set_reporting(self, enabled: bool) -> None:
        """Allow or stop sending audio to the radio."""
        self.audio_enabled = bool(enabled)

    def set_transmitting(self, transmitting: bool, now_us: Optional[int] = None) -> None:
        """Switch between receive and transmit and restart packet timing."""
        self.transmitting = bool(transmitting)
        self._restart_timing(now_us)

    def handle_datagram(self, data: bytes) -> Optional[FlexRadioDiscoveredMessage]:
        """Process one datagram from the radio.

        Returns the discovery message when the datagram announced a radio.
        """
        if len(data) < HEADER_SIZE:
            return None
        packet = VitaPacket.from_bytes(data)
        if not packet.is_from_flex():
            return None

        if packet.is_discovery():
            parameters = parse_parameters(packet.payload_text())
            name = (
                f"{parameters.get('nickname', '')} "
                f"({parameters.get('callsign', '')})"
            )
            ip = parameters.get("ip", "")
            log.info("Discovery: found radio %s at IP %s", name, ip)
            message = FlexRadioDiscoveredMessage(name, ip)
            self._publish(message)
            return message

        if packet.stream_id & STREAM_BITS_MASK == STREAM_BITS_WAVEFORM | STREAM_BITS_IN:
            self._receive_audio(packet)
        else:
            log.warning("Undefined stream in %x", packet.stream_id)
        return None

    def send_audio_out(self, now_us: Optional[int] = None) -> list[VitaPacket]:
        """Generate packets for whichever stream is live and drain the other."""
        now = _now_us() if now_us is None else now_us
        sent: list[VitaPacket] = []

        if self.rx_stream_id and not self.transmitting:
            sent += self.generate_packets(Channel.USER, self.rx_stream_id, now)
        elif self.rx_stream_id:
            self._drain(Channel.USER)

        if self.tx_stream_id and self.transmitting:
            sent += self.generate_packets(Channel.RADIO, self.tx_stream_id, now)
        elif self.tx_stream_id:
            self._drain(Channel.RADIO)

        return sent

    def generate_packets(
        self, channel: Channel, stream_id: int, now_us: Optional[int] = None
    ) -> list[VitaPacket]:
        """Turn queued samples of ``channel`` into packets for ``stream_id``."""
        fifo = self.audio_in[channel]
        now = _now_us() if now_us is None else now_us
        elapsed = now - self.last_generation_time_us
        self.last_generation_time_us = now

        if self.transmitting and (
            elapsed >= VITA_IO_TIME_INTERVAL_US + MAX_JITTER_US
            or elapsed <= VITA_IO_TIME_INTERVAL_US - MAX_JITTER_US
        ):
            log.warning(
                "Packet TX jitter is a bit high (time = %d, expected: %d-%d)",
                elapsed,
                VITA_IO_TIME_INTERVAL_US - MAX_JITTER_US,
                VITA_IO_TIME_INTERVAL_US + MAX_JITTER_US,
            )

        packets_due = _trunc_div(MIN_VITA_PACKETS_TO_SEND * elapsed, VITA_IO_TIME_INTERVAL_US)
        if packets_due == 0 and self.min_packets_required == 0:
            log.warning("Executing send handler too quickly!")
            return []
        self.min_packets_required += packets_due
        self.time_beyond_expected_us += _trunc_mod(elapsed, VITA_IO_TIME_INTERVAL_US)

        added_extra = 0
        while self.time_beyond_expected_us >= US_OF_AUDIO_PER_VITA_PACKET >> 1:
            added_extra = 1
            self.min_packets_required += 1
            self.time_beyond_expected_us -= US_OF_AUDIO_PER_VITA_PACKET

        if self.min_packets_required <= 0:
            self.min_packets_required = 0
            self.time_beyond_expected_us = 0

        sent: list[VitaPacket] = []
        budget = MAX_VITA_PACKETS_TO_SEND
        while (
            self.min_packets_required > 0
            and budget > 0
            and len(fifo) >= MAX_VITA_SAMPLES
        ):
            block = [fifo.popleft() for _ in range(MAX_VITA_SAMPLES)]
            self.min_packets_required -= 1
            budget -= 1

            if not self.audio_enabled or not self._can_send():
                continue

            samples = self._upsampler.process(block, TX_SCALE_FACTOR)
            packet = self._build_packet(stream_id, samples)
            sent.append(packet)
            self._send(SendVitaMessage(packet, PACKET_LENGTH))

        self.min_packets_required -= added_extra
        return sent

    def _build_packet(self, stream_id: int, samples: list[float]) -> VitaPacket:
        seq = self.audio_seq_num
        self.audio_seq_num = (self.audio_seq_num + 1) & 0xFFFFFFFF
        timestamp = int(self._wall_clock()) & 0xFFFFFFFF
        self.current_time = timestamp
        return VitaPacket(
            packet_type=PACKET_TYPE_IF_DATA_WITH_STREAM_ID,
            timestamp_type=0x50 | (seq & 0x0F),
            stream_id=stream_id,
            class_id=AUDIO_CLASS_ID,
            timestamp_int=timestamp,
            timestamp_frac=seq,
            payload=encode_float_samples(samples),
            length=PACKET_LENGTH >> 2,
        )

    def _receive_audio(self, packet: VitaPacket) -> None:
        if packet.stream_id & 0x1:
            self.tx_stream_id = packet.stream_id
            channel = Channel.USER
        else:
            self.rx_stream_id = packet.stream_id
            channel = Channel.RADIO

        output = self.audio_out[channel]
        for value in packet.float_samples()[::2]:
            self._pending_24k.append(_to_short(value))
            if len(self._pending_24k) == SAMPLES_PER_PACKET:
                output.extend(self._downsampler.process(self._pending_24k))
                self._pending_24k = []

    def _drain(self, channel: Channel) -> None:
        fifo = self.audio_in[channel]
        while len(fifo) >= MAX_VITA_SAMPLES:
            for _ in range(MAX_VITA_SAMPLES):
                fifo.popleft()

    def _restart_timing(self, now_us: Optional[int]) -> None:
        self.min_packets_required = MIN_VITA_PACKETS_TO_SEND
        self.time_beyond_expected_us = 0
        self.last_generation_time_us = _now_us() if now_us is None else now_us