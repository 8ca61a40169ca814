import pytest

from flexwave.messages import FlexRadioDiscoveredMessage, SendVitaMessage
from flexwave.stream import (
    MAX_VITA_SAMPLES,
    MIN_VITA_PACKETS_TO_SEND,
    PACKET_LENGTH,
    VITA_IO_TIME_INTERVAL_US,
    Channel,
    FlexVitaStream,
)
from flexwave.vita import (
    AUDIO_CLASS_ID,
    DISCOVERY_CLASS_ID,
    DISCOVERY_STREAM_ID,
    HEADER_SIZE,
    METER_CLASS_ID,
    METER_STREAM_ID,
    PACKET_TYPE_EXT_DATA_WITH_STREAM_ID,
    STREAM_BITS_IN,
    STREAM_BITS_WAVEFORM,
    VitaPacket,
    encode_float_samples,
)

RX_STREAM = STREAM_BITS_WAVEFORM | STREAM_BITS_IN
TX_STREAM = STREAM_BITS_WAVEFORM | STREAM_BITS_IN | 0x1


@pytest.fixture
def collected():
    return {"sent": [], "published": []}


@pytest.fixture
def stream(collected):
    return FlexVitaStream(
        collected["sent"].append,
        collected["published"].append,
        now_us=0,
        wall_clock=lambda: 1700000000.0,
    )


def audio_datagram(stream_id, samples):
    return VitaPacket(
        stream_id=stream_id,
        class_id=AUDIO_CLASS_ID,
        payload=encode_float_samples(samples),
    ).to_bytes()


def test_discovery_publishes_radio(stream, collected):
    data = VitaPacket(
        packet_type=PACKET_TYPE_EXT_DATA_WITH_STREAM_ID,
        stream_id=DISCOVERY_STREAM_ID,
        class_id=DISCOVERY_CLASS_ID,
        payload=b"nickname=Shack callsign=N0CALL ip=192.0.2.10\x00",
    ).to_bytes()
    result = stream.handle_datagram(data)
    assert result == FlexRadioDiscoveredMessage("Shack (N0CALL)", "192.0.2.10")
    assert collected["published"] == [result]


def test_short_datagram_ignored(stream, collected):
    assert stream.handle_datagram(b"\x00" * (HEADER_SIZE - 1)) is None
    assert collected["published"] == []
    assert stream.rx_stream_id == 0


def test_non_flex_packet_ignored(stream):
    data = VitaPacket(stream_id=RX_STREAM, class_id=0x1234, payload=b"\x00" * 8).to_bytes()
    stream.handle_datagram(data)
    assert stream.rx_stream_id == 0
    assert stream.tx_stream_id == 0


def test_meter_stream_ignored(stream):
    data = VitaPacket(
        stream_id=METER_STREAM_ID, class_id=METER_CLASS_ID, payload=b"\x00" * 8
    ).to_bytes()
    stream.handle_datagram(data)
    assert stream.rx_stream_id == 0
    assert len(stream.audio_out[Channel.RADIO]) == 0


def test_receive_audio_goes_to_radio_channel(stream):
    stream.handle_datagram(audio_datagram(RX_STREAM, [0.0] * 126))
    assert stream.rx_stream_id == RX_STREAM
    assert list(stream.audio_out[Channel.RADIO]) == [0] * MAX_VITA_SAMPLES
    assert len(stream.audio_out[Channel.USER]) == 0


def test_transmit_audio_goes_to_user_channel(stream):
    stream.handle_datagram(audio_datagram(TX_STREAM, [0.0] * 126))
    assert stream.tx_stream_id == TX_STREAM
    assert len(stream.audio_out[Channel.USER]) == MAX_VITA_SAMPLES


def test_partial_audio_is_buffered(stream):
    stream.handle_datagram(audio_datagram(RX_STREAM, [0.1] * 60))
    assert len(stream.audio_out[Channel.RADIO]) == 0
    stream.handle_datagram(audio_datagram(RX_STREAM, [0.1] * 66))
    assert len(stream.audio_out[Channel.RADIO]) == MAX_VITA_SAMPLES


def test_generate_packets_fills_header(stream, collected):
    stream.set_reporting(True)
    stream.audio_in[Channel.USER].extend([0] * (MAX_VITA_SAMPLES * 4))
    packets = stream.generate_packets(Channel.USER, RX_STREAM, VITA_IO_TIME_INTERVAL_US)
    assert len(packets) == 4
    assert [p.timestamp_frac for p in packets] == [0, 1, 2, 3]
    assert [p.timestamp_type for p in packets] == [0x50, 0x51, 0x52, 0x53]
    for packet in packets:
        assert packet.class_id == AUDIO_CLASS_ID
        assert packet.stream_id == RX_STREAM
        assert len(packet.to_bytes()) == PACKET_LENGTH
        assert packet.length * 4 == PACKET_LENGTH
        assert packet.timestamp_int == 1700000000
    assert collected["sent"] == [SendVitaMessage(p, PACKET_LENGTH) for p in packets]
    assert len(stream.audio_in[Channel.USER]) == 0


def test_generated_samples_are_stereo_pairs(stream):
    stream.set_reporting(True)
    stream.audio_in[Channel.USER].extend([1000] * MAX_VITA_SAMPLES)
    (packet,) = stream.generate_packets(Channel.USER, RX_STREAM, VITA_IO_TIME_INTERVAL_US)
    samples = VitaPacket.from_bytes(packet.to_bytes()).float_samples()
    assert len(samples) == MAX_VITA_SAMPLES * 3 * 2
    assert samples[0::2] == samples[1::2]


def test_silence_stays_silent(stream):
    stream.set_reporting(True)
    stream.audio_in[Channel.USER].extend([0] * MAX_VITA_SAMPLES)
    (packet,) = stream.generate_packets(Channel.USER, RX_STREAM, VITA_IO_TIME_INTERVAL_US)
    assert all(s == 0.0 for s in packet.float_samples())


def test_reporting_disabled_consumes_without_sending(stream, collected):
    stream.audio_in[Channel.USER].extend([0] * (MAX_VITA_SAMPLES * 2))
    packets = stream.generate_packets(Channel.USER, RX_STREAM, VITA_IO_TIME_INTERVAL_US)
    assert packets == []
    assert collected["sent"] == []
    assert len(stream.audio_in[Channel.USER]) == 0


def test_cannot_send_skips_packets():
    stream = FlexVitaStream(now_us=0, can_send=lambda: False)
    stream.set_reporting(True)
    stream.audio_in[Channel.USER].extend([0] * MAX_VITA_SAMPLES)
    assert stream.generate_packets(Channel.USER, RX_STREAM, VITA_IO_TIME_INTERVAL_US) == []
    assert len(stream.audio_in[Channel.USER]) == 0


def test_too_quick_call_sends_nothing(stream):
    stream.set_reporting(True)
    stream.audio_in[Channel.USER].extend([0] * (MAX_VITA_SAMPLES * 20))
    first = stream.generate_packets(Channel.USER, RX_STREAM, VITA_IO_TIME_INTERVAL_US)
    assert len(first) == 2 * MIN_VITA_PACKETS_TO_SEND
    assert stream.min_packets_required == 0
    second = stream.generate_packets(Channel.USER, RX_STREAM, VITA_IO_TIME_INTERVAL_US + 1)
    assert second == []
    assert len(stream.audio_in[Channel.USER]) == MAX_VITA_SAMPLES * 12


def test_packet_budget_per_call(stream):
    stream.set_reporting(True)
    stream.audio_in[Channel.USER].extend([0] * (MAX_VITA_SAMPLES * 30))
    packets = stream.generate_packets(Channel.USER, RX_STREAM, 4 * VITA_IO_TIME_INTERVAL_US)
    assert len(packets) == 10


def test_send_audio_out_uses_rx_stream_when_receiving(stream):
    stream.handle_datagram(audio_datagram(RX_STREAM, [0.0] * 2))
    stream.set_reporting(True)
    stream.audio_in[Channel.USER].extend([0] * MAX_VITA_SAMPLES)
    packets = stream.send_audio_out(VITA_IO_TIME_INTERVAL_US)
    assert len(packets) == 1
    assert packets[0].stream_id == RX_STREAM


def test_send_audio_out_drains_idle_channel(stream):
    stream.handle_datagram(audio_datagram(RX_STREAM, [0.0] * 2))
    stream.set_transmitting(True, 0)
    stream.audio_in[Channel.USER].extend([5] * 100)
    assert stream.send_audio_out(VITA_IO_TIME_INTERVAL_US) == []
    assert len(stream.audio_in[Channel.USER]) == 100 - 2 * MAX_VITA_SAMPLES


def test_set_transmitting_restarts_timing(stream):
    stream.min_packets_required = 0
    stream.time_beyond_expected_us = 123
    stream.set_transmitting(True, 5000)
    assert stream.transmitting is True
    assert stream.min_packets_required == MIN_VITA_PACKETS_TO_SEND
    assert stream.time_beyond_expected_us == 0
    assert stream.last_generation_time_us == 5000


def test_reset_forgets_streams(stream):
    stream.handle_datagram(audio_datagram(RX_STREAM, [0.0] * 2))
    stream.handle_datagram(audio_datagram(TX_STREAM, [0.0] * 2))
    stream.reset(0)
    assert (stream.rx_stream_id, stream.tx_stream_id, stream.audio_seq_num) == (0, 0, 0)