import pytest

from flexwave.vita import (
    AUDIO_CLASS_ID,
    DISCOVERY_CLASS_ID,
    DISCOVERY_STREAM_ID,
    HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    PACKET_TYPE_IF_DATA_WITH_STREAM_ID,
    VitaPacket,
    encode_float_samples,
)


def test_header_size_matches_struct_layout():
    raw = VitaPacket().to_bytes()
    assert len(raw) == HEADER_SIZE == 28


def test_round_trip_preserves_fields():
    packet = VitaPacket(
        timestamp_type=0x51,
        stream_id=0x84000001,
        class_id=AUDIO_CLASS_ID,
        timestamp_int=1234,
        timestamp_frac=99,
        payload=b"abcdefgh",
    )
    parsed = VitaPacket.from_bytes(packet.to_bytes())
    assert parsed.packet_type == PACKET_TYPE_IF_DATA_WITH_STREAM_ID
    assert parsed.timestamp_type == 0x51
    assert parsed.stream_id == 0x84000001
    assert parsed.class_id == AUDIO_CLASS_ID
    assert parsed.timestamp_int == 1234
    assert parsed.timestamp_frac == 99
    assert parsed.payload == b"abcdefgh"


def test_length_field_counts_words():
    raw = VitaPacket(payload=b"\x01" * 16).to_bytes()
    assert int.from_bytes(raw[2:4], "big") * 4 == len(raw)
    assert raw[0] == PACKET_TYPE_IF_DATA_WITH_STREAM_ID


def test_class_id_on_wire_starts_with_flex_oui():
    raw = VitaPacket(class_id=AUDIO_CLASS_ID).to_bytes()
    assert raw[8:16] == AUDIO_CLASS_ID.to_bytes(8, "big")
    assert raw[8:12] == b"\x00\x00\x1c\x2d"


def test_payload_padded_to_word():
    raw = VitaPacket(payload=b"abc").to_bytes()
    assert len(raw) % 4 == 0
    assert raw[HEADER_SIZE:] == b"abc\x00"


def test_too_short_datagram_rejected():
    with pytest.raises(ValueError):
        VitaPacket.from_bytes(b"\x00" * (HEADER_SIZE - 1))


def test_too_long_payload_rejected():
    with pytest.raises(ValueError):
        VitaPacket(payload=b"\x00" * (MAX_PAYLOAD_SIZE + 4)).to_bytes()


def test_oversized_datagram_truncated():
    data = VitaPacket(payload=b"\x00" * MAX_PAYLOAD_SIZE).to_bytes() + b"extra!!!"
    assert len(VitaPacket.from_bytes(data).payload) == MAX_PAYLOAD_SIZE


def test_flex_and_discovery_detection():
    discovery = VitaPacket(stream_id=DISCOVERY_STREAM_ID, class_id=DISCOVERY_CLASS_ID)
    assert discovery.is_from_flex()
    assert discovery.is_discovery()
    audio = VitaPacket(stream_id=DISCOVERY_STREAM_ID, class_id=AUDIO_CLASS_ID)
    assert audio.is_from_flex()
    assert not audio.is_discovery()
    assert not VitaPacket(class_id=0).is_from_flex()


def test_payload_text_stops_at_nul():
    packet = VitaPacket(payload=b"ip=10.0.0.1 nickname=rig\x00garbage")
    assert packet.payload_text() == "ip=10.0.0.1 nickname=rig"


def test_encode_float_samples_wire_bytes():
    assert encode_float_samples([1.0]) == b"\x3f\x80\x00\x00" * 2


def test_float_samples_round_trip():
    packet = VitaPacket(payload=encode_float_samples([0.5, -0.25]))
    parsed = VitaPacket.from_bytes(packet.to_bytes())
    assert parsed.float_samples() == [0.5, 0.5, -0.25, -0.25]


def test_float_samples_limited_by_declared_length():
    payload = encode_float_samples([0.5, -0.25])
    packet = VitaPacket(payload=payload, length=(HEADER_SIZE + 8) // 4)
    assert packet.float_samples() == [0.5, 0.5]