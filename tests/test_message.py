import struct
from datetime import datetime, timedelta, timezone

import pytest

from tcpchat.message import (
    FrameDecoder,
    Message,
    MessageDecodeError,
    MessageType,
    encode_packet,
)


def test_encode_packet_prefixes_length():
    assert encode_packet(b"abc") == b"\x00\x00\x00\x03abc"


def test_binary_layout_without_timestamp():
    msg = Message(username="A", text="", timestamp=None, type=MessageType.TEXT)
    expected = (
        b"\x00\x00\x00\x00"
        + b"\x00\x00\x00\x02\x00A"
        + b"\x80\x00\x00\x00\x00\x00\x00\x00"
        + b"\xff\xff\xff\xff"
        + b"\x00"
        + b"\x00\x00\x00\x00"
    )
    assert msg.to_binary() == expected


def test_serialize_utc_timestamp():
    ts = datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)
    msg = Message("alice", "hi", ts, MessageType.TEXT)
    assert msg.serialize() == "0|alice|2024-05-01T12:30:45Z|hi\n"


def test_serialize_local_timestamp_round_trips_through_iso():
    ts = datetime(2024, 5, 1, 12, 30, 45)
    msg = Message("bob", "", ts, MessageType.REGISTRATION)
    line = msg.serialize()
    assert line.endswith("\n")
    parts = line.rstrip("\n").split("|")
    assert parts[0] == str(int(MessageType.REGISTRATION))
    assert parts[1] == "bob"
    assert datetime.fromisoformat(parts[2]) == ts
    assert parts[3] == ""


def test_serialize_without_timestamp_leaves_field_empty():
    parts = Message("carol", "x").serialize().rstrip("\n").split("|")
    assert parts[2] == ""
    assert parts[3] == "x"


@pytest.mark.parametrize("kind", list(MessageType))
def test_type_is_first_field(kind):
    data = Message("u", "t", None, kind).to_binary()
    assert struct.unpack(">i", data[:4])[0] == kind.value
    assert Message.from_binary(data).type is kind


def test_round_trip_utc():
    ts = datetime(2023, 12, 31, 23, 59, 59, 500000, tzinfo=timezone.utc)
    msg = Message("alice", "hello world", ts, MessageType.TEXT)
    assert Message.from_binary(msg.to_binary()) == msg


def test_round_trip_fixed_offset():
    tz = timezone(timedelta(hours=2, minutes=30))
    ts = datetime(2022, 6, 15, 8, 0, 0, tzinfo=tz)
    decoded = Message.from_binary(Message("x", "y", ts).to_binary())
    assert decoded.timestamp == ts
    assert decoded.timestamp.utcoffset() == ts.utcoffset()


def test_round_trip_local_naive():
    ts = datetime(2024, 3, 10, 4, 15, 7)
    decoded = Message.from_binary(Message("x", "y", ts).to_binary())
    assert decoded.timestamp == ts
    assert decoded.timestamp.tzinfo is None


def test_round_trip_no_timestamp():
    msg = Message("sys", "text", None, MessageType.SYSTEM)
    assert Message.from_binary(msg.to_binary()) == msg


def test_round_trip_unicode_text():
    msg = Message("Zoë", "héllo 🌍 <b>bold</b>|pipe", None, MessageType.TEXT)
    decoded = Message.from_binary(msg.to_binary())
    assert decoded.username == msg.username
    assert decoded.text == msg.text


def test_timestamp_keeps_millisecond_precision():
    ts = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    decoded = Message.from_binary(Message("a", "b", ts).to_binary()).timestamp
    assert decoded.microsecond % 1000 == 0
    assert timedelta(0) <= ts - decoded < timedelta(milliseconds=1)


def test_unknown_type_is_kept_as_integer():
    data = struct.pack(">i", 42) + Message("u", "t").to_binary()[4:]
    decoded = Message.from_binary(data)
    assert decoded.type == 42
    assert not isinstance(decoded.type, MessageType)
    assert decoded.text == "t"


def test_null_string_decodes_as_empty():
    data = Message("", "body").to_binary()
    data = data[:4] + b"\xff\xff\xff\xff" + data[8:]
    decoded = Message.from_binary(data)
    assert decoded.username == ""
    assert decoded.text == "body"


def test_trailing_bytes_are_ignored():
    msg = Message("u", "t", None, MessageType.STATUS)
    assert Message.from_binary(msg.to_binary() + b"extra") == msg


@pytest.mark.parametrize("cut", [0, 3, 6, 10, 20])
def test_truncated_data_raises(cut):
    data = Message("user", "text").to_binary()
    with pytest.raises(MessageDecodeError):
        Message.from_binary(data[:cut])


def test_decode_error_is_value_error():
    with pytest.raises(ValueError):
        Message.from_binary(b"\x00")


def test_odd_string_length_raises():
    data = struct.pack(">iI", 0, 3) + b"abc"
    with pytest.raises(MessageDecodeError):
        Message.from_binary(data)


def test_out_of_range_time_of_day_raises():
    head = struct.pack(">i", 0) + struct.pack(">I", 0)
    dt = struct.pack(">qIb", 2451545, 86_400_000, 1)
    with pytest.raises(MessageDecodeError):
        Message.from_binary(head + dt + struct.pack(">I", 0))


def test_out_of_range_date_raises():
    head = struct.pack(">i", 0) + struct.pack(">I", 0)
    dt = struct.pack(">qIb", 0, 0, 1)
    with pytest.raises(MessageDecodeError):
        Message.from_binary(head + dt + struct.pack(">I", 0))


def test_frame_decoder_single_frame():
    decoder = FrameDecoder()
    payload = Message("a", "b").to_binary()
    assert decoder.feed(encode_packet(payload)) == [payload]
    assert decoder.pending == 0


def test_frame_decoder_byte_by_byte():
    decoder = FrameDecoder()
    payload = Message("alice", "split me").to_binary()
    stream = encode_packet(payload)
    collected = []
    for index in range(len(stream)):
        collected.extend(decoder.feed(stream[index:index + 1]))
        if index < len(stream) - 1:
            assert collected == []
    assert collected == [payload]
    assert decoder.pending == 0


def test_frame_decoder_multiple_frames_and_remainder():
    decoder = FrameDecoder()
    first, second, third = b"one", b"", b"three"
    stream = encode_packet(first) + encode_packet(second) + encode_packet(third)
    frames = decoder.feed(stream[:-2])
    assert frames == [first, second]
    assert decoder.pending == len(encode_packet(third)) - 2
    assert decoder.feed(stream[-2:]) == [third]
    assert decoder.pending == 0


def test_frame_decoder_waits_for_prefix():
    decoder = FrameDecoder()
    assert decoder.feed(b"\x00\x00") == []
    assert decoder.pending == 2


def test_packets_decode_back_to_messages():
    messages = [
        Message("a", "hello", None, MessageType.TEXT),
        Message("b", "", None, MessageType.TYPING),
        Message("c", "afk", None, MessageType.STATUS),
    ]
    stream = b"".join(encode_packet(m.to_binary()) for m in messages)
    decoded = [Message.from_binary(frame) for frame in FrameDecoder().feed(stream)]
    assert decoded == messages