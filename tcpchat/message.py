"""Chat message model, its binary encoding and length-prefixed framing."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import IntEnum

__all__ = ["MessageType", "Message", "MessageDecodeError", "encode_packet", "FrameDecoder"]

_JULIAN_OFFSET = 1721425
_NULL_DAY = -(2**63)
_NULL_U32 = 0xFFFFFFFF
_PREFIX = struct.Struct(">I")
_STAMP = struct.Struct(">qIb")
_LOCAL, _UTC, _OFFSET = 0, 1, 2


class MessageType(IntEnum):
    """Kinds of message exchanged between client and server."""

    TEXT = 0
    REGISTRATION = 1
    COMMAND = 2
    SYSTEM = 3
    TYPING = 4
    STATUS = 5


class MessageDecodeError(ValueError):
    """Raised when a binary message cannot be decoded."""


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def unpack(self, layout: struct.Struct) -> tuple:
        return layout.unpack(self.take(layout.size))

    def take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise MessageDecodeError("message data is truncated")
        chunk, self._pos = self._data[self._pos:end], end
        return chunk

    def string(self) -> str:
        (length,) = self.unpack(_PREFIX)
        if length == _NULL_U32:
            return ""
        if length % 2:
            raise MessageDecodeError("string length is not a whole number of UTF-16 units")
        return self.take(length).decode("utf-16-be", errors="surrogatepass")


def _encode_string(value: str) -> bytes:
    raw = value.encode("utf-16-be", errors="surrogatepass")
    return _PREFIX.pack(len(raw)) + raw


def _encode_datetime(value: datetime | None) -> bytes:
    if value is None:
        return _STAMP.pack(_NULL_DAY, _NULL_U32, _LOCAL)
    extra = b""
    if value.utcoffset() is None:
        # Local wall time travels as UTC and is converted back on arrival.
        wall, spec = value.astimezone(timezone.utc), _LOCAL
    elif value.tzinfo is timezone.utc:
        wall, spec = value, _UTC
    else:
        wall, spec = value, _OFFSET
        extra = struct.pack(">i", int(value.utcoffset().total_seconds()))
    ms = ((wall.hour * 60 + wall.minute) * 60 + wall.second) * 1000 + wall.microsecond // 1000
    return _STAMP.pack(wall.toordinal() + _JULIAN_OFFSET, ms, spec) + extra


def _decode_datetime(reader: _Reader) -> datetime | None:
    julian_day, ms, spec = reader.unpack(_STAMP)
    if spec not in (_LOCAL, _UTC, _OFFSET):
        raise MessageDecodeError(f"unsupported time specification {spec}")
    offset = reader.unpack(struct.Struct(">i"))[0] if spec == _OFFSET else 0
    if julian_day == _NULL_DAY or ms == _NULL_U32:
        return None
    ordinal = julian_day - _JULIAN_OFFSET
    if not 1 <= ordinal <= date.max.toordinal() or ms >= 86_400_000:
        raise MessageDecodeError("timestamp out of range")
    wall = datetime.combine(date.fromordinal(ordinal), time()) + timedelta(milliseconds=ms)
    try:
        if spec == _LOCAL:
            return wall.replace(tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        if spec == _UTC:
            return wall.replace(tzinfo=timezone.utc)
        return wall.replace(tzinfo=timezone(timedelta(seconds=offset)))
    except (ValueError, OverflowError, OSError) as exc:
        raise MessageDecodeError(f"cannot interpret timestamp: {exc}") from exc


@dataclass
class Message:
    """A single chat message.

    A naive ``timestamp`` is local time; ``None`` stands for no timestamp.
    A ``type`` not among :class:`MessageType` is kept as its raw integer.
    """

    username: str = ""
    text: str = ""
    timestamp: datetime | None = None
    type: MessageType | int = MessageType.TEXT

    def serialize(self) -> str:
        """Return the text form ``type|username|timestamp|text`` with a newline."""
        stamp = ""
        if self.timestamp is not None:
            stamp = self.timestamp.isoformat(timespec="seconds")
            if self.timestamp.tzinfo is timezone.utc:
                stamp = stamp.replace("+00:00", "Z")
        return f"{int(self.type)}|{self.username}|{stamp}|{self.text}\n"

    def to_binary(self) -> bytes:
        """Encode the message as type, username, timestamp and text."""
        return (
            struct.pack(">i", int(self.type))
            + _encode_string(self.username)
            + _encode_datetime(self.timestamp)
            + _encode_string(self.text)
        )

    @classmethod
    def from_binary(cls, data: bytes) -> Message:
        """Decode a message produced by :meth:`to_binary`; trailing bytes are ignored."""
        reader = _Reader(data)
        (raw_type,) = reader.unpack(struct.Struct(">i"))
        username = reader.string()
        timestamp = _decode_datetime(reader)
        text = reader.string()
        kind: MessageType | int = (
            MessageType(raw_type) if raw_type in MessageType._value2member_map_ else raw_type
        )
        return cls(username=username, text=text, timestamp=timestamp, type=kind)


def encode_packet(payload: bytes) -> bytes:
    """Prefix ``payload`` with its length as a big-endian unsigned 32-bit integer."""
    if len(payload) > _NULL_U32:
        raise ValueError("payload too large for a 32-bit length prefix")
    return _PREFIX.pack(len(payload)) + bytes(payload)


class FrameDecoder:
    """Splits a byte stream into length-prefixed frames."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet returned as a frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Add ``data`` and return every frame now complete, in order."""
        self._buffer += data
        frames: list[bytes] = []
        while len(self._buffer) >= _PREFIX.size:
            end = _PREFIX.size + _PREFIX.unpack_from(self._buffer)[0]
            if len(self._buffer) < end:
                break
            frames.append(bytes(self._buffer[_PREFIX.size:end]))
            del self._buffer[:end]
        return frames