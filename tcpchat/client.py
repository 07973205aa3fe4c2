"""Chat client: connection to the server and formatting of what it sends."""

from __future__ import annotations

import asyncio
import re
from collections import deque
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .message import FrameDecoder, Message, MessageDecodeError, MessageType, encode_packet

__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "USER_LIST_PREFIX",
    "HELP_LINES",
    "sanitize_html",
    "parse_user_list",
    "UserEntry",
    "InputAction",
    "interpret_input",
    "unknown_command_line",
    "format_chat_line",
    "format_system_line",
    "ChatConnection",
]

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 12345
USER_LIST_PREFIX = "USERLIST|"
ANONYMOUS = "Anonymous"
_READ_SIZE = 65536

HELP_LINES = (
    "<i>Available commands:</i>",
    "<i>/help - Show this help message (client-side only)</i>",
    "<i>/clear - Clear the chat window (client-side only)</i>",
    "<i>Other commands will be sent to the server.</i>",
)

_ALLOWED_TAG = re.compile(r"&lt;(/?[biu]|br)&gt;", re.IGNORECASE)


def _escape_html(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def sanitize_html(text: str) -> str:
    """Escape HTML, keeping only the <b>, <i>, <u> and <br> tags."""
    return _ALLOWED_TAG.sub(lambda m: f"<{m.group(1).lower()}>", _escape_html(text))


@dataclass(frozen=True)
class UserEntry:
    """A user shown in the user list, with a status such as online, afk or typing."""

    name: str
    status: str = "online"


def parse_user_list(text: str) -> list[UserEntry]:
    """Parse ``USERLIST|name|status,...`` text; a missing status means online."""
    if not text.startswith(USER_LIST_PREFIX):
        raise ValueError("not a user list")
    entries = []
    for item in text[len(USER_LIST_PREFIX):].split(","):
        if not item:
            continue
        parts = item.split("|")
        entries.append(UserEntry(parts[0], parts[1] if len(parts) > 1 else "online"))
    return entries


class InputAction(Enum):
    """What to do with a line typed into the message box."""

    IGNORE = "ignore"
    HELP = "help"
    CLEAR = "clear"
    UNKNOWN_COMMAND = "unknown_command"
    SEND = "send"


def interpret_input(text: str) -> InputAction:
    """Decide how a typed line is handled."""
    if not text:
        return InputAction.IGNORE
    if text == "/help":
        return InputAction.HELP
    if text == "/clear":
        return InputAction.CLEAR
    if text.startswith("/"):
        return InputAction.UNKNOWN_COMMAND
    return InputAction.SEND


def unknown_command_line(text: str) -> str:
    """Return the chat line reporting an unrecognised command."""
    return f"<i>Unknown command: {_escape_html(text)}</i>"


def _clock(moment: datetime | None) -> str:
    return "" if moment is None else moment.strftime("%H:%M:%S")


def format_chat_line(message: Message) -> str:
    """Return ``[hh:mm:ss] user: text`` with the text sanitized."""
    return f"[{_clock(message.timestamp)}] {message.username}: {sanitize_html(message.text)}"


def format_system_line(message: Message) -> str:
    """Return a system notice as an italic, escaped line."""
    return f"<i>[{_clock(message.timestamp)}] {_escape_html(message.text)}</i>"


class ChatConnection:
    """An asyncio connection to the chat server for one user."""

    def __init__(
        self, username: str = ANONYMOUS, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT
    ) -> None:
        self.username = username or ANONYMOUS
        self.host = host
        self.port = port
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._decoder = FrameDecoder()
        self._pending: deque[bytes] = deque()

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """Connect and register this user with the server."""
        if self._writer is not None:
            raise ConnectionError("already connected")
        self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        self._decoder = FrameDecoder()
        self._pending.clear()
        await self._send(MessageType.REGISTRATION, "")

    async def send_text(self, text: str) -> None:
        """Send a chat message."""
        await self._send(MessageType.TEXT, text)

    async def send_typing(self) -> None:
        """Tell the server this user is typing."""
        await self._send(MessageType.TYPING, "")

    async def send_status(self, status: str) -> None:
        """Send a status such as ``online`` or ``afk``."""
        await self._send(MessageType.STATUS, status)

    async def _send(self, kind: MessageType, text: str) -> None:
        if not self.connected:
            raise ConnectionError("not connected to a chat server")
        assert self._writer is not None
        msg = Message(self.username, text, datetime.now(), kind)
        self._writer.write(encode_packet(msg.to_binary()))
        await self._writer.drain()

    async def receive(self) -> Message | None:
        """Return the next message from the server, or None once it has closed."""
        if self._reader is None:
            raise ConnectionError("not connected to a chat server")
        while True:
            while not self._pending:
                try:
                    data = await self._reader.read(_READ_SIZE)
                except (ConnectionError, OSError):
                    return None
                if not data:
                    return None
                self._pending.extend(self._decoder.feed(data))
            try:
                return Message.from_binary(self._pending.popleft())
            except MessageDecodeError:
                continue

    async def close(self) -> None:
        """Close the connection."""
        writer = self._writer
        if writer is None:
            return
        self._writer = None
        self._reader = None
        writer.close()
        with suppress(ConnectionError, OSError):
            await writer.wait_closed()

    async def __aenter__(self) -> ChatConnection:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()