"""Chat server: registers clients, relays messages and tracks user status."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime

from .message import FrameDecoder, Message, MessageDecodeError, MessageType, encode_packet

__all__ = ["ChatServer", "main", "DEFAULT_PORT", "USER_LIST_PREFIX"]

log = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 12345
USER_LIST_PREFIX = "USERLIST|"
SYSTEM_USER = "System"
_READ_SIZE = 65536


@dataclass(eq=False)
class _Peer:
    writer: asyncio.StreamWriter
    username: str | None = None
    status: str = "online"

    @property
    def registered(self) -> bool:
        return self.username is not None


class ChatServer:
    """TCP chat server speaking length-prefixed binary messages."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        self.host = host
        self._requested_port = port
        self._server: asyncio.base_events.Server | None = None
        self._peers: list[_Peer] = []
        self._tasks: set[asyncio.Task] = set()
        self._closing = False

    @property
    def port(self) -> int:
        """The port being listened on, or the requested one before starting."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._requested_port

    async def start(self) -> None:
        """Start listening; raises OSError if the address cannot be bound."""
        if self._server is not None:
            raise RuntimeError("server already started")
        self._closing = False
        self._server = await asyncio.start_server(self._handle, self.host, self._requested_port)
        log.info("Server started on port %d", self.port)

    async def serve_forever(self) -> None:
        """Start if needed and serve until cancelled."""
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def close(self) -> None:
        """Stop listening and disconnect every client."""
        if self._server is None:
            return
        self._closing = True
        self._server.close()
        for peer in list(self._peers):
            peer.writer.close()
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None

    def user_list_text(self) -> str:
        """Return the ``USERLIST|name|status,...`` text for registered clients."""
        entries = (f"{peer.username}|{peer.status}" for peer in self._peers if peer.registered)
        return USER_LIST_PREFIX + ",".join(entries)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
        peer = _Peer(writer)
        self._peers.append(peer)
        decoder = FrameDecoder()
        log.debug("New client connected: %s", writer.get_extra_info("peername"))
        try:
            while True:
                data = await reader.read(_READ_SIZE)
                if not data:
                    break
                for frame in decoder.feed(data):
                    self._dispatch(peer, frame)
        except (ConnectionError, OSError):
            pass
        finally:
            self._drop(peer)
            writer.close()
            with suppress(ConnectionError, OSError):
                await writer.wait_closed()
            if task is not None:
                self._tasks.discard(task)

    def _dispatch(self, peer: _Peer, frame: bytes) -> None:
        try:
            msg = Message.from_binary(frame)
        except MessageDecodeError as exc:
            log.debug("Dropped malformed message: %s", exc)
            return

        if not peer.registered:
            if msg.type == MessageType.REGISTRATION:
                peer.username = msg.username
                peer.status = "online"
                log.info("Registered new user: %s", msg.username)
                self._broadcast_system(
                    f"A user has connected. Total users: {self._registered_count()}"
                )
                self._broadcast_user_list()
            else:
                log.debug("Ignored message of type %s from unregistered client", msg.type)
            return

        if msg.type == MessageType.TEXT:
            peer.status = "online"
            self._broadcast_user_list()
            self._send_to_all(encode_packet(frame))
        elif msg.type == MessageType.TYPING:
            peer.status = "typing"
            self._broadcast_user_list()
            self._send_to_all(encode_packet(frame), exclude=peer)
        elif msg.type == MessageType.STATUS:
            peer.status = msg.text
            self._broadcast_user_list()
        else:
            log.debug("Ignored message of type %s from %s", msg.type, msg.username)

    def _drop(self, peer: _Peer) -> None:
        if peer in self._peers:
            self._peers.remove(peer)
        if peer.registered:
            self._broadcast_system(
                f"A user has disconnected. Total users: {self._registered_count()}"
            )
            self._broadcast_user_list()
        log.debug("Client disconnected")

    def _registered_count(self) -> int:
        return sum(1 for peer in self._peers if peer.registered)

    def _broadcast_system(self, text: str) -> None:
        msg = Message(SYSTEM_USER, text, datetime.now(), MessageType.SYSTEM)
        self._send_to_all(encode_packet(msg.to_binary()))

    def _broadcast_user_list(self) -> None:
        text = self.user_list_text()
        msg = Message(SYSTEM_USER, text, datetime.now(), MessageType.SYSTEM)
        self._send_to_all(encode_packet(msg.to_binary()))
        log.debug("Broadcasted user list: %s", text)

    def _send_to_all(self, packet: bytes, exclude: _Peer | None = None) -> None:
        if self._closing:
            return
        for peer in self._peers:
            if peer is exclude or not peer.registered or peer.writer.is_closing():
                continue
            peer.writer.write(packet)


async def _run(host: str, port: int) -> int:
    server = ChatServer(host, port)
    try:
        await server.start()
    except OSError as exc:
        print(f"Server could not start! ({exc})", file=sys.stderr)
        return 1
    print(f"Server started on port {server.port}")
    try:
        await server.serve_forever()
    finally:
        await server.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the chat server from the command line."""
    parser = argparse.ArgumentParser(prog="tcpchat-server", description="Run the chat server.")
    parser.add_argument("--host", default=DEFAULT_HOST, help="address to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="[Server] %(message)s")
    try:
        return asyncio.run(_run(args.host, args.port))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())