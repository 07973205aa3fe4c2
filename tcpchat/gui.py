"""Desktop chat window built on tkinter."""

from __future__ import annotations

import argparse
import asyncio
import queue
import threading
from contextlib import suppress
from html.parser import HTMLParser

from .client import (
    ANONYMOUS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    HELP_LINES,
    USER_LIST_PREFIX,
    ChatConnection,
    InputAction,
    format_chat_line,
    format_system_line,
    interpret_input,
    parse_user_list,
    unknown_command_line,
)
from .message import Message, MessageType

__all__ = ["status_color", "ChatWindow", "main"]

TYPING_RESET_MS = 2000
AFK_MS = 60000
TYPING_LABEL_MS = 1500
_POLL_MS = 50


def status_color(status: str) -> str:
    """Return the colour used to mark a user with the given status."""
    return {"afk": "#FFD600", "typing": "#2196F3"}.get(status, "#00FF00")


class _MarkupParser(HTMLParser):
    """Turns the b, i, u and br tags of chat lines into styled text runs."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.segments: list[tuple[str, frozenset[str]]] = []
        self._open: list[str] = []

    def handle_starttag(self, tag: str, attrs: list) -> None:
        if tag == "br":
            self.segments.append(("\n", frozenset()))
        elif tag in ("b", "i", "u"):
            self._open.append(tag)

    def handle_endtag(self, tag: str) -> None:
        if tag in self._open:
            del self._open[len(self._open) - 1 - self._open[::-1].index(tag)]

    def handle_data(self, data: str) -> None:
        self.segments.append((data, frozenset(self._open)))


def _render_markup(markup: str) -> list[tuple[str, frozenset[str]]]:
    """Split a chat line into (text, styles) runs; styles are among b, i and u."""
    parser = _MarkupParser()
    parser.feed(markup)
    parser.close()
    return parser.segments


class ChatWindow:
    """Main chat window: chat log, message input and list of users."""

    def __init__(self, root, username=ANONYMOUS, host=DEFAULT_HOST, port=DEFAULT_PORT) -> None:
        import tkinter as tk
        from tkinter import font as tkfont

        self.root = root
        self.username = username or ANONYMOUS
        self._connection = ChatConnection(self.username, host, port)
        self._events: queue.Queue = queue.Queue()
        self._connected = self._closed = False
        self._last_input = ""
        self._jobs: dict[str, str] = {}
        self._fonts: dict[frozenset[str], object] = {}

        left = tk.Frame(root)
        left.pack(side="left", fill="both", expand=True, padx=6, pady=6)
        top = tk.Frame(left)
        top.pack(fill="x")
        tk.Label(top, text=f"Welcome {self.username}!").pack(side="left")
        tk.Button(top, text="Clear Chat", command=self._clear_chat).pack(side="right")
        self._chat_box = tk.Text(left, state="disabled", wrap="word", height=10, width=40)
        self._chat_box.pack(fill="both", expand=True, pady=4)
        self._base_font = tkfont.Font(root=root, font=self._chat_box.cget("font"))
        row = tk.Frame(left)
        row.pack(fill="x")
        self._input = tk.Entry(row)
        self._input.pack(side="left", fill="x", expand=True)
        tk.Button(row, text="Send", command=self._on_send).pack(side="right", padx=(4, 0))
        self._typing_label = tk.Label(left, text="", anchor="w")
        self._typing_label.pack(fill="x")
        self._user_list = tk.Listbox(root, width=15)
        self._user_list.pack(side="right", fill="y", padx=(0, 6), pady=6)

        self._input.bind("<Return>", lambda _event: self._on_send())
        self._input.bind("<KeyRelease>", self._on_key)
        self._input.focus_set()

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()
        asyncio.run_coroutine_threadsafe(self._network(), self._loop)
        root.protocol("WM_DELETE_WINDOW", self._on_close)
        self._schedule("poll", _POLL_MS, self._poll)

    def _schedule(self, name: str, delay: int, callback) -> None:
        if name in self._jobs:
            self.root.after_cancel(self._jobs.pop(name))
        self._jobs[name] = self.root.after(delay, callback)

    def _style_tag(self, styles: frozenset[str]) -> tuple[str, ...]:
        if not styles:
            return ()
        name = "style_" + "".join(sorted(styles))
        if styles not in self._fonts:
            styled = self._base_font.copy()
            styled.configure(
                weight="bold" if "b" in styles else "normal",
                slant="italic" if "i" in styles else "roman",
                underline="u" in styles,
            )
            self._fonts[styles] = styled
            self._chat_box.tag_configure(name, font=styled)
        return (name,)

    def _append(self, markup: str) -> None:
        box = self._chat_box
        box.configure(state="normal")
        if box.index("end-1c") != "1.0":
            box.insert("end", "\n")
        for text, styles in _render_markup(markup):
            box.insert("end", text, self._style_tag(styles))
        box.configure(state="disabled")
        box.see("end")

    def _clear_chat(self) -> None:
        self._chat_box.configure(state="normal")
        self._chat_box.delete("1.0", "end")
        self._chat_box.configure(state="disabled")

    def _on_send(self) -> None:
        text = self._input.get()
        action = interpret_input(text)
        if action is InputAction.IGNORE or not self._connected:
            return
        if action is InputAction.HELP:
            for line in HELP_LINES:
                self._append(line)
        elif action is InputAction.CLEAR:
            self._clear_chat()
        elif action is InputAction.UNKNOWN_COMMAND:
            self._append(unknown_command_line(text))
        else:
            self._submit(self._connection.send_text(text))
            self._schedule("afk", AFK_MS, lambda: self._send_status("afk"))
        self._input.delete(0, "end")
        self._last_input = ""

    def _on_key(self, _event: object) -> None:
        text = self._input.get()
        if text == self._last_input:
            return
        self._last_input = text
        if text.startswith("/"):
            return
        if self._connected:
            self._submit(self._connection.send_typing())
        self._schedule("typing", TYPING_RESET_MS, lambda: self._send_status("online"))
        self._schedule("afk", AFK_MS, lambda: self._send_status("afk"))

    def _send_status(self, status: str) -> None:
        if self._connected:
            self._submit(self._connection.send_status(status))

    def _submit(self, coro) -> None:
        if self._closed:
            coro.close()
        else:
            asyncio.run_coroutine_threadsafe(coro, self._loop)

    async def _network(self) -> None:
        try:
            await self._connection.connect()
        except OSError:
            return
        self._events.put(True)
        with suppress(ConnectionError):
            while (msg := await self._connection.receive()) is not None:
                self._events.put(msg)
        self._events.put(False)

    def _poll(self) -> None:
        self._jobs.pop("poll", None)
        while not self._events.empty():
            event = self._events.get_nowait()
            if isinstance(event, Message):
                self._show(event)
            else:
                self._connected = event
        if not self._closed:
            self._schedule("poll", _POLL_MS, self._poll)

    def _show(self, msg: Message) -> None:
        if msg.username == "System" and msg.text.startswith(USER_LIST_PREFIX):
            self._user_list.delete(0, "end")
            for entry in parse_user_list(msg.text):
                self._user_list.insert("end", f"\u25cf {entry.name}")
                self._user_list.itemconfigure("end", foreground=status_color(entry.status))
        elif msg.type == MessageType.SYSTEM:
            self._append(format_system_line(msg))
        elif msg.type == MessageType.TYPING:
            self._typing_label.configure(text=f"{msg.username} is typing...")
            self.root.after(TYPING_LABEL_MS, lambda: self._typing_label.configure(text=""))
        else:
            self._append(format_chat_line(msg))

    def _on_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for job in self._jobs.values():
            self.root.after_cancel(job)
        with suppress(Exception):
            asyncio.run_coroutine_threadsafe(self._connection.close(), self._loop).result(2.0)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=2.0)
        self.root.destroy()


def main(argv: list[str] | None = None) -> int:
    """Ask for a user name and open the chat window."""
    parser = argparse.ArgumentParser(prog="tcpchat", description="Open the chat client.")
    parser.add_argument("--host", default=DEFAULT_HOST, help="server address")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="server port")
    args = parser.parse_args(argv)
    import tkinter
    from tkinter import simpledialog

    root = tkinter.Tk()
    root.withdraw()
    name = simpledialog.askstring("Username", "Enter your name:", parent=root)
    root.deiconify()
    root.title("Chat Client")
    root.geometry("400x300")
    ChatWindow(root, name or ANONYMOUS, args.host, args.port)
    root.mainloop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())