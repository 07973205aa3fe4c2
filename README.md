# tcpchat

A small chat system made of two parts:

* **a server** (`tcpchat.server`) that accepts TCP connections, registers
  users, relays chat messages and keeps everyone's user list and presence up
  to date;
* **a desktop client** (`tcpchat.gui`) with a chat view, a message box and a
  user list that shows whether each person is online, typing or away.

Only the Python standard library is needed. The client window uses tkinter.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Running

Start the server. By default it listens on all interfaces (`0.0.0.0`),
port 12345:

```
tcpchat-server
tcpchat-server --host 127.0.0.1 --port 4000
```

If the address cannot be bound it prints `Server could not start!` and exits
with status 1.

Then start one or more clients. Each asks for a name (leaving it empty or
cancelling joins as `Anonymous`) and connects by default to 127.0.0.1,
port 12345:

```
tcpchat-client
tcpchat-client --host 192.0.2.10 --port 4000
```

## Using the client

Type a message and press Enter or click **Send**. Messages may use the tags
`<b>`, `<i>`, `<u>` and `<br>`; all other markup is shown as plain text.
**Clear Chat** empties the chat view.

Commands handled by the client itself:

| Command  | Effect                          |
|----------|---------------------------------|
| `/help`  | list the available commands     |
| `/clear` | clear the chat window           |

Any other input starting with `/` is reported as an unknown command and is
not sent.

The user list marks each person with a coloured dot (`tcpchat.gui.status_color`):

* green — online
* blue — typing
* yellow — away (`afk`, sent after 60 seconds without typing or sending)

While you type, other users see "*name* is typing..." for a moment; two
seconds after your last keypress your status is set back to online.

## Protocol

Every message travels as a frame: a 4-byte big-endian length followed by the
encoded message. A message carries a type, a user name, a timestamp and a
text; strings are UTF-16 big-endian with a 4-byte length. The types are
listed in `tcpchat.message.MessageType`: `TEXT`, `REGISTRATION`, `COMMAND`,
`SYSTEM`, `TYPING` and `STATUS`.

* A client first sends a registration message with its user name; until it
  does, the server ignores everything else from it and sends it nothing.
* Text messages are relayed to every registered user, including the sender.
* Typing notifications are relayed to everyone except the sender.
* Status messages (`online`, `afk`) only update the user list.
* Command messages are ignored by the server.
* After every change the server sends a system message from `System` whose
  text is `USERLIST|` followed by comma-separated `name|status` entries.
* Joins and departures are announced with system messages giving the total
  number of users.
* Frames that cannot be decoded are dropped.

## Library use

The pieces can be used directly from Python:

```python
from datetime import datetime

from tcpchat.message import FrameDecoder, Message, MessageType, encode_packet

msg = Message("alice", "hello", datetime.now(), MessageType.TEXT)
frame = encode_packet(msg.to_binary())

decoder = FrameDecoder()
for payload in decoder.feed(frame):
    print(Message.from_binary(payload).text)
```

`Message.from_binary` raises `tcpchat.message.MessageDecodeError` (a
`ValueError`) for data it cannot decode. `Message.serialize` gives the text
form `type|username|timestamp|text`.

`tcpchat.server.ChatServer` runs the server on an asyncio event loop
(`start`, `serve_forever`, `close`, `user_list_text`).

`tcpchat.client.ChatConnection` is a client connection without any window,
suitable for scripts and bots:

```python
import asyncio

from tcpchat.client import ChatConnection, format_chat_line


async def run():
    async with ChatConnection("bot") as conn:
        await conn.send_text("hello")
        while (msg := await conn.receive()) is not None:
            print(format_chat_line(msg))


asyncio.run(run())
```

`tcpchat.client` also has the helpers the window uses: `sanitize_html`,
`parse_user_list` (returning `UserEntry` items), `interpret_input`
(returning an `InputAction`), `format_chat_line` and `format_system_line`.

## What it does not do

The server keeps nothing on disk: there is no message history, and users
joining later see only what is sent after they register. There are no
accounts or passwords, names are not checked for uniqueness, and the
connection is not encrypted.