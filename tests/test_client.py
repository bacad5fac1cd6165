import asyncio
import io
import logging

import websockets

from chat_relay import client


class FakeSocket:
    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for f in self.frames:
            yield f

    async def send(self, text):
        self.sent.append(text)


def test_print_incoming_prints_text_and_skips_binary():
    out = io.StringIO()
    ws = FakeSocket(["hello", b"\x00\x01", "ping"])
    asyncio.run(client.print_incoming(ws, out=out))
    assert out.getvalue() == "hello\nping\n"


def test_send_lines_skips_blank_and_stops_at_eof():
    ws = FakeSocket()

    async def scenario():
        queue = asyncio.Queue()
        for line in ["one", "", "two", None, "never"]:
            queue.put_nowait(line)
        await client.send_lines(ws, queue)

    asyncio.run(scenario())
    assert ws.sent == ["one", "two"]


class ClosingSocket(FakeSocket):
    """Delivers its frames, then the relay hangs up."""

    async def _frames(self):
        for f in self.frames:
            yield f
        raise websockets.ConnectionClosed(None, None)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def test_run_exits_when_relay_closes(monkeypatch, capsys, caplog):
    ws = ClosingSocket(["last words"])
    monkeypatch.setattr(client.websockets, "connect", lambda url: ws)
    monkeypatch.setattr(client, "start_stdin_reader", lambda loop, queue: None)

    with caplog.at_level(logging.INFO, logger="client"):
        asyncio.run(client.run("ws://relay.test/"))

    assert capsys.readouterr().out == "last words\n"
    assert "Relay closed the connection." in caplog.text
