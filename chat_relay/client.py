#!/usr/bin/env python3
"""
client.py

Terminal client for the chat relay.

Behavior:
- Connects to RELAY_URL (or the first command-line argument).
- Sends every non-empty line typed on stdin as a text frame.
- Prints every text frame received from the relay; binary frames are ignored.
- Exits on stdin EOF, Ctrl-C, or when the relay closes the connection.
"""

import asyncio
import logging
import os
import sys
import threading

import websockets

# ---------- Configuration ----------
RELAY_URL = os.environ.get("RELAY_URL", "ws://localhost:8000/")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

log = logging.getLogger("client")


def start_stdin_reader(loop, queue):
    """Read stdin on a daemon thread; None is queued at EOF."""
    def _read():
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\r\n"))
        loop.call_soon_threadsafe(queue.put_nowait, None)

    t = threading.Thread(target=_read, daemon=True)
    t.start()
    return t


async def print_incoming(ws, out=None):
    out = out or sys.stdout
    async for message in ws:
        if not isinstance(message, str):
            log.debug("Ignoring binary frame (%d bytes)", len(message))
            continue
        print(message, file=out, flush=True)


async def send_lines(ws, queue):
    while True:
        line = await queue.get()
        if line is None:
            return
        if line:
            await ws.send(line)


async def run(url):
    loop = asyncio.get_running_loop()
    lines = asyncio.Queue()
    async with websockets.connect(url) as ws:
        log.info("Connected to %s", url)
        start_stdin_reader(loop, lines)
        tasks = [asyncio.create_task(print_incoming(ws)), asyncio.create_task(send_lines(ws, lines))]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in pending:
            t.cancel()
        for t in done:
            try:
                t.result()
            except websockets.ConnectionClosed:
                log.info("Relay closed the connection.")


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(message)s")
    url = sys.argv[1] if len(sys.argv) > 1 else RELAY_URL
    try:
        asyncio.run(run(url))
    except KeyboardInterrupt:
        log.info("Interrupted, stopping...")
    except OSError as e:
        log.error("Could not reach relay at %s: %s", url, e)
        sys.exit(1)
    log.info("client exiting.")


if __name__ == "__main__":
    main()
