"""
relay.py

Broadcast relay core: a registry of open connections and an engine that
fans every text message out to all other registered connections.

The engine knows nothing about the transport. It consumes a per-connection
stream of events:
- Connected(conn)
- MessageReceived(conn, payload)   payload is str (text) or bytes (binary)
- Closed(conn)
"""

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

log = logging.getLogger("relay")

SendFunc = Callable[[str], Awaitable[None]]


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Connection:
    """One peer's persistent channel, identified by an opaque id."""

    def __init__(self, send: SendFunc, peer: Optional[str] = None):
        self.id = uuid.uuid4().hex
        self.peer = peer or "?"
        self.state = ConnectionState.CONNECTING
        self._send = send

    async def send(self, text: str):
        await self._send(text)

    def __repr__(self):
        return f"<Connection {self.id[:8]} {self.peer} {self.state.value}>"


@dataclass(frozen=True)
class Connected:
    conn: Connection


@dataclass(frozen=True)
class MessageReceived:
    conn: Connection
    payload: Union[str, bytes]


@dataclass(frozen=True)
class Closed:
    conn: Connection


Event = Union[Connected, MessageReceived, Closed]


class ConnectionRegistry:
    def __init__(self):
        self._members: Dict[str, Connection] = {}
        self.lock = asyncio.Lock()

    async def add(self, conn: Connection):
        async with self.lock:
            self._members[conn.id] = conn

    async def remove(self, conn: Connection) -> bool:
        async with self.lock:
            return self._members.pop(conn.id, None) is not None

    async def snapshot(self) -> List[Connection]:
        async with self.lock:
            return list(self._members.values())

    async def for_each_except(self, conn: Connection, fn: Callable[[Connection], Awaitable[None]]) -> list:
        """
        Await fn(peer) for every member other than conn.

        Members are read under the lock, the calls run outside it and
        concurrently. Returns one result per peer; exceptions are returned,
        not raised.
        """
        peers = [c for c in await self.snapshot() if c.id != conn.id]
        if not peers:
            return []
        results = await asyncio.gather(*[fn(p) for p in peers], return_exceptions=True)
        return list(zip(peers, results))

    async def clear(self) -> List[Connection]:
        async with self.lock:
            dropped = list(self._members.values())
            self._members.clear()
            return dropped

    def __contains__(self, conn):
        return conn.id in self._members

    def __len__(self):
        return len(self._members)


class RelayEngine:
    def __init__(self, registry: Optional[ConnectionRegistry] = None):
        self.registry = registry if registry is not None else ConnectionRegistry()

    async def handle(self, event: Event):
        if isinstance(event, Connected):
            await self.on_connect(event.conn)
        elif isinstance(event, MessageReceived):
            await self.on_message(event.conn, event.payload)
        elif isinstance(event, Closed):
            await self.on_close(event.conn)
        else:
            raise TypeError(f"unknown relay event: {event!r}")

    async def consume(self, events: AsyncIterator[Event]):
        """
        Drive the engine from one connection's event stream.

        Close-handling always runs once the stream ends, however it ends.
        """
        conn = None
        try:
            async for event in events:
                conn = event.conn
                await self.handle(event)
        finally:
            if conn is not None:
                await self.on_close(conn)

    async def on_connect(self, conn: Connection):
        if conn.state is ConnectionState.CLOSED:
            log.debug("Ignoring connect for closed connection %r", conn)
            return
        conn.state = ConnectionState.OPEN
        await self.registry.add(conn)
        log.info("New connection! %s (%d connected)", conn.peer, len(self.registry))

    async def on_message(self, conn: Connection, payload):
        if not isinstance(payload, str):
            log.debug("Dropping non-text frame from %s", conn.peer)
            return
        if conn not in self.registry:
            # close raced this message
            log.debug("Dropping message from unregistered connection %r", conn)
            return

        log.debug("<- %s", payload)

        async def forward(peer):
            log.debug("-> %s %s", peer.peer, payload)
            await peer.send(payload)

        for peer, result in await self.registry.for_each_except(conn, forward):
            if isinstance(result, BaseException):
                log.warning("Send to %s failed: %r", peer.peer, result)

    async def on_close(self, conn: Connection):
        conn.state = ConnectionState.CLOSED
        if await self.registry.remove(conn):
            log.info("Discarding connection! %s (%d connected)", conn.peer, len(self.registry))

    async def aclose(self):
        dropped = await self.registry.clear()
        for conn in dropped:
            conn.state = ConnectionState.CLOSED
        if dropped:
            log.info("Relay shutting down, dropped %d connection(s)", len(dropped))
