"""Broadcast messaging between the daemon and foreground instances.

Foreground instances connect to the daemon's Unix socket and exchange JSON
lines. Every outbound message goes to every client connected at the moment
it is sent; a client that connects later never sees it.
"""

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path

from .messages import Hello, InboundMessage, Message, encode_message, parse_message

logger = logging.getLogger(__name__)

# Messages buffered per client before the oldest are dropped
CLIENT_QUEUE_SIZE = 100

MessageHandler = Callable[["ClientConnection", InboundMessage], Awaitable[None]]


class ClientConnection:
    """One connected foreground instance."""

    def __init__(self, url: str = "") -> None:
        self.id = uuid.uuid4().hex
        self.url = url
        self._queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)

    def deliver(self, message: Message) -> None:
        """Queue a message without blocking, dropping the oldest if full."""
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning("Client %s is not reading, dropped %s", self.id[:8], dropped.type)
        self._queue.put_nowait(message)

    async def receive(self) -> Message:
        return await self._queue.get()

    def pending(self) -> list[Message]:
        """Drain and return everything queued so far."""
        messages = []
        while not self._queue.empty():
            messages.append(self._queue.get_nowait())
        return messages


class MessageBus:
    """In-process fan-out to connected clients."""

    def __init__(self) -> None:
        self._clients: dict[str, ClientConnection] = {}

    def connect(self, url: str = "") -> ClientConnection:
        client = ClientConnection(url)
        self._clients[client.id] = client
        logger.info("Client connected (%d total)", len(self._clients))
        return client

    def disconnect(self, client: ClientConnection) -> None:
        if self._clients.pop(client.id, None) is not None:
            logger.info("Client disconnected (%d remaining)", len(self._clients))

    def clients(self, url_prefix: str | None = None) -> list[ClientConnection]:
        """List connected clients, optionally only those under a URL."""
        clients = list(self._clients.values())
        if url_prefix is None:
            return clients
        return [c for c in clients if c.url and c.url.startswith(url_prefix)]

    def broadcast(self, message: Message) -> int:
        """Send a message to every connected client.

        Returns:
            Number of clients the message was queued for
        """
        clients = list(self._clients.values())
        for client in clients:
            client.deliver(message)
        logger.debug("Broadcast %s to %d clients", message.type, len(clients))
        return len(clients)

    def send(self, client: ClientConnection, message: Message) -> None:
        if client.id in self._clients:
            client.deliver(message)


class BusServer:
    """Serves a MessageBus over a Unix-domain socket as JSON lines."""

    def __init__(self, bus: MessageBus, socket_path: Path, handler: MessageHandler) -> None:
        self.bus = bus
        self.socket_path = socket_path
        self._handler = handler
        self._server: asyncio.Server | None = None

    async def start(self) -> None:
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        if self.socket_path.exists():
            # Left behind by a daemon that did not shut down cleanly
            self.socket_path.unlink()
        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=str(self.socket_path)
        )
        logger.info("Listening for clients on %s", self.socket_path)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        with contextlib.suppress(FileNotFoundError):
            self.socket_path.unlink()

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        client = self.bus.connect()
        sender = asyncio.create_task(self._pump(client, writer))
        try:
            while line := await reader.readline():
                await self._handle_line(client, line)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug("Client %s connection lost: %s", client.id[:8], e)
        finally:
            self.bus.disconnect(client)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()

    async def _handle_line(self, client: ClientConnection, line: bytes) -> None:
        if not line.strip():
            return
        try:
            message = parse_message(line)
        except ValueError as e:
            logger.warning("Ignoring invalid client message: %s", e)
            return

        if isinstance(message, Hello):
            client.url = message.url
        try:
            await self._handler(client, message)
        except Exception:
            logger.exception("Handling %s failed", message.type)

    async def _pump(self, client: ClientConnection, writer: asyncio.StreamWriter) -> None:
        """Write queued outbound messages to the socket."""
        try:
            while True:
                message = await client.receive()
                writer.write(encode_message(message))
                await writer.drain()
        except ConnectionError as e:
            logger.debug("Client %s stopped reading: %s", client.id[:8], e)


async def send_message(socket_path: Path, message: Message, timeout: float = 5.0) -> bool:
    """Deliver one message to a running daemon.

    Returns:
        True if the message was written to the socket
    """
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_unix_connection(str(socket_path)), timeout=timeout
        )
    except (OSError, TimeoutError) as e:
        logger.warning("Could not reach daemon at %s: %s", socket_path, e)
        return False

    try:
        writer.write(encode_message(message))
        await asyncio.wait_for(writer.drain(), timeout=timeout)
    finally:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()
    return True
