"""
Relay Connection

WebSocket client used by both the primary and the remotes. Registers on
every (re)connect and retries on a fixed delay. Nothing is queued while
disconnected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from panelsync.errors import MessageValidationError, NotConnectedError
from panelsync.protocol.messages import ClientRegisterMessage, Message, WireMessage, parse_message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message], Awaitable[None]]
LifecycleHandler = Callable[[], Awaitable[None]]


class RelayConnection:
    """A registered connection to the relay."""

    def __init__(
        self,
        url: str,
        client_type: str,
        *,
        reconnect_delay: float = 3.0,
        open_timeout: float = 10.0,
    ):
        self.url = url
        self.client_type = client_type
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout

        self._websocket: ClientConnection | None = None
        self._stopping = asyncio.Event()
        self.connect_attempts = 0

        # Callbacks
        self._on_message: list[MessageHandler] = []
        self._on_open: list[LifecycleHandler] = []
        self._on_close: list[LifecycleHandler] = []

    def add_message_handler(self, handler: MessageHandler) -> None:
        self._on_message.append(handler)

    def add_open_callback(self, callback: LifecycleHandler) -> None:
        """Called after the socket opens and ``client.register`` was sent."""
        self._on_open.append(callback)

    def add_close_callback(self, callback: LifecycleHandler) -> None:
        self._on_close.append(callback)

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None and self._websocket.state is State.OPEN

    async def connect(self) -> bool:
        """
        Open the socket and register.

        Returns:
            True if connected and the register message was sent
        """
        self.connect_attempts += 1
        try:
            self._websocket = await connect(self.url, open_timeout=self.open_timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.warning(f"Could not connect to {self.url}: {e}")
            self._websocket = None
            return False

        try:
            await self.send_or_raise(ClientRegisterMessage(client_type=self.client_type))
        except NotConnectedError as e:
            logger.warning(f"Registration with {self.url} failed: {e.message}")
            await self._drop()
            return False

        logger.info(f"Connected to {self.url} as {self.client_type}")
        for callback in self._on_open:
            await callback()
        return True

    async def send_or_raise(self, message: WireMessage) -> None:
        """Send ``message``.

        Raises:
            NotConnectedError: If the socket is not open or closes mid-send
        """
        if not self.is_connected:
            raise NotConnectedError(f"Not connected, cannot send {message.type}", {"type": message.type})
        try:
            await self._websocket.send(message.to_json())
        except ConnectionClosed as e:
            raise NotConnectedError(
                f"Send of {message.type} failed: {e}", {"type": message.type}
            ) from e

    async def send(self, message: WireMessage) -> bool:
        """Send if the socket is open. Returns False instead of raising."""
        try:
            await self.send_or_raise(message)
        except NotConnectedError as e:
            logger.debug(e.message)
            return False
        return True

    async def listen(self) -> None:
        """Dispatch inbound messages until the socket closes."""
        if self._websocket is None:
            return
        try:
            async for raw in self._websocket:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {e}")
        finally:
            await self._drop()

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = parse_message(raw)
        except MessageValidationError as e:
            logger.warning(f"Dropping inbound message: {e.message}")
            return
        for handler in self._on_message:
            await handler(message)

    async def _drop(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is None:
            return
        try:
            await websocket.close()
        except (OSError, WebSocketException):
            pass  # already closed
        for callback in self._on_close:
            await callback()

    async def run_forever(self) -> None:
        """Connect, listen, and reconnect after ``reconnect_delay`` until closed."""
        self._stopping.clear()
        while not self._stopping.is_set():
            if await self.connect():
                await self.listen()
            if self._stopping.is_set():
                break
            logger.info(f"Reconnecting in {self.reconnect_delay:.0f}s")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.reconnect_delay)
            except asyncio.TimeoutError:
                pass  # delay elapsed, retry

    async def close(self) -> None:
        self._stopping.set()
        await self._drop()
        logger.info("Disconnected")
