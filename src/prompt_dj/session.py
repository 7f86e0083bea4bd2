"""Websocket session to the music generation backend."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable, Iterable, Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from .errors import BackendConnectionError, ProtocolError
from .prompts import WeightedPrompt
from .protocol import (
    ClosedMessage,
    ServerMessage,
    encode_playback_control,
    encode_prompts,
    encode_setup,
    parse_server_message,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[["Session", ServerMessage], Awaitable[None]]


class Session(Protocol):
    """The bidirectional backend connection as seen by the controller."""

    @property
    def closed(self) -> bool: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def stop(self) -> None: ...

    async def update_prompts(self, prompts: Iterable[WeightedPrompt]) -> None: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[MessageHandler], Awaitable[Session]]


def _with_api_key(url: str, api_key: str | None) -> str:
    if not api_key:
        return url
    parts = urlsplit(url)
    query = f"{parts.query}&" if parts.query else ""
    return urlunsplit(parts._replace(query=query + urlencode({"key": api_key})))


class WebSocketSession:
    """A live backend session.

    Inbound frames are read by a single task and handed to ``on_message`` one at
    a time, so message effects are applied in arrival order. Once :meth:`close`
    has been called no further messages are delivered.
    """

    def __init__(self, connection, *, on_message: MessageHandler) -> None:
        self._connection = connection
        self._on_message = on_message
        self._closing = False
        self._reader: asyncio.Task[None] | None = None

    @classmethod
    async def open(
        cls,
        on_message: MessageHandler,
        *,
        url: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 10.0,
    ) -> "WebSocketSession":
        try:
            connection = await websockets.connect(
                _with_api_key(url, api_key), max_size=None, open_timeout=timeout
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise BackendConnectionError(f"Unable to reach {url}: {exc}") from exc

        session = cls(connection, on_message=on_message)
        try:
            await session._send(encode_setup(model))
        except BackendConnectionError:
            with suppress(Exception):
                await connection.close()
            raise
        session._reader = asyncio.create_task(session._read_loop(), name="prompt-dj-session-reader")
        logger.info("Connected to %s (model %s)", url, model)
        return session

    @property
    def closed(self) -> bool:
        return self._closing

    async def _send(self, frame: str) -> None:
        if self._closing:
            raise BackendConnectionError("Session is closed")
        try:
            await self._connection.send(frame)
        except (OSError, WebSocketException) as exc:
            raise BackendConnectionError(f"Backend command failed: {exc}") from exc

    async def play(self) -> None:
        await self._send(encode_playback_control("PLAY"))

    async def pause(self) -> None:
        await self._send(encode_playback_control("PAUSE"))

    async def stop(self) -> None:
        await self._send(encode_playback_control("STOP"))

    async def update_prompts(self, prompts: Iterable[WeightedPrompt]) -> None:
        await self._send(encode_prompts(prompts))

    async def _read_loop(self) -> None:
        closed = ClosedMessage(clean=True)
        try:
            async for frame in self._connection:
                if self._closing:
                    return
                try:
                    message = parse_server_message(frame)
                except ProtocolError as exc:
                    logger.warning("Skipping malformed frame: %s", exc)
                    continue
                try:
                    await self._on_message(self, message)
                except Exception:
                    logger.exception("Message handler failed for %s", type(message).__name__)
        except ConnectionClosedOK as exc:
            closed = ClosedMessage(clean=True, reason=str(exc))
        except (ConnectionClosed, OSError) as exc:
            closed = ClosedMessage(clean=False, reason=str(exc))
        if self._closing:
            return
        self._closing = True
        logger.info("Session closed (clean=%s)", closed.clean)
        await self._on_message(self, closed)

    async def close(self) -> None:
        if self._closing and self._reader is None:
            return
        self._closing = True
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
        try:
            await self._connection.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("Ignoring error while closing session: %s", exc)


def websocket_session_factory(
    *, url: str, model: str, api_key: str | None = None, timeout: float = 10.0
) -> SessionFactory:
    async def _factory(on_message: MessageHandler) -> Session:
        return await WebSocketSession.open(on_message, url=url, model=model, api_key=api_key, timeout=timeout)

    return _factory
