"""
MODULE OVERVIEW:
The contract every channel backend fulfils.

WHAT IS HAPPENING HERE:
A channel exposes exactly two coroutines. `stream(output)` runs until it is
cancelled (returns normally) or hits a fatal error (raises), putting every
decoded message on `output` in arrival order. `close()` asks the stream to
stop and waits until it has. Stopping is cooperative: a request in flight is
never interrupted, the loop only looks at the stop signal between requests.
"""
from abc import ABC, abstractmethod
import asyncio
from datetime import datetime, timezone
from typing import Callable, Awaitable

import httpx
from loguru import logger

from gae_channel.shared.client_utils import make_client_stats
from gae_channel.shared.config import Settings, settings as default_settings
from gae_channel.shared.errors import SessionStateError
from gae_channel.shared.models import ChannelConfig

def new_http_client(settings: Settings, **kwargs) -> httpx.AsyncClient:
    """The client a channel builds for itself when none is injected; follows redirects."""
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_S, follow_redirects=True, **kwargs)


class Channel(ABC):
    protocol_name: str = "unknown"

    def __init__(
        self,
        config: ChannelConfig,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.settings = settings or default_settings

        self._owns_client = http_client is None
        self.client = http_client or new_http_client(self.settings)

        self.on_status_change_callback: Callable[[str], Awaitable[None]] | None = None
        self.stats = make_client_stats()

        self._stop = asyncio.Event()
        self._done = asyncio.Event()
        self._running = False
        self._closed = False

    @property
    def messages_delivered(self): return self.stats["messages_delivered"]

    @property
    def empty_polls(self): return self.stats["empty_polls"]

    @property
    def reconnect_count(self): return self.stats["reconnect_count"]

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def set_status_callback(self, on_status_change):
        self.on_status_change_callback = on_status_change

    async def _emit_status(self, status: str):
        if self.on_status_change_callback:
            await self.on_status_change_callback(status)

    async def deliver(self, output: asyncio.Queue, message: str) -> None:
        # Blocks while the queue is full; a slow consumer stalls decoding here.
        await output.put(message)
        self.stats["messages_delivered"] += 1
        self.stats["last_message_at"] = datetime.now(timezone.utc).isoformat()

    async def stream(self, output: asyncio.Queue) -> None:
        if self._stop.is_set():
            return
        if self._running:
            raise SessionStateError("stream() is already running on this channel")

        self._running = True
        self._done.clear()
        logger.info(f"protocol={self.protocol_name} client_id={self.config.client_id} event=stream_start host={self.config.host}")
        try:
            await self._emit_status("CONNECTING")
            await self._run(output)
        finally:
            self._running = False
            self._done.set()
            logger.info(f"protocol={self.protocol_name} client_id={self.config.client_id} event=stream_end")
            await self._emit_status("CLOSED")

    async def close(self) -> None:
        """Stops the stream, waits for it to exit, then says goodbye to the server."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._running:
            await self._done.wait()
        try:
            await self._disconnect()
        finally:
            if self._owns_client:
                await self.client.aclose()

    @abstractmethod
    async def _run(self, output: asyncio.Queue) -> None:
        """Bootstrap and poll until stopped; the protocol lives here."""
        pass

    @abstractmethod
    async def _disconnect(self) -> None:
        """Best-effort goodbye sent after the stream has stopped."""
        pass
