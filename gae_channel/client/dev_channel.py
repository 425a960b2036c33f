"""
MODULE OVERVIEW:
The development channel, used against a local App Engine dev server.

WHAT IS HAPPENING HERE:
The dev server speaks a much simpler protocol than production: plain GETs on
`/_ah/channel/dev` with `command=connect|poll|disconnect`. A poll returns the
pending message as the whole body, or an empty body when there is nothing;
on an empty body we wait `DEV_POLL_WAIT_S` before asking again.
"""
import asyncio
from typing import Awaitable, Callable

import httpx
from loguru import logger

from gae_channel.client.base_client import Channel
from gae_channel.shared.config import Settings
from gae_channel.shared.models import ChannelConfig, join_path

class DevChannel(Channel):
    protocol_name: str = "dev"

    def __init__(
        self,
        config: ChannelConfig,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(config, settings, http_client)
        self.poll_wait_s = self.settings.DEV_POLL_WAIT_S
        self._sleep = sleep

    def command_url(self, command: str) -> httpx.URL:
        return httpx.URL(
            f"http://{self.config.host}{join_path(self.config.channel_path, 'dev')}",
            params={"command": command, "channel": self.config.token, "client": self.config.client_id},
        )

    async def _run(self, output: asyncio.Queue) -> None:
        response = await self.client.get(self.command_url("connect"))
        logger.info(
            f"protocol=dev client_id={self.config.client_id} event=connected "
            f"status={response.status_code} server={response.headers.get('Server', '-')}"
        )
        await self._emit_status("POLLING")

        while not self._stop.is_set():
            response = await self.client.get(self.command_url("poll"))
            if response.content:
                await self.deliver(output, response.text)
            else:
                self.stats["empty_polls"] += 1
                await self._sleep(self.poll_wait_s)

        logger.info(f"protocol=dev client_id={self.config.client_id} event=stopped")

    async def _disconnect(self) -> None:
        try:
            response = await self.client.get(self.command_url("disconnect"))
            logger.info(f"protocol=dev client_id={self.config.client_id} event=disconnect status={response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"protocol=dev client_id={self.config.client_id} event=disconnect_failed error={e!r}")
