import asyncio
from collections import deque

import httpx
import pytest
import pytest_asyncio

from gae_channel.client.dev_channel import DevChannel
from gae_channel.shared.models import ChannelConfig


class FakeDevServer:
    def __init__(self):
        self.polls: deque = deque()
        self.requests: list[httpx.Request] = []

    def commands(self) -> list[str]:
        return [r.url.params["command"] for r in self.requests]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.params["command"] != "poll":
            return httpx.Response(200, headers={"Server": "Development/1.0"})
        if not self.polls:
            raise httpx.ConnectError("dev server went away")
        reply = self.polls.popleft()
        if callable(reply):
            return await reply(request)
        return httpx.Response(200, content=reply)


@pytest.fixture
def server():
    return FakeDevServer()


@pytest_asyncio.fixture
async def dev_channel(server, settings, sleeps):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    config = ChannelConfig(host="localhost:8080", client_id="client-1", token="tok")
    yield DevChannel(config, settings, client, sleep=sleeps)
    await client.aclose()


@pytest.mark.asyncio
async def test_command_url(dev_channel):
    url = dev_channel.command_url("poll")
    assert str(url).startswith("http://localhost:8080/_ah/channel/dev?")
    assert url.params["command"] == "poll"
    assert url.params["channel"] == "tok"
    assert url.params["client"] == "client-1"


@pytest.mark.asyncio
async def test_stream_delivers_bodies_and_waits_on_empty_polls(dev_channel, server, sleeps):
    server.polls.extend([b"", b"hello", b"", b"world"])
    output = asyncio.Queue()

    with pytest.raises(httpx.ConnectError):
        await dev_channel.stream(output)

    assert [output.get_nowait(), output.get_nowait()] == ["hello", "world"]
    assert sleeps.delays == [0.5, 0.5]
    assert server.commands() == ["connect", "poll", "poll", "poll", "poll", "poll"]
    assert dev_channel.empty_polls == 2


@pytest.mark.asyncio
async def test_close_waits_for_poll_then_disconnects(dev_channel, server):
    poll_started = asyncio.Event()
    release = asyncio.Event()

    async def held_poll(request):
        poll_started.set()
        await release.wait()
        return httpx.Response(200, content=b"last")

    server.polls.append(held_poll)
    output = asyncio.Queue()
    stream_task = asyncio.create_task(dev_channel.stream(output))
    await asyncio.wait_for(poll_started.wait(), 1)

    close_task = asyncio.create_task(dev_channel.close())
    await asyncio.sleep(0.01)
    assert not close_task.done()

    release.set()
    await asyncio.wait_for(close_task, 1)
    await stream_task

    assert output.get_nowait() == "last"
    assert server.commands() == ["connect", "poll", "disconnect"]
