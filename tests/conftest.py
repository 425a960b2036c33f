import asyncio
from collections import deque

import httpx
import pytest
import pytest_asyncio

from gae_channel.client.prod_channel import ProdChannel
from gae_channel.shared.config import Settings
from gae_channel.shared.models import ChannelConfig

TOKEN = "channel-token-1"


def setup_page(*args: str) -> str:
    lines = ",\n".join(f'  "{a}"' for a in args)
    return (
        "<html><body><script>\n"
        "var client = new chat.WcsDataClient(\n"
        f"{lines}\n"
        ");\n"
        "client.init();\n"
        "</script></body></html>"
    )


def good_setup_page(token: str = TOKEN) -> str:
    return setup_page(
        "https://talkgadget.google.com/talkgadget/",
        "",
        "gclient-7",
        "gsession-9",
        "",
        "",
        token,
    )


def packet(body: str) -> bytes:
    raw = body.encode()
    return str(len(raw)).encode() + b"\n" + raw


def message_packet(mid: int, payload: str) -> bytes:
    return packet(f'[[{mid},["c",["",["ae","{payload}"]]]]]')


class FakeGateway:
    """
    Stands in for talkgadget. Poll replies are queued in `polls`; each entry is
    an httpx.Response, an exception to raise, or an async callable taking the
    request. Once the queue is empty every poll gets a 401.
    """

    def __init__(self, token: str = TOKEN):
        self.token = token
        self.setup_page = good_setup_page(token)
        self.sid_reply = b"11\n[[1,['c','abc123']]]"
        self.polls: deque = deque()
        self.terminate_error: Exception | None = None
        self.requests: list[httpx.Request] = []

    def of_kind(self, kind: str) -> list[httpx.Request]:
        return [r for r in self.requests if self.kind(r) == kind]

    @staticmethod
    def kind(request: httpx.Request) -> str:
        path = request.url.path
        params = request.url.params
        if path.endswith("/talkgadget/d"):
            return "setup"
        if request.method == "POST":
            return "connect" if "AID" in params else "sid"
        if params.get("TYPE") == "terminate":
            return "terminate"
        return "poll"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self.kind(request)
        if kind == "setup":
            return httpx.Response(200, text=self.setup_page)
        if kind == "sid":
            return httpx.Response(200, content=self.sid_reply)
        if kind == "terminate" and self.terminate_error is not None:
            raise self.terminate_error
        if kind in ("connect", "terminate"):
            return httpx.Response(200, content=b"")

        if not self.polls:
            return httpx.Response(401, text="Unknown SID")
        reply = self.polls.popleft()
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return await reply(request)
        return reply


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def settings():
    return Settings(_env_file=None, BACKOFF_BASE_S=0.1, BACKOFF_MAX_S=60.0, DEV_POLL_WAIT_S=0.5)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def http_client(gateway):
    client = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler))
    yield client
    await client.aclose()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def channel_config():
    return ChannelConfig(host="myapp.appspot.com", client_id="client-1", token=TOKEN)


@pytest.fixture
def prod_channel(channel_config, settings, http_client, sleeps):
    return ProdChannel(channel_config, settings, http_client, sleep=sleeps)
