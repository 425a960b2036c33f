"""
MODULE OVERVIEW:
The production channel: long polling against the talkgadget gateway.

WHAT IS HAPPENING HERE:
Opening a channel takes three requests before any message can flow.
  1. `initialize()` GETs `/talkgadget/d` and scrapes the gateway's own client
     and session ids out of a `chat.WcsDataClient(...)` call in the returned
     HTML/script page.
  2. `fetch_sid()` POSTs to the bind endpoint and reads the protocol `SID`
     out of a quasi-JSON reply.
  3. `connect()` POSTs a `connect-add-client` control message.
After that `_poll()` keeps a long poll open forever: wait the current backoff,
GET the bind endpoint with `RID=rpc`, decode packets as they stream in.

Every bind request carries a fresh `RID` (see `build_bind_url`), so a URL is
built exactly once per request.
"""
import ast
import asyncio
import re
import warnings
from typing import Awaitable, Callable

import httpx
from loguru import logger

from gae_channel.client.base_client import Channel
from gae_channel.client.packet_decoder import decode_packets
from gae_channel.shared import quasi_json
from gae_channel.shared.config import Settings
from gae_channel.shared.errors import (
    DecodeError,
    MalformedParamError,
    ParamCountMismatchError,
    ReauthRequiredError,
    SessionStateError,
    SetupNotFoundError,
    SIDExtractionError,
    TokenMismatchError,
)
from gae_channel.shared.models import Backoff, ChannelConfig, ChannelSession, CrossPageConfig, join_path
from gae_channel.shared.tokens import rand_letters

# Compiled once, read-only afterwards.
SETUP_CALL = re.compile(r"chat\.WcsDataClient\(([^)]+)\)", re.MULTILINE | re.DOTALL)
SETUP_PARAM_COUNT = 7
C_ESCAPES = frozenset("abfnrtv\\'\"xuU01234567")

PROTOCOL_VERSION = "8"
CLIENT_VERSION = "1"
REAUTH_STATUSES = (httpx.codes.BAD_REQUEST, httpx.codes.UNAUTHORIZED)


def unquote(literal: str) -> str:
    """
    Unquotes one quoted string literal such as `"abc\\x41"`. Only C-style
    escapes are accepted; triple quotes, adjacent literals and Python-only
    escapes like `\\N{...}` are rejected.
    """
    quote = literal[:1]
    if len(literal) < 2 or quote not in ("\"", "'") or literal[-1] != quote:
        raise MalformedParamError(f"{literal[:40]!r} is not a quoted string")
    if literal.startswith(quote * 3):
        raise MalformedParamError(f"{literal[:40]!r} is triple quoted")

    chars = iter(literal[1:-1])
    for c in chars:
        if c == "\\":
            escaped = next(chars, "")
            if escaped not in C_ESCAPES:
                raise MalformedParamError(f"invalid escape \\{escaped} in {literal[:40]!r}")
        elif c == quote or c == "\n":
            raise MalformedParamError(f"unescaped {c!r} inside {literal[:40]!r}")

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            value = ast.literal_eval(literal)
    except (ValueError, SyntaxError, Warning) as e:
        raise MalformedParamError(f"failed to unquote {literal[:40]!r}: {e}") from e
    if not isinstance(value, str):
        raise MalformedParamError(f"{literal[:40]!r} is not a string literal")
    return value


def extract_setup_params(page: str) -> list[str]:
    """
    Pulls the argument list out of the `chat.WcsDataClient(...)` call in the
    bootstrap page. The arguments are quoted strings, one per line.
    """
    match = SETUP_CALL.search(page)
    if match is None:
        raise SetupNotFoundError("failed to find setup call")

    params = []
    for i, line in enumerate(match.group(1).split("\n")):
        line = line.strip().rstrip(",")
        if not line:
            continue
        try:
            params.append(unquote(line))
        except MalformedParamError as e:
            raise MalformedParamError(f"failed to unquote line {i}: {e}") from e

    if len(params) != SETUP_PARAM_COUNT:
        raise ParamCountMismatchError(len(params), SETUP_PARAM_COUNT)
    return params


def extract_sid(raw: bytes) -> str:
    """Reads the SID out of a `[[_, ['c', sid]]]` bind reply."""
    reply = quasi_json.parse(raw)
    pair = reply.at(0).at(1)
    key, value = pair.at(0).as_str(), pair.at(1).as_str()
    if key is None or value is None:
        raise SIDExtractionError(f"unable to extract sid from {raw[:200]!r}")
    if key != "c":
        raise SIDExtractionError(f"item 0 key = {key!r}, want 'c'")
    return value


def build_bind_url(session: ChannelSession, extra: dict[str, str] | None = None) -> httpx.URL:
    """
    Builds a bind URL from the session state. `extra` wins over the defaults
    for the same key. Consumes one RID.
    """
    params = {
        "VER": PROTOCOL_VERSION,
        "RID": str(session.next_rid()),
        "token": session.token,
        "gsessionid": session.gateway_session_id,
        "clid": session.gateway_client_id,
        "prop": "data",
        "zx": rand_letters(12),
        "t": "1",
    }
    params.update(extra or {})
    if session.sid:
        params["SID"] = session.sid
    return httpx.URL(f"https://{session.talk_host}{join_path(session.talk_path, 'dch/bind')}", params=params)


class ProdChannel(Channel):
    protocol_name: str = "prod"

    def __init__(
        self,
        config: ChannelConfig,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(config, settings, http_client)
        self.talk_host = self.settings.TALK_HOST
        self.talk_path = self.settings.TALK_PATH
        self.session: ChannelSession | None = None
        self._sleep = sleep

    def new_session(self) -> ChannelSession:
        return ChannelSession(
            talk_host=self.talk_host,
            talk_path=self.talk_path,
            client_id=self.config.client_id,
            token=self.config.token,
            backoff=Backoff(base_s=self.settings.BACKOFF_BASE_S, max_s=self.settings.BACKOFF_MAX_S),
        )

    def _current(self) -> ChannelSession:
        if self.session is None:
            raise SessionStateError("no session; stream() has not started")
        return self.session

    def bind_url(self, extra: dict[str, str] | None = None) -> httpx.URL:
        return build_bind_url(self._current(), extra)

    async def _run(self, output: asyncio.Queue) -> None:
        self.session = self.new_session()
        await self._emit_status("BOOTSTRAPPING")
        await self.initialize()
        await self.fetch_sid()
        await self.connect()
        await self._emit_status("POLLING")
        await self._poll(output)

    async def initialize(self) -> None:
        session = self._current()
        xpc = CrossPageConfig.for_channel(self.config, self.talk_host, self.talk_path)
        url = httpx.URL(
            f"https://{self.talk_host}{join_path(self.talk_path, 'd')}",
            params={"token": session.token, "xpc": xpc.model_dump_json()},
        )
        response = await self.client.get(url)

        params = extract_setup_params(response.text)
        if params[6] != session.token:
            raise TokenMismatchError(f"wcs token = {params[6]!r}, want {session.token!r}")
        session.gateway_client_id = params[2]
        session.gateway_session_id = params[3]
        logger.info(
            f"protocol=prod client_id={self.config.client_id} event=registered "
            f"gsessionid={session.gateway_session_id} clid={session.gateway_client_id}"
        )

    async def fetch_sid(self) -> None:
        session = self._current()
        url = self.bind_url({"CVER": CLIENT_VERSION})
        response = await self.client.post(url, data={"count": "0"})
        session.assign_sid(extract_sid(response.content))
        logger.info(f"protocol=prod client_id={self.config.client_id} event=sid sid={session.sid}")

    async def connect(self) -> None:
        session = self._current()
        url = self.bind_url({"CVER": CLIENT_VERSION, "AID": str(session.mid)})
        form = {
            "count": "1",
            "ofs": "0",
            "req0_m": '["connect-add-client"]',
            "req0_c": session.gateway_client_id,
            "req0__sc": "c",
        }
        response = await self.client.post(url, data=form)
        logger.info(f"protocol=prod client_id={self.config.client_id} event=connected status={response.status_code}")

    async def _poll(self, output: asyncio.Queue) -> None:
        session = self._current()
        backoff = session.backoff

        while True:
            if self._stop.is_set():
                logger.info(f"protocol=prod client_id={self.config.client_id} event=stopped")
                return

            delay = backoff.advance()
            logger.debug(f"protocol=prod client_id={self.config.client_id} event=wait delay={delay:.2f}s")
            await self._sleep(delay)

            url = self.bind_url({
                "CI": "0",
                "AID": str(session.mid),
                "TYPE": "xmlhttp",
                "RID": "rpc",
            })
            if await self._poll_once(url, output):
                backoff.reset()

    async def _poll_once(self, url: httpx.URL, output: asyncio.Queue) -> int:
        """
        One long poll. Returns the number of delivered messages; raises
        ReauthRequiredError on 400/401 and lets transport errors through.
        """
        session = self._current()
        delivered = 0

        async def deliver(message: str) -> None:
            nonlocal delivered
            await self.deliver(output, message)
            delivered += 1

        logger.debug(f"protocol=prod client_id={self.config.client_id} event=poll rid={session.rid - 1} aid={session.mid}")
        try:
            async with self.client.stream("GET", url) as response:
                if not response.is_success:
                    body = await response.aread()
                    self.stats["poll_errors"] += 1
                    logger.warning(
                        f"protocol=prod client_id={self.config.client_id} event=poll_error "
                        f"status={response.status_code} body={body[:200]!r}"
                    )
                    if response.status_code in REAUTH_STATUSES:
                        raise ReauthRequiredError(response.status_code)
                    return 0

                try:
                    await decode_packets(response.aiter_bytes(), session, deliver)
                except DecodeError as e:
                    # The rest of this body is dropped; the next poll starts clean.
                    self.stats["decode_errors"] += 1
                    logger.warning(f"protocol=prod client_id={self.config.client_id} event=decode_error error={e}")
        except httpx.TransportError as e:
            logger.error(f"protocol=prod client_id={self.config.client_id} event=poll_failed error={e!r}")
            raise

        if not delivered:
            self.stats["empty_polls"] += 1
        return delivered

    async def _disconnect(self) -> None:
        session = self.session
        if session is None or not session.sid:
            return
        url = self.bind_url({"TYPE": "terminate"})
        try:
            response = await self.client.get(url)
            logger.info(f"protocol=prod client_id={self.config.client_id} event=disconnect status={response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"protocol=prod client_id={self.config.client_id} event=disconnect_failed error={e!r}")
