"""
MODULE OVERVIEW:
The long-poll body decoder.

WHAT IS HAPPENING HERE:
A poll response is a sequence of packets, each a decimal byte count on its own
line followed by exactly that many bytes of quasi-JSON:

    32
    [[4,["c",["x",["ae","hello"]]]]]

Every packet is an array of `[message_id, body]` pairs. The message id moves
the session's `mid` forward (never back); the body is only handed to the application when
it matches `["c", [_, ["ae", payload]]]`. Any other shape is a message kind we
do not understand and is skipped without complaint.

We read the body as it arrives (the gateway keeps the response open), so a
message is delivered as soon as its packet is complete.
"""
from typing import AsyncIterator, Awaitable, Callable

from loguru import logger

from gae_channel.shared import quasi_json
from gae_channel.shared.errors import FramingError
from gae_channel.shared.models import ChannelSession
from gae_channel.shared.quasi_json import Value

class PacketReader:
    """Line and fixed-size reads on top of an async stream of byte chunks."""

    def __init__(self, chunks: AsyncIterator[bytes]):
        self._chunks = chunks.__aiter__()
        self._buffer = bytearray()
        self._eof = False

    async def _fill(self) -> bool:
        if self._eof:
            return False
        try:
            chunk = await anext(self._chunks)
        except StopAsyncIteration:
            self._eof = True
            return False
        self._buffer.extend(chunk)
        return True

    async def readline(self) -> bytes | None:
        """Returns the next line including its newline, or None at end of stream."""
        while True:
            end = self._buffer.find(b"\n")
            if end >= 0:
                line = bytes(self._buffer[:end + 1])
                del self._buffer[:end + 1]
                return line
            if not await self._fill():
                # A trailing fragment without newline is not a packet header
                return None

    async def readexactly(self, size: int) -> bytes:
        while len(self._buffer) < size:
            if not await self._fill():
                raise FramingError(f"reading packet: wanted {size} bytes, stream ended after {len(self._buffer)}")
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data


def extract_payload(body: Value) -> str | None:
    """
    Returns the application payload of a message body, or None when the body
    is not a `["c", [_, ["ae", payload]]]` chain.
    """
    if not body.at(0).is_tag("c"):
        return None
    inner = body.at(1)
    if len(inner) < 2:
        return None
    typed = inner.at(1)
    if len(typed) < 2 or not typed.at(0).is_tag("ae"):
        return None
    return typed.at(1).as_str()


async def decode_packets(
    chunks: AsyncIterator[bytes],
    session: ChannelSession,
    deliver: Callable[[str], Awaitable[None]],
) -> int:
    """
    Decodes packets until the stream ends and returns how many messages were
    delivered. Raises FramingError for a bad length header or a truncated
    packet and DecodeError for a packet that is not a quasi-JSON array;
    messages delivered before the failure stay delivered.
    """
    reader = PacketReader(chunks)
    delivered = 0

    while True:
        line = await reader.readline()
        if line is None:
            return delivered

        header = line.strip()
        # Blank lines between packets are tolerated rather than treated as bad sizes
        if not header:
            continue
        if not header.isdigit():
            raise FramingError(f"size {header[:40]!r} is not a valid number")

        body = await reader.readexactly(int(header))
        packet = quasi_json.parse(body)
        logger.debug(f"protocol=prod event=packet size={len(body)} messages={len(packet)}")

        for pair in packet:
            if len(pair) != 2:
                continue

            message_id = pair.at(0).as_int()
            if message_id is None:
                logger.debug(f"protocol=prod event=skip reason=non_numeric_message_id value={pair.at(0)!r}")
            else:
                session.observe_mid(message_id)

            payload = extract_payload(pair.at(1))
            if payload is None:
                continue

            logger.debug(f"protocol=prod event=message mid={session.mid} size={len(payload)}")
            await deliver(payload)
            delivered += 1
