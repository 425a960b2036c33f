import asyncio
import random
from typing import Callable, Awaitable
from loguru import logger
from datetime import datetime, timezone

import httpx

from gae_channel.shared.errors import ChannelError

def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every channel calls this once in __init__.
    Keys: messages_delivered, empty_polls, poll_errors, decode_errors,
          reconnect_count, last_message_at, created_at.
    """
    return {
        "messages_delivered": 0,
        "empty_polls": 0,
        "poll_errors": 0,
        "decode_errors": 0,
        "reconnect_count": 0,
        "last_message_at": None,
        "created_at": datetime.now(timezone.utc).isoformat()
    }

# Failures that re-run a whole stream(). ChannelError (setup, reauth) never does.
RETRYABLE_ERRORS = (httpx.TransportError, ConnectionError, OSError)

async def with_reconnect(
    stream_fn: Callable[[], Awaitable[None]],
    stats: dict,
    base_delay_s: float = 1.0,
    max_delay_s: float = 32.0,
    max_attempts: int | None = None,
    client_id: str = "unknown",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """
    Re-runs `stream_fn` after transport failures with exponential backoff
    and 10% jitter. Returns when `stream_fn` returns normally (cancellation).
    Any other exception, and the last transport failure once `max_attempts`
    is exhausted, propagates.
    """
    attempt = 0
    while True:
        try:
            await stream_fn()
            return
        except ChannelError:
            raise
        except RETRYABLE_ERRORS as e:
            attempt += 1
            if max_attempts is not None and attempt >= max_attempts:
                logger.error(f"client_id={client_id} event=giving_up attempts={attempt} error={e!r}")
                raise
            delay = min(base_delay_s * (2 ** (attempt - 1)), max_delay_s)
            delay += random.uniform(0, delay * 0.1)
            stats["reconnect_count"] += 1
            logger.warning(
                f"client_id={client_id} event=reconnect attempt={attempt} "
                f"delay={delay:.2f}s error={e!r}"
            )
            await sleep(delay)

async def run_channel(
    channel,
    on_message: Callable[[str], Awaitable[None]],
    duration_s: float | None = None,
    retry: bool = False,
    queue_size: int = 100,
) -> None:
    """
    Streams `channel` into `on_message` until the stream ends or `duration_s`
    elapses, then closes the channel. The consumer keeps draining while
    close() waits, so a full queue cannot wedge the shutdown. A fatal stream
    error is re-raised after the channel is closed.
    """
    output: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)

    async def run_stream():
        if retry:
            await with_reconnect(
                lambda: channel.stream(output),
                channel.stats,
                base_delay_s=channel.settings.RETRY_BASE_DELAY_S,
                max_delay_s=channel.settings.RETRY_MAX_DELAY_S,
                client_id=channel.config.client_id,
            )
        else:
            await channel.stream(output)

    async def drain():
        while True:
            message = await output.get()
            await on_message(message)

    stream_task = asyncio.create_task(run_stream())
    drain_task = asyncio.create_task(drain())
    try:
        await asyncio.wait({stream_task}, timeout=duration_s)
    finally:
        await channel.close()
        # Only a retry sleep can still be pending once close() has returned
        if not stream_task.done():
            stream_task.cancel()
        await asyncio.gather(stream_task, return_exceptions=True)
        drain_task.cancel()
        try:
            await drain_task
        except asyncio.CancelledError:
            pass
        while not output.empty():
            await on_message(output.get_nowait())

    if not stream_task.cancelled():
        stream_task.result()
