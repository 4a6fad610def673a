"""Server-sent event transport for streamed overviews and matching progress"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from fastapi.responses import StreamingResponse

from trainermatch.errors import MatchingError

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class EventStream:
    """
    One SSE connection.

    Producers push named events; the response body drains them through
    ``messages()``. Once the stream is closed or the client disconnects,
    every send is a no-op that returns False.
    """

    def __init__(self, heartbeat_interval: float = 15.0):
        self.heartbeat_interval = heartbeat_interval
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._active = True
        self._closed = False
        self.producer_task: asyncio.Task | None = None

    def is_active(self) -> bool:
        return self._active

    def send_event(self, event: str, data: Any) -> bool:
        if not self._active:
            return False
        self._queue.put_nowait(format_event(event, data))
        return True

    def send_comment(self, comment: str) -> bool:
        if not self._active:
            return False
        self._queue.put_nowait(f": {comment}\n\n")
        return True

    def send_error(self, message: str, **details: Any) -> bool:
        return self.send_event("error", {"message": message, **details})

    def close(self) -> None:
        """End the stream after queued messages are flushed"""
        if self._closed:
            return
        self._closed = True
        self._active = False
        self._queue.put_nowait(None)

    def disconnect(self) -> None:
        """The client went away: stop accepting events immediately"""
        if self._active:
            logger.info("SSE client disconnected")
        self._active = False
        self._closed = True

    async def messages(self) -> AsyncIterator[str]:
        while True:
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=self.heartbeat_interval)
            except asyncio.TimeoutError:
                if not self._active:
                    return
                yield ": heartbeat\n\n"
                continue
            if message is None:
                return
            yield message


def event_stream_response(
    producer: Callable[[EventStream], Awaitable[None]],
    heartbeat_interval: float = 15.0,
) -> StreamingResponse:
    """
    Run ``producer`` against a fresh EventStream and serve it as SSE.

    Producer errors become an ``error`` event. When the response body is
    closed early (client disconnect), the producer task is cancelled.
    """
    stream = EventStream(heartbeat_interval=heartbeat_interval)

    async def run_producer() -> None:
        try:
            await producer(stream)
        except MatchingError as e:
            logger.warning(f"Streaming request failed: {e.kind.value}: {e.message}")
            stream.send_error(e.user_message, kind=e.kind.value, retryable=e.retryable)
        except Exception as e:
            logger.error(f"Unexpected error in event stream: {e}", exc_info=True)
            stream.send_error("An unexpected error occurred. Please try again.")
        finally:
            stream.close()

    async def body() -> AsyncIterator[str]:
        stream.producer_task = asyncio.create_task(run_producer())
        try:
            async for message in stream.messages():
                yield message
        finally:
            if not stream.producer_task.done():
                stream.disconnect()
                stream.producer_task.cancel()

    return StreamingResponse(body(), media_type="text/event-stream", headers=SSE_HEADERS)
