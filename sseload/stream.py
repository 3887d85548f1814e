"""
Reader for the board's server-sent event stream.

The stream is line oriented:

    event: <type>            optional, defaults to "message"
    data: <json fragment>    one or more, joined with "\\n"
    <blank line>             dispatches the accumulated block

Other fields (id:, retry:, comments) are ignored. The `connected` handshake
carries the client id assigned by the server and is consumed here. Every
other block is decoded, keyed with `extract_key` and handed to the owning
user through a bounded queue; when the queue is full the event is dropped.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp

from .components.logs import configure_logging
from .components.metrics import DROPPED_STREAM_EVENTS

configure_logging()
logger = logging.getLogger(__name__)

HANDSHAKE_EVENT = "connected"
DEFAULT_EVENT = "message"

# event type -> JSON paths holding the correlation key, first string found wins
KEY_PATHS: dict[str, tuple[tuple[str, ...], ...]] = {
    "card_created": (("card", "id"), ("card_id",), ("cardId",)),
    "card_updated": (("card", "id"), ("card_id",), ("cardId",)),
    "vote_changed": (("card_id",), ("cardId",)),
    "cards_grouped": (("groupId",),),
    "card_grouped_onto": (("cardId",),),
}

STREAM_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=None)


class StreamError(Exception):
    pass


@dataclass(frozen=True)
class StreamEvent:
    type: str
    key: str
    received_at: float


def extract_key(event_type: str, data: dict) -> str:
    """
    Return the correlation key of a decoded event, or "" when the type is
    unknown or the key is missing.
    """
    for path in KEY_PATHS.get(event_type, ()):
        value = data
        for part in path:
            value = value.get(part) if isinstance(value, dict) else None

        if isinstance(value, str):
            return value

    return ""


class EventParser:
    """
    Incremental parser: feed it one line at a time, it returns a
    (type, data) pair whenever a blank line completes a block.
    """

    def __init__(self):
        self.event_type = ""
        self.data = ""

    def reset(self):
        self.event_type = ""
        self.data = ""

    def feed(self, line: str) -> Optional[tuple[str, str]]:
        line = line.strip()

        if not line:
            if not self.data:
                self.reset()
                return None

            block = (self.event_type or DEFAULT_EVENT, self.data)
            self.reset()
            return block

        if line.startswith("event:"):
            self.event_type = line[len("event:"):].strip()
        elif line.startswith("data:"):
            value = line[len("data:"):].strip()
            if self.data:
                self.data += "\n"
            self.data += value

        return None


class EventStream:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        board_id: str,
        events: asyncio.Queue,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.host = url.rstrip("/")
        self.board_id = board_id
        self.events = events
        self.clock = clock

        self.client_id = ""
        self.dropped = 0

        self._connected = asyncio.Event()
        self._response: Optional[aiohttp.ClientResponse] = None
        self._task: Optional[asyncio.Task] = None

    async def connect(self):
        """
        Open the stream and start reading it in a background task.
        """
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}

        try:
            response = await self.session.get(
                f"{self.host}/api/sse",
                params={"boardId": self.board_id},
                headers=headers,
                timeout=STREAM_TIMEOUT,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise StreamError(f"stream connection failed: {err}") from err

        if response.status != 200:
            response.close()
            raise StreamError(f"stream connection failed: status {response.status}")

        self._response = response
        self._task = asyncio.create_task(self._read(response))

    async def _read(self, response: aiohttp.ClientResponse):
        parser = EventParser()

        try:
            async for raw in response.content:
                block = parser.feed(raw.decode("utf-8", errors="replace"))
                if block is not None:
                    self.handle_event(*block)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
            logger.debug("Stream read error", {"board": self.board_id, "error": str(err)})
        finally:
            response.close()

        logger.debug("Stream closed", {"board": self.board_id, "client": self.client_id})

    def handle_event(self, event_type: str, data: str) -> Optional[StreamEvent]:
        """
        Decode one dispatched block. Returns the event forwarded to the user,
        or None if it was consumed, undecodable, unkeyed or dropped.
        """
        logger.debug("Stream event", {"type": event_type, "data": data})

        try:
            payload = json.loads(data)
        except ValueError as err:
            logger.debug("Failed to parse stream data", {"type": event_type, "error": str(err)})
            return None

        if event_type == HANDSHAKE_EVENT:
            client_id = payload.get("clientId") if isinstance(payload, dict) else None
            if isinstance(client_id, str) and client_id:
                self.client_id = client_id
                self._connected.set()
                logger.debug("Stream connected", {"client": self.client_id})
            return None

        if not isinstance(payload, dict):
            return None

        if isinstance(payload.get("type"), str) and payload["type"]:
            event_type = payload["type"]

        key = extract_key(event_type, payload)
        if not key:
            return None

        event = StreamEvent(event_type, key, self.clock())
        try:
            self.events.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            DROPPED_STREAM_EVENTS.inc()
            logger.debug("User queue full, dropping stream event", {"type": event_type, "key": key})
            return None

        return event

    async def wait_for_connection(self, timeout: float) -> str:
        """
        Wait for the handshake and return the client id assigned by the server.
        """
        if self._task is None:
            raise StreamError("stream not connected")

        waiter = asyncio.ensure_future(self._connected.wait())
        done, _ = await asyncio.wait(
            {waiter, self._task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )

        if waiter not in done:
            waiter.cancel()
            if self._task in done:
                raise StreamError("stream closed before handshake")
            raise StreamError("timeout waiting for stream handshake")

        return self.client_id

    async def close(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        if self._response is not None:
            self._response.close()
