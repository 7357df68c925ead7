"""Ordered channel of participant events coming from the RTC client."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator

from .sdk import RemoteUser, RtcClient

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    USER_PUBLISHED = "user-published"
    USER_JOINED = "user-joined"
    USER_UNPUBLISHED = "user-unpublished"


@dataclass(frozen=True, slots=True)
class ParticipantEvent:
    kind: EventKind
    user: RemoteUser
    media_type: str | None = None


_CLOSED = object()


class ParticipantEventChannel:
    """Queue SDK callbacks so one consumer sees them in delivery order.

    Closing the channel detaches the SDK listeners and ends iteration once
    already-queued events have been consumed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._client: RtcClient | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, client: RtcClient) -> None:
        self._client = client
        for kind in EventKind:
            client.on(kind.value, self._listener(kind))

    def _listener(self, kind: EventKind):
        def _handle(user: RemoteUser, media_type: str | None = None, *_rest: object) -> None:
            self.publish(ParticipantEvent(kind=kind, user=user, media_type=media_type))

        return _handle

    def publish(self, event: ParticipantEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s for uid %s after close", event.kind.value, event.user.uid)
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        client, self._client = self._client, None
        try:
            if client is not None:
                client.remove_all_listeners()
        finally:
            self._queue.put_nowait(_CLOSED)

    def task_done(self) -> None:
        self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""

        await self._queue.join()

    async def __aiter__(self) -> AsyncIterator[ParticipantEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                self._queue.task_done()
                return
            yield item  # type: ignore[misc]
