# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Change-feed watcher.

One loop per watched collection:

    STOPPED -> STARTING -> WATCHING -> (ERROR -> RESUBSCRIBING -> STARTING) ...

STARTING checks that the feed is supported and aborts the loop (back to
STOPPED) when it is not. Any stream error moves to ERROR, waits the retry
delay in RESUBSCRIBING and starts again; there is no retry limit. Only
close() ends a healthy loop.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Protocol

from app.core.config import settings
from app.core.exceptions import StreamFailure
from app.services.change_feed.events import WATCHED_COLLECTIONS, ChangeEvent

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Awaitable[Any]]


class WatcherState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    WATCHING = "watching"
    ERROR = "error"
    RESUBSCRIBING = "resubscribing"


class ChangeFeed(Protocol):
    async def supports_change_feed(self) -> bool: ...

    async def open(self, collection: str) -> AsyncIterator[ChangeEvent]: ...


class CollectionWatcher:
    def __init__(
        self,
        collection: str,
        feed: ChangeFeed,
        handler: ChangeHandler,
        retry_delay: float,
    ):
        self.collection = collection
        self.feed = feed
        self.handler = handler
        self.retry_delay = retry_delay
        self.state = WatcherState.STOPPED
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None
        self._stream: Optional[Any] = None

    def _transition(self, state: WatcherState) -> None:
        if state != self.state:
            logger.debug(f"[ChangeFeed] {self.collection}: {self.state.value} -> {state.value}")
        self.state = state

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(
            self._run(), name=f"change-feed-{self.collection}"
        )

    async def _run(self) -> None:
        while True:
            self._transition(WatcherState.STARTING)
            self.attempts += 1
            try:
                if not await self.feed.supports_change_feed():
                    logger.error(
                        f"[ChangeFeed] Change feed unsupported, not watching {self.collection}"
                    )
                    self._transition(WatcherState.STOPPED)
                    return
                self._stream = await self.feed.open(self.collection)
                self._transition(WatcherState.WATCHING)
                logger.info(f"[ChangeFeed] Watching {self.collection}")
                async for change in self._stream:
                    await self._dispatch(change)
                raise StreamFailure(f"{self.collection} stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._transition(WatcherState.ERROR)
                logger.error(
                    f"[ChangeFeed] {self.collection} stream error: {e}; "
                    f"resubscribing in {self.retry_delay}s"
                )
            finally:
                await self._close_stream()

            self._transition(WatcherState.RESUBSCRIBING)
            await asyncio.sleep(self.retry_delay)

    async def _dispatch(self, change: ChangeEvent) -> None:
        """Handler failures are per event; they never restart the stream."""
        try:
            await self.handler(change)
        except Exception as e:
            logger.error(
                f"[ChangeFeed] Handler failed for {change.collection} "
                f"{change.operation_type.value} {change.document_id}: {e}",
                exc_info=True,
            )

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None or not hasattr(stream, "aclose"):
            return
        try:
            await stream.aclose()
        except Exception as e:
            logger.warning(f"[ChangeFeed] Error closing {self.collection} stream: {e}")

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_stream()
        self._transition(WatcherState.STOPPED)


class ChangeFeedWatcher:
    """Watches every collection and routes their events to one handler."""

    def __init__(
        self,
        feed: ChangeFeed,
        handler: ChangeHandler,
        collections: Iterable[str] = WATCHED_COLLECTIONS,
        retry_delay: Optional[float] = None,
    ):
        delay = (
            retry_delay
            if retry_delay is not None
            else settings.CHANGE_FEED_RETRY_DELAY_SECONDS
        )
        self.watchers = {
            name: CollectionWatcher(name, feed, handler, delay) for name in collections
        }
        self._closed = False

    @property
    def states(self) -> dict[str, WatcherState]:
        return {name: w.state for name, w in self.watchers.items()}

    def start(self) -> None:
        self._closed = False
        for watcher in self.watchers.values():
            watcher.start()
        logger.info(f"[ChangeFeed] Started watchers: {', '.join(self.watchers)}")

    async def close(self) -> None:
        """Stop every collection watcher. Calling it again is a no-op."""
        if self._closed:
            return
        self._closed = True
        await asyncio.gather(*(w.close() for w in self.watchers.values()))
        logger.info("[ChangeFeed] Watchers closed")
