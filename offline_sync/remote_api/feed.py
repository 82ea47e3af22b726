# offline_sync/remote_api/feed.py
# Description: In-process change-feed hub. Backends publish committed writes here; subscribers receive them
# asynchronously on the running event loop.
#
# Imports
import asyncio
import itertools
from typing import Dict, Optional, Tuple
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from .base import ChangeHandler, Unsubscribe
from .schemas import ChangeEvent, QueryFilter
#
#######################################################################################################################
#
# Functions:

class ChangeFeedHub:
    def __init__(self):
        self._subscribers: Dict[int, Tuple[str, ChangeHandler, Optional[QueryFilter]]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, resource: str, handler: ChangeHandler,
                  filter: Optional[QueryFilter] = None) -> Unsubscribe:
        channel_id = next(self._ids)
        self._subscribers[channel_id] = (resource, handler, filter)
        logger.debug(f"Change feed: channel {channel_id} subscribed to '{resource}' (filter={filter}).")

        def unsubscribe() -> None:
            if self._subscribers.pop(channel_id, None) is not None:
                logger.debug(f"Change feed: channel {channel_id} for '{resource}' removed.")

        return unsubscribe

    def subscriber_count(self, resource: Optional[str] = None) -> int:
        if resource is None:
            return len(self._subscribers)
        return sum(1 for res, _, _ in self._subscribers.values() if res == resource)

    def publish(self, event: ChangeEvent) -> int:
        """
        Schedules delivery of `event` to every matching subscriber.

        Delivery happens on the next turn of the running loop, so a publisher never
        runs subscriber code inline. Without a running loop, handlers are called directly.
        Returns the number of subscribers the event was dispatched to.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        dispatched = 0
        for channel_id, (resource, handler, filter) in list(self._subscribers.items()):
            if resource != event.resource:
                continue
            if filter is not None and not (filter.matches(event.record) or filter.matches(event.previous)):
                continue
            dispatched += 1
            if loop is not None:
                loop.call_soon(self._deliver, channel_id, handler, event)
            else:
                self._deliver(channel_id, handler, event)
        return dispatched

    def _deliver(self, channel_id: int, handler: ChangeHandler, event: ChangeEvent) -> None:
        # The channel may have been removed between scheduling and delivery.
        if channel_id not in self._subscribers:
            return
        try:
            handler(event)
        except Exception as e:
            logger.opt(exception=e).error(f"Change feed handler for channel {channel_id} raised: {e}")

#
# End of offline_sync/remote_api/feed.py
########################################################################################################################
