# connectivity.py
# Description: Tracks online/offline transitions and drain activity, and publishes a tri-state status.
#
# Imports
import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional
#
# Third-Party Imports
from loguru import logger
#
#######################################################################################################################
#
# Functions:

@dataclass(frozen=True)
class ConnectivityState:
    is_online: bool = True
    is_syncing: bool = False
    last_sync: Optional[datetime] = None

    @property
    def label(self) -> str:
        if self.is_syncing:
            return "syncing"
        return "online" if self.is_online else "offline"


StatusListener = Callable[[ConnectivityState], None]
DrainCallback = Callable[[], Awaitable[Any]]
LinkProbe = Callable[[], Awaitable[bool]]


async def tcp_probe(host: str, port: int, timeout: float = 3.0) -> bool:
    """Returns True if a TCP connection to host:port can be opened within `timeout` seconds."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class ConnectivityMonitor:
    """
    Process-wide connectivity status.

    Only link-level signals (`set_online`, or a probe driven by `watch`) change `is_online`.
    A failed remote request never does. Regaining connectivity runs the drain callback;
    `is_syncing` doubles as the guard that keeps two drains from overlapping.
    """

    def __init__(self, initial_online: bool = True, drain_callback: Optional[DrainCallback] = None):
        self._state = ConnectivityState(is_online=initial_online)
        self._drain_callback = drain_callback
        self._listeners: List[StatusListener] = []

    # --- Status ---
    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state.is_online

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def last_sync(self) -> Optional[datetime]:
        return self._state.last_sync

    def set_drain_callback(self, callback: Optional[DrainCallback]) -> None:
        self._drain_callback = callback

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_state(self, **changes) -> None:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.opt(exception=e).error(f"Connectivity listener raised: {e}")

    # --- Transport signals ---
    async def set_online(self, online: bool) -> Any:
        """
        Applies a link-level connectivity signal.

        On an offline -> online transition the drain callback runs and its result is
        returned; in every other case this returns None.
        """
        was_online = self._state.is_online
        if online == was_online:
            return None
        self._set_state(is_online=online)
        if not online:
            logger.warning("Connectivity lost. Changes will be stored locally.")
            return None
        logger.info("Connectivity restored. Synchronizing offline changes...")
        return await self.sync()

    async def sync(self) -> Any:
        """Runs one drain cycle. No-op while offline or while a drain is already running."""
        if not self._state.is_online:
            logger.debug("Sync requested while offline; ignoring.")
            return None
        if self._state.is_syncing:
            logger.debug("Sync requested while a drain is running; ignoring.")
            return None
        if self._drain_callback is None:
            self._set_state(last_sync=datetime.now(timezone.utc))
            return None

        self._set_state(is_syncing=True)
        completed = False
        try:
            result = await self._drain_callback()
            completed = True
        except Exception as e:
            # The drain reports its own failures; anything reaching here is unexpected.
            logger.opt(exception=e).error(f"Drain callback raised unexpectedly: {e}")
            return None
        finally:
            # Also reached on cancellation, so a later reconnect can drain again.
            if completed:
                self._set_state(is_syncing=False, last_sync=datetime.now(timezone.utc))
            else:
                self._set_state(is_syncing=False)
        logger.info("Synchronization finished.")
        return result

    async def watch(self, probe: LinkProbe, interval: float = 15.0) -> None:
        """
        Polls `probe` every `interval` seconds and feeds the result into `set_online`.
        Runs until cancelled.
        """
        logger.info(f"Connectivity watcher started (interval={interval}s).")
        try:
            while True:
                try:
                    reachable = await probe()
                except Exception as e:
                    logger.warning(f"Connectivity probe raised, treating link as down: {e}")
                    reachable = False
                await self.set_online(bool(reachable))
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Connectivity watcher stopped.")
            raise

#
# End of connectivity.py
#######################################################################################################################
