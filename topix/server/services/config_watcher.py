"""Config file watcher.

Watches the directory of the config file with ``watchfiles``, waits for a
burst of events to settle, then reloads the file through the
``ConfigManager``. Only a document that passes validation reaches the
registered change handler; anything else keeps the previous configuration.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set, Tuple

from watchfiles import Change, awatch

from topix.server.exceptions import ConfigValidationError
from topix.server.services.config_document import ConfigDocument
from topix.server.services.config_manager import ConfigManager

logger = logging.getLogger(__name__)

ConfigChangeHandler = Callable[[ConfigDocument], Awaitable[None]]


class ConfigWatcher:
    """Reloads the config file when it changes on disk.

    Example:
        >>> watcher = ConfigWatcher(manager, on_change=apply_config)
        >>> await watcher.start()
        >>> ...
        >>> await watcher.stop()
    """

    def __init__(
        self,
        manager: ConfigManager,
        on_change: ConfigChangeHandler,
        debounce_ms: int = 500,
        force_polling: bool = False,
        poll_delay_ms: int = 100,
    ):
        """Initialize config watcher.

        Args:
            manager: Config manager to reload through
            on_change: Coroutine called with each validated document
            debounce_ms: Quiet window after the last event before reloading
            force_polling: Poll for changes instead of using OS notifications
            poll_delay_ms: Poll interval when polling
        """
        self.manager = manager
        self.on_change = on_change
        self.debounce = debounce_ms / 1000
        self.force_polling = force_polling
        self.poll_delay_ms = poll_delay_ms

        self._stop_event: Optional[asyncio.Event] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Event] = None
        self._reload_lock: Optional[asyncio.Lock] = None
        self._baseline: Optional[Tuple[int, int]] = None

    @property
    def path(self) -> Path:
        return self.manager.path

    def is_watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    async def start(self) -> None:
        """Start watching. Returns once the watcher is active."""
        if self.is_watching():
            logger.warning("Config watcher is already running")
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._stop_event = asyncio.Event()
        self._ready = asyncio.Event()
        self._reload_lock = asyncio.Lock()
        self._baseline = self._file_state()
        self._watch_task = asyncio.create_task(self._watch())
        await self._ready.wait()
        logger.info(f"Watching config file for changes: {self.path}")

    async def stop(self) -> None:
        """Stop watching and drop any pending reload."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

        if self._watch_task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._watch_task, timeout=5.0)
        except asyncio.TimeoutError:
            self._watch_task.cancel()
            logger.warning("Config watcher did not stop in time, cancelled")
        except Exception as e:
            logger.error(f"Config watcher failed: {e}")
        finally:
            self._watch_task = None
        # Let a reload that is already being applied finish
        async with self._reload_lock:
            pass
        logger.info("Stopped watching config file")

    def _is_config_file(self, change: Change, path: str) -> bool:
        return Path(path).name == self.path.name

    async def _watch(self) -> None:
        changes_iter = awatch(
            self.path.parent,
            watch_filter=self._is_config_file,
            stop_event=self._stop_event,
            force_polling=self.force_polling,
            poll_delay_ms=self.poll_delay_ms,
            debounce=100,
            step=20,
        ).__aiter__()
        next_changes = asyncio.ensure_future(changes_iter.__anext__())
        try:
            # One loop turn lets awatch build its notifier and take the first snapshot
            await asyncio.sleep(0)
            self._ready.set()
            if self._file_state() != self._baseline:
                logger.info("Config file changed while the watcher was starting")
                self._handle_changes(set())

            while True:
                try:
                    changes = await next_changes
                except StopAsyncIteration:
                    break
                self._handle_changes(changes)
                next_changes = asyncio.ensure_future(changes_iter.__anext__())
        except Exception as e:
            logger.error(f"Config watcher error: {e}", exc_info=True)
        finally:
            if not next_changes.done():
                next_changes.cancel()
            self._ready.set()

    def _file_state(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def _handle_changes(self, changes: Set[Tuple[Change, str]]) -> None:
        kinds = {change for change, _ in changes}
        if kinds == {Change.deleted} and not self.path.exists():
            logger.warning("Config file was deleted, using existing configuration")
            return

        # Restart the quiet window on every event
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.create_task(self._settle())

    async def _settle(self) -> None:
        await asyncio.sleep(self.debounce)
        # Past the quiet window: later events start a new window, never cancel this reload
        self._pending = None
        async with self._reload_lock:
            await self.process_change()

    async def process_change(self) -> bool:
        """Reload, validate and hand the new document to the change handler.

        Returns:
            True if the change handler ran
        """
        if not self.path.exists():
            logger.warning("Config file was deleted, using existing configuration")
            return False

        logger.info("Config file changed, reloading...")
        try:
            document = self.manager.reload()
        except ConfigValidationError as e:
            logger.error("Config validation failed:")
            for error in e.errors:
                logger.error(f"   - {error}")
            logger.error("   Keeping existing configuration")
            return False
        except OSError as e:
            logger.error(f"Failed to read config file: {e}. Keeping existing configuration")
            return False

        try:
            await self.on_change(document)
        except Exception as e:
            logger.error(f"Failed to apply configuration change: {e}", exc_info=True)
            return False

        logger.info("Config reloaded successfully")
        return True
