"""Service lifecycle controller.

This module wires the Topix components together and manages their
lifecycle: HTTP listener, plugin runtime, config watcher and scheduler.
The service state is mirrored to a PID marker and a JSON status marker in
the data directory so other processes (the CLI) can query or stop it.
"""

import asyncio
import errno
import json
import logging
import os
import signal
import socket
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional

import uvicorn

from topix import __version__
from topix.server.app import create_app
from topix.server.config import Settings
from topix.server.exceptions import PortInUseError, ServiceAlreadyRunningError
from topix.server.plugins.registry import PluginRegistry
from topix.server.plugins.runtime import PluginRuntime
from topix.server.services.config_document import ConfigDocument
from topix.server.services.config_manager import ConfigManager
from topix.server.services.config_watcher import ConfigWatcher
from topix.server.services.importance import ImportanceScorer
from topix.server.services.llm_service import LLMService
from topix.server.services.scheduler_service import SchedulerService
from topix.server.store import HeadlineStore
from topix.vault import CredentialVault, KeyringBackend, StoreBackend

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Lifecycle states of the service."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the service manager."""

    def install_signal_handlers(self) -> None:
        pass

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def is_process_alive(pid: int) -> bool:
    """Check whether a process with the given PID exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


class ServiceManager:
    """Starts, stops and reports on the Topix service.

    Components are created by ``prepare()``; any of the store, registry or
    keyring implementation may be injected instead.

    Example:
        >>> manager = ServiceManager(Settings())
        >>> await manager.run_forever()
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[HeadlineStore] = None,
        registry: Optional[PluginRegistry] = None,
        keyring_implementation: Optional[Any] = None,
        use_keyring: bool = True,
    ):
        """Initialize service manager.

        Args:
            settings: Process settings
            store: Headline store to use (opened from settings when None)
            registry: Plugin registry to use (discovered when None)
            keyring_implementation: Keyring implementation for the vault
            use_keyring: Use the OS keyring as the primary credential backend
        """
        self.settings = settings
        self.store = store
        self.registry = registry
        self._keyring_implementation = keyring_implementation
        self._use_keyring = use_keyring

        self.config_manager: Optional[ConfigManager] = None
        self.vault: Optional[CredentialVault] = None
        self.llm: Optional[LLMService] = None
        self.scorer: Optional[ImportanceScorer] = None
        self.runtime: Optional[PluginRuntime] = None
        self.scheduler: Optional[SchedulerService] = None
        self.watcher: Optional[ConfigWatcher] = None

        self.state = ServiceState.STOPPED
        self.started_at: Optional[datetime] = None
        # Bound port; differs from settings.port when that is 0
        self.port = settings.port
        self._socket: Optional[socket.socket] = None
        self._server: Optional[_EmbeddedServer] = None
        self._server_task: Optional[asyncio.Task] = None
        self._signals_installed = False
        self._stopped: Optional[asyncio.Event] = None
        self._stop_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def prepare(self) -> None:
        """Create every component that was not injected. Idempotent."""
        if self.runtime is not None:
            return

        self.settings.ensure_data_dir()
        if self.store is None or self.store.closed:
            self.store = HeadlineStore(self.settings.database_url)
        if self.registry is None:
            self.registry = PluginRegistry(plugins_dir=self.settings.plugins_dir)
            self.registry.discover()

        self.config_manager = ConfigManager(self.settings.config_path)

        primary = None
        if self._use_keyring:
            primary = KeyringBackend(self.settings.keyring_service, self._keyring_implementation)
        self.vault = CredentialVault(StoreBackend(self.store), primary=primary)

        self.llm = LLMService(self.config_manager.get_llm_config)
        self.scorer = ImportanceScorer(self.llm, self.config_manager.get_importance_config)
        self.runtime = PluginRuntime(
            self.registry,
            self.store,
            vault=self.vault,
            scorer=self.scorer,
            stop_timeout=self.settings.stop_timeout_seconds,
        )
        self.scheduler = SchedulerService(self.runtime)
        self.watcher = ConfigWatcher(
            self.config_manager,
            on_change=self.apply_config,
            debounce_ms=self.settings.config_debounce_ms,
            force_polling=self.settings.watch_force_polling,
        )

    async def apply_config(self, document: ConfigDocument) -> None:
        """Apply a validated config document to the running service.

        Args:
            document: Newly loaded configuration
        """
        plan = await self.runtime.reload(document.plugin_runtime_configs())
        if self.scheduler.is_running:
            self.scheduler.apply_plan(plan)
        self.store.preferences.set_many(document.preferences())
        logger.info("Configuration applied")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self.state == ServiceState.RUNNING

    @property
    def uptime(self) -> float:
        if self.started_at is None:
            return 0.0
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()

    async def start(self) -> None:
        """Start the service.

        Raises:
            ServiceAlreadyRunningError: If running here or in another process
            PortInUseError: If the HTTP port cannot be bound
        """
        if self.state != ServiceState.STOPPED:
            raise ServiceAlreadyRunningError(f"Service is already {self.state.value}")
        other_pid = self._live_marker_pid()
        if other_pid is not None and other_pid != os.getpid():
            raise ServiceAlreadyRunningError(
                f"Service is already running (PID {other_pid}). Run 'topix stop' first."
            )

        self.state = ServiceState.STARTING
        self._stopped = asyncio.Event()
        logger.info(f"Starting {self.settings.app_name} v{__version__}")

        try:
            self._socket = self._bind_socket()
            self.port = self._socket.getsockname()[1]
            self.prepare()

            document = self.config_manager.document
            await self.runtime.initialize(document.plugin_runtime_configs())
            self.store.preferences.set_many(document.preferences())

            self.started_at = datetime.now(timezone.utc)
            self._write_markers(ServiceState.STARTING)
            self._install_signal_handlers()

            await self.watcher.start()
            self.scheduler.start(self.runtime.applied_configs())
            await self._start_http_server()
        except Exception as e:
            logger.error(f"Failed to start service: {e}", exc_info=not isinstance(e, PortInUseError))
            await self._teardown()
            raise

        self.state = ServiceState.RUNNING
        self._write_markers(ServiceState.RUNNING)
        logger.info(f"Service running at http://{self.settings.host}:{self.port}")

    async def run_forever(self) -> None:
        """Start the service and wait until it has been stopped."""
        await self.start()
        await self._stopped.wait()

    async def stop(self) -> bool:
        """Stop the service, in this process or the one named by the PID marker.

        Never raises.

        Returns:
            True if a running service was stopped
        """
        if self.state == ServiceState.STOPPED:
            return await self._stop_external()
        if self.state == ServiceState.STOPPING:
            if self._stopped is not None:
                await self._stopped.wait()
            return False

        try:
            self.state = ServiceState.STOPPING
            self._write_markers(ServiceState.STOPPING)
            logger.info("Stopping service...")
            await self._teardown()
            logger.info("Service stopped")
        except Exception as e:
            logger.error(f"Error while stopping service: {e}", exc_info=True)
        return True

    async def _teardown(self) -> None:
        """Stop every started component, in reverse start order."""
        await self._stop_http_server()
        if self.watcher is not None:
            await self.watcher.stop()
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.runtime is not None:
            await self.runtime.shutdown()
            self.store.close()
        self._remove_signal_handlers()
        self._remove_markers()

        # Components are rebuilt on the next start
        self.runtime = None
        self.state = ServiceState.STOPPED
        self.started_at = None
        if self._stopped is not None:
            self._stopped.set()

    async def _stop_external(self) -> bool:
        pid = self._read_pid()
        if pid is None:
            logger.info("Service is not running")
            return False
        if pid == os.getpid() or not is_process_alive(pid):
            logger.info(f"Removing stale markers for PID {pid}")
            self._remove_markers()
            return False

        logger.info(f"Sending SIGTERM to service (PID {pid})")
        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as e:
            logger.error(f"Failed to signal PID {pid}: {e}")
            return False

        deadline = time.monotonic() + self.settings.stop_timeout_seconds
        while time.monotonic() < deadline:
            if not is_process_alive(pid):
                break
            await asyncio.sleep(0.1)
        else:
            logger.warning(f"Service did not exit within {self.settings.stop_timeout_seconds}s, sending SIGKILL")
            try:
                os.kill(pid, signal.SIGKILL)
            except OSError as e:
                logger.error(f"Failed to kill PID {pid}: {e}")

        self._remove_markers()
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Get service status.

        Returns live state for an in-process service, otherwise the state
        recorded in the marker files. Markers left by a dead process are
        removed.

        Returns:
            Dictionary with ``state``, ``pid``, ``started_at``, ``uptime``
            and, in-process, plugin and scheduler details
        """
        if self.state != ServiceState.STOPPED:
            status = {
                "state": self.state.value,
                "pid": os.getpid(),
                "host": self.settings.host,
                "port": self.port,
                "version": __version__,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "uptime": self.uptime,
            }
            if self.runtime is not None:
                status["plugins"] = self.runtime.get_stats()
                status["scheduler"] = self.scheduler.get_status()
                status["keyring_available"] = self.vault.is_primary_available()
            return status

        pid = self._read_pid()
        if pid is None:
            return {"state": ServiceState.STOPPED.value, "pid": None}
        if not is_process_alive(pid):
            logger.info(f"Removing stale markers for PID {pid}")
            self._remove_markers()
            return {"state": ServiceState.STOPPED.value, "pid": None}

        status = self._read_status_marker()
        status["pid"] = pid
        status.setdefault("state", ServiceState.RUNNING.value)
        started_at = status.get("started_at")
        if started_at:
            started = datetime.fromisoformat(started_at)
            status["uptime"] = (datetime.now(timezone.utc) - started).total_seconds()
        return status

    # ------------------------------------------------------------------
    # HTTP listener
    # ------------------------------------------------------------------

    def _bind_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.settings.host, self.settings.port))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                raise PortInUseError(
                    f"Port {self.settings.port} is already in use. "
                    f"Stop the other process or set TOPIX_PORT to a free port."
                ) from e
            raise
        sock.set_inheritable(True)
        return sock

    async def _start_http_server(self) -> None:
        config = uvicorn.Config(
            create_app(self),
            log_config=None,
            lifespan="off",
            access_log=self.settings.debug,
        )
        self._server = _EmbeddedServer(config)
        self._server_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))
        while not self._server.started:
            if self._server_task.done():
                # serve() returned or raised before it started listening
                self._server_task.result()
                raise RuntimeError("HTTP server exited during startup")
            await asyncio.sleep(0.05)

    async def _stop_http_server(self) -> None:
        if self._server is not None and self._server_task is not None:
            self._server.should_exit = True
            try:
                await asyncio.wait_for(self._server_task, timeout=self.settings.stop_timeout_seconds)
            except asyncio.TimeoutError:
                self._server_task.cancel()
                logger.warning("HTTP server did not stop in time, cancelled")
            except Exception as e:
                logger.error(f"HTTP server failed: {e}")
        self._server = None
        self._server_task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._request_stop, sig)
            self._signals_installed = True
        except (NotImplementedError, RuntimeError) as e:
            # Not on the main thread, or not supported on this platform
            logger.debug(f"Signal handlers not installed: {e}")

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _request_stop(self, sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down")
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = asyncio.create_task(self.stop())

    # ------------------------------------------------------------------
    # Markers
    # ------------------------------------------------------------------

    def _write_markers(self, state: ServiceState) -> None:
        self.settings.pid_file.write_text(str(os.getpid()))
        marker = {
            "state": state.value,
            "pid": os.getpid(),
            "host": self.settings.host,
            "port": self.port,
            "version": __version__,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }
        self.settings.status_file.write_text(json.dumps(marker, indent=2))

    def _remove_markers(self) -> None:
        for path in (self.settings.pid_file, self.settings.status_file):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")

    def _read_pid(self) -> Optional[int]:
        try:
            return int(self.settings.pid_file.read_text().strip())
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning(f"Ignoring malformed PID file {self.settings.pid_file}")
            return None

    def _live_marker_pid(self) -> Optional[int]:
        pid = self._read_pid()
        if pid is None:
            return None
        if not is_process_alive(pid):
            logger.info(f"Removing stale markers for PID {pid}")
            self._remove_markers()
            return None
        return pid

    def _read_status_marker(self) -> Dict[str, Any]:
        try:
            return json.loads(self.settings.status_file.read_text())
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed status file {self.settings.status_file}")
            return {}
