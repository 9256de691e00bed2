"""
Aggregated device log stream for a running iOS application.

Combines the syslog relay, the native debugger, the managed runtime and the
vendor remote console into one broadcast stream of lines. One source is
primary and another may act as fallback; duplicate app lines that reach the
output through both are suppressed.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional

from broadcast import BroadcastStream
from log_sources import (
    IDeviceSyslogLauncher,
    LineSource,
    LogLine,
    ManagedRuntimeSource,
    NativeDebuggerSource,
    RemoteConsoleSource,
    SystemLogSource,
)
from multiline import runner_line_pattern
from source_classifier import SourceKind, SourceSelection, classify

logger = logging.getLogger(__name__)

# Lines written by the app through print() carry this prefix.
FLUTTER_LOG_PREFIX = 'flutter:'


class SessionState(Enum):
    IDLE = 'idle'
    ACTIVE = 'active'
    DISPOSED = 'disposed'


class DeviceLogAggregator:
    """Reads the logs of one app running on one iOS device.

    The sources start lazily when the first listener attaches to `log_lines`
    and are torn down when the last listener cancels or `dispose` is called.
    """

    def __init__(
        self,
        device_id: str,
        app_name: str,
        os_major_version: int,
        *,
        is_core_device: bool = False,
        is_wirelessly_connected: bool = False,
        using_ci_system: bool = False,
        toolchain_major_version: Optional[int] = None,
        syslog_launcher=None,
    ):
        if not device_id:
            raise ValueError("device_id is required")
        if os_major_version < 0:
            raise ValueError(f"Invalid OS major version: {os_major_version}")

        app_name = app_name.replace('.app', '')
        if not app_name:
            raise ValueError("app_name is required")

        self.device_id = device_id
        self.app_name = app_name
        self.os_major_version = os_major_version
        self.is_core_device = is_core_device
        self.is_wirelessly_connected = is_wirelessly_connected
        self.using_ci_system = using_ci_system
        self.toolchain_major_version = toolchain_major_version

        self._syslog_source = SystemLogSource(
            syslog_launcher or IDeviceSyslogLauncher(),
            device_id,
            is_wirelessly_connected,
            runner_line_pattern(self.app_name),
        )
        self._debugger_source = NativeDebuggerSource()
        self._runtime_source = ManagedRuntimeSource()
        self._console_source = RemoteConsoleSource()

        self._lines = BroadcastStream(on_listen=self._start_loggers, on_cancel=self.dispose)
        self._tasks: List[asyncio.Future] = []
        self._closing: Optional[asyncio.Task] = None
        self.state = SessionState.IDLE

        # Messages prefixed with "flutter:" already emitted from the fallback source.
        self._fallback_flutter_messages: Dict[str, None] = {}
        # Set once a "flutter:" message arrived from the primary source.
        self.primary_source_flutter_log_received = False

    @property
    def log_lines(self) -> BroadcastStream:
        return self._lines

    @property
    def log_sources(self) -> SourceSelection:
        """Current primary and fallback source.

        Recomputed on every access since debugger attachment and runtime
        connection change during a session.
        """
        return classify(
            is_managed_device=self.is_core_device,
            is_wirelessly_connected=self.is_wirelessly_connected,
            os_major_version=self.os_major_version,
            native_debugger_attached=self._debugger_source.debugger_attached,
            managed_runtime_connected=self._runtime_source.connected,
            using_ci_system=self.using_ci_system,
            toolchain_major_version=self.toolchain_major_version,
        )

    @property
    def use_syslog_logging(self) -> bool:
        return self.log_sources.uses(SourceKind.SYSTEM_LOG)

    @property
    def use_native_debugger_logging(self) -> bool:
        return self.log_sources.uses(SourceKind.NATIVE_DEBUGGER)

    @property
    def use_managed_runtime_logging(self) -> bool:
        """Whether the managed runtime is a source. Only works once the runtime is connected."""
        return self.log_sources.uses(SourceKind.MANAGED_RUNTIME)

    @property
    def use_remote_console_logging(self) -> bool:
        return self.log_sources.uses(SourceKind.REMOTE_CONSOLE)

    @property
    def syslog_process(self):
        return self._syslog_source.process

    def add_line(self, text: str, source: SourceKind) -> None:
        """Publish `text` from `source` unless it is excluded as a duplicate."""
        self._publish(LogLine(text, source))

    def _publish(self, line: LogLine) -> None:
        # Sources may still deliver after the output was closed.
        if self._lines.is_closed:
            return
        if self._exclude_log(line.text, line.source):
            return
        self._lines.add(line.text)

    def _exclude_log(self, message: str, source: SourceKind) -> bool:
        selection = self.log_sources

        # Without a fallback there is nothing to de-duplicate.
        if selection.fallback is None:
            return False

        if source == selection.primary:
            if not self.primary_source_flutter_log_received and message.startswith(FLUTTER_LOG_PREFIX):
                self.primary_source_flutter_log_received = True

            # The fallback was quicker and already emitted this message.
            if message in self._fallback_flutter_messages:
                del self._fallback_flutter_messages[message]
                return True
            return False

        # The primary source is working, ignore the fallback from now on.
        if self.primary_source_flutter_log_received:
            return True

        # Other sources prefix non-app messages differently, which makes
        # duplicate matching unreliable. Only app messages are taken.
        if not message.startswith(FLUTTER_LOG_PREFIX):
            return True

        self._fallback_flutter_messages[message] = None
        return False

    def _start_loggers(self) -> None:
        if self.state is not SessionState.IDLE:
            return
        # Raises before the state changes when no event loop is running.
        asyncio.get_running_loop()
        self.state = SessionState.ACTIVE
        logger.info("Starting device log session for %s on %s (sources: %s)",
                    self.app_name, self.device_id, _describe(self.log_sources))
        # syslog is the only source that runs independent of an app process.
        self._spawn(self.listen_to_syslog())

    async def listen_to_syslog(self) -> None:
        if not self.use_syslog_logging:
            return
        await self._start_source(self._syslog_source)

    async def listen_to_native_debugger(self, debugger) -> None:
        """Forward the console output of an attached native debugger."""
        if not self.use_native_debugger_logging:
            return
        self._debugger_source.attach(debugger)
        await self._start_source(self._debugger_source)

    async def provide_managed_runtime(self, runtime) -> None:
        """Forward stdout/stderr of a connected managed runtime."""
        if not self.use_managed_runtime_logging:
            return
        self._runtime_source.attach(runtime)
        await self._start_source(self._runtime_source)

    async def listen_to_remote_console(self, console) -> None:
        if not self.use_remote_console_logging:
            return
        self._console_source.attach(console)
        await self._start_source(self._console_source)

    async def _start_source(self, source: LineSource) -> None:
        if self.state is SessionState.DISPOSED:
            return
        streams = await source.open()
        if self.state is SessionState.DISPOSED:
            source.stop()
            await source.wait_closed()
            return
        if not streams:
            logger.debug("%s source contributes no lines", source.kind.value)
        for stream in streams:
            self._spawn(self._pump(source, stream))

    async def _pump(self, source: LineSource, stream) -> None:
        try:
            async for text in stream:
                self._publish(LogLine(text, source.kind))
        except Exception as e:
            logger.debug("%s source failed: %s", source.kind.value, e)
            self._lines.add_error(e)
            self.dispose()
            return

        if source.closes_output_when_done:
            logger.debug("%s source finished, closing log stream", source.kind.value)
            self.dispose()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        task.add_done_callback(_log_task_error)
        self._tasks.append(task)

    def dispose(self) -> None:
        """Stop all sources and close the stream. Safe to call more than once."""
        if self.state is SessionState.DISPOSED:
            return
        self.state = SessionState.DISPOSED
        logger.info("Disposing device log session for %s on %s", self.app_name, self.device_id)

        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        self._tasks.clear()

        for source in (self._runtime_source, self._debugger_source,
                       self._syslog_source, self._console_source):
            source.stop()

        self._fallback_flutter_messages.clear()
        self.primary_source_flutter_log_received = False
        self._lines.close()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._closing = loop.create_task(self._syslog_source.wait_closed())
        self._closing.add_done_callback(_log_task_error)

    async def aclose(self) -> None:
        """Dispose the session and wait for the syslog process to exit."""
        self.dispose()
        if self._closing is not None:
            await self._closing


def _describe(selection: SourceSelection) -> str:
    if selection.fallback is None:
        return selection.primary.value
    return f"{selection.primary.value}, fallback {selection.fallback.value}"


def _log_task_error(task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Device log task failed: %s", error)
