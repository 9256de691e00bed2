"""
Line sources for device logs.

Each source turns one backend (syslog relay, native debugger, managed runtime
event streams, vendor remote console) into async iterators of decoded text
lines. The aggregator opens the sources it needs and pumps their iterators.

Handles for the debugger, runtime and console are supplied later through
``attach`` since they may not exist when the session starts.
"""

import asyncio
import base64
import binascii
import inspect
import logging
from typing import AsyncIterator, List, NamedTuple

import regex

from multiline import MultilineReassembler
from source_classifier import SourceKind
from vis_decoder import decode_syslog

logger = logging.getLogger(__name__)


class LogLine(NamedTuple):
    """A decoded line and the source that produced it."""
    text: str
    source: SourceKind


class ManagedRuntimeRPCError(Exception):
    """Raised by a managed runtime handle when a stream request is rejected."""


class IDeviceSyslogLauncher:
    """Starts `idevicesyslog` for a device."""

    def __init__(self, executable: str = 'idevicesyslog'):
        self.executable = executable

    def command(self, device_id: str, is_wirelessly_connected: bool) -> List[str]:
        cmd = [self.executable, '-u', device_id]
        if is_wirelessly_connected:
            cmd.append('--network')
        return cmd

    async def start_logger(self, device_id: str, is_wirelessly_connected: bool):
        cmd = self.command(device_id, is_wirelessly_connected)
        logger.debug("Running command: %s", ' '.join(cmd))
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )


async def _read_lines(reader) -> AsyncIterator[str]:
    """Split a byte stream into UTF-8 lines without line terminators."""
    while True:
        raw = await reader.readline()
        if not raw:
            return
        yield raw.decode('utf-8', errors='replace').rstrip('\r\n')


class LineSource:
    """Base class for a device log source.

    Subclasses implement `open`, returning the line iterators to pump. An
    empty list means the source has nothing to contribute.
    """

    kind: SourceKind
    # Whether a clean end of this source closes the aggregated output.
    closes_output_when_done = False

    async def open(self) -> List[AsyncIterator[str]]:
        raise NotImplementedError

    def stop(self) -> None:
        pass

    async def wait_closed(self) -> None:
        pass


class SystemLogSource(LineSource):
    """Device syslog relay, filtered down to lines from the tracked app."""

    kind = SourceKind.SYSTEM_LOG

    def __init__(self, launcher, device_id: str, is_wirelessly_connected: bool, runner_pattern):
        self.launcher = launcher
        self.device_id = device_id
        self.is_wirelessly_connected = is_wirelessly_connected
        self.runner_pattern = runner_pattern
        self.process = None

    async def open(self) -> List[AsyncIterator[str]]:
        if self.process is not None:
            return []
        try:
            process = await self.launcher.start_logger(self.device_id, self.is_wirelessly_connected)
        except OSError as e:
            logger.warning("Could not start syslog for %s: %s", self.device_id, e)
            return []
        self.process = process
        return [self._app_lines(process.stdout), self._app_lines(process.stderr)]

    async def _app_lines(self, reader) -> AsyncIterator[str]:
        # Each pipe tracks its own multiline state.
        ready: List[str] = []
        handler = MultilineReassembler(self.runner_pattern, lambda line: ready.append(decode_syslog(line)))
        async for line in _read_lines(reader):
            handler(line)
            while ready:
                yield ready.pop(0)

    def stop(self) -> None:
        process = self.process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    async def wait_closed(self) -> None:
        """Wait for the killed syslog process to exit."""
        process = self.process
        if process is not None:
            await process.wait()


class NativeDebuggerSource(LineSource):
    """Console output relayed by an attached native debugger.

    The debugger handle provides `log_lines`, `debugger_attached` and
    `detach()`.
    """

    kind = SourceKind.NATIVE_DEBUGGER
    closes_output_when_done = True

    # Logging from native code is prefixed by timestamp and process metadata:
    # 2020-09-15 19:15:10.931434-0700 Runner[541:226276] Did finish launching.
    # 2020-09-15 19:15:10.931434-0700 Runner[541:226276] [Category] Did finish launching.
    # Logging from managed code has no prefix.
    DEBUGGER_LOGGING_PATTERN = regex.compile(r'^\S* \S* \S*\[[0-9:]*] (.*)')

    def __init__(self):
        self.debugger = None

    def attach(self, debugger) -> None:
        self.debugger = debugger

    @property
    def debugger_attached(self) -> bool:
        return bool(self.debugger is not None and self.debugger.debugger_attached)

    def strip_metadata(self, line: str) -> str:
        """Strip off the logging metadata (leave the category), or echo the line."""
        match = self.DEBUGGER_LOGGING_PATTERN.match(line)
        return match.group(1) if match else line

    async def open(self) -> List[AsyncIterator[str]]:
        if self.debugger is None:
            return []
        return [self._debugger_lines(self.debugger)]

    async def _debugger_lines(self, debugger) -> AsyncIterator[str]:
        async for line in debugger.log_lines:
            yield self.strip_metadata(line)

    def stop(self) -> None:
        if self.debugger is None:
            return
        result = self.debugger.detach()
        if inspect.isawaitable(result):
            asyncio.ensure_future(result)


def process_runtime_message(event) -> str:
    """Decode the base64 payload of a runtime stdout/stderr event."""
    message = base64.b64decode(event.bytes).decode('utf-8')
    # The runtime appends a trailing newline.
    if message.endswith('\n'):
        return message[:-1]
    return message


class ManagedRuntimeSource(LineSource):
    """Stdout and stderr event streams of the managed runtime.

    The runtime handle provides `stream_listen(stream_id)`, `stdout_events`
    and `stderr_events`.
    """

    kind = SourceKind.MANAGED_RUNTIME

    def __init__(self):
        self.runtime = None
        self._listening = False

    def attach(self, runtime) -> None:
        if runtime is not self.runtime:
            # A reconnected runtime needs its own stream subscriptions.
            self._listening = False
        self.runtime = runtime

    @property
    def connected(self) -> bool:
        return self.runtime is not None

    async def open(self) -> List[AsyncIterator[str]]:
        runtime = self.runtime
        if runtime is None or self._listening:
            return []
        self._listening = True
        # Logging events are only published while the Debug stream is listened to.
        debug_listen = asyncio.ensure_future(runtime.stream_listen('Debug'))
        debug_listen.add_done_callback(_ignore_rpc_error)
        results = await asyncio.gather(
            runtime.stream_listen('Stdout'),
            runtime.stream_listen('Stderr'),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, ManagedRuntimeRPCError):
                # Already subscribed.
                logger.debug("Runtime stream already listened to: %s", result)
            elif isinstance(result, BaseException):
                raise result
        return [self._messages(runtime.stdout_events), self._messages(runtime.stderr_events)]

    async def _messages(self, events) -> AsyncIterator[str]:
        async for event in events:
            try:
                message = process_runtime_message(event)
            except (binascii.Error, UnicodeDecodeError, TypeError) as e:
                logger.debug("Dropping undecodable runtime event: %s", e)
                continue
            if message:
                yield message


def _ignore_rpc_error(future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug("Debug stream listen failed: %s", error)


class RemoteConsoleSource(LineSource):
    """Vendor console for devices on the modern device-management stack."""

    kind = SourceKind.REMOTE_CONSOLE
    closes_output_when_done = True

    def __init__(self):
        self.console = None

    def attach(self, console) -> None:
        self.console = console

    async def open(self) -> List[AsyncIterator[str]]:
        if self.console is None:
            return []
        return [self._console_lines(self.console)]

    async def _console_lines(self, console) -> AsyncIterator[str]:
        async for line in console.log_lines:
            yield line
