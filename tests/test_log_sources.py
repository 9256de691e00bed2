#!/usr/bin/env python3
"""
Tests for the individual device log sources.
"""

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fakes import FakeLauncher, FakeProcess, FakeRuntime
from log_sources import (
    IDeviceSyslogLauncher,
    LogLine,
    ManagedRuntimeSource,
    NativeDebuggerSource,
    SystemLogSource,
    process_runtime_message,
)
from multiline import runner_line_pattern
from source_classifier import SourceKind


async def _collect(stream):
    return [line async for line in stream]


def test_syslog_command():
    launcher = IDeviceSyslogLauncher()
    assert launcher.command('abc', False) == ['idevicesyslog', '-u', 'abc']
    assert launcher.command('abc', True) == ['idevicesyslog', '-u', 'abc', '--network']
    custom = IDeviceSyslogLauncher('/opt/libimobiledevice/bin/idevicesyslog')
    assert custom.command('abc', False)[0] == '/opt/libimobiledevice/bin/idevicesyslog'


def test_syslog_source_tracks_pipes_separately():
    async def scenario():
        process = FakeProcess(
            stdout_lines=['Runner[1] <Notice>: out header', 'out continuation'],
            stderr_lines=['err without header', 'Runner[1] <Error>: err header'],
        )
        source = SystemLogSource(FakeLauncher(process), 'abc', False, runner_line_pattern('Runner'))
        stdout, stderr = await source.open()
        assert await _collect(stdout) == ['out header', 'out continuation']
        assert await _collect(stderr) == ['err header']

        # A second open does not start another process.
        assert await source.open() == []
        source.stop()
        assert process.killed

    asyncio.run(scenario())


def test_syslog_source_start_failure():
    async def scenario():
        source = SystemLogSource(FakeLauncher(error=PermissionError('denied')), 'abc', True,
                                 runner_line_pattern('Runner'))
        assert await source.open() == []
        assert source.process is None
        source.stop()

    asyncio.run(scenario())


def test_debugger_metadata_is_stripped():
    source = NativeDebuggerSource()
    assert source.strip_metadata(
        '2020-09-15 19:15:10.931434-0700 Runner[541:226276] Did finish launching.'
    ) == 'Did finish launching.'
    assert source.strip_metadata(
        '2020-09-15 19:15:10.931434-0700 Runner[541:226276] [Category] Did finish launching.'
    ) == '[Category] Did finish launching.'
    assert source.strip_metadata('flutter: hello') == 'flutter: hello'


def test_debugger_attachment():
    source = NativeDebuggerSource()
    assert not source.debugger_attached
    source.attach(SimpleNamespace(debugger_attached=False))
    assert not source.debugger_attached
    source.attach(SimpleNamespace(debugger_attached=True))
    assert source.debugger_attached


def test_process_runtime_message():
    assert process_runtime_message(SimpleNamespace(bytes='Zmx1dHRlcjogaGkK')) == 'flutter: hi'
    assert process_runtime_message(SimpleNamespace(bytes='YQoK')) == 'a\n'


def test_runtime_source_skips_bad_events():
    async def scenario():
        runtime = FakeRuntime()
        source = ManagedRuntimeSource()
        assert await source.open() == []
        source.attach(runtime)
        assert source.connected

        stdout, stderr = await source.open()
        runtime.stdout.add(SimpleNamespace(bytes='not base64!'))
        runtime.write_stdout('flutter: ok\n')
        runtime.stdout.finish()
        assert await _collect(stdout) == ['flutter: ok']

        # Only one subscription per runtime.
        assert await source.open() == []

        # A reconnected runtime is listened to again.
        reconnected = FakeRuntime()
        source.attach(reconnected)
        assert len(await source.open()) == 2
        assert sorted(reconnected.listened) == ['Debug', 'Stderr', 'Stdout']

    asyncio.run(scenario())


def test_log_line():
    line = LogLine('flutter: hi', SourceKind.MANAGED_RUNTIME)
    assert line.text == 'flutter: hi'
    assert line.source is SourceKind.MANAGED_RUNTIME


def test_runtime_source_tolerates_both_streams_rejected():
    async def scenario():
        runtime = FakeRuntime(already_subscribed=True)
        source = ManagedRuntimeSource()
        source.attach(runtime)
        assert len(await source.open()) == 2
        assert sorted(runtime.listened) == ['Debug', 'Stderr', 'Stdout']

    asyncio.run(scenario())


class _SleepLauncher(IDeviceSyslogLauncher):
    def command(self, device_id, is_wirelessly_connected):
        return ['sleep', '100']


def test_syslog_process_is_reaped_after_stop():
    async def scenario():
        source = SystemLogSource(_SleepLauncher(), 'abc', False, runner_line_pattern('Runner'))
        await source.open()
        assert source.process.returncode is None
        source.stop()
        await asyncio.wait_for(source.wait_closed(), timeout=5.0)
        assert source.process.returncode is not None

    asyncio.run(scenario())
