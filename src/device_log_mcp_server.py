#!/usr/bin/env python3
"""
Device Log MCP Server

An MCP server that provides access to the aggregated console output of an app
running on a connected iOS device, for integration with Cursor and other AI
coding assistants.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Optional, Tuple

from dateutil import parser as date_parser
from mcp.server import Server
from mcp.types import TextContent, Tool

from device_log_aggregator import DeviceLogAggregator
from source_classifier import SourceKind

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("device-log-mcp-server")

MAX_RECENT_LINES = 1000


class DeviceLogMCPServer:
    """MCP Server for iOS device logs."""

    def __init__(self, syslog_launcher=None):
        self.server = Server("device-log-mcp")
        self.syslog_launcher = syslog_launcher
        self.aggregator: Optional[DeviceLogAggregator] = None
        self.recent_lines: Deque[Tuple[datetime, str]] = deque(maxlen=MAX_RECENT_LINES)
        self._subscription = None
        self._reader_task: Optional[asyncio.Task] = None

        # Setup MCP server handlers
        self._setup_handlers()

    def _setup_handlers(self):
        """Setup MCP server request handlers."""

        @self.server.list_tools()
        async def handle_list_tools() -> list[Tool]:
            """List available tools."""
            return [
                Tool(
                    name="start_device_log_session",
                    description="Start reading logs of an app running on a connected iOS device",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "device_id": {
                                "type": "string",
                                "description": "UDID of the device"
                            },
                            "app_name": {
                                "type": "string",
                                "description": "Name of the app bundle, e.g. 'Runner.app'"
                            },
                            "os_major_version": {
                                "type": "integer",
                                "description": "Major iOS version of the device"
                            },
                            "is_core_device": {
                                "type": "boolean",
                                "description": "Whether the device is reached through CoreDevice",
                                "default": False
                            },
                            "is_wirelessly_connected": {
                                "type": "boolean",
                                "description": "Whether the device is connected over the network",
                                "default": False
                            },
                            "using_ci_system": {
                                "type": "boolean",
                                "description": "Whether the session runs on a CI host",
                                "default": False
                            },
                            "toolchain_major_version": {
                                "type": "integer",
                                "description": "Optional major Xcode version"
                            }
                        },
                        "required": ["device_id", "app_name", "os_major_version"]
                    }
                ),
                Tool(
                    name="get_device_log_lines",
                    description="Get recent lines from the device log session",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "count": {
                                "type": "integer",
                                "description": "Number of recent lines to retrieve",
                                "default": 50
                            },
                            "filter_text": {
                                "type": "string",
                                "description": "Optional text to filter lines"
                            },
                            "since": {
                                "type": "string",
                                "description": "Optional ISO 8601 timestamp; only lines received after it"
                            }
                        }
                    }
                ),
                Tool(
                    name="get_log_sources",
                    description="Show which log sources the session currently uses",
                    inputSchema={
                        "type": "object",
                        "properties": {}
                    }
                ),
                Tool(
                    name="stop_device_log_session",
                    description="Stop the device log session",
                    inputSchema={
                        "type": "object",
                        "properties": {}
                    }
                ),
            ]

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""

            if name == "start_device_log_session":
                return await self._start_device_log_session(arguments)
            elif name == "get_device_log_lines":
                return await self._get_device_log_lines(arguments)
            elif name == "get_log_sources":
                return await self._get_log_sources(arguments)
            elif name == "stop_device_log_session":
                return await self._stop_device_log_session(arguments)
            else:
                raise ValueError(f"Unknown tool: {name}")

    async def _start_device_log_session(self, args: dict[str, Any]) -> list[TextContent]:
        """Start a new aggregated log session, replacing any running one."""
        device_id = args.get("device_id")
        app_name = args.get("app_name")
        os_major_version = args.get("os_major_version")

        if not device_id or not app_name or os_major_version is None:
            return [TextContent(
                type="text",
                text="Error: device_id, app_name and os_major_version are required"
            )]

        try:
            await self._stop_session()
            self.aggregator = DeviceLogAggregator(
                device_id,
                app_name,
                int(os_major_version),
                is_core_device=bool(args.get("is_core_device", False)),
                is_wirelessly_connected=bool(args.get("is_wirelessly_connected", False)),
                using_ci_system=bool(args.get("using_ci_system", False)),
                toolchain_major_version=args.get("toolchain_major_version"),
                syslog_launcher=self.syslog_launcher,
            )
            self.recent_lines.clear()
            self._subscription = self.aggregator.log_lines.listen()
            self._reader_task = asyncio.ensure_future(self._read_lines(self._subscription))

            logger.info(f"Started device log session for {app_name} on {device_id}")
            return [TextContent(
                type="text",
                text=f"Started device log session for {self.aggregator.app_name} on {device_id}. "
                     f"Sources: {self._format_sources()}"
            )]

        except Exception as e:
            return [TextContent(
                type="text",
                text=f"Error starting device log session: {str(e)}"
            )]

    async def _read_lines(self, subscription):
        try:
            async for line in subscription:
                self.recent_lines.append((datetime.now(timezone.utc), line))
        except Exception as e:
            logger.error(f"Device log stream failed: {e}")
            self.recent_lines.append((datetime.now(timezone.utc), f"Error: {e}"))

    async def _get_device_log_lines(self, args: dict[str, Any]) -> list[TextContent]:
        """Get recent lines from the session."""
        count = args.get("count", 50)
        filter_text = args.get("filter_text")
        since = args.get("since")

        try:
            lines = list(self.recent_lines)

            if since:
                cutoff = date_parser.isoparse(since)
                if cutoff.tzinfo is None:
                    cutoff = cutoff.replace(tzinfo=timezone.utc)
                lines = [(ts, line) for ts, line in lines if ts >= cutoff]

            # Filter by text
            if filter_text:
                lines = [(ts, line) for ts, line in lines if filter_text.lower() in line.lower()]

            lines = lines[-count:] if count > 0 else []

            if not lines:
                return [TextContent(
                    type="text",
                    text="No device log lines found matching criteria."
                )]

            result = []
            result.append(f"Recent device log lines ({len(lines)} entries):\n")
            for ts, line in lines:
                timestamp = ts.astimezone().strftime("%H:%M:%S.%f")[:-3]
                result.append(f"[{timestamp}] {line}")

            return [TextContent(
                type="text",
                text="\n".join(result)
            )]

        except Exception as e:
            return [TextContent(
                type="text",
                text=f"Error getting device log lines: {str(e)}"
            )]

    async def _get_log_sources(self, args: dict[str, Any]) -> list[TextContent]:
        """Describe the current source selection."""
        if self.aggregator is None:
            return [TextContent(
                type="text",
                text="No device log session is running."
            )]

        aggregator = self.aggregator
        active = {
            SourceKind.SYSTEM_LOG: aggregator.use_syslog_logging,
            SourceKind.NATIVE_DEBUGGER: aggregator.use_native_debugger_logging,
            SourceKind.MANAGED_RUNTIME: aggregator.use_managed_runtime_logging,
            SourceKind.REMOTE_CONSOLE: aggregator.use_remote_console_logging,
        }

        result = [f"Log sources for {aggregator.app_name} on {aggregator.device_id}:\n"]
        result.append(f"Session: {aggregator.state.value}")
        result.append(f"Sources: {self._format_sources()}")
        for kind, used in active.items():
            result.append(f"  • {kind.value}: {'active' if used else 'inactive'}")

        return [TextContent(
            type="text",
            text="\n".join(result)
        )]

    async def _stop_device_log_session(self, args: dict[str, Any]) -> list[TextContent]:
        """Stop the running session."""
        if self.aggregator is None:
            return [TextContent(
                type="text",
                text="No device log session is running."
            )]

        description = f"{self.aggregator.app_name} on {self.aggregator.device_id}"
        await self._stop_session()
        return [TextContent(
            type="text",
            text=f"Stopped device log session for {description}."
        )]

    def _format_sources(self) -> str:
        selection = self.aggregator.log_sources
        if selection.fallback is None:
            return f"primary {selection.primary.value}, no fallback"
        return f"primary {selection.primary.value}, fallback {selection.fallback.value}"

    async def _stop_session(self):
        if self._subscription is not None:
            # Cancelling the only listener disposes the session.
            self._subscription.cancel()
            self._subscription = None
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if self.aggregator is not None:
            aggregator = self.aggregator
            self.aggregator = None
            await aggregator.aclose()

    async def run(self):
        """Run the MCP server."""
        # Use stdin/stdout for MCP communication
        from mcp.server.stdio import stdio_server

        try:
            async with stdio_server() as streams:
                await self.server.run(
                    streams[0],
                    streams[1],
                    self.server.create_initialization_options()
                )
        finally:
            await self._stop_session()


async def serve():
    server = DeviceLogMCPServer()
    await server.run()


def main():
    """Main entry point."""
    asyncio.run(serve())


if __name__ == "__main__":
    main()
