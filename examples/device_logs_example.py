#!/usr/bin/env python3
"""
Example script demonstrating aggregated log capture from a connected iOS device.
"""

import asyncio
import sys
from pathlib import Path

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from device_log_aggregator import DeviceLogAggregator


async def watch(device_id: str, app_name: str, os_major_version: int):
    aggregator = DeviceLogAggregator(device_id, app_name, os_major_version)
    selection = aggregator.log_sources
    print(f"Primary source: {selection.primary.value}")
    print(f"Fallback source: {selection.fallback.value if selection.fallback else 'none'}")

    subscription = aggregator.log_lines.listen()
    try:
        async for line in subscription:
            print(line)
    finally:
        subscription.cancel()
        await aggregator.aclose()


def main():
    """Stream device logs until interrupted."""
    print("Device Log Aggregation Example")
    print("=" * 40)

    if len(sys.argv) < 4:
        print("Usage: device_logs_example.py <device-udid> <App.app> <ios-major-version>")
        return

    device_id, app_name, version = sys.argv[1], sys.argv[2], int(sys.argv[3])
    print("Press Ctrl+C to stop\n")

    try:
        asyncio.run(watch(device_id, app_name, version))
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()
