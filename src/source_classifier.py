"""
Selection of the primary and fallback log sources for an iOS device.

There are four potential logging sources: the device syslog relay, an attached
native debugger, the managed runtime's own stdout/stderr event streams, and the
vendor console of devices reached through the modern device-management stack.
"""

from enum import Enum
from typing import NamedTuple, Optional

# Devices below this OS version log through syslog only.
MINIMUM_UNIVERSAL_LOGGING_OS_VERSION = 13

# Toolchain release that added a unified console for managed-connectivity devices.
REMOTE_CONSOLE_MINIMUM_TOOLCHAIN_VERSION = 26

# On CI hosts the native debugger is paired with syslog from this OS version on.
CI_NATIVE_DEBUGGER_OS_VERSION = 16


class SourceKind(Enum):
    """Identifies a device log source."""
    SYSTEM_LOG = 'syslog'
    NATIVE_DEBUGGER = 'native_debugger'
    MANAGED_RUNTIME = 'managed_runtime'
    REMOTE_CONSOLE = 'remote_console'


class SourceSelection(NamedTuple):
    """Primary source plus an optional fallback."""
    primary: SourceKind
    fallback: Optional[SourceKind] = None

    def uses(self, kind: SourceKind) -> bool:
        """Whether `kind` is either the primary or the fallback source."""
        return self.primary == kind or self.fallback == kind


def classify(
    is_managed_device: bool,
    is_wirelessly_connected: bool,
    os_major_version: int,
    native_debugger_attached: bool,
    managed_runtime_connected: bool,
    using_ci_system: bool = False,
    toolchain_major_version: Optional[int] = None,
) -> SourceSelection:
    """Determine the primary and fallback source for device logs.

    The first matching rule wins:

    1. Managed-connectivity device with a toolchain that provides the remote
       console: remote console, falling back to the managed runtime.
    2. Managed-connectivity device connected wirelessly: managed runtime only,
       since syslog is unreliable over the network.
    3. Managed-connectivity device on a cable: syslog, falling back to the
       managed runtime.
    4. OS older than universal logging: syslog only.
    5. CI host on a recent OS: native debugger, falling back to syslog.
    6. Managed runtime connected and no debugger attached: managed runtime,
       falling back to the native debugger.
    7. Otherwise: native debugger, falling back to the managed runtime.

    All inputs are explicit so the result only depends on the arguments.
    """
    if is_managed_device:
        if (toolchain_major_version is not None
                and toolchain_major_version >= REMOTE_CONSOLE_MINIMUM_TOOLCHAIN_VERSION):
            return SourceSelection(SourceKind.REMOTE_CONSOLE, SourceKind.MANAGED_RUNTIME)
        if is_wirelessly_connected:
            return SourceSelection(SourceKind.MANAGED_RUNTIME)
        return SourceSelection(SourceKind.SYSTEM_LOG, SourceKind.MANAGED_RUNTIME)

    if os_major_version < MINIMUM_UNIVERSAL_LOGGING_OS_VERSION:
        return SourceSelection(SourceKind.SYSTEM_LOG)

    if using_ci_system and os_major_version >= CI_NATIVE_DEBUGGER_OS_VERSION:
        return SourceSelection(SourceKind.NATIVE_DEBUGGER, SourceKind.SYSTEM_LOG)

    if managed_runtime_connected and not native_debugger_attached:
        return SourceSelection(SourceKind.MANAGED_RUNTIME, SourceKind.NATIVE_DEBUGGER)

    return SourceSelection(SourceKind.NATIVE_DEBUGGER, SourceKind.MANAGED_RUNTIME)
