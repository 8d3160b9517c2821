"""BLE transport layer."""

from .connection import (
    ADAPTER_POLL_INTERVAL,
    DEFAULT_ADAPTER_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_NAME_PREFIX,
    DEFAULT_SCAN_TIMEOUT,
    BLEConnection,
)

__all__ = [
    "BLEConnection",
    "ADAPTER_POLL_INTERVAL",
    "DEFAULT_ADAPTER_TIMEOUT",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_NAME_PREFIX",
    "DEFAULT_SCAN_TIMEOUT",
]
