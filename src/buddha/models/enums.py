from __future__ import annotations

from enum import Enum, IntEnum, IntFlag


class ControlAction(IntEnum):
    """Treatment control commands written to the control characteristic."""
    STOP = 0
    START = 1
    PAUSE = 2


class TreatmentStatus(IntEnum):
    """Treatment state reported by the device."""
    STOPPED = 0
    RUNNING = 1
    PAUSED = 2
    ERROR = 3


class Access(IntFlag):
    """GATT capabilities of a characteristic."""
    READ = 1
    WRITE = 2
    NOTIFY = 4


class ConnectionState(Enum):
    """Lifecycle of a BLE connection.

    READY is the only state in which field I/O is allowed. Every state falls
    back to DISCONNECTED on error, link loss or explicit disconnect.
    """
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering_services"
    READY = "ready"
