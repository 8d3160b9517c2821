"""BUDDHA BLE Protocol Package.

  Pure Python client for the BUDDHA treatment device over BLE GATT.
  """

from .device import BuddhaDevice
from .exceptions import (
    AdapterNotReadyError,
    BuddhaError,
    DeviceError,
    MalformedPayloadError,
    NotConnectedError,
    PermissionsNotGrantedError,
    ProtocolError,
    ScanTimeoutError,
    UnsupportedOperationError,
    ValidationError,
)
from .models import (
    MAX_STEPS,
    Access,
    BatteryInfo,
    ConnectionState,
    ControlAction,
    DeviceInfo,
    DeviceVersion,
    LraEnables,
    Step,
    TreatmentSnapshot,
    TreatmentStatus,
)
from .protocol import FIELDS, FieldDescriptor, decode_steps, encode_steps, get_field
from .subscriptions import SubscriptionHandle, SubscriptionRegistry
from .transport import DEFAULT_NAME_PREFIX, BLEConnection

__version__ = "0.1.0"

__all__ = [
    # Main API
    "BuddhaDevice",
    "BLEConnection",
    "SubscriptionHandle",
    "SubscriptionRegistry",
    # Exceptions
    "BuddhaError",
    "NotConnectedError",
    "PermissionsNotGrantedError",
    "AdapterNotReadyError",
    "ScanTimeoutError",
    "DeviceError",
    "UnsupportedOperationError",
    "ProtocolError",
    "MalformedPayloadError",
    "ValidationError",
    # Models
    "Step",
    "TreatmentSnapshot",
    "DeviceInfo",
    "DeviceVersion",
    "BatteryInfo",
    "LraEnables",
    # Enums
    "Access",
    "ConnectionState",
    "ControlAction",
    "TreatmentStatus",
    # Protocol
    "FIELDS",
    "FieldDescriptor",
    "get_field",
    "encode_steps",
    "decode_steps",
    # Constants
    "MAX_STEPS",
    "DEFAULT_NAME_PREFIX",
]
