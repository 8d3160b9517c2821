"""Exceptions raised by the BUDDHA BLE client."""

from __future__ import annotations


class BuddhaError(Exception):
    """Base exception for all BUDDHA client errors."""


class NotConnectedError(BuddhaError):
    """Operation requires a ready connection but no session exists."""


class PermissionsNotGrantedError(BuddhaError):
    """Caller reported that Bluetooth/location permissions are missing."""


class AdapterNotReadyError(BuddhaError):
    """Bluetooth adapter did not report powered on within the wait budget."""


class ScanTimeoutError(BuddhaError):
    """No matching advertisement was seen before the scan deadline."""


class DeviceError(BuddhaError):
    """Transport-level failure passed through from the BLE link."""


class UnsupportedOperationError(BuddhaError, TypeError):
    """Field does not support the requested access (read/write/notify)."""


class ProtocolError(BuddhaError):
    """Payload received from the device violates the wire format."""


class MalformedPayloadError(ProtocolError):
    """Payload length does not match the fixed record size."""


class ValidationError(BuddhaError, ValueError):
    """Value outside a field's declared domain.

    Raised before any I/O is attempted.

    Attributes:
        field: Logical field name the value was meant for
        reason: Human-readable description of the violation
    """

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason
