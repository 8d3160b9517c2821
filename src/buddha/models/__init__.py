"""Data models for BUDDHA devices."""

from .enums import Access, ConnectionState, ControlAction, TreatmentStatus
from .step import MAX_STEPS, Step
from .treatment import (
    BatteryInfo,
    DeviceInfo,
    DeviceVersion,
    LraEnables,
    TreatmentSnapshot,
)

__all__ = [
    "Access",
    "BatteryInfo",
    "ConnectionState",
    "ControlAction",
    "DeviceInfo",
    "DeviceVersion",
    "LraEnables",
    "MAX_STEPS",
    "Step",
    "TreatmentSnapshot",
    "TreatmentStatus",
]
