"""Composite read results returned by the device API."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .enums import TreatmentStatus
from .step import Step


@dataclass(frozen=True, slots=True)
class DeviceVersion:
    """Hardware or firmware version (major = high byte, minor = low byte)."""

    major: int
    minor: int

    @classmethod
    def from_word(cls, word: int) -> DeviceVersion:
        return cls(major=(word >> 8) & 0xFF, minor=word & 0xFF)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    hw_version: DeviceVersion
    fw_version: DeviceVersion


@dataclass(frozen=True, slots=True)
class BatteryInfo:
    """Battery and charger readings.

    Attributes:
        level: State of charge in percent (0-100)
        avg_current_ma: Average battery current in mA (negative = discharging)
        charging: Charge status flag
        charger_connected: Charger presence flag
    """

    level: int
    avg_current_ma: int
    charging: bool
    charger_connected: bool


@dataclass(frozen=True, slots=True)
class LraEnables:
    lra1: bool
    lra2: bool
    lra3: bool


@dataclass(frozen=True, slots=True)
class TreatmentSnapshot:
    """Treatment configuration and progress read in one round.

    The underlying reads are issued together but are not atomic on the
    device: each value may have been sampled at a slightly different instant.
    """

    control: int
    total_duration_ms: int
    remaining_ms: int
    intensity_pct: int
    status: TreatmentStatus | int
    error_code: int
    lra1: bool
    lra2: bool
    lra3: bool
    steps: list[Step] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        data = asdict(self)
        data["status"] = int(self.status)
        return data
