"""GATT field registry for BUDDHA Rev F devices.

Maps each logical device attribute to its service/characteristic UUIDs,
wire codec and capability set. The table is fixed at import time and
checked once by ``_build_registry``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import Any, Final

from ..exceptions import ValidationError
from ..models.enums import Access, ControlAction, TreatmentStatus
from ..models.step import MAX_STEPS
from .codec import FieldCodec, check_steps

_UUID_SUFFIX = "-d6ea-7cc9-9d0b-ab7df1248728"

# Services
SERVICE_DEVICE_INFO: Final = "01950010" + _UUID_SUFFIX
SERVICE_BATTERY: Final = "01950020" + _UUID_SUFFIX
SERVICE_TREATMENT_CONFIG: Final = "01950030" + _UUID_SUFFIX
SERVICE_TREATMENT_CONTROL: Final = "01950040" + _UUID_SUFFIX

# Device info
CHAR_HW_VERSION: Final = "01950011" + _UUID_SUFFIX
CHAR_FW_VERSION: Final = "01950012" + _UUID_SUFFIX

# Battery
CHAR_BATTERY_LEVEL: Final = "01950021" + _UUID_SUFFIX
CHAR_BATTERY_AVG_CURRENT: Final = "01950022" + _UUID_SUFFIX
CHAR_BATTERY_STATUS: Final = "01950023" + _UUID_SUFFIX
CHAR_CHARGER_CONNECTED: Final = "01950024" + _UUID_SUFFIX
CHAR_SHIP_MODE: Final = "01950025" + _UUID_SUFFIX

# Treatment config
CHAR_STEP_LIST: Final = "01950031" + _UUID_SUFFIX

# Treatment control
CHAR_CONTROL: Final = "01950041" + _UUID_SUFFIX
CHAR_TOTAL_DURATION: Final = "01950042" + _UUID_SUFFIX
CHAR_LRA1_ENABLE: Final = "01950043" + _UUID_SUFFIX
CHAR_LRA2_ENABLE: Final = "01950044" + _UUID_SUFFIX
CHAR_LRA3_ENABLE: Final = "01950045" + _UUID_SUFFIX
CHAR_REMAINING: Final = "01950046" + _UUID_SUFFIX
CHAR_INTENSITY: Final = "01950047" + _UUID_SUFFIX
CHAR_STATUS: Final = "01950048" + _UUID_SUFFIX
CHAR_ERROR_CODE: Final = "01950049" + _UUID_SUFFIX

# Field names
HW_VERSION: Final = "hw_version"
FW_VERSION: Final = "fw_version"
BATTERY_LEVEL: Final = "battery_level"
BATTERY_AVG_CURRENT_MA: Final = "battery_avg_current_ma"
BATTERY_STATUS: Final = "battery_status"
CHARGER_CONNECTED: Final = "charger_connected"
SHIP_MODE: Final = "ship_mode"
STEP_LIST: Final = "step_list"
CONTROL: Final = "control"
TOTAL_DURATION_MS: Final = "total_duration_ms"
LRA1_ENABLE: Final = "lra1_enable"
LRA2_ENABLE: Final = "lra2_enable"
LRA3_ENABLE: Final = "lra3_enable"
REMAINING_MS: Final = "remaining_ms"
INTENSITY_PCT: Final = "intensity_pct"
STATUS: Final = "status"
ERROR_CODE: Final = "error_code"

_CODEC_RANGES: Final[dict[FieldCodec, tuple[int, int]]] = {
    FieldCodec.U8: (0, 0xFF),
    FieldCodec.U16: (0, 0xFFFF),
    FieldCodec.I16: (-0x8000, 0x7FFF),
    FieldCodec.BOOL: (0, 1),
}


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """Static description of one device characteristic.

    Attributes:
        name: Logical field name
        service_uuid: GATT service containing the characteristic
        char_uuid: GATT characteristic UUID
        codec: Wire representation
        access: Supported operations
        minimum: Lowest writable value (numeric codecs only)
        maximum: Highest writable value (numeric codecs only)
        enum: IntEnum that decoded values are mapped onto, if any
    """

    name: str
    service_uuid: str
    char_uuid: str
    codec: FieldCodec
    access: Access
    minimum: int | None = None
    maximum: int | None = None
    enum: type[IntEnum] | None = None

    @property
    def readable(self) -> bool:
        return Access.READ in self.access

    @property
    def writable(self) -> bool:
        return Access.WRITE in self.access

    @property
    def notifiable(self) -> bool:
        return Access.NOTIFY in self.access

    def to_value(self, raw: Any) -> Any:
        """Map a decoded wire value onto the field's enum, when it has one."""
        if self.enum is not None:
            try:
                return self.enum(raw)
            except ValueError:
                return raw
        return raw


def _field(
        name: str,
        service_uuid: str,
        char_uuid: str,
        codec: FieldCodec,
        access: Access,
        minimum: int | None = None,
        maximum: int | None = None,
        enum: type[IntEnum] | None = None,
) -> FieldDescriptor:
    if codec in _CODEC_RANGES:
        low, high = _CODEC_RANGES[codec]
        minimum = low if minimum is None else minimum
        maximum = high if maximum is None else maximum
    return FieldDescriptor(name, service_uuid, char_uuid, codec, access, minimum, maximum, enum)


_R = Access.READ
_W = Access.WRITE
_N = Access.NOTIFY

_DESCRIPTORS: Final = (
    _field(HW_VERSION, SERVICE_DEVICE_INFO, CHAR_HW_VERSION, FieldCodec.VERSION, _R),
    _field(FW_VERSION, SERVICE_DEVICE_INFO, CHAR_FW_VERSION, FieldCodec.VERSION, _R),
    _field(BATTERY_LEVEL, SERVICE_BATTERY, CHAR_BATTERY_LEVEL, FieldCodec.U8, _R | _N, 0, 100),
    _field(BATTERY_AVG_CURRENT_MA, SERVICE_BATTERY, CHAR_BATTERY_AVG_CURRENT, FieldCodec.I16, _R),
    _field(BATTERY_STATUS, SERVICE_BATTERY, CHAR_BATTERY_STATUS, FieldCodec.BOOL, _R | _N),
    _field(CHARGER_CONNECTED, SERVICE_BATTERY, CHAR_CHARGER_CONNECTED, FieldCodec.BOOL, _R | _N),
    _field(SHIP_MODE, SERVICE_BATTERY, CHAR_SHIP_MODE, FieldCodec.BOOL, _W),
    _field(STEP_LIST, SERVICE_TREATMENT_CONFIG, CHAR_STEP_LIST, FieldCodec.STEP_LIST, _R | _W),
    _field(CONTROL, SERVICE_TREATMENT_CONTROL, CHAR_CONTROL, FieldCodec.U8, _R | _W, 0, 2,
           enum=ControlAction),
    _field(TOTAL_DURATION_MS, SERVICE_TREATMENT_CONTROL, CHAR_TOTAL_DURATION, FieldCodec.U16, _R | _W),
    _field(LRA1_ENABLE, SERVICE_TREATMENT_CONTROL, CHAR_LRA1_ENABLE, FieldCodec.BOOL, _R | _W),
    _field(LRA2_ENABLE, SERVICE_TREATMENT_CONTROL, CHAR_LRA2_ENABLE, FieldCodec.BOOL, _R | _W),
    _field(LRA3_ENABLE, SERVICE_TREATMENT_CONTROL, CHAR_LRA3_ENABLE, FieldCodec.BOOL, _R | _W),
    _field(REMAINING_MS, SERVICE_TREATMENT_CONTROL, CHAR_REMAINING, FieldCodec.U16, _R | _N),
    _field(INTENSITY_PCT, SERVICE_TREATMENT_CONTROL, CHAR_INTENSITY, FieldCodec.U8, _R | _W, 0, 100),
    _field(STATUS, SERVICE_TREATMENT_CONTROL, CHAR_STATUS, FieldCodec.U8, _R | _N, 0, 3,
           enum=TreatmentStatus),
    _field(ERROR_CODE, SERVICE_TREATMENT_CONTROL, CHAR_ERROR_CODE, FieldCodec.U16, _R),
)


def _build_registry(descriptors: Iterable[FieldDescriptor]) -> Mapping[str, FieldDescriptor]:
    """Check a descriptor table and freeze it into a name lookup.

    Raises:
        ValueError: If the table is inconsistent
    """
    registry: dict[str, FieldDescriptor] = {}
    char_uuids: set[str] = set()

    for descriptor in descriptors:
        if descriptor.name in registry:
            raise ValueError(f"Duplicate field name: {descriptor.name}")
        if descriptor.char_uuid.lower() in char_uuids:
            raise ValueError(f"Duplicate characteristic UUID: {descriptor.char_uuid}")
        if not descriptor.access:
            raise ValueError(f"Field {descriptor.name} has no access rights")
        if descriptor.codec is FieldCodec.STEP_LIST and descriptor.notifiable:
            raise ValueError(f"Field {descriptor.name}: step lists cannot notify")
        if descriptor.writable and descriptor.codec in _CODEC_RANGES:
            low, high = _CODEC_RANGES[descriptor.codec]
            if descriptor.minimum is None or descriptor.maximum is None:
                raise ValueError(f"Writable field {descriptor.name} has no domain")
            if not low <= descriptor.minimum <= descriptor.maximum <= high:
                raise ValueError(
                    f"Field {descriptor.name}: domain {descriptor.minimum}-"
                    f"{descriptor.maximum} outside {descriptor.codec.value} range"
                )
        if descriptor.writable and descriptor.codec is FieldCodec.VERSION:
            raise ValueError(f"Field {descriptor.name}: version fields are read-only")

        registry[descriptor.name] = descriptor
        char_uuids.add(descriptor.char_uuid.lower())

    return MappingProxyType(registry)


FIELDS: Final[Mapping[str, FieldDescriptor]] = _build_registry(_DESCRIPTORS)

SERVICE_UUIDS: Final[frozenset[str]] = frozenset(d.service_uuid for d in _DESCRIPTORS)


def get_field(name: str) -> FieldDescriptor:
    """Look up a field by name.

    Raises:
        KeyError: If the name is not part of the protocol (a programming error)
    """
    try:
        return FIELDS[name]
    except KeyError:
        raise KeyError(f"Unknown field: {name!r}") from None


def validate_value(
        descriptor: FieldDescriptor,
        value: Any,
        max_steps: int | None = MAX_STEPS,
) -> ValidationError | None:
    """Check a value against a field's writable domain.

    Returns:
        The violation as a ValidationError instance (not raised), or None
    """
    if descriptor.codec is FieldCodec.STEP_LIST:
        if isinstance(value, (str, bytes)):
            return ValidationError(descriptor.name, "expected a sequence of Step")
        try:
            steps = list(value)
        except TypeError:
            return ValidationError(descriptor.name, "expected a sequence of Step")
        return check_steps(steps, max_steps)

    if descriptor.codec is FieldCodec.BOOL:
        if isinstance(value, int) and value in (0, 1):
            return None
        return ValidationError(descriptor.name, f"must be 0/1 or a bool, got {value!r}")

    if not isinstance(value, int) or isinstance(value, bool):
        return ValidationError(descriptor.name, f"must be an integer, got {value!r}")
    if descriptor.minimum is None or descriptor.maximum is None:
        return ValidationError(descriptor.name, "field has no writable domain")
    if not descriptor.minimum <= value <= descriptor.maximum:
        return ValidationError(
            descriptor.name,
            f"{value} out of range {descriptor.minimum}-{descriptor.maximum}",
        )
    return None
