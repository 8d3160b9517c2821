"""Binary payload encoding for BUDDHA characteristics.

All multi-byte integers are little-endian, matching the firmware:

    u8:  [value]
    u16: [low][high]
    i16: u16 reinterpreted as two's complement
    step list: repeated [amplitude:u8][duration_low:u8][duration_high:u8]

The text-safe transport form (base64) is produced and consumed only by
``to_wire_text``/``from_wire_text`` and the ``encode_steps``/``decode_steps``
wrappers built on them.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable
from enum import Enum
from typing import Any

from ..exceptions import MalformedPayloadError, ValidationError
from ..models.step import (
    AMPLITUDE_MAX,
    AMPLITUDE_MIN,
    DURATION_MAX_MS,
    DURATION_MIN_MS,
    MAX_STEPS,
    Step,
)
from ..models.treatment import DeviceVersion

STEP_RECORD_SIZE = 3
STEP_LIST_FIELD = "step_list"


class FieldCodec(Enum):
    """Wire representation of a characteristic value."""
    U8 = "u8"
    U16 = "u16"
    I16 = "i16"
    BOOL = "bool"          # u8 restricted to 0/1
    VERSION = "version"    # u16, major in high byte
    STEP_LIST = "step_list"


def _require_length(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise MalformedPayloadError(
            f"{what} payload too short: {len(data)} bytes (need {size})"
        )


def read_u8(data: bytes) -> int:
    _require_length(data, 1, "u8")
    return data[0]


def read_u16(data: bytes) -> int:
    _require_length(data, 2, "u16")
    return data[0] | (data[1] << 8)


def read_i16(data: bytes) -> int:
    value = read_u16(data)
    return value - 0x10000 if value & 0x8000 else value


def write_u8(value: int) -> bytes:
    return bytes([value & 0xFF])


def write_u16(value: int) -> bytes:
    return bytes([value & 0xFF, (value >> 8) & 0xFF])


def to_wire_text(data: bytes) -> str:
    """Encode raw bytes to the text-safe transport form."""
    return base64.b64encode(data).decode("ascii")


def from_wire_text(payload: str) -> bytes:
    """Decode the text-safe transport form back to raw bytes.

    Raises:
        MalformedPayloadError: If payload is not valid base64
    """
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedPayloadError(f"Invalid transport encoding: {e}") from e


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_steps(steps: Iterable[Step], max_steps: int | None = MAX_STEPS) -> ValidationError | None:
    """Check a step list against the Rev F domain.

    Returns:
        The first violation found, or None if the list is writable
    """
    steps = list(steps)
    if not steps:
        return ValidationError(STEP_LIST_FIELD, "at least one step is required")
    if max_steps is not None and len(steps) > max_steps:
        return ValidationError(
            STEP_LIST_FIELD, f"{len(steps)} steps exceeds maximum of {max_steps}"
        )

    for index, step in enumerate(steps):
        if not isinstance(step, Step):
            return ValidationError(STEP_LIST_FIELD, f"step {index} is not a Step: {step!r}")
        amplitude = step.amplitude_pct
        if not _is_int(amplitude) or not AMPLITUDE_MIN <= amplitude <= AMPLITUDE_MAX:
            return ValidationError(
                STEP_LIST_FIELD,
                f"step {index}: amplitude_pct must be an integer "
                f"{AMPLITUDE_MIN}-{AMPLITUDE_MAX}, got {amplitude!r}",
            )
        duration = step.duration_ms
        if not _is_int(duration) or not DURATION_MIN_MS <= duration <= DURATION_MAX_MS:
            return ValidationError(
                STEP_LIST_FIELD,
                f"step {index}: duration_ms must be an integer "
                f"{DURATION_MIN_MS}-{DURATION_MAX_MS}, got {duration!r}",
            )
    return None


def pack_steps(steps: Iterable[Step], max_steps: int | None = MAX_STEPS) -> bytes:
    """Pack a step list into its binary record form.

    Args:
        steps: One or more steps
        max_steps: Maximum list length (None disables the cap)

    Returns:
        3 bytes per step: [amplitude][duration_low][duration_high]

    Raises:
        ValidationError: If the list is empty, too long or any step is out of range
    """
    steps = list(steps)
    error = check_steps(steps, max_steps)
    if error is not None:
        raise error

    data = bytearray()
    for step in steps:
        data.append(step.amplitude_pct & 0xFF)
        data += write_u16(step.duration_ms)
    return bytes(data)


def unpack_steps(data: bytes | None) -> list[Step]:
    """Unpack binary step records.

    Raises:
        MalformedPayloadError: If length is not a multiple of the record size
    """
    if not data:
        return []
    if len(data) % STEP_RECORD_SIZE != 0:
        raise MalformedPayloadError(
            f"Step list payload is {len(data)} bytes, "
            f"not a multiple of {STEP_RECORD_SIZE}"
        )
    return [
        Step(amplitude_pct=data[i], duration_ms=data[i + 1] | (data[i + 2] << 8))
        for i in range(0, len(data), STEP_RECORD_SIZE)
    ]


def encode_steps(steps: Iterable[Step], max_steps: int | None = MAX_STEPS) -> str:
    """Pack steps and apply the text-safe transport encoding."""
    return to_wire_text(pack_steps(steps, max_steps))


def decode_steps(payload: str | None) -> list[Step]:
    """Reverse of ``encode_steps``. None or empty payload yields no steps."""
    if not payload:
        return []
    return unpack_steps(from_wire_text(payload))


def encode_value(codec: FieldCodec, value: Any, max_steps: int | None = MAX_STEPS) -> bytes:
    """Encode an already-validated value for a characteristic write."""
    if codec is FieldCodec.STEP_LIST:
        return pack_steps(value, max_steps)
    if codec is FieldCodec.VERSION:
        return write_u16((value.major << 8) | value.minor)
    if codec in (FieldCodec.U16, FieldCodec.I16):
        return write_u16(int(value))
    return write_u8(int(value))


def decode_value(codec: FieldCodec, data: bytes) -> Any:
    """Decode a characteristic payload to its Python value."""
    if codec is FieldCodec.U8:
        return read_u8(data)
    if codec is FieldCodec.BOOL:
        return read_u8(data) != 0
    if codec is FieldCodec.U16:
        return read_u16(data)
    if codec is FieldCodec.I16:
        return read_i16(data)
    if codec is FieldCodec.VERSION:
        return DeviceVersion.from_word(read_u16(data))
    return unpack_steps(data)
