"""BLE protocol implementation."""

from .codec import (
    STEP_RECORD_SIZE,
    FieldCodec,
    decode_steps,
    decode_value,
    encode_steps,
    encode_value,
    from_wire_text,
    pack_steps,
    read_i16,
    read_u8,
    read_u16,
    to_wire_text,
    unpack_steps,
    write_u8,
    write_u16,
)
from .fields import (
    FIELDS,
    SERVICE_UUIDS,
    FieldDescriptor,
    get_field,
    validate_value,
)

__all__ = [
    "FieldCodec",
    "STEP_RECORD_SIZE",
    "read_u8",
    "read_u16",
    "read_i16",
    "write_u8",
    "write_u16",
    "pack_steps",
    "unpack_steps",
    "encode_steps",
    "decode_steps",
    "to_wire_text",
    "from_wire_text",
    "encode_value",
    "decode_value",
    "FIELDS",
    "SERVICE_UUIDS",
    "FieldDescriptor",
    "get_field",
    "validate_value",
]
