"""Main BUDDHA BLE device class."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .exceptions import NotConnectedError, ProtocolError, UnsupportedOperationError, ValidationError
from .models.enums import Access, ConnectionState, ControlAction
from .models.step import MAX_STEPS, Step
from .models.treatment import BatteryInfo, DeviceInfo, LraEnables, TreatmentSnapshot
from .protocol import fields as f
from .protocol.codec import FieldCodec, decode_value, encode_value
from .protocol.fields import FieldDescriptor, get_field, validate_value
from .subscriptions import NotificationCallback, SubscriptionHandle, SubscriptionRegistry
from .transport import (
    DEFAULT_ADAPTER_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_NAME_PREFIX,
    DEFAULT_SCAN_TIMEOUT,
    BLEConnection,
)

_LOGGER = logging.getLogger(__name__)

_TREATMENT_FIELDS = (
    f.CONTROL,
    f.TOTAL_DURATION_MS,
    f.REMAINING_MS,
    f.INTENSITY_PCT,
    f.STATUS,
    f.ERROR_CODE,
    f.LRA1_ENABLE,
    f.LRA2_ENABLE,
    f.LRA3_ENABLE,
    f.STEP_LIST,
)


def _materialize(descriptor: FieldDescriptor, value: Any) -> Any:
    """Turn a one-shot step iterable into a list so it survives validate and encode."""
    if (
        descriptor.codec is FieldCodec.STEP_LIST
        and isinstance(value, Iterable)
        and not isinstance(value, (str, bytes, bytearray))
    ):
        return list(value)
    return value


class BuddhaDevice:
    """BUDDHA treatment device.

    Main API for communicating with the device over BLE GATT.

    Usage:
        async with BuddhaDevice() as device:
            info = await device.read_device_info()
            await device.write_steps([Step(50, 1000), Step(100, 2000)])
            await device.write_control(ControlAction.START)

        # Explicit lifecycle with a custom name filter
        device = BuddhaDevice(name_prefix="buddha-lab")
        await device.scan_and_connect(timeout=10.0)
        dispose = await device.subscribe_status(print)
        ...
        dispose()
        await device.disconnect()
    """

    def __init__(
            self,
            name_prefix: str = DEFAULT_NAME_PREFIX,
            scan_timeout: float = DEFAULT_SCAN_TIMEOUT,
            adapter_timeout: float = DEFAULT_ADAPTER_TIMEOUT,
            connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
            max_steps: int | None = MAX_STEPS,
            serialize_operations: bool = True,
    ):
        """Initialize BUDDHA device.

        Args:
            name_prefix: Advertised-name prefix to connect to (default: "buddha")
            scan_timeout: Scan deadline in seconds (default: 15)
            adapter_timeout: Wait for adapter power-on in seconds (default: 5)
            connect_timeout: Connection timeout in seconds (default: 10)
            max_steps: Longest step list accepted for writing, None for no cap (default: 40)
            serialize_operations: Run concurrent GATT operations one at a time in
                issue order (default: True)
        """
        self.max_steps = max_steps
        self._connection = BLEConnection(
            name_prefix=name_prefix,
            scan_timeout=scan_timeout,
            adapter_timeout=adapter_timeout,
            connect_timeout=connect_timeout,
            serialize_operations=serialize_operations,
        )
        self._subscriptions = SubscriptionRegistry()
        self._connection.on_disconnect(self._subscriptions.clear)

    async def __aenter__(self) -> BuddhaDevice:
        """Scan for the device and connect."""
        await self._connection.scan_and_connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device."""
        await self.disconnect()

    @property
    def connection(self) -> BLEConnection:
        return self._connection

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        """Check if a ready session exists. Issues no I/O."""
        return self._connection.is_connected

    async def scan_and_connect(
            self,
            name_prefix: str | None = None,
            timeout: float | None = None,
            *,
            adapter_timeout: float | None = None,
            permissions_granted: bool = True,
    ) -> None:
        """Scan for a device whose name starts with name_prefix and connect.

        See BLEConnection.scan_and_connect for the error contract.
        """
        await self._connection.scan_and_connect(
            name_prefix,
            timeout,
            adapter_timeout=adapter_timeout,
            permissions_granted=permissions_granted,
        )

    async def disconnect(self) -> None:
        """Disconnect and drop all subscriptions. Never raises when already disconnected."""
        await self._connection.disconnect()
        self._subscriptions.clear()

    # --- Primitives ---------------------------------------------------------

    def _require_connected(self) -> None:
        if not self._connection.is_connected:
            raise NotConnectedError("Not connected")

    @staticmethod
    def _require_access(name: str, access: Access) -> FieldDescriptor:
        descriptor = get_field(name)
        if access not in descriptor.access:
            raise UnsupportedOperationError(
                f"Field {name} does not support {access.name.lower()}"
            )
        return descriptor

    def validate(self, name: str, value: Any) -> ValidationError | None:
        """Check a value against a field's domain without raising.

        Returns:
            The violation, or None if value can be written to the field
        """
        descriptor = self._require_access(name, Access.WRITE)
        value = _materialize(descriptor, value)
        return validate_value(descriptor, value, self.max_steps)

    async def read_field(self, name: str) -> Any:
        """Read and decode one field.

        Raises:
            NotConnectedError: If no session exists
            UnsupportedOperationError: If the field is not readable
            DeviceError: If the read fails
            ProtocolError: If the payload cannot be decoded
        """
        self._require_connected()
        descriptor = self._require_access(name, Access.READ)
        data = await self._connection.read(descriptor.char_uuid)
        return descriptor.to_value(decode_value(descriptor.codec, data))

    async def write_field(self, name: str, value: Any) -> None:
        """Validate, encode and write one field (write without response).

        Raises:
            NotConnectedError: If no session exists
            UnsupportedOperationError: If the field is not writable
            ValidationError: If value is outside the field's domain (nothing is sent)
            DeviceError: If the write fails
        """
        self._require_connected()
        payload = self._prepare_write(name, value)
        await self._connection.write(get_field(name).char_uuid, payload)

    def _prepare_write(self, name: str, value: Any) -> bytes:
        descriptor = self._require_access(name, Access.WRITE)
        value = _materialize(descriptor, value)
        error = validate_value(descriptor, value, self.max_steps)
        if error is not None:
            raise error
        return encode_value(descriptor.codec, value, self.max_steps)

    async def subscribe(self, name: str, callback: NotificationCallback) -> SubscriptionHandle:
        """Call callback with the decoded value on every notification of a field.

        Returns:
            Handle that unregisters this callback when called

        Raises:
            NotConnectedError: If no session exists
            UnsupportedOperationError: If the field does not notify
            DeviceError: If notifications cannot be enabled
        """
        self._require_connected()
        descriptor = self._require_access(name, Access.NOTIFY)

        handle = self._subscriptions.add(name, callback)
        if not self._connection.is_notifying(descriptor.char_uuid):
            try:
                await self._connection.start_notify(
                    descriptor.char_uuid,
                    lambda data: self._on_notification(descriptor, data),
                )
            except BaseException:
                handle()
                raise
        return handle

    def _on_notification(self, descriptor: FieldDescriptor, data: bytes) -> None:
        if not data:
            return
        try:
            value = descriptor.to_value(decode_value(descriptor.codec, data))
        except ProtocolError as e:
            _LOGGER.warning("Dropping %s notification %s: %s", descriptor.name, data.hex(), e)
            return
        self._subscriptions.dispatch(descriptor.name, value)

    async def read_aggregate(self, names: Iterable[str]) -> dict[str, Any]:
        """Read several fields concurrently.

        The result is not an atomic snapshot: each value may be sampled at a
        slightly different instant.
        """
        names = list(names)
        self._require_connected()
        for name in names:
            self._require_access(name, Access.READ)
        values = await asyncio.gather(*(self.read_field(name) for name in names))
        return dict(zip(names, values))

    async def write_fields(self, values: Mapping[str, Any]) -> None:
        """Validate every value, then dispatch all writes concurrently.

        Writes are independent: a failed write does not roll back the others.
        The first failure is raised once all writes have settled.
        """
        self._require_connected()
        payloads = {name: self._prepare_write(name, value) for name, value in values.items()}
        results = await asyncio.gather(
            *(self._connection.write(get_field(name).char_uuid, data) for name, data in payloads.items()),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    # --- Device info --------------------------------------------------------

    async def read_device_info(self) -> DeviceInfo:
        values = await self.read_aggregate((f.HW_VERSION, f.FW_VERSION))
        return DeviceInfo(hw_version=values[f.HW_VERSION], fw_version=values[f.FW_VERSION])

    # --- Battery ------------------------------------------------------------

    async def read_battery(self) -> BatteryInfo:
        values = await self.read_aggregate(
            (f.BATTERY_LEVEL, f.BATTERY_AVG_CURRENT_MA, f.BATTERY_STATUS, f.CHARGER_CONNECTED)
        )
        return BatteryInfo(
            level=values[f.BATTERY_LEVEL],
            avg_current_ma=values[f.BATTERY_AVG_CURRENT_MA],
            charging=values[f.BATTERY_STATUS],
            charger_connected=values[f.CHARGER_CONNECTED],
        )

    async def subscribe_battery_level(self, callback: Callable[[int], None]) -> SubscriptionHandle:
        return await self.subscribe(f.BATTERY_LEVEL, callback)

    async def subscribe_charger_status(self, callback: Callable[[bool], None]) -> SubscriptionHandle:
        return await self.subscribe(f.CHARGER_CONNECTED, callback)

    async def write_ship_mode(self, active: bool) -> None:
        """Put the device into (or take it out of) ship mode."""
        await self.write_field(f.SHIP_MODE, active)

    # --- Treatment ----------------------------------------------------------

    async def write_control(self, action: ControlAction | int) -> None:
        await self.write_field(f.CONTROL, action)

    async def write_total_duration_ms(self, duration_ms: int) -> None:
        await self.write_field(f.TOTAL_DURATION_MS, duration_ms)

    async def write_intensity(self, percent: int) -> None:
        await self.write_field(f.INTENSITY_PCT, percent)

    async def write_duration_and_intensity(self, duration_ms: int, percent: int) -> None:
        """Write total duration and intensity together (validated first, not transactional)."""
        await self.write_fields({f.TOTAL_DURATION_MS: duration_ms, f.INTENSITY_PCT: percent})

    async def write_lra_enables(
            self,
            lra1: bool | None = None,
            lra2: bool | None = None,
            lra3: bool | None = None,
    ) -> None:
        """Enable or disable actuators. Flags left as None are not written."""
        requested = {f.LRA1_ENABLE: lra1, f.LRA2_ENABLE: lra2, f.LRA3_ENABLE: lra3}
        values = {name: flag for name, flag in requested.items() if flag is not None}
        if values:
            await self.write_fields(values)

    async def read_lra_enables(self) -> LraEnables:
        values = await self.read_aggregate((f.LRA1_ENABLE, f.LRA2_ENABLE, f.LRA3_ENABLE))
        return LraEnables(
            lra1=values[f.LRA1_ENABLE],
            lra2=values[f.LRA2_ENABLE],
            lra3=values[f.LRA3_ENABLE],
        )

    async def write_steps(self, steps: Iterable[Step]) -> None:
        steps = list(steps)
        _LOGGER.debug("Writing %d steps", len(steps))
        await self.write_field(f.STEP_LIST, steps)

    async def read_steps(self) -> list[Step]:
        return await self.read_field(f.STEP_LIST)

    async def read_remaining_time_ms(self) -> int:
        return await self.read_field(f.REMAINING_MS)

    async def read_treatment(self) -> TreatmentSnapshot:
        """Read treatment configuration and progress in one concurrent round."""
        values = await self.read_aggregate(_TREATMENT_FIELDS)
        return TreatmentSnapshot(
            control=values[f.CONTROL],
            total_duration_ms=values[f.TOTAL_DURATION_MS],
            remaining_ms=values[f.REMAINING_MS],
            intensity_pct=values[f.INTENSITY_PCT],
            status=values[f.STATUS],
            error_code=values[f.ERROR_CODE],
            lra1=values[f.LRA1_ENABLE],
            lra2=values[f.LRA2_ENABLE],
            lra3=values[f.LRA3_ENABLE],
            steps=values[f.STEP_LIST],
        )

    async def subscribe_status(self, callback: NotificationCallback) -> SubscriptionHandle:
        return await self.subscribe(f.STATUS, callback)

    async def subscribe_remaining_time(self, callback: Callable[[int], None]) -> SubscriptionHandle:
        return await self.subscribe(f.REMAINING_MS, callback)

    async def subscribe_treatment(
            self,
            on_status: NotificationCallback | None = None,
            on_remaining_ms: Callable[[int], None] | None = None,
    ) -> Callable[[], None]:
        """Subscribe to status and remaining time at once.

        Returns:
            Function disposing every subscription made by this call
        """
        handles: list[SubscriptionHandle] = []

        def _dispose() -> None:
            for handle in handles:
                handle()

        try:
            if on_status is not None:
                handles.append(await self.subscribe_status(on_status))
            if on_remaining_ms is not None:
                handles.append(await self.subscribe_remaining_time(on_remaining_ms))
        except BaseException:
            _dispose()
            raise

        return _dispose
