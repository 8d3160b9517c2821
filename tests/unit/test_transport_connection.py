"""Test BLE connection lifecycle."""

from __future__ import annotations

import asyncio

import pytest
from bleak.exc import BleakError

from buddha.exceptions import (
    AdapterNotReadyError,
    DeviceError,
    NotConnectedError,
    PermissionsNotGrantedError,
    ScanTimeoutError,
)
from buddha.models.enums import ConnectionState
from buddha.protocol.fields import SERVICE_BATTERY, SERVICE_UUIDS
from buddha.transport import BLEConnection


class TestScanAndConnect:
    """Test scanning, matching and connecting."""

    @pytest.mark.asyncio
    async def test_connects_to_first_matching_device(self, fake_ble):
        fake_ble.advertisements = [
            ("Headphones", "11:11:11:11:11:11"),
            ("BUDDHA-0042", "AA:BB:CC:DD:EE:FF"),
            ("buddha-0043", "22:22:22:22:22:22"),
        ]
        conn = BLEConnection()

        await conn.scan_and_connect(timeout=1.0)

        assert conn.state is ConnectionState.READY
        assert conn.is_connected
        assert conn.address == "AA:BB:CC:DD:EE:FF"
        assert len(fake_ble.connect_calls) == 1
        assert fake_ble.connect_calls[0]["max_attempts"] == 1
        assert fake_ble.scanners[0].stop_calls == 1

    @pytest.mark.asyncio
    async def test_prefix_match_is_case_insensitive(self, fake_ble):
        fake_ble.advertisements = [("buddha-lab", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()

        await conn.scan_and_connect("BUDDHA", timeout=1.0)

        assert conn.is_connected

    @pytest.mark.asyncio
    async def test_prefix_must_start_the_name(self, fake_ble):
        fake_ble.advertisements = [("my-buddha", "AA:BB:CC:DD:EE:FF"), (None, "11:11:11:11:11:11")]
        conn = BLEConnection()

        with pytest.raises(ScanTimeoutError):
            await conn.scan_and_connect(timeout=0.05)

    @pytest.mark.asyncio
    async def test_timeout_stops_scan_and_raises_not_before_deadline(self, fake_ble):
        fake_ble.advertisements = [("Headphones", "11:11:11:11:11:11")]
        conn = BLEConnection()
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(ScanTimeoutError):
            await conn.scan_and_connect(timeout=0.2)

        assert loop.time() - started >= 0.2 - 0.005
        assert fake_ble.scanners[0].running is False
        assert fake_ble.scanners[0].stop_calls == 1
        assert fake_ble.connect_calls == []
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_permissions_required(self, fake_ble):
        conn = BLEConnection()

        with pytest.raises(PermissionsNotGrantedError):
            await conn.scan_and_connect(permissions_granted=False)

        assert fake_ble.scanners == []

    @pytest.mark.asyncio
    async def test_waits_for_adapter_power_on(self, fake_ble):
        fake_ble.adapter_off_starts = 2
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()

        await conn.scan_and_connect(timeout=1.0, adapter_timeout=1.0)

        assert fake_ble.scanners[0].start_attempts == 3
        assert conn.is_connected

    @pytest.mark.asyncio
    async def test_adapter_not_ready(self, fake_ble):
        fake_ble.adapter_off_starts = 1000
        conn = BLEConnection()

        with pytest.raises(AdapterNotReadyError, match="not ready"):
            await conn.scan_and_connect(timeout=1.0, adapter_timeout=0.25)

        assert 2 <= fake_ble.scanners[0].start_attempts <= 5
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_scan_start_failure_is_device_error(self, fake_ble):
        fake_ble.start_error = BleakError("org.bluez.Error.InProgress")
        conn = BLEConnection()

        with pytest.raises(DeviceError, match="Failed to start scan"):
            await conn.scan_and_connect(timeout=1.0)

    @pytest.mark.asyncio
    async def test_scan_start_os_error_is_device_error(self, fake_ble):
        fake_ble.start_error = OSError("D-Bus connection lost")
        conn = BLEConnection()

        with pytest.raises(DeviceError, match="Failed to start scan") as exc_info:
            await conn.scan_and_connect(timeout=1.0)

        assert isinstance(exc_info.value.__cause__, OSError)
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_failure_leaves_disconnected(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        fake_ble.connect_error = BleakError("le-connection-abort-by-local")
        conn = BLEConnection()

        with pytest.raises(DeviceError, match="Failed to connect") as exc_info:
            await conn.scan_and_connect(timeout=1.0)

        assert isinstance(exc_info.value.__cause__, BleakError)
        assert conn.state is ConnectionState.DISCONNECTED
        assert not conn.is_connected
        assert fake_ble.scanners[0].running is False

    @pytest.mark.asyncio
    async def test_missing_service_fails_and_disconnects(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        fake_ble.client.services = type(fake_ble.client.services)(set(SERVICE_UUIDS) - {SERVICE_BATTERY})
        conn = BLEConnection()

        with pytest.raises(DeviceError, match="Services not found"):
            await conn.scan_and_connect(timeout=1.0)

        assert fake_ble.client.disconnect_calls == 1
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_already_connected_is_no_op(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        await conn.scan_and_connect(timeout=1.0)

        await conn.scan_and_connect(timeout=1.0)

        assert len(fake_ble.scanners) == 1

    @pytest.mark.asyncio
    async def test_already_connected_skips_permission_check(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        await conn.scan_and_connect(timeout=1.0)

        await conn.scan_and_connect(timeout=1.0, permissions_granted=False)

        assert conn.is_connected
        assert len(fake_ble.scanners) == 1


class TestDisconnect:
    """Test session teardown."""

    @pytest.mark.asyncio
    async def test_disconnect_when_never_connected(self):
        conn = BLEConnection()

        await conn.disconnect()
        await conn.disconnect()

        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_clears_session_even_on_error(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        await conn.scan_and_connect(timeout=1.0)
        fake_ble.client.disconnect_error = BleakError("already gone")

        await conn.disconnect()

        assert not conn.is_connected
        assert conn.address is None
        with pytest.raises(NotConnectedError):
            await conn.read(next(iter(SERVICE_UUIDS)))

    @pytest.mark.asyncio
    async def test_link_loss_drops_session_and_notifies(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        dropped: list[bool] = []
        conn.on_disconnect(lambda: dropped.append(True))
        await conn.scan_and_connect(timeout=1.0)

        fake_ble.drop_link()

        assert conn.state is ConnectionState.DISCONNECTED
        assert dropped == [True]

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]

        async with BLEConnection(scan_timeout=1.0) as conn:
            assert conn.is_connected

        assert fake_ble.client.disconnect_calls == 1
        assert not conn.is_connected


class TestGattOperations:
    """Test read/write primitives."""

    @pytest.mark.asyncio
    async def test_operations_require_session(self):
        conn = BLEConnection()

        with pytest.raises(NotConnectedError):
            await conn.read("uuid")
        with pytest.raises(NotConnectedError):
            await conn.write("uuid", b"\x00")
        with pytest.raises(NotConnectedError):
            await conn.start_notify("uuid", lambda data: None)

    @pytest.mark.asyncio
    async def test_write_is_without_response(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        await conn.scan_and_connect(timeout=1.0)

        await conn.write("uuid", b"\x01")

        assert fake_ble.client.writes == [("uuid", b"\x01", False)]

    @pytest.mark.asyncio
    async def test_transport_errors_wrapped(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        await conn.scan_and_connect(timeout=1.0)
        fake_ble.client.fail_reads["uuid"] = BleakError("GATT error 0x0e")

        with pytest.raises(DeviceError, match="GATT error") as exc_info:
            await conn.read("uuid")

        assert isinstance(exc_info.value.__cause__, BleakError)

    @pytest.mark.asyncio
    async def test_concurrent_operations_are_serialized_in_order(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        await conn.scan_and_connect(timeout=1.0)

        await asyncio.gather(*(conn.read(f"uuid-{i}") for i in range(5)))

        assert fake_ble.client.reads == [f"uuid-{i}" for i in range(5)]
        assert fake_ble.client.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_serialization_can_be_disabled(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection(serialize_operations=False)
        await conn.scan_and_connect(timeout=1.0)

        await asyncio.gather(*(conn.read(f"uuid-{i}") for i in range(5)))

        assert fake_ble.client.max_in_flight > 1

    @pytest.mark.asyncio
    async def test_start_notify_once_per_characteristic(self, fake_ble):
        fake_ble.advertisements = [("BUDDHA", "AA:BB:CC:DD:EE:FF")]
        conn = BLEConnection()
        await conn.scan_and_connect(timeout=1.0)
        received: list[bytes] = []

        await conn.start_notify("uuid", received.append)
        await conn.start_notify("uuid", received.append)
        fake_ble.client.notify("uuid", b"\x02")

        assert fake_ble.client.start_notify_calls == ["uuid"]
        assert conn.is_notifying("uuid")
        assert received == [b"\x02"]
