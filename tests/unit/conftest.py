"""Shared fakes standing in for bleak objects."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Callable

import pytest
from bleak.exc import BleakBluetoothNotAvailableError

from buddha import BuddhaDevice
from buddha.models.enums import ConnectionState
from buddha.protocol.fields import SERVICE_UUIDS
from buddha.transport import connection as connection_module


class _AdapterOff(BleakBluetoothNotAvailableError):
    def __init__(self) -> None:
        super().__init__("Bluetooth adapter is powered off", None)


class _FakeServices:
    def __init__(self, uuids: set[str]):
        self._uuids = {uuid.lower() for uuid in uuids}

    def get_service(self, uuid: str):
        return SimpleNamespace(uuid=uuid) if uuid.lower() in self._uuids else None


class FakeBleakClient:
    """Records GATT traffic; values are served from a uuid -> bytes dict."""

    def __init__(self, values: dict[str, bytes] | None = None, services: set[str] | None = None):
        self.values: dict[str, bytes] = dict(values or {})
        self.services = _FakeServices(SERVICE_UUIDS if services is None else services)
        self.is_connected = True
        self.reads: list[str] = []
        self.writes: list[tuple[str, bytes, bool]] = []
        self.notify_callbacks: dict[str, Callable[[Any, bytearray], None]] = {}
        self.start_notify_calls: list[str] = []
        self.fail_reads: dict[str, Exception] = {}
        self.fail_writes: dict[str, Exception] = {}
        self.disconnect_error: Exception | None = None
        self.disconnect_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def _op(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.001)
        finally:
            self.in_flight -= 1

    async def read_gatt_char(self, uuid: str) -> bytearray:
        self.reads.append(uuid)
        await self._op()
        if uuid in self.fail_reads:
            raise self.fail_reads[uuid]
        return bytearray(self.values.get(uuid, b""))

    async def write_gatt_char(self, uuid: str, data: bytes, response: bool = True) -> None:
        self.writes.append((uuid, bytes(data), response))
        await self._op()
        if uuid in self.fail_writes:
            raise self.fail_writes[uuid]
        self.values[uuid] = bytes(data)

    async def start_notify(self, uuid: str, callback) -> None:
        self.start_notify_calls.append(uuid)
        self.notify_callbacks[uuid] = callback

    async def disconnect(self) -> bool:
        self.disconnect_calls += 1
        self.is_connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error
        return True

    def notify(self, uuid: str, data: bytes) -> None:
        """Simulate the device pushing a notification."""
        self.notify_callbacks[uuid](SimpleNamespace(uuid=uuid), bytearray(data))


class FakeBle:
    """Scanner/connector double installed in place of bleak entry points."""

    def __init__(self) -> None:
        self.advertisements: list[tuple[str | None, str]] = []
        self.adapter_off_starts = 0
        self.start_error: Exception | None = None
        self.connect_error: Exception | None = None
        self.client = FakeBleakClient()
        self.scanners: list[FakeScanner] = []
        self.connect_calls: list[dict[str, Any]] = []
        self.disconnected_callback: Callable[[Any], None] | None = None

    def scanner_factory(self, detection_callback=None, **kwargs) -> FakeScanner:
        scanner = FakeScanner(self, detection_callback)
        self.scanners.append(scanner)
        return scanner

    async def establish_connection(self, client_class, device, name, disconnected_callback=None, **kwargs):
        self.connect_calls.append({"device": device, "name": name, **kwargs})
        if self.connect_error is not None:
            raise self.connect_error
        self.disconnected_callback = disconnected_callback
        return self.client

    def drop_link(self) -> None:
        self.client.is_connected = False
        self.disconnected_callback(self.client)


class FakeScanner:
    def __init__(self, ble: FakeBle, detection_callback):
        self._ble = ble
        self._callback = detection_callback
        self.start_attempts = 0
        self.running = False
        self.stop_calls = 0

    async def start(self) -> None:
        self.start_attempts += 1
        if self._ble.adapter_off_starts >= self.start_attempts:
            raise _AdapterOff()
        if self._ble.start_error is not None:
            raise self._ble.start_error
        self.running = True
        loop = asyncio.get_running_loop()
        for index, (name, address) in enumerate(self._ble.advertisements):
            device = SimpleNamespace(name=name, address=address)
            advertisement = SimpleNamespace(local_name=name)
            loop.call_later(0.001 * (index + 1), self._emit, device, advertisement)

    def _emit(self, device, advertisement) -> None:
        if self.running:
            self._callback(device, advertisement)

    async def stop(self) -> None:
        self.stop_calls += 1
        self.running = False


@pytest.fixture
def fake_ble(monkeypatch: pytest.MonkeyPatch) -> FakeBle:
    ble = FakeBle()
    monkeypatch.setattr(connection_module, "BleakScanner", ble.scanner_factory)
    monkeypatch.setattr(connection_module, "establish_connection", ble.establish_connection)
    return ble


def attach(device: BuddhaDevice, client: FakeBleakClient) -> BuddhaDevice:
    """Put a device into READY state on top of a fake client."""
    conn = device.connection
    conn._client = client
    conn._device = SimpleNamespace(name="BUDDHA-01", address="AA:BB:CC:DD:EE:FF")
    conn._state = ConnectionState.READY
    return device


@pytest.fixture
def client() -> FakeBleakClient:
    return FakeBleakClient()


@pytest.fixture
def device(client: FakeBleakClient) -> BuddhaDevice:
    return attach(BuddhaDevice(), client)


@pytest.fixture
def make_device(client: FakeBleakClient) -> Callable[..., BuddhaDevice]:
    """Build a READY device with custom options on the shared fake client."""

    def _make(**kwargs: Any) -> BuddhaDevice:
        return attach(BuddhaDevice(**kwargs), client)

    return _make
