"""BLE connection management."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakBluetoothNotAvailableError, BleakError
from bleak_retry_connector import BleakClientWithServiceCache, establish_connection

from ..exceptions import (
    AdapterNotReadyError,
    BuddhaError,
    DeviceError,
    NotConnectedError,
    PermissionsNotGrantedError,
    ScanTimeoutError,
)
from ..models.enums import ConnectionState
from ..protocol.fields import SERVICE_UUIDS

if TYPE_CHECKING:
    from bleak.backends.device import BLEDevice
    from bleak.backends.scanner import AdvertisementData

_LOGGER = logging.getLogger(__name__)

DEFAULT_NAME_PREFIX: Final = "buddha"
DEFAULT_SCAN_TIMEOUT: Final = 15.0
DEFAULT_ADAPTER_TIMEOUT: Final = 5.0
DEFAULT_CONNECT_TIMEOUT: Final = 10.0
ADAPTER_POLL_INTERVAL: Final = 0.1

NotifyHandler = Callable[[bytes], None]


class BLEConnection:
    """Owns the link to one BUDDHA device.

    Features:
    - Scan by advertised name prefix with a deadline
    - Adapter power-on wait before scanning
    - Single connection attempt via bleak-retry-connector, with service cache
    - Per-connection FIFO lock so concurrent GATT operations run in issue order
    - Link loss detection through bleak's disconnected callback
    """

    def __init__(
            self,
            name_prefix: str = DEFAULT_NAME_PREFIX,
            scan_timeout: float = DEFAULT_SCAN_TIMEOUT,
            adapter_timeout: float = DEFAULT_ADAPTER_TIMEOUT,
            connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
            use_services_cache: bool = True,
            serialize_operations: bool = True,
    ):
        """Initialize connection manager.

        Args:
            name_prefix: Default advertised-name prefix (case-insensitive)
            scan_timeout: Default scan deadline in seconds (default: 15)
            adapter_timeout: Default wait for adapter power-on in seconds (default: 5)
            connect_timeout: Connection timeout in seconds (default: 10)
            use_services_cache: Enable GATT service caching for faster reconnections (default: True)
            serialize_operations: Queue GATT operations on a per-connection lock (default: True)
        """
        self.name_prefix = name_prefix
        self.scan_timeout = scan_timeout
        self.adapter_timeout = adapter_timeout
        self.connect_timeout = connect_timeout
        self.use_services_cache = use_services_cache
        self.serialize_operations = serialize_operations

        self._client: BleakClient | None = None
        self._device: BLEDevice | None = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._notifying: set[str] = set()
        self._disconnect_listeners: list[Callable[[], None]] = []

    async def __aenter__(self) -> BLEConnection:
        """Scan and connect with the configured defaults (context manager entry)."""
        await self.scan_and_connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device (context manager exit)."""
        await self.disconnect()

    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if a ready session exists. Issues no I/O."""
        return (
            self._state is ConnectionState.READY
            and self._client is not None
            and self._client.is_connected
        )

    @property
    def address(self) -> str | None:
        """Address of the connected device, or None without a session."""
        return self._device.address if self._device else None

    @property
    def device_name(self) -> str | None:
        """Advertised name of the connected device, or None without a session."""
        return self._device.name if self._device else None

    def on_disconnect(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a callback fired whenever the session is dropped.

        Returns:
            Function removing the listener again
        """
        self._disconnect_listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._disconnect_listeners.remove(listener)

        return _remove

    async def scan_and_connect(
            self,
            name_prefix: str | None = None,
            timeout: float | None = None,
            *,
            adapter_timeout: float | None = None,
            permissions_granted: bool = True,
    ) -> None:
        """Scan for a device by name prefix and connect to the first match.

        Args:
            name_prefix: Advertised-name prefix, matched case-insensitively
            timeout: Scan deadline in seconds
            adapter_timeout: How long to wait for the adapter to power on
            permissions_granted: Result of the caller's permission flow

        Raises:
            PermissionsNotGrantedError: If permissions_granted is False
            AdapterNotReadyError: If the adapter is not powered on in time
            ScanTimeoutError: If no matching device advertises before the deadline
            DeviceError: If scanning, connecting or service discovery fails
        """
        if self.is_connected:
            return
        if not permissions_granted:
            raise PermissionsNotGrantedError(
                "Required Bluetooth permissions not granted"
            )

        prefix = (name_prefix if name_prefix is not None else self.name_prefix).lower()
        timeout = self.scan_timeout if timeout is None else timeout
        adapter_timeout = self.adapter_timeout if adapter_timeout is None else adapter_timeout

        found: asyncio.Future[BLEDevice] = asyncio.get_running_loop().create_future()

        def _detection_callback(device: BLEDevice, advertisement: AdvertisementData) -> None:
            if found.done():
                return
            name = advertisement.local_name or device.name
            if name and name.lower().startswith(prefix):
                _LOGGER.debug("Matched %s (%s)", name, device.address)
                found.set_result(device)

        scanner = BleakScanner(detection_callback=_detection_callback)
        await self._start_scanner(scanner, adapter_timeout)
        self._set_state(ConnectionState.SCANNING)
        scanning = True

        try:
            try:
                device = await asyncio.wait_for(found, timeout=timeout)
            except asyncio.TimeoutError:
                await self._stop_scanner(scanner)
                scanning = False
                raise ScanTimeoutError(
                    f"No device matching {prefix!r} found within {timeout}s"
                ) from None

            await self._stop_scanner(scanner)
            scanning = False

            await self._connect(device)

        except BuddhaError:
            raise
        except Exception as e:
            raise DeviceError(f"Failed to connect: {e}") from e
        finally:
            if scanning:
                await self._stop_scanner(scanner)
            if self._client is None:
                self._set_state(ConnectionState.DISCONNECTED)

    async def _start_scanner(self, scanner: BleakScanner, adapter_timeout: float) -> None:
        """Start scanning once the adapter reports powered on."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + adapter_timeout

        while True:
            try:
                await scanner.start()
                return
            except BleakBluetoothNotAvailableError as e:
                if loop.time() >= deadline:
                    raise AdapterNotReadyError(
                        f"Bluetooth is not ready after {adapter_timeout}s: {e}"
                    ) from e
                _LOGGER.debug("Adapter not ready: %s", e)
                await asyncio.sleep(ADAPTER_POLL_INTERVAL)
            except Exception as e:
                raise DeviceError(f"Failed to start scan: {e}") from e

    async def _stop_scanner(self, scanner: BleakScanner) -> None:
        try:
            await scanner.stop()
        except Exception as e:
            _LOGGER.warning("Error stopping scan: %s", e)

    async def _connect(self, device: BLEDevice) -> None:
        """Connect to a discovered device and verify its services."""
        self._set_state(ConnectionState.CONNECTING)
        _LOGGER.debug("Connecting to %s (%s)", device.name, device.address)

        try:
            client = await establish_connection(
                client_class=BleakClientWithServiceCache,
                device=device,
                name=device.name or device.address,
                disconnected_callback=self._on_link_lost,
                max_attempts=1,
                use_services_cache=self.use_services_cache,
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise DeviceError(
                f"Connection timeout after {self.connect_timeout}s"
            ) from e

        self._set_state(ConnectionState.DISCOVERING_SERVICES)
        try:
            missing = [uuid for uuid in sorted(SERVICE_UUIDS) if client.services.get_service(uuid) is None]
            if missing:
                raise DeviceError(f"Services not found: {', '.join(missing)}")
        except BaseException:
            with contextlib.suppress(Exception):
                await client.disconnect()
            raise

        self._client = client
        self._device = device
        self._set_state(ConnectionState.READY)
        _LOGGER.info("Connected to %s (%s)", device.name, device.address)

    async def disconnect(self) -> None:
        """Disconnect from device. Safe to call when already disconnected."""
        client = self._client
        if client is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        try:
            _LOGGER.debug("Disconnecting from %s", self.address)
            await client.disconnect()
        except Exception as e:
            _LOGGER.warning("Error during disconnect: %s", e)
        finally:
            self._drop_session()

    def _on_link_lost(self, client: BleakClient) -> None:
        if client is not self._client:
            return
        _LOGGER.info("Link to %s lost", self.address)
        self._drop_session()

    def _drop_session(self) -> None:
        if self._client is None:
            return
        self._client = None
        self._device = None
        self._notifying.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        for listener in list(self._disconnect_listeners):
            try:
                listener()
            except Exception:
                _LOGGER.exception("Disconnect listener raised")

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            _LOGGER.debug("State %s -> %s", self._state.value, state.value)
            self._state = state

    def _require_client(self) -> BleakClient:
        if self._client is None or self._state is not ConnectionState.READY:
            raise NotConnectedError("Not connected")
        return self._client

    def _serialized(self) -> contextlib.AbstractAsyncContextManager:
        """Lock guarding one GATT operation, or a no-op when serialization is off."""
        return self._lock if self.serialize_operations else contextlib.nullcontext()

    def is_notifying(self, char_uuid: str) -> bool:
        """Check if notifications are enabled for a characteristic this session."""
        return char_uuid in self._notifying

    async def read(self, char_uuid: str) -> bytes:
        """Read a characteristic value.

        Raises:
            NotConnectedError: If no session exists
            DeviceError: If the read fails
        """
        self._require_client()
        async with self._serialized():
            client = self._require_client()
            try:
                data = await client.read_gatt_char(char_uuid)
            except Exception as e:
                raise DeviceError(f"Read of {char_uuid} failed: {e}") from e

        _LOGGER.debug("Read %s: %s", char_uuid, bytes(data).hex())
        return bytes(data)

    async def write(self, char_uuid: str, data: bytes) -> None:
        """Write a characteristic value without waiting for a device response.

        Success only means the local stack accepted the write.

        Raises:
            NotConnectedError: If no session exists
            DeviceError: If the write fails
        """
        self._require_client()
        async with self._serialized():
            client = self._require_client()
            _LOGGER.debug("Write %s: %s", char_uuid, data.hex())
            try:
                await client.write_gatt_char(char_uuid, data, response=False)
            except Exception as e:
                raise DeviceError(f"Write to {char_uuid} failed: {e}") from e

    async def start_notify(self, char_uuid: str, handler: NotifyHandler) -> None:
        """Enable notifications on a characteristic.

        Notifications stay enabled until the session ends. Calling this again
        for the same characteristic is a no-op and keeps the first handler.

        Args:
            char_uuid: Characteristic to subscribe to
            handler: Called with the raw payload of each notification

        Raises:
            NotConnectedError: If no session exists
            DeviceError: If enabling notifications fails
        """
        self._require_client()

        def _notification_callback(sender, data: bytearray) -> None:
            handler(bytes(data))

        async with self._serialized():
            client = self._require_client()
            if char_uuid in self._notifying:
                return
            try:
                await client.start_notify(char_uuid, _notification_callback)
            except Exception as e:
                raise DeviceError(f"Enabling notifications on {char_uuid} failed: {e}") from e
            self._notifying.add(char_uuid)

        _LOGGER.debug("Notifications started on %s", char_uuid)
