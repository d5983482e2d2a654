"""
Bluetooth LE sensor hub built on bleak.

Subscribes to the paired heart-rate monitor and foot-pod and turns every
characteristic notification into a SensorPayload event. Decoding happens in
the session, not here: the hub only knows which characteristic a payload
came from.

  HRM:      Heart Rate Measurement (0x2A37)
  Foot-pod: RSC Measurement (0x2A53), Cycling Power Measurement (0x2A63), and
            every other notifying characteristic as vendor data (Stryd
            exposes its metrics on proprietary characteristics)

Connection retry and MTU negotiation are left to bleak and the OS stack; a
sensor that fails to connect is reported as disconnected and tracking goes on
without it.
"""
import asyncio
import logging
from typing import Callable, Dict, Optional, Protocol

from bleak import BleakClient
from bleak.exc import BleakError

from runtracker.tracking.events import ConnectionChanged, SensorKind, SensorPayload
from runtracker.tracking.types import utcnow

logger = logging.getLogger(__name__)

Publish = Callable[[object], None]


def uuid16(short: int) -> str:
    """Expand a 16-bit SIG UUID to its 128-bit string form."""
    return f"0000{short:04x}-0000-1000-8000-00805f9b34fb"


HEART_RATE_MEASUREMENT = uuid16(0x2A37)
RSC_MEASUREMENT = uuid16(0x2A53)
CYCLING_POWER_MEASUREMENT = uuid16(0x2A63)
BATTERY_LEVEL = uuid16(0x2A19)

_FOOTPOD_KINDS = {
    RSC_MEASUREMENT: SensorKind.RUNNING_SPEED_CADENCE,
    CYCLING_POWER_MEASUREMENT: SensorKind.CYCLING_POWER,
}
_IGNORED_CHARACTERISTICS = {BATTERY_LEVEL, HEART_RATE_MEASUREMENT}


class SensorHub(Protocol):
    async def connect(self, publish: Publish) -> Dict[str, bool]:
        ...

    async def disconnect(self) -> None:
        ...


class NullSensorHub:
    """No Bluetooth sensors: GPS-only tracking."""

    async def connect(self, publish: Publish) -> Dict[str, bool]:
        return {}

    async def disconnect(self) -> None:
        return None


class BleSensorHub:
    """Connects the configured HRM and foot-pod and forwards their notifications."""

    def __init__(
        self,
        hrm_address: str = "",
        footpod_address: str = "",
        client_factory=BleakClient,
    ):
        """
        Args:
            hrm_address: BLE address of the heart-rate monitor ("" = none).
            footpod_address: BLE address of the foot-pod ("" = none).
            client_factory: BleakClient or a test double with the same signature.
        """
        self.hrm_address = hrm_address
        self.footpod_address = footpod_address
        self._client_factory = client_factory
        self._clients: Dict[str, BleakClient] = {}
        self._publish: Optional[Publish] = None

    async def connect(self, publish: Publish) -> Dict[str, bool]:
        """
        Connect every configured sensor.

        Returns:
            {"hrm": bool, "footpod": bool} for the sensors that are configured.
        """
        self._publish = publish
        status: Dict[str, bool] = {}
        if self.hrm_address:
            status["hrm"] = await self._connect_hrm()
        if self.footpod_address:
            status["footpod"] = await self._connect_footpod()
        return status

    async def disconnect(self) -> None:
        clients, self._clients = self._clients, {}
        for name, client in clients.items():
            try:
                await client.disconnect()
            except (BleakError, asyncio.TimeoutError, OSError) as exc:
                logger.warning("Error disconnecting %s: %s", name, exc)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _open(self, name: str, address: str) -> Optional[BleakClient]:
        if name in self._clients and self._clients[name].is_connected:
            return self._clients[name]

        client = self._client_factory(
            address, disconnected_callback=lambda _c: self._on_disconnect(name)
        )
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("Could not connect %s at %s: %s", name, address, exc)
            return None

        self._clients[name] = client
        logger.info("Connected %s at %s", name, address)
        return client

    async def _connect_hrm(self) -> bool:
        client = await self._open("hrm", self.hrm_address)
        if client is None:
            return False
        try:
            await client.start_notify(
                HEART_RATE_MEASUREMENT, self._forward(SensorKind.HEART_RATE)
            )
        except BleakError as exc:
            logger.warning("HRM has no heart-rate measurement characteristic: %s", exc)
            return False
        return True

    async def _connect_footpod(self) -> bool:
        client = await self._open("footpod", self.footpod_address)
        if client is None:
            return False

        subscribed = 0
        for service in client.services:
            for char in service.characteristics:
                uuid = char.uuid.lower()
                if "notify" not in char.properties or uuid in _IGNORED_CHARACTERISTICS:
                    continue
                kind = _FOOTPOD_KINDS.get(uuid, SensorKind.FOOTPOD_VENDOR)
                try:
                    await client.start_notify(char, self._forward(kind))
                except BleakError as exc:
                    logger.debug("Skipping foot-pod characteristic %s: %s", uuid, exc)
                    continue
                subscribed += 1
                logger.debug("Subscribed foot-pod characteristic %s as %s", uuid, kind.value)

        if not subscribed:
            logger.warning("Foot-pod exposes no notifying characteristics")
        return subscribed > 0

    def _forward(self, kind: SensorKind):
        def handler(_char, data: bytearray) -> None:
            if self._publish is not None:
                self._publish(SensorPayload(kind=kind, data=bytes(data), timestamp=utcnow()))
        return handler

    def _on_disconnect(self, name: str) -> None:
        logger.warning("%s disconnected", name)
        if self._publish is not None:
            self._publish(ConnectionChanged(sensor=name, connected=False))
