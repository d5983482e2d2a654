"""
BLE payload decoder: raw characteristic bytes → SensorReading.

Heart rate follows the Bluetooth Heart Rate Measurement layout (0x2A37).

Foot-pod payloads are only partially standardized. Each field (power,
cadence, distance) is resolved by a prioritized strategy chain:

  1. the standard layout, when the characteristic is RSC (0x2A53) or CPS (0x2A63)
  2. known vendor fixed-offset patterns (observed on Stryd firmware)
  3. a scan of consecutive byte pairs (uint16 little-endian)

The first candidate that passes the field's plausibility gate wins. Vendor
offsets are reverse-engineered and not guaranteed across firmware versions;
the plausibility gates are what keep garbage out.
"""
import logging
import struct
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional, Set, Tuple

from runtracker.tracking.events import SensorKind
from runtracker.tracking.types import SensorReading, SensorSource

logger = logging.getLogger(__name__)

POWER_RANGE_W = (50, 1500)
CADENCE_RANGE_SPM = (60, 240)
MAX_DISTANCE_M = 100000.0
PACE_RANGE_S_PER_KM = (1, 1200)  # lower bound inclusive, upper exclusive


class DecodeError(ValueError):
    """Payload is malformed, too short, or carries no plausible value."""


# ─── Heart rate ───────────────────────────────────────────────────────────────

def decode_heart_rate(payload: bytes) -> int:
    """
    Extract BPM from a Heart Rate Measurement payload.

    Byte 0 bit 0 clear → uint8 BPM in byte 1.
    Byte 0 bit 0 set   → uint16 little-endian BPM in bytes 1-2.

    Raises:
        DecodeError: if the payload is too short for the flagged format.
    """
    if not payload:
        raise DecodeError("empty heart-rate payload")

    if payload[0] & 0x01:
        if len(payload) < 3:
            raise DecodeError(f"uint16 heart-rate payload too short: {payload.hex(' ')}")
        return payload[1] | (payload[2] << 8)

    if len(payload) < 2:
        raise DecodeError(f"uint8 heart-rate payload too short: {payload.hex(' ')}")
    return payload[1]


# ─── Foot-pod strategies ──────────────────────────────────────────────────────

# A candidate is (value, byte offsets it was read from).
Candidate = Tuple[float, Tuple[int, ...]]
Strategy = Callable[[bytes], Iterator[Candidate]]


def _rsc_fields(data: bytes) -> Optional[dict]:
    """
    Parse an RSC Measurement: flags, speed (1/256 m/s), cadence,
    optional stride length (cm), optional total distance (1/10 m).
    """
    if len(data) < 4:
        return None
    flags = data[0]
    speed_raw, cadence = struct.unpack_from("<HB", data, 1)
    off = 4
    fields = {"speed_mps": speed_raw / 256.0, "cadence": (cadence, (3,)), "distance": None}
    if flags & 0x01:
        off += 2  # stride length, unused
    if flags & 0x02 and len(data) >= off + 4:
        (dist_raw,) = struct.unpack_from("<I", data, off)
        fields["distance"] = (dist_raw / 10.0, tuple(range(off, off + 4)))
    return fields


def _rsc_cadence(data: bytes) -> Iterator[Candidate]:
    fields = _rsc_fields(data)
    if fields:
        yield fields["cadence"]


def _rsc_distance(data: bytes) -> Iterator[Candidate]:
    fields = _rsc_fields(data)
    if fields and fields["distance"] is not None:
        yield fields["distance"]


def _cps_power(data: bytes) -> Iterator[Candidate]:
    # flags (uint16), instantaneous power (sint16)
    if len(data) >= 4:
        (power,) = struct.unpack_from("<h", data, 2)
        yield power, (2, 3)


def _vendor_power(data: bytes) -> Iterator[Candidate]:
    head = data[0]
    if head == 0x20 and len(data) >= 6:
        yield data[4], (4,)
    elif head == 0x32 and len(data) >= 3:
        yield data[2], (2,)
    elif head == 0x35 and len(data) >= 4 and data[2] == 0x01:
        yield data[1], (1,)


def _vendor_cadence(data: bytes) -> Iterator[Candidate]:
    if data[0] == 0x35 and len(data) >= 4 and data[2] == 0x01:
        for i in range(4, min(len(data), 8)):
            yield data[i], (i,)


def _scan_pairs(data: bytes) -> Iterator[Candidate]:
    # offset 0 is a flags/opcode byte on every observed layout
    for i in range(1, len(data) - 1):
        yield data[i] | (data[i + 1] << 8), (i, i + 1)


_POWER_CHAIN = {
    SensorKind.CYCLING_POWER: (_cps_power,),
    SensorKind.FOOTPOD_VENDOR: (_vendor_power, _scan_pairs),
}
_CADENCE_CHAIN = {
    SensorKind.RUNNING_SPEED_CADENCE: (_rsc_cadence,),
    SensorKind.FOOTPOD_VENDOR: (_vendor_cadence, _scan_pairs),
}
_DISTANCE_CHAIN = {
    SensorKind.RUNNING_SPEED_CADENCE: (_rsc_distance,),
    SensorKind.FOOTPOD_VENDOR: (_scan_pairs,),
}


def _first_plausible(
    strategies,
    data: bytes,
    is_plausible: Callable[[float], bool],
    claimed: Set[int],
) -> Optional[float]:
    """Run strategies in priority order; return the first plausible, unclaimed candidate."""
    for strategy in strategies:
        for value, offsets in strategy(data):
            if claimed.intersection(offsets):
                continue
            if is_plausible(value):
                claimed.update(offsets)
                return value
    return None


def _in_range(bounds: Tuple[float, float]) -> Callable[[float], bool]:
    low, high = bounds
    return lambda v: low <= v <= high


# ─── Decoder ──────────────────────────────────────────────────────────────────

@dataclass
class FootpodValues:
    power: Optional[int] = None
    cadence: Optional[int] = None
    distance_meters: Optional[float] = None
    pace_seconds_per_km: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.power is None
            and self.cadence is None
            and self.distance_meters is None
            and self.pace_seconds_per_km is None
        )


class SensorDecoder:
    """
    Stateful decoder for one session.

    Remembers the last accepted foot-pod distance and its timestamp so that
    distance stays monotonic and pace can be derived from distance deltas.
    """

    def __init__(self):
        self._last_distance: Optional[float] = None
        self._last_distance_time: Optional[datetime] = None

    def reset(self) -> None:
        self._last_distance = None
        self._last_distance_time = None

    def decode(
        self,
        payload: bytes,
        kind: SensorKind,
        activity_id: str,
        timestamp: datetime,
    ) -> SensorReading:
        """
        Decode one characteristic notification into a SensorReading.

        Raises:
            DecodeError: malformed/short payload, or no plausible value at all.
        """
        data = bytes(payload)
        if kind is SensorKind.HEART_RATE:
            return SensorReading(
                activity_id=activity_id,
                timestamp=timestamp,
                source=SensorSource.HRM,
                heart_rate=decode_heart_rate(data),
            )

        values = self.decode_footpod(data, kind, timestamp)
        if values.is_empty:
            raise DecodeError(f"no plausible foot-pod values in {data.hex(' ')}")
        return SensorReading(
            activity_id=activity_id,
            timestamp=timestamp,
            source=SensorSource.FOOTPOD,
            power=values.power,
            cadence=values.cadence,
            distance_meters=values.distance_meters,
            pace_seconds_per_km=values.pace_seconds_per_km,
        )

    def decode_footpod(
        self, payload: bytes, kind: SensorKind, timestamp: datetime
    ) -> FootpodValues:
        """
        Resolve power, cadence and distance independently. Fields with no
        plausible candidate stay None; an empty payload raises DecodeError.
        """
        data = bytes(payload)
        if not data:
            raise DecodeError("empty foot-pod payload")

        claimed: Set[int] = set()
        power = _first_plausible(
            _POWER_CHAIN.get(kind, ()), data, _in_range(POWER_RANGE_W), claimed
        )
        cadence = _first_plausible(
            _CADENCE_CHAIN.get(kind, ()), data, _in_range(CADENCE_RANGE_SPM), claimed
        )
        distance = _first_plausible(
            _DISTANCE_CHAIN.get(kind, ()), data, self._distance_is_plausible, claimed
        )

        values = FootpodValues(
            power=int(power) if power is not None else None,
            cadence=int(cadence) if cadence is not None else None,
            distance_meters=distance,
        )

        if distance is not None:
            values.pace_seconds_per_km = self.derive_pace(distance, timestamp)
            self._last_distance = distance
            self._last_distance_time = timestamp
        elif kind is SensorKind.RUNNING_SPEED_CADENCE:
            fields = _rsc_fields(data)
            if fields and fields["speed_mps"] > 0:
                values.pace_seconds_per_km = _plausible_pace(1000.0 / fields["speed_mps"])

        if values.is_empty:
            logger.debug("No plausible foot-pod values (%s): %s", kind.value, data.hex(" "))
        return values

    def derive_pace(self, distance: float, timestamp: datetime) -> Optional[int]:
        """
        Pace from the distance delta since the last accepted distance.
        Returns None without a previous sample or when implausible.
        """
        if self._last_distance is None or self._last_distance_time is None:
            return None
        delta_km = (distance - self._last_distance) / 1000.0
        elapsed = (timestamp - self._last_distance_time).total_seconds()
        if delta_km <= 0 or elapsed <= 0:
            return None
        return _plausible_pace(elapsed / delta_km)

    def _distance_is_plausible(self, value: float) -> bool:
        if value <= 0 or value >= MAX_DISTANCE_M:
            return False
        return self._last_distance is None or value > self._last_distance


def _plausible_pace(pace: float) -> Optional[int]:
    low, high = PACE_RANGE_S_PER_KM
    rounded = round(pace)
    if low <= pace < high and low <= rounded < high:
        return rounded
    return None
