"""Tests for BLE payload decoding."""
import pytest

from conftest import T0, at
from runtracker.tracking.decoder import (
    DecodeError,
    SensorDecoder,
    decode_heart_rate,
)
from runtracker.tracking.events import SensorKind
from runtracker.tracking.types import SensorSource


def _rsc(speed_mps: float, cadence: int, distance_m: float = None) -> bytes:
    flags = 0x02 if distance_m is not None else 0x00
    speed_raw = round(speed_mps * 256)
    data = bytes([flags, speed_raw & 0xFF, speed_raw >> 8, cadence])
    if distance_m is not None:
        data += round(distance_m * 10).to_bytes(4, "little")
    return data


def _cps(power: int) -> bytes:
    return b"\x00\x00" + power.to_bytes(2, "little", signed=True)


@pytest.fixture(name="decoder")
def decoder_fixture():
    return SensorDecoder()


class TestDecodeHeartRate:
    def test_uint8_format(self):
        assert decode_heart_rate(bytes([0x00, 0x96])) == 150

    def test_uint16_format(self):
        assert decode_heart_rate(bytes([0x01, 0x96, 0x00])) == 150

    def test_uint16_above_255(self):
        assert decode_heart_rate(bytes([0x01, 0x2C, 0x01])) == 300

    def test_extra_flag_bits_ignored(self):
        # Bits 1-4 (contact, energy, RR) do not change the BPM position
        assert decode_heart_rate(bytes([0x16, 0x8C, 0x00, 0x00])) == 140

    @pytest.mark.parametrize("payload", [b"", b"\x00", b"\x01\x96"])
    def test_short_payload_raises(self, payload):
        with pytest.raises(DecodeError):
            decode_heart_rate(payload)

    def test_decode_error_is_value_error(self):
        with pytest.raises(ValueError):
            decode_heart_rate(b"")


class TestDecode:
    def test_heart_rate_reading(self, decoder):
        reading = decoder.decode(b"\x00\x96", SensorKind.HEART_RATE, "act", T0)
        assert reading.source is SensorSource.HRM
        assert reading.heart_rate == 150
        assert reading.activity_id == "act"
        assert reading.timestamp == T0

    def test_cycling_power_reading(self, decoder):
        reading = decoder.decode(_cps(250), SensorKind.CYCLING_POWER, "act", T0)
        assert reading.source is SensorSource.FOOTPOD
        assert reading.power == 250

    def test_implausible_power_raises(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode(_cps(30), SensorKind.CYCLING_POWER, "act", T0)

    def test_empty_footpod_payload_raises(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode(b"", SensorKind.FOOTPOD_VENDOR, "act", T0)


class TestRunningSpeedCadence:
    def test_cadence_and_distance(self, decoder):
        values = decoder.decode_footpod(
            _rsc(3.0, 170, 1000.0), SensorKind.RUNNING_SPEED_CADENCE, T0
        )
        assert values.cadence == 170
        assert values.distance_meters == pytest.approx(1000.0)
        # First distance sample: no delta to derive pace from
        assert values.pace_seconds_per_km is None

    def test_pace_derived_from_distance_delta(self, decoder):
        kind = SensorKind.RUNNING_SPEED_CADENCE
        decoder.decode_footpod(_rsc(3.0, 170, 1000.0), kind, at(0))
        values = decoder.decode_footpod(_rsc(3.0, 170, 1010.0), kind, at(4))
        # 10 m in 4 s → 400 s/km
        assert values.pace_seconds_per_km == 400

    def test_pace_from_speed_without_distance(self, decoder):
        values = decoder.decode_footpod(_rsc(3.0, 170), SensorKind.RUNNING_SPEED_CADENCE, T0)
        assert values.distance_meters is None
        assert values.pace_seconds_per_km == 333

    def test_decreasing_distance_rejected(self, decoder):
        kind = SensorKind.RUNNING_SPEED_CADENCE
        decoder.decode_footpod(_rsc(3.0, 170, 1000.0), kind, at(0))
        values = decoder.decode_footpod(_rsc(3.0, 170, 900.0), kind, at(1))
        assert values.distance_meters is None
        assert values.cadence == 170

    def test_implausible_cadence_left_unset(self, decoder):
        values = decoder.decode_footpod(_rsc(3.0, 20), SensorKind.RUNNING_SPEED_CADENCE, T0)
        assert values.cadence is None

    def test_reset_forgets_last_distance(self, decoder):
        kind = SensorKind.RUNNING_SPEED_CADENCE
        decoder.decode_footpod(_rsc(3.0, 170, 1000.0), kind, at(0))
        decoder.reset()
        values = decoder.decode_footpod(_rsc(3.0, 170, 500.0), kind, at(1))
        assert values.distance_meters == pytest.approx(500.0)


class TestVendorPayloads:
    def test_power_at_byte_4_for_0x20(self, decoder):
        values = decoder.decode_footpod(
            bytes([0x20, 0x00, 0x00, 0x00, 230, 0x00]), SensorKind.FOOTPOD_VENDOR, T0
        )
        assert values.power == 230

    def test_power_and_cadence_for_0x35(self, decoder):
        values = decoder.decode_footpod(
            bytes([0x35, 200, 0x01, 0x00, 170]), SensorKind.FOOTPOD_VENDOR, T0
        )
        assert values.power == 200
        assert values.cadence == 170

    def test_bytes_are_not_reused_across_fields(self, decoder):
        # byte 2 = 180 is claimed as power; it must not also become cadence
        values = decoder.decode_footpod(
            bytes([0x32, 0x00, 180, 0x00]), SensorKind.FOOTPOD_VENDOR, T0
        )
        assert values.power == 180
        assert values.cadence is None

    def test_nothing_plausible_gives_empty_values(self, decoder):
        values = decoder.decode_footpod(bytes([0x99, 0x00, 0x00]), SensorKind.FOOTPOD_VENDOR, T0)
        assert values.is_empty
