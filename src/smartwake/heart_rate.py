"""Heart-rate source backed by a standard BLE Heart Rate Measurement (0x2A37).

Any strap that exposes the Bluetooth SIG Heart Rate Service can feed the
orchestrator through :class:`BleHeartRateSource`.  Samples are timestamped
on arrival with the session clock.
"""

from __future__ import annotations

import asyncio
import struct
from datetime import datetime, timezone
from typing import Callable

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic

from smartwake import config
from smartwake.clock import Scheduler
from smartwake.exceptions import SensorUnavailableError
from smartwake.models import HeartRateSample

logger = config.get_logger()

HR_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"
HR_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"


def parse_heart_rate(data: bytearray) -> dict:
    """Parse a standard BLE Heart Rate Measurement value.

    Per Bluetooth SIG spec:
    - Byte 0: Flags
      - Bit 0: HR format (0 = uint8, 1 = uint16)
      - Bit 1-2: Sensor contact status
      - Bit 3: Energy expended present
      - Bit 4: RR-interval present
    - Byte 1(+2): Heart rate value
    - Optional: Energy expended (uint16)
    - Optional: RR-intervals (uint16 each, in 1/1024 sec units)
    """
    flags = data[0]
    hr_format_16bit = bool(flags & 0x01)
    sensor_contact_supported = bool(flags & 0x02)
    sensor_contact_detected = bool(flags & 0x04)
    energy_expended_present = bool(flags & 0x08)
    rr_interval_present = bool(flags & 0x10)

    offset = 1

    if hr_format_16bit:
        hr_value = struct.unpack_from("<H", data, offset)[0]
        offset += 2
    else:
        hr_value = data[offset]
        offset += 1

    energy_expended = None
    if energy_expended_present:
        energy_expended = struct.unpack_from("<H", data, offset)[0]
        offset += 2

    rr_intervals: list[float] = []
    if rr_interval_present:
        while offset + 1 < len(data):
            rr_raw = struct.unpack_from("<H", data, offset)[0]
            rr_intervals.append(round(rr_raw / 1024.0 * 1000.0, 1))
            offset += 2

    return {
        "hr_bpm": hr_value,
        "sensor_contact": sensor_contact_detected if sensor_contact_supported else None,
        "energy_expended_kj": energy_expended,
        "rr_intervals_ms": rr_intervals,
    }


class BleHeartRateSource:
    """:class:`~smartwake.sensors.SensorSource` over a connected BleakClient.

    ``start`` must be called from the event loop; the GATT subscription runs
    as a task and a failure there is logged and passed to ``on_error``.
    """

    def __init__(self, client: BleakClient, clock: Scheduler | None = None) -> None:
        self.client = client
        self.clock = clock
        self._handler: Callable[[HeartRateSample], None] | None = None
        self._on_error: Callable[[Exception], None] | None = None
        self._subscribed = False
        self._task: asyncio.Task | None = None

    def _now(self) -> datetime:
        return self.clock.now() if self.clock is not None else datetime.now(timezone.utc)

    def start(
        self,
        handler: Callable[[HeartRateSample], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if not self.client.is_connected:
            raise SensorUnavailableError("heart-rate strap is not connected")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise SensorUnavailableError("heart-rate source needs a running event loop") from None
        self._handler = handler
        self._on_error = on_error
        self._task = loop.create_task(self._subscribe())

    async def _subscribe(self) -> None:
        try:
            await self.client.start_notify(HR_MEASUREMENT_UUID, self._on_notification)
            self._subscribed = True
        except Exception as e:
            logger.warning("Heart-rate subscription failed: %s", e)
            if self._on_error is not None:
                self._on_error(e)

    def _on_notification(self, _char: BleakGATTCharacteristic, data: bytearray) -> None:
        if self._handler is None:
            return
        try:
            parsed = parse_heart_rate(data)
        except (IndexError, struct.error):
            logger.debug("Dropping malformed heart-rate measurement %s", bytes(data).hex())
            return
        if parsed["hr_bpm"] <= 0 or parsed["sensor_contact"] is False:
            return
        self._handler(HeartRateSample(timestamp=self._now(), bpm=float(parsed["hr_bpm"])))

    def stop(self) -> None:
        self._handler = None
        self._on_error = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self._subscribed:
            self._subscribed = False
            asyncio.get_running_loop().create_task(self._unsubscribe())

    async def _unsubscribe(self) -> None:
        try:
            await self.client.stop_notify(HR_MEASUREMENT_UUID)
        except Exception as e:
            logger.debug("Heart-rate unsubscribe failed: %s", e)
