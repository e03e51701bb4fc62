"""Scan for companion devices advertising the sync service."""

from __future__ import annotations

import asyncio

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from smartwake import config
from smartwake.ble import SYNC_SERVICE_UUID

logger = config.get_logger()

COMPANION_NAME_PREFIX = "SMARTWAKE"


def is_companion(device: BLEDevice, adv: AdvertisementData) -> bool:
    name = adv.local_name or device.name or ""
    uuids = [u.lower() for u in adv.service_uuids or []]
    return SYNC_SERVICE_UUID in uuids or name.upper().startswith(COMPANION_NAME_PREFIX)


async def scan(timeout: float = 10.0) -> list[tuple[BLEDevice, AdvertisementData]]:
    """Scan for nearby companions.

    Returns a list of (device, advertisement_data) tuples, one per address.
    """
    results: list[tuple[BLEDevice, AdvertisementData]] = []

    def _callback(device: BLEDevice, adv: AdvertisementData) -> None:
        if not is_companion(device, adv):
            return
        if any(d.address == device.address for d, _ in results):
            return
        results.append((device, adv))
        logger.info(
            "Found %s [%s] RSSI=%s dBm",
            adv.local_name or device.name or "?",
            device.address,
            adv.rssi,
        )

    scanner = BleakScanner(detection_callback=_callback)
    logger.info("Scanning for companions (%ss)...", timeout)
    await scanner.start()
    await asyncio.sleep(timeout)
    await scanner.stop()

    if not results:
        logger.info("No companion found.")
    return results


async def find_companion(timeout: float = 10.0) -> BLEDevice | None:
    """Find the first companion device and return it."""
    results = await scan(timeout)
    if results:
        return results[0][0]
    return None
