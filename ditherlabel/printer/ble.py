from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

from bleak import BleakClient

logger = logging.getLogger(__name__)

PRINTER_WRITE_UUID = "0000ff02-0000-1000-8000-00805f9b34fb"


class BleakChannel:
    """Write channel over a connected BLE client's print characteristic."""

    def __init__(self, client: BleakClient, char_uuid: str = PRINTER_WRITE_UUID):
        self.client = client
        self.char_uuid = char_uuid

    async def write(self, data: bytes, response: bool) -> None:
        await self.client.write_gatt_char(self.char_uuid, bytes(data), response=response)


@asynccontextmanager
async def connect_printer(address: str, timeout: float = 10.0) -> AsyncIterator[BleakChannel]:
    """Connect to an already paired printer by address and yield its channel."""
    logger.info("Connecting to printer %s", address)
    async with BleakClient(address, timeout=timeout) as client:
        yield BleakChannel(client)
    logger.info("Disconnected from printer %s", address)
