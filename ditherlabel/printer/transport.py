import asyncio
import logging
from typing import Optional, Protocol

from ditherlabel.printer.protocol import END_DATA, PACKET_DELAY_S, PACKET_SIZE_BYTES, PrintJob

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """An open byte channel to the printer.

    ``response=True`` waits for the device to acknowledge the write;
    ``response=False`` fires the write without waiting.
    """

    async def write(self, data: bytes, response: bool) -> None:
        ...


class PrintFailed(Exception):
    def __init__(self, stage: str, reason: str):
        super().__init__(f"Print failed while sending {stage}: {reason}")
        self.stage = stage
        self.reason = reason


async def _write(channel: Channel, stage: str, data: bytes, response: bool, timeout: Optional[float]) -> None:
    try:
        await asyncio.wait_for(channel.write(data, response), timeout)
    except asyncio.TimeoutError as exc:
        raise PrintFailed(stage, f"no completion within {timeout}s") from exc
    except Exception as exc:  # noqa: BLE001
        raise PrintFailed(stage, str(exc) or type(exc).__name__) from exc


async def send_print_job(
    channel: Channel,
    job: PrintJob,
    packet_size: int = PACKET_SIZE_BYTES,
    packet_delay: float = PACKET_DELAY_S,
    write_timeout: Optional[float] = None,
) -> int:
    """Send one complete print session and return the number of packets.

    Header and terminator are acknowledged writes. Payload packets go out one
    at a time without acknowledgement, each followed by ``packet_delay``
    seconds so the printer's buffer keeps up. The first failed or timed out
    write aborts the session with :class:`PrintFailed`; nothing is retried.
    """
    logger.info(
        "Starting print session: %d bytes/row, %d rows, %d bytes",
        job.width_bytes,
        job.rows,
        len(job.payload),
    )
    await _write(channel, "header", job.header, True, write_timeout)
    count = 0
    for count, packet in enumerate(job.packets(packet_size), start=1):
        await _write(channel, f"packet {count}", packet, False, write_timeout)
        await asyncio.sleep(packet_delay)
    await _write(channel, "terminator", END_DATA, True, write_timeout)
    logger.info("Print session complete: %d packets", count)
    return count
