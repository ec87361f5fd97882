import asyncio
import time

import pytest

from ditherlabel.printer.protocol import END_DATA, PrintJob
from ditherlabel.printer.transport import PrintFailed, send_print_job


class RecordingChannel:
    def __init__(self, fail_on=None, hang_on=None):
        self.writes = []
        self.fail_on = fail_on
        self.hang_on = hang_on

    async def write(self, data, response):
        index = len(self.writes)
        self.writes.append((bytes(data), response, time.monotonic()))
        if index == self.hang_on:
            await asyncio.sleep(10)
        if index == self.fail_on:
            raise OSError("link lost")


def make_job(size=1000):
    return PrintJob(width_bytes=10, rows=size // 10, payload=bytes(size))


def test_sends_header_packets_terminator_in_order():
    channel = RecordingChannel()
    job = make_job()
    count = asyncio.run(send_print_job(channel, job))
    assert count == 8
    assert len(channel.writes) == 10
    assert channel.writes[0][:2] == (job.header, True)
    assert channel.writes[-1][:2] == (END_DATA, True)
    packets = channel.writes[1:-1]
    assert all(response is False for _, response, _ in packets)
    assert b"".join(data for data, _, _ in packets) == job.payload


def test_packets_are_paced():
    channel = RecordingChannel()
    asyncio.run(send_print_job(channel, make_job(512)))
    stamps = [stamp for _, _, stamp in channel.writes]
    # header, 4 packets, terminator; each packet is followed by the delay
    for earlier, later in zip(stamps[1:-1], stamps[2:]):
        assert later - earlier >= 0.009


def test_write_failure_aborts_without_terminator():
    channel = RecordingChannel(fail_on=3)
    with pytest.raises(PrintFailed) as excinfo:
        asyncio.run(send_print_job(channel, make_job()))
    assert excinfo.value.stage == "packet 3"
    assert "link lost" in str(excinfo.value)
    assert len(channel.writes) == 4
    assert all(data != END_DATA for data, _, _ in channel.writes)


def test_write_timeout_raises_print_failed():
    channel = RecordingChannel(hang_on=0)
    with pytest.raises(PrintFailed) as excinfo:
        asyncio.run(send_print_job(channel, make_job(), write_timeout=0.05))
    assert excinfo.value.stage == "header"
    assert len(channel.writes) == 1


def test_custom_packet_size():
    channel = RecordingChannel()
    count = asyncio.run(send_print_job(channel, make_job(100), packet_size=40, packet_delay=0))
    assert count == 3
    assert [len(data) for data, _, _ in channel.writes[1:-1]] == [40, 40, 20]
