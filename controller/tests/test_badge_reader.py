import asyncio
import json
import time

import pytest
from serial import SerialException

from cyberdeck.sensors import badge_reader
from cyberdeck.sensors.badge_reader import BadgeReader, parse_scan_line

FIRMWARE_LINE = (
    '{"cyberdeck_game_name":"Splash","cyberdeck_game_score":"11",'
    '"cyberdeck_game_crc":"12345678","cyberdeck_device_id":"4A02C58C","rename_player":false}\r\n'
)


def test_parse_firmware_line():
    record = parse_scan_line(FIRMWARE_LINE)
    assert record.device_id == "4A02C58C"
    assert record.game_name == "Splash"
    assert record.score == "11"
    assert record.crc == "12345678"
    assert record.rename_requested is False


def test_parse_plain_field_names_and_numbers():
    record = parse_scan_line(json.dumps({"device_id": "AA", "score": 11, "crc": 99, "rename_requested": True}))
    assert record.score == "11"
    assert record.crc == "99"
    assert record.game_name == ""
    assert record.rename_requested is True


def test_record_is_immutable():
    record = parse_scan_line(FIRMWARE_LINE)
    with pytest.raises(Exception):
        record.score = "99"


@pytest.mark.parametrize(
    "line",
    [
        "",
        "   \r\n",
        "garbage from a half-read line",
        '{"cyberdeck_device_id": "AA"',
        "[1, 2, 3]",
        '"just a string"',
        json.dumps({"cyberdeck_game_score": "11"}),
        json.dumps({"cyberdeck_device_id": "", "cyberdeck_game_score": "11"}),
        json.dumps({"cyberdeck_device_id": "AA", "cyberdeck_game_score": ["11"]}),
    ],
)
def test_malformed_lines_are_dropped(line):
    assert parse_scan_line(line) is None


def test_feed_line_calls_callbacks_and_contains_errors():
    seen = []
    reader = BadgeReader(port="/dev/null")

    def broken(record):
        raise RuntimeError("callback blew up")

    reader.register_callback(broken)
    reader.register_callback(seen.append)

    assert reader.feed_line(FIRMWARE_LINE) is not None
    assert reader.feed_line("not json") is None
    assert [r.device_id for r in seen] == ["4A02C58C"]


async def test_malformed_line_leaves_controller_untouched(controller):
    queue = controller.display.attach()
    while not queue.empty():
        queue.get_nowait()
    reader = BadgeReader(port="/dev/null")
    reader.register_callback(controller.on_scan)

    reader.feed_line("{garbage")

    assert queue.empty()
    assert controller.phase.value == "idle"
    assert controller.session is None


class FakeSerial:
    """Replays canned lines, then behaves like an idle port."""

    script = [b"\xff\xfe\r\n", b"nope\r\n", FIRMWARE_LINE.encode("utf-8")]
    instances = []

    def __init__(self, port, baud_rate, timeout=None):
        self.port = port
        self.baud_rate = baud_rate
        self.lines = list(self.script)
        self.closed = False
        FakeSerial.instances.append(self)

    def reset_input_buffer(self):
        pass

    def readline(self):
        if self.lines:
            return self.lines.pop(0)
        time.sleep(0.01)
        return b""

    def close(self):
        self.closed = True


async def test_reader_loop_emits_valid_scans(monkeypatch):
    FakeSerial.instances = []
    monkeypatch.setattr(badge_reader, "Serial", FakeSerial)
    seen = []
    reader = BadgeReader(port="/dev/ttyACM0", baud_rate=115200, retry_seconds=0.01)
    reader.register_callback(seen.append)

    await reader.start()
    for _ in range(100):
        if seen:
            break
        await asyncio.sleep(0.01)
    await reader.stop()

    assert [r.device_id for r in seen] == ["4A02C58C"]
    assert FakeSerial.instances[0].baud_rate == 115200
    assert FakeSerial.instances[0].closed


async def test_reader_retries_until_port_opens(monkeypatch):
    attempts = []

    def flaky_serial(port, baud_rate, timeout=None):
        attempts.append(port)
        if len(attempts) < 3:
            raise SerialException("could not open port")
        return FakeSerial(port, baud_rate, timeout)

    monkeypatch.setattr(badge_reader, "Serial", flaky_serial)
    seen = []
    reader = BadgeReader(port="/dev/ttyACM0", retry_seconds=0.01)
    reader.register_callback(seen.append)

    await reader.start()
    for _ in range(200):
        if seen:
            break
        await asyncio.sleep(0.01)
    await reader.stop()

    assert len(attempts) >= 3
    assert len(seen) == 1


def test_deeply_nested_line_is_dropped():
    assert parse_scan_line("[" * 100000) is None


async def test_reader_survives_deeply_nested_line(monkeypatch):
    monkeypatch.setattr(FakeSerial, "script", [("[" * 100000 + "\r\n").encode("utf-8"), FIRMWARE_LINE.encode("utf-8")])
    monkeypatch.setattr(badge_reader, "Serial", FakeSerial)
    seen = []
    reader = BadgeReader(port="/dev/ttyACM0", retry_seconds=0.01)
    reader.register_callback(seen.append)

    await reader.start()
    for _ in range(100):
        if seen:
            break
        await asyncio.sleep(0.01)
    await reader.stop()

    assert [r.device_id for r in seen] == ["4A02C58C"]
