"""
HID report builders for the light bar.

Two 65-byte report shapes are used. The mode report (0xEC 0x35) carries a
single color sample; the stream report (0xEC 0x40) repeats the color for all
19 segments of the bar.
"""

import config

REPORT_ID = 0xEC

MODE_COMMAND = 0x35
MODE_COLOR_OFFSET = 9

STREAM_COMMAND = 0x40
STREAM_FIRST_OFFSET = 5
STREAM_SEGMENTS = 19
STREAM_END = STREAM_FIRST_OFFSET + STREAM_SEGMENTS * 3  # exclusive, byte 61 is last

BLACK = (0, 0, 0)


def _mode_template():
    report = bytearray(config.REPORT_SIZE)
    report[0] = REPORT_ID
    report[1] = MODE_COMMAND
    report[5] = 0x01
    report[8] = 0x01
    return report


def _stream_template():
    report = bytearray(config.REPORT_SIZE)
    report[0] = REPORT_ID
    report[1] = STREAM_COMMAND
    report[2] = 0x84
    report[4] = 0x04
    return report


def _color_bytes(color):
    r, g, b = color
    for value in (r, g, b):
        if not 0 <= value <= 255:
            raise ValueError(f"Channel value {value} out of byte range")
    return bytes((r, g, b))


def build_mode_packet(color) -> bytes:
    """Mode report with the color at bytes 9..11."""
    report = _mode_template()
    report[MODE_COLOR_OFFSET : MODE_COLOR_OFFSET + 3] = _color_bytes(color)
    return bytes(report)


def build_stream_packet(color) -> bytes:
    """Stream report with the color repeated for every segment."""
    report = _stream_template()
    report[STREAM_FIRST_OFFSET:STREAM_END] = _color_bytes(color) * STREAM_SEGMENTS
    return bytes(report)


def build_black_packet() -> bytes:
    """Stream report with an all-zero payload, sent while paused."""
    return build_stream_packet(BLACK)


def stream_payload(report):
    """Split the payload of a stream report into its (r, g, b) triples."""
    return [
        tuple(report[offset : offset + 3])
        for offset in range(STREAM_FIRST_OFFSET, STREAM_END, 3)
    ]
