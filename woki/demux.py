"""Decoding for Docker's multiplexed stdout/stderr log stream.

Containers without a TTY send each write as a frame: one stream byte
(0 stdin, 1 stdout, 2 stderr), three zero bytes, then a big-endian uint32
payload length. TTY containers send the raw bytes instead.
"""

from __future__ import annotations

import struct

HEADER = struct.Struct(">BxxxL")
STREAM_NAMES = {0: "stdin", 1: "stdout", 2: "stderr"}


def is_multiplexed(data: bytes) -> bool:
    return len(data) >= HEADER.size and data[0] in STREAM_NAMES and data[1:4] == b"\x00\x00\x00"


def split_frames(data: bytes) -> list[tuple[str, bytes]]:
    """Split multiplexed ``data`` into ``(stream_name, payload)`` pairs.

    A final frame cut short (the fetch timed out mid-frame) yields whatever
    payload arrived.
    """
    frames: list[tuple[str, bytes]] = []
    offset = 0
    while offset + HEADER.size <= len(data):
        stream, length = HEADER.unpack_from(data, offset)
        if stream not in STREAM_NAMES:
            raise ValueError(f"invalid stream byte {stream} at offset {offset}")
        start = offset + HEADER.size
        frames.append((STREAM_NAMES[stream], data[start:start + length]))
        offset = start + length
    return frames


def decode_output(data: bytes) -> str:
    """Return log text for display, stripping frame headers when present."""
    if not data:
        return ""
    if is_multiplexed(data):
        try:
            return "".join(payload.decode("utf-8", errors="replace") for _, payload in split_frames(data))
        except ValueError:
            pass
    return data.decode("utf-8", errors="replace")
