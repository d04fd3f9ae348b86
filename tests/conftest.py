"""Shared fixtures: a scripted byte stream standing in for the serial port."""

import struct
import threading
from collections import deque

import pytest

from FingerSensor import FingerSensor


def ack(code, payload=b"", address=0xFFFFFFFF, kind=0x07):
    """Build a response packet the way the module sends it."""
    body = bytes([code]) + bytes(payload)
    length = len(body) + 2
    checksum = (kind + (length >> 8) + (length & 0xFF) + sum(body)) & 0xFFFF
    return struct.pack(">HIBH", 0xEF01, address, kind, length) + body + struct.pack(">H", checksum)


def system_parameters(library_size=200, security_level=3, address=0xFFFFFFFF):
    payload = struct.pack(">HHHHIHH", 0x0004, 0x0009, library_size, security_level, address, 2, 6)
    return ack(0x00, payload)


def index_page(occupied=()):
    bitmap = bytearray(32)
    for slot in occupied:
        bitmap[slot // 8] |= 1 << (slot % 8)
    return ack(0x00, bytes(bitmap))


class FakeTransport:
    """Replies to each drained packet with the next scripted response.

    Responses are delivered from another thread once the channel has armed its
    receive path, like a reader thread would.
    """

    def __init__(self):
        self.protocol = None
        self.writes = []
        self.responses = deque()
        self.repeat = None
        self.write_error = None
        self.opened = None
        self.closed = False

    def open(self, path, baud_rate, protocol):
        self.opened = (path, baud_rate)
        self.protocol = protocol

    def close(self):
        self.closed = True

    def queue(self, *packets, chunks=None):
        """Script responses; chunks splits each one into pieces of those sizes."""
        for packet in packets:
            self.responses.append(split(packet, chunks) if chunks else [packet])

    def write(self, data):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))
        return len(data)

    def drain(self):
        if self.responses:
            pieces = self.responses.popleft()
        elif self.repeat is not None:
            pieces = [self.repeat]
        else:
            return
        threading.Thread(target=self._deliver, args=(pieces,), daemon=True).start()

    def _deliver(self, pieces):
        if not self.protocol.wait_armed(1.0):
            return
        for piece in pieces:
            self.protocol.data_received(piece)

    @property
    def instructions(self):
        return [packet[9] for packet in self.writes]


def split(packet, sizes):
    pieces, offset = [], 0
    for size in sizes:
        pieces.append(packet[offset:offset + size])
        offset += size
    if offset < len(packet):
        pieces.append(packet[offset:])
    return pieces


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sensor(transport):
    device = FingerSensor(
        transport=transport,
        command_timeout=1.0,
        scan_interval=0,
        debounce_delay=0,
    )
    yield device
    device.close()
