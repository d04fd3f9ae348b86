"""Tests for packet encoding and validation."""

import struct

import pytest

from FingerSensor.codec import PacketCodec, checksum
from FingerSensor.enums import PacketKind, Instruction
from FingerSensor.exceptions import (
    AddressMismatch,
    ChecksumMismatch,
    InvalidHeader,
    InvalidIdentifier,
    InvalidInstruction,
    LengthMismatch,
)

from conftest import ack


def test_encode_handshake_layout():
    """A payload-less command is header, address, kind, length, instruction, checksum."""
    packet = PacketCodec().encode(PacketKind.COMMAND, Instruction.HANDSHAKE)
    assert packet == bytes.fromhex("EF01 FFFFFFFF 01 0003 40 0044")


def test_encode_flattens_payload_parts_in_order():
    """Scalar bytes and byte groups are concatenated in call order."""
    packet = PacketCodec().encode(
        PacketKind.COMMAND, Instruction.SEARCH, 0x01, b"\x00\x00", [0x00, 0xC8]
    )
    assert packet[9:15] == bytes([0x04, 0x01, 0x00, 0x00, 0x00, 0xC8])


@pytest.mark.parametrize("size", [0, 1, 4, 32])
def test_length_field_and_total_size(size):
    """The length field is payload + 2 and the packet is 10 + payload + 2 bytes."""
    payload = bytes(range(size))
    packet = PacketCodec().encode(PacketKind.COMMAND, Instruction.WRITE_NOTEPAD, payload)
    # the instruction byte counts towards the length field
    length, = struct.unpack(">H", packet[7:9])
    assert length == len(payload) + 1 + 2
    assert len(packet) == 10 + len(payload) + 2


def test_encode_checksum_is_big_endian_sum():
    packet = PacketCodec().encode(PacketKind.COMMAND, Instruction.STORE_TEMPLATE, 0x01, b"\x00\x05")
    expected = 0x01 + 0x00 + 0x06 + 0x06 + 0x01 + 0x00 + 0x05
    assert packet[-2:] == struct.pack(">H", expected)


def test_encode_uses_codec_address():
    packet = PacketCodec(address=0x12345678).encode(PacketKind.COMMAND, Instruction.HANDSHAKE)
    assert packet[2:6] == bytes.fromhex("12345678")


def test_encode_rejects_unknown_kind():
    with pytest.raises(InvalidIdentifier):
        PacketCodec().encode(0x03, Instruction.HANDSHAKE)


def test_encode_rejects_unknown_instruction():
    with pytest.raises(InvalidInstruction):
        PacketCodec().encode(PacketKind.COMMAND, 0x99)


def test_encode_rejects_oversized_payload_value():
    with pytest.raises(ValueError):
        PacketCodec().encode(PacketKind.COMMAND, Instruction.PORT_CONTROL, 0x100)


def test_decode_recovers_encoded_fields():
    """Decoding an encoded packet gives back the kind, the instruction byte and the payload."""
    codec = PacketCodec()
    packet = codec.encode(PacketKind.COMMAND, Instruction.DELETE_TEMPLATE, b"\x00\x07", [0x00, 0x02])
    decoded = codec.decode(packet)
    assert decoded.kind == PacketKind.COMMAND
    assert decoded.confirmation_code == Instruction.DELETE_TEMPLATE
    assert decoded.payload == b"\x00\x07\x00\x02"
    assert decoded.address == 0xFFFFFFFF


def test_decode_acknowledge():
    decoded = PacketCodec().decode(ack(0x09, b"\x00\x00\x00\x00"), expected_length=16)
    assert decoded.kind == PacketKind.ACK
    assert decoded.confirmation_code == 0x09
    assert decoded.payload == b"\x00\x00\x00\x00"


def test_decode_detects_every_single_bit_flip():
    """Any flipped bit between the kind byte and the checksum is a checksum failure."""
    codec = PacketCodec()
    packet = ack(0x00, b"\x00\x05\x00\x64")
    for position in range(6, len(packet) - 2):
        for bit in range(8):
            corrupted = bytearray(packet)
            corrupted[position] ^= 1 << bit
            with pytest.raises(ChecksumMismatch):
                codec.decode(bytes(corrupted))


def test_decode_rejects_corrupted_checksum():
    packet = bytearray(ack(0x00))
    packet[-1] ^= 0x01
    with pytest.raises(ChecksumMismatch):
        PacketCodec().decode(bytes(packet))


def test_decode_rejects_unexpected_length():
    with pytest.raises(LengthMismatch):
        PacketCodec().decode(ack(0x00), expected_length=14)


def test_decode_rejects_truncated_packet():
    with pytest.raises(LengthMismatch):
        PacketCodec().decode(ack(0x00)[:8])


def test_decode_rejects_wrong_header():
    packet = b"\xEF\x02" + ack(0x00)[2:]
    with pytest.raises(InvalidHeader):
        PacketCodec().decode(packet)


def test_decode_rejects_unknown_kind_with_valid_checksum():
    with pytest.raises(InvalidIdentifier):
        PacketCodec().decode(ack(0x00, kind=0x05))


def test_decode_rejects_inconsistent_length_field():
    """A packet whose length field disagrees with its size fails even with a matching checksum."""
    body = b"\x00\x01\x02"
    length = 0x0004
    packet = struct.pack(">HIBH", 0xEF01, 0xFFFFFFFF, 0x07, length) + body + \
        struct.pack(">H", checksum(0x07, length, body))
    with pytest.raises(LengthMismatch):
        PacketCodec().decode(packet)


def test_strict_address():
    codec = PacketCodec(address=0x00000001, strict_address=True)
    with pytest.raises(AddressMismatch):
        codec.decode(ack(0x00, address=0x00000002))
    assert codec.decode(ack(0x00, address=0x00000001)).confirmation_code == 0x00


def test_checksum_wraps_at_16_bits():
    body = bytes([0xFF] * 300)
    assert checksum(0x02, 302, body) == (0x02 + 0x01 + 0x2E + 0xFF * 300) & 0xFFFF
