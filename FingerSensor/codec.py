import struct
from logging import getLogger
from typing import Union, Iterable
from .enums import HEADER, BROADCAST_ADDRESS, PacketKind, Instruction
from .exceptions import InvalidHeader, InvalidIdentifier, InvalidInstruction, ChecksumMismatch, LengthMismatch, \
    AddressMismatch
from .dataclasses import Packet


# header (2) + address (4) + kind (1) + length (2)
PREAMBLE_SIZE = 9
MIN_PACKET_SIZE = PREAMBLE_SIZE + 1 + 2


PayloadPart = Union[int, bytes, bytearray, Iterable[int]]


def checksum(kind: int, length: int, body: bytes) -> int:
    """The packet checksum: kind, both length bytes and the body, truncated to 16 bits

    Arguments:
        kind {int}
        length {int} -- the length field value
        body {bytes} -- instruction/confirmation byte followed by the payload

    Returns:
        int
    """
    return (kind + (length >> 8 & 0xFF) + (length & 0xFF) + sum(body)) & 0xFFFF


class PacketCodec:

    def __init__(self, address: int = BROADCAST_ADDRESS, strict_address: bool = False) -> None:
        """Encodes command packets and validates response packets

        Keyword Arguments:
            address {int} -- the module address (default: {0xFFFFFFFF})
            strict_address {bool} -- reject responses from other addresses (default: {False})
        """
        self._logger = getLogger(__name__)
        self.address = address
        self.strict_address = strict_address

    @staticmethod
    def flatten(payload: Iterable[PayloadPart]) -> bytes:
        """Concatenate scalar bytes and byte groups in call order

        Arguments:
            payload {Iterable[PayloadPart]}

        Returns:
            bytes
        """
        flattened = bytearray()
        for part in payload:
            if isinstance(part, int):
                flattened.append(part)
            else:
                flattened.extend(part)
        return bytes(flattened)

    def encode(self, kind: PacketKind, instruction: Instruction, *payload: PayloadPart) -> bytes:
        """Build a packet

        Arguments:
            kind {PacketKind}
            instruction {Instruction}
            *payload {PayloadPart} -- scalar bytes or byte groups

        Returns:
            bytes

        Raises:
            InvalidIdentifier
            InvalidInstruction
            ValueError -- a payload value does not fit in a byte
        """
        if kind not in PacketKind.__members__.values():
            raise InvalidIdentifier(f'Packet identifier {kind!r} is invalid')

        if instruction not in Instruction.__members__.values():
            raise InvalidInstruction(f'Instruction code {instruction!r} is invalid')

        body = bytes([instruction]) + self.flatten(payload)

        # The packet length = instruction + payload + checksum (2 bytes)
        length = len(body) + 2

        packet = struct.pack('>HIBH', HEADER, self.address, kind, length) + body + \
            struct.pack('>H', checksum(kind, length, body))

        self._logger.debug(f'Encoded {PacketKind(kind).name} {Instruction(instruction).name}: {packet.hex(" ")}')

        return packet

    def decode(self, buffer: Union[bytes, bytearray], expected_length: int = None) -> Packet:
        """Validate a received packet and extract its confirmation code and payload

        Arguments:
            buffer {Union[bytes, bytearray]}

        Keyword Arguments:
            expected_length {int} -- the total size the caller expects (default: {None})

        Returns:
            Packet

        Raises:
            LengthMismatch
            ChecksumMismatch
            InvalidHeader
            InvalidIdentifier
            AddressMismatch
        """
        buffer = bytes(buffer)

        if expected_length is not None and len(buffer) != expected_length:
            raise LengthMismatch(f'Expected {expected_length} bytes, received {len(buffer)}')

        if len(buffer) < MIN_PACKET_SIZE:
            raise LengthMismatch(f'A packet has at least {MIN_PACKET_SIZE} bytes, received {len(buffer)}')

        header, address, kind, length = struct.unpack('>HIBH', buffer[:PREAMBLE_SIZE])
        body = buffer[PREAMBLE_SIZE:-2]
        received_checksum, = struct.unpack('>H', buffer[-2:])

        calculated_checksum = checksum(kind, length, body)
        if received_checksum != calculated_checksum:
            self._logger.error(f'Checksum mismatch - received: {received_checksum:#06x} - '
                               f'calculated: {calculated_checksum:#06x}')
            raise ChecksumMismatch(f'Checksum {received_checksum:#06x} does not match {calculated_checksum:#06x}')

        if header != HEADER:
            raise InvalidHeader(f'Invalid packet header {header:#06x}')

        if kind not in PacketKind.__members__.values():
            raise InvalidIdentifier(f'Packet identifier {kind:#04x} is invalid')

        if length != len(buffer) - PREAMBLE_SIZE:
            raise LengthMismatch(f'Length field {length} does not match the {len(buffer)} bytes received')

        if self.strict_address and address != self.address:
            raise AddressMismatch(f'Packet from {address:#010x}, expected {self.address:#010x}')

        return Packet(kind=PacketKind(kind), address=address, confirmation_code=body[0], payload=body[1:])
