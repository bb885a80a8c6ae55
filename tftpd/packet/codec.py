"""
TFTP Packet Codec

Design Decision: Message Representation
=======================================

Options Considered:
1. Raw bytes passed around, fields sliced where needed
   - No allocation, but every caller re-implements the layout
2. One generic Packet class with an opcode and a dict of fields
   - Flexible, but loses type information
3. One frozen dataclass per message kind
   - Typed fields, cheap equality for tests
   - Closed set of kinds mirrors the closed opcode set

Decision: One dataclass per message kind + module-level encode/decode
- encode() dispatches on the dataclass, decode() on the expected opcode
- decode() raises a DecodeError subclass so callers can tell a short
  datagram from a wrong opcode from a broken terminator

Wire Format (RFC 1350, all integers big-endian u16):
```
RRQ/WRQ  | 01/02 | filename | 0 | mode | 0 |
DATA     | 03    | block #  | payload (0-512) |
ACK      | 04    | block #  |
ERROR    | 05    | code     | message | 0 |
```
"""

import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar, Dict, Optional, Union

# Maximum DATA payload; a shorter payload marks the final block
BLOCK_SIZE = 512

OPCODE_FORMAT = '!H'
HEADER_FORMAT = '!HH'  # opcode, block/code
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

TEXT_ENCODING = 'utf-8'


class Opcode(IntEnum):
    """TFTP opcodes."""
    RRQ = 1
    WRQ = 2
    DATA = 3
    ACK = 4
    ERROR = 5


class ErrorCode(IntEnum):
    """Error codes carried by ERROR packets."""
    NOT_DEFINED = 0
    FILE_NOT_FOUND = 1
    ACCESS_VIOLATION = 2
    DISK_FULL = 3
    ILLEGAL_OPERATION = 4
    UNKNOWN_TID = 5
    FILE_EXISTS = 6
    NO_SUCH_USER = 7


class Mode(Enum):
    """Recognized transfer modes."""
    NETASCII = 'netascii'
    OCTET = 'octet'
    MAIL = 'mail'

    @classmethod
    def from_string(cls, value: str) -> Optional['Mode']:
        """Look up an exact mode literal, None if unrecognized."""
        try:
            return cls(value)
        except ValueError:
            return None


# === Decode errors ===

class DecodeError(ValueError):
    """Raised when a datagram cannot be decoded as the expected kind."""


class PacketTooShort(DecodeError):
    """Datagram is shorter than the kind's minimum length."""


class WrongOpcode(DecodeError):
    """Leading opcode does not match the expected kind."""


class MissingTerminator(DecodeError):
    """A NUL-terminated field has no terminator within the datagram."""


class MalformedPacket(DecodeError):
    """Datagram has the right opcode but an invalid body."""


# === Messages ===

@dataclass(frozen=True)
class ReadRequest:
    """RRQ: client asks to read a file."""
    opcode: ClassVar[Opcode] = Opcode.RRQ

    filename: str
    mode: str = Mode.OCTET.value

    def to_bytes(self) -> bytes:
        return _pack_request(self.opcode, self.filename, self.mode)


@dataclass(frozen=True)
class WriteRequest:
    """WRQ: client asks to write a file."""
    opcode: ClassVar[Opcode] = Opcode.WRQ

    filename: str
    mode: str = Mode.OCTET.value

    def to_bytes(self) -> bytes:
        return _pack_request(self.opcode, self.filename, self.mode)


@dataclass(frozen=True)
class Data:
    """DATA: one block of file content."""
    opcode: ClassVar[Opcode] = Opcode.DATA

    block: int
    payload: bytes = b''

    @property
    def is_final(self) -> bool:
        """A payload shorter than a full block ends the transfer."""
        return len(self.payload) < BLOCK_SIZE

    def to_bytes(self) -> bytes:
        return struct.pack(HEADER_FORMAT, self.opcode, self.block) + self.payload


@dataclass(frozen=True)
class Ack:
    """ACK: acknowledges one DATA block."""
    opcode: ClassVar[Opcode] = Opcode.ACK

    block: int

    def to_bytes(self) -> bytes:
        return struct.pack(HEADER_FORMAT, self.opcode, self.block)


@dataclass(frozen=True)
class Error:
    """ERROR: terminates a transfer."""
    opcode: ClassVar[Opcode] = Opcode.ERROR

    code: int
    message: str = ''

    def to_bytes(self) -> bytes:
        return (
            struct.pack(HEADER_FORMAT, self.opcode, self.code) +
            self.message.encode(TEXT_ENCODING) +
            b'\x00'
        )


Message = Union[ReadRequest, WriteRequest, Data, Ack, Error]

# Minimum datagram size per kind: opcode plus the smallest possible body
MIN_LENGTH: Dict[Opcode, int] = {
    Opcode.RRQ: 4,
    Opcode.WRQ: 4,
    Opcode.DATA: HEADER_SIZE,
    Opcode.ACK: HEADER_SIZE,
    Opcode.ERROR: HEADER_SIZE + 1,
}


def _pack_request(opcode: Opcode, filename: str, mode: str) -> bytes:
    if Mode.from_string(mode) is None:
        raise ValueError(f"Unsupported transfer mode: {mode!r}")
    return (
        struct.pack(OPCODE_FORMAT, opcode) +
        filename.encode(TEXT_ENCODING) + b'\x00' +
        mode.encode(TEXT_ENCODING) + b'\x00'
    )


def _decode_text(raw: bytes, field: str) -> str:
    try:
        return raw.decode(TEXT_ENCODING)
    except UnicodeDecodeError as e:
        raise MalformedPacket(f"{field} is not valid text: {e}") from e


def _unpack_request(data: bytes) -> tuple:
    """Split an RRQ/WRQ body into (filename, mode)."""
    name_end = data.find(b'\x00', 2)
    if name_end < 0:
        raise MissingTerminator("filename is not NUL-terminated")

    if name_end + 1 >= len(data):
        raise MalformedPacket("request has no mode field")

    mode_end = data.find(b'\x00', name_end + 1)
    if mode_end < 0:
        raise MissingTerminator("mode is not NUL-terminated")

    # Anything after the mode terminator is an option extension; ignored
    filename = _decode_text(data[2:name_end], 'filename')
    mode = _decode_text(data[name_end + 1:mode_end], 'mode')
    return filename, mode


def encode(message: Message) -> bytes:
    """
    Serialize a message to wire bytes.

    Raises:
        ValueError: for a request whose mode is not recognized
    """
    return message.to_bytes()


def decode(data: bytes, expected_opcode: Opcode) -> Message:
    """
    Decode a datagram as the given message kind.

    Args:
        data: Raw datagram
        expected_opcode: Kind the caller is waiting for

    Returns:
        The decoded message

    Raises:
        PacketTooShort, WrongOpcode, MissingTerminator, MalformedPacket
    """
    expected_opcode = Opcode(expected_opcode)

    if len(data) < MIN_LENGTH[expected_opcode]:
        raise PacketTooShort(
            f"{expected_opcode.name} needs at least {MIN_LENGTH[expected_opcode]} "
            f"bytes, got {len(data)}"
        )

    opcode, = struct.unpack_from(OPCODE_FORMAT, data)
    if opcode != expected_opcode:
        raise WrongOpcode(f"expected opcode {int(expected_opcode)}, got {opcode}")

    if expected_opcode in (Opcode.RRQ, Opcode.WRQ):
        filename, mode = _unpack_request(data)
        if expected_opcode == Opcode.RRQ:
            return ReadRequest(filename=filename, mode=mode)
        return WriteRequest(filename=filename, mode=mode)

    if expected_opcode == Opcode.DATA:
        _, block = struct.unpack_from(HEADER_FORMAT, data)
        payload = bytes(data[HEADER_SIZE:])
        if len(payload) > BLOCK_SIZE:
            raise MalformedPacket(f"payload of {len(payload)} bytes exceeds {BLOCK_SIZE}")
        return Data(block=block, payload=payload)

    if expected_opcode == Opcode.ACK:
        if len(data) != HEADER_SIZE:
            raise MalformedPacket(f"ACK must be {HEADER_SIZE} bytes, got {len(data)}")
        _, block = struct.unpack_from(HEADER_FORMAT, data)
        return Ack(block=block)

    # Opcode.ERROR
    if data[-1] != 0:
        raise MissingTerminator("error message is not NUL-terminated")
    _, code = struct.unpack_from(HEADER_FORMAT, data)
    return Error(code=code, message=_decode_text(data[HEADER_SIZE:-1], 'message'))


def peek_opcode(data: bytes) -> Optional[Opcode]:
    """Return the datagram's opcode, or None if absent or unknown."""
    if len(data) < 2:
        return None
    value, = struct.unpack_from(OPCODE_FORMAT, data)
    try:
        return Opcode(value)
    except ValueError:
        return None


def parse(data: bytes) -> Message:
    """Decode a datagram as whatever kind its leading opcode names."""
    opcode = peek_opcode(data)
    if opcode is None:
        if len(data) < 2:
            raise PacketTooShort(f"datagram of {len(data)} bytes has no opcode")
        raise WrongOpcode(f"unknown opcode {struct.unpack_from(OPCODE_FORMAT, data)[0]}")
    return decode(data, opcode)
