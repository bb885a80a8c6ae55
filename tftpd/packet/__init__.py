"""
Packet Module - TFTP Wire Codec

Encodes and decodes the five TFTP message kinds.
"""

from .codec import (
    BLOCK_SIZE,
    Opcode,
    ErrorCode,
    Mode,
    ReadRequest,
    WriteRequest,
    Data,
    Ack,
    Error,
    Message,
    DecodeError,
    PacketTooShort,
    WrongOpcode,
    MissingTerminator,
    MalformedPacket,
    encode,
    decode,
    peek_opcode,
    parse,
)

__all__ = [
    'BLOCK_SIZE',
    'Opcode',
    'ErrorCode',
    'Mode',
    'ReadRequest',
    'WriteRequest',
    'Data',
    'Ack',
    'Error',
    'Message',
    'DecodeError',
    'PacketTooShort',
    'WrongOpcode',
    'MissingTerminator',
    'MalformedPacket',
    'encode',
    'decode',
    'peek_opcode',
    'parse',
]
