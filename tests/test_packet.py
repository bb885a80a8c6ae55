import pytest

from tftpd.packet import (
    BLOCK_SIZE,
    Ack,
    Data,
    Error,
    ErrorCode,
    MalformedPacket,
    MissingTerminator,
    Opcode,
    PacketTooShort,
    ReadRequest,
    WriteRequest,
    WrongOpcode,
    decode,
    encode,
    parse,
    peek_opcode,
)


def test_rrq_exact_bytes():
    raw = encode(ReadRequest(filename="file", mode="netascii"))
    assert raw == bytes.fromhex("0001 66696c65 00 6e65746173636969 00")


def test_rrq_roundtrip():
    rrq = ReadRequest(filename="test.txt", mode="octet")
    raw = rrq.to_bytes()
    assert len(raw) == 2 + len("test.txt") + 1 + len("octet") + 1
    assert decode(raw, Opcode.RRQ) == rrq


def test_wrq_roundtrip():
    wrq = WriteRequest(filename="dir/upload.bin", mode="mail")
    assert decode(encode(wrq), Opcode.WRQ) == wrq


def test_request_rejects_unknown_mode():
    with pytest.raises(ValueError):
        encode(ReadRequest(filename="file", mode="binary"))


def test_request_rejects_uppercase_mode():
    with pytest.raises(ValueError):
        encode(ReadRequest(filename="file", mode="OCTET"))


def test_request_decode_keeps_unknown_mode():
    raw = b"\x00\x01file\x00binary\x00"
    assert decode(raw, Opcode.RRQ) == ReadRequest(filename="file", mode="binary")


def test_request_ignores_trailing_options():
    raw = b"\x00\x01file\x00octet\x00blksize\x001428\x00"
    assert decode(raw, Opcode.RRQ) == ReadRequest(filename="file", mode="octet")


@pytest.mark.parametrize("opcode", list(Opcode))
def test_two_bytes_is_too_short_for_every_kind(opcode):
    with pytest.raises(PacketTooShort):
        decode(bytes([0, int(opcode)]), opcode)


def test_rrq_wrong_opcode():
    raw = b"\x00\x02file\x00octet\x00"
    with pytest.raises(WrongOpcode):
        decode(raw, Opcode.RRQ)


def test_rrq_missing_filename_terminator():
    with pytest.raises(MissingTerminator):
        decode(b"\x00\x01filename", Opcode.RRQ)


def test_rrq_missing_mode_terminator():
    with pytest.raises(MissingTerminator):
        decode(b"\x00\x01file\x00octet", Opcode.RRQ)


def test_rrq_without_mode_field():
    with pytest.raises(MalformedPacket):
        decode(b"\x00\x01file\x00", Opcode.RRQ)


def test_data_roundtrip():
    data = Data(block=42, payload=b"Hello, TFTP!")
    raw = data.to_bytes()
    assert len(raw) == 4 + len(b"Hello, TFTP!")
    assert decode(raw, Opcode.DATA) == data


def test_data_empty_payload_is_final():
    parsed = decode(b"\x00\x03\x00\x07", Opcode.DATA)
    assert parsed == Data(block=7, payload=b"")
    assert parsed.is_final


def test_data_full_block_is_not_final():
    assert not Data(block=1, payload=b"x" * BLOCK_SIZE).is_final
    assert Data(block=1, payload=b"x" * (BLOCK_SIZE - 1)).is_final


def test_data_block_range():
    for block in (0, 1, 65535):
        assert decode(encode(Data(block=block, payload=b"x")), Opcode.DATA).block == block


def test_data_oversized_payload():
    with pytest.raises(MalformedPacket):
        decode(b"\x00\x03\x00\x01" + b"x" * (BLOCK_SIZE + 1), Opcode.DATA)


def test_ack_roundtrip():
    raw = Ack(block=13).to_bytes()
    assert raw == b"\x00\x04\x00\x0d"
    assert decode(raw, Opcode.ACK) == Ack(block=13)


def test_ack_with_extra_bytes():
    with pytest.raises(MalformedPacket):
        decode(b"\x00\x04\x00\x01\x00", Opcode.ACK)


def test_ack_wrong_opcode():
    with pytest.raises(WrongOpcode):
        decode(Data(block=1, payload=b"").to_bytes(), Opcode.ACK)


def test_error_roundtrip():
    error = Error(code=ErrorCode.ACCESS_VIOLATION, message="Access violation")
    raw = error.to_bytes()
    assert raw[-1] == 0
    parsed = decode(raw, Opcode.ERROR)
    assert parsed.code == 2
    assert parsed.message == "Access violation"


def test_error_empty_message():
    assert decode(b"\x00\x05\x00\x00\x00", Opcode.ERROR) == Error(code=0, message="")


def test_error_missing_terminator():
    with pytest.raises(MissingTerminator):
        decode(b"\x00\x05\x00\x01oops", Opcode.ERROR)


def test_error_too_short():
    with pytest.raises(PacketTooShort):
        decode(b"\x00\x05\x00\x01", Opcode.ERROR)


def test_peek_opcode():
    assert peek_opcode(b"\x00\x01file\x00octet\x00") == Opcode.RRQ
    assert peek_opcode(b"\x00\x09") is None
    assert peek_opcode(b"\x00") is None


def test_parse_dispatches_on_opcode():
    assert parse(Ack(block=3).to_bytes()) == Ack(block=3)
    assert parse(ReadRequest("a", "octet").to_bytes()) == ReadRequest("a", "octet")
    with pytest.raises(WrongOpcode):
        parse(b"\x00\x09\x00\x00")
    with pytest.raises(PacketTooShort):
        parse(b"\x01")
