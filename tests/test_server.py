"""Loopback tests: a real TFTPServer and TFTPClient over UDP on 127.0.0.1."""

import asyncio
import io

import pytest
import pytest_asyncio

from tftpd.client import TFTPClient, TFTPError
from tftpd.config import Config
from tftpd.packet import (
    Ack, Data, Error, ErrorCode, Opcode, ReadRequest, WriteRequest, decode, peek_opcode,
)
from tftpd.server import TFTPServer

ACK_TIMEOUT = 0.2


class RawPeer(asyncio.DatagramProtocol):
    """Bare UDP socket for speaking the protocol by hand."""

    def __init__(self):
        self.queue = asyncio.Queue()
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.queue.put_nowait((data, addr))

    async def recv(self, timeout=2.0):
        return await asyncio.wait_for(self.queue.get(), timeout)

    def send(self, data, addr):
        self.transport.sendto(data, addr)


@pytest_asyncio.fixture
async def server(tmp_path):
    config = Config(
        host="127.0.0.1",
        port=0,
        root_dir=tmp_path / "tftp-root",
        ack_timeout=ACK_TIMEOUT,
        max_retries=3,
    )
    srv = TFTPServer(config)
    await srv.start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def peer():
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        RawPeer, local_addr=("127.0.0.1", 0)
    )
    yield protocol
    transport.close()


def make_client(server):
    host, port = server.address
    return TFTPClient(host=host, port=port, timeout=1.0, retries=2)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_root_directory_created(server):
    assert server.resolver.root.is_dir()
    assert server.is_running


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [0, 1, 511, 512, 1024, 5000])
async def test_download(server, size):
    content = bytes(i % 251 for i in range(size))
    (server.resolver.root / "file.bin").write_bytes(content)
    out = io.BytesIO()

    result = await make_client(server).download("file.bin", out)

    assert out.getvalue() == content
    assert result.bytes_received == size
    assert result.blocks == size // 512 + 1
    await wait_until(lambda: server.transfers_completed == 1)
    assert server.get_stats()["bytes_sent"] == size


@pytest.mark.asyncio
async def test_concurrent_downloads(server):
    (server.resolver.root / "a.bin").write_bytes(b"a" * 3000)
    (server.resolver.root / "b.bin").write_bytes(b"b" * 1500)
    out_a, out_b = io.BytesIO(), io.BytesIO()

    await asyncio.gather(
        make_client(server).download("a.bin", out_a),
        make_client(server).download("b.bin", out_b),
    )

    assert out_a.getvalue() == b"a" * 3000
    assert out_b.getvalue() == b"b" * 1500


@pytest.mark.asyncio
async def test_missing_file(server):
    with pytest.raises(TFTPError) as info:
        await make_client(server).download("nope.txt", io.BytesIO())
    assert info.value.code == ErrorCode.FILE_NOT_FOUND


@pytest.mark.asyncio
async def test_path_escape(server):
    with pytest.raises(TFTPError) as info:
        await make_client(server).download("../../etc/passwd", io.BytesIO())
    assert info.value.code == ErrorCode.ACCESS_VIOLATION
    assert info.value.message == "Access denied"


@pytest.mark.asyncio
async def test_data_comes_from_new_port(server, peer):
    (server.resolver.root / "small.txt").write_bytes(b"hi")

    peer.send(ReadRequest("small.txt", "octet").to_bytes(), server.address)
    data, tid = await peer.recv()

    assert decode(data, Opcode.DATA) == Data(block=1, payload=b"hi")
    assert tid[1] != server.address[1]

    peer.send(Ack(block=1).to_bytes(), tid)
    await wait_until(lambda: server.transfers_completed == 1)


@pytest.mark.asyncio
async def test_unacknowledged_transfer_gives_up(server, peer):
    (server.resolver.root / "small.txt").write_bytes(b"hi")

    peer.send(ReadRequest("small.txt", "octet").to_bytes(), server.address)

    received = [await peer.recv() for _ in range(4)]

    opcodes = [peek_opcode(data) for data, _ in received]
    assert opcodes == [Opcode.DATA, Opcode.DATA, Opcode.DATA, Opcode.ERROR]
    assert decode(received[-1][0], Opcode.ERROR) == Error(
        ErrorCode.NOT_DEFINED, "Transfer failed: no ACK"
    )
    await wait_until(lambda: server.transfers_aborted == 1)

    with pytest.raises(asyncio.TimeoutError):
        await peer.recv(timeout=ACK_TIMEOUT * 2)


@pytest.mark.asyncio
async def test_write_request_refused(server, peer):
    peer.send(WriteRequest("upload.bin", "octet").to_bytes(), server.address)

    data, addr = await peer.recv()

    assert addr[1] == server.address[1]
    assert decode(data, Opcode.ERROR) == Error(ErrorCode.NOT_DEFINED, "Only RRQ is supported")


@pytest.mark.asyncio
async def test_unknown_opcode_refused(server, peer):
    peer.send(b"\x00\x09whatever", server.address)

    data, _ = await peer.recv()

    assert decode(data, Opcode.ERROR).message == "Only RRQ is supported"


@pytest.mark.asyncio
async def test_invalid_rrq(server, peer):
    peer.send(b"\x00\x01no-terminator", server.address)

    data, _ = await peer.recv()

    assert decode(data, Opcode.ERROR) == Error(ErrorCode.NOT_DEFINED, "Invalid RRQ packet")
    assert server.get_stats()["requests_rejected"] == 1


@pytest.mark.asyncio
async def test_runt_and_error_datagrams_ignored(server, peer):
    peer.send(b"\x01", server.address)
    peer.send(Error(ErrorCode.NOT_DEFINED, "bye").to_bytes(), server.address)

    with pytest.raises(asyncio.TimeoutError):
        await peer.recv(timeout=0.2)


@pytest.mark.asyncio
async def test_stop_cancels_transfers(tmp_path):
    config = Config(host="127.0.0.1", port=0, root_dir=tmp_path / "root", ack_timeout=5.0)
    srv = TFTPServer(config)
    await srv.start()
    (srv.resolver.root / "small.txt").write_bytes(b"hi")

    loop = asyncio.get_running_loop()
    transport, peer = await loop.create_datagram_endpoint(RawPeer, local_addr=("127.0.0.1", 0))
    try:
        peer.send(ReadRequest("small.txt", "octet").to_bytes(), srv.address)
        await peer.recv()
        assert srv.get_stats()["active_transfers"] == 1

        await srv.stop()

        assert srv.get_stats()["active_transfers"] == 0
        assert not srv.is_running
    finally:
        transport.close()


@pytest.mark.asyncio
async def test_serve_forever_stops_on_cancel(server):
    task = asyncio.create_task(server.serve_forever())
    await asyncio.sleep(0.05)
    assert server.is_running

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not server.is_running
    assert server.address is None


@pytest.mark.asyncio
async def test_serve_forever_requires_start(tmp_path):
    srv = TFTPServer(Config(host="127.0.0.1", port=0, root_dir=tmp_path / "root"))
    with pytest.raises(RuntimeError):
        await srv.serve_forever()
