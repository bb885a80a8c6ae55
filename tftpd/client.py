"""
TFTP Read Client

Downloads one file with a read request. Used by `tftpd get` and by the
loopback tests.

Download Flow:
1. Send RRQ to the server's well-known port
2. The first DATA fixes the server's transfer ID (its ephemeral port);
   datagrams from any other address get ERROR "Unknown transfer ID"
3. Write each in-order block, ACK it, re-ACK duplicates
4. Stop after the short block
"""

import asyncio
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Tuple

from .packet import (
    Ack, DecodeError, Error, ErrorCode, Mode, Opcode, ReadRequest, decode, peek_opcode,
)

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


class TFTPError(Exception):
    """The server answered with an ERROR packet."""

    def __init__(self, code: int, message: str):
        super().__init__(f"TFTP error {code}: {message}")
        self.code = code
        self.message = message


@dataclass
class DownloadResult:
    """Summary of a finished download."""
    filename: str
    bytes_received: int = 0
    blocks: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return 0.0
        return max(0.0, self.end_time - self.start_time)


class _ClientProtocol(asyncio.DatagramProtocol):

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Address):
        self.queue.put_nowait((data, addr))

    def error_received(self, exc):
        logger.debug(f"Client socket error: {exc}")


class TFTPClient:
    """
    Minimal TFTP read client.

    Args:
        host: Server host
        port: Server request port
        timeout: Seconds to wait for each DATA
        retries: Resends of the last packet before giving up
    """

    def __init__(self, host: str = '127.0.0.1', port: int = 69,
                 timeout: float = 5.0, retries: int = 3):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.retries = retries

    async def download(self, filename: str, out: BinaryIO,
                       mode: str = Mode.OCTET.value) -> DownloadResult:
        """
        Download filename into out.

        Raises:
            TFTPError: the server sent an ERROR packet
            TimeoutError: the server stopped answering
        """
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            _ClientProtocol,
            local_addr=('0.0.0.0', 0),
            family=socket.AF_INET,
        )

        result = DownloadResult(filename=filename)
        try:
            await self._receive_file(transport, protocol, filename, mode, out, result)
        finally:
            transport.close()

        result.end_time = time.time()
        logger.info(f"Downloaded {filename}: {result.bytes_received:,} bytes "
                    f"in {result.blocks} blocks")
        return result

    async def _receive_file(self, transport, protocol: _ClientProtocol,
                            filename: str, mode: str, out: BinaryIO,
                            result: DownloadResult):
        dest: Address = (self.host, self.port)
        server_tid: Optional[Address] = None
        expected = 1

        last_sent = ReadRequest(filename=filename, mode=mode).to_bytes()
        transport.sendto(last_sent, dest)
        attempts = 0

        while True:
            try:
                data, addr = await asyncio.wait_for(protocol.queue.get(), self.timeout)
            except asyncio.TimeoutError:
                attempts += 1
                if attempts > self.retries:
                    raise TimeoutError(f"No response from {dest[0]}:{dest[1]}")
                logger.debug(f"Timeout, resending (attempt {attempts})")
                transport.sendto(last_sent, dest)
                continue

            if server_tid is not None and addr != server_tid:
                error = Error(code=ErrorCode.UNKNOWN_TID, message="Unknown transfer ID")
                transport.sendto(error.to_bytes(), addr)
                continue

            opcode = peek_opcode(data)
            if opcode == Opcode.ERROR:
                try:
                    error = decode(data, Opcode.ERROR)
                except DecodeError:
                    raise TFTPError(ErrorCode.NOT_DEFINED, "Malformed ERROR packet")
                raise TFTPError(error.code, error.message)

            if opcode != Opcode.DATA:
                continue

            try:
                packet = decode(data, Opcode.DATA)
            except DecodeError as e:
                logger.debug(f"Discarding bad DATA from {addr}: {e}")
                continue

            if server_tid is None:
                server_tid = addr
                dest = addr

            ack = Ack(block=packet.block).to_bytes()
            transport.sendto(ack, dest)

            if packet.block != expected:
                # Duplicate of a block already written; the re-ACK is enough
                continue

            out.write(packet.payload)
            result.bytes_received += len(packet.payload)
            result.blocks += 1
            last_sent = ack
            attempts = 0

            if packet.is_final:
                return

            expected = (expected + 1) % 65536
