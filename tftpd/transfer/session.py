"""
Read Transfer State Machine

Design Decision: Lock-Step Sending
==================================

TFTP allows exactly one DATA block in flight. The sender:
1. Sends block n
2. Waits for ACK n (bounded by the ack timeout)
3. On timeout resends block n, up to max_retries sends in total
4. Ignores anything that is not ACK n - a late ACK n-1 or a duplicate
   is noise and must never advance or reset the transfer

Termination: a block shorter than BLOCK_SIZE is the last one. The
transfer completes only once that block is acknowledged, so a file whose
size is a multiple of BLOCK_SIZE ends with an empty block.

States:
    VALIDATING -> OPENING -> TRANSFERRING -> COMPLETED
                                          \\-> ABORTED
Any state may go to ABORTED; exactly one terminal state is reached.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..files import AccessDenied, FileNotFound, FileResolver, FileReader
from ..packet import (
    BLOCK_SIZE, Data, DecodeError, Error, ErrorCode, Mode, Opcode,
    ReadRequest, decode,
)
from .protocol import Address, DatagramChannel

logger = logging.getLogger(__name__)

# Defaults; the server passes the configured values
ACK_TIMEOUT = 5.0  # seconds
MAX_RETRIES = 3

# Block numbers are 16-bit on the wire
BLOCK_MODULO = 1 << 16

SendError = Callable[[bytes, Address], None]
OpenChannel = Callable[[Address], Awaitable[DatagramChannel]]


class TransferState(Enum):
    """Lifecycle of one read transfer."""
    VALIDATING = 'validating'
    OPENING = 'opening'
    TRANSFERRING = 'transferring'
    COMPLETED = 'completed'
    ABORTED = 'aborted'


@dataclass
class TransferOutcome:
    """Terminal result of a transfer, returned by ReadTransfer.run()."""
    client: Address
    filename: str
    state: TransferState
    reason: str = ''
    blocks_sent: int = 0
    bytes_sent: int = 0
    retransmits: int = 0
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.state == TransferState.COMPLETED

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return max(0.0, self.finished_at - self.started_at)

    def to_dict(self) -> dict:
        return {
            'client': f"{self.client[0]}:{self.client[1]}",
            'filename': self.filename,
            'state': self.state.value,
            'reason': self.reason,
            'blocks_sent': self.blocks_sent,
            'bytes_sent': self.bytes_sent,
            'retransmits': self.retransmits,
            'duration': self.duration,
        }


class TransferAborted(Exception):
    """
    Ends a transfer early.

    error is the ERROR packet already sent to the client, if any.
    """

    def __init__(self, reason: str, error: Optional[Error] = None):
        super().__init__(reason)
        self.reason = reason
        self.error = error


class ReadTransfer:
    """
    Serves one read request from validation to completion.

    Owned by a single task; nothing here is shared with other transfers.

    Args:
        request: The decoded RRQ
        client: Address the RRQ came from
        resolver: Maps the filename to a readable file under the root
        send_error: Sends a datagram from the well-known port
        open_channel: Opens the dedicated endpoint for this client
        ack_timeout: Seconds to wait for each ACK
        max_retries: Sends per block before giving up
    """

    def __init__(self, request: ReadRequest, client: Address,
                 resolver: FileResolver, send_error: SendError,
                 open_channel: OpenChannel,
                 ack_timeout: float = ACK_TIMEOUT,
                 max_retries: int = MAX_RETRIES):
        self.request = request
        self.client = client
        self.resolver = resolver
        self.send_error = send_error
        self.open_channel = open_channel
        self.ack_timeout = ack_timeout
        self.max_retries = max_retries

        self.state = TransferState.VALIDATING
        self.block = 1
        self.retries = 0
        self.outcome = TransferOutcome(
            client=client,
            filename=request.filename,
            state=self.state,
        )

    @property
    def done(self) -> bool:
        return self.state in (TransferState.COMPLETED, TransferState.ABORTED)

    async def run(self) -> TransferOutcome:
        """
        Drive the transfer to its terminal state.

        Never raises for protocol, file or socket failures; those end
        in an ABORTED outcome. Cancellation propagates.
        """
        if self.done:
            raise RuntimeError("Transfer already finished")

        try:
            self._validate()
            reader = await self._open()
            async with reader:
                await self._transfer(reader)
        except TransferAborted as e:
            return self._finish(TransferState.ABORTED, e.reason)
        except OSError as e:
            # Local socket failure; the channel is presumed broken
            logger.error(f"Transfer of {self.request.filename} to {self.client} failed: {e}")
            return self._finish(TransferState.ABORTED, f"transport error: {e}")

        logger.info(f"File transfer completed: {self.request.filename} to {self.client} "
                    f"({self.outcome.bytes_sent:,} bytes, {self.outcome.blocks_sent} blocks)")
        return self._finish(TransferState.COMPLETED)

    def _finish(self, state: TransferState, reason: str = '') -> TransferOutcome:
        self.state = state
        self.outcome.state = state
        self.outcome.reason = reason
        self.outcome.finished_at = time.time()
        return self.outcome

    def _reject(self, code: ErrorCode, message: str, reason: str):
        """Send a pre-transfer ERROR from the well-known port and abort."""
        error = Error(code=code, message=message)
        self.send_error(error.to_bytes(), self.client)
        raise TransferAborted(reason, error)

    def _validate(self):
        self.state = TransferState.VALIDATING
        if Mode.from_string(self.request.mode) is None:
            logger.warning(f"Unsupported mode {self.request.mode!r} from {self.client}")
            self._reject(ErrorCode.NOT_DEFINED, "Unsupported transfer mode",
                         f"unsupported mode {self.request.mode!r}")

    async def _open(self) -> FileReader:
        self.state = TransferState.OPENING
        filename = self.request.filename

        # Path escapes are refused before any open() call
        try:
            self.resolver.resolve(filename)
        except AccessDenied:
            self._reject(ErrorCode.ACCESS_VIOLATION, "Access denied",
                         "path outside served directory")

        try:
            return await self.resolver.open(filename)
        except FileNotFound:
            self._reject(ErrorCode.FILE_NOT_FOUND, "File not found", "file not found")
        except AccessDenied:
            self._reject(ErrorCode.ACCESS_VIOLATION, "Cannot open file", "cannot open file")

    async def _transfer(self, reader: FileReader):
        self.state = TransferState.TRANSFERRING
        channel = await self.open_channel(self.client)
        logger.info(f"Starting transfer: {reader.path} to {self.client}")

        try:
            while True:
                try:
                    payload = await reader.read(BLOCK_SIZE)
                except OSError as e:
                    logger.error(f"Error reading file {reader.path}: {e}")
                    raise TransferAborted(f"read error: {e}")

                packet = Data(block=self.block, payload=payload).to_bytes()

                if not await self._send_block(channel, packet):
                    logger.warning(f"Max retries exceeded for block {self.block}")
                    error = Error(code=ErrorCode.NOT_DEFINED, message="Transfer failed: no ACK")
                    channel.send(error.to_bytes())
                    raise TransferAborted(f"no ACK for block {self.block}", error)

                self.outcome.blocks_sent += 1
                self.outcome.bytes_sent += len(payload)

                # Ack-gated: the short block ends the transfer once acknowledged
                if len(payload) < BLOCK_SIZE:
                    return

                self.block = (self.block + 1) % BLOCK_MODULO
        finally:
            channel.close()

    async def _send_block(self, channel: DatagramChannel, packet: bytes) -> bool:
        """
        Send one DATA packet until its ACK arrives.

        Returns:
            True once ACK for the current block is received, False when
            every retry timed out
        """
        loop = asyncio.get_running_loop()
        self.retries = 0

        while self.retries < self.max_retries:
            if self.retries:
                self.outcome.retransmits += 1
            channel.send(packet)

            if await self._await_ack(channel, loop.time() + self.ack_timeout):
                return True

            self.retries += 1
            logger.info(f"Timeout waiting for ACK {self.block}, retry {self.retries}")

        return False

    async def _await_ack(self, channel: DatagramChannel, deadline: float) -> bool:
        """Wait until deadline for ACK of the current block, skipping noise."""
        loop = asyncio.get_running_loop()

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False

            datagram = await channel.receive(remaining)
            if datagram is None:
                return False

            try:
                ack = decode(datagram, Opcode.ACK)
            except DecodeError as e:
                logger.debug(f"Discarding datagram from {self.client}: {e}")
                continue

            if ack.block == self.block:
                return True

            logger.debug(f"Discarding ACK {ack.block} while waiting for ACK {self.block}")
