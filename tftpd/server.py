"""
TFTP Server - Main Controller

Orchestrates the components:
- TFTPServerProtocol on the well-known port for incoming requests
- FileResolver for the served root directory
- One ReadTransfer task per accepted read request
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Set

from .config import Config
from .files import FileResolver
from .packet import DecodeError, Error, ErrorCode, Opcode, decode, peek_opcode
from .transfer import (
    DatagramChannel, ReadTransfer, TFTPServerProtocol, TransferOutcome, open_channel,
)
from .transfer.protocol import Address

logger = logging.getLogger(__name__)


class TFTPServer:
    """
    A read-only TFTP server.

    Every read request runs as its own asyncio task; the task returns the
    transfer's TransferOutcome, which the server logs and counts.
    """

    def __init__(self, config: Config = None):
        """
        Initialize a server.

        Args:
            config: Server configuration (uses defaults if not provided)
        """
        self.config = config or Config()
        self.config.validate()

        self.root_dir = Path(self.config.root_dir)
        self.resolver: Optional[FileResolver] = None

        self.transport: Optional[asyncio.DatagramTransport] = None
        self.protocol: Optional[TFTPServerProtocol] = None

        self._slots = asyncio.Semaphore(self.config.max_transfers)
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

        # Statistics
        self.requests_received = 0
        self.requests_rejected = 0
        self.transfers_completed = 0
        self.transfers_aborted = 0
        self.active_transfers = 0
        self.bytes_sent = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Optional[Address]:
        """Bound (host, port), useful when the configured port is 0."""
        if self.transport is None:
            return None
        return self.transport.get_extra_info('sockname')[:2]

    async def start(self):
        """Create the root directory and bind the request port."""
        if self._running:
            return

        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.resolver = FileResolver(self.root_dir)

        loop = asyncio.get_running_loop()
        self.transport, self.protocol = await loop.create_datagram_endpoint(
            lambda: TFTPServerProtocol(self.handle_datagram),
            local_addr=(self.config.host, self.config.port),
        )

        self._running = True
        host, port = self.address
        logger.info(f"TFTP server listening on {host}:{port} (RRQ only)")
        logger.info(f"Serving files from: {self.resolver.root}")

    async def stop(self):
        """Stop accepting requests and cancel in-flight transfers."""
        if not self._running:
            return

        logger.info("Stopping TFTP server...")
        self._running = False

        if self.transport:
            self.transport.close()
            self.transport = None

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(f"TFTP server stopped. Completed {self.transfers_completed} transfers, "
                    f"{self.bytes_sent:,} bytes sent")

    async def serve_forever(self):
        """
        Serve an already started server until cancelled, then stop it.
        """
        if not self._running:
            raise RuntimeError("Server not started")

        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await self.stop()

    # === Request handling ===

    def handle_datagram(self, data: bytes, client: Address):
        """Dispatch one datagram received on the well-known port."""
        if len(data) < 2:
            logger.debug(f"Ignoring {len(data)}-byte datagram from {client}")
            return

        self.requests_received += 1
        opcode = peek_opcode(data)

        if opcode == Opcode.RRQ:
            try:
                request = decode(data, Opcode.RRQ)
            except DecodeError as e:
                logger.warning(f"Invalid RRQ from {client}: {e}")
                self._reject(client, ErrorCode.NOT_DEFINED, "Invalid RRQ packet")
                return

            logger.info(f"RRQ from {client}: filename={request.filename} mode={request.mode}")
            task = asyncio.create_task(self._serve(request, client))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        elif opcode == Opcode.ERROR:
            # Never answer an ERROR with an ERROR
            logger.info(f"Ignoring ERROR packet from {client}")

        elif opcode in (Opcode.WRQ, Opcode.DATA, Opcode.ACK):
            logger.info(f"Unsupported opcode {opcode.name} from {client}")
            self._reject(client, ErrorCode.NOT_DEFINED, "Only RRQ is supported")

        else:
            raw = int.from_bytes(data[:2], 'big')
            logger.info(f"Unknown opcode {raw} from {client}")
            self._reject(client, ErrorCode.NOT_DEFINED, "Only RRQ is supported")

    def _reject(self, client: Address, code: ErrorCode, message: str):
        self.requests_rejected += 1
        self.send_error(Error(code=code, message=message).to_bytes(), client)

    def send_error(self, packet: bytes, client: Address):
        """Send a packet from the well-known port."""
        if self.protocol:
            self.protocol.send(packet, client)

    async def open_channel(self, client: Address) -> DatagramChannel:
        return await open_channel(client, host=self.config.host)

    async def _serve(self, request, client: Address) -> TransferOutcome:
        async with self._slots:
            self.active_transfers += 1
            try:
                transfer = ReadTransfer(
                    request=request,
                    client=client,
                    resolver=self.resolver,
                    send_error=self.send_error,
                    open_channel=self.open_channel,
                    ack_timeout=self.config.ack_timeout,
                    max_retries=self.config.max_retries,
                )
                outcome = await transfer.run()
            finally:
                self.active_transfers -= 1

        self._record(outcome)
        return outcome

    def _record(self, outcome: TransferOutcome):
        logger.debug(f"Transfer outcome: {outcome.to_dict()}")
        self.bytes_sent += outcome.bytes_sent
        if outcome.succeeded:
            self.transfers_completed += 1
        else:
            self.transfers_aborted += 1
            logger.info(f"Transfer of {outcome.filename} to {outcome.client} aborted: "
                        f"{outcome.reason}")

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            'running': self._running,
            'requests_received': self.requests_received,
            'requests_rejected': self.requests_rejected,
            'transfers_completed': self.transfers_completed,
            'transfers_aborted': self.transfers_aborted,
            'active_transfers': self.active_transfers,
            'bytes_sent': self.bytes_sent,
        }

