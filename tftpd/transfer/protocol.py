"""
UDP Endpoints for the TFTP Server

Design Decision: Transfer Identifiers
=====================================

Options Considered:
1. Serve every transfer from the well-known port
   - One socket, but ACKs from different clients share one queue
   - Needs a demultiplexer keyed by client address
2. One ephemeral socket per transfer, connected to the client
   - What RFC 1350 calls a TID: each side picks a fresh port
   - Kernel drops datagrams from any other address, so a stray
     ACK from another client can never reach this transfer

Decision: Well-known port for requests, connected socket per transfer
- TFTPServerProtocol listens on the configured port, hands every datagram
  to the server and sends pre-transfer ERROR packets
- DatagramChannel wraps one connected endpoint with a bounded receive
"""

import asyncio
import logging
import socket
from typing import Callable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Address = Tuple[str, int]
DatagramHandler = Callable[[bytes, Address], None]

WILDCARD_HOSTS = ('', '0.0.0.0', '::')


class TFTPServerProtocol(asyncio.DatagramProtocol):
    """
    Protocol for the well-known request port.

    Every datagram goes to on_datagram; the handler decides what to do.
    """

    def __init__(self, on_datagram: DatagramHandler):
        self.on_datagram = on_datagram
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport: asyncio.DatagramTransport):
        self.transport = transport
        logger.info(f"TFTP protocol ready on {transport.get_extra_info('sockname')}")

    def connection_lost(self, exc):
        logger.info("TFTP protocol connection lost")

    def datagram_received(self, data: bytes, addr: Address):
        try:
            self.on_datagram(data, addr)
        except Exception as e:
            logger.error(f"Error processing datagram from {addr}: {e}")

    def error_received(self, exc):
        logger.error(f"TFTP protocol error: {exc}")

    def send(self, data: bytes, addr: Address):
        """Send a datagram from the well-known port (fire and forget)."""
        if self.transport:
            self.transport.sendto(data, addr)


class _ChannelProtocol(asyncio.DatagramProtocol):
    """Queues datagrams (and socket errors) for a DatagramChannel."""

    def __init__(self):
        self.queue: 'asyncio.Queue[Union[bytes, Exception]]' = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Address):
        self.queue.put_nowait(data)

    def error_received(self, exc):
        # ICMP errors (e.g. port unreachable) surface on the next receive
        self.queue.put_nowait(exc)


class DatagramChannel:
    """
    A UDP endpoint dedicated to one transfer and one client address.

    send() writes to the client, receive() waits a bounded time for the
    next datagram from it.
    """

    def __init__(self, transport: asyncio.DatagramTransport,
                 protocol: _ChannelProtocol, peer: Address):
        self.transport = transport
        self.protocol = protocol
        self.peer = peer

    def send(self, data: bytes):
        if self.transport.is_closing():
            raise ConnectionError("Channel closed")
        self.transport.sendto(data)

    async def receive(self, timeout: float) -> Optional[bytes]:
        """
        Wait up to timeout seconds for a datagram.

        Returns:
            The datagram, or None on timeout

        Raises:
            OSError: if the socket reported an error
        """
        try:
            item = await asyncio.wait_for(self.protocol.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        if not self.transport.is_closing():
            self.transport.close()


async def open_channel(peer: Address, host: str = '0.0.0.0') -> DatagramChannel:
    """
    Open a fresh ephemeral-port endpoint connected to peer.

    Args:
        peer: Client address
        host: Local interface to bind; wildcard lets the kernel choose
    """
    loop = asyncio.get_running_loop()
    kwargs = {'remote_addr': (peer[0], peer[1])}
    if host not in WILDCARD_HOSTS:
        kwargs['local_addr'] = (host, 0)
    elif ':' not in peer[0]:
        kwargs['family'] = socket.AF_INET

    transport, protocol = await loop.create_datagram_endpoint(_ChannelProtocol, **kwargs)
    return DatagramChannel(transport, protocol, peer)
