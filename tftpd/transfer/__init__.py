"""
Transfer Module - Read Transfers over UDP

Runs the lock-step DATA/ACK exchange for each read request.
"""

from .protocol import TFTPServerProtocol, DatagramChannel, open_channel
from .session import ReadTransfer, TransferOutcome, TransferState, TransferAborted

__all__ = [
    'TFTPServerProtocol',
    'DatagramChannel',
    'open_channel',
    'ReadTransfer',
    'TransferOutcome',
    'TransferState',
    'TransferAborted',
]
