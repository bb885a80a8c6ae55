"""
tftpd - Read-only TFTP server on asyncio

Packages:
- packet: wire codec for the five TFTP message kinds
- files: served-directory resolution and async file reading
- transfer: UDP endpoints and the per-transfer state machine
"""

__version__ = '0.1.0'
