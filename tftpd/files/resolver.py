"""
File Resolver

Design Decision: Path Containment
=================================

Options Considered:
1. Path.resolve() on the joined path, then check it is under the root
   - Follows symlinks, so it needs the filesystem
   - Symlinks placed inside the root by the operator would be refused
2. Lexical normalisation (os.path.normpath) + relpath check
   - Never touches the filesystem before the decision
   - Same rule as the reference TFTP servers: reject any name whose
     path relative to the root starts with a '..' segment

Decision: Lexical containment against a root canonicalised once
- Root is resolved at construction, requests are only normalised
- Leading separators are stripped so '/etc/passwd' means
  '<root>/etc/passwd', never the host's /etc/passwd
- Escapes are refused before any open() call
"""

import logging
import os
from pathlib import Path
from typing import Union

import aiofiles

logger = logging.getLogger(__name__)


class ResolveError(Exception):
    """Base class for file resolution failures."""


class FileNotFound(ResolveError):
    """The requested file does not exist."""


class AccessDenied(ResolveError):
    """The requested file is outside the root or cannot be opened."""


class FileReader:
    """
    Async byte reader over an opened file.

    read() may return fewer bytes than requested; b'' signals end of stream.
    """

    def __init__(self, handle, path: Path):
        self._handle = handle
        self.path = path
        self.bytes_read = 0

    async def read(self, size: int) -> bytes:
        data = await self._handle.read(size)
        self.bytes_read += len(data)
        return data

    async def close(self):
        await self._handle.close()

    async def __aenter__(self) -> 'FileReader':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class FileResolver:
    """
    Maps requested filenames onto files under a fixed root directory.

    Args:
        root: Directory files are served from
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def resolve(self, name: str) -> Path:
        """
        Map a requested name to a path inside the root.

        Raises:
            AccessDenied: if the name escapes the root
        """
        relative = name.lstrip('/\\')
        candidate = os.path.normpath(os.path.join(str(self.root), relative))
        rel_path = os.path.relpath(candidate, str(self.root))

        if rel_path == os.pardir or rel_path.startswith(os.pardir + os.sep):
            logger.warning(f"Path traversal attempt detected: {name} -> {rel_path}")
            raise AccessDenied(f"{name!r} is outside the served directory")

        return Path(candidate)

    async def open(self, name: str) -> FileReader:
        """
        Resolve a name and open it for reading.

        Raises:
            AccessDenied: name escapes the root, or the open failed for
                any reason other than a missing file
            FileNotFound: nothing exists at the resolved path
        """
        path = self.resolve(name)

        try:
            handle = await aiofiles.open(path, 'rb')
        except FileNotFoundError as e:
            logger.info(f"File not found: {path}")
            raise FileNotFound(str(path)) from e
        except OSError as e:
            logger.info(f"Cannot open file: {path}, error: {e}")
            raise AccessDenied(str(path)) from e

        return FileReader(handle, path)
