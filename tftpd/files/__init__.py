"""
Files Module - Served Directory Access

Resolves requested filenames inside the root and opens them for reading.
"""

from .resolver import FileResolver, FileReader, ResolveError, FileNotFound, AccessDenied

__all__ = [
    'FileResolver',
    'FileReader',
    'ResolveError',
    'FileNotFound',
    'AccessDenied',
]
