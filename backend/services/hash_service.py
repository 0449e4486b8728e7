"""Content fingerprints for cached images."""

from __future__ import annotations

import hashlib


def content_fingerprint(data: bytes) -> str:
    """Compute the MD5 hex digest of a byte buffer.

    MD5 matches the ``md5Checksum`` Google Drive reports for binary files,
    so fingerprints of downloaded bytes are directly comparable to listings.
    """
    return hashlib.md5(data, usedforsecurity=False).hexdigest()
