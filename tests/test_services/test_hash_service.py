"""Tests for content fingerprints."""

from __future__ import annotations

from backend.services.hash_service import content_fingerprint


class TestContentFingerprint:
    def test_known_md5(self) -> None:
        assert content_fingerprint(b"") == "d41d8cd98f00b204e9800998ecf8427e"
        assert content_fingerprint(b"abc") == "900150983cd24fb0d6963f7d28e17f72"

    def test_distinguishes_content(self) -> None:
        assert content_fingerprint(b"v1") != content_fingerprint(b"v2")
