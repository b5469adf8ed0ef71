"""Structural paths and content fingerprints for segments."""

from __future__ import annotations

import hashlib
import re

from .structures import Anchor

FINGERPRINT_LENGTH = 16

_SEPARATOR_RUN = re.compile(r"/{2,}")


def generate_structural_path(anchor: Anchor) -> str:
    """Return a normalised structural path for the anchor."""

    path = _SEPARATOR_RUN.sub("/", anchor.path.strip()).strip("/")
    return path or anchor.kind


def generate_fingerprint(text: str, path: str) -> str:
    """Digest text and path into a fixed-size hexadecimal fingerprint."""

    digest = hashlib.sha256()
    digest.update(path.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(text.encode("utf-8"))
    return digest.hexdigest()[:FINGERPRINT_LENGTH]


class IdentityService:
    """Injectable bundle of the path and fingerprint functions."""

    def structural_path(self, anchor: Anchor) -> str:
        return generate_structural_path(anchor)

    def fingerprint(self, text: str, path: str) -> str:
        return generate_fingerprint(text, path)
