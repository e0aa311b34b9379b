"""Cluster identifiers: sixteen random bytes with a hex and a compact base32 form."""

from __future__ import annotations

import base64
import binascii
import uuid as _uuid
from dataclasses import dataclass

_SHORT_LENGTH = 26
_HEX_LENGTH = 32
_SHORT_PADDING = "=" * 6


@dataclass(frozen=True)
class UUID:
    """A 16-byte identifier."""

    value: bytes

    def __post_init__(self) -> None:
        raw = bytes(self.value)
        if len(raw) != 16:
            raise ValueError("a uuid must be exactly 16 bytes")
        object.__setattr__(self, "value", raw)

    def __str__(self) -> str:
        return self.value.hex()

    def short_string(self) -> str:
        """Return the unpadded, lower-case base32 (extended hex alphabet) form."""
        encoded = base64.b32hexencode(self.value).decode("ascii")
        return encoded.rstrip("=").lower()


def new() -> UUID:
    """Return a new random identifier."""
    return UUID(_uuid.uuid4().bytes)


def parse(text: str) -> UUID:
    """Parse either the 32-character hex form or the 26-character short form."""
    if len(text) == _HEX_LENGTH:
        try:
            raw = binascii.unhexlify(text)
        except ValueError as exc:
            raise ValueError(f"failed to parse hex uuid: {exc}") from exc
        return UUID(raw)

    if len(text) == _SHORT_LENGTH:
        try:
            raw = base64.b32hexdecode(text + _SHORT_PADDING, casefold=True)
        except ValueError as exc:
            raise ValueError(f"failed to parse uuid: {exc}") from exc
        return UUID(raw)

    raise ValueError("invalid uuid format")