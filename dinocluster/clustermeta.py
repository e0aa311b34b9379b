"""Cluster meta-data encoded into resource names."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from . import cbdcuuid
from .cbdcuuid import UUID

PREFIX = "cbdc2"
_EXPIRY_FORMAT = "%Y%m%d-%H%M%S"
_EXPIRY_SHAPE = re.compile(r"[0-9]{8}-[0-9]{6}")


@dataclass(frozen=True)
class MetaData:
    """Identifier, expiry time and optional purpose of a cluster."""

    id: UUID
    expiry: datetime
    purpose: str = ""

    def format(self) -> str:
        """Encode as ``cbdc2_<short id>_<utc expiry>[_<purpose>]``."""
        expiry = self.expiry.astimezone(timezone.utc).strftime(_EXPIRY_FORMAT)
        parts = [PREFIX, self.id.short_string(), expiry]
        if self.purpose:
            parts.append(self.purpose)
        return "_".join(parts)

    def __str__(self) -> str:
        return self.format()


def parse(text: str) -> MetaData | None:
    """Decode meta-data from a name; return None if the name is not ours."""
    parts = text.split("_", 3)
    if len(parts) < 3 or parts[0] != PREFIX:
        return None

    try:
        ident = cbdcuuid.parse(parts[1])
    except ValueError as exc:
        raise ValueError(f"failed to parse id: {exc}") from exc

    expiry_text = parts[2]
    if not _EXPIRY_SHAPE.fullmatch(expiry_text):
        raise ValueError(f"failed to parse expiry time: {expiry_text!r}")
    try:
        expiry = datetime.strptime(expiry_text, _EXPIRY_FORMAT)
    except ValueError as exc:
        raise ValueError(f"failed to parse expiry time: {exc}") from exc

    purpose = parts[3] if len(parts) >= 4 else ""
    return MetaData(id=ident, expiry=expiry.replace(tzinfo=timezone.utc), purpose=purpose)