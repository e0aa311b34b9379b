"""Parsing of user-supplied server version strings."""

from __future__ import annotations

import re
from dataclasses import dataclass

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class VersionError(ValueError):
    """Raised when a version string cannot be understood."""


@dataclass(frozen=True)
class Version:
    """A server version, its build number and variant flags."""

    version: str
    build_no: int = 0
    community_edition: bool = False
    serverless: bool = False


def _parse_build_no(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise VersionError(f"failed to parse build number: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise VersionError(f"failed to parse build number: {text!r} is out of range")
    return value


def identify(user_input: str) -> Version:
    """Parse ``[edition-]major.minor[.patch][-build][-serverless]``."""
    edition = "enterprise"
    version = ""
    build_no = "0"

    parts = user_input.split("-")
    serverless = parts[-1] == "serverless"
    if serverless:
        parts = parts[:-1]

    if len(parts) == 1:
        (version,) = parts
    elif len(parts) == 2:
        if "." in parts[0]:
            version, build_no = parts
        else:
            edition, version = parts
    elif len(parts) == 3:
        edition, version, build_no = parts

    if edition == "community":
        community = True
    elif edition == "enterprise":
        community = False
    else:
        raise VersionError("invalid version edition")

    if len(version.split(".")) < 2:
        raise VersionError("version number must be at least major.minor")

    return Version(
        version=version,
        build_no=_parse_build_no(build_no),
        community_edition=community,
        serverless=serverless,
    )