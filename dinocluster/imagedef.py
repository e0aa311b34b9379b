"""Descriptions of server container images and their ordering."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

_IDENT = r"[0-9A-Za-z-]+"
_DOTTED = rf"{_IDENT}(?:\.{_IDENT})*"
_NUM = r"(0|[1-9][0-9]*)"
_SEMVER = re.compile(
    rf"v?{_NUM}(?:\.{_NUM}(?:\.{_NUM}(?:-({_DOTTED}))?(?:\+({_DOTTED}))?)?)?"
)


@dataclass(frozen=True)
class ImageDef:
    """Which server build an image should contain."""

    version: str
    build_no: int = 0
    use_community_edition: bool = False
    use_serverless: bool = False


@dataclass(frozen=True)
class ImageRef:
    """A usable image reference."""

    image_path: str


class ImageProvider(ABC):
    """Finds or produces an image for an image definition."""

    @abstractmethod
    def get_image(self, definition: ImageDef) -> ImageRef:
        """Return an image for ``definition`` or raise if none can be provided."""


def _parse_semver(text: str) -> tuple[int, int, int, str] | None:
    match = _SEMVER.fullmatch(text)
    if match is None:
        return None
    major, minor, patch, prerelease, _build = match.groups()
    if prerelease:
        for ident in prerelease.split("."):
            if ident.isdigit() and len(ident) > 1 and ident.startswith("0"):
                return None
    return int(major), int(minor or 0), int(patch or 0), prerelease or ""


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _compare_prerelease(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return 1
    if not b:
        return -1
    a_parts = a.split(".")
    b_parts = b.split(".")
    for x, y in zip(a_parts, b_parts):
        if x == y:
            continue
        x_num, y_num = x.isdigit(), y.isdigit()
        if x_num and y_num:
            return _cmp(int(x), int(y))
        if x_num != y_num:
            return -1 if x_num else 1
        return _cmp(x, y)
    return _cmp(len(a_parts), len(b_parts))


def compare_semver(a: str, b: str) -> int:
    """Compare two semantic versions, returning -1, 0 or +1.

    The leading ``v`` is optional and ``1`` / ``1.2`` stand for ``1.0.0`` /
    ``1.2.0``. Build metadata is ignored. An invalid version sorts before every
    valid one, and two invalid versions are equal.
    """
    pa = _parse_semver(a)
    pb = _parse_semver(b)
    if pa is None or pb is None:
        return _cmp(pa is not None, pb is not None)
    head = _cmp(pa[:3], pb[:3])
    if head:
        return head
    return _compare_prerelease(pa[3], pb[3])


def compare_image_defs(a: ImageDef, b: ImageDef) -> int:
    """Order image definitions by version, build, edition and serverless flag."""
    result = compare_semver(a.version, b.version)
    if result:
        return result
    result = _cmp(a.build_no, b.build_no)
    if result:
        return result
    if a.use_community_edition != b.use_community_edition:
        return -1 if a.use_community_edition else 1
    if a.use_serverless != b.use_serverless:
        return 1 if a.use_serverless else -1
    return 0