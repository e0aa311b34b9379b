"""Incremental construction of tar archives."""

from __future__ import annotations

import io
import os
import posixpath
import tarfile
import time
from typing import BinaryIO


class TarBuilder:
    """Writes files and directory trees into a tar stream."""

    def __init__(self, fileobj: BinaryIO) -> None:
        self._tar = tarfile.open(fileobj=fileobj, mode="w")

    def add_file(self, fileobj: BinaryIO, target_path: str) -> None:
        """Add the contents of an open binary file under ``target_path``."""
        try:
            info = self._tar.gettarinfo(fileobj=fileobj, arcname=target_path)
        except (AttributeError, OSError):
            data = fileobj.read()
            info = tarfile.TarInfo(target_path)
            info.size = len(data)
            info.mtime = int(time.time())
            info.mode = 0o644
            fileobj = io.BytesIO(data)
        self._tar.addfile(info, fileobj)

    def add_local_file(self, local_path: str | os.PathLike, target_path: str) -> None:
        """Add a file from disk under ``target_path``."""
        with open(local_path, "rb") as handle:
            self.add_file(handle, target_path)

    def add_dir(self, dir_path: str | os.PathLike, target_path: str = "") -> None:
        """Recursively add a directory's files beneath ``target_path``."""
        with os.scandir(dir_path) as scan:
            entries = sorted(scan, key=lambda entry: entry.name)
        for entry in entries:
            target = posixpath.join(target_path, entry.name) if target_path else entry.name
            if entry.is_dir():
                self.add_dir(entry.path, target)
            else:
                self.add_local_file(entry.path, target)

    def close(self) -> None:
        self._tar.close()

    def __enter__(self) -> TarBuilder:
        return self

    def __exit__(self, *args) -> None:
        self.close()