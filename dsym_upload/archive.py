"""Zip archives as indexable sequences of readable entries.

Only one archive is open at a time.  ``ArchiveSlot`` owns it and hands out
``ArchiveHandle`` objects tagged with a generation number; once the slot
closes or replaces an archive, the old handle refuses to read so that a
record cannot silently pick up bytes from a different archive.
"""

from __future__ import annotations

import logging
import zipfile
import zlib
from pathlib import Path
from typing import BinaryIO

from .errors import StaleArchiveError

LOGGER = logging.getLogger(__name__)

# Raised by ZipExtFile.read for damaged deflate data or a truncated member.
CORRUPT_ENTRY_ERRORS = (zlib.error, EOFError)


class ArchiveHandle:
    def __init__(self, path: Path, zf: zipfile.ZipFile, generation: int):
        self.path = path
        self.generation = generation
        self._zf: zipfile.ZipFile | None = zf
        self._infos = zf.infolist()

    def __len__(self) -> int:
        return len(self._infos)

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<ArchiveHandle {self.path} gen={self.generation} {state}>"

    @property
    def closed(self) -> bool:
        return self._zf is None

    def info(self, index: int) -> zipfile.ZipInfo:
        return self._infos[index]

    def entry_name(self, index: int) -> str:
        return self._infos[index].filename

    def open_entry(self, index: int) -> BinaryIO:
        if self._zf is None:
            raise StaleArchiveError(
                f"Archive {self.path} (generation {self.generation}) was closed "
                f"before entry {self.entry_name(index)!r} was read"
            )
        return self._zf.open(self._infos[index])

    def corrupt_entry(self, index: int, exc: BaseException) -> zipfile.BadZipFile:
        return zipfile.BadZipFile(f"{self.path}!{self.entry_name(index)}: {exc}")

    def close(self) -> None:
        if self._zf is not None:
            self._zf.close()
            self._zf = None


class ArchiveSlot:
    """Holds at most one open archive."""

    def __init__(self) -> None:
        self._current: ArchiveHandle | None = None
        self._generation = 0

    @property
    def current(self) -> ArchiveHandle | None:
        return self._current

    def open(self, path: Path) -> ArchiveHandle:
        self.close()
        zf = zipfile.ZipFile(path)
        self._generation += 1
        self._current = ArchiveHandle(Path(path), zf, self._generation)
        LOGGER.debug("Opened %r", self._current)
        return self._current

    def close(self) -> None:
        if self._current is not None:
            LOGGER.debug("Closing %r", self._current)
            self._current.close()
            self._current = None
