"""Batched discovery of debug symbol files.

``BatchIter`` walks a directory tree (descending into zip archives found on
the way) and yields lists of ``DSymRef`` records, at most ``batch_size`` at a
time.  Records are deduplicated by UUID against a found set that the caller
owns, so several roots scanned in one run never report the same UUID twice.

Records read from a zip archive borrow the iterator's open archive.  A batch
is always yielded before that archive is closed or replaced, and the archive
stays open until the next batch is requested, so consumers must finish
reading a batch before pulling the next one.
"""

from __future__ import annotations

import logging
import os
import stat
import uuid
import zipfile
from pathlib import Path
from typing import Iterable, Iterator

from tqdm import tqdm

from .archive import CORRUPT_ENTRY_ERRORS, ArchiveHandle, ArchiveSlot
from .macho import get_uuids_for_path, get_uuids_for_reader
from .models import DSymRef, FsSource, ZipSource
from .utils import get_sha1_checksum, is_zip_path, sha1_file

LOGGER = logging.getLogger(__name__)

BATCH_SIZE = 12
DSYM_ROOT = "DebugSymbols"


def _walk_dir(path: str) -> Iterator[tuple[Path, int]]:
    with os.scandir(path) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_dir(entry.path)
        elif entry.is_file(follow_symlinks=False):
            yield Path(entry.path), entry.stat(follow_symlinks=False).st_size


def walk_files(root: Path) -> Iterator[tuple[Path, int]]:
    """Depth-first walk yielding ``(path, size)`` for regular files.

    Entries of each directory are visited in name order.  Symlinks below the
    root are not followed.  A root that is itself a file is yielded as is.
    """
    st = os.stat(root)
    if stat.S_ISREG(st.st_mode):
        yield Path(root), st.st_size
    elif stat.S_ISDIR(st.st_mode):
        yield from _walk_dir(os.fspath(root))


class BatchIter:
    """Iterator over batches of newly found debug symbol files under ``path``.

    ``found_uuids`` is updated in place with the UUIDs of every kept record.
    When ``uuids`` is given, only files carrying at least one of them match
    and iteration stops as soon as all of them have been found.
    """

    def __init__(
        self,
        path: str | Path,
        found_uuids: set[uuid.UUID],
        uuids: Iterable[uuid.UUID] | None = None,
        allow_zips: bool = True,
        batch_size: int = BATCH_SIZE,
        progress: bool = True,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.path = Path(path)
        self.found_uuids = found_uuids
        self.uuids = frozenset(uuids) if uuids is not None else None
        self.allow_zips = allow_zips
        self.batch_size = batch_size
        self.progress = progress
        self._files = walk_files(self.path)
        self._slot = ArchiveSlot()
        self._archive_index: int | None = None
        self._done = False

    def __iter__(self) -> BatchIter:
        return self

    def __enter__(self) -> BatchIter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def open_archive(self) -> ArchiveHandle | None:
        return self._slot.current

    def close(self) -> None:
        self._done = True
        self._archive_index = None
        self._slot.close()
        self._files.close()

    def found_all(self) -> bool:
        if self.uuids is None:
            return False
        return self.found_uuids.issuperset(self.uuids)

    def _match(self, uuids: set[uuid.UUID] | None) -> frozenset[uuid.UUID] | None:
        if uuids is None:
            return None
        if self.uuids is not None:
            if self.uuids.isdisjoint(uuids):
                return None
        elif not uuids:
            return None
        return frozenset(uuids)

    def _borrows_open_archive(self, batch: list[DSymRef]) -> bool:
        archive = self._slot.current
        if archive is None:
            return False
        return any(isinstance(r.source, ZipSource) and r.source.archive is archive for r in batch)

    def _is_new(self, uuids: frozenset[uuid.UUID]) -> bool:
        return not uuids.issubset(self.found_uuids)

    def _push_ref(self, batch: list[DSymRef], dsym_ref: DSymRef) -> bool:
        if self._is_new(dsym_ref.uuids):
            self.found_uuids.update(dsym_ref.uuids)
            batch.append(dsym_ref)
            LOGGER.debug("Found %s (%s)", dsym_ref.arc_name, ", ".join(sorted(map(str, dsym_ref.uuids))))
        return len(batch) >= self.batch_size

    def _open_zip(self, path: Path) -> None:
        try:
            archive = self._slot.open(path)
        except zipfile.BadZipFile as exc:
            LOGGER.warning("Ignoring %s, it looks like a zip file but cannot be opened: %s", path, exc)
            return
        LOGGER.info("Looking for symbols in %s (%d entries)", path, len(archive))
        self._archive_index = 0

    def _scan_archive_entry(self, batch: list[DSymRef]) -> bool:
        archive = self._slot.current
        index = self._archive_index
        if index >= len(archive):
            # Closed on the next pull, once the consumer is done with this batch.
            self._archive_index = None
            return self._borrows_open_archive(batch)
        self._archive_index = index + 1

        try:
            with archive.open_entry(index) as fp:
                uuids = self._match(get_uuids_for_reader(fp))
            if uuids is None or not self._is_new(uuids):
                return False
            with archive.open_entry(index) as fp:
                checksum = get_sha1_checksum(fp)
        except CORRUPT_ENTRY_ERRORS as exc:
            raise archive.corrupt_entry(index, exc) from exc
        info = archive.info(index)
        return self._push_ref(
            batch,
            DSymRef(
                source=ZipSource(archive, index),
                arc_name=f"{DSYM_ROOT}/{info.filename}",
                checksum=checksum,
                size=info.file_size,
                uuids=uuids,
            ),
        )

    def _scan_file(self, batch: list[DSymRef], path: Path, size: int) -> bool:
        if self.allow_zips and is_zip_path(path):
            self._open_zip(path)
            return False

        uuids = self._match(get_uuids_for_path(path))
        if uuids is None or not self._is_new(uuids):
            return False
        if path == self.path:
            rel = path.name
        else:
            rel = path.relative_to(self.path).as_posix()
        return self._push_ref(
            batch,
            DSymRef(
                source=FsSource(path),
                arc_name=f"{DSYM_ROOT}/{rel}",
                checksum=sha1_file(path),
                size=size,
                uuids=uuids,
            ),
        )

    def _fill(self, batch: list[DSymRef], progress: tqdm) -> None:
        while not self.found_all():
            if self._archive_index is None and self._slot.current is not None:
                # Any batch borrowing this archive was yielded when it ran out.
                self._slot.close()

            if self._archive_index is not None:
                if self._scan_archive_entry(batch):
                    return
            else:
                item = next(self._files, None)
                if item is None:
                    return
                path, size = item
                progress.update(1)
                progress.set_postfix_str(path.name, refresh=False)
                if self._scan_file(batch, path, size):
                    return

    def __next__(self) -> list[DSymRef]:
        if self._done:
            raise StopIteration
        batch: list[DSymRef] = []
        with tqdm(
            desc="Looking for symbols",
            unit=" files",
            leave=False,
            disable=not self.progress,
        ) as progress:
            try:
                self._fill(batch, progress)
            except Exception:
                self.close()
                raise
        if not batch:
            self.close()
            raise StopIteration
        return batch
