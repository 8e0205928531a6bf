from __future__ import annotations

import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import BinaryIO, Sequence

from tqdm import tqdm

from .archive import CORRUPT_ENTRY_ERRORS
from .models import DSymRef, ZipSource
from .utils import copy_with_progress, make_byte_progress_bar

LOGGER = logging.getLogger(__name__)


def add_to_archive(dsym_ref: DSymRef, zf: zipfile.ZipFile, progress: tqdm) -> int:
    LOGGER.debug("Adding %s as %s", dsym_ref.source.describe(), dsym_ref.arc_name)
    force_zip64 = dsym_ref.size >= zipfile.ZIP64_LIMIT
    source = dsym_ref.source
    try:
        with dsym_ref.open() as fp, zf.open(dsym_ref.arc_name, "w", force_zip64=force_zip64) as dest:
            return copy_with_progress(progress, fp, dest)
    except CORRUPT_ENTRY_ERRORS as exc:
        if isinstance(source, ZipSource):
            raise source.archive.corrupt_entry(source.index, exc) from exc
        raise


def zip_up_missing(refs: Sequence[DSymRef], dest: BinaryIO, *, progress: bool = True) -> int:
    """Write ``refs`` into a zip archive on ``dest``; returns the bytes copied."""
    total_bytes = sum(r.size for r in refs)
    copied = 0
    with make_byte_progress_bar(total_bytes, desc="Compressing", enabled=progress) as pb:
        with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for dsym_ref in refs:
                copied += add_to_archive(dsym_ref, zf, pb)
    return copied


def bundle_missing(refs: Sequence[DSymRef], *, progress: bool = True) -> Path:
    """Package ``refs`` into a temporary zip file and return its path.

    The caller owns the file.  On failure the partial bundle is removed.
    """
    fd, name = tempfile.mkstemp(prefix="dsym-upload-", suffix=".zip")
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            copied = zip_up_missing(refs, handle, progress=progress)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    LOGGER.debug("Bundled %d files (%d bytes) into %s", len(refs), copied, path)
    return path
