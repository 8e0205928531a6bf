from __future__ import annotations

import hashlib
import logging
import uuid
from pathlib import Path
from typing import BinaryIO

from tqdm import tqdm

from .errors import InvalidUuidError

ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")
COPY_CHUNK_SIZE = 1024 * 1024


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value.strip())
    except (AttributeError, ValueError) as exc:
        raise InvalidUuidError(value) from exc


def parse_uuids(values: list[str] | None) -> frozenset[uuid.UUID] | None:
    if not values:
        return None
    return frozenset(parse_uuid(v) for v in values)


def get_sha1_checksum(handle: BinaryIO, chunk_size: int = COPY_CHUNK_SIZE) -> str:
    digest = hashlib.sha1()
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            break
        digest.update(chunk)
    return digest.hexdigest()


def sha1_file(path: Path) -> str:
    with Path(path).open("rb") as handle:
        return get_sha1_checksum(handle)


def is_zip_file(handle: BinaryIO) -> bool:
    head = handle.read(4)
    return head in ZIP_SIGNATURES


def is_zip_path(path: Path) -> bool:
    with Path(path).open("rb") as handle:
        return is_zip_file(handle)


def copy_with_progress(
    progress: tqdm,
    source: BinaryIO,
    dest: BinaryIO,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> int:
    copied = 0
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        dest.write(chunk)
        copied += len(chunk)
        progress.update(len(chunk))
    return copied


def make_byte_progress_bar(total_bytes: int, *, desc: str = "", enabled: bool = True) -> tqdm:
    return tqdm(
        total=total_bytes,
        desc=desc,
        unit="B",
        unit_scale=True,
        unit_divisor=1024,
        leave=False,
        disable=not enabled,
    )
