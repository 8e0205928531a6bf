"""Mach-O UUID reader.

Finds the ``LC_UUID`` load commands of thin and universal (fat) Mach-O
binaries.  Debug symbol companions inside a ``.dSYM`` bundle carry the same
UUID as the executable they describe, which is what the server keys uploads
on.

Results are tri-state:

* a ``set`` of UUIDs (possibly empty when a Mach-O has no ``LC_UUID``),
* ``None`` when the stream is not a Mach-O at all,
* an exception (``OSError`` or ``MachOError``) when the stream cannot be read
  or the headers are corrupt.

Reference:
    - mach-o/loader.h: ``mach_header``, ``mach_header_64``, ``load_command``
    - mach-o/fat.h: ``fat_header``, ``fat_arch``, ``fat_arch_64``
"""

from __future__ import annotations

import logging
import struct
import uuid
from pathlib import Path
from typing import BinaryIO

from .errors import MachOError

LOGGER = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Magic numbers, read as big-endian uint32 from the first four bytes
# ---------------------------------------------------------------------------
MH_MAGIC = 0xFEEDFACE
MH_CIGAM = 0xCEFAEDFE
MH_MAGIC_64 = 0xFEEDFACF
MH_CIGAM_64 = 0xCFFAEDFE
FAT_MAGIC = 0xCAFEBABE
FAT_MAGIC_64 = 0xCAFEBABF

THIN_MAGICS = {
    MH_MAGIC: (">", False),
    MH_CIGAM: ("<", False),
    MH_MAGIC_64: (">", True),
    MH_CIGAM_64: ("<", True),
}

LC_UUID = 0x1B

# magic, cputype, cpusubtype, filetype, ncmds, sizeofcmds, flags
HEADER_SIZE = 28
HEADER_SIZE_64 = 32
FAT_ARCH_SIZE = 20
FAT_ARCH_SIZE_64 = 32

# Java class files share FAT_MAGIC; their version field is never this small.
MAX_FAT_ARCHES = 20
MAX_LOAD_COMMANDS_SIZE = 16 * 1024 * 1024


def _read_exact(fp: BinaryIO, size: int, what: str) -> bytes:
    data = fp.read(size)
    if len(data) != size:
        raise MachOError(f"Truncated Mach-O {what}: expected {size} bytes, got {len(data)}")
    return data


def _uuids_from_thin(fp: BinaryIO, magic: int) -> set[uuid.UUID]:
    endian, is_64 = THIN_MAGICS[magic]
    header_size = HEADER_SIZE_64 if is_64 else HEADER_SIZE
    header = _read_exact(fp, header_size - 4, "header")
    _cputype, _subtype, _filetype, ncmds, sizeofcmds, _flags = struct.unpack(
        f"{endian}iiIIII", header[:24]
    )
    if sizeofcmds > MAX_LOAD_COMMANDS_SIZE:
        raise MachOError(f"Unreasonable load command size: {sizeofcmds}")

    commands = _read_exact(fp, sizeofcmds, "load commands")
    found: set[uuid.UUID] = set()
    offset = 0
    for _ in range(ncmds):
        if offset + 8 > len(commands):
            raise MachOError("Load command table overruns sizeofcmds")
        cmd, cmdsize = struct.unpack_from(f"{endian}II", commands, offset)
        if cmdsize < 8 or offset + cmdsize > len(commands):
            raise MachOError(f"Invalid load command size {cmdsize} at offset {offset}")
        if cmd == LC_UUID and cmdsize >= 24:
            found.add(uuid.UUID(bytes=commands[offset + 8 : offset + 24]))
        offset += cmdsize
    return found


def _uuids_from_fat(fp: BinaryIO, magic: int) -> set[uuid.UUID] | None:
    head = fp.read(4)
    if len(head) != 4:
        return None
    (nfat_arch,) = struct.unpack(">I", head)
    if nfat_arch == 0 or nfat_arch > MAX_FAT_ARCHES:
        return None

    is_64 = magic == FAT_MAGIC_64
    arch_size = FAT_ARCH_SIZE_64 if is_64 else FAT_ARCH_SIZE
    table = _read_exact(fp, arch_size * nfat_arch, "fat arch table")
    offsets = []
    for idx in range(nfat_arch):
        if is_64:
            _cpu, _sub, offset, _size, _align, _reserved = struct.unpack_from(
                ">iiQQII", table, idx * arch_size
            )
        else:
            _cpu, _sub, offset, _size, _align = struct.unpack_from(
                ">iiIII", table, idx * arch_size
            )
        offsets.append(offset)

    found: set[uuid.UUID] = set()
    # Forward seeks only, so compressed zip entry streams stay cheap to read.
    for offset in sorted(offsets):
        fp.seek(offset)
        head = fp.read(4)
        if len(head) != 4:
            raise MachOError(f"Fat slice at offset {offset} is truncated")
        (slice_magic,) = struct.unpack(">I", head)
        if slice_magic not in THIN_MAGICS:
            # Static libraries and other payloads can live in fat slices.
            LOGGER.debug("Skipping non Mach-O fat slice at offset %s", offset)
            continue
        found.update(_uuids_from_thin(fp, slice_magic))
    return found


def get_uuids_for_reader(fp: BinaryIO) -> set[uuid.UUID] | None:
    """Return the UUIDs embedded in a Mach-O stream, or ``None`` if it is not one."""
    head = fp.read(4)
    if len(head) != 4:
        return None
    (magic,) = struct.unpack(">I", head)
    if magic in THIN_MAGICS:
        return _uuids_from_thin(fp, magic)
    if magic in (FAT_MAGIC, FAT_MAGIC_64):
        return _uuids_from_fat(fp, magic)
    return None


def get_uuids_for_path(path: Path) -> set[uuid.UUID] | None:
    with Path(path).open("rb") as fp:
        return get_uuids_for_reader(fp)
