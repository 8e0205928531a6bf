import io
import struct
import uuid
import zipfile
from pathlib import Path

import pytest

U1 = uuid.UUID("11111111-1111-4111-8111-111111111111")
U2 = uuid.UUID("22222222-2222-4222-8222-222222222222")
U3 = uuid.UUID("33333333-3333-4333-8333-333333333333")
U4 = uuid.UUID("44444444-4444-4444-8444-444444444444")

LC_SYMTAB = 0x2
LC_UUID = 0x1B
CPU_TYPE_ARM64 = 0x0100000C
CPU_TYPE_X86_64 = 0x01000007


def build_macho(uuids, *, is_64=True, little=True, cputype=CPU_TYPE_ARM64, payload=b"") -> bytes:
    endian = "<" if little else ">"
    magic = 0xFEEDFACF if is_64 else 0xFEEDFACE
    cmds = struct.pack(f"{endian}II", LC_SYMTAB, 24) + bytes(16)
    for value in uuids:
        cmds += struct.pack(f"{endian}II", LC_UUID, 24) + value.bytes
    header = struct.pack(
        f"{endian}IiiIIII", magic, cputype, 0, 0xA, 1 + len(uuids), len(cmds), 0
    )
    if is_64:
        header += bytes(4)
    return header + cmds + payload + bytes(32)


def build_fat(slices: list[bytes]) -> bytes:
    align = 0x1000
    header = struct.pack(">II", 0xCAFEBABE, len(slices))
    offset = align
    arches = b""
    body = b""
    for data in slices:
        arches += struct.pack(">iiIII", CPU_TYPE_ARM64, 0, offset, len(data), 12)
        padded = data + bytes(-len(data) % align)
        body += padded
        offset += len(padded)
    head = header + arches
    return head + bytes(align - len(head)) + body


def write_zip(path: Path, members: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


def zip_bytes(members: dict[str, bytes]) -> bytes:
    data = io.BytesIO()
    with zipfile.ZipFile(data, "w") as zf:
        for name, payload in members.items():
            zf.writestr(name, payload)
    return data.getvalue()


@pytest.fixture
def dsym_tree(tmp_path: Path) -> Path:
    """``a.dSYM/bin`` carries U1, ``b.zip!lib`` carries U1 and U2."""
    root = tmp_path / "root"
    binary = root / "a.dSYM" / "Contents" / "Resources" / "DWARF" / "bin"
    binary.parent.mkdir(parents=True)
    binary.write_bytes(build_macho([U1]))
    write_zip(root / "b.zip", {"lib": build_macho([U1, U2], is_64=False)})
    return root


def corrupt_member(path: Path, name: str) -> Path:
    """Overwrite the compressed data of ``name`` with an invalid deflate block."""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    with open(path, "r+b") as fp:
        fp.seek(info.header_offset + 26)
        name_len, extra_len = struct.unpack("<HH", fp.read(4))
        fp.seek(info.header_offset + 30 + name_len + extra_len)
        fp.write(b"\xff" * info.compress_size)
    return path
