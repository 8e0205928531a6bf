from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO

if TYPE_CHECKING:
    from .archive import ArchiveHandle


@dataclass(frozen=True, slots=True)
class FsSource:
    path: Path

    def open(self) -> BinaryIO:
        return self.path.open("rb")

    def describe(self) -> str:
        return str(self.path)


@dataclass(frozen=True, slots=True)
class ZipSource:
    # Borrowed from the scanning BatchIter; only valid while its batch is current.
    archive: ArchiveHandle
    index: int

    def open(self) -> BinaryIO:
        return self.archive.open_entry(self.index)

    def describe(self) -> str:
        return f"{self.archive.path}!{self.archive.entry_name(self.index)}"


@dataclass(frozen=True, slots=True)
class DSymRef:
    source: FsSource | ZipSource
    arc_name: str
    checksum: str
    size: int
    uuids: frozenset[uuid.UUID]

    def open(self) -> BinaryIO:
        return self.source.open()


@dataclass(slots=True)
class DSymFile:
    uuid: str
    object_name: str
    cpu_name: str
    checksum: str | None = None
    size: int | None = None

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> DSymFile:
        return cls(
            uuid=str(payload.get("uuid") or ""),
            object_name=str(payload.get("objectName") or payload.get("object_name") or ""),
            cpu_name=str(payload.get("cpuName") or payload.get("cpu_name") or ""),
            checksum=payload.get("sha1"),
            size=payload.get("size"),
        )


@dataclass(slots=True)
class UploadSummary:
    batches: int = 0
    found: int = 0
    uploaded: list[DSymFile] = field(default_factory=list)
    checksums: list[str] = field(default_factory=list)
    found_uuids: set[uuid.UUID] = field(default_factory=set)
    missing_uuids: set[uuid.UUID] = field(default_factory=set)
    associated: list[Any] | None = None
    reprocessing_triggered: bool | None = None
