from __future__ import annotations

import logging
import uuid
from pathlib import Path

from .api import Api
from .errors import MissingDSymsError
from .models import DSymFile, DSymRef, UploadSummary
from .packaging import bundle_missing
from .scan import BATCH_SIZE, BatchIter
from .xcode import InfoPlist

LOGGER = logging.getLogger(__name__)


def find_missing_files(api: Api, refs: list[DSymRef], org: str, project: str) -> list[DSymRef]:
    LOGGER.debug("Checking for missing debug symbols: %s", [r.arc_name for r in refs])
    missing = api.find_missing_dsym_checksums(org, project, [r.checksum for r in refs])
    rv = [r for r in refs if r.checksum in missing]
    LOGGER.debug("Missing debug symbols: %s", [r.arc_name for r in rv])
    return rv


def upload_dsyms(
    api: Api,
    refs: list[DSymRef],
    org: str,
    project: str,
    *,
    progress: bool = True,
) -> list[DSymFile]:
    print(f"[2/3] Compressing {len(refs)} missing debug symbol files")
    bundle = bundle_missing(refs, progress=progress)
    try:
        print("[3/3] Uploading debug symbol files")
        return api.upload_dsyms(org, project, bundle)
    finally:
        bundle.unlink(missing_ok=True)


def run_upload(
    api: Api,
    paths: list[Path],
    *,
    org: str,
    project: str,
    find_uuids: frozenset[uuid.UUID] | None = None,
    allow_zips: bool = True,
    batch_size: int = BATCH_SIZE,
    info_plist: InfoPlist | None = None,
    reprocessing: bool = True,
    require_all: bool = False,
    progress: bool = True,
) -> UploadSummary:
    summary = UploadSummary()
    found_uuids = summary.found_uuids

    if not paths:
        print("Warning: no paths were provided.")

    for path in paths:
        LOGGER.info("Scanning %s", path)
        with BatchIter(
            path,
            found_uuids,
            uuids=find_uuids,
            allow_zips=allow_zips,
            batch_size=batch_size,
            progress=progress,
        ) as batches:
            for batch in batches:
                if summary.batches > 0:
                    print("")
                summary.batches += 1
                summary.found += len(batch)
                summary.checksums.extend(r.checksum for r in batch)
                print(f"Batch {summary.batches}")
                print(
                    f"[1/3] Found {len(batch)} debug symbol files. "
                    "Checking for missing symbols on server"
                )
                missing = find_missing_files(api, batch, org, project)
                if not missing:
                    print("[2/3] Nothing to compress, all symbols are on the server")
                    print("[3/3] Nothing to upload")
                    continue
                uploaded = upload_dsyms(api, missing, org, project, progress=progress)
                if uploaded:
                    summary.uploaded.extend(uploaded)
                    print("Newly uploaded debug symbols:")
                    for df in uploaded:
                        print(f"  {df.uuid} ({df.object_name}; {df.cpu_name})")

    if info_plist is not None:
        print(f"Associating dsyms with {info_plist}")
        summary.associated = api.associate_dsyms(org, project, info_plist, list(summary.checksums))
        if summary.associated is None:
            print("Server does not support dsym associations. Ignoring.")
        elif not summary.associated:
            print("No new debug symbols to associate.")
        else:
            print(f"Associated {len(summary.associated)} debug symbols with the build.")

    if summary.uploaded:
        print(f"Uploaded a total of {len(summary.uploaded)} debug symbols")

    if reprocessing:
        summary.reprocessing_triggered = api.trigger_reprocessing(org, project)
        if not summary.reprocessing_triggered:
            print("Server does not support reprocessing. Not triggering.")
    else:
        print("Skipped reprocessing.")

    if find_uuids is not None:
        summary.missing_uuids = set(find_uuids) - found_uuids
        if summary.missing_uuids:
            LOGGER.warning(
                "Debug symbols for %d requested UUIDs were not found: %s",
                len(summary.missing_uuids),
                ", ".join(sorted(str(u) for u in summary.missing_uuids)),
            )
            if require_all:
                raise MissingDSymsError(summary.missing_uuids)

    return summary
