from __future__ import annotations

import argparse
import logging
import sys
import zipfile
from pathlib import Path
from typing import Any

from . import __version__
from .api import Api
from .config import apply_cli_overrides, get_org_and_project, load_config
from .errors import DSymUploadError, MissingDSymsError
from .scan import BatchIter
from .upload import run_upload
from .utils import parse_uuids, setup_logging
from .xcode import InfoPlist, derived_data_path, get_paths_from_env

LOGGER = logging.getLogger(__name__)


def _resolve_paths(args: argparse.Namespace) -> list[Path]:
    if args.paths:
        paths = [Path(p) for p in args.paths]
    else:
        paths = get_paths_from_env()
    if getattr(args, "derived_data", False):
        derived = derived_data_path()
        if derived is not None:
            paths = [derived]
    return paths


def _upload_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "server": {
            "url": getattr(args, "url", None),
            "auth_token": getattr(args, "auth_token", None),
        },
        "defaults": {
            "org": getattr(args, "org", None),
            "project": getattr(args, "project", None),
        },
        "upload": {
            "batch_size": args.batch_size,
            "allow_zips": False if args.no_zips else None,
            "require_all": True if getattr(args, "require_all", False) else None,
            "reprocessing": False if getattr(args, "no_reprocessing", False) else None,
            "progress": False if args.no_progress else None,
        },
        "runtime": {"log_level": args.log_level},
    }


def _add_scan_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("paths", nargs="*", metavar="PATH", help="The path to the debug symbols")
    parser.add_argument("--config", type=Path)
    parser.add_argument(
        "--uuid",
        dest="uuids",
        action="append",
        metavar="UUID",
        help="Finds debug symbols by UUID.",
    )
    parser.add_argument("--derived-data", action="store_true", help="Search for debug symbols in derived data.")
    parser.add_argument("--no-zips", action="store_true", help="Do not recurse into .zip files")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--no-progress", action="store_true")
    parser.add_argument("--log-level", default=None)


def _create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dsym-upload")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    upload = sub.add_parser("upload", help="Upload debug symbols to a project")
    _add_scan_arguments(upload)
    upload.add_argument("--org")
    upload.add_argument("--project")
    upload.add_argument("--url")
    upload.add_argument("--auth-token")
    upload.add_argument(
        "--require-all",
        action="store_true",
        help="When combined with --uuid this will error if not all UUIDs could be found.",
    )
    upload.add_argument(
        "--info-plist",
        type=Path,
        help="Optional path to the Info.plist used to associate the debug symbols with a build.",
    )
    upload.add_argument("--no-reprocessing", action="store_true", help="Does not trigger reprocessing after upload")

    scan = sub.add_parser("scan", help="List debug symbols that would be uploaded, without contacting the server")
    _add_scan_arguments(scan)

    return parser


def _command_upload(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    find_uuids = parse_uuids(args.uuids)
    org, project = get_org_and_project(cfg)
    if args.info_plist:
        info_plist = InfoPlist.from_path(args.info_plist)
    else:
        info_plist = InfoPlist.discover_from_env()

    upload_cfg = cfg["upload"]
    try:
        summary = run_upload(
            Api.from_config(cfg),
            _resolve_paths(args),
            org=org,
            project=project,
            find_uuids=find_uuids,
            allow_zips=bool(upload_cfg.get("allow_zips", True)),
            batch_size=int(upload_cfg.get("batch_size", 12)),
            info_plist=info_plist,
            reprocessing=bool(upload_cfg.get("reprocessing", True)),
            require_all=bool(upload_cfg.get("require_all", False)),
            progress=bool(upload_cfg.get("progress", True)),
        )
    except MissingDSymsError as exc:
        print("")
        print("error: not all requested dsyms could be found.", file=sys.stderr)
        print("The following symbols are still missing:", file=sys.stderr)
        for missing in exc.missing:
            print(f"  {missing}")
        return 1
    except (DSymUploadError, OSError, zipfile.BadZipFile) as exc:
        LOGGER.error("Debug symbol upload failed: %s", exc)
        return 1

    LOGGER.info("Found %d debug symbol files in %d batches", summary.found, summary.batches)
    return 0


def _command_scan(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    find_uuids = parse_uuids(args.uuids)
    upload_cfg = cfg["upload"]
    paths = _resolve_paths(args)
    found_uuids: set = set()
    total = 0
    if not paths:
        print("Warning: no paths were provided.")

    try:
        for path in paths:
            with BatchIter(
                path,
                found_uuids,
                uuids=find_uuids,
                allow_zips=bool(upload_cfg.get("allow_zips", True)),
                batch_size=int(upload_cfg.get("batch_size", 12)),
                progress=bool(upload_cfg.get("progress", True)),
            ) as batches:
                for batch in batches:
                    for dsym_ref in batch:
                        total += 1
                        uuids = ", ".join(sorted(str(u) for u in dsym_ref.uuids))
                        print(f"{dsym_ref.arc_name} {dsym_ref.checksum} {dsym_ref.size} [{uuids}]")
    except (DSymUploadError, OSError, zipfile.BadZipFile) as exc:
        LOGGER.error("Scan failed: %s", exc)
        return 1

    print(f"Found {total} debug symbol files")
    if find_uuids is not None:
        missing = sorted(str(u) for u in set(find_uuids) - found_uuids)
        if missing:
            print("Not found:")
            for value in missing:
                print(f"  {value}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        cfg = load_config(getattr(args, "config", None))
        cfg = apply_cli_overrides(cfg, _upload_overrides(args))
        setup_logging(cfg.get("runtime", {}).get("log_level", "INFO"))

        if args.cmd == "upload":
            return _command_upload(args, cfg)
        if args.cmd == "scan":
            return _command_scan(args, cfg)
    except (ValueError, FileNotFoundError) as exc:
        parser.error(str(exc))
        return 2

    parser.error(f"Unhandled command: {args.cmd}")
    return 2


def _single_command_main(cmd: str) -> int:
    return main([cmd, *sys.argv[1:]])


def main_upload() -> int:
    return _single_command_main("upload")


if __name__ == "__main__":
    raise SystemExit(main())
