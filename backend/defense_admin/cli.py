"""Command line entry point: serve the API, seed a store, export the schedule."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import DATA_OUTPUT_DIR, ENV_PREFIX, load_settings
from .datasets import list_datasets, load_dataset
from .service import DefenseAdminService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="defense-admin", description="Thesis defense committee administration")
    p.add_argument("--config", type=str, help="Path to a YAML settings file")
    p.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    seed = sub.add_parser("seed", help="Load a dataset directory into the store")
    seed.add_argument("dataset", nargs="?", help="Dataset name under data/input or a directory path")
    seed.add_argument("--list", action="store_true", help="List the datasets under data/input and exit")

    export = sub.add_parser("export", help="Write the active schedule to a file")
    export.add_argument("--format", dest="fmt", choices=["csv", "json"], default="csv")
    export.add_argument("--committee", help="Only export this committee")
    export.add_argument("--output", type=str, help="Output file (default: data/output/schedule.<format>)")
    return p


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    if args.config:
        os.environ[f"{ENV_PREFIX}CONFIG"] = args.config
    uvicorn.run("defense_admin.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _list_datasets() -> int:
    entries = list_datasets()
    if not entries:
        print("No datasets found")
    for entry in entries:
        print(f"{entry['name']}: {', '.join(entry['files'])}")
    return 0


def _seed(service: DefenseAdminService, args: argparse.Namespace) -> int:
    logger.info("Seeding store from %s", args.dataset)
    counts = load_dataset(args.dataset, service.store, service.registry)
    for label, count in counts.items():
        print(f"{label}: {count}")
    return 0


def _export(service: DefenseAdminService, args: argparse.Namespace) -> int:
    result = service.export_schedule(args.fmt, args.committee)
    if not result.success:
        print(f"Export failed: {result.error['message']}", file=sys.stderr)
        return 1
    output = Path(args.output) if args.output else DATA_OUTPUT_DIR / f"schedule.{args.fmt}"
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(result.data)
    print(f"Wrote {output}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "serve":
        return _serve(args)
    if args.command == "seed" and args.list:
        return _list_datasets()
    if args.command == "seed" and not args.dataset:
        print("seed needs a dataset name or --list", file=sys.stderr)
        return 2

    settings = load_settings(Path(args.config) if args.config else None)
    service = DefenseAdminService.from_settings(settings)
    if args.command == "seed":
        return _seed(service, args)
    return _export(service, args)


if __name__ == "__main__":
    sys.exit(main())
