#!/usr/bin/env python3
"""lisa.registry

Basin manifest CLI for LISA.

This is one of two LISA subsystem CLIs:
- lisa.registry → basin manifest and input checks (this file)
- lisa.pipeline → covariates, domain range, negative sampling

lisa.registry is the source of truth for which basins a run covers. It
defines WHAT EXISTS spatially; lisa.pipeline consumes the same manifest.

Responsibilities:
- Parse the basin manifest (elevation grid + initiation points per basin)
- Assign stable basin ids from elevation file stems
- Check that every manifest and regional layer file exists
- Report per-basin grid size, CRS and bounds

Examples:
  # Check inputs before a long run
  python -m lisa.registry verify

  # List basins with DEM bounds
  python -m lisa.registry --manifest config/basins.csv list --bounds
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional

from lisa.config import (
    DEFAULT_CONFIG_YAML,
    ConfigError,
    format_bbox,
    load_pipeline_config,
    union_bbox,
)
from lisa.logging_setup import setup_logging
from lisa.registry.manifest import load_manifest, verify_inputs


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for lisa.registry."""
    ap = argparse.ArgumentParser(
        prog="lisa.registry",
        description="Basin manifest and input checks for LISA",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m lisa.registry  # Basin manifest and inputs (this)
  python -m lisa.pipeline  # Sampling pipeline
        """,
    )

    # --- Global args ---
    ap.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Pipeline YAML (default: {DEFAULT_CONFIG_YAML} if present)",
    )
    ap.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Basin manifest CSV (overrides the config value)",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without opening any raster",
    )
    ap.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    # --- Subcommands ---
    sub = ap.add_subparsers(dest="command", required=True)

    # --- verify ---
    verify = sub.add_parser(
        "verify",
        help="Check that manifest and layer files exist",
    )
    verify.add_argument(
        "--json",
        action="store_true",
        help="Print problems as a JSON list",
    )

    # --- list ---
    lst = sub.add_parser(
        "list",
        help="List basins in the manifest",
    )
    lst.add_argument(
        "--bounds",
        action="store_true",
        help="Open each DEM and report shape, CRS and bounds",
    )

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _load(args: argparse.Namespace):
    path = args.config
    if path is None and DEFAULT_CONFIG_YAML.exists():
        path = DEFAULT_CONFIG_YAML
    try:
        cfg, _ = load_pipeline_config(path)
        cfg = cfg.with_overrides(manifest=args.manifest).validate()
        basins = load_manifest(cfg.manifest)
    except (ConfigError, ValueError) as e:
        raise SystemExit(f"Invalid configuration: {e}")
    return cfg, basins


def _handle_verify(args: argparse.Namespace) -> int:
    cfg, basins = _load(args)
    problems = verify_inputs(basins, cfg)

    if args.json:
        print(json.dumps(problems, indent=2))
    else:
        print(f"Manifest: {cfg.manifest} ({len(basins)} basins)")
        for p in problems:
            print(f"  MISSING {p}")
        if not problems:
            print("  All inputs present")
    return 1 if problems else 0


def _handle_list(args: argparse.Namespace) -> int:
    _, basins = _load(args)

    if not args.bounds or args.dry_run:
        for b in basins:
            print(f"{b.basin_id}\t{b.elevation_path}\t{b.points_path}")
        return 0

    # Lazy import to keep CLI startup fast
    import rasterio

    boxes = []
    for b in basins:
        with rasterio.open(b.elevation_path) as src:
            bounds = tuple(src.bounds)
            boxes.append(bounds)
            crs = src.crs.to_string() if src.crs else "none"
            print(f"{b.basin_id}\t{src.height}x{src.width}\t{crs}\t{format_bbox(bounds)}")

    total = union_bbox(boxes)
    if total is not None:
        print(f"  {len(boxes)} basins, union bounds {format_bbox(total)}")
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for lisa.registry CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)
    setup_logging(args.log_level)

    handlers = {
        "verify": _handle_verify,
        "list": _handle_list,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
