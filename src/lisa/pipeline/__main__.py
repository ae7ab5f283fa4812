#!/usr/bin/env python3
"""lisa.pipeline

Sampling pipeline CLI for LISA.

This is one of two LISA subsystem CLIs:
- lisa.registry → basin manifest and input checks
- lisa.pipeline → covariates, domain range, negative sampling (this file)

lisa.pipeline turns a basin manifest plus regional layers into labeled
per-cohort sample tables for susceptibility modeling.

Outputs (under output_dir):
- positives_<cohort>.csv / negatives_<cohort>.csv  → sample tables
- domain_range.csv                                 → global topographic envelope
- basin_report.csv                                 → per-basin, per-cohort counts
- run_summary.json                                 → config echo + totals
- cache/<basin>_covariates.tif                     → per-basin covariate stacks

Design notes:
- Config YAML is loaded and validated before any raster is opened
- Flags override YAML keys; YAML overrides built-in defaults
- Per-basin failures are reported, not fatal

Examples:
  # Full run with the default config
  python -m lisa.pipeline run

  # Parallel run, parquet output, wider envelope
  python -m lisa.pipeline --config config/lisa.yaml run \
    --workers 8 --output-format parquet --expansion-factor 1.1

  # Only compute and write the domain range
  python -m lisa.pipeline domain-range

  # Audit the cohort rule table
  python -m lisa.pipeline cohorts
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from lisa.config import (
    AGE_POLICIES,
    DEFAULT_CONFIG_YAML,
    OUTPUT_FORMATS,
    SEED_STRATEGIES,
    ConfigError,
    PipelineConfig,
    load_pipeline_config,
)
from lisa.logging_setup import setup_logging
from lisa.temporal.cohorts import CohortTable


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def _add_override_args(p: argparse.ArgumentParser) -> None:
    """Flags that override config keys (None = keep config value)."""
    p.add_argument("--manifest", type=Path, default=None, help="Basin manifest CSV")
    p.add_argument("--output-dir", type=Path, default=None, help="Output directory")
    p.add_argument("--data-dir", type=Path, default=None, help="Directory holding regional layers")
    p.add_argument("--durations-file", type=Path, default=None, help="Storm duration list (hours)")
    p.add_argument("--workers", type=int, default=None, help="Worker processes (1 = serial)")
    p.add_argument("--expansion-factor", type=float, default=None, help="Domain range widening (>= 1)")
    p.add_argument("--inner-buffer", type=float, default=None, help="Inner buffer distance (m)")
    p.add_argument("--outer-buffer", type=float, default=None, help="Outer buffer distance (m)")
    p.add_argument("--length-scale", type=float, default=None, help="Terrain derivative length scale (m)")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for lisa.pipeline."""
    ap = argparse.ArgumentParser(
        prog="lisa.pipeline",
        description="Landslide initiation sample assembly (covariates + negative sampling)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subsystem CLIs:
  python -m lisa.registry  # Basin manifest and inputs
  python -m lisa.pipeline  # Sampling pipeline (this)
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
        "--dry-run",
        action="store_true",
        help="Print planned actions without reading rasters or writing files",
    )
    ap.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    ap.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write the log to this file",
    )

    # --- Subcommands ---
    sub = ap.add_subparsers(dest="command", required=True)

    # --- run ---
    run = sub.add_parser(
        "run",
        help="Run the full two-phase pipeline",
        description="""
Run the full pipeline:
1. Per basin: derive terrain covariates, cache the stack, extract positives
2. Estimate the global domain range from all positives
3. Per basin: build masks, sample negatives per cohort, filter records
4. Merge and write per-cohort tables, report and summary
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_override_args(run)
    run.add_argument("--oversample", type=float, default=None, help="Negatives per retained positive")
    run.add_argument("--seed", type=int, default=None, help="Base random seed")
    run.add_argument("--seed-strategy", choices=SEED_STRATEGIES, default=None, help="Seed derivation")
    run.add_argument("--age-policy", choices=AGE_POLICIES, default=None, help="Negative stand-age policy")
    run.add_argument("--output-format", choices=OUTPUT_FORMATS, default=None, help="Table file format")

    # --- domain-range ---
    dr = sub.add_parser(
        "domain-range",
        help="Run phase 1 only and write domain_range.csv",
        description="""
Derive covariates for every basin, extract positives, and write the global
domain range. Covariate stacks are cached for a later run.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_override_args(dr)

    # --- cohorts ---
    sub.add_parser(
        "cohorts",
        help="Print the cohort rule table",
    )

    return ap


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _load(args: argparse.Namespace):
    """Resolve config YAML + CLI overrides into (PipelineConfig, CohortTable)."""
    path = args.config
    if path is None and DEFAULT_CONFIG_YAML.exists():
        path = DEFAULT_CONFIG_YAML
    try:
        cfg, raw = load_pipeline_config(path)
        overrides = {
            k: getattr(args, k, None)
            for k in (
                "manifest", "output_dir", "data_dir", "durations_file", "workers",
                "expansion_factor", "inner_buffer", "outer_buffer", "length_scale",
                "oversample", "seed", "seed_strategy", "age_policy", "output_format",
            )
        }
        cfg = cfg.with_overrides(**overrides).validate()
        cohorts = CohortTable.from_config(raw)
    except (ConfigError, ValueError) as e:
        raise SystemExit(f"Invalid configuration: {e}")
    return cfg, cohorts


def _print_plan(cfg: PipelineConfig, basins, what: str) -> None:
    print(f"[dry-run] Would {what}:")
    print(f"  Manifest: {cfg.manifest} ({len(basins)} basins)")
    print(f"  Data dir: {cfg.data_dir}")
    print(f"  Output dir: {cfg.output_dir}")
    print(f"  Durations (h): {cfg.durations()}")
    print(f"  Buffers (m): {cfg.inner_buffer} .. {cfg.outer_buffer}")
    print(f"  Expansion factor: {cfg.expansion_factor}")
    print(f"  Workers: {cfg.workers}")


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_run(args: argparse.Namespace) -> int:
    cfg, cohorts = _load(args)

    from lisa.registry.manifest import load_manifest, verify_inputs

    try:
        basins = load_manifest(cfg.manifest)
    except ConfigError as e:
        raise SystemExit(f"Invalid manifest: {e}")

    if args.dry_run:
        _print_plan(cfg, basins, "run the sampling pipeline")
        print(f"  Oversample: {cfg.oversample}  Seed: {cfg.seed} ({cfg.seed_strategy})")
        print(f"  Age policy: {cfg.age_policy}  Format: {cfg.output_format}")
        return 0

    problems = verify_inputs(basins, cfg)
    if problems:
        raise SystemExit("Missing inputs:\n  " + "\n  ".join(problems))

    # Lazy import to keep CLI startup fast
    from lisa.pipeline.run import run_pipeline, write_outputs

    try:
        result = run_pipeline(cfg, basins, cohorts)
    except ValueError as e:
        raise SystemExit(f"Pipeline stopped: {e}")

    written = write_outputs(result, cfg, cfg.durations(), cohorts)
    for cohort, labels in result.tables.counts().items():
        for label in sorted(labels):
            print(f"  cohort {cohort}: {labels[label]} {label}")
    for path in written:
        print(f"Wrote -> {path}")
    if result.failed:
        print(f"  {len(result.failed)} basin(s) failed: {', '.join(sorted(result.failed))}")
    return 0


def _handle_domain_range(args: argparse.Namespace) -> int:
    cfg, cohorts = _load(args)

    from lisa.registry.manifest import load_manifest, verify_inputs

    try:
        basins = load_manifest(cfg.manifest)
    except ConfigError as e:
        raise SystemExit(f"Invalid manifest: {e}")

    if args.dry_run:
        _print_plan(cfg, basins, "estimate the domain range")
        return 0

    problems = verify_inputs(basins, cfg)
    if problems:
        raise SystemExit("Missing inputs:\n  " + "\n  ".join(problems))

    from lisa.pipeline.run import estimate_run_domain_range, make_context, run_phase_one

    ctx = make_context(cfg, cohorts)
    phase_one = run_phase_one(basins, ctx)
    try:
        domain_range = estimate_run_domain_range(phase_one, cfg.expansion_factor)
    except ValueError as e:
        raise SystemExit(f"Pipeline stopped: {e}")

    out = cfg.output_dir / "domain_range.csv"
    out.parent.mkdir(parents=True, exist_ok=True)
    df = domain_range.to_frame()
    df.to_csv(out, index=False)
    print(f"Wrote domain range -> {out}")
    print(df.to_string(index=False))
    if phase_one.failures:
        print(f"  {len(phase_one.failures)} basin(s) failed: {', '.join(r.basin_id for r in phase_one.failures)}")
    return 0


def _handle_cohorts(args: argparse.Namespace) -> int:
    _, cohorts = _load(args)
    print(cohorts.to_frame().to_string(index=False))
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for lisa.pipeline CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    handlers = {
        "run": _handle_run,
        "domain-range": _handle_domain_range,
        "cohorts": _handle_cohorts,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
