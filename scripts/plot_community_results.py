from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

from auxocom.plotting import plot_fva_comparison, plot_poa
from auxocom.poa import POAResult


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Re-plot FVA comparison and POA figures from a workflow output directory.")
    p.add_argument("--results", required=True, help="Workflow output directory (e.g., results/ecoli_community)")
    p.add_argument("--outdir", default=None, help="Figure directory (default: --results)")
    p.add_argument("--members", default=None, help="Comma-separated member tags (default: from steadycom_biomass.csv)")
    p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return p


def _read(results: Path, stem: str) -> pd.DataFrame | None:
    for suffix in (".csv", ".parquet"):
        p = results / f"{stem}{suffix}"
        if p.exists():
            return pd.read_csv(p) if suffix == ".csv" else pd.read_parquet(p)
    return None


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    results = Path(args.results)
    outdir = Path(args.outdir) if args.outdir else results
    if not results.is_dir():
        print(f"[ERROR] results directory not found: {results}", file=sys.stderr)
        return 2

    if args.members:
        tags = [t.strip() for t in args.members.split(",") if t.strip()]
    else:
        biomass = _read(results, "steadycom_biomass")
        if biomass is None:
            print("[ERROR] steadycom_biomass table missing; pass --members", file=sys.stderr)
            return 2
        tags = biomass["member"].astype(str).tolist()

    wrote: list[Path] = []
    fva = _read(results, "fva_steadycom")
    if fva is not None:
        joint = _read(results, "fva_joint_fba")
        wrote.append(plot_fva_comparison(fva, joint, tags, outdir / "fig_fva_comparison.png"))

    table = _read(results, "poa_table")
    if table is not None and len(tags) > 1:
        # Only the envelope table is needed to draw the grid.
        poa = POAResult(table=table, flux_range=pd.DataFrame(), stats=pd.DataFrame())
        wrote.append(plot_poa(poa, tags, outdir / "fig_poa.png"))

    if not wrote:
        print(f"[ERROR] no fva_steadycom or poa_table found in {results}", file=sys.stderr)
        return 2
    for p in wrote:
        print(f"[OK] Wrote: {p}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
