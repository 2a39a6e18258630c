from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import pandas as pd
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from auxocom import __version__
from auxocom.bounds import BoundsConfigError
from auxocom.community import CommunityError, uptake_bounds_table
from auxocom.config import ConfigError, get_section, load_config
from auxocom.fva import FVAError, FVAOptions, steadycom_fva
from auxocom.io import save_table
from auxocom.steadycom import SteadyComError, SteadyComOptions, solve_steadycom

app = typer.Typer(add_completion=False, help="auxocom: SteadyCom analysis of auxotrophic microbial communities")
console = Console()

KNOWN_ERRORS: tuple[type[Exception], ...] = (
    ConfigError,
    BoundsConfigError,
    CommunityError,
    SteadyComError,
    FVAError,
    FileNotFoundError,
)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_time=False, show_path=False)],
    )


def _guarded(fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except KNOWN_ERRORS as e:
        typer.echo(f"[ERROR] {e}", err=True)
        raise typer.Exit(code=2) from e


def _rich_table(df: pd.DataFrame, title: str, float_fmt: str = "{:.6g}") -> Table:
    table = Table(title=title)
    for col in df.columns:
        table.add_column(str(col))
    for row in df.itertuples(index=False):
        table.add_row(*[float_fmt.format(v) if isinstance(v, float) else str(v) for v in row])
    return table


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Entry point."""
    _setup_logging(verbose=verbose)


@app.command()
def version() -> None:
    """Print package version."""
    typer.echo(__version__)


@app.command()
def audit(
    config: Path = typer.Option(..., "--config", "-c", help="Workflow config (.yaml/.json)."),
    out: Path = typer.Option(Path("results/reaction_audit.csv"), "--out", help="Output CSV."),
) -> None:
    """Check that every reaction id the config references exists in the model."""
    from auxocom.audit import audit_reaction_ids, collect_configured_reaction_ids, write_audit_csv
    from auxocom.io import load_cobra_model

    def _run() -> None:
        cfg = load_config(config)
        if not cfg.get("model"):
            raise ConfigError("Config needs 'model'.")
        model = load_cobra_model(cfg["model"])
        rows = audit_reaction_ids(model, collect_configured_reaction_ids(cfg))
        write_audit_csv(rows, out)
        df = pd.DataFrame([r.__dict__ for r in rows])
        console.print(_rich_table(df, f"Reaction audit ({model.id})"))
        n_missing = int((df["status"] == "missing").sum()) if not df.empty else 0
        typer.echo(f"[OK] Wrote: {out} (missing={n_missing})")

    _guarded(_run)


@app.command()
def bounds(
    config: Path = typer.Option(..., "--config", "-c", help="Workflow config (.yaml/.json)."),
    out: Optional[Path] = typer.Option(None, "--out", help="Optional CSV/parquet for the uptake table."),
) -> None:
    """Build the community and print its uptake bounds."""
    from auxocom.workflow import build_community

    def _run() -> None:
        community = build_community(load_config(config))
        df = uptake_bounds_table(community)
        console.print(_rich_table(df, f"Uptake bounds ({community.model.id})"))
        if out is not None:
            save_table(df, out)
            typer.echo(f"[OK] Wrote: {out}")

    _guarded(_run)


@app.command()
def growth(
    config: Path = typer.Option(..., "--config", "-c", help="Workflow config (.yaml/.json)."),
    outdir: Optional[Path] = typer.Option(None, "--outdir", help="Optional directory for the result tables."),
) -> None:
    """Maximum community growth rate and member abundances (SteadyCom)."""
    from auxocom.workflow import build_community, steadycom_tables

    def _run() -> None:
        cfg = load_config(config)
        sc_options = SteadyComOptions.from_config(get_section(cfg, "steadycom"))
        result = solve_steadycom(build_community(cfg), sc_options)
        biomass, exchange = steadycom_tables(result)
        console.print(_rich_table(biomass, f"SteadyCom (status={result.status})"))
        typer.echo(f"Maximum growth rate: {result.growth_rate:.6f} /h")
        if outdir is not None:
            for name, df in [
                ("steadycom_biomass", biomass),
                ("steadycom_exchange", exchange),
                ("steadycom_iterations", result.iterations),
            ]:
                p = save_table(df, outdir / f"{name}.csv")
                typer.echo(f"[OK] Wrote: {p}")

    _guarded(_run)


@app.command()
def fva(
    config: Path = typer.Option(..., "--config", "-c", help="Workflow config (.yaml/.json)."),
    out: Path = typer.Option(Path("results/fva_steadycom.csv"), "--out", help="Output CSV/parquet."),
    n_jobs: Optional[int] = typer.Option(None, "--n-jobs", help="Override fva.n_jobs."),
) -> None:
    """Member abundance ranges across growth rates (SteadyComFVA)."""
    from auxocom.workflow import build_community

    def _run() -> None:
        cfg = load_config(config)
        sc_options = SteadyComOptions.from_config(get_section(cfg, "steadycom"))
        section = dict(get_section(cfg, "fva"))
        if n_jobs is not None:
            section["n_jobs"] = n_jobs
        df = steadycom_fva(build_community(cfg), FVAOptions.from_config(section), sc_options)
        save_table(df, out)
        typer.echo(f"[OK] Wrote: {out} (rows={len(df)})")

    _guarded(_run)


@app.command()
def poa(
    config: Path = typer.Option(..., "--config", "-c", help="Workflow config (.yaml/.json)."),
    outdir: Path = typer.Option(Path("results/poa"), "--outdir", help="Output directory."),
) -> None:
    """Pairwise Pareto optimality analysis (SteadyComPOA)."""
    from dataclasses import replace

    from auxocom.poa import POAOptions, steadycom_poa
    from auxocom.workflow import build_community

    def _run() -> None:
        cfg = load_config(config)
        sc_options = SteadyComOptions.from_config(get_section(cfg, "steadycom"))
        options = POAOptions.from_config(get_section(cfg, "poa"))
        if options.save_dir is None:
            options = replace(options, save_dir=str(outdir))
        result = steadycom_poa(build_community(cfg), options, sc_options)
        for name, df in [
            ("poa_table", result.table),
            ("poa_flux_range", result.flux_range),
            ("poa_stats", result.stats),
        ]:
            p = save_table(df, outdir / f"{name}.csv")
            typer.echo(f"[OK] Wrote: {p}")
        console.print(_rich_table(result.stats, "POA correlations"))

    _guarded(_run)


@app.command()
def run(
    config: Path = typer.Option(..., "--config", "-c", help="Workflow config (.yaml/.json)."),
    outdir: Path = typer.Option(Path("results/community"), "--outdir", help="Output directory."),
) -> None:
    """Run the whole workflow: community, SteadyCom, FVA, joint FBA, POA and figures."""
    from auxocom.workflow import run_workflow

    def _run() -> None:
        result = run_workflow(load_config(config), outdir)
        typer.echo(f"Maximum growth rate: {result.steadycom.growth_rate:.6f} /h")
        for p in result.files.values():
            typer.echo(f"[OK] Wrote: {p}")

    _guarded(_run)


if __name__ == "__main__":
    app()
