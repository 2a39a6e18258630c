from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import pandas as pd

from auxocom.bounds import apply_base_bounds
from auxocom.community import (
    Community,
    constrain_from_base,
    create_community,
    set_member_export,
    set_member_uptake,
    uptake_bounds_table,
)
from auxocom.config import ConfigError, expand_grid, get_section
from auxocom.exchange import EXTRACELLULAR, add_missing_exchanges, exchange_lower_bounds
from auxocom.fva import FVAOptions, joint_fba_fva, steadycom_fva
from auxocom.io import load_cobra_model, save_table
from auxocom.poa import POAOptions, POAResult, steadycom_poa
from auxocom.steadycom import SteadyComOptions, SteadyComResult, solve_steadycom
from auxocom.strains import build_member_models, parse_members

logger = logging.getLogger(__name__)

DEFAULT_OUTPUTS: dict[str, Any] = {
    "fva": True,
    "joint_fba": True,
    "poa": True,
    "plots": True,
    "table_format": "csv",
}


@dataclass(frozen=True)
class CommunitySettings:
    model_id: str = "community"
    member_export_ub: float = 1000.0
    community_ub: float = 1e5

    @classmethod
    def from_config(cls, section: dict[str, Any] | None) -> "CommunitySettings":
        section = section or {}
        unknown = set(section) - {"id", "member_export_ub", "community_ub"}
        if unknown:
            raise ConfigError(f"Unknown community options: {sorted(unknown)}")
        try:
            return cls(
                model_id=str(section.get("id", "community")),
                member_export_ub=float(section.get("member_export_ub", 1000.0)),
                community_ub=float(section.get("community_ub", 1e5)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid community options: {e}") from e


@dataclass
class WorkflowResult:
    community: Community
    steadycom: SteadyComResult
    fva: pd.DataFrame | None = None
    joint_fva: pd.DataFrame | None = None
    poa: POAResult | None = None
    files: dict[str, Path] = field(default_factory=dict)


def _outputs(cfg: dict[str, Any]) -> dict[str, Any]:
    section = get_section(cfg, "outputs")
    unknown = set(section) - set(DEFAULT_OUTPUTS)
    if unknown:
        raise ConfigError(f"Unknown outputs options: {sorted(unknown)}")
    out = {**DEFAULT_OUTPUTS, **section}
    if out["table_format"] not in ("csv", "parquet"):
        raise ConfigError(f"outputs.table_format must be csv or parquet, got: {out['table_format']!r}")
    return out


def build_community(cfg: dict[str, Any]) -> Community:
    """
    Steps shared by every analysis: load the base model, apply its bounds, close
    the missing exchanges, derive the members and assemble a constrained community.
    """
    source = cfg.get("model", None)
    if not source:
        raise ConfigError("Config needs 'model' (a model file path or a repository identifier).")
    biomass_reaction = cfg.get("biomass_reaction", None)
    if not biomass_reaction:
        raise ConfigError("Config needs 'biomass_reaction'.")
    compartment = str(cfg.get("extracellular_compartment", EXTRACELLULAR))
    settings = CommunitySettings.from_config(get_section(cfg, "community"))
    members = parse_members(cfg.get("members", {}))

    base = load_cobra_model(source)
    apply_base_bounds(base, get_section(cfg, "base_bounds"))
    add_missing_exchanges(base, compartment=compartment)
    lb_ex = exchange_lower_bounds(base, compartment)

    member_models = build_member_models(base, members)
    community = create_community(
        list(member_models.values()),
        list(member_models),
        str(biomass_reaction),
        compartment=compartment,
        model_id=settings.model_id,
    )
    constrain_from_base(community, lb_ex, community_ub=settings.community_ub)
    for spec in members:
        set_member_uptake(community, spec.tag, spec.uptake)
    set_member_export(community, settings.member_export_ub)
    return community


def _save(df: pd.DataFrame, outdir: Path, stem: str, fmt: str, files: dict[str, Path]) -> None:
    files[stem] = save_table(df, outdir / f"{stem}.{fmt}")


def steadycom_tables(result: SteadyComResult) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Per-member biomass table and per-metabolite community exchange table."""
    abundance = result.abundance
    biomass = pd.DataFrame(
        [
            {
                "member": tag,
                "biomass": x,
                "abundance": abundance[tag],
                "biomass_production": result.biomass_production[tag],
                "growth_rate": result.growth_rate,
            }
            for tag, x in result.biomass.items()
        ],
        columns=["member", "biomass", "abundance", "biomass_production", "growth_rate"],
    )
    exchange = pd.DataFrame(
        {
            "metabolite": result.uptake.index.astype(str),
            "uptake": result.uptake.to_numpy(),
            "export": result.export.reindex(result.uptake.index).to_numpy(),
        },
        columns=["metabolite", "uptake", "export"],
    )
    exchange = exchange.loc[(exchange["uptake"] > 1e-9) | (exchange["export"] > 1e-9)].reset_index(drop=True)
    return biomass, exchange


def run_workflow(cfg: dict[str, Any], outdir: str | Path) -> WorkflowResult:
    """
    Run the whole community analysis described by a config.

    1. build the community (see build_community) and log its uptake bounds;
    2. SteadyCom: maximum growth rate and member abundances;
    3. SteadyComFVA and joint FBA FVA, plus their comparison figure;
    4. SteadyComPOA, plus the pairwise figure.

    Steps 3 and 4 follow the `outputs` switches.
    """
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    outputs = _outputs(cfg)
    fmt = str(outputs["table_format"])

    sc_options = SteadyComOptions.from_config(get_section(cfg, "steadycom"))
    fva_options = FVAOptions.from_config(get_section(cfg, "fva"))
    poa_options = POAOptions.from_config(get_section(cfg, "poa"))
    joint_section = get_section(cfg, "joint_fba")
    joint_percents = expand_grid(joint_section.get("gr_percent", list(fva_options.gr_percent)), name="joint_fba.gr_percent")

    community = build_community(cfg)
    files: dict[str, Path] = {}

    uptake = uptake_bounds_table(community)
    for rec in uptake.to_dict(orient="records"):
        logger.info(
            "Uptake %s: community %.6g | %s",
            rec["metabolite"],
            rec["community"],
            ", ".join(f"{tag} {rec[tag]:.6g}" for tag in community.tags),
        )
    _save(uptake, outdir, "uptake_bounds", fmt, files)

    sc = solve_steadycom(community, sc_options)
    biomass, exchange = steadycom_tables(sc)
    _save(sc.iterations, outdir, "steadycom_iterations", fmt, files)
    _save(biomass, outdir, "steadycom_biomass", fmt, files)
    _save(exchange, outdir, "steadycom_exchange", fmt, files)
    result = WorkflowResult(community=community, steadycom=sc, files=files)
    if sc.growth_rate <= 0:
        logger.warning("Community cannot grow (status=%s); skipping FVA and POA.", sc.status)
        return result

    if outputs["fva"]:
        result.fva = steadycom_fva(community, fva_options, sc_options, growth_rate=sc.growth_rate)
        _save(result.fva, outdir, "fva_steadycom", fmt, files)
    if outputs["joint_fba"]:
        result.joint_fva = joint_fba_fva(community, joint_percents)
        _save(result.joint_fva, outdir, "fva_joint_fba", fmt, files)
    if outputs["plots"] and result.fva is not None:
        from auxocom.plotting import plot_fva_comparison

        files["fig_fva_comparison"] = plot_fva_comparison(
            result.fva, result.joint_fva, community.tags, outdir / "fig_fva_comparison.png"
        )

    if outputs["poa"]:
        if poa_options.save_dir is None:
            poa_options = replace(poa_options, save_dir=str(outdir / "poa"))
        result.poa = steadycom_poa(community, poa_options, sc_options, growth_rate=sc.growth_rate)
        _save(result.poa.table, outdir, "poa_table", fmt, files)
        _save(result.poa.flux_range, outdir, "poa_flux_range", fmt, files)
        _save(result.poa.stats, outdir, "poa_stats", fmt, files)
        if outputs["plots"] and len(community.tags) > 1:
            from auxocom.plotting import plot_poa

            files["fig_poa"] = plot_poa(result.poa, community.tags, outdir / "fig_poa.png")

    logger.info("Workflow done: %d files in %s", len(files), outdir)
    return result
