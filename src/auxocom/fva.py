from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np
import pandas as pd

from auxocom.community import Community
from auxocom.config import ConfigError, expand_grid
from auxocom.steadycom import SteadyComError, SteadyComOptions, require_growth, steadycom_problem

logger = logging.getLogger(__name__)

FVA_COLUMNS: list[str] = ["target", "member", "gr_percent", "growth_rate", "fva_min", "fva_max"]


class FVAError(RuntimeError):
    """Raised when FBA/FVA cannot be computed."""


@dataclass(frozen=True)
class FVAOptions:
    """
    targets     reaction ids or biomass variables "X_{tag}"; empty = every member's X.
    gr_percent  percentages of the maximum growth rate to analyze.
    bm_percent  required share of the attainable total biomass (capped at X0).
    n_jobs      joblib workers; growth rates are split into one chunk per worker.
    """

    targets: tuple[str, ...] = ()
    gr_percent: tuple[float, ...] = (100.0,)
    bm_percent: float = 100.0
    n_jobs: int = 1

    def __post_init__(self) -> None:
        if not self.gr_percent:
            raise ConfigError("fva.gr_percent must not be empty.")
        bad = [p for p in self.gr_percent if not 0.0 <= p <= 100.0]
        if bad:
            raise ConfigError(f"fva.gr_percent values must be within [0, 100]: {bad}")
        if not 0.0 < self.bm_percent <= 100.0:
            raise ConfigError("fva.bm_percent must be in (0, 100].")

    @classmethod
    def from_config(cls, section: dict[str, Any] | None) -> "FVAOptions":
        section = section or {}
        unknown = set(section) - {"targets", "gr_percent", "bm_percent", "n_jobs"}
        if unknown:
            raise ConfigError(f"Unknown fva options: {sorted(unknown)}")
        return cls(
            targets=tuple(str(t) for t in section.get("targets", []) or []),
            gr_percent=tuple(expand_grid(section.get("gr_percent", [100.0]), name="fva.gr_percent")),
            bm_percent=float(section.get("bm_percent", 100.0)),
            n_jobs=int(section.get("n_jobs", 1)),
        )


def run_targeted_fva(
    model,
    targets: Iterable[str],
    fraction_of_optimum: float = 0.95,
) -> pd.DataFrame:
    """
    Run targeted Flux Variability Analysis (FVA) for a set of reaction IDs.

    Parameters
    ----------
    model:
        cobra.Model (already configured with bounds and objective).
    targets:
        Reaction IDs to run FVA on.
    fraction_of_optimum:
        Fraction of optimal objective to enforce during FVA (e.g., 0.95).

    Returns
    -------
    DataFrame with columns: reaction_id, fva_min, fva_max
    """
    from cobra.flux_analysis import flux_variability_analysis

    target_list = list(dict.fromkeys([str(t) for t in targets]))
    if not target_list:
        raise ValueError("targets is empty")
    if not (0.0 < float(fraction_of_optimum) <= 1.0):
        raise ValueError("fraction_of_optimum must be in (0, 1].")

    logger.debug("Running targeted FVA: n_targets=%d, fraction_of_optimum=%.4f", len(target_list), fraction_of_optimum)
    try:
        fva_df = flux_variability_analysis(
            model,
            reaction_list=target_list,
            fraction_of_optimum=float(fraction_of_optimum),
            loopless=False,
        )
    except Exception as e:  # noqa: BLE001
        raise FVAError(f"FVA failed: {e}") from e

    # cobra returns index=reaction_id, columns=["minimum","maximum"]
    out = fva_df.rename(columns={"minimum": "fva_min", "maximum": "fva_max"}).reset_index()
    out = out.rename(columns={out.columns[0]: "reaction_id"})
    out["reaction_id"] = out["reaction_id"].astype(str)
    return out[["reaction_id", "fva_min", "fva_max"]]


def resolve_targets(community: Community, targets: Iterable[str]) -> list[str]:
    """Default to every member's biomass variable; reject unknown targets up front."""
    out = list(dict.fromkeys(str(t) for t in targets))
    if not out:
        return [Community.biomass_variable(tag) for tag in community.tags]
    unknown = [
        t for t in out if community.tag_of_biomass_variable(t) is None and t not in community.model.reactions
    ]
    if unknown:
        raise SteadyComError(f"Unknown targets: {', '.join(unknown)}")
    return out


def _member_of(community: Community, target: str) -> str | None:
    tag = community.tag_of_biomass_variable(target)
    if tag is not None:
        return tag
    for t, bm_id in community.biomass.items():
        if bm_id == target:
            return t
    return None


def split_into_chunks(percents: list[float], n_jobs: int) -> list[list[float]]:
    """Contiguous runs of growth rates, at most one per joblib worker."""
    from joblib import effective_n_jobs

    if not percents:
        return []
    n = max(1, min(len(percents), effective_n_jobs(n_jobs)))
    return [chunk.tolist() for chunk in np.array_split(np.asarray(percents, dtype=float), n)]


def _fva_at_growth_rates(
    community: Community,
    sc_options: SteadyComOptions,
    gr_max: float,
    percents: list[float],
    targets: list[str],
    bm_percent: float,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    x0 = sc_options.total_biomass
    with steadycom_problem(community, sc_options) as problem:
        coefficients = {t: problem.target_coefficients(t) for t in targets}
        for pct in percents:
            mu = gr_max * pct / 100.0
            problem.set_growth(mu)
            problem.set_total_biomass(0.0, None)
            bmax = problem.max_total_biomass()
            feasible = bool(np.isfinite(bmax)) and bmax > sc_options.feas_tol
            if feasible:
                problem.set_total_biomass(min(bmax, x0) * bm_percent / 100.0, x0)
            else:
                logger.warning("No feasible community at %.4g%% of max growth (mu=%.6g)", pct, mu)

            for target, coefs in coefficients.items():
                lo = problem.optimize(coefs, "min") if feasible else float("nan")
                hi = problem.optimize(coefs, "max") if feasible else float("nan")
                rows.append(
                    {
                        "target": target,
                        "member": _member_of(community, target),
                        "gr_percent": float(pct),
                        "growth_rate": mu,
                        "fva_min": lo,
                        "fva_max": hi,
                    }
                )
            logger.debug("SteadyComFVA at %.4g%% (mu=%.6g) done", pct, mu)
    return rows


def steadycom_fva(
    community: Community,
    options: FVAOptions | None = None,
    sc_options: SteadyComOptions | None = None,
    *,
    growth_rate: float | None = None,
) -> pd.DataFrame:
    """
    Flux variability under the SteadyCom framework at several growth rates.

    At each percentage p of the maximum growth rate GRmax, fix mu = GRmax * p / 100,
    require bm_percent of the attainable total biomass (never more than X0) and
    minimize / maximize each target. Biomass targets "X_{tag}" with X0 = 1 are
    relative abundances.

    Returns a long table with columns:
    target, member, gr_percent, growth_rate, fva_min, fva_max
    """
    from joblib import Parallel, delayed

    options = options or FVAOptions()
    sc_options = sc_options or SteadyComOptions()
    targets = resolve_targets(community, options.targets)
    gr_max = require_growth(community, sc_options, growth_rate)

    percents = [float(p) for p in options.gr_percent]
    chunks = split_into_chunks(percents, options.n_jobs)
    logger.info(
        "SteadyComFVA: %d targets x %d growth rates (GRmax=%.6f, n_jobs=%d)",
        len(targets),
        len(percents),
        gr_max,
        options.n_jobs,
    )
    results = Parallel(n_jobs=options.n_jobs)(
        delayed(_fva_at_growth_rates)(community, sc_options, gr_max, chunk, targets, options.bm_percent)
        for chunk in chunks
    )
    rows = [row for chunk_rows in results for row in chunk_rows]
    return pd.DataFrame(rows, columns=FVA_COLUMNS)


def joint_fba_fva(community: Community, gr_percent: Iterable[float]) -> pd.DataFrame:
    """
    Standard FBA + FVA on the community model, for comparison with SteadyComFVA.

    The objective is the sum of member biomass reactions. For each percentage p,
    run cobra FVA on the biomass reactions with fraction_of_optimum = p / 100.
    growth_rate is the corresponding total biomass flux.

    Returns the same long layout as steadycom_fva (target = biomass reaction id).
    """
    percents = [float(p) for p in gr_percent]
    skipped = [p for p in percents if p <= 0]
    if skipped:
        logger.warning("Joint FBA FVA skips non-positive percentages: %s", skipped)
    percents = [p for p in percents if p > 0]

    model = community.model
    biomass_ids = list(community.biomass.values())
    rows: list[dict[str, Any]] = []
    with model:
        model.objective = {model.reactions.get_by_id(rid): 1.0 for rid in biomass_ids}
        gr_fba = model.slim_optimize(error_value=float("nan"))
        if not np.isfinite(gr_fba) or gr_fba <= 0:
            raise FVAError(f"Joint FBA has no positive optimum (objective={gr_fba}).")
        logger.info("Joint FBA total biomass flux: %.6f", gr_fba)

        for pct in percents:
            fva_df = run_targeted_fva(model, targets=biomass_ids, fraction_of_optimum=pct / 100.0)
            for rec in fva_df.to_dict(orient="records"):
                rows.append(
                    {
                        "target": rec["reaction_id"],
                        "member": _member_of(community, rec["reaction_id"]),
                        "gr_percent": pct,
                        "growth_rate": gr_fba * pct / 100.0,
                        "fva_min": float(rec["fva_min"]),
                        "fva_max": float(rec["fva_max"]),
                    }
                )
    return pd.DataFrame(rows, columns=FVA_COLUMNS)
