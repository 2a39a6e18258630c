from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import combinations
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from auxocom.community import Community
from auxocom.config import ConfigError, expand_grid
from auxocom.fva import FVA_COLUMNS, _member_of, resolve_targets
from auxocom.io import save_table
from auxocom.steadycom import (
    SteadyComError,
    SteadyComOptions,
    _set_constraint_bounds,
    require_growth,
    steadycom_problem,
)

logger = logging.getLogger(__name__)

POA_COLUMNS: list[str] = [
    "gr_percent",
    "growth_rate",
    "independent",
    "dependent",
    "step",
    "fixed_value",
    "dep_min",
    "dep_max",
]
STATS_COLUMNS: list[str] = ["gr_percent", "growth_rate", "independent", "dependent", "cor", "r2"]


def log_clustered_steps(n: int = 15, low: float = 1e-3) -> list[float]:
    """
    Fractions in [0, 1] clustered near both ends: a = low * (1/low)^(k/(n-1)),
    k = 0..n-1, together with 1 - a, sorted.
    """
    if n < 2:
        raise ValueError("n must be >= 2")
    a = low * (1.0 / low) ** (np.arange(n) / (n - 1))
    return np.sort(np.concatenate([a, 1.0 - a])).tolist()


def _parse_steps(value: Any) -> tuple[float, ...]:
    if value is None or value == "log":
        return tuple(log_clustered_steps())
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 2:
            raise ConfigError("poa.steps as an integer must be >= 2.")
        return tuple(np.linspace(0.0, 1.0, value).tolist())
    steps = expand_grid(value, name="poa.steps")
    bad = [s for s in steps if not 0.0 <= s <= 1.0]
    if bad:
        raise ConfigError(f"poa.steps fractions must be within [0, 1]: {bad}")
    return tuple(steps)


@dataclass(frozen=True)
class POAOptions:
    """
    targets      variables to analyze; empty = every member's X.
    pairs        (independent, dependent) pairs; empty = all (i, j) with i before j.
    gr_percent   percentages of the maximum growth rate.
    steps        fractions of the independent variable's range to fix it at.
    bm_percent   required share of the attainable total biomass (capped at X0).
    save_dir     when set, one table per growth rate is written there.
    """

    targets: tuple[str, ...] = ()
    pairs: tuple[tuple[str, str], ...] = ()
    gr_percent: tuple[float, ...] = (100.0,)
    steps: tuple[float, ...] = field(default_factory=lambda: tuple(log_clustered_steps()))
    bm_percent: float = 100.0
    save_dir: str | None = None
    save_prefix: str = "poa"

    def __post_init__(self) -> None:
        if not self.gr_percent:
            raise ConfigError("poa.gr_percent must not be empty.")
        bad = [p for p in self.gr_percent if not 0.0 <= p <= 100.0]
        if bad:
            raise ConfigError(f"poa.gr_percent values must be within [0, 100]: {bad}")
        if not self.steps:
            raise ConfigError("poa.steps must not be empty.")
        if not 0.0 < self.bm_percent <= 100.0:
            raise ConfigError("poa.bm_percent must be in (0, 100].")
        for pair in self.pairs:
            if len(pair) != 2 or pair[0] == pair[1]:
                raise ConfigError(f"poa.pairs entries must be two distinct targets: {pair!r}")

    @classmethod
    def from_config(cls, section: dict[str, Any] | None) -> "POAOptions":
        section = section or {}
        unknown = set(section) - {"targets", "pairs", "gr_percent", "steps", "bm_percent", "save_dir", "save_prefix"}
        if unknown:
            raise ConfigError(f"Unknown poa options: {sorted(unknown)}")
        pairs_raw = section.get("pairs", []) or []
        if not isinstance(pairs_raw, list):
            raise ConfigError("poa.pairs must be a list of [independent, dependent] pairs.")
        save_dir = section.get("save_dir", None)
        return cls(
            targets=tuple(str(t) for t in section.get("targets", []) or []),
            pairs=tuple(tuple(str(x) for x in p) for p in pairs_raw),
            gr_percent=tuple(expand_grid(section.get("gr_percent", [100.0]), name="poa.gr_percent")),
            steps=_parse_steps(section.get("steps", "log")),
            bm_percent=float(section.get("bm_percent", 100.0)),
            save_dir=str(save_dir) if save_dir else None,
            save_prefix=str(section.get("save_prefix", "poa")),
        )


@dataclass(frozen=True)
class POAResult:
    table: pd.DataFrame
    flux_range: pd.DataFrame
    stats: pd.DataFrame

    def envelope(self, independent: str, dependent: str, gr_percent: float) -> pd.DataFrame:
        t = self.table
        sel = (
            (t["independent"] == independent)
            & (t["dependent"] == dependent)
            & np.isclose(t["gr_percent"], float(gr_percent))
        )
        return t.loc[sel].sort_values("step").reset_index(drop=True)


def _pair_stats(fixed: np.ndarray, dep_min: np.ndarray, dep_max: np.ndarray) -> tuple[float, float]:
    """Correlation of the dependent min/max with the fixed value, and R^2 of a linear fit."""
    x = np.concatenate([fixed, fixed])
    y = np.concatenate([dep_min, dep_max])
    ok = np.isfinite(x) & np.isfinite(y)
    x, y = x[ok], y[ok]
    if len(x) < 2 or np.ptp(x) <= 1e-12 or np.ptp(y) <= 1e-12:
        return float("nan"), float("nan")
    cor = float(np.corrcoef(x, y)[0, 1])
    return cor, cor * cor


def steadycom_poa(
    community: Community,
    options: POAOptions | None = None,
    sc_options: SteadyComOptions | None = None,
    *,
    growth_rate: float | None = None,
) -> POAResult:
    """
    Pairwise Pareto optimality analysis under the SteadyCom framework.

    At each growth rate, every target's range is found first (as in
    steadycom_fva). Then for each (independent, dependent) pair the independent
    variable is fixed at min + f * (max - min) for each step fraction f, and the
    dependent variable is minimized and maximized.
    """
    options = options or POAOptions()
    sc_options = sc_options or SteadyComOptions()

    targets = list(options.targets)
    for a, b in options.pairs:
        targets.extend([a, b])
    targets = resolve_targets(community, targets)
    pairs = list(options.pairs) or list(combinations(targets, 2))
    if not pairs:
        raise SteadyComError("POA needs at least two targets.")

    gr_max = require_growth(community, sc_options, growth_rate)
    x0 = sc_options.total_biomass
    independents = list(dict.fromkeys(p[0] for p in pairs))

    table_rows: list[dict[str, Any]] = []
    range_rows: list[dict[str, Any]] = []
    stats_rows: list[dict[str, Any]] = []
    logger.info(
        "SteadyComPOA: %d pairs x %d growth rates x %d steps (GRmax=%.6f)",
        len(pairs),
        len(options.gr_percent),
        len(options.steps),
        gr_max,
    )

    with steadycom_problem(community, sc_options) as problem:
        coefficients = {t: problem.target_coefficients(t) for t in targets}
        fix_constraints = {t: problem.fixing_constraint(t, f"poa_fix_{i}") for i, t in enumerate(independents)}

        for pct in options.gr_percent:
            mu = gr_max * float(pct) / 100.0
            problem.set_growth(mu)
            problem.set_total_biomass(0.0, None)
            bmax = problem.max_total_biomass()
            feasible = bool(np.isfinite(bmax)) and bmax > sc_options.feas_tol
            if feasible:
                problem.set_total_biomass(min(bmax, x0) * options.bm_percent / 100.0, x0)
            else:
                logger.warning("No feasible community at %.4g%% of max growth (mu=%.6g)", pct, mu)

            ranges: dict[str, tuple[float, float]] = {}
            for t, coefs in coefficients.items():
                lo = problem.optimize(coefs, "min") if feasible else float("nan")
                hi = problem.optimize(coefs, "max") if feasible else float("nan")
                ranges[t] = (lo, hi)
                range_rows.append(
                    {
                        "target": t,
                        "member": _member_of(community, t),
                        "gr_percent": float(pct),
                        "growth_rate": mu,
                        "fva_min": lo,
                        "fva_max": hi,
                    }
                )

            gr_rows: list[dict[str, Any]] = []
            for ind, dep in pairs:
                lo_i, hi_i = ranges[ind]
                fixed_vals, mins, maxs = [], [], []
                for k, frac in enumerate(options.steps):
                    value = lo_i + float(frac) * (hi_i - lo_i)
                    if np.isfinite(value):
                        _set_constraint_bounds(fix_constraints[ind], value, value)
                        dmin = problem.optimize(coefficients[dep], "min")
                        dmax = problem.optimize(coefficients[dep], "max")
                    else:
                        dmin = dmax = float("nan")
                    fixed_vals.append(value)
                    mins.append(dmin)
                    maxs.append(dmax)
                    gr_rows.append(
                        {
                            "gr_percent": float(pct),
                            "growth_rate": mu,
                            "independent": ind,
                            "dependent": dep,
                            "step": k,
                            "fixed_value": value,
                            "dep_min": dmin,
                            "dep_max": dmax,
                        }
                    )
                _set_constraint_bounds(fix_constraints[ind], None, None)

                cor, r2 = _pair_stats(np.asarray(fixed_vals), np.asarray(mins), np.asarray(maxs))
                stats_rows.append(
                    {
                        "gr_percent": float(pct),
                        "growth_rate": mu,
                        "independent": ind,
                        "dependent": dep,
                        "cor": cor,
                        "r2": r2,
                    }
                )
                logger.info("POA %.4g%% %s vs %s: cor=%.4f r2=%.4f", pct, ind, dep, cor, r2)

            table_rows.extend(gr_rows)
            if options.save_dir:
                out = Path(options.save_dir) / f"{options.save_prefix}_GR{mu:.4f}.csv"
                save_table(pd.DataFrame(gr_rows, columns=POA_COLUMNS), out)

    return POAResult(
        table=pd.DataFrame(table_rows, columns=POA_COLUMNS),
        flux_range=pd.DataFrame(range_rows, columns=FVA_COLUMNS),
        stats=pd.DataFrame(stats_rows, columns=STATS_COLUMNS),
    )
