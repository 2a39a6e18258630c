from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from auxocom.poa import POAResult

logger = logging.getLogger(__name__)

# Member colors of the four-strain figures; cycled for larger communities.
MEMBER_COLORS: list[str] = ["#5f87ff", "#ff0000", "#00eb00", "#eb87ff"]


def _pyplot():
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except Exception as e:  # noqa: BLE001
        raise RuntimeError(f"matplotlib is required to plot. Install it and retry. Error: {e}") from e
    return plt


def _color(i: int) -> str:
    return MEMBER_COLORS[i % len(MEMBER_COLORS)]


def _closed_band(x: np.ndarray, lo: np.ndarray, hi: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Outline of a min/max band: along the minima, then back along the maxima."""
    xs = np.concatenate([x, x[::-1]])
    ys = np.concatenate([lo, hi[::-1]])
    ok = np.isfinite(ys)
    return xs[ok], ys[ok]


def joint_abundance(joint_fva: pd.DataFrame) -> pd.DataFrame:
    """
    Express joint-FBA biomass flux ranges as relative abundances.

    Each member's biomass flux range is divided by the total biomass flux
    (growth_rate); values above 1 come from the total only being bounded below
    and are clipped to 1.
    """
    out = joint_fva.copy()
    den = out["growth_rate"].replace({0.0: np.nan})
    out["fva_min"] = (out["fva_min"] / den).clip(upper=1.0)
    out["fva_max"] = (out["fva_max"] / den).clip(upper=1.0)
    return out


def _plot_ranges(ax, table: pd.DataFrame, tags: Sequence[str], title: str) -> None:
    for i, tag in enumerate(tags):
        sub = table.loc[table["member"] == tag].sort_values("growth_rate")
        if sub.empty:
            continue
        x, y = _closed_band(
            sub["growth_rate"].to_numpy(dtype=float),
            sub["fva_min"].to_numpy(dtype=float),
            sub["fva_max"].to_numpy(dtype=float),
        )
        ax.plot(x, y, linewidth=2, color=_color(i), label=tag)
    ax.set_title(title)
    ax.set_ylim(0.0, 1.0)
    ax.set_yticks(np.arange(0.0, 1.01, 0.2))
    ax.set_xlabel("Community growth rate (1/h)")
    ax.set_ylabel("Relative abundance")
    ax.grid(True, linestyle="--", alpha=0.3)


def plot_fva_comparison(
    steadycom_fva: pd.DataFrame,
    joint_fva: pd.DataFrame | None,
    tags: Sequence[str],
    out_path: str | Path,
) -> Path:
    """
    Abundance ranges against community growth rate: SteadyComFVA on top,
    joint FBA (as relative abundance) below when given.
    """
    plt = _pyplot()
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    n_rows = 1 if joint_fva is None or joint_fva.empty else 2
    fig, axes = plt.subplots(n_rows, 1, figsize=(8, 4 * n_rows), squeeze=False)
    _plot_ranges(axes[0, 0], steadycom_fva, tags, "SteadyCom")
    axes[0, 0].legend(fontsize=8, loc="center left", bbox_to_anchor=(1.02, 0.5), frameon=False)
    if n_rows == 2:
        _plot_ranges(axes[1, 0], joint_abundance(joint_fva), tags, "Joint FBA")

    fig.tight_layout()
    fig.savefig(out_path, dpi=200, bbox_inches="tight")
    plt.close(fig)
    logger.info("Wrote %s", out_path)
    return out_path


def plot_poa(result: POAResult, tags: Sequence[str], out_path: str | Path) -> Path:
    """
    Pairwise POA envelopes on log-log axes, one panel per member pair and one
    curve per growth rate.

    Panels are laid out on an (n-1) x (n-1) grid: column j is the independent
    member, row k-1 the dependent one (k > j); the other cells stay empty.
    """
    plt = _pyplot()
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    tags = list(tags)
    n = len(tags)
    if n < 2:
        raise ValueError("POA plot needs at least two members.")
    table = result.table
    gr_percents = list(dict.fromkeys(table["gr_percent"].tolist()))

    fig, axes = plt.subplots(n - 1, n - 1, figsize=(3.2 * (n - 1), 3.2 * (n - 1)), squeeze=False)
    for ax in axes.ravel():
        ax.set_visible(False)

    handles = []
    for j in range(n):
        for k in range(j + 1, n):
            ind, dep = f"X_{tags[j]}", f"X_{tags[k]}"
            ax = axes[k - 1, j]
            ax.set_visible(True)
            handles = []
            for pct in gr_percents:
                swapped = False
                env = result.envelope(ind, dep, pct)
                if env.empty:
                    env = result.envelope(dep, ind, pct)
                    swapped = True
                if env.empty:
                    continue
                fixed = env["fixed_value"].to_numpy(dtype=float)
                lo = env["dep_min"].to_numpy(dtype=float)
                hi = env["dep_max"].to_numpy(dtype=float)
                x = np.concatenate([fixed, fixed[::-1], fixed[:1]])
                y = np.concatenate([lo, hi[::-1], lo[:1]])
                if swapped:
                    x, y = y, x
                ok = np.isfinite(y) & np.isfinite(x) & (x > 0) & (y > 0)
                (line,) = ax.plot(x[ok], y[ok], linewidth=2, label=f"{pct:g}%")
                handles.append(line)
            ax.set_xscale("log")
            ax.set_yscale("log")
            ax.set_xlim(1e-3, 1.0)
            ax.set_ylim(1e-3, 1.0)
            ax.set_xticks([1e-3, 1e-2, 1e-1, 1.0])
            ax.set_yticks([1e-3, 1e-2, 1e-1, 1.0])
            ax.minorticks_off()
            ax.set_xlabel(tags[j])
            ax.set_ylabel(tags[k])

    if handles:
        fig.legend(
            handles=handles,
            loc="upper right",
            title="% maximum\ngrowth rate",
            frameon=False,
            fontsize=8,
        )
    fig.tight_layout()
    fig.savefig(out_path, dpi=200, bbox_inches="tight")
    plt.close(fig)
    logger.info("Wrote %s", out_path)
    return out_path
