from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import pandas as pd

from auxocom.config import ConfigError

logger = logging.getLogger(__name__)

_SBML_SUFFIXES: tuple[str, ...] = (".xml", ".sbml")


def load_cobra_model(source: str | Path):
    """
    Load a COBRA model by file suffix, or by repository identifier.

    - .xml / .sbml -> SBML
    - .json        -> cobra JSON
    - .mat         -> COBRA Toolbox MATLAB struct
    - no suffix and no such file -> cobra.io.load_model (e.g. "iML1515")

    Returns
    -------
    cobra.Model
    """
    from cobra.io import load_json_model, load_matlab_model, load_model, read_sbml_model

    p = Path(source)
    suffix = p.suffix.lower()

    if not suffix and not p.exists():
        logger.info("Loading model from repository: %s", source)
        return load_model(str(source))

    if not p.exists():
        raise FileNotFoundError(f"Model file not found: {p}")

    logger.info("Loading model: %s", p)
    if suffix in _SBML_SUFFIXES:
        return read_sbml_model(str(p))
    if suffix == ".json":
        return load_json_model(str(p))
    if suffix == ".mat":
        return load_matlab_model(str(p))
    raise ConfigError(f"Unsupported model format: {suffix} (expected .xml/.sbml/.json/.mat)")


def save_table(
    df: pd.DataFrame,
    out_path: str | Path,
    *,
    fmt: Literal["parquet", "csv"] | None = None,
) -> Path:
    """
    Save a table to parquet or CSV, inferred by extension unless fmt is provided.
    """
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if fmt is None:
        suffix = p.suffix.lower()
        if suffix == ".parquet":
            fmt = "parquet"
        elif suffix == ".csv":
            fmt = "csv"
        else:
            raise ConfigError(f"Cannot infer format from extension: {p.suffix} (use .parquet or .csv)")

    if fmt == "parquet":
        df.to_parquet(p, index=False)
    elif fmt == "csv":
        df.to_csv(p, index=False)
    else:
        raise ConfigError(f"Unsupported fmt: {fmt}")

    logger.info("Saved table: %s (rows=%d, cols=%d)", p, len(df), len(df.columns))
    return p
