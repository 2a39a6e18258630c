from __future__ import annotations

import numpy as np
import pytest

from auxocom.fva import (
    FVA_COLUMNS,
    FVAOptions,
    joint_fba_fva,
    resolve_targets,
    run_targeted_fva,
    split_into_chunks,
    steadycom_fva,
)
from auxocom.steadycom import SteadyComError, SteadyComOptions


def test_resolve_targets(toy_community) -> None:
    assert resolve_targets(toy_community, []) == ["X_S1", "X_S2"]
    assert resolve_targets(toy_community, ["S1_SYNB", "X_S2", "S1_SYNB"]) == ["S1_SYNB", "X_S2"]
    with pytest.raises(SteadyComError):
        resolve_targets(toy_community, ["X_S3"])


def test_steadycom_fva_abundance_ranges(toy_community) -> None:
    options = FVAOptions(gr_percent=(90.0, 100.0))
    df = steadycom_fva(toy_community, options, SteadyComOptions(), growth_rate=5.0)
    assert list(df.columns) == FVA_COLUMNS
    assert len(df) == 4

    row = df.loc[(df["target"] == "X_S1") & (df["gr_percent"] == 90.0)].iloc[0]
    assert row["member"] == "S1"
    assert row["growth_rate"] == pytest.approx(4.5)
    # Each member needs 4.5 units of glucose per unit of community biomass
    # against a per-capita capacity of 10.
    assert row["fva_min"] == pytest.approx(0.45, abs=1e-6)
    assert row["fva_max"] == pytest.approx(0.55, abs=1e-6)

    at_max = df.loc[df["gr_percent"] == 100.0]
    assert np.allclose(at_max["fva_min"], 0.5, atol=1e-6)
    assert np.allclose(at_max["fva_max"], 0.5, atol=1e-6)


def test_steadycom_fva_reaction_target_and_infeasible_rate(toy_community) -> None:
    # 100% of an overstated maximum growth rate cannot be reached.
    options = FVAOptions(targets=("S1_SYNB",), gr_percent=(50.0, 100.0))
    df = steadycom_fva(toy_community, options, growth_rate=8.0)
    half = df.loc[df["gr_percent"] == 50.0].iloc[0]
    # mu = 4: S1 makes B for the whole unit of biomass.
    assert half["fva_min"] == pytest.approx(4.0, abs=1e-6)
    full = df.loc[df["gr_percent"] == 100.0].iloc[0]
    assert np.isnan(full["fva_min"]) and np.isnan(full["fva_max"])


def test_steadycom_fva_parallel_matches_serial(toy_community) -> None:
    serial = steadycom_fva(toy_community, FVAOptions(gr_percent=(95.0, 99.0)), growth_rate=5.0)
    parallel = steadycom_fva(toy_community, FVAOptions(gr_percent=(95.0, 99.0), n_jobs=2), growth_rate=5.0)
    assert np.allclose(serial["fva_min"], parallel["fva_min"], atol=1e-8)
    assert np.allclose(serial["fva_max"], parallel["fva_max"], atol=1e-8)


def test_growth_rates_split_into_one_chunk_per_worker() -> None:
    percents = [float(p) for p in range(50, 101, 5)]
    assert split_into_chunks(percents, 1) == [percents]
    chunks = split_into_chunks(percents, 4)
    assert len(chunks) == 4
    assert [p for chunk in chunks for p in chunk] == percents
    assert split_into_chunks([90.0, 100.0], 8) == [[90.0], [100.0]]
    assert split_into_chunks([], 4) == []


def test_joint_fba_fva_spans_everything(toy_community) -> None:
    df = joint_fba_fva(toy_community, [0.0, 90.0, 100.0])
    assert list(df.columns) == FVA_COLUMNS
    assert set(df["gr_percent"]) == {90.0, 100.0}
    assert set(df["member"]) == {"S1", "S2"}

    row = df.loc[(df["target"] == "S1_BIOMASS") & (df["gr_percent"] == 90.0)].iloc[0]
    assert row["growth_rate"] == pytest.approx(4.5)
    # Joint FBA does not pin abundances: either member alone may carry the biomass flux.
    assert row["fva_min"] == pytest.approx(0.0, abs=1e-6)
    assert row["fva_max"] == pytest.approx(5.0, abs=1e-6)


def test_run_targeted_fva_on_single_model(toy_model) -> None:
    df = run_targeted_fva(toy_model, ["SYNA", "BIOMASS"], fraction_of_optimum=1.0)
    assert list(df.columns) == ["reaction_id", "fva_min", "fva_max"]
    rec = df.set_index("reaction_id")
    assert rec.loc["BIOMASS", "fva_min"] == pytest.approx(5.0)
    assert rec.loc["SYNA", "fva_max"] == pytest.approx(5.0)
    with pytest.raises(ValueError):
        run_targeted_fva(toy_model, [], fraction_of_optimum=1.0)
