from __future__ import annotations

import pandas as pd
import pytest

from auxocom.config import ConfigError
from auxocom.workflow import build_community, run_workflow


def test_build_community_from_config(toy_config) -> None:
    community = build_community(toy_config)
    assert community.tags == ("S1", "S2")
    assert community.model.id == "ToyCom"
    assert community.model.reactions.S1_SYNA.bounds == (0.0, 0.0)
    assert community.model.reactions.S2_IEX_B_u.lower_bound == -1000.0


def test_run_workflow_writes_tables(toy_config, tmp_path) -> None:
    result = run_workflow(toy_config, tmp_path)
    assert result.steadycom.growth_rate == pytest.approx(5.0, abs=1e-4)

    for stem in [
        "uptake_bounds",
        "steadycom_iterations",
        "steadycom_biomass",
        "steadycom_exchange",
        "fva_steadycom",
        "fva_joint_fba",
        "poa_table",
        "poa_flux_range",
        "poa_stats",
    ]:
        assert (tmp_path / f"{stem}.csv").exists(), stem
    assert "fig_fva_comparison" not in result.files

    biomass = pd.read_csv(tmp_path / "steadycom_biomass.csv")
    assert biomass["member"].tolist() == ["S1", "S2"]
    assert biomass["abundance"].tolist() == pytest.approx([0.5, 0.5], abs=1e-3)

    fva = pd.read_csv(tmp_path / "fva_steadycom.csv")
    assert sorted(fva["gr_percent"].unique().tolist()) == [90.0, 95.0, 100.0]

    # One POA table per growth rate under outdir/poa.
    assert len(list((tmp_path / "poa").glob("poa_GR*.csv"))) == 2


def test_run_workflow_with_plots(toy_config, tmp_path) -> None:
    pytest.importorskip("matplotlib")
    toy_config["outputs"] = {"plots": True, "joint_fba": True, "poa": True}
    result = run_workflow(toy_config, tmp_path)
    assert result.files["fig_fva_comparison"].exists()
    assert result.files["fig_poa"].exists()


def test_run_workflow_switches(toy_config, tmp_path) -> None:
    toy_config["outputs"] = {"fva": False, "joint_fba": False, "poa": False}
    result = run_workflow(toy_config, tmp_path)
    assert result.fva is None and result.joint_fva is None and result.poa is None
    assert not (tmp_path / "fva_steadycom.csv").exists()


def test_workflow_config_errors(toy_config, tmp_path) -> None:
    bad = dict(toy_config)
    bad.pop("model")
    with pytest.raises(ConfigError):
        build_community(bad)

    bad = dict(toy_config, outputs={"movies": True})
    with pytest.raises(ConfigError):
        run_workflow(bad, tmp_path)

    bad = dict(toy_config, community={"idd": "x"})
    with pytest.raises(ConfigError):
        build_community(bad)
