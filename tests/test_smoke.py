from __future__ import annotations

import re
from pathlib import Path

import pandas as pd
import pytest
from typer.testing import CliRunner

from auxocom import __version__
from auxocom.cli import app

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_cli_help_runs() -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "auxocom" in result.stdout


def test_cli_version() -> None:
    result = CliRunner().invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_cli_missing_config_exits_with_code_2(tmp_path) -> None:
    result = CliRunner().invoke(app, ["growth", "--config", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 2


def test_cli_growth_on_toy_config(tmp_path) -> None:
    import yaml

    cfg = yaml.safe_load((REPO_ROOT / "configs" / "toy_community.yaml").read_text(encoding="utf-8"))
    cfg["model"] = str(REPO_ROOT / "models" / "toy_cross_feeder.json")
    cfg_path = tmp_path / "toy.yaml"
    cfg_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")

    result = CliRunner().invoke(app, ["growth", "--config", str(cfg_path), "--outdir", str(tmp_path / "out")])
    assert result.exit_code == 0, result.output
    match = re.search(r"Maximum growth rate: ([0-9.]+)", result.stdout)
    assert match is not None
    assert float(match.group(1)) == pytest.approx(5.0, abs=1e-4)
    assert (tmp_path / "out" / "steadycom_biomass.csv").exists()


def test_cli_audit_reports_missing_reactions(tmp_path) -> None:
    import yaml

    cfg = {
        "model": str(REPO_ROOT / "models" / "toy_cross_feeder.json"),
        "biomass_reaction": "BIOMASS",
        "base_bounds": {"EX_glc_e": {"lb": -10}, "EX_glucose": {"lb": -1}},
    }
    cfg_path = tmp_path / "audit.yaml"
    cfg_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    out = tmp_path / "audit.csv"

    result = CliRunner().invoke(app, ["audit", "--config", str(cfg_path), "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert "missing=1" in result.stdout
    assert out.exists()


def _toy_config_file(tmp_path: Path, **overrides) -> Path:
    import yaml

    cfg = yaml.safe_load((REPO_ROOT / "configs" / "toy_community.yaml").read_text(encoding="utf-8"))
    cfg["model"] = str(REPO_ROOT / "models" / "toy_cross_feeder.json")
    cfg.update(overrides)
    cfg_path = tmp_path / "toy.yaml"
    cfg_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return cfg_path


def test_cli_unsupported_model_format_exits_with_code_2(tmp_path) -> None:
    model = tmp_path / "model.txt"
    model.write_text("not a model", encoding="utf-8")
    cfg_path = _toy_config_file(tmp_path, model=str(model))

    result = CliRunner().invoke(app, ["growth", "--config", str(cfg_path)])
    assert result.exit_code == 2
    assert "Unsupported model format" in result.output


def test_cli_bounds_writes_uptake_table(tmp_path) -> None:
    cfg_path = _toy_config_file(tmp_path)
    out = tmp_path / "uptake.csv"

    result = CliRunner().invoke(app, ["bounds", "--config", str(cfg_path), "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert "[OK] Wrote:" in result.stdout
    df = pd.read_csv(out)
    assert df["metabolite"].tolist() == ["glc_u"]
    assert df.loc[0, "community"] == pytest.approx(10.0)


def test_cli_bounds_unknown_table_extension_exits_with_code_2(tmp_path) -> None:
    cfg_path = _toy_config_file(tmp_path)

    result = CliRunner().invoke(app, ["bounds", "--config", str(cfg_path), "--out", str(tmp_path / "u.txt")])
    assert result.exit_code == 2
    assert "Cannot infer format" in result.output


def test_cli_fva_writes_ranges(tmp_path) -> None:
    cfg_path = _toy_config_file(tmp_path)
    out = tmp_path / "fva.csv"

    result = CliRunner().invoke(app, ["fva", "--config", str(cfg_path), "--out", str(out)])
    assert result.exit_code == 0, result.output
    # Two members x three growth rates (90, 95, 100 %).
    assert "rows=6" in result.stdout
    df = pd.read_csv(out)
    at_90 = df.loc[df["gr_percent"] == 90.0, ["fva_min", "fva_max"]].to_numpy()
    assert at_90.min() == pytest.approx(0.45, abs=1e-4)
    assert at_90.max() == pytest.approx(0.55, abs=1e-4)


def test_cli_poa_writes_per_growth_rate_tables_to_outdir(tmp_path) -> None:
    cfg_path = _toy_config_file(tmp_path)
    outdir = tmp_path / "poa"

    result = CliRunner().invoke(app, ["poa", "--config", str(cfg_path), "--outdir", str(outdir)])
    assert result.exit_code == 0, result.output
    for stem in ["poa_table", "poa_flux_range", "poa_stats"]:
        assert (outdir / f"{stem}.csv").exists(), stem
    assert len(list(outdir.glob("poa_GR*.csv"))) == 2


def test_cli_run_writes_workflow_outputs(tmp_path) -> None:
    cfg_path = _toy_config_file(tmp_path)
    outdir = tmp_path / "run"

    result = CliRunner().invoke(app, ["run", "--config", str(cfg_path), "--outdir", str(outdir)])
    assert result.exit_code == 0, result.output
    match = re.search(r"Maximum growth rate: ([0-9.]+)", result.stdout)
    assert match is not None
    assert float(match.group(1)) == pytest.approx(5.0, abs=1e-4)
    for stem in ["uptake_bounds", "steadycom_biomass", "fva_steadycom", "fva_joint_fba", "poa_table"]:
        assert (outdir / f"{stem}.csv").exists(), stem
