from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


def _load_plot_script():
    path = REPO_ROOT / "scripts" / "plot_community_results.py"
    spec = importlib.util.spec_from_file_location("plot_community_results", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_plot_script_redraws_figures_from_workflow_tables(toy_config, tmp_path, capsys) -> None:
    pytest.importorskip("matplotlib")
    from auxocom.workflow import run_workflow

    results = tmp_path / "results"
    run_workflow(toy_config, results)
    figs = tmp_path / "figs"

    rc = _load_plot_script().main(["--results", str(results), "--outdir", str(figs)])
    assert rc == 0
    out = capsys.readouterr().out
    assert out.count("[OK] Wrote:") == 2
    assert (figs / "fig_fva_comparison.png").exists()
    assert (figs / "fig_poa.png").exists()


def test_plot_script_missing_results_directory(tmp_path, capsys) -> None:
    rc = _load_plot_script().main(["--results", str(tmp_path / "nope")])
    assert rc == 2
    assert "[ERROR] results directory not found" in capsys.readouterr().err


def test_plot_script_empty_results_directory(tmp_path, capsys) -> None:
    script = _load_plot_script()

    assert script.main(["--results", str(tmp_path)]) == 2
    assert "[ERROR] steadycom_biomass table missing" in capsys.readouterr().err

    assert script.main(["--results", str(tmp_path), "--members", "S1,S2"]) == 2
    assert "[ERROR] no fva_steadycom or poa_table found" in capsys.readouterr().err
