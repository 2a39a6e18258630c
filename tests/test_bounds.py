from __future__ import annotations

import pytest

from auxocom.audit import audit_reaction_ids, collect_configured_reaction_ids, suggest_reaction_replacements
from auxocom.bounds import BoundsConfigError, apply_base_bounds, change_bounds, knock_out


def test_change_bounds_sides(toy_model) -> None:
    changes = change_bounds(toy_model, "EX_glc_e", -8.0, "l")
    assert changes == [("EX_glc_e", -10.0, 1000.0, -8.0, 1000.0)]
    assert toy_model.reactions.EX_glc_e.bounds == (-8.0, 1000.0)

    change_bounds(toy_model, ["EX_A_e", "EX_B_e"], 50.0, "u")
    assert toy_model.reactions.EX_A_e.upper_bound == 50.0
    assert toy_model.reactions.EX_B_e.upper_bound == 50.0

    change_bounds(toy_model, "At", 0.0, "b")
    assert toy_model.reactions.At.bounds == (0.0, 0.0)

    # No-op changes are not recorded.
    assert change_bounds(toy_model, "At", 0.0, "b") == []


def test_change_bounds_rejects_bad_input(toy_model) -> None:
    with pytest.raises(BoundsConfigError):
        change_bounds(toy_model, "EX_glc_e", -1.0, "x")
    with pytest.raises(BoundsConfigError):
        # lb above the current ub
        change_bounds(toy_model, "EX_A_e", 2000.0, "l")
    with pytest.raises(BoundsConfigError, match="not found"):
        change_bounds(toy_model, "EX_glucose_e", -1.0, "l")
    # The failed change left the bounds as they were.
    assert toy_model.reactions.EX_A_e.bounds == (0.0, 1000.0)


def test_change_bounds_both_sides_to_disjoint_range(toy_model) -> None:
    toy_model.reactions.At.bounds = (5.0, 10.0)
    changes = change_bounds(toy_model, "At", -2.0, "b")
    assert changes == [("At", 5.0, 10.0, -2.0, -2.0)]
    assert toy_model.reactions.At.bounds == (-2.0, -2.0)

    change_bounds(toy_model, "At", 20.0, "b")
    assert toy_model.reactions.At.bounds == (20.0, 20.0)


def test_knock_out_stops_growth_of_single_mutant(toy_model) -> None:
    assert toy_model.slim_optimize() == pytest.approx(5.0)
    knock_out(toy_model, ["SYNA"])
    assert toy_model.reactions.SYNA.bounds == (0.0, 0.0)
    assert toy_model.slim_optimize(error_value=0.0) == pytest.approx(0.0, abs=1e-9)


def test_apply_base_bounds(toy_model) -> None:
    res = apply_base_bounds(toy_model, {"EX_glc_e": {"lb": -4}, "EX_A_e": {"ub": 10}})
    assert toy_model.reactions.EX_glc_e.lower_bound == -4.0
    assert toy_model.reactions.EX_A_e.upper_bound == 10.0
    assert len(res.changed_bounds) == 2

    with pytest.raises(BoundsConfigError):
        apply_base_bounds(toy_model, {"EX_glc_e": {"lower": -4}})
    with pytest.raises(BoundsConfigError):
        apply_base_bounds(toy_model, {"EX_nope": {"lb": -1}})

    res = apply_base_bounds(toy_model, {"EX_nope": {"lb": -1}}, optional=True)
    assert res.skipped == ["EX_nope"]


def test_audit_suggestions(toy_model) -> None:
    cfg = {
        "biomass_reaction": "BIOMASS",
        "base_bounds": {"EX_glc_e": {"lb": -10}},
        "members": {"S1": {"knockouts": {"synA": ["SYNA"], "x": "SYNX"}}},
    }
    ids = collect_configured_reaction_ids(cfg)
    assert ids == ["BIOMASS", "EX_glc_e", "SYNA", "SYNX"]

    rows = audit_reaction_ids(toy_model, ids)
    status = {r.requested_id: r.status for r in rows}
    assert status == {"BIOMASS": "present", "EX_glc_e": "present", "SYNA": "present", "SYNX": "missing"}
    assert suggest_reaction_replacements(toy_model, "EX_glc__D_e", top_k=3)[0] == "EX_glc_e"
