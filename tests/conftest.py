from __future__ import annotations

from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


def make_toy_model():
    """
    glc_e -> glc_c -> A_c / B_c, biomass = A_c + B_c.

    A and B can be secreted (A_e, B_e) but not taken up from the medium.
    The wild type grows at 5 /h on 10 units of glucose; two mutants that each
    lack one synthesis step also reach 5 /h together, at equal abundance.
    """
    from cobra import Metabolite, Model, Reaction

    m = Model("toy")
    mets = {
        mid: Metabolite(mid, name=mid, compartment=mid.rsplit("_", 1)[1])
        for mid in ["glc_e", "glc_c", "A_c", "A_e", "B_c", "B_e"]
    }

    def rxn(rid, stoich, lb=0.0, ub=1000.0):
        r = Reaction(rid, lower_bound=lb, upper_bound=ub)
        r.add_metabolites({mets[k]: v for k, v in stoich.items()})
        return r

    m.add_reactions(
        [
            rxn("EX_glc_e", {"glc_e": -1}, lb=-10.0),
            rxn("EX_A_e", {"A_e": -1}),
            rxn("EX_B_e", {"B_e": -1}),
            rxn("GLCt", {"glc_e": -1, "glc_c": 1}),
            rxn("SYNA", {"glc_c": -1, "A_c": 1}),
            rxn("SYNB", {"glc_c": -1, "B_c": 1}),
            rxn("At", {"A_c": -1, "A_e": 1}, lb=-1000.0),
            rxn("Bt", {"B_c": -1, "B_e": 1}, lb=-1000.0),
            rxn("BIOMASS", {"A_c": -1, "B_c": -1}),
        ]
    )
    m.objective = "BIOMASS"
    return m


@pytest.fixture()
def toy_model():
    return make_toy_model()


@pytest.fixture()
def toy_members():
    from auxocom.strains import parse_members

    return parse_members(
        {
            "S1": {"knockouts": {"synA": ["SYNA"]}, "uptake": {"A": 1000, "B": 0}},
            "S2": {"knockouts": {"synB": ["SYNB"]}, "uptake": {"A": 0, "B": 1000}},
        }
    )


@pytest.fixture()
def toy_community(toy_model, toy_members):
    """The two cross-feeding mutants, constrained the way the workflow does it."""
    from auxocom.community import constrain_from_base, create_community, set_member_export, set_member_uptake
    from auxocom.exchange import exchange_lower_bounds
    from auxocom.strains import build_member_models

    members = build_member_models(toy_model, toy_members)
    community = create_community(list(members.values()), list(members), "BIOMASS")
    constrain_from_base(community, exchange_lower_bounds(toy_model))
    for spec in toy_members:
        set_member_uptake(community, spec.tag, spec.uptake)
    set_member_export(community, 1000.0)
    return community


@pytest.fixture()
def toy_config() -> dict:
    from auxocom.config import load_config

    cfg = load_config(REPO_ROOT / "configs" / "toy_community.yaml")
    cfg["model"] = str(REPO_ROOT / "models" / "toy_cross_feeder.json")
    return cfg
