from __future__ import annotations

import logging

import pandas as pd

logger = logging.getLogger(__name__)

EXTRACELLULAR = "e"


def extracellular_metabolites(model, compartment: str = EXTRACELLULAR) -> list:
    """Metabolites of the extracellular compartment, in model order."""
    return [m for m in model.metabolites if m.compartment == compartment]


def is_exchange(rxn, compartment: str = EXTRACELLULAR) -> bool:
    """A reaction with a single metabolite, that metabolite being extracellular."""
    mets = list(rxn.metabolites)
    return len(mets) == 1 and mets[0].compartment == compartment


def exchange_reactions(model, compartment: str = EXTRACELLULAR) -> dict[str, object]:
    """
    Map extracellular metabolite id -> its exchange reaction.

    Order follows the model's metabolite order. If a metabolite has more than one
    single-metabolite reaction (e.g. an exchange and a sink), the first one in
    model order wins.
    """
    by_met: dict[str, object] = {}
    for rxn in model.reactions:
        if not is_exchange(rxn, compartment):
            continue
        met = next(iter(rxn.metabolites))
        if met.id in by_met:
            logger.debug("Extra boundary reaction for %s ignored: %s", met.id, rxn.id)
            continue
        by_met[met.id] = rxn
    return {m.id: by_met[m.id] for m in extracellular_metabolites(model, compartment) if m.id in by_met}


def secretion_bounds(rxn) -> tuple[float, float]:
    """
    Exchange bounds with secretion positive and uptake negative.

    Exchanges written as "--> met_e" (coefficient +1) carry uptake as positive
    flux; their bounds are negated and swapped.
    """
    coef = next(iter(rxn.metabolites.values()))
    if coef > 0:
        return -float(rxn.upper_bound), -float(rxn.lower_bound)
    return float(rxn.lower_bound), float(rxn.upper_bound)


def unexchanged_metabolites(model, compartment: str = EXTRACELLULAR) -> list[str]:
    """Extracellular metabolite ids without a corresponding exchange reaction."""
    exchanged = exchange_reactions(model, compartment)
    return [m.id for m in extracellular_metabolites(model, compartment) if m.id not in exchanged]


def add_missing_exchanges(
    model,
    *,
    compartment: str = EXTRACELLULAR,
    lb: float = 0.0,
    ub: float = 0.0,
) -> list[str]:
    """
    Add exchange reactions for extracellular metabolites that lack one.

    The new reactions are closed by default (lb = ub = 0) so they do not change
    any simulation result; they only make every extracellular metabolite
    exchangeable with a community compartment.

    Returns the ids of the added reactions.
    """
    missing = unexchanged_metabolites(model, compartment)
    added: list[str] = []
    for met_id in missing:
        met = model.metabolites.get_by_id(met_id)
        rxn = model.add_boundary(met, type="exchange", lb=lb, ub=ub)
        added.append(rxn.id)
    if added:
        logger.info("Added %d exchange reactions for unexchanged metabolites: %s", len(added), ", ".join(added))
    return added


def exchange_lower_bounds(model, compartment: str = EXTRACELLULAR) -> pd.Series:
    """Exchange lower bounds (negative = uptake) indexed by extracellular metabolite id."""
    ex = exchange_reactions(model, compartment)
    return pd.Series({mid: secretion_bounds(rxn)[0] for mid, rxn in ex.items()}, name="lb", dtype=float)
