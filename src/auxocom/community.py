from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import pandas as pd

from auxocom.bounds import change_bounds
from auxocom.exchange import EXTRACELLULAR, exchange_reactions, secretion_bounds

logger = logging.getLogger(__name__)

COMMUNITY_COMPARTMENT = "u"
COMMUNITY_OWNER = "com"
BIOMASS_PREFIX = "X_"


class CommunityError(ValueError):
    """Raised when a community model cannot be built or queried."""


def community_met_id(met_id: str, compartment: str = EXTRACELLULAR) -> str:
    """'arg__L_e' -> 'arg__L_u'. Ids without the compartment suffix get '_u' appended."""
    suffix = f"_{compartment}"
    base = met_id[: -len(suffix)] if met_id.endswith(suffix) else met_id
    return f"{base}_{COMMUNITY_COMPARTMENT}"


@dataclass
class Community:
    """
    A multi-species model plus the bookkeeping needed to analyze it.

    model            cobra.Model holding every member's tagged reactions, the
                     organism-community exchanges and the community exchanges.
    tags             member tags, in member order.
    biomass          tag -> biomass reaction id.
    exchange_com     community metabolite id -> community exchange reaction id.
    exchange_sp      community metabolite ids x tags, organism-community exchange
                     reaction ids ("" where a member cannot exchange the metabolite).
    reaction_owner   reaction id -> tag, or "com" for community exchanges.
    metabolite_owner metabolite id -> tag, or "com" for community metabolites.
    """

    model: Any
    tags: tuple[str, ...]
    biomass: dict[str, str]
    exchange_com: dict[str, str]
    exchange_sp: pd.DataFrame
    reaction_owner: dict[str, str] = field(repr=False)
    metabolite_owner: dict[str, str] = field(repr=False)
    compartment: str = EXTRACELLULAR

    @staticmethod
    def biomass_variable(tag: str) -> str:
        return f"{BIOMASS_PREFIX}{tag}"

    def tag_of_biomass_variable(self, name: str) -> str | None:
        if not name.startswith(BIOMASS_PREFIX):
            return None
        tag = name[len(BIOMASS_PREFIX) :]
        return tag if tag in self.tags else None

    def member_reactions(self, tag: str) -> list[str]:
        if tag not in self.tags:
            raise CommunityError(f"Unknown member tag: {tag} (members: {', '.join(self.tags)})")
        return [rid for rid, owner in self.reaction_owner.items() if owner == tag]

    def member_exchange(self, tag: str, met: str) -> str:
        """Organism-community exchange id for a member and a metabolite ('lys__L' or 'lys__L_u')."""
        cid = met if met.endswith(f"_{COMMUNITY_COMPARTMENT}") else f"{met}_{COMMUNITY_COMPARTMENT}"
        if tag not in self.tags:
            raise CommunityError(f"Unknown member tag: {tag} (members: {', '.join(self.tags)})")
        if cid not in self.exchange_sp.index or not self.exchange_sp.at[cid, tag]:
            raise CommunityError(f"Member {tag} has no exchange for community metabolite {cid}")
        return str(self.exchange_sp.at[cid, tag])


def create_community(
    models: Sequence[Any],
    tags: Sequence[str],
    biomass_reaction: str | Sequence[str],
    *,
    compartment: str = EXTRACELLULAR,
    model_id: str = "community",
):
    """
    Combine member models into one community model.

    Every member reaction and metabolite id is prefixed with "{tag}_". Member
    exchange reactions are replaced by organism-community exchanges
    "{tag}_IEX_{met}_u" that move the member's extracellular metabolite into a
    shared compartment "u". Each shared metabolite gets one community exchange
    "EX_{met}_u"; its bounds are taken from the first member that exchanges it.
    Both are oriented with secretion positive, whatever the sign convention of
    the member's own exchange reaction.

    The objective is the sum of the members' biomass reactions, so plain FBA on
    the result is joint FBA.
    """
    from cobra import Metabolite, Model, Reaction

    tags = tuple(str(t) for t in tags)
    if len(models) != len(tags):
        raise CommunityError(f"Got {len(models)} models but {len(tags)} tags.")
    if not tags:
        raise CommunityError("A community needs at least one member.")
    if len(set(tags)) != len(tags):
        raise CommunityError(f"Member tags must be unique: {', '.join(tags)}")

    if isinstance(biomass_reaction, str):
        biomass_ids = [biomass_reaction] * len(tags)
    else:
        biomass_ids = [str(b) for b in biomass_reaction]
        if len(biomass_ids) != len(tags):
            raise CommunityError("Need one biomass reaction per member.")

    com = Model(model_id)
    reaction_owner: dict[str, str] = {}
    metabolite_owner: dict[str, str] = {}
    exchange_com: dict[str, str] = {}
    exchange_sp_rows: dict[str, dict[str, str]] = {}
    biomass: dict[str, str] = {}
    com_mets: dict[str, Any] = {}
    new_rxns: list[Any] = []

    for tag, model, bm_id in zip(tags, models, biomass_ids):
        if bm_id not in model.reactions:
            raise CommunityError(f"Biomass reaction {bm_id} not found in member {tag} ({model.id}).")

        mets: dict[str, Any] = {}
        for met in model.metabolites:
            m = Metabolite(
                f"{tag}_{met.id}",
                formula=met.formula,
                name=met.name,
                charge=met.charge,
                compartment=met.compartment,
            )
            mets[met.id] = m
            metabolite_owner[m.id] = tag

        exchanges = exchange_reactions(model, compartment)
        exchange_ids = {rxn.id for rxn in exchanges.values()}

        for rxn in model.reactions:
            if rxn.id in exchange_ids:
                continue
            r = Reaction(
                f"{tag}_{rxn.id}",
                name=rxn.name,
                subsystem=rxn.subsystem,
                lower_bound=rxn.lower_bound,
                upper_bound=rxn.upper_bound,
            )
            r.add_metabolites({mets[m.id]: coef for m, coef in rxn.metabolites.items()})
            new_rxns.append(r)
            reaction_owner[r.id] = tag

        for met_id, ex in exchanges.items():
            src = model.metabolites.get_by_id(met_id)
            lb, ub = secretion_bounds(ex)
            cid = community_met_id(met_id, compartment)
            if cid not in com_mets:
                com_mets[cid] = Metabolite(
                    cid,
                    formula=src.formula,
                    name=src.name,
                    charge=src.charge,
                    compartment=COMMUNITY_COMPARTMENT,
                )
                metabolite_owner[cid] = COMMUNITY_OWNER
                com_ex = Reaction(
                    f"EX_{cid}",
                    name=f"{src.name} community exchange",
                    lower_bound=lb,
                    upper_bound=ub,
                )
                com_ex.add_metabolites({com_mets[cid]: -1.0})
                new_rxns.append(com_ex)
                reaction_owner[com_ex.id] = COMMUNITY_OWNER
                exchange_com[cid] = com_ex.id

            iex = Reaction(
                f"{tag}_IEX_{cid}",
                name=f"{tag} {src.name} exchange with community",
                lower_bound=lb,
                upper_bound=ub,
            )
            iex.add_metabolites({mets[met_id]: -1.0, com_mets[cid]: 1.0})
            new_rxns.append(iex)
            reaction_owner[iex.id] = tag
            exchange_sp_rows.setdefault(cid, {})[tag] = iex.id

        biomass[tag] = f"{tag}_{bm_id}"
        logger.info("Member %s: %d reactions, %d exchanges", tag, len(model.reactions), len(exchanges))

    com.add_reactions(new_rxns)
    com.objective = {com.reactions.get_by_id(rid): 1.0 for rid in biomass.values()}

    exchange_sp = (
        pd.DataFrame.from_dict(exchange_sp_rows, orient="index")
        .reindex(index=list(exchange_com), columns=list(tags))
        .fillna("")
        .astype(str)
    )

    logger.info(
        "Community %s: %d members, %d reactions, %d metabolites, %d community metabolites",
        model_id,
        len(tags),
        len(com.reactions),
        len(com.metabolites),
        len(exchange_com),
    )
    return Community(
        model=com,
        tags=tags,
        biomass=biomass,
        exchange_com=exchange_com,
        exchange_sp=exchange_sp,
        reaction_owner=reaction_owner,
        metabolite_owner=metabolite_owner,
        compartment=compartment,
    )


def constrain_from_base(community: Community, lb_ex: pd.Series, *, community_ub: float = 1e5) -> None:
    """
    Copy the base model's exchange lower bounds onto the community.

    Community uptake bounds and every member's organism-community lower bound are
    set to the base exchange lower bound; community upper bounds are opened to
    community_ub. lb_ex is indexed by the base model's extracellular metabolite ids.
    """
    mapped = {community_met_id(str(mid), community.compartment): float(lb) for mid, lb in lb_ex.items()}
    missing = [cid for cid in community.exchange_com if cid not in mapped]
    if missing:
        raise CommunityError(
            f"{len(missing)} community metabolites have no base exchange bound: {', '.join(missing[:10])}"
        )

    model = community.model
    for cid, ex_id in community.exchange_com.items():
        lb = mapped[cid]
        model.reactions.get_by_id(ex_id).bounds = (lb, max(lb, float(community_ub)))
        for tag in community.tags:
            iex_id = community.exchange_sp.at[cid, tag]
            if not iex_id:
                continue
            rxn = model.reactions.get_by_id(iex_id)
            rxn.bounds = (lb, max(lb, rxn.upper_bound))
    logger.info("Community bounds set from base exchanges (%d metabolites, ub=%.6g)", len(mapped), community_ub)


def set_member_uptake(community: Community, tag: str, uptake: dict[str, float]) -> None:
    """Set a member's maximum uptake rates; {"lys__L": 1} sets Ec1_IEX_lys__L_u.lb = -1."""
    for met, rate in uptake.items():
        rid = community.member_exchange(tag, met)
        change_bounds(community.model, rid, -abs(float(rate)), "l")
        logger.info("Member %s uptake cap %s: %.6g", tag, met, abs(float(rate)))


def set_member_export(community: Community, ub: float = 1000.0) -> None:
    """Allow every member to secrete any exchanged metabolite up to ub."""
    ids = [rid for rid in community.exchange_sp.to_numpy().ravel() if rid]
    change_bounds(community.model, ids, float(ub), "u")
    logger.info("Member export bound set to %.6g on %d exchanges", ub, len(ids))


def uptake_bounds_table(community: Community) -> pd.DataFrame:
    """
    Uptake bounds for every metabolite the community can take up.

    Column "community" is the community uptake bound (+ve for uptake); one column
    per member holds that member's organism-community lower bound (-ve for uptake,
    NaN where the member has no exchange).
    """
    model = community.model
    rows: list[dict[str, Any]] = []
    for cid, ex_id in community.exchange_com.items():
        lb = float(model.reactions.get_by_id(ex_id).lower_bound)
        if lb >= 0:
            continue
        rec: dict[str, Any] = {"metabolite": cid, "community": -lb}
        for tag in community.tags:
            iex_id = community.exchange_sp.at[cid, tag]
            rec[tag] = float(model.reactions.get_by_id(iex_id).lower_bound) if iex_id else float("nan")
        rows.append(rec)
    return pd.DataFrame(rows, columns=["metabolite", "community", *community.tags])
