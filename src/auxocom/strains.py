from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from auxocom.bounds import knock_out
from auxocom.config import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberSpec:
    """
    One community member derived from the base model.

    knockouts maps a gene label (for logging) to the reactions it is responsible
    for; uptake maps a community metabolite (without compartment suffix, e.g.
    "lys__L") to the member's maximum uptake rate. 0 forbids uptake.
    """

    tag: str
    knockouts: dict[str, tuple[str, ...]] = field(default_factory=dict)
    uptake: dict[str, float] = field(default_factory=dict)
    description: str = ""

    @property
    def knocked_out_reactions(self) -> list[str]:
        out: list[str] = []
        for rxns in self.knockouts.values():
            out.extend(rxns)
        return list(dict.fromkeys(out))


def parse_members(members_cfg: dict[str, Any]) -> list[MemberSpec]:
    """
    Parse the `members` config section.

    Expected schema
    ---------------
    members:
      Ec1:
        description: "Lys/Met auxotroph, no Phe export"
        knockouts:
          lysA: [DAPDC]
          yddG: [PHEt2rpp, PHEtipp]
        uptake: {lys__L: 1, met__L: 1, arg__L: 0, phe__L: 0}
    """
    if not isinstance(members_cfg, dict) or not members_cfg:
        raise ConfigError("'members' must be a non-empty mapping of tag -> member settings.")

    specs: list[MemberSpec] = []
    for tag, item in members_cfg.items():
        tag = str(tag).strip()
        if not tag:
            raise ConfigError("Member tags must be non-empty.")
        item = item or {}
        if not isinstance(item, dict):
            raise ConfigError(f"Member '{tag}' must be a mapping.")

        raw_ko = item.get("knockouts", {}) or {}
        if not isinstance(raw_ko, dict):
            raise ConfigError(f"Member '{tag}': knockouts must map gene -> list of reaction ids.")
        knockouts: dict[str, tuple[str, ...]] = {}
        for gene, rxns in raw_ko.items():
            if isinstance(rxns, str):
                rxns = [rxns]
            if not isinstance(rxns, list) or not rxns:
                raise ConfigError(f"Member '{tag}': knockout '{gene}' needs a non-empty reaction list.")
            knockouts[str(gene)] = tuple(str(r) for r in rxns)

        raw_uptake = item.get("uptake", {}) or {}
        if not isinstance(raw_uptake, dict):
            raise ConfigError(f"Member '{tag}': uptake must map metabolite -> max uptake rate.")
        uptake: dict[str, float] = {}
        for met, rate in raw_uptake.items():
            try:
                rate_f = float(rate)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Member '{tag}': uptake for {met} is not numeric: {rate!r}") from e
            if rate_f < 0:
                raise ConfigError(f"Member '{tag}': uptake for {met} must be >= 0, got {rate_f}")
            uptake[str(met)] = rate_f

        specs.append(
            MemberSpec(
                tag=tag,
                knockouts=knockouts,
                uptake=uptake,
                description=str(item.get("description", "")),
            )
        )
    return specs


def build_member_models(base_model, members: list[MemberSpec]) -> dict[str, Any]:
    """
    Copy the base model once per member and block the member's knockout reactions.

    Returns {tag: cobra.Model}, in member order.
    """
    out: dict[str, Any] = {}
    for spec in members:
        model = base_model.copy()
        model.id = f"{base_model.id}_{spec.tag}" if base_model.id else spec.tag
        changes = knock_out(model, spec.knocked_out_reactions)
        logger.info(
            "Member %s: knocked out %s (%d bound changes)%s",
            spec.tag,
            ", ".join(f"{g}={'/'.join(r)}" for g, r in spec.knockouts.items()) or "nothing",
            len(changes),
            f" - {spec.description}" if spec.description else "",
        )
        out[spec.tag] = model
    return out
