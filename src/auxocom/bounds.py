from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

logger = logging.getLogger(__name__)

BoundChange = tuple[str, float, float, float, float]
# (rxn_id, old_lb, old_ub, new_lb, new_ub)


class BoundsConfigError(ValueError):
    """Raised when a bounds config is invalid or inconsistent with the model."""


@dataclass
class BoundsApplyResult:
    """Records what we changed on the model for traceability."""

    changed_bounds: list[BoundChange] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _get_rxn(model, rxn_id: str):
    try:
        return model.reactions.get_by_id(rxn_id)
    except KeyError as e:
        from auxocom.audit import suggest_reaction_replacements

        hint = suggest_reaction_replacements(model, rxn_id, top_k=3)
        msg = f"Reaction not found in model: {rxn_id}"
        if hint:
            msg += f" (did you mean: {', '.join(hint)}?)"
        raise BoundsConfigError(msg) from e


def _set_bounds_with_log(
    model, rxn_id: str, *, lb: float | None, ub: float | None, changes: list[BoundChange]
) -> None:
    rxn = _get_rxn(model, rxn_id)
    old_lb, old_ub = rxn.lower_bound, rxn.upper_bound
    new_lb = old_lb if lb is None else float(lb)
    new_ub = old_ub if ub is None else float(ub)
    if new_lb > new_ub:
        raise BoundsConfigError(f"Inconsistent bounds for {rxn_id}: lb {new_lb:.6g} > ub {new_ub:.6g}")
    if new_lb != old_lb or new_ub != old_ub:
        rxn.bounds = (new_lb, new_ub)
        changes.append((rxn_id, old_lb, old_ub, new_lb, new_ub))
        logger.debug("Bound update %s: lb %.6g -> %.6g, ub %.6g -> %.6g", rxn_id, old_lb, new_lb, old_ub, new_ub)


def change_bounds(
    model,
    rxn_ids: str | Iterable[str],
    value: float,
    side: Literal["l", "u", "b"] = "b",
) -> list[BoundChange]:
    """
    Change the lower ("l"), upper ("u") or both ("b") bounds of one or more reactions.

    Returns the list of (rxn_id, old_lb, old_ub, new_lb, new_ub) actually changed.
    """
    if isinstance(rxn_ids, str):
        rxn_ids = [rxn_ids]
    if side not in ("l", "u", "b"):
        raise BoundsConfigError(f"side must be one of 'l', 'u', 'b', got: {side!r}")

    changes: list[BoundChange] = []
    for rid in rxn_ids:
        lb = value if side in ("l", "b") else None
        ub = value if side in ("u", "b") else None
        _set_bounds_with_log(model, str(rid), lb=lb, ub=ub, changes=changes)
    return changes


def knock_out(model, rxn_ids: Iterable[str]) -> list[BoundChange]:
    """Block reactions by fixing both bounds to zero."""
    changes = change_bounds(model, list(rxn_ids), 0.0, "b")
    for rid, *_ in changes:
        logger.debug("Knocked out %s", rid)
    return changes


def apply_base_bounds(
    model,
    bounds_cfg: dict[str, Any],
    *,
    optional: bool = False,
) -> BoundsApplyResult:
    """
    Apply a {rxn_id: {lb: ..., ub: ...}} mapping to a model.

    Example
    -------
    base_bounds:
      EX_glc__D_e: {lb: -8}
      EX_o2_e: {lb: -18.5}

    Missing reactions raise BoundsConfigError unless optional=True, in which case
    they are logged and skipped.
    """
    if not isinstance(bounds_cfg, dict):
        raise BoundsConfigError("base_bounds must be a mapping of reaction id -> {lb, ub}.")

    result = BoundsApplyResult()
    for rxn_id, b in bounds_cfg.items():
        if not isinstance(b, dict):
            raise BoundsConfigError(f"Bounds for {rxn_id} must be a mapping with keys lb/ub.")
        unknown = set(b) - {"lb", "ub"}
        if unknown:
            raise BoundsConfigError(f"Unknown keys for {rxn_id}: {sorted(unknown)} (allowed: lb, ub)")
        if optional and str(rxn_id) not in model.reactions:
            logger.warning("Reaction not found in model (skipped): %s", rxn_id)
            result.skipped.append(str(rxn_id))
            continue
        _set_bounds_with_log(
            model,
            str(rxn_id),
            lb=b.get("lb", None),
            ub=b.get("ub", None),
            changes=result.changed_bounds,
        )

    for rid, old_lb, old_ub, new_lb, new_ub in result.changed_bounds:
        logger.info("Bound update %s: lb %.6g -> %.6g, ub %.6g -> %.6g", rid, old_lb, new_lb, old_ub, new_ub)
    return result
