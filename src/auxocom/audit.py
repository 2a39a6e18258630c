from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRow:
    requested_id: str
    status: str  # "present" | "missing"
    suggestion_1: str
    suggestion_2: str
    suggestion_3: str


def collect_configured_reaction_ids(cfg: dict[str, Any]) -> list[str]:
    """
    Collect reaction IDs referenced by a workflow config.

    Sources
    -------
    - biomass_reaction
    - base_bounds: mapping keys
    - members.<tag>.knockouts: mapping values (lists of reaction ids)
    """
    ids: list[str] = []

    biomass = cfg.get("biomass_reaction", None)
    if biomass is not None and str(biomass).strip():
        ids.append(str(biomass))

    base_bounds = cfg.get("base_bounds", {})
    if isinstance(base_bounds, dict):
        ids.extend([str(k) for k in base_bounds.keys() if k is not None and str(k).strip()])

    members = cfg.get("members", {})
    if isinstance(members, dict):
        for member in members.values():
            if not isinstance(member, dict):
                continue
            knockouts = member.get("knockouts", {})
            if not isinstance(knockouts, dict):
                continue
            for rxns in knockouts.values():
                if isinstance(rxns, str):
                    rxns = [rxns]
                if isinstance(rxns, list):
                    ids.extend([str(x) for x in rxns if x is not None and str(x).strip()])

    # de-dup while preserving order
    return list(dict.fromkeys(ids))


def _normalize_text(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "").lower()).strip()


_SYNONYMS: dict[str, list[str]] = {
    "arg": ["arginine"],
    "lys": ["lysine"],
    "met": ["methionine"],
    "phe": ["phenylalanine"],
    "glc": ["glucose"],
    "cbl1": ["cobalamin", "vitamin b12"],
    "sel": ["selenate"],
    "slnt": ["selenite"],
}


def _keywords_from_requested_id(requested_id: str) -> list[str]:
    """
    Heuristic keyword extraction from a BiGG-style id like 'EX_arg__L_e' or 'ARGt3pp'.
    """
    rid = _normalize_text(requested_id)
    rid = rid.replace("ex_", "")
    rid = rid.replace("(e)", "_e")

    tokens = re.split(r"[^a-z0-9]+", rid)
    tokens = [t for t in tokens if t and t not in {"e", "c", "p", "l", "d", "u"}]

    kws: list[str] = []
    for t in tokens:
        kws.append(t)
        kws.extend(_SYNONYMS.get(t, []))
        # transporter ids carry the metabolite as a prefix: ARGt3pp, PHEt2rpp
        m = re.match(r"^([a-z]{3,})t\d", t)
        if m:
            kws.append(m.group(1))
            kws.extend(_SYNONYMS.get(m.group(1), []))
    return list(dict.fromkeys(kws))


def _reaction_search_text(rxn) -> str:
    parts: list[str] = []
    parts.append(str(getattr(rxn, "id", "")))
    parts.append(str(getattr(rxn, "name", "")))
    for met in getattr(rxn, "metabolites", {}).keys():
        parts.append(str(getattr(met, "id", "")))
        parts.append(str(getattr(met, "name", "")))
    return _normalize_text(" ".join(parts))


def suggest_reaction_replacements(model, requested_id: str, top_k: int = 3) -> list[str]:
    """
    Suggest alternative reaction IDs by keyword matching against:
    - reaction.id / reaction.name
    - metabolite id/name participating in the reaction

    Returns up to top_k reaction IDs, ranked by simple match score.
    """
    keywords = [_normalize_text(k) for k in _keywords_from_requested_id(requested_id)]
    keywords = [k for k in keywords if len(k) >= 2]
    if not keywords:
        return []

    scored: list[tuple[int, str]] = []
    for rxn in model.reactions:
        text = _reaction_search_text(rxn)
        score = sum(1 for kw in keywords if kw in text)
        if score > 0:
            scored.append((score, str(rxn.id)))

    scored.sort(key=lambda x: (-x[0], x[1]))
    out: list[str] = []
    for _, rid in scored:
        if rid not in out:
            out.append(rid)
        if len(out) >= top_k:
            break
    return out


def audit_reaction_ids(model, requested: Iterable[str]) -> list[AuditRow]:
    present_ids = set(str(r.id) for r in model.reactions)

    rows: list[AuditRow] = []
    for rid in dict.fromkeys(str(r) for r in requested):
        status = "present" if rid in present_ids else "missing"
        suggestions = suggest_reaction_replacements(model, rid, top_k=3) if status == "missing" else []
        suggestions = suggestions + [""] * (3 - len(suggestions))
        rows.append(
            AuditRow(
                requested_id=rid,
                status=status,
                suggestion_1=suggestions[0],
                suggestion_2=suggestions[1],
                suggestion_3=suggestions[2],
            )
        )
    n_missing = sum(1 for r in rows if r.status == "missing")
    if n_missing:
        logger.warning("Audit: %d of %d reaction ids missing from model %s", n_missing, len(rows), model.id)
    return rows


def write_audit_csv(rows: Iterable[AuditRow], out_path: str | Path) -> Path:
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(
            f,
            fieldnames=["requested_id", "status", "suggestion_1", "suggestion_2", "suggestion_3"],
        )
        w.writeheader()
        for r in rows:
            w.writerow(
                {
                    "requested_id": r.requested_id,
                    "status": r.status,
                    "suggestion_1": r.suggestion_1,
                    "suggestion_2": r.suggestion_2,
                    "suggestion_3": r.suggestion_3,
                }
            )
    return p
