from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any, Iterator

import numpy as np
import pandas as pd

from auxocom.community import COMMUNITY_OWNER, Community
from auxocom.config import ConfigError

logger = logging.getLogger(__name__)

ALGORITHMS: tuple[str, ...] = ("guess", "bisection")

# Guess methods recorded in the iteration table.
GUESS_SIMPLE = 0  # mu * sum(X) / X0
GUESS_BISECTION = 1  # simple guess left the bracket
GUESS_BISECTION_NEAR_BOUND = 2  # simple guess within 1% of a bracket end
GUESS_STEP_AWAY = 3  # simple guess within 1% of the current growth rate


class SteadyComError(RuntimeError):
    """Raised when a SteadyCom analysis cannot be set up or computed."""


@dataclass(frozen=True)
class SteadyComOptions:
    """
    Options for the community growth-rate search.

    gr_guess       first growth rate tried (1/h).
    gr_tol         stop when the growth-rate bracket is narrower than this.
    total_biomass  X0, the community biomass the growth rate must sustain (gdw).
    algorithm      "guess": simple guessing + bisection; "bisection": doubling then bisection.
    max_iter       iteration cap for the search.
    feas_tol       sum(X) >= X0 - feas_tol counts as feasible.
    biomass_ub     per-member biomass cap; binds only when biomass would be unbounded.
    big_m          flux bound replacing scaled bounds on member reactions.
    """

    gr_guess: float = 0.5
    gr_tol: float = 1e-6
    total_biomass: float = 1.0
    algorithm: str = "guess"
    max_iter: int = 1000
    feas_tol: float = 1e-8
    biomass_ub: float = 100.0
    big_m: float = 1e5

    def __post_init__(self) -> None:
        if self.gr_guess <= 0:
            raise ConfigError("steadycom.gr_guess must be > 0.")
        if self.gr_tol <= 0:
            raise ConfigError("steadycom.gr_tol must be > 0.")
        if self.total_biomass <= 0:
            raise ConfigError("steadycom.total_biomass must be > 0.")
        if self.algorithm not in ALGORITHMS:
            raise ConfigError(f"steadycom.algorithm must be one of {ALGORITHMS}, got: {self.algorithm!r}")
        if self.max_iter < 1:
            raise ConfigError("steadycom.max_iter must be >= 1.")
        if self.biomass_ub < self.total_biomass:
            raise ConfigError("steadycom.biomass_ub must be >= total_biomass.")

    @classmethod
    def from_config(cls, section: dict[str, Any] | None) -> "SteadyComOptions":
        section = section or {}
        unknown = set(section) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigError(f"Unknown steadycom options: {sorted(unknown)}")
        kwargs: dict[str, Any] = {}
        for key, value in section.items():
            try:
                if key == "algorithm":
                    kwargs[key] = str(value)
                elif key == "max_iter":
                    kwargs[key] = int(value)
                else:
                    kwargs[key] = float(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid steadycom.{key}: {value!r}") from e
        return cls(**kwargs)


@dataclass(frozen=True)
class SteadyComResult:
    growth_rate: float
    status: str
    biomass: dict[str, float]
    biomass_production: dict[str, float]
    fluxes: pd.Series
    uptake: pd.Series
    export: pd.Series
    iterations: pd.DataFrame

    @property
    def abundance(self) -> dict[str, float]:
        total = sum(self.biomass.values())
        if not total or math.isnan(total):
            return {tag: float("nan") for tag in self.biomass}
        return {tag: x / total for tag, x in self.biomass.items()}


def _set_constraint_bounds(constraint, lb: float | None, ub: float | None) -> None:
    # Clear ub first so the new lb never trips lb <= ub on the old value.
    constraint.ub = None
    constraint.lb = lb
    constraint.ub = ub


class SteadyComProblem:
    """
    The SteadyCom LP on top of a community model.

    Member fluxes V^k_j are the community model's reaction fluxes and X^k is one
    extra variable per member:

        lb^k_j X^k <= V^k_j <= ub^k_j X^k     (member reactions)
        V^k_biomass = mu X^k
        sum_k X^k within [total_lb, total_ub]

    Community exchanges keep their absolute bounds. Build it through
    steadycom_problem() so every change is rolled back afterwards.
    """

    def __init__(self, community: Community, model, options: SteadyComOptions) -> None:
        self.community = community
        self.model = model
        self.options = options
        self.growth_rate = 0.0
        self.biomass_vars: dict[str, Any] = {}
        self._growth_constraints: dict[str, Any] = {}
        self._build()

    def _build(self) -> None:
        from optlang.symbolics import Zero, add

        model = self.model
        prob = model.problem
        big = float(self.options.big_m)

        self.biomass_vars = {
            tag: prob.Variable(Community.biomass_variable(tag), lb=0.0, ub=self.options.biomass_ub)
            for tag in self.community.tags
        }
        model.add_cons_vars(list(self.biomass_vars.values()))

        scaled: list[Any] = []
        for rid, owner in self.community.reaction_owner.items():
            if owner == COMMUNITY_OWNER:
                continue
            rxn = model.reactions.get_by_id(rid)
            x = self.biomass_vars[owner]
            lb, ub = float(rxn.lower_bound), float(rxn.upper_bound)
            rxn.bounds = (-big if lb < 0 else 0.0, big if ub > 0 else 0.0)
            if lb != 0 and math.isfinite(lb):
                scaled.append(prob.Constraint(rxn.flux_expression - lb * x, lb=0, name=f"{rid}_lb_X"))
            if ub != 0 and math.isfinite(ub):
                scaled.append(prob.Constraint(rxn.flux_expression - ub * x, ub=0, name=f"{rid}_ub_X"))

        for tag, bm_id in self.community.biomass.items():
            bm = model.reactions.get_by_id(bm_id)
            x = self.biomass_vars[tag]
            self._growth_constraints[tag] = prob.Constraint(
                bm.flux_expression - 1.0 * x, lb=0, ub=0, name=f"growth_{tag}"
            )

        self.total_biomass = prob.Constraint(
            add([1.0 * x for x in self.biomass_vars.values()]), lb=0, name="total_biomass"
        )
        model.add_cons_vars(scaled + list(self._growth_constraints.values()) + [self.total_biomass])
        # Targets are optimized by editing coefficients of an empty objective.
        model.objective = prob.Objective(Zero, direction="max", sloppy=True)
        self.set_growth(0.0)
        logger.debug(
            "SteadyCom problem: %d members, %d scaled bound constraints",
            len(self.biomass_vars),
            len(scaled),
        )

    def set_growth(self, mu: float) -> None:
        for tag, cons in self._growth_constraints.items():
            cons.set_linear_coefficients({self.biomass_vars[tag]: -float(mu)})
        self.growth_rate = float(mu)

    def set_total_biomass(self, lb: float | None, ub: float | None) -> None:
        _set_constraint_bounds(self.total_biomass, lb, ub)

    def target_coefficients(self, target: str) -> dict[Any, float]:
        """Linear coefficients of "X_{tag}" (a biomass variable) or of a reaction's net flux."""
        tag = self.community.tag_of_biomass_variable(target)
        if tag is not None:
            return {self.biomass_vars[tag]: 1.0}
        if target in self.model.reactions:
            rxn = self.model.reactions.get_by_id(target)
            return {rxn.forward_variable: 1.0, rxn.reverse_variable: -1.0}
        raise SteadyComError(
            f"Unknown target: {target} (use a reaction id or one of "
            f"{', '.join(Community.biomass_variable(t) for t in self.community.tags)})"
        )

    def fixing_constraint(self, target: str, name: str):
        """A free constraint over the target; set its bounds to pin the target's value."""
        from optlang.symbolics import add

        coefficients = self.target_coefficients(target)
        constraint = self.model.problem.Constraint(
            add([c * v for v, c in coefficients.items()]), lb=None, ub=None, name=name
        )
        self.model.add_cons_vars([constraint])
        return constraint

    def optimize(self, coefficients: dict[Any, float], direction: str = "max", *, reset: bool = True) -> float:
        """
        Optimize a linear objective; NaN when the LP has no optimal solution.

        With reset=False the objective is left in place so the solution can still
        be read from the solver afterwards.
        """
        objective = self.model.solver.objective
        objective.set_linear_coefficients(coefficients)
        objective.direction = direction
        value = self.model.slim_optimize(error_value=float("nan"))
        if reset:
            objective.set_linear_coefficients({v: 0.0 for v in coefficients})
        return value

    def max_total_biomass(self, *, reset: bool = True) -> float:
        return self.optimize({x: 1.0 for x in self.biomass_vars.values()}, "max", reset=reset)

    def biomass_values(self) -> dict[str, float]:
        return {tag: float(x.primal) for tag, x in self.biomass_vars.items()}


@contextmanager
def steadycom_problem(community: Community, options: SteadyComOptions | None = None) -> Iterator[SteadyComProblem]:
    """Build the SteadyCom LP inside a cobra context; the community model is restored on exit."""
    options = options or SteadyComOptions()
    with community.model as model:
        yield SteadyComProblem(community, model, options)


def _is_feasible(biomass: float, options: SteadyComOptions) -> bool:
    return bool(np.isfinite(biomass)) and biomass >= options.total_biomass - options.feas_tol


def _next_growth(
    mu: float,
    biomass: float,
    lb: float,
    ub: float | None,
    options: SteadyComOptions,
) -> tuple[float, int]:
    """Next growth rate to try, and the guess method used to get it."""
    if options.algorithm == "bisection":
        if ub is None:
            return 2.0 * mu, GUESS_SIMPLE
        return (lb + ub) / 2.0, GUESS_BISECTION

    x0 = options.total_biomass
    guess = mu * biomass / x0 if np.isfinite(biomass) and biomass > 0 else float("nan")
    method = GUESS_SIMPLE
    if np.isfinite(guess) and abs(guess - mu) <= 0.01 * mu:
        guess = mu * (1.01 if _is_feasible(biomass, options) else 0.99)
        method = GUESS_STEP_AWAY

    if ub is None:
        if not np.isfinite(guess) or guess <= mu:
            return 2.0 * mu, GUESS_SIMPLE
        return guess, method

    width = ub - lb
    if not np.isfinite(guess) or guess <= lb or guess >= ub:
        return (lb + ub) / 2.0, GUESS_BISECTION
    if guess - lb < 0.01 * width or ub - guess < 0.01 * width:
        return (lb + ub) / 2.0, GUESS_BISECTION_NEAR_BOUND
    return guess, method


def _iteration_record(iteration: int, mu: float, biomass: float, method: float) -> dict[str, Any]:
    return {
        "iteration": iteration,
        "growth_rate": mu,
        "max_biomass": biomass,
        "biomass_production": mu * biomass if np.isfinite(biomass) else float("nan"),
        "method": method,
    }


def find_max_growth(problem: SteadyComProblem) -> tuple[float, list[dict[str, Any]]]:
    """
    Search the maximum growth rate mu at which max sum(X) still reaches X0.

    Returns (growth_rate, iteration records). growth_rate is NaN when the
    community cannot sustain X0 even at zero growth.
    """
    options = problem.options
    problem.set_total_biomass(0.0, None)

    problem.set_growth(0.0)
    b0 = problem.max_total_biomass()
    records = [_iteration_record(0, 0.0, b0, float("nan"))]
    if not _is_feasible(b0, options):
        logger.warning("Community cannot reach total biomass %.6g at zero growth (max=%.6g)", options.total_biomass, b0)
        return float("nan"), records

    lb, ub = 0.0, None
    mu, method = float(options.gr_guess), GUESS_SIMPLE
    for it in range(1, options.max_iter + 1):
        problem.set_growth(mu)
        biomass = problem.max_total_biomass()
        if _is_feasible(biomass, options):
            lb = max(lb, mu)
        else:
            ub = mu if ub is None else min(ub, mu)
        records.append(_iteration_record(it, mu, biomass, method))
        logger.debug("iter %d: mu=%.8g sum(X)=%.8g bracket=[%.8g, %s]", it, mu, biomass, lb, ub)

        if ub is not None and ub - lb <= options.gr_tol:
            break
        mu, method = _next_growth(mu, biomass, lb, ub, options)
    else:
        logger.warning("Growth-rate search stopped after max_iter=%d (bracket [%.8g, %s])", options.max_iter, lb, ub)

    return lb, records


def solve_steadycom(community: Community, options: SteadyComOptions | None = None) -> SteadyComResult:
    """
    Find the maximum community growth rate and a steady-state community at that rate.

    At the returned growth rate the member biomasses sum to X0 (total_biomass),
    so with X0 = 1 they are the members' relative abundances.
    """
    from cobra.core.solution import get_solution

    options = options or SteadyComOptions()
    with steadycom_problem(community, options) as problem:
        growth, records = find_max_growth(problem)
        iterations = pd.DataFrame(records)

        if not np.isfinite(growth):
            nan = {tag: float("nan") for tag in community.tags}
            empty = pd.Series(dtype=float)
            return SteadyComResult(
                growth_rate=0.0,
                status="infeasible",
                biomass=nan,
                biomass_production=dict(nan),
                fluxes=empty,
                uptake=empty,
                export=empty,
                iterations=iterations,
            )

        problem.set_growth(growth)
        x0 = options.total_biomass
        problem.set_total_biomass(x0, x0)
        value = problem.max_total_biomass(reset=False)
        status = str(problem.model.solver.status)
        if not np.isfinite(value):
            raise SteadyComError(f"Final SteadyCom solve at mu={growth:.8g} failed: status={status}")

        biomass = problem.biomass_values()
        fluxes = get_solution(problem.model).fluxes.copy()

    ex = pd.Series({cid: float(fluxes[rid]) for cid, rid in community.exchange_com.items()}, dtype=float)
    result = SteadyComResult(
        growth_rate=float(growth),
        status=status,
        biomass=biomass,
        biomass_production={tag: x * growth for tag, x in biomass.items()},
        fluxes=fluxes,
        uptake=(-ex).clip(lower=0.0).rename("uptake"),
        export=ex.clip(lower=0.0).rename("export"),
        iterations=iterations,
    )
    logger.info("SteadyCom max growth rate: %.6f /h (%d iterations)", growth, len(records) - 1)
    for tag, x in biomass.items():
        logger.info("X_%s: %.6f", tag, x)
    return result


def require_growth(community: Community, options: SteadyComOptions, growth_rate: float | None) -> float:
    """Use the given max growth rate, or solve for it; it must be positive."""
    if growth_rate is None:
        growth_rate = solve_steadycom(community, options).growth_rate
    if not growth_rate or growth_rate <= 0 or not np.isfinite(growth_rate):
        raise SteadyComError(f"Community has no positive maximum growth rate (got {growth_rate}).")
    return float(growth_rate)
