"""Planning and solver parameters for the DNEP models."""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional, Tuple

HOURS_IN_A_YEAR = 8760

# Defaults used when converting spreadsheet data to per unit
DEFAULT_BASE_POWER = 1.0      # MVA
DEFAULT_BASE_VOLTAGE = 34.5   # kV
DEFAULT_MONEY_BASIS = 1.0     # k$
DEFAULT_MAX_PV_CAPA = 0.4     # MW per user


def annuity_factor(rate: float, lifetime: int) -> float:
    """Capital recovery factor r(1+r)^n / ((1+r)^n - 1)."""
    if lifetime <= 0:
        raise ValueError(f"Lifetime must be positive, got {lifetime}")
    if rate == 0:
        return 1.0 / lifetime
    growth = (1 + rate) ** lifetime
    return rate * growth / (growth - 1)


@dataclass
class PlanningParameters:
    """
    Economic parameters of the expansion planning objective.

    Attributes
    ----------
    k_l, k_s : float
        Annuity factors applied to line and substation investments
    hours_in_a_year : int
        Hours used to annualise operating costs
    interest_rate_losses, interest_rate_substation : float
        Rates applied to the loss cost and the substation operating cost
    line_loss : float
        Loss load factor
    cost_unit_loss : float
        Cost of one MWh of losses (money basis)
    substation_utilization : float
        Utilisation factor of the substation operating cost
    substation_fixed_cost : float
        Default fixed cost of expanding a substation (money basis)
    substation_op_cost : float
        Default quadratic operating cost coefficient per MVA^2 h
    """
    k_l: float = 0.1
    k_s: float = 0.1
    hours_in_a_year: int = HOURS_IN_A_YEAR
    interest_rate_losses: float = 0.1
    interest_rate_substation: float = 0.1
    line_loss: float = 1.0
    cost_unit_loss: float = 0.1
    substation_utilization: float = 0.5
    substation_fixed_cost: float = 100.0
    substation_op_cost: float = 0.001

    @classmethod
    def from_lifetimes(cls, rate: float, line_lifetime: int = 30,
                       substation_lifetime: int = 40, **kwargs) -> "PlanningParameters":
        """Build parameters whose annuity factors follow from asset lifetimes."""
        return cls(k_l=annuity_factor(rate, line_lifetime),
                   k_s=annuity_factor(rate, substation_lifetime),
                   **kwargs)


@dataclass
class SolverOptions:
    """Solver selection and options passed through Pyomo's SolverFactory."""
    solver: str = 'gurobi'
    time_limit: Optional[float] = 100
    mip_gap: Optional[float] = None
    presolve: Optional[int] = 0
    nonconvex: Optional[int] = 2
    tee: bool = False
    options: Dict[str, Any] = field(default_factory=dict)

    def to_solver_options(self, formulation: str = 'misocp') -> Dict[str, Any]:
        """Translate to the option names of the selected solver."""
        opts: Dict[str, Any] = {}
        if self.solver == 'gurobi':
            if self.time_limit is not None:
                opts['TimeLimit'] = self.time_limit
            if self.mip_gap is not None:
                opts['MIPGap'] = self.mip_gap
            if self.presolve is not None:
                opts['Presolve'] = self.presolve
            # Bilinear alpha * P terms in the MINLP
            if formulation == 'minlp' and self.nonconvex is not None:
                opts['NonConvex'] = self.nonconvex
        opts.update(self.options)
        return opts


def _from_section(cls, section: Dict[str, Any], name: str):
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' config section must be a JSON object")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{name}' config section: {unknown}")
    return cls(**section)


def load_config(path: str) -> Tuple[PlanningParameters, SolverOptions]:
    """
    Read planning and solver parameters from a JSON file.

    The file may contain a ``planning`` and a ``solver`` object; missing
    sections keep their defaults.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        raw = json.load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    unknown = sorted(set(raw) - {'planning', 'solver'})
    if unknown:
        raise ValueError(f"Unknown config sections: {unknown}")

    params = _from_section(PlanningParameters, raw.get('planning', {}), 'planning')
    solver = _from_section(SolverOptions, raw.get('solver', {}), 'solver')
    return params, solver


def config_to_dict(params: PlanningParameters, solver: SolverOptions) -> Dict[str, Any]:
    return {'planning': asdict(params), 'solver': asdict(solver)}
