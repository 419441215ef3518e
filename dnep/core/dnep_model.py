"""
Distribution Network Expansion Planning Model
=============================================

Shared part of the DNEP formulations. A single investment plan (lines built,
conductor of each line, substations expanded) is chosen for all time steps,
while operating variables (substation injections, PV output, flows,
voltages) are indexed by step.

Mathematical Formulation
------------------------
    min  k_l Σ_{k,l} c_kl α_kl + k_s Σ_s F_s β_s
         + H (1 + τ_loss) φ c_loss S_base · mean_t( Σ_s P_st + Σ_u P^pv_ut - Σ_u P^d_ut )
         + H (1 + τ_sub) ρ S_base² · mean_t( Σ_s C_s (P_st² + Q_st²) )

    s.t. x_l = Σ_k α_kl                                 ∀l        (One conductor per built line)
         S_s = S_s^init + β_s S_s^max                   ∀s        (Substation sizing)
         P_st² + Q_st² ≤ S_s²                           ∀s, ∀t    (Substation capacity, SOC)
         Σ_l x_l = |N| - |S|                                      (Radial network)
         P^pv_ut ≤ P̄^pv_u π_ut,  |Q^pv_ut| ≤ tanφ P^pv_ut  ∀u, ∀t    (PV capability)
         [power flow: see DNEPMISOCP and DNEPMINLP]

The power-flow constraints are added by the subclasses through
``_add_power_flow``. Both subclasses define ``P_conductor``, ``Q_conductor``
and ``I_squared`` indexed by (conductor, line, step) so that the results
extraction is shared.
"""
from __future__ import annotations

import logging
import math
import time
from typing import Dict, List, Optional, Sequence

import numpy as np
from pyomo.environ import (
    Binary,
    ConcreteModel,
    Constraint,
    Expression,
    NonNegativeReals,
    Objective,
    Param,
    Reals,
    Set,
    Var,
    minimize,
    value,
)
from pyomo.opt import SolverFactory, TerminationCondition

from .config import PlanningParameters, SolverOptions
from .network import Network

logger = logging.getLogger(__name__)

SUCCESS_CONDITIONS = {
    TerminationCondition.optimal,
    TerminationCondition.globallyOptimal,
    TerminationCondition.locallyOptimal,
    TerminationCondition.feasible,
}


def _val(component) -> float:
    v = value(component, exception=False)
    return 0.0 if v is None else float(v)


class DNEP:
    """Distribution network expansion planning model (shared part)."""

    formulation = 'base'

    def __init__(self,
                 network: Network,
                 params: Optional[PlanningParameters] = None,
                 steps: Optional[Sequence[int]] = None):
        """
        Initialize the planning model.

        Parameters
        ----------
        network : Network
            Network with load profiles attached to every user
        params : PlanningParameters, optional
            Economic parameters of the objective
        steps : sequence of int, optional
            Subset of profile steps to model, all steps when omitted
        """
        self.network = network
        self.params = params or PlanningParameters()
        self.steps = steps
        self.model = None
        self.results = None
        self.solve_time = None
        self.termination = None

    def _time_steps(self) -> List[int]:
        horizon = self.network.get_nb_time_steps()
        if horizon == 0:
            raise ValueError("Attach load profiles to the network before building the model")
        missing = [u.id for u in self.network.load_buses if u.load_profile is None]
        if missing:
            raise ValueError(f"Users without load profile: {missing}")
        if self.steps is None:
            return list(range(horizon))
        steps = sorted({int(t) for t in self.steps})
        bad = [t for t in steps if not 0 <= t < horizon]
        if bad or not steps:
            raise ValueError(f"Invalid time steps {bad or list(self.steps)} for a horizon of {horizon}")
        return steps

    def build_model(self) -> None:
        """Build the sets, parameters, investment variables and objective."""
        net = self.network
        net.validate()
        p = self.params
        steps = self._time_steps()

        self.model = m = ConcreteModel(name=f"DNEP-{self.formulation.upper()}")

        conductor_ids = list(range(1, net.get_nb_conductors() + 1))
        m.N = Set(initialize=net.get_bus_ids(), doc="Buses")
        m.S = Set(initialize=net.get_substation_ids(), doc="Substation buses")
        m.U = Set(initialize=net.get_user_ids(), doc="User buses")
        m.PV = Set(initialize=net.get_pv_user_ids(), doc="Users hosting PV")
        m.L = Set(initialize=[line.id for line in net.lines], doc="Candidate lines")
        m.K = Set(initialize=conductor_ids, doc="Conductor types")
        m.T = Set(initialize=steps, doc="Time steps")

        # Line and conductor parameters
        r, x, g, b, line_cost = {}, {}, {}, {}, {}
        for line in net.lines:
            for k, cond in zip(conductor_ids, net.conductors):
                r_kl = cond.r * line.length
                x_kl = cond.x * line.length
                z2 = r_kl ** 2 + x_kl ** 2
                if z2 == 0:
                    raise ValueError(f"Conductor {cond.name} has zero impedance on line {line.id}")
                r[k, line.id] = r_kl
                x[k, line.id] = x_kl
                g[k, line.id] = r_kl / z2
                b[k, line.id] = -x_kl / z2
                line_cost[k, line.id] = cond.cost * line.length

        m.r = Param(m.K, m.L, initialize=r)
        m.x_react = Param(m.K, m.L, initialize=x)
        m.conductance = Param(m.K, m.L, initialize=g)
        m.susceptance = Param(m.K, m.L, initialize=b)
        m.line_cost = Param(m.K, m.L, initialize=line_cost)
        m.i_max = Param(m.K, initialize={k: c.max_i for k, c in zip(conductor_ids, net.conductors)})
        m.line_from = Param(m.L, initialize={line.id: line.ends[0] for line in net.lines})
        m.line_to = Param(m.L, initialize={line.id: line.ends[1] for line in net.lines})

        buses = net.get_buses()
        m.v_min = Param(m.N, initialize={bus.id: bus.v_limits.v_min for bus in buses})
        m.v_max = Param(m.N, initialize={bus.id: bus.v_limits.v_max for bus in buses})

        # Substation parameters
        subs = net.substations
        m.s_init = Param(m.S, initialize={s.id: s.s_init for s in subs})
        m.s_max = Param(m.S, initialize={s.id: s.s_max for s in subs})
        m.fixed_cost = Param(m.S, initialize={
            s.id: p.substation_fixed_cost if s.fixed_cost is None else s.fixed_cost for s in subs})
        m.op_cost = Param(m.S, initialize={
            s.id: p.substation_op_cost if s.op_cost is None else s.op_cost for s in subs})

        # Demand and PV availability
        p_d, q_d = {}, {}
        for user in net.load_buses:
            for t in steps:
                p_d[user.id, t] = float(user.load_profile.values[t])
                q_d[user.id, t] = p_d[user.id, t] * user.tan_phi
        m.P_d = Param(m.U, m.T, initialize=p_d)
        m.Q_d = Param(m.U, m.T, initialize=q_d)

        horizon = net.get_nb_time_steps()
        pv_max, pv_tan = {}, {}
        for user in net.load_buses:
            pv = user.pv_installation
            if pv is None:
                continue
            if len(pv.profile) != horizon:
                raise ValueError(f"PV profile of user {user.id} has {len(pv.profile)} steps, "
                                 f"load profiles have {horizon}")
            pv_tan[user.id] = pv.pq_diagram.max_tan_phi
            for t in steps:
                pv_max[user.id, t] = user.max_pv_capa * float(pv.profile.values[t])
        m.pv_max = Param(m.PV, m.T, initialize=pv_max)
        m.pv_tan = Param(m.PV, initialize=pv_tan)

        # Investment and substation variables
        m.x = Var(m.L, domain=Binary)
        m.alpha = Var(m.K, m.L, domain=Binary)
        m.beta = Var(m.S, domain=Binary)
        m.S_s = Var(m.S, domain=NonNegativeReals)
        m.P_s = Var(m.S, m.T, domain=NonNegativeReals)
        m.Q_s = Var(m.S, m.T, domain=Reals)
        m.P_pv = Var(m.PV, m.T, domain=NonNegativeReals)
        m.Q_pv = Var(m.PV, m.T, domain=Reals)

        m.line_constructed = Constraint(
            m.L, rule=lambda m, l: m.x[l] == sum(m.alpha[k, l] for k in m.K))
        m.substation_capacity = Constraint(
            m.S, rule=lambda m, s: m.S_s[s] == m.s_init[s] + m.beta[s] * m.s_max[s])
        m.substation_capacity_limit = Constraint(
            m.S, m.T, rule=lambda m, s, t: m.P_s[s, t] ** 2 + m.Q_s[s, t] ** 2 <= m.S_s[s] ** 2)
        m.number_of_lines = Constraint(
            expr=sum(m.x[l] for l in m.L) == len(m.N) - len(m.S))

        m.pv_active_limit = Constraint(
            m.PV, m.T, rule=lambda m, u, t: m.P_pv[u, t] <= m.pv_max[u, t])
        m.pv_reactive_upper = Constraint(
            m.PV, m.T, rule=lambda m, u, t: m.Q_pv[u, t] <= m.pv_tan[u] * m.P_pv[u, t])
        m.pv_reactive_lower = Constraint(
            m.PV, m.T, rule=lambda m, u, t: m.Q_pv[u, t] >= -m.pv_tan[u] * m.P_pv[u, t])

        # Net injection at each bus
        def active_injection_rule(m, i, t):
            inj = 0
            if i in m.S:
                inj += m.P_s[i, t]
            if i in m.PV:
                inj += m.P_pv[i, t]
            if i in m.U:
                inj -= m.P_d[i, t]
            return inj

        def reactive_injection_rule(m, i, t):
            inj = 0
            if i in m.S:
                inj += m.Q_s[i, t]
            if i in m.PV:
                inj += m.Q_pv[i, t]
            if i in m.U:
                inj -= m.Q_d[i, t]
            return inj

        m.P_inj = Expression(m.N, m.T, rule=active_injection_rule)
        m.Q_inj = Expression(m.N, m.T, rule=reactive_injection_rule)

        self._add_power_flow(m)

        n_steps = len(steps)
        base_power = net.pu_basis.base_power
        m.investment_cost = Expression(expr=(
            p.k_l * sum(m.alpha[k, l] * m.line_cost[k, l] for k in m.K for l in m.L)
            + p.k_s * sum(m.beta[s] * m.fixed_cost[s] for s in m.S)
        ))
        m.losses_cost = Expression(expr=(
            p.hours_in_a_year * (1 + p.interest_rate_losses) * p.line_loss
            * p.cost_unit_loss * base_power
            * sum(m.P_inj[i, t] for i in m.N for t in m.T) / n_steps
        ))
        m.substation_cost = Expression(expr=(
            p.hours_in_a_year * (1 + p.interest_rate_substation)
            * p.substation_utilization * base_power ** 2
            * sum(m.op_cost[s] * (m.P_s[s, t] ** 2 + m.Q_s[s, t] ** 2)
                  for s in m.S for t in m.T) / n_steps
        ))
        m.obj = Objective(expr=m.investment_cost + m.losses_cost + m.substation_cost,
                          sense=minimize)

        logger.info("Built %s: %d buses, %d lines, %d conductors, %d steps, %d PV users",
                    m.name, len(m.N), len(m.L), len(m.K), len(m.T), len(m.PV))

    def _add_power_flow(self, m: ConcreteModel) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not define a power-flow model")

    def _voltage_magnitude(self, i: int, t: int) -> float:
        raise NotImplementedError

    def solve(self, options: Optional[SolverOptions] = None) -> bool:
        """Solve the planning model; returns True when a solution was loaded."""
        options = options or SolverOptions()
        if self.model is None:
            self.build_model()

        opt = SolverFactory(options.solver)
        for key, val in options.to_solver_options(self.formulation).items():
            opt.options[key] = val

        print(f"Solving DNEP {self.formulation.upper()} with {options.solver}...")
        print(f"  - Buses: {len(self.model.N)}, candidate lines: {len(self.model.L)}, "
              f"conductors: {len(self.model.K)}, steps: {len(self.model.T)}")
        if options.time_limit is not None:
            print(f"  - Time limit: {options.time_limit}s")

        start = time.perf_counter()
        results = opt.solve(self.model, tee=options.tee, load_solutions=False)
        self.solve_time = time.perf_counter() - start

        condition = results.solver.termination_condition
        self.termination = str(condition)
        has_solution = len(results.solution) > 0

        if condition in SUCCESS_CONDITIONS or (
                condition == TerminationCondition.maxTimeLimit and has_solution):
            if not has_solution:
                print(f"✗ Solver reported {condition} without a solution")
                return False
            self.model.solutions.load_from(results)
            self.results = results
            if condition == TerminationCondition.optimal:
                print("✓ Optimal solution found!")
            else:
                print(f"✓ Feasible solution found (termination: {condition})")
            return True
        elif condition == TerminationCondition.infeasible:
            print("problem infeasible")
        elif condition == TerminationCondition.unbounded:
            print("problem unbounded")
        elif condition == TerminationCondition.infeasibleOrUnbounded:
            print("problem infeasible or unbounded")
        else:
            print(f"✗ Solver termination: {condition}")
        return False

    def get_results(self) -> Optional[Dict]:
        """Extract the investment plan and operating point from the solved model."""
        if self.model is None or self.results is None:
            return None
        m = self.model
        net = self.network

        results_dict = {
            'formulation': self.formulation,
            'objective_value': value(m.obj),
            'investment_cost': value(m.investment_cost),
            'losses_cost': value(m.losses_cost),
            'substation_cost': value(m.substation_cost),
            'solve_time': self.solve_time,
            'termination': self.termination,
            'lines_built': [],
            'substations_expanded': [],
            'voltages': {},
            'substation_power': {},
        }

        for l in m.L:
            if _val(m.x[l]) < 0.5:  # Binary rounding
                continue
            k = max(m.K, key=lambda k: _val(m.alpha[k, l]))
            conductor = net.conductors[k - 1]
            line = net.get_line(l)
            max_current = max(math.sqrt(max(_val(m.I_squared[k, l, t]), 0.0)) for t in m.T)
            results_dict['lines_built'].append({
                'line_id': l,
                'from_bus': line.ends[0],
                'to_bus': line.ends[1],
                'conductor': conductor.name,
                'length_km': line.length,
                'cost': value(m.line_cost[k, l]),
                'max_loading': max_current / conductor.max_i if conductor.max_i > 0 else 0.0,
            })

        for s in m.S:
            expanded = _val(m.beta[s]) > 0.5
            if expanded:
                results_dict['substations_expanded'].append({
                    'bus': s,
                    'capacity': _val(m.S_s[s]),
                    'cost': value(m.fixed_cost[s]),
                })
            for t in m.T:
                results_dict['substation_power'][s, t] = (_val(m.P_s[s, t]), _val(m.Q_s[s, t]))

        for i in m.N:
            for t in m.T:
                results_dict['voltages'][i, t] = self._voltage_magnitude(i, t)

        return results_dict

    def get_solution_arrays(self) -> Optional[Dict[str, np.ndarray]]:
        """
        Raw solution arrays indexed by position.

        Shapes: x (L,), alpha (K, L), beta (S,), P_s / Q_s (S, T),
        I_squared / P_conductor / Q_conductor (K, L, T), V (N, T).
        """
        if self.model is None or self.results is None:
            return None
        m = self.model
        K, L, S, N, T = list(m.K), list(m.L), list(m.S), list(m.N), list(m.T)

        def grid(var, *axes):
            shape = tuple(len(a) for a in axes)
            out = np.zeros(shape)
            for pos in np.ndindex(*shape):
                key = tuple(axis[p] for axis, p in zip(axes, pos))
                out[pos] = _val(var[key if len(key) > 1 else key[0]])
            return out

        return {
            'x': grid(m.x, L),
            'alpha': grid(m.alpha, K, L),
            'beta': grid(m.beta, S),
            'P_s': grid(m.P_s, S, T),
            'Q_s': grid(m.Q_s, S, T),
            'I_squared': grid(m.I_squared, K, L, T),
            'P_conductor': grid(m.P_conductor, K, L, T),
            'Q_conductor': grid(m.Q_conductor, K, L, T),
            'V': np.array([[self._voltage_magnitude(i, t) for t in T] for i in N]),
            'objective_value': value(m.obj),
            'solve_time': self.solve_time,
        }

    def print_summary(self) -> None:
        """Print formatted summary of the planning results."""
        results = self.get_results()
        if results is None:
            print("No results available")
            return

        print("\n" + "=" * 60)
        print(f"DNEP {self.formulation.upper()} RESULTS SUMMARY")
        print("=" * 60)
        print(f"Total Annualised Cost:    {results['objective_value']:,.3f}")
        print(f"  Investment Cost:        {results['investment_cost']:,.3f}")
        print(f"  Losses Cost:            {results['losses_cost']:,.3f}")
        print(f"  Substation Cost:        {results['substation_cost']:,.3f}")
        print(f"Solve Time:               {results['solve_time']:.2f}s")
        print(f"\nLines Built:              {len(results['lines_built'])}")

        for line in results['lines_built']:
            print(f"  Line {line['line_id']}: Bus {line['from_bus']} → Bus {line['to_bus']}, "
                  f"{line['conductor']}, {line['length_km']:.2f} km, "
                  f"Cost: {line['cost']:,.2f}, Max loading: {line['max_loading'] * 100:.1f}%")

        print(f"\nSubstations Expanded:     {len(results['substations_expanded'])}")
        for sub in results['substations_expanded']:
            print(f"  Bus {sub['bus']}: {sub['capacity']:.3f} pu, Cost: {sub['cost']:,.2f}")

        voltages = list(results['voltages'].values())
        if voltages:
            print(f"\nVoltage Range:            {min(voltages):.4f} – {max(voltages):.4f} pu")
        print("=" * 60)
