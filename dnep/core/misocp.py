"""
Branch-Flow MISOCP Formulation of the DNEP
==========================================

Convex relaxation of the AC power flow for radial networks (DistFlow with
the current equality relaxed to a rotated second-order cone). Each candidate
line carries one set of flow variables per conductor type; only the chosen
conductor may carry flow.

Mathematical Formulation
------------------------
For every conductor k, line l = (i, j) and step t:

    P^inj_it = Σ_{k, l∈δ+(i)} P_klt - Σ_{k, l∈δ-(i)} (P_klt - r_kl I_klt)      (Active balance)
    Q^inj_it = Σ_{k, l∈δ+(i)} Q_klt - Σ_{k, l∈δ-(i)} (Q_klt - x_kl I_klt)      (Reactive balance)

    |v_jt - v_it + 2(r_kl P_klt + x_kl Q_klt) - (r_kl² + x_kl²) I_klt| ≤ M (1 - α_kl)   (Voltage drop)
    I_klt ≤ α_kl Ī_k²                                                           (Current limit)
    P_klt² + Q_klt² ≤ v_it I_klt                                                (Rotated cone)
    V_min² ≤ v_it ≤ V_max²

with v the squared voltage magnitude, I the squared current and
M = V_max² - V_min². When α_kl = 0 the current limit forces I = 0 and the
cone then forces P = Q = 0.
"""
from __future__ import annotations

import math

from pyomo.environ import ConcreteModel, Constraint, NonNegativeReals, Reals, Var, value

from .dnep_model import DNEP


class DNEPMISOCP(DNEP):
    """Mixed-integer second-order-cone DNEP model."""

    formulation = 'misocp'

    def _add_power_flow(self, m: ConcreteModel) -> None:
        net = self.network

        m.v = Var(m.N, m.T, domain=NonNegativeReals,
                  bounds=lambda m, i, t: (m.v_min[i] ** 2, m.v_max[i] ** 2))
        m.P_conductor = Var(m.K, m.L, m.T, domain=Reals)
        m.Q_conductor = Var(m.K, m.L, m.T, domain=Reals)
        m.I_squared = Var(m.K, m.L, m.T, domain=NonNegativeReals)

        def active_balance_rule(m, i, t):
            sent = sum(m.P_conductor[k, l, t] for k in m.K for l in net.sending_lines(i))
            received = sum(m.P_conductor[k, l, t] - m.r[k, l] * m.I_squared[k, l, t]
                           for k in m.K for l in net.receiving_lines(i))
            return m.P_inj[i, t] == sent - received

        def reactive_balance_rule(m, i, t):
            sent = sum(m.Q_conductor[k, l, t] for k in m.K for l in net.sending_lines(i))
            received = sum(m.Q_conductor[k, l, t] - m.x_react[k, l] * m.I_squared[k, l, t]
                           for k in m.K for l in net.receiving_lines(i))
            return m.Q_inj[i, t] == sent - received

        m.active_balance = Constraint(m.N, m.T, rule=active_balance_rule)
        m.reactive_balance = Constraint(m.N, m.T, rule=reactive_balance_rule)

        def big_m(m, l):
            i, j = m.line_from[l], m.line_to[l]
            return max(m.v_max[i] ** 2, m.v_max[j] ** 2) - min(m.v_min[i] ** 2, m.v_min[j] ** 2)

        def drop(m, k, l, t):
            i, j = m.line_from[l], m.line_to[l]
            return (m.v[j, t] - m.v[i, t]
                    + 2 * (m.r[k, l] * m.P_conductor[k, l, t] + m.x_react[k, l] * m.Q_conductor[k, l, t])
                    - (m.r[k, l] ** 2 + m.x_react[k, l] ** 2) * m.I_squared[k, l, t])

        m.voltage_drop_upper = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: drop(m, k, l, t) <= big_m(m, l) * (1 - m.alpha[k, l]))
        m.voltage_drop_lower = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: drop(m, k, l, t) >= -big_m(m, l) * (1 - m.alpha[k, l]))

        m.current_limit = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: m.I_squared[k, l, t] <= m.alpha[k, l] * m.i_max[k] ** 2)

        m.current_cone = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: (m.P_conductor[k, l, t] ** 2 + m.Q_conductor[k, l, t] ** 2
                                     <= m.v[m.line_from[l], t] * m.I_squared[k, l, t]))

    def _voltage_magnitude(self, i: int, t: int) -> float:
        v = value(self.model.v[i, t], exception=False)
        return math.sqrt(max(v, 0.0)) if v is not None else 0.0
