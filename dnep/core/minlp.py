"""
Rectangular-Voltage MINLP Formulation of the DNEP
=================================================

Exact AC power flow with voltages in rectangular coordinates. Conductor flows
are defined for every conductor type and enter the nodal balances through
the bilinear products α_kl P_klt, which makes the model nonconvex (Gurobi
needs ``NonConvex=2``).

For line l = (i, j) with series admittance g_kl + j b_kl:

    P_klt = g (|V_i|² - e_i e_j - f_i f_j) + b (e_i f_j - e_j f_i)
    Q_klt = -b (|V_i|² - e_i e_j - f_i f_j) + g (e_i f_j - e_j f_i)
    I_klt = (g² + b²) |V_i - V_j|²
    α_kl I_klt ≤ Ī_k²
    V_min² ≤ e_i² + f_i² ≤ V_max²

where e = V_re and f = V_im. Receiving-end flows follow by swapping i and j
and are variables too, so every balance term stays a binary times a bounded
variable. Imaginary parts are fixed to zero at substation buses and real
parts are non-negative (angles within ±90°).
"""
from __future__ import annotations

import math

from pyomo.environ import ConcreteModel, Constraint, Reals, Var, value

from .dnep_model import DNEP


class DNEPMINLP(DNEP):
    """Mixed-integer nonlinear DNEP model."""

    formulation = 'minlp'

    def _add_power_flow(self, m: ConcreteModel) -> None:
        net = self.network

        m.V_re = Var(m.N, m.T, domain=Reals,
                     bounds=lambda m, i, t: (0.0, m.v_max[i]), initialize=1.0)
        m.V_im = Var(m.N, m.T, domain=Reals,
                     bounds=lambda m, i, t: (-m.v_max[i], m.v_max[i]), initialize=0.0)

        # |y| |V_a| |V_a - V_c| with both magnitudes at their upper limit
        def flow_bounds(m, k, l, t):
            y = math.hypot(m.conductance[k, l], m.susceptance[k, l])
            i, j = m.line_from[l], m.line_to[l]
            bound = y * max(m.v_max[i], m.v_max[j]) * (m.v_max[i] + m.v_max[j])
            return -bound, bound

        def current_bounds(m, k, l, t):
            y2 = m.conductance[k, l] ** 2 + m.susceptance[k, l] ** 2
            return 0.0, y2 * (m.v_max[m.line_from[l]] + m.v_max[m.line_to[l]]) ** 2

        m.P_conductor = Var(m.K, m.L, m.T, domain=Reals, bounds=flow_bounds)
        m.Q_conductor = Var(m.K, m.L, m.T, domain=Reals, bounds=flow_bounds)
        m.P_receiving = Var(m.K, m.L, m.T, domain=Reals, bounds=flow_bounds)
        m.Q_receiving = Var(m.K, m.L, m.T, domain=Reals, bounds=flow_bounds)
        m.I_squared = Var(m.K, m.L, m.T, domain=Reals, bounds=current_bounds)

        for s in m.S:
            for t in m.T:
                m.V_im[s, t].fix(0.0)

        def real_part(m, a, c, t):
            # Re(V_a conj(V_a - V_c))
            return (m.V_re[a, t] ** 2 + m.V_im[a, t] ** 2
                    - m.V_re[a, t] * m.V_re[c, t] - m.V_im[a, t] * m.V_im[c, t])

        def imag_part(m, a, c, t):
            return m.V_re[a, t] * m.V_im[c, t] - m.V_re[c, t] * m.V_im[a, t]

        m.active_flow = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: m.P_conductor[k, l, t] == (
                m.conductance[k, l] * real_part(m, m.line_from[l], m.line_to[l], t)
                + m.susceptance[k, l] * imag_part(m, m.line_from[l], m.line_to[l], t)))
        m.reactive_flow = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: m.Q_conductor[k, l, t] == (
                -m.susceptance[k, l] * real_part(m, m.line_from[l], m.line_to[l], t)
                + m.conductance[k, l] * imag_part(m, m.line_from[l], m.line_to[l], t)))

        # Receiving-end flows, leaving bus j towards bus i
        m.receiving_active_flow = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: m.P_receiving[k, l, t] == (
                m.conductance[k, l] * real_part(m, m.line_to[l], m.line_from[l], t)
                + m.susceptance[k, l] * imag_part(m, m.line_to[l], m.line_from[l], t)))
        m.receiving_reactive_flow = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: m.Q_receiving[k, l, t] == (
                -m.susceptance[k, l] * real_part(m, m.line_to[l], m.line_from[l], t)
                + m.conductance[k, l] * imag_part(m, m.line_to[l], m.line_from[l], t)))

        def active_balance_rule(m, i, t):
            return m.P_inj[i, t] == (
                sum(m.alpha[k, l] * m.P_conductor[k, l, t] for k in m.K for l in net.sending_lines(i))
                + sum(m.alpha[k, l] * m.P_receiving[k, l, t] for k in m.K for l in net.receiving_lines(i)))

        def reactive_balance_rule(m, i, t):
            return m.Q_inj[i, t] == (
                sum(m.alpha[k, l] * m.Q_conductor[k, l, t] for k in m.K for l in net.sending_lines(i))
                + sum(m.alpha[k, l] * m.Q_receiving[k, l, t] for k in m.K for l in net.receiving_lines(i)))

        m.active_balance = Constraint(m.N, m.T, rule=active_balance_rule)
        m.reactive_balance = Constraint(m.N, m.T, rule=reactive_balance_rule)

        def current_rule(m, k, l, t):
            i, j = m.line_from[l], m.line_to[l]
            return m.I_squared[k, l, t] == (
                (m.conductance[k, l] ** 2 + m.susceptance[k, l] ** 2)
                * ((m.V_re[i, t] - m.V_re[j, t]) ** 2 + (m.V_im[i, t] - m.V_im[j, t]) ** 2))

        m.current_definition = Constraint(m.K, m.L, m.T, rule=current_rule)
        m.current_limit = Constraint(
            m.K, m.L, m.T,
            rule=lambda m, k, l, t: m.alpha[k, l] * m.I_squared[k, l, t] <= m.i_max[k] ** 2)

        m.voltage_upper = Constraint(
            m.N, m.T,
            rule=lambda m, i, t: m.V_re[i, t] ** 2 + m.V_im[i, t] ** 2 <= m.v_max[i] ** 2)
        m.voltage_lower = Constraint(
            m.N, m.T,
            rule=lambda m, i, t: m.V_re[i, t] ** 2 + m.V_im[i, t] ** 2 >= m.v_min[i] ** 2)

    def _voltage_magnitude(self, i: int, t: int) -> float:
        re = value(self.model.V_re[i, t], exception=False) or 0.0
        im = value(self.model.V_im[i, t], exception=False) or 0.0
        return math.hypot(re, im)
