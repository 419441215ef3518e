from types import SimpleNamespace

import numpy as np
import pytest
from pyomo.environ import Constraint, value
from pyomo.opt import TerminationCondition

from dnep.core import dnep_model
from dnep.core.config import PlanningParameters, SolverOptions
from dnep.core.data_loader import add_load_profiles
from dnep.core.dnep_model import DNEP
from dnep.core.minlp import DNEPMINLP
from dnep.core.misocp import DNEPMISOCP

from conftest import requires_gurobi


@pytest.mark.parametrize("cls", [DNEPMISOCP, DNEPMINLP])
def test_model_dimensions(loaded_network, cls):
    dnep = cls(loaded_network)
    dnep.build_model()
    m = dnep.model

    assert len(m.N) == 6
    assert list(m.S) == [1, 2]
    assert list(m.U) == [3, 4, 5, 6]
    assert list(m.PV) == [4]
    assert len(m.L) == 7
    assert len(m.K) == 2
    assert list(m.T) == [0, 1, 2, 3]

    assert len(m.alpha) == 14
    assert len(m.P_conductor) == len(m.I_squared) == 2 * 7 * 4
    assert len(m.current_limit) == 2 * 7 * 4
    assert len(m.active_balance) == len(m.reactive_balance) == 6 * 4
    assert len(m.substation_capacity_limit) == 2 * 4
    assert len(m.pv_active_limit) == 4


def test_misocp_specific_components(loaded_network):
    dnep = DNEPMISOCP(loaded_network)
    dnep.build_model()
    m = dnep.model
    assert len(m.current_cone) == 56
    assert len(m.voltage_drop_upper) == len(m.voltage_drop_lower) == 56
    assert m.v[3, 0].lb == pytest.approx(0.95 ** 2)
    assert m.v[3, 0].ub == pytest.approx(1.05 ** 2)


def test_minlp_fixes_substation_angle(loaded_network):
    dnep = DNEPMINLP(loaded_network)
    dnep.build_model()
    m = dnep.model
    assert all(m.V_im[s, t].fixed for s in m.S for t in m.T)
    assert not m.V_im[3, 0].fixed
    assert len(m.current_definition) == 56
    assert len(m.voltage_upper) == len(m.voltage_lower) == 24


def test_minlp_receiving_flows_are_bounded_variables(loaded_network):
    dnep = DNEPMINLP(loaded_network)
    dnep.build_model()
    m = dnep.model
    for var in (m.P_conductor, m.Q_conductor, m.P_receiving, m.Q_receiving, m.I_squared):
        assert all(v.lb is not None and v.ub is not None for v in var.values())
    assert len(m.receiving_active_flow) == len(m.receiving_reactive_flow) == 56
    assert m.V_re[3, 0].lb == 0.0


@pytest.mark.parametrize("cls", [DNEPMISOCP, DNEPMINLP])
def test_constraints_are_at_most_quadratic(loaded_network, cls, tmp_path):
    dnep = cls(loaded_network, steps=[0])
    dnep.build_model()
    m = dnep.model
    for con in m.component_data_objects(Constraint, active=True):
        assert con.body.polynomial_degree() <= 2, con.name

    # The LP writer used by the Gurobi interface rejects higher-degree terms
    path = tmp_path / "dnep.lp"
    m.write(str(path))
    assert path.stat().st_size > 0


def test_radial_line_count(loaded_network):
    dnep = DNEPMISOCP(loaded_network)
    dnep.build_model()
    m = dnep.model
    assert value(m.number_of_lines.upper) == 4
    assert value(m.number_of_lines.lower) == 4


def test_demand_and_pv_parameters(loaded_network, load_mw, pv_cf):
    dnep = DNEPMISOCP(loaded_network)
    dnep.build_model()
    m = dnep.model
    user = loaded_network.load_buses[0]
    assert value(m.P_d[3, 2]) == pytest.approx(load_mw[2, 0])
    assert value(m.Q_d[3, 2]) == pytest.approx(load_mw[2, 0] * user.tan_phi)
    assert value(m.pv_max[4, 2]) == pytest.approx(0.4 * pv_cf[2, 0])


def test_line_parameters(loaded_network):
    dnep = DNEPMISOCP(loaded_network)
    dnep.build_model()
    m = dnep.model
    cond = loaded_network.conductors[1]
    line = loaded_network.get_line(2)
    r = cond.r * line.length
    x = cond.x * line.length
    assert value(m.r[2, 2]) == pytest.approx(r)
    assert value(m.conductance[2, 2]) == pytest.approx(r / (r ** 2 + x ** 2))
    assert value(m.susceptance[2, 2]) == pytest.approx(-x / (r ** 2 + x ** 2))
    assert value(m.line_cost[2, 2]) == pytest.approx(35.0 * 2.8)


def _fix_operation(m, supply):
    for v in m.alpha.values():
        v.set_value(0)
    for v in m.beta.values():
        v.set_value(0)
    for (s, t), v in m.P_s.items():
        v.set_value(supply[t] if s == 1 else 0.0)
    for v in m.Q_s.values():
        v.set_value(0.0)
    for v in m.P_pv.values():
        v.set_value(0.0)


def test_objective_pieces(loaded_network, load_mw):
    params = PlanningParameters(k_l=0.1, k_s=0.2, substation_op_cost=0.001)
    dnep = DNEPMISOCP(loaded_network, params)
    dnep.build_model()
    m = dnep.model

    # Supply the demand plus 0.1 pu of losses at every step
    supply = {t: load_mw[t].sum() + 0.1 for t in range(4)}
    _fix_operation(m, supply)
    m.alpha[1, 1].set_value(1)
    m.beta[2].set_value(1)

    assert value(m.investment_cost) == pytest.approx(0.1 * 20.0 * 2.0 + 0.2 * 100.0)
    assert value(m.losses_cost) == pytest.approx(8760 * 1.1 * 1.0 * 0.1 * 0.1)

    mean_sq = sum(v ** 2 for v in supply.values()) / 4
    assert value(m.substation_cost) == pytest.approx(8760 * 1.1 * 0.5 * 0.001 * mean_sq)
    assert value(m.obj) == pytest.approx(
        value(m.investment_cost) + value(m.losses_cost) + value(m.substation_cost))


def test_substation_costs_from_sheet_override_defaults(loaded_network):
    loaded_network.substations[0].fixed_cost = 42.0
    dnep = DNEPMISOCP(loaded_network)
    dnep.build_model()
    assert value(dnep.model.fixed_cost[1]) == 42.0
    assert value(dnep.model.fixed_cost[2]) == 100.0


def test_step_subset(loaded_network):
    dnep = DNEPMISOCP(loaded_network, steps=[2, 0, 2])
    dnep.build_model()
    assert list(dnep.model.T) == [0, 2]


@pytest.mark.parametrize("steps", [[4], [-1], []])
def test_invalid_steps(loaded_network, steps):
    with pytest.raises(ValueError):
        DNEPMISOCP(loaded_network, steps=steps).build_model()


def test_profiles_required(network):
    with pytest.raises(ValueError, match="load profiles"):
        DNEPMISOCP(network).build_model()


def test_base_class_has_no_power_flow(loaded_network):
    with pytest.raises(NotImplementedError):
        DNEP(loaded_network).build_model()


def test_results_before_solve(loaded_network):
    dnep = DNEPMINLP(loaded_network)
    assert dnep.get_results() is None
    dnep.build_model()
    assert dnep.get_results() is None
    assert dnep.get_solution_arrays() is None


@requires_gurobi
@pytest.mark.parametrize("cls", [DNEPMISOCP, DNEPMINLP])
def test_solve_small_case(loaded_network, cls):
    dnep = cls(loaded_network, steps=[1, 2])
    assert dnep.solve(SolverOptions(time_limit=60, mip_gap=0.01))

    results = dnep.get_results()
    assert len(results['lines_built']) == 4
    assert results['objective_value'] == pytest.approx(
        results['investment_cost'] + results['losses_cost'] + results['substation_cost'],
        rel=1e-6)
    assert all(0.95 - 1e-4 <= v <= 1.05 + 1e-4 for v in results['voltages'].values())
    assert all(line['max_loading'] <= 1.0 + 1e-4 for line in results['lines_built'])

    arrays = dnep.get_solution_arrays()
    assert arrays['alpha'].shape == (2, 7)
    assert arrays['V'].shape == (6, 2)
    assert arrays['x'].sum() == pytest.approx(4)


class FakeSolver:
    def __init__(self, condition, n_solutions=0):
        self.options = {}
        self.condition = condition
        self.n_solutions = n_solutions

    def solve(self, model, tee=False, load_solutions=True):
        assert load_solutions is False
        return SimpleNamespace(solver=SimpleNamespace(termination_condition=self.condition),
                               solution=[object()] * self.n_solutions)


def _solve_with(monkeypatch, network, condition, n_solutions=0, **opts):
    fake = FakeSolver(condition, n_solutions)
    monkeypatch.setattr(dnep_model, "SolverFactory", lambda name: fake)
    dnep = DNEPMISOCP(network, steps=[0])
    dnep.build_model()
    loaded = []
    monkeypatch.setattr(dnep.model.solutions, "load_from", loaded.append)
    return dnep, fake, dnep.solve(SolverOptions(**opts)), loaded


@pytest.mark.parametrize("condition, message", [
    (TerminationCondition.infeasible, "problem infeasible"),
    (TerminationCondition.unbounded, "problem unbounded"),
    (TerminationCondition.infeasibleOrUnbounded, "problem infeasible or unbounded"),
    (TerminationCondition.error, "Solver termination: error"),
])
def test_solve_failure_conditions(monkeypatch, capsys, loaded_network, condition, message):
    dnep, _, ok, loaded = _solve_with(monkeypatch, loaded_network, condition)
    assert ok is False
    assert message in capsys.readouterr().out
    assert loaded == []
    assert dnep.results is None
    assert dnep.get_results() is None
    assert dnep.termination == str(condition)


def test_solve_time_limit_with_incumbent(monkeypatch, capsys, loaded_network):
    dnep, fake, ok, loaded = _solve_with(
        monkeypatch, loaded_network, TerminationCondition.maxTimeLimit, n_solutions=1,
        time_limit=5, mip_gap=0.01)
    assert ok is True
    assert len(loaded) == 1
    assert dnep.results is loaded[0]
    assert "Feasible solution found (termination: maxTimeLimit)" in capsys.readouterr().out
    assert fake.options == {"TimeLimit": 5, "MIPGap": 0.01, "Presolve": 0}


def test_solve_time_limit_without_incumbent(monkeypatch, capsys, loaded_network):
    _, _, ok, loaded = _solve_with(monkeypatch, loaded_network, TerminationCondition.maxTimeLimit)
    assert ok is False
    assert loaded == []
    assert "Solver termination: maxTimeLimit" in capsys.readouterr().out


def test_solve_optimal_without_solution(monkeypatch, capsys, loaded_network):
    _, _, ok, loaded = _solve_with(monkeypatch, loaded_network, TerminationCondition.optimal)
    assert ok is False
    assert loaded == []
    assert "reported optimal without a solution" in capsys.readouterr().out


def test_print_summary(loaded_network, load_mw, capsys):
    dnep = DNEPMISOCP(loaded_network)
    dnep.build_model()
    m = dnep.model
    _fix_operation(m, {t: load_mw[t].sum() for t in range(4)})
    m.x[1].set_value(1)
    m.alpha[2, 1].set_value(1)
    m.beta[2].set_value(1)
    m.S_s[2].set_value(5.0)
    dnep.results = object()
    dnep.solve_time = 1.25

    dnep.print_summary()
    out = capsys.readouterr().out
    assert "DNEP MISOCP RESULTS SUMMARY" in out
    assert "Lines Built:              1" in out
    assert "Line 1: Bus 1 → Bus 3, AL-240, 2.00 km" in out
    assert "Substations Expanded:     1" in out
    assert "Bus 2: 5.000 pu" in out
    assert "Solve Time:               1.25s" in out


def test_print_summary_without_results(loaded_network, capsys):
    DNEPMISOCP(loaded_network).print_summary()
    assert "No results available" in capsys.readouterr().out


@requires_gurobi
def test_solve_reports_infeasible_demand(network, capsys):
    # 50 MW at every user exceeds both 5 MVA substations
    add_load_profiles(network, np.full((2, 4), 50.0), 60)
    dnep = DNEPMISOCP(network)
    assert dnep.solve(SolverOptions(time_limit=60)) is False
    assert "problem infeasible" in capsys.readouterr().out
    assert dnep.get_results() is None
