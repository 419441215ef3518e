import numpy as np

from dnep.analysis.diagnostics import check_feasibility, print_diagnostics
from dnep.core.data_loader import add_load_profiles


def test_clean_case_has_no_issue(loaded_network):
    assert check_feasibility(loaded_network) == []


def test_too_few_lines(loaded_network):
    loaded_network.lines = loaded_network.lines[:3]
    loaded_network._index_lines()
    issues = check_feasibility(loaded_network)
    assert any("candidate lines" in issue for issue in issues)


def test_isolated_user(loaded_network):
    # Drop every line touching bus 6
    loaded_network.lines = [l for l in loaded_network.lines if 6 not in l.ends]
    loaded_network._index_lines()
    issues = check_feasibility(loaded_network)
    assert any("[6]" in issue for issue in issues)


def test_substation_capacity_exceeded(network):
    add_load_profiles(network, np.full((2, 4), 5.0), delta_t=60)
    issues = check_feasibility(network)
    assert any("substation capacity" in issue for issue in issues)


def test_user_above_conductor_rating(network):
    loads = np.full((2, 4), 0.1)
    loads[1, 2] = 50.0
    add_load_profiles(network, loads, delta_t=60)
    issues = check_feasibility(network)
    assert any(issue.startswith("User 5") for issue in issues)


def test_step_subset_only_checks_selected_steps(network):
    loads = np.full((2, 4), 0.1)
    loads[1] = 5.0
    add_load_profiles(network, loads, delta_t=60)
    assert check_feasibility(network, steps=[0]) == []
    assert check_feasibility(network, steps=[1]) != []


def test_print_diagnostics(loaded_network, capsys):
    issues = print_diagnostics(loaded_network)
    out = capsys.readouterr().out
    assert issues == []
    assert "Feasibility Diagnostics" in out
    assert "No structural issue found" in out
