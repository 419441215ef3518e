import json

import pandas as pd
import pytest

from dnep.core.config import PlanningParameters, SolverOptions
from dnep.core.export import network_to_dict, save_network, save_results


@pytest.fixture
def results():
    return {
        'formulation': 'misocp',
        'objective_value': 12.5,
        'investment_cost': 10.0,
        'losses_cost': 2.0,
        'substation_cost': 0.5,
        'solve_time': 0.8,
        'termination': 'optimal',
        'lines_built': [
            {'line_id': 1, 'from_bus': 1, 'to_bus': 3, 'conductor': 'AL-95',
             'length_km': 2.0, 'cost': 40.0, 'max_loading': 0.3},
        ],
        'substations_expanded': [{'bus': 1, 'capacity': 6.0, 'cost': 100.0}],
        'voltages': {(1, 0): 1.0, (3, 0): 0.99},
        'substation_power': {(1, 0): (0.5, 0.1), (2, 0): (0.0, 0.0)},
    }


def test_network_to_dict(loaded_network):
    data = network_to_dict(loaded_network)
    assert len(data['substations']) == 2
    assert len(data['load_buses']) == 4
    assert len(data['lines']) == 7
    assert data['lines'][2] == {'id': 3, 'from_bus': 2, 'to_bus': 5, 'length': 2.0}
    assert data['pu_basis']['base_voltage'] == 34.5
    assert data['load_buses'][0]['pv_installation'] is None
    assert data['load_buses'][1]['pv_installation']['profile']['delta_t'] == 60


def test_save_network(loaded_network, tmp_path):
    path = tmp_path / 'out' / 'network.json'
    save_network(loaded_network, str(path))
    with open(path) as f:
        data = json.load(f)
    assert len(data['load_buses'][0]['load_profile']['values']) == 4


def test_save_results(results, tmp_path):
    out = tmp_path / 'results'
    save_results(results, str(out), PlanningParameters(), SolverOptions())

    lines = pd.read_csv(out / 'lines_built.csv')
    assert list(lines['conductor']) == ['AL-95']

    subs = pd.read_csv(out / 'substations.csv')
    assert len(subs) == 2
    assert subs.set_index('bus').loc[1, 'expanded']

    volts = pd.read_csv(out / 'bus_voltages.csv')
    assert volts['voltage'].min() == pytest.approx(0.99)

    with open(out / 'summary.json') as f:
        summary = json.load(f)
    assert summary['objective_value'] == 12.5
    assert summary['n_lines_built'] == 1
    assert summary['config']['solver']['solver'] == 'gurobi'


def test_save_results_without_plan(results, tmp_path):
    results['lines_built'] = []
    results['substations_expanded'] = []
    save_results(results, str(tmp_path))
    assert pd.read_csv(tmp_path / 'lines_built.csv').empty
    with open(tmp_path / 'summary.json') as f:
        assert 'config' not in json.load(f)
