"""Shared fixtures: a six-bus case with two substations and four users."""
import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
import pyomo.environ  # noqa: F401  (registers solver plugins)
from pyomo.opt import SolverFactory

from dnep.core.data_loader import add_load_profiles, add_pv_profiles, get_network_data

N_STEPS = 4


def gurobi_available():
    try:
        return bool(SolverFactory("gurobi").available(exception_flag=False))
    except Exception:
        return False


requires_gurobi = pytest.mark.skipif(not gurobi_available(), reason="Gurobi is not available")


def case_tables():
    bus = pd.DataFrame({
        'type': ['substation', 'substation', 'load', 'load', 'load', 'load'],
        'x': [0.0, 4.0, 0.0, 2.0, 4.0, 2.0],
        'y': [0.0, 0.0, 2.0, 2.0, 2.0, 4.0],
        'S_G_max_mva': [5.0, 5.0, 0.0, 0.0, 0.0, 0.0],
        'S_G_init_mva': [1.0, None, None, None, None, None],
    })
    line = pd.DataFrame({
        'from_bus': [1, 1, 2, 2, 3, 4, 5],
        'to_bus': [3, 4, 5, 6, 4, 5, 6],
        'length_km': [2.0, 2.8, 2.0, 2.8, 2.0, 2.0, 2.8],
    })
    conductor = pd.DataFrame({
        'name': ['AL-95', 'AL-240'],
        'r_ohm_per_km': [0.32, 0.125],
        'x_ohm_per_km': [0.38, 0.35],
        'max_i_ka': [0.25, 0.45],
        'cost_kdollars_per_km': [20.0, 35.0],
    })
    return {'bus': bus, 'line': line, 'conductor': conductor}


def write_workbook(path, tables):
    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        for sheet, df in tables.items():
            df.to_excel(writer, sheet_name=sheet, index=False)
    return path


@pytest.fixture
def tables():
    return case_tables()


@pytest.fixture
def case_xlsx(tmp_path, tables):
    return str(write_workbook(tmp_path / 'case_6bus.xlsx', tables))


@pytest.fixture
def case_csv_dir(tmp_path, tables):
    folder = tmp_path / 'case_6bus'
    folder.mkdir()
    for sheet, df in tables.items():
        df.to_csv(folder / f'{sheet}.csv', index=False)
    return str(folder)


@pytest.fixture
def load_mw():
    # steps x users, MW
    return np.array([
        [0.20, 0.30, 0.25, 0.10],
        [0.35, 0.40, 0.30, 0.20],
        [0.50, 0.45, 0.40, 0.30],
        [0.25, 0.20, 0.15, 0.10],
    ])


@pytest.fixture
def pv_cf():
    return np.array([[0.0], [0.6], [0.9], [0.1]])


@pytest.fixture
def network_and_topology(case_xlsx):
    return get_network_data(case_xlsx)


@pytest.fixture
def network(network_and_topology):
    return network_and_topology[0]


@pytest.fixture
def topology(network_and_topology):
    return network_and_topology[1]


@pytest.fixture
def loaded_network(network, load_mw, pv_cf):
    """Network with load profiles on every user and PV on the second user (bus 4)."""
    add_load_profiles(network, load_mw, delta_t=60)
    add_pv_profiles(network, pv_cf, [1], delta_t=60)
    return network
