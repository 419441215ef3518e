import numpy as np
import pytest

from dnep.core.data_loader import (
    DNEPDataLoader,
    add_load_profiles,
    add_pv_profiles,
    define_pu_basis,
    from_pu,
    get_network_data,
    to_pu,
)
from dnep.core.network import VoltageLimits

from conftest import write_workbook


def test_pu_basis_defaults():
    basis = define_pu_basis()
    assert basis.base_power == 1.0
    assert basis.base_voltage == 34.5
    assert basis.base_current == pytest.approx(1.0 / 34.5)
    assert basis.base_impedance == pytest.approx(34.5 ** 2)


@pytest.mark.parametrize("power, voltage", [(0.0, 34.5), (1.0, -11.0)])
def test_pu_basis_rejects_non_positive(power, voltage):
    with pytest.raises(ValueError):
        define_pu_basis(power, voltage)


def test_pu_round_trip():
    values = np.array([0.0, 1.5, 34.5, 1e3])
    assert np.allclose(from_pu(to_pu(values, 1190.25), 1190.25), values)


def test_loader_reads_workbook_and_csv(case_xlsx, case_csv_dir):
    xlsx = DNEPDataLoader(case_xlsx)
    csv = DNEPDataLoader(case_csv_dir)
    assert xlsx.get_system_summary() == csv.get_system_summary()

    summary = xlsx.get_system_summary()
    assert summary['n_substations'] == 2
    assert summary['n_users'] == 4
    assert summary['n_lines'] == 7
    assert summary['total_substation_capacity_mva'] == pytest.approx(10.0)


def test_missing_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        DNEPDataLoader(str(tmp_path / 'nope.xlsx'))


def test_missing_csv_file(case_csv_dir):
    import os
    os.remove(os.path.join(case_csv_dir, 'conductor.csv'))
    with pytest.raises(FileNotFoundError):
        DNEPDataLoader(case_csv_dir)


def test_missing_sheet(tmp_path, tables):
    del tables['conductor']
    path = write_workbook(tmp_path / 'case.xlsx', tables)
    with pytest.raises(ValueError, match="missing sheets"):
        DNEPDataLoader(str(path))


def test_missing_column(tmp_path, tables):
    tables['line'] = tables['line'].drop(columns=['length_km'])
    path = write_workbook(tmp_path / 'case.xlsx', tables)
    with pytest.raises(ValueError, match="length_km"):
        DNEPDataLoader(str(path))


def test_substations_must_come_first(tmp_path, tables):
    tables['bus'] = tables['bus'].iloc[[0, 2, 1, 3, 4, 5]].reset_index(drop=True)
    path = write_workbook(tmp_path / 'case.xlsx', tables)
    with pytest.raises(ValueError, match="before user"):
        get_network_data(str(path))


def test_line_with_unknown_bus(tmp_path, tables):
    tables['line'].loc[0, 'to_bus'] = 9
    path = write_workbook(tmp_path / 'case.xlsx', tables)
    with pytest.raises(ValueError, match="unknown bus"):
        get_network_data(str(path))


def test_per_unit_conversion(case_xlsx):
    basis = define_pu_basis(10.0, 20.0)
    network, _ = get_network_data(case_xlsx, VoltageLimits(0.9, 1.1), max_pv_capa=0.5,
                                  pu_basis=basis, money_basis=10.0)
    cond = network.conductors[0]
    assert cond.name == 'AL-95'
    assert cond.r == pytest.approx(0.32 / basis.base_impedance)
    assert cond.x == pytest.approx(0.38 / basis.base_impedance)
    assert cond.max_i == pytest.approx(0.25 / basis.base_current)
    assert cond.cost == pytest.approx(2.0)

    assert network.substations[0].s_max == pytest.approx(0.5)
    assert network.load_buses[0].max_pv_capa == pytest.approx(0.05)
    assert network.load_buses[0].v_limits == VoltageLimits(0.9, 1.1)


def test_add_load_profiles(network, load_mw):
    add_load_profiles(network, load_mw, delta_t=60, cos_phi=0.95)
    user = network.load_buses[2]
    assert np.allclose(user.load_profile.values, load_mw[:, 2])
    assert user.cos_phi == 0.95
    assert network.get_nb_time_steps() == 4


@pytest.mark.parametrize("n_columns", [3, 5])
def test_load_profile_count_must_match_users(network, n_columns):
    with pytest.raises(ValueError, match="load profiles"):
        add_load_profiles(network, np.ones((4, n_columns)), delta_t=60)


def test_load_profiles_must_be_a_matrix(network):
    with pytest.raises(ValueError):
        add_load_profiles(network, np.ones(4), delta_t=60)


def test_add_pv_profiles(network, pv_cf):
    add_pv_profiles(network, pv_cf, [3], delta_t=60)
    assert network.get_pv_user_ids() == [6]
    assert np.allclose(network.load_buses[3].pv_installation.profile.values, pv_cf[:, 0])


@pytest.mark.parametrize("id_users", [[0, 1], []])
def test_pv_profile_count_must_match_users(network, pv_cf, id_users):
    with pytest.raises(ValueError, match="PV profiles"):
        add_pv_profiles(network, pv_cf, id_users)


def test_pv_user_index_out_of_range(network, pv_cf):
    with pytest.raises(ValueError, match="out of range"):
        add_pv_profiles(network, pv_cf, [4])
