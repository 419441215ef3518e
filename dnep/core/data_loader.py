"""Distribution network data loader: spreadsheet ingestion and per-unit conversion."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import (
    DEFAULT_BASE_POWER,
    DEFAULT_BASE_VOLTAGE,
    DEFAULT_MAX_PV_CAPA,
    DEFAULT_MONEY_BASIS,
)
from .network import (
    Conductor,
    Coord,
    Edge,
    Line,
    Network,
    NetworkTopology,
    Node,
    Profile,
    PQDiagram,
    PUBasis,
    PVInstallation,
    Substation,
    User,
    VoltageLimits,
)

logger = logging.getLogger(__name__)

SHEETS = ('bus', 'line', 'conductor')

REQUIRED_COLUMNS = {
    'bus': ['type', 'x', 'y', 'S_G_max_mva'],
    'line': ['from_bus', 'to_bus', 'length_km'],
    'conductor': ['name', 'r_ohm_per_km', 'x_ohm_per_km', 'max_i_ka', 'cost_kdollars_per_km'],
}

SUBSTATION_TYPE = 'substation'


def define_pu_basis(base_power: float = DEFAULT_BASE_POWER,
                    base_voltage: float = DEFAULT_BASE_VOLTAGE) -> PUBasis:
    """Per-unit basis from a base power (MVA) and a base voltage (kV)."""
    if base_power <= 0 or base_voltage <= 0:
        raise ValueError(f"Base power and voltage must be positive, got "
                         f"{base_power} MVA, {base_voltage} kV")
    base_current = base_power / base_voltage       # [kA]
    base_impedance = base_voltage / base_current   # [Ohm]
    return PUBasis(base_power=base_power,
                   base_voltage=base_voltage,
                   base_current=base_current,
                   base_impedance=base_impedance)


def to_pu(value, base: float):
    return value / base


def from_pu(value, base: float):
    return value * base


class DNEPDataLoader:
    """Data loader for a distribution network planning case."""

    def __init__(self, source: str):
        """
        Initialize the data loader.

        ``source`` is either an .xlsx workbook with sheets ``bus``, ``line``
        and ``conductor`` or a directory holding ``bus.csv``, ``line.csv``
        and ``conductor.csv``.
        """
        if not os.path.isabs(source):
            project_root = Path(__file__).resolve().parents[2]
            candidate = project_root / source
            self.source = str(candidate) if candidate.exists() else source
        else:
            self.source = source

        self.buses = None
        self.lines = None
        self.conductors = None

        self.load_data()

    def load_data(self) -> None:
        """Load the three input tables into pandas DataFrames."""
        if not os.path.exists(self.source):
            raise FileNotFoundError(f"Network data not found: {self.source}")

        if os.path.isdir(self.source):
            tables = {}
            for sheet in SHEETS:
                csv_file = os.path.join(self.source, f'{sheet}.csv')
                if not os.path.exists(csv_file):
                    raise FileNotFoundError(f"{sheet.capitalize()} file not found: {csv_file}")
                tables[sheet] = pd.read_csv(csv_file)
        else:
            workbook = pd.ExcelFile(self.source, engine='openpyxl')
            missing = [s for s in SHEETS if s not in workbook.sheet_names]
            if missing:
                raise ValueError(f"Workbook {self.source} is missing sheets {missing}")
            tables = {sheet: workbook.parse(sheet) for sheet in SHEETS}

        for sheet, df in tables.items():
            missing = [c for c in REQUIRED_COLUMNS[sheet] if c not in df.columns]
            if missing:
                raise ValueError(f"[{sheet}] missing required columns: {missing}")

        self.buses = tables['bus'].reset_index(drop=True)
        self.lines = tables['line'].reset_index(drop=True)
        self.conductors = tables['conductor'].reset_index(drop=True)

        logger.info("Loaded %d buses, %d candidate lines, %d conductors from %s",
                    len(self.buses), len(self.lines), len(self.conductors), self.source)

    def get_bus_data(self) -> pd.DataFrame:
        return self.buses

    def get_line_data(self) -> pd.DataFrame:
        return self.lines

    def get_conductor_data(self) -> pd.DataFrame:
        return self.conductors

    def _substation_mask(self) -> pd.Series:
        return self.buses['type'].astype(str).str.strip().str.lower() == SUBSTATION_TYPE

    def get_buses_data(self, v_limits: VoltageLimits, pu_basis: PUBasis,
                       max_pv_capa: float) -> Tuple[List[Node], List[Substation], List[User]]:
        """Build nodes and split buses into substations (first rows) and users."""
        df = self.buses
        is_subs = self._substation_mask().to_numpy()
        n_subs = int(is_subs.sum())
        if not is_subs[:n_subs].all():
            raise ValueError("Substation buses must be listed before user buses in the bus sheet")

        nodes = [Node(i + 1, Coord(float(df.loc[i, 'x']), float(df.loc[i, 'y'])))
                 for i in range(len(df))]

        def optional(column: str, i: int) -> Optional[float]:
            if column not in df.columns or pd.isna(df.loc[i, column]):
                return None
            return float(df.loc[i, column])

        substations = []
        for i in range(n_subs):
            s_init = optional('S_G_init_mva', i)
            substations.append(Substation(
                node=nodes[i],
                v_limits=v_limits,
                s_max=to_pu(float(df.loc[i, 'S_G_max_mva']), pu_basis.base_power),
                s_init=to_pu(s_init, pu_basis.base_power) if s_init is not None else 0.0,
                fixed_cost=optional('fixed_cost_kdollars', i),
                op_cost=optional('op_cost', i),
            ))

        users = [User(nodes[i], v_limits, to_pu(max_pv_capa, pu_basis.base_power))
                 for i in range(n_subs, len(df))]

        logger.debug("Split %d buses into %d substations and %d users",
                     len(nodes), len(substations), len(users))
        return nodes, substations, users

    def get_lines_data(self, nodes: Sequence[Node]) -> Tuple[List[Edge], List[Line]]:
        """Build graph edges and electrical lines; bus references are 1-based rows."""
        df = self.lines
        by_id = {node.id: node for node in nodes}
        edges, lines = [], []
        for l in range(len(df)):
            i, j = int(df.loc[l, 'from_bus']), int(df.loc[l, 'to_bus'])
            if i not in by_id or j not in by_id:
                raise ValueError(f"Line {l + 1} references unknown bus ({i}, {j})")
            edge = Edge(l + 1, by_id[i], by_id[j])
            edges.append(edge)
            lines.append(Line(edge, float(df.loc[l, 'length_km'])))
        return edges, lines

    def get_conductors_data(self, pu_basis: PUBasis, money_basis: float) -> List[Conductor]:
        """Conductor catalogue converted to per unit."""
        if money_basis <= 0:
            raise ValueError(f"Money basis must be positive, got {money_basis}")
        df = self.conductors
        return [
            Conductor(
                name=str(df.loc[k, 'name']),
                r=to_pu(float(df.loc[k, 'r_ohm_per_km']), pu_basis.base_impedance),
                x=to_pu(float(df.loc[k, 'x_ohm_per_km']), pu_basis.base_impedance),
                max_i=to_pu(float(df.loc[k, 'max_i_ka']), pu_basis.base_current),
                cost=to_pu(float(df.loc[k, 'cost_kdollars_per_km']), money_basis),
            )
            for k in range(len(df))
        ]

    def get_system_summary(self) -> Dict[str, Any]:
        """Get a summary of the planning case."""
        n_subs = int(self._substation_mask().sum())
        return {
            'n_buses': len(self.buses),
            'n_substations': n_subs,
            'n_users': len(self.buses) - n_subs,
            'n_lines': len(self.lines),
            'n_conductors': len(self.conductors),
            'total_line_length_km': float(self.lines['length_km'].sum()),
            'total_substation_capacity_mva': float(self.buses['S_G_max_mva'][self._substation_mask()].sum()),
        }


def get_network_data(path: str,
                     voltage_limits: VoltageLimits = VoltageLimits(),
                     max_pv_capa: float = DEFAULT_MAX_PV_CAPA,
                     pu_basis: Optional[PUBasis] = None,
                     money_basis: float = DEFAULT_MONEY_BASIS,
                     ) -> Tuple[Network, NetworkTopology]:
    """
    Read a planning case and build its network and topology.

    Parameters
    ----------
    path : str
        Workbook or CSV directory, see ``DNEPDataLoader``
    voltage_limits : VoltageLimits
        Limits on the bus voltage in pu
    max_pv_capa : float
        PV hosting limit of every user in MW
    pu_basis : PUBasis, optional
        Per-unit basis, ``define_pu_basis()`` when omitted
    money_basis : float
        Divider applied to conductor costs

    Returns
    -------
    tuple
        (Network, NetworkTopology)
    """
    pu_basis = pu_basis or define_pu_basis()
    loader = DNEPDataLoader(path)

    nodes, substations, users = loader.get_buses_data(voltage_limits, pu_basis, max_pv_capa)
    edges, lines = loader.get_lines_data(nodes)
    conductors = loader.get_conductors_data(pu_basis, money_basis)

    network = Network(lines, substations, users, conductors, pu_basis)
    network.validate()
    return network, NetworkTopology(nodes, edges)


def add_load_profiles(network: Network, load_profiles: np.ndarray, delta_t: int,
                      cos_phi: float = 0.9) -> None:
    """Attach one load profile (MW, steps x users) to each user bus."""
    load_profiles = np.asarray(load_profiles, dtype=float)
    if load_profiles.ndim != 2:
        raise ValueError(f"Load profiles must be a 2-D matrix, got shape {load_profiles.shape}")
    if not 0 < cos_phi <= 1:
        raise ValueError(f"Power factor must be in (0, 1], got {cos_phi}")

    nb_users = network.get_nb_loads()
    _, nb_profiles = load_profiles.shape
    if nb_users != nb_profiles:
        raise ValueError(f"Got {nb_profiles} load profiles for {nb_users} users")

    base_power = network.pu_basis.base_power
    for u, user in enumerate(network.load_buses):
        user.load_profile = Profile(to_pu(load_profiles[:, u], base_power), delta_t)
        user.cos_phi = cos_phi
    logger.info("Attached %d load profiles of %d steps (%d min)",
                nb_users, load_profiles.shape[0], delta_t)


def add_pv_profiles(network: Network, pv_profiles: np.ndarray, id_users: Sequence[int],
                    pq_diagram: PQDiagram = PQDiagram(), delta_t: int = 60) -> None:
    """
    Attach PV installations to the listed users.

    ``id_users`` holds 0-based positions in ``network.load_buses``, one per
    column of ``pv_profiles`` (capacity factors).
    """
    pv_profiles = np.asarray(pv_profiles, dtype=float)
    if pv_profiles.ndim != 2:
        raise ValueError(f"PV profiles must be a 2-D matrix, got shape {pv_profiles.shape}")

    nb_users = len(id_users)
    _, nb_profiles = pv_profiles.shape
    if nb_users != nb_profiles:
        raise ValueError(f"Got {nb_profiles} PV profiles for {nb_users} users")

    for index, u in enumerate(id_users):
        if not 0 <= u < network.get_nb_loads():
            raise ValueError(f"PV user index {u} out of range for {network.get_nb_loads()} users")
        profile = Profile(pv_profiles[:, index], delta_t)
        network.load_buses[u].pv_installation = PVInstallation(profile, pq_diagram)
    logger.info("Attached %d PV installations", nb_users)
