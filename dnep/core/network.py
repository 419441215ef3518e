"""
Network Records for Distribution Network Expansion Planning
===========================================================

Plain data records describing a distribution network planning case:

- Nodes and edges of the candidate graph (``NetworkTopology``)
- Substation and user buses with their voltage and capacity limits
- Candidate lines and the conductor catalogue
- Load and PV time series attached to user buses

All electrical quantities stored here are already expressed in the per-unit
basis carried by the ``Network``. Records are built once by the data loader
and are not modified afterwards, except for attaching profiles.

Bus numbering follows the ``bus`` sheet: ids are 1-based row positions and
substations always come first, so ids ``1..Ns`` are substations and
``Ns+1..N`` are users.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

import networkx as nx
import numpy as np


class Coord(NamedTuple):
    x: float
    y: float


class VoltageLimits(NamedTuple):
    """Bus voltage magnitude limits in pu."""
    v_min: float = 0.95
    v_max: float = 1.05


class PUBasis(NamedTuple):
    """Per-unit basis: MVA, kV, kA and Ohm."""
    base_power: float
    base_voltage: float
    base_current: float
    base_impedance: float


class PQDiagram(NamedTuple):
    """Reactive capability of a PV inverter: |Q| <= max_tan_phi * P."""
    max_tan_phi: float = 0.4843


@dataclass
class Node:
    id: int
    coord: Coord


@dataclass
class Edge:
    id: int
    from_node: Node
    to_node: Node


@dataclass
class Profile:
    """
    Time series attached to a bus.

    Attributes
    ----------
    values : np.ndarray
        One value per time step (pu for loads, capacity factor for PV)
    delta_t : int
        Time step size in minutes
    """
    values: np.ndarray
    delta_t: int

    def __post_init__(self):
        self.values = np.asarray(self.values, dtype=float)
        if self.values.ndim != 1:
            raise ValueError(f"Profile values must be one-dimensional, got shape {self.values.shape}")
        if self.delta_t <= 0:
            raise ValueError(f"Time step must be positive, got {self.delta_t}")

    def __len__(self) -> int:
        return len(self.values)

    @property
    def duration_hours(self) -> float:
        return len(self.values) * self.delta_t / 60.0


@dataclass
class PVInstallation:
    profile: Profile
    pq_diagram: PQDiagram = PQDiagram()


@dataclass
class Substation:
    """
    Substation bus.

    ``s_max`` is the capacity that can be added by expanding the substation,
    ``s_init`` the rating already in place (both pu). Costs left to ``None``
    fall back to the planning parameters.
    """
    node: Node
    v_limits: VoltageLimits
    s_max: float
    s_init: float = 0.0
    fixed_cost: Optional[float] = None
    op_cost: Optional[float] = None

    @property
    def id(self) -> int:
        return self.node.id


@dataclass
class User:
    """Load bus that may host a PV installation."""
    node: Node
    v_limits: VoltageLimits
    max_pv_capa: float
    load_profile: Optional[Profile] = None
    pv_installation: Optional[PVInstallation] = None
    cos_phi: float = 0.9

    @property
    def id(self) -> int:
        return self.node.id

    @property
    def tan_phi(self) -> float:
        return float(np.tan(np.arccos(self.cos_phi)))


Bus = Union[Substation, User]


@dataclass
class Line:
    edge: Edge
    length: float

    @property
    def id(self) -> int:
        return self.edge.id

    @property
    def ends(self) -> Tuple[int, int]:
        return self.edge.from_node.id, self.edge.to_node.id


@dataclass
class Conductor:
    """Conductor catalogue entry: r, x in pu/km, max_i in pu, cost per km."""
    name: str
    r: float
    x: float
    max_i: float
    cost: float


@dataclass
class Network:
    """Electrical network used to build the planning model."""
    lines: List[Line]
    substations: List[Substation]
    load_buses: List[User]
    conductors: List[Conductor]
    pu_basis: PUBasis
    _sending: Dict[int, List[int]] = field(default_factory=dict, init=False, repr=False)
    _receiving: Dict[int, List[int]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._index_lines()

    def _index_lines(self) -> None:
        self._sending = {bus_id: [] for bus_id in self.get_bus_ids()}
        self._receiving = {bus_id: [] for bus_id in self.get_bus_ids()}
        for line in self.lines:
            i, j = line.ends
            self._sending.setdefault(i, []).append(line.id)
            self._receiving.setdefault(j, []).append(line.id)

    def get_nb_buses(self) -> int:
        return len(self.substations) + len(self.load_buses)

    def get_nb_substations(self) -> int:
        return len(self.substations)

    def get_nb_loads(self) -> int:
        return len(self.load_buses)

    def get_nb_lines(self) -> int:
        return len(self.lines)

    def get_nb_conductors(self) -> int:
        return len(self.conductors)

    def get_nb_time_steps(self) -> int:
        """Number of steps shared by all load profiles (0 if none attached)."""
        profiles = [u.load_profile for u in self.load_buses if u.load_profile is not None]
        if not profiles:
            return 0
        lengths = {len(p) for p in profiles}
        steps = {p.delta_t for p in profiles}
        if len(lengths) > 1 or len(steps) > 1:
            raise ValueError(
                f"Load profiles disagree on horizon: lengths {sorted(lengths)}, "
                f"time steps {sorted(steps)} min"
            )
        return lengths.pop()

    def get_delta_t(self) -> Optional[int]:
        for user in self.load_buses:
            if user.load_profile is not None:
                return user.load_profile.delta_t
        return None

    def get_buses(self) -> List[Bus]:
        return [*self.substations, *self.load_buses]

    def get_bus(self, bus_id: int) -> Bus:
        for bus in self.get_buses():
            if bus.id == bus_id:
                return bus
        raise KeyError(f"Unknown bus id: {bus_id}")

    def get_bus_ids(self) -> List[int]:
        return [bus.id for bus in self.get_buses()]

    def get_substation_ids(self) -> List[int]:
        return [s.id for s in self.substations]

    def get_user_ids(self) -> List[int]:
        return [u.id for u in self.load_buses]

    def get_pv_user_ids(self) -> List[int]:
        return [u.id for u in self.load_buses if u.pv_installation is not None]

    def get_line(self, line_id: int) -> Line:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise KeyError(f"Unknown line id: {line_id}")

    def get_line_ends(self) -> Dict[int, Tuple[int, int]]:
        return {line.id: line.ends for line in self.lines}

    def sending_lines(self, bus_id: int) -> List[int]:
        """Ids of the lines whose from-end is ``bus_id``."""
        return list(self._sending.get(bus_id, []))

    def receiving_lines(self, bus_id: int) -> List[int]:
        """Ids of the lines whose to-end is ``bus_id``."""
        return list(self._receiving.get(bus_id, []))

    def validate(self) -> None:
        """Check the structural invariants of the network, raising ValueError."""
        bus_ids = self.get_bus_ids()
        if len(bus_ids) != len(self.substations) + len(self.load_buses):
            raise ValueError("Bus count must equal substation count plus user count")
        if len(set(bus_ids)) != len(bus_ids):
            raise ValueError("Duplicate bus ids in network")
        if bus_ids != list(range(1, len(bus_ids) + 1)):
            raise ValueError("Bus ids must be contiguous from 1 with substations first")
        if not self.substations:
            raise ValueError("Network has no substation")
        if not self.conductors:
            raise ValueError("Network has no conductor")

        known = set(bus_ids)
        line_ids = [line.id for line in self.lines]
        if len(set(line_ids)) != len(line_ids):
            raise ValueError("Duplicate line ids in network")
        for line in self.lines:
            i, j = line.ends
            if i not in known or j not in known:
                raise ValueError(f"Line {line.id} references unknown bus ({i}, {j})")
            if i == j:
                raise ValueError(f"Line {line.id} connects bus {i} to itself")
            if line.length <= 0:
                raise ValueError(f"Line {line.id} has non-positive length {line.length}")

        # Raises on inconsistent horizons
        self.get_nb_time_steps()


@dataclass
class NetworkTopology:
    """Graph view of the candidate network, used for drawing."""
    nodes: List[Node]
    edges: List[Edge]

    def get_nb_nodes(self) -> int:
        return len(self.nodes)

    def get_nb_edges(self) -> int:
        return len(self.edges)

    def to_graph(self) -> nx.DiGraph:
        g = nx.DiGraph()
        for node in self.nodes:
            g.add_node(node.id, pos=(node.coord.x, node.coord.y))
        for e in self.edges:
            g.add_edge(e.from_node.id, e.to_node.id, id=e.id)
        return g

    def positions(self) -> Dict[int, Tuple[float, float]]:
        return {node.id: (node.coord.x, node.coord.y) for node in self.nodes}
