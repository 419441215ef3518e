"""
Pre-solve feasibility checks for a planning case.

These checks explain the most common reasons a DNEP model comes back
infeasible: too few candidate lines, users that no candidate path connects to
a substation, or demand that exceeds what substations and conductors can
carry.
"""
from typing import List, Optional, Sequence

import networkx as nx
import numpy as np

from dnep.core.network import Network


def _peak_demand(network: Network, steps: Optional[Sequence[int]]) -> np.ndarray:
    """Apparent power demand of each user (rows) per step (columns), pu."""
    rows = []
    for user in network.load_buses:
        if user.load_profile is None:
            rows.append(np.zeros(1))
            continue
        p = user.load_profile.values
        if steps is not None:
            p = p[list(steps)]
        rows.append(p / user.cos_phi)
    horizon = max(len(r) for r in rows) if rows else 0
    return np.array([np.resize(r, horizon) for r in rows]) if rows else np.zeros((0, 0))


def check_feasibility(network: Network, steps: Optional[Sequence[int]] = None) -> List[str]:
    """Return human-readable issues found in the case (empty list when none)."""
    issues = []
    n_buses = network.get_nb_buses()
    n_subs = network.get_nb_substations()

    # Radiality needs one line per user
    required = n_buses - n_subs
    if network.get_nb_lines() < required:
        issues.append(f"Only {network.get_nb_lines()} candidate lines for {required} users: "
                      f"a radial network needs one line per user")

    # Every user must be reachable from a substation
    g = nx.Graph()
    g.add_nodes_from(network.get_bus_ids())
    g.add_edges_from(line.ends for line in network.lines)
    reachable = set()
    for s in network.get_substation_ids():
        reachable |= nx.node_connected_component(g, s)
    isolated = sorted(set(network.get_user_ids()) - reachable)
    if isolated:
        issues.append(f"Users not connected to any substation by candidate lines: {isolated}")

    demand = _peak_demand(network, steps)
    if demand.size:
        pv = np.zeros(demand.shape[1])
        for user in network.load_buses:
            if user.pv_installation is not None:
                profile = user.pv_installation.profile.values
                if steps is not None:
                    profile = profile[list(steps)]
                pv += user.max_pv_capa * np.resize(profile, demand.shape[1])

        # Substation capacity against the peak net demand
        net_demand = demand.sum(axis=0) - pv
        capacity = sum(s.s_init + s.s_max for s in network.substations)
        peak = float(net_demand.max())
        if peak > capacity:
            issues.append(f"Peak net demand {peak:.3f} pu exceeds total substation "
                          f"capacity {capacity:.3f} pu")

        # A single user above every conductor rating cannot be supplied
        if network.conductors:
            best = max(c.max_i for c in network.conductors)
            for user, row in zip(network.load_buses, demand):
                # |S| = |V| |I| with |V| at its lower limit
                limit = best * user.v_limits.v_min
                if row.max() > limit:
                    issues.append(f"User {user.id} peak demand {row.max():.3f} pu exceeds the "
                                  f"largest conductor rating ({limit:.3f} pu at V_min)")

    return issues


def print_diagnostics(network: Network, steps: Optional[Sequence[int]] = None) -> List[str]:
    """Print the feasibility checks in a report block and return the issues."""
    issues = check_feasibility(network, steps)

    print(f"\n{'=' * 60}")
    print("Feasibility Diagnostics")
    print(f"{'=' * 60}")
    print(f"  Buses: {network.get_nb_buses()} "
          f"({network.get_nb_substations()} substations, {network.get_nb_loads()} users)")
    print(f"  Candidate lines: {network.get_nb_lines()}, conductors: {network.get_nb_conductors()}")
    if not issues:
        print("  No structural issue found")
    for issue in issues:
        print(f"  ⚠️  {issue}")
    return issues
