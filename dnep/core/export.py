"""Persistence of planning inputs (JSON) and results (CSV)."""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import pandas as pd

from .config import PlanningParameters, SolverOptions, config_to_dict
from .network import Network, Profile

logger = logging.getLogger(__name__)


def _profile_to_dict(profile: Optional[Profile]) -> Optional[Dict[str, Any]]:
    if profile is None:
        return None
    return {'values': profile.values.tolist(), 'delta_t': profile.delta_t}


def network_to_dict(network: Network) -> Dict[str, Any]:
    """JSON-serialisable view of a network, values in per unit."""
    def node(n):
        return {'id': n.id, 'x': n.coord.x, 'y': n.coord.y}

    return {
        'pu_basis': network.pu_basis._asdict(),
        'substations': [
            {
                'node': node(s.node),
                'v_limits': s.v_limits._asdict(),
                's_max': s.s_max,
                's_init': s.s_init,
                'fixed_cost': s.fixed_cost,
                'op_cost': s.op_cost,
            }
            for s in network.substations
        ],
        'load_buses': [
            {
                'node': node(u.node),
                'v_limits': u.v_limits._asdict(),
                'max_pv_capa': u.max_pv_capa,
                'cos_phi': u.cos_phi,
                'load_profile': _profile_to_dict(u.load_profile),
                'pv_installation': None if u.pv_installation is None else {
                    'profile': _profile_to_dict(u.pv_installation.profile),
                    'pq_diagram': u.pv_installation.pq_diagram._asdict(),
                },
            }
            for u in network.load_buses
        ],
        'lines': [
            {'id': line.id, 'from_bus': line.ends[0], 'to_bus': line.ends[1], 'length': line.length}
            for line in network.lines
        ],
        'conductors': [
            {'name': c.name, 'r': c.r, 'x': c.x, 'max_i': c.max_i, 'cost': c.cost}
            for c in network.conductors
        ],
    }


def save_network(network: Network, path: str) -> None:
    """Write the network to a JSON file."""
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(network_to_dict(network), f, indent=2)
    logger.info("Network saved to %s", path)


def save_results(results: Dict[str, Any], output_dir: str = 'results',
                 params: Optional[PlanningParameters] = None,
                 solver: Optional[SolverOptions] = None) -> None:
    """
    Write planning results to ``output_dir``.

    Files: lines_built.csv, substations.csv, bus_voltages.csv and
    summary.json (costs, solve time and, when given, the configuration).
    """
    os.makedirs(output_dir, exist_ok=True)

    pd.DataFrame(results['lines_built'],
                 columns=['line_id', 'from_bus', 'to_bus', 'conductor', 'length_km',
                          'cost', 'max_loading']
                 ).to_csv(os.path.join(output_dir, 'lines_built.csv'), index=False)

    expanded = {sub['bus'] for sub in results['substations_expanded']}
    sub_rows = [
        {'bus': s, 'step': t, 'P': pq[0], 'Q': pq[1], 'expanded': s in expanded}
        for (s, t), pq in results['substation_power'].items()
    ]
    pd.DataFrame(sub_rows, columns=['bus', 'step', 'P', 'Q', 'expanded']).to_csv(
        os.path.join(output_dir, 'substations.csv'), index=False)

    volt_rows = [{'bus': i, 'step': t, 'voltage': v} for (i, t), v in results['voltages'].items()]
    pd.DataFrame(volt_rows, columns=['bus', 'step', 'voltage']).to_csv(
        os.path.join(output_dir, 'bus_voltages.csv'), index=False)

    summary = {
        key: results[key]
        for key in ('formulation', 'objective_value', 'investment_cost', 'losses_cost',
                    'substation_cost', 'solve_time', 'termination')
    }
    summary['n_lines_built'] = len(results['lines_built'])
    summary['n_substations_expanded'] = len(results['substations_expanded'])
    if params is not None and solver is not None:
        summary['config'] = config_to_dict(params, solver)
    with open(os.path.join(output_dir, 'summary.json'), 'w') as f:
        json.dump(summary, f, indent=2)

    logger.info("Results saved to %s", output_dir)
