"""
Visualization tools for DNEP inputs and results
"""
import logging
import os
from typing import Dict, Optional

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import pandas as pd
import seaborn as sns

from dnep.core.network import Network, NetworkTopology

logger = logging.getLogger(__name__)

SUBSTATION_COLOR = '#689BAA'
USER_COLOR = '#C2C5DB'


def _finish(fig, save_path: Optional[str], show: bool, what: str) -> None:
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches='tight')
        logger.info("%s saved to %s", what, save_path)
    if show:
        plt.show()


def plot_network_topology(topology: NetworkTopology, results: Optional[Dict] = None,
                          substation_ids=None, save_path: Optional[str] = 'network_topology.pdf',
                          show: bool = False):
    """
    Plot the candidate network at its bus coordinates.

    Node labels are bus ids and edge labels are line ids. With ``results``
    the built lines are drawn thick and labelled with their conductor, the
    other candidates dashed.
    """
    g = topology.to_graph()
    pos = topology.positions()
    substation_ids = set(substation_ids or [])

    built = {}
    if results and 'lines_built' in results:
        built = {line['line_id']: line['conductor'] for line in results['lines_built']}

    fig, ax = plt.subplots(figsize=(12, 10))

    subs = [n for n in g.nodes if n in substation_ids]
    users = [n for n in g.nodes if n not in substation_ids]
    nx.draw_networkx_nodes(g, pos, nodelist=subs, node_shape='s', node_size=600,
                           node_color=SUBSTATION_COLOR, ax=ax)
    nx.draw_networkx_nodes(g, pos, nodelist=users, node_shape='s', node_size=400,
                           node_color=USER_COLOR, ax=ax)
    nx.draw_networkx_labels(g, pos, labels={n: str(n) for n in g.nodes},
                            font_size=10, font_weight='bold', ax=ax)

    edge_ids = {(u, v): d['id'] for u, v, d in g.edges(data=True)}
    if built:
        on = [e for e, l in edge_ids.items() if l in built]
        off = [e for e, l in edge_ids.items() if l not in built]
        nx.draw_networkx_edges(g, pos, edgelist=off, style='dashed', width=1.0,
                               edge_color='gray', alpha=0.5, arrows=False, ax=ax)
        nx.draw_networkx_edges(g, pos, edgelist=on, width=3.0, edge_color='black',
                               arrows=False, ax=ax)
        labels = {e: f"{l}\n{built[l]}" if l in built else str(l) for e, l in edge_ids.items()}
    else:
        nx.draw_networkx_edges(g, pos, width=1.0, arrows=False, ax=ax)
        labels = {e: str(l) for e, l in edge_ids.items()}
    nx.draw_networkx_edge_labels(g, pos, edge_labels=labels, font_size=8, ax=ax)

    ax.set_title('Distribution Network Topology' + (' – Expansion Plan' if built else ''),
                 fontsize=14)
    ax.axis('off')
    _finish(fig, save_path, show, "Network topology")
    return fig


def _profile_frame(network: Network, kind: str) -> pd.DataFrame:
    rows = []
    base_power = network.pu_basis.base_power
    for user in network.load_buses:
        if kind == 'load':
            profile = user.load_profile
            scale = base_power  # pu -> MW
        else:
            profile = user.pv_installation.profile if user.pv_installation else None
            scale = 1.0
        if profile is None:
            continue
        hours = np.arange(len(profile)) * profile.delta_t / 60.0
        rows.append(pd.DataFrame({'hour': hours, 'value': profile.values * scale,
                                  'user': f"Bus {user.id}"}))
    if not rows:
        return pd.DataFrame(columns=['hour', 'value', 'user'])
    return pd.concat(rows, ignore_index=True)


def plot_load_profiles(network: Network, save_path: Optional[str] = None, show: bool = False):
    """Plot the load profile of every user in MW."""
    df = _profile_frame(network, 'load')
    if df.empty:
        logger.warning("No load profile to plot")
        return None

    fig, ax = plt.subplots(figsize=(10, 5))
    sns.lineplot(data=df, x='hour', y='value', hue='user', ax=ax, linewidth=1.5)
    ax.set_xlabel('Time [h]')
    ax.set_ylabel('Load [MW]')
    ax.set_title('User Load Profiles')
    _finish(fig, save_path, show, "Load profiles")
    return fig


def plot_pv_profiles(network: Network, save_path: Optional[str] = None, show: bool = False):
    """Plot the PV capacity factor of every PV installation."""
    df = _profile_frame(network, 'pv')
    if df.empty:
        logger.warning("No PV profile to plot")
        return None

    fig, ax = plt.subplots(figsize=(10, 5))
    sns.lineplot(data=df, x='hour', y='value', hue='user', ax=ax, linewidth=1.5)
    ax.set_xlabel('Time [h]')
    ax.set_ylabel('Capacity factor [-]')
    ax.set_ylim(0, 1.05)
    ax.set_title('PV Production Profiles')
    _finish(fig, save_path, show, "PV profiles")
    return fig


def plot_voltage_profile(results: Dict, network: Network, save_path: Optional[str] = None,
                         show: bool = False):
    """Plot the min/max voltage of each bus over the modelled steps."""
    if not results or not results.get('voltages'):
        logger.warning("No voltage results to plot")
        return None

    df = pd.DataFrame([{'bus': i, 'step': t, 'voltage': v}
                       for (i, t), v in results['voltages'].items()])
    stats = df.groupby('bus')['voltage'].agg(['min', 'max']).reset_index()

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.vlines(stats['bus'], stats['min'], stats['max'], color=SUBSTATION_COLOR, linewidth=4)
    ax.scatter(stats['bus'], stats['min'], color='#1E3A5F', zorder=3, label='Min')
    ax.scatter(stats['bus'], stats['max'], color='#D9534F', zorder=3, label='Max')

    buses = network.get_buses()
    ax.axhline(min(b.v_limits.v_min for b in buses), color='black', linestyle='--', linewidth=1)
    ax.axhline(max(b.v_limits.v_max for b in buses), color='black', linestyle='--', linewidth=1)
    ax.set_xlabel('Bus')
    ax.set_ylabel('Voltage [pu]')
    ax.set_xticks(stats['bus'])
    ax.set_title('Bus Voltage Range')
    ax.legend()
    _finish(fig, save_path, show, "Voltage profile")
    return fig


def create_results_report(network: Network, topology: NetworkTopology, results: Dict,
                          output_dir: str = 'results') -> None:
    """Write every plot for a solved case into ``output_dir``."""
    os.makedirs(output_dir, exist_ok=True)

    print(f"\nGenerating visualizations in '{output_dir}/' directory...")
    subs = network.get_substation_ids()
    plot_network_topology(topology, substation_ids=subs,
                          save_path=f'{output_dir}/network_topology.pdf')
    plot_network_topology(topology, results, substation_ids=subs,
                          save_path=f'{output_dir}/network_expansion.pdf')
    plot_load_profiles(network, save_path=f'{output_dir}/load_profiles.png')
    if network.get_pv_user_ids():
        plot_pv_profiles(network, save_path=f'{output_dir}/pv_profiles.png')
    plot_voltage_profile(results, network, save_path=f'{output_dir}/voltages.png')
    plt.close('all')

    print(f"All visualizations saved to '{output_dir}/' directory")
