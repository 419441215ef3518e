#!/usr/bin/env python3
"""
Distribution Network Expansion Planning - Command Line Interface
================================================================

Reads a planning case (buses, candidate lines, conductors), draws one daily
load profile per user from a profile library, optionally places PV on a
share of the users, then solves the expansion plan with the MISOCP
relaxation or the exact MINLP.

Usage:
    dnep --network data/case_6bus.xlsx --load-profiles data/profiles/load.csv
    dnep --network data/case_6bus.xlsx --load-profiles data/profiles/load.csv \\
         --pv-profiles data/profiles/pv.csv --pv-share 0.5 --formulation minlp
    dnep ... --steps 4 --step-method kmeans --plot --output-dir results/run1
"""

import argparse
import logging
import os
import sys
from typing import List, Optional, Tuple

from dnep.analysis.diagnostics import print_diagnostics
from dnep.core.config import (
    DEFAULT_BASE_POWER,
    DEFAULT_BASE_VOLTAGE,
    DEFAULT_MAX_PV_CAPA,
    DEFAULT_MONEY_BASIS,
    PlanningParameters,
    SolverOptions,
    load_config,
)
from dnep.core.data_loader import add_load_profiles, add_pv_profiles, define_pu_basis, get_network_data
from dnep.core.dnep_model import DNEP
from dnep.core.export import save_results
from dnep.core.minlp import DNEPMINLP
from dnep.core.misocp import DNEPMISOCP
from dnep.core.network import Network, NetworkTopology, PQDiagram, VoltageLimits
from dnep.core.profiles import ProfileLoader, build_profiles, process_time_steps, select_representative_steps

logger = logging.getLogger(__name__)

FORMULATIONS = {
    'misocp': DNEPMISOCP,
    'minlp': DNEPMINLP,
}


def print_header(title: str) -> None:
    """Print a formatted header."""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Distribution Network Expansion Planning',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  dnep --network case.xlsx --load-profiles load.csv
  dnep --network case.xlsx --load-profiles load.csv --pv-profiles pv.csv --pv-share 0.3
  dnep --network case.xlsx --load-profiles load.csv --formulation minlp --time-limit 600
        """
    )

    data = parser.add_argument_group('case')
    data.add_argument('--network', required=True,
                      help='Workbook (.xlsx) or directory of CSV files with bus, line and conductor tables')
    data.add_argument('--load-profiles', required=True,
                      help='CSV library of daily load profiles in kW, one per column')
    data.add_argument('--pv-profiles', default=None,
                      help='CSV library of daily PV capacity factors, one per column')
    data.add_argument('--pv-share', type=float, default=0.0,
                      help='Share of users hosting a PV installation (default: 0)')
    data.add_argument('--delta-t', type=int, default=15,
                      help='Time step of the profile libraries in minutes (default: 15)')
    data.add_argument('--time-step', type=int, default=60,
                      help='Time step of the planning model in minutes (default: 60)')
    data.add_argument('--steps', type=int, default=None,
                      help='Number of representative steps to model (default: all)')
    data.add_argument('--step-method', choices=['peak_avg_low', 'kmeans', 'all'],
                      default='peak_avg_low', help='Representative step selection')
    data.add_argument('--cos-phi', type=float, default=0.9, help='Power factor of the loads')
    data.add_argument('--seed', type=int, default=None, help='Seed of the profile draw')

    basis = parser.add_argument_group('per-unit basis')
    basis.add_argument('--base-power', type=float, default=DEFAULT_BASE_POWER, help='MVA')
    basis.add_argument('--base-voltage', type=float, default=DEFAULT_BASE_VOLTAGE, help='kV')
    basis.add_argument('--money-basis', type=float, default=DEFAULT_MONEY_BASIS)
    basis.add_argument('--max-pv-capa', type=float, default=DEFAULT_MAX_PV_CAPA,
                       help='PV hosting limit per user in MW')
    basis.add_argument('--v-min', type=float, default=0.95)
    basis.add_argument('--v-max', type=float, default=1.05)

    model = parser.add_argument_group('model')
    model.add_argument('--formulation', choices=sorted(FORMULATIONS), default='misocp')
    model.add_argument('--config', default=None,
                       help='JSON file with "planning" and "solver" sections')
    model.add_argument('--solver', default=None, help='Pyomo solver name (default: gurobi)')
    model.add_argument('--time-limit', type=float, default=None, help='Solver time limit in seconds')
    model.add_argument('--tee', action='store_true', help='Stream the solver log')

    out = parser.add_argument_group('output')
    out.add_argument('--output-dir', default='results')
    out.add_argument('--plot', action='store_true', help='Save plots to the output directory')
    out.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def load_case(args) -> Tuple[Network, NetworkTopology, Optional[List[int]]]:
    """Build the network with profiles attached and select the modelled steps."""
    pu_basis = define_pu_basis(args.base_power, args.base_voltage)
    network, topology = get_network_data(
        args.network,
        voltage_limits=VoltageLimits(args.v_min, args.v_max),
        max_pv_capa=args.max_pv_capa,
        pu_basis=pu_basis,
        money_basis=args.money_basis,
    )

    loader = ProfileLoader('.')
    load_library = loader.load_load_library(os.path.abspath(args.load_profiles))
    pv_library = loader.load_pv_library(os.path.abspath(args.pv_profiles)) if args.pv_profiles else None

    load, pv, id_pv_users = build_profiles(load_library, pv_library, network.get_nb_loads(),
                                           pv_share=args.pv_share, seed=args.seed)
    load = process_time_steps(load, args.delta_t, args.time_step)
    add_load_profiles(network, load, args.time_step, cos_phi=args.cos_phi)
    if id_pv_users:
        pv = process_time_steps(pv, args.delta_t, args.time_step)
        add_pv_profiles(network, pv, id_pv_users, PQDiagram(), args.time_step)

    steps = None
    if args.steps is not None:
        steps = select_representative_steps(load, args.steps, args.step_method)
        logger.info("Modelling %d of %d steps: %s", len(steps), load.shape[0], steps)
    return network, topology, steps


def load_parameters(args) -> Tuple[PlanningParameters, SolverOptions]:
    """Config file first, then command line overrides."""
    if args.config:
        params, solver = load_config(args.config)
    else:
        params, solver = PlanningParameters(), SolverOptions()
    if args.solver is not None:
        solver.solver = args.solver
    if args.time_limit is not None:
        solver.time_limit = args.time_limit
    if args.tee:
        solver.tee = True
    return params, solver


def run_planning(network: Network, formulation: str, params: PlanningParameters,
                 solver: SolverOptions, steps: Optional[List[int]] = None) -> Tuple[DNEP, bool]:
    """Build and solve one planning model; returns the model and the solve status."""
    model = FORMULATIONS[formulation](network, params, steps=steps)
    model.build_model()
    return model, model.solve(solver)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(levelname)s | %(message)s")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    print_header(f"DNEP {args.formulation.upper()}")
    network, topology, steps = load_case(args)
    params, solver = load_parameters(args)

    model, success = run_planning(network, args.formulation, params, solver, steps)
    if not success:
        print_diagnostics(network, steps)
        return 1

    model.print_summary()
    results = model.get_results()
    save_results(results, args.output_dir, params, solver)
    print(f"\nResults saved to {args.output_dir}/")

    if args.plot:
        from dnep.visualize import create_results_report
        create_results_report(network, topology, results, args.output_dir)
    return 0


if __name__ == '__main__':
    sys.exit(main())
