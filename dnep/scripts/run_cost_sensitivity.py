"""
Cost Sensitivity Analysis for Distribution Network Expansion Planning
=====================================================================

Solves the same planning case for a range of line annuity factors k_l to
see how the line investment weight shifts the plan between cheap, lossy
conductors and expensive, efficient ones.

For each k_l the script records the cost breakdown, the number of lines
built, the total built length and the conductor mix.

Output:
- <output-dir>/cost_sensitivity.csv: one row per k_l value

Usage:
    python -m dnep.scripts.run_cost_sensitivity --network case.xlsx \\
        --load-profiles load.csv --k-l-min 0.01 --k-l-max 1 --num 8
"""
import dataclasses
import os
from typing import List, Optional

import numpy as np
import pandas as pd

from dnep.scripts.main import build_parser, configure_logging, load_case, load_parameters, print_header, run_planning


def run_cost_sensitivity(argv: Optional[List[str]] = None) -> pd.DataFrame:
    """Sweep k_l on a log scale and solve the planning model at each value."""
    parser = build_parser()
    parser.description = 'DNEP line cost sensitivity'
    parser.add_argument('--k-l-min', type=float, default=0.01)
    parser.add_argument('--k-l-max', type=float, default=1.0)
    parser.add_argument('--num', type=int, default=8, help='Number of k_l values')
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    print_header("DNEP COST SENSITIVITY ANALYSIS")
    network, _, steps = load_case(args)
    base_params, solver = load_parameters(args)

    k_l_values = np.logspace(np.log10(args.k_l_min), np.log10(args.k_l_max), num=args.num)
    results = []

    for k_l in k_l_values:
        print(f"\n--- k_l = {k_l:.4f} ---")
        params = dataclasses.replace(base_params, k_l=float(k_l))
        model, success = run_planning(network, args.formulation, params, solver, steps)

        if success:
            r = model.get_results()
            conductors = sorted({line['conductor'] for line in r['lines_built']})
            row = {
                'k_l': k_l,
                'investment_cost': r['investment_cost'],
                'losses_cost': r['losses_cost'],
                'substation_cost': r['substation_cost'],
                'total_cost': r['objective_value'],
                'lines_built': len(r['lines_built']),
                'total_length_km': sum(line['length_km'] for line in r['lines_built']),
                'substations_expanded': len(r['substations_expanded']),
                'conductors': ';'.join(conductors),
                'solve_time': r['solve_time'],
            }
            print(f"  Total: {row['total_cost']:,.3f} (investment {row['investment_cost']:,.3f})")
            print(f"  Lines Built: {row['lines_built']} ({row['total_length_km']:.2f} km), "
                  f"conductors: {row['conductors'] or '-'}")
        else:
            print("  Failed to solve")
            row = {'k_l': k_l, 'investment_cost': None, 'losses_cost': None,
                   'substation_cost': None, 'total_cost': None, 'lines_built': None,
                   'total_length_km': None, 'substations_expanded': None,
                   'conductors': None, 'solve_time': model.solve_time}
        results.append(row)

    print("\n" + "=" * 60)
    print("COST SENSITIVITY SUMMARY")
    print("=" * 60)
    df = pd.DataFrame(results)
    print(df.to_string(index=False))

    os.makedirs(args.output_dir, exist_ok=True)
    output_file = os.path.join(args.output_dir, 'cost_sensitivity.csv')
    df.to_csv(output_file, index=False)
    print(f"\nResults saved to {output_file}")

    if args.plot:
        from pathlib import Path

        from dnep.analysis.report_plots import plot_cost_sensitivity
        plot_cost_sensitivity(Path(args.output_dir), Path(args.output_dir) / 'plots')
    return df


if __name__ == '__main__':
    run_cost_sensitivity()
