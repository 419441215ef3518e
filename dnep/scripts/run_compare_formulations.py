"""
Compare the MISOCP relaxation with the exact MINLP on one planning case.

Both formulations are solved on the same network, profiles and steps. The
table reports the objective, its breakdown, the plan and the solve time,
plus the largest voltage gap between the two operating points.

Output:
- <output-dir>/formulation_comparison.csv

Usage:
    python -m dnep.scripts.run_compare_formulations --network case.xlsx \\
        --load-profiles load.csv --steps 4
"""
import os
from typing import List, Optional

import pandas as pd

from dnep.scripts.main import (
    FORMULATIONS,
    build_parser,
    configure_logging,
    load_case,
    load_parameters,
    print_header,
    run_planning,
)


def compare_formulations(argv: Optional[List[str]] = None) -> pd.DataFrame:
    parser = build_parser()
    parser.description = 'Compare DNEP formulations'
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    print_header("DNEP FORMULATION COMPARISON")
    network, _, steps = load_case(args)
    params, solver = load_parameters(args)

    rows, voltages = [], {}
    for formulation in sorted(FORMULATIONS):
        print(f"\n--- {formulation.upper()} ---")
        model, success = run_planning(network, formulation, params, solver, steps)
        if not success:
            rows.append({'formulation': formulation, 'total_cost': None,
                         'investment_cost': None, 'losses_cost': None,
                         'substation_cost': None, 'lines_built': None,
                         'plan': None, 'solve_time': model.solve_time,
                         'termination': model.termination})
            continue

        r = model.get_results()
        voltages[formulation] = r['voltages']
        plan = ';'.join(f"{line['line_id']}:{line['conductor']}" for line in r['lines_built'])
        rows.append({
            'formulation': formulation,
            'total_cost': r['objective_value'],
            'investment_cost': r['investment_cost'],
            'losses_cost': r['losses_cost'],
            'substation_cost': r['substation_cost'],
            'lines_built': len(r['lines_built']),
            'plan': plan,
            'solve_time': r['solve_time'],
            'termination': r['termination'],
        })

    df = pd.DataFrame(rows)

    print("\n" + "=" * 60)
    print("FORMULATION COMPARISON")
    print("=" * 60)
    print(df.to_string(index=False))

    if len(voltages) == 2:
        a, b = (voltages[f] for f in sorted(voltages))
        gap = max(abs(a[key] - b[key]) for key in a)
        print(f"\nLargest voltage gap between formulations: {gap:.5f} pu")
        solved = df.dropna(subset=['total_cost']).set_index('formulation')
        if solved.loc['misocp', 'total_cost'] > solved.loc['minlp', 'total_cost'] + 1e-6:
            print("⚠️  MISOCP objective above the MINLP one: check solver tolerances")

    os.makedirs(args.output_dir, exist_ok=True)
    output_file = os.path.join(args.output_dir, 'formulation_comparison.csv')
    df.to_csv(output_file, index=False)
    print(f"\nResults saved to {output_file}")

    if args.plot:
        from pathlib import Path

        from dnep.analysis.report_plots import plot_formulation_comparison
        plot_formulation_comparison(Path(args.output_dir), Path(args.output_dir) / 'plots')
    return df


if __name__ == '__main__':
    compare_formulations()
