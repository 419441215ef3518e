"""Generate report plots from the CSV outputs of the sweep scripts."""
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

sns.set_theme(style="whitegrid", context="talk", font_scale=0.9)


def _save(fig, path: Path) -> None:
    """Tight layout and save helper."""
    fig.tight_layout()
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    print(f"Saved {path}")


def plot_cost_sensitivity(results_dir: Path, output_dir: Path) -> None:
    """Plot the cost breakdown and the number of lines built against k_l."""
    df = pd.read_csv(Path(results_dir) / "cost_sensitivity.csv").sort_values("k_l")
    df = df.dropna(subset=["total_cost"])
    if df.empty:
        print("No solved point in cost_sensitivity.csv")
        return

    fig, ax1 = plt.subplots(figsize=(8.5, 4.5))
    k_l = df["k_l"]

    ax1.semilogx(k_l, df["total_cost"], marker="o", linewidth=2.4,
                 color="#1f77b4", label="Total cost")
    ax1.semilogx(k_l, df["investment_cost"], marker="^", linewidth=1.6,
                 linestyle="--", color="#ff7f0e", label="Investment")
    ax1.semilogx(k_l, df["losses_cost"] + df["substation_cost"], marker="v",
                 linewidth=1.6, linestyle="--", color="#9467bd", label="Operation")
    ax1.set_xlabel("Line annuity factor k_l (log scale)")
    ax1.set_ylabel("Annualised cost")
    ax1.set_title("Line cost sweep")
    ax1.grid(True, which="both", axis="x", alpha=0.3)
    ax1.legend(loc="upper left", fontsize=9)

    ax2 = ax1.twinx()
    ax2.scatter(k_l, df["total_length_km"], color="#2ca02c", marker="s", s=50,
                label="Built length", zorder=5)
    ax2.set_ylabel("Built length [km]")
    ax2.set_ylim(0, max(df["total_length_km"].max(), 0) * 1.2 + 0.1)
    ax2.grid(False)
    ax2.legend(loc="upper right", fontsize=9)

    _save(fig, Path(output_dir) / "plot_cost_sensitivity.png")


def plot_formulation_comparison(results_dir: Path, output_dir: Path) -> None:
    """Bar charts of cost and solve time for each formulation."""
    df = pd.read_csv(Path(results_dir) / "formulation_comparison.csv")
    df = df.dropna(subset=["total_cost"])
    if df.empty:
        print("No solved formulation in formulation_comparison.csv")
        return

    fig, axes = plt.subplots(1, 2, figsize=(11, 4.5))
    sns.barplot(data=df, x="formulation", y="total_cost", hue="formulation",
                palette="Blues", legend=False, ax=axes[0])
    axes[0].set_xlabel("")
    axes[0].set_ylabel("Annualised cost")
    axes[0].set_title("Objective")
    for bars in axes[0].containers:
        axes[0].bar_label(bars, fmt="%.2f", padding=3, fontsize=9)

    sns.barplot(data=df, x="formulation", y="solve_time", hue="formulation",
                palette="Oranges", legend=False, ax=axes[1])
    axes[1].set_xlabel("")
    axes[1].set_ylabel("Solve time [s]")
    axes[1].set_title("Solve time")
    for bars in axes[1].containers:
        axes[1].bar_label(bars, fmt="%.1f", padding=3, fontsize=9)

    fig.suptitle("MISOCP relaxation against the exact MINLP", fontsize=13)
    _save(fig, Path(output_dir) / "plot_formulation_comparison.png")


def main() -> None:
    results_dir = Path("results")
    output_dir = results_dir / "plots"

    if (results_dir / "cost_sensitivity.csv").exists():
        plot_cost_sensitivity(results_dir, output_dir)
    if (results_dir / "formulation_comparison.csv").exists():
        plot_formulation_comparison(results_dir, output_dir)


if __name__ == "__main__":
    main()
