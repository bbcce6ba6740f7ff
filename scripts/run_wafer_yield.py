#!/usr/bin/env python3
"""
FabSim - Wafer Yield & Batch Economics Walkthrough

Tiles a die across a wafer, samples defects, compares the sampled category
breakdown with the closed-form Poisson probabilities, then prices a batch
and a foundry contract.

Usage:
    python scripts/run_wafer_yield.py
"""

import logging
import sys
import time
from pathlib import Path

import numpy as np

# Add fabsim to path (for development without pip install)
sys.path.insert(0, str(Path(__file__).parent.parent / 'python'))

from fabsim.batch import BatchPlan
from fabsim.layout import Die
from fabsim.market import available_foundries, contract_pricing, market_conditions
from fabsim.wafer import WaferConfig, WaferPlanner, expected_breakdown


def print_header(title: str) -> None:
    """Print a formatted section header."""
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def main() -> None:
    """Run the wafer yield demonstration."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print_header("FabSim - Wafer Planner")
    print("Grid placement -> Edge exclusion -> Poisson defects -> Yield")

    # -------------------------------------------------------------------
    # 1. Wafer map
    # -------------------------------------------------------------------
    print_header("1. 300mm wafer, 10 x 10 mm die, 14nm @ 50% maturity")

    config = WaferConfig(seed=42)
    start = time.perf_counter()
    result = WaferPlanner(config).run()
    elapsed = time.perf_counter() - start

    excluded = sum(d.in_edge_exclusion for d in result.dies)
    print(f"\n{result}")
    print(f"  Edge exclusion dies: {excluded}")
    print(f"  Defect density: {result.effective_defect_density:.3f} /cm²")
    print(f"  Expected defects per die: {result.expected_defects:.3f}")
    print(f"  Transistors per die: {result.transistors_per_die:.0f} M")
    print(f"  Time: {elapsed * 1e3:.1f} ms")

    # -------------------------------------------------------------------
    # 2. Sampled vs closed form
    # -------------------------------------------------------------------
    print_header("2. Sampled vs Closed-Form Breakdown (usable area)")

    usable = result.total_dies - excluded
    counts = np.bincount(
        [min(d.defect_count, 6) for d in result.dies if not d.in_edge_exclusion],
        minlength=7,
    )
    sampled = {
        "perfect": counts[0],
        "diminished": counts[1:3].sum(),
        "damaged": counts[3:6].sum(),
        "unusable": counts[6],
    }
    expected = expected_breakdown(result.expected_defects)
    print(f"\n  {'category':<12}{'sampled':>10}{'expected':>10}")
    for key, probability in expected.items():
        print(f"  {key:<12}{sampled[key] / usable:>10.3f}{probability:>10.3f}")

    # -------------------------------------------------------------------
    # 3. Batch plan
    # -------------------------------------------------------------------
    print_header("3. Batch Plan (7nm, 26 x 33 mm reticle)")

    plan = BatchPlan.from_die(Die(10, 10, process_node=7, sku="Demo Die"), name="Demo Batch")
    print(f"\n{plan}")
    print(f"  Reticle shots per wafer: {plan.metrics.reticle_shots_per_wafer}")
    for stage, value in plan.yields.items():
        print(f"  {stage:<10} yield {value * 100:5.1f}%   "
              f"${plan.cost_per_good_die(stage):,.2f} per good die")

    # -------------------------------------------------------------------
    # 4. Foundry market
    # -------------------------------------------------------------------
    print_header("4. Foundry Contracts (2020, 7nm)")

    rng = np.random.default_rng(7)
    for foundry in available_foundries(2020, 7):
        quote = contract_pricing(foundry, "long-term", 7, 1000, 52)
        conditions = market_conditions(foundry, 2020, rng)
        print(f"\n{foundry.name}")
        print(f"  ${quote.price_per_wafer:,}/wafer (-{quote.discount:.0%}), "
              f"total ${quote.total_value:,}, deposit ${quote.deposit:,.0f}")
        print(f"  Lead time {quote.lead_time_weeks} weeks, "
              f"utilization {conditions.utilization:.0%}, "
              f"{conditions.available_capacity:,} wafers/week free")
    print()


if __name__ == "__main__":
    main()
