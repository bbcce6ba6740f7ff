#!/usr/bin/env python3
"""
FabSim - Die Performance Walkthrough

Builds an 8-core 7nm CPU in the die library and runs it through the
performance engine: transistors -> clocks -> power -> score -> yield ->
classification.

Usage:
    python scripts/run_die_performance.py
"""

import logging
import sys
import time
from pathlib import Path

# Add fabsim to path (for development without pip install)
sys.path.insert(0, str(Path(__file__).parent.parent / 'python'))

from fabsim.library import DieLibrary
from fabsim.defects import MonteCarloConfig, max_die_area_for_yield
from fabsim.performance import DiePerformanceEngine
from fabsim.sizing import default_component_size


def print_header(title: str) -> None:
    """Print a formatted section header."""
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def build_cpu(library: DieLibrary):
    die = library.create_die(width=12, height=10, process_node=7, sku="Demo 8-Core CPU")
    for i in range(8):
        x = (i % 4) * 2.0
        y = (i // 4) * 2.0
        library.add_component(die.id, "cpu_core", x, y, 1.5, 1.5)
        library.add_component(die.id, "l2_cache", x, y + 1.5, 1.5, 0.5)
    library.add_component(die.id, "l3_cache", 0, 4, 8, 3)
    library.add_component(die.id, "mem_ctrl", 8.5, 0, 1.5, 1.5)
    library.add_component(die.id, "mem_ctrl", 8.5, 2, 1.5, 1.5)
    library.add_component(die.id, "interconnect", 0, 7.5, 8, 1)
    library.add_component(die.id, "power_mgmt", 10.5, 0, 1.5, 1.5)
    library.add_component(die.id, "io_ctrl", 8.5, 7, 3, 2)
    return die


def main() -> None:
    """Run the die performance demonstration."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print_header("FabSim - Die Performance Engine")
    print("Layout -> Clocks & Power -> Score -> Yield -> Class/Grade")

    # -------------------------------------------------------------------
    # 1. Layout
    # -------------------------------------------------------------------
    print_header("1. Layout")

    library = DieLibrary()
    die = build_cpu(library)
    print(f"\n{die}")
    for ctype in ("cpu_core", "l2_cache", "l3_cache", "mem_ctrl"):
        w, h = default_component_size(ctype, die.process_node)
        print(f"  {ctype:<12} x{die.count(ctype)}  (default size {w:.1f} x {h:.1f} mm)")

    # -------------------------------------------------------------------
    # 2. Performance
    # -------------------------------------------------------------------
    print_header("2. Performance")

    engine = DiePerformanceEngine(die, MonteCarloConfig(n_trials=1000, seed=42))
    start = time.perf_counter()
    record = engine.run()
    elapsed = time.perf_counter() - start

    summary = record.summary()
    print(f"\nTransistors: {summary['totalTransistors']} M "
          f"({summary['transistorDensity']} MT/mm²)")
    print(f"Clock: {summary['baseClockGHz']} GHz base / {summary['boostClockGHz']} GHz boost "
          f"(node max {summary['maxClockGHz']} GHz)")
    print(f"Power: {summary['tdp']} W TDP, {summary['powerDensity']} W/mm²")
    print(f"IPC: {summary['ipc']}   Score: {summary['performanceScore']}")
    print(f"Layout efficiency: {summary['layoutEfficiency']}%  "
          f"interconnect penalty: {summary['interconnectPenalty']}%")
    print(f"Bandwidth ratio: {summary['bandwidthRatio']}%")

    # -------------------------------------------------------------------
    # 3. Yield & classification
    # -------------------------------------------------------------------
    print_header("3. Yield & Classification")

    sim = record.defect_simulation
    print(f"\nMonte Carlo ({sim.total_simulations} dies): "
          f"{sim.perfect_dies} perfect, {sim.binnable_dies} binnable, {sim.failed_dies} failed")
    print(f"Yield: {summary['yieldPercent']}% (closed form {record.theoretical_yield_percent:.1f}%)")
    print(f"Cost multiplier: {summary['costMultiplier']}x")
    print(f"Class: {record.chip_class}   Grade: {record.chip_grade}")
    print(f"Engine time: {elapsed * 1e3:.1f} ms")

    max_area = max_die_area_for_yield(0.5, 0.6)
    print(f"\nLargest 7nm die for 50% yield: {max_area:.0f} mm²")

    if record.warnings:
        print("\nWarnings:")
        for warning in record.warnings:
            print(f"  - {warning}")

    # -------------------------------------------------------------------
    # 4. Validation checks
    # -------------------------------------------------------------------
    print_header("4. Validation Checks")

    density_pass = record.power_density <= 1.0 + 1e-9
    print(f"\nPower density <= 1.00 W/mm²: {'[PASS]' if density_pass else '[FAIL]'}")
    perf_pass = elapsed < 0.1
    print(f"Engine under 100 ms: {'[PASS]' if perf_pass else '[FAIL]'}")
    print()


if __name__ == "__main__":
    main()
