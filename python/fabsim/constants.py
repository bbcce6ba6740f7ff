"""
Process-Node Constant Tables

Immutable lookup tables that drive every FabSim engine. Almost all tables
are keyed by process node in nanometres and are sparse: a node that is not
present resolves to the nearest tabulated node (absolute distance, ties go
to the smaller node). Nothing is interpolated except the foundry capacity
tables, which are keyed by calendar year.

Sources:
    Transistor densities, clocks and voltages are mid-range values for
    shipping products of each generation (AnandTech, TechPowerUp, WikiChip).
    Defect densities are "early production" levels, roughly 1-2 years into
    volume manufacturing.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class ProcessNode:
    """
    Process technology generation.

    Parameters
    ----------
    node : float
        Feature size [nm].
    label : str
        Display label, e.g. "7nm" or "1.5μm".
    year : int
        Year of volume introduction.
    base_defect_density : float
        Early-production defect density [defects/cm²].
    """
    node: float
    label: str
    year: int
    base_defect_density: float


PROCESS_NODES: tuple[ProcessNode, ...] = (
    ProcessNode(10000, "10μm", 1971, 0.05),
    ProcessNode(6000, "6μm", 1974, 0.08),
    ProcessNode(3000, "3μm", 1977, 0.10),
    ProcessNode(1500, "1.5μm", 1982, 0.12),
    ProcessNode(1000, "1μm", 1985, 0.15),
    ProcessNode(800, "800nm", 1989, 0.18),
    ProcessNode(600, "600nm", 1994, 0.20),
    ProcessNode(350, "350nm", 1995, 0.22),
    ProcessNode(250, "250nm", 1997, 0.25),
    ProcessNode(180, "180nm", 1999, 0.15),
    ProcessNode(130, "130nm", 2001, 0.18),
    ProcessNode(90, "90nm", 2004, 0.20),
    ProcessNode(65, "65nm", 2006, 0.25),
    ProcessNode(45, "45nm", 2008, 0.30),
    ProcessNode(32, "32nm", 2010, 0.35),
    ProcessNode(22, "22nm", 2012, 0.40),
    ProcessNode(14, "14nm", 2014, 0.45),
    ProcessNode(12, "12nm", 2017, 0.50),
    ProcessNode(10, "10nm", 2016, 0.55),
    ProcessNode(7, "7nm", 2018, 0.60),
    ProcessNode(5, "5nm", 2020, 0.70),
    ProcessNode(3, "3nm", 2022, 0.80),
)

_PROCESS_NODE_BY_KEY = MappingProxyType({p.node: p for p in PROCESS_NODES})
DEFAULT_PROCESS_NODE = 7

# Million transistors per mm²
TRANSISTOR_DENSITY = MappingProxyType({
    10000: 0.001, 6000: 0.003, 3000: 0.010, 1500: 0.035, 1000: 0.100,
    800: 0.180, 600: 0.350, 350: 0.800, 250: 1.5,
    180: 0.25, 130: 0.54, 90: 1.00, 65: 1.61, 45: 3.39, 32: 4.47,
    22: 8.33, 14: 19.7, 12: 23.7, 10: 72.3, 7: 60.1, 5: 125.8, 3: 175.0,
})
DEFAULT_TRANSISTOR_DENSITY = 60.1

# Relative to the node's base density
COMPONENT_DENSITY_MULTIPLIERS = MappingProxyType({
    "cpu_core": 1.2,
    "gpu_sm": 0.9,
    "l2_cache": 1.5,
    "l3_cache": 1.3,
    "memory_array": 1.6,
    "mem_ctrl": 0.7,
    "io_ctrl": 0.6,
    "interconnect": 0.5,
    "power_mgmt": 0.4,
    "igpu": 0.9,
    "texture_unit": 0.9,
    "display_engine": 0.8,
    "control_logic": 0.8,
    "npu": 1.0,
})
DEFAULT_DENSITY_MULTIPLIER = 1.0

# Fraction of transistors switching per cycle
ACTIVITY_FACTORS = MappingProxyType({
    "cpu_core": 0.40,
    "gpu_sm": 0.45,
    "npu": 0.45,
    "igpu": 0.40,
    "texture_unit": 0.35,
    "mem_ctrl": 0.30,
    "interconnect": 0.30,
    "io_ctrl": 0.25,
    "control_logic": 0.25,
    "display_engine": 0.20,
    "l2_cache": 0.15,
    "l3_cache": 0.10,
    "memory_array": 0.10,
    "power_mgmt": 0.10,
})
DEFAULT_ACTIVITY_FACTOR = 0.25

# GHz
MAX_CLOCK_BY_NODE = MappingProxyType({
    10000: 0.0001, 6000: 0.001, 3000: 0.008, 1500: 0.025, 1000: 0.050,
    800: 0.100, 600: 0.200, 350: 0.450, 250: 0.750,
    180: 1.3, 130: 2.2, 90: 3.2, 65: 3.6, 45: 3.8, 32: 4.0,
    22: 4.2, 14: 4.5, 12: 4.6, 10: 4.8, 7: 5.0, 5: 5.5, 3: 5.8,
})
DEFAULT_MAX_CLOCK = 5.0

# Volts
NODE_VOLTAGE = MappingProxyType({
    10000: 5.0, 6000: 5.0, 3000: 5.0, 1500: 3.3, 1000: 3.3,
    800: 2.5, 600: 2.5, 350: 2.5, 250: 1.8,
    180: 1.5, 130: 1.2, 90: 1.0, 65: 1.0, 45: 1.0, 32: 0.9,
    22: 0.9, 14: 0.85, 12: 0.80, 10: 0.75, 7: 0.72, 5: 0.70, 3: 0.65,
})
DEFAULT_VOLTAGE = 0.75

# Static power, W per million transistors. Flattens below 10nm (FinFET/GAA).
LEAKAGE_PER_M_TRANSISTORS = MappingProxyType({
    10000: 0.000001, 6000: 0.000002, 3000: 0.000005, 1500: 0.00001,
    1000: 0.00002, 800: 0.00005, 600: 0.0001, 350: 0.0002, 250: 0.0005,
    180: 0.0004, 130: 0.0008, 90: 0.0016, 65: 0.0024, 45: 0.0032,
    32: 0.004, 22: 0.005, 14: 0.006, 12: 0.007,
    10: 0.004, 7: 0.003, 5: 0.0025, 3: 0.002,
})
DEFAULT_LEAKAGE = 0.003

# GB/s per memory controller (DDR .. DDR5)
MEMORY_BANDWIDTH_PER_CONTROLLER = MappingProxyType({
    180: 3.2, 130: 6.4, 90: 10.6, 65: 12.8, 45: 17.0, 32: 21.3,
    22: 25.6, 14: 34.1, 12: 38.4, 10: 42.7, 7: 51.2, 5: 68.3, 3: 85.3,
})
DEFAULT_MEMORY_BANDWIDTH = 25.6

# Thousands of dollars per processed wafer
WAFER_COST_BY_NODE = MappingProxyType({
    10000: 0.05, 6000: 0.08, 3000: 0.12, 1500: 0.20, 1000: 0.35,
    800: 0.50, 600: 0.75, 350: 1.0, 250: 1.5,
    180: 2.0, 130: 3.0, 90: 4.5, 65: 6.5, 45: 9.0, 32: 12.0,
    22: 16.0, 14: 20.0, 12: 22.0, 10: 25.0, 7: 30.0, 5: 40.0, 3: 50.0,
})
DEFAULT_WAFER_COST = 10.0

# W/mm² ceilings by product class
THERMAL_LIMITS = MappingProxyType({
    "consumer_cpu": 1.00,
    "server_cpu": 1.20,
    "laptop_cpu": 0.60,
    "gpu": 0.65,
    "mobile_soc": 0.40,
})

# source type -> target type -> (bandwidth GB/s, latency criticality)
INTERCONNECT_REQUIREMENTS = MappingProxyType({
    "cpu_core": MappingProxyType({
        "l2_cache": (500, "critical"),
        "l3_cache": (200, "high"),
        "mem_ctrl": (50, "medium"),
        "interconnect": (100, "high"),
        "power_mgmt": (1, "low"),
    }),
    "gpu_sm": MappingProxyType({
        "l2_cache": (300, "high"),
        "mem_ctrl": (200, "critical"),
        "texture_unit": (400, "critical"),
        "interconnect": (150, "high"),
    }),
    "igpu": MappingProxyType({
        "l2_cache": (200, "high"),
        "mem_ctrl": (150, "critical"),
        "interconnect": (100, "medium"),
    }),
    "l3_cache": MappingProxyType({
        "mem_ctrl": (100, "medium"),
        "interconnect": (50, "medium"),
    }),
})

CRITICALITY_WEIGHTS = MappingProxyType({
    "critical": 1.0,
    "high": 0.5,
    "medium": 0.25,
    "low": 0.1,
})
DEFAULT_CRITICALITY_WEIGHT = 0.1

# Two-axis classification. Class tiers are scored in this order.
CHIP_CLASS_CRITERIA = MappingProxyType({
    "Low-Power": {"cores": (1, 2), "tdp": (0, 15)},
    "Budget": {"cores": (2, 4), "tdp": (15, 80)},
    "Mid-Range": {"cores": (4, 8), "tdp": (60, 125)},
    "High-End": {"cores": (8, 16), "tdp": (100, 200)},
    "Halo": {"cores": (16, 256), "tdp": (180, 1000)},
})

CHIP_GRADE_CRITERIA = MappingProxyType({
    "Military/Aerospace": {
        "cores_per_controller": (2, 6),
        "l3_per_core": (1.0, 4.0),
        "power_mgmt_ratio": (0.12, 0.30),
        "min_process_node": 22,
        "max_clock_ratio": 0.7,
    },
    "Enterprise/Server": {
        "cores_per_controller": (1.5, 4),
        "l3_per_core": (3.0, 8.0),
        "power_mgmt_ratio": (0.03, 0.08),
    },
    "Workstation": {
        "cores_per_controller": (2, 5),
        "l3_per_core": (2.0, 4.0),
        "power_mgmt_ratio": (0.05, 0.10),
    },
    "Consumer": {
        "cores_per_controller": (3, 8),
        "l3_per_core": (0.5, 2.5),
        "power_mgmt_ratio": (0.02, 0.08),
    },
})

EDGE_EXCLUSION_MM = 3.0

PHYSICS = MappingProxyType({
    # transistors per mm² per nm² in the density ≈ k / node² scaling law
    "density_scaling_factor": 2.5e7,
    # fraction of defect density removed at 100% process maturity
    "maturity_reduction_factor": 0.90,
    # defects/cm², floor for any process
    "min_defect_density": 0.01,
})


@dataclass(frozen=True)
class YieldCategory:
    """
    Wafer-level bucket for a die's sampled defect count.

    Functionality decreases linearly from ``functionality_max`` at
    ``min_defects`` to ``functionality_min`` at ``max_defects``.
    """
    key: str
    label: str
    color: str
    min_defects: float
    max_defects: float
    functionality_min: float
    functionality_max: float


PERFECT = YieldCategory("perfect", "Perfect", "#00FF00", 0, 0, 1.0, 1.0)
DIMINISHED = YieldCategory("diminished", "Diminished", "#FFFF00", 1, 2, 0.5, 0.99)
DAMAGED = YieldCategory("damaged", "Damaged", "#FFA500", 3, 5, 0.01, 0.49)
UNUSABLE = YieldCategory("unusable", "Unusable", "#FF0000", 6, math.inf, 0.0, 0.0)

YIELD_CATEGORIES: tuple[YieldCategory, ...] = (PERFECT, DIMINISHED, DAMAGED, UNUSABLE)

# (diameter mm, year of introduction)
WAFER_SIZES: tuple[tuple[float, int], ...] = (
    (25, 1960), (50, 1965), (75, 1970), (100, 1975),
    (150, 1983), (200, 1992), (300, 2002), (450, 2020),
)

# (width mm, height mm, year, tool type)
RETICLE_SIZES: tuple[tuple[float, float, int, str], ...] = (
    (10, 10, 1970, "Contact"),
    (15, 15, 1975, "Contact"),
    (14, 14, 1980, "Stepper"),
    (17, 17, 1985, "Stepper"),
    (20, 20, 1990, "Stepper"),
    (22, 22, 1995, "Stepper"),
    (22, 26, 2000, "Scanner"),
    (26, 33, 2005, "Scanner"),
    (26, 32, 2010, "ArF"),
    (26, 33, 2015, "ArF"),
    (26, 33, 2020, "EUV"),
)


def nearest_key(table: Mapping[float, object], target: float) -> float:
    """
    Find the table key closest to ``target``.

    Parameters
    ----------
    table : Mapping
        Non-empty mapping with numeric keys.
    target : float
        Value to match, typically a process node [nm].

    Returns
    -------
    key : float
        Key minimizing ``abs(key - target)``. Ties resolve to the smaller key.

    Raises
    ------
    ValueError
        If the table is empty.
    """
    if not table:
        raise ValueError("Cannot search an empty table")
    return min(sorted(table), key=lambda k: abs(k - target))


def lookup(table: Mapping[float, V], node: float, default: V) -> V:
    """Value at the nearest tabulated node, or ``default`` for an empty table."""
    if not table:
        return default
    return table[nearest_key(table, node)]


def interpolate_by_year(table: Mapping[int, float], year: float) -> int:
    """
    Linearly interpolate a year-keyed table.

    Values are clamped to the first/last entry outside the tabulated range
    and rounded to the nearest integer.
    """
    if not table:
        return 0
    years = sorted(table)
    if year <= years[0]:
        return int(table[years[0]])
    if year >= years[-1]:
        return int(table[years[-1]])

    for y1, y2 in zip(years, years[1:]):
        if y1 <= year <= y2:
            c1, c2 = table[y1], table[y2]
            ratio = (year - y1) / (y2 - y1)
            return int(math.floor(c1 + (c2 - c1) * ratio + 0.5))
    return 0


def process_node_info(node: float) -> ProcessNode:
    """Process node record at the nearest tabulated node."""
    return _PROCESS_NODE_BY_KEY[nearest_key(_PROCESS_NODE_BY_KEY, node)]
