"""
FabSim - Semiconductor Fabrication Simulator

Simulation engine of a chip design and manufacturing economics game:
die layout -> performance, power and classification -> wafer yield ->
batch and foundry economics.

Version: 0.1-dev (Die Designer & Wafer Planner)
"""

import logging

__version__ = "0.1.0-dev"

from fabsim.errors import ValidationError
from fabsim.layout import Component, Die
from fabsim.library import DieLibrary
from fabsim.defects import MonteCarloConfig, simulate_defects
from fabsim.performance import DiePerformanceEngine, calculate_performance
from fabsim.wafer import WaferConfig, WaferPlanner
from fabsim.batch import BatchPlan
from fabsim.market import contract_pricing

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ValidationError",
    "Component",
    "Die",
    "DieLibrary",
    "MonteCarloConfig",
    "simulate_defects",
    "DiePerformanceEngine",
    "calculate_performance",
    "WaferConfig",
    "WaferPlanner",
    "BatchPlan",
    "contract_pricing",
]
