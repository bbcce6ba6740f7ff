"""
Two-axis chip classification.

CLASS is the performance tier (Low-Power .. Halo), chosen by best fit of
core count and TDP against each tier's range. GRADE is the market segment,
detected from layout ratios and checked in strict priority order
Military/Aerospace -> Enterprise/Server -> Workstation; anything else is
Consumer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from fabsim.constants import CHIP_CLASS_CRITERIA, CHIP_GRADE_CRITERIA
from fabsim.layout import Die

CHIP_CLASSES = tuple(CHIP_CLASS_CRITERIA)
CHIP_GRADES = tuple(CHIP_GRADE_CRITERIA)
FALLBACK_GRADE = "Consumer"

# Core-count fit dominates; TDP fit breaks ties between overlapping tiers
CORE_FIT_SCORE = 100.0
CORE_MIDPOINT_BONUS = 50.0
CORE_OUTSIDE_PENALTY = 25.0
TDP_FIT_SCORE = 50.0
TDP_MIDPOINT_BONUS = 25.0
TDP_OUTSIDE_PENALTY = 50.0


@dataclass(frozen=True)
class ClassificationMetrics:
    """
    Layout ratios used for grade detection.

    Parameters
    ----------
    cores_per_controller : float
        CPU cores per memory controller (0 without controllers).
    l3_per_core : float
        L3 cache area per CPU core [mm²] (0 without cores).
    power_mgmt_ratio : float
        Power-management area / die area [0, 1].
    max_clock_ratio : float
        Base clock / node maximum clock (1.0 if unknown).
    """
    cores_per_controller: float
    l3_per_core: float
    power_mgmt_ratio: float
    max_clock_ratio: float


@dataclass(frozen=True)
class Classification:
    chip_class: str
    chip_grade: str
    metrics: ClassificationMetrics


def _range_fit(value: float, low: float, high: float, inside: float, bonus: float) -> float:
    half = (high - low) / 2
    closeness = 1 - abs(value - (low + high) / 2) / half if half > 0 else 1.0
    return inside + bonus * closeness


def class_score(cpu_cores: int, tdp: float, limits: Mapping[str, tuple[float, float]]) -> float:
    """
    Fit score of a die against one class tier.

    Inside the core range a tier scores 100 plus up to 50 for being near the
    range midpoint; outside it loses 25 per core of distance. TDP adds up to
    75 inside its range and loses up to 50 per range-width of distance.
    """
    min_cores, max_cores = limits["cores"]
    min_tdp, max_tdp = limits["tdp"]

    if min_cores <= cpu_cores <= max_cores:
        score = _range_fit(cpu_cores, min_cores, max_cores, CORE_FIT_SCORE, CORE_MIDPOINT_BONUS)
    else:
        distance = min_cores - cpu_cores if cpu_cores < min_cores else cpu_cores - max_cores
        score = -CORE_OUTSIDE_PENALTY * distance

    if min_tdp <= tdp <= max_tdp:
        score += _range_fit(tdp, min_tdp, max_tdp, TDP_FIT_SCORE, TDP_MIDPOINT_BONUS)
    else:
        span = max(max_tdp - min_tdp, 1.0)
        distance = min_tdp - tdp if tdp < min_tdp else tdp - max_tdp
        score -= TDP_OUTSIDE_PENALTY * distance / span

    return score


def classify_class(cpu_cores: int, tdp: float) -> str:
    """Best-fitting tier; ties go to the tier listed first."""
    best_class = CHIP_CLASSES[0]
    best_score = float("-inf")
    for name, limits in CHIP_CLASS_CRITERIA.items():
        score = class_score(cpu_cores, tdp, limits)
        if score > best_score:
            best_class, best_score = name, score
    return best_class


def _within(value: float, bounds: tuple[float, float]) -> bool:
    return bounds[0] <= value <= bounds[1]


def grade_matches(
    grade: str,
    metrics: ClassificationMetrics,
    process_node: float,
) -> bool:
    """True if the ratios satisfy every criterion of ``grade``."""
    criteria = CHIP_GRADE_CRITERIA[grade]
    if not (
        _within(metrics.cores_per_controller, criteria["cores_per_controller"])
        and _within(metrics.l3_per_core, criteria["l3_per_core"])
        and _within(metrics.power_mgmt_ratio, criteria["power_mgmt_ratio"])
    ):
        return False
    if "min_process_node" in criteria and process_node < criteria["min_process_node"]:
        return False
    if "max_clock_ratio" in criteria and metrics.max_clock_ratio > criteria["max_clock_ratio"]:
        return False
    return True


def classify_grade(metrics: ClassificationMetrics, process_node: float) -> str:
    """First matching grade in priority order, else Consumer."""
    for grade in CHIP_GRADES:
        if grade == FALLBACK_GRADE:
            break
        if grade_matches(grade, metrics, process_node):
            return grade
    return FALLBACK_GRADE


def classification_metrics(die: Die, clock_ghz: float, max_clock_ghz: float) -> ClassificationMetrics:
    """Compute the grade-detection ratios for a die."""
    cpu_cores = die.count("cpu_core")
    controllers = die.count("mem_ctrl")
    l3_area = sum(c.area for c in die.components_of("l3_cache"))
    power_mgmt_area = sum(c.area for c in die.components_of("power_mgmt"))

    return ClassificationMetrics(
        cores_per_controller=cpu_cores / controllers if controllers > 0 else 0.0,
        l3_per_core=l3_area / cpu_cores if cpu_cores > 0 else 0.0,
        power_mgmt_ratio=power_mgmt_area / die.area,
        max_clock_ratio=clock_ghz / max_clock_ghz if clock_ghz and max_clock_ghz else 1.0,
    )


def classify_chip(die: Die, clock_ghz: float, max_clock_ghz: float, tdp: float) -> Classification:
    """
    Assign CLASS and GRADE to a die.

    Parameters
    ----------
    die : Die
        Die layout.
    clock_ghz : float
        Base clock after throttling [GHz].
    max_clock_ghz : float
        Maximum clock of the node [GHz].
    tdp : float
        Thermal design power [W].
    """
    metrics = classification_metrics(die, clock_ghz, max_clock_ghz)
    return Classification(
        chip_class=classify_class(die.count("cpu_core"), tdp),
        chip_grade=classify_grade(metrics, die.process_node),
        metrics=metrics,
    )
