"""
Die Performance Engine

Turns a die layout into clocks, power, IPC, layout efficiency, a
performance score, manufacturing yield and a market classification.

Pipeline:
    1. Transistors  N = Σ area · density(node) · multiplier(type)       [MT]
    2. Interconnect penalty from component distances
    3. Base clock   f = f_max · 0.90 · core_penalty · layout_bonus · core_scaling
    4. Power        P_dyn = Σ (N_i / 1000) · 10 · (V / 0.75)² · f · activity_i
                    P_leak = N · leakage(node)
    5. Thermal      if P / A > ceiling: f, P *= ceiling / (P / A), power is
                    recomputed once at the throttled clock (single pass)
    6. Boost        min(f_max, 1.15 · f)
    7. IPC          4.0 + min(0.5, L2_eff/10 · 0.1) + min(0.3, L3_eff/50 · 0.1)
    8. Efficiency   clustering, bandwidth, die size, utilization
    9. Score        round((MT_perf + GPU_perf) · layout · bw · size · util)
   10. Yield        Monte Carlo defect simulation (fabsim.defects)
   11. Class/grade  fabsim.classification

This is an empirical approximation chain tuned for gameplay, not a circuit,
timing or thermal solver. Every division by a component count is guarded;
a die without components yields a zero score rather than an error.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from fabsim.classification import Classification, ClassificationMetrics, classify_chip
from fabsim.constants import (
    ACTIVITY_FACTORS,
    COMPONENT_DENSITY_MULTIPLIERS,
    CRITICALITY_WEIGHTS,
    DEFAULT_ACTIVITY_FACTOR,
    DEFAULT_CRITICALITY_WEIGHT,
    DEFAULT_DENSITY_MULTIPLIER,
    DEFAULT_LEAKAGE,
    DEFAULT_MAX_CLOCK,
    DEFAULT_MEMORY_BANDWIDTH,
    DEFAULT_TRANSISTOR_DENSITY,
    DEFAULT_VOLTAGE,
    INTERCONNECT_REQUIREMENTS,
    LEAKAGE_PER_M_TRANSISTORS,
    MAX_CLOCK_BY_NODE,
    MEMORY_BANDWIDTH_PER_CONTROLLER,
    NODE_VOLTAGE,
    THERMAL_LIMITS,
    TRANSISTOR_DENSITY,
    lookup,
    process_node_info,
)
from fabsim.defects import (
    DefectSimulationResult,
    MonteCarloConfig,
    TheoreticalYield,
    cost_multiplier,
    die_theoretical_yield,
    simulate_defects,
)
from fabsim.errors import ValidationError
from fabsim.layout import Component, Die, die_stats, missing_requirements
from fabsim.sizing import size_scaling

logger = logging.getLogger(__name__)

BASE_CLOCK_FRACTION = 0.90
BOOST_FACTOR = 1.15
# W per billion transistors at 1 GHz and 0.75 V
DYNAMIC_POWER_PER_B_TRANSISTORS = 10.0
REFERENCE_VOLTAGE = 0.75
BASE_IPC = 4.0
OPTIMAL_DIE_AREA = 200.0  # mm²
MEMORY_BOTTLENECK_THRESHOLD = 0.8
CPU_CORE_BANDWIDTH_DEMAND = 15.0  # GB/s, sustained
GPU_CORE_BANDWIDTH_DEMAND = 50.0  # GB/s, sustained
NO_CONTROLLER_BANDWIDTH_RATIO = 0.5
PARALLEL_EFFICIENCY = 0.95


@dataclass(frozen=True)
class ThermalConfig:
    """
    Thermal ceiling used for throttling.

    Parameters
    ----------
    limit_class : str
        Key into ``THERMAL_LIMITS``. Default: "consumer_cpu" (1.00 W/mm²).
    """
    limit_class: str = "consumer_cpu"

    def __post_init__(self) -> None:
        if self.limit_class not in THERMAL_LIMITS:
            raise ValidationError(
                f"Unknown thermal limit class {self.limit_class!r}, "
                f"expected one of {sorted(THERMAL_LIMITS)}"
            )

    @property
    def max_power_density(self) -> float:
        """Ceiling [W/mm²]."""
        return THERMAL_LIMITS[self.limit_class]


@dataclass(frozen=True)
class PowerBreakdown:
    """
    Power at a given clock.

    Parameters
    ----------
    dynamic_power : float
        Switching power [W].
    leakage_power : float
        Static power [W].
    voltage : float
        Supply voltage of the node [V].
    """
    dynamic_power: float
    leakage_power: float
    voltage: float

    @property
    def total(self) -> float:
        """Dynamic + leakage [W]."""
        return self.dynamic_power + self.leakage_power


@dataclass(frozen=True)
class ThermalCheck:
    """
    Outcome of comparing power density to the thermal ceiling.

    Parameters
    ----------
    overheated : bool
        True if the density exceeded the ceiling.
    throttle_ratio : float
        ceiling / density when overheated, else 1.0.
    power_density : float
        Density before throttling [W/mm²].
    max_density : float
        Ceiling [W/mm²].
    """
    overheated: bool
    throttle_ratio: float
    power_density: float
    max_density: float

    @property
    def warning(self) -> Optional[str]:
        if not self.overheated:
            return None
        return (
            f"Power density {self.power_density:.2f} W/mm² exceeds "
            f"{self.max_density:.2f} W/mm² limit"
        )


@dataclass(frozen=True)
class PerformanceRecord:
    """
    Complete output of the die performance engine.

    Clocks are in GHz, power in W, areas in mm², transistor counts in
    millions. Efficiency factors are multipliers (1.0 = neutral) except
    ``interconnect_penalty`` which is a fraction subtracted from 1.
    """
    process_node: float
    process_label: str
    process_year: int
    # Transistors
    transistor_density: float
    total_transistors: float
    # Clocks
    base_clock_ghz: float
    boost_clock_ghz: float
    max_clock_ghz: float
    # Power
    tdp: float
    power_density: float
    voltage: float
    dynamic_power: float
    leakage_power: float
    # Performance
    performance_score: int
    ipc: float
    single_thread_perf: float
    multi_thread_perf: float
    gpu_perf: float
    # Efficiency factors
    layout_efficiency: float
    interconnect_penalty: float
    clustering_bonus: float
    bandwidth_ratio: float
    die_size_factor: float
    utilization_factor: float
    # Manufacturing
    yield_percent: float
    theoretical_yield_percent: float
    cost_multiplier: float
    defect_simulation: DefectSimulationResult
    # Classification
    chip_class: str
    chip_grade: str
    classification_metrics: ClassificationMetrics
    # Warnings
    thermal_throttled: bool
    thermal_warning: Optional[str]
    memory_bottleneck: bool
    warnings: tuple[str, ...] = field(default_factory=tuple)
    # Counts
    cpu_cores: int = 0
    gpu_cores: int = 0

    def summary(self) -> dict[str, Any]:
        """Display values: rounded numbers and percentages."""
        m = self.classification_metrics
        return {
            "processNode": self.process_label,
            "processYear": self.process_year,
            "transistorDensity": round(self.transistor_density, 1),
            "totalTransistors": round(self.total_transistors, 1),
            "baseClockGHz": round(self.base_clock_ghz, 2),
            "boostClockGHz": round(self.boost_clock_ghz, 2),
            "maxClockGHz": round(self.max_clock_ghz, 2),
            "tdp": round(self.tdp),
            "powerDensity": round(self.power_density, 2),
            "voltage": round(self.voltage, 2),
            "dynamicPower": round(self.dynamic_power),
            "leakagePower": round(self.leakage_power),
            "performanceScore": self.performance_score,
            "ipc": round(self.ipc, 2),
            "singleThreadPerf": round(self.single_thread_perf),
            "layoutEfficiency": round(self.layout_efficiency * 100, 1),
            "interconnectPenalty": round(self.interconnect_penalty * 100, 1),
            "clusteringBonus": round((self.clustering_bonus - 1.0) * 100, 1),
            "bandwidthRatio": round(self.bandwidth_ratio * 100, 1),
            "dieSizeFactor": round(self.die_size_factor * 100, 1),
            "utilizationFactor": round(self.utilization_factor * 100, 1),
            "yieldPercent": round(self.yield_percent, 1),
            "costMultiplier": round(self.cost_multiplier, 2),
            "chipClass": self.chip_class,
            "chipGrade": self.chip_grade,
            "classificationMetrics": {
                "coresPerController": round(m.cores_per_controller, 2),
                "l3PerCore": round(m.l3_per_core, 2),
                "powerMgmtRatio": round(m.power_mgmt_ratio * 100, 2),
                "maxClockRatio": round(m.max_clock_ratio * 100, 1),
            },
            "thermalWarning": self.thermal_warning,
            "memoryBottleneck": self.memory_bottleneck,
            "warnings": list(self.warnings),
            "cpuCores": self.cpu_cores,
            "gpuCores": self.gpu_cores,
        }


def center_distance(a: Component, b: Component) -> float:
    """Distance between component centers [mm]."""
    (ax, ay), (bx, by) = a.center, b.center
    return math.hypot(bx - ax, by - ay)


class DiePerformanceEngine:
    """
    Performance, power, yield and classification for one die design.

    The engine reads the die and never modifies it. Each ``run()`` is a full
    recomputation; nothing is cached between calls.

    Parameters
    ----------
    die : Die
        Die layout.
    mc_config : MonteCarloConfig, optional
        Defect simulation settings. Uses defaults if not provided.
    thermal : ThermalConfig, optional
        Thermal ceiling. Uses the consumer CPU limit if not provided.
    rng : numpy.random.Generator, optional
        Random source for the defect simulation; overrides ``mc_config.seed``.

    Examples
    --------
    >>> from fabsim.layout import Component, Die
    >>> die = Die(width=10, height=10, process_node=7, components=[
    ...     Component("cpu_core", "CPU Core 0", 0, 0, 3, 3),
    ...     Component("l2_cache", "L2 Cache 0", 3, 0, 2.5, 2.5),
    ... ])
    >>> record = DiePerformanceEngine(die, MonteCarloConfig(seed=1)).run()
    >>> print(record.chip_class, record.performance_score)
    """

    def __init__(
        self,
        die: Die,
        mc_config: Optional[MonteCarloConfig] = None,
        thermal: Optional[ThermalConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if not isinstance(die, Die):
            raise ValidationError(f"Expected a Die, got {type(die).__name__}")
        self.die = die
        self.mc_config = mc_config if mc_config is not None else MonteCarloConfig()
        self.thermal = thermal if thermal is not None else ThermalConfig()
        self.rng = rng

    @property
    def node(self) -> float:
        return self.die.process_node

    # ------------------------------------------------------------------
    # Transistors
    # ------------------------------------------------------------------

    def component_transistors(self, component: Component) -> float:
        """Transistor count of one component [millions]."""
        density = lookup(TRANSISTOR_DENSITY, self.node, DEFAULT_TRANSISTOR_DENSITY)
        multiplier = COMPONENT_DENSITY_MULTIPLIERS.get(component.type, DEFAULT_DENSITY_MULTIPLIER)
        return component.area * density * multiplier

    def total_transistors(self) -> float:
        """Transistor count of the die [millions]."""
        return sum(self.component_transistors(c) for c in self.die.components)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def core_count_penalty(self) -> float:
        """max(0.90, 1 - 0.02·log2(cores)); 1.0 for zero or one core."""
        cores = self.die.count("cpu_core")
        if cores <= 1:
            return 1.0
        return max(0.90, 1.0 - math.log2(cores) * 0.02)

    def core_clock_scaling(self) -> float:
        """0.90 + 0.1·(mean CPU-core size scaling - 1)."""
        cores = self.die.components_of("cpu_core")
        avg = (
            sum(size_scaling(c, self.node) for c in cores) / len(cores)
            if cores else 1.0
        )
        return 0.90 + (avg - 1.0) * 0.1

    def base_clock(self, interconnect_penalty: float) -> float:
        """Unthrottled base clock [GHz]."""
        max_clock = lookup(MAX_CLOCK_BY_NODE, self.node, DEFAULT_MAX_CLOCK)
        layout_clock_bonus = max(0.85, 1.0 - interconnect_penalty * 0.15)
        return (
            max_clock
            * BASE_CLOCK_FRACTION
            * self.core_count_penalty()
            * layout_clock_bonus
            * self.core_clock_scaling()
        )

    # ------------------------------------------------------------------
    # Power and thermal
    # ------------------------------------------------------------------

    def power(self, clock_ghz: float) -> PowerBreakdown:
        """
        Dynamic and leakage power at a given clock.

        Parameters
        ----------
        clock_ghz : float
            Operating clock [GHz].
        """
        voltage = lookup(NODE_VOLTAGE, self.node, DEFAULT_VOLTAGE)
        leakage_per_mt = lookup(LEAKAGE_PER_M_TRANSISTORS, self.node, DEFAULT_LEAKAGE)
        voltage_scaling = (voltage / REFERENCE_VOLTAGE) ** 2

        dynamic = 0.0
        total_mt = 0.0
        for comp in self.die.components:
            mt = self.component_transistors(comp)
            total_mt += mt
            activity = ACTIVITY_FACTORS.get(comp.type, DEFAULT_ACTIVITY_FACTOR)
            dynamic += (
                (mt / 1000) * DYNAMIC_POWER_PER_B_TRANSISTORS
                * voltage_scaling * clock_ghz * activity
            )

        return PowerBreakdown(
            dynamic_power=dynamic,
            leakage_power=total_mt * leakage_per_mt,
            voltage=voltage,
        )

    def check_thermal_limits(self, tdp: float) -> ThermalCheck:
        """Compare power density against the configured ceiling."""
        density = tdp / self.die.area
        ceiling = self.thermal.max_power_density
        if density > ceiling:
            return ThermalCheck(True, ceiling / density, density, ceiling)
        return ThermalCheck(False, 1.0, density, ceiling)

    # ------------------------------------------------------------------
    # IPC and layout efficiency
    # ------------------------------------------------------------------

    def effective_area(self, component_type: str) -> float:
        """Σ area · size_scaling over components of one type [mm²]."""
        return sum(
            c.area * size_scaling(c, self.node)
            for c in self.die.components_of(component_type)
        )

    def ipc(self) -> float:
        """Instructions per cycle from effective L2/L3 capacity."""
        l2_bonus = min(0.5, self.effective_area("l2_cache") / 10 * 0.1)
        l3_bonus = min(0.3, self.effective_area("l3_cache") / 50 * 0.1)
        return BASE_IPC + l2_bonus + l3_bonus

    def nearest_component(self, source: Component, target_type: str) -> Optional[Component]:
        """Closest component of ``target_type`` by center distance; first wins ties."""
        nearest = None
        best = math.inf
        for target in self.die.components_of(target_type):
            distance = center_distance(source, target)
            if distance < best:
                nearest, best = target, distance
        return nearest

    def interconnect_penalty(self) -> float:
        """
        Mean latency penalty over all (component, required target) pairs.

        Each pair contributes min(0.15, d/20 · 0.15) · criticality_weight,
        i.e. 0% at 0mm up to 15% at 20mm for a critical path.
        """
        total = 0.0
        pairs = 0
        for comp in self.die.components:
            requirements = INTERCONNECT_REQUIREMENTS.get(comp.type)
            if not requirements:
                continue
            for target_type, (_bandwidth, latency) in requirements.items():
                target = self.nearest_component(comp, target_type)
                if target is None:
                    continue
                distance = center_distance(comp, target)
                weight = CRITICALITY_WEIGHTS.get(latency, DEFAULT_CRITICALITY_WEIGHT)
                total += min(0.15, distance / 20 * 0.15) * weight
                pairs += 1
        return total / pairs if pairs > 0 else 0.0

    def clustering_bonus(self) -> float:
        """Up to +10% for CPU cores packed around their centroid; 1.0 for <= 1 core."""
        cores = self.die.components_of("cpu_core")
        if len(cores) <= 1:
            return 1.0
        centers = np.array([c.center for c in cores])
        centroid = centers.mean(axis=0)
        avg_distance = float(np.mean(np.hypot(*(centers - centroid).T)))
        return 1.0 + max(0.0, 0.10 * (1 - avg_distance / 15))

    def bandwidth_ratio(self) -> float:
        """Memory supply / demand, clamped to 1.0; 0.5 without controllers."""
        controllers = self.die.components_of("mem_ctrl")
        if not controllers:
            return NO_CONTROLLER_BANDWIDTH_RATIO

        base_bw = lookup(MEMORY_BANDWIDTH_PER_CONTROLLER, self.node, DEFAULT_MEMORY_BANDWIDTH)
        supply = sum(base_bw * size_scaling(c, self.node) for c in controllers)
        demand = (
            self.die.count("cpu_core") * CPU_CORE_BANDWIDTH_DEMAND
            + self.die.count("gpu_sm") * GPU_CORE_BANDWIDTH_DEMAND
        )
        return min(1.0, supply / max(1.0, demand))

    def die_size_factor(self) -> float:
        """Up to +5% below 200mm², down to -20% at 1200mm² and beyond."""
        area = self.die.area
        if area <= OPTIMAL_DIE_AREA:
            return 1.0 + (OPTIMAL_DIE_AREA - area) / OPTIMAL_DIE_AREA * 0.05
        excess = area - OPTIMAL_DIE_AREA
        return 1.0 - min(0.20, excess / 1000 * 0.20)

    def utilization_factor(self) -> float:
        """Penalty for wasted (<50%) or over-packed (>85%) die area."""
        utilization = die_stats(self.die).utilization_percent / 100
        if utilization < 0.50:
            return 0.80 + utilization * 0.40
        if utilization <= 0.85:
            return 1.0
        return 1.0 - min(0.15, (utilization - 0.85) * 0.75)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def run(self) -> PerformanceRecord:
        """
        Execute the full performance pipeline.

        Returns
        -------
        record : PerformanceRecord
        """
        die = self.die
        node_info = process_node_info(self.node)
        cpu_cores = die.count("cpu_core")
        gpu_cores = die.count("gpu_sm")

        # 1. Transistors
        total_transistors = self.total_transistors()
        max_clock = lookup(MAX_CLOCK_BY_NODE, self.node, DEFAULT_MAX_CLOCK)

        # 2-3. Clock
        interconnect_penalty = self.interconnect_penalty()
        clock = self.base_clock(interconnect_penalty)

        # 4-5. Power with a single throttling pass
        power = self.power(clock)
        tdp = power.total
        thermal = self.check_thermal_limits(tdp)
        if thermal.overheated:
            clock *= thermal.throttle_ratio
            tdp *= thermal.throttle_ratio
            power = self.power(clock)
            logger.warning("%s throttled to %.2f GHz: %s", die.sku, clock, thermal.warning)

        # 6. Boost
        boost = min(max_clock, clock * BOOST_FACTOR)

        # 7-8. IPC and efficiency factors
        ipc = self.ipc()
        clustering = self.clustering_bonus()
        bandwidth = self.bandwidth_ratio()
        size_factor = self.die_size_factor()
        utilization = self.utilization_factor()
        layout_efficiency = (1.0 - interconnect_penalty) * clustering

        # 9. Score
        single_thread = clock * ipc * 1000
        parallel_efficiency = (
            (cpu_cores * PARALLEL_EFFICIENCY) / cpu_cores if cpu_cores > 0 else 0.0
        )
        multi_thread = single_thread * cpu_cores * parallel_efficiency
        gpu_perf = gpu_cores * clock * 1500
        score = int(math.floor(
            (multi_thread + gpu_perf)
            * layout_efficiency * bandwidth * size_factor * utilization
            + 0.5
        ))

        # 10. Yield
        simulation = simulate_defects(die, self.mc_config, self.rng)
        theoretical: TheoreticalYield = die_theoretical_yield(die)

        # 11. Classification
        classification: Classification = classify_chip(die, clock, max_clock, tdp)

        memory_bottleneck = bandwidth < MEMORY_BOTTLENECK_THRESHOLD
        warnings = []
        if thermal.overheated:
            warnings.append(thermal.warning)
        if memory_bottleneck:
            warnings.append(f"Memory bandwidth covers {bandwidth * 100:.0f}% of demand")
            logger.warning("%s is memory bound (bandwidth ratio %.2f)", die.sku, bandwidth)
        missing = missing_requirements(die)
        if missing:
            logger.warning("%s: %s", die.sku, "; ".join(missing))
        warnings.extend(missing)

        logger.debug(
            "%s: %.1f MT, %.2f GHz, %.1f W, score %d",
            die.sku, total_transistors, clock, tdp, score,
        )

        return PerformanceRecord(
            process_node=node_info.node,
            process_label=node_info.label,
            process_year=node_info.year,
            transistor_density=lookup(TRANSISTOR_DENSITY, self.node, DEFAULT_TRANSISTOR_DENSITY),
            total_transistors=total_transistors,
            base_clock_ghz=clock,
            boost_clock_ghz=boost,
            max_clock_ghz=max_clock,
            tdp=tdp,
            power_density=tdp / die.area,
            voltage=power.voltage,
            dynamic_power=power.dynamic_power,
            leakage_power=power.leakage_power,
            performance_score=score,
            ipc=ipc,
            single_thread_perf=single_thread,
            multi_thread_perf=multi_thread,
            gpu_perf=gpu_perf,
            layout_efficiency=layout_efficiency,
            interconnect_penalty=interconnect_penalty,
            clustering_bonus=clustering,
            bandwidth_ratio=bandwidth,
            die_size_factor=size_factor,
            utilization_factor=utilization,
            yield_percent=simulation.effective_yield * 100,
            theoretical_yield_percent=theoretical.effective_yield * 100,
            cost_multiplier=cost_multiplier(simulation.effective_yield),
            defect_simulation=simulation,
            chip_class=classification.chip_class,
            chip_grade=classification.chip_grade,
            classification_metrics=classification.metrics,
            thermal_throttled=thermal.overheated,
            thermal_warning=thermal.warning,
            memory_bottleneck=memory_bottleneck,
            warnings=tuple(warnings),
            cpu_cores=cpu_cores,
            gpu_cores=gpu_cores,
        )

    def __repr__(self) -> str:
        return (
            f"DiePerformanceEngine(die={self.die!r}, "
            f"n_trials={self.mc_config.n_trials}, "
            f"thermal={self.thermal.limit_class})"
        )


def calculate_performance(
    die: Die,
    n_trials: int = 1000,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> PerformanceRecord:
    """
    One-call convenience wrapper around ``DiePerformanceEngine``.

    Parameters
    ----------
    die : Die
        Die layout.
    n_trials : int
        Defect Monte Carlo trials. Default: 1000.
    seed : int, optional
        Random seed for the defect simulation.
    rng : numpy.random.Generator, optional
        Random source; takes precedence over ``seed``.
    """
    engine = DiePerformanceEngine(die, MonteCarloConfig(n_trials=n_trials, seed=seed), rng=rng)
    return engine.run()
