"""
Batch planning arithmetic.

Reticle shots:
    dies/reticle = floor(R_w / w) · floor(R_h / h)
    shots/wafer  = floor(π (R - 5)² / (R_w · R_h) · 0.85)

A 5mm ring is kept clear at the wafer edge and 85% of the remaining area is
assumed to be reachable by whole reticle fields.

Yield by process maturity scales the Poisson base yield exp(-D·A) of the
die's node; cost per good die divides the wafer cost by the dies that work
at the chosen maturity.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional

from fabsim.constants import (
    DEFAULT_WAFER_COST,
    WAFER_COST_BY_NODE,
    lookup,
    process_node_info,
)
from fabsim.errors import ValidationError
from fabsim.layout import Die

EDGE_CLEARANCE_MM = 5.0
RETICLE_PACKING_EFFICIENCY = 0.85
DEFAULT_RETICLE = (26.0, 33.0)

MATURITY_MULTIPLIERS = MappingProxyType({
    "new": 0.75,        # 0-3 months
    "early": 1.00,      # 3-6 months
    "mature": 1.15,     # 6-18 months
    "optimized": 1.25,  # 18+ months
})

MATURITY_LABELS = MappingProxyType({
    "new": "New Process (0-3 months)",
    "early": "Early (3-6 months)",
    "mature": "Mature (6-18 months)",
    "optimized": "Optimized (18+ months)",
})


@dataclass(frozen=True)
class ReticleMetrics:
    """
    Reticle and wafer packing for one die.

    Parameters
    ----------
    dies_per_reticle_x, dies_per_reticle_y : int
        Whole dies along each reticle side.
    dies_per_reticle : int
    reticle_shots_per_wafer : int
    dies_per_wafer : int
    wafer_area_utilization : float
        Die area / usable wafer area [%], at most 100.
    """
    dies_per_reticle_x: int = 0
    dies_per_reticle_y: int = 0
    dies_per_reticle: int = 0
    reticle_shots_per_wafer: int = 0
    dies_per_wafer: int = 0
    wafer_area_utilization: float = 0.0


def reticle_metrics(
    die: Optional[Die],
    wafer_diameter: float = 300.0,
    reticle: tuple[float, float] = DEFAULT_RETICLE,
) -> ReticleMetrics:
    """
    Dies per reticle and per wafer.

    Parameters
    ----------
    die : Die or None
        Die to place. All-zero metrics are returned for None.
    wafer_diameter : float
        Wafer diameter [mm]. Default: 300.
    reticle : (width, height)
        Exposure field [mm]. Default: 26 x 33.
    """
    if die is None:
        return ReticleMetrics()

    reticle_w, reticle_h = reticle
    if reticle_w <= 0 or reticle_h <= 0:
        raise ValidationError(f"Reticle dimensions must be positive, got {reticle_w}x{reticle_h}")
    if wafer_diameter <= 2 * EDGE_CLEARANCE_MM:
        raise ValidationError(
            f"Wafer diameter must exceed {2 * EDGE_CLEARANCE_MM}mm, got {wafer_diameter}"
        )

    per_x = math.floor(reticle_w / die.width)
    per_y = math.floor(reticle_h / die.height)
    per_reticle = per_x * per_y

    usable_radius = wafer_diameter / 2 - EDGE_CLEARANCE_MM
    usable_area = math.pi * usable_radius ** 2
    shots = math.floor(usable_area / (reticle_w * reticle_h) * RETICLE_PACKING_EFFICIENCY)
    per_wafer = per_reticle * shots
    utilization = per_wafer * die.area / usable_area * 100

    return ReticleMetrics(
        dies_per_reticle_x=per_x,
        dies_per_reticle_y=per_y,
        dies_per_reticle=per_reticle,
        reticle_shots_per_wafer=shots,
        dies_per_wafer=per_wafer,
        wafer_area_utilization=min(100.0, utilization),
    )


def yield_by_maturity(base_yield: float) -> dict[str, float]:
    """Base yield scaled by each maturity multiplier, capped at 1.0."""
    return {
        stage: min(1.0, base_yield * multiplier)
        for stage, multiplier in MATURITY_MULTIPLIERS.items()
    }


def cost_per_wafer(process_node: float) -> float:
    """Processed-wafer cost at the nearest tabulated node [k$]."""
    return lookup(WAFER_COST_BY_NODE, process_node, DEFAULT_WAFER_COST)


@dataclass(frozen=True)
class BatchPlan:
    """
    Fabrication plan for one die design.

    Build with ``BatchPlan.from_die``.
    """
    name: str
    die_id: Optional[str]
    die_sku: str
    wafer_diameter: float
    process_node: float
    reticle: tuple[float, float]
    metrics: ReticleMetrics
    base_yield: float
    yields: dict[str, float]
    cost_per_wafer: float

    @classmethod
    def from_die(
        cls,
        die: Die,
        wafer_diameter: float = 300.0,
        reticle: tuple[float, float] = DEFAULT_RETICLE,
        name: str = "Unnamed Batch",
    ) -> BatchPlan:
        """
        Plan a batch for ``die``.

        The base yield uses the early-production defect density of the
        die's node.
        """
        metrics = reticle_metrics(die, wafer_diameter, reticle)
        density = process_node_info(die.process_node).base_defect_density
        base = math.exp(-density * die.area / 100.0)
        return cls(
            name=name,
            die_id=die.id,
            die_sku=die.sku,
            wafer_diameter=wafer_diameter,
            process_node=die.process_node,
            reticle=tuple(reticle),
            metrics=metrics,
            base_yield=base,
            yields=yield_by_maturity(base),
            cost_per_wafer=cost_per_wafer(die.process_node),
        )

    def good_dies_per_wafer(self, maturity: str = "early") -> float:
        """Expected working dies per wafer at a maturity stage."""
        if maturity not in self.yields:
            raise ValidationError(
                f"Unknown maturity {maturity!r}, expected one of {list(MATURITY_MULTIPLIERS)}"
            )
        return self.metrics.dies_per_wafer * self.yields[maturity]

    def cost_per_good_die(self, maturity: str = "early") -> float:
        """Wafer cost spread over the good dies [$]; inf when none are good."""
        good = self.good_dies_per_wafer(maturity)
        if good <= 0:
            return math.inf
        return self.cost_per_wafer * 1000 / good

    def __repr__(self) -> str:
        return (
            f"BatchPlan(name={self.name!r}, die={self.die_sku!r}, "
            f"dies_per_wafer={self.metrics.dies_per_wafer}, "
            f"early_yield={self.yields['early']:.3f})"
        )
