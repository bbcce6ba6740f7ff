"""
Wafer Tiling & Yield Engine

Tiles identical rectangular dies across a circular wafer and samples a
defect count for every kept die.

Placement:
    n_x = ceil(D / w), n_y = ceil(D / h) grid positions starting at
    -floor(n/2)·w + w/2, so a die edge lies on each axis. A die is kept
    when all four corners lie within the wafer radius R. A kept die with any corner beyond R - exclusion is in the edge
    exclusion ring and is unusable (defect_count = 999).

Defects:
    λ = D_eff · A_die[cm²],  D_eff = max(D_0 · (1 - m · 0.90), 0.01)
    n ~ Poisson(λ)

    Category       defects   functionality
    Perfect        0         1.0
    Diminished     1-2       0.99 -> 0.50 (linear)
    Damaged        3-5       0.49 -> 0.01 (linear)
    Unusable       6+        0.0

    overall yield = (perfect + diminished) / total
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.stats import poisson

from fabsim.constants import (
    DAMAGED,
    DIMINISHED,
    EDGE_EXCLUSION_MM,
    PERFECT,
    PHYSICS,
    UNUSABLE,
    YIELD_CATEGORIES,
    YieldCategory,
    process_node_info,
)
from fabsim.defects import effective_defect_density, expected_defects, sample_poisson
from fabsim.errors import ValidationError

logger = logging.getLogger(__name__)

EDGE_EXCLUSION_DEFECTS = 999


@dataclass(frozen=True)
class WaferConfig:
    """
    Wafer planning configuration.

    Parameters
    ----------
    wafer_diameter : float
        Wafer diameter [mm]. Default: 300.
    die_width, die_height : float
        Die dimensions [mm]. Default: 10 x 10.
    process_node : float
        Process node [nm]. Default: 14.
    maturity : float
        Process maturity [%], 0-100. Default: 50.
    base_defect_density : float, optional
        Defect density of a new process [defects/cm²]. Default: None
        (taken from the process node table).
    edge_exclusion : float
        Width of the unusable ring at the wafer edge [mm]. Default: 3.
    seed : int, optional
        Random seed. Default: None.
    """
    wafer_diameter: float = 300.0
    die_width: float = 10.0
    die_height: float = 10.0
    process_node: float = 14
    maturity: float = 50.0
    base_defect_density: Optional[float] = None
    edge_exclusion: float = EDGE_EXCLUSION_MM
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.wafer_diameter <= 0:
            raise ValidationError(f"Wafer diameter must be positive, got {self.wafer_diameter}")
        if self.die_width <= 0 or self.die_height <= 0:
            raise ValidationError(
                f"Die dimensions must be positive, got {self.die_width}x{self.die_height}"
            )
        if self.process_node <= 0:
            raise ValidationError(f"Process node must be positive, got {self.process_node}")
        if not 0 <= self.maturity <= 100:
            raise ValidationError(f"Maturity must be in [0, 100], got {self.maturity}")
        if self.base_defect_density is not None and self.base_defect_density < 0:
            raise ValidationError(
                f"Defect density must be non-negative, got {self.base_defect_density}"
            )
        if self.edge_exclusion < 0 or self.edge_exclusion >= self.radius:
            raise ValidationError(
                f"Edge exclusion must be in [0, {self.radius}), got {self.edge_exclusion}"
            )

    @property
    def radius(self) -> float:
        """Wafer radius [mm]."""
        return self.wafer_diameter / 2

    @property
    def die_area(self) -> float:
        """Die area [mm²]."""
        return self.die_width * self.die_height

    @property
    def defect_density(self) -> float:
        """New-process defect density, explicit or from the node table [defects/cm²]."""
        if self.base_defect_density is not None:
            return self.base_defect_density
        return process_node_info(self.process_node).base_defect_density


@dataclass(frozen=True)
class WaferDie:
    """
    One die position on the wafer.

    ``x`` and ``y`` are the die center [mm] relative to the wafer center.
    """
    id: int
    row: int
    col: int
    x: float
    y: float
    defect_count: int
    category: YieldCategory
    functionality: float
    in_edge_exclusion: bool


@dataclass
class WaferResult:
    """
    Wafer planning results.

    Attributes
    ----------
    dies : list of WaferDie
        Kept dies, row-major, ids from 1.
    breakdown : dict
        Die count per category key (perfect, diminished, damaged, unusable).
    overall_yield : float
        (perfect + diminished) / total, 0 for an empty wafer [0, 1].
    transistor_density : float
        Scaling-law density [MT/mm²].
    transistors_per_die : float
        [millions]
    expected_defects : float
        λ per die.
    effective_defect_density : float
        [defects/cm²]
    """
    dies: list[WaferDie]
    breakdown: dict[str, int]
    overall_yield: float
    transistor_density: float
    transistors_per_die: float
    expected_defects: float
    effective_defect_density: float
    defect_counts: NDArray[np.int64] = field(repr=False, default_factory=lambda: np.zeros(0, np.int64))

    @property
    def total_dies(self) -> int:
        return len(self.dies)

    @property
    def overall_yield_percent(self) -> float:
        return self.overall_yield * 100

    @property
    def good_dies(self) -> int:
        """Perfect + diminished."""
        return self.breakdown["perfect"] + self.breakdown["diminished"]

    def __repr__(self) -> str:
        return (
            f"WaferResult(total_dies={self.total_dies}, "
            f"yield={self.overall_yield_percent:.1f}%, "
            f"breakdown={self.breakdown})"
        )


def transistor_density_scaling(process_node: float) -> float:
    """Density from the k / node² scaling law [MT/mm²]."""
    return PHYSICS["density_scaling_factor"] / (process_node * process_node) / 1e6


def farthest_corner_distance(
    x: NDArray[np.float64] | float,
    y: NDArray[np.float64] | float,
    width: float,
    height: float,
) -> NDArray[np.float64] | float:
    """Distance from the wafer center to the farthest corner of a die centered at (x, y)."""
    return np.hypot(np.abs(x) + width / 2, np.abs(y) + height / 2)


def die_fits_in_wafer(x: float, y: float, width: float, height: float, radius: float) -> bool:
    """True when all four corners of the die lie within the wafer radius."""
    return bool(farthest_corner_distance(x, y, width, height) <= radius)


def is_in_edge_exclusion(
    x: float,
    y: float,
    width: float,
    height: float,
    radius: float,
    exclusion: float = EDGE_EXCLUSION_MM,
) -> bool:
    """True when any corner of the die lies beyond ``radius - exclusion``."""
    return bool(farthest_corner_distance(x, y, width, height) > radius - exclusion)


def yield_category(defect_count: int) -> YieldCategory:
    """Bucket for a defect count."""
    if defect_count <= 0:
        return PERFECT
    if defect_count <= DIMINISHED.max_defects:
        return DIMINISHED
    if defect_count <= DAMAGED.max_defects:
        return DAMAGED
    return UNUSABLE


def functionality(defect_count: int, category: Optional[YieldCategory] = None) -> float:
    """
    Fraction of the die still working.

    Interpolates linearly from the category's ``functionality_max`` at its
    lowest defect count to ``functionality_min`` at its highest.
    """
    category = category if category is not None else yield_category(defect_count)
    if defect_count == 0:
        return 1.0
    if category is UNUSABLE:
        return 0.0
    defect_range = category.max_defects - category.min_defects
    if defect_range == 0:
        return category.functionality_max
    position = (defect_count - category.min_defects) / defect_range
    return category.functionality_max - position * (
        category.functionality_max - category.functionality_min
    )


def grid_positions(config: WaferConfig) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Candidate die centers, shape (n_y, n_x) each.

    Column floor(n_x/2) starts at the wafer center (likewise for rows), so
    a die edge always sits on each axis. With an even count the pattern is
    symmetric; with an odd count it is offset by half a die toward +x/+y.
    """
    n_x = math.ceil(config.wafer_diameter / config.die_width)
    n_y = math.ceil(config.wafer_diameter / config.die_height)
    start_x = -math.floor(n_x / 2) * config.die_width + config.die_width / 2
    start_y = -math.floor(n_y / 2) * config.die_height + config.die_height / 2
    xs = start_x + np.arange(n_x) * config.die_width
    ys = start_y + np.arange(n_y) * config.die_height
    return np.meshgrid(xs, ys)


def _placement(config: WaferConfig):
    x, y = grid_positions(config)
    distance = farthest_corner_distance(x, y, config.die_width, config.die_height)
    kept = distance <= config.radius
    in_exclusion = distance > config.radius - config.edge_exclusion
    rows, cols = np.nonzero(kept)
    return rows, cols, x[kept], y[kept], in_exclusion[kept]


def count_gross_dies(config: WaferConfig) -> int:
    """Number of whole dies that fit on the wafer, edge ring included."""
    rows, _, _, _, _ = _placement(config)
    return int(rows.size)


def expected_breakdown(lam: float) -> dict[str, float]:
    """
    Closed-form probability of each yield category for Poisson(λ) defects.

    Returns
    -------
    probabilities : dict
        Category key -> probability; values sum to 1.
    """
    if lam < 0:
        raise ValidationError(f"Expected defects must be non-negative, got {lam}")
    if lam == 0:
        return {category.key: float(category is PERFECT) for category in YIELD_CATEGORIES}
    p_perfect = float(poisson.pmf(0, lam))
    cdf_diminished = float(poisson.cdf(DIMINISHED.max_defects, lam))
    cdf_damaged = float(poisson.cdf(DAMAGED.max_defects, lam))
    return {
        PERFECT.key: p_perfect,
        DIMINISHED.key: cdf_diminished - p_perfect,
        DAMAGED.key: cdf_damaged - cdf_diminished,
        UNUSABLE.key: float(poisson.sf(DAMAGED.max_defects, lam)),
    }


class WaferPlanner:
    """
    Places dies on a wafer and samples their defects.

    Parameters
    ----------
    config : WaferConfig, optional
        Wafer and die settings. Uses defaults if not provided.
    rng : numpy.random.Generator, optional
        Random source; overrides ``config.seed``.

    Examples
    --------
    >>> planner = WaferPlanner(WaferConfig(seed=42))
    >>> result = planner.run()
    >>> print(result.total_dies, f"{result.overall_yield_percent:.1f}%")
    """

    def __init__(
        self,
        config: Optional[WaferConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.config = config if config is not None else WaferConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)

    @property
    def effective_defect_density(self) -> float:
        return effective_defect_density(self.config.defect_density, self.config.maturity)

    @property
    def expected_defects(self) -> float:
        return expected_defects(
            self.config.die_width, self.config.die_height, self.effective_defect_density
        )

    def run(self) -> WaferResult:
        """
        Place dies, sample defects and tally categories.

        Returns
        -------
        result : WaferResult
        """
        cfg = self.config
        lam = self.expected_defects
        rows, cols, xs, ys, in_exclusion = _placement(cfg)

        counts = sample_poisson(lam, rows.size, self.rng)
        counts = np.where(in_exclusion, EDGE_EXCLUSION_DEFECTS, counts)

        dies = []
        breakdown = {category.key: 0 for category in YIELD_CATEGORIES}
        for i in range(rows.size):
            count = int(counts[i])
            category = UNUSABLE if in_exclusion[i] else yield_category(count)
            breakdown[category.key] += 1
            dies.append(WaferDie(
                id=i + 1,
                row=int(rows[i]),
                col=int(cols[i]),
                x=float(xs[i]),
                y=float(ys[i]),
                defect_count=count,
                category=category,
                functionality=functionality(count, category),
                in_edge_exclusion=bool(in_exclusion[i]),
            ))

        total = len(dies)
        good = breakdown[PERFECT.key] + breakdown[DIMINISHED.key]
        density = transistor_density_scaling(cfg.process_node)

        result = WaferResult(
            dies=dies,
            breakdown=breakdown,
            overall_yield=good / total if total > 0 else 0.0,
            transistor_density=density,
            transistors_per_die=density * cfg.die_area,
            expected_defects=lam,
            effective_defect_density=self.effective_defect_density,
            defect_counts=counts,
        )
        logger.debug(
            "Wafer %gmm, die %gx%gmm: %d dies, lambda=%.4f, %s",
            cfg.wafer_diameter, cfg.die_width, cfg.die_height, total, lam, breakdown,
        )
        return result

    def __repr__(self) -> str:
        return f"WaferPlanner(config={self.config!r})"
