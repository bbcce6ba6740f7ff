"""
Manufacturing Yield Engine

Estimates how many fabricated copies of a die survive random point defects,
in two modes:

1. Theoretical (closed form, used for planning):
       Y_base = exp(-D · A)                  Poisson yield
       Y_eff  = Y_base + (1 - Y_base) · f_blank · 0.5

   Half of the dies whose defects fall only in blank (component-free)
   silicon are assumed salvageable by binning.

2. Monte Carlo (used for the die designer):
       for each trial:
           n ~ Poisson(D · A)
           each defect lands uniformly in the die area
           a defect inside the component share is a component hit and
           ends the trial; a defect in blank space is ignored
       perfect   = trials with n = 0
       binnable  = trials with n > 0 and no component hit
       failed    = trials with at least one component hit
       Y_eff     = (perfect + binnable) / trials

   A trial ends at its first component hit, so defect severity per die is
   not tracked. The wafer planner buckets the full defect count instead
   (see fabsim.wafer).

Poisson sampling uses inverse-transform sampling for small means and the
Box-Muller normal approximation for λ >= 10. All trials are drawn as NumPy
arrays; there is no per-trial Python loop.

References:
    [1] Murphy, B.T., "Cost-size optima of monolithic integrated circuits,"
        Proc. IEEE 52, 1537-1545 (1964)
    [2] Stapper, C.H., "Modeling of integrated circuit defect sensitivities,"
        IBM J. Res. Dev. 27, 549-557 (1983)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import brentq

from fabsim.constants import PHYSICS, process_node_info
from fabsim.errors import ValidationError
from fabsim.layout import Die

logger = logging.getLogger(__name__)

# Switch from inverse-transform to Box-Muller sampling at this mean
NORMAL_APPROXIMATION_LAMBDA = 10.0
# Cost multiplier stops growing below this yield
MIN_COST_YIELD = 0.3
# Fraction of blank-space-only defective dies recovered by binning
BLANK_SALVAGE_FRACTION = 0.5


@dataclass(frozen=True)
class MonteCarloConfig:
    """
    Defect Monte Carlo configuration.

    Parameters
    ----------
    n_trials : int
        Number of simulated dies. Default: 1000.
    seed : int or None
        Random seed. Default: None (fresh entropy on every run).
    """
    n_trials: int = 1000
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.n_trials <= 0:
            raise ValidationError(f"n_trials must be positive, got {self.n_trials}")


@dataclass(frozen=True)
class TheoreticalYield:
    """
    Closed-form yield estimate.

    Parameters
    ----------
    base_yield : float
        Poisson yield exp(-D·A) [0, 1].
    effective_yield : float
        Base yield plus salvaged blank-space dies [0, 1].
    expected_defects : float
        Mean defects per die (λ).
    """
    base_yield: float
    effective_yield: float
    expected_defects: float


@dataclass(frozen=True)
class DefectSimulationResult:
    """
    Monte Carlo defect simulation results.

    Parameters
    ----------
    perfect_dies : int
        Trials with no defects.
    binnable_dies : int
        Trials whose defects all fell in blank space.
    failed_dies : int
        Trials with at least one component hit.
    total_simulations : int
        Number of trials.
    perfect_yield : float
        perfect / total [0, 1].
    effective_yield : float
        (perfect + binnable) / total [0, 1].
    expected_defects : float
        Poisson mean per die (λ).
    blank_area_percent : float
        Share of the die not covered by components [%].
    defect_counts : ndarray
        Sampled defect count per trial, shape (total_simulations,).
    """
    perfect_dies: int
    binnable_dies: int
    failed_dies: int
    total_simulations: int
    perfect_yield: float
    effective_yield: float
    expected_defects: float
    blank_area_percent: float
    defect_counts: NDArray[np.integer]

    @property
    def effective_yield_percent(self) -> float:
        return self.effective_yield * 100


def sample_poisson(
    lam: float,
    size: int,
    rng: np.random.Generator,
) -> NDArray[np.int64]:
    """
    Draw Poisson-distributed counts.

    Parameters
    ----------
    lam : float
        Mean (λ >= 0).
    size : int
        Number of samples.
    rng : numpy.random.Generator
        Source of uniform variates.

    Returns
    -------
    counts : ndarray of int64, shape (size,)

    Notes
    -----
    For λ < 10 the uniform variates are inverted through the tabulated CDF.
    For λ >= 10 a normal approximation N(λ, λ) is drawn with the Box-Muller
    transform, rounded half-up and floored at zero.
    """
    if lam < 0 or not math.isfinite(lam):
        raise ValidationError(f"Poisson mean must be finite and non-negative, got {lam}")
    if size <= 0:
        return np.zeros(0, dtype=np.int64)
    if lam == 0:
        return np.zeros(size, dtype=np.int64)

    if lam < NORMAL_APPROXIMATION_LAMBDA:
        k_max = int(lam + 12 * math.sqrt(lam) + 20)
        ratios = np.concatenate(([1.0], lam / np.arange(1, k_max + 1)))
        cdf = np.cumsum(math.exp(-lam) * np.cumprod(ratios))
        u = rng.random(size)
        counts = np.searchsorted(cdf, u, side="right")
        return np.minimum(counts, k_max).astype(np.int64)

    u1 = rng.random(size)
    u2 = rng.random(size)
    # 1 - u1 lies in (0, 1], so the log is finite
    z = np.sqrt(-2.0 * np.log(1.0 - u1)) * np.cos(2.0 * np.pi * u2)
    counts = np.floor(lam + math.sqrt(lam) * z + 0.5)
    return np.maximum(counts, 0).astype(np.int64)


def expected_defects(width_mm: float, height_mm: float, defect_density: float) -> float:
    """Mean defects per die: defect density [/cm²] × die area [cm²]."""
    return width_mm * height_mm / 100.0 * defect_density


def effective_defect_density(base_defect_density: float, maturity_percent: float) -> float:
    """
    Defect density after process learning.

    D_eff = max(D_base · (1 - maturity · 0.90), 0.01)

    Parameters
    ----------
    base_defect_density : float
        Defect density of a new process [defects/cm²].
    maturity_percent : float
        Process maturity [0, 100].
    """
    reduction = maturity_percent / 100.0 * PHYSICS["maturity_reduction_factor"]
    return max(base_defect_density * (1 - reduction), PHYSICS["min_defect_density"])


def theoretical_yield(
    area_mm2: float,
    defect_density: float,
    blank_fraction: float = 0.0,
) -> TheoreticalYield:
    """
    Closed-form Poisson yield with blank-space salvage.

    Parameters
    ----------
    area_mm2 : float
        Die area [mm²].
    defect_density : float
        Defect density [defects/cm²].
    blank_fraction : float, optional
        Fraction of the die not covered by components [0, 1]. Default: 0.
    """
    if area_mm2 <= 0:
        raise ValidationError(f"Die area must be positive, got {area_mm2}")
    lam = defect_density * area_mm2 / 100.0
    base = math.exp(-lam)
    blank = min(1.0, max(0.0, blank_fraction))
    effective = base + (1 - base) * blank * BLANK_SALVAGE_FRACTION
    return TheoreticalYield(base_yield=base, effective_yield=effective, expected_defects=lam)


def cost_multiplier(yield_fraction: float) -> float:
    """Relative cost per good die, 1 / max(0.3, yield)."""
    return 1.0 / max(MIN_COST_YIELD, yield_fraction)


def murphy_yield(area_cm2: float, defect_density: float, alpha: float = 3.0) -> float:
    """
    Murphy's clustered-defect yield model.

    Y = [(1 - exp(-D·A)) / (D·A)]^α, with Y = 1 at D·A = 0.
    """
    da = defect_density * area_cm2
    if da == 0:
        return 1.0
    return ((1 - math.exp(-da)) / da) ** alpha


def max_die_area_for_yield(
    target_yield: float,
    defect_density: float,
    model: str = "poisson",
    alpha: float = 3.0,
) -> float:
    """
    Largest die area that still meets a target yield.

    Parameters
    ----------
    target_yield : float
        Required yield, in (0, 1).
    defect_density : float
        Defect density [defects/cm²], positive.
    model : {"poisson", "murphy"}
        Yield model to invert.
    alpha : float, optional
        Murphy clustering exponent. Default: 3.

    Returns
    -------
    area : float
        Die area [mm²].
    """
    if not 0 < target_yield < 1:
        raise ValidationError(f"Target yield must be in (0, 1), got {target_yield}")
    if defect_density <= 0:
        raise ValidationError(f"Defect density must be positive, got {defect_density}")

    if model == "poisson":
        def model_yield(area_mm2: float) -> float:
            return math.exp(-defect_density * area_mm2 / 100.0)
    elif model == "murphy":
        def model_yield(area_mm2: float) -> float:
            return murphy_yield(area_mm2 / 100.0, defect_density, alpha)
    else:
        raise ValidationError(f"Unknown yield model {model!r}")

    upper = 100.0
    while model_yield(upper) > target_yield:
        upper *= 2
    return brentq(lambda a: model_yield(a) - target_yield, 0.0, upper, xtol=1e-9)


def blank_fraction(die: Die) -> float:
    """Fraction of the die area not covered by components, in [0, 1]."""
    covered = sum(c.area for c in die.components)
    return max(0.0, 1.0 - covered / die.area)


def die_theoretical_yield(die: Die) -> TheoreticalYield:
    """Closed-form yield of a die at its node's early-production defect density."""
    density = process_node_info(die.process_node).base_defect_density
    return theoretical_yield(die.area, density, blank_fraction(die))


def simulate_defects(
    die: Die,
    config: Optional[MonteCarloConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> DefectSimulationResult:
    """
    Monte Carlo defect simulation for one die design.

    Parameters
    ----------
    die : Die
        Die layout. Only areas matter: a defect hits a component with
        probability component_area / die_area.
    config : MonteCarloConfig, optional
        Trial count and seed. Uses defaults if not provided.
    rng : numpy.random.Generator, optional
        Overrides ``config.seed`` when given.

    Returns
    -------
    result : DefectSimulationResult
    """
    config = config if config is not None else MonteCarloConfig()
    rng = rng if rng is not None else np.random.default_rng(config.seed)
    n = config.n_trials

    die_area = die.area
    component_area = min(die_area, sum(c.area for c in die.components))
    density = process_node_info(die.process_node).base_defect_density
    lam = expected_defects(die.width, die.height, density)

    counts = sample_poisson(lam, n, rng)

    # Only whether a trial has any component hit matters: the trial stops
    # at its first hit and remaining defects are never classified.
    trial_of_defect = np.repeat(np.arange(n), counts)
    landing = rng.random(trial_of_defect.size) * die_area
    hits = landing < component_area
    hit_trials = np.bincount(trial_of_defect[hits], minlength=n) > 0

    perfect = int(np.count_nonzero(counts == 0))
    failed = int(np.count_nonzero(hit_trials))
    binnable = n - perfect - failed

    blank_percent = (1 - component_area / die_area) * 100
    result = DefectSimulationResult(
        perfect_dies=perfect,
        binnable_dies=binnable,
        failed_dies=failed,
        total_simulations=n,
        perfect_yield=perfect / n,
        effective_yield=(perfect + binnable) / n,
        expected_defects=lam,
        blank_area_percent=blank_percent,
        defect_counts=counts,
    )
    logger.debug(
        "Defect MC %s: lambda=%.4f perfect=%d binnable=%d failed=%d",
        die.sku, lam, perfect, binnable, failed,
    )
    return result
