"""
Unit tests for the manufacturing yield engine.

Tests verify:
1. Poisson sampler moments on both sides of the λ = 10 switch
2. Closed-form yield and blank-space salvage
3. Monte Carlo converges to the closed form for a fully covered die
4. Seed reproducibility and tally consistency
5. Yield-model inversion with brentq
6. Performance: 1,000 trials in <100 ms
"""

import math
import time

import pytest
import numpy as np
from numpy.testing import assert_allclose

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fabsim.defects import (
    MonteCarloConfig,
    cost_multiplier,
    die_theoretical_yield,
    effective_defect_density,
    expected_defects,
    max_die_area_for_yield,
    murphy_yield,
    sample_poisson,
    simulate_defects,
    theoretical_yield,
)
from fabsim.errors import ValidationError
from fabsim.layout import Component, Die


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def covered_die() -> Die:
    """10x10mm die at 7nm, fully covered by one component (no blank area)."""
    return Die(10, 10, process_node=7, die_type="custom",
               components=[Component("memory_array", "Memory Array 0", 0, 0, 10, 10)])


@pytest.fixture
def half_blank_die() -> Die:
    return Die(10, 10, process_node=7, die_type="custom",
               components=[Component("memory_array", "Memory Array 0", 0, 0, 5, 10)])


# ---------------------------------------------------------------------------
# Poisson sampling
# ---------------------------------------------------------------------------

class TestSamplePoisson:

    @pytest.mark.parametrize("lam", [0.3, 2.5, 9.5])
    def test_inverse_transform_moments(self, lam):
        counts = sample_poisson(lam, 200_000, np.random.default_rng(1))
        assert_allclose(counts.mean(), lam, rtol=0.02)
        assert_allclose(counts.var(), lam, rtol=0.03)

    @pytest.mark.parametrize("lam", [10.0, 40.0])
    def test_normal_approximation_moments(self, lam):
        counts = sample_poisson(lam, 200_000, np.random.default_rng(2))
        assert_allclose(counts.mean(), lam, rtol=0.02)
        assert_allclose(counts.var(), lam, rtol=0.05)
        assert counts.min() >= 0

    def test_zero_mean(self):
        counts = sample_poisson(0.0, 100, np.random.default_rng(0))
        assert counts.shape == (100,)
        assert np.all(counts == 0)

    def test_integer_dtype(self):
        counts = sample_poisson(3.0, 10, np.random.default_rng(0))
        assert np.issubdtype(counts.dtype, np.integer)

    def test_negative_mean_rejected(self):
        with pytest.raises(ValidationError):
            sample_poisson(-1.0, 10, np.random.default_rng(0))


# ---------------------------------------------------------------------------
# Closed-form yield
# ---------------------------------------------------------------------------

class TestTheoreticalYield:

    def test_poisson_base_yield(self):
        result = theoretical_yield(100.0, 0.6)
        assert_allclose(result.expected_defects, 0.6)
        assert_allclose(result.base_yield, math.exp(-0.6))
        assert_allclose(result.effective_yield, result.base_yield)

    def test_blank_salvage(self):
        result = theoretical_yield(100.0, 0.6, blank_fraction=0.5)
        base = math.exp(-0.6)
        assert_allclose(result.effective_yield, base + (1 - base) * 0.25)

    def test_die_uses_node_density(self, half_blank_die):
        result = die_theoretical_yield(half_blank_die)
        assert_allclose(result.expected_defects, 0.6)

    def test_expected_defects(self):
        assert_allclose(expected_defects(10, 20, 0.5), 1.0)

    def test_effective_density_maturity(self):
        assert_allclose(effective_defect_density(0.45, 0), 0.45)
        assert_allclose(effective_defect_density(0.45, 50), 0.45 * 0.55)
        assert_allclose(effective_defect_density(0.05, 100), 0.01)

    def test_cost_multiplier(self):
        assert_allclose(cost_multiplier(0.5), 2.0)
        assert_allclose(cost_multiplier(0.1), 1 / 0.3)
        assert_allclose(cost_multiplier(1.0), 1.0)

    def test_murphy(self):
        assert murphy_yield(0.0, 1.0) == 1.0
        da = 0.5
        assert_allclose(murphy_yield(1.0, da, alpha=1), (1 - math.exp(-da)) / da)


class TestMaxDieArea:

    def test_poisson_inversion(self):
        area = max_die_area_for_yield(0.5, 0.6)
        assert_allclose(area, math.log(2) / 0.6 * 100, rtol=1e-6)

    def test_murphy_inversion_roundtrip(self):
        area = max_die_area_for_yield(0.8, 0.3, model="murphy")
        assert_allclose(murphy_yield(area / 100, 0.3), 0.8, rtol=1e-6)

    def test_invalid_inputs(self):
        with pytest.raises(ValidationError):
            max_die_area_for_yield(1.5, 0.3)
        with pytest.raises(ValidationError):
            max_die_area_for_yield(0.5, 0.0)
        with pytest.raises(ValidationError, match="model"):
            max_die_area_for_yield(0.5, 0.3, model="seeds")


# ---------------------------------------------------------------------------
# Monte Carlo
# ---------------------------------------------------------------------------

class TestSimulateDefects:

    def test_tallies_consistent(self, half_blank_die):
        result = simulate_defects(half_blank_die, MonteCarloConfig(n_trials=5000, seed=3))
        assert result.perfect_dies + result.binnable_dies + result.failed_dies == 5000
        assert result.total_simulations == 5000
        assert_allclose(result.blank_area_percent, 50.0)
        assert 0.0 <= result.perfect_yield <= result.effective_yield <= 1.0
        assert result.defect_counts.shape == (5000,)

    def test_converges_to_closed_form_without_blank_area(self, covered_die):
        result = simulate_defects(covered_die, MonteCarloConfig(n_trials=200_000, seed=11))
        assert result.binnable_dies == 0
        assert_allclose(result.effective_yield, math.exp(-0.6), atol=0.005)

    def test_blank_area_raises_effective_yield(self, covered_die, half_blank_die):
        covered = simulate_defects(covered_die, MonteCarloConfig(n_trials=50_000, seed=5))
        half = simulate_defects(half_blank_die, MonteCarloConfig(n_trials=50_000, seed=5))
        assert half.effective_yield > covered.effective_yield
        assert half.binnable_dies > 0

    def test_empty_die_never_fails(self):
        die = Die(10, 10, die_type="custom")
        result = simulate_defects(die, MonteCarloConfig(n_trials=2000, seed=0))
        assert result.failed_dies == 0
        assert result.effective_yield == 1.0

    def test_seed_reproducibility(self, half_blank_die):
        config = MonteCarloConfig(n_trials=1000, seed=42)
        r1 = simulate_defects(half_blank_die, config)
        r2 = simulate_defects(half_blank_die, config)
        assert r1.failed_dies == r2.failed_dies
        np.testing.assert_array_equal(r1.defect_counts, r2.defect_counts)

    def test_explicit_rng_overrides_seed(self, half_blank_die):
        r1 = simulate_defects(half_blank_die, MonteCarloConfig(seed=1), np.random.default_rng(9))
        r2 = simulate_defects(half_blank_die, MonteCarloConfig(seed=2), np.random.default_rng(9))
        np.testing.assert_array_equal(r1.defect_counts, r2.defect_counts)

    def test_invalid_trials(self):
        with pytest.raises(ValidationError, match="n_trials"):
            MonteCarloConfig(n_trials=0)


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

class TestPerformance:
    """Tests for the interactive frame budget."""

    def test_1000_trials_under_100ms(self, half_blank_die):
        """1,000 Monte Carlo trials should fit in one 100ms frame."""
        simulate_defects(half_blank_die, MonteCarloConfig(n_trials=1000, seed=0))

        start = time.perf_counter()
        result = simulate_defects(half_blank_die, MonteCarloConfig(n_trials=1000, seed=1))
        elapsed = time.perf_counter() - start

        assert elapsed < 0.1, f"MC took {elapsed * 1e3:.1f}ms, exceeds 100ms budget"
        assert result.total_simulations == 1000
