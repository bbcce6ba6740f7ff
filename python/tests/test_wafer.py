"""
Unit tests for the wafer tiling and yield engine.

Tests verify:
1. Grid placement matches a corner-by-corner reference count
2. Odd grids keep a die edge on each axis; even grids are symmetric
3. Edge-exclusion dies are unusable with the 999 sentinel
4. Category and functionality mapping at every boundary
5. Sampled breakdown tracks the closed-form Poisson probabilities
6. Performance: a 300mm wafer plan in <100 ms
"""

import math
import time

import pytest
import numpy as np
from numpy.testing import assert_allclose

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fabsim.constants import DAMAGED, DIMINISHED, PERFECT, UNUSABLE
from fabsim.errors import ValidationError
from fabsim.wafer import (
    WaferConfig,
    WaferPlanner,
    count_gross_dies,
    die_fits_in_wafer,
    expected_breakdown,
    functionality,
    is_in_edge_exclusion,
    transistor_density_scaling,
    yield_category,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def default_result():
    return WaferPlanner(WaferConfig(seed=42)).run()


def _reference_count(diameter, width, height, exclusion):
    """Corner-by-corner loop over the grid, column floor(n/2) at the center."""
    radius = diameter / 2
    n_x = math.ceil(diameter / width)
    n_y = math.ceil(diameter / height)
    start_x = -math.floor(n_x / 2) * width + width / 2
    start_y = -math.floor(n_y / 2) * height + height / 2
    kept = excluded = 0
    for row in range(n_y):
        for col in range(n_x):
            cx = start_x + col * width
            cy = start_y + row * height
            corners = [
                (cx + sx * width / 2, cy + sy * height / 2)
                for sx in (-1, 1) for sy in (-1, 1)
            ]
            distances = [math.hypot(x, y) for x, y in corners]
            if max(distances) > radius:
                continue
            kept += 1
            if max(distances) > radius - exclusion:
                excluded += 1
    return kept, excluded


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

class TestPlacement:

    def test_300mm_10x10_count(self, default_result):
        kept, excluded = _reference_count(300, 10, 10, 3)
        assert kept == 648
        assert default_result.total_dies == kept
        assert sum(d.in_edge_exclusion for d in default_result.dies) == excluded

    @pytest.mark.parametrize("diameter,width,height", [
        (200, 7, 11),
        (150, 13, 13),
        (300, 26, 33),
    ])
    def test_matches_reference_loop(self, diameter, width, height):
        config = WaferConfig(wafer_diameter=diameter, die_width=width, die_height=height)
        kept, _ = _reference_count(diameter, width, height, 3)
        assert count_gross_dies(config) == kept

    def test_odd_grid_count(self):
        # 29 x 19 positions: column 14 and row 9 start at the wafer center
        config = WaferConfig(wafer_diameter=200, die_width=7, die_height=11)
        assert count_gross_dies(config) == 360

    def test_odd_grid_has_die_edge_on_axis(self):
        config = WaferConfig(wafer_diameter=200, die_width=7, die_height=11, seed=0)
        dies = WaferPlanner(config).run().dies
        xs = {round(d.x, 6) for d in dies}
        assert 3.5 in xs and -3.5 in xs
        assert 0.0 not in xs

    def test_symmetric_pattern_even_grid(self):
        config = WaferConfig(wafer_diameter=200, die_width=10, die_height=12.5, seed=0)
        dies = WaferPlanner(config).run().dies
        centers = {(round(d.x, 6), round(d.y, 6)) for d in dies}
        assert centers == {(-x + 0.0, y) for x, y in centers}
        assert centers == {(x, -y + 0.0) for x, y in centers}

    def test_all_corners_inside(self, default_result):
        for d in default_result.dies:
            assert die_fits_in_wafer(d.x, d.y, 10, 10, 150)

    def test_ids_sequential_row_major(self, default_result):
        ids = [d.id for d in default_result.dies]
        assert ids == list(range(1, len(ids) + 1))
        keys = [(d.row, d.col) for d in default_result.dies]
        assert keys == sorted(keys)

    def test_die_larger_than_wafer(self):
        config = WaferConfig(wafer_diameter=50, die_width=40, die_height=40)
        result = WaferPlanner(config).run()
        assert result.total_dies == 0
        assert result.overall_yield == 0.0


class TestEdgeExclusion:

    def test_excluded_dies_are_unusable(self, default_result):
        excluded = [d for d in default_result.dies if d.in_edge_exclusion]
        assert excluded
        for d in excluded:
            assert d.defect_count == 999
            assert d.category is UNUSABLE
            assert d.functionality == 0.0

    def test_point_checks(self):
        assert not is_in_edge_exclusion(0, 0, 10, 10, 150, 3)
        # farthest corner at (0.5, 146), inside the 147mm usable radius
        assert not is_in_edge_exclusion(0, 141, 1, 10, 150, 3)
        assert is_in_edge_exclusion(0, 143, 10, 10, 150, 3)

    def test_zero_exclusion(self):
        result = WaferPlanner(WaferConfig(edge_exclusion=0, seed=1)).run()
        assert not any(d.in_edge_exclusion for d in result.dies)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class TestCategories:

    @pytest.mark.parametrize("count,category", [
        (0, PERFECT), (1, DIMINISHED), (2, DIMINISHED),
        (3, DAMAGED), (5, DAMAGED), (6, UNUSABLE), (999, UNUSABLE),
    ])
    def test_yield_category(self, count, category):
        assert yield_category(count) is category

    @pytest.mark.parametrize("count,expected", [
        (0, 1.0), (1, 0.99), (2, 0.5), (3, 0.49), (4, 0.25), (5, 0.01), (6, 0.0),
    ])
    def test_functionality(self, count, expected):
        assert_allclose(functionality(count), expected)

    def test_expected_breakdown_sums_to_one(self):
        probabilities = expected_breakdown(1.3)
        assert_allclose(sum(probabilities.values()), 1.0)
        assert_allclose(probabilities["perfect"], math.exp(-1.3))

    def test_expected_breakdown_zero_defects(self):
        probabilities = expected_breakdown(0.0)
        assert_allclose(probabilities["perfect"], 1.0)
        assert_allclose(probabilities["unusable"], 0.0, atol=1e-12)


# ---------------------------------------------------------------------------
# Yield statistics
# ---------------------------------------------------------------------------

class TestWaferYield:

    def test_defect_density_from_node(self):
        planner = WaferPlanner(WaferConfig())
        # 14nm: 0.45 x (1 - 0.5 x 0.9), 1cm² die
        assert_allclose(planner.effective_defect_density, 0.45 * 0.55)
        assert_allclose(planner.expected_defects, 0.45 * 0.55)

    def test_explicit_defect_density(self):
        planner = WaferPlanner(WaferConfig(base_defect_density=3.5, maturity=0))
        assert_allclose(planner.expected_defects, 3.5)

    def test_breakdown_consistent(self, default_result):
        assert sum(default_result.breakdown.values()) == default_result.total_dies
        good = default_result.breakdown["perfect"] + default_result.breakdown["diminished"]
        assert default_result.good_dies == good
        assert_allclose(default_result.overall_yield, good / default_result.total_dies)
        assert_allclose(default_result.overall_yield_percent, default_result.overall_yield * 100)

    def test_breakdown_tracks_closed_form(self):
        config = WaferConfig(wafer_diameter=450, die_width=2, die_height=2,
                             base_defect_density=50, maturity=0, edge_exclusion=0, seed=8)
        result = WaferPlanner(config).run()
        expected = expected_breakdown(result.expected_defects)
        for key, probability in expected.items():
            assert_allclose(result.breakdown[key] / result.total_dies, probability, atol=0.01)

    def test_transistor_density(self, default_result):
        assert_allclose(transistor_density_scaling(14), 2.5e7 / 196 / 1e6)
        assert_allclose(default_result.transistors_per_die,
                        default_result.transistor_density * 100)

    def test_seed_reproducibility(self):
        r1 = WaferPlanner(WaferConfig(seed=5)).run()
        r2 = WaferPlanner(WaferConfig(seed=5)).run()
        assert r1.breakdown == r2.breakdown
        np.testing.assert_array_equal(r1.defect_counts, r2.defect_counts)


class TestWaferConfigValidation:

    def test_exclusion_consumes_radius(self):
        with pytest.raises(ValidationError, match="Edge exclusion"):
            WaferConfig(wafer_diameter=10, edge_exclusion=5)

    @pytest.mark.parametrize("kwargs", [
        {"wafer_diameter": 0},
        {"die_width": -1},
        {"maturity": 150},
        {"process_node": 0},
        {"base_defect_density": -0.1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            WaferConfig(**kwargs)


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

class TestPerformance:
    """Tests for the interactive frame budget."""

    def test_300mm_wafer_under_100ms(self):
        """A full 300mm wafer plan should fit in one 100ms frame."""
        WaferPlanner(WaferConfig(seed=0)).run()

        start = time.perf_counter()
        result = WaferPlanner(WaferConfig(seed=1)).run()
        elapsed = time.perf_counter() - start

        assert elapsed < 0.1, f"Wafer plan took {elapsed * 1e3:.1f}ms, exceeds 100ms budget"
        assert result.total_dies == 648
