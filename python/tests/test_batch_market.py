"""
Unit tests for batch planning and the foundry market.

Tests verify:
1. Reticle packing and wafer-level die counts
2. Yield by maturity and cost per good die
3. Stepped wafer prices and contract discounts, deposits and lead times
4. Foundry capacity interpolation, node availability and market conditions
"""

import math

import pytest
import numpy as np
from numpy.testing import assert_allclose

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fabsim.batch import (
    MATURITY_MULTIPLIERS,
    BatchPlan,
    cost_per_wafer,
    reticle_metrics,
    yield_by_maturity,
)
from fabsim.errors import ValidationError
from fabsim.layout import Die
from fabsim.market import (
    FOUNDRIES,
    available_foundries,
    base_wafer_price,
    contract_pricing,
    foundry_capacity,
    foundry_nodes,
    market_conditions,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def die_10x10() -> Die:
    return Die(10, 10, process_node=7, sku="Ten")


# ---------------------------------------------------------------------------
# Reticle metrics
# ---------------------------------------------------------------------------

class TestReticleMetrics:

    def test_10x10_on_300mm(self, die_10x10):
        m = reticle_metrics(die_10x10, 300, (26, 33))
        assert (m.dies_per_reticle_x, m.dies_per_reticle_y) == (2, 3)
        assert m.dies_per_reticle == 6
        usable = math.pi * 145 ** 2
        assert m.reticle_shots_per_wafer == math.floor(usable / 858 * 0.85)
        assert m.reticle_shots_per_wafer == 65
        assert m.dies_per_wafer == 390
        assert_allclose(m.wafer_area_utilization, 390 * 100 / usable * 100)

    def test_missing_die(self):
        m = reticle_metrics(None)
        assert m.dies_per_wafer == 0
        assert m.wafer_area_utilization == 0.0

    def test_die_larger_than_reticle(self):
        m = reticle_metrics(Die(30, 30), 300, (26, 33))
        assert m.dies_per_reticle == 0
        assert m.dies_per_wafer == 0

    def test_utilization_capped(self):
        m = reticle_metrics(Die(1, 1), 300, (26, 33))
        assert m.wafer_area_utilization <= 100.0

    def test_invalid_reticle(self, die_10x10):
        with pytest.raises(ValidationError, match="Reticle"):
            reticle_metrics(die_10x10, 300, (0, 33))


# ---------------------------------------------------------------------------
# Batch plan
# ---------------------------------------------------------------------------

class TestBatchPlan:

    def test_yield_by_maturity(self):
        yields = yield_by_maturity(0.6)
        assert list(yields) == list(MATURITY_MULTIPLIERS)
        assert_allclose(yields["new"], 0.45)
        assert_allclose(yields["mature"], 0.69)
        assert yield_by_maturity(0.9)["optimized"] == 1.0

    def test_yield_by_maturity_capped_at_one(self):
        yields = yield_by_maturity(0.95)
        # 0.95 x 1.15 and 0.95 x 1.25 both exceed 1
        assert yields["mature"] == 1.0
        assert yields["optimized"] == 1.0
        assert_allclose(yields["early"], 0.95)
        assert all(0.0 <= value <= 1.0 for value in yield_by_maturity(1.0).values())

    def test_cost_per_wafer_nearest(self):
        assert cost_per_wafer(7) == 30.0
        assert cost_per_wafer(6) == 40.0
        assert cost_per_wafer(20) == 16.0

    def test_from_die(self, die_10x10):
        plan = BatchPlan.from_die(die_10x10, name="Run 1")
        base = math.exp(-0.6)
        assert_allclose(plan.base_yield, base)
        assert_allclose(plan.yields["early"], base)
        assert plan.cost_per_wafer == 30.0
        assert plan.metrics.dies_per_wafer == 390
        assert_allclose(plan.good_dies_per_wafer(), 390 * base)
        assert_allclose(plan.cost_per_good_die(), 30000 / (390 * base))
        assert plan.cost_per_good_die("optimized") < plan.cost_per_good_die("new")

    def test_no_good_dies(self):
        plan = BatchPlan.from_die(Die(30, 30))
        assert plan.cost_per_good_die() == math.inf

    def test_unknown_maturity(self, die_10x10):
        with pytest.raises(ValidationError, match="maturity"):
            BatchPlan.from_die(die_10x10).cost_per_good_die("ancient")


# ---------------------------------------------------------------------------
# Contract pricing
# ---------------------------------------------------------------------------

class TestContractPricing:

    @pytest.mark.parametrize("node,price", [
        (2, 30000), (3, 30000), (4, 25000), (7, 18000), (8, 12000), (14, 8000),
        (28, 4000), (65, 2500), (180, 1200), (600, 600), (1000, 400),
    ])
    def test_base_wafer_price(self, node, price):
        assert base_wafer_price(node) == price

    def test_spot_premium(self):
        quote = contract_pricing("tsmc", "spot", 7, 100, 4)
        assert quote.discount == 0.0
        assert quote.price_per_wafer == 22770
        assert quote.total_wafers == 400
        assert quote.total_value == 9108000
        assert quote.deposit == 0.0
        assert quote.lead_time_weeks == 4

    @pytest.mark.parametrize("total,discount", [(1000, 0.05), (5000, 0.07), (10000, 0.10)])
    def test_short_term_discounts(self, total, discount):
        quote = contract_pricing("umc", "short-term", 28, total // 10, 10)
        assert quote.discount == discount
        assert quote.price_per_wafer == round(4000 * 0.80 * (1 - discount))
        assert quote.deposit_percent == 0.10
        assert quote.lead_time_weeks == 4

    @pytest.mark.parametrize("total,discount", [
        (5000, 0.10), (10000, 0.12), (20000, 0.15), (50000, 0.17), (100000, 0.20),
    ])
    def test_long_term_discounts(self, total, discount):
        quote = contract_pricing("umc", "long-term", 28, total // 50, 50)
        assert quote.discount == discount
        assert quote.deposit_percent == 0.20
        assert quote.lead_time_weeks == 8

    def test_long_term_deposit(self):
        quote = contract_pricing("umc", "long-term", 28, 500, 52)
        assert quote.price_per_wafer == 2720
        assert quote.total_value == 2720 * 26000
        assert_allclose(quote.deposit, 0.2 * quote.total_value)
        assert_allclose(quote.remaining_balance, 0.8 * quote.total_value)

    def test_accepts_foundry_object(self):
        quote = contract_pricing(FOUNDRIES["samsung"], "spot", 5, 10, 1)
        assert quote.foundry_id == "samsung"

    def test_invalid_inputs(self):
        with pytest.raises(ValidationError, match="Unknown foundry"):
            contract_pricing("acme", "spot", 7, 10, 1)
        with pytest.raises(ValidationError, match="contract type"):
            contract_pricing("tsmc", "forever", 7, 10, 1)
        with pytest.raises(ValidationError, match="positive"):
            contract_pricing("tsmc", "spot", 7, 0, 1)


# ---------------------------------------------------------------------------
# Foundry market
# ---------------------------------------------------------------------------

class TestFoundryMarket:

    def test_capacity_interpolated(self):
        assert foundry_capacity("tsmc", 2012) == 38000
        assert foundry_capacity("tsmc", 1980) == 500
        assert foundry_capacity("tsmc", 2040) == 120000

    def test_nodes_step_to_latest_year(self):
        assert foundry_nodes("tsmc", 2021) == (7, 5)
        assert foundry_nodes("tsmc", 2022) == (5, 3)
        assert foundry_nodes("tsmc", 1980) == ()

    def test_available_foundries(self):
        ids = {f.id for f in available_foundries(2019, 7)}
        assert ids == {"tsmc", "samsung"}
        assert "intel_foundry" not in {f.id for f in available_foundries(2020)}
        assert "intel_foundry" in {f.id for f in available_foundries(2021)}

    def test_market_conditions_bounds(self):
        rng = np.random.default_rng(0)
        for _ in range(200):
            conditions = market_conditions("tsmc", 2020, rng)
            assert 0.85 <= conditions.utilization <= 0.95
            if conditions.utilization > 0.90:
                assert conditions.spot_price_multiplier == 1.15
            else:
                assert conditions.spot_price_multiplier == 1.0

    def test_market_conditions_budget(self):
        conditions = market_conditions("umc", 2020, np.random.default_rng(1))
        assert 0.60 <= conditions.utilization <= 0.70
        expected = math.floor(35000 * (1 - conditions.utilization) + 0.5)
        assert conditions.available_capacity == expected

    def test_market_conditions_reproducible(self):
        c1 = market_conditions("smic", 2015, np.random.default_rng(4))
        c2 = market_conditions("smic", 2015, np.random.default_rng(4))
        assert c1 == c2
