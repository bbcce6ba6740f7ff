"""
Unit tests for chip CLASS and GRADE classification.

Tests verify:
1. Class best-fit scoring across tiers
2. Grade detection priority Military -> Enterprise -> Workstation -> Consumer
3. Ratio computation guards against empty dies
"""

import pytest
from numpy.testing import assert_allclose

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fabsim.classification import (
    CHIP_CLASSES,
    ClassificationMetrics,
    class_score,
    classification_metrics,
    classify_chip,
    classify_class,
    classify_grade,
    grade_matches,
)
from fabsim.constants import CHIP_CLASS_CRITERIA
from fabsim.layout import Component, Die


# ---------------------------------------------------------------------------
# Class
# ---------------------------------------------------------------------------

class TestChipClass:

    @pytest.mark.parametrize("cores,tdp,expected", [
        (1, 5, "Low-Power"),
        (2, 10, "Low-Power"),
        (4, 45, "Budget"),
        (6, 95, "Mid-Range"),
        (8, 150, "High-End"),
        (12, 150, "High-End"),
        (32, 300, "Halo"),
        (0, 0, "Low-Power"),
    ])
    def test_best_fit(self, cores, tdp, expected):
        assert classify_class(cores, tdp) == expected

    def test_midpoint_scores_highest(self):
        limits = CHIP_CLASS_CRITERIA["Mid-Range"]
        assert class_score(6, 92.5, limits) > class_score(5, 92.5, limits)
        assert_allclose(class_score(6, 92.5, limits), 100 + 50 + 50 + 25)

    def test_outside_range_penalized(self):
        limits = CHIP_CLASS_CRITERIA["Budget"]
        assert_allclose(class_score(6, 47.5, limits), -50 + 75)

    def test_always_a_known_class(self):
        for cores in (0, 1, 3, 7, 15, 64, 1000):
            for tdp in (0, 20, 120, 5000):
                assert classify_class(cores, tdp) in CHIP_CLASSES


# ---------------------------------------------------------------------------
# Grade
# ---------------------------------------------------------------------------

class TestChipGrade:

    MILITARY = ClassificationMetrics(
        cores_per_controller=4, l3_per_core=2.0, power_mgmt_ratio=0.2, max_clock_ratio=0.5,
    )
    # satisfies both Enterprise/Server and Workstation
    SERVER_AND_WORKSTATION = ClassificationMetrics(
        cores_per_controller=3, l3_per_core=3.5, power_mgmt_ratio=0.06, max_clock_ratio=0.9,
    )

    def test_military(self):
        assert classify_grade(self.MILITARY, process_node=45) == "Military/Aerospace"

    def test_military_requires_old_node(self):
        assert not grade_matches("Military/Aerospace", self.MILITARY, 14)
        assert classify_grade(self.MILITARY, process_node=14) == "Consumer"

    def test_military_requires_low_clock(self):
        fast = ClassificationMetrics(4, 2.0, 0.2, 0.8)
        assert classify_grade(fast, process_node=45) == "Consumer"

    def test_enterprise_beats_workstation(self):
        assert grade_matches("Workstation", self.SERVER_AND_WORKSTATION, 7)
        assert classify_grade(self.SERVER_AND_WORKSTATION, 7) == "Enterprise/Server"

    def test_military_beats_every_other_grade(self, monkeypatch):
        import fabsim.classification as classification
        monkeypatch.setattr(classification, "grade_matches", lambda *args: True)
        assert classify_grade(self.MILITARY, process_node=7) == "Military/Aerospace"

    def test_workstation(self):
        metrics = ClassificationMetrics(4, 2.5, 0.09, 0.9)
        assert classify_grade(metrics, 7) == "Workstation"

    def test_fallback_consumer(self):
        assert classify_grade(ClassificationMetrics(0, 0, 0, 1.0), 7) == "Consumer"


# ---------------------------------------------------------------------------
# Metrics from a die
# ---------------------------------------------------------------------------

class TestClassificationMetrics:

    def test_ratios(self):
        die = Die(10, 10, components=[
            Component("cpu_core", "CPU Core 0", 0, 0, 1, 1),
            Component("cpu_core", "CPU Core 1", 1, 0, 1, 1),
            Component("mem_ctrl", "Memory Controller 0", 0, 2, 1, 1),
            Component("l3_cache", "L3 Cache 0", 3, 0, 2, 3),
            Component("power_mgmt", "Power Management 0", 6, 0, 2, 2),
        ])
        m = classification_metrics(die, clock_ghz=3.0, max_clock_ghz=5.0)
        assert_allclose(m.cores_per_controller, 2.0)
        assert_allclose(m.l3_per_core, 3.0)
        assert_allclose(m.power_mgmt_ratio, 0.04)
        assert_allclose(m.max_clock_ratio, 0.6)

    def test_empty_die(self):
        result = classify_chip(Die(10, 10), clock_ghz=4.0, max_clock_ghz=5.0, tdp=0.0)
        assert result.metrics.cores_per_controller == 0
        assert result.metrics.l3_per_core == 0
        assert result.chip_grade == "Consumer"
        assert result.chip_class == "Low-Power"
