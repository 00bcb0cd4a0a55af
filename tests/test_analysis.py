"""
Tests for benchmark classification, confidence scoring and the job analysis rules.
"""
import pytest

from analysis import (
    HIGH, IN_RANGE, LOW, VERY_HIGH, VERY_LOW, calculate_confidence, check_unit_costs,
    classify_unit_cost, generate_analysis,
)
from defaults import Benchmark
from models import (
    ActivityType, ClusterResults, JobMode, ShiftPlan, ThreeTierResult, TierResult,
)


def flags(observations):
    return [o.flag for o in observations]


class TestClassifyUnitCost:
    """Placement of a unit cost against the P25..P75 band."""

    bm = Benchmark(10.0, 12.0, 14.0)

    def test_band_edges_in_range(self):
        assert classify_unit_cost(10.0, self.bm) == IN_RANGE
        assert classify_unit_cost(14.0, self.bm) == IN_RANGE

    def test_high_and_very_high(self):
        assert classify_unit_cost(21.0, self.bm) == HIGH
        assert classify_unit_cost(14.0 * 1.5 + 0.01, self.bm) == VERY_HIGH

    def test_low_and_very_low(self):
        assert classify_unit_cost(9.0, self.bm) == LOW
        assert classify_unit_cost(5.0, self.bm) == LOW
        assert classify_unit_cost(4.99, self.bm) == VERY_LOW


class TestConfidence:

    def test_empty_estimate(self):
        score = calculate_confidence([], JobMode.PARKING_LOT)
        assert score.composite == 0.0
        assert score.descriptor == "LOW"

    def test_well_benchmarked_activity(self, make_result):
        """Surface course in band and in range: 0.85 rate confidence, full marks elsewhere."""
        score = calculate_confidence([make_result(unit_cost=11.09)], JobMode.PARKING_LOT)
        assert score.production_reliability == pytest.approx(0.85)
        assert score.benchmark_alignment == 1.0
        assert score.scope_definition == 1.0
        assert score.data_quality == 1.0
        assert score.composite == pytest.approx(0.85 * 0.35 + 0.30 + 0.20 + 0.15)
        assert score.descriptor == "HIGH"

    def test_derived_benchmarks_lower_data_quality(self, make_result):
        score = calculate_confidence([make_result(unit_cost=100.0)], JobMode.ROADWAY)
        assert score.data_quality == pytest.approx(0.2)
        assert score.benchmark_alignment == 0.0
        assert 0.0 <= score.composite <= 1.0

    def test_unit_checks_skip_idle_rows(self, make_result):
        rows = [make_result(unit_cost=11.09), make_result("X", duration=0.0)]
        checks = check_unit_costs(rows, JobMode.PARKING_LOT)
        assert [c.activity_id for c in checks] == ["PAVE-002"]
        assert checks[0].status == IN_RANGE


class TestGenerateAnalysis:

    def test_clean_job_raises_nothing(self, make_result):
        assert generate_analysis([make_result(unit_cost=11.09, trucking_cost=500.0)], JobMode.PARKING_LOT) == []

    def test_small_quantity_and_missing_trucking(self, make_result):
        obs = generate_analysis([make_result(gross_quantity=300.0, unit_cost=11.09)], JobMode.PARKING_LOT)
        assert flags(obs) == ["SMALL_QTY", "NO_TRUCKING"]
        assert [o.id for o in obs] == ["OBS-001", "OBS-002"]
        assert obs[0].activity_id == "PAVE-002"

    def test_very_high_unit_cost_warns(self, make_result):
        obs = generate_analysis([make_result(unit_cost=30.0, trucking_cost=1.0)], JobMode.PARKING_LOT)
        assert flags(obs) == ["UNIT_COST"]
        assert obs[0].status == "WARNING"

    def test_min_shift(self, make_result):
        tiers = ThreeTierResult(TierResult(0.8, raw_hours=2.5), TierResult(1.0, raw_hours=2.0),
                                TierResult(1.2, raw_hours=1.7))
        obs = generate_analysis([make_result(unit_cost=11.09, trucking_cost=1.0, three_tier=tiers)],
                                JobMode.PARKING_LOT)
        assert flags(obs) == ["MIN_SHIFT"]

    def test_overtime_on_long_shift_base(self, make_result):
        tiers = ThreeTierResult(TierResult(0.8), TierResult(1.0, raw_hours=24, optimized=ShiftPlan(24, 2, False, 0, 12)),
                                TierResult(1.2))
        obs = generate_analysis([make_result(unit_cost=11.09, trucking_cost=1.0, three_tier=tiers)],
                                JobMode.PARKING_LOT)
        assert flags(obs) == ["OVERTIME"]

    def test_undersized_manual_crew(self, make_result):
        row = make_result(gross_quantity=6000.0, unit_cost=11.09, trucking_cost=1.0,
                          crew_code="FLEX3", crew_size=3, crew_auto_selected=False)
        obs = generate_analysis([row], JobMode.PARKING_LOT)
        assert flags(obs) == ["CREW_UNDERSIZED"]
        assert "PV10" in obs[0].message

    def test_auto_selected_crew_not_second_guessed(self, make_result):
        row = make_result(gross_quantity=6000.0, unit_cost=11.09, trucking_cost=1.0,
                          crew_code="FLEX3", crew_size=3, crew_auto_selected=True)
        assert generate_analysis([row], JobMode.PARKING_LOT) == []

    def test_combo_and_mobilization_share(self, make_result):
        rows = [
            make_result("MILL-001", ActivityType.MILLING, unit_cost=3.64, trucking_cost=1.0, direct_cost=2000.0),
            make_result("PAVE-002", unit_cost=11.09, trucking_cost=1.0, direct_cost=2000.0),
        ]
        clusters = ClusterResults([], True, 1000.0, 0.0, 1000.0)
        obs = generate_analysis(rows, JobMode.PARKING_LOT, clusters)
        assert flags(obs) == ["COMBO_AVAILABLE", "MOB_HIGH"]

    def test_roadway_without_safety_crew(self, make_result):
        obs = generate_analysis([make_result(unit_cost=8.5, trucking_cost=1.0, gross_quantity=5000.0)],
                                JobMode.ROADWAY)
        assert "SAFETY_MISSING" in flags(obs)

    def test_plant_opening_fee_on_small_tonnage(self, make_result):
        obs = generate_analysis([make_result(unit_cost=11.09, trucking_cost=1.0)], JobMode.PARKING_LOT,
                                total_hma_tons=60.0)
        assert flags(obs) == ["PLANT_OPENING"]
        assert "$750" in obs[0].message

    def test_systemic_high_pricing(self, make_result):
        rows = [
            make_result("MILL-001", ActivityType.MILLING, unit_cost=5.0, trucking_cost=1.0),
            make_result("PAVE-001", ActivityType.PAVING_BASE, unit_cost=40.0, trucking_cost=1.0),
            make_result("PAVE-002", ActivityType.PAVING_SURFACE, unit_cost=13.0, trucking_cost=1.0),
        ]
        obs = generate_analysis(rows, JobMode.PARKING_LOT)
        assert "SYSTEMIC_HIGH" in flags(obs)
        assert "SYSTEMIC_LOW" not in flags(obs)

    def test_systemic_low_pricing(self, make_result):
        rows = [
            make_result("MILL-001", ActivityType.MILLING, unit_cost=2.0, trucking_cost=1.0),
            make_result("PAVE-001", ActivityType.PAVING_BASE, unit_cost=20.0, trucking_cost=1.0),
            make_result("PAVE-002", ActivityType.PAVING_SURFACE, unit_cost=9.0, trucking_cost=1.0),
        ]
        obs = generate_analysis(rows, JobMode.PARKING_LOT)
        assert "SYSTEMIC_LOW" in flags(obs)
        assert "SYSTEMIC_HIGH" not in flags(obs)
