"""
Tests for mobilization clustering and the roadway safety crew.
"""
import pytest

from logic import clusterize
from models import ActivityType, JobMode


class TestClusterize:

    def test_nothing_active(self, make_result):
        results = clusterize([make_result(duration=0.0)], JobMode.PARKING_LOT)
        assert results.clusters == []
        assert results.mob_and_safety == 0.0

    def test_mill_and_pave_share_one_deployment(self, make_result):
        rows = [
            make_result("MILL-001", ActivityType.MILLING),
            make_result("PAVE-002", ActivityType.PAVING_SURFACE),
        ]
        results = clusterize(rows, JobMode.PARKING_LOT, travel_hours=1.0)
        assert results.is_combo
        assert [c.key for c in results.clusters] == ["combo"]
        assert results.clusters[0].activity_ids == ["MILL-001", "PAVE-002"]
        assert results.total_mob_cost == pytest.approx(2 * 297.25)

    def test_separate_milling_and_earthwork(self, make_result):
        rows = [
            make_result("EXC-001", ActivityType.EXCAVATION),
            make_result("MILL-001", ActivityType.MILLING),
        ]
        results = clusterize(rows, JobMode.PARKING_LOT, travel_hours=2.0)
        assert not results.is_combo
        assert [c.key for c in results.clusters] == ["milling", "earthwork"]
        assert results.total_mob_cost == pytest.approx(2 * 2.0 * 297.25 + 2 * 2.0 * 188.73)

    def test_cluster_days_sum_member_durations(self, make_result):
        rows = [
            make_result("PAVE-001", ActivityType.PAVING_BASE, duration=2.0),
            make_result("TACK-001", ActivityType.TACK_COAT, duration=0.5),
        ]
        cluster = clusterize(rows, JobMode.PARKING_LOT).clusters[0]
        assert cluster.key == "paving"
        assert cluster.total_days == pytest.approx(2.5)

    def test_roadway_adds_safety_crew(self, make_result):
        rows = [make_result("PAVE-002", ActivityType.PAVING_SURFACE, early_start=0.0, early_finish=3.0)]
        results = clusterize(rows, JobMode.ROADWAY, std_shift=8.0)
        assert results.safety_cost == pytest.approx(3 * 8 * 130.39)
        assert results.mob_and_safety == pytest.approx(results.total_mob_cost + results.safety_cost)

    def test_parking_lot_has_no_safety_crew(self, make_result):
        results = clusterize([make_result()], JobMode.PARKING_LOT)
        assert results.safety_cost == 0.0
