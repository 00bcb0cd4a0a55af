"""
Tests for the CPM scheduler: link types, floats, critical and near-critical sets.
"""
import pytest

from logic import CPMAnalyzer
from models import Dependency, DependencyType


def run(activities, threshold=1.0):
    return CPMAnalyzer(activities, threshold).run()


class TestFinishToStart:
    """A(2) -> B(3) alongside an independent C(4)."""

    @pytest.fixture
    def cpm(self, make_activity):
        return run([make_activity("A", 2), make_activity("B", 3, ["A"]), make_activity("C", 4)])

    def test_project_duration(self, cpm):
        assert cpm.project_duration == 5

    def test_critical_path(self, cpm):
        assert cpm.get_critical_tasks() == ["A", "B"]

    def test_float_on_parallel_activity(self, cpm):
        assert cpm.total_float["C"] == pytest.approx(1)
        assert cpm.free_float["C"] == pytest.approx(1)
        assert cpm.ES["B"] == 2 and cpm.EF["B"] == 5

    def test_near_critical(self, cpm):
        assert cpm.get_near_critical() == ["C"]
        assert cpm.get_near_critical(threshold=0.5) == []

    def test_float_identities(self, cpm):
        for tid in cpm.ids:
            assert cpm.total_float[tid] == pytest.approx(cpm.LF[tid] - cpm.EF[tid])
            assert cpm.total_float[tid] >= -1e-9
            assert 0 <= cpm.free_float[tid] <= cpm.total_float[tid] + 1e-9

    def test_critical_chains(self, cpm):
        assert cpm.get_critical_chains() == [["A", "B"]]

    def test_chain_spans_project(self, cpm):
        critical = cpm.get_critical_tasks()
        assert sum(cpm.EF[t] - cpm.ES[t] for t in critical) == pytest.approx(cpm.project_duration)
        assert all(cpm.durations[t] <= cpm.project_duration for t in critical)

    def test_gantt_sorted_by_start(self, cpm):
        rows = cpm.gantt_rows()
        assert [r.id for r in rows][-1] == "B"
        assert [r.early_start for r in rows] == sorted(r.early_start for r in rows)


class TestLinkTypes:

    def test_start_to_start_with_lag(self, make_activity):
        cpm = run([make_activity("A", 4),
                   make_activity("B", 2, [Dependency("A", DependencyType.SS, 1)])])
        assert cpm.ES["B"] == 1
        assert cpm.EF["B"] == 3
        assert cpm.project_duration == 4
        assert cpm.total_float["B"] == pytest.approx(1)
        assert cpm.is_critical("A")

    def test_finish_to_finish(self, make_activity):
        cpm = run([make_activity("A", 4),
                   make_activity("B", 2, [Dependency("A", DependencyType.FF, 0)])])
        assert cpm.ES["B"] == 2
        assert cpm.EF["B"] == 4
        assert cpm.get_critical_tasks() == ["A", "B"]

    def test_start_to_finish(self, make_activity):
        cpm = run([make_activity("A", 3),
                   make_activity("B", 1, [Dependency("A", DependencyType.SF, 2)])])
        assert cpm.ES["B"] == 1
        assert cpm.EF["B"] == 2

    def test_finish_to_start_lag(self, make_activity):
        cpm = run([make_activity("A", 2),
                   make_activity("B", 1, [Dependency("A", DependencyType.FS, 1.5)])])
        assert cpm.ES["B"] == 3.5
        assert cpm.project_duration == 4.5

    def test_negative_lag_floored_at_zero(self, make_activity):
        cpm = run([make_activity("A", 2),
                   make_activity("B", 1, [Dependency("A", DependencyType.FS, -5)])])
        assert cpm.ES["B"] == 0


class TestEdgeCases:

    def test_float_under_tolerance_counts_as_critical(self, make_activity):
        """Float below the critical tolerance is critical, never near-critical."""
        cpm = run([make_activity("A", 2),
                   make_activity("B", 1, [Dependency("A", DependencyType.FS, 0.9995)]),
                   make_activity("C", 4)])
        assert 0 < cpm.total_float["B"] < 0.001
        assert cpm.is_critical("B")
        assert "B" not in cpm.get_near_critical()

    def test_empty_schedule(self):
        cpm = run([])
        assert cpm.project_duration == 0
        assert cpm.get_critical_tasks() == []

    def test_zero_duration_never_critical(self, make_activity):
        cpm = run([make_activity("A", 2), make_activity("Z", 0, ["A"])])
        assert not cpm.is_critical("Z")
        assert [r.id for r in cpm.gantt_rows()] == ["A"]

    def test_cycle_still_schedules_everything(self, make_activity):
        cpm = run([make_activity("A", 1, ["B"]), make_activity("B", 2, ["A"])])
        assert cpm.cycle_detected
        assert set(cpm.ES) == {"A", "B"}
        assert cpm.project_duration > 0

    def test_schedule_entries(self, make_activity):
        entries = run([make_activity("A", 3), make_activity("B", 2, ["A"])]).schedule()
        assert entries["B"].early_start == 3
        assert entries["B"].late_finish == 5
        assert entries["A"].free_float == 0
