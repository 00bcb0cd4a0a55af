"""
Shared fixtures for the estimator tests.
"""
import pytest

from helpers import ActivityInputs, MaterialPrices, ProjectSettings, build_estimate
from models import (
    Activity, ActivityResult, ActivityType, Crew, Dependency, DependencyType, JobMode,
    ProductionRate, Quantity, TruckingResult,
)


def _dependency(dep):
    if isinstance(dep, Dependency):
        return dep
    return Dependency(dep, DependencyType.FS, 0)


@pytest.fixture
def make_activity():
    """Build an activity whose duration equals `duration` working days (rate 100/day)."""
    def _make(activity_id, duration, deps=(), activity_type=ActivityType.FINE_GRADING, crew_rate=None):
        return Activity(
            id=activity_id,
            description=f"Activity {activity_id}",
            activity_type=activity_type,
            quantity=Quantity(duration * 100, "SY"),
            crew=Crew(f"C-{activity_id}", "crew", composite_rate=crew_rate, headcount=4) if crew_rate else None,
            production_rate=ProductionRate(100, "SY"),
            dependencies=[_dependency(d) for d in deps],
        )
    return _make


@pytest.fixture
def make_result():
    """Build a calculated activity row with only the fields a test cares about set."""
    def _make(activity_id="PAVE-002", activity_type=ActivityType.PAVING_SURFACE, **overrides):
        values = dict(
            id=activity_id,
            description=f"Activity {activity_id}",
            activity_type=activity_type,
            net_quantity=1000.0,
            gross_quantity=1000.0,
            uom="SY",
            reference_rate=3500.0,
            productivity_factor=1.0,
            adjusted_rate=3500.0,
            duration=1.0,
            labor_hours=40.0,
            labor_cost=2000.0,
            equipment_cost=0.0,
            material_cost=8000.0,
            mobilization_cost=0.0,
            trucking=TruckingResult(),
            trucking_cost=0.0,
            direct_cost=10000.0,
            unit_cost=11.0,
            unit_cost_uom="SY",
            crew_code=None,
            crew_size=0,
            crew_auto_selected=True,
            early_start=0.0,
            early_finish=1.0,
        )
        values.update(overrides)
        return ActivityResult(**values)
    return _make


@pytest.fixture
def material_prices():
    return MaterialPrices(hma_surface=92.0, hma_base=85.0, dga=28.0, tack=3.25)


@pytest.fixture
def mill_and_pave_inputs():
    """Mill and overlay on a 2,000 SY lot: milling, base, surface (tack is added automatically)."""
    return {
        ActivityType.MILLING: ActivityInputs(area=2000, depth=2, cycle_time=45),
        ActivityType.PAVING_BASE: ActivityInputs(area=2000, depth=2, cycle_time=60),
        ActivityType.PAVING_SURFACE: ActivityInputs(area=2000, depth=1.5, cycle_time=60),
    }


@pytest.fixture
def mill_and_pave_estimate(mill_and_pave_inputs, material_prices):
    return build_estimate(mill_and_pave_inputs, material_prices, ProjectSettings(), JobMode.PARKING_LOT)
