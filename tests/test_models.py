"""
Tests for the estimate data model: crews, quantities, productivity, trucking, indirects.
"""
import pytest

from models import (
    Activity, ActivityType, Contingency, Crew, CrewMember, EstimateClass, IndirectCosts,
    ProductionRate, ProductivityFactor, Quantity, Resource, ResourceType, RiskItem, RiskRegister,
    RiskType, TruckingParams,
)


class TestCrew:
    """Hourly cost of composite and itemized crews."""

    def test_composite_rate_is_all_labor(self):
        """A blended rate is charged as labor with no equipment share."""
        crew = Crew("PV8", "Paving Crew 8-Man", composite_rate=400.75, headcount=8)
        assert crew.is_composite
        assert crew.labor_cost_per_hour == 400.75
        assert crew.equipment_cost_per_hour == 0.0
        assert crew.people == 8

    def test_itemized_crew_sums_members(self):
        """Itemized crews price labor and equipment from their resources."""
        laborer = Resource("L-1", "Laborer", ResourceType.LABOR, "HR", 45.0)
        roller = Resource("E-1", "Roller", ResourceType.EQUIPMENT, "HR", 60.0)
        crew = Crew("X", "Custom", labor=[CrewMember(laborer, 3)], equipment=[CrewMember(roller, 1)])
        assert not crew.is_composite
        assert crew.labor_cost_per_hour == 135.0
        assert crew.equipment_cost_per_hour == 60.0
        assert crew.hourly_cost == 195.0
        assert crew.people == 3


class TestActivity:
    """Duration and cost derivation for a single activity."""

    def _activity(self, qty, rate, **kwargs):
        return Activity("PAVE-002", "Surface", ActivityType.PAVING_SURFACE, Quantity(qty, "SY"),
                        production_rate=ProductionRate(rate), **kwargs)

    def test_gross_quantity_applies_waste_and_contingency(self):
        q = Quantity(1000, "SY", waste_factor=1.05, design_contingency=1.10)
        assert q.gross_quantity == pytest.approx(1155.0)

    def test_duration_rounds_up_to_half_day(self):
        """1000 SY at 300 SY/day is 3.33 days, billed as 3.5."""
        assert self._activity(1000, 300).duration == 3.5
        assert self._activity(600, 300).duration == 2.0

    def test_zero_rate_gives_zero_duration_and_cost(self):
        crew = Crew("PV8", "Paving", composite_rate=400.0, headcount=8)
        a = self._activity(1000, 0, crew=crew)
        assert a.duration == 0.0
        assert a.labor_cost == 0.0
        assert a.direct_cost == 0.0

    def test_labor_cost_uses_duration_and_shift_hours(self):
        crew = Crew("PV8", "Paving", composite_rate=400.0, headcount=8)
        a = self._activity(1000, 500, crew=crew)
        assert a.duration == 2.0
        assert a.labor_cost == pytest.approx(2 * 8 * 400.0)
        assert a.labor_hours == pytest.approx(2 * 8 * 8)

    def test_mobilization_only_when_included_and_active(self):
        a = self._activity(1000, 500, include_mobilization=True, mobilization_cost_input=1200)
        assert a.mobilization_cost == 1200
        idle = self._activity(0, 500, include_mobilization=True, mobilization_cost_input=1200)
        assert idle.mobilization_cost == 0.0

    def test_trucking_sizes_fleet_from_daily_quantity(self):
        """220 tons/day, 22-ton trucks, 60-minute cycle at 90% -> 2 trucks for 16 hours."""
        a = self._activity(1000, 1000, trucking=TruckingParams(cycle_time=60, truck_capacity=22, efficiency=0.9))
        result = a.compute_trucking(100.0, quantity=220)
        assert result.daily_quantity == pytest.approx(220)
        assert result.loads_per_day == pytest.approx(10)
        assert result.trucks == 2
        assert result.truck_hours == 16
        assert result.cost == pytest.approx(1600.0)

    def test_trucking_without_cycle_time_is_empty(self):
        a = self._activity(1000, 1000, trucking=TruckingParams(cycle_time=0))
        assert a.compute_trucking(100.0).trucks == 0
        assert a.compute_trucking(100.0).cost == 0.0


class TestProductivityFactor:
    """Composite productivity multipliers and presets."""

    def test_default_is_neutral(self):
        pf = ProductivityFactor()
        assert pf.composite == 1.0
        assert not pf.is_custom
        assert pf.active_modifiers == []

    def test_unknown_modifier_rejected(self):
        with pytest.raises(ValueError):
            ProductivityFactor({"moon_phase": 0.9})

    def test_standard_preset(self):
        pf = ProductivityFactor.from_preset("standard")
        assert pf.composite == pytest.approx(0.85 * 0.82)
        assert pf.is_custom
        assert {m["key"] for m in pf.active_modifiers} == {"site_access", "spec_complexity"}

    def test_composite_value_snaps_to_matching_preset(self):
        pf = ProductivityFactor.from_composite_value(0.70)
        assert pf.preset == "standard"

    def test_composite_value_split_across_two_modifiers(self):
        pf = ProductivityFactor.from_composite_value(0.5)
        assert pf.preset is None
        assert pf.composite == pytest.approx(0.5)


class TestRiskAndIndirects:
    """Risk register and the indirect cost stack."""

    def test_register_expected_value_and_grouping(self):
        reg = RiskRegister()
        reg.add_risk(RiskItem("R1", "Rock", 0.5, 0, 2000, 5000, risk_type=RiskType.SCOPE))
        reg.add_risk(RiskItem("R2", "Rain", 0.25, 0, 4000, 8000, risk_type=RiskType.SCHEDULE))
        assert reg.total_expected_value == pytest.approx(2000.0)
        assert set(reg.by_type) == {RiskType.SCOPE, RiskType.SCHEDULE}
        reg.remove_risk("R1")
        assert reg.total_expected_value == pytest.approx(1000.0)

    def test_fee_and_unidentified_allowance(self):
        """15% fee then a 10% allowance on the subtotal."""
        breakdown = IndirectCosts().calculate(1000.0, 0.0, 0.0)
        assert breakdown.fee_profit == pytest.approx(150.0)
        assert breakdown.subtotal_before_contingency == pytest.approx(1150.0)
        assert breakdown.total_contingency == pytest.approx(115.0)
        assert breakdown.total_estimated_cost == pytest.approx(1265.0)

    def test_register_feeds_identified_risks(self):
        reg = RiskRegister([RiskItem("R1", "Rock", 0.5, 0, 200, 400)])
        breakdown = IndirectCosts().calculate(1000.0, 0.0, 0.0, reg)
        assert breakdown.identified_risks == pytest.approx(100.0)
        assert breakdown.total_contingency == pytest.approx(215.0)

    def test_manual_contingency_override(self):
        costs = IndirectCosts(contingency=Contingency(manual_override=0.0))
        assert costs.calculate(1000.0, 0.0, 0.0).total_estimated_cost == pytest.approx(1150.0)

    def test_estimate_class_lookup(self):
        assert EstimateClass.from_id(2) is EstimateClass.CLASS_2
        assert EstimateClass.from_id(9) is EstimateClass.CLASS_3
        assert EstimateClass.CLASS_5.label == "Class 5 - Conceptual"
