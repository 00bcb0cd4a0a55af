from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Union
import math

from utils import safe_div


class ActivityType(str, Enum):
    EXCAVATION = "excavation"
    FINE_GRADING = "fine_grading"
    DGA_BASE = "dga_base"
    MILLING = "milling"
    PAVING_BASE = "paving_base"
    PAVING_SURFACE = "paving_surface"
    TACK_COAT = "tack_coat"


PAVING_TYPES = (ActivityType.PAVING_BASE, ActivityType.PAVING_SURFACE)
HAULED_TYPES = (ActivityType.EXCAVATION, ActivityType.DGA_BASE, ActivityType.MILLING,
                ActivityType.PAVING_BASE, ActivityType.PAVING_SURFACE)


class JobMode(str, Enum):
    PARKING_LOT = "parking_lot"
    ROADWAY = "roadway"


class DependencyType(str, Enum):
    FS = "FS"   # finish-to-start
    SS = "SS"   # start-to-start
    FF = "FF"   # finish-to-finish
    SF = "SF"   # start-to-finish


class DependencySource(str, Enum):
    PHYSICAL = "physical"
    RESOURCE = "resource"
    PREFERENCE = "preference"


class ResourceType(str, Enum):
    LABOR = "labor"
    EQUIPMENT = "equipment"
    MATERIAL = "material"
    SUBCONTRACT = "subcontract"


class RiskType(str, Enum):
    SCOPE = "scope"
    PRODUCTION = "production"
    PRICING = "pricing"
    SCHEDULE = "schedule"
    EXTERNAL = "external"


class EstimateClass(Enum):
    """AACE classification: (class id, label, contingency range, default contingency)."""
    CLASS_5 = (5, "Conceptual", (0.30, 1.00), 0.50)
    CLASS_4 = (4, "Schematic", (0.20, 0.50), 0.30)
    CLASS_3 = (3, "Design Development", (0.10, 0.30), 0.15)
    CLASS_2 = (2, "Detailed", (0.05, 0.20), 0.10)
    CLASS_1 = (1, "Check/Bid", (0.03, 0.10), 0.05)

    @property
    def class_id(self):
        return self.value[0]

    @property
    def label(self):
        return f"Class {self.value[0]} - {self.value[1]}"

    @property
    def contingency_range(self):
        return self.value[2]

    @property
    def default_contingency(self):
        return self.value[3]

    @classmethod
    def from_id(cls, class_id: int) -> "EstimateClass":
        for member in cls:
            if member.class_id == class_id:
                return member
        return cls.CLASS_3


# -----------------------------
# Resources, crews, rates
# -----------------------------

@dataclass
class Resource:
    id: str
    name: str
    type: ResourceType
    unit: str
    cost_rate: float  # $ per unit


@dataclass
class CrewMember:
    resource: Resource
    count: float = 1.0


@dataclass
class Crew:
    id: str
    name: str
    labor: List[CrewMember] = field(default_factory=list)
    equipment: List[CrewMember] = field(default_factory=list)
    composite_rate: Optional[float] = None   # blended $/hr when no detail is entered
    headcount: int = 0

    @property
    def is_composite(self) -> bool:
        return self.composite_rate is not None and not self.labor and not self.equipment

    @property
    def labor_cost_per_hour(self) -> float:
        if self.is_composite:
            return self.composite_rate
        return sum(m.resource.cost_rate * m.count for m in self.labor)

    @property
    def equipment_cost_per_hour(self) -> float:
        if self.is_composite:
            return 0.0
        return sum(m.resource.cost_rate * m.count for m in self.equipment)

    @property
    def hourly_cost(self) -> float:
        return self.labor_cost_per_hour + self.equipment_cost_per_hour

    @property
    def people(self) -> int:
        if self.headcount:
            return self.headcount
        return int(sum(m.count for m in self.labor))


@dataclass
class ProductionRate:
    output_qty: float            # units per standard shift
    output_uom: str = "SY"
    source: str = "user"
    range_min: Optional[float] = None
    range_max: Optional[float] = None


@dataclass
class Quantity:
    net_quantity: float
    uom: str = "SY"
    waste_factor: float = 1.0
    design_contingency: float = 1.0
    area: Optional[float] = None   # measured area (SY) when the quantity is volumetric

    @property
    def gross_quantity(self) -> float:
        return (self.net_quantity or 0) * self.waste_factor * self.design_contingency


# -----------------------------
# Productivity factor
# -----------------------------

@dataclass(frozen=True)
class ModifierDefinition:
    key: str
    label: str
    min: float
    max: float
    default: float = 1.0


MODIFIER_DEFINITIONS = [
    ModifierDefinition("site_access", "Site Access / Congestion", 0.50, 1.00),
    ModifierDefinition("weather", "Weather / Climate", 0.60, 1.00),
    ModifierDefinition("terrain", "Altitude / Terrain", 0.70, 1.00),
    ModifierDefinition("spec_complexity", "Specification Complexity", 0.60, 1.00),
    ModifierDefinition("learning_curve", "Repetition / Learning Curve", 1.00, 1.20),
    ModifierDefinition("overtime_shift", "Overtime / Shift Inefficiency", 0.75, 1.00),
    ModifierDefinition("crew_experience", "Crew Skill / Experience", 0.70, 1.15),
    ModifierDefinition("material_handling", "Material Handling Distance", 0.70, 1.00),
    ModifierDefinition("regulatory_safety", "Regulatory / Safety Overhead", 0.60, 1.00),
    ModifierDefinition("trade_stacking", "Trade Stacking / Concurrent", 0.60, 1.00),
]

PRODUCTIVITY_PRESETS = {
    "roadway": {},
    "simple": {"site_access": 0.92, "spec_complexity": 0.92},
    "standard": {"site_access": 0.85, "spec_complexity": 0.82},
    "complex": {"site_access": 0.75, "spec_complexity": 0.73},
}


@dataclass
class ProductivityFactor:
    """Composite multiplier that adjusts a reference rate to site conditions."""
    modifiers: Dict[str, float] = field(default_factory=dict)
    bases: Dict[str, str] = field(default_factory=dict)
    preset: Optional[str] = None

    def __post_init__(self):
        known = {d.key for d in MODIFIER_DEFINITIONS}
        unknown = set(self.modifiers) - known
        if unknown:
            raise ValueError(f"Unknown productivity modifiers: {sorted(unknown)}")

    def value(self, key: str) -> float:
        for d in MODIFIER_DEFINITIONS:
            if d.key == key:
                return self.modifiers.get(key, d.default)
        raise KeyError(key)

    @property
    def composite(self) -> float:
        return math.prod(self.value(d.key) for d in MODIFIER_DEFINITIONS)

    @property
    def is_custom(self) -> bool:
        return any(self.value(d.key) != d.default for d in MODIFIER_DEFINITIONS)

    @property
    def active_modifiers(self) -> List[Dict]:
        return [
            {"key": d.key, "label": d.label, "value": self.value(d.key), "basis": self.bases.get(d.key, "")}
            for d in MODIFIER_DEFINITIONS if self.value(d.key) != d.default
        ]

    @classmethod
    def from_preset(cls, preset: str) -> "ProductivityFactor":
        if preset not in PRODUCTIVITY_PRESETS:
            return cls()
        return cls(dict(PRODUCTIVITY_PRESETS[preset]), preset=preset)

    @classmethod
    def from_composite_value(cls, value: float) -> "ProductivityFactor":
        for key, mods in PRODUCTIVITY_PRESETS.items():
            if abs(cls(dict(mods)).composite - value) < 0.02:
                return cls.from_preset(key)
        root = math.sqrt(value)
        note = "Derived from composite value"
        return cls({"site_access": root, "spec_complexity": root},
                   {"site_access": note, "spec_complexity": note})


# -----------------------------
# Per-activity-type derived quantities
# -----------------------------

@dataclass
class ExcavationQuantities:
    kind: ClassVar[ActivityType] = ActivityType.EXCAVATION
    bank_cy: float = 0
    loose_cy: float = 0
    tons: float = 0

    @property
    def trucking_quantity(self):
        return self.loose_cy


@dataclass
class AggregateQuantities:
    kind: ClassVar[ActivityType] = ActivityType.DGA_BASE
    cy: float = 0
    tons: float = 0
    tons_with_waste: float = 0

    @property
    def trucking_quantity(self):
        return self.cy


@dataclass
class MillingQuantities:
    kind: ClassVar[ActivityType] = ActivityType.MILLING
    rap_tons: float = 0

    @property
    def trucking_quantity(self):
        return self.rap_tons


@dataclass
class HmaQuantities:
    tons: float = 0
    tons_with_waste: float = 0
    # base and surface courses share this shape
    kind: ActivityType = ActivityType.PAVING_BASE

    @property
    def trucking_quantity(self):
        return self.tons_with_waste


@dataclass
class TackQuantities:
    kind: ClassVar[ActivityType] = ActivityType.TACK_COAT
    gallons: float = 0
    app_rate: float = 0.05

    @property
    def trucking_quantity(self):
        return None


DerivedQuantities = Union[ExcavationQuantities, AggregateQuantities, MillingQuantities,
                          HmaQuantities, TackQuantities]


# -----------------------------
# Activity
# -----------------------------

@dataclass
class Dependency:
    predecessor_id: str
    type: DependencyType = DependencyType.FS
    lag: float = 0.0
    source: DependencySource = DependencySource.PHYSICAL


@dataclass
class MaterialUse:
    resource: Resource
    quantity_per_unit: float = 1.0   # material units per unit of gross quantity


@dataclass
class TruckingParams:
    cycle_time: float = 0.0          # minutes per round trip
    truck_capacity: float = 16.0
    efficiency: float = 0.90


@dataclass
class TruckingResult:
    daily_quantity: float = 0.0
    loads_per_day: float = 0.0
    trucks: int = 0
    truck_hours: float = 0.0
    cost: float = 0.0


@dataclass
class Activity:
    id: str
    description: str
    activity_type: ActivityType
    quantity: Quantity
    crew: Optional[Crew] = None
    production_rate: Optional[ProductionRate] = None
    productivity: ProductivityFactor = field(default_factory=ProductivityFactor)
    materials: List[MaterialUse] = field(default_factory=list)
    include_mobilization: bool = False
    mobilization_cost_input: float = 0.0
    trucking: Optional[TruckingParams] = None
    trucking_quantity_override: Optional[float] = None
    dependencies: List[Dependency] = field(default_factory=list)
    derived: Optional[DerivedQuantities] = None
    crew_auto_selected: bool = True
    wbs_code: str = ""
    color_class: str = ""
    hours_per_day: float = 8.0

    @property
    def gross_quantity(self) -> float:
        return self.quantity.gross_quantity

    @property
    def adjusted_rate(self) -> float:
        if not self.production_rate:
            return 0.0
        return (self.production_rate.output_qty or 0) * self.productivity.composite

    @property
    def duration(self) -> float:
        """Working days, rounded up to the next half day."""
        days = safe_div(self.gross_quantity, self.adjusted_rate)
        if days <= 0:
            return 0.0
        return math.ceil(days * 2) / 2

    @property
    def labor_hours(self) -> float:
        if not self.crew:
            return 0.0
        return self.duration * self.hours_per_day * self.crew.people

    @property
    def labor_cost(self) -> float:
        if not self.crew:
            return 0.0
        return self.duration * self.crew.labor_cost_per_hour * self.hours_per_day

    @property
    def equipment_cost(self) -> float:
        if not self.crew:
            return 0.0
        return self.duration * self.crew.equipment_cost_per_hour * self.hours_per_day

    @property
    def material_cost(self) -> float:
        gross = self.gross_quantity
        return sum(gross * m.quantity_per_unit * m.resource.cost_rate for m in self.materials)

    @property
    def mobilization_cost(self) -> float:
        if self.include_mobilization and self.duration > 0:
            return self.mobilization_cost_input
        return 0.0

    @property
    def direct_cost(self) -> float:
        return self.labor_cost + self.equipment_cost + self.material_cost + self.mobilization_cost

    @property
    def hauled_quantity(self) -> float:
        if self.trucking_quantity_override is not None:
            return self.trucking_quantity_override
        return self.gross_quantity

    def compute_trucking(self, trucking_rate: float, quantity: Optional[float] = None,
                         workday_minutes: float = 480) -> TruckingResult:
        """Trucks needed to keep up with daily production, and what they cost."""
        t = self.trucking
        duration = self.duration
        if not t or not t.cycle_time or duration <= 0:
            return TruckingResult()
        qty = self.gross_quantity if quantity is None else quantity
        daily_qty = qty / duration
        loads_per_day = safe_div(daily_qty, t.truck_capacity)
        efficiency = t.efficiency or 0.90
        trucks = math.ceil(loads_per_day * t.cycle_time / (workday_minutes * efficiency))
        truck_hours = math.ceil(trucks * duration * self.hours_per_day)
        return TruckingResult(
            daily_quantity=daily_qty,
            loads_per_day=loads_per_day,
            trucks=trucks,
            truck_hours=truck_hours,
            cost=truck_hours * (trucking_rate or 0),
        )


# -----------------------------
# Indirect costs and risk
# -----------------------------

@dataclass
class RiskItem:
    id: str
    description: str
    probability: float
    impact_min: float
    impact_most_likely: float
    impact_max: float
    affected_wbs: List[str] = field(default_factory=list)
    risk_type: RiskType = RiskType.SCOPE

    @property
    def expected_value(self) -> float:
        return self.probability * self.impact_most_likely


@dataclass
class RiskRegister:
    risks: List[RiskItem] = field(default_factory=list)

    def add_risk(self, risk: RiskItem):
        self.risks.append(risk)

    def remove_risk(self, risk_id: str):
        self.risks = [r for r in self.risks if r.id != risk_id]

    @property
    def total_expected_value(self) -> float:
        return sum(r.expected_value for r in self.risks)

    @property
    def by_type(self) -> Dict[RiskType, List[RiskItem]]:
        grouped: Dict[RiskType, List[RiskItem]] = {}
        for r in self.risks:
            grouped.setdefault(r.risk_type, []).append(r)
        return grouped


@dataclass
class GeneralConditions:
    superintendent_per_day: float = 0
    field_office_per_day: float = 0
    temp_facilities_per_day: float = 0
    temp_construction_per_day: float = 0
    temp_construction_lump: float = 0
    qc_testing_lump: float = 0
    cleanup_lump: float = 0
    small_tools_pct: float = 0    # % of labor
    safety_ppe_pct: float = 0     # % of labor


@dataclass
class Escalation:
    enabled: bool = False
    labor_rate_per_year: float = 0     # %
    material_rate_per_year: float = 0  # %


@dataclass
class BondsInsurance:
    bond_rate_pct: float = 0
    gl_insurance_pct: float = 0
    wc_rate_pct: float = 0
    permit_fees_lump: float = 0
    prevailing_wage_lump: float = 0


@dataclass
class Contingency:
    estimate_class: EstimateClass = EstimateClass.CLASS_3
    identified_risks_total: Optional[float] = None   # None -> risk register expected value
    unidentified_allowance_pct: float = 0.10         # fraction of subtotal
    manual_override: Optional[float] = None


@dataclass
class IndirectCostBreakdown:
    gc_time_dependent: float
    gc_fixed: float
    gc_pct_based: float
    gc_total: float
    total_field_cost: float
    home_office_overhead: float
    fee_profit: float
    escalation: float
    bonds: float
    insurance: float
    regulatory: float
    bonds_insurance_total: float
    subtotal_before_contingency: float
    identified_risks: float
    unidentified_allowance: float
    total_contingency: float
    total_estimated_cost: float


WORK_DAYS_PER_YEAR = 260


@dataclass
class IndirectCosts:
    general_conditions: GeneralConditions = field(default_factory=GeneralConditions)
    home_office_overhead_pct: float = 0
    fee_profit_pct: float = 15
    escalation: Escalation = field(default_factory=Escalation)
    bonds_insurance: BondsInsurance = field(default_factory=BondsInsurance)
    contingency: Contingency = field(default_factory=Contingency)

    def calculate(self, direct_cost: float, labor_cost: float, project_duration_days: float,
                  risk_register: Optional[RiskRegister] = None) -> IndirectCostBreakdown:
        """
        Markups on top of direct cost. Time-dependent general conditions are
        charged against the CPM project duration, not the sum of activity days.
        """
        gc = self.general_conditions
        gc_time = (gc.superintendent_per_day + gc.field_office_per_day +
                   gc.temp_facilities_per_day + gc.temp_construction_per_day) * project_duration_days
        gc_fixed = gc.temp_construction_lump + gc.qc_testing_lump + gc.cleanup_lump
        gc_pct = labor_cost * (gc.small_tools_pct + gc.safety_ppe_pct) / 100
        gc_total = gc_time + gc_fixed + gc_pct

        field_cost = direct_cost + gc_total
        home_office = field_cost * self.home_office_overhead_pct / 100
        fee = (field_cost + home_office) * self.fee_profit_pct / 100

        escalation = 0.0
        if self.escalation.enabled:
            years = project_duration_days / WORK_DAYS_PER_YEAR
            escalation = (labor_cost * self.escalation.labor_rate_per_year / 100 * years +
                          (direct_cost - labor_cost) * self.escalation.material_rate_per_year / 100 * years)

        bi = self.bonds_insurance
        bonds = (field_cost + home_office + fee + escalation) * bi.bond_rate_pct / 100
        insurance = labor_cost * (bi.gl_insurance_pct + bi.wc_rate_pct) / 100
        regulatory = bi.permit_fees_lump + bi.prevailing_wage_lump
        bi_total = bonds + insurance + regulatory

        subtotal = field_cost + home_office + fee + escalation + bi_total

        ct = self.contingency
        identified = ct.identified_risks_total
        if identified is None:
            identified = risk_register.total_expected_value if risk_register else 0.0
        unidentified = subtotal * ct.unidentified_allowance_pct
        if ct.manual_override is not None:
            contingency = ct.manual_override
        else:
            contingency = identified + unidentified

        return IndirectCostBreakdown(
            gc_time_dependent=gc_time, gc_fixed=gc_fixed, gc_pct_based=gc_pct, gc_total=gc_total,
            total_field_cost=field_cost, home_office_overhead=home_office, fee_profit=fee,
            escalation=escalation, bonds=bonds, insurance=insurance, regulatory=regulatory,
            bonds_insurance_total=bi_total, subtotal_before_contingency=subtotal,
            identified_risks=identified, unidentified_allowance=unidentified,
            total_contingency=contingency, total_estimated_cost=subtotal + contingency,
        )


# -----------------------------
# Estimate
# -----------------------------

@dataclass
class ShiftSettings:
    std_shift: float = 8.0
    max_shift: float = 12.0
    min_days: int = 1


@dataclass
class Estimate:
    activities: List[Activity] = field(default_factory=list)
    indirect_costs: IndirectCosts = field(default_factory=IndirectCosts)
    risk_register: RiskRegister = field(default_factory=RiskRegister)
    job_mode: JobMode = JobMode.PARKING_LOT
    shift_settings: ShiftSettings = field(default_factory=ShiftSettings)
    cluster_mode: bool = False
    travel_hours: float = 1.0
    weather_days: int = 0
    project_name: str = ""
    start_date: Optional[date] = None

    def get_activity(self, activity_id: str) -> Optional[Activity]:
        return next((a for a in self.activities if a.id == activity_id), None)

    @property
    def completeness(self) -> Dict:
        present = [t for t in ActivityType
                   if any(a.activity_type == t and a.duration > 0 for a in self.activities)]
        return {"present": len(present), "expected": len(ActivityType), "types": present}


# -----------------------------
# Results
# -----------------------------

@dataclass
class ScheduleEntry:
    early_start: float
    early_finish: float
    late_start: float
    late_finish: float
    total_float: float
    free_float: float


@dataclass
class GanttRow:
    id: str
    description: str
    duration: float
    early_start: float
    early_finish: float
    total_float: float
    is_critical: bool
    color_class: str = ""


@dataclass
class ShiftPlan:
    hours: float = 0
    days: int = 0
    hustle: bool = False
    hustle_amount: float = 0
    shift_base: float = 0


@dataclass
class TierResult:
    multiplier: float
    adjusted_rate: float = 0
    raw_days: float = 0
    raw_hours: float = 0
    optimized: ShiftPlan = field(default_factory=ShiftPlan)


@dataclass
class ThreeTierResult:
    conservative: TierResult
    standard: TierResult
    aggressive: TierResult


@dataclass
class ActivityResult:
    id: str
    description: str
    activity_type: ActivityType
    net_quantity: float
    gross_quantity: float
    uom: str
    reference_rate: float
    productivity_factor: float
    adjusted_rate: float
    duration: float
    labor_hours: float
    labor_cost: float
    equipment_cost: float
    material_cost: float
    mobilization_cost: float
    trucking: TruckingResult
    trucking_cost: float
    direct_cost: float
    unit_cost: float
    unit_cost_uom: str
    crew_code: Optional[str]
    crew_size: int
    crew_auto_selected: bool
    early_start: float = 0
    early_finish: float = 0
    total_float: float = 0
    is_critical: bool = False
    three_tier: Optional[ThreeTierResult] = None
    derived: Optional[DerivedQuantities] = None
    wbs_code: str = ""
    color_class: str = ""


@dataclass
class Cluster:
    key: str
    description: str
    activity_types: List[ActivityType]
    activity_ids: List[str]
    mob_crew: str
    mob_cost: float
    total_days: float


@dataclass
class ClusterResults:
    clusters: List[Cluster]
    is_combo: bool
    total_mob_cost: float
    safety_cost: float
    mob_and_safety: float


@dataclass
class ConfidenceScore:
    production_reliability: float
    benchmark_alignment: float
    scope_definition: float
    data_quality: float
    composite: float
    descriptor: str
    benchmark_in_range: int = 0
    benchmark_total: int = 0
    scope_in_range: int = 0
    scope_total: int = 0


@dataclass
class UnitCostCheck:
    activity_id: str
    description: str
    activity_type: ActivityType
    unit_cost: float
    unit: str
    p25: float
    median: float
    p75: float
    status: str


@dataclass
class Observation:
    id: str
    flag: str
    status: str      # INFO | WARNING
    message: str
    activity_id: Optional[str] = None
    reasons: List[str] = field(default_factory=list)


@dataclass
class TimelineDay:
    day: int
    kind: str        # work | weather
    activity_ids: List[str] = field(default_factory=list)
    date: Optional[date] = None


@dataclass
class CalendarDuration:
    timeline: List[TimelineDay]
    work_days: int
    weather_days: int
    total_days: int


@dataclass
class ValidationWarning:
    level: str
    check: str
    message: str


@dataclass
class EstimateResults:
    activities: List[ActivityResult]
    schedule: Dict[str, ScheduleEntry]
    project_duration: float
    critical_path: List[str]
    near_critical: List[str]
    gantt: List[GanttRow]
    cycle_detected: bool
    total_labor_cost: float
    total_equipment_cost: float
    total_material_cost: float
    total_trucking_cost: float
    total_mobilization_cost: float
    total_truck_hours: float
    total_labor_hours: float
    total_activity_days: float
    total_hma_tons: float
    direct_cost_total: float
    indirect: IndirectCostBreakdown
    total_estimated_cost: float
    clusters: Optional[ClusterResults]
    confidence: ConfidenceScore
    unit_cost_checks: List[UnitCostCheck]
    analysis: List[Observation]
    calendar: CalendarDuration
    mob_and_safety: float
    validation: List[ValidationWarning] = field(default_factory=list)

    def get_activity(self, activity_id: str) -> Optional[ActivityResult]:
        return next((a for a in self.activities if a.id == activity_id), None)
