from dataclasses import dataclass, field, replace, fields
from typing import Dict, List, Optional, Tuple
import copy
import math

from models import ActivityType, Dependency, DependencyType, JobMode


# -----------------------------
# Reference record types
# -----------------------------

@dataclass(frozen=True)
class Benchmark:
    p25: float
    median: float
    p75: float
    n: int = 0
    basis: str = "empirical"   # empirical | derived
    unit: str = "SY"           # CY benchmarks are priced per gross volume


@dataclass(frozen=True)
class QtyRange:
    low: float
    high: float


@dataclass(frozen=True)
class RateConfidence:
    band: float    # +/- percent
    score: float   # 0..1


@dataclass(frozen=True)
class CrewSpec:
    rate: float
    people: int
    desc: str
    activities: Tuple[ActivityType, ...] = ()


@dataclass(frozen=True)
class CrewThreshold:
    max_sy: float
    crew: str


@dataclass(frozen=True)
class ClusterDef:
    activities: Tuple[ActivityType, ...]
    mob_crew: str
    desc: str


@dataclass(frozen=True)
class ConfidenceWeights:
    production_reliability: float = 0.35
    benchmark_alignment: float = 0.30
    scope_definition: float = 0.20
    data_quality: float = 0.15


@dataclass(frozen=True)
class TierMultipliers:
    conservative: float = 0.80
    standard: float = 1.00
    aggressive: float = 1.20


@dataclass(frozen=True)
class ConversionConstants:
    hma_density: float = 145          # lbs/ft3 compacted
    dga_density: float = 1.9          # tons/CY
    soil_density: float = 1.5         # tons/CY
    rap_density: float = 130          # lbs/ft3 loose
    truck_cy: float = 16
    truck_tons: float = 22
    workday_hours: float = 8
    workday_minutes: float = 480
    hma_factor: float = 0.0575        # tons per SY-inch
    rap_factor: float = 0.04875       # tons per SY-inch
    sy_inch_per_cy: float = 324
    sf_per_sy: float = 9


@dataclass(frozen=True)
class PlantFees:
    plant_open_weekday: float = 750.0


@dataclass(frozen=True)
class ActivityConfig:
    id: str
    description: str
    wbs_code: str
    color_class: str
    quantity_uom: str
    has_depth: bool = False
    has_cycle_time: bool = False
    material_id: Optional[str] = None
    truck_capacity: Optional[float] = None
    truck_capacity_uom: Optional[str] = None


# -----------------------------
# Default tables
# -----------------------------

EXC, FG, DGA, MILL = ActivityType.EXCAVATION, ActivityType.FINE_GRADING, ActivityType.DGA_BASE, ActivityType.MILLING
PBASE, PSURF, TACK = ActivityType.PAVING_BASE, ActivityType.PAVING_SURFACE, ActivityType.TACK_COAT

CONSTANTS = ConversionConstants()

PRODUCTION_RATES = {
    JobMode.PARKING_LOT: {EXC: 150, FG: 3500, DGA: 2500, MILL: 3300, PBASE: 1200, PSURF: 3500, TACK: 5000},
    JobMode.ROADWAY: {EXC: 300, FG: 8000, DGA: 4000, MILL: 14000, PBASE: 3500, PSURF: 6000, TACK: 10000},
}

# Excavation and DGA are priced per CY, everything else per SY
BENCHMARKS = {
    JobMode.PARKING_LOT: {
        EXC: Benchmark(12.00, 18.00, 28.00, 19, "empirical", "CY"),
        FG: Benchmark(0.77, 0.92, 1.12, 507, "empirical", "SY"),
        DGA: Benchmark(35.00, 50.00, 70.00, 103, "empirical", "CY"),
        MILL: Benchmark(2.95, 3.64, 4.58, 516, "empirical", "SY"),
        PBASE: Benchmark(22.31, 28.10, 35.26, 162, "empirical", "SY"),
        PSURF: Benchmark(10.30, 11.09, 12.25, 163, "empirical", "SY"),
        TACK: Benchmark(0.15, 0.22, 0.35, 0, "derived", "SY"),
    },
    JobMode.ROADWAY: {
        EXC: Benchmark(8.00, 12.00, 20.00, 0, "derived", "CY"),
        FG: Benchmark(0.60, 0.85, 1.20, 0, "derived", "SY"),
        DGA: Benchmark(30.00, 42.00, 60.00, 0, "derived", "CY"),
        MILL: Benchmark(1.50, 1.82, 2.50, 0, "derived", "SY"),
        PBASE: Benchmark(8.00, 11.50, 16.00, 0, "derived", "SY"),
        PSURF: Benchmark(6.00, 8.50, 12.00, 0, "derived", "SY"),
        TACK: Benchmark(0.10, 0.18, 0.30, 0, "derived", "SY"),
    },
}

QTY_RANGES = {
    JobMode.PARKING_LOT: {
        EXC: QtyRange(50, 2000), FG: QtyRange(500, 15000), DGA: QtyRange(200, 12000),
        MILL: QtyRange(500, 20000), PBASE: QtyRange(200, 12000), PSURF: QtyRange(500, 25000),
        TACK: QtyRange(500, 25000),
    },
    JobMode.ROADWAY: {
        EXC: QtyRange(200, 10000), FG: QtyRange(2000, 50000), DGA: QtyRange(1000, 30000),
        MILL: QtyRange(2000, 80000), PBASE: QtyRange(1000, 30000), PSURF: QtyRange(2000, 80000),
        TACK: QtyRange(2000, 80000),
    },
}

RATE_CONFIDENCE = {
    EXC: RateConfidence(35, 0.65),
    FG: RateConfidence(15, 0.85),
    DGA: RateConfidence(25, 0.75),
    MILL: RateConfidence(15, 0.85),
    PBASE: RateConfidence(20, 0.80),
    PSURF: RateConfidence(15, 0.85),
    TACK: RateConfidence(10, 0.90),
}

CREW_DATA = {
    "BHOEX": CrewSpec(203.65, 3, "Backhoe Excavation", (EXC,)),
    "DGAFG": CrewSpec(241.00, 4, "DGA/Fine Grade w/ Grader", (FG, DGA)),
    "DGAST": CrewSpec(184.00, 4, "DGA/Fine Grade w/ Dozer", (FG, DGA)),
    "FLEX3": CrewSpec(200.78, 3, "Flex Pave Crew 3-Man", (PBASE, PSURF)),
    "FLEX5": CrewSpec(271.48, 5, "Flex Pave Crew 5-Man", (PBASE, PSURF)),
    "PV8": CrewSpec(400.75, 8, "Paving Crew 8-Man", (PBASE, PSURF)),
    "PV10": CrewSpec(471.85, 10, "Paving Crew 10-Man", (PBASE, PSURF)),
    "ML7": CrewSpec(648.83, 8, "Milling Crew 7ft", (MILL,)),
    "COMBO": CrewSpec(564.28, 11, "Mill + Pave Combo", (MILL, PBASE, PSURF)),
    "TACK": CrewSpec(61.35, 1, "Tack Coat", (TACK,)),
    "MOBL": CrewSpec(297.25, 2, "Mobilization (2 Lowboys)"),
    "MOBS": CrewSpec(188.73, 1, "Mobilization (1 Lowboy)"),
    "SAFE": CrewSpec(130.39, 1, "Safety / Traffic Control"),
}

_PAVING_THRESHOLDS = [
    CrewThreshold(200, "FLEX3"),
    CrewThreshold(1000, "FLEX5"),
    CrewThreshold(5000, "PV8"),
    CrewThreshold(math.inf, "PV10"),
]

# total job SY -> recommended crew
CREW_THRESHOLDS = {
    PBASE: _PAVING_THRESHOLDS,
    PSURF: _PAVING_THRESHOLDS,
    MILL: [CrewThreshold(math.inf, "ML7")],
    EXC: [CrewThreshold(math.inf, "BHOEX")],
    FG: [CrewThreshold(math.inf, "DGAFG")],
    DGA: [CrewThreshold(math.inf, "DGAFG")],
    TACK: [CrewThreshold(math.inf, "TACK")],
}

CREW_CLUSTERS = {
    "earthwork": ClusterDef((EXC, FG, DGA), "MOBS", "Earthwork"),
    "milling": ClusterDef((MILL,), "MOBL", "Milling"),
    "paving": ClusterDef((PBASE, PSURF, TACK), "MOBL", "Paving"),
    "combo": ClusterDef((MILL, PBASE, PSURF, TACK), "MOBL", "Mill + Pave Combo"),
}

BILLING_INCREMENTS = (4, 6, 8, 10, 12)
HUSTLE_THRESHOLD = 0.5

ACTIVITY_CONFIG = {
    EXC: ActivityConfig("EXC-001", "Excavation", "01.01", "red", "CY", True, True,
                        truck_capacity=CONSTANTS.truck_cy, truck_capacity_uom="CY"),
    FG: ActivityConfig("FG-001", "Fine Grading", "01.02", "purple", "SY"),
    DGA: ActivityConfig("DGA-001", "DGA Base", "02.01", "yellow", "CY", True, True, "M-003",
                        CONSTANTS.truck_cy, "CY"),
    MILL: ActivityConfig("MILL-001", "Milling", "03.01", "pink", "SY", True, True,
                         truck_capacity=CONSTANTS.truck_tons, truck_capacity_uom="TON"),
    PBASE: ActivityConfig("PAVE-001", "19mm Base Course", "04.01", "blue", "SY", True, True, "M-002",
                          CONSTANTS.truck_tons, "TON"),
    PSURF: ActivityConfig("PAVE-002", "9.5mm Surface Course", "04.03", "green", "SY", True, True, "M-001",
                          CONSTANTS.truck_tons, "TON"),
    TACK: ActivityConfig("TACK-001", "Tack Coat", "04.02", "teal", "SY", material_id="M-004"),
}

# successor id -> predecessors; standard paving sequence
DEFAULT_DEPENDENCIES = {
    "FG-001": [Dependency("EXC-001", DependencyType.FS, 0)],
    "DGA-001": [Dependency("FG-001", DependencyType.FS, 0)],
    "PAVE-001": [Dependency("DGA-001", DependencyType.FS, 0), Dependency("MILL-001", DependencyType.FS, 0)],
    "TACK-001": [Dependency("PAVE-001", DependencyType.FS, 0)],
    "PAVE-002": [Dependency("TACK-001", DependencyType.FS, 0)],
}


# -----------------------------
# Bundled reference data
# -----------------------------

@dataclass
class ReferenceData:
    production_rates: Dict[JobMode, Dict[ActivityType, float]] = field(default_factory=lambda: copy.deepcopy(PRODUCTION_RATES))
    benchmarks: Dict[JobMode, Dict[ActivityType, Benchmark]] = field(default_factory=lambda: copy.deepcopy(BENCHMARKS))
    qty_ranges: Dict[JobMode, Dict[ActivityType, QtyRange]] = field(default_factory=lambda: copy.deepcopy(QTY_RANGES))
    rate_confidence: Dict[ActivityType, RateConfidence] = field(default_factory=lambda: dict(RATE_CONFIDENCE))
    crews: Dict[str, CrewSpec] = field(default_factory=lambda: dict(CREW_DATA))
    crew_thresholds: Dict[ActivityType, List[CrewThreshold]] = field(default_factory=lambda: copy.deepcopy(CREW_THRESHOLDS))
    clusters: Dict[str, ClusterDef] = field(default_factory=lambda: dict(CREW_CLUSTERS))
    confidence_weights: ConfidenceWeights = field(default_factory=ConfidenceWeights)
    tier_multipliers: TierMultipliers = field(default_factory=TierMultipliers)
    billing_increments: Tuple[float, ...] = BILLING_INCREMENTS
    hustle_threshold: float = HUSTLE_THRESHOLD
    constants: ConversionConstants = CONSTANTS
    plant_fees: PlantFees = field(default_factory=PlantFees)
    activity_config: Dict[ActivityType, ActivityConfig] = field(default_factory=lambda: dict(ACTIVITY_CONFIG))
    default_dependencies: Dict[str, List[Dependency]] = field(default_factory=lambda: copy.deepcopy(DEFAULT_DEPENDENCIES))

    def benchmark(self, job_mode: JobMode, activity_type: ActivityType) -> Optional[Benchmark]:
        return self.benchmarks.get(job_mode, {}).get(activity_type)

    def qty_range(self, job_mode: JobMode, activity_type: ActivityType) -> Optional[QtyRange]:
        return self.qty_ranges.get(job_mode, {}).get(activity_type)

    def validate(self):
        """Raise ValueError on any inconsistent table entry."""
        for mode, table in self.benchmarks.items():
            for atype, b in table.items():
                if not (0 <= b.p25 <= b.median <= b.p75):
                    raise ValueError(f"Benchmark band for {mode.value}/{atype.value} must satisfy p25 <= median <= p75")
                if b.unit not in ("CY", "SY"):
                    raise ValueError(f"Benchmark unit for {mode.value}/{atype.value} must be CY or SY, got {b.unit!r}")
        for mode, table in self.qty_ranges.items():
            for atype, r in table.items():
                if r.low > r.high:
                    raise ValueError(f"Quantity range for {mode.value}/{atype.value} has low > high")
        for atype, rc in self.rate_confidence.items():
            if not 0 <= rc.score <= 1:
                raise ValueError(f"Rate confidence score for {atype.value} must be within [0, 1]")
        w = self.confidence_weights
        total = w.production_reliability + w.benchmark_alignment + w.scope_definition + w.data_quality
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Confidence weights must sum to 1.0, got {total:.4f}")
        t = self.tier_multipliers
        if not (0 < t.conservative <= t.standard <= t.aggressive):
            raise ValueError("Tier multipliers must be positive and ascending (conservative <= standard <= aggressive)")
        incs = list(self.billing_increments)
        if not incs or any(b <= a for a, b in zip(incs, incs[1:])) or incs[0] <= 0:
            raise ValueError("Billing increments must be a non-empty, strictly ascending list of positive hours")
        if self.hustle_threshold < 0:
            raise ValueError("Hustle threshold cannot be negative")
        for key, cluster in self.clusters.items():
            if cluster.mob_crew not in self.crews:
                raise ValueError(f"Cluster {key!r} references unknown mobilization crew {cluster.mob_crew!r}")
        for atype, thresholds in self.crew_thresholds.items():
            for th in thresholds:
                if th.crew not in self.crews:
                    raise ValueError(f"Crew threshold for {atype.value} references unknown crew {th.crew!r}")
        return self


DEFAULT_REFERENCE = ReferenceData().validate()


# -----------------------------
# Overrides from configuration
# -----------------------------

def _activity_table(raw: dict, convert) -> Dict[ActivityType, object]:
    return {ActivityType(k): convert(v) for k, v in raw.items()}


def _merge_record(record, values: dict):
    known = {f.name for f in fields(record)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown fields for {type(record).__name__}: {sorted(unknown)}")
    return replace(record, **values)


def load_reference_data(overrides: Optional[dict] = None, base: Optional[ReferenceData] = None) -> ReferenceData:
    """
    Build reference data from the defaults plus plain-dict overrides
    (as read from YAML). Keys are activity-type / job-mode values;
    anything unknown raises ValueError.
    """
    ref = copy.deepcopy(base or DEFAULT_REFERENCE)
    overrides = overrides or {}
    known = {f.name for f in fields(ReferenceData)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown reference sections: {sorted(unknown)}")

    for mode_key, table in overrides.get("production_rates", {}).items():
        ref.production_rates.setdefault(JobMode(mode_key), {}).update(_activity_table(table, float))

    for mode_key, table in overrides.get("benchmarks", {}).items():
        current = ref.benchmarks.setdefault(JobMode(mode_key), {})
        for atype_key, values in table.items():
            atype = ActivityType(atype_key)
            current[atype] = _merge_record(current[atype], values) if atype in current else Benchmark(**values)

    for mode_key, table in overrides.get("qty_ranges", {}).items():
        current = ref.qty_ranges.setdefault(JobMode(mode_key), {})
        for atype_key, values in table.items():
            atype = ActivityType(atype_key)
            current[atype] = _merge_record(current[atype], values) if atype in current else QtyRange(**values)

    for atype_key, values in overrides.get("rate_confidence", {}).items():
        atype = ActivityType(atype_key)
        current = ref.rate_confidence.get(atype)
        ref.rate_confidence[atype] = _merge_record(current, values) if current else RateConfidence(**values)

    for code, values in overrides.get("crews", {}).items():
        values = dict(values)
        if "activities" in values:
            values["activities"] = tuple(ActivityType(a) for a in values["activities"])
        current = ref.crews.get(code)
        ref.crews[code] = _merge_record(current, values) if current else CrewSpec(**values)

    if "confidence_weights" in overrides:
        ref.confidence_weights = _merge_record(ref.confidence_weights, overrides["confidence_weights"])
    if "tier_multipliers" in overrides:
        ref.tier_multipliers = _merge_record(ref.tier_multipliers, overrides["tier_multipliers"])
    if "constants" in overrides:
        ref.constants = _merge_record(ref.constants, overrides["constants"])
    if "plant_fees" in overrides:
        ref.plant_fees = _merge_record(ref.plant_fees, overrides["plant_fees"])
    if "billing_increments" in overrides:
        ref.billing_increments = tuple(float(x) for x in overrides["billing_increments"])
    if "hustle_threshold" in overrides:
        ref.hustle_threshold = float(overrides["hustle_threshold"])

    for section in ("crew_thresholds", "clusters", "activity_config", "default_dependencies"):
        if section in overrides:
            raise ValueError(f"Reference section {section!r} cannot be overridden from configuration")

    return ref.validate()
