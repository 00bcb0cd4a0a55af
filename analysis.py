"""
Confidence scoring, benchmark checks and rule-based job analysis.

Everything here reads calculated activity results and reference tables and
returns plain result objects. A missing benchmark, range or threshold entry
skips the corresponding check instead of raising.
"""
from typing import List, Optional
import logging

from defaults import DEFAULT_REFERENCE, Benchmark, ReferenceData
from models import (
    ActivityResult, ActivityType, ClusterResults, ConfidenceScore, Estimate,
    EstimateResults, HAULED_TYPES, JobMode, Observation, PAVING_TYPES,
    UnitCostCheck, ValidationWarning,
)
from utils import safe_div

logger = logging.getLogger(__name__)

IN_RANGE = "IN_RANGE"
LOW = "LOW"
VERY_LOW = "VERY_LOW"
HIGH = "HIGH"
VERY_HIGH = "VERY_HIGH"

INFO = "INFO"
WARNING = "WARNING"

MIN_SHIFT_HOURS = 3.5
OVERTIME_SHIFT_BASE = 10
PLANT_OPENING_TONS = 100
MOB_SHARE_LIMIT = 0.15
SYSTEMIC_COUNT = 3


def classify_unit_cost(unit_cost: float, benchmark: Benchmark) -> str:
    """Place a unit cost against the P25..P75 band (band edges count as in range)."""
    if benchmark.p25 <= unit_cost <= benchmark.p75:
        return IN_RANGE
    if unit_cost < benchmark.p25 * 0.5:
        return VERY_LOW
    if unit_cost < benchmark.p25:
        return LOW
    if unit_cost > benchmark.p75 * 1.5:
        return VERY_HIGH
    return HIGH


def _descriptor(composite: float) -> str:
    if composite >= 0.80:
        return "HIGH"
    if composite >= 0.65:
        return "MOD-HIGH"
    if composite >= 0.50:
        return "MODERATE"
    return "LOW"


def _sample_size_score(n: int) -> float:
    if n >= 30:
        return 1.0
    if n >= 15:
        return 0.8
    if n >= 5:
        return 0.6
    if n > 0:
        return 0.4
    return 0.2


# -----------------------------
# Confidence
# -----------------------------

def calculate_confidence(activities: List[ActivityResult], job_mode: JobMode,
                         reference: ReferenceData = DEFAULT_REFERENCE) -> ConfidenceScore:
    active = [a for a in activities if a.duration > 0]
    if not active:
        return ConfidenceScore(0.0, 0.0, 0.0, 0.0, 0.0, "LOW")

    # production reliability, weighted by direct cost
    weighted = total_weight = 0.0
    for a in active:
        conf = reference.rate_confidence.get(a.activity_type)
        if conf is None:
            continue
        weight = a.direct_cost or 1
        weighted += conf.score * weight
        total_weight += weight
    prod = weighted / total_weight if total_weight > 0 else 0.5

    bench_in = bench_total = 0
    scope_in = scope_total = 0
    quality_sum = 0.0
    quality_count = 0
    for a in active:
        bm = reference.benchmark(job_mode, a.activity_type)
        if bm is not None:
            quality_sum += _sample_size_score(bm.n or 0)
            quality_count += 1
            if a.unit_cost and a.unit_cost > 0:
                bench_total += 1
                if classify_unit_cost(a.unit_cost, bm) == IN_RANGE:
                    bench_in += 1
        rng = reference.qty_range(job_mode, a.activity_type)
        if rng is not None and a.gross_quantity:
            scope_total += 1
            if rng.low <= a.gross_quantity <= rng.high:
                scope_in += 1

    bench = bench_in / bench_total if bench_total else 0.5
    scope = scope_in / scope_total if scope_total else 0.5
    quality = quality_sum / quality_count if quality_count else 0.2

    w = reference.confidence_weights
    composite = (prod * w.production_reliability + bench * w.benchmark_alignment +
                 scope * w.scope_definition + quality * w.data_quality)
    composite = min(max(composite, 0.0), 1.0)

    return ConfidenceScore(
        production_reliability=prod,
        benchmark_alignment=bench,
        scope_definition=scope,
        data_quality=quality,
        composite=composite,
        descriptor=_descriptor(composite),
        benchmark_in_range=bench_in,
        benchmark_total=bench_total,
        scope_in_range=scope_in,
        scope_total=scope_total,
    )


def check_unit_costs(activities: List[ActivityResult], job_mode: JobMode,
                     reference: ReferenceData = DEFAULT_REFERENCE) -> List[UnitCostCheck]:
    checks = []
    for a in activities:
        if a.duration <= 0 or a.unit_cost <= 0:
            continue
        bm = reference.benchmark(job_mode, a.activity_type)
        if bm is None:
            continue
        checks.append(UnitCostCheck(
            activity_id=a.id,
            description=a.description,
            activity_type=a.activity_type,
            unit_cost=a.unit_cost,
            unit=bm.unit,
            p25=bm.p25,
            median=bm.median,
            p75=bm.p75,
            status=classify_unit_cost(a.unit_cost, bm),
        ))
    return checks


# -----------------------------
# Analysis rules
# -----------------------------

class _Observations:
    def __init__(self):
        self.items: List[Observation] = []

    def add(self, activity_id, flag, status, message, reasons=None):
        self.items.append(Observation(
            id=f"OBS-{len(self.items) + 1:03d}", flag=flag, status=status, message=message,
            activity_id=activity_id, reasons=list(reasons or []),
        ))


def _rule_quantity_range(obs, a, job_mode, reference):
    rng = reference.qty_range(job_mode, a.activity_type)
    if rng is None or not a.gross_quantity:
        return
    qty = a.gross_quantity
    if qty < rng.low:
        obs.add(a.id, "SMALL_QTY", INFO,
                f"{a.description}: quantity {qty:,.0f} {a.uom} is below the typical range ({rng.low:,.0f}-{rng.high:,.0f}).",
                ["Crew may be oversized for scope", "Consider minimum shift billing impact"])
    elif qty > rng.high:
        obs.add(a.id, "LARGE_QTY", INFO,
                f"{a.description}: quantity {qty:,.0f} {a.uom} exceeds the typical range (max {rng.high:,.0f}).",
                ["May require phasing or multiple mobilizations",
                 "Verify production rate achievable at this scale"])


def _rule_unit_cost(obs, a, job_mode, reference):
    bm = reference.benchmark(job_mode, a.activity_type)
    if bm is None or not a.unit_cost or a.unit_cost <= 0:
        return
    status = classify_unit_cost(a.unit_cost, bm)
    uc = f"${a.unit_cost:.2f}/{a.unit_cost_uom}"
    if status == VERY_HIGH:
        obs.add(a.id, "UNIT_COST", WARNING,
                f"{a.description}: unit cost {uc} is significantly above P75 (${bm.p75:.2f}).",
                [f"Benchmark median: ${bm.median:.2f}/{bm.unit} (n={bm.n})",
                 "Review crew rate, production rate, or material cost"])
    elif status == HIGH:
        obs.add(a.id, "UNIT_COST", INFO,
                f"{a.description}: unit cost {uc} is above P75 (${bm.p75:.2f}).",
                [f"Benchmark range: ${bm.p25:.2f}-${bm.p75:.2f}/{bm.unit}"])
    elif status == VERY_LOW:
        obs.add(a.id, "UNIT_COST", WARNING,
                f"{a.description}: unit cost {uc} is significantly below P25 (${bm.p25:.2f}).",
                [f"Benchmark median: ${bm.median:.2f}/{bm.unit} (n={bm.n})",
                 "May indicate missing cost components"])
    elif status == LOW:
        obs.add(a.id, "UNIT_COST", INFO,
                f"{a.description}: unit cost {uc} is below P25 (${bm.p25:.2f}).",
                [f"Benchmark range: ${bm.p25:.2f}-${bm.p75:.2f}/{bm.unit}"])


def _rule_min_shift(obs, a):
    if not a.three_tier:
        return
    hours = a.three_tier.standard.raw_hours
    if 0 < hours < MIN_SHIFT_HOURS:
        obs.add(a.id, "MIN_SHIFT", INFO,
                f"{a.description}: only {hours:.1f} hours of work but the crew is billed a minimum 4-hour shift.",
                ["Consider combining with adjacent activity", "Minimum shift billing adds overhead"])


def _rule_crew_size(obs, a, reference):
    if not a.crew_code or not a.gross_quantity or a.crew_auto_selected:
        return
    thresholds = reference.crew_thresholds.get(a.activity_type)
    if not thresholds:
        return
    recommended = next((t for t in thresholds if a.gross_quantity <= t.max_sy), None)
    if recommended is None or recommended.crew == a.crew_code:
        return
    rec = reference.crews.get(recommended.crew)
    current = reference.crews.get(a.crew_code)
    current_people = current.people if current else a.crew_size
    if rec and current_people and current_people < rec.people:
        obs.add(a.id, "CREW_UNDERSIZED", WARNING,
                f"{a.description}: using {a.crew_code} ({current_people} people) but {recommended.crew} "
                f"({rec.people} people) is recommended for {a.gross_quantity:,.0f} {a.uom}.",
                ["Smaller crew will extend duration", "May impact schedule and indirect costs"])


def generate_analysis(activities: List[ActivityResult], job_mode: JobMode,
                      cluster_results: Optional[ClusterResults] = None, total_hma_tons: float = 0.0,
                      reference: ReferenceData = DEFAULT_REFERENCE) -> List[Observation]:
    """Run the per-activity and cross-activity rules; none of them can stop the run."""
    obs = _Observations()
    active = [a for a in activities if a.duration > 0]

    for a in active:
        _rule_quantity_range(obs, a, job_mode, reference)
        _rule_unit_cost(obs, a, job_mode, reference)
        _rule_min_shift(obs, a)
        _rule_crew_size(obs, a, reference)

    # combo crew
    if cluster_results and cluster_results.is_combo and not any(a.crew_code == "COMBO" for a in active):
        combo = reference.crews.get("COMBO")
        if combo:
            obs.add(None, "COMBO_AVAILABLE", INFO,
                    f"Milling and paving both active: the COMBO crew (${combo.rate:,.2f}/hr) may be more "
                    f"efficient than separate milling and paving crews.",
                    ["COMBO crew shares equipment between milling and paving",
                     "Reduces mobilization to a single deployment"])

    # overtime
    for a in active:
        if a.three_tier and a.three_tier.standard.optimized.shift_base > OVERTIME_SHIFT_BASE:
            base = a.three_tier.standard.optimized.shift_base
            obs.add(a.id, "OVERTIME", INFO,
                    f"{a.description}: optimized to {base:g}-hour shifts. Overtime rules may apply.",
                    ["Verify OT rate impact on crew cost", "Check local labor agreement"])

    # roadway safety crew
    if job_mode == JobMode.ROADWAY and (cluster_results is None or cluster_results.safety_cost <= 0):
        reasons = ["Roadway work requires traffic control"]
        safe = reference.crews.get("SAFE")
        if safe:
            reasons.append(f"SAFE crew rate: ${safe.rate:,.2f}/hr")
        obs.add(None, "SAFETY_MISSING", WARNING,
                "Roadway mode active but no safety/traffic control crew cost included.", reasons)

    # plant opening fee
    if 0 < total_hma_tons < PLANT_OPENING_TONS:
        obs.add(None, "PLANT_OPENING", INFO,
                f"Total HMA tonnage ({total_hma_tons:.0f} tons) is low: a plant opening fee of "
                f"${reference.plant_fees.plant_open_weekday:,.0f} may apply.",
                ["HMA plants charge opening fees for small orders"])

    # mobilization share
    if cluster_results and cluster_results.total_mob_cost > 0:
        direct = sum(a.direct_cost or 0 for a in active)
        share = safe_div(cluster_results.total_mob_cost, direct)
        if share > MOB_SHARE_LIMIT:
            obs.add(None, "MOB_HIGH", WARNING,
                    f"Mobilization at {share * 100:.1f}% of direct cost is unusually high.",
                    ["Typical range: 3-10% of direct cost", "Check travel hours and number of deployments"])

    # systemic pricing pattern
    statuses = []
    for a in active:
        bm = reference.benchmark(job_mode, a.activity_type)
        if bm is not None and a.unit_cost > 0:
            statuses.append(classify_unit_cost(a.unit_cost, bm))
    if len(statuses) >= SYSTEMIC_COUNT:
        high = sum(1 for s in statuses if s in (HIGH, VERY_HIGH))
        low = sum(1 for s in statuses if s in (LOW, VERY_LOW))
        if high >= SYSTEMIC_COUNT:
            obs.add(None, "SYSTEMIC_HIGH", WARNING,
                    f"{high} of {len(statuses)} activities have unit costs above benchmark P75.",
                    ["Systemic high pricing may indicate a crew rate or productivity factor issue",
                     "Or may reflect legitimate site conditions"])
        if low >= SYSTEMIC_COUNT:
            obs.add(None, "SYSTEMIC_LOW", WARNING,
                    f"{low} of {len(statuses)} activities have unit costs below benchmark P25.",
                    ["Systemic low pricing may indicate missing cost components",
                     "Verify all materials and mobilization included"])

    # missing trucking
    for a in active:
        if a.activity_type in HAULED_TYPES and a.trucking_cost == 0 and a.gross_quantity > 0:
            obs.add(a.id, "NO_TRUCKING", INFO,
                    f"{a.description}: no trucking cost, cycle time not set.",
                    ["Enter a cycle time to include material hauling costs"])

    return obs.items


def cycle_observation(index: int) -> Observation:
    return Observation(
        id=f"OBS-{index:03d}", flag="CYCLE", status=WARNING,
        message="Activity dependencies contain a cycle; activities were scheduled in input order.",
        reasons=["Review predecessor links for circular references"],
    )


# -----------------------------
# Reasonableness validation
# -----------------------------

def validate_results(results: EstimateResults, estimate: Estimate) -> List[ValidationWarning]:
    warnings: List[ValidationWarning] = []
    if not results or results.direct_cost_total == 0:
        return warnings

    def add(level, check, message):
        warnings.append(ValidationWarning(level, check, message))

    # parametric cost per SY against the largest paved area
    paved = [a.net_quantity for a in results.activities if a.activity_type in PAVING_TYPES]
    max_paved = max(paved, default=0)
    if max_paved > 0:
        per_sy = results.total_estimated_cost / max_paved
        if per_sy < 3:
            add("warning", "parametric",
                f"Cost/SY of ${per_sy:.2f} is unusually low (< $3/SY). Check rates and quantities.")
        if per_sy > 80:
            add("warning", "parametric",
                f"Cost/SY of ${per_sy:.2f} is unusually high (> $80/SY). Verify scope and pricing.")

    dc = results.direct_cost_total
    if dc > 0:
        mat = results.total_material_cost / dc
        if mat > 0 and (mat < 0.20 or mat > 0.70):
            add("info", "ratio", f"Materials at {mat * 100:.1f}% of direct cost. Typical paving range: 20-70%.")
        labor = (results.total_labor_cost + results.total_equipment_cost) / dc
        if labor > 0 and (labor < 0.10 or labor > 0.50):
            add("info", "ratio", f"Labor+Equipment at {labor * 100:.1f}% of direct cost. Typical: 10-50%.")
        truck = results.total_trucking_cost / dc
        if truck > 0.35:
            add("warning", "ratio", f"Trucking at {truck * 100:.1f}% of direct cost is unusually high (> 35%).")

    completeness = estimate.completeness
    if 0 < completeness["present"] < completeness["expected"]:
        missing = [t.value.replace("_", " ") for t in ActivityType if t not in completeness["types"]]
        add("info", "scope",
            f"{completeness['present']} of {completeness['expected']} standard paving activities estimated. "
            f"Not included: {', '.join(missing)}. Verify these are intentionally excluded.")

    for a in results.activities:
        if a.duration <= 0:
            continue
        if a.activity_type == ActivityType.EXCAVATION and a.reference_rate > 2000:
            add("warning", "unit_cost",
                f"Excavation rate of {a.reference_rate:,.0f} CY/day exceeds the typical max (1,300 CY/day). Verify.")
        if a.activity_type == ActivityType.MILLING and a.reference_rate > 30000:
            add("warning", "unit_cost",
                f"Milling rate of {a.reference_rate:,.0f} SY/day exceeds the typical max (25,000 SY/day). Verify.")

    if results.project_duration > 0 and results.total_activity_days > 0:
        saved = results.total_activity_days - results.project_duration
        if saved > 0:
            add("info", "schedule",
                f"Schedule concurrency saves {saved:.1f} days ({results.total_activity_days:.1f} activity days "
                f"-> {results.project_duration:.1f} project days).")

    for a in results.activities:
        if (a.duration > 0 and a.trucking.trucks == 0 and a.activity_type in HAULED_TYPES
                and a.gross_quantity > 0):
            add("warning", "trucking",
                f"{a.description}: no trucking calculated. Enter a cycle time to include trucking costs.")

    if not estimate.risk_register.risks and results.indirect.total_contingency <= 0:
        add("info", "uncertainty", "No contingency or risk items defined. Every estimate carries uncertainty.")

    return warnings
