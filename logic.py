from collections import defaultdict
from dataclasses import replace
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math

import pandas as pd

from analysis import (
    calculate_confidence, check_unit_costs, cycle_observation, generate_analysis, validate_results,
)
from defaults import DEFAULT_REFERENCE, ReferenceData
from helpers import topo_order_activities
from models import (
    Activity, ActivityResult, ActivityType, CalendarDuration, Cluster, ClusterResults,
    DependencyType, Estimate, EstimateResults, GanttRow, HmaQuantities, JobMode,
    PAVING_TYPES, ScheduleEntry, ShiftPlan, ThreeTierResult, TierResult, TimelineDay,
    TruckingResult,
)
from utils import ceil_to_multiple, safe_div

logger = logging.getLogger(__name__)

CRITICAL_TOLERANCE = 0.001


# -----------------------------
# Calendar (workdays)
# -----------------------------
class AdvancedCalendar:
    def __init__(self, start_date, holidays=None, workweek=None):
        self.current_date = pd.to_datetime(start_date)
        self.holidays = set(pd.to_datetime(h).normalize() for h in (holidays or []))
        # workweek: 0=Monday .. 6=Sunday
        self.workweek = workweek or [0, 1, 2, 3, 4]

    def is_workday(self, date):
        d = pd.to_datetime(date)
        return d.weekday() in self.workweek and d.normalize() not in self.holidays

    def workday_dates(self, count):
        """The first `count` working dates on or after the start date."""
        dates = []
        current = self.current_date
        while len(dates) < count:
            if self.is_workday(current):
                dates.append(current.date())
            current = current + timedelta(days=1)
        return dates


# -----------------------------
# CPM Analyzer (working days)
# -----------------------------
class CPMAnalyzer:
    def __init__(self, activities: List[Activity], near_critical_threshold: float = 1.0):
        """
        CPM over activities with FS/SS/FF/SF links and signed lags.
        Durations come from each activity's derived duration.
        """
        self.activities = activities
        self.ids = [a.id for a in activities]
        self.durations = {a.id: a.duration for a in activities}
        self.near_critical_threshold = near_critical_threshold

        self.adj = defaultdict(list)      # successors: pred -> [(succ, dep)]
        self.rev_adj = defaultdict(list)  # predecessors: succ -> [dep]

        self.order: List[str] = []
        self.cycle_detected = False
        self.ES, self.EF = {}, {}
        self.LS, self.LF = {}, {}
        self.total_float, self.free_float = {}, {}
        self.project_duration = 0.0

    # --------------------------------------------------------
    def build_graph(self):
        """Adjacency for links whose predecessor is part of the activity set."""
        known = set(self.ids)
        for a in self.activities:
            for dep in a.dependencies:
                if dep.predecessor_id not in known:
                    logger.debug("Ignoring link %s -> %s: predecessor not in estimate", dep.predecessor_id, a.id)
                    continue
                self.adj[dep.predecessor_id].append((a.id, dep))
                self.rev_adj[a.id].append(dep)
        self.order, self.cycle_detected = topo_order_activities(self.activities)

    # --------------------------------------------------------
    def forward_pass(self):
        """Compute earliest start/finish (ES/EF)."""
        for tid in self.order:
            duration = self.durations[tid]
            es = 0.0
            for dep in self.rev_adj[tid]:
                p = dep.predecessor_id
                if p not in self.ES:
                    continue  # only possible on the cycle fallback order
                if dep.type == DependencyType.FS:
                    es = max(es, self.EF[p] + dep.lag)
                elif dep.type == DependencyType.SS:
                    es = max(es, self.ES[p] + dep.lag)
                elif dep.type == DependencyType.FF:
                    es = max(es, self.EF[p] + dep.lag - duration)
                elif dep.type == DependencyType.SF:
                    es = max(es, self.ES[p] + dep.lag - duration)
            self.ES[tid] = es
            self.EF[tid] = es + duration
        self.project_duration = max(self.EF.values(), default=0.0)

    # --------------------------------------------------------
    def backward_pass(self):
        """Compute latest start/finish (LS/LF)."""
        for tid in self.ids:
            self.LF[tid] = self.project_duration
            self.LS[tid] = self.project_duration - self.durations[tid]

        for tid in reversed(self.order):
            duration = self.durations[tid]
            lf = self.project_duration
            for succ, dep in self.adj[tid]:
                if dep.type == DependencyType.FS:
                    lf = min(lf, self.LS[succ] - dep.lag)
                elif dep.type == DependencyType.SS:
                    lf = min(lf, self.LS[succ] - dep.lag + duration)
                elif dep.type == DependencyType.FF:
                    lf = min(lf, self.LF[succ] - dep.lag)
                elif dep.type == DependencyType.SF:
                    lf = min(lf, self.LF[succ] - dep.lag + duration)
            self.LF[tid] = lf
            self.LS[tid] = lf - duration

    # --------------------------------------------------------
    def analyze(self):
        """Run full CPM analysis and calculate floats."""
        self.build_graph()
        self.forward_pass()
        self.backward_pass()

        for tid in self.ids:
            self.total_float[tid] = self.LS[tid] - self.ES[tid]
            succ_starts = [self.ES[s] for s, _ in self.adj[tid]]
            if succ_starts:
                self.free_float[tid] = min(succ_starts) - self.EF[tid]
            else:
                self.free_float[tid] = self.project_duration - self.EF[tid]

        return self.project_duration

    # --------------------------------------------------------
    def is_critical(self, tid):
        return abs(self.total_float.get(tid, 0)) < CRITICAL_TOLERANCE and self.durations.get(tid, 0) > 0

    def get_critical_tasks(self):
        """Activity ids on the critical path, in schedule order."""
        return [tid for tid in self.order if self.is_critical(tid)]

    def get_near_critical(self, threshold=None):
        threshold = self.near_critical_threshold if threshold is None else threshold
        return [tid for tid in self.order
                if self.durations[tid] > 0 and CRITICAL_TOLERANCE <= self.total_float[tid] <= threshold]

    def get_critical_chains(self):
        """Return possible critical paths (chains)."""
        critical_paths = []

        def dfs(path):
            last = path[-1]
            extended = False
            for succ, _ in self.adj[last]:
                if self.is_critical(succ) and succ not in path:
                    dfs(path + [succ])
                    extended = True
            if not extended:
                critical_paths.append(path)

        for tid in self.order:
            has_critical_pred = any(self.is_critical(dep.predecessor_id) for dep in self.rev_adj[tid])
            if self.is_critical(tid) and not has_critical_pred:
                dfs([tid])

        return critical_paths

    def schedule(self) -> Dict[str, ScheduleEntry]:
        return {
            tid: ScheduleEntry(self.ES[tid], self.EF[tid], self.LS[tid], self.LF[tid],
                               self.total_float[tid], self.free_float[tid])
            for tid in self.ids
        }

    def gantt_rows(self) -> List[GanttRow]:
        rows = [
            GanttRow(a.id, a.description, self.durations[a.id], self.ES[a.id], self.EF[a.id],
                     self.total_float[a.id], self.is_critical(a.id), a.color_class)
            for a in self.activities if self.durations[a.id] > 0
        ]
        return sorted(rows, key=lambda r: r.early_start)

    def run(self):
        self.analyze()
        return self


# -----------------------------
# Shift optimizer
# -----------------------------

def snap_with_hustle(hours, increments: Sequence[float] = DEFAULT_REFERENCE.billing_increments,
                     hustle_threshold: float = DEFAULT_REFERENCE.hustle_threshold) -> Tuple[float, bool, float]:
    """
    Snap one day's hours to a billing increment.
    Overshooting an increment by no more than the hustle threshold bills that
    increment (the crew hustles); past the largest increment, bill whole
    multiples of it. Returns (billed hours, hustle, hustle amount).
    """
    if hours <= 0:
        return 0, False, 0
    for inc in increments:
        if hours <= inc:
            return inc, False, 0
        if hours <= inc + hustle_threshold:
            return inc, True, hours - inc
    return ceil_to_multiple(hours, increments[-1]), False, 0


def _build_candidate(raw_hours, shift_base, increments, hustle_threshold) -> ShiftPlan:
    full_days = math.floor(raw_hours / shift_base)
    remainder = raw_hours - full_days * shift_base

    if remainder <= 0 and full_days > 0:
        return ShiftPlan(full_days * shift_base, full_days, False, 0, shift_base)

    if full_days == 0:
        hours, hustle, amount = snap_with_hustle(remainder, increments, hustle_threshold)
        return ShiftPlan(hours, 1, hustle, amount, shift_base)

    # A: stretch the last day; B: add a partial day
    last_hours, last_hustle, last_amount = snap_with_hustle(shift_base + remainder, increments, hustle_threshold)
    part_hours, part_hustle, part_amount = snap_with_hustle(remainder, increments, hustle_threshold)
    total_a = (full_days - 1) * shift_base + last_hours
    total_b = full_days * shift_base + part_hours

    if total_a <= total_b:
        return ShiftPlan(total_a, full_days, last_hustle, last_amount, shift_base)
    return ShiftPlan(total_b, full_days + 1, part_hustle, part_amount, shift_base)


def optimize_shifts(raw_hours, std_shift=8, max_shift=12, min_days=1,
                    increments: Sequence[float] = DEFAULT_REFERENCE.billing_increments,
                    hustle_threshold: float = DEFAULT_REFERENCE.hustle_threshold) -> ShiftPlan:
    """
    Bill a scope of raw hours as shift-days. Standard and max shift bases are
    both tried; the lower billed total wins, the standard base on a tie.
    """
    if raw_hours <= 0:
        return ShiftPlan(0, 0, False, 0, std_shift)

    candidates = [_build_candidate(raw_hours, std_shift, increments, hustle_threshold)]
    if max_shift != std_shift:
        candidates.append(_build_candidate(raw_hours, max_shift, increments, hustle_threshold))

    for c in candidates:
        if c.days < min_days:
            per_day, hustle, amount = snap_with_hustle(raw_hours / min_days, increments, hustle_threshold)
            c.days = min_days
            c.hours = per_day * min_days
            c.hustle = hustle
            c.hustle_amount = amount

    # sorted() is stable, so the standard base wins ties
    return sorted(candidates, key=lambda c: c.hours)[0]


# -----------------------------
# Three-tier production model
# -----------------------------

def calc_three_tier(gross_qty, prod_per_day, productivity=1.0, std_shift=8, max_shift=12, min_days=1,
                    reference: ReferenceData = DEFAULT_REFERENCE) -> ThreeTierResult:
    tiers = reference.tier_multipliers
    multipliers = {"conservative": tiers.conservative, "standard": tiers.standard, "aggressive": tiers.aggressive}

    if not gross_qty or not prod_per_day or prod_per_day <= 0:
        return ThreeTierResult(**{name: TierResult(mult) for name, mult in multipliers.items()})

    result = {}
    for name, mult in multipliers.items():
        adjusted = prod_per_day * (productivity or 1.0) * mult
        raw_days = safe_div(gross_qty, adjusted)
        raw_hours = raw_days * std_shift
        result[name] = TierResult(
            multiplier=mult,
            adjusted_rate=adjusted,
            raw_days=raw_days,
            raw_hours=raw_hours,
            optimized=optimize_shifts(raw_hours, std_shift, max_shift, min_days,
                                      increments=reference.billing_increments,
                                      hustle_threshold=reference.hustle_threshold),
        )
    return ThreeTierResult(**result)


# -----------------------------
# Mobilization clusters
# -----------------------------

def clusterize(activities: List[ActivityResult], job_mode: JobMode, travel_hours=1.0, std_shift=8.0,
               reference: ReferenceData = DEFAULT_REFERENCE) -> ClusterResults:
    """Group active activity types into shared-mobilization clusters and price the trips."""
    active = [a for a in activities if a.duration > 0]
    active_types = {a.activity_type for a in active}
    if not active_types:
        return ClusterResults([], False, 0.0, 0.0, 0.0)

    is_combo = ActivityType.MILLING in active_types and any(t in active_types for t in PAVING_TYPES)
    keys = ["combo"] if is_combo else ["milling", "paving"]

    groups = []
    assigned = set()
    for key in keys:
        definition = reference.clusters.get(key)
        if definition is None:
            continue
        types = [t for t in definition.activities if t in active_types]
        if types:
            groups.append((key, definition, types))
            assigned.update(types)

    earthwork = reference.clusters.get("earthwork")
    if earthwork is not None:
        types = [t for t in earthwork.activities if t in active_types and t not in assigned]
        if types:
            groups.append(("earthwork", earthwork, types))

    clusters = []
    for key, definition, types in groups:
        members = [a for a in active if a.activity_type in types]
        crew = reference.crews.get(definition.mob_crew)
        # round trip
        mob_cost = 2 * travel_hours * crew.rate if crew else 0.0
        clusters.append(Cluster(
            key=key,
            description=definition.desc,
            activity_types=types,
            activity_ids=[a.id for a in members],
            mob_crew=definition.mob_crew,
            mob_cost=mob_cost,
            total_days=sum(a.duration for a in members),
        ))

    safety_cost = 0.0
    safe = reference.crews.get("SAFE")
    if job_mode == JobMode.ROADWAY and safe:
        work_days = max((a.early_finish or a.duration for a in active), default=0)
        safety_cost = work_days * std_shift * safe.rate

    total_mob = sum(c.mob_cost for c in clusters)
    return ClusterResults(clusters, is_combo, total_mob, safety_cost, total_mob + safety_cost)


# -----------------------------
# Calendar duration
# -----------------------------

def calculate_calendar_duration(activities: List[ActivityResult], weather_days=0,
                                calendar: Optional[AdvancedCalendar] = None) -> CalendarDuration:
    """Day-by-day timeline from early start/finish, with weather days appended."""
    active = [a for a in activities if a.duration > 0]
    weather_days = int(weather_days or 0)
    if not active:
        return CalendarDuration([], 0, weather_days, weather_days)

    project_duration = max(a.early_finish or a.duration for a in active)
    work_days = math.ceil(project_duration)
    timeline = []
    for day in range(work_days):
        ids = [a.id for a in active if a.early_start < day + 1 and (a.early_finish or a.duration) > day]
        timeline.append(TimelineDay(day + 1, "work", ids))
    for _ in range(weather_days):
        timeline.append(TimelineDay(len(timeline) + 1, "weather"))

    if calendar is not None:
        for entry, d in zip(timeline, calendar.workday_dates(len(timeline))):
            entry.date = d

    return CalendarDuration(timeline, work_days, weather_days, work_days + weather_days)


# -----------------------------
# Calculator
# -----------------------------

class Calculator:
    """
    Runs one estimate through the fixed phase sequence:
    trucking, three-tier, CPM, cost aggregation, clustering, indirects,
    confidence, unit checks, analysis, calendar, totals.
    """

    def __init__(self, reference: ReferenceData = DEFAULT_REFERENCE, near_critical_threshold=1.0):
        self.reference = reference
        self.near_critical_threshold = near_critical_threshold

    def _trucking(self, activity: Activity, trucking_rate, use_override=False) -> TruckingResult:
        minutes = self.reference.constants.workday_minutes
        override = activity.trucking_quantity_override
        if use_override and override and activity.trucking:
            return activity.compute_trucking(trucking_rate, quantity=override, workday_minutes=minutes)
        return activity.compute_trucking(trucking_rate, workday_minutes=minutes)

    def _unit_cost(self, estimate: Estimate, activity: Activity, trucking_cost) -> Tuple[float, str]:
        """Production cost per CY for volume benchmarks, per measured SY otherwise."""
        bm = self.reference.benchmark(estimate.job_mode, activity.activity_type)
        gross = activity.gross_quantity
        use_cy = bm is not None and bm.unit == "CY"
        denominator = gross if use_cy else (activity.quantity.area or gross)
        production = activity.labor_cost + activity.equipment_cost + activity.material_cost + trucking_cost
        return safe_div(production, denominator), ("CY" if use_cy else "SY")

    def _activity_result(self, estimate, activity, trucking, three_tier, cpm: CPMAnalyzer) -> ActivityResult:
        unit_cost, unit_uom = self._unit_cost(estimate, activity, trucking.cost)
        crew = activity.crew
        return ActivityResult(
            id=activity.id,
            description=activity.description,
            activity_type=activity.activity_type,
            net_quantity=activity.quantity.net_quantity or 0,
            gross_quantity=activity.gross_quantity,
            uom=activity.quantity.uom,
            reference_rate=activity.production_rate.output_qty if activity.production_rate else 0,
            productivity_factor=activity.productivity.composite,
            adjusted_rate=activity.adjusted_rate,
            duration=activity.duration,
            labor_hours=activity.labor_hours,
            labor_cost=activity.labor_cost,
            equipment_cost=activity.equipment_cost,
            material_cost=activity.material_cost,
            mobilization_cost=activity.mobilization_cost,
            trucking=trucking,
            trucking_cost=trucking.cost,
            direct_cost=activity.direct_cost + trucking.cost,
            unit_cost=unit_cost,
            unit_cost_uom=unit_uom,
            crew_code=crew.id if crew else None,
            crew_size=crew.people if crew else 0,
            crew_auto_selected=activity.crew_auto_selected,
            early_start=cpm.ES.get(activity.id, 0),
            early_finish=cpm.EF.get(activity.id, 0),
            total_float=cpm.total_float.get(activity.id, 0),
            is_critical=cpm.is_critical(activity.id),
            three_tier=three_tier,
            derived=activity.derived,
            wbs_code=activity.wbs_code,
            color_class=activity.color_class,
        )

    def calculate(self, estimate: Estimate, trucking_rate=0.0) -> EstimateResults:
        activities = estimate.activities
        shift = estimate.shift_settings

        # Phase 1: trucking from gross quantity
        trucking = {a.id: self._trucking(a, trucking_rate) for a in activities}

        # Phase 2: three-tier production
        tiers = {}
        for a in activities:
            if a.duration > 0:
                tiers[a.id] = calc_three_tier(
                    a.gross_quantity,
                    a.production_rate.output_qty if a.production_rate else 0,
                    a.productivity.composite,
                    shift.std_shift, shift.max_shift, shift.min_days, self.reference,
                )

        # Phase 3: CPM
        cpm = CPMAnalyzer(activities, self.near_critical_threshold).run()
        logger.info("Scheduled %d activities: project duration %.1f days, critical path %s",
                    len(activities), cpm.project_duration, cpm.get_critical_tasks())

        rows = [self._activity_result(estimate, a, trucking[a.id], tiers.get(a.id), cpm) for a in activities]
        return self._assemble(estimate, rows, cpm.schedule(), cpm.project_duration,
                              cpm.get_critical_tasks(), cpm.get_near_critical(), cpm.gantt_rows(),
                              cpm.cycle_detected)

    def apply_trucking_overrides(self, results: EstimateResults, estimate: Estimate,
                                 trucking_rate=0.0) -> EstimateResults:
        """
        Re-derive trucking from each activity's hauled quantity (loose CY,
        RAP tons, HMA tons) and rebuild every cost-dependent output from
        scratch. Running it again on its own output changes nothing.
        """
        rows = []
        for ar in results.activities:
            activity = estimate.get_activity(ar.id)
            if activity is None:
                rows.append(ar)
                continue
            trk = self._trucking(activity, trucking_rate, use_override=True)
            unit_cost, unit_uom = self._unit_cost(estimate, activity, trk.cost)
            rows.append(replace(
                ar,
                trucking=trk,
                trucking_cost=trk.cost,
                direct_cost=activity.direct_cost + trk.cost,
                unit_cost=unit_cost,
                unit_cost_uom=unit_uom,
            ))
        return self._assemble(estimate, rows, results.schedule, results.project_duration,
                              results.critical_path, results.near_critical, results.gantt,
                              results.cycle_detected)

    def _assemble(self, estimate: Estimate, rows: List[ActivityResult], schedule, project_duration,
                  critical_path, near_critical, gantt, cycle_detected) -> EstimateResults:
        ref = self.reference

        # Phase 4: aggregate costs
        total_labor = sum(r.labor_cost for r in rows)
        total_equipment = sum(r.equipment_cost for r in rows)
        total_material = sum(r.material_cost for r in rows)
        total_trucking = sum(r.trucking_cost for r in rows)
        total_mob = sum(r.mobilization_cost for r in rows)
        direct_total = total_labor + total_equipment + total_material + total_trucking + total_mob
        total_hma_tons = sum(r.derived.tons_with_waste for r in rows
                             if r.activity_type in PAVING_TYPES and isinstance(r.derived, HmaQuantities))

        # Phase 5: clustering
        clusters = None
        if estimate.cluster_mode:
            clusters = clusterize(rows, estimate.job_mode, estimate.travel_hours,
                                  estimate.shift_settings.std_shift, ref)

        # Phase 6: indirect costs on the CPM duration
        indirect = estimate.indirect_costs.calculate(direct_total, total_labor + total_equipment,
                                                     project_duration, estimate.risk_register)

        # Phases 7-9
        confidence = calculate_confidence(rows, estimate.job_mode, ref)
        unit_checks = check_unit_costs(rows, estimate.job_mode, ref)
        observations = generate_analysis(rows, estimate.job_mode, clusters, total_hma_tons, ref)
        if cycle_detected:
            observations.append(cycle_observation(len(observations) + 1))

        # Phase 10: calendar
        calendar = AdvancedCalendar(estimate.start_date) if estimate.start_date else None
        calendar_duration = calculate_calendar_duration(rows, estimate.weather_days, calendar)

        # Phase 11: totals
        results = EstimateResults(
            activities=rows,
            schedule=schedule,
            project_duration=project_duration,
            critical_path=list(critical_path),
            near_critical=list(near_critical),
            gantt=list(gantt),
            cycle_detected=cycle_detected,
            total_labor_cost=total_labor,
            total_equipment_cost=total_equipment,
            total_material_cost=total_material,
            total_trucking_cost=total_trucking,
            total_mobilization_cost=total_mob,
            total_truck_hours=sum(r.trucking.truck_hours for r in rows),
            total_labor_hours=sum(r.labor_hours for r in rows),
            total_activity_days=sum(r.duration for r in rows),
            total_hma_tons=total_hma_tons,
            direct_cost_total=direct_total,
            indirect=indirect,
            total_estimated_cost=indirect.total_estimated_cost,
            clusters=clusters,
            confidence=confidence,
            unit_cost_checks=unit_checks,
            analysis=observations,
            calendar=calendar_duration,
            mob_and_safety=clusters.mob_and_safety if clusters else 0.0,
        )
        results.validation = validate_results(results, estimate)
        return results


def calculate(estimate: Estimate, trucking_rate=0.0, reference: Optional[ReferenceData] = None,
              near_critical_threshold=1.0) -> EstimateResults:
    """Full estimate: the phase pipeline followed by the trucking-quantity pass."""
    calculator = Calculator(reference or DEFAULT_REFERENCE, near_critical_threshold)
    results = calculator.calculate(estimate, trucking_rate)
    return calculator.apply_trucking_overrides(results, estimate, trucking_rate)
