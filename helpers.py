from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import math

import pandas as pd

from defaults import DEFAULT_REFERENCE, ReferenceData
from models import (
    Activity, ActivityType, AggregateQuantities, Crew, Dependency, DerivedQuantities,
    Estimate, ExcavationQuantities, HmaQuantities, JobMode, MaterialUse, MillingQuantities,
    ProductionRate, ProductivityFactor, Quantity, Resource, ResourceType, TackQuantities,
    TruckingParams,
)

logger = logging.getLogger(__name__)


# ------------------------- Builder inputs -------------------------

@dataclass
class ActivityInputs:
    area: float = 0.0                 # SY
    depth: float = 0.0                # inches
    cycle_time: float = 0.0           # minutes
    production_rate: Optional[float] = None   # None -> reference rate for the job mode
    crew_code: Optional[str] = None   # pick a standard crew
    crew_rate: Optional[float] = None  # or enter a blended $/hr
    crew_size: Optional[int] = None
    include_mobilization: bool = False
    mobilization_cost: float = 0.0


@dataclass
class MaterialPrices:
    hma_surface: float = 0.0   # $/ton 9.5mm
    hma_base: float = 0.0      # $/ton 19mm
    dga: float = 0.0           # $/ton
    tack: float = 0.0          # $/gal


@dataclass
class ProjectSettings:
    productivity: float = 1.0
    asphalt_waste: float = 1.07
    aggregate_waste: float = 1.07
    swell_factor: float = 1.25
    truck_efficiency: float = 0.90
    tack_app_rate: float = 0.05   # gal/SY


SHEET_COLUMNS = ["ActivityType", "Area", "Depth", "CycleTime", "ProductionRate",
                 "CrewCode", "CrewRate", "CrewSize", "Mobilization", "MobilizationCost"]


# ------------------------- Graph ordering -------------------------

def topo_order_activities(activities: List[Activity]) -> Tuple[List[str], bool]:
    """
    Kahn ordering of activity ids. Dependencies on ids outside the set are ignored.
    Returns (order, cycle_detected); on a cycle the input order is returned.
    """
    ids = [a.id for a in activities]
    known = set(ids)
    indegree = {tid: 0 for tid in ids}
    successors = {tid: [] for tid in ids}

    for a in activities:
        for dep in a.dependencies:
            if dep.predecessor_id in known:
                indegree[a.id] += 1
                successors[dep.predecessor_id].append(a.id)

    queue = deque([tid for tid in ids if indegree[tid] == 0])
    ordered_ids = []

    while queue:
        current = queue.popleft()
        ordered_ids.append(current)
        for succ in successors[current]:
            indegree[succ] -= 1
            if indegree[succ] == 0:
                queue.append(succ)

    if len(ordered_ids) != len(ids):
        stuck = sorted(tid for tid in ids if tid not in ordered_ids)
        logger.warning("Cycle detected in activity dependencies (%s); falling back to input order",
                       ", ".join(stuck))
        return ids, True

    return ordered_ids, False


# ------------------------- Quantities -------------------------

def derive_quantities(activity_type: ActivityType, area: float, depth: float,
                      settings: ProjectSettings,
                      reference: ReferenceData = DEFAULT_REFERENCE) -> Tuple[float, DerivedQuantities]:
    """Net quantity for the activity plus its per-type tonnage / volume breakdown."""
    c = reference.constants
    area = area or 0
    depth = depth or 0
    has_volume = area > 0 and depth > 0

    if activity_type == ActivityType.EXCAVATION:
        bank = math.ceil(area * depth / c.sy_inch_per_cy) if has_volume else 0
        return bank, ExcavationQuantities(
            bank_cy=bank,
            loose_cy=math.ceil(bank * settings.swell_factor),
            tons=math.ceil(bank * c.soil_density),
        )
    if activity_type == ActivityType.DGA_BASE:
        cy = math.ceil(area * depth / c.sy_inch_per_cy) if has_volume else 0
        tons = math.ceil(cy * c.dga_density)
        return cy, AggregateQuantities(cy=cy, tons=tons,
                                       tons_with_waste=math.ceil(tons * settings.aggregate_waste))
    if activity_type == ActivityType.MILLING:
        rap = math.ceil(area * depth * c.rap_factor) if has_volume else 0
        return area, MillingQuantities(rap_tons=rap)
    if activity_type in (ActivityType.PAVING_BASE, ActivityType.PAVING_SURFACE):
        tons = math.ceil(area * depth * c.hma_factor) if has_volume else 0
        return area, HmaQuantities(tons=tons, tons_with_waste=math.ceil(tons * settings.asphalt_waste),
                                   kind=activity_type)
    if activity_type == ActivityType.TACK_COAT:
        app_rate = settings.tack_app_rate or 0.05
        return area, TackQuantities(gallons=math.ceil(area * app_rate) if area else 0, app_rate=app_rate)
    # fine grading is measured straight off the plan
    return area, None


def auto_select_crew(activity_type: ActivityType, total_sy: float,
                     reference: ReferenceData = DEFAULT_REFERENCE) -> Optional[str]:
    """Smallest standard crew whose size threshold covers the job."""
    for threshold in reference.crew_thresholds.get(activity_type, []):
        if total_sy <= threshold.max_sy:
            return threshold.crew
    return None


def _crew_for(activity_type: ActivityType, inputs: ActivityInputs, reference: ReferenceData) -> Tuple[Optional[Crew], bool]:
    if inputs.crew_code:
        spec = reference.crews.get(inputs.crew_code)
        if spec is None:
            logger.warning("Unknown crew code %s for %s", inputs.crew_code, activity_type.value)
            return None, False
        return Crew(inputs.crew_code, spec.desc, composite_rate=spec.rate, headcount=spec.people), False
    if inputs.crew_rate is not None:
        return Crew(f"C-{activity_type.value.upper()}", f"{activity_type.value} crew",
                    composite_rate=inputs.crew_rate, headcount=inputs.crew_size or 0), False
    code = auto_select_crew(activity_type, inputs.area or 0, reference)
    spec = reference.crews.get(code) if code else None
    if spec is None:
        return None, True
    return Crew(code, spec.desc, composite_rate=spec.rate, headcount=spec.people), True


def _materials_for(activity_type: ActivityType, inputs: ActivityInputs, prices: MaterialPrices,
                   settings: ProjectSettings, reference: ReferenceData) -> List[MaterialUse]:
    c = reference.constants
    if activity_type == ActivityType.DGA_BASE:
        return [MaterialUse(Resource("M-003", "DGA", ResourceType.MATERIAL, "TON", prices.dga),
                            c.dga_density * settings.aggregate_waste)]
    if activity_type == ActivityType.PAVING_BASE:
        return [MaterialUse(Resource("M-002", "19mm HMA", ResourceType.MATERIAL, "TON", prices.hma_base),
                            (inputs.depth or 0) * c.hma_factor * settings.asphalt_waste)]
    if activity_type == ActivityType.PAVING_SURFACE:
        return [MaterialUse(Resource("M-001", "9.5mm HMA", ResourceType.MATERIAL, "TON", prices.hma_surface),
                            (inputs.depth or 0) * c.hma_factor * settings.asphalt_waste)]
    if activity_type == ActivityType.TACK_COAT:
        return [MaterialUse(Resource("M-004", "Tack Coat", ResourceType.MATERIAL, "GAL", prices.tack),
                            settings.tack_app_rate or 0.05)]
    return []


# ------------------------- Activity / estimate builders -------------------------

def build_activity(activity_type: ActivityType, inputs: ActivityInputs, prices: MaterialPrices,
                   settings: ProjectSettings, job_mode: JobMode = JobMode.PARKING_LOT,
                   reference: ReferenceData = DEFAULT_REFERENCE) -> Activity:
    cfg = reference.activity_config[activity_type]
    net, derived = derive_quantities(activity_type, inputs.area, inputs.depth, settings, reference)
    crew, auto = _crew_for(activity_type, inputs, reference)

    rate_value = inputs.production_rate
    source = "User selected"
    if rate_value is None and activity_type == ActivityType.TACK_COAT:
        # applied ahead of the surface crew; only scheduled when a rate is entered
        rate_value = 0
        source = "Not scheduled"
    elif rate_value is None:
        rate_value = reference.production_rates.get(job_mode, {}).get(activity_type, 0)
        source = f"Reference ({job_mode.value})"

    trucking = None
    if cfg.has_cycle_time and inputs.cycle_time:
        trucking = TruckingParams(inputs.cycle_time, cfg.truck_capacity, settings.truck_efficiency)

    activity = Activity(
        id=cfg.id,
        description=cfg.description,
        activity_type=activity_type,
        quantity=Quantity(net, cfg.quantity_uom, area=inputs.area or None),
        crew=crew,
        production_rate=ProductionRate(rate_value or 0, cfg.quantity_uom, source),
        productivity=ProductivityFactor.from_composite_value(settings.productivity),
        materials=_materials_for(activity_type, inputs, prices, settings, reference),
        include_mobilization=inputs.include_mobilization,
        mobilization_cost_input=inputs.mobilization_cost or 0,
        trucking=trucking,
        dependencies=[Dependency(d.predecessor_id, d.type, d.lag, d.source)
                      for d in reference.default_dependencies.get(cfg.id, [])],
        derived=derived,
        crew_auto_selected=auto,
        wbs_code=cfg.wbs_code,
        color_class=cfg.color_class,
        hours_per_day=reference.constants.workday_hours,
    )
    # DGA is hauled by its compacted CY, which is already the gross quantity
    if trucking and derived is not None and activity_type != ActivityType.DGA_BASE:
        activity.trucking_quantity_override = derived.trucking_quantity
    return activity


def build_estimate(inputs: Dict[ActivityType, ActivityInputs], prices: MaterialPrices,
                   settings: Optional[ProjectSettings] = None, job_mode: JobMode = JobMode.PARKING_LOT,
                   reference: ReferenceData = DEFAULT_REFERENCE, **estimate_kwargs) -> Estimate:
    """
    Build the standard paving activity set from per-type takeoff inputs.
    Tack coat defaults to the surface course area. Dependencies on activity
    types that were not entered are dropped.
    """
    settings = settings or ProjectSettings()
    inputs = dict(inputs)
    surface = inputs.get(ActivityType.PAVING_SURFACE)
    tack = inputs.get(ActivityType.TACK_COAT)
    if surface and surface.area and (tack is None or not tack.area):
        tack = tack or ActivityInputs()
        inputs[ActivityType.TACK_COAT] = ActivityInputs(**{**tack.__dict__, "area": surface.area})

    activities = [build_activity(atype, inputs[atype], prices, settings, job_mode, reference)
                  for atype in ActivityType if atype in inputs]
    built = {a.id for a in activities}
    for a in activities:
        a.dependencies = [d for d in a.dependencies if d.predecessor_id in built]

    logger.info("Built %d activities for %s", len(activities), job_mode.value)
    return Estimate(activities=activities, job_mode=job_mode, **estimate_kwargs)


# ------------------------- Takeoff sheets -------------------------

def _num(value, default=0.0):
    try:
        if value is None or pd.isna(value):
            return default
        return float(value)
    except (ValueError, TypeError):
        return default


def parse_activity_sheet(df: pd.DataFrame) -> Dict[ActivityType, ActivityInputs]:
    """
    Parse a takeoff sheet, one row per activity type.
    Expected columns: see SHEET_COLUMNS. Rows with an unknown activity type are skipped.
    """
    parsed = {}
    for _, row in df.iterrows():
        key = str(row.get("ActivityType", "")).strip().lower()
        try:
            atype = ActivityType(key)
        except ValueError:
            logger.warning("Skipping takeoff row with unknown activity type %r", key)
            continue
        rate = _num(row.get("ProductionRate"), None)
        crew_rate = _num(row.get("CrewRate"), None)
        crew_size = _num(row.get("CrewSize"), None)
        crew_code = row.get("CrewCode")
        crew_code = str(crew_code).strip() if isinstance(crew_code, str) and crew_code.strip() else None
        parsed[atype] = ActivityInputs(
            area=_num(row.get("Area")),
            depth=_num(row.get("Depth")),
            cycle_time=_num(row.get("CycleTime")),
            production_rate=rate,
            crew_code=crew_code,
            crew_rate=crew_rate,
            crew_size=int(crew_size) if crew_size is not None else None,
            include_mobilization=bool(row.get("Mobilization", False) is True or
                                      str(row.get("Mobilization", "")).strip().lower() in ("yes", "true", "1")),
            mobilization_cost=_num(row.get("MobilizationCost")),
        )
    return parsed


def generate_activity_template(job_mode: JobMode = JobMode.PARKING_LOT,
                               reference: ReferenceData = DEFAULT_REFERENCE) -> pd.DataFrame:
    """Blank takeoff sheet pre-filled with the reference production rates."""
    rows = []
    for atype in ActivityType:
        rows.append({
            "ActivityType": atype.value,
            "Area": 0.0,
            "Depth": 0.0,
            "CycleTime": 0.0,
            "ProductionRate": reference.production_rates.get(job_mode, {}).get(atype, 0),
            "CrewCode": "",
            "CrewRate": None,
            "CrewSize": None,
            "Mobilization": False,
            "MobilizationCost": 0.0,
        })
    return pd.DataFrame(rows, columns=SHEET_COLUMNS)
