import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from loguru import logger

from models import CalendarDuration, EstimateResults
from simulation import SimulationResult


CRITICAL_COLOR = "#E74C3C"
NEAR_CRITICAL_COLOR = "#F39C12"
DEFAULT_BAR_COLOR = "#45B7D1"

ACTIVITY_COLUMNS = [
    "ActivityID", "Description", "Type", "NetQty", "GrossQty", "UOM", "Rate", "Productivity",
    "AdjustedRate", "Duration", "LaborHours", "LaborCost", "EquipmentCost", "MaterialCost",
    "MobilizationCost", "TruckingCost", "Trucks", "DirectCost", "UnitCost", "UnitCostUOM",
    "Crew", "CrewSize", "ES", "EF", "TotalFloat", "Critical",
]


def _validate_required_columns(df: pd.DataFrame, required: set, name: str = "DataFrame") -> None:
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"{name} missing required columns: {sorted(list(missing))}")


# -----------------------------
# Tables
# -----------------------------
def activities_frame(results: EstimateResults) -> pd.DataFrame:
    """One row per activity result, in schedule order."""
    rows = []
    for a in results.activities:
        rows.append({
            "ActivityID": a.id,
            "Description": a.description,
            "Type": a.activity_type.value,
            "NetQty": a.net_quantity,
            "GrossQty": a.gross_quantity,
            "UOM": a.uom,
            "Rate": a.reference_rate,
            "Productivity": a.productivity_factor,
            "AdjustedRate": a.adjusted_rate,
            "Duration": a.duration,
            "LaborHours": a.labor_hours,
            "LaborCost": a.labor_cost,
            "EquipmentCost": a.equipment_cost,
            "MaterialCost": a.material_cost,
            "MobilizationCost": a.mobilization_cost,
            "TruckingCost": a.trucking_cost,
            "Trucks": a.trucking.trucks,
            "DirectCost": a.direct_cost,
            "UnitCost": a.unit_cost,
            "UnitCostUOM": a.unit_cost_uom,
            "Crew": a.crew_code or "",
            "CrewSize": a.crew_size,
            "ES": a.early_start,
            "EF": a.early_finish,
            "TotalFloat": a.total_float,
            "Critical": a.is_critical,
        })
    return pd.DataFrame(rows, columns=ACTIVITY_COLUMNS)


def schedule_frame(results: EstimateResults) -> pd.DataFrame:
    rows = [
        {
            "ActivityID": tid,
            "ES": s.early_start,
            "EF": s.early_finish,
            "LS": s.late_start,
            "LF": s.late_finish,
            "TotalFloat": s.total_float,
            "FreeFloat": s.free_float,
            "Critical": tid in results.critical_path,
            "NearCritical": tid in results.near_critical,
        }
        for tid, s in results.schedule.items()
    ]
    df = pd.DataFrame(rows, columns=["ActivityID", "ES", "EF", "LS", "LF", "TotalFloat", "FreeFloat",
                                     "Critical", "NearCritical"])
    return df.sort_values(["ES", "ActivityID"]).reset_index(drop=True)


def timeline_frame(calendar: CalendarDuration) -> pd.DataFrame:
    rows = [
        {
            "Day": d.day,
            "Kind": d.kind,
            "Date": d.date,
            "Activities": ", ".join(d.activity_ids),
            "ActivityCount": len(d.activity_ids),
        }
        for d in calendar.timeline
    ]
    return pd.DataFrame(rows, columns=["Day", "Kind", "Date", "Activities", "ActivityCount"])


def cost_summary_frame(results: EstimateResults) -> pd.DataFrame:
    """Direct cost buckets, indirect lines and the bid total as a two-column table."""
    ind = results.indirect
    lines = [
        ("Labor", results.total_labor_cost),
        ("Equipment", results.total_equipment_cost),
        ("Material", results.total_material_cost),
        ("Trucking", results.total_trucking_cost),
        ("Mobilization", results.total_mobilization_cost),
        ("Direct Cost", results.direct_cost_total),
        ("General Conditions", ind.gc_total),
        ("Home Office Overhead", ind.home_office_overhead),
        ("Fee / Profit", ind.fee_profit),
        ("Escalation", ind.escalation),
        ("Bonds & Insurance", ind.bonds_insurance_total),
        ("Contingency", ind.total_contingency),
        ("Total Estimated Cost", results.total_estimated_cost),
        ("Mob & Safety (separate)", results.mob_and_safety),
    ]
    return pd.DataFrame(lines, columns=["Line", "Amount"])


def observations_frame(results: EstimateResults) -> pd.DataFrame:
    rows = [
        {"ID": o.id, "Flag": o.flag, "Status": o.status, "ActivityID": o.activity_id or "", "Message": o.message}
        for o in results.analysis
    ]
    return pd.DataFrame(rows, columns=["ID", "Flag", "Status", "ActivityID", "Message"])


# -----------------------------
# Figures
# -----------------------------
def generate_gantt_figure(results: EstimateResults) -> go.Figure:
    """Horizontal bars on a working-day axis, critical work in red and near-critical in orange."""
    df = pd.DataFrame([
        {
            "ActivityID": g.id,
            "Description": g.description,
            "ES": g.early_start,
            "Duration": g.duration,
            "TotalFloat": g.total_float,
            "Critical": g.is_critical,
        }
        for g in results.gantt
    ], columns=["ActivityID", "Description", "ES", "Duration", "TotalFloat", "Critical"])
    _validate_required_columns(df, {"ActivityID", "ES", "Duration"}, "gantt")

    near = set(results.near_critical)
    colors = [
        CRITICAL_COLOR if row.Critical else NEAR_CRITICAL_COLOR if row.ActivityID in near else DEFAULT_BAR_COLOR
        for row in df.itertuples()
    ]
    labels = [f"{row.ActivityID} {row.Description}" for row in df.itertuples()]

    fig = go.Figure()
    fig.add_trace(go.Bar(
        y=labels, x=df["Duration"], base=df["ES"], orientation="h",
        marker=dict(color=colors),
        customdata=df[["TotalFloat"]].to_numpy(),
        hovertemplate="%{y}<br>Start day %{base}<br>Duration %{x} d<br>Float %{customdata[0]} d<extra></extra>",
        name="Activities",
    ))
    fig.update_yaxes(autorange="reversed")
    fig.update_layout(
        title=f"Schedule ({results.project_duration:g} working days)",
        xaxis_title="Working Day", yaxis_title="",
        height=max(300, 40 * len(df) + 120),
        template="plotly_white", showlegend=False,
    )
    logger.info(f"Gantt figure built with {len(df)} bars")
    return fig


def generate_cost_breakdown_figure(results: EstimateResults) -> go.Figure:
    df = cost_summary_frame(results)
    df = df[df["Line"].isin(["Labor", "Equipment", "Material", "Trucking", "Mobilization"])]
    fig = px.pie(df, names="Line", values="Amount", title="Direct Cost Breakdown")
    fig.update_layout(template="plotly_white")
    return fig


def generate_cost_histogram_figure(sim: SimulationResult) -> go.Figure:
    """Simulated total cost distribution with P50 and P80 markers."""
    if not sim.histogram:
        raise ValueError("simulation result has no histogram; run it with bins >= 1")
    df = pd.DataFrame([
        {"Mid": (b.bin_start + b.bin_end) / 2, "Count": b.count, "Frequency": b.frequency}
        for b in sim.histogram
    ])
    width = sim.histogram[0].bin_end - sim.histogram[0].bin_start

    fig = go.Figure()
    fig.add_trace(go.Bar(x=df["Mid"], y=df["Count"], width=width or None, name="Iterations",
                         marker=dict(color=DEFAULT_BAR_COLOR)))
    for label, value, color in (("P50", sim.p50, "green"), ("P80", sim.p80, CRITICAL_COLOR)):
        fig.add_vline(x=value, line_dash="dash", line_color=color,
                      annotation_text=f"{label} ${value:,.0f}", annotation_position="top")
    fig.update_layout(
        title=f"Cost Distribution ({sim.iterations} iterations)",
        xaxis_title="Total Cost", yaxis_title="Iterations",
        template="plotly_white", bargap=0.02,
    )
    logger.info(f"Cost histogram built: P50={sim.p50:,.0f} P80={sim.p80:,.0f}")
    return fig


def export_estimate(results: EstimateResults, path: str) -> str:
    """Write the activity table to CSV and return the path."""
    activities_frame(results).to_csv(path, index=False)
    logger.info(f"Estimate exported to {path}")
    return path
