"""
Recruiter Capacity Engine - Capacity & Fit Dashboard

Workload:  WU = BaseDifficulty x RemainingWork x HM Friction x Aging
Capacity:  median WU carried across stable weeks (team median fallback)
Fit:       weighted, shrunk residuals vs. segment cohort
Rebalance: greedy moves from overloaded recruiters to ones with headroom
"""

import logging
from datetime import datetime

import pandas as pd
import streamlit as st

from capacity_engine.analysis import analyze_capacity, explain_fit, explain_overload, load_rows_by_status
from capacity_engine.config import DEFAULT_CONFIG
from capacity_engine.congestion import forecast_requisition
from capacity_engine.data_loader import parse_snapshot, validate_data
from capacity_engine.fit import fit_label
from capacity_engine.simulation import simulate_move_impact

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

STATUS_ICONS = {
    "critical": "🔴",
    "overloaded": "🟠",
    "balanced": "🟢",
    "available": "🔵",
    "underutilized": "⚪",
}

st.set_page_config(page_title="Recruiter Capacity Engine", page_icon="◆", layout="wide")


@st.cache_data
def load_snapshot(requisitions_json: str, candidates_json: str, events_json: str, users_json: str):
    return parse_snapshot(requisitions_json, candidates_json, events_json, users_json)


@st.cache_data
def run_analysis(requisitions_json: str, candidates_json: str, events_json: str, users_json: str,
                 as_of: datetime):
    snapshot = load_snapshot(requisitions_json, candidates_json, events_json, users_json)
    return analyze_capacity(snapshot, DEFAULT_CONFIG, as_of=as_of)


def _read(upload, default: str = "[]") -> str:
    return upload.getvalue().decode("utf-8") if upload is not None else default


# Header
st.markdown("## ◆ Recruiter Capacity Engine")
st.caption(f"📅 {datetime.now().strftime('%B %d, %Y')} | config v{DEFAULT_CONFIG.version}")

with st.sidebar:
    st.markdown("### 📁 Snapshot")
    req_file = st.file_uploader("Requisitions (JSON)", type="json")
    cand_file = st.file_uploader("Candidates (JSON)", type="json")
    event_file = st.file_uploader("Events (JSON)", type="json")
    user_file = st.file_uploader("Users (JSON)", type="json")

if req_file is None or cand_file is None:
    st.info("Upload requisitions and candidates to run the capacity analysis.")
    st.stop()

raw = (_read(req_file), _read(cand_file), _read(event_file), _read(user_file))
as_of = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)

try:
    snapshot = load_snapshot(*raw)
except (KeyError, ValueError) as exc:
    st.error(f"Could not parse uploaded files: {exc}")
    st.stop()

ok, message = validate_data(snapshot)
if not ok:
    st.error(message)
    st.stop()

with st.spinner("🔄 Running capacity analysis..."):
    result = run_analysis(*raw, as_of)

with st.sidebar:
    st.success(message)
    if result.team_summary is not None:
        st.markdown("### 📊 Quick Summary")
        for status, rows in sorted(load_rows_by_status(result).items()):
            st.metric(f"{STATUS_ICONS.get(status, '')} {status.title()}", len(rows))

if result.blocked:
    st.error(f"**Analysis blocked:** {result.block_reason}")
    for reason in result.block_reasons:
        st.markdown(f"- `{reason.code}`: {reason.remediation}")
    st.stop()

for warning in result.warnings:
    st.warning(warning)

tab1, tab2, tab3, tab4 = st.tabs(["📈 Team", "👥 Recruiter Load", "🎯 Fit Matrix", "💡 Rebalance"])

# =============================================================================
# TAB 1: TEAM
# =============================================================================

with tab1:
    summary = result.team_summary
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Team Demand", f"{summary.team_demand:.0f} WU")
    col2.metric("Team Capacity", f"{summary.team_capacity:.0f} WU/wk")
    col3.metric("Capacity Gap", f"{summary.capacity_gap:+.0f} WU", delta=f"{summary.capacity_gap_percent}%",
                delta_color="inverse")
    col4.metric("Status", summary.status.title(), help=f"Confidence: {summary.confidence}")

    st.markdown("#### Top Drivers")
    if summary.top_drivers:
        st.dataframe(pd.DataFrame([
            {"Driver": d.type, "Description": d.description, "Impact (WU)": d.impact_wu, "Reqs": len(d.req_ids)}
            for d in summary.top_drivers
        ]), use_container_width=True, hide_index=True)
    else:
        st.caption("No significant drivers.")

# =============================================================================
# TAB 2: RECRUITER LOAD
# =============================================================================

with tab2:
    load_df = pd.DataFrame([
        {
            "Recruiter": f"{STATUS_ICONS.get(r.status, '')} {r.recruiter_name}",
            "Demand (WU)": r.demand_wu,
            "Capacity (WU/wk)": r.capacity_wu,
            "Utilization %": r.utilization * 100,
            "Reqs": r.req_count,
            "Top Driver": r.top_driver,
            "Confidence": str(r.confidence),
            "Team Median": r.used_team_median,
        }
        for r in result.recruiter_loads
    ])
    st.dataframe(
        load_df,
        use_container_width=True,
        hide_index=True,
        column_config={
            "Demand (WU)": st.column_config.NumberColumn("Demand (WU)", format="%.1f"),
            "Capacity (WU/wk)": st.column_config.NumberColumn("Capacity (WU/wk)", format="%.1f"),
            "Utilization %": st.column_config.ProgressColumn("Utilization", format="%.0f%%", min_value=0, max_value=200),
        },
    )

    st.markdown("---")
    names = {r.recruiter_id: r.recruiter_name for r in result.recruiter_loads}
    selected = st.selectbox("Recruiter detail", list(names), format_func=lambda rid: names[rid])
    explanation = explain_overload(result, selected)
    if explanation is not None:
        st.markdown(explanation.summary)
        st.dataframe(pd.DataFrame([
            {
                "Req": w.req_id,
                "Title": w.req_title,
                "WU": w.workload_units,
                "Base": w.components.base_difficulty,
                "Remaining": w.components.remaining_work,
                "Friction": w.components.friction_multiplier,
                "Aging": w.components.aging_multiplier,
                "Age (days)": w.age_days,
            }
            for w in explanation.workloads
        ]), use_container_width=True, hide_index=True)

        req_ids = [w.req_id for w in explanation.workloads]
        if req_ids:
            forecast_req = st.selectbox("Stage congestion for", req_ids)
            forecast = forecast_requisition(forecast_req, snapshot, DEFAULT_CONFIG, as_of=as_of)
            st.dataframe(pd.DataFrame([
                {
                    "Stage": d.stage_name,
                    "Owner": d.owner.value,
                    "Demand": d.demand,
                    "Service rate /wk": d.service_rate,
                    "Queue delay (days)": d.queue_delay_days,
                    "Confidence": str(d.confidence),
                }
                for d in forecast.stage_diagnostics
            ]), use_container_width=True, hide_index=True)
            for rec in forecast.recommendations:
                st.markdown(f"{rec.rank}. {rec.description}")

# =============================================================================
# TAB 3: FIT MATRIX
# =============================================================================

with tab3:
    if not result.fit_matrix:
        st.info("No recruiter/segment pair has enough history for a fit score yet.")
    else:
        fit_df = pd.DataFrame([
            {"Recruiter": c.recruiter_name, "Segment": c.segment_key, "Fit": c.fit_score}
            for c in result.fit_matrix
        ])
        st.dataframe(fit_df.pivot_table(index="Recruiter", columns="Segment", values="Fit"),
                     use_container_width=True)

        cell_labels = {f"{c.recruiter_name} · {c.segment_key}": c for c in result.fit_matrix}
        chosen = cell_labels[st.selectbox("Explain cell", list(cell_labels))]
        fit = explain_fit(result, chosen.recruiter_id, chosen.segment)
        st.markdown(f"**{fit_label(chosen.fit_score)}**: {fit.summary}")

# =============================================================================
# TAB 4: REBALANCE
# =============================================================================

with tab4:
    if not result.rebalance_recommendations:
        st.info("No moves available: nobody is overloaded or no recruiter has headroom.")
    for move in result.rebalance_recommendations:
        with st.expander(f"#{move.rank} Move {move.req_id} from {move.from_recruiter_name} to {move.to_recruiter_name}"):
            st.markdown(move.rationale)
            impact = simulate_move_impact(move, snapshot, DEFAULT_CONFIG, as_of=as_of)
            col1, col2, col3 = st.columns(3)
            col1.metric("Source queue delay", f"{impact.after_source.queue_delay_days:.1f}d",
                        delta=f"{impact.after_source.queue_delay_days - impact.before_source.queue_delay_days:+.1f}d",
                        delta_color="inverse")
            col2.metric("Target queue delay", f"{impact.after_target.queue_delay_days:.1f}d",
                        delta=f"{impact.after_target.queue_delay_days - impact.before_target.queue_delay_days:+.1f}d",
                        delta_color="inverse")
            col3.metric("Net delay reduction", f"{impact.delay_reduction_days:.1f}d")
            st.caption(f"{impact.hedge_message} (confidence {impact.confidence})")
