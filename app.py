# app.py
# Run:
#   pip install streamlit pandas
#   streamlit run app.py

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import pandas as pd
import streamlit as st

from quintet import (
    DRAW_BASE_MAX,
    DRAW_FLOOR,
    MAX_GAMMA,
    MODES,
    Competitor,
    ModelParameters,
    OrderResult,
    QuintetSolver,
    SearchResult,
    evaluate_outcome,
    probability_matrix,
    roster_labels,
    roster_weight,
    run_diagnostics,
)


logging.basicConfig(level=logging.INFO)

COLUMNS = ["Name", "Weight", "Condition", "Technique"]

MODE_LABELS = {
    "exploit": "Exploitative: maximize EV vs current opponent order",
    "robust": "Robust: maximize our worst-case EV",
}


def default_our_team() -> pd.DataFrame:
    names = ["JP", "FLORIS", "ALEX", "NIELS", "NOAH"]
    weights = [62, 67, 79, 87, 122]
    return pd.DataFrame({"Name": names, "Weight": weights, "Condition": [10] * 5, "Technique": [10] * 5})


def default_opp_team(prefix: str = "Opp") -> pd.DataFrame:
    return pd.DataFrame({
        "Name": [f"{prefix} {i+1}" for i in range(5)],
        "Weight": [85] * 5,
        "Condition": [10] * 5,
        "Technique": [10] * 5,
    })


def coerce_float(x, default: float) -> float:
    try:
        if pd.isna(x):
            return default
        return float(x)
    except (TypeError, ValueError):
        return default


def validate_df(df: pd.DataFrame, label: str) -> List[Competitor]:
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{label} table is missing columns: {', '.join(missing)}")
    roster: List[Competitor] = []
    for k, row in enumerate(df.itertuples(index=False)):
        name = "" if pd.isna(row.Name) else str(row.Name).strip()
        name = name or f"{label} {k+1}"
        weight = coerce_float(row.Weight, 0.0)
        if weight <= 0:
            raise ValueError(f"{label}: {name} needs a positive weight.")
        roster.append(Competitor(
            name=name,
            weight=weight,
            condition=coerce_float(row.Condition, 5.0),
            technique=coerce_float(row.Technique, 5.0),
        ))
    return roster


def order_label(roster: Sequence[Competitor], order: Sequence[int]) -> str:
    return " → ".join(roster[i].name for i in order)


def top_table(roster: Sequence[Competitor], rows: Sequence[OrderResult]) -> pd.DataFrame:
    return pd.DataFrame([
        {"Rank": k + 1, "Order": order_label(roster, r.order), "EV net wins": r.ev}
        for k, r in enumerate(rows)
    ])


def matrix_table(our: Sequence[Competitor], opp: Sequence[Competitor], params: ModelParameters) -> pd.DataFrame:
    rows = [
        [f"W {o.p_win*100:.0f}% / D {o.p_draw*100:.0f}% / L {o.p_lose*100:.0f}%" for o in row]
        for row in probability_matrix(our, opp, params)
    ]
    return pd.DataFrame(rows, index=roster_labels(our), columns=roster_labels(opp))


@st.cache_data(show_spinner="Searching lineups...")
def run_search(
    our: Tuple[Competitor, ...],
    opp: Tuple[Competitor, ...],
    params: ModelParameters,
    mode: str,
) -> Tuple[SearchResult, Optional[OrderResult], List[OrderResult]]:
    solver = QuintetSolver(our, opp, params, mode)
    result = solver.search()
    response = solver.best_response(result.best.order) if result.best is not None else None
    return result, response, solver.best_orders_by_first()


# =========================
# UI
# =========================

st.set_page_config(page_title="Quintet Lineup Optimizer", layout="wide")
st.title("Quintet lineup optimizer (winner-stays)")
st.caption(
    "Three-delta model with multipliers (importance) and exponents (nonlinearity). "
    f"Draw uses a PD(0) baseline, never drops below {DRAW_FLOOR}, and decays with |S|."
)

with st.sidebar:
    st.header("Model parameters")

    w_gamma = st.number_input("Weight exponent (γw)", min_value=0.5, max_value=MAX_GAMMA, value=0.5, step=0.1, help="Nonlinearity for weight delta")
    w_alpha = st.number_input("Weight multiplier (αw)", min_value=0.0, value=1.0, step=0.1, help="Importance of weight")
    c_gamma = st.number_input("Condition exponent (γc)", min_value=0.5, max_value=MAX_GAMMA, value=0.5, step=0.1, help="Nonlinearity for condition delta")
    c_alpha = st.number_input("Condition multiplier (αc)", min_value=0.0, value=1.0, step=0.1, help="Importance of condition")
    t_gamma = st.number_input("Technique exponent (γt)", min_value=0.5, max_value=MAX_GAMMA, value=0.5, step=0.1, help="Nonlinearity for technique delta")
    t_alpha = st.number_input("Technique multiplier (αt)", min_value=0.0, value=1.0, step=0.1, help="Importance of technique")

    draw_base = st.number_input(
        "Draw PD(0) baseline", min_value=DRAW_FLOOR, max_value=DRAW_BASE_MAX, value=0.50, step=0.01,
        help=f"Draw at equal matchups. Floor is {DRAW_FLOOR}.",
    )
    split_k = st.number_input("Split softness (k)", min_value=0.1, value=2.0, step=0.1, help="Higher = slower shift from 50/50 of non-draw mass")
    streak_penalty = st.number_input(
        "Streak penalty / extra fight", min_value=0.0, max_value=0.2, value=0.1, step=0.01,
        help="Reduces effective condition for consecutive bouts",
    )

    st.header("Opponent-order assumption")
    mode = st.selectbox("Mode", list(MODES), format_func=lambda m: MODE_LABELS[m])

params = ModelParameters(
    weight_gamma=float(w_gamma),
    weight_alpha=float(w_alpha),
    condition_gamma=float(c_gamma),
    condition_alpha=float(c_alpha),
    technique_gamma=float(t_gamma),
    technique_alpha=float(t_alpha),
    draw_base=float(draw_base),
    split_k=float(split_k),
    streak_penalty=float(streak_penalty),
)

st.subheader("Rosters")
cc1, cc2 = st.columns(2)
with cc1:
    st.markdown("**Our team** (listed order is only the roster, not the lineup)")
    our_df = st.data_editor(default_our_team(), num_rows="dynamic", key="our_team")
with cc2:
    st.markdown("**Opponent team** (listed order is their assumed lineup in exploit mode)")
    opp_df = st.data_editor(default_opp_team(), num_rows="dynamic", key="opp_team")

try:
    our = validate_df(our_df, "Our team")
    opp = validate_df(opp_df, "Opponent")
except ValueError as e:
    st.error(f"Input error: {e}")
    st.stop()

c1, c2 = st.columns(2)
c1.write(f"Our total weight: **{roster_weight(our):.1f} kg**")
c2.write(f"Opponent total weight: **{roster_weight(opp):.1f} kg**")

if our and opp:
    preview = evaluate_outcome(our[0], opp[0], params, 1, 1)
    dw, dc, dt = preview.deltas
    st.markdown(f"**Probability model preview** ({our[0].name} vs {opp[0].name})")
    st.write(
        f"Score S: {preview.score:.3f} | Δw: {dw:.1f} kg, Δc: {dc:.2f}, Δt: {dt:.2f}  —  "
        f"W {preview.p_win*100:.1f}% | D {preview.p_draw*100:.1f}% | L {preview.p_lose*100:.1f}%"
    )

st.divider()

try:
    result, response, by_first = run_search(tuple(our), tuple(opp), params, mode)
except ValueError as e:
    st.error(f"Input error: {e}")
    st.stop()

st.subheader("Recommended order")
if result.best is None:
    st.info("No result.")
else:
    st.markdown(f"**Our optimal order ({mode})** — EV net wins: {result.best.ev:.3f}")
    st.write(order_label(our, result.best.order))
    if response is not None:
        st.markdown(f"**Assuming opponent best response** — our EV vs that: {response.ev:.3f}")
        st.write(order_label(opp, response.order))

    st.subheader("Top 5 orders (by EV)")
    st.dataframe(top_table(our, result.top), use_container_width=True, hide_index=True)

    st.subheader("Best orders with each competitor first")
    st.dataframe(
        pd.DataFrame([
            {"First": our[r.order[0]].name, "Order": order_label(our, r.order), "EV net wins": r.ev}
            for r in by_first
        ]),
        use_container_width=True,
        hide_index=True,
    )

with st.expander("Diagnostics & tests", expanded=False):
    st.dataframe(pd.DataFrame(run_diagnostics(params)), use_container_width=True, hide_index=True)

st.subheader("Matchup probabilities (fresh)")
st.dataframe(matrix_table(our, opp, params), use_container_width=True)

st.caption(
    "S = αw·sign(Δw)|Δw|^γw + αc·sign(Δc)|Δc|^γc + αt·sign(Δt)|Δt|^γt; positive S favors us. "
    "PD = max(0.2, PD(0) − 0.5·tanh(|S|)); remaining mass splits by h = 0.5·|S|/(|S|+k). "
    "Fatigue only reduces condition via a linear penalty per consecutive bout."
)
