"""Outcome model, fatigue, match evaluator and permutation utility."""

from __future__ import annotations

import itertools
from dataclasses import replace

import pytest

from quintet import (
    Competitor,
    ModelParameters,
    evaluate_outcome,
    expected_net_wins,
    fatigue,
    iter_orders,
    probability_matrix,
    roster_labels,
    roster_weight,
    run_diagnostics,
)

PARAMS = ModelParameters()

PARAM_GRID = [
    ModelParameters(),
    ModelParameters(weight_gamma=1.0, condition_gamma=1.5, technique_gamma=0.7, split_k=0.5),
    ModelParameters(weight_alpha=0.2, condition_alpha=3.0, technique_alpha=0.5, draw_base=0.9),
    ModelParameters(draw_base=0.2, split_k=10.0, streak_penalty=0.2),
]

PAIRS = [
    (Competitor("a", 90, 8, 7), Competitor("b", 90, 8, 7)),
    (Competitor("a", 140, 10, 10), Competitor("b", 60, 1, 1)),
    (Competitor("a", 60, 1, 1), Competitor("b", 140, 10, 10)),
    (Competitor("a", 85, 3, 9), Competitor("b", 88.5, 9, 2)),
]


def _same(name: str) -> Competitor:
    return Competitor(name, 90, 8, 7)


# =========================
# Fatigue
# =========================

def test_fatigue_fresh_is_one():
    assert fatigue(1, 0.1) == 1.0
    assert fatigue(1, 0.0) == 1.0


def test_fatigue_linear_then_floored():
    assert fatigue(2, 0.1) == pytest.approx(0.9)
    assert fatigue(3, 0.1) == pytest.approx(0.8)
    assert fatigue(10, 0.1) == 0.7
    assert fatigue(50, 0.2) == 0.7


def test_fatigue_zero_penalty_never_tires():
    assert fatigue(6, 0.0) == 1.0


# =========================
# Outcome model
# =========================

@pytest.mark.parametrize("params", PARAM_GRID)
@pytest.mark.parametrize("a,b", PAIRS)
@pytest.mark.parametrize("streaks", [(1, 1), (3, 1), (1, 4), (6, 6)])
def test_probabilities_form_a_distribution(params, a, b, streaks):
    o = evaluate_outcome(a, b, params, *streaks)
    assert o.p_win + o.p_draw + o.p_lose == pytest.approx(1.0, abs=1e-9)
    for p in (o.p_win, o.p_draw, o.p_lose):
        assert 0.0 <= p <= 1.0
    assert o.p_draw >= 0.2 - 1e-12


@pytest.mark.parametrize("draw_base,expected", [(0.5, 0.5), (0.3, 0.3), (0.99, 0.95), (0.05, 0.2)])
def test_zero_delta_baseline(draw_base, expected):
    params = ModelParameters(draw_base=draw_base)
    o = evaluate_outcome(_same("a"), _same("b"), params, 1, 1)
    assert o.p_draw == pytest.approx(expected)
    assert o.p_win == pytest.approx((1 - expected) / 2)
    assert o.p_lose == pytest.approx((1 - expected) / 2)
    assert o.score == 0.0


def test_known_values_small_advantage():
    # dw = 0.25 -> S = 0.5, PD = 0.5 - 0.5*tanh(0.5), h = 0.1
    a = Competitor("a", 90.25, 8, 7)
    b = Competitor("b", 90, 8, 7)
    o = evaluate_outcome(a, b, PARAMS)
    assert o.score == pytest.approx(0.5)
    assert o.p_draw == pytest.approx(0.26894142, abs=1e-8)
    assert o.p_win == pytest.approx(0.43863515, abs=1e-8)
    assert o.p_lose == pytest.approx(0.29242343, abs=1e-8)
    assert o.deltas == pytest.approx((0.25, 0.0, 0.0))


def test_known_values_draw_floor_reached():
    # dw = 4 -> S = 2, PD floored at 0.2, h = 0.25
    o = evaluate_outcome(Competitor("a", 94, 8, 7), Competitor("b", 90, 8, 7), PARAMS)
    assert o.p_draw == pytest.approx(0.2)
    assert o.p_win == pytest.approx(0.6)
    assert o.p_lose == pytest.approx(0.2)


def test_negative_score_mirrors():
    a = Competitor("a", 94, 8, 7)
    b = Competitor("b", 90, 8, 7)
    ab = evaluate_outcome(a, b, PARAMS)
    ba = evaluate_outcome(b, a, PARAMS)
    assert ba.score == pytest.approx(-ab.score)
    assert ba.p_win == pytest.approx(ab.p_lose)
    assert ba.p_lose == pytest.approx(ab.p_win)
    assert ba.p_draw == pytest.approx(ab.p_draw)


def test_zero_multiplier_neutralizes_factor():
    params = ModelParameters(weight_alpha=0.0)
    o = evaluate_outcome(Competitor("a", 150, 8, 7), Competitor("b", 60, 8, 7), params)
    assert o.score == 0.0
    assert o.p_draw == pytest.approx(0.5)


def test_missing_condition_and_technique_default_to_midpoint():
    a = Competitor("a", 90)
    assert (a.condition, a.technique) == (5.0, 5.0)
    o = evaluate_outcome(a, Competitor("b", 90, 5, 5), PARAMS)
    assert o.score == 0.0


@pytest.mark.parametrize("params", PARAM_GRID)
@pytest.mark.parametrize("field,value", [("weight", 100), ("condition", 10), ("technique", 10)])
def test_each_factor_raises_win_probability(params, field, value):
    base = Competitor("x", 90, 8, 7)
    bumped = replace(base, **{field: value})
    p0 = evaluate_outcome(base, base, params).p_win
    p1 = evaluate_outcome(bumped, base, params).p_win
    assert p1 > p0


@pytest.mark.parametrize("params", PARAM_GRID)
def test_streak_lowers_win_share(params):
    a = Competitor("a", 90, 8, 7)
    b = Competitor("b", 90, 8, 7)
    fresh = evaluate_outcome(a, b, params, 1, 1)
    tired = evaluate_outcome(a, b, params, 3, 1)
    assert tired.p_win / (1 - tired.p_draw) < fresh.p_win / (1 - fresh.p_draw)


def test_fatigue_only_touches_condition():
    a = Competitor("a", 95, 8, 9)
    b = Competitor("b", 90, 8, 7)
    o = evaluate_outcome(a, b, PARAMS, 3, 1)
    dw, dc, dt = o.deltas
    assert dw == pytest.approx(5)
    assert dc == pytest.approx(8 * 0.8 - 8)
    assert dt == pytest.approx(2)


def test_probability_matrix_shape_and_fresh():
    our = [Competitor("a", 70), Competitor("b", 90)]
    opp = [Competitor("x", 80), Competitor("y", 80), Competitor("z", 100)]
    grid = probability_matrix(our, opp, PARAMS)
    assert len(grid) == 2 and all(len(row) == 3 for row in grid)
    assert grid[1][2] == evaluate_outcome(our[1], opp[2], PARAMS, 1, 1)


def test_roster_weight():
    assert roster_weight([Competitor("a", 62), Competitor("b", 67.5)]) == pytest.approx(129.5)
    assert roster_weight([]) == 0.0


def test_roster_labels_distinct_for_repeated_names():
    roster = [Competitor("Opp", 85), Competitor("Opp", 85), Competitor("Kim", 70)]
    labels = roster_labels(roster)
    assert labels == ["1. Opp", "2. Opp", "3. Kim"]
    assert len(set(labels)) == len(roster)


def test_huge_exponent_saturates_instead_of_overflowing():
    params = ModelParameters(weight_gamma=170.0)
    o = evaluate_outcome(Competitor("a", 150), Competitor("b", 60), params)
    assert o.score == float("inf")
    assert o.p_draw == pytest.approx(0.2)
    assert o.p_win == pytest.approx(0.8)
    assert o.p_lose == 0.0
    assert expected_net_wins([Competitor("a", 150)], [Competitor("b", 60)], params) == pytest.approx(0.8)


def test_opposing_saturated_factors_cancel():
    params = ModelParameters(weight_gamma=170.0, technique_gamma=400.0)
    o = evaluate_outcome(Competitor("a", 150, 5, 1), Competitor("b", 60, 5, 10), params)
    assert o.score == 0.0
    assert o.p_draw == pytest.approx(0.5)
    assert o.p_win == pytest.approx(0.25)
    assert o.p_lose == pytest.approx(0.25)


# =========================
# Match evaluator
# =========================

def test_single_bout_ev_is_win_minus_loss():
    a = Competitor("a", 94, 8, 7)
    b = Competitor("b", 90, 8, 7)
    assert expected_net_wins([a], [b], PARAMS) == pytest.approx(0.4)


@pytest.mark.parametrize("params", PARAM_GRID)
def test_antisymmetry_one_on_one(params):
    a = [Competitor("A", 95, 7, 7)]
    b = [Competitor("B", 85, 7, 7)]
    assert expected_net_wins(a, b, params) == pytest.approx(-expected_net_wins(b, a, params), abs=1e-9)


def test_empty_side_is_terminal():
    assert expected_net_wins([], [_same("b")], PARAMS) == 0.0
    assert expected_net_wins([_same("a")], [], PARAMS) == 0.0


def test_recurrence_two_vs_one():
    a, b, c = _same("a"), Competitor("b", 88, 9, 6), _same("c")
    first = evaluate_outcome(a, c, PARAMS, 1, 1)
    # c beat a and stays on with streak 2 against b
    second = evaluate_outcome(b, c, PARAMS, 1, 2)
    expected = first.p_win - first.p_lose * (1 - (second.p_win - second.p_lose))
    assert expected_net_wins([a, b], [c], PARAMS) == pytest.approx(expected)


def test_recurrence_winner_stays_with_streak():
    a, x, y = Competitor("a", 100, 8, 7), _same("x"), _same("y")
    first = evaluate_outcome(a, x, PARAMS, 1, 1)
    second = evaluate_outcome(a, y, PARAMS, 2, 1)
    expected = first.p_win * (1 + second.p_win - second.p_lose) - first.p_lose
    assert expected_net_wins([a], [x, y], PARAMS) == pytest.approx(expected)


def test_identical_rosters_are_even():
    ours = [_same(f"A{i}") for i in range(5)]
    theirs = [_same(f"B{i}") for i in range(5)]
    assert expected_net_wins(ours, theirs, PARAMS) == pytest.approx(0.0, abs=1e-9)


def test_uses_supplied_outcome_function():
    calls = []

    def always_win(a, b, params, si, sj):
        calls.append((a.name, b.name, si, sj))
        return evaluate_outcome(Competitor("w", 1000), Competitor("l", 1), params)

    ev = expected_net_wins([_same("a")], [_same("x"), _same("y")], PARAMS, always_win)
    assert ev > 1.0
    assert ("a", "y", 2, 1) in calls


def test_net_wins_bounded_by_roster_size():
    ours = [Competitor(f"a{i}", 120, 10, 10) for i in range(3)]
    theirs = [Competitor(f"b{i}", 60, 2, 2) for i in range(4)]
    ev = expected_net_wins(ours, theirs, PARAMS)
    assert 0 < ev <= 4


# =========================
# Permutations
# =========================

def test_iter_orders_enumerates_all():
    orders = list(iter_orders(5))
    assert len(orders) == 120
    assert len(set(orders)) == 120
    assert orders[0] == (0, 1, 2, 3, 4)


def test_iter_orders_is_restartable():
    assert list(iter_orders(3)) == list(iter_orders(3)) == list(itertools.permutations(range(3)))


def test_iter_orders_pinned_first():
    orders = list(iter_orders(5, first=2))
    assert len(orders) == 24
    assert all(o[0] == 2 and sorted(o) == [0, 1, 2, 3, 4] for o in orders)


def test_iter_orders_empty():
    assert list(iter_orders(0)) == []


def test_iter_orders_pinned_out_of_range():
    with pytest.raises(ValueError):
        list(iter_orders(3, first=3))


# =========================
# Diagnostics
# =========================

@pytest.mark.parametrize("params", PARAM_GRID)
def test_diagnostics_pass(params):
    rows = run_diagnostics(params)
    assert len(rows) == 8
    failed = [r for r in rows if not r["Passed"]]
    assert failed == []


def test_diagnostics_flag_neutralized_factor():
    rows = {r["Check"]: r for r in run_diagnostics(ModelParameters(technique_alpha=0.0))}
    assert rows["Technique raises P(win)"]["Passed"] is False
    assert rows["Heavier raises P(win)"]["Passed"] is True
