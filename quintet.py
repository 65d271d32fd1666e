# quintet.py
from __future__ import annotations

import math
import itertools
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple


log = logging.getLogger("quintet")


# =========================
# Config
# =========================

DRAW_FLOOR: float = 0.2
DRAW_BASE_MAX: float = 0.95
FATIGUE_FLOOR: float = 0.7
DEFAULT_MIDPOINT: float = 5.0  # condition / technique when not supplied
MAX_ROSTER_SIZE: int = 7       # N! * M! enumeration beyond this is not tractable
TOP_K: int = 5
MODES: Tuple[str, str] = ("exploit", "robust")
MAX_GAMMA: float = 5.0       # upper bound offered by the UI; larger values saturate


# =========================
# Data
# =========================

@dataclass(frozen=True)
class Competitor:
    name: str
    weight: float                       # kg
    condition: float = DEFAULT_MIDPOINT  # 1..10
    technique: float = DEFAULT_MIDPOINT  # 1..10


@dataclass(frozen=True)
class ModelParameters:
    weight_gamma: float = 0.5
    weight_alpha: float = 1.0
    condition_gamma: float = 0.5
    condition_alpha: float = 1.0
    technique_gamma: float = 0.5
    technique_alpha: float = 1.0
    draw_base: float = 0.50      # PD at zero advantage
    split_k: float = 2.0         # softness of the win/lose split
    streak_penalty: float = 0.10  # per extra consecutive bout


class Outcome(NamedTuple):
    p_win: float
    p_draw: float
    p_lose: float
    score: float                          # advantage S, positive favors the first competitor
    deltas: Tuple[float, float, float]    # (dw, dc, dt)


class OrderResult(NamedTuple):
    order: Tuple[int, ...]
    ev: float


class SearchResult(NamedTuple):
    best: Optional[OrderResult]
    top: List[OrderResult]


OutcomeFn = Callable[[Competitor, Competitor, ModelParameters, int, int], Outcome]


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def roster_weight(roster: Sequence[Competitor]) -> float:
    return float(sum(c.weight for c in roster))


def roster_labels(roster: Sequence[Competitor]) -> List[str]:
    # positional, so repeated names stay distinct
    return [f"{i+1}. {c.name}" for i, c in enumerate(roster)]


# =========================
# Fatigue
# =========================
# streak = 1 -> 1.0, 2 -> 1 - p, 3 -> 1 - 2p, clipped to [0.7, 1].

def fatigue(streak: int, penalty: float) -> float:
    extra = max(0, streak - 1)
    return clamp(1.0 - penalty * extra, FATIGUE_FLOOR, 1.0)


# =========================
# Outcome model
# =========================
# S  = aw*sign(dw)|dw|^gw + ac*sign(dc)|dc|^gc + at*sign(dt)|dt|^gt
# PD = max(0.2, PD0 - 0.5*tanh(|S|)),  PD0 clamped to [0.2, 0.95]
# h  = 0.5*|S|/(|S|+k); the stronger side takes (0.5+h) of the non-draw mass.

def signed_power(delta: float, gamma: float, alpha: float) -> float:
    if not alpha or not delta:
        return 0.0
    try:
        mag = float(abs(delta) ** gamma)
    except OverflowError:
        mag = math.inf
    return alpha * math.copysign(mag, delta)


def evaluate_outcome(
    a: Competitor,
    b: Competitor,
    params: ModelParameters,
    streak_a: int = 1,
    streak_b: int = 1,
) -> Outcome:
    # fatigue touches condition only
    cond_a = a.condition * fatigue(streak_a, params.streak_penalty)
    cond_b = b.condition * fatigue(streak_b, params.streak_penalty)

    dw = a.weight - b.weight
    dc = cond_a - cond_b
    dt = a.technique - b.technique

    s = (
        signed_power(dw, params.weight_gamma, params.weight_alpha)
        + signed_power(dc, params.condition_gamma, params.condition_alpha)
        + signed_power(dt, params.technique_gamma, params.technique_alpha)
    )
    if math.isnan(s):
        # saturated advantages in opposite directions cancel
        s = 0.0
    mag = abs(s)

    pd0 = clamp(params.draw_base, DRAW_FLOOR, DRAW_BASE_MAX)
    p_draw = max(DRAW_FLOOR, pd0 - 0.5 * math.tanh(mag))
    rest = 1.0 - p_draw

    if math.isinf(mag):
        h = 0.5
    else:
        h = 0.5 * mag / (mag + params.split_k) if mag > 0 else 0.0
    p_win = rest * (0.5 + h) if s >= 0 else rest * (0.5 - h)
    p_lose = rest - p_win

    p_win = clamp(p_win)
    p_draw = clamp(p_draw)
    p_lose = clamp(p_lose)
    total = p_win + p_draw + p_lose
    return Outcome(p_win / total, p_draw / total, p_lose / total, s, (dw, dc, dt))


def probability_matrix(
    our: Sequence[Competitor],
    opp: Sequence[Competitor],
    params: ModelParameters,
) -> List[List[Outcome]]:
    """Fresh (streak 1 vs 1) outcome for every pairing, rows = our roster."""
    return [[evaluate_outcome(a, b, params, 1, 1) for b in opp] for a in our]


# =========================
# Match evaluator (DP over winner-stays states)
# =========================
# V(i, j, si, sj) = pW*(1 + V(i, j+1, si+1, 1))
#                 + pL*(-1 + V(i+1, j, 1, sj+1))
#                 + pD*(V(i+1, j+1, 1, 1))
# terminal (value 0) once either side has no untested competitor left.

def expected_net_wins(
    our: Sequence[Competitor],
    opp: Sequence[Competitor],
    params: ModelParameters,
    outcome: OutcomeFn = evaluate_outcome,
) -> float:
    n = len(our)
    m = len(opp)

    @lru_cache(None)
    def value(i: int, j: int, si: int, sj: int) -> float:
        if i >= n or j >= m:
            return 0.0
        o = outcome(our[i], opp[j], params, si, sj)
        return (
            o.p_win * (1.0 + value(i, j + 1, si + 1, 1))
            + o.p_lose * (-1.0 + value(i + 1, j, 1, sj + 1))
            + o.p_draw * value(i + 1, j + 1, 1, 1)
        )

    return value(0, 0, 1, 1)


# =========================
# Permutations
# =========================

def iter_orders(n: int, first: Optional[int] = None) -> Iterator[Tuple[int, ...]]:
    """
    Lazily yield orderings of range(n) in lexicographic order.
    With `first`, that index is pinned at position 0 and only the rest permute.
    An empty roster yields nothing.
    """
    if n <= 0:
        return
    if first is None:
        yield from itertools.permutations(range(n))
        return
    if not 0 <= first < n:
        raise ValueError(f"Pinned index {first} out of range for roster of {n}.")
    rest = [i for i in range(n) if i != first]
    for perm in itertools.permutations(rest):
        yield (first,) + perm


def at(roster: Sequence[Competitor], order: Sequence[int]) -> List[Competitor]:
    return [roster[i] for i in order]


# =========================
# Validation
# =========================

def check_mode(mode: str) -> None:
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got {mode!r}")


def check_order(order: Sequence[int], n: int, label: str) -> None:
    if sorted(order) != list(range(n)):
        raise ValueError(f"{label} order must be a permutation of range({n}), got {tuple(order)}.")


def check_roster(roster: Sequence[Competitor], label: str) -> None:
    if len(roster) > MAX_ROSTER_SIZE:
        log.warning("%s roster has %d competitors (max %d)", label, len(roster), MAX_ROSTER_SIZE)
        raise ValueError(
            f"{label} roster has {len(roster)} competitors; exhaustive search supports at most {MAX_ROSTER_SIZE}."
        )


def cached_outcome() -> OutcomeFn:
    # one table per search call; competitors and params are hashable
    return lru_cache(None)(evaluate_outcome)


# =========================
# Opponent best response
# =========================

def _best_response(
    our_ordering: Sequence[Competitor],
    opp: Sequence[Competitor],
    params: ModelParameters,
    outcome: OutcomeFn,
) -> Optional[OrderResult]:
    worst: Optional[OrderResult] = None
    for q in iter_orders(len(opp)):
        ev = expected_net_wins(our_ordering, at(opp, q), params, outcome)
        if worst is None or ev < worst.ev:
            worst = OrderResult(q, ev)
    return worst


def best_opponent_response(
    our_ordering: Sequence[Competitor],
    opp_roster: Sequence[Competitor],
    params: ModelParameters,
) -> Optional[OrderResult]:
    """Opponent ordering that minimizes our EV for a fixed ordering of ours."""
    check_roster(opp_roster, "Opponent")
    return _best_response(our_ordering, opp_roster, params, cached_outcome())


# =========================
# Our order search
# =========================

def _scorer(
    mode: str,
    opp: Sequence[Competitor],
    params: ModelParameters,
) -> Callable[[List[Competitor]], float]:
    outcome = cached_outcome()

    if mode == "exploit":
        def score(ours: List[Competitor]) -> float:
            return expected_net_wins(ours, opp, params, outcome)
        return score

    # robust: worst case over every opponent ordering
    def score_robust(ours: List[Competitor]) -> float:
        worst = _best_response(ours, opp, params, outcome)
        return worst.ev if worst is not None else 0.0
    return score_robust


def _check_inputs(mode: str, our: Sequence[Competitor], opp: Sequence[Competitor]) -> None:
    check_mode(mode)
    check_roster(our, "Our")
    check_roster(opp, "Opponent")


def search_our_order(
    mode: str,
    our: Sequence[Competitor],
    opp: Sequence[Competitor],
    params: ModelParameters,
    top_k: Optional[int] = TOP_K,
) -> SearchResult:
    """
    Score every ordering of our roster.

    exploit: EV against `opp` taken as the fixed opponent ordering.
    robust:  EV against the opponent's best response among all orderings of `opp`.

    `best` is the first maximal ordering in enumeration order; `top` is sorted by
    EV descending (stable), truncated to `top_k` unless it is None.
    """
    _check_inputs(mode, our, opp)
    if top_k is not None and top_k < 0:
        raise ValueError(f"top_k must be non-negative or None, got {top_k}")
    score = _scorer(mode, opp, params)

    best: Optional[OrderResult] = None
    scored: List[OrderResult] = []
    for perm in iter_orders(len(our)):
        ev = score(at(our, perm))
        scored.append(OrderResult(perm, ev))
        if best is None or ev > best.ev:
            best = OrderResult(perm, ev)

    top = sorted(scored, key=lambda r: r.ev, reverse=True)
    if top_k is not None:
        top = top[:top_k]

    log.debug(
        "%s search: %d orderings scored, best ev=%s",
        mode, len(scored), None if best is None else f"{best.ev:.4f}",
    )
    return SearchResult(best, top)


def search_our_order_with_first(
    mode: str,
    our: Sequence[Competitor],
    opp: Sequence[Competitor],
    params: ModelParameters,
    first_idx: int,
) -> Optional[OrderResult]:
    """Best ordering of ours with competitor `first_idx` pinned to lead."""
    _check_inputs(mode, our, opp)
    if not our:
        return None
    score = _scorer(mode, opp, params)

    best: Optional[OrderResult] = None
    count = 0
    for perm in iter_orders(len(our), first=first_idx):
        ev = score(at(our, perm))
        count += 1
        if best is None or ev > best.ev:
            best = OrderResult(perm, ev)

    log.debug("%s search with %d first: %d orderings scored", mode, first_idx, count)
    return best


def best_orders_by_first(
    mode: str,
    our: Sequence[Competitor],
    opp: Sequence[Competitor],
    params: ModelParameters,
) -> List[OrderResult]:
    out: List[OrderResult] = []
    for i in range(len(our)):
        res = search_our_order_with_first(mode, our, opp, params, i)
        if res is not None:
            out.append(res)
    return out


# =========================
# Diagnostics
# =========================

def run_diagnostics(params: ModelParameters) -> List[Dict[str, Any]]:
    """Model self-checks under `params`, as display rows."""
    rows: List[Dict[str, Any]] = []

    def add(check: str, passed: bool, info: str) -> None:
        rows.append({"Check": check, "Passed": bool(passed), "Info": info})

    same = Competitor("X", 100.0, 8.0, 7.0)
    o = evaluate_outcome(same, same, params)
    total = o.p_win + o.p_draw + o.p_lose
    add("Probabilities sum to 1", abs(total - 1.0) < 1e-9, f"sum={total:.6f}")

    even = Competitor("X", 90.0, 5.0, 5.0)
    o = evaluate_outcome(even, even, params)
    pd0 = clamp(params.draw_base, DRAW_FLOOR, DRAW_BASE_MAX)
    target = (1.0 - pd0) / 2.0
    add(
        "Zero deltas baseline",
        abs(o.p_draw - pd0) < 1e-6 and abs(o.p_win - target) < 1e-3,
        f"W={o.p_win * 100:.1f} D={o.p_draw * 100:.1f} L={o.p_lose * 100:.1f} (PD0={pd0 * 100:.1f})",
    )

    o = evaluate_outcome(Competitor("A", 140.0, 10.0, 10.0), Competitor("B", 60.0, 1.0, 1.0), params)
    add("Draw floor 0.2", o.p_draw >= DRAW_FLOOR - 1e-9, f"pD={o.p_draw:.3f}")

    base = Competitor("X", 90.0, 8.0, 7.0)
    p0 = evaluate_outcome(base, base, params).p_win
    for label, bumped in (
        ("Heavier raises P(win)", Competitor("X", 100.0, 8.0, 7.0)),
        ("Condition raises P(win)", Competitor("X", 90.0, 10.0, 7.0)),
        ("Technique raises P(win)", Competitor("X", 90.0, 8.0, 10.0)),
    ):
        p1 = evaluate_outcome(bumped, base, params).p_win
        add(label, p1 > p0, f"p0={p0:.3f} -> p1={p1:.3f}")

    fresh = evaluate_outcome(base, base, params, 1, 1)
    tired = evaluate_outcome(base, base, params, 3, 1)
    fresh_share = fresh.p_win / (1.0 - fresh.p_draw)
    tired_share = tired.p_win / (1.0 - tired.p_draw)
    add(
        "Fatigue reduces P(win | not draw)",
        tired_share < fresh_share - 1e-9,
        f"fresh share={fresh_share:.3f} tired share={tired_share:.3f}",
    )

    a = [Competitor("A", 95.0, 7.0, 7.0)]
    b = [Competitor("B", 85.0, 7.0, 7.0)]
    ev_ab = expected_net_wins(a, b, params)
    ev_ba = expected_net_wins(b, a, params)
    add("EV antisymmetry (1v1)", abs(ev_ab + ev_ba) < 1e-9, f"evAB={ev_ab:.6f} evBA={ev_ba:.6f}")

    return rows


# =========================
# Solver
# =========================

class QuintetSolver:
    """
    Lineup optimizer for a winner-stays team match.

    - A bout is win / draw / lose from the power-law + tanh-draw outcome model.
    - Winner stays on with its streak increased; fatigue erodes its condition.
    - Draw retires both competitors; the match ends when either side runs out.
    - exploit: best order against the opponent roster in its given order.
    - robust:  best worst-case order against every opponent ordering.
    """

    def __init__(
        self,
        our: Sequence[Competitor],
        opp: Sequence[Competitor],
        params: Optional[ModelParameters] = None,
        mode: str = "exploit",
    ):
        _check_inputs(mode, our, opp)
        self.our = list(our)
        self.opp = list(opp)
        self.params = params if params is not None else ModelParameters()
        self.mode = mode

    def search(self, top_k: Optional[int] = TOP_K) -> SearchResult:
        return search_our_order(self.mode, self.our, self.opp, self.params, top_k=top_k)

    def search_with_first(self, first_idx: int) -> Optional[OrderResult]:
        return search_our_order_with_first(self.mode, self.our, self.opp, self.params, first_idx)

    def best_orders_by_first(self) -> List[OrderResult]:
        return best_orders_by_first(self.mode, self.our, self.opp, self.params)

    def best_response(self, order: Sequence[int]) -> Optional[OrderResult]:
        check_order(order, len(self.our), "Our")
        return best_opponent_response(at(self.our, order), self.opp, self.params)

    def expected_net_wins(self, order: Sequence[int], opp_order: Optional[Sequence[int]] = None) -> float:
        check_order(order, len(self.our), "Our")
        if opp_order is not None:
            check_order(opp_order, len(self.opp), "Opponent")
        opp = self.opp if opp_order is None else at(self.opp, opp_order)
        return expected_net_wins(at(self.our, order), opp, self.params)

    def probability_matrix(self) -> List[List[Outcome]]:
        return probability_matrix(self.our, self.opp, self.params)
