"""
Composite Scoring for Pick 3 Candidates

Scores a candidate combination on five independent factors, each in [0, 1]:
- type:           Beta-Bernoulli posterior that the candidate's symbol-class
                  patterns (parity, high/low, single/double/triple) match the
                  recent draws, relative to the best pattern of each class
- skip_pressure:  how overdue the candidate's digits, straight and box are
- column_routing: agreement of each position's value with the transition
                  model's distribution for that position
- pair_coverage:  smoothed historical lift of the front/split/back pairs,
                  boosted by pair lateness
- sum_proximity:  closeness of the digit sum to the most probable sum band

Composite = sum(w_i * s_i) / sum(w_i), rescaled to 0-100.

Ranking is a total order: composite descending, then skip pressure
descending, then the digit sequence ascending.
"""
import json
import math
import os
from collections import namedtuple
from datetime import datetime

import numpy as np

from pick3.draws import DATA_DIR
from pick3.errors import StateIntegrityError, ValidationError
from pick3.features import (
    FeatureKey,
    FeatureKind,
    class_value,
    constituent_keys,
    keys_of_kind,
    position_pairs,
)

FACTORS = ("type", "skip_pressure", "column_routing", "pair_coverage", "sum_proximity")

FACTOR_DESCRIPTIONS = {
    "type": "favours symbol-class patterns (parity, high/low, combo type) common in recent draws",
    "skip_pressure": "favours candidates whose digits and combinations are overdue",
    "column_routing": "favours values the per-position transition model expects",
    "pair_coverage": "favours front/split/back pairs that hit often, more so when late",
    "sum_proximity": "favours sums inside or near the most probable sum band",
}

DEFAULT_WEIGHTS = {
    "type": 0.15,
    "skip_pressure": 0.25,
    "column_routing": 0.25,
    "pair_coverage": 0.20,
    "sum_proximity": 0.15,
}

WEIGHTS_PATH = os.path.join(DATA_DIR, "scoring_weights.json")

SCORE_SCALE = 100.0
BETA_PRIOR = (1.0, 1.0)
OVERDUE_RATE = 0.3
SUM_BAND_WIDTH = 3
SUM_PRIOR_STRENGTH = 10.0
RANK_DECIMALS = 9


class ScoringWeights:
    """
    Validated, read-only factor weights.

    Names not given keep their DEFAULT_WEIGHTS value. Unknown names,
    negative or non-finite weights and an all-zero set are rejected.
    """

    __slots__ = ("_weights",)

    def __init__(self, weights=None, **overrides):
        merged = dict(DEFAULT_WEIGHTS)
        given = dict(weights or {})
        given.update(overrides)

        unknown = sorted(set(given) - set(FACTORS))
        if unknown:
            raise ValidationError(
                f"Unknown scoring factor(s) {unknown}; recognised: {list(FACTORS)}"
            )
        for name, value in given.items():
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"Weight for {name!r} is not a number: {value!r}")
            if not math.isfinite(value) or value < 0:
                raise ValidationError(f"Weight for {name!r} must be finite and >= 0, got {value}")
            merged[name] = value

        if sum(merged.values()) <= 0:
            raise ValidationError("At least one scoring weight must be positive")
        object.__setattr__(self, "_weights", tuple((f, merged[f]) for f in FACTORS))

    def __setattr__(self, name, value):
        raise AttributeError("ScoringWeights is immutable")

    def __reduce__(self):
        return (ScoringWeights, (self.as_dict(),))

    def __getitem__(self, name):
        return dict(self._weights)[name]

    def __iter__(self):
        return iter(FACTORS)

    def __eq__(self, other):
        return isinstance(other, ScoringWeights) and other._weights == self._weights

    def __hash__(self):
        return hash(self._weights)

    def __repr__(self):
        inner = ", ".join(f"{k}={v:g}" for k, v in self._weights)
        return f"ScoringWeights({inner})"

    @property
    def total(self):
        return sum(v for _, v in self._weights)

    def as_dict(self):
        return dict(self._weights)

    def normalized(self):
        total = self.total
        return {k: v / total for k, v in self._weights}

    @classmethod
    def from_file(cls, path=WEIGHTS_PATH):
        """Load weights saved by save(); defaults when the file does not exist."""
        if not os.path.exists(path):
            return cls()
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Malformed weights file {path}: {e}")
        if isinstance(data, dict) and isinstance(data.get("weights"), dict):
            data = data["weights"]
        if not isinstance(data, dict):
            raise ValidationError(f"Weights file {path} must hold a JSON object")
        return cls(data)

    def save(self, path=WEIGHTS_PATH):
        data = {
            "weights": self.as_dict(),
            "last_updated": datetime.now().strftime("%Y-%m-%d %H:%M"),
        }
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    def summary(self):
        lines = []
        for name, weight in sorted(self.normalized().items(), key=lambda x: -x[1]):
            bar = "#" * int(weight * 50)
            lines.append(f"    {name:<16} {weight:.3f} {bar:<50} {FACTOR_DESCRIPTIONS[name]}")
        return "\n".join(lines)


def as_weights(weights):
    if weights is None:
        return ScoringWeights()
    if isinstance(weights, ScoringWeights):
        return weights
    return ScoringWeights(weights)


class Candidate(namedtuple("Candidate", [
    "digits", "composite", "type_score", "skip_pressure", "column_routing",
    "pair_coverage", "sum_proximity",
])):
    """A scored combination. Never mutated once built."""

    __slots__ = ()

    @property
    def straight(self):
        return "".join(str(d) for d in self.digits)

    @property
    def box(self):
        return "".join(str(d) for d in sorted(self.digits))

    @property
    def subscores(self):
        return {
            "type": self.type_score,
            "skip_pressure": self.skip_pressure,
            "column_routing": self.column_routing,
            "pair_coverage": self.pair_coverage,
            "sum_proximity": self.sum_proximity,
        }


def rank_key(candidate):
    return (-candidate.composite, -candidate.skip_pressure, candidate.digits)


def rank_candidates(candidates, k=None):
    """Sort into the canonical total order; optionally keep the top k."""
    ranked = sorted(candidates, key=rank_key)
    return ranked if k is None else ranked[:k]


def _overdue_pressure(ratio):
    return 1.0 - math.exp(-OVERDUE_RATE * ratio)


class CompositeScorer:
    """
    Scores candidates against one pair of read-only state views.

    Statistics shared by every candidate (class posteriors, per-position
    distributions, the sum band) are prepared once in the constructor.
    """

    def __init__(self, skip_state, transition_state, weights=None,
                 sum_band_width=SUM_BAND_WIDTH, verbose=False):
        if skip_state.game != transition_state.game:
            raise ValidationError(
                f"Skip state is for {skip_state.game}, transition state for {transition_state.game}"
            )
        if skip_state.index != transition_state.index:
            raise StateIntegrityError(
                f"Skip state at index {skip_state.index} but transition state at "
                f"{transition_state.index}",
                index=skip_state.index,
            )
        if int(sum_band_width) < 1:
            raise ValidationError(f"sum_band_width must be >= 1, got {sum_band_width}")

        self.game = skip_state.game
        self.skip_state = skip_state
        self.transition_state = transition_state
        self.weights = as_weights(weights)
        self.sum_band_width = int(sum_band_width)
        self.verbose = verbose
        self._pressure_cache = {}

        self._type_tables = self._class_posteriors()
        self._routing = self._routing_tables()
        self.sum_band = self._most_probable_sum_band()

        if verbose:
            lo, hi = self.sum_band
            print(f"  [Scorer] State index: {skip_state.index} "
                  f"({skip_state.applied} draws, {len(skip_state.recent_draws)} recent)")
            print(f"  [Scorer] Most probable sum band: {lo}-{hi}")

    # ── Shared statistics ────────────────────────────────────────────────

    def _class_posteriors(self):
        """{kind: {pattern: posterior / best posterior}} over the recent window."""
        a, b = BETA_PRIOR
        n = len(self.skip_state.recent_draws)
        tables = {}
        for kind in FeatureKind.CLASS_KINDS:
            counts = self.skip_state.pattern_counts(kind)
            patterns = [k.value for k in keys_of_kind(self.game, kind)]
            post = {p: (counts.get(p, 0) + a) / (n + a + b) for p in patterns}
            best = max(post.values())
            tables[kind] = {p: v / best for p, v in post.items()}
        return tables

    def _routing_tables(self):
        dists = self.transition_state.predict_all()
        agreement = np.array([d.probabilities / d.probabilities.max() for d in dists])
        confidence = np.array([d.confidence for d in dists])
        return agreement, confidence / confidence.sum()

    def _most_probable_sum_band(self):
        width = self.sum_band_width
        max_sum = self.game.max_sum
        counts = self.skip_state.sum_counts()
        n = len(self.skip_state.recent_draws)

        best_band, best_p = None, -1.0
        for lo in range(0, max_sum + 1, width):
            hi = min(lo + width - 1, max_sum)
            theory = sum(self.game.probability(FeatureKey(FeatureKind.SUM, s))
                         for s in range(lo, hi + 1))
            hits = sum(counts.get(s, 0) for s in range(lo, hi + 1))
            p = (hits + SUM_PRIOR_STRENGTH * theory) / (n + SUM_PRIOR_STRENGTH)
            if p > best_p + 1e-15:
                best_band, best_p = (lo, hi), p
        return best_band

    def _pressure(self, key):
        if key not in self._pressure_cache:
            self._pressure_cache[key] = _overdue_pressure(self.skip_state.lateness_ratio(key))
        return self._pressure_cache[key]

    # ── Factors ──────────────────────────────────────────────────────────

    def type_score(self, digits):
        values = [self._type_tables[kind][class_value(kind, digits, self.game.alphabet)]
                  for kind in FeatureKind.CLASS_KINDS]
        return float(np.mean(values))

    def skip_pressure(self, digits):
        keys = constituent_keys(digits)
        return float(np.mean([self._pressure(k) for k in keys]))

    def column_routing(self, digits):
        agreement, conf = self._routing
        per_position = agreement[np.arange(self.game.length), list(digits)]
        return float(np.dot(conf, per_position))

    def pair_coverage(self, digits):
        n = self.skip_state.applied
        scores = []
        for pair in position_pairs(digits):
            key = FeatureKey(FeatureKind.POSITION_PAIR, pair)
            expected_hits = n * self.game.probability(key)
            lift = (self.skip_state.hit_count(key) + 1.0) / (expected_hits + 1.0)
            scores.append(lift / (1.0 + lift) * (0.5 + 0.5 * self._pressure(key)))
        return float(np.mean(scores))

    def sum_proximity(self, digits):
        lo, hi = self.sum_band
        s = sum(digits)
        if lo <= s <= hi:
            distance = 0
        else:
            distance = min(abs(s - lo), abs(s - hi))
        return 1.0 / (1.0 + distance)

    # ── Scoring ──────────────────────────────────────────────────────────

    def _validate(self, digits):
        digits = self.game.validate_digits(digits)
        keys = constituent_keys(digits)
        keys += [FeatureKey(FeatureKind.POSITION_PAIR, p) for p in position_pairs(digits)]
        keys += [FeatureKey(kind, class_value(kind, digits, self.game.alphabet))
                 for kind in FeatureKind.CLASS_KINDS]
        for key in keys:
            if not self.skip_state.is_known(key):
                raise ValidationError(f"Candidate {digits} references unknown feature {key}")
        return digits

    def score(self, digits):
        digits = self._validate(digits)
        sub = {
            "type": self.type_score(digits),
            "skip_pressure": self.skip_pressure(digits),
            "column_routing": self.column_routing(digits),
            "pair_coverage": self.pair_coverage(digits),
            "sum_proximity": self.sum_proximity(digits),
        }
        w = self.weights.as_dict()
        composite = sum(w[f] * sub[f] for f in FACTORS) / self.weights.total * SCORE_SCALE
        return Candidate(
            digits=digits,
            composite=round(composite, RANK_DECIMALS),
            type_score=sub["type"],
            skip_pressure=round(sub["skip_pressure"], RANK_DECIMALS),
            column_routing=sub["column_routing"],
            pair_coverage=sub["pair_coverage"],
            sum_proximity=sub["sum_proximity"],
        )

    def score_all(self, candidates):
        return [self.score(c) for c in candidates]

    def rank(self, candidates, k=None):
        ranked = rank_candidates(self.score_all(candidates), k)
        if self.verbose:
            print_rankings(ranked)
        return ranked


def score(candidate, skip_state, transition_state, weights=None):
    """Score one digit sequence against the given state views."""
    return CompositeScorer(skip_state, transition_state, weights).score(candidate)


def print_rankings(ranked, top_n=10):
    print(f"  Top {min(top_n, len(ranked))} rankings:")
    for i, c in enumerate(ranked[:top_n]):
        print(f"    {i+1:2d}. {c.straight} -> score {c.composite:6.2f} "
              f"(type {c.type_score:.2f}, skip {c.skip_pressure:.2f}, "
              f"col {c.column_routing:.2f}, pair {c.pair_coverage:.2f}, "
              f"sum {c.sum_proximity:.2f})")
