"""
Skip Tracker

Maintains per-feature lateness counters as draws are applied in index order.
For every FeatureKey (digit, pair, sum, combination, symbol class) it keeps
the last index the feature was seen, how often it hit, and the total skip
accumulated between hits. The current skip is derived from the last seen
index, so applying a draw only touches the features the draw contains.

Lateness is judged against the expected skip of a feature, 1/p - 1, where
p is its theoretical per-draw probability:
- on-time:   current skip <= expected
- late:      current skip <= 2x expected
- very-late: current skip >  2x expected

Snapshots are copy-on-write: snapshot() hands out the current counter dict
and the tracker copies it before its next mutation.
"""
import math
from collections import Counter, namedtuple

import pandas as pd

from pick3.draws import Draw, Game, check_next_index
from pick3.errors import ValidationError
from pick3.features import (
    FeatureKey,
    class_value,
    extract_features,
    keys_of_kind,
)

RECENT_WINDOW = 50
LATE_MULTIPLIER = 2.0

TIER_ON_TIME = "on-time"
TIER_LATE = "late"
TIER_VERY_LATE = "very-late"
TIER_UNKNOWN = "unknown"

SkipInfo = namedtuple("SkipInfo", [
    "key", "known", "current_skip", "average_skip", "expected_skip",
    "lateness_tier", "last_seen_index", "hit_count",
])


def expected_skip(probability):
    """Mean number of misses between hits for a per-draw probability."""
    if probability <= 0:
        return math.inf
    return 1.0 / probability - 1.0


def lateness_tier(current_skip, expected, late_multiplier=LATE_MULTIPLIER):
    if current_skip <= expected:
        return TIER_ON_TIME
    if current_skip <= late_multiplier * expected:
        return TIER_LATE
    return TIER_VERY_LATE


def unknown_feature(key):
    return SkipInfo(key, False, None, None, None, TIER_UNKNOWN, None, 0)


class _SkipView:
    """Read side shared by the live tracker and its snapshots."""

    def __init__(self, game, counters, last_index, first_index, applied, recent,
                 late_multiplier):
        self.game = game
        self._counters = counters
        self.last_index = last_index
        self.first_index = first_index
        self.applied = applied
        self.recent_draws = recent
        self.late_multiplier = late_multiplier

    @property
    def index(self):
        """Index of the last applied draw, None before the first."""
        return self.last_index

    @property
    def next_index(self):
        if self.last_index is None:
            return self.first_index
        return self.last_index + 1

    def is_known(self, key):
        return isinstance(key, FeatureKey) and self.game.is_known(key)

    def current_skip(self, key):
        entry = self._counters.get(key)
        if entry is None:
            return self.applied
        return self.last_index - entry[0]

    def hit_count(self, key):
        entry = self._counters.get(key)
        return entry[1] if entry else 0

    def expected_skip(self, key):
        return expected_skip(self.game.probability(key))

    def lateness_ratio(self, key):
        exp = self.expected_skip(key)
        if exp <= 0:
            return float(self.current_skip(key))
        return self.current_skip(key) / exp

    def query(self, key):
        """SkipInfo for a key; unknown keys give an explicit unknown result."""
        if not isinstance(key, FeatureKey):
            try:
                key = FeatureKey(*key)
            except (TypeError, ValueError, ValidationError):
                return unknown_feature(key)
        if not self.game.is_known(key):
            return unknown_feature(key)

        entry = self._counters.get(key)
        if entry is None:
            last_seen, hits, total = None, 0, 0
        else:
            last_seen, hits, total = entry
        current = self.current_skip(key)
        exp = self.expected_skip(key)
        return SkipInfo(
            key=key,
            known=True,
            current_skip=current,
            average_skip=total / max(hits, 1),
            expected_skip=exp,
            lateness_tier=lateness_tier(current, exp, self.late_multiplier),
            last_seen_index=last_seen,
            hit_count=hits,
        )

    def overdue(self, kind, top_n=10):
        """Keys of one kind, most overdue first (ratio to expected skip)."""
        keys = keys_of_kind(self.game, kind)
        ranked = sorted(keys, key=lambda k: -self.lateness_ratio(k))
        return [self.query(k) for k in ranked[:top_n]]

    def pattern_counts(self, kind):
        """Counter of symbol-class values over the recent window."""
        return Counter(class_value(kind, d.digits, self.game.alphabet)
                       for d in self.recent_draws)

    def sum_counts(self):
        return Counter(sum(d.digits) for d in self.recent_draws)

    def to_frame(self, kind=None):
        """One row per feature key with its counters and lateness."""
        keys = sorted(self.game.feature_universe()) if kind is None else keys_of_kind(self.game, kind)
        rows = []
        for key in keys:
            info = self.query(key)
            rows.append({
                "kind": key.kind,
                "feature": key.label(),
                "last_seen_index": info.last_seen_index,
                "current_skip": info.current_skip,
                "hit_count": info.hit_count,
                "average_skip": info.average_skip,
                "expected_skip": info.expected_skip,
                "lateness_tier": info.lateness_tier,
            })
        return pd.DataFrame(rows)


class SkipSnapshot(_SkipView):
    """Immutable view of tracker state as of `index`."""

    def __repr__(self):
        return f"SkipSnapshot(index={self.last_index}, applied={self.applied})"


class SkipTracker(_SkipView):
    """Single-writer skip counters over a gapless draw sequence."""

    def __init__(self, game=None, recent_window=RECENT_WINDOW,
                 late_multiplier=LATE_MULTIPLIER, start_index=None):
        if recent_window < 1:
            raise ValidationError(f"recent_window must be positive, got {recent_window}")
        if late_multiplier < 1:
            raise ValidationError(f"late_multiplier must be >= 1, got {late_multiplier}")
        super().__init__(game or Game(), {}, None, start_index, 0, (), float(late_multiplier))
        self.recent_window = int(recent_window)
        self._shared = False

    def __repr__(self):
        return f"SkipTracker(index={self.last_index}, applied={self.applied})"

    def apply(self, draw):
        """Record one draw. Raises before mutating anything on bad input."""
        digits = self.game.validate_digits(draw.digits)
        index = int(draw.index)
        check_next_index(index, self.last_index, self.first_index)

        updates = []
        for key in extract_features(digits, self.game):
            entry = self._counters.get(key)
            before = self.current_skip(key)
            hits = entry[1] if entry else 0
            total = entry[2] if entry else 0
            updates.append((key, (index, hits + 1, total + before)))

        if self._shared:
            self._counters = dict(self._counters)
            self._shared = False
        self._counters.update(updates)
        if self.first_index is None:
            self.first_index = index
        self.last_index = index
        self.applied += 1
        self.recent_draws = (self.recent_draws + (Draw(index, digits),))[-self.recent_window:]

    def apply_all(self, draws):
        for draw in draws:
            self.apply(draw)

    def snapshot(self):
        self._shared = True
        return SkipSnapshot(self.game, self._counters, self.last_index, self.first_index,
                            self.applied, self.recent_draws, self.late_multiplier)

    def reset(self, start_index=None):
        self._counters = {}
        self._shared = False
        self.last_index = None
        self.first_index = start_index
        self.applied = 0
        self.recent_draws = ()
