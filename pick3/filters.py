"""
Candidate Filtering Rules for Pick 3

Hard elimination rules applied by the candidate generator. Each rule
returns {"name", "passed", "detail"}; a candidate is kept only when every
configured rule passes.
"""
from pick3.errors import ValidationError
from pick3.features import (
    COMBO_DOUBLE,
    COMBO_SINGLE,
    COMBO_TRIPLE,
    FeatureKey,
    FeatureKind,
    combo_type,
    high_low_pattern,
    mirror,
    parity_pattern,
)

COMBO_TYPES = (COMBO_SINGLE, COMBO_DOUBLE, COMBO_TRIPLE)
FILTER_OPTIONS = ("combo_types", "sum_band", "skip_window", "exclude_recent")


class CandidateFilters:
    """
    Filter configuration.

    combo_types:    allowed subset of ("single", "double", "triple")
    sum_band:       inclusive (lo, hi) on the digit sum
    skip_window:    inclusive (lo, hi) on the straight's current skip
    exclude_recent: reject straights seen in the last N draws
    """

    def __init__(self, combo_types=None, sum_band=None, skip_window=None, exclude_recent=0):
        if combo_types is not None:
            combo_types = tuple(sorted(set(combo_types)))
            bad = [t for t in combo_types if t not in COMBO_TYPES]
            if bad or not combo_types:
                raise ValidationError(f"combo_types must be a non-empty subset of {COMBO_TYPES}")
        self.combo_types = combo_types
        self.sum_band = self._check_range("sum_band", sum_band)
        self.skip_window = self._check_range("skip_window", skip_window)
        if int(exclude_recent) < 0:
            raise ValidationError(f"exclude_recent must be >= 0, got {exclude_recent}")
        self.exclude_recent = int(exclude_recent)

    @staticmethod
    def _check_range(name, value):
        if value is None:
            return None
        try:
            lo, hi = (int(v) for v in value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be a (lo, hi) pair, got {value!r}")
        if lo > hi or lo < 0:
            raise ValidationError(f"{name} must satisfy 0 <= lo <= hi, got ({lo}, {hi})")
        return (lo, hi)

    @classmethod
    def coerce(cls, filters):
        if filters is None:
            return cls()
        if isinstance(filters, cls):
            return filters
        unknown = sorted(set(filters) - set(FILTER_OPTIONS))
        if unknown:
            raise ValidationError(f"Unknown filter option(s) {unknown}; recognised: {list(FILTER_OPTIONS)}")
        return cls(**filters)

    @property
    def is_empty(self):
        return (self.combo_types is None and self.sum_band is None
                and self.skip_window is None and self.exclude_recent == 0)

    def __eq__(self, other):
        return isinstance(other, CandidateFilters) and self.as_dict() == other.as_dict()

    def as_dict(self):
        return {
            "combo_types": self.combo_types,
            "sum_band": self.sum_band,
            "skip_window": self.skip_window,
            "exclude_recent": self.exclude_recent,
        }

    def __repr__(self):
        parts = [f"{k}={v!r}" for k, v in self.as_dict().items() if v]
        return f"CandidateFilters({', '.join(parts)})"


def filter_combo_type(digits, allowed):
    kind = combo_type(digits)
    return {
        "name": "Combo Type Rule",
        "passed": kind in allowed,
        "detail": f"Type={kind}, allowed={list(allowed)}",
    }


def filter_sum_band(digits, band):
    lo, hi = band
    s = sum(digits)
    return {
        "name": "Sum Band Rule",
        "passed": lo <= s <= hi,
        "detail": f"Sum={s}, band=[{lo},{hi}]",
    }


def filter_skip_window(digits, skip_state, window):
    lo, hi = window
    skip = skip_state.current_skip(FeatureKey(FeatureKind.STRAIGHT, tuple(digits)))
    return {
        "name": "Skip Window Rule",
        "passed": lo <= skip <= hi,
        "detail": f"Straight skip={skip}, window=[{lo},{hi}]",
    }


def filter_no_recent_repeat(digits, skip_state, lookback):
    """
    Straight must not repeat any of the last `lookback` draws. Read from the
    straight's skip counter, so the lookback is not limited by the
    tracker's recent window.
    """
    key = FeatureKey(FeatureKind.STRAIGHT, tuple(digits))
    if lookback and skip_state.hit_count(key) and skip_state.current_skip(key) < lookback:
        return {
            "name": "No Recent Repeat",
            "passed": False,
            "detail": f"Matches draw {skip_state.index - skip_state.current_skip(key)}",
        }
    return {
        "name": "No Recent Repeat",
        "passed": True,
        "detail": "No repeat found",
    }


def run_all_filters(digits, filters, skip_state=None):
    """
    Run every configured rule on a candidate.
    Returns: dict with 'passed_count', 'total', 'results' list, 'all_passed' bool.
    """
    filters = CandidateFilters.coerce(filters)
    results = []
    if filters.combo_types is not None:
        results.append(filter_combo_type(digits, filters.combo_types))
    if filters.sum_band is not None:
        results.append(filter_sum_band(digits, filters.sum_band))
    if filters.skip_window is not None or filters.exclude_recent:
        if skip_state is None:
            raise ValidationError("Skip-based filters need a skip state")
        if filters.skip_window is not None:
            results.append(filter_skip_window(digits, skip_state, filters.skip_window))
        if filters.exclude_recent:
            results.append(filter_no_recent_repeat(digits, skip_state, filters.exclude_recent))
    passed = sum(1 for r in results if r["passed"])
    return {
        "passed_count": passed,
        "total": len(results),
        "all_passed": passed == len(results),
        "results": results,
        "confidence": f"{passed}/{len(results)}",
    }


def get_candidate_stats(digits, alphabet=10):
    """Summary stats for a candidate, for reports."""
    return {
        "straight": "".join(str(d) for d in digits),
        "box": "".join(str(d) for d in sorted(digits)),
        "sum": sum(digits),
        "type": combo_type(digits),
        "odd_even": parity_pattern(digits),
        "high_low": high_low_pattern(digits, alphabet),
        "mirror": "".join(str(d) for d in mirror(digits, alphabet)),
    }
