"""
Pick 3 Scoring and Backtesting Engine

Modules:
- draws: game geometry, immutable draws, the read-only draw store
- features: feature keys (digits, pairs, sums, combinations, symbol classes)
- skip_tracker: per-feature lateness counters with copy-on-write snapshots
- transition_model: per-position order-2 Markov model with additive smoothing
- scoring: validated factor weights and the composite scorer
- filters: hard elimination rules for candidates
- generator: deterministic, bounded candidate enumeration
- backtester: causal walk-forward replay and summary statistics
- predictor: engine facade for reports and UIs
"""

from .draws import Draw, DrawStore, Game, load_draws_csv
from .errors import (
    CapacityExceeded,
    Pick3Error,
    SequencingError,
    StateIntegrityError,
    ValidationError,
)
from .features import FeatureKey, FeatureKind
from .predictor import Pick3Engine
from .scoring import ScoringWeights

__all__ = [
    "Draw",
    "DrawStore",
    "Game",
    "load_draws_csv",
    "CapacityExceeded",
    "Pick3Error",
    "SequencingError",
    "StateIntegrityError",
    "ValidationError",
    "FeatureKey",
    "FeatureKind",
    "Pick3Engine",
    "ScoringWeights",
]
