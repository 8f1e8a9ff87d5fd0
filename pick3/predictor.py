"""
Prediction Facade for Pick 3

Pick3Engine owns the live Skip Tracker and Transition Model for the draws
ingested so far and exposes the read operations a UI or report needs:
top predictions, feature skip info, per-column distributions, and a
backtest over the ingested history. Reads go through snapshots and never
change the live state.
"""
from collections import namedtuple

from pick3.backtester import DEFAULT_TOP_K, BacktestEngine
from pick3.draws import Draw, DrawStore, Game, check_next_index
from pick3.errors import ValidationError
from pick3.filters import CandidateFilters, get_candidate_stats
from pick3.generator import STRATEGY_FULL, CandidateGenerator
from pick3.scoring import SUM_BAND_WIDTH, CompositeScorer, as_weights, print_rankings
from pick3.skip_tracker import LATE_MULTIPLIER, RECENT_WINDOW, SkipTracker
from pick3.transition_model import DEFAULT_ALPHA, TransitionModel

TopPredictions = namedtuple("TopPredictions", [
    "candidates", "scored", "truncated", "first_dropped", "unexamined", "rejected",
])


class Pick3Engine:
    def __init__(self, draws=None, game=None, alpha=DEFAULT_ALPHA,
                 recent_window=RECENT_WINDOW, late_multiplier=LATE_MULTIPLIER,
                 sum_band_width=SUM_BAND_WIDTH, max_candidates=None,
                 strategy=STRATEGY_FULL, verbose=False):
        if game is None and isinstance(draws, DrawStore):
            game = draws.game
        self.game = game or Game()
        self.alpha = alpha
        self.recent_window = recent_window
        self.late_multiplier = late_multiplier
        self.sum_band_width = sum_band_width
        self.max_candidates = max_candidates
        self.strategy = strategy
        self.verbose = verbose

        self.skip_tracker = SkipTracker(self.game, recent_window=recent_window,
                                        late_multiplier=late_multiplier)
        self.transition_model = TransitionModel(self.game, alpha=alpha)
        self._history = []
        if draws is not None:
            self.ingest_all(draws)

    def __repr__(self):
        return f"Pick3Engine({self.game}, draws={len(self._history)})"

    # ── History ──────────────────────────────────────────────────────────

    @property
    def index(self):
        return self.skip_tracker.index

    @property
    def history(self):
        return DrawStore(self._history, game=self.game)

    def ingest(self, draw):
        """Apply one draw to both components, or to neither."""
        if not isinstance(draw, Draw):
            index = 0 if self.index is None else self.index + 1
            draw = self.game.parse(draw, index=index)
        draw = self.game.make_draw(draw.index, draw.digits)
        check_next_index(draw.index, self.skip_tracker.index, self.skip_tracker.first_index)
        check_next_index(draw.index, self.transition_model.index, self.transition_model.first_index)
        self.skip_tracker.apply(draw)
        self.transition_model.apply(draw)
        self._history.append(draw)
        return draw

    def ingest_all(self, draws):
        for draw in draws:
            self.ingest(draw)

    def snapshot(self):
        return self.skip_tracker.snapshot(), self.transition_model.snapshot()

    # ── Queries ──────────────────────────────────────────────────────────

    def get_top_predictions(self, k=DEFAULT_TOP_K, weights=None, filters=None, strategy=None):
        """
        Ranked top-k candidates for the next draw, as a TopPredictions.
        When the generator bound was hit, `truncated`, `first_dropped` and
        `unexamined` say which part of the space was never scored.
        """
        if int(k) < 1:
            raise ValidationError(f"k must be positive, got {k}")
        weights = as_weights(weights)
        skip_state, transition_state = self.snapshot()
        generator = CandidateGenerator(
            self.game,
            filters=CandidateFilters.coerce(filters),
            max_candidates=self.max_candidates,
            strategy=strategy or self.strategy,
            verbose=self.verbose,
        )
        generated = generator.generate(skip_state, transition_state)
        scorer = CompositeScorer(skip_state, transition_state, weights,
                                 sum_band_width=self.sum_band_width, verbose=self.verbose)
        ranked = scorer.rank(generated.candidates, k=int(k))
        return TopPredictions(
            candidates=ranked,
            scored=len(generated.candidates),
            truncated=generated.truncated,
            first_dropped=generated.first_dropped,
            unexamined=generated.unexamined,
            rejected=generated.rejected,
        )

    def get_feature_skip_info(self, feature_key):
        return self.skip_tracker.snapshot().query(feature_key)

    def get_column_prediction(self, position):
        return self.transition_model.snapshot().predict(position)

    def get_partial_prediction(self, k):
        return self.transition_model.snapshot().predict_partial(k)

    def describe(self, candidate):
        stats = get_candidate_stats(candidate.digits, self.game.alphabet)
        stats.update(candidate.subscores)
        stats["composite"] = candidate.composite
        return stats

    # ── Backtest ─────────────────────────────────────────────────────────

    def run_backtest(self, window=None, weights=None, k=DEFAULT_TOP_K, filters=None,
                     cancel=None, progress=None, progress_every=None, strategy=None):
        """Causal replay over the ingested history; returns a BacktestResult."""
        generator = CandidateGenerator(
            self.game,
            filters=CandidateFilters.coerce(filters),
            max_candidates=self.max_candidates,
            strategy=strategy or self.strategy,
        )
        kwargs = {}
        if progress_every is not None:
            kwargs["progress_every"] = progress_every
        engine = BacktestEngine(
            game=self.game,
            weights=weights,
            k=k,
            generator=generator,
            alpha=self.alpha,
            recent_window=self.recent_window,
            late_multiplier=self.late_multiplier,
            sum_band_width=self.sum_band_width,
            verbose=self.verbose,
            **kwargs
        )
        return engine.run(self.history, window=window, cancel=cancel, progress=progress)


def predict(draws, k=DEFAULT_TOP_K, weights=None, filters=None, verbose=True):
    """
    Build an engine over `draws` and rank the next-draw candidates.

    Returns
    -------
    dict with:
        'rankings': list of Candidate, best first
        'top': list of straight strings for the top k
        'columns': per-position Distribution
        'truncated': whether the candidate bound cut the search short
    """
    engine = Pick3Engine(draws)
    if verbose:
        print("\n" + "=" * 60)
        print("PICK 3 COMPOSITE SCORING")
        print("=" * 60)
        print(f"  Draws ingested: {len(engine.history)}")
        print(f"  Weights:\n{as_weights(weights).summary()}")
    top = engine.get_top_predictions(k=k, weights=weights, filters=filters)
    columns = [engine.get_column_prediction(p) for p in range(engine.game.length)]
    if verbose:
        for dist in columns:
            print(f"  [Column {dist.position}] context={dist.context} -> {dist.value} "
                  f"(p={dist.confidence:.3f}, n={dist.total})")
        print_rankings(top.candidates)
        print("=" * 60)
    return {
        "rankings": top.candidates,
        "top": [c.straight for c in top.candidates],
        "columns": columns,
        "truncated": top.truncated,
    }
