"""
Backtesting Engine for Pick 3 Predictor

Walk-forward replay: at each step t the engine scores candidates using
state built from draws before t only, records where the actual draw
landed, and only then applies draw t. Never uses future data.

Run states: uninitialized -> replaying -> completed | aborted.
A run can be cancelled between steps and resumed from where it stopped.
"""
import os
import threading
import warnings
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
from scipy import stats

from pick3.draws import DATA_DIR, DrawStore, Game
from pick3.errors import (
    Cancelled,
    Pick3Error,
    SequencingError,
    StateIntegrityError,
    ValidationError,
)
from pick3.generator import CandidateGenerator
from pick3.scoring import SUM_BAND_WIDTH, CompositeScorer, as_weights, rank_candidates
from pick3.skip_tracker import LATE_MULTIPLIER, RECENT_WINDOW, SkipTracker
from pick3.transition_model import DEFAULT_ALPHA, TransitionModel

RESULTS_PATH = os.path.join(DATA_DIR, "backtest_results.csv")

DEFAULT_TOP_K = 20
PROGRESS_EVERY = 10
MIN_WARMUP = 50

ROLLING_WINDOWS = (10, 25, 50, 100)
TREND_THRESHOLD = 0.02
TREND_IMPROVING = "improving"
TREND_DECLINING = "declining"
TREND_STABLE = "stable"

STATUS_UNINITIALIZED = "uninitialized"
STATUS_REPLAYING = "replaying"
STATUS_COMPLETED = "completed"
STATUS_ABORTED = "aborted"

HIT_NONE = "none"
HIT_BOX = "box"
HIT_STRAIGHT = "straight"

BacktestRecord = namedtuple("BacktestRecord", [
    "draw_index", "actual", "rank_of_actual", "top_k", "hit_type",
    "composite_of_actual", "truncated",
])

BacktestResult = namedtuple("BacktestResult", [
    "status", "records", "summary", "error", "next_index",
])


class CancelToken:
    """Cancellation flag checked by the replay loop between steps."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()


def classify_hit(actual, top_k):
    """straight if the exact draw is in top_k, box if any permutation is."""
    actual = tuple(actual)
    box = sorted(actual)
    hit = HIT_NONE
    for digits in top_k:
        if tuple(digits) == actual:
            return HIT_STRAIGHT
        if sorted(digits) == box:
            hit = HIT_BOX
    return hit


def _compute_summary(records, k, space_size, partial=False):
    """Aggregate backtest metrics."""
    n = len(records)
    counts = {HIT_STRAIGHT: 0, HIT_BOX: 0, HIT_NONE: 0}
    for r in records:
        counts[r.hit_type] += 1
    hits = counts[HIT_STRAIGHT] + counts[HIT_BOX]
    ranks = [r.rank_of_actual for r in records if r.rank_of_actual is not None]

    baseline = min(k, space_size) / space_size
    summary = {
        "total_steps": n,
        "hits": hits,
        "containment_rate": hits / n if n else 0.0,
        "rate_by_type": {t: (c / n if n else 0.0) for t, c in counts.items()},
        "hit_counts": counts,
        "rank_mean": float(np.mean(ranks)) if ranks else None,
        "rank_variance": float(np.var(ranks)) if ranks else None,
        "ranked_steps": len(ranks),
        "expected_rank_mean": (space_size + 1) / 2.0,
        "baseline_straight_rate": baseline,
        "truncated_steps": sum(1 for r in records if r.truncated),
        "partial": partial,
    }

    summary["rolling"] = _rolling_trends([r.hit_type != HIT_NONE for r in records])
    summary["score_correlation"] = _score_correlation(records)

    # Exact one-sided test: straight hits vs k random picks per draw
    if n > 0:
        test = stats.binomtest(counts[HIT_STRAIGHT], n, baseline, alternative="greater")
        summary["significance"] = {
            "p_value": round(float(test.pvalue), 6),
            "significant_at_005": bool(test.pvalue < 0.05),
            "significant_at_010": bool(test.pvalue < 0.10),
        }
        ci = stats.binomtest(hits, n).proportion_ci(confidence_level=0.95)
        summary["containment_ci_95"] = (round(float(ci.low), 4), round(float(ci.high), 4))
    return summary


def _rolling_trends(hit_flags):
    """
    Containment over the last w steps for each w in ROLLING_WINDOWS that the
    run is long enough for. The trend compares the window's second half
    with its first half.
    """
    flags = np.asarray(hit_flags, dtype=np.float64)
    rolling = []
    for w in ROLLING_WINDOWS:
        if len(flags) < w:
            continue
        recent = flags[-w:]
        diff = recent[w // 2:].mean() - recent[:w // 2].mean()
        if diff > TREND_THRESHOLD:
            trend = TREND_IMPROVING
        elif diff < -TREND_THRESHOLD:
            trend = TREND_DECLINING
        else:
            trend = TREND_STABLE
        rolling.append({"window": w, "containment_rate": float(recent.mean()), "trend": trend})
    return rolling


def _score_correlation(records):
    """Pearson correlation of the actual draw's composite with hitting; 0 when undefined."""
    pairs = [(r.composite_of_actual, float(r.hit_type != HIT_NONE))
             for r in records if r.composite_of_actual is not None]
    if len(pairs) < 2:
        return 0.0
    x, y = np.array(pairs).T
    if x.std() == 0 or y.std() == 0:
        return 0.0
    return round(float(np.corrcoef(x, y)[0, 1]), 6)


class BacktestEngine:
    """
    One replay driver. Owns its Skip Tracker and Transition Model; scorers
    only ever see snapshots of them.
    """

    def __init__(self, game=None, weights=None, k=DEFAULT_TOP_K, generator=None,
                 alpha=DEFAULT_ALPHA, recent_window=RECENT_WINDOW,
                 late_multiplier=LATE_MULTIPLIER, sum_band_width=SUM_BAND_WIDTH,
                 progress_every=PROGRESS_EVERY, verbose=False):
        self.game = game or Game()
        if int(k) < 1:
            raise ValidationError(f"k must be positive, got {k}")
        if int(progress_every) < 1:
            raise ValidationError(f"progress_every must be positive, got {progress_every}")
        self.weights = as_weights(weights)
        self.k = int(k)
        self.generator = generator or CandidateGenerator(self.game)
        if self.generator.game != self.game:
            raise ValidationError("Generator and engine are configured for different games")
        self.alpha = alpha
        self.recent_window = recent_window
        self.late_multiplier = late_multiplier
        self.sum_band_width = sum_band_width
        self.progress_every = int(progress_every)
        self.verbose = verbose

        self.status = STATUS_UNINITIALIZED
        self.records = []
        self.error = None
        self.next_index = None
        self._store = None
        self._start = None
        self._end = None
        self.skip_tracker = None
        self.transition_model = None

    def __repr__(self):
        return f"BacktestEngine(status={self.status!r}, k={self.k}, records={len(self.records)})"

    # ── State ────────────────────────────────────────────────────────────

    def _fresh_state(self, first_index):
        self.skip_tracker = SkipTracker(self.game, recent_window=self.recent_window,
                                        late_multiplier=self.late_multiplier,
                                        start_index=first_index)
        self.transition_model = TransitionModel(self.game, alpha=self.alpha,
                                                start_index=first_index)

    def _apply(self, draw):
        # Validate up front so the two components move together
        self.game.validate_digits(draw.digits)
        if self.skip_tracker.index != self.transition_model.index:
            raise StateIntegrityError(
                f"Skip tracker at {self.skip_tracker.index}, transition model at "
                f"{self.transition_model.index}",
                index=draw.index,
            )
        self.skip_tracker.apply(draw)
        self.transition_model.apply(draw)

    def _step(self, draw):
        """Rank candidates for `draw` from state that excludes it."""
        skip_state = self.skip_tracker.snapshot()
        transition_state = self.transition_model.snapshot()
        if skip_state.next_index != draw.index or transition_state.index != skip_state.index:
            raise StateIntegrityError(
                f"Step {draw.index} needs state through {draw.index - 1}, snapshot is at "
                f"skip={skip_state.index}, transition={transition_state.index}",
                index=draw.index,
            )

        generated = self.generator.generate(skip_state, transition_state)
        scorer = CompositeScorer(skip_state, transition_state, self.weights,
                                 sum_band_width=self.sum_band_width)
        ranked = rank_candidates(scorer.score_all(generated.candidates))
        top_k = tuple(ranked[:self.k])

        rank, composite = None, None
        for i, c in enumerate(ranked, 1):
            if c.digits == draw.digits:
                rank, composite = i, c.composite
                break

        return BacktestRecord(
            draw_index=draw.index,
            actual=draw.digits,
            rank_of_actual=rank,
            top_k=top_k,
            hit_type=classify_hit(draw.digits, [c.digits for c in top_k]),
            composite_of_actual=composite,
            truncated=generated.truncated,
        )

    # ── Replay ───────────────────────────────────────────────────────────

    def run(self, draws, window=None, cancel=None, progress=None):
        """
        Replay `window` = (start, end) draw indices, inclusive. Draws before
        start only warm up the state. Defaults to the whole sequence.

        progress(done, total) is called every `progress_every` steps and
        after the last step. Both count over the whole window, so after
        resume() they pick up where the cancelled run stopped.
        """
        store = draws if isinstance(draws, DrawStore) else DrawStore(draws, game=self.game)
        if store.game != self.game:
            raise ValidationError(f"Draws are for {store.game}, engine for {self.game}")
        if len(store) == 0:
            raise ValidationError("No draws to backtest")

        first, last = store.first_index, store[-1].index
        start, end = window if window is not None else (first, last)
        if not first <= start <= end <= last:
            raise ValidationError(
                f"Window ({start}, {end}) outside available draws {first}..{last}"
            )
        if start - first < MIN_WARMUP:
            warnings.warn(f"Only {start - first} warm-up draws before the window. "
                          f"Early ranks may be unreliable.")

        self._store = store
        self._start = start
        self._end = end
        self.records = []
        self.error = None
        self._fresh_state(first)
        self.status = STATUS_REPLAYING

        if self.verbose:
            print(f"\n{'='*60}")
            print("BACKTESTING ENGINE")
            print(f"{'='*60}")
            print(f"Total draws: {len(store)}")
            print(f"Warm-up draws: {start - first}")
            print(f"Test draws: {end - start + 1} (indices {start}..{end})")
            print(f"Top-K: {self.k} | Generator: {self.generator!r}")
            print(f"{'='*60}\n")

        try:
            for draw in store[:store.position_of(start)]:
                self._apply(draw)
        except Pick3Error as e:
            return self._abort(e)
        self.next_index = start
        return self._replay(cancel, progress)

    def resume(self, draws=None, cancel=None, progress=None):
        """Continue an aborted (for example cancelled) run from next_index."""
        if self.status == STATUS_UNINITIALIZED or self._store is None:
            raise StateIntegrityError("Nothing to resume: run() has not been called")
        if self.status == STATUS_COMPLETED:
            return self._result()
        if draws is not None:
            store = draws if isinstance(draws, DrawStore) else DrawStore(draws, game=self.game)
            if tuple(store)[:len(self._store)] != tuple(self._store):
                raise StateIntegrityError("Resumed with a different draw history",
                                          index=self.next_index)
            self._store = store
        if self.skip_tracker.next_index != self.next_index:
            raise StateIntegrityError(
                f"Cannot resume at {self.next_index}: state is at {self.skip_tracker.index}",
                index=self.next_index,
            )
        self.error = None
        self.status = STATUS_REPLAYING
        return self._replay(cancel, progress)

    def _replay(self, cancel, progress):
        store = self._store
        # Counted over the whole window so a resumed run continues the count
        total = self._end - self._start + 1
        done = len(self.records)
        try:
            for pos in range(store.position_of(self.next_index), store.position_of(self._end) + 1):
                draw = store[pos]
                if cancel is not None and cancel.cancelled:
                    raise Cancelled(f"Backtest cancelled before step {draw.index}",
                                    index=draw.index)

                record = self._step(draw)
                self.records.append(record)
                self._apply(draw)
                self.next_index = draw.index + 1
                done += 1

                if self.verbose and done % 50 == 0:
                    print(f"  [Backtest] Step {done}/{total} (draw {draw.index})...")
                if progress is not None and (done % self.progress_every == 0 or done == total):
                    progress(done, total)
        except (Cancelled, StateIntegrityError, SequencingError, ValidationError) as e:
            return self._abort(e)

        self.status = STATUS_COMPLETED
        result = self._result()
        if self.verbose:
            print_summary(result.summary)
        return result

    def _abort(self, error):
        self.status = STATUS_ABORTED
        self.error = error.to_dict()
        if self.verbose:
            print(f"  [Backtest] Aborted at draw {error.index}: {error.kind}: {error.message}")
        return self._result()

    def _result(self):
        summary = _compute_summary(self.records, self.k, self.game.space_size,
                                   partial=self.status != STATUS_COMPLETED)
        return BacktestResult(self.status, tuple(self.records), summary, self.error,
                              self.next_index)

    # ── Export ───────────────────────────────────────────────────────────

    def records_to_frame(self):
        rows = []
        for r in self.records:
            rows.append({
                "draw_index": r.draw_index,
                "actual": "".join(map(str, r.actual)),
                "rank_of_actual": r.rank_of_actual,
                "composite_of_actual": r.composite_of_actual,
                "hit_type": r.hit_type,
                "top_k": " ".join(c.straight for c in r.top_k),
                "truncated": r.truncated,
            })
        return pd.DataFrame(rows, columns=[
            "draw_index", "actual", "rank_of_actual", "composite_of_actual",
            "hit_type", "top_k", "truncated",
        ])

    def save_results(self, path=RESULTS_PATH):
        """Save backtest records to CSV."""
        df = self.records_to_frame()
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        df.to_csv(path, index=False)
        if self.verbose:
            print(f"\nBacktest results saved to {path}")
        return path


def run_backtest(draws, window=None, weights=None, k=DEFAULT_TOP_K, cancel=None,
                 progress=None, **engine_kwargs):
    engine = BacktestEngine(weights=weights, k=k, **engine_kwargs)
    return engine.run(draws, window=window, cancel=cancel, progress=progress)


def run_parallel(draws, configs, max_workers=None, cancel=None):
    """
    Run independent backtests concurrently, one engine per config.

    Each config is a dict of BacktestEngine keyword arguments plus an
    optional "window". Results come back in config order.
    """
    def _task(config):
        config = dict(config)
        window = config.pop("window", None)
        engine = BacktestEngine(**config)
        return engine.run(draws, window=window, cancel=cancel)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(_task, configs))


def print_summary(summary):
    """Print a formatted backtest report."""
    print(f"\n{'='*60}")
    print("BACKTEST RESULTS SUMMARY")
    print(f"{'='*60}")
    if summary.get("partial"):
        print("  (partial run: aborted before the end of the window)")
    n = summary["total_steps"]
    print(f"  Steps: {n}")
    print(f"  Containment rate: {summary['containment_rate']:.3%} "
          f"({summary['hits']} / {n})")
    rates = summary["rate_by_type"]
    print(f"    straight: {rates[HIT_STRAIGHT]:.3%} | box: {rates[HIT_BOX]:.3%} "
          f"| none: {rates[HIT_NONE]:.3%}")
    if "containment_ci_95" in summary:
        lo, hi = summary["containment_ci_95"]
        print(f"    95% CI: ({lo:.3%}, {hi:.3%})")
    print(f"  Random straight baseline: {summary['baseline_straight_rate']:.3%}")
    for row in summary.get("rolling", []):
        print(f"  Last {row['window']:>3} steps: {row['containment_rate']:.3%} ({row['trend']})")
    print(f"  Score/hit correlation: {summary.get('score_correlation', 0.0):+.3f}")
    if summary["rank_mean"] is not None:
        print(f"  Rank of actual: mean {summary['rank_mean']:.1f} "
              f"(random {summary['expected_rank_mean']:.1f}), "
              f"variance {summary['rank_variance']:.1f}")
    if summary["truncated_steps"]:
        print(f"  Truncated steps: {summary['truncated_steps']}")

    sig = summary.get("significance")
    if sig:
        print(f"\nSTATISTICAL SIGNIFICANCE (straight hits vs random):")
        print(f"  p-value: {sig['p_value']}")
        if sig["significant_at_005"]:
            print("  Significant at p < 0.05")
        elif sig["significant_at_010"]:
            print("  Marginally significant at p < 0.10")
        else:
            print("  Not statistically significant")
    print(f"\n{'='*60}")
