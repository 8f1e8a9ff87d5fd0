import contextlib
import io
import os
import signal
import tempfile
import unittest
import warnings

import pandas as pd

from pick3.backtester import (
    HIT_BOX,
    HIT_NONE,
    HIT_STRAIGHT,
    STATUS_ABORTED,
    STATUS_COMPLETED,
    STATUS_UNINITIALIZED,
    TREND_DECLINING,
    TREND_IMPROVING,
    TREND_STABLE,
    BacktestEngine,
    BacktestRecord,
    CancelToken,
    _compute_summary,
    classify_hit,
    print_summary,
    run_backtest,
    run_parallel,
)
from pick3.draws import Draw
from pick3.errors import CapacityExceeded, StateIntegrityError, ValidationError
from pick3.generator import CandidateGenerator
from pick3.synthetic import generate_synthetic_draws


class TestFullReplay(unittest.TestCase):
    def test_hundred_draws(self):
        store = generate_synthetic_draws(100, seed=5)
        engine = BacktestEngine(k=20)
        self.assertEqual(engine.status, STATUS_UNINITIALIZED)
        result = engine.run(store)

        self.assertEqual(result.status, STATUS_COMPLETED)
        self.assertEqual(engine.status, STATUS_COMPLETED)
        self.assertIsNone(result.error)
        self.assertEqual(len(result.records), 100)
        self.assertEqual([r.draw_index for r in result.records], list(range(100)))
        for record, draw in zip(result.records, store):
            self.assertEqual(record.actual, draw.digits)
            self.assertTrue(1 <= record.rank_of_actual <= 1000)
            self.assertEqual(len(record.top_k), 20)
            self.assertFalse(record.truncated)

        summary = result.summary
        self.assertEqual(summary["total_steps"], 100)
        self.assertEqual(summary["ranked_steps"], 100)
        self.assertFalse(summary["partial"])
        self.assertAlmostEqual(summary["baseline_straight_rate"], 0.02)
        self.assertTrue(1 <= summary["rank_mean"] <= 1000)
        self.assertIn("p_value", summary["significance"])
        self.assertAlmostEqual(sum(summary["rate_by_type"].values()), 1.0)


class TestCausality(unittest.TestCase):
    def test_future_draws_do_not_change_past_records(self):
        base = list(generate_synthetic_draws(40, seed=21))
        future = list(generate_synthetic_draws(10, seed=99, start_index=30))
        altered = base[:30] + future
        self.assertNotEqual(base[30:], altered[30:])

        a = BacktestEngine(k=10).run(base, window=(20, 39))
        b = BacktestEngine(k=10).run(altered, window=(20, 39))
        self.assertEqual(len(a.records), 20)
        self.assertEqual(a.records[:10], b.records[:10])

    def test_warm_up_only_feeds_state(self):
        store = generate_synthetic_draws(30, seed=8)
        result = BacktestEngine(k=5).run(store, window=(25, 29))
        self.assertEqual([r.draw_index for r in result.records], [25, 26, 27, 28, 29])
        full = BacktestEngine(k=5).run(store, window=(0, 29))
        self.assertEqual(result.records, full.records[25:])


class TestCancelAndResume(unittest.TestCase):
    def setUp(self):
        self.store = generate_synthetic_draws(30, seed=13)
        self.window = (15, 29)

    def test_cancel_then_resume_matches_uninterrupted(self):
        token = CancelToken()

        def progress(done, total):
            if done == 5:
                token.cancel()

        engine = BacktestEngine(k=10, progress_every=5)
        partial = engine.run(self.store, window=self.window, cancel=token, progress=progress)
        self.assertEqual(partial.status, STATUS_ABORTED)
        self.assertEqual(partial.error["kind"], "Cancelled")
        self.assertEqual(partial.error["index"], 20)
        self.assertEqual(partial.next_index, 20)
        self.assertEqual(len(partial.records), 5)
        self.assertTrue(partial.summary["partial"])

        calls = []
        resumed = engine.resume(progress=lambda done, total: calls.append((done, total)))
        self.assertEqual(calls, [(10, 15), (15, 15)])
        self.assertEqual(resumed.status, STATUS_COMPLETED)
        self.assertIsNone(resumed.error)

        uninterrupted = BacktestEngine(k=10).run(self.store, window=self.window)
        self.assertEqual(resumed.records, uninterrupted.records)
        self.assertEqual(resumed.summary, uninterrupted.summary)

    def test_progress_is_rate_limited(self):
        calls = []
        engine = BacktestEngine(k=5, progress_every=5)
        engine.run(self.store, window=(18, 29), progress=lambda done, total: calls.append((done, total)))
        self.assertEqual(calls, [(5, 12), (10, 12), (12, 12)])

    def test_interrupt_handler_cancels_between_steps(self):
        token = CancelToken()

        def progress(done, total):
            if done == 5:
                signal.raise_signal(signal.SIGINT)

        previous = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
        try:
            engine = BacktestEngine(k=5, progress_every=5)
            partial = engine.run(self.store, window=self.window, cancel=token, progress=progress)
        finally:
            signal.signal(signal.SIGINT, previous)
        self.assertEqual(partial.status, STATUS_ABORTED)
        self.assertEqual(partial.error["kind"], "Cancelled")
        self.assertEqual(len(partial.records), 5)
        self.assertEqual(partial.next_index, 20)
        self.assertEqual(engine.resume().status, STATUS_COMPLETED)

    def test_resume_before_run(self):
        with self.assertRaises(StateIntegrityError):
            BacktestEngine().resume()

    def test_resume_with_different_history(self):
        token = CancelToken()
        token.cancel()
        engine = BacktestEngine(k=5)
        engine.run(self.store, window=self.window, cancel=token)
        other = generate_synthetic_draws(30, seed=14)
        with self.assertRaises(StateIntegrityError):
            engine.resume(other)

    def test_state_integrity_abort(self):
        token = CancelToken()
        token.cancel()
        engine = BacktestEngine(k=5)
        first = engine.run(self.store, window=self.window, cancel=token)
        self.assertEqual(first.status, STATUS_ABORTED)
        self.assertEqual(len(first.records), 0)

        # push the transition model ahead of the skip tracker
        engine.transition_model.apply(self.store[15])
        result = engine.resume()
        self.assertEqual(result.status, STATUS_ABORTED)
        self.assertEqual(result.error["kind"], "StateIntegrityError")
        self.assertEqual(result.error["index"], 15)


class TestEngineInputs(unittest.TestCase):
    def test_invalid_window(self):
        store = generate_synthetic_draws(10)
        engine = BacktestEngine()
        with self.assertRaises(ValidationError):
            engine.run(store, window=(5, 10))
        with self.assertRaises(ValidationError):
            engine.run(store, window=(6, 5))
        with self.assertRaises(ValidationError):
            engine.run([])

    def test_invalid_config(self):
        with self.assertRaises(ValidationError):
            BacktestEngine(k=0)
        with self.assertRaises(ValidationError):
            BacktestEngine(progress_every=0)
        with self.assertRaises(ValidationError):
            BacktestEngine(weights={"luck": 1.0})

    def test_truncated_generation(self):
        store = generate_synthetic_draws(12, seed=4)
        engine = BacktestEngine(k=5, generator=CandidateGenerator(max_candidates=10))
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = engine.run(store, window=(8, 11))
        self.assertTrue(any(issubclass(w.category, CapacityExceeded) for w in caught))
        self.assertEqual(result.status, STATUS_COMPLETED)
        self.assertEqual(result.summary["truncated_steps"], 4)
        for record in result.records:
            self.assertTrue(record.truncated)
            if record.actual[:2] != (0, 0):
                self.assertIsNone(record.rank_of_actual)

    def test_short_warm_up_warns(self):
        store = generate_synthetic_draws(6, seed=4)
        with self.assertWarns(UserWarning):
            BacktestEngine(k=3).run(store, window=(4, 5))

    def test_plain_draw_list(self):
        draws = [Draw(i, (i % 10, 3, 7)) for i in range(8)]
        result = run_backtest(draws, window=(6, 7), k=3)
        self.assertEqual(len(result.records), 2)


class TestParallel(unittest.TestCase):
    def test_matches_sequential(self):
        store = generate_synthetic_draws(25, seed=17)
        configs = [{"k": 5, "window": (20, 24)}, {"k": 15, "window": (22, 24)}]
        results = run_parallel(store, configs, max_workers=2)
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0].records, BacktestEngine(k=5).run(store, window=(20, 24)).records)
        self.assertEqual(len(results[1].records), 3)
        self.assertEqual(len(results[1].records[0].top_k), 15)


class TestSummary(unittest.TestCase):
    def test_classify_hit(self):
        top = [(1, 2, 3), (4, 5, 6)]
        self.assertEqual(classify_hit((1, 2, 3), top), HIT_STRAIGHT)
        self.assertEqual(classify_hit((3, 2, 1), top), HIT_BOX)
        self.assertEqual(classify_hit((7, 8, 9), top), HIT_NONE)

    def test_compute_summary(self):
        records = [
            BacktestRecord(0, (1, 2, 3), 1, (), HIT_STRAIGHT, 70.0, False),
            BacktestRecord(1, (3, 2, 1), 50, (), HIT_BOX, 60.0, False),
            BacktestRecord(2, (7, 8, 9), None, (), HIT_NONE, None, True),
        ]
        summary = _compute_summary(records, k=20, space_size=1000)
        self.assertEqual(summary["total_steps"], 3)
        self.assertEqual(summary["hits"], 2)
        self.assertAlmostEqual(summary["containment_rate"], 2 / 3)
        self.assertAlmostEqual(summary["rank_mean"], 25.5)
        self.assertAlmostEqual(summary["rank_variance"], 600.25)
        self.assertEqual(summary["ranked_steps"], 2)
        self.assertEqual(summary["truncated_steps"], 1)
        self.assertLess(summary["significance"]["p_value"], 0.1)

    def test_containment_interval(self):
        records = [
            BacktestRecord(0, (1, 2, 3), 1, (), HIT_STRAIGHT, 70.0, False),
            BacktestRecord(1, (3, 2, 1), 50, (), HIT_BOX, 60.0, False),
            BacktestRecord(2, (7, 8, 9), None, (), HIT_NONE, None, True),
        ]
        lo, hi = _compute_summary(records, k=20, space_size=1000)["containment_ci_95"]
        self.assertLess(lo, 2 / 3)
        self.assertGreater(lo, 0.0)
        # exact interval upper bound for 2 of 3 is 0.975 ** (1/3)
        self.assertAlmostEqual(hi, 0.9916, places=4)

    def test_rolling_trends(self):
        hit_types = [HIT_NONE] * 25 + [HIT_STRAIGHT] * 5
        records = [BacktestRecord(i, (0, 0, 0), None, (), t, None, False)
                   for i, t in enumerate(hit_types)]
        rolling = _compute_summary(records, k=20, space_size=1000)["rolling"]
        self.assertEqual([r["window"] for r in rolling], [10, 25])
        self.assertAlmostEqual(rolling[0]["containment_rate"], 0.5)
        self.assertEqual(rolling[0]["trend"], TREND_IMPROVING)
        self.assertAlmostEqual(rolling[1]["containment_rate"], 0.2)
        self.assertEqual(rolling[1]["trend"], TREND_IMPROVING)

        flat = [BacktestRecord(i, (0, 0, 0), None, (), HIT_NONE, None, False) for i in range(12)]
        self.assertEqual(_compute_summary(flat, k=20, space_size=1000)["rolling"][0]["trend"],
                         TREND_STABLE)
        declining = [BacktestRecord(i, (0, 0, 0), None, (), HIT_BOX if i < 5 else HIT_NONE,
                                    None, False) for i in range(10)]
        self.assertEqual(_compute_summary(declining, k=20, space_size=1000)["rolling"][0]["trend"],
                         TREND_DECLINING)

    def test_score_correlation(self):
        rows = [(80.0, HIT_STRAIGHT), (70.0, HIT_BOX), (20.0, HIT_NONE), (10.0, HIT_NONE)]
        records = [BacktestRecord(i, (1, 2, 3), 1, (), t, c, False) for i, (c, t) in enumerate(rows)]
        corr = _compute_summary(records, k=20, space_size=1000)["score_correlation"]
        self.assertAlmostEqual(corr, 60.0 / 3700 ** 0.5, places=5)

        same = [BacktestRecord(i, (1, 2, 3), 1, (), HIT_NONE, 50.0, False) for i in range(4)]
        self.assertEqual(_compute_summary(same, k=20, space_size=1000)["score_correlation"], 0.0)

    def test_empty_summary(self):
        summary = _compute_summary([], k=20, space_size=1000)
        self.assertEqual(summary["containment_rate"], 0.0)
        self.assertIsNone(summary["rank_mean"])
        self.assertEqual(summary["rolling"], [])
        self.assertEqual(summary["score_correlation"], 0.0)
        self.assertNotIn("significance", summary)
        self.assertNotIn("containment_ci_95", summary)


class TestExport(unittest.TestCase):
    def test_save_results(self):
        store = generate_synthetic_draws(10, seed=2)
        engine = BacktestEngine(k=3)
        engine.run(store, window=(7, 9))
        with tempfile.TemporaryDirectory() as tmp:
            path = engine.save_results(os.path.join(tmp, "out", "results.csv"))
            df = pd.read_csv(path, dtype={"actual": str})
        self.assertEqual(list(df["draw_index"]), [7, 8, 9])
        self.assertEqual(list(df["actual"]), [store[i].straight for i in (7, 8, 9)])
        self.assertEqual(len(df["top_k"][0].split()), 3)

    def test_verbose_report(self):
        store = generate_synthetic_draws(8, seed=2)
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            result = BacktestEngine(k=3, verbose=True).run(store, window=(6, 7))
            print_summary(result.summary)
        out = buf.getvalue()
        self.assertIn("BACKTESTING ENGINE", out)
        self.assertIn("BACKTEST RESULTS SUMMARY", out)
        self.assertIn("Containment rate", out)
        self.assertIn("95% CI", out)
        self.assertIn("Score/hit correlation", out)

    def test_report_lists_rolling_windows(self):
        records = [BacktestRecord(i, (0, 0, 0), None, (), HIT_NONE, None, False) for i in range(10)]
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            print_summary(_compute_summary(records, k=20, space_size=1000))
        self.assertIn("Last  10 steps: 0.000% (stable)", buf.getvalue())


if __name__ == "__main__":
    unittest.main()
