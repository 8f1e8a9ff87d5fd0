import unittest

import numpy as np

from pick3.draws import Draw, DrawStore
from pick3.errors import SequencingError, ValidationError
from pick3.synthetic import generate_synthetic_draws
from pick3.transition_model import TransitionModel, smoothed


class TestSmoothing(unittest.TestCase):
    def test_uniform_when_empty(self):
        probs = smoothed(np.zeros(10), 1.0)
        self.assertTrue(np.allclose(probs, 0.1))

    def test_rows_sum_to_one(self):
        counts = np.array([[3, 0, 1], [0, 0, 0]])
        probs = smoothed(counts, 0.5)
        self.assertTrue(np.allclose(probs.sum(axis=1), 1.0))
        self.assertAlmostEqual(probs[0, 0], 3.5 / 5.5)


class TestTransitionModel(unittest.TestCase):
    def setUp(self):
        # position 0 sees 0, 1, 2, 1, 2
        self.store = DrawStore.from_strings(["055", "166", "277", "188", "299"])
        self.model = TransitionModel()
        self.model.apply_all(self.store)

    def test_position_zero_example(self):
        dist = self.model.predict(0)
        self.assertEqual(dist.context, (1, 2))
        self.assertEqual(dist.total, 1)
        self.assertEqual(dist.value, 1)
        self.assertAlmostEqual(dist.probabilities[1], 2.0 / 11.0)
        for v in range(10):
            if v != 1:
                self.assertAlmostEqual(dist.probabilities[v], 1.0 / 11.0)
            self.assertGreaterEqual(dist.probabilities[v], 1.0 / (1 + 10) - 1e-12)
        self.assertAlmostEqual(dist.probabilities.sum(), 1.0)

    def test_counts(self):
        counts = self.model.transition_counts(0)
        self.assertEqual(counts[0, 1, 2], 1)
        self.assertEqual(counts[1, 2, 1], 1)
        self.assertEqual(counts[2, 1, 2], 1)
        self.assertEqual(counts.sum(), 3)

    def test_unseen_context_is_uniform(self):
        # position 1 context (8, 9) has never been followed by anything
        dist = self.model.predict(1)
        self.assertEqual(dist.context, (8, 9))
        self.assertEqual(dist.total, 0)
        self.assertTrue(np.allclose(dist.probabilities, 0.1))
        self.assertEqual(dist.value, 0)

    def test_no_context_before_two_draws(self):
        model = TransitionModel()
        self.assertIsNone(model.predict(2).context)
        model.apply(Draw(0, (1, 2, 3)))
        self.assertIsNone(model.context(2))
        self.assertTrue(np.allclose(model.predict(2).probabilities, 0.1))

    def test_distributions_always_sum_to_one(self):
        model = TransitionModel(alpha=0.25)
        model.apply_all(generate_synthetic_draws(200, seed=7))
        for dist in model.predict_all():
            self.assertAlmostEqual(float(dist.probabilities.sum()), 1.0)
            self.assertTrue(np.all(dist.probabilities > 0))

    def test_invalid_position(self):
        for position in (-1, 3, "0", 1.0):
            with self.assertRaises(ValidationError):
                self.model.predict(position)

    def test_sequencing(self):
        before = self.model.transition_counts(0)
        with self.assertRaises(SequencingError):
            self.model.apply(Draw(3, (0, 0, 0)))
        self.assertTrue(np.array_equal(self.model.transition_counts(0), before))
        self.assertEqual(self.model.index, 4)

    def test_snapshot_is_isolated(self):
        snap = self.model.snapshot()
        self.model.apply(Draw(5, (1, 0, 0)))
        self.assertEqual(snap.index, 4)
        self.assertEqual(snap.predict(0).context, (1, 2))
        self.assertEqual(snap.transition_counts(0).sum(), 3)
        self.assertEqual(self.model.predict(0).context, (2, 1))
        self.assertEqual(self.model.transition_counts(0).sum(), 4)

    def test_predict_partial(self):
        partial = self.model.predict_partial(1)
        self.assertEqual(list(partial), [0])
        self.assertEqual(partial[0].value, 1)
        self.assertEqual(len(self.model.predict_partial(3)), 3)
        self.assertEqual(self.model.predict_partial(0), {})
        with self.assertRaises(ValidationError):
            self.model.predict_partial(4)

    def test_first_order_and_stationary(self):
        dist = self.model.first_order(0)
        self.assertEqual(dist.context, (2,))
        # 2 was followed by 1 once
        self.assertEqual(dist.total, 1)
        self.assertEqual(dist.value, 1)
        pi = self.model.stationary(0)
        self.assertAlmostEqual(float(pi.sum()), 1.0)

    def test_reset(self):
        self.model.reset()
        self.assertIsNone(self.model.index)
        self.assertEqual(self.model.transition_counts(0).sum(), 0)

    def test_alpha_must_be_positive(self):
        with self.assertRaises(ValidationError):
            TransitionModel(alpha=0)


if __name__ == "__main__":
    unittest.main()
