"""
Per-Position Markov Transition Model for Pick 3

Each position (column) of the draw is treated as its own symbol sequence.
For every position we keep an A x A x A count table T[p][a][b][v]: how often
value v followed the two-symbol context (a, b) at position p. Predictions
use additive smoothing:

    P(next = v | a, b) = (T[a][b][v] + alpha) / (sum_v' T[a][b][v'] + alpha * A)

so unseen contexts fall back to a uniform distribution and no symbol ever
gets probability zero.

A first-order table (previous symbol -> next) is kept alongside for
diagnostics, together with the stationary distribution of that chain.

Tables only grow; reset() is the only way back to zero. snapshot() is
copy-on-write, matching the Skip Tracker.
"""
from collections import namedtuple

import numpy as np

from pick3.draws import Game, check_next_index
from pick3.errors import ValidationError

DEFAULT_ALPHA = 1.0

Distribution = namedtuple("Distribution", [
    "position", "context", "probabilities", "value", "confidence", "total",
])


def smoothed(counts, alpha):
    """Add-alpha smoothing of a count vector (or of each row of a matrix)."""
    counts = np.asarray(counts, dtype=np.float64)
    n_symbols = counts.shape[-1]
    totals = counts.sum(axis=-1, keepdims=True)
    return (counts + alpha) / (totals + alpha * n_symbols)


def _stationary_distribution(transition_matrix, n_iter=200):
    """Stationary distribution of a row-stochastic matrix by power iteration."""
    n = transition_matrix.shape[0]
    pi = np.ones(n) / n

    for _ in range(n_iter):
        pi_new = pi @ transition_matrix
        pi_new /= pi_new.sum()
        if np.allclose(pi, pi_new, atol=1e-12):
            pi = pi_new
            break
        pi = pi_new

    return pi


class _TransitionView:
    """Read side shared by the live model and its snapshots."""

    def __init__(self, game, counts, first_counts, history, alpha, last_index,
                 first_index):
        self.game = game
        self._counts = counts
        self._first_counts = first_counts
        self.history = history
        self.alpha = alpha
        self.last_index = last_index
        self.first_index = first_index

    @property
    def index(self):
        return self.last_index

    def _check_position(self, position):
        if not isinstance(position, (int, np.integer)) or not 0 <= position < self.game.length:
            raise ValidationError(
                f"Position must be in 0..{self.game.length - 1}, got {position!r}"
            )
        return int(position)

    def context(self, position):
        """(s[t-1], s[t]) at a position, or None before two observations."""
        h = self.history[self._check_position(position)]
        return h if len(h) == 2 else None

    def predict(self, position):
        position = self._check_position(position)
        ctx = self.context(position)
        if ctx is None:
            row = np.zeros(self.game.alphabet, dtype=np.int64)
        else:
            row = self._counts[position, ctx[0], ctx[1]]
        probs = smoothed(row, self.alpha)
        value = int(np.argmax(probs))
        return Distribution(
            position=position,
            context=ctx,
            probabilities=probs,
            value=value,
            confidence=float(probs[value]),
            total=int(row.sum()),
        )

    def predict_all(self):
        return [self.predict(p) for p in range(self.game.length)]

    def predict_partial(self, k):
        """
        Commit only to the k most confident positions.

        Returns {position: Distribution}; positions not in the dict are
        deliberately left unpredicted. Equal confidence goes to the lower
        position.
        """
        if not 0 <= k <= self.game.length:
            raise ValidationError(f"k must be in 0..{self.game.length}, got {k}")
        dists = self.predict_all()
        chosen = sorted(dists, key=lambda d: (-d.confidence, d.position))[:k]
        return {d.position: d for d in sorted(chosen, key=lambda d: d.position)}

    def first_order(self, position):
        """Smoothed P(next | last symbol) at a position."""
        position = self._check_position(position)
        h = self.history[position]
        if not h:
            row = np.zeros(self.game.alphabet, dtype=np.int64)
            ctx = None
        else:
            row = self._first_counts[position, h[-1]]
            ctx = (h[-1],)
        probs = smoothed(row, self.alpha)
        value = int(np.argmax(probs))
        return Distribution(position, ctx, probs, value, float(probs[value]), int(row.sum()))

    def stationary(self, position):
        """Long-run symbol frequencies of the smoothed first-order chain."""
        position = self._check_position(position)
        matrix = smoothed(self._first_counts[position], self.alpha)
        return _stationary_distribution(matrix)

    def transition_counts(self, position):
        """Copy of the order-2 count table, shape (A, A, A)."""
        return self._counts[self._check_position(position)].copy()


class TransitionSnapshot(_TransitionView):
    def __repr__(self):
        return f"TransitionSnapshot(index={self.last_index})"


class TransitionModel(_TransitionView):
    """Single-writer order-2 transition tables, one per position."""

    def __init__(self, game=None, alpha=DEFAULT_ALPHA, start_index=None):
        game = game or Game()
        if not alpha > 0:
            raise ValidationError(f"Smoothing alpha must be positive, got {alpha}")
        L, A = game.length, game.alphabet
        super().__init__(
            game,
            np.zeros((L, A, A, A), dtype=np.int64),
            np.zeros((L, A, A), dtype=np.int64),
            tuple(() for _ in range(L)),
            float(alpha),
            None,
            start_index,
        )
        self._shared = False

    def __repr__(self):
        return f"TransitionModel(index={self.last_index}, alpha={self.alpha})"

    def apply(self, draw):
        """Record one draw's per-position transitions."""
        digits = self.game.validate_digits(draw.digits)
        index = int(draw.index)
        check_next_index(index, self.last_index, self.first_index)

        if self._shared:
            self._counts = self._counts.copy()
            self._first_counts = self._first_counts.copy()
            self._shared = False

        history = []
        for p, v in enumerate(digits):
            h = self.history[p]
            if len(h) == 2:
                self._counts[p, h[0], h[1], v] += 1
            if h:
                self._first_counts[p, h[-1], v] += 1
            history.append((h + (v,))[-2:])
        self.history = tuple(history)

        if self.first_index is None:
            self.first_index = index
        self.last_index = index

    def apply_all(self, draws):
        for draw in draws:
            self.apply(draw)

    def snapshot(self):
        self._shared = True
        return TransitionSnapshot(self.game, self._counts, self._first_counts, self.history,
                                  self.alpha, self.last_index, self.first_index)

    def reset(self, start_index=None):
        L, A = self.game.length, self.game.alphabet
        self._counts = np.zeros((L, A, A, A), dtype=np.int64)
        self._first_counts = np.zeros((L, A, A), dtype=np.int64)
        self._shared = False
        self.history = tuple(() for _ in range(L))
        self.last_index = None
        self.first_index = start_index
