"""
Candidate Generation for Pick 3

Two deterministic strategies:
- full:   every straight in lexicographic order
- column: the product of each position's top-m values from the transition
          model, ordered by joint probability (desc) then digits (asc)

Filters are applied during enumeration. max_candidates bounds how many
candidates one call may emit; hitting it stops enumeration, issues a
CapacityExceeded warning and records where the cut happened. Everything
from `first_dropped` onward, in the strategy's order, was not emitted.
"""
import warnings
from collections import namedtuple
from itertools import product

import numpy as np

from pick3.draws import Game
from pick3.errors import CapacityExceeded, ValidationError
from pick3.filters import CandidateFilters, run_all_filters

STRATEGY_FULL = "full"
STRATEGY_COLUMN = "column"
STRATEGIES = (STRATEGY_FULL, STRATEGY_COLUMN)

DEFAULT_COLUMN_TOP = 3

GenerationResult = namedtuple("GenerationResult", [
    "candidates", "truncated", "first_dropped", "unexamined", "rejected", "strategy",
])


class CandidateGenerator:
    def __init__(self, game=None, filters=None, max_candidates=None,
                 strategy=STRATEGY_FULL, column_top=DEFAULT_COLUMN_TOP, verbose=False):
        self.game = game or Game()
        if strategy not in STRATEGIES:
            raise ValidationError(f"Unknown strategy {strategy!r}; expected one of {STRATEGIES}")
        if max_candidates is not None and int(max_candidates) < 1:
            raise ValidationError(f"max_candidates must be positive, got {max_candidates}")
        if not 1 <= int(column_top) <= self.game.alphabet:
            raise ValidationError(f"column_top must be in 1..{self.game.alphabet}, got {column_top}")
        self.filters = CandidateFilters.coerce(filters)
        self.max_candidates = None if max_candidates is None else int(max_candidates)
        self.strategy = strategy
        self.column_top = int(column_top)
        self.verbose = verbose

    def __repr__(self):
        return (f"CandidateGenerator(strategy={self.strategy!r}, "
                f"max_candidates={self.max_candidates}, filters={self.filters!r})")

    def _column_order(self, transition_state):
        tops = []
        for dist in transition_state.predict_all():
            order = sorted(range(self.game.alphabet),
                           key=lambda v: (-dist.probabilities[v], v))
            tops.append([(v, dist.probabilities[v]) for v in order[:self.column_top]])
        combos = []
        for picks in product(*tops):
            digits = tuple(v for v, _ in picks)
            joint = float(np.prod([p for _, p in picks]))
            combos.append((joint, digits))
        combos.sort(key=lambda x: (-round(x[0], 12), x[1]))
        return [digits for _, digits in combos], len(combos)

    def _ordered(self, transition_state):
        if self.strategy == STRATEGY_COLUMN:
            if transition_state is None:
                raise ValidationError("The column strategy needs a transition state")
            return self._column_order(transition_state)
        return product(range(self.game.alphabet), repeat=self.game.length), self.game.space_size

    def generate(self, skip_state=None, transition_state=None):
        """Deterministic candidate list for the given (read-only) state."""
        ordered, size = self._ordered(transition_state)
        check = not self.filters.is_empty

        candidates = []
        rejected = 0
        examined = 0
        first_dropped = None
        for digits in ordered:
            digits = tuple(digits)
            if check and not run_all_filters(digits, self.filters, skip_state)["all_passed"]:
                examined += 1
                rejected += 1
                continue
            if self.max_candidates is not None and len(candidates) >= self.max_candidates:
                first_dropped = digits
                break
            examined += 1
            candidates.append(digits)

        truncated = first_dropped is not None
        unexamined = size - examined if truncated else 0
        if truncated:
            warnings.warn(
                f"Candidate bound {self.max_candidates} reached ({self.strategy} strategy); "
                f"dropped {''.join(map(str, first_dropped))} and the {unexamined - 1} "
                f"combinations after it",
                CapacityExceeded,
                stacklevel=2,
            )
        if self.verbose:
            print(f"  [Generator] {len(candidates)} candidates ({self.strategy}), "
                  f"{rejected} filtered out" + (", truncated" if truncated else ""))
        return GenerationResult(candidates, truncated, first_dropped, unexamined,
                                rejected, self.strategy)
