"""
Game geometry and the read-only Draw Store.

A Game fixes the draw length L and alphabet size A (L=3, A=10 for Pick 3).
Draws are immutable (index, digits) tuples; a DrawStore holds an ordered,
gapless sequence of them and is the only thing the engine reads history from.
"""
import os
from collections import namedtuple
from itertools import product

import pandas as pd

from pick3.errors import SequencingError, ValidationError

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
CSV_PATH = os.path.join(DATA_DIR, "pick3_results.csv")

DEFAULT_LENGTH = 3
DEFAULT_ALPHABET = 10


class Draw(namedtuple("Draw", ["index", "digits"])):
    """One historical outcome: a sequence index plus an ordered digit tuple."""

    __slots__ = ()

    @property
    def straight(self):
        return "".join(str(d) for d in self.digits)

    @property
    def box(self):
        return "".join(str(d) for d in sorted(self.digits))

    def __str__(self):
        return f"#{self.index}:{self.straight}"


def check_next_index(index, last_index, first_index=None):
    """Raise SequencingError unless `index` directly follows `last_index`."""
    if last_index is not None:
        if index <= last_index:
            raise SequencingError(
                f"Draw {index} already applied (last applied {last_index})",
                index=index,
            )
        if index != last_index + 1:
            raise SequencingError(
                f"Gap in draw sequence: expected {last_index + 1}, got {index}",
                index=index,
            )
    elif first_index is not None and index != first_index:
        raise SequencingError(
            f"First draw must have index {first_index}, got {index}",
            index=index,
        )


class Game:
    """Length/alphabet of a digit game plus cached derived tables."""

    def __init__(self, length=DEFAULT_LENGTH, alphabet=DEFAULT_ALPHABET):
        if int(length) < 2:
            raise ValidationError(f"Draw length must be at least 2, got {length}")
        if int(alphabet) < 2:
            raise ValidationError(f"Alphabet size must be at least 2, got {alphabet}")
        self.length = int(length)
        self.alphabet = int(alphabet)
        self._space = None
        self._universe = None
        self._probabilities = None

    def __repr__(self):
        return f"Game(length={self.length}, alphabet={self.alphabet})"

    def __eq__(self, other):
        return (isinstance(other, Game)
                and other.length == self.length
                and other.alphabet == self.alphabet)

    def __hash__(self):
        return hash((self.length, self.alphabet))

    @property
    def space_size(self):
        return self.alphabet ** self.length

    @property
    def max_sum(self):
        return self.length * (self.alphabet - 1)

    def validate_digits(self, digits):
        """Return digits as a tuple of ints, or raise ValidationError."""
        try:
            digits = tuple(int(d) for d in digits)
        except (TypeError, ValueError):
            raise ValidationError(f"Draw digits must be integers, got {digits!r}")
        if len(digits) != self.length:
            raise ValidationError(
                f"Expected {self.length} digits, got {len(digits)}: {digits}"
            )
        for d in digits:
            if not 0 <= d < self.alphabet:
                raise ValidationError(
                    f"Digit {d} outside alphabet 0..{self.alphabet - 1}"
                )
        return digits

    def make_draw(self, index, digits):
        return Draw(int(index), self.validate_digits(digits))

    def parse(self, text, index=0):
        """Parse "012" (or "0-1-2", "0 1 2") into a Draw."""
        chars = [c for c in str(text) if c.isdigit()]
        if self.alphabet > 10:
            raise ValidationError("String parsing only supports single-digit alphabets")
        return self.make_draw(index, chars)

    def all_combinations(self):
        """Every straight combination in lexicographic order."""
        if self._space is None:
            self._space = tuple(product(range(self.alphabet), repeat=self.length))
        return self._space

    def feature_universe(self):
        """{FeatureKey: count of straights containing it}, built once per game."""
        if self._universe is None:
            from pick3.features import extract_features

            universe = {}
            for combo in self.all_combinations():
                for key in extract_features(combo, self):
                    universe[key] = universe.get(key, 0) + 1
            self._universe = universe
            total = float(self.space_size)
            self._probabilities = {k: c / total for k, c in universe.items()}
        return self._universe

    def probability(self, key):
        """Theoretical per-draw occurrence probability of a feature key."""
        self.feature_universe()
        return self._probabilities.get(key, 0.0)

    def is_known(self, key):
        return key in self.feature_universe()


class DrawStore:
    """
    Ordered, gapless, read-only sequence of draws.

    Indices must be consecutive; the first index may be any integer.
    """

    def __init__(self, draws, game=None):
        self.game = game or Game()
        draws = list(draws)
        for prev, cur in zip(draws, draws[1:]):
            if cur.index != prev.index + 1:
                raise SequencingError(
                    f"Draw store is not gapless: {prev.index} followed by {cur.index}",
                    index=cur.index,
                )
        self._draws = tuple(self.game.make_draw(d.index, d.digits) for d in draws)

    @classmethod
    def from_strings(cls, values, game=None, start_index=0):
        game = game or Game()
        return cls(
            [game.parse(v, index=start_index + i) for i, v in enumerate(values)],
            game=game,
        )

    @classmethod
    def from_dataframe(cls, df, game=None, start_index=0):
        """
        Build a store from a DataFrame with either a "draw" column of strings
        or digit columns d1..dL. Rows are taken in their current order.
        """
        game = game or Game()
        digit_cols = [f"d{i}" for i in range(1, game.length + 1)]
        if all(c in df.columns for c in digit_cols):
            rows = df[digit_cols].astype(int).values.tolist()
            draws = [game.make_draw(start_index + i, r) for i, r in enumerate(rows)]
        elif "draw" in df.columns:
            values = df["draw"].astype(str).str.zfill(game.length).tolist()
            draws = [game.parse(v, index=start_index + i) for i, v in enumerate(values)]
        else:
            raise ValidationError(
                f"Expected a 'draw' column or columns {digit_cols}, got {list(df.columns)}"
            )
        return cls(draws, game=game)

    def __len__(self):
        return len(self._draws)

    def __iter__(self):
        return iter(self._draws)

    def __getitem__(self, item):
        return self._draws[item]

    @property
    def first_index(self):
        return self._draws[0].index if self._draws else 0

    def position_of(self, index):
        """Offset into the store of a draw index."""
        pos = index - self.first_index
        if not 0 <= pos < len(self._draws):
            raise IndexError(f"Draw index {index} not in store")
        return pos

    def head(self, n):
        """The first n draws, as a new store."""
        return DrawStore(self._draws[:n], game=self.game)

    def to_frame(self):
        rows = []
        for d in self._draws:
            row = {"index": d.index, "draw": d.straight}
            for i, v in enumerate(d.digits, 1):
                row[f"d{i}"] = v
            rows.append(row)
        return pd.DataFrame(rows)


def load_draws_csv(path=CSV_PATH, game=None):
    """Read draws from CSV. Rows are sorted by a "date" column when present."""
    df = pd.read_csv(path, dtype={"draw": str})
    if "date" in df.columns:
        df["date"] = pd.to_datetime(df["date"])
        df = df.sort_values("date", kind="stable").reset_index(drop=True)
    return DrawStore.from_dataframe(df, game=game)
