"""
Synthetic Pick 3 draw history for demos and tests.
"""
from datetime import date, timedelta

import numpy as np
import pandas as pd

from pick3.draws import Draw, DrawStore, Game


def generate_synthetic_draws(n, game=None, seed=42, start_index=0, weights=None):
    """
    Generate `n` seeded draws. Each position is sampled independently from
    `weights` (uniform over the alphabet when not given).
    """
    game = game or Game()
    rng = np.random.default_rng(seed)
    if weights is None:
        p = None
    else:
        p = np.asarray(weights, dtype=np.float64)
        p = p / p.sum()
    values = rng.choice(game.alphabet, size=(int(n), game.length), p=p)
    draws = [Draw(start_index + i, tuple(int(v) for v in row)) for i, row in enumerate(values)]
    return DrawStore(draws, game=game)


def synthetic_frame(n, game=None, seed=42, start_date=None):
    """Synthetic history as a DataFrame with one draw per day."""
    store = generate_synthetic_draws(n, game=game, seed=seed)
    df = store.to_frame()
    start_date = start_date or date(2020, 1, 1)
    df["date"] = pd.to_datetime([start_date + timedelta(days=i) for i in range(len(df))])
    df["is_synthetic"] = True
    return df
