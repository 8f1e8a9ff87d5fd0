#!/usr/bin/env python3
"""
Standalone prediction script.
Ranks next-draw candidates from the draw history CSV (synthetic history
when the CSV is missing) and prints column and skip diagnostics.

Usage: python scripts/run_prediction.py [draws.csv] [top_k]
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pick3.draws import CSV_PATH, load_draws_csv
from pick3.features import FeatureKind
from pick3.predictor import Pick3Engine
from pick3.scoring import ScoringWeights
from pick3.synthetic import generate_synthetic_draws


def main():
    path = sys.argv[1] if len(sys.argv) > 1 else CSV_PATH
    top_k = int(sys.argv[2]) if len(sys.argv) > 2 else 20

    print("Loading data...")
    if os.path.exists(path):
        store = load_draws_csv(path)
    else:
        print(f"No draw history at {path}; using 500 synthetic draws")
        store = generate_synthetic_draws(500)
    print(f"Loaded {len(store)} draws")

    weights = ScoringWeights.from_file()
    engine = Pick3Engine(store)

    print(f"\n{'='*70}")
    print("COLUMN TRANSITION MODEL")
    print(f"{'='*70}")
    for p in range(engine.game.length):
        dist = engine.get_column_prediction(p)
        print(f"  Position {p}: context {dist.context} -> {dist.value} "
              f"(confidence {dist.confidence:.3f}, {dist.total} observations)")
    partial = engine.get_partial_prediction(2)
    print(f"  High-confidence partial: "
          + ", ".join(f"pos {p}={d.value}" for p, d in partial.items()))

    print(f"\n{'='*70}")
    print("MOST OVERDUE")
    print(f"{'='*70}")
    for kind in (FeatureKind.DIGIT, FeatureKind.POSITION_PAIR, FeatureKind.BOX):
        infos = engine.skip_tracker.overdue(kind, top_n=5)
        row = ", ".join(f"{i.key.label()} ({i.current_skip}, {i.lateness_tier})" for i in infos)
        print(f"  {kind}: {row}")

    print(f"\n{'='*70}")
    print(f"TOP {top_k} PREDICTIONS")
    print(f"{'='*70}")
    print(f"  Weights:\n{weights.summary()}")
    top = engine.get_top_predictions(k=top_k, weights=weights)
    print(f"  Scored {top.scored} candidates ({top.rejected} filtered out)")
    if top.truncated:
        print(f"  Candidate bound reached: {top.unexamined} combinations from "
              f"{''.join(map(str, top.first_dropped))} on were never scored")
    for i, c in enumerate(top.candidates, 1):
        stats = engine.describe(c)
        print(f"  #{i:2d}. {c.straight}  score {c.composite:6.2f}  "
              f"sum {stats['sum']:2d}  {stats['type']:<6}  {stats['odd_even']}/{stats['high_low']}")

    print(f"\n{'='*70}")
    print("DISCLAIMER: Pick 3 is a random lottery. No model guarantees wins.")
    print(f"{'='*70}")


if __name__ == "__main__":
    main()
