#!/usr/bin/env python3
"""
Walk-forward backtest over the draw history CSV (synthetic history when the
CSV is missing). Tests the last `n_test` draws and saves per-draw records.

Usage: python scripts/run_backtest.py [draws.csv] [n_test] [top_k]
"""
import os
import signal
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pick3.backtester import BacktestEngine, CancelToken, print_summary
from pick3.draws import CSV_PATH, load_draws_csv
from pick3.scoring import ScoringWeights
from pick3.synthetic import generate_synthetic_draws


def main():
    path = sys.argv[1] if len(sys.argv) > 1 else CSV_PATH
    n_test = int(sys.argv[2]) if len(sys.argv) > 2 else 100
    top_k = int(sys.argv[3]) if len(sys.argv) > 3 else 20

    if os.path.exists(path):
        store = load_draws_csv(path)
    else:
        print(f"No draw history at {path}; using 400 synthetic draws")
        store = generate_synthetic_draws(400)

    last = store[-1].index
    start = max(store.first_index, last - n_test + 1)

    def progress(done, total):
        print(f"  [Backtest] {done}/{total} steps")

    engine = BacktestEngine(weights=ScoringWeights.from_file(), k=top_k,
                            progress_every=25, verbose=True)
    # Ctrl-C stops the replay between steps instead of unwinding it
    cancel = CancelToken()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.cancel())
    try:
        result = engine.run(store, window=(start, last), cancel=cancel, progress=progress)
    finally:
        signal.signal(signal.SIGINT, previous)

    if result.error and result.error["kind"] == "Cancelled":
        print_summary(result.summary)
        print(f"Backtest interrupted after {len(result.records)} steps; "
              f"resume from draw {result.next_index}")
    elif result.error:
        print(f"Backtest aborted at draw {result.error['index']}: "
              f"{result.error['kind']}: {result.error['message']}")
    engine.save_results()


if __name__ == "__main__":
    main()
