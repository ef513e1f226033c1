"""
Command line entry point.

    python -m metaforecast train --series corpus.csv --metadata meta.csv --output runs/m4
    python -m metaforecast forecast --model-dir runs/m4 --series new.csv --horizon 6 --output fc.csv
"""

import argparse
import logging
from functools import partial
from pathlib import Path

import pandas as pd

from metaforecast.models.selector import ModelSelector
from metaforecast.models.weighter import ModelWeighter
from metaforecast.pipeline import MetaForecastPipeline
from metaforecast.utils.config_manager import load_pipeline_config
from metaforecast.utils.logging_config import setup_logging
from metaforecast.utils.parallel import BatchProcessor

logger = logging.getLogger(__name__)


def _forecast_frame(series, method, horizon: int) -> pd.DataFrame:
    """Forecast one series with a fitted selector or weighter as a long table."""
    if isinstance(method, ModelSelector):
        model, forecast = method.select_and_forecast(series, horizon)
        label = model.value
    else:
        forecast, weights = method.forecast(series, horizon)
        label = ",".join(f"{m}={w:.3f}" for m, w in weights.to_dict().items())
    frame = pd.DataFrame({
        "series_id": series.series_id,
        "step": range(1, horizon + 1),
        "mean": forecast.mean,
        "model": label,
    })
    if forecast.has_intervals:
        frame["lower"] = forecast.lower
        frame["upper"] = forecast.upper
    return frame


def train(args) -> int:
    config = load_pipeline_config(args.config)
    setup_logging(config["logging"]["level"], config["logging"]["log_dir"])

    pipeline = MetaForecastPipeline(config)
    corpus = pipeline.load_corpus(args.series, args.metadata, default_period=args.period)
    result = pipeline.run(corpus)
    result.save(args.output)

    print(f"[ok] {len(result.examples)} examples, {len(result.failures)} failures -> {args.output}")
    return 0


def forecast(args) -> int:
    config = load_pipeline_config(args.config)
    setup_logging(config["logging"]["level"], config["logging"]["log_dir"])

    model_dir = Path(args.model_dir)
    if args.method == "fforms":
        method = ModelSelector.load(model_dir / "selector")
    else:
        method = ModelWeighter.load(model_dir / "weighter")

    corpus = MetaForecastPipeline(config).load_corpus(args.series, args.metadata, default_period=args.period)
    worker = partial(_forecast_frame, method=method, horizon=args.horizon)
    result = BatchProcessor(n_workers=config["batch"].get("n_workers", 1)).map(worker, corpus)

    frames = list(result.successes.values())
    table = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
    table.to_csv(args.output, index=False)

    print(f"[ok] {result.n_success} forecasts, {result.n_failed} failures -> {args.output}")
    for ctx in result.failures.values():
        print(f"  {ctx.summary()}")
    return 0 if result.n_success else 1


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="metaforecast")
    ap.add_argument("--config", default=None, help="YAML/JSON file merged over the defaults")
    sub = ap.add_subparsers(dest="command", required=True)

    tr = sub.add_parser("train", help="label a corpus and train the selector and weighter")
    tr.add_argument("--series", required=True)
    tr.add_argument("--metadata", default=None)
    tr.add_argument("--period", type=int, default=1)
    tr.add_argument("--output", required=True)
    tr.set_defaults(func=train)

    fc = sub.add_parser("forecast", help="forecast new series with a trained run")
    fc.add_argument("--model-dir", required=True)
    fc.add_argument("--series", required=True)
    fc.add_argument("--metadata", default=None)
    fc.add_argument("--period", type=int, default=1)
    fc.add_argument("--horizon", type=int, required=True)
    fc.add_argument("--method", choices=["fforma", "fforms"], default="fforma")
    fc.add_argument("--output", required=True)
    fc.set_defaults(func=forecast)

    args = ap.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
