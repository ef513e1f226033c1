"""Tests for the train/forecast command line."""

import pandas as pd
import pytest
import yaml

from metaforecast.__main__ import main


@pytest.fixture
def run_config(tmp_path, small_run):
    path = tmp_path / "run.yaml"
    small_run["logging"] = {"level": "WARNING", "log_dir": str(tmp_path / "logs")}
    path.write_text(yaml.safe_dump(small_run))
    return path


@pytest.fixture
def trained_dir(tmp_path, run_config, make_corpus, long_frame, restore_logging):
    series_path = tmp_path / "corpus.csv"
    long_frame(make_corpus(n_trend=5, n_seasonal=5, n_walk=2)).to_csv(series_path, index=False)

    output = tmp_path / "run"
    code = main(["--config", str(run_config), "train", "--series", str(series_path), "--output", str(output)])
    assert code == 0
    return output


def test_train_writes_artifacts(trained_dir, tmp_path):
    assert (trained_dir / "selector" / "selector.json").exists()
    assert (trained_dir / "weighter" / "weighter.json").exists()
    assert (trained_dir / "examples" / "examples.parquet").exists()
    assert (trained_dir / "failures.json").exists()
    assert (tmp_path / "logs" / "app.jsonl").exists()


@pytest.mark.parametrize("method", ["fforma", "fforms"])
def test_forecast_writes_table(trained_dir, tmp_path, run_config, make_corpus, long_frame, method):
    new = make_corpus(n_trend=1, n_seasonal=1, n_walk=0, seed=11)
    long_frame(new, with_horizon=False).to_csv(tmp_path / "new.csv", index=False)

    output = tmp_path / f"{method}.csv"
    code = main([
        "--config", str(run_config), "forecast",
        "--model-dir", str(trained_dir),
        "--series", str(tmp_path / "new.csv"),
        "--horizon", "4",
        "--method", method,
        "--output", str(output),
    ])

    assert code == 0
    table = pd.read_csv(output)
    assert set(table["series_id"]) == {"trend_0", "seasonal_0"}
    assert len(table) == 8
    assert list(table["step"][:4]) == [1, 2, 3, 4]
    assert {"mean", "model"} <= set(table.columns)


def test_missing_subcommand():
    with pytest.raises(SystemExit):
        main([])
