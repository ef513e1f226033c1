"""Tests for TimeSeries and SeriesLoader."""

import numpy as np
import pandas as pd
import pytest

from metaforecast.data.loaders import SeriesLoader
from metaforecast.data.structs import TimeSeries


def test_timeseries_split():
    series = TimeSeries(values=np.arange(10.0), period=4, horizon=3, series_id="a")
    np.testing.assert_array_equal(series.train, np.arange(7.0))
    np.testing.assert_array_equal(series.test, [7.0, 8.0, 9.0])
    assert len(series) == 10


def test_timeseries_without_horizon_has_empty_test():
    series = TimeSeries(values=[1.0, 2.0, 3.0])
    assert len(series.test) == 0
    np.testing.assert_array_equal(series.train, [1.0, 2.0, 3.0])


def test_timeseries_values_are_read_only():
    source = np.arange(5.0)
    series = TimeSeries(values=source)
    source[0] = 99.0
    assert series.values[0] == 0.0
    with pytest.raises(ValueError):
        series.values[0] = 1.0


@pytest.mark.parametrize("period", [0, -1, 1.5, True])
def test_timeseries_rejects_bad_period(period):
    with pytest.raises(ValueError):
        TimeSeries(values=np.arange(10.0), period=period)


@pytest.mark.parametrize("horizon", [0, 10, 11])
def test_timeseries_rejects_bad_horizon(horizon):
    with pytest.raises(ValueError):
        TimeSeries(values=np.arange(10.0), horizon=horizon)


def test_timeseries_rejects_2d_values():
    with pytest.raises(ValueError):
        TimeSeries(values=np.ones((3, 2)))


def test_training_series_drops_test_segment():
    series = TimeSeries(values=np.arange(10.0), period=2, horizon=4, series_id="x")
    train = series.training_series()
    assert len(train) == 6
    assert train.horizon is None
    assert train.period == 2
    assert train.series_id == "x"


@pytest.fixture
def long_table():
    return pd.DataFrame({
        "series_id": ["a"] * 5 + ["b"] * 4,
        "t": [4, 3, 2, 1, 0, 0, 1, 2, 3],
        "value": [5.0, 4.0, 3.0, 2.0, 1.0, 10.0, 11.0, 12.0, 13.0],
    })


def test_loader_from_frame_with_metadata_mapping(long_table):
    loader = SeriesLoader(order_col="t")
    metadata = {"a": {"period": 2, "horizon": 1, "category": "demo"}, "b": {"period": 1}}
    series = list(loader.from_frame(long_table, metadata))

    assert [s.series_id for s in series] == ["a", "b"]
    np.testing.assert_array_equal(series[0].values, [1.0, 2.0, 3.0, 4.0, 5.0])
    assert series[0].period == 2
    assert series[0].horizon == 1
    assert series[0].metadata == {"category": "demo"}
    assert series[1].horizon is None


def test_loader_reads_period_and_horizon_columns(long_table):
    table = long_table.assign(period=[2] * 5 + [1] * 4, horizon=[2] * 5 + [np.nan] * 4)
    series = list(SeriesLoader(order_col="t").from_frame(table))
    assert series[0].period == 2
    assert series[0].horizon == 2
    assert series[1].horizon is None


def test_loader_metadata_dataframe(long_table):
    meta = pd.DataFrame({"series_id": ["a", "b"], "period": [2, 1], "horizon": [1, 1]})
    series = list(SeriesLoader().from_frame(long_table, meta))
    assert [s.horizon for s in series] == [1, 1]


def test_loader_validation_reports_missing_columns():
    result = SeriesLoader().validate(pd.DataFrame({"series_id": ["a"]}))
    assert not result.is_valid
    assert any("value" in e for e in result.errors)

    with pytest.raises(ValueError, match="validation failed"):
        list(SeriesLoader().from_frame(pd.DataFrame({"series_id": ["a"]})))


def test_loader_load_csv_and_parquet(tmp_path, long_table):
    csv_path = tmp_path / "series.csv"
    long_table.to_csv(csv_path, index=False)
    parquet_path = tmp_path / "series.parquet"
    long_table.to_parquet(parquet_path, index=False)

    loader = SeriesLoader(order_col="t", default_period=1)
    from_csv = loader.load(csv_path)
    from_parquet = loader.load(parquet_path)

    assert len(from_csv) == len(from_parquet) == 2
    np.testing.assert_array_equal(from_csv[1].values, from_parquet[1].values)


def test_loader_rejects_unknown_format(tmp_path):
    path = tmp_path / "series.txt"
    path.write_text("x")
    with pytest.raises(ValueError, match="Unsupported"):
        SeriesLoader().load(path)

    with pytest.raises(FileNotFoundError):
        SeriesLoader().load(tmp_path / "missing.csv")
