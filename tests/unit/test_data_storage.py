"""
Tests for CSV historical data and the parameter store.
"""

import json
from datetime import datetime, timezone

import pandas as pd
import pytest

from cryptolab.data.csv_loader import CsvHistoricalDataService
from cryptolab.errors import DataError
from cryptolab.models import BAR_COLUMNS, StrategyParameters
from cryptolab.storage.parameter_store import JsonlParameterStore, ParameterRecord

# 2024-01-01 00:00 UTC
T0 = 1704067200


def write_csv(directory, name, lines):
    path = directory / name
    path.write_text("\n".join(lines) + "\n")
    return path


class TestCsvHistoricalDataService:
    """Kraken OHLCVT exports."""

    def test_reads_bars(self, temp_dir):
        write_csv(temp_dir, "XBTUSD_60.csv", [
            f"{T0},100,101,99,100.5,12.5,30",
            f"{T0 + 3600},100.5,102,100,101.5,8.0,12",
        ])

        bars = CsvHistoricalDataService(str(temp_dir)).read_bars("XBTUSD", 60)

        assert list(bars.columns) == BAR_COLUMNS
        assert len(bars) == 2
        assert bars["timestamp"].iloc[0] == pd.Timestamp("2024-01-01", tz="UTC")
        assert bars["close"].tolist() == [100.5, 101.5]
        assert bars["volume"].tolist() == [12.5, 8.0]

    def test_rows_are_sorted(self, temp_dir):
        write_csv(temp_dir, "XBTUSD_60.csv", [
            f"{T0 + 3600},2,2,2,2,1,1",
            f"{T0},1,1,1,1,1,1",
        ])

        bars = CsvHistoricalDataService(str(temp_dir)).read_bars("XBTUSD", 60)

        assert bars["close"].tolist() == [1.0, 2.0]
        assert bars.index.tolist() == [0, 1]

    def test_malformed_rows_are_skipped(self, temp_dir):
        write_csv(temp_dir, "ETHUSD_15.csv", [
            f"{T0},10,11,9,10.5,1,1",
            "not-a-time,10,11,9,10.5,1,1",
            f"{T0 + 900},10",
            f"{T0 + 1800},10.5,12,10,11.5,2,3",
        ])

        bars = CsvHistoricalDataService(str(temp_dir)).read_bars("ETHUSD", 15)

        assert bars["close"].tolist() == [10.5, 11.5]

    def test_missing_file(self, temp_dir):
        with pytest.raises(DataError):
            CsvHistoricalDataService(str(temp_dir)).read_bars("XBTUSD", 60)

    def test_no_valid_rows(self, temp_dir):
        write_csv(temp_dir, "XBTUSD_60.csv", ["garbage,row"])

        with pytest.raises(DataError):
            CsvHistoricalDataService(str(temp_dir)).read_bars("XBTUSD", 60)

    def test_query_many_symbols(self, temp_dir):
        for symbol in ("XBTUSD", "ETHUSD"):
            write_csv(temp_dir, f"{symbol}_60.csv", [f"{T0},1,1,1,1,1,1"])

        data = CsvHistoricalDataService(str(temp_dir)).query_historical_data(
            ["XBTUSD", "ETHUSD"], 60
        )

        assert set(data) == {"XBTUSD", "ETHUSD"}

    def test_path_naming(self, temp_dir):
        service = CsvHistoricalDataService(str(temp_dir))

        assert service.path_for("XBTUSD", 5) == temp_dir / "XBTUSD_5.csv"


class TestJsonlParameterStore:
    """Append-only parameter records."""

    def record(self, symbol, rsi_period, fitness=1.0):
        return ParameterRecord(
            symbol=symbol,
            strategy_name="moving_average_scalper",
            parameters=StrategyParameters(rsi_period=rsi_period),
            fitness=fitness,
        )

    def test_latest_record_wins(self, temp_dir):
        store = JsonlParameterStore(str(temp_dir / "parameters.jsonl"))
        store.save(self.record("XBTUSD", 10))
        store.save(self.record("ETHUSD", 11))
        store.save(self.record("XBTUSD", 12))

        assert store.load_latest("XBTUSD").parameters.rsi_period == 12
        assert store.load_latest("ETHUSD").parameters.rsi_period == 11
        assert store.load_latest("SOLUSD") is None
        assert len(store.read_all()) == 3

    def test_creates_parent_directory(self, temp_dir):
        path = temp_dir / "nested" / "parameters.jsonl"

        JsonlParameterStore(str(path)).save(self.record("XBTUSD", 10))

        assert path.exists()

    def test_one_json_object_per_line(self, temp_dir):
        path = temp_dir / "parameters.jsonl"
        JsonlParameterStore(str(path)).save(self.record("XBTUSD", 10, fitness=0.42))

        line = json.loads(path.read_text().strip())

        assert line["symbol"] == "XBTUSD"
        assert line["fitness"] == 0.42
        assert line["parameters"]["rsi_period"] == 10

    def test_corrupt_lines_are_skipped(self, temp_dir):
        path = temp_dir / "parameters.jsonl"
        store = JsonlParameterStore(str(path))
        store.save(self.record("XBTUSD", 10))
        with open(path, "a") as f:
            f.write("{not json\n")
            f.write(json.dumps({"symbol": "XBTUSD"}) + "\n")
        store.save(self.record("XBTUSD", 13))

        records = store.read_all()

        assert [r.parameters.rsi_period for r in records] == [10, 13]

    def test_missing_file_is_empty(self, temp_dir):
        assert JsonlParameterStore(str(temp_dir / "none.jsonl")).read_all() == []

    def test_record_round_trip(self):
        created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        record = ParameterRecord(
            symbol="XBTUSD",
            strategy_name="buy_low_sell_high",
            parameters=StrategyParameters(),
            fitness=None,
            created_at=created,
        )

        assert ParameterRecord.from_dict(record.to_dict()) == record
