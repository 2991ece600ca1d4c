"""
CSV historical data.

Reads Kraken OHLCVT exports: one candle per line, no header,
`time,open,high,low,close,volume,trades` with `time` in epoch seconds.
Files are named `{symbol}_{period}.csv` where period is in minutes.
"""

from pathlib import Path
from typing import Iterable
import structlog

import pandas as pd

from cryptolab.errors import DataError
from cryptolab.models import normalize_bars

logger = structlog.get_logger(__name__)

CSV_COLUMNS = ["time", "open", "high", "low", "close", "volume", "trades"]
_NUMERIC_COLUMNS = ["open", "high", "low", "close", "volume"]


class CsvHistoricalDataService:
    """
    File-backed historical data.

    Args:
        data_dir: Directory holding the CSV files
    """

    def __init__(self, data_dir: str = "data"):
        self.data_dir = Path(data_dir)

        logger.info("csv_data_service_initialized", data_dir=str(self.data_dir))

    def path_for(self, symbol: str, period: int) -> Path:
        return self.data_dir / f"{symbol}_{period}.csv"

    def query_historical_data(self, symbols: Iterable[str], period: int) -> dict[str, pd.DataFrame]:
        """
        Load bars for every symbol.

        Args:
            symbols: Symbols to load (e.g. ["XBTUSD", "ETHUSD"])
            period: Candle period in minutes

        Returns:
            Symbol -> bar DataFrame sorted by timestamp

        Raises:
            DataError: If a file is missing, unreadable or holds no valid rows
        """
        return {symbol: self.read_bars(symbol, period) for symbol in symbols}

    def read_bars(self, symbol: str, period: int) -> pd.DataFrame:
        path = self.path_for(symbol, period)
        if not path.exists():
            raise DataError(f"No historical data for {symbol} at {period}m: {path}")

        skipped: list[list[str]] = []

        def skip_line(fields: list[str]):
            skipped.append(fields)
            return None

        try:
            raw = pd.read_csv(
                path,
                header=None,
                names=CSV_COLUMNS,
                dtype=str,
                engine="python",
                on_bad_lines=skip_line,
                skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            raw = pd.DataFrame(columns=CSV_COLUMNS)
        except (OSError, pd.errors.ParserError) as e:
            raise DataError(f"Could not read {path}: {e}") from e

        numeric = raw[["time"] + _NUMERIC_COLUMNS].apply(pd.to_numeric, errors="coerce")
        valid = numeric.notna().all(axis=1)
        malformed = len(skipped) + int((~valid).sum())
        if malformed:
            logger.warning(
                "invalid_csv_rows_skipped",
                symbol=symbol,
                path=str(path),
                count=malformed,
            )

        numeric = numeric[valid]
        if numeric.empty:
            raise DataError(f"No valid rows in {path}")

        bars = pd.DataFrame({
            "timestamp": pd.to_datetime(numeric["time"].astype("int64"), unit="s", utc=True),
            **{column: numeric[column].astype(float) for column in _NUMERIC_COLUMNS},
        })
        bars = normalize_bars(bars)

        logger.info(
            "historical_data_loaded",
            symbol=symbol,
            period=period,
            bars_count=len(bars),
            start=str(bars["timestamp"].iloc[0]),
            end=str(bars["timestamp"].iloc[-1]),
        )
        return bars
