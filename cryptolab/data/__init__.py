"""
Historical data access.

Bars are read once, before optimization starts; nothing here streams.
"""

from cryptolab.data.csv_loader import CsvHistoricalDataService

__all__ = ["CsvHistoricalDataService"]
