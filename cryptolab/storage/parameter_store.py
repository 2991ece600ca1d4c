"""
Append-only parameter store.

Each optimization result is one JSON line:
    {"symbol": ..., "strategy_name": ..., "parameters": {...},
     "fitness": ..., "created_at": ...}

Records are never updated; the latest line for a symbol wins.
Live trading reloads parameters from here by symbol.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional
import structlog

from cryptolab.errors import ConfigurationError
from cryptolab.models import StrategyParameters

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ParameterRecord:
    """Optimized parameters for one symbol."""
    symbol: str
    strategy_name: str
    parameters: StrategyParameters
    fitness: Optional[float] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "strategy_name": self.strategy_name,
            "parameters": self.parameters.to_dict(),
            "fitness": self.fitness,
            "created_at": self.created_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ParameterRecord":
        return cls(
            symbol=d["symbol"],
            strategy_name=d["strategy_name"],
            parameters=StrategyParameters.from_dict(d["parameters"]),
            fitness=d.get("fitness"),
            created_at=datetime.fromisoformat(d["created_at"]),
        )


class JsonlParameterStore:
    """
    JSONL file of parameter records.

    Writes are serialized with a lock so concurrent symbol optimizations
    never interleave lines.

    Args:
        path: JSONL file (created on first write)
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = Lock()

        logger.info("parameter_store_initialized", path=str(self.path))

    def save(self, record: ParameterRecord) -> None:
        """Append a record."""
        line = record.to_json() + "\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with open(self.path, "a") as f:
                    f.write(line)
            except OSError as e:
                logger.error("parameter_store_write_error", path=str(self.path), error=str(e))
                raise

        logger.info(
            "parameters_saved",
            symbol=record.symbol,
            strategy=record.strategy_name,
            fitness=record.fitness,
        )

    def read_all(self) -> list[ParameterRecord]:
        """Every readable record in file order; corrupt lines are skipped."""
        records = []

        if not self.path.exists():
            return records

        with open(self.path, "r") as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(ParameterRecord.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, ValueError, ConfigurationError) as e:
                    logger.warning(
                        "invalid_parameter_record",
                        path=str(self.path),
                        line=number,
                        error=str(e),
                    )

        return records

    def load_latest(self, symbol: str) -> Optional[ParameterRecord]:
        """Most recently appended record for `symbol`, or None."""
        latest = None
        for record in self.read_all():
            if record.symbol == symbol:
                latest = record
        return latest
