"""
Settings loading.

Settings live in a YAML file (config/settings.yaml by default).
String values may reference environment variables as ${VAR}; unknown
variables are left untouched. A missing file yields the defaults.
"""

import os
import re
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Optional
import structlog

import yaml

from cryptolab.errors import ConfigurationError

logger = structlog.get_logger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


@dataclass(frozen=True)
class BacktestConfig:
    """Simulation settings."""
    initial_capital: float = 1000.0
    adjust_time_frame: bool = True
    lookback_window: Optional[int] = None


@dataclass(frozen=True)
class GeneticConfig:
    """
    Genetic search settings.

    Args:
        population_size: Individuals per generation
        tournament_size: Contestants per tournament selection
        crossover_probability: Chance a selected pair is recombined
        mutation_probability: Per-gene chance of a fresh random value
        elite_count: Best individuals copied unchanged into the next generation
        max_generations: Hard generation limit
        steady_generations: Stop after this many generations without improvement
        initial_capital: Capital each fitness simulation starts with
        seed: Random seed (None = nondeterministic)
        max_workers: Threads used to evaluate a generation (1 = sequential)
    """
    population_size: int = 50
    tournament_size: int = 5
    crossover_probability: float = 0.7
    mutation_probability: float = 0.2
    elite_count: int = 2
    max_generations: int = 15
    steady_generations: int = 10
    initial_capital: float = 1000.0
    seed: Optional[int] = None
    max_workers: int = 1

    def __post_init__(self):
        if self.population_size < 2:
            raise ConfigurationError("population_size must be at least 2")
        if not 1 <= self.tournament_size <= self.population_size:
            raise ConfigurationError("tournament_size must be within [1, population_size]")
        if not 0 <= self.elite_count < self.population_size:
            raise ConfigurationError("elite_count must be within [0, population_size)")
        for name in ("crossover_probability", "mutation_probability"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        if self.max_generations < 1 or self.steady_generations < 1:
            raise ConfigurationError("generation limits must be positive")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be positive")


@dataclass(frozen=True)
class WalkForwardConfig:
    """Chronological train/test split settings."""
    train_fraction: float = 0.7
    min_oos_sharpe: float = 0.0
    max_oos_drawdown_percent: float = 30.0

    def __post_init__(self):
        if not 0.0 < self.train_fraction < 1.0:
            raise ConfigurationError(
                f"train_fraction must be within (0, 1), got {self.train_fraction}"
            )


@dataclass(frozen=True)
class Settings:
    """Top-level settings for the optimization drivers."""
    data_dir: str = "data"
    parameter_store_path: str = "data/parameters.jsonl"
    log_level: str = "INFO"
    symbols: tuple[str, ...] = ("XBTUSD",)
    period: int = 60
    strategy: str = "multi_strategy"
    candidate_strategies: tuple[str, ...] = ()
    use_regimes: bool = True
    max_symbol_workers: int = 1
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    genetic: GeneticConfig = field(default_factory=GeneticConfig)
    walk_forward: WalkForwardConfig = field(default_factory=WalkForwardConfig)
    regime: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_SECTIONS = {
    "backtest": BacktestConfig,
    "genetic": GeneticConfig,
    "walk_forward": WalkForwardConfig,
}


def expand_env_vars(value: Any) -> Any:
    """Expand ${VAR} references in strings, recursing into lists and dicts."""
    if isinstance(value, str) and "${" in value:
        def replace_env(match):
            return os.environ.get(match.group(1), match.group(0))
        return _ENV_PATTERN.sub(replace_env, value)
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


def _build_section(cls, raw: Any, section: str):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{section}': {sorted(unknown)}")
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f"Invalid '{section}' section: {e}") from e


def settings_from_dict(raw: dict[str, Any]) -> Settings:
    """
    Build Settings from a parsed mapping.

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    raw = expand_env_vars(dict(raw or {}))

    known = {f.name for f in fields(Settings)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown settings keys: {sorted(unknown)}")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _SECTIONS:
            values[key] = _build_section(_SECTIONS[key], value, key)
        elif key in ("symbols", "candidate_strategies"):
            if isinstance(value, str):
                value = [s.strip() for s in value.split(",") if s.strip()]
            values[key] = tuple(value or ())
        elif key == "regime":
            if value is not None and not isinstance(value, dict):
                raise ConfigurationError("Section 'regime' must be a mapping")
            values[key] = dict(value or {})
        elif key in ("period", "max_symbol_workers"):
            values[key] = int(value)
        else:
            values[key] = value

    return Settings(**values)


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """Load settings from YAML, falling back to defaults if the file is missing."""
    config_path = Path(path)

    if not config_path.exists():
        logger.warning("config_not_found_using_defaults", path=str(path))
        return Settings()

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    settings = settings_from_dict(raw)
    logger.info("config_loaded", path=str(path), symbols=list(settings.symbols))
    return settings
