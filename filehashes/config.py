"""filehashes configuration file (TOML) parsing and validation."""
from __future__ import annotations
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from filehashes.algorithms import AlgorithmRegistry, DEFAULT_REGISTRY
from filehashes.errors import ConfigError
from filehashes.limiter import DEFAULT_CONCURRENCY
from filehashes.task import DEFAULT_BUFFER_SIZE

DEFAULT_ALGORITHMS = ("md5", "sha1")
VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class EngineConfig:
    concurrency: int = DEFAULT_CONCURRENCY
    buffer_size: int = DEFAULT_BUFFER_SIZE
    queue_size: int = 0  # 0 = unbounded message stream
    default_algorithms: tuple[str, ...] = DEFAULT_ALGORITHMS

    def validate(self, registry: Optional[AlgorithmRegistry] = None) -> list[str]:
        registry = registry or DEFAULT_REGISTRY
        errors = []
        for name, minimum in (("concurrency", 1), ("buffer_size", 1), ("queue_size", 0)):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
                errors.append(f"engine.{name} must be an integer >= {minimum}, got {value!r}")
        if not self.default_algorithms:
            errors.append("engine.default_algorithms must not be empty")
        for alg in self.default_algorithms:
            if not registry.is_available(alg):
                errors.append(f"engine.default_algorithms: unknown algorithm '{alg}'")
        return errors


@dataclass
class LoggingConfig:
    log_dir: str = "logs"
    level: str = "INFO"
    jsonl: bool = False  # also append every message to a daily JSONL file

    @property
    def level_no(self) -> int:
        return getattr(logging, self.level.upper(), logging.INFO)

    def validate(self) -> list[str]:
        if self.level.upper() not in VALID_LEVELS:
            return [f"logging.level must be one of {sorted(VALID_LEVELS)}, got '{self.level}'"]
        return []


@dataclass
class HashConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self, registry: Optional[AlgorithmRegistry] = None) -> list[str]:
        return self.engine.validate(registry) + self.logging.validate()


def _parse_engine(raw: dict) -> EngineConfig:
    return EngineConfig(
        concurrency=raw.get("concurrency", DEFAULT_CONCURRENCY),
        buffer_size=raw.get("buffer_size", DEFAULT_BUFFER_SIZE),
        queue_size=raw.get("queue_size", 0),
        default_algorithms=tuple(raw.get("default_algorithms", DEFAULT_ALGORITHMS)),
    )


def _parse_logging(raw: dict) -> LoggingConfig:
    return LoggingConfig(
        log_dir=raw.get("log_dir", "logs"),
        level=raw.get("level", "INFO"),
        jsonl=raw.get("jsonl", False),
    )


def load_config(path: Path, registry: Optional[AlgorithmRegistry] = None) -> HashConfig:
    """Load and validate a filehashes TOML config file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"{path}: {e}") from e

    config = HashConfig(
        engine=_parse_engine(data.get("engine", {})),
        logging=_parse_logging(data.get("logging", {})),
    )
    errors = config.validate(registry)
    if errors:
        raise ConfigError("; ".join(errors))
    return config
