"""
Configuration loader for genstream.

Settings are pydantic models; the loader merges, lowest priority first:
- JSON, YAML, TOML and .env files
- Dict overrides
- GENSTREAM_SECTION__FIELD environment variables
and reports every invalid field in one ConfigurationError.
"""

import os
import json
import yaml
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("genstream.config")

ENV_PREFIX = "GENSTREAM_"
ENV_NESTING = "__"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"


class StreamSettings(BaseModel):
    """Streaming decoder settings."""
    encoding: str = "utf-8"
    max_line_length: int = 1024 * 1024  # 1MB, warning threshold only
    chunk_size: int = 8192
    stall_threshold: float = Field(default=180.0, gt=0)
    check_interval: float = Field(default=5.0, gt=0)
    max_probe_failures: int = Field(default=2, ge=1)

    @field_validator('encoding')
    @classmethod
    def validate_encoding(cls, v):
        """Ensure the codec exists."""
        import codecs
        try:
            codecs.lookup(v)
        except LookupError:
            raise ValueError(f"Unknown encoding: {v}")
        return v


class TransportSettings(BaseModel):
    """HTTP transport settings."""
    base_url: str = "http://localhost:8080/api"
    token: Optional[str] = None
    ping_path: str = "/ping"
    probe_timeout: float = Field(default=5.0, gt=0)
    connect_timeout: float = Field(default=30.0, gt=0)
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".genstream" / "logs")
    enable_file: bool = False
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class GenstreamConfig(BaseModel):
    """Main genstream configuration."""
    app_name: str = "genstream"
    debug: bool = False

    stream: StreamSettings = Field(default_factory=StreamSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = ConfigDict(validate_assignment=True)


def _parse_env_file(content: str) -> Dict[str, str]:
    """KEY=value pairs from a .env file; comments and blank lines skipped."""
    pairs = {}
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        pairs[key.strip()] = value.strip().strip('"').strip("'")
    return pairs


def _coerce(value: str) -> Any:
    """Best-effort typing of an environment string."""
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False

    for number in (int, float):
        try:
            return number(value)
        except ValueError:
            continue

    if value.startswith("~"):
        return str(Path(value).expanduser())
    return value


def _nest(pairs: Dict[str, str]) -> Dict[str, Any]:
    """Turn ``GENSTREAM_SECTION__FIELD`` keys into nested dictionaries."""
    nested: Dict[str, Any] = {}
    for key, value in pairs.items():
        if key.startswith(ENV_PREFIX):
            key = key[len(ENV_PREFIX):]
        *sections, name = key.lower().split(ENV_NESTING)

        target = nested
        for section in sections:
            target = target.setdefault(section, {})
        target[name] = _coerce(value)
    return nested


def _merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dictionary merge; ``update`` wins on conflicts."""
    merged = dict(base)
    for key, value in update.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# File suffix -> (source type, parser)
PARSERS: Dict[str, Tuple[str, Callable[[str], Dict[str, Any]]]] = {
    ".json": ("json", json.loads),
    ".yaml": ("yaml", lambda text: yaml.safe_load(text) or {}),
    ".yml": ("yaml", lambda text: yaml.safe_load(text) or {}),
    ".toml": ("toml", toml.loads),
    ".env": ("env", lambda text: _nest(_parse_env_file(text))),
}
_PARSERS_BY_TYPE = {source_type: parser for source_type, parser in PARSERS.values()}


class ConfigLoader:
    """Merges configuration files, dicts and the environment by priority."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize configuration loader.

        Args:
            environ: Environment mapping (defaults to os.environ)
        """
        self._sources: List[ConfigSource] = []
        self._config: Optional[GenstreamConfig] = None
        self._environ = os.environ if environ is None else environ

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Register a file path or a dict.

        Args:
            source: Path to a json/yaml/toml/.env file, or a dict
            priority: Higher priorities override lower ones
            source_type: Parser to use; taken from the file suffix if None

        Raises:
            ConfigurationError: The file type cannot be determined
        """
        if isinstance(source, dict):
            entry = ConfigSource(data=source, priority=priority)
        else:
            path = Path(source)
            if source_type is None:
                known = PARSERS.get(path.suffix.lower())
                if known is None:
                    raise ConfigurationError(f"Unknown config file type: {path.suffix or path.name}")
                source_type = known[0]
            entry = ConfigSource(path=path, priority=priority, source_type=source_type)

        self._sources.append(entry)
        self._sources.sort(key=lambda s: s.priority)

    def load(self) -> GenstreamConfig:
        """
        Merge every source, lowest priority first, then ``GENSTREAM_*``
        environment variables, and validate the result.

        Raises:
            ConfigurationError: A file cannot be parsed or a value is invalid
        """
        data: Dict[str, Any] = {}
        for source in self._sources:
            data = _merge(data, self._read(source))
        data = _merge(data, _nest({
            key: value for key, value in self._environ.items()
            if key.startswith(ENV_PREFIX)
        }))

        try:
            self._config = GenstreamConfig(**data)
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(problems)}"
            ) from e

        logger.debug("configuration_loaded", sources=len(self._sources))
        return self._config

    def _read(self, source: ConfigSource) -> Dict[str, Any]:
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        parser = _PARSERS_BY_TYPE.get(source.source_type)
        if parser is None:
            raise ConfigurationError(f"Unknown source type: {source.source_type}")

        try:
            return parser(source.path.read_text(encoding="utf-8"))
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot parse {source.path}: {e}", cause=e) from e

    def get_config(self) -> GenstreamConfig:
        """The configuration produced by the last load()."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None
) -> GenstreamConfig:
    """
    Load configuration from the standard locations.

    ``~/.genstream/config.{yaml,json}`` and ``./genstream.{yaml,json}`` are
    read when present, then ``config_paths`` in order, then ``extra_config``,
    then the environment.

    Args:
        config_paths: Additional configuration files
        extra_config: Overrides applied after every file
        environ: Environment mapping (defaults to os.environ)
    """
    loader = ConfigLoader(environ=environ)

    home = Path.home() / ".genstream"
    for path in (home / "config.yaml", home / "config.json",
                 Path("genstream.yaml"), Path("genstream.json")):
        if path.exists():
            loader.add_source(path, priority=10)

    for offset, path in enumerate(config_paths or []):
        loader.add_source(path, priority=20 + offset)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return loader.load()


__all__ = [
    'GenstreamConfig',
    'StreamSettings',
    'TransportSettings',
    'LoggingSettings',
    'ConfigLoader',
    'load_config',
]
