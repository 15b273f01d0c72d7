"""Configuration loading for cascadedocs (.cascadedocs.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

CONFIG_FILENAME = ".cascadedocs.yml"

TIER_NAMES: Tuple[str, ...] = ("micro", "standard", "expansive")


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass(frozen=True)
class PathsConfig:
    """Repository-relative locations for sources, documents and logs."""

    source: Tuple[str, ...] = ("app/", "src/")
    output: str = "docs/source_documents/"
    modules_content: str = "docs/source_documents/modules/content/"
    modules_metadata: str = "docs/source_documents/modules/metadata/"
    logs: str = "docs/cascadedocs_logs/"
    locks: str = "docs/cascadedocs_logs/.locks/"


@dataclass(frozen=True)
class TierConfig:
    """Directory names used for each documentation tier."""

    micro: str = "short"
    standard: str = "medium"
    expansive: str = "full"

    def directory(self, tier: str) -> str:
        if tier not in TIER_NAMES:
            raise ValueError(f"Unknown documentation tier: {tier}")
        return getattr(self, tier)


@dataclass(frozen=True)
class AIConfig:
    """AI provider settings."""

    runner: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    temperature: Optional[float] = 0.3
    max_tokens: Optional[int] = 25000
    request_timeout: float = 300.0


@dataclass(frozen=True)
class QueueConfig:
    """Worker pool and retry policy for background jobs."""

    workers: int = 2
    retry_attempts: int = 3
    timeout: float = 300.0
    rate_limit_delay: float = 60.0
    module_rate_limit_delay: float = 120.0
    module_timeout: float = 600.0
    retry_backoff: float = 5.0


@dataclass(frozen=True)
class ModulesConfig:
    """Module grouping and tracking settings."""

    granularity: str = "granular"
    min_files_per_module: int = 2
    confidence_threshold: float = 0.7
    update_threshold: int = 1
    auto_assign: bool = True
    assignment_log: str = "module-assignment-log.json"
    update_log: str = "documentation-update-log.json"
    index_file: str = "index.md"


@dataclass(frozen=True)
class ExcludeConfig:
    """Source files that are never documented."""

    directories: Tuple[str, ...] = (
        "vendor",
        "node_modules",
        "storage",
        "bootstrap/cache",
        "public",
        "tests",
        "__pycache__",
    )
    files: Tuple[str, ...] = ()
    patterns: Tuple[str, ...] = ("*.min.js", "*.test.*", "*.spec.*", "test_*.py")


@dataclass(frozen=True)
class CascadeDocsConfig:
    """Resolved settings for one repository, shared by every component."""

    root: Path
    paths: PathsConfig = field(default_factory=PathsConfig)
    tiers: TierConfig = field(default_factory=TierConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    modules: ModulesConfig = field(default_factory=ModulesConfig)
    exclude: ExcludeConfig = field(default_factory=ExcludeConfig)
    file_types: Tuple[str, ...] = ("php", "js", "vue", "jsx", "ts", "tsx", "py")

    def resolve(self, relative: str) -> Path:
        return self.root / relative

    @property
    def output_dir(self) -> Path:
        return self.resolve(self.paths.output)

    @property
    def modules_content_dir(self) -> Path:
        return self.resolve(self.paths.modules_content)

    @property
    def modules_metadata_dir(self) -> Path:
        return self.resolve(self.paths.modules_metadata)

    @property
    def logs_dir(self) -> Path:
        return self.resolve(self.paths.logs)

    @property
    def locks_dir(self) -> Path:
        return self.resolve(self.paths.locks)

    @property
    def assignment_log_path(self) -> Path:
        return self.logs_dir / self.modules.assignment_log

    @property
    def update_log_path(self) -> Path:
        return self.logs_dir / self.modules.update_log

    @property
    def module_index_path(self) -> Path:
        return self.modules_content_dir.parent / self.modules.index_file


def load_config(config_path: Path) -> CascadeDocsConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return CascadeDocsConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    defaults_paths = PathsConfig()
    paths_data = _as_dict(data.get("paths"))
    logs = _as_dir(paths_data.get("logs")) or defaults_paths.logs
    paths = PathsConfig(
        source=tuple(_as_str_list(paths_data.get("source"))) or defaults_paths.source,
        output=_as_dir(paths_data.get("output")) or defaults_paths.output,
        modules_content=_as_dir(paths_data.get("modules_content"))
        or defaults_paths.modules_content,
        modules_metadata=_as_dir(paths_data.get("modules_metadata"))
        or defaults_paths.modules_metadata,
        logs=logs,
        locks=_as_dir(paths_data.get("locks")) or f"{logs}.locks/",
    )

    tier_defaults = TierConfig()
    tier_data = _as_dict(data.get("tiers"))
    tiers = TierConfig(
        micro=_as_str(tier_data.get("micro")) or tier_defaults.micro,
        standard=_as_str(tier_data.get("standard")) or tier_defaults.standard,
        expansive=_as_str(tier_data.get("expansive")) or tier_defaults.expansive,
    )
    if len({tiers.micro, tiers.standard, tiers.expansive}) != len(TIER_NAMES):
        raise ConfigError("Each documentation tier needs its own directory")

    ai_defaults = AIConfig()
    ai_data = _as_dict(data.get("ai"))
    ai = AIConfig(
        runner=_as_str(ai_data.get("runner")),
        model=_as_str(ai_data.get("model")),
        base_url=_as_str(ai_data.get("base_url")),
        api_key=_as_str(ai_data.get("api_key")),
        temperature=_first_not_none(_as_float(ai_data.get("temperature")), ai_defaults.temperature),
        max_tokens=_first_not_none(_as_int(ai_data.get("max_tokens")), ai_defaults.max_tokens),
        request_timeout=_first_not_none(
            _as_float(ai_data.get("request_timeout")), ai_defaults.request_timeout
        ),
    )

    queue_defaults = QueueConfig()
    queue_data = _as_dict(data.get("queue"))
    queue = QueueConfig(
        workers=max(1, _first_not_none(_as_int(queue_data.get("workers")), queue_defaults.workers)),
        retry_attempts=max(
            1,
            _first_not_none(_as_int(queue_data.get("retry_attempts")), queue_defaults.retry_attempts),
        ),
        timeout=_first_not_none(_as_float(queue_data.get("timeout")), queue_defaults.timeout),
        rate_limit_delay=_first_not_none(
            _as_float(queue_data.get("rate_limit_delay")), queue_defaults.rate_limit_delay
        ),
        module_rate_limit_delay=_first_not_none(
            _as_float(queue_data.get("module_rate_limit_delay")),
            queue_defaults.module_rate_limit_delay,
        ),
        module_timeout=_first_not_none(
            _as_float(queue_data.get("module_timeout")), queue_defaults.module_timeout
        ),
        retry_backoff=_first_not_none(
            _as_float(queue_data.get("retry_backoff")), queue_defaults.retry_backoff
        ),
    )

    module_defaults = ModulesConfig()
    module_data = _as_dict(data.get("modules"))
    granularity = _as_str(module_data.get("granularity")) or module_defaults.granularity
    if granularity not in {"granular", "consolidated"}:
        raise ConfigError("modules.granularity must be 'granular' or 'consolidated'")
    modules = ModulesConfig(
        granularity=granularity,
        min_files_per_module=max(
            1,
            _first_not_none(
                _as_int(module_data.get("min_files_per_module")),
                module_defaults.min_files_per_module,
            ),
        ),
        confidence_threshold=_first_not_none(
            _as_float(module_data.get("confidence_threshold")),
            module_defaults.confidence_threshold,
        ),
        update_threshold=max(
            1,
            _first_not_none(
                _as_int(module_data.get("update_threshold")), module_defaults.update_threshold
            ),
        ),
        auto_assign=_first_not_none(
            _as_bool(module_data.get("auto_assign")), module_defaults.auto_assign
        ),
        assignment_log=_as_str(module_data.get("assignment_log")) or module_defaults.assignment_log,
        update_log=_as_str(module_data.get("update_log")) or module_defaults.update_log,
        index_file=_as_str(module_data.get("index_file")) or module_defaults.index_file,
    )

    exclude_defaults = ExcludeConfig()
    exclude_data = _as_dict(data.get("exclude"))
    exclude = ExcludeConfig(
        directories=_tuple_or_default(exclude_data, "directories", exclude_defaults.directories),
        files=_tuple_or_default(exclude_data, "files", exclude_defaults.files),
        patterns=_tuple_or_default(exclude_data, "patterns", exclude_defaults.patterns),
    )

    file_types = tuple(
        item.lstrip(".").lower() for item in _as_str_list(data.get("file_types"))
    ) or CascadeDocsConfig(root=root).file_types

    return CascadeDocsConfig(
        root=root,
        paths=paths,
        tiers=tiers,
        ai=ai,
        queue=queue,
        modules=modules,
        exclude=exclude,
        file_types=file_types,
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _tuple_or_default(data: Dict[str, Any], key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if key not in data:
        return default
    return tuple(_as_str_list(data.get(key)))


def _first_not_none(value: Any, default: Any) -> Any:
    return default if value is None else value


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_dir(value: Any) -> Optional[str]:
    text = _as_str(value)
    if not text:
        return None
    return text if text.endswith("/") else f"{text}/"


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "AIConfig",
    "CONFIG_FILENAME",
    "CascadeDocsConfig",
    "ConfigError",
    "ExcludeConfig",
    "ModulesConfig",
    "PathsConfig",
    "QueueConfig",
    "TIER_NAMES",
    "TierConfig",
    "load_config",
]
