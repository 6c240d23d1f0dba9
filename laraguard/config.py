"""Configuration file support for laraguard.

Loads .laraguard.yml from the project root (or a parent directory, or an
explicit path) and merges it over the built-in defaults once, at startup.
The resulting EngineConfig is handed to every detector at construction.

Config format example:

    environment: production
    ci_mode: false
    skip_env_specific: false

    categories:
      security: true
      performance: false

    disabled_detectors:
      - "mass-assignment"
    dont_report:
      - "up-to-date-dependencies"

    paths: ["app", "config", "database", "routes", "resources/views"]
    excluded_paths:
      - "vendor/*"
      - "storage/*"

    suppression_keyword: "nosec"
    command_timeout: 60
    advisory_feed: "security/advisories.json"

    detectors:
      frontend-vulnerable-dependencies:
        ignored_packages: ["lodash"]
        ignored_advisories: ["GHSA-xxxx-xxxx-xxxx"]
      env-http-accessibility:
        app_url: "https://example.com"
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError
from .models import Category

CONFIG_FILENAMES = (".laraguard.yml", ".laraguard.yaml")

DEFAULT_PATHS = ["app", "config", "database", "routes", "resources/views", "bootstrap"]

DEFAULT_EXCLUDED_PATHS = [
    "vendor/*",
    "node_modules/*",
    "storage/*",
    "bootstrap/cache/*",
]


@dataclass
class EngineConfig:
    """Parsed configuration, defaults already merged."""
    environment: str = "production"
    ci_mode: bool = False
    skip_env_specific: bool = False
    categories: Dict[str, bool] = field(default_factory=dict)
    disabled_detectors: List[str] = field(default_factory=list)
    dont_report: List[str] = field(default_factory=list)
    paths: List[str] = field(default_factory=lambda: list(DEFAULT_PATHS))
    excluded_paths: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_PATHS))
    suppression_keyword: str = "nosec"
    workers: int = 0
    command_timeout: float = 60.0
    connect_timeout: float = 3.0
    read_timeout: float = 5.0
    advisory_feed: Optional[str] = None
    detectors: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    source_file: Optional[str] = None

    def is_category_enabled(self, category: Category) -> bool:
        """Categories not mentioned stay enabled."""
        return self.categories.get(category.value, True)

    def detector_options(self, detector_id: str) -> Dict[str, Any]:
        """Per-detector option map (empty when not configured)."""
        return self.detectors.get(detector_id, {})

    def detector_option_list(self, detector_id: str, key: str) -> List[str]:
        value = self.detector_options(detector_id).get(key, [])
        if not isinstance(value, list):
            return []
        return [str(v) for v in value]

    def worker_count(self) -> int:
        if self.workers and self.workers > 0:
            return self.workers
        return os.cpu_count() or 1


def find_config_file(project_root: str) -> Optional[str]:
    """Walk up from project_root looking for .laraguard.yml / .laraguard.yaml."""
    search_dir = os.path.abspath(project_root)
    if os.path.isfile(search_dir):
        search_dir = os.path.dirname(search_dir)

    while True:
        for name in CONFIG_FILENAMES:
            candidate = os.path.join(search_dir, name)
            if os.path.isfile(candidate):
                return candidate
        parent = os.path.dirname(search_dir)
        if parent == search_dir:
            return None  # Reached filesystem root
        search_dir = parent


def load_config(project_root: str, config_path: str = None) -> EngineConfig:
    """Load laraguard configuration.

    Args:
        project_root: The analysed project (used to find .laraguard.yml)
        config_path: Explicit config path (overrides auto-discovery)

    Returns:
        EngineConfig with defaults merged; plain defaults when no file exists.

    Raises:
        ConfigError: the explicit path is missing, or the file is malformed.
    """
    if config_path:
        if not os.path.isfile(config_path):
            raise ConfigError(f"Config file not found: {config_path}")
        return _parse_config(config_path)

    found = find_config_file(project_root)
    if found is None:
        return EngineConfig()
    return _parse_config(found)


def _parse_config(config_path: str) -> EngineConfig:
    """Parse a .laraguard.yml file into an EngineConfig."""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Unable to read {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    return config_from_mapping(data, source_file=config_path)


def config_from_mapping(data: Dict[str, Any], source_file: str = None) -> EngineConfig:
    """Merge a raw mapping over the defaults."""
    config = EngineConfig(source_file=source_file)

    if 'environment' in data:
        config.environment = str(data['environment'])
    config.ci_mode = bool(data.get('ci_mode', config.ci_mode))
    config.skip_env_specific = bool(data.get('skip_env_specific', config.skip_env_specific))

    categories = data.get('categories', {})
    if isinstance(categories, dict):
        config.categories = {str(k): bool(v) for k, v in categories.items()}

    for key in ('disabled_detectors', 'dont_report', 'paths', 'excluded_paths'):
        items = data.get(key)
        if items is None:
            continue
        if not isinstance(items, list):
            raise ConfigError(f"'{key}' must be a list")
        setattr(config, key, [str(i) for i in items])

    config.suppression_keyword = str(data.get('suppression_keyword', config.suppression_keyword))

    for key in ('workers',):
        if key in data:
            setattr(config, key, _as_number(data[key], key, int))
    for key in ('command_timeout', 'connect_timeout', 'read_timeout'):
        if key in data:
            setattr(config, key, _as_number(data[key], key, float))

    if data.get('advisory_feed'):
        config.advisory_feed = str(data['advisory_feed'])

    detectors = data.get('detectors', {})
    if isinstance(detectors, dict):
        for detector_id, options in detectors.items():
            if isinstance(options, dict):
                config.detectors[str(detector_id)] = dict(options)

    return config


def _as_number(value: Any, key: str, kind):
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be a number, got {value!r}") from e
