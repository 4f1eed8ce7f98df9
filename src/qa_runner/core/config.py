import os
import yaml
import json
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Optional

from .exceptions import ConfigurationError


@dataclass
class RunnerConfig:
    """Configuration consumed by the feature, scenario and step executors"""
    parallel: bool = False
    max_workers: int = 5
    retry_failed: bool = False
    retry_count: int = 2
    retry_delay: int = 1000  # ms, multiplied by the attempt number
    stop_on_first_failure: bool = False
    continue_on_background_failure: bool = False
    abort_on_background_failure: bool = False
    continue_on_hook_failure: bool = True
    execute_wip: bool = False
    scenario_timeout: int = 300000  # ms, 0 disables
    hook_timeout: int = 30000
    step_timeout: int = 30000
    browser: str = "chromium"
    environment: str = "dev"
    screenshot_on_failure: bool = True
    screenshot_on_pass: bool = False
    delay_between_scenarios: int = 0
    tag_expression: Optional[str] = None
    skip_condition: Optional[Callable[[Any], bool]] = None

    # Keys accepted in their camelCase spelling as well
    _ALIASES = {
        "maxWorkers": "max_workers",
        "retryCount": "retry_count",
        "retryDelay": "retry_delay",
        "retryFailed": "retry_failed",
        "stopOnFirstFailure": "stop_on_first_failure",
        "continueOnBackgroundFailure": "continue_on_background_failure",
        "abortOnBackgroundFailure": "abort_on_background_failure",
        "continueOnHookFailure": "continue_on_hook_failure",
        "executeWIP": "execute_wip",
        "scenarioTimeout": "scenario_timeout",
        "hookTimeout": "hook_timeout",
        "stepTimeout": "step_timeout",
        "screenshotOnFailure": "screenshot_on_failure",
        "screenshotOnPass": "screenshot_on_pass",
        "delayBetweenScenarios": "delay_between_scenarios",
        "tagExpression": "tag_expression",
    }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunnerConfig":
        """Build a config from a plain dict, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in (data or {}).items():
            key = cls._ALIASES.get(key, key)
            if key in known:
                values[key] = value
        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.retry_count < 0:
            raise ConfigurationError(f"retry_count must be >= 0, got {self.retry_count}")
        for name in ("retry_delay", "scenario_timeout", "hook_timeout", "step_timeout",
                     "delay_between_scenarios"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")


class ConfigManager:
    """Manages configuration for QA Runner"""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self._get_default_config_path()
        self._config = self._load_config()

    def _get_default_config_path(self) -> Path:
        """Get default configuration path"""
        # Check environment variable first
        if env_path := os.getenv("QA_RUNNER_CONFIG"):
            return Path(env_path)

        # Check common locations
        locations = [
            Path.cwd() / "qa-runner.yaml",
            Path.cwd() / ".qa-runner" / "config.yaml",
            Path.home() / ".qa-runner" / "config.yaml",
        ]

        for location in locations:
            if location.exists():
                return location

        # Return default location
        return Path.home() / ".qa-runner" / "config.yaml"

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file"""
        if not self.config_path.exists():
            return self._get_default_config()

        with open(self.config_path, 'r') as f:
            if self.config_path.suffix in ('.yaml', '.yml'):
                loaded = yaml.safe_load(f)
            elif self.config_path.suffix == '.json':
                loaded = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config format: {self.config_path.suffix}")

        # Fill in sections the file leaves out
        config = self._get_default_config()
        for section, values in (loaded or {}).items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)
            else:
                config[section] = values
        return config

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            "general": {
                "log_level": "INFO",
                "features_dir": "features",
            },
            "runner": {
                "parallel": False,
                "max_workers": 5,
                "retry_failed": False,
                "retry_count": 2,
                "retry_delay": 1000,
                "stop_on_first_failure": False,
                "continue_on_background_failure": False,
                "execute_wip": False,
                "scenario_timeout": 300000,
                "hook_timeout": 30000,
                "step_timeout": 30000,
                "browser": "chromium",
                "environment": "dev",
                "screenshot_on_failure": True,
                "screenshot_on_pass": False,
            },
            "browser": {
                "headless": True,
                "slow_mo": 0,
                "viewport": {"width": 1280, "height": 720},
                "screenshot_dir": "screenshots",
            },
            "reporter": {
                "output_dir": "test-results",
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation, e.g. ``runner.max_workers``"""
        node: Any = self._config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation, creating sections as needed"""
        *sections, leaf = key.split('.')
        node = self._config
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = value

    def save(self) -> None:
        """Save configuration to file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            if self.config_path.suffix in ('.yaml', '.yml'):
                yaml.dump(self._config, f, default_flow_style=False)
            elif self.config_path.suffix == '.json':
                json.dump(self._config, f, indent=2)
            else:
                raise ConfigurationError(f"Unsupported config format: {self.config_path.suffix}")

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get configuration for a specific section"""
        return self.get(section, {})

    def runner_config(self, **overrides) -> RunnerConfig:
        """Build a RunnerConfig from the runner section plus explicit overrides"""
        values = dict(self.get_section("runner"))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return RunnerConfig.from_dict(values)
