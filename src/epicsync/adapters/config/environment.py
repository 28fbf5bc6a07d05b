"""
Environment Config Provider - Load configuration from files and the environment.

Sources, lowest precedence first:
- Defaults
- Config file (.epicsync.yaml in the working directory, or --config);
  the legacy .claude/config.json "provider" key is honoured too
- .env file
- Environment variables (EPICSYNC_*, GITHUB_*, AZURE_DEVOPS_*)
- Command line argument overrides
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from epicsync.core.domain.enums import ConflictPolicy
from epicsync.core.exceptions import ConfigError
from epicsync.core.ports.config_provider import (
    AppConfig,
    AzureDevOpsConfig,
    ConfigProviderPort,
    GitHubConfig,
    SyncConfig,
    TrackerType,
)


DEFAULT_CONFIG_FILES = (".epicsync.yaml", ".epicsync.yml")
LEGACY_CONFIG_FILE = Path(".claude") / "config.json"

ENV_MAPPING = {
    "EPICSYNC_TRACKER": "tracker",
    "EPICSYNC_CONCURRENCY": "concurrency",
    "EPICSYNC_CONFLICT_POLICY": "conflict_policy",
    "EPICSYNC_MAX_RETRIES": "max_retries",
    "EPICSYNC_VERBOSE": "verbose",
    "GITHUB_TOKEN": "github_token",
    "GITHUB_OWNER": "github_owner",
    "GITHUB_REPO": "github_repo",
    "GITHUB_API_URL": "github_api_url",
    "AZURE_DEVOPS_PAT": "azure_devops_pat",
    "AZURE_DEVOPS_ORG": "azure_devops_org",
    "AZURE_DEVOPS_PROJECT": "azure_devops_project",
    "AZURE_DEVOPS_URL": "azure_devops_url",
}

# Nested config file sections → flat keys
FILE_SECTIONS = {
    "github": {
        "token": "github_token",
        "owner": "github_owner",
        "repo": "github_repo",
        "base_url": "github_api_url",
        "requests_per_second": "github_requests_per_second",
    },
    "azure_devops": {
        "pat": "azure_devops_pat",
        "organization": "azure_devops_org",
        "project": "azure_devops_project",
        "base_url": "azure_devops_url",
        "requests_per_second": "azure_devops_requests_per_second",
    },
    "sync": {
        "concurrency": "concurrency",
        "max_retries": "max_retries",
        "conflict_policy": "conflict_policy",
        "check_remote": "check_remote",
        "mapping_file": "mapping_file",
        "shadow_dir": "shadow_dir",
        "timeout": "timeout",
    },
}

SECRET_KEYS = frozenset({"github_token", "azure_devops_pat"})


def _coerce_bool(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
    return value


class EnvironmentConfigProvider(ConfigProviderPort):
    """
    Configuration provider that merges config files, .env and environment.
    """

    def __init__(
        self,
        env_file: Path | None = None,
        config_file: Path | None = None,
        cli_overrides: dict[str, Any] | None = None,
        environ: dict[str, str] | None = None,
        cwd: Path | None = None,
    ):
        """
        Initialize the config provider.

        Args:
            env_file: Path to .env file (./.env if not specified)
            config_file: Path to YAML/JSON config file (auto-detected if not specified)
            cli_overrides: Command line argument overrides (None values ignored)
            environ: Environment mapping (os.environ if not specified)
            cwd: Directory used for auto-detection
        """
        self._values: dict[str, Any] = {}
        self._env_file = env_file
        self._config_file = config_file
        self._cli_overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
        self._environ = environ if environ is not None else dict(os.environ)
        self._cwd = cwd or Path.cwd()
        self._loaded_config_file: Path | None = None
        self.logger = logging.getLogger("EnvironmentConfigProvider")

        self._load_config_file()
        self._load_env_file()
        self._load_environment()
        self._apply_cli_overrides()

    # -------------------------------------------------------------------------
    # ConfigProviderPort Implementation
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "Environment"

    def load(self) -> AppConfig:
        """
        Build the immutable application configuration.

        Raises:
            ConfigError: If a value cannot be interpreted
        """
        tracker_type = self._tracker_type()

        github = GitHubConfig(
            token=self.get("github_token", ""),
            owner=self.get("github_owner", ""),
            repo=self.get("github_repo", ""),
            base_url=self.get("github_api_url") or "https://api.github.com",
            requests_per_second=self._float("github_requests_per_second", 10.0),
        )
        azure = AzureDevOpsConfig(
            organization=self.get("azure_devops_org", ""),
            project=self.get("azure_devops_project", ""),
            pat=self.get("azure_devops_pat", ""),
            base_url=self.get("azure_devops_url") or "https://dev.azure.com",
            requests_per_second=self._float("azure_devops_requests_per_second", 10.0),
        )

        policy_value = self.get("conflict_policy", ConflictPolicy.MANUAL.value)
        try:
            policy = (
                policy_value
                if isinstance(policy_value, ConflictPolicy)
                else ConflictPolicy.from_string(str(policy_value))
            )
        except ValueError as e:
            raise ConfigError(str(e))

        sync = SyncConfig(
            dry_run=bool(_coerce_bool(self.get("dry_run", False))),
            verbose=bool(_coerce_bool(self.get("verbose", False))),
            max_concurrency=self._int("concurrency", 4),
            max_retries=self._int("max_retries", 3),
            conflict_policy=policy,
            check_remote=bool(_coerce_bool(self.get("check_remote", False))),
            mapping_file=self.get("mapping_file"),
            shadow_dir=self.get("shadow_dir"),
            timeout=self._float("timeout", None),
        )

        return AppConfig(
            tracker_type=tracker_type,
            sync=sync,
            github=github,
            azure_devops=azure,
            config_file=self._loaded_config_file,
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        key = key.lower().replace("-", "_").replace(".", "_")
        if key in self._cli_overrides:
            return self._cli_overrides[key]
        return self._values.get(key, default)

    def validate(self) -> list[str]:
        """Validate configuration."""
        try:
            return self.load().validate()
        except ConfigError as e:
            return [str(e)]

    @property
    def loaded_config_file(self) -> Path | None:
        return self._loaded_config_file

    def describe(self) -> dict[str, Any]:
        """Effective values with secrets masked, for diagnostics."""
        merged = {**self._values, **self._cli_overrides}
        return {
            key: ("***" if key in SECRET_KEYS and value else value)
            for key, value in sorted(merged.items())
        }

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _tracker_type(self) -> TrackerType:
        value = self.get("tracker")
        if value:
            if isinstance(value, TrackerType):
                return value
            try:
                return TrackerType.from_string(str(value))
            except ValueError as e:
                raise ConfigError(str(e))

        if self.get("azure_devops_pat") and not self.get("github_token"):
            return TrackerType.AZURE_DEVOPS
        return TrackerType.GITHUB

    def _int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid integer for {key}: {value!r}")

    def _float(self, key: str, default: float | None) -> float | None:
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid number for {key}: {value!r}")

    def _find_config_file(self) -> Path | None:
        if self._config_file is not None:
            if not self._config_file.exists():
                raise ConfigError(f"Config file not found: {self._config_file}")
            return self._config_file

        for name in DEFAULT_CONFIG_FILES:
            candidate = self._cwd / name
            if candidate.exists():
                return candidate

        legacy = self._cwd / LEGACY_CONFIG_FILE
        if legacy.exists():
            return legacy
        return None

    def _load_config_file(self) -> None:
        """Load values from a YAML or JSON config file."""
        path = self._find_config_file()
        if path is None:
            return

        try:
            text = path.read_text(encoding="utf-8")
            data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {path}", cause=e)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        self._loaded_config_file = path
        self.logger.debug(f"Loaded config file {path}")

        # Legacy layout: {"provider": "github" | "azure", ...}
        if "provider" in data and "tracker" not in data:
            self._values["tracker"] = data["provider"]

        for key, value in data.items():
            if key in FILE_SECTIONS and isinstance(value, dict):
                for sub_key, flat_key in FILE_SECTIONS[key].items():
                    if sub_key in value and value[sub_key] is not None:
                        self._values[flat_key] = value[sub_key]
            elif key == "tracker" and value:
                self._values["tracker"] = value
            elif not isinstance(value, dict) and key != "provider":
                self._values[key.lower().replace("-", "_")] = value

    def _load_env_file(self) -> None:
        """Load values from a .env file."""
        env_file = self._env_file or (self._cwd / ".env")
        if not env_file.exists():
            if self._env_file is not None:
                raise ConfigError(f".env file not found: {env_file}")
            return

        for line in env_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()

            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export ") :].strip()
            value = value.strip().strip('"').strip("'")

            config_key = ENV_MAPPING.get(key)
            if config_key:
                self._values[config_key] = value

    def _load_environment(self) -> None:
        """Load values from environment variables."""
        for env_key, config_key in ENV_MAPPING.items():
            raw_value = self._environ.get(env_key)
            if raw_value is not None and raw_value != "":
                self._values[config_key] = raw_value

    def _apply_cli_overrides(self) -> None:
        """Normalize CLI override keys."""
        self._cli_overrides = {
            key.lower().replace("-", "_"): value for key, value in self._cli_overrides.items()
        }
