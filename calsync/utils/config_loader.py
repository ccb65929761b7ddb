"""YAML configuration loading for the calendar sync worker."""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from calsync.models.config import AppConfig
from calsync.utils.errors import ConfigurationError

log = structlog.stdlib.get_logger()

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"

# ${NAME} or ${NAME:-fallback}
ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


class ConfigLoader:
    """Builds an AppConfig from a YAML file with ``${VAR}`` references resolved."""

    def __init__(self, config_dir: Path = CONFIG_DIR) -> None:
        self.config_dir = config_dir

    def load_config(self, config_path: str | None = None) -> AppConfig:
        """Load and validate worker configuration.

        Values missing from the file fall back to ``APP_``-prefixed
        environment variables, then to model defaults.

        Args:
            config_path: YAML file to read. When None, ``$CALSYNC_ENV.yaml`` in
                the config directory is used, falling back to default.yaml

        Returns:
            AppConfig: Validated worker configuration

        Raises:
            ConfigurationError: If the file is missing, unparsable, references
                unset environment variables or fails validation
        """
        path = Path(config_path) if config_path else self.resolve_default_path()
        log.info("loading_configuration", config_path=str(path))

        raw = self.read_yaml(path)
        missing: list[str] = []
        resolved = self.resolve_references(raw, missing)
        if missing:
            names = ", ".join(sorted(set(missing)))
            raise ConfigurationError(
                f"Required environment variable not set: {names} (referenced from {path})"
            )

        try:
            config = AppConfig(**resolved)
        except ValidationError as e:
            log.error("configuration_validation_failed", config_path=str(path), error=str(e))
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        log.info("configuration_loaded", config_path=str(path))
        return config

    def resolve_default_path(self) -> Path:
        env_name = os.getenv("CALSYNC_ENV", "default")
        for candidate in (self.config_dir / f"{env_name}.yaml", self.config_dir / "default.yaml"):
            if candidate.exists():
                return candidate
        raise ConfigurationError(
            f"Configuration file not found in {self.config_dir} "
            f"(CALSYNC_ENV={env_name!r}, no default.yaml either)"
        )

    @staticmethod
    def read_yaml(path: Path) -> dict[str, Any]:
        """Read a YAML mapping.

        Raises:
            ConfigurationError: If the file is absent, unreadable, empty, not
                YAML or not a mapping at the top level
        """
        try:
            text = path.read_text()
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {path}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {path}: {e}") from e

        if document is None:
            raise ConfigurationError(f"Configuration file is empty: {path}")
        if not isinstance(document, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping, got {type(document).__name__}: {path}"
            )
        return document

    def resolve_references(self, node: Any, missing: list[str]) -> Any:
        """Replace ``${VAR}`` references throughout a parsed YAML tree.

        Unset variables without a fallback are appended to ``missing`` so
        that every one of them can be reported at once.
        """
        if isinstance(node, dict):
            return {key: self.resolve_references(value, missing) for key, value in node.items()}
        if isinstance(node, list):
            return [self.resolve_references(item, missing) for item in node]
        if not isinstance(node, str):
            return node

        def substitute(match: re.Match) -> str:
            value = os.getenv(match.group("name"))
            if value is not None:
                return value
            if match.group("default") is not None:
                return match.group("default")
            missing.append(match.group("name"))
            return match.group(0)

        return ENV_REFERENCE.sub(substitute, node)

    def validate_config(self, config: AppConfig) -> list[str]:
        """Cross-field checks that are worth a warning but not a failure.

        Returns:
            Warning messages, empty when the configuration looks sound
        """
        warnings = []

        if not (config.google.client_id and config.google.client_secret):
            warnings.append(
                "google.client_id/client_secret are empty; expired Google tokens cannot be refreshed"
            )

        if config.airtable.rate_limit_delay_seconds < 0.2:
            warnings.append(
                f"airtable.rate_limit_delay_seconds ({config.airtable.rate_limit_delay_seconds}) "
                "is below the 5 requests/second ceiling"
            )

        if config.sync.refresh_lease_seconds <= config.sync.request_timeout_seconds:
            warnings.append(
                "sync.refresh_lease_seconds should exceed sync.request_timeout_seconds so a "
                "refresh cannot outlive its claim"
            )

        if warnings:
            log.warning("configuration_warnings", warnings=warnings)
        return warnings
