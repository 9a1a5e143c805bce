"""
Configuration system using Pydantic for type-safe settings management.

All behaviour is driven by environment variables (no prefix, the same names the
container image documents). Settings are built once at startup, frozen, and
passed explicitly into every component; nothing else reads the process
environment.

An optional YAML file may supply the same keys. Values from the file take
precedence over the environment and support ``${VAR}`` / ``${VAR:-default}``
interpolation.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from repo_improver.enums import GitProviderType, ModelProvider, RunMode
from repo_improver.exceptions import ConfigurationError

GITEA_PLACEHOLDER_HOST = "https://gitea.example.com"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ImproverSettings(BaseSettings):
    """Run-wide settings for repo-improver.

    Grouped roughly as: inputs and outputs, model selection, git hosting,
    branch naming, timing, and logging.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        protected_namespaces=(),
    )

    # Inputs and outputs
    repos_file: Path = Field(default=Path("/config/repos.txt"), description="Repository list file")
    output_dir: Path = Field(default=Path("/output"), description="Directory for logs, backups and the PR ledger")
    workspace_dir: Path = Field(
        default=Path("/home/opencode/workspace/repos"),
        description="Parent directory for per-repository clones",
    )
    prompt_file: Path = Field(
        default=Path("/home/opencode/prompt.txt"),
        description="Optional prompt overriding the built-in AGENTS.md prompt",
    )
    run_mode: RunMode = Field(default=RunMode.AGENTS_MD, description="agents-md or autonomous")

    # Model selection
    model_provider: ModelProvider = Field(default=ModelProvider.OLLAMA, description="ollama or opencode")
    ollama_host: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="codellama:7b-code")
    zen_host: str = Field(default="https://opencode.ai/api/zen/v1")
    zen_model: str = Field(default="kimi-k2.5-free")
    zen_api_key: SecretStr = Field(default=SecretStr("local"))
    agent_command: str = Field(default="opencode", description="Agent CLI executable")

    # Git hosting
    git_provider: GitProviderType = Field(default=GitProviderType.AUTO, description="github, gitea or auto")
    gitea_host: str = Field(default="", description="Gitea base URL, e.g. https://gitea.example.com")
    gitea_token: SecretStr | None = Field(default=None)
    github_token: SecretStr | None = Field(default=None)
    git_author_name: str = Field(default="OpenCode Bot")
    git_author_email: str = Field(default="opencode-bot@example.com")
    auto_merge: bool = Field(default=True, description="Request auto-merge (squash) where supported")

    # Branches
    branch_main: str = Field(default="main")
    branch_fallback: str = Field(default="master")
    branch_work: str = Field(default="develop")
    branch_prefix: str = Field(default="opencode/agents-md")

    # Timing (seconds)
    agent_timeout: float = Field(default=1800, gt=0)
    agent_retry_timeout: float = Field(default=600, gt=0)
    test_timeout: float | None = Field(default=None, gt=0, description="Unbounded when unset")
    repo_delay: float = Field(default=5, ge=0)
    auto_merge_delay: float = Field(default=10, ge=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    @field_validator("log_level", mode="after")
    @classmethod
    def known_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("gitea_host", mode="after")
    @classmethod
    def strip_gitea_host(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("gitea_token", "github_token", "test_timeout", mode="before")
    @classmethod
    def empty_string_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def model_name(self) -> str:
        """Model name for the selected provider."""
        if self.model_provider == ModelProvider.OLLAMA:
            return self.ollama_model
        return self.zen_model

    @property
    def model_ref(self) -> str:
        """``provider/model`` selector passed to the agent CLI."""
        return f"{self.model_provider}/{self.model_name}"

    @property
    def base_branch_candidates(self) -> list[str]:
        """Primary base branch followed by the fallback, without duplicates."""
        candidates = [self.branch_main]
        if self.branch_fallback and self.branch_fallback != self.branch_main:
            candidates.append(self.branch_fallback)
        return candidates

    def github_token_value(self) -> str:
        return self.github_token.get_secret_value().strip() if self.github_token else ""

    def gitea_token_value(self) -> str:
        return self.gitea_token.get_secret_value().strip() if self.gitea_token else ""

    def check_requirements(self) -> None:
        """Validate settings that must hold before any repository is touched.

        Raises:
            ConfigurationError: If a required credential or input is missing
        """
        if self.git_provider != GitProviderType.GITEA and not self.github_token_value():
            raise ConfigurationError("GITHUB_TOKEN environment variable is required")

        if not self.repos_file.is_file():
            raise ConfigurationError(f"Repos file not found: {self.repos_file}")

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> ImproverSettings:
        """Build settings from the environment and an optional YAML file.

        Args:
            config_path: Optional YAML file whose keys override the environment

        Returns:
            ImproverSettings instance

        Raises:
            ConfigurationError: If the file is unreadable or values are invalid
        """
        overrides: dict[str, Any] = {}
        if config_path is not None:
            overrides = cls._read_yaml(Path(config_path))

        try:
            return cls(**overrides)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {errors}") from e

    @classmethod
    def _read_yaml(cls, config_file: Path) -> dict[str, Any]:
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_file}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_file}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_file}: {e}") from e

        if config_dict is None:
            return {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")
        return {str(key).lower(): value for key, value in config_dict.items()}

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left untouched.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
