"""
Settings and credential loading with waterfall configuration.

Priority hierarchy:
1. Environment variables (production/CI/CD)
2. .env file (local development)
3. Built-in defaults (public GitHub, platform repository conventions)

Implements 12-Factor App configuration so the same binary runs from a
developer laptop and from the platform's dispatch workflow.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PLATFORM_REPO = "platform-team/infrastructure-platform"
DEFAULT_DISPATCH_WORKFLOW = "create-app-infrastructure.yml"


class ProvisionerSettings(BaseSettings):
    """
    Pydantic-based configuration for the provisioner.

    Loads values in priority order: environment variables, .env file. None
    of the fields is validated at load time; commands check what they need
    via the ``validate_*`` helpers so ``validate`` can run offline.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Host authentication
    # GH_TOKEN is the gh CLI convention
    github_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GITHUB_TOKEN", "GH_TOKEN")
    )
    github_api_url: str = Field(
        default="https://api.github.com", alias="GITHUB_API_URL"
    )

    # Remote trigger target
    platform_repo: str = Field(default=DEFAULT_PLATFORM_REPO, alias="PLATFORM_REPO")
    dispatch_workflow: str = Field(
        default=DEFAULT_DISPATCH_WORKFLOW, alias="DISPATCH_WORKFLOW"
    )
    dispatch_ref: str = Field(default="main", alias="DISPATCH_REF")

    # Materialization
    template_root: Optional[Path] = Field(default=None, alias="TEMPLATE_ROOT")
    workflow_dir: str = Field(default=".github/workflows", alias="WORKFLOW_DIR")

    # Local state
    audit_log_dir: str = Field(default="audit_logs", alias="AUDIT_LOG_DIR")
    work_dir: Optional[Path] = Field(default=None, alias="WORK_DIR")

    @field_validator("workflow_dir")
    @classmethod
    def strip_workflow_dir(cls, v: str) -> str:
        return v.strip("/") or ".github/workflows"

    def validate_github_auth(self) -> tuple[bool, str]:
        """
        Validates host authentication credentials.

        Returns:
            (is_valid, error_message) tuple
        """
        if self.github_token:
            return (True, "")
        return (False, "Missing GitHub authentication token (GITHUB_TOKEN)")

    def validate_template_root(self) -> tuple[bool, str]:
        """Returns whether TEMPLATE_ROOT points at an existing directory."""
        if not self.template_root:
            return (False, "TEMPLATE_ROOT is not configured")
        if not Path(self.template_root).is_dir():
            return (False, f"TEMPLATE_ROOT does not exist: {self.template_root}")
        return (True, "")

    def resolved_work_dir(self) -> Path:
        """Directory under which target repositories are cloned."""
        return Path(self.work_dir) if self.work_dir else Path.cwd()

    def is_ci_environment(self) -> bool:
        """Returns True if running in continuous integration environment."""
        ci_indicators = ["CI", "CONTINUOUS_INTEGRATION", "GITHUB_ACTIONS"]
        return any(os.getenv(indicator) for indicator in ci_indicators)

    @classmethod
    def load(cls, env_file: Optional[str] = ".env") -> "ProvisionerSettings":
        """
        Instantiates settings without validation.

        Args:
            env_file: .env file to read, or None to use the environment only
        """
        if env_file is None:
            return cls(_env_file=None)  # type: ignore[call-arg]
        return cls(_env_file=env_file)  # type: ignore[call-arg]


__all__ = ["ProvisionerSettings"]
