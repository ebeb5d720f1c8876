"""
Configuration module for environment variable validation and type-safe config.

Every deployment command reads its settings from here. Values come from
environment variables and can be overridden by CLI flags through
Config.with_overrides().
"""
import os
import re
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_PROJECT_NAME = "devsecops-portfolio"
DEFAULT_REGION = "us-east-1"

VALID_ENVIRONMENTS = {"dev", "staging", "prod"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Project names end up in bucket names, so they follow S3 naming rules
PROJECT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-]{1,38}[a-z0-9]$")
STACK_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]{0,127}$")


@dataclass(frozen=True)
class Config:
    """Type-safe configuration object with validated environment variables."""

    project_name: str = DEFAULT_PROJECT_NAME
    aws_region: str = DEFAULT_REGION
    environment: str = "prod"
    infrastructure_stack_name: str = ""
    infra_pipeline_stack_name: str = ""
    ui_pipeline_stack_name: str = ""
    github_owner: str = ""
    branch_name: str = "main"
    alarm_email: str = ""
    stack_wait_delay: int = 15
    stack_wait_max_attempts: int = 240
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        # Stack names derive from the project name unless set explicitly
        if not self.infrastructure_stack_name:
            object.__setattr__(
                self, "infrastructure_stack_name", f"{self.project_name}-infrastructure"
            )
        if not self.infra_pipeline_stack_name:
            object.__setattr__(
                self, "infra_pipeline_stack_name", f"{self.project_name}-infra-pipeline"
            )
        if not self.ui_pipeline_stack_name:
            object.__setattr__(
                self, "ui_pipeline_stack_name", f"{self.project_name}-ui-pipeline"
            )
        self.validate()

    def validate(self) -> None:
        """
        Validate field values.

        Raises:
            ValueError: If any field is invalid. The message names the
                environment variable that controls the field.
        """
        if not PROJECT_NAME_PATTERN.match(self.project_name):
            raise ValueError(
                "PROJECT_NAME must be 3-40 lowercase letters, digits or hyphens "
                f"and start with a letter, got: {self.project_name!r}"
            )

        if not self.aws_region:
            raise ValueError("AWS_REGION must not be empty")

        if self.environment not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"ENVIRONMENT must be one of {sorted(VALID_ENVIRONMENTS)}, "
                f"got: {self.environment}"
            )

        for variable, stack_name in (
            ("INFRASTRUCTURE_STACK_NAME", self.infrastructure_stack_name),
            ("INFRA_PIPELINE_STACK_NAME", self.infra_pipeline_stack_name),
            ("UI_PIPELINE_STACK_NAME", self.ui_pipeline_stack_name),
        ):
            if not STACK_NAME_PATTERN.match(stack_name):
                raise ValueError(
                    f"{variable} is not a valid CloudFormation stack name: {stack_name!r}"
                )

        if not self.branch_name:
            raise ValueError("BRANCH_NAME must not be empty")

        if self.alarm_email and "@" not in self.alarm_email:
            raise ValueError(
                f"ALARM_EMAIL must be an email address, got: {self.alarm_email}"
            )

        if self.stack_wait_delay <= 0:
            raise ValueError("STACK_WAIT_DELAY must be a positive integer")
        if self.stack_wait_max_attempts <= 0:
            raise ValueError("STACK_WAIT_MAX_ATTEMPTS must be a positive integer")

        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}, got: {self.log_level}"
            )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create Config instance from environment variables.

        Raises:
            ValueError: If environment variables are missing or invalid.
        """
        return cls(
            project_name=os.environ.get("PROJECT_NAME", DEFAULT_PROJECT_NAME),
            aws_region=os.environ.get("AWS_REGION", DEFAULT_REGION),
            environment=os.environ.get("ENVIRONMENT", "prod"),
            infrastructure_stack_name=os.environ.get("INFRASTRUCTURE_STACK_NAME", ""),
            infra_pipeline_stack_name=os.environ.get("INFRA_PIPELINE_STACK_NAME", ""),
            ui_pipeline_stack_name=os.environ.get("UI_PIPELINE_STACK_NAME", ""),
            github_owner=os.environ.get("GITHUB_OWNER", ""),
            branch_name=os.environ.get("BRANCH_NAME", "main"),
            alarm_email=os.environ.get("ALARM_EMAIL", ""),
            stack_wait_delay=_int_from_env("STACK_WAIT_DELAY", 15),
            stack_wait_max_attempts=_int_from_env("STACK_WAIT_MAX_ATTEMPTS", 240),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    def with_overrides(self, **overrides) -> "Config":
        """
        Return a copy with the given fields replaced.

        None values are ignored so argparse defaults can be passed through.
        Changing project_name re-derives stack names that were not set
        explicitly in the environment.
        """
        changes = {key: value for key, value in overrides.items() if value is not None}
        if not changes:
            return self

        if "project_name" in changes and changes["project_name"] != self.project_name:
            old_prefix = self.project_name
            for field_name, suffix in (
                ("infrastructure_stack_name", "infrastructure"),
                ("infra_pipeline_stack_name", "infra-pipeline"),
                ("ui_pipeline_stack_name", "ui-pipeline"),
            ):
                if field_name not in changes and getattr(self, field_name) == f"{old_prefix}-{suffix}":
                    changes[field_name] = ""

        return replace(self, **changes)


def _int_from_env(name: str, default: int) -> int:
    raw_value = os.environ.get(name)
    if raw_value is None or raw_value == "":
        return default
    try:
        return int(raw_value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw_value}") from None


_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Config: The validated configuration object

    Raises:
        ValueError: If environment variables are invalid.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Forget the cached configuration so the next get_config() re-reads the environment."""
    global _config
    _config = None
