"""
Configuration module using Pydantic Settings.

Every setting can come from an ORCHESTRATE_* environment variable, a .env file,
or an explicit override passed by the CLI (overrides win).

Example:
    # Via environment variables:
    ORCHESTRATE_REGISTRY=orders,billing,gateway
    ORCHESTRATE_COVERAGE_THRESHOLD=80
    ORCHESTRATE_GATE_BLOCKS_BUILD=false
"""

import shlex
from pathlib import Path
from string import Formatter
from typing import Annotated, Any, Literal

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

TagPolicyName = Literal["main", "branch"]

# Placeholders each configurable template is rendered with.
TEMPLATE_PLACEHOLDERS: dict[str, frozenset[str]] = {
    "test_command": frozenset({"service"}),
    "coverage_report": frozenset({"service"}),
    "test_report_glob": frozenset({"service"}),
    "build_command": frozenset({"service"}),
    "artifact_pattern": frozenset({"service"}),
    "registry_login_command": frozenset({"registry", "username"}),
    "image_build_command": frozenset({"service", "artifact", "image", "tag", "registry"}),
    "image_push_command": frozenset({"image", "tag", "registry"}),
}


class Settings(BaseSettings):
    """
    Orchestrator settings with validation.

    Command templates are split with shlex before placeholders are substituted,
    so substituted values never need quoting. Available placeholders:
    {service}, {artifact}, {image}, {tag}, {registry}, {username}.
    """

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Services
    registry: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Ordered service identifiers, one per top-level directory",
    )
    repo_path: Path = Field(
        default=Path("."),
        description="Repository root the services live in",
    )

    # Branch and tagging policy
    main_branch: str = Field(
        default="main",
        description="Designated long-lived branch",
    )
    branch: str | None = Field(
        default=None,
        description="Branch being built (detected from git when unset)",
    )
    tag_policy: TagPolicyName | None = Field(
        default=None,
        description="Image tag policy; derived from the branch when unset",
    )
    reject_branch_runs: bool = Field(
        default=False,
        description="Reject runs under the branch tag policy instead of tagging by revision",
    )
    build_all_on_main: bool = Field(
        default=True,
        description="Build every registry service on the main policy regardless of changes or tests",
    )
    all_services_on_branch: bool = Field(
        default=False,
        description="Run every registry service on the branch policy; the coverage gate still applies",
    )
    no_changes: Literal["fail", "succeed"] = Field(
        default="fail",
        description="Verdict when no registry service changed",
    )

    # Coverage gate
    coverage_threshold: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Minimum instruction coverage percentage (inclusive)",
    )
    gate_blocks_build: bool = Field(
        default=True,
        description="Whether a coverage shortfall keeps the service from building",
    )

    # Execution
    max_concurrent_services: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Per-stage fan-out limit",
    )
    command_timeout_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Timeout for a single external command",
    )
    run_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Timeout for the whole run; in-flight commands are terminated when it expires",
    )
    publish: bool = Field(
        default=True,
        description="Run the image build and publish stage",
    )

    # Test runner
    test_command: str = Field(default="mvn -B -f {service}/pom.xml verify")
    coverage_report: str = Field(default="{service}/target/site/jacoco/jacoco.xml")
    test_report_glob: str = Field(default="{service}/target/surefire-reports/TEST-*.xml")

    # Build tool
    build_command: str = Field(default="mvn -B -f {service}/pom.xml -DskipTests package")
    artifact_pattern: str = Field(default="{service}/target/*.jar")

    # Container engine and registry
    container_registry: str = Field(default="docker.io")
    image_prefix: str = Field(
        default="",
        description="Image namespace; images are named <image_prefix>/<service>",
    )
    registry_username: str = Field(default="")
    registry_password: SecretStr = Field(default=SecretStr(""))
    registry_login_command: str = Field(
        default="docker login {registry} --username {username} --password-stdin"
    )
    image_build_command: str = Field(
        default="docker build --build-arg JAR_FILE={artifact} -t {image}:{tag} {service}"
    )
    image_push_command: str = Field(default="docker push {image}:{tag}")

    # Reports and status
    archive_dir: Path | None = Field(
        default=None,
        description="Directory test and coverage reports are archived to",
    )
    status_webhook_url: str | None = Field(default=None)
    status_token: SecretStr | None = Field(default=None)
    status_context: str = Field(default="ci/orchestrate")
    details_url: str | None = Field(default=None)

    # Logging
    log_format: Literal["console", "json"] = Field(default="console")
    log_level: str = Field(default="INFO")

    @field_validator("registry", mode="before")
    @classmethod
    def split_registry(cls, v: Any) -> Any:
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("registry")
    @classmethod
    def validate_registry(cls, v: list[str]) -> list[str]:
        """Service identifiers must be unique top-level directory names."""
        seen: set[str] = set()
        for service in v:
            if not service or "/" in service or service in (".", ".."):
                raise ValueError(f"invalid service identifier: {service!r}")
            if service in seen:
                raise ValueError(f"duplicate service identifier: {service!r}")
            seen.add(service)
        return v

    @field_validator(*TEMPLATE_PLACEHOLDERS)
    @classmethod
    def validate_template(cls, v: str, info: ValidationInfo) -> str:
        """Templates must parse and use only the placeholders their command receives."""
        allowed = TEMPLATE_PLACEHOLDERS[info.field_name]
        if info.field_name.endswith("_command"):
            shlex.split(v)
        for _, field, _, _ in Formatter().parse(v):
            if field is not None and field not in allowed:
                names = ", ".join(f"{{{name}}}" for name in sorted(allowed))
                raise ValueError(f"unknown placeholder {{{field}}}; available: {names}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    def image_name(self, service: str) -> str:
        """Fully qualified image name (without tag) for a service."""
        if self.image_prefix:
            return f"{self.image_prefix.rstrip('/')}/{service}"
        return service


def load_settings(**overrides: Any) -> Settings:
    """
    Build settings, letting explicit overrides win over environment values.

    None-valued overrides are dropped so unset CLI options fall through to
    the environment and defaults.
    """
    return Settings(**{key: value for key, value in overrides.items() if value is not None})
