"""
Run Context and Builder.

RunContext carries everything stages need to know about the run. It is frozen:
stages read it, nothing writes to it once built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID, uuid4

from service_pipeline.config import Settings
from service_pipeline.models import ChangeSet, ServiceRegistry
from service_pipeline.tagging import TagPolicy


@dataclass(frozen=True)
class RunContext:
    """
    Immutable description of one orchestration run.

    Attributes:
        correlation_id: Unique identifier for this run
        registry: Static service registry
        change_set: Paths changed between the base and head revisions
        services: Services this run drives, in registry order
        branch: Branch being built
        tag_policy: Image tag policy in force
        tag: Resolved image tag (None when publishing is disabled)
        build_all: Build every selected service regardless of test outcome
        settings: Settings snapshot the run was started with
    """

    correlation_id: UUID
    registry: ServiceRegistry
    change_set: ChangeSet
    services: tuple[str, ...]
    branch: str
    tag_policy: TagPolicy
    tag: str | None = None
    build_all: bool = False
    settings: Settings = field(default_factory=Settings)

    @property
    def base_rev(self) -> str:
        return self.change_set.base_rev

    @property
    def head_rev(self) -> str:
        return self.change_set.head_rev

    def log_fields(self) -> dict[str, str]:
        """Context fields bound to every log event of the run."""
        return {
            "correlation_id": str(self.correlation_id),
            "branch": self.branch,
            "head_rev": self.head_rev,
        }


class RunContextBuilder:
    """
    Builder for creating RunContext instances.

    Example:
        context = (
            RunContextBuilder()
            .with_registry(["orders", "billing"])
            .with_change_set(ChangeSet.from_paths("HEAD~1", "HEAD", ["orders/pom.xml"]))
            .with_services(["orders"])
            .with_branch("feature/x", TagPolicy.BRANCH)
            .with_tag("1a2b3c4")
            .build()
        )
    """

    def __init__(self) -> None:
        """Initialize builder with defaults."""
        self._correlation_id: UUID | None = None
        self._registry: ServiceRegistry | None = None
        self._change_set: ChangeSet | None = None
        self._services: tuple[str, ...] | None = None
        self._branch: str = ""
        self._tag_policy: TagPolicy = TagPolicy.BRANCH
        self._tag: str | None = None
        self._build_all: bool = False
        self._settings: Settings | None = None

    def with_correlation_id(self, correlation_id: UUID) -> RunContextBuilder:
        self._correlation_id = correlation_id
        return self

    def with_registry(self, registry: ServiceRegistry | list[str] | tuple[str, ...]) -> RunContextBuilder:
        if not isinstance(registry, ServiceRegistry):
            registry = ServiceRegistry.of(registry)
        self._registry = registry
        return self

    def with_change_set(self, change_set: ChangeSet) -> RunContextBuilder:
        self._change_set = change_set
        return self

    def with_services(self, services: list[str] | tuple[str, ...]) -> RunContextBuilder:
        self._services = tuple(services)
        return self

    def with_branch(self, branch: str, tag_policy: TagPolicy) -> RunContextBuilder:
        self._branch = branch
        self._tag_policy = tag_policy
        return self

    def with_tag(self, tag: str | None) -> RunContextBuilder:
        self._tag = tag
        return self

    def with_build_all(self, build_all: bool) -> RunContextBuilder:
        self._build_all = build_all
        return self

    def with_settings(self, settings: Settings) -> RunContextBuilder:
        self._settings = settings
        return self

    def build(self) -> RunContext:
        """
        Build the RunContext.

        Generates a correlation ID if not provided. Services default to the
        whole registry and must all belong to it.

        Raises:
            ValueError: If the registry is missing or services are not registered
        """
        if self._registry is None:
            raise ValueError("a service registry is required")

        services = self._services if self._services is not None else self._registry.services
        unknown = [s for s in services if s not in self._registry]
        if unknown:
            raise ValueError(f"services not in registry: {unknown}")
        # keep registry order regardless of how services were supplied
        ordered = tuple(s for s in self._registry if s in services)

        return RunContext(
            correlation_id=self._correlation_id or uuid4(),
            registry=self._registry,
            change_set=self._change_set or ChangeSet(base_rev="", head_rev=""),
            services=ordered,
            branch=self._branch,
            tag_policy=self._tag_policy,
            tag=self._tag,
            build_all=self._build_all,
            settings=self._settings or Settings(),
        )
