"""Pydantic configuration models for the GitHub exporter.

The configuration file names a default repository, a polling period and an
ordered list of monitors. Each monitor entry is tagged by its ``name`` key:

- ``job``: size of a workflow's run queue
- ``pull_requests``: number of pull requests matching state and labels
- ``rate_limit``: remaining API budget of the primary or an alternate token
- ``custom``: reserved for user-defined queries (not supported yet)

Job, pull request and custom monitors may override the default repository
with flattened ``owner`` and ``repository`` keys.

String values support environment variable substitution using the format
${VAR_NAME} with optional defaults: ${VAR_NAME:default_value}
"""

import os
import re
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def _substitute_env(value: Any) -> Any:
    if isinstance(value, str):

        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)

            env_value = os.getenv(var_name)
            if env_value is not None:
                return env_value
            if default_value is not None:
                return default_value
            raise ValueError(f"Required environment variable '{var_name}' not found")

        return ENV_VAR_PATTERN.sub(replacer, value)
    if isinstance(value, list):
        return [_substitute_env(item) for item in value]
    return value


def _require_name(value: str, field_name: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"Repository {field_name} cannot be empty")


class PRStatus(str, Enum):
    """Pull request states a monitor can filter on."""

    OPEN = "open"
    CLOSED = "closed"
    ALL = "all"

    @property
    def display(self) -> str:
        """Value used in the ``status`` metric label."""
        return self.value

    @property
    def api_state(self) -> str:
        """Value sent as the issues listing ``state`` parameter."""
        return self.value


class PrometheusMetric(str, Enum):
    """Metric kinds a custom monitor may report as."""

    COUNTER = "Counter"
    GAUGE = "Gauge"
    HISTOGRAM = "Histogram"
    SUMMARY = "Summary"


class BaseConfigModel(BaseModel):
    """Base configuration model with environment variable substitution."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def substitute_env_vars(cls, values: Any) -> Any:
        """Substitute ${VAR} references in top-level string values.

        Nested models run this validator themselves.
        """
        if not isinstance(values, dict):
            return values
        return {key: _substitute_env(value) for key, value in values.items()}


class RepositoryRef(BaseConfigModel):
    """One GitHub repository."""

    owner: str
    repository: str

    @field_validator("owner", "repository")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Reject blank owner or repository names."""
        if not v or not v.strip():
            raise ValueError("Repository owner and name cannot be empty")
        return v.strip()

    def __str__(self) -> str:
        return f"{self.owner}/{self.repository}"


class RepositoryOverrideMixin(BaseConfigModel):
    """Optional flattened ``owner``/``repository`` override."""

    owner: str | None = Field(default=None, description="Override repository owner")
    repository: str | None = Field(default=None, description="Override repository")

    @model_validator(mode="after")
    def validate_override_complete(self) -> "RepositoryOverrideMixin":
        """Require owner and repository to be given together."""
        if (self.owner is None) != (self.repository is None):
            raise ValueError(
                "Repository override needs both 'owner' and 'repository'"
            )
        if self.owner is not None and self.repository is not None:
            _require_name(self.owner, "owner")
            _require_name(self.repository, "repository")
        return self

    @property
    def repo(self) -> RepositoryRef | None:
        """Explicit repository override, if any."""
        if self.owner is None or self.repository is None:
            return None
        return RepositoryRef(owner=self.owner, repository=self.repository)


class JobMonitor(RepositoryOverrideMixin):
    """Workflow run queue of one workflow."""

    name: Literal["job"] = "job"

    workflow: str = Field(description="Workflow file name or ID")

    status: str | None = Field(
        default=None, description="Workflow run status filter (e.g. queued)"
    )

    @field_validator("workflow")
    @classmethod
    def validate_workflow(cls, v: str) -> str:
        """Reject a blank workflow name."""
        if not v or not v.strip():
            raise ValueError("Workflow cannot be empty")
        return v.strip()

    def describe(self) -> str:
        """Short identifier for logs and error labels."""
        target = f"@{self.repo}" if self.repo else ""
        return f"job[{self.workflow}{target}]"


class PullRequestsMonitor(RepositoryOverrideMixin):
    """Count of pull requests matching a state and label set."""

    name: Literal["pull_requests"] = "pull_requests"

    status: PRStatus | None = Field(default=None, description="Pull request state")

    labels: tuple[str, ...] | None = Field(
        default=None, description="Labels every counted pull request must carry"
    )

    @field_validator("labels")
    @classmethod
    def dedupe_labels(cls, v: tuple[str, ...] | None) -> tuple[str, ...] | None:
        """Drop repeated labels, keeping first-seen order."""
        if v is None:
            return None
        return tuple(dict.fromkeys(label.strip() for label in v if label.strip()))

    def describe(self) -> str:
        """Short identifier for logs and error labels."""
        parts = [f"status={self.status.value if self.status else 'all'}"]
        if self.labels:
            parts.append(f"labels={','.join(self.labels)}")
        if self.repo:
            parts.append(f"repo={self.repo}")
        return f"pull_requests[{' '.join(parts)}]"


class RateLimitMonitor(BaseConfigModel):
    """Remaining API budget of the primary or an alternate credential."""

    name: Literal["rate_limit"] = "rate_limit"

    pat_env: str | None = Field(
        default=None,
        description="Environment variable holding an alternate personal access token",
    )

    @property
    def repo(self) -> RepositoryRef | None:
        """Rate limits are not scoped to a repository."""
        return None

    def describe(self) -> str:
        """Short identifier for logs and error labels."""
        return f"rate_limit[{self.pat_env or 'self'}]"


class CustomMonitor(RepositoryOverrideMixin):
    """User-defined query. Declared in the schema but not supported yet."""

    name: Literal["custom", "Custom"] = "custom"

    url: str = Field(description="URL to query")

    query: str | None = Field(default=None, description="Query to apply")

    prometheus_metric: PrometheusMetric = Field(
        description="Metric kind the result should be reported as"
    )

    def describe(self) -> str:
        """Short identifier for logs and error labels."""
        return f"custom[{self.url}]"


AnyMonitor = JobMonitor | PullRequestsMonitor | RateLimitMonitor | CustomMonitor

Monitor = Annotated[AnyMonitor, Field(discriminator="name")]


def resolve_repository(monitor: AnyMonitor, default: RepositoryRef) -> RepositoryRef:
    """Return the monitor's override, or the default when it has none.

    An override replaces the default as a whole; fields are never merged.
    """
    return monitor.repo or default


class Config(BaseConfigModel):
    """Root configuration of the exporter."""

    owner: str = Field(description="Default repository owner")

    repository: str = Field(description="Default repository name")

    monitor_period: float = Field(
        default=30, gt=0, description="Seconds between monitoring ticks"
    )

    monitor_timeout: float | None = Field(
        default=60,
        gt=0,
        description="Seconds a single monitor dispatch may take (null disables)",
    )

    monitoring: list[Monitor] = Field(
        default_factory=list, description="Monitors dispatched on every tick, in order"
    )

    @model_validator(mode="after")
    def validate_default_repository(self) -> "Config":
        """Ensure the default repository is usable."""
        _require_name(self.owner, "owner")
        _require_name(self.repository, "repository")
        return self

    @property
    def default_repo(self) -> RepositoryRef:
        """Default repository for monitors without an override."""
        return RepositoryRef(owner=self.owner, repository=self.repository)
