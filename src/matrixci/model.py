# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import StageFailed


# Fixed lifecycle order for every job.
STAGES: Tuple[str, ...] = ("before_install", "install", "script", "before_deploy", "deploy")

# A failure in one of these aborts the job.
MANDATORY_STAGES: Tuple[str, ...] = ("before_install", "install", "script")

# Stages a matrix entry may override.
OVERRIDABLE_STAGES: Tuple[str, ...] = ("install", "script")


@dataclass(frozen=True)
class Command:
    """A single shell command, optionally gated by a condition expression."""
    run: str
    when: str | None = None


@dataclass
class DeployConfig:
    """Release upload settings (the `deploy:` block)."""
    provider: str = "releases"
    file: str = "{project}-{tag}-{target}.*"
    condition: str | None = None
    api_key_env: str = "GITHUB_TOKEN"
    repo: str | None = None              # "owner/name"; falls back to git remote
    commands: List[Command] = field(default_factory=list)


@dataclass
class MatrixEntry:
    """One declared row of the build matrix, as written by the user."""
    os: str | None
    channel: str | None
    target: str = ""
    env: Dict[str, str] = field(default_factory=dict)

    # per-row overrides; None or [] means "use the global commands"
    install: Optional[List[Command]] = None
    script: Optional[List[Command]] = None


@dataclass
class MatrixDescription:
    """
    Everything a run needs: matrix rows, global env defaults, global stage
    commands and the deploy block.
    """
    entries: List[MatrixEntry]
    env: Dict[str, str] = field(default_factory=dict)

    before_install: List[Command] = field(default_factory=list)
    install: List[Command] = field(default_factory=list)
    script: List[Command] = field(default_factory=list)
    before_deploy: List[Command] = field(default_factory=list)

    deploy: DeployConfig | None = None
    project: str | None = None

    def global_commands(self, stage: str) -> List[Command]:
        if stage == "deploy":
            return list(self.deploy.commands) if self.deploy else []
        return list(getattr(self, stage))


@dataclass(frozen=True)
class JobSpec:
    """A concrete, immutable job produced by matrix expansion."""
    index: int
    os: str
    channel: str
    target: str
    env: Tuple[Tuple[str, str], ...] = ()
    install: Tuple[Command, ...] | None = None
    script: Tuple[Command, ...] | None = None

    @property
    def name(self) -> str:
        return f"#{self.index} {self.os}/{self.channel}/{self.target or '-'}"

    def override(self, stage: str) -> Tuple[Command, ...] | None:
        if stage in OVERRIDABLE_STAGES:
            return getattr(self, stage)
        return None


@dataclass(frozen=True)
class StageResult:
    stage: str
    exit_code: int
    output: str = ""
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class DeployDecision:
    fire: bool
    reason: str
    file_glob: str | None = None


@dataclass(frozen=True)
class TagContext:
    """Whether this run was triggered by pushing a tag, and which one."""
    tag_triggered: bool
    tag: str | None = None

    @classmethod
    def from_tag(cls, tag: str | None) -> TagContext:
        return cls(tag_triggered=bool(tag), tag=tag or None)


@dataclass
class JobResult:
    job: JobSpec
    status: str                          # "ok" | "failed" | "cancelled"
    stages: List[StageResult] = field(default_factory=list)
    deploy: DeployDecision | None = None
    error: StageFailed | None = None

    @property
    def deploy_failed(self) -> bool:
        return any(
            s.stage in ("before_deploy", "deploy") and not s.ok
            for s in self.stages
        )


@dataclass
class RunReport:
    results: List[JobResult] = field(default_factory=list)

    @property
    def failed(self) -> List[JobResult]:
        return [r for r in self.results if r.status != "ok"]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0
