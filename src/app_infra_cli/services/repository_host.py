"""
Repository host capability interface.

The orchestrator and the validation engine only talk to the source-control
platform through this surface, so tests can substitute an in-memory double
and simulate partial state or transient failures without network access.

Idempotency contract: creating a branch that already exists reports
ALREADY_EXISTS (a success), and environments are upserted whole, so a run
that failed half-way can simply be repeated.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Set, Tuple

# GitOps branches, in promotion order
GITOPS_BRANCHES = ("dev", "staging", "production")

# Fixed wait-timer policy per deployment environment (seconds)
WAIT_TIMERS = {"dev": 0, "staging": 0, "production": 300}

# Maps deployment environments to request account environments
ENVIRONMENT_ACCOUNTS = {"dev": "dev", "staging": "staging", "production": "prod"}

# Deployment secrets every provisioned repository needs
REQUIRED_SECRETS = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "PRIVATE_REPO_TOKEN")


class RepositoryState(str, Enum):
    """Existence of the target repository on the host."""

    ABSENT = "absent"
    EXISTS_EMPTY = "exists-empty"
    EXISTS_POPULATED = "exists-populated"


class BranchCreateResult(str, Enum):
    """Outcome of a branch creation; both values are successes."""

    CREATED = "created"
    ALREADY_EXISTS = "already-exists"


@dataclass(frozen=True)
class RepositoryTarget:
    """Resolved (organization, name) pair plus the queried existence state."""

    organization: str
    name: str
    state: RepositoryState = RepositoryState.ABSENT

    @property
    def full_name(self) -> str:
        return f"{self.organization}/{self.name}"

    @property
    def exists(self) -> bool:
        return self.state != RepositoryState.ABSENT


@dataclass(frozen=True)
class RepositoryHandle:
    """Host-side identity of a repository."""

    organization: str
    name: str
    default_branch: str = "main"
    html_url: str = ""
    clone_url: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.organization}/{self.name}"


@dataclass(frozen=True)
class EnvironmentSpec:
    """Protected deployment environment with reviewer gate and wait timer."""

    name: str
    account_id: str
    reviewers: Tuple[str, ...] = field(default_factory=tuple)
    wait_timer: int = 0
    branch: str = ""

    @property
    def deployment_branch(self) -> str:
        """Branch allowed to deploy; defaults to the environment's own branch."""
        return self.branch or self.name


class RepositoryHost(Protocol):
    """Capabilities consumed from the source-control platform."""

    def exists(self, organization: str, name: str) -> bool: ...

    def get_state(self, organization: str, name: str) -> RepositoryState: ...

    def get_repository(
        self, organization: str, name: str
    ) -> Optional[RepositoryHandle]: ...

    def create(
        self,
        organization: str,
        name: str,
        visibility: str = "private",
        description: str = "",
    ) -> RepositoryHandle: ...

    def delete(self, organization: str, name: str) -> None: ...

    def push_url(self, repo: RepositoryHandle) -> str: ...

    def create_branch(
        self, repo: RepositoryHandle, name: str, from_branch: Optional[str] = None
    ) -> BranchCreateResult: ...

    def branch_exists(self, repo: RepositoryHandle, name: str) -> bool: ...

    def upsert_environment(
        self, repo: RepositoryHandle, spec: EnvironmentSpec
    ) -> None: ...

    def list_environments(self, repo: RepositoryHandle) -> Set[str]: ...

    def list_secrets(self, repo: RepositoryHandle) -> Set[str]: ...


def build_environment_specs(request) -> Tuple[EnvironmentSpec, ...]:
    """
    Derive the three deployment environments for a request.

    dev has no reviewers; staging and production take the request's
    approver lists. Wait timers follow WAIT_TIMERS.
    """
    reviewers = {
        "dev": (),
        "staging": tuple(request.staging_approvers),
        "production": tuple(request.prod_approvers),
    }
    return tuple(
        EnvironmentSpec(
            name=env,
            account_id=request.accounts[ENVIRONMENT_ACCOUNTS[env]],
            reviewers=reviewers[env],
            wait_timer=WAIT_TIMERS[env],
            branch=env,
        )
        for env in GITOPS_BRANCHES
    )
