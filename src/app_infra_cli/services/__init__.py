"""Services package - Provisioning logic and repository host integrations."""

from app_infra_cli.services.dispatch import WorkflowDispatcher, build_dispatch_payload
from app_infra_cli.services.git_workspace import GitWorkspace, GitWorkspaceError
from app_infra_cli.services.github_host import GitHubHostClient
from app_infra_cli.services.materializer import (
    MaterializationResult,
    TemplateMaterializer,
)
from app_infra_cli.services.orchestrator import (
    ExistingRepositoryDecision,
    ProvisioningOrchestrator,
    ProvisioningResult,
    Stage,
)
from app_infra_cli.services.repository_host import (
    BranchCreateResult,
    EnvironmentSpec,
    RepositoryHandle,
    RepositoryHost,
    RepositoryState,
    RepositoryTarget,
    build_environment_specs,
)
from app_infra_cli.services.validation_engine import (
    CheckResult,
    ValidationEngine,
    ValidationReport,
    Verdict,
)

__all__ = [
    "RepositoryHost",
    "RepositoryState",
    "RepositoryTarget",
    "RepositoryHandle",
    "EnvironmentSpec",
    "BranchCreateResult",
    "build_environment_specs",
    "GitHubHostClient",
    "GitWorkspace",
    "GitWorkspaceError",
    "TemplateMaterializer",
    "MaterializationResult",
    "ProvisioningOrchestrator",
    "ProvisioningResult",
    "ExistingRepositoryDecision",
    "Stage",
    "ValidationEngine",
    "ValidationReport",
    "CheckResult",
    "Verdict",
    "WorkflowDispatcher",
    "build_dispatch_payload",
]
