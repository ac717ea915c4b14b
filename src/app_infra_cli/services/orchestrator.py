"""
Provisioning Orchestrator.

Drives one provisioning run through a fixed sequence of stages, each a
barrier: a stage only starts once every earlier stage completed.

    VALIDATED -> REPOSITORY_READY -> MATERIALIZED -> BRANCHES_READY
              -> ENVIRONMENTS_CONFIGURED -> COMMITTED -> REPORTED

Every side effect is forward-only. A failure raises StageError naming the
stage and leaves completed stages in place; re-running the same request
repeats the stages through the host's idempotency contract (existing
branches are accepted, environments are overwritten, an unchanged tree
produces no commit).
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from app_infra_cli.exceptions import (
    AppInfraError,
    ProvisioningAborted,
    StageError,
)
from app_infra_cli.services.git_workspace import GitWorkspace
from app_infra_cli.services.materializer import TFVARS_FILES, TemplateMaterializer
from app_infra_cli.services.repository_host import (
    GITOPS_BRANCHES,
    REQUIRED_SECRETS,
    BranchCreateResult,
    EnvironmentSpec,
    RepositoryHandle,
    RepositoryHost,
    RepositoryTarget,
    build_environment_specs,
)
from app_infra_cli.utils.audit import AuditLogger
from app_infra_cli.utils.validation import ProvisioningRequest

logger = logging.getLogger(__name__)
console = Console()


class Stage(str, Enum):
    """Provisioning stages, in execution order."""

    VALIDATED = "validated"
    REPOSITORY_READY = "repository-ready"
    MATERIALIZED = "materialized"
    BRANCHES_READY = "branches-ready"
    ENVIRONMENTS_CONFIGURED = "environments-configured"
    COMMITTED = "committed"
    REPORTED = "reported"


class ExistingRepositoryDecision(str, Enum):
    """Outcome of the decision node reached when the target already exists."""

    PROCEED = "proceed"
    ABORT = "abort"
    RECREATE = "recreate"


ExistingRepositoryDecider = Callable[[RepositoryTarget], ExistingRepositoryDecision]
WorkspaceFactory = Callable[[str, Path, Optional[str]], GitWorkspace]


@dataclass
class ProvisioningResult:
    """Outcome of a provisioning run."""

    request: ProvisioningRequest
    environments: Tuple[EnvironmentSpec, ...] = ()
    stages_completed: List[Stage] = field(default_factory=list)
    repository: Optional[RepositoryHandle] = None
    decision: Optional[ExistingRepositoryDecision] = None
    branch_results: Dict[str, BranchCreateResult] = field(default_factory=dict)
    files_written: List[str] = field(default_factory=list)
    commit_sha: Optional[str] = None
    committed_changes: bool = False
    duration_seconds: float = 0.0

    @property
    def warnings(self) -> List[str]:
        return self.request.warnings

    @property
    def repository_url(self) -> str:
        if self.repository and self.repository.html_url:
            return self.repository.html_url
        return f"https://github.com/{self.request.full_name}"

    @property
    def follow_up_actions(self) -> List[str]:
        """Steps left to the application team after provisioning."""
        return [
            "Create tfvars files from the examples: "
            + ", ".join(f"tfvars/{name}" for name in TFVARS_FILES.values()),
            "Create userdata/userdata-linux.sh from its example and make it executable",
            f"Add repository secrets at {self.repository_url}/settings/secrets/actions: "
            + ", ".join(REQUIRED_SECRETS),
            "Merge the default branch into dev and push to start the first deployment",
        ]


def build_commit_message(request: ProvisioningRequest) -> str:
    """Commit message for the initial infrastructure commit."""
    accounts = request.accounts
    return (
        f"feat: initial infrastructure setup for {request.app_name}\n"
        "\n"
        "- Add Terraform infrastructure orchestration\n"
        "- Configure GitOps workflow for dev/staging/production\n"
        "- Set up GitHub environments with approvals\n"
        "- Add example configurations for tfvars and userdata\n"
        f"- Configure AWS accounts: dev({accounts['dev']}), "
        f"staging({accounts['staging']}), prod({accounts['prod']})\n"
        "\n"
        "Next steps:\n"
        "1. Configure tfvars files with your specific requirements\n"
        "2. Add userdata scripts for server initialization\n"
        "3. Set up AWS credentials in GitHub secrets\n"
        "4. Push to dev branch to start deployment"
    )


class ProvisioningOrchestrator:
    """
    Provisions one infrastructure repository per request.

    Args:
        host: Repository host capability (GitHub client or a test double)
        materializer: Template materializer for the working tree
        work_dir: Directory under which the target repository is cloned
        decide_existing: Decision node for an already existing repository;
            when omitted, an existing target aborts the run
        audit: Audit trail for side effects
        workspace_factory: Builds the local working tree from a remote URL
    """

    def __init__(
        self,
        host: RepositoryHost,
        materializer: TemplateMaterializer,
        work_dir: Union[str, Path] = ".",
        decide_existing: Optional[ExistingRepositoryDecider] = None,
        audit: Optional[AuditLogger] = None,
        workspace_factory: WorkspaceFactory = GitWorkspace.clone,
        visibility: str = "private",
    ):
        self.host = host
        self.materializer = materializer
        self.work_dir = Path(work_dir)
        self.decide_existing = decide_existing
        self.audit = audit
        self.workspace_factory = workspace_factory
        self.visibility = visibility
        self._progress: Optional[Progress] = None

    # ── Planning ───────────────────────────────────────────────────

    def describe_plan(self, request: ProvisioningRequest) -> List[str]:
        """Actions a run would take, without contacting the host."""
        plan = [
            f"Ensure repository {request.full_name} exists ({self.visibility})",
            f"Clone into {self.work_dir / request.repo_name}",
            f"Materialize template from {self.materializer.template_root}",
            "Create branches: " + ", ".join(GITOPS_BRANCHES),
        ]
        for spec in build_environment_specs(request):
            reviewers = ", ".join(spec.reviewers) or "none"
            plan.append(
                f"Configure environment {spec.name}: account {spec.account_id}, "
                f"reviewers {reviewers}, wait {spec.wait_timer}s, "
                f"branch {spec.deployment_branch}"
            )
        plan.append("Commit and push to the default branch")
        return plan

    # ── Execution ──────────────────────────────────────────────────

    def provision(self, request: ProvisioningRequest) -> ProvisioningResult:
        """
        Run every stage for *request*.

        Raises:
            ProvisioningAborted: The existing-repository decision was ABORT
            StageError: A stage failed; earlier stages are not rolled back
        """
        start_time = time.time()
        result = ProvisioningResult(
            request=request, environments=build_environment_specs(request)
        )
        if self.audit:
            self.audit.log_run_start(request.full_name, request.app_name)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            self._progress = progress
            try:
                self._run_stage(
                    Stage.VALIDATED, "Checking template sources...",
                    result, self._validate, request,
                )
                handle = self._run_stage(
                    Stage.REPOSITORY_READY, f"Preparing {request.full_name}...",
                    result, self._ensure_repository, request, result,
                )
                result.repository = handle
                workspace = self._run_stage(
                    Stage.MATERIALIZED, "Materializing template...",
                    result, self._materialize, request, handle, result,
                )
                self._run_stage(
                    Stage.BRANCHES_READY, "Creating GitOps branches...",
                    result, self._create_branches, handle, result,
                )
                self._run_stage(
                    Stage.ENVIRONMENTS_CONFIGURED, "Configuring environments...",
                    result, self._configure_environments, handle, result,
                )
                self._run_stage(
                    Stage.COMMITTED, "Committing and pushing...",
                    result, self._commit, request, handle, workspace, result,
                )
            finally:
                self._progress = None

        result.duration_seconds = time.time() - start_time
        self.show_summary(result)
        result.stages_completed.append(Stage.REPORTED)

        if self.audit:
            self.audit.log_run_complete(
                request.full_name, len(result.stages_completed), result.duration_seconds
            )
        return result

    def _run_stage(self, stage: Stage, description: str, result, func, *args):
        progress = self._progress
        task = progress.add_task(description, total=None) if progress else None
        try:
            value = func(*args)
        except ProvisioningAborted:
            raise
        except Exception as e:
            logger.error(f"Stage {stage.value} failed: {e}")
            if self.audit:
                self.audit.log_stage_failure(
                    result.request.full_name, stage.value, str(e)
                )
            raise StageError(stage.value, e) from e
        if progress is not None:
            progress.update(task, description=f"✅ {stage.value}")
        result.stages_completed.append(stage)
        return value

    def _validate(self, request: ProvisioningRequest) -> None:
        # Template sources are checked before any host call, so a broken
        # template root never leaves an empty repository behind
        self.materializer.check_sources()
        logger.debug(f"Request accepted for {request.full_name}")

    def _ensure_repository(
        self, request: ProvisioningRequest, result: ProvisioningResult
    ) -> RepositoryHandle:
        org, name = request.organization, request.repo_name
        target = RepositoryTarget(org, name, self.host.get_state(org, name))

        if not target.exists:
            return self._create_repository(request)

        decision = self._decide(target)
        result.decision = decision
        logger.info(
            f"Repository {target.full_name} exists ({target.state.value}): {decision.value}"
        )

        if decision == ExistingRepositoryDecision.ABORT:
            raise ProvisioningAborted(
                f"Repository {target.full_name} already exists; provisioning aborted"
            )

        if decision == ExistingRepositoryDecision.RECREATE:
            self.host.delete(org, name)
            if self.audit:
                self.audit.log_repository_deletion(target.full_name)
            return self._create_repository(request)

        handle = self.host.get_repository(org, name)
        if handle is None:
            raise AppInfraError(f"Repository {target.full_name} disappeared during provisioning")
        return handle

    def _decide(self, target: RepositoryTarget) -> ExistingRepositoryDecision:
        if self.decide_existing is None:
            return ExistingRepositoryDecision.ABORT

        # Prompts cannot share the terminal with a live spinner
        progress = self._progress
        if progress is not None:
            progress.stop()
        try:
            return ExistingRepositoryDecision(self.decide_existing(target))
        finally:
            if progress is not None:
                progress.start()

    def _create_repository(self, request: ProvisioningRequest) -> RepositoryHandle:
        handle = self.host.create(
            request.organization,
            request.repo_name,
            visibility=self.visibility,
            description=f"Infrastructure as Code for {request.app_name}",
        )
        if self.audit:
            self.audit.log_repository_creation(handle.full_name, handle.html_url)
        return handle

    def _materialize(
        self,
        request: ProvisioningRequest,
        handle: RepositoryHandle,
        result: ProvisioningResult,
    ) -> GitWorkspace:
        path = self.work_dir / request.repo_name
        workspace = self.workspace_factory(
            self.host.push_url(handle), path, handle.default_branch
        )
        if not workspace.has_commits():
            # Existing empty repository: give the GitOps branches a base commit
            workspace.seed(handle.default_branch)

        materialized = self.materializer.materialize(
            request, workspace.path, result.environments
        )
        result.files_written = materialized.files_written
        return workspace

    def _create_branches(
        self, handle: RepositoryHandle, result: ProvisioningResult
    ) -> None:
        for branch in GITOPS_BRANCHES:
            outcome = self.host.create_branch(handle, branch, handle.default_branch)
            result.branch_results[branch] = outcome
            if self.audit:
                self.audit.log_branch_creation(handle.full_name, branch, outcome.value)

    def _configure_environments(
        self, handle: RepositoryHandle, result: ProvisioningResult
    ) -> None:
        for spec in result.environments:
            self.host.upsert_environment(handle, spec)
            if self.audit:
                self.audit.log_environment_upsert(
                    handle.full_name, spec.name, list(spec.reviewers), spec.wait_timer
                )

    def _commit(
        self,
        request: ProvisioningRequest,
        handle: RepositoryHandle,
        workspace: GitWorkspace,
        result: ProvisioningResult,
    ) -> None:
        sha = workspace.commit_all(build_commit_message(request))
        # A commit from a run whose push failed is still waiting locally
        if workspace.needs_push(handle.default_branch):
            workspace.push(handle.default_branch)
        result.committed_changes = sha is not None
        result.commit_sha = sha or workspace.head_sha()
        if self.audit:
            self.audit.log_commit(handle.full_name, handle.default_branch, sha)

    # ── Reporting ──────────────────────────────────────────────────

    def show_summary(self, result: ProvisioningResult) -> None:
        """Print the completion summary."""
        request = result.request

        summary_table = Table(title=f"Provisioning Summary: {request.full_name}")
        summary_table.add_column("Metric", style="cyan")
        summary_table.add_column("Value", style="green")
        summary_table.add_row("Repository", result.repository_url)
        summary_table.add_row(
            "Commit",
            (result.commit_sha or "N/A")[:8]
            + ("" if result.committed_changes else " (unchanged)"),
        )
        summary_table.add_row("Duration", f"{result.duration_seconds:.2f} seconds")
        console.print(summary_table)

        env_table = Table(title="Environments")
        env_table.add_column("Environment", style="cyan")
        env_table.add_column("Account")
        env_table.add_column("Approvers")
        env_table.add_column("Wait timer", justify="right")
        for spec in result.environments:
            env_table.add_row(
                spec.name,
                spec.account_id,
                ", ".join(spec.reviewers) or "-",
                f"{spec.wait_timer}s",
            )
        console.print(env_table)

        for warning in result.warnings:
            console.print(f"[yellow]⚠ {warning}[/yellow]")

        console.print("\n[bold]Next steps:[/bold]")
        for i, action in enumerate(result.follow_up_actions, 1):
            console.print(f"  {i}. {action}")
        console.print("\n[green]✅ Provisioning completed successfully![/green]")
