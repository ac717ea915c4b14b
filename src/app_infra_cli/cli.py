"""
App Infrastructure CLI - Command-line interface for repository provisioning.

This module provides the CLI entry points using Typer. Provisioning logic is
in services/orchestrator.py (ProvisioningOrchestrator), repository checks in
services/validation_engine.py and the remote trigger in services/dispatch.py.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from app_infra_cli.commands.interactive import (
    collect_request,
    confirm_request,
    prompt_existing_decision,
    summary_table,
)
from app_infra_cli.exceptions import (
    ConfigurationError,
    DispatchError,
    HostAPIError,
    ProvisioningAborted,
    StageError,
)
from app_infra_cli.services.dispatch import WorkflowDispatcher, build_dispatch_payload
from app_infra_cli.services.git_workspace import configured_identity
from app_infra_cli.services.github_host import GitHubHostClient
from app_infra_cli.services.materializer import TemplateMaterializer
from app_infra_cli.services.orchestrator import (
    ExistingRepositoryDecision,
    ProvisioningOrchestrator,
)
from app_infra_cli.services.repository_host import RepositoryHandle
from app_infra_cli.services.validation_engine import ValidationEngine, ValidationReport, Verdict
from app_infra_cli.utils.audit import AuditLogger
from app_infra_cli.utils.config import RequestConfigLoader
from app_infra_cli.utils.secrets import ProvisionerSettings
from app_infra_cli.utils.validation import ProvisioningRequest, validate_request

# Ensure .env vars are loaded for all CLI commands
load_dotenv()

logger = logging.getLogger(__name__)


app = typer.Typer(help="App Infrastructure CLI - GitOps repository provisioning")
console = Console()

VERDICT_STYLES = {
    Verdict.PASS: "[green]✅ pass[/green]",
    Verdict.WARN: "[yellow]⚠️  warn[/yellow]",
    Verdict.FAIL: "[red]❌ fail[/red]",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Provision and validate application infrastructure repositories"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _print_errors(title: str, errors) -> None:
    console.print(f"[red]❌ {title}[/red]")
    for error in errors:
        console.print(f"  [red]• {error}[/red]")


def _collect_fields(config: Optional[str], flags: Dict[str, Any]) -> Dict[str, Any]:
    """Request file fields overlaid with the non-empty command-line flags."""
    fields: Dict[str, Any] = {}
    if config:
        fields.update(RequestConfigLoader(config).load_raw())
    fields.update({k: v for k, v in flags.items() if v not in (None, "")})
    return fields


@app.command()
def provision(
    app_name: Optional[str] = typer.Option(None, "--app-name", "-n", help="Application name"),
    org: Optional[str] = typer.Option(None, "--org", "-o", help="GitHub organization or user"),
    repo: Optional[str] = typer.Option(
        None, "--repo", help="Repository name (default: <app-name>-infrastructure)"
    ),
    dev_account: Optional[str] = typer.Option(None, "--dev-account", help="Dev AWS account ID"),
    staging_account: Optional[str] = typer.Option(
        None, "--staging-account", help="Staging AWS account ID"
    ),
    prod_account: Optional[str] = typer.Option(
        None, "--prod-account", help="Production AWS account ID"
    ),
    staging_approvers: Optional[str] = typer.Option(
        None, "--staging-approvers", help="Comma-separated staging approvers"
    ),
    prod_approvers: Optional[str] = typer.Option(
        None, "--prod-approvers", help="Comma-separated production approvers"
    ),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region"),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML request file"
    ),
    template_root: Optional[Path] = typer.Option(
        None, "--template-root", help="Template source directory (default: TEMPLATE_ROOT)"
    ),
    work_dir: Optional[Path] = typer.Option(
        None, "--work-dir", help="Directory to clone the repository into"
    ),
    on_existing: Optional[ExistingRepositoryDecision] = typer.Option(
        None,
        "--on-existing",
        help="What to do when the repository already exists (default: ask)",
    ),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Never prompt; fail on missing fields"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would be done without doing it"
    ),
):
    """Create and configure an infrastructure repository for an application"""

    settings = ProvisionerSettings.load()
    host: Optional[GitHubHostClient] = None
    if settings.github_token:
        host = GitHubHostClient(settings.github_token, api_url=settings.github_api_url)

    flags = {
        "app_name": app_name,
        "organization": org,
        "repo_name": repo,
        "dev_account_id": dev_account,
        "staging_account_id": staging_account,
        "prod_account_id": prod_account,
        "staging_approvers": staging_approvers,
        "prod_approvers": prod_approvers,
        "region": region,
    }

    try:
        fields = _collect_fields(config, flags)
        if non_interactive:
            request = validate_request(fields)
        else:
            request = collect_request(
                fields,
                default_organization=host.authenticated_login if host else None,
            )
    except ConfigurationError as e:
        _print_errors("Invalid provisioning request:", e.errors)
        raise typer.Exit(1)
    except (FileNotFoundError, HostAPIError) as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    root = template_root or settings.template_root
    if not root:
        console.print(
            "[red]❌ No template root configured (--template-root or TEMPLATE_ROOT)[/red]"
        )
        raise typer.Exit(1)

    materializer = TemplateMaterializer(root, workflow_dir=settings.workflow_dir)
    target_dir = work_dir or settings.resolved_work_dir()

    if dry_run:
        console.print(summary_table(request, title="Dry Run"))
        for warning in request.warnings:
            console.print(f"[yellow]⚠ {warning}[/yellow]")
        console.print("\n[bold]Planned actions:[/bold]")
        plan = ProvisioningOrchestrator(None, materializer, work_dir=target_dir)
        for i, action in enumerate(plan.describe_plan(request), 1):
            console.print(f"  {i}. {action}")
        console.print("\n[blue]Dry run complete; nothing was changed.[/blue]")
        return

    if not yes:
        if non_interactive:
            console.print(summary_table(request))
        elif not confirm_request(request):
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    if host is None:
        _, error_msg = settings.validate_github_auth()
        console.print(f"[red]❌ {error_msg}[/red]")
        raise typer.Exit(1)

    if on_existing is not None:
        decider = lambda target: on_existing  # noqa: E731
    elif non_interactive:
        decider = None
    else:
        decider = prompt_existing_decision

    orchestrator = ProvisioningOrchestrator(
        host,
        materializer,
        work_dir=target_dir,
        decide_existing=decider,
        audit=AuditLogger(settings.audit_log_dir),
    )

    try:
        orchestrator.provision(request)
    except ProvisioningAborted as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(0)
    except StageError as e:
        console.print(f"[red]❌ Provisioning failed at stage '{e.stage}': {e.cause}[/red]")
        console.print(
            "[dim]Completed stages are left in place; re-run the same request to resume.[/dim]"
        )
        raise typer.Exit(1)


@app.command()
def trigger(
    app_name: Optional[str] = typer.Option(None, "--app-name", "-n", help="Application name"),
    org: Optional[str] = typer.Option(None, "--org", "-o", help="Target GitHub organization"),
    contacts: Optional[str] = typer.Option(
        None, "--contacts", help="Comma-separated app team contacts"
    ),
    aws_accounts: Optional[str] = typer.Option(
        None, "--aws-accounts", help="dev:ID,staging:ID,prod:ID"
    ),
    dev_account: Optional[str] = typer.Option(None, "--dev-account", help="Dev AWS account ID"),
    staging_account: Optional[str] = typer.Option(
        None, "--staging-account", help="Staging AWS account ID"
    ),
    prod_account: Optional[str] = typer.Option(
        None, "--prod-account", help="Production AWS account ID"
    ),
    staging_approvers: Optional[str] = typer.Option(
        None, "--staging-approvers", help="Comma-separated staging approvers"
    ),
    prod_approvers: Optional[str] = typer.Option(
        None, "--prod-approvers", help="Comma-separated production approvers"
    ),
    region: Optional[str] = typer.Option(None, "--region", help="AWS region"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML request file"),
    platform_repo: Optional[str] = typer.Option(
        None, "--platform-repo", help="owner/repo hosting the provisioning workflow"
    ),
    workflow: Optional[str] = typer.Option(None, "--workflow", help="Workflow file name"),
    ref: Optional[str] = typer.Option(None, "--ref", help="Git ref to run the workflow on"),
    token: Optional[str] = typer.Option(
        None, "--github-token", help="GitHub token (default: GITHUB_TOKEN)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the request without sending it"
    ),
):
    """Trigger the remote provisioning workflow in the platform repository"""

    settings = ProvisionerSettings.load()
    token = token or settings.github_token

    flags = {
        "app_name": app_name,
        "organization": org,
        "contacts": contacts,
        "aws_accounts": aws_accounts,
        "dev_account_id": dev_account,
        "staging_account_id": staging_account,
        "prod_account_id": prod_account,
        "staging_approvers": staging_approvers,
        "prod_approvers": prod_approvers,
        "region": region,
    }

    errors = []
    request: Optional[ProvisioningRequest] = None
    try:
        request = validate_request(_collect_fields(config, flags), require_all=True)
    except ConfigurationError as e:
        errors.extend(e.errors)
    except FileNotFoundError as e:
        errors.append(str(e))
    if not token:
        errors.append("github_token: required (--github-token or GITHUB_TOKEN)")
    if errors:
        _print_errors("Invalid trigger request:", errors)
        raise typer.Exit(1)

    dispatcher = WorkflowDispatcher(
        token,
        platform_repo=platform_repo or settings.platform_repo,
        workflow=workflow or settings.dispatch_workflow,
        api_url=settings.github_api_url,
    )
    ref = ref or settings.dispatch_ref

    console.print(summary_table(request, title="Infrastructure Request"))
    console.print(f"Platform repository: {dispatcher.platform_repo}")

    if dry_run:
        console.print(f"\n[bold]POST[/bold] {dispatcher.dispatch_url}", soft_wrap=True)
        console.print_json(json.dumps(build_dispatch_payload(request, ref)))
        console.print("[blue]Dry run complete; nothing was sent.[/blue]")
        return

    if not yes and not typer.confirm("Trigger the provisioning workflow?", default=False):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(0)

    try:
        dispatcher.dispatch(request, ref)
    except DispatchError as e:
        console.print(f"[red]❌ Workflow trigger failed (HTTP {e.status_code})[/red]")
        if e.body:
            console.print(e.body)
        if e.hint:
            console.print(f"[yellow]{e.hint}[/yellow]")
        raise typer.Exit(1)

    console.print("[green]✅ Workflow triggered successfully![/green]")
    console.print(f"Monitor progress at: {dispatcher.actions_url}", soft_wrap=True)


def print_report(report: ValidationReport) -> None:
    table = Table(title=f"Validation: {report.root}")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_column("Detail")
    for result in report.results:
        lines = [result.detail] if result.detail else []
        if result.verdict != Verdict.PASS and result.remediation:
            lines.append(f"[dim]→ {result.remediation}[/dim]")
        table.add_row(result.name, VERDICT_STYLES[result.verdict], "\n".join(lines))
    console.print(table)

    console.print(
        f"\nPassed: {report.passed}  Warnings: {report.warned}  Failed: {report.failed}"
    )
    verdict = report.overall_verdict
    if verdict == Verdict.PASS:
        console.print("[green]✅ Repository is ready for deployment[/green]")
    elif verdict == Verdict.WARN:
        console.print("[yellow]⚠️  Repository is usable; review the warnings above[/yellow]")
    else:
        console.print("[red]❌ Repository has critical problems; fix them before deploying[/red]")


@app.command()
def validate(
    path: Path = typer.Argument(Path("."), help="Working tree of the infrastructure repository"),
    org: Optional[str] = typer.Option(None, "--org", "-o", help="GitHub organization"),
    repo: Optional[str] = typer.Option(None, "--repo", help="Repository name"),
    terraform: bool = typer.Option(
        False, "--terraform", help="Also run terraform fmt and terraform validate"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """Check that an infrastructure repository is ready to deploy"""

    if not path.is_dir():
        console.print(f"[red]❌ Not a directory: {path}[/red]")
        raise typer.Exit(1)

    host = None
    target = None
    if org and repo:
        settings = ProvisionerSettings.load()
        if settings.github_token:
            host = GitHubHostClient(settings.github_token, api_url=settings.github_api_url)
            target = RepositoryHandle(org, repo)
        else:
            console.print(
                "[yellow]⚠️  No GitHub token; remote repository checks are skipped[/yellow]"
            )
    elif org or repo:
        console.print(
            "[yellow]⚠️  Both --org and --repo are needed; "
            "remote repository checks are skipped[/yellow]"
        )

    engine = ValidationEngine(path, host=host, target=target, include_terraform=terraform)
    report = engine.run()

    if json_output:
        console.print_json(json.dumps(report.to_dict()))
    else:
        print_report(report)

    raise typer.Exit(report.exit_code)


@app.command()
def diagnose():
    """Run diagnostic checks"""

    console.print("[blue]Running diagnostic checks...[/blue]")
    settings = ProvisionerSettings.load()
    healthy = True

    is_valid, error_msg = settings.validate_github_auth()
    if is_valid:
        try:
            login = GitHubHostClient(
                settings.github_token, api_url=settings.github_api_url
            ).authenticated_login()
            console.print(f"[green]✅ GitHub authentication: {login}[/green]")
        except HostAPIError as e:
            console.print(f"[red]❌ GitHub authentication: {e}[/red]")
            healthy = False
    else:
        console.print(f"[red]❌ GitHub authentication: {error_msg}[/red]")
        healthy = False

    if shutil.which("git"):
        identity = configured_identity()
        if identity:
            console.print(f"[green]✅ Git identity: {identity[0]} <{identity[1]}>[/green]")
        else:
            console.print(
                "[yellow]⚠️  Git identity not configured; commits use a fallback author[/yellow]"
            )
    else:
        console.print("[red]❌ git executable not found on PATH[/red]")
        healthy = False

    is_valid, error_msg = settings.validate_template_root()
    if is_valid:
        missing = TemplateMaterializer(
            settings.template_root, workflow_dir=settings.workflow_dir
        ).missing_sources()
        if missing:
            console.print(
                f"[red]❌ Template root is missing: {', '.join(missing)}[/red]"
            )
            healthy = False
        else:
            console.print(f"[green]✅ Template root: {settings.template_root}[/green]")
    else:
        console.print(f"[yellow]⚠️  {error_msg} (pass --template-root to provision)[/yellow]")

    if shutil.which("terraform"):
        console.print("[green]✅ Terraform: found on PATH[/green]")
    else:
        console.print("[yellow]⚠️  Terraform not found; 'validate --terraform' unavailable[/yellow]")

    if settings.is_ci_environment():
        console.print("[blue]Running in a CI environment[/blue]")

    if not healthy:
        raise typer.Exit(1)
    console.print("\n[green]All diagnostic checks completed![/green]")


if __name__ == "__main__":
    app()
