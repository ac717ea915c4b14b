"""
Interactive request collection.

Prompts for every field the caller did not supply, re-asking until the
value has a valid format, then shows a summary and asks for confirmation
before anything touches the repository host.
"""

import logging
from typing import Any, Callable, Dict, Mapping, Optional

import typer
from rich.console import Console
from rich.table import Table

from app_infra_cli.services.orchestrator import ExistingRepositoryDecision
from app_infra_cli.services.repository_host import RepositoryTarget
from app_infra_cli.utils.validation import (
    ACCOUNT_FIELDS,
    DEFAULT_REGION,
    HANDLE_PATTERN,
    REGION_PATTERN,
    ProvisioningRequest,
    default_repo_name,
    is_valid_account_id,
    is_valid_app_name,
    parse_reviewers,
    validate_request,
)

logger = logging.getLogger(__name__)
console = Console()

ACCOUNT_LABELS = {
    "dev": "Development Account ID",
    "staging": "Staging Account ID",
    "prod": "Production Account ID",
}


def prompt_until_valid(
    label: str,
    is_valid: Callable[[str], bool],
    error: str,
    default: Optional[str] = None,
) -> str:
    """Prompt for *label* until *is_valid* accepts the trimmed answer."""
    while True:
        if default is None:
            value = typer.prompt(label)
        else:
            value = typer.prompt(label, default=default, show_default=bool(default))
        value = str(value).strip()
        if is_valid(value):
            return value
        console.print(f"[red]{error}[/red]")


def _valid_reviewers(value: str) -> bool:
    return all(HANDLE_PATTERN.match(h) for h in parse_reviewers(value))


def collect_request(
    initial: Mapping[str, Any],
    default_organization: Optional[Callable[[], str]] = None,
) -> ProvisioningRequest:
    """
    Fill in missing request fields interactively.

    Args:
        initial: Fields already supplied by flags or a request file
        default_organization: Called when the organization prompt is left
            empty (e.g. the token owner's login)

    Returns:
        Validated request

    Raises:
        ConfigurationError: If supplied fields are still invalid after prompting
    """
    fields: Dict[str, Any] = {k: v for k, v in initial.items() if v not in (None, "")}

    console.print("[bold]App Team Infrastructure Setup[/bold]")

    if not is_valid_app_name(fields.get("app_name")):
        if fields.get("app_name"):
            console.print(f"[red]Invalid app name: {fields['app_name']}[/red]")
        fields["app_name"] = prompt_until_valid(
            "App name (e.g. 'my-web-app')",
            is_valid_app_name,
            "App name must contain only lowercase letters, numbers, and hyphens",
        )

    if not fields.get("organization"):
        org = typer.prompt(
            "GitHub organization (leave empty for personal account)",
            default="",
            show_default=False,
        ).strip()
        if not org and default_organization is not None:
            org = default_organization()
            console.print(f"Using personal account: {org}")
        fields["organization"] = org

    if not fields.get("repo_name"):
        fields["repo_name"] = typer.prompt(
            "Repository name", default=default_repo_name(fields["app_name"])
        ).strip()

    for env, key in ACCOUNT_FIELDS.items():
        if not is_valid_account_id(str(fields.get(key) or "")):
            fields[key] = prompt_until_valid(
                ACCOUNT_LABELS[env],
                is_valid_account_id,
                "AWS account ID must be exactly 12 digits",
            )

    for key, label in (
        ("staging_approvers", "Staging approvers (comma-separated GitHub usernames)"),
        ("prod_approvers", "Production approvers (comma-separated GitHub usernames)"),
    ):
        if key not in fields:
            fields[key] = prompt_until_valid(
                label,
                _valid_reviewers,
                "Approvers must be valid GitHub usernames",
                default="",
            )

    if not fields.get("region") and not fields.get("aws_region"):
        fields["region"] = prompt_until_valid(
            "AWS region",
            lambda v: bool(REGION_PATTERN.match(v)),
            "Not a valid AWS region (e.g. us-east-1)",
            default=DEFAULT_REGION,
        )

    return validate_request(fields)


def summary_table(request: ProvisioningRequest, title: str = "Configuration Summary") -> Table:
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("App Name", request.app_name)
    table.add_row("GitHub Org", request.organization)
    table.add_row("Repository", request.repo_name)
    table.add_row("Dev Account", request.dev_account_id)
    table.add_row("Staging Account", request.staging_account_id)
    table.add_row("Production Account", request.prod_account_id)
    table.add_row("Region", request.region)
    table.add_row("Staging Approvers", ", ".join(request.staging_approvers) or "-")
    table.add_row("Production Approvers", ", ".join(request.prod_approvers) or "-")
    if request.contacts:
        table.add_row("Contacts", ", ".join(request.contacts))
    return table


def confirm_request(request: ProvisioningRequest) -> bool:
    """Show the summary and ask for a yes/no confirmation."""
    console.print(summary_table(request))
    for warning in request.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    return typer.confirm("Continue with this configuration?", default=False)


def prompt_existing_decision(target: RepositoryTarget) -> ExistingRepositoryDecision:
    """Decision node prompt for an already existing target repository."""
    console.print(
        f"[yellow]Repository {target.full_name} already exists "
        f"({target.state.value}).[/yellow]"
    )
    choices = [d.value for d in ExistingRepositoryDecision]
    answer = prompt_until_valid(
        "Proceed with the existing repository, abort, or recreate it? "
        f"[{'/'.join(choices)}]",
        lambda v: v.lower() in choices,
        f"Answer one of: {', '.join(choices)}",
        default=ExistingRepositoryDecision.ABORT.value,
    )
    decision = ExistingRepositoryDecision(answer.lower())

    if decision == ExistingRepositoryDecision.RECREATE:
        # Recreate deletes the repository and its history
        typed = typer.prompt(
            f"Type '{target.name}' to confirm deletion", default="", show_default=False
        )
        if typed.strip() != target.name:
            console.print("[yellow]Confirmation did not match; aborting.[/yellow]")
            return ExistingRepositoryDecision.ABORT

    logger.info(f"Existing repository decision for {target.full_name}: {decision.value}")
    return decision
