"""
Template Materializer.

Populates a working tree from the infrastructure template: the fixed
manifest of Terraform files and directories is copied verbatim, then the
application-specific files are generated (account configuration, backend
token replacement, tfvars/userdata scaffolding, README and SETUP guide).

Only ``*.example`` tfvars and userdata files are ever written. Live
configuration is the application team's responsibility and its absence is
what the Validation Engine reports on.
"""

import json
import logging
import os
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from app_infra_cli.exceptions import TemplateMaterializationError
from app_infra_cli.services.repository_host import (
    REQUIRED_SECRETS,
    EnvironmentSpec,
    build_environment_specs,
)
from app_infra_cli.utils.templating import SCAFFOLD_TEMPLATE_DIR, ScaffoldTemplateEngine
from app_infra_cli.utils.validation import ProvisioningRequest

logger = logging.getLogger(__name__)

# ── Generated repository layout ────────────────────────────────────

MANIFEST_FILES = (
    "main.tf",
    "variables.tf",
    "outputs.tf",
    "backend.tf",
    "Makefile",
    "deploy.sh",
    ".gitignore",
)
MANIFEST_DIRS = ("config", "shared", "scripts", "docs")
DEFAULT_WORKFLOW_DIR = ".github/workflows"

ACCOUNTS_FILE = "config/aws-accounts.json"
ROLE_NAME = "OrganizationAccountAccessRole"

# Request account env -> key in aws-accounts.json
ACCOUNT_CONFIG_KEYS = {"dev": "dev", "staging": "staging", "prod": "production"}

BACKEND_FILES = {
    "dev": "shared/backend-dev.hcl",
    "staging": "shared/backend-staging.hcl",
    "prod": "shared/backend-prod.hcl",
}
BACKEND_PLACEHOLDERS = {
    "dev": "REPLACE_WITH_DEV_ACCOUNT_ID",
    "staging": "REPLACE_WITH_STAGING_ACCOUNT_ID",
    "prod": "REPLACE_WITH_PRODUCTION_ACCOUNT_ID",
}

TFVARS_DIR = "tfvars"
TFVARS_FILES = {
    "dev": "dev-terraform.tfvars",
    "staging": "stg-terraform.tfvars",
    "prod": "prod-terraform.tfvars",
}

USERDATA_DIR = "userdata"
USERDATA_FILES = ("userdata-linux.sh", "userdata-windows.ps1")

GITOPS_SCRIPTS = (
    "create-gitops-branches.sh",
    "setup-github-environments.sh",
    "setup-branch-protection.sh",
)
DOC_PAGES = ("ARCHITECTURE.md", "TROUBLESHOOTING.md", "GITHUB_ACTIONS_SETUP.md")

# Sizing used in the generated tfvars examples
_TFVARS_SIZING = {
    "dev": ("Development", "t3.micro", 20),
    "staging": ("Staging", "t3.small", 30),
    "prod": ("Production", "t3.medium", 50),
}


@dataclass
class MaterializationResult:
    """Paths (relative to the working tree) written by a materialization."""

    working_tree: Path
    copied: List[str] = field(default_factory=list)
    generated: List[str] = field(default_factory=list)

    @property
    def files_written(self) -> List[str]:
        return self.copied + self.generated


def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class TemplateMaterializer:
    """Copies the template manifest and generates request-specific files."""

    def __init__(
        self,
        template_root: Union[str, Path],
        workflow_dir: str = DEFAULT_WORKFLOW_DIR,
        engine: Optional[ScaffoldTemplateEngine] = None,
    ):
        self.template_root = Path(template_root)
        self.workflow_dir = workflow_dir.strip("/")
        self.engine = engine or ScaffoldTemplateEngine()

    @property
    def manifest(self) -> List[str]:
        return list(MANIFEST_FILES) + list(MANIFEST_DIRS) + [self.workflow_dir]

    def missing_sources(self) -> List[str]:
        """Manifest entries absent from the template root, in manifest order."""
        missing = []
        for entry in MANIFEST_FILES:
            if not (self.template_root / entry).is_file():
                missing.append(entry)
        for entry in list(MANIFEST_DIRS) + [self.workflow_dir]:
            if not (self.template_root / entry).is_dir():
                missing.append(f"{entry}/")
        return missing

    def check_sources(self) -> None:
        """
        Verify every manifest source before anything is copied.

        Raises:
            TemplateMaterializationError: Listing all missing paths
        """
        if not self.template_root.is_dir():
            raise TemplateMaterializationError(
                ["<template root>"], str(self.template_root)
            )
        missing = self.missing_sources()
        if missing:
            raise TemplateMaterializationError(missing, str(self.template_root))

    def materialize(
        self,
        request: ProvisioningRequest,
        working_tree: Union[str, Path],
        environments: Optional[Sequence[EnvironmentSpec]] = None,
    ) -> MaterializationResult:
        """
        Populate *working_tree* for *request*.

        Args:
            request: Validated provisioning request
            working_tree: Target directory (typically a clone of the repository)
            environments: Environment specs shown in SETUP.md (derived if omitted)

        Returns:
            MaterializationResult listing copied and generated files

        Raises:
            TemplateMaterializationError: If any manifest source is missing;
                nothing is written in that case
        """
        self.check_sources()

        tree = Path(working_tree)
        tree.mkdir(parents=True, exist_ok=True)
        result = MaterializationResult(working_tree=tree)
        specs = tuple(environments or build_environment_specs(request))

        self._copy_manifest(tree, result)
        self._mark_scripts_executable(tree)
        self._write_accounts_config(request, tree, result)
        self._replace_backend_tokens(request, tree, result)
        self._write_tfvars_scaffold(request, tree, result)
        self._write_userdata_scaffold(request, tree, result)
        self._render_docs(request, specs, tree, result)

        logger.info(f"Materialized {len(result.files_written)} files into {tree}")
        return result

    # ── Copy ───────────────────────────────────────────────────────

    def _copy_manifest(self, tree: Path, result: MaterializationResult) -> None:
        for entry in MANIFEST_FILES:
            shutil.copy2(self.template_root / entry, tree / entry)
            result.copied.append(entry)

        for entry in list(MANIFEST_DIRS) + [self.workflow_dir]:
            source = self.template_root / entry
            shutil.copytree(
                source,
                tree / entry,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(".git", "__pycache__"),
            )
            for path in sorted(source.rglob("*")):
                if path.is_file():
                    result.copied.append(path.relative_to(self.template_root).as_posix())

    def _mark_scripts_executable(self, tree: Path) -> None:
        _make_executable(tree / "deploy.sh")
        for script in sorted((tree / "scripts").glob("*.sh")):
            _make_executable(script)

    # ── Generated configuration ────────────────────────────────────

    def _write_accounts_config(
        self,
        request: ProvisioningRequest,
        tree: Path,
        result: MaterializationResult,
    ) -> None:
        accounts = {
            ACCOUNT_CONFIG_KEYS[env]: {"account_id": account_id, "role_name": ROLE_NAME}
            for env, account_id in request.accounts.items()
        }
        path = tree / ACCOUNTS_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(accounts, f, indent=2)
            f.write("\n")
        result.generated.append(ACCOUNTS_FILE)

    def _replace_backend_tokens(
        self,
        request: ProvisioningRequest,
        tree: Path,
        result: MaterializationResult,
    ) -> None:
        for env, rel_path in BACKEND_FILES.items():
            path = tree / rel_path
            if not path.is_file():
                logger.warning(f"Backend configuration {rel_path} not in template")
                continue
            content = path.read_text(encoding="utf-8")
            replaced = content.replace(BACKEND_PLACEHOLDERS[env], request.accounts[env])
            if replaced != content:
                path.write_text(replaced, encoding="utf-8")
                result.generated.append(rel_path)

    def _write_tfvars_scaffold(
        self,
        request: ProvisioningRequest,
        tree: Path,
        result: MaterializationResult,
    ) -> None:
        base = self._variables(request)
        self._render(
            "tfvars_README.md.j2",
            {**base, "tfvars_files": list(TFVARS_FILES.values())},
            tree,
            f"{TFVARS_DIR}/README.md",
            result,
        )
        for env, filename in TFVARS_FILES.items():
            title, instance_type, volume = _TFVARS_SIZING[env]
            self._render(
                "tfvars.example.j2",
                {
                    **base,
                    "environment": env,
                    "environment_title": title,
                    "account_id": request.accounts[env],
                    "instance_type": instance_type,
                    "root_volume_size": volume,
                },
                tree,
                f"{TFVARS_DIR}/{filename}.example",
                result,
            )

    def _write_userdata_scaffold(
        self,
        request: ProvisioningRequest,
        tree: Path,
        result: MaterializationResult,
    ) -> None:
        self._render(
            "userdata_README.md.j2",
            self._variables(request),
            tree,
            f"{USERDATA_DIR}/README.md",
            result,
        )
        # Terraform interpolation syntax, copied without rendering
        for name in USERDATA_FILES:
            rel_path = f"{USERDATA_DIR}/{name}.example"
            shutil.copyfile(SCAFFOLD_TEMPLATE_DIR / f"{name}.example", tree / rel_path)
            result.generated.append(rel_path)

    def _render_docs(
        self,
        request: ProvisioningRequest,
        environments: Sequence[EnvironmentSpec],
        tree: Path,
        result: MaterializationResult,
    ) -> None:
        variables = {**self._variables(request), "environments": list(environments)}
        self._render("README.md.j2", variables, tree, "README.md", result)
        self._render("SETUP.md.j2", variables, tree, "SETUP.md", result)

    # ── Helpers ────────────────────────────────────────────────────

    def _variables(self, request: ProvisioningRequest) -> Dict[str, object]:
        return {
            "app_name": request.app_name,
            "organization": request.organization,
            "repo_name": request.repo_name,
            "accounts": request.accounts,
            "region": request.region,
            "staging_approvers": list(request.staging_approvers),
            "prod_approvers": list(request.prod_approvers),
            "contacts": list(request.contacts),
            "required_secrets": list(REQUIRED_SECRETS),
            "workflow_dir": self.workflow_dir,
        }

    def _render(
        self,
        template: str,
        variables: Dict[str, object],
        tree: Path,
        rel_path: str,
        result: MaterializationResult,
    ) -> None:
        self.engine.render_to_file(template, variables, tree / rel_path)
        result.generated.append(rel_path)


def is_executable(path: Union[str, Path]) -> bool:
    return os.access(path, os.X_OK)
