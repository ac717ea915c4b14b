"""
Validation Engine.

Checks that a provisioned repository is deployable. A fixed, ordered
registry of named checks runs against the working tree and, when a host
and target are supplied, against the remote repository. Each check is
critical (a failure counts as ``fail``) or advisory (a failure counts as
``warn``). A check that raises is recorded as that check's failure and the
run continues.

Checks whose prerequisite did not pass (e.g. the JSON structure of a file
that is missing) are not recorded, so one root cause is reported once.

The engine only reads: it never writes to the tree or calls a mutating
host operation, so it can run at any time, including during provisioning.
"""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from jsonschema import Draft7Validator

from app_infra_cli.services.materializer import (
    ACCOUNTS_FILE,
    BACKEND_FILES,
    BACKEND_PLACEHOLDERS,
    DOC_PAGES,
    GITOPS_SCRIPTS,
    TFVARS_DIR,
    TFVARS_FILES,
    USERDATA_DIR,
    USERDATA_FILES,
    is_executable,
)
from app_infra_cli.services.repository_host import (
    GITOPS_BRANCHES,
    REQUIRED_SECRETS,
    RepositoryHandle,
    RepositoryHost,
)
from app_infra_cli.utils.config import load_schema
from app_infra_cli.utils.validation import is_valid_account_id

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one named check."""

    name: str
    verdict: Verdict
    critical: bool
    remediation: str = ""
    detail: str = ""


def overall_verdict(verdicts) -> Verdict:
    """fail if any fail, else warn if any warn, else pass."""
    verdicts = list(verdicts)
    if Verdict.FAIL in verdicts:
        return Verdict.FAIL
    if Verdict.WARN in verdicts:
        return Verdict.WARN
    return Verdict.PASS


@dataclass
class ValidationReport:
    """Ordered check results; recomputed on every run, never persisted."""

    root: str
    results: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.verdict == Verdict.PASS)

    @property
    def warned(self) -> int:
        return sum(1 for r in self.results if r.verdict == Verdict.WARN)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.verdict == Verdict.FAIL)

    @property
    def overall_verdict(self) -> Verdict:
        return overall_verdict(r.verdict for r in self.results)

    @property
    def exit_code(self) -> int:
        """0 iff no critical check failed, regardless of warnings."""
        return 0 if self.failed == 0 else 1

    def get(self, name: str) -> Optional[CheckResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "verdict": self.overall_verdict.value,
            "passed": self.passed,
            "warned": self.warned,
            "failed": self.failed,
            "checks": [
                {
                    "name": r.name,
                    "verdict": r.verdict.value,
                    "critical": r.critical,
                    "remediation": r.remediation,
                    "detail": r.detail,
                }
                for r in self.results
            ],
        }


# A check function returns None when the check passes, or a problem description
CheckFunc = Callable[[], Optional[str]]


@dataclass(frozen=True)
class Check:
    name: str
    func: CheckFunc
    critical: bool = True
    remediation: str = ""
    requires: Optional[str] = None


class ValidationEngine:
    """
    Runs the check registry against a working tree.

    Args:
        root: Working tree of the provisioned repository
        host: Optional read access to the repository host
        target: Repository on the host; remote checks need host and target
        include_terraform: Also run ``terraform fmt -check`` and ``terraform validate``
    """

    def __init__(
        self,
        root: Union[str, Path],
        host: Optional[RepositoryHost] = None,
        target: Optional[RepositoryHandle] = None,
        include_terraform: bool = False,
        terraform_bin: str = "terraform",
    ):
        self.root = Path(root)
        self.host = host
        self.target = target
        self.include_terraform = include_terraform
        self.terraform_bin = terraform_bin
        self._remote: Optional[RepositoryHandle] = None
        self._accounts: Optional[Dict[str, Any]] = None
        self._secrets_cache: Optional[set] = None
        self._account_schema = load_schema("aws_accounts.json")

    @property
    def remote_enabled(self) -> bool:
        return self.host is not None and self.target is not None

    # ── Registry ───────────────────────────────────────────────────

    def checks(self) -> List[Check]:
        """The ordered check registry for this engine's configuration."""
        checks: List[Check] = [
            self._file_check("main.tf", "Main Terraform file"),
            self._file_check("variables.tf", "Terraform variables file"),
            self._file_check("README.md", "Main README"),
            self._file_check("SETUP.md", "Setup instructions"),
            self._dir_check("docs", "Documentation directory"),
        ]
        checks += [
            self._file_check(f"docs/{page}", page, critical=False, requires="docs")
            for page in DOC_PAGES
        ]

        checks += [
            self._file_check(ACCOUNTS_FILE, "AWS accounts configuration"),
            Check(
                name="aws-accounts.json structure",
                func=self._check_accounts_structure,
                remediation="Regenerate config/aws-accounts.json by re-running provisioning",
                requires=ACCOUNTS_FILE,
            ),
            Check(
                name="aws account ids",
                func=self._check_account_ids,
                remediation="Every account_id must be exactly 12 digits",
                requires="aws-accounts.json structure",
            ),
        ]
        checks += [
            Check(
                name=rel_path,
                func=self._backend_check(env, rel_path),
                critical=False,
                remediation=f"Replace {BACKEND_PLACEHOLDERS[env]} in {rel_path}",
            )
            for env, rel_path in BACKEND_FILES.items()
        ]

        checks.append(self._dir_check(TFVARS_DIR, "tfvars directory"))
        checks += [
            self._file_check(
                f"{TFVARS_DIR}/{name}.example", f"{name} example",
                critical=False, requires=TFVARS_DIR,
            )
            for name in TFVARS_FILES.values()
        ]
        checks += [
            Check(
                name=f"{TFVARS_DIR}/{name}",
                func=self._exists(f"{TFVARS_DIR}/{name}"),
                critical=False,
                remediation=f"cp {TFVARS_DIR}/{name}.example {TFVARS_DIR}/{name}",
                requires=TFVARS_DIR,
            )
            for name in TFVARS_FILES.values()
        ]
        checks.append(
            Check(
                name="tfvars configuration",
                func=self._check_any_tfvars,
                remediation="Create at least one environment tfvars file from its example",
                requires=TFVARS_DIR,
            )
        )

        checks.append(self._dir_check(USERDATA_DIR, "userdata directory"))
        checks += [
            self._file_check(
                f"{USERDATA_DIR}/{name}.example", f"{name} example",
                critical=False, requires=USERDATA_DIR,
            )
            for name in USERDATA_FILES
        ]
        linux_userdata = f"{USERDATA_DIR}/{USERDATA_FILES[0]}"
        checks += [
            Check(
                name=linux_userdata,
                func=self._exists(linux_userdata),
                critical=False,
                remediation=f"cp {linux_userdata}.example {linux_userdata}",
                requires=USERDATA_DIR,
            ),
            self._executable_check(linux_userdata),
        ]

        checks.append(self._dir_check("scripts", "Scripts directory"))
        for script in GITOPS_SCRIPTS:
            rel_path = f"scripts/{script}"
            checks.append(
                self._file_check(rel_path, script, critical=False, requires="scripts")
            )
            checks.append(self._executable_check(rel_path))
        checks += [
            self._file_check("deploy.sh", "Deployment script"),
            self._executable_check("deploy.sh"),
        ]

        if self.include_terraform:
            checks += [
                Check(
                    name="terraform fmt",
                    func=self._terraform(["fmt", "-check", "-recursive"]),
                    critical=False,
                    remediation="Run: terraform fmt -recursive",
                ),
                Check(
                    name="terraform validate",
                    func=self._terraform(["validate", "-no-color"]),
                    critical=False,
                    remediation="Run: terraform init -backend=false && terraform validate",
                ),
            ]

        checks += self._remote_checks()
        return checks

    def _remote_checks(self) -> List[Check]:
        if not self.remote_enabled:
            return [
                Check(
                    name="repository checks",
                    func=lambda: "skipped: no repository host access",
                    critical=False,
                    remediation="Pass --org/--repo and set GITHUB_TOKEN to check branches and environments",
                ),
                Check(
                    name="secret checks",
                    func=lambda: "skipped: no repository host access",
                    critical=False,
                    remediation="Pass --org/--repo and set GITHUB_TOKEN to check required secrets",
                ),
            ]

        checks = [
            Check(
                name="repository accessible",
                func=self._check_repository,
                remediation="Check the repository name and that the token can read it",
            )
        ]
        checks += [
            Check(
                name=f"{branch} branch",
                func=self._branch_check(branch),
                critical=False,
                remediation="Re-run provisioning to create the GitOps branches",
                requires="repository accessible",
            )
            for branch in GITOPS_BRANCHES
        ]
        checks.append(
            Check(
                name="environments configured",
                func=self._check_environments,
                critical=False,
                remediation="Re-run provisioning to configure the deployment environments",
                requires="repository accessible",
            )
        )
        checks += [
            Check(
                name=f"secret {secret}",
                func=self._secret_check(secret),
                remediation=f"Add {secret} under Settings > Secrets and variables > Actions",
                requires="repository accessible",
            )
            for secret in REQUIRED_SECRETS
        ]
        return checks

    # ── Execution ──────────────────────────────────────────────────

    def run(self) -> ValidationReport:
        """Run every check in order and return the report."""
        self._remote = None
        self._accounts = None
        self._secrets_cache = None

        report = ValidationReport(root=str(self.root))
        outcomes: Dict[str, Verdict] = {}

        for check in self.checks():
            if check.requires and outcomes.get(check.requires) != Verdict.PASS:
                logger.debug(f"Skipping {check.name}: {check.requires} did not pass")
                continue

            try:
                problem = check.func()
            except Exception as e:
                logger.debug(f"Check {check.name} raised", exc_info=True)
                problem = f"check raised {type(e).__name__}: {e}"

            if problem is None:
                result = CheckResult(check.name, Verdict.PASS, check.critical)
            else:
                verdict = Verdict.FAIL if check.critical else Verdict.WARN
                result = CheckResult(
                    check.name, verdict, check.critical, check.remediation, problem
                )
            outcomes[check.name] = result.verdict
            report.results.append(result)

        logger.info(
            f"Validation of {self.root}: {report.passed} passed, "
            f"{report.warned} warnings, {report.failed} failed"
        )
        return report

    # ── Check builders ─────────────────────────────────────────────

    def _file_check(
        self,
        rel_path: str,
        description: str,
        critical: bool = True,
        requires: Optional[str] = None,
    ) -> Check:
        def check() -> Optional[str]:
            path = self.root / rel_path
            if not path.is_file():
                return f"Missing file: {rel_path}"
            if path.stat().st_size == 0:
                return f"Empty file: {rel_path}"
            return None

        return Check(
            name=rel_path,
            func=check,
            critical=critical,
            remediation=f"Restore {description} ({rel_path})",
            requires=requires,
        )

    def _dir_check(self, rel_path: str, description: str) -> Check:
        def check() -> Optional[str]:
            if not (self.root / rel_path).is_dir():
                return f"Missing directory: {rel_path}/"
            return None

        return Check(
            name=rel_path,
            func=check,
            remediation=f"Restore the {description} ({rel_path}/)",
        )

    def _exists(self, rel_path: str) -> CheckFunc:
        def check() -> Optional[str]:
            if not (self.root / rel_path).is_file():
                return f"Missing file: {rel_path}"
            return None

        return check

    def _executable_check(self, rel_path: str) -> Check:
        def check() -> Optional[str]:
            if not is_executable(self.root / rel_path):
                return f"Not executable: {rel_path}"
            return None

        return Check(
            name=f"{rel_path} executable",
            func=check,
            critical=False,
            remediation=f"Run: chmod +x {rel_path}",
            requires=rel_path,
        )

    def _backend_check(self, env: str, rel_path: str) -> CheckFunc:
        def check() -> Optional[str]:
            path = self.root / rel_path
            if not path.is_file() or path.stat().st_size == 0:
                return f"Missing or empty file: {rel_path}"
            if BACKEND_PLACEHOLDERS[env] in path.read_text(encoding="utf-8"):
                return f"Unreplaced placeholder {BACKEND_PLACEHOLDERS[env]}"
            return None

        return check

    def _terraform(self, args: List[str]) -> CheckFunc:
        def check() -> Optional[str]:
            if shutil.which(self.terraform_bin) is None:
                return "terraform is not installed"
            proc = subprocess.run(
                [self.terraform_bin, *args],
                cwd=self.root,
                capture_output=True,
                text=True,
                timeout=300,
            )
            if proc.returncode != 0:
                output = (proc.stdout + proc.stderr).strip()
                return output.splitlines()[0] if output else f"exit code {proc.returncode}"
            return None

        return check

    # ── Account configuration ──────────────────────────────────────

    def _check_accounts_structure(self) -> Optional[str]:
        try:
            with open(self.root / ACCOUNTS_FILE, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            return f"Invalid JSON: {e}"

        errors = sorted(
            Draft7Validator(self._account_schema).iter_errors(data),
            key=lambda e: list(e.absolute_path),
        )
        if errors:
            first = errors[0]
            location = ".".join(str(p) for p in first.absolute_path) or "<root>"
            return f"{location}: {first.message}"

        self._accounts = data
        return None

    def _check_account_ids(self) -> Optional[str]:
        invalid = [
            f"{env}={config.get('account_id', '')!r}"
            for env, config in (self._accounts or {}).items()
            if not is_valid_account_id(str(config.get("account_id", "")))
        ]
        if invalid:
            return "Invalid account ID(s): " + ", ".join(invalid)
        return None

    def _check_any_tfvars(self) -> Optional[str]:
        present = [
            name
            for name in TFVARS_FILES.values()
            if (self.root / TFVARS_DIR / name).is_file()
        ]
        if not present:
            return "No tfvars configuration files found"
        return None

    # ── Remote ─────────────────────────────────────────────────────

    def _check_repository(self) -> Optional[str]:
        handle = self.host.get_repository(self.target.organization, self.target.name)
        if handle is None:
            return f"Repository {self.target.full_name} not found or not accessible"
        self._remote = handle
        return None

    def _branch_check(self, branch: str) -> CheckFunc:
        def check() -> Optional[str]:
            if not self.host.branch_exists(self._remote, branch):
                return f"Branch {branch} not found"
            return None

        return check

    def _check_environments(self) -> Optional[str]:
        existing = self.host.list_environments(self._remote)
        missing = [env for env in GITOPS_BRANCHES if env not in existing]
        if missing:
            return "Missing environments: " + ", ".join(missing)
        return None

    def _secret_check(self, secret: str) -> CheckFunc:
        def check() -> Optional[str]:
            if self._secrets_cache is None:
                self._secrets_cache = set(self.host.list_secrets(self._remote))
            if secret not in self._secrets_cache:
                return f"Missing required secret: {secret}"
            return None

        return check
