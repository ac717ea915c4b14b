"""
Parameter validation for infrastructure repository requests.

Normalizes raw request fields (from prompts, CLI flags, a YAML request file
or a dispatch payload) into an immutable ProvisioningRequest. Validation is
pure: no host, filesystem or network access happens here, so a rejected
request never reaches an external system.

All problems are collected before raising, so the caller sees every missing
or malformed field in one ConfigurationError.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from app_infra_cli.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

APP_NAME_PATTERN = re.compile(r"^[a-z0-9-]+$")
ACCOUNT_ID_PATTERN = re.compile(r"^[0-9]{12}$")
ORG_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")
REPO_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")
REGION_PATTERN = re.compile(r"^[a-z]{2}(?:-gov)?-[a-z]+-[0-9]$")

DEFAULT_REGION = "us-east-1"

# Account environments, in the order they are reported and materialized
ACCOUNT_ENVIRONMENTS = ("dev", "staging", "prod")

ACCOUNT_FIELDS = {
    "dev": "dev_account_id",
    "staging": "staging_account_id",
    "prod": "prod_account_id",
}

ReviewerInput = Union[str, Iterable[str], None]


@dataclass(frozen=True)
class ProvisioningRequest:
    """Validated, immutable provisioning inputs passed through every stage."""

    app_name: str
    organization: str
    dev_account_id: str
    staging_account_id: str
    prod_account_id: str
    repo_name: str = ""
    staging_approvers: Tuple[str, ...] = ()
    prod_approvers: Tuple[str, ...] = ()
    region: str = DEFAULT_REGION
    notification_channel: Optional[str] = None
    contacts: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.repo_name:
            object.__setattr__(self, "repo_name", default_repo_name(self.app_name))

    @property
    def accounts(self) -> Dict[str, str]:
        """Account id per environment, in dev/staging/prod order."""
        return {
            "dev": self.dev_account_id,
            "staging": self.staging_account_id,
            "prod": self.prod_account_id,
        }

    @property
    def aws_accounts_string(self) -> str:
        """Accounts in the dispatch input format ``dev:<id>,staging:<id>,prod:<id>``."""
        return ",".join(f"{env}:{acct}" for env, acct in self.accounts.items())

    @property
    def full_name(self) -> str:
        return f"{self.organization}/{self.repo_name}"

    @property
    def warnings(self) -> List[str]:
        """Business-rule warnings that do not block provisioning."""
        warnings = []
        if not self.staging_approvers:
            warnings.append(
                "No staging approvers configured; staging deployments "
                "will not require review"
            )
        if not self.prod_approvers:
            warnings.append(
                "No production approvers configured; production deployments "
                "will only be gated by the wait timer"
            )
        return warnings


def default_repo_name(app_name: str) -> str:
    """Derive the default repository name for an application."""
    return f"{app_name}-infrastructure"


def is_valid_app_name(value: Optional[str]) -> bool:
    return bool(value) and bool(APP_NAME_PATTERN.match(value))


def is_valid_account_id(value: Optional[str]) -> bool:
    return bool(value) and bool(ACCOUNT_ID_PATTERN.match(value))


def parse_reviewers(value: ReviewerInput) -> Tuple[str, ...]:
    """
    Normalize a reviewer list.

    Accepts a comma-separated string or any iterable of handles. Entries are
    trimmed, empties dropped and duplicates removed keeping first occurrence.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        parts: Iterable[str] = value.split(",")
    else:
        parts = value

    seen = set()
    reviewers = []
    for part in parts:
        handle = str(part).strip()
        if not handle or handle in seen:
            continue
        seen.add(handle)
        reviewers.append(handle)
    return tuple(reviewers)


def parse_contacts(value: ReviewerInput) -> Tuple[str, ...]:
    """Contacts share the reviewer list format (comma-separated, de-duplicated)."""
    return parse_reviewers(value)


def parse_aws_accounts(value: str) -> Dict[str, str]:
    """
    Parse the dispatch-style account string.

    Args:
        value: ``dev:<id>,staging:<id>,prod:<id>`` (order-insensitive)

    Returns:
        Mapping of environment to (unvalidated) account id

    Raises:
        ConfigurationError: On unknown environments, duplicates or bad pairs
    """
    errors = []
    accounts: Dict[str, str] = {}

    for pair in (value or "").split(","):
        pair = pair.strip()
        if not pair:
            continue
        env, sep, account_id = pair.partition(":")
        env = env.strip().lower()
        if not sep:
            errors.append(f"aws_accounts: malformed entry '{pair}' (expected env:id)")
            continue
        if env not in ACCOUNT_ENVIRONMENTS:
            errors.append(f"aws_accounts: unknown environment '{env}'")
            continue
        if env in accounts:
            errors.append(f"aws_accounts: duplicate environment '{env}'")
            continue
        accounts[env] = account_id.strip()

    if errors:
        raise ConfigurationError(errors)
    return accounts


def _clean(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    return str(value).strip()


def validate_request(
    raw: Mapping[str, Any], require_all: bool = False
) -> ProvisioningRequest:
    """
    Validate raw request fields and build a ProvisioningRequest.

    Args:
        raw: Field mapping. Account ids may be given individually
            (``dev_account_id`` ...) or as an ``aws_accounts`` string.
            ``target_github_org`` and ``app_team_contacts`` are accepted as
            aliases used by the remote dispatch inputs.
        require_all: Remote-trigger rules, where contacts and both approver
            lists are mandatory in addition to the always-required fields.

    Returns:
        Normalized request

    Raises:
        ConfigurationError: Listing every missing or malformed field
    """
    errors: List[str] = []

    app_name = _clean(raw, "app_name")
    if not app_name:
        errors.append("app_name: required")
    elif not is_valid_app_name(app_name):
        errors.append(
            f"app_name: '{app_name}' must contain only lowercase letters, "
            "numbers, and hyphens"
        )

    organization = _clean(raw, "organization") or _clean(raw, "target_github_org")
    if not organization:
        errors.append("organization: required")
    elif not ORG_PATTERN.match(organization):
        errors.append(f"organization: '{organization}' is not a valid account name")

    repo_name = _clean(raw, "repo_name")
    if repo_name and (
        not REPO_NAME_PATTERN.match(repo_name) or repo_name in (".", "..")
    ):
        errors.append(f"repo_name: '{repo_name}' is not a valid repository name")

    # Accounts: individual fields win over the combined string
    accounts: Dict[str, str] = {}
    combined = _clean(raw, "aws_accounts")
    if combined:
        try:
            accounts.update(parse_aws_accounts(combined))
        except ConfigurationError as exc:
            errors.extend(exc.errors)
    for env, key in ACCOUNT_FIELDS.items():
        value = _clean(raw, key)
        if value:
            accounts[env] = value

    for env in ACCOUNT_ENVIRONMENTS:
        key = ACCOUNT_FIELDS[env]
        account_id = accounts.get(env, "")
        if not account_id:
            errors.append(f"{key}: required")
        elif not is_valid_account_id(account_id):
            errors.append(
                f"{key}: invalid AWS account ID '{account_id}' (must be 12 digits)"
            )

    staging_approvers = parse_reviewers(raw.get("staging_approvers"))
    prod_approvers = parse_reviewers(raw.get("prod_approvers"))
    for key, handles in (
        ("staging_approvers", staging_approvers),
        ("prod_approvers", prod_approvers),
    ):
        bad = [h for h in handles if not HANDLE_PATTERN.match(h)]
        if bad:
            errors.append(f"{key}: invalid handle(s) {', '.join(bad)}")

    contacts = parse_contacts(raw.get("contacts") or raw.get("app_team_contacts"))

    if require_all:
        if not contacts:
            errors.append("app_team_contacts: required")
        if not staging_approvers:
            errors.append("staging_approvers: required")
        if not prod_approvers:
            errors.append("prod_approvers: required")

    region = _clean(raw, "region") or _clean(raw, "aws_region") or DEFAULT_REGION
    if not REGION_PATTERN.match(region):
        errors.append(f"region: '{region}' is not a valid AWS region")

    if errors:
        raise ConfigurationError(errors)

    request = ProvisioningRequest(
        app_name=app_name,
        organization=organization,
        repo_name=repo_name,
        dev_account_id=accounts["dev"],
        staging_account_id=accounts["staging"],
        prod_account_id=accounts["prod"],
        staging_approvers=staging_approvers,
        prod_approvers=prod_approvers,
        region=region,
        notification_channel=_clean(raw, "notification_channel") or None,
        contacts=contacts,
    )

    for warning in request.warnings:
        logger.warning(warning)

    return request
