"""
Remote workflow dispatch trigger.

Submits a provisioning request to the platform repository's
``create-app-infrastructure`` workflow through the GitHub
``workflow_dispatch`` API. The call only enqueues the workflow; progress is
followed on the platform repository's Actions page.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from app_infra_cli.exceptions import DispatchError
from app_infra_cli.services.github_host import GITHUB_API, github_headers
from app_infra_cli.utils.secrets import DEFAULT_DISPATCH_WORKFLOW, DEFAULT_PLATFORM_REPO
from app_infra_cli.utils.validation import ProvisioningRequest

logger = logging.getLogger(__name__)

STATUS_HINTS = {
    401: "Authentication failed. Check your GitHub token permissions.",
    404: "Repository or workflow not found. Check the platform repository path.",
    422: "Invalid request. Check the input parameters.",
}


def build_dispatch_payload(request: ProvisioningRequest, ref: str = "main") -> Dict[str, Any]:
    """Workflow dispatch body; every input is a string as the API requires."""
    return {
        "ref": ref,
        "inputs": {
            "app_name": request.app_name,
            "target_github_org": request.organization,
            "app_team_contacts": ",".join(request.contacts),
            "aws_accounts": request.aws_accounts_string,
            "staging_approvers": ",".join(request.staging_approvers),
            "prod_approvers": ",".join(request.prod_approvers),
            "aws_region": request.region,
        },
    }


class WorkflowDispatcher:
    """Triggers the provisioning workflow in the platform repository."""

    def __init__(
        self,
        token: str,
        platform_repo: str = DEFAULT_PLATFORM_REPO,
        workflow: str = DEFAULT_DISPATCH_WORKFLOW,
        api_url: str = GITHUB_API,
        timeout: int = 30,
    ):
        if not token:
            raise ValueError("A GitHub token is required")
        self.platform_repo = platform_repo
        self.workflow = workflow
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.headers = github_headers(token)

    @property
    def dispatch_url(self) -> str:
        owner, _, repo = self.platform_repo.partition("/")
        return (
            f"{self.api_url}/repos/{quote(owner)}/{quote(repo)}"
            f"/actions/workflows/{quote(self.workflow)}/dispatches"
        )

    @property
    def actions_url(self) -> str:
        return f"https://github.com/{self.platform_repo}/actions"

    def dispatch(self, request: ProvisioningRequest, ref: str = "main") -> None:
        """
        POST the dispatch; returns once GitHub has accepted it.

        Raises:
            DispatchError: On any status other than 204, with the body verbatim
        """
        payload = build_dispatch_payload(request, ref)
        logger.info(f"Dispatching {self.workflow} for {request.full_name}")

        try:
            response = requests.post(
                self.dispatch_url,
                headers=self.headers,
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DispatchError(0, str(e), "Could not reach the GitHub API.") from e

        if response.status_code != 204:
            hint: Optional[str] = STATUS_HINTS.get(
                response.status_code,
                "Unexpected error. Check the response above for details.",
            )
            raise DispatchError(response.status_code, response.text, hint)

        logger.info(f"Workflow dispatch accepted for {request.full_name}")
