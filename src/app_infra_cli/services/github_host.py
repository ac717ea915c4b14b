"""
GitHub implementation of the repository host capability interface.

Thin REST client over the GitHub v3 API. Each call is a single blocking
round trip: there is deliberately no retry loop, so a transient failure
surfaces immediately and the enclosing provisioning stage fails. Re-running
provisioning resumes through the idempotent branch/environment contract.

Requires a token with ``repo`` scope (plus ``delete_repo`` for recreate and
``admin:org`` style rights when creating repositories in an organization).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set
from urllib.parse import quote

import requests

from app_infra_cli.exceptions import HostAPIError
from app_infra_cli.services.repository_host import (
    BranchCreateResult,
    EnvironmentSpec,
    RepositoryHandle,
    RepositoryState,
)

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"


def github_headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }


class GitHubHostClient:
    """Repository host backed by the GitHub REST API."""

    def __init__(self, token: str, api_url: str = GITHUB_API, timeout: int = 30):
        if not token:
            raise ValueError("A GitHub token is required")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self.headers = github_headers(token)
        self._user_ids: Dict[str, int] = {}
        self._login: Optional[str] = None

    # ── HTTP helpers ───────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            return requests.request(
                method,
                url,
                headers=self.headers,
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise HostAPIError(0, str(exc), method, url) from exc

    @staticmethod
    def _expect(response: requests.Response, *statuses: int) -> requests.Response:
        if response.status_code not in statuses:
            request = response.request
            raise HostAPIError(
                response.status_code,
                response.text,
                getattr(request, "method", None),
                getattr(request, "url", None),
            )
        return response

    @staticmethod
    def _repo_path(organization: str, name: str) -> str:
        return f"/repos/{quote(organization)}/{quote(name)}"

    def _to_handle(self, data: Dict[str, Any]) -> RepositoryHandle:
        owner = data.get("owner") or {}
        return RepositoryHandle(
            organization=owner.get("login", ""),
            name=data.get("name", ""),
            default_branch=data.get("default_branch") or "main",
            html_url=data.get("html_url", ""),
            clone_url=data.get("clone_url", ""),
        )

    # ── Identity ───────────────────────────────────────────────────

    def authenticated_login(self) -> str:
        """Return the login of the token owner."""
        if self._login is None:
            resp = self._expect(self._request("GET", "/user"), 200)
            self._login = resp.json().get("login", "")
        return self._login

    def _resolve_user_ids(self, handles: Iterable[str]) -> List[int]:
        ids = []
        for handle in handles:
            if handle not in self._user_ids:
                resp = self._expect(
                    self._request("GET", f"/users/{quote(handle)}"), 200
                )
                self._user_ids[handle] = int(resp.json()["id"])
            ids.append(self._user_ids[handle])
        return ids

    # ── Repositories ───────────────────────────────────────────────

    def get_repository(
        self, organization: str, name: str
    ) -> Optional[RepositoryHandle]:
        """Return repository metadata or None if it does not exist."""
        resp = self._request("GET", self._repo_path(organization, name))
        if resp.status_code == 404:
            return None
        self._expect(resp, 200)
        return self._to_handle(resp.json())

    def exists(self, organization: str, name: str) -> bool:
        return self.get_repository(organization, name) is not None

    def get_state(self, organization: str, name: str) -> RepositoryState:
        if not self.exists(organization, name):
            return RepositoryState.ABSENT

        # GitHub answers 404 "This repository is empty." for repos without commits
        resp = self._request("GET", f"{self._repo_path(organization, name)}/contents")
        if resp.status_code == 404:
            return RepositoryState.EXISTS_EMPTY
        self._expect(resp, 200)
        contents = resp.json()
        if isinstance(contents, list) and contents:
            return RepositoryState.EXISTS_POPULATED
        return RepositoryState.EXISTS_EMPTY

    def create(
        self,
        organization: str,
        name: str,
        visibility: str = "private",
        description: str = "",
    ) -> RepositoryHandle:
        """Create a repository under a user or organization.

        The repository is created with ``auto_init`` so the default branch
        has a commit that the GitOps branches can be cut from.
        """
        if organization.lower() == self.authenticated_login().lower():
            path = "/user/repos"
        else:
            path = f"/orgs/{quote(organization)}/repos"

        body = {
            "name": name,
            "description": description,
            "private": visibility != "public",
            "auto_init": True,
        }

        logger.info(f"Creating repository {organization}/{name}")
        resp = self._request("POST", path, json=body)

        if resp.status_code == 422:
            # 422 usually means the repo already exists (e.g. a concurrent run)
            errors = resp.json().get("errors", [])
            if any(
                "already exists" in str(e.get("message", "")) for e in errors
            ):
                existing = self.get_repository(organization, name)
                if existing:
                    logger.warning(f"Repository {organization}/{name} already exists")
                    return existing

        self._expect(resp, 201)
        return self._to_handle(resp.json())

    def delete(self, organization: str, name: str) -> None:
        resp = self._request("DELETE", self._repo_path(organization, name))
        if resp.status_code == 404:
            logger.info(f"Repository {organization}/{name} already absent")
            return
        self._expect(resp, 204)

    def push_url(self, repo: RepositoryHandle) -> str:
        """HTTPS remote URL carrying the token, used for clone and push."""
        clone_url = repo.clone_url or f"https://github.com/{repo.full_name}.git"
        return clone_url.replace("https://", f"https://x-access-token:{self._token}@", 1)

    # ── Branches ───────────────────────────────────────────────────

    def branch_exists(self, repo: RepositoryHandle, name: str) -> bool:
        resp = self._request(
            "GET",
            f"{self._repo_path(repo.organization, repo.name)}/branches/{quote(name)}",
        )
        if resp.status_code == 404:
            return False
        self._expect(resp, 200)
        return True

    def create_branch(
        self, repo: RepositoryHandle, name: str, from_branch: Optional[str] = None
    ) -> BranchCreateResult:
        """Create *name* from the head of *from_branch* (default branch if omitted)."""
        if self.branch_exists(repo, name):
            return BranchCreateResult.ALREADY_EXISTS

        base = from_branch or repo.default_branch
        repo_path = self._repo_path(repo.organization, repo.name)
        ref_resp = self._expect(
            self._request("GET", f"{repo_path}/git/ref/heads/{quote(base)}"), 200
        )
        sha = ref_resp.json()["object"]["sha"]

        resp = self._request(
            "POST",
            f"{repo_path}/git/refs",
            json={"ref": f"refs/heads/{name}", "sha": sha},
        )
        if resp.status_code == 422 and "already exists" in resp.text.lower():
            return BranchCreateResult.ALREADY_EXISTS
        self._expect(resp, 200, 201)
        return BranchCreateResult.CREATED

    # ── Environments ───────────────────────────────────────────────

    def upsert_environment(self, repo: RepositoryHandle, spec: EnvironmentSpec) -> None:
        """Create or overwrite an environment and its branch policy."""
        repo_path = self._repo_path(repo.organization, repo.name)
        env_path = f"{repo_path}/environments/{quote(spec.name)}"

        reviewers = [
            {"type": "User", "id": user_id}
            for user_id in self._resolve_user_ids(spec.reviewers)
        ]
        body = {
            "wait_timer": spec.wait_timer,
            "prevent_self_review": bool(reviewers),
            "reviewers": reviewers,
            "deployment_branch_policy": {
                "protected_branches": False,
                "custom_branch_policies": True,
            },
        }
        self._expect(self._request("PUT", env_path, json=body), 200)

        policies_path = f"{env_path}/deployment-branch-policies"
        resp = self._expect(
            self._request("GET", policies_path, params={"per_page": 100}), 200
        )
        existing = set()
        for policy in resp.json().get("branch_policies", []):
            if policy.get("name") == spec.deployment_branch:
                existing.add(policy["name"])
                continue
            # Only the environment's own branch may deploy to it
            logger.info(
                f"Removing branch policy {policy.get('name')} from environment {spec.name}"
            )
            self._expect(
                self._request("DELETE", f"{policies_path}/{policy['id']}"), 204
            )
        if spec.deployment_branch not in existing:
            self._expect(
                self._request(
                    "POST",
                    policies_path,
                    json={"name": spec.deployment_branch, "type": "branch"},
                ),
                200,
                201,
            )

    def list_environments(self, repo: RepositoryHandle) -> Set[str]:
        resp = self._request(
            "GET",
            f"{self._repo_path(repo.organization, repo.name)}/environments",
            params={"per_page": 100},
        )
        if resp.status_code == 404:
            return set()
        self._expect(resp, 200)
        return {env["name"] for env in resp.json().get("environments", [])}

    # ── Secrets ────────────────────────────────────────────────────

    def list_secrets(self, repo: RepositoryHandle) -> Set[str]:
        """Names of repository Actions secrets; values are never read."""
        resp = self._expect(
            self._request(
                "GET",
                f"{self._repo_path(repo.organization, repo.name)}/actions/secrets",
                params={"per_page": 100},
            ),
            200,
        )
        return {secret["name"] for secret in resp.json().get("secrets", [])}
