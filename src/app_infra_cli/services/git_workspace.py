"""
Local working tree for the target repository.

Wraps GitPython for the three operations provisioning needs: clone the
target repository, commit everything that materialization changed, and push
the result to the default branch.

Credentials embedded in the remote URL are never written to ``.git/config``:
the clone is made from the bare URL and the token is handed to each network
command as an ``http.extraheader`` through the git environment
(``GIT_CONFIG_COUNT``, git 2.31 or later).
"""

import base64
import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
from urllib.parse import unquote, urlsplit, urlunsplit

from git import Actor, Git, GitCommandError, InvalidGitRepositoryError, Repo

from app_infra_cli.exceptions import AppInfraError

logger = logging.getLogger(__name__)

FALLBACK_AUTHOR = Actor("app-infra-cli", "app-infra-cli@users.noreply.github.com")


class GitWorkspaceError(AppInfraError):
    """Raised when a clone, commit or push cannot be completed."""


def configured_identity(repo: Optional[Repo] = None) -> Optional[Tuple[str, str]]:
    """Return the (user.name, user.email) git would commit with, if configured."""
    git_cmd = repo.git if repo is not None else Git()
    try:
        name = git_cmd.config("--get", "user.name")
        email = git_cmd.config("--get", "user.email")
    except GitCommandError:
        # git config --get exits 1 when the key is unset
        return None
    if name and email:
        return (name.strip(), email.strip())
    return None


def split_credentials(url: str) -> Tuple[str, Dict[str, str]]:
    """
    Separate the userinfo of an HTTP(S) remote URL from the URL itself.

    Returns:
        The URL without credentials, and the git environment that supplies
        them as a basic-auth header (empty when the URL carries none)
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.username:
        return url, {}

    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    clean_url = urlunsplit(parts._replace(netloc=netloc))

    userinfo = f"{unquote(parts.username)}:{unquote(parts.password or '')}"
    basic = base64.b64encode(userinfo.encode("utf-8")).decode("ascii")
    env = {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraheader",
        "GIT_CONFIG_VALUE_0": f"AUTHORIZATION: basic {basic}",
    }
    return clean_url, env


class GitWorkspace:
    """Manages the working tree of one target repository"""

    def __init__(self, repo: Repo, auth_env: Optional[Dict[str, str]] = None):
        self.repo = repo
        self.auth_env = dict(auth_env or {})

    @property
    def path(self) -> Path:
        return Path(self.repo.working_tree_dir)

    @classmethod
    def open(
        cls, path: Union[str, Path], auth_env: Optional[Dict[str, str]] = None
    ) -> "GitWorkspace":
        try:
            return cls(Repo(path), auth_env)
        except InvalidGitRepositoryError:
            raise GitWorkspaceError(f"No Git repository found at {path}")

    @classmethod
    def clone(
        cls, url: str, path: Union[str, Path], branch: Optional[str] = None
    ) -> "GitWorkspace":
        """
        Clone *url* into *path*, or reuse and reset an existing clone.

        Re-runs reuse the clone left by an earlier attempt. It is reset to
        the remote *branch*; local commits that never reached the remote
        are dropped, since materialization regenerates the tree anyway. A
        clone whose history the remote no longer has (the repository was
        deleted and recreated) is discarded and cloned again.
        """
        clean_url, auth_env = split_credentials(url)
        target = Path(path)

        if (target / ".git").is_dir():
            workspace = cls.open(target, auth_env)
            workspace.set_remote_url(clean_url)
            if workspace.refresh(branch):
                return workspace
            logger.warning(f"Discarding stale working tree at {target}")
            shutil.rmtree(target)

        try:
            # Checks out the remote default branch; empty repositories clone fine
            repo = Repo.clone_from(clean_url, target, env=auth_env or None)
        except GitCommandError as e:
            raise GitWorkspaceError(f"Clone failed: {e.stderr or e}")
        logger.info(f"Cloned repository into {target}")
        return cls(repo, auth_env)

    @contextmanager
    def _authenticated(self):
        with self.repo.git.custom_environment(**self.auth_env):
            yield

    def set_remote_url(self, url: str) -> None:
        """Point origin at *url*, replacing whatever an earlier run stored."""
        try:
            self.repo.remote("origin").set_url(url)
        except (GitCommandError, ValueError) as e:
            raise GitWorkspaceError(f"Could not update origin: {e}")

    def refresh(self, branch: Optional[str] = None) -> bool:
        """
        Fetch origin and reset the working tree to the remote *branch*.

        Returns:
            False when local history exists that the remote branch does not,
            meaning the clone belongs to a repository that no longer exists
        """
        if not self.has_commits():
            return True
        try:
            with self._authenticated():
                self.repo.git.fetch("--prune", "origin")
            if not branch:
                return True
            if self.remote_head(branch) is None:
                return False
            self.repo.git.checkout("-f", "-B", branch, f"origin/{branch}")
        except GitCommandError as e:
            raise GitWorkspaceError(f"Could not refresh working tree: {e.stderr or e}")
        return True

    def has_commits(self) -> bool:
        return self.repo.head.is_valid()

    def remote_head(self, branch: str) -> Optional[str]:
        """Sha of origin/*branch* as of the last fetch or push, if known."""
        try:
            return self.repo.git.rev_parse("--verify", "--quiet", f"refs/remotes/origin/{branch}")
        except GitCommandError:
            return None

    def needs_push(self, branch: str) -> bool:
        """True when HEAD has not reached origin/*branch* yet."""
        head = self.head_sha()
        return head is not None and head != self.remote_head(branch)

    def commit_all(self, message: str) -> Optional[str]:
        """
        Stage every change and commit it.

        Returns:
            The new commit sha, or None when the tree is unchanged
        """
        self.repo.git.add(A=True)

        if self.has_commits():
            if not self.repo.index.diff("HEAD"):
                logger.info("Working tree unchanged; nothing to commit")
                return None
        elif not list(self.repo.index.entries):
            return None

        actor = None if configured_identity(self.repo) else FALLBACK_AUTHOR
        commit = self.repo.index.commit(message, author=actor, committer=actor)
        logger.info(f"Created commit {commit.hexsha[:8]}")
        return commit.hexsha

    def seed(self, branch: str, message: str = "chore: initialize repository") -> str:
        """Create an empty root commit on *branch* and push it."""
        actor = None if configured_identity(self.repo) else FALLBACK_AUTHOR
        self.repo.git.checkout("-B", branch)
        self.repo.index.commit(message, author=actor, committer=actor)
        self.push(branch)
        return self.repo.head.commit.hexsha

    def push(self, branch: str) -> None:
        """Push HEAD to *branch* on origin."""
        try:
            with self._authenticated():
                results = self.repo.remote("origin").push(
                    refspec=f"HEAD:refs/heads/{branch}"
                )
        except GitCommandError as e:
            raise GitWorkspaceError(f"Push to {branch} failed: {e.stderr or e}")
        for info in results:
            if info.flags & info.ERROR:
                raise GitWorkspaceError(f"Push to {branch} rejected: {info.summary.strip()}")
        logger.info(f"Pushed HEAD to origin/{branch}")

    def head_sha(self) -> Optional[str]:
        if not self.has_commits():
            return None
        return self.repo.head.commit.hexsha
