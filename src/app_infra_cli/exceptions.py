"""Custom exception types for infrastructure repository provisioning."""

from __future__ import annotations

from typing import List


class AppInfraError(RuntimeError):
    """Base exception for provisioning and validation failures."""


class ConfigurationError(AppInfraError):
    """Raised when provisioning inputs are missing or malformed.

    Carries every field-level problem at once so callers can report the
    complete list instead of failing on the first bad field.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        message = "Invalid provisioning parameters:\n" + "\n".join(
            f"  - {error}" for error in self.errors
        )
        super().__init__(message)


class ProvisioningAborted(AppInfraError):
    """Raised when the operator declines to continue with a provisioning run."""


class HostAPIError(AppInfraError):
    """Raised when the repository host returns an unexpected status."""

    def __init__(
        self,
        status_code: int,
        body: str | None = None,
        method: str | None = None,
        url: str | None = None,
    ):
        self.status_code = status_code
        self.body = (body or "").strip()
        self.method = method
        self.url = url
        target = f"{method} {url}" if method and url else "repository host call"
        message = (
            f"{target} failed (HTTP {status_code})\n"
            f"response: {self.body or 'n/a'}"
        )
        super().__init__(message)


class TemplateMaterializationError(AppInfraError):
    """Raised when the template manifest cannot be copied in full."""

    def __init__(self, missing: List[str], template_root: str | None = None):
        self.missing = list(missing)
        self.template_root = template_root
        where = f" under {template_root}" if template_root else ""
        message = f"Template paths missing{where}: {', '.join(self.missing)}"
        super().__init__(message)


class StageError(AppInfraError):
    """Raised when a provisioning stage fails; later stages are not run."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")


class DispatchError(AppInfraError):
    """Raised when a remote workflow dispatch is not accepted."""

    def __init__(self, status_code: int, body: str, hint: str | None = None):
        self.status_code = status_code
        self.body = body
        self.hint = hint
        message = f"Failed to trigger pipeline (HTTP {status_code})\n{body}"
        if hint:
            message += f"\n{hint}"
        super().__init__(message)
