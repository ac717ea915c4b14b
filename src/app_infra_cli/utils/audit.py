"""
Audit logging for provisioning side effects.

Every host mutation (repository create/delete, branch creation, environment
upsert) and every push is appended as one JSON object per line, so a run
that failed half-way can be reconstructed before it is repeated.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

LOG_PREFIX = "provisioning_operations_"


class AuditLogger:
    """Lightweight JSONL audit trail"""

    def __init__(self, log_directory: str = "audit_logs"):
        self.log_directory = Path(log_directory)
        self.log_directory.mkdir(parents=True, exist_ok=True)

        date_str = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_directory / f"{LOG_PREFIX}{date_str}.jsonl"

        # One logger per file so several audit directories can coexist
        self.logger = logging.getLogger(f"app_infra_audit.{self.log_file.resolve()}")
        self.logger.propagate = False
        if not self.logger.handlers:
            handler = logging.FileHandler(self.log_file, encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

    def log_operation(
        self,
        operation: str,
        repository: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> None:
        """Log a provisioning operation"""

        audit_record = {
            "timestamp": datetime.now(timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%S.%fZ"
            ),
            "operation": operation,
            "repository": repository,
            "success": success,
            "user": os.getenv("USER", "unknown"),
            "details": details or {},
        }

        if error:
            audit_record["error"] = error

        self.logger.info(json.dumps(audit_record))

    def log_run_start(self, repository: str, app_name: str, dry_run: bool = False) -> None:
        self.log_operation(
            operation="provision_start",
            repository=repository,
            details={"app_name": app_name, "dry_run": dry_run},
        )

    def log_repository_creation(
        self,
        repository: str,
        url: str = "",
        success: bool = True,
        error: Optional[str] = None,
    ) -> None:
        self.log_operation(
            operation="repository_create",
            repository=repository,
            details={"url": url},
            success=success,
            error=error,
        )

    def log_repository_deletion(self, repository: str) -> None:
        self.log_operation(operation="repository_delete", repository=repository)

    def log_branch_creation(self, repository: str, branch: str, result: str) -> None:
        self.log_operation(
            operation="branch_create",
            repository=repository,
            details={"branch": branch, "result": result},
        )

    def log_environment_upsert(
        self,
        repository: str,
        environment: str,
        reviewers: list,
        wait_timer: int,
    ) -> None:
        self.log_operation(
            operation="environment_upsert",
            repository=repository,
            details={
                "environment": environment,
                "reviewers": list(reviewers),
                "wait_timer": wait_timer,
            },
        )

    def log_commit(self, repository: str, branch: str, sha: Optional[str]) -> None:
        self.log_operation(
            operation="commit_push",
            repository=repository,
            details={"branch": branch, "sha": sha, "changed": sha is not None},
        )

    def log_stage_failure(self, repository: str, stage: str, error: str) -> None:
        self.log_operation(
            operation="stage_failed",
            repository=repository,
            details={"stage": stage},
            success=False,
            error=error,
        )

    def log_run_complete(
        self, repository: str, stages_completed: int, duration_seconds: float
    ) -> None:
        self.log_operation(
            operation="provision_complete",
            repository=repository,
            details={
                "stages_completed": stages_completed,
                "duration_seconds": round(duration_seconds, 2),
            },
        )
