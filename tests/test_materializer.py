"""
Tests for materializer.py - Template copy and request-specific generation.

Tests verify:
- Every manifest entry is copied and scripts are executable
- aws-accounts.json and backend placeholder replacement
- tfvars/userdata contain README and examples only
- A missing source aborts before anything is written
"""

import json
import shutil

import pytest

from app_infra_cli.exceptions import TemplateMaterializationError
from app_infra_cli.services.materializer import (
    ACCOUNTS_FILE,
    BACKEND_FILES,
    ROLE_NAME,
    TemplateMaterializer,
    is_executable,
)


@pytest.fixture
def materializer(template_root):
    return TemplateMaterializer(template_root)


class TestSourceChecks:
    """Tests for the manifest preflight."""

    def test_complete_template_has_no_missing_sources(self, materializer):
        assert materializer.missing_sources() == []
        materializer.check_sources()

    def test_missing_entries_are_listed(self, template_root, materializer):
        (template_root / "backend.tf").unlink()
        shutil.rmtree(template_root / "docs")

        with pytest.raises(TemplateMaterializationError) as exc_info:
            materializer.check_sources()

        assert exc_info.value.missing == ["backend.tf", "docs/"]

    def test_missing_template_root(self, tmp_path):
        materializer = TemplateMaterializer(tmp_path / "nowhere")

        with pytest.raises(TemplateMaterializationError) as exc_info:
            materializer.check_sources()

        assert exc_info.value.missing == ["<template root>"]

    def test_missing_source_writes_nothing(
        self, tmp_path, template_root, materializer, provisioning_request
    ):
        shutil.rmtree(template_root / ".github")
        tree = tmp_path / "tree"

        with pytest.raises(TemplateMaterializationError):
            materializer.materialize(provisioning_request, tree)

        assert not tree.exists()

    def test_custom_workflow_dir(self, template_root):
        materializer = TemplateMaterializer(template_root, workflow_dir=".workflows/")

        assert materializer.workflow_dir == ".workflows"
        assert ".workflows/" in materializer.missing_sources()


class TestMaterialize:
    """Tests for a full materialization."""

    @pytest.fixture
    def tree(self, tmp_path, materializer, provisioning_request):
        tree = tmp_path / "tree"
        materializer.materialize(provisioning_request, tree)
        return tree

    def test_manifest_copied(self, tree):
        for name in ("main.tf", "variables.tf", "outputs.tf", "backend.tf", "Makefile"):
            assert (tree / name).is_file()
        assert (tree / "config" / "regions.json").is_file()
        assert (tree / "docs" / "ARCHITECTURE.md").is_file()
        assert (tree / ".github" / "workflows" / "terraform-deploy.yml").is_file()

    def test_scripts_executable(self, tree):
        assert is_executable(tree / "deploy.sh")
        assert is_executable(tree / "scripts" / "create-gitops-branches.sh")

    def test_accounts_config(self, tree):
        data = json.loads((tree / ACCOUNTS_FILE).read_text())

        assert data == {
            "dev": {"account_id": "111111111111", "role_name": ROLE_NAME},
            "staging": {"account_id": "222222222222", "role_name": ROLE_NAME},
            "production": {"account_id": "333333333333", "role_name": ROLE_NAME},
        }

    def test_backend_placeholders_replaced(self, tree):
        dev = (tree / BACKEND_FILES["dev"]).read_text()
        prod = (tree / BACKEND_FILES["prod"]).read_text()

        assert "REPLACE_WITH" not in dev
        assert "arn:aws:iam::111111111111:role/TerraformState" in dev
        assert "arn:aws:iam::333333333333:role/TerraformState" in prod

    def test_tfvars_examples_only(self, tree):
        names = sorted(p.name for p in (tree / "tfvars").iterdir())

        assert names == [
            "README.md",
            "dev-terraform.tfvars.example",
            "prod-terraform.tfvars.example",
            "stg-terraform.tfvars.example",
        ]
        dev = (tree / "tfvars" / "dev-terraform.tfvars.example").read_text()
        assert 'project_name = "my-web-app"' in dev
        assert 'account_id   = "111111111111"' in dev

    def test_userdata_examples_only(self, tree):
        names = sorted(p.name for p in (tree / "userdata").iterdir())

        assert names == [
            "README.md",
            "userdata-linux.sh.example",
            "userdata-windows.ps1.example",
        ]

    def test_docs_rendered(self, tree):
        readme = (tree / "README.md").read_text()

        assert readme.startswith("# my-web-app Infrastructure")
        assert "Account ID 222222222222" in readme
        assert "my-web-app" in (tree / "SETUP.md").read_text()

    def test_result_lists_files(self, tmp_path, materializer, provisioning_request):
        result = materializer.materialize(provisioning_request, tmp_path / "other")

        assert "main.tf" in result.copied
        assert ACCOUNTS_FILE in result.generated
        assert "tfvars/README.md" in result.files_written

    def test_rematerialize_is_stable(self, tree, materializer, provisioning_request):
        before = {
            p.relative_to(tree).as_posix(): p.read_bytes()
            for p in tree.rglob("*")
            if p.is_file()
        }

        materializer.materialize(provisioning_request, tree)

        after = {
            p.relative_to(tree).as_posix(): p.read_bytes()
            for p in tree.rglob("*")
            if p.is_file()
        }
        assert before == after

    def test_live_configuration_kept(self, tree, materializer, provisioning_request):
        (tree / "tfvars" / "dev-terraform.tfvars").write_text('environment = "dev"\n')

        materializer.materialize(provisioning_request, tree)

        assert (tree / "tfvars" / "dev-terraform.tfvars").read_text() == (
            'environment = "dev"\n'
        )
