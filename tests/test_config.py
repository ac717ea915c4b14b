"""
Tests for config.py - YAML request file loading.
"""

import pytest

from app_infra_cli.exceptions import ConfigurationError
from app_infra_cli.utils.config import RequestConfigLoader, load_schema
from app_infra_cli.utils.validation import validate_request

VALID_REQUEST = """
app_name: my-web-app
organization: acme
accounts:
  dev: "111111111111"
  staging: "222222222222"
  prod: 333333333333
staging_approvers: [alice, bob]
prod_approvers: carol
"""


class TestRequestConfigLoader:
    """Tests for RequestConfigLoader."""

    @pytest.fixture
    def write_config(self, tmp_path):
        def _write(content):
            path = tmp_path / "request.yaml"
            path.write_text(content)
            return str(path)

        return _write

    def test_load_valid_file(self, write_config):
        request = validate_request(RequestConfigLoader(write_config(VALID_REQUEST)).load_raw())

        assert request.app_name == "my-web-app"
        assert request.prod_account_id == "333333333333"
        assert request.staging_approvers == ("alice", "bob")
        assert request.prod_approvers == ("carol",)

    def test_load_raw_flattens_accounts(self, write_config):
        raw = RequestConfigLoader(write_config(VALID_REQUEST)).load_raw()

        assert "accounts" not in raw
        assert raw["dev_account_id"] == "111111111111"
        assert raw["prod_account_id"] == "333333333333"

    def test_env_var_substitution(self, write_config, monkeypatch):
        monkeypatch.setenv("TEST_ORG", "from-env")
        path = write_config(VALID_REQUEST.replace("organization: acme", "organization: ${TEST_ORG}"))

        assert RequestConfigLoader(path).load_raw()["organization"] == "from-env"

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            RequestConfigLoader("/nonexistent/request.yaml").load_raw()

    def test_schema_violation(self, write_config):
        path = write_config("app_name: my-web-app\naccounts: {}\n")

        with pytest.raises(ConfigurationError) as exc_info:
            RequestConfigLoader(path).load_raw()

        assert "organization" in exc_info.value.errors[0]

    def test_unknown_key_rejected(self, write_config):
        path = write_config(VALID_REQUEST + "colour: blue\n")

        with pytest.raises(ConfigurationError):
            RequestConfigLoader(path).load_raw()

    def test_invalid_yaml(self, write_config):
        with pytest.raises(ConfigurationError):
            RequestConfigLoader(write_config("app_name: [unclosed\n")).load_raw()

    def test_field_validation_after_schema(self, write_config):
        path = write_config(VALID_REQUEST.replace('"111111111111"', '"123"'))

        with pytest.raises(ConfigurationError) as exc_info:
            validate_request(RequestConfigLoader(path).load_raw())

        assert any("dev_account_id" in e for e in exc_info.value.errors)


class TestSchemas:
    """Tests for the bundled schemas."""

    def test_schemas_load(self):
        assert load_schema("provisioning_request.json")["type"] == "object"
        accounts = load_schema("aws_accounts.json")
        assert set(accounts["required"]) == {"dev", "staging", "production"}
