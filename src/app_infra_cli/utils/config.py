"""
Request file loading.

A provisioning request may be supplied as a YAML file instead of prompts or
flags. The file is read, ``${VAR}`` references are substituted from the
environment, the result is checked against the bundled JSON schema and the
flattened field mapping is handed to the Parameter Validator.

Example::

    app_name: my-web-app
    organization: my-org
    accounts:
      dev: "111111111111"
      staging: "222222222222"
      prod: "333333333333"
    staging_approvers: [alice, bob]
    prod_approvers: [carol]
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml
from jsonschema import ValidationError, validate

from app_infra_cli.exceptions import ConfigurationError
from app_infra_cli.utils.validation import ACCOUNT_FIELDS

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schemas"


def load_schema(name: str) -> Dict[str, Any]:
    """Load a bundled JSON schema by file name."""
    with open(SCHEMA_DIR / name, "r", encoding="utf-8") as f:
        return json.load(f)


class RequestConfigLoader:
    """Loads and validates a YAML provisioning request file."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.schema = load_schema("provisioning_request.json")

    def load_raw(self) -> Dict[str, Any]:
        """Read, substitute and schema-check the file; returns flat fields."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Request file not found: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            content = self._substitute_env_vars(f.read())

        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError([f"{self.config_path}: invalid YAML ({e})"])

        try:
            validate(instance=data, schema=self.schema)
        except ValidationError as e:
            location = ".".join(str(p) for p in e.absolute_path) or "<root>"
            raise ConfigurationError([f"{location}: {e.message}"])

        logger.debug(f"Loaded request file {self.config_path}")
        return self._flatten(data)

    @staticmethod
    def _flatten(data: Dict[str, Any]) -> Dict[str, Any]:
        """Map the nested ``accounts`` block onto the validator's field names."""
        raw = {k: v for k, v in data.items() if k != "accounts"}
        for env, account_id in (data.get("accounts") or {}).items():
            raw[ACCOUNT_FIELDS[env]] = str(account_id)
        return raw

    @staticmethod
    def _substitute_env_vars(content: str) -> str:
        """Substitute environment variables in format ${VAR_NAME}"""
        pattern = re.compile(r"\$\{([^}^{]+)\}")

        def replace(match):
            value = os.getenv(match.group(1))
            if value is None:
                # Left as is; field validation reports it
                return match.group(0)
            return value

        return pattern.sub(replace, content)
