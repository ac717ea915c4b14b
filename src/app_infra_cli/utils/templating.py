"""
Jinja2-based rendering of generated scaffold files.

The materializer copies most of the infrastructure template verbatim; the
files that carry application-specific values (README, SETUP guide, tfvars
and userdata examples) are rendered from the templates bundled under
``app_infra_cli/templates/scaffold``.

Sandboxed execution prevents arbitrary code execution in templates, and
undefined variables raise instead of rendering as empty strings.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from jinja2 import (
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
    sandbox,
)

logger = logging.getLogger(__name__)

SCAFFOLD_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "scaffold"


class ScaffoldTemplateEngine:
    """
    Sandboxed Jinja2 template engine for generated repository files.

    Provides request-specific variable substitution with strict undefined
    variable handling so a missing value fails materialization loudly.
    """

    def __init__(
        self,
        template_dirs: Optional[List[Union[str, Path]]] = None,
        strict_mode: bool = True,
    ):
        """
        Initializes sandboxed Jinja2 environment.

        Args:
            template_dirs: Template search directories (bundled scaffold if omitted)
            strict_mode: Raises error on undefined variables when True
        """
        self.strict_mode = strict_mode
        dirs = template_dirs or [SCAFFOLD_TEMPLATE_DIR]

        env_kwargs: Dict[str, Any] = {
            "loader": FileSystemLoader([str(d) for d in dirs]),
            "autoescape": False,  # Markdown/HCL/shell, not HTML
            "keep_trailing_newline": True,
        }
        if strict_mode:
            env_kwargs["undefined"] = StrictUndefined
        self.env = sandbox.SandboxedEnvironment(**env_kwargs)

        self.env.filters["jsonify"] = json.dumps

    def render_template(self, name: str, variables: Dict[str, Any]) -> str:
        """Render a template from the search path by name."""
        try:
            template = self.env.get_template(name)
        except TemplateNotFound:
            raise FileNotFoundError(f"Template not found: {name}")
        except TemplateSyntaxError as e:
            raise ValueError(f"Template syntax error in {name} at line {e.lineno}: {e.message}")
        try:
            return template.render(**variables)
        except UndefinedError as e:
            logger.error(f"Undefined variable in template {name}: {e}")
            raise ValueError(f"Undefined variable in template {name}: {e}")

    def render_to_file(
        self, name: str, variables: Dict[str, Any], output_path: Path
    ) -> str:
        """Render a named template and write it to *output_path*."""
        rendered = self.render_template(name, variables)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(rendered)
        logger.debug(f"Rendered {name} to {output_path}")
        return rendered
