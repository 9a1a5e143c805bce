"""Secure Jinja2 template rendering engine.

Prompts, pull request bodies, commit messages and the ``.opencode`` audit
files are all rendered from the package templates through this engine.

Security Features:
    - Sandboxed environment prevents arbitrary code execution
    - StrictUndefined catches missing variables early (fail-fast)
    - Template path validation prevents directory traversal

Example:
    >>> engine = SecureTemplateEngine()
    >>> engine.render("commits/agents_md.txt.j2", {"model": "ollama/codellama:7b-code"})
"""

from pathlib import Path
from typing import Any, cast

from jinja2 import (
    FileSystemLoader,
    StrictUndefined,
    TemplateError as JinjaTemplateError,
    TemplateNotFound,
)
from jinja2.sandbox import SandboxedEnvironment

from repo_improver.exceptions import TemplateError


class SecureTemplateEngine:
    """Secure Jinja2 template rendering engine with hardened configuration.

    Configuration options:
        - Autoescape disabled (Markdown and plain text, not HTML)
        - trim_blocks/lstrip_blocks enabled for clean output
        - keep_trailing_newline preserves file format

    Attributes:
        template_dir: Resolved path to the template directory.
        env: The SandboxedEnvironment instance.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        """Initialize secure template engine.

        Args:
            template_dir: Root directory for templates. If None, uses the
                package's built-in templates directory.

        Raises:
            ValueError: If template_dir doesn't exist or isn't a directory.
        """
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates"

        self.template_dir = template_dir.resolve()

        if not self.template_dir.exists():
            raise ValueError(f"Template directory does not exist: {self.template_dir}")
        if not self.template_dir.is_dir():
            raise ValueError(f"Template path is not a directory: {self.template_dir}")

        self.env = SandboxedEnvironment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def validate_template_path(self, template_path: str) -> Path:
        """Validate template path to prevent directory traversal attacks.

        Args:
            template_path: Relative path to template within template_dir.

        Returns:
            Resolved absolute path to the template file.

        Raises:
            ValueError: If path escapes template directory.
            TemplateNotFound: If the template file doesn't exist.
        """
        requested_path = (self.template_dir / template_path).resolve()

        try:
            requested_path.relative_to(self.template_dir)
        except ValueError as e:
            raise ValueError(f"Template path escapes template directory: {template_path}") from e

        if not requested_path.exists():
            raise TemplateNotFound(template_path)

        return requested_path

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a template with the given context.

        Args:
            template_path: Relative path to template within template_dir.
            context: Variables available to the template.

        Returns:
            Rendered text.

        Raises:
            TemplateError: If the template is missing, escapes the template
                directory, or references an undefined variable.
        """
        try:
            self.validate_template_path(template_path)
            template = self.env.get_template(template_path)
            return cast(str, template.render(**context))
        except TemplateNotFound as e:
            raise TemplateError(f"Template not found: {template_path}") from e
        except JinjaTemplateError as e:
            raise TemplateError(f"Failed to render {template_path}: {e}") from e
        except ValueError as e:
            raise TemplateError(str(e)) from e
