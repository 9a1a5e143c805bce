"""Template rendering for prompts, pull request bodies, commit messages and audit files.

Key Exports:
    SecureTemplateEngine: Sandboxed Jinja2 engine over the package templates.
"""

from .engine import SecureTemplateEngine

__all__ = ["SecureTemplateEngine"]
