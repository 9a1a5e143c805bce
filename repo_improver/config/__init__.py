"""Configuration for repo-improver.

Example:
    >>> from repo_improver.config import ImproverSettings
    >>> settings = ImproverSettings.load()
    >>> settings.model_ref
    'ollama/codellama:7b-code'
"""

from repo_improver.config.settings import ImproverSettings

__all__ = ["ImproverSettings"]
