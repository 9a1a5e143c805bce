"""Custom exception hierarchy for repo-improver.

Stages raise these exceptions; the repository processor catches them and
turns them into a failed result for that repository, so a single bad
repository never aborts the run. Only ConfigurationError is fatal, and only
before the first repository is touched.

Exception Hierarchy:
    RepoImproverError (base)
    ├── ConfigurationError
    ├── GitOperationError
    │   ├── CloneError
    │   └── InvalidRepositoryReferenceError
    ├── TemplateError
    ├── WorkflowError
    ├── ExternalServiceError
    │   └── PublishError
    └── AgentError

Example Usage:
    >>> from repo_improver.exceptions import ConfigurationError
    >>> try:
    ...     settings.check_requirements()
    ... except ConfigurationError as e:
    ...     click.echo(f"Error: {e.message}", err=True)
"""


class RepoImproverError(Exception):
    """Base exception for all repo-improver errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(RepoImproverError):
    """Configuration-related errors.

    Raised when required settings are missing or invalid. The run is
    aborted before any repository is processed.

    Examples:
        - GITHUB_TOKEN not set
        - Repository list file not found
        - Unknown MODEL_PROVIDER value
        - Invalid YAML in the optional config file
    """

    pass


class GitOperationError(RepoImproverError):
    """Git operation errors.

    Raised when git operations fail (clone, fetch, checkout, commit, push)
    or the workspace is in an unexpected state.
    """

    pass


class CloneError(GitOperationError):
    """Cloning a repository into its workspace failed."""

    def __init__(self, reference: str, reason: str) -> None:
        """Initialize exception.

        Args:
            reference: Repository reference that failed to clone
            reason: Underlying failure description
        """
        self.reference = reference
        self.reason = reason
        super().__init__(f"Failed to clone {reference}: {reason}")


class InvalidRepositoryReferenceError(GitOperationError):
    """Repository reference is neither owner/repo nor an http(s) URL."""

    def __init__(self, reference: str, reason: str | None = None) -> None:
        self.reference = reference
        self.reason = reason
        message = f"Invalid repository reference '{reference}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TemplateError(RepoImproverError):
    """Template rendering errors.

    Examples:
        - Template file not found
        - Missing template variables
        - Template path escapes the template directory
    """

    pass


class WorkflowError(RepoImproverError):
    """Workflow execution errors.

    Raised when a repository's processing state machine is driven through an
    illegal transition (for example moving backwards or leaving a terminal
    state).
    """

    pass


class ExternalServiceError(RepoImproverError):
    """External service communication errors.

    Raised when a git hosting API call fails.

    Examples:
        - HTTP request failed
        - API returned an error
        - Authentication rejected
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
            response_text: Response body text (if applicable)
        """
        self.message = message
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


class PublishError(ExternalServiceError):
    """Publishing failed: the open pull request lookup or creation against every base.

    Attributes:
        attempted_bases: Base branches that were tried, in order
    """

    def __init__(self, message: str, attempted_bases: list[str] | None = None) -> None:
        self.attempted_bases = attempted_bases or []
        super().__init__(message)


class AgentError(RepoImproverError):
    """External AI agent could not be executed.

    Timeouts and non-zero exits are not errors (they are reported as
    warnings on the run result); this is raised when the agent cannot be
    started at all.

    Attributes:
        message: Human-readable error description
        agent_type: Agent CLI name (e.g., "opencode")
    """

    def __init__(self, message: str, agent_type: str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            agent_type: Agent CLI that failed
        """
        self.agent_type = agent_type
        full_message = f"{message} (agent: {agent_type})" if agent_type else message
        super().__init__(full_message)
        # Preserve original message
        self.message = message
