"""
Abstract base class for git hosting providers.

Each provider knows how to recognise its own repository references, build a
clone URL for them, and drive the hosting API for pull requests. Adding a
hosting backend means adding one implementation of this interface, not
branching on a provider name throughout the pipeline.
"""

from abc import ABC, abstractmethod
from typing import Any

from repo_improver.enums import GitProviderType
from repo_improver.models.domain import Issue, PullRequest, RepositoryReference


class VcsProvider(ABC):
    """Abstract base class for git hosting provider implementations.

    Implementations normalize provider-specific APIs (PyGithub objects, Gitea
    JSON) into the domain models defined in models.domain, and translate
    provider errors into ExternalServiceError so callers handle a single
    exception type.

    All API methods are async; blocking clients are run in a worker thread.
    """

    provider_type: GitProviderType

    @property
    def name(self) -> str:
        return str(self.provider_type)

    @abstractmethod
    def detectable(self, reference: RepositoryReference) -> bool:
        """Whether this provider claims the reference during auto-detection.

        Args:
            reference: Repository reference from the input list.

        Returns:
            True if the reference belongs to this provider.
        """
        pass

    @abstractmethod
    def build_clone_url(self, reference: RepositoryReference) -> str:
        """Build the URL used to clone the repository.

        URL references are returned unchanged; credentials, if any, are
        assumed to be embedded already or handled by the git transport.

        Args:
            reference: Repository reference from the input list.

        Returns:
            Clone URL.
        """
        pass

    @property
    @abstractmethod
    def supports_auto_merge(self) -> bool:
        """Whether enable_auto_merge can succeed for this provider."""
        pass

    @abstractmethod
    async def verify_authentication(self) -> bool:
        """Check the configured credentials against the hosting API.

        Returns:
            True if the API accepted the credentials. Failures are reported
            by returning False, never by raising.
        """
        pass

    @abstractmethod
    async def find_open_pull_request(
        self,
        reference: RepositoryReference,
        head: str,
    ) -> PullRequest | None:
        """Look up an open pull request by head branch.

        Args:
            reference: Repository the pull request belongs to.
            head: Head (source) branch name.

        Returns:
            The first open pull request for the head branch, or None.

        Raises:
            ExternalServiceError: If the API request fails.
        """
        pass

    @abstractmethod
    async def create_pull_request(
        self,
        reference: RepositoryReference,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequest:
        """Open a pull request.

        Args:
            reference: Repository to open the pull request in.
            title: Pull request title.
            body: Pull request description (Markdown).
            head: Source branch name.
            base: Target branch name.

        Returns:
            The created pull request.

        Raises:
            ExternalServiceError: If the API rejects the request (for
                example because the base branch does not exist).
        """
        pass

    @abstractmethod
    async def enable_auto_merge(
        self,
        reference: RepositoryReference,
        pull_request: PullRequest,
        merge_method: str = "squash",
    ) -> None:
        """Request that the pull request merges automatically once checks pass.

        Raises:
            ExternalServiceError: If the request fails or is unsupported.
        """
        pass

    @abstractmethod
    async def list_issues(
        self,
        reference: RepositoryReference,
        label: str,
    ) -> list[Issue]:
        """List open issues carrying a label.

        Raises:
            ExternalServiceError: If the API request fails.
        """
        pass

    async def connect(self) -> None:
        """Open API clients. Default implementation does nothing."""

    async def disconnect(self) -> None:
        """Release API clients. Default implementation does nothing."""

    async def __aenter__(self) -> "VcsProvider":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()
