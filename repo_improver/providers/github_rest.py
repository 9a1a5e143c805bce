"""GitHub provider implementation using PyGithub and REST API."""

import asyncio
from collections.abc import Callable
from typing import TypeVar

import requests
import structlog
from github import Auth, Github, GithubException  # type: ignore[import-not-found]
from github.Issue import Issue as GHIssue  # type: ignore[import-not-found]
from github.PullRequest import PullRequest as GHPullRequest  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from repo_improver.enums import GitProviderType
from repo_improver.exceptions import ExternalServiceError
from repo_improver.models.domain import Issue, PullRequest, RepositoryReference
from repo_improver.providers.base import VcsProvider

log = structlog.get_logger(__name__)

T = TypeVar("T")

GITHUB_HOST = "github.com"


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


# PyGithub surfaces transport failures as requests exceptions
GITHUB_ERRORS = (GithubException, requests.RequestException)


def _service_error(action: str, error: Exception) -> ExternalServiceError:
    if not isinstance(error, GithubException):
        return ExternalServiceError(f"GitHub {action} failed: {error}")
    return ExternalServiceError(
        f"GitHub {action} failed: {error.data.get('message') if isinstance(error.data, dict) else error}",
        status_code=error.status,
        response_text=str(error.data),
    )


class GitHubRestProvider(VcsProvider):
    """GitHub implementation using PyGithub library.

    GitHub is the catch-all provider: any reference not claimed by another
    provider is treated as a GitHub repository.
    """

    provider_type = GitProviderType.GITHUB

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
    ):
        """Initialize GitHub provider.

        Args:
            token: GitHub personal access token or App token
            base_url: GitHub API base URL (for GitHub Enterprise)
        """
        self.token = token.strip() if token else token
        self.base_url = base_url.rstrip("/")
        self._client: Github | None = None
        self._repos: dict[str, GHRepository] = {}

    def detectable(self, reference: RepositoryReference) -> bool:
        """Claim every reference; the registry asks GitHub last."""
        return True

    def build_clone_url(self, reference: RepositoryReference) -> str:
        if reference.is_url:
            return reference.raw
        if self.token:
            return f"https://{self.token}@{GITHUB_HOST}/{reference.path}.git"
        return f"https://{GITHUB_HOST}/{reference.path}.git"

    @property
    def supports_auto_merge(self) -> bool:
        return True

    def _build_client(self) -> Github:
        # Anonymous when no token is configured (Gitea-only runs)
        auth = Auth.Token(self.token) if self.token else None
        return Github(auth=auth, base_url=self.base_url)

    @property
    def client(self) -> Github:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def connect(self) -> None:
        """Initialize GitHub client."""
        self._client = await _run_sync(self._build_client)
        log.debug("github_client_created", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close GitHub client."""
        if self._client:
            await _run_sync(self._client.close)
            self._client = None
            self._repos.clear()

    async def verify_authentication(self) -> bool:
        if not self.token:
            return False
        try:
            login = await _run_sync(lambda: self.client.get_user().login)
        except GITHUB_ERRORS as e:
            log.warning("github_auth_failed", status=getattr(e, "status", None), error=str(e))
            return False
        log.info("github_authenticated", login=login)
        return True

    async def _get_repo(self, reference: RepositoryReference) -> GHRepository:
        full_name = reference.full_name
        if full_name not in self._repos:
            try:
                self._repos[full_name] = await _run_sync(lambda: self.client.get_repo(full_name))
            except GITHUB_ERRORS as e:
                log.error("github_get_repo_failed", repo=full_name, error=str(e))
                raise _service_error(f"lookup of {full_name}", e) from e
        return self._repos[full_name]

    async def find_open_pull_request(
        self,
        reference: RepositoryReference,
        head: str,
    ) -> PullRequest | None:
        """Find an open pull request for the head branch."""
        owner = reference.full_name.split("/")[0]
        log.info("find_open_pull_request", repo=reference.full_name, head=head)

        repo = await self._get_repo(reference)
        try:
            gh_pulls = await _run_sync(lambda: list(repo.get_pulls(state="open", head=f"{owner}:{head}")))
        except GITHUB_ERRORS as e:
            log.error("github_list_prs_failed", head=head, error=str(e))
            raise _service_error("pull request lookup", e) from e

        if not gh_pulls:
            return None
        return self._convert_pull_request(gh_pulls[0])

    async def create_pull_request(
        self,
        reference: RepositoryReference,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequest:
        """Create a pull request."""
        log.info("create_pull_request", repo=reference.full_name, title=title, head=head, base=base)

        repo = await self._get_repo(reference)
        try:
            gh_pr = await _run_sync(lambda: repo.create_pull(title=title, body=body, head=head, base=base))
        except GITHUB_ERRORS as e:
            log.error("github_create_pr_failed", base=base, error=str(e))
            raise _service_error("pull request creation", e) from e

        return self._convert_pull_request(gh_pr)

    async def enable_auto_merge(
        self,
        reference: RepositoryReference,
        pull_request: PullRequest,
        merge_method: str = "squash",
    ) -> None:
        """Enable auto-merge on a pull request (requires repository support)."""
        log.info("enable_auto_merge", repo=reference.full_name, number=pull_request.number, method=merge_method)

        repo = await self._get_repo(reference)

        def _enable() -> None:
            gh_pr = repo.get_pull(pull_request.number)
            gh_pr.enable_automerge(merge_method=merge_method.upper())

        try:
            await _run_sync(_enable)
        except GITHUB_ERRORS as e:
            raise _service_error("auto-merge", e) from e

    async def list_issues(
        self,
        reference: RepositoryReference,
        label: str,
    ) -> list[Issue]:
        """List open issues (not pull requests) carrying a label."""
        log.debug("list_issues", repo=reference.full_name, label=label)

        repo = await self._get_repo(reference)
        try:
            gh_issues = await _run_sync(lambda: list(repo.get_issues(state="open", labels=[label])))
        except GITHUB_ERRORS as e:
            raise _service_error("issue listing", e) from e

        return [self._convert_issue(gh_issue) for gh_issue in gh_issues if gh_issue.pull_request is None]

    def _convert_issue(self, gh_issue: GHIssue) -> Issue:
        """Convert GitHub Issue to our Issue model."""
        return Issue(
            number=gh_issue.number,
            title=gh_issue.title,
            url=gh_issue.html_url,
            labels=[label.name for label in gh_issue.labels],
            body=gh_issue.body or "",
        )

    def _convert_pull_request(self, gh_pr: GHPullRequest) -> PullRequest:
        """Convert GitHub PullRequest to our PullRequest model."""
        return PullRequest(
            number=gh_pr.number,
            title=gh_pr.title,
            head=gh_pr.head.ref,
            base=gh_pr.base.ref,
            url=gh_pr.html_url,
            state=gh_pr.state,
            created_at=gh_pr.created_at,
        )
