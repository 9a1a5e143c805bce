"""Gitea provider implementation using direct REST API calls."""

import re
from datetime import datetime
from typing import Any

import httpx
import structlog

from repo_improver.enums import GitProviderType
from repo_improver.exceptions import ExternalServiceError
from repo_improver.git.parser import GitUrlParser
from repo_improver.models.domain import Issue, PullRequest, RepositoryReference
from repo_improver.providers.base import VcsProvider

log = structlog.get_logger(__name__)

# Any URL whose host contains a dot, i.e. not a bare hostname.
DOTTED_HOST_URL = re.compile(r"^https?://[^/]+\.")

GITEA_PREFIX = "gitea/"


class GiteaRestProvider(VcsProvider):
    """Gitea implementation using direct REST API calls."""

    provider_type = GitProviderType.GITEA

    def __init__(
        self,
        base_url: str,
        token: str,
        placeholder_url: str = "https://gitea.example.com",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        """Initialize Gitea provider.

        Args:
            base_url: Configured Gitea base URL; may be empty when no Gitea
                instance is configured
            token: API token
            placeholder_url: Host used for shorthand clone URLs when base_url is empty
            client: Pre-built HTTP client (tests inject a mock transport)
            timeout: Request timeout in seconds
        """
        self.configured_url = base_url.strip().rstrip("/")
        self.base_url = self.configured_url or placeholder_url.rstrip("/")
        self.token = token.strip() if token else token
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def detectable(self, reference: RepositoryReference) -> bool:
        """Gitea detection heuristic.

        URL references: anything not on github.com that either mentions the
        configured host or has a dotted hostname. With no Gitea host
        configured every non-GitHub URL matches.

        Shorthand references: only ``gitea/...`` and only when a Gitea host is
        configured.
        """
        raw = reference.raw
        if reference.is_url:
            if "github.com" in raw:
                return False
            if not self.configured_url or self.configured_url in raw:
                return True
            return bool(DOTTED_HOST_URL.match(raw))

        return bool(self.configured_url) and raw.startswith(GITEA_PREFIX)

    def build_clone_url(self, reference: RepositoryReference) -> str:
        if reference.is_url:
            return reference.raw
        return f"{self.base_url}/{reference.path}.git"

    @property
    def supports_auto_merge(self) -> bool:
        return False

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def connect(self) -> None:
        """Create the HTTP client if one was not injected."""
        _ = self.client
        log.debug("gitea_client_created", base_url=self.base_url)

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _api_base(self, reference: RepositoryReference | None = None) -> str:
        """API root for a reference; URL references carry their own host."""
        if reference is not None and reference.is_url:
            return f"{GitUrlParser(reference.raw).base_url}/api/v1"
        return f"{self.base_url}/api/v1"

    async def _request(
        self,
        method: str,
        url: str,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, url, headers=self.headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error("gitea_request_failed", action=action, status=e.response.status_code)
            raise ExternalServiceError(
                f"Gitea {action} failed",
                status_code=e.response.status_code,
                response_text=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            log.error("gitea_request_error", action=action, error=str(e))
            raise ExternalServiceError(f"Gitea {action} failed: {e}") from e
        return response

    async def verify_authentication(self) -> bool:
        if not self.configured_url or not self.token:
            log.debug("gitea_not_configured")
            return False
        try:
            response = await self._request("GET", f"{self._api_base()}/user", "authentication")
        except ExternalServiceError as e:
            log.warning("gitea_auth_failed", error=e.message, status=e.status_code)
            return False
        log.info("gitea_authenticated", base_url=self.base_url, login=response.json().get("login"))
        return True

    async def find_open_pull_request(
        self,
        reference: RepositoryReference,
        head: str,
    ) -> PullRequest | None:
        """Find an open pull request for the head branch."""
        log.info("find_open_pull_request", repo=reference.full_name, head=head)

        pulls_url = f"{self._api_base(reference)}/repos/{reference.full_name}/pulls"
        page = 1
        while True:
            response = await self._request(
                "GET",
                pulls_url,
                "pull request lookup",
                params={"state": "open", "page": page, "limit": 50},
            )
            pulls = response.json()
            for pr in pulls:
                if pr["head"]["ref"] == head:
                    return self._parse_pull_request(pr)
            if len(pulls) < 50:
                return None
            page += 1

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

        response = await self._request(
            "POST",
            f"{self._api_base(reference)}/repos/{reference.full_name}/pulls",
            "pull request creation",
            json={"title": title, "body": body, "head": head, "base": base},
        )
        return self._parse_pull_request(response.json())

    async def enable_auto_merge(
        self,
        reference: RepositoryReference,
        pull_request: PullRequest,
        merge_method: str = "squash",
    ) -> None:
        raise ExternalServiceError("Auto-merge not available for Gitea - manual merge required")

    async def list_issues(
        self,
        reference: RepositoryReference,
        label: str,
    ) -> list[Issue]:
        """List open issues carrying a label."""
        log.debug("list_issues", repo=reference.full_name, label=label)

        response = await self._request(
            "GET",
            f"{self._api_base(reference)}/repos/{reference.full_name}/issues",
            "issue listing",
            params={"state": "open", "labels": label, "type": "issues"},
        )
        return [self._parse_issue(issue) for issue in response.json()]

    def _parse_issue(self, data: dict[str, Any]) -> Issue:
        return Issue(
            number=data["number"],
            title=data["title"],
            url=data["html_url"],
            labels=[label["name"] for label in data.get("labels") or []],
            body=data.get("body") or "",
        )

    def _parse_pull_request(self, data: dict[str, Any]) -> PullRequest:
        """Parse pull request data from a Gitea REST API response.

        Field mappings:
            - data["number"] -> number (repository-scoped PR number)
            - data["head"]["ref"] / data["base"]["ref"] -> head / base
            - data["html_url"] -> url (web UI link)
            - data["created_at"] -> created_at (ISO 8601, 'Z' suffix for UTC)
        """
        created_at = data.get("created_at")
        return PullRequest(
            number=data["number"],
            title=data.get("title", ""),
            head=data["head"]["ref"],
            base=data["base"]["ref"],
            url=data["html_url"],
            state=data.get("state", "open"),
            created_at=datetime.fromisoformat(created_at.replace("Z", "+00:00")) if created_at else None,
        )
