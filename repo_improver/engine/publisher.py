"""Pull request publishing.

Publishing is idempotent per (repository, head branch): an open pull request
for the head branch is reused instead of opening a second one. Creation is
tried against each base branch candidate in order, and auto-merge is only
requested where the provider supports it.
"""

import asyncio
from collections.abc import Sequence

import structlog

from repo_improver.exceptions import ExternalServiceError, PublishError
from repo_improver.models.domain import PullRequest, PullRequestRecord, RepositoryReference
from repo_improver.providers.base import VcsProvider

log = structlog.get_logger(__name__)


class PullRequestPublisher:
    """Opens (or reuses) pull requests and requests auto-merge."""

    def __init__(self, auto_merge_delay: float = 10.0, merge_method: str = "squash"):
        """Initialize the publisher.

        Args:
            auto_merge_delay: Seconds to wait after creation before requesting
                auto-merge, so CI runs triggered by the PR can register
            merge_method: Merge strategy requested for auto-merge
        """
        self.auto_merge_delay = auto_merge_delay
        self.merge_method = merge_method

    async def publish(
        self,
        reference: RepositoryReference,
        provider: VcsProvider,
        branch: str,
        base_candidates: Sequence[str],
        auto_merge: bool,
        title: str,
        body: str,
    ) -> PullRequestRecord:
        """Publish a pull request for ``branch``.

        Args:
            reference: Repository to publish in
            provider: Hosting provider for the repository
            branch: Head branch, already pushed
            base_candidates: Base branches to try in order (e.g. main, master)
            auto_merge: Whether auto-merge was requested
            title: Pull request title
            body: Pull request description

        Returns:
            Record of the created or reused pull request.

        Raises:
            PublishError: If the open pull request lookup failed, or creation
                failed against every candidate
        """
        try:
            existing = await provider.find_open_pull_request(reference, head=branch)
        except ExternalServiceError as e:
            log.error("pull_request_lookup_failed", repo=reference.raw, head=branch, error=e.message)
            raise PublishError(f"Failed to look up open pull requests for {reference}: {e.message}") from e
        if existing is not None:
            log.info("pull_request_exists", repo=reference.raw, number=existing.number, url=existing.url)
            return self._record(reference, existing, created=False)

        pull_request = await self._create(reference, provider, branch, base_candidates, title, body)
        log.info("pull_request_created", repo=reference.raw, number=pull_request.number, url=pull_request.url)

        if auto_merge:
            await self._request_auto_merge(reference, provider, pull_request)

        return self._record(reference, pull_request, created=True)

    async def _create(
        self,
        reference: RepositoryReference,
        provider: VcsProvider,
        branch: str,
        base_candidates: Sequence[str],
        title: str,
        body: str,
    ) -> PullRequest:
        bases = list(dict.fromkeys(base_candidates))
        if not bases:
            raise PublishError(f"No base branch candidates for {reference}")

        last_error: ExternalServiceError | None = None
        for base in bases:
            try:
                return await provider.create_pull_request(reference, title=title, body=body, head=branch, base=base)
            except ExternalServiceError as e:
                last_error = e
                log.warning("pull_request_create_failed", repo=reference.raw, base=base, error=e.message)

        raise PublishError(
            f"Failed to create pull request for {reference} against {', '.join(bases)}"
            + (f": {last_error.message}" if last_error else ""),
            attempted_bases=bases,
        )

    async def _request_auto_merge(
        self,
        reference: RepositoryReference,
        provider: VcsProvider,
        pull_request: PullRequest,
    ) -> None:
        """Enable auto-merge; failures are logged, never raised."""
        if not provider.supports_auto_merge:
            log.warning(
                "auto_merge_unsupported",
                provider=provider.name,
                detail=f"Auto-merge not available for {provider.name.capitalize()} - manual merge required",
            )
            return

        await asyncio.sleep(self.auto_merge_delay)
        try:
            await provider.enable_auto_merge(reference, pull_request, merge_method=self.merge_method)
        except ExternalServiceError as e:
            log.warning("auto_merge_failed", number=pull_request.number, error=e.message, detail="manual merge required")
            return
        log.info("auto_merge_enabled", number=pull_request.number, method=self.merge_method)

    @staticmethod
    def _record(reference: RepositoryReference, pull_request: PullRequest, created: bool) -> PullRequestRecord:
        return PullRequestRecord(
            repository=reference.raw,
            url=pull_request.url,
            number=pull_request.number,
            base=pull_request.base,
            created=created,
        )
