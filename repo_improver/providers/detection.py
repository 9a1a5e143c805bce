"""Provider detection and lookup.

The registry holds one provider instance per hosting backend for the whole
run. Auto-detection asks each provider in order whether it claims a
reference; GitHub is registered last and claims everything, so it acts as
the default.
"""

from collections.abc import Sequence
from typing import Any

import structlog

from repo_improver.config.settings import GITEA_PLACEHOLDER_HOST, ImproverSettings
from repo_improver.enums import GitProviderType
from repo_improver.exceptions import ConfigurationError
from repo_improver.models.domain import RepositoryReference
from repo_improver.providers.base import VcsProvider
from repo_improver.providers.gitea_rest import GiteaRestProvider
from repo_improver.providers.github_rest import GitHubRestProvider

log = structlog.get_logger(__name__)


class ProviderRegistry:
    """Ordered collection of providers with an optional explicit override."""

    def __init__(
        self,
        providers: Sequence[VcsProvider],
        override: GitProviderType = GitProviderType.AUTO,
    ):
        if not providers:
            raise ConfigurationError("At least one git provider must be registered")
        self.providers = list(providers)
        self.override = override

    @classmethod
    def from_settings(cls, settings: ImproverSettings) -> "ProviderRegistry":
        """Build the Gitea and GitHub providers from settings."""
        providers: list[VcsProvider] = [
            GiteaRestProvider(
                base_url=settings.gitea_host,
                token=settings.gitea_token_value(),
                placeholder_url=GITEA_PLACEHOLDER_HOST,
            ),
            GitHubRestProvider(token=settings.github_token_value()),
        ]
        return cls(providers, override=settings.git_provider)

    def get(self, provider_type: GitProviderType) -> VcsProvider:
        for provider in self.providers:
            if provider.provider_type == provider_type:
                return provider
        raise ConfigurationError(f"No provider registered for {provider_type}")

    def detect(self, reference: RepositoryReference) -> VcsProvider:
        """Pick the provider for a reference.

        An explicit override is returned without inspecting the reference.
        """
        if self.override != GitProviderType.AUTO:
            return self.get(self.override)

        for provider in self.providers:
            if provider.detectable(reference):
                log.debug("provider_detected", repo=reference.raw, provider=provider.name)
                return provider

        # Unclaimed references fall back to the last registered provider
        return self.providers[-1]

    async def verify_authentication(self) -> dict[str, bool]:
        """Verify credentials for every provider; failures are warnings only."""
        results: dict[str, bool] = {}
        for provider in self.providers:
            results[provider.name] = await provider.verify_authentication()
            if not results[provider.name]:
                log.warning("provider_auth_unavailable", provider=provider.name)
        return results

    async def connect(self) -> None:
        for provider in self.providers:
            await provider.connect()

    async def disconnect(self) -> None:
        for provider in self.providers:
            await provider.disconnect()

    async def __aenter__(self) -> "ProviderRegistry":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()


def detect_provider(reference: RepositoryReference, settings: ImproverSettings) -> GitProviderType:
    """Return the provider type for a reference under the given settings."""
    return ProviderRegistry.from_settings(settings).detect(reference).provider_type
