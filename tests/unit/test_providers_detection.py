"""Tests for repo_improver/providers/detection.py and clone URL building."""

import pytest

from repo_improver.enums import GitProviderType
from repo_improver.exceptions import ConfigurationError
from repo_improver.models.domain import RepositoryReference
from repo_improver.providers.detection import ProviderRegistry, detect_provider
from repo_improver.providers.gitea_rest import GiteaRestProvider
from repo_improver.providers.github_rest import GitHubRestProvider


def ref(raw: str) -> RepositoryReference:
    return RepositoryReference.parse(raw)


class TestAutoDetection:
    @pytest.mark.parametrize(
        "raw,gitea_host,expected",
        [
            ("owner/repo", "", GitProviderType.GITHUB),
            ("owner/repo", "https://gitea.example.com", GitProviderType.GITHUB),
            ("gitea/owner/repo", "https://gitea.example.com", GitProviderType.GITEA),
            ("gitea/owner/repo", "", GitProviderType.GITHUB),
            ("https://github.com/owner/repo", "", GitProviderType.GITHUB),
            ("https://github.com/owner/repo", "https://gitea.example.com", GitProviderType.GITHUB),
            ("https://gitea.example.com/owner/repo", "https://gitea.example.com", GitProviderType.GITEA),
            ("https://git.example.com/owner/repo.git", "", GitProviderType.GITEA),
            ("https://code.corp.internal/owner/repo", "https://gitea.example.com", GitProviderType.GITEA),
            ("http://localhost:3000/owner/repo", "", GitProviderType.GITEA),
        ],
    )
    def test_detect(self, make_settings, raw, gitea_host, expected):
        settings = make_settings(gitea_host=gitea_host)
        assert detect_provider(ref(raw), settings) == expected

    def test_undotted_host_with_configured_gitea_falls_back_to_github(self, make_settings):
        settings = make_settings(gitea_host="https://gitea.example.com")
        assert detect_provider(ref("http://localhost:3000/owner/repo"), settings) == GitProviderType.GITHUB

    def test_detection_is_pure(self, make_settings):
        settings = make_settings(gitea_host="https://gitea.example.com")
        reference = ref("https://gitea.example.com/owner/repo")
        assert {detect_provider(reference, settings) for _ in range(3)} == {GitProviderType.GITEA}


class TestOverride:
    @pytest.mark.parametrize("override", [GitProviderType.GITHUB, GitProviderType.GITEA])
    @pytest.mark.parametrize(
        "raw",
        ["owner/repo", "gitea/owner/repo", "https://github.com/owner/repo", "https://gitea.example.com/o/r"],
    )
    def test_override_is_returned_verbatim(self, make_settings, override, raw):
        settings = make_settings(git_provider=override, gitea_host="https://gitea.example.com")
        assert detect_provider(ref(raw), settings) == override


class TestRegistry:
    def test_requires_providers(self):
        with pytest.raises(ConfigurationError):
            ProviderRegistry([])

    def test_from_settings(self, make_settings):
        registry = ProviderRegistry.from_settings(make_settings(gitea_host="https://gitea.example.com"))
        assert isinstance(registry.get(GitProviderType.GITEA), GiteaRestProvider)
        assert isinstance(registry.get(GitProviderType.GITHUB), GitHubRestProvider)

    def test_get_unknown(self, make_provider):
        registry = ProviderRegistry([make_provider()])
        with pytest.raises(ConfigurationError):
            registry.get(GitProviderType.GITEA)

    def test_unclaimed_reference_falls_back_to_last_provider(self, make_provider):
        first, last = make_provider(claims=False), make_provider(claims=False)
        registry = ProviderRegistry([first, last])
        assert registry.detect(ref("owner/repo")) is last

    @pytest.mark.asyncio
    async def test_verify_authentication_reports_failures(self, make_provider):
        good = make_provider()
        bad = make_provider(authenticated=False)
        bad.provider_type = GitProviderType.GITEA
        registry = ProviderRegistry([bad, good])

        assert await registry.verify_authentication() == {"gitea": False, "github": True}

    @pytest.mark.asyncio
    async def test_context_manager_connects_all(self, make_provider):
        providers = [make_provider(), make_provider()]
        async with ProviderRegistry(providers):
            assert all(p.connected for p in providers)
        assert not any(p.connected for p in providers)


class TestCloneUrls:
    def test_github_shorthand_embeds_token(self):
        provider = GitHubRestProvider(token="ghp_abc")
        assert provider.build_clone_url(ref("owner/repo")) == "https://ghp_abc@github.com/owner/repo.git"

    def test_github_shorthand_without_token(self):
        provider = GitHubRestProvider(token="")
        assert provider.build_clone_url(ref("owner/repo")) == "https://github.com/owner/repo.git"

    def test_github_url_unchanged(self):
        provider = GitHubRestProvider(token="ghp_abc")
        raw = "https://github.com/owner/repo.git"
        assert provider.build_clone_url(ref(raw)) == raw

    def test_gitea_shorthand_uses_configured_host(self):
        provider = GiteaRestProvider(base_url="https://gitea.example.org/", token="t")
        assert provider.build_clone_url(ref("owner/repo")) == "https://gitea.example.org/owner/repo.git"

    def test_gitea_shorthand_uses_placeholder_when_unconfigured(self):
        provider = GiteaRestProvider(base_url="", token="")
        assert provider.build_clone_url(ref("owner/repo")) == "https://gitea.example.com/owner/repo.git"

    def test_gitea_url_unchanged(self):
        provider = GiteaRestProvider(base_url="https://gitea.example.org", token="t")
        raw = "https://other.example.net/owner/repo"
        assert provider.build_clone_url(ref(raw)) == raw
