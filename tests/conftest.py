"""Pytest configuration and shared fixtures."""

from pathlib import Path
from types import SimpleNamespace

import git
import pytest

from repo_improver.config.settings import ImproverSettings
from repo_improver.enums import GitProviderType
from repo_improver.exceptions import ExternalServiceError
from repo_improver.models.domain import AgentRun, Issue, PullRequest, RepositoryReference
from repo_improver.providers.base import VcsProvider
from repo_improver.rendering import SecureTemplateEngine


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's or CI's environment out of settings."""
    for name in ImproverSettings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
    monkeypatch.delenv("CONFIG_FILE", raising=False)


@pytest.fixture
def repos_file(tmp_path: Path) -> Path:
    path = tmp_path / "repos.txt"
    path.write_text("acme/widgets\n")
    return path


@pytest.fixture
def make_settings(tmp_path: Path, repos_file: Path):
    """Factory for settings rooted in the test's tmp_path."""

    def _make(**overrides) -> ImproverSettings:
        values = {
            "repos_file": repos_file,
            "output_dir": tmp_path / "output",
            "workspace_dir": tmp_path / "workspace",
            "prompt_file": tmp_path / "no-prompt.txt",
            "github_token": "ghp_test_token",
            "repo_delay": 0,
            "auto_merge_delay": 0,
        }
        values.update(overrides)
        return ImproverSettings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> ImproverSettings:
    return make_settings()


@pytest.fixture
def templates() -> SecureTemplateEngine:
    return SecureTemplateEngine()


@pytest.fixture
def reference() -> RepositoryReference:
    return RepositoryReference.parse("acme/widgets")


class FakeProvider(VcsProvider):
    """In-memory provider recording every API call."""

    provider_type = GitProviderType.GITHUB

    def __init__(
        self,
        clone_url: str = "",
        existing: PullRequest | None = None,
        failing_bases: tuple[str, ...] = (),
        auto_merge: bool = True,
        auto_merge_error: Exception | None = None,
        issues: dict[str, list[Issue]] | None = None,
        issue_error: Exception | None = None,
        claims: bool = True,
        authenticated: bool = True,
        lookup_error: Exception | None = None,
    ):
        self.clone_url = clone_url
        self.existing = existing
        self.failing_bases = set(failing_bases)
        self._auto_merge = auto_merge
        self.auto_merge_error = auto_merge_error
        self.issues = issues or {}
        self.issue_error = issue_error
        self.claims = claims
        self.authenticated = authenticated
        self.lookup_error = lookup_error
        self.lookups: list[str] = []
        self.created: list[dict[str, str]] = []
        self.auto_merged: list[tuple[int, str]] = []
        self.connected = False

    def detectable(self, reference: RepositoryReference) -> bool:
        return self.claims

    def build_clone_url(self, reference: RepositoryReference) -> str:
        return self.clone_url

    @property
    def supports_auto_merge(self) -> bool:
        return self._auto_merge

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def verify_authentication(self) -> bool:
        return self.authenticated

    async def find_open_pull_request(self, reference: RepositoryReference, head: str) -> PullRequest | None:
        self.lookups.append(head)
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.existing

    async def create_pull_request(
        self,
        reference: RepositoryReference,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequest:
        self.created.append({"title": title, "body": body, "head": head, "base": base})
        if base in self.failing_bases:
            raise ExternalServiceError(f"Base branch {base} does not exist", status_code=422)
        return PullRequest(
            number=7,
            title=title,
            head=head,
            base=base,
            url=f"https://github.com/{reference.full_name}/pull/7",
        )

    async def enable_auto_merge(
        self,
        reference: RepositoryReference,
        pull_request: PullRequest,
        merge_method: str = "squash",
    ) -> None:
        if self.auto_merge_error is not None:
            raise self.auto_merge_error
        self.auto_merged.append((pull_request.number, merge_method))

    async def list_issues(self, reference: RepositoryReference, label: str) -> list[Issue]:
        if self.issue_error is not None:
            raise self.issue_error
        return self.issues.get(label, [])


class FakeAgent:
    """Agent double; each call runs the next action against the workdir."""

    def __init__(self, *actions, exit_code: int = 0, timed_out: bool = False):
        self.actions = list(actions)
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.calls: list[SimpleNamespace] = []

    async def run(self, workdir: Path, prompt: str, timeout: float, log_path: Path) -> AgentRun:
        self.calls.append(SimpleNamespace(workdir=Path(workdir), prompt=prompt, timeout=timeout))
        index = len(self.calls) - 1
        if index < len(self.actions) and self.actions[index] is not None:
            self.actions[index](Path(workdir))

        output = f"agent pass {index + 1}\n"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(output)
        return AgentRun(exit_code=self.exit_code, timed_out=self.timed_out, output=output)


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def make_agent():
    return FakeAgent


def write_file(name: str, content: str = "content\n"):
    """Agent action that writes one file relative to the workdir."""

    def _action(workdir: Path) -> None:
        target = workdir / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)

    return _action


@pytest.fixture
def writes():
    return write_file


@pytest.fixture
def make_origin(tmp_path: Path):
    """Factory for a bare origin repository seeded with one commit on ``main``.

    ``branches`` maps extra branch names to files committed on top of main.
    """

    def _make(
        files: dict[str, str] | None = None,
        branches: dict[str, dict[str, str]] | None = None,
        name: str = "origin.git",
    ) -> Path:
        seed_dir = tmp_path / f"seed-{name}"
        seed = git.Repo.init(seed_dir)
        with seed.config_writer() as config:
            config.set_value("user", "name", "Seed")
            config.set_value("user", "email", "seed@example.com")

        for path, content in (files or {"README.md": "# widgets\n"}).items():
            target = seed_dir / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        seed.git.add(A=True)
        seed.git.commit(m="initial")
        seed.git.branch("-M", "main")

        for branch, branch_files in (branches or {}).items():
            seed.git.checkout("-b", branch)
            for path, content in branch_files.items():
                target = seed_dir / path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)
            seed.git.add(A=True)
            seed.git.commit(m=f"seed {branch}")
            seed.git.checkout("main")

        origin = tmp_path / name
        # Bare clones copy every local branch of the seed
        git.Repo.clone_from(str(seed_dir), str(origin), bare=True).close()
        seed.close()
        return origin

    return _make
