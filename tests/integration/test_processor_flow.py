"""End-to-end repository processing against real git origins.

The hosting API and the agent are faked; cloning, branching, committing and
pushing run for real against bare repositories in tmp_path.
"""

from pathlib import Path
from unittest.mock import Mock, patch

import git
import pytest
import requests
import structlog

from repo_improver.engine.audit import ArtifactStore
from repo_improver.engine.improvement import ImprovementRunner
from repo_improver.engine.processor import AGENTS_MD_TITLE, RepositoryProcessor
from repo_improver.engine.publisher import PullRequestPublisher
from repo_improver.enums import ProcessingState, RunMode
from repo_improver.exceptions import ExternalServiceError
from repo_improver.models.domain import Issue, PullRequest
from repo_improver.providers.detection import ProviderRegistry
from repo_improver.providers.github_rest import GitHubRestProvider

pytestmark = pytest.mark.integration

S = ProcessingState


@pytest.fixture
def build_processor(make_settings, templates):
    def _build(provider, agent, **overrides):
        settings = make_settings(**overrides)
        artifacts = ArtifactStore(settings.output_dir)
        artifacts.prepare()
        processor = RepositoryProcessor(
            settings=settings,
            registry=ProviderRegistry([provider]),
            runner=ImprovementRunner(agent, settings, templates),
            publisher=PullRequestPublisher(auto_merge_delay=0),
            artifacts=artifacts,
            templates=templates,
        )
        return processor, artifacts, settings

    return _build


def agents_md_and_scratch(workdir: Path) -> None:
    (workdir / "AGENTS.md").write_text("# Agents\n\nRun `make test`.\n")
    (workdir / "scratch.txt").write_text("agent notes, not for commit\n")


def unreachable_github(origin: Path) -> GitHubRestProvider:
    """GitHub provider whose API calls fail with a connection error; clones come from origin."""
    provider = GitHubRestProvider(token="ghp_test_token")
    provider.build_clone_url = lambda reference: str(origin)  # type: ignore[method-assign]
    client = Mock()
    client.get_repo.side_effect = requests.ConnectionError("Connection refused")
    provider._client = client
    return provider


def remote_files(origin: Path, branch: str) -> set[str]:
    return set(git.Repo(origin).git.ls_tree("-r", "--name-only", branch).split())


class TestOneShot:
    @pytest.mark.asyncio
    async def test_published(self, make_origin, make_provider, make_agent, build_processor, reference):
        origin = make_origin()
        provider = make_provider(clone_url=str(origin))
        processor, artifacts, settings = build_processor(provider, make_agent(agents_md_and_scratch))

        result = await processor.process(reference)

        assert result.state == S.PUBLISHED
        assert result.history == [S.CLONING, S.BRANCH_READY, S.IMPROVING, S.COMMITTED, S.PUBLISHING, S.PUBLISHED]
        assert result.succeeded

        [created] = provider.created
        assert created["head"].startswith("opencode/agents-md-")
        assert created["base"] == "main"
        assert created["title"] == AGENTS_MD_TITLE
        assert "**Model**: ollama/codellama:7b-code" in created["body"]
        assert provider.auto_merged == []

        assert remote_files(origin, created["head"]) == {"README.md", "AGENTS.md"}
        assert [row["pr_url"] for row in artifacts.ledger.rows()] == ["https://github.com/acme/widgets/pull/7"]
        assert (settings.output_dir / "acme_widgets_AGENTS.md").read_text().startswith("# Agents")
        assert "agent pass 1" in (settings.output_dir / "acme_widgets_analysis.log").read_text()
        assert not (settings.workspace_dir / "acme_widgets").exists()

    @pytest.mark.asyncio
    async def test_prompt_file_overrides_builtin(self, make_origin, make_provider, make_agent, build_processor, reference, tmp_path):
        prompt_file = tmp_path / "prompt.txt"
        prompt_file.write_text("Custom instructions for AGENTS.md\n")
        agent = make_agent(agents_md_and_scratch)
        processor, _, _ = build_processor(
            make_provider(clone_url=str(make_origin())), agent, prompt_file=prompt_file
        )

        await processor.process(reference)

        assert agent.calls[0].prompt == "Custom instructions for AGENTS.md\n"

    @pytest.mark.asyncio
    async def test_missing_artifact_fails_after_retry(self, make_origin, make_provider, make_agent, build_processor, reference):
        provider = make_provider(clone_url=str(make_origin()))
        agent = make_agent()
        processor, artifacts, settings = build_processor(provider, agent)

        result = await processor.process(reference)

        assert result.state == S.FAILED
        assert "AGENTS.md was not created after 2 attempts" in result.error
        assert len(agent.calls) == 2
        assert provider.created == []
        assert artifacts.ledger.rows() == []
        assert not (settings.workspace_dir / "acme_widgets").exists()

    @pytest.mark.asyncio
    async def test_existing_pull_request_is_not_duplicated(self, make_origin, make_provider, make_agent, build_processor, reference):
        existing = PullRequest(number=3, title="t", head="x", base="main", url="https://github.com/acme/widgets/pull/3")
        provider = make_provider(clone_url=str(make_origin()), existing=existing)
        processor, artifacts, _ = build_processor(provider, make_agent(agents_md_and_scratch))

        result = await processor.process(reference)

        assert result.state == S.PUBLISHED
        assert result.pull_request is not None and result.pull_request.created is False
        assert provider.created == []
        assert artifacts.ledger.rows() == []

    @pytest.mark.asyncio
    async def test_publish_failure(self, make_origin, make_provider, make_agent, build_processor, reference):
        provider = make_provider(clone_url=str(make_origin()), failing_bases=("main", "master"))
        processor, _, _ = build_processor(provider, make_agent(agents_md_and_scratch))

        result = await processor.process(reference)

        assert result.state == S.PUBLISH_FAILED
        assert not result.succeeded
        assert [c["base"] for c in provider.created] == ["main", "master"]

    @pytest.mark.asyncio
    async def test_pull_request_lookup_failure(self, make_origin, make_provider, make_agent, build_processor, reference):
        provider = make_provider(
            clone_url=str(make_origin()), lookup_error=ExternalServiceError("Bad Gateway", status_code=502)
        )
        processor, artifacts, _ = build_processor(provider, make_agent(agents_md_and_scratch))

        result = await processor.process(reference)

        assert result.state == S.PUBLISH_FAILED
        assert result.history[-2:] == [S.PUBLISHING, S.PUBLISH_FAILED]
        assert "Bad Gateway" in result.error
        assert provider.created == []
        assert artifacts.ledger.rows() == []

    @pytest.mark.asyncio
    async def test_unreachable_api_fails_publishing_only(self, make_origin, make_agent, build_processor, reference):
        processor, _, _ = build_processor(unreachable_github(make_origin()), make_agent(agents_md_and_scratch))

        result = await processor.process(reference)

        assert result.state == S.PUBLISH_FAILED
        assert "Connection refused" in result.error

    @pytest.mark.asyncio
    async def test_clone_failure(self, make_provider, make_agent, build_processor, reference, tmp_path):
        agent = make_agent()
        provider = make_provider(clone_url=str(tmp_path / "missing.git"))
        processor, _, _ = build_processor(provider, agent)

        result = await processor.process(reference)

        assert result.state == S.FAILED
        assert result.history == [S.CLONING, S.FAILED]
        assert "Failed to clone acme/widgets" in result.error
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_repository_context_is_unbound(self, make_provider, make_agent, build_processor, reference, tmp_path):
        provider = make_provider(clone_url=str(tmp_path / "missing.git"))
        processor, _, _ = build_processor(provider, make_agent())

        await processor.process(reference)

        assert "repo" not in structlog.contextvars.get_contextvars()


class TestContinuous:
    @pytest.mark.asyncio
    async def test_new_work_branch_improvement_published(self, make_origin, make_provider, make_agent, writes, build_processor, reference):
        origin = make_origin()
        priority = Issue(number=4, title="Add type hints", url="https://github.com/acme/widgets/issues/4")
        provider = make_provider(clone_url=str(origin), issues={"opencode-priority": [priority]})
        agent = make_agent(writes("util.py", "def helper():\n    return 1\n"))
        processor, artifacts, settings = build_processor(provider, agent, run_mode=RunMode.AUTONOMOUS)

        result = await processor.process(reference)

        assert result.state == S.PUBLISHED
        assert result.history == [
            S.CLONING, S.BRANCH_READY, S.IMPROVING, S.TESTING, S.COMMITTED, S.PUBLISHING, S.PUBLISHED,
        ]
        assert "- #4 Add type hints" in agent.calls[0].prompt

        [created] = provider.created
        assert (created["head"], created["base"]) == ("develop", "main")
        assert created["title"] == "auto: Autonomous improvements from develop"
        assert provider.auto_merged == [(7, "squash")]

        assert {"util.py", ".opencode/STATE.md", ".opencode/IMPROVEMENTS.md", ".opencode/PLAN.md"} <= remote_files(
            origin, "develop"
        )
        summaries = [c.summary for c in git.Repo(origin).iter_commits("develop", max_count=3)]
        assert summaries == [
            "auto: Autonomous improvement by OpenCode",
            "chore: Initialize OpenCode state tracking",
            "initial",
        ]
        improvements = git.Repo(origin).git.show("develop:.opencode/IMPROVEMENTS.md")
        assert "Autonomous improvement" in improvements
        assert len(artifacts.ledger.rows()) == 1
        assert not (settings.workspace_dir / "acme_widgets_develop").exists()

    @pytest.mark.asyncio
    async def test_auto_merge_disabled(self, make_origin, make_provider, make_agent, writes, build_processor, reference):
        provider = make_provider(clone_url=str(make_origin()))
        processor, _, _ = build_processor(
            provider, make_agent(writes("util.py")), run_mode=RunMode.AUTONOMOUS, auto_merge=False
        )

        result = await processor.process(reference)

        assert result.state == S.PUBLISHED
        assert provider.auto_merged == []

    @pytest.mark.asyncio
    async def test_no_change(self, make_origin, make_provider, make_agent, build_processor, reference):
        origin = make_origin()
        provider = make_provider(clone_url=str(origin))
        processor, artifacts, settings = build_processor(provider, make_agent(), run_mode=RunMode.AUTONOMOUS)

        result = await processor.process(reference)

        assert result.state == S.NO_CHANGE
        assert result.succeeded
        assert provider.created == []
        assert artifacts.ledger.rows() == []
        assert "No improvements needed" in (settings.output_dir / "acme_widgets_STATE.md").read_text()
        # The state directory was initialised and pushed; the entry itself is not committed
        remote_state = git.Repo(origin).git.show("develop:.opencode/STATE.md")
        assert "No improvements needed" not in remote_state

    @pytest.mark.asyncio
    async def test_failing_tests_revert_and_record(self, make_origin, make_provider, make_agent, writes, build_processor, reference):
        origin = make_origin()
        provider = make_provider(clone_url=str(origin))
        processor, _, _ = build_processor(provider, make_agent(writes("util.py")), run_mode=RunMode.AUTONOMOUS)

        with patch("repo_improver.engine.improvement.detect_test_command", return_value=["sh", "-c", "exit 1"]):
            result = await processor.process(reference)

        assert result.state == S.REVERTED
        assert not result.succeeded
        assert result.history[-2:] == [S.TESTING, S.REVERTED]
        assert provider.created == []
        assert "util.py" not in remote_files(origin, "develop")
        remote_state = git.Repo(origin).git.show("develop:.opencode/STATE.md")
        assert "Improvement attempt failed" in remote_state
        assert "(`sh -c exit 1`)" in remote_state

    @pytest.mark.asyncio
    async def test_existing_work_branch_and_state(self, make_origin, make_provider, make_agent, build_processor, reference):
        origin = make_origin(
            branches={"develop": {".opencode/STATE.md": "# Current State\n\nprevious notes\n", "earlier.txt": "x\n"}}
        )
        provider = make_provider(clone_url=str(origin))
        agent = make_agent()
        processor, _, _ = build_processor(provider, agent, run_mode=RunMode.AUTONOMOUS)

        result = await processor.process(reference)

        assert result.state == S.NO_CHANGE
        assert "previous notes" in agent.calls[0].prompt
        summaries = [c.summary for c in git.Repo(origin).iter_commits("develop")]
        assert summaries == ["seed develop", "initial"]

    @pytest.mark.asyncio
    async def test_issue_lookup_failure_is_not_fatal(self, make_origin, make_provider, make_agent, build_processor, reference):
        provider = make_provider(clone_url=str(make_origin()), issue_error=ExternalServiceError("rate limited"))
        processor, _, _ = build_processor(provider, make_agent(), run_mode=RunMode.AUTONOMOUS)

        result = await processor.process(reference)

        assert result.state == S.NO_CHANGE

    @pytest.mark.asyncio
    async def test_unreachable_api_issue_lookup_is_not_fatal(self, make_origin, make_agent, build_processor, reference):
        agent = make_agent()
        processor, _, _ = build_processor(unreachable_github(make_origin()), agent, run_mode=RunMode.AUTONOMOUS)

        result = await processor.process(reference)

        assert result.state == S.NO_CHANGE
        assert len(agent.calls) == 1
