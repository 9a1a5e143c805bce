"""
Per-repository processing.

The RepositoryProcessor takes one repository reference through the whole
pipeline: provider detection, clone, agent run, commit, push and pull
request. Every repository gets its own disposable workspace, and every
failure is converted into a RepositoryResult so the run can continue with
the next repository.

Processing follows a forward-only state machine (see
``repo_improver.enums.ALLOWED_TRANSITIONS``):

    One-shot:   cloning -> branch_ready -> improving -> committed
                -> publishing -> published | publish_failed
    Continuous: cloning -> branch_ready -> improving
                -> no_change
                -> testing -> reverted
                -> testing -> committed -> publishing -> published | publish_failed

``failed`` is reachable from any non-terminal state.
"""

from pathlib import Path

import structlog

from repo_improver.config.settings import ImproverSettings
from repo_improver.engine.audit import ArtifactStore, StateTracker, audit_timestamp
from repo_improver.engine.improvement import AGENTS_ARTIFACT, ImprovementRunner
from repo_improver.engine.publisher import PullRequestPublisher
from repo_improver.enums import ALLOWED_TRANSITIONS, ProcessingState, RunMode
from repo_improver.exceptions import (
    ExternalServiceError,
    GitOperationError,
    PublishError,
    RepoImproverError,
    WorkflowError,
)
from repo_improver.git.workspace import Workspace
from repo_improver.models.domain import Issue, PullRequestRecord, RepositoryReference, RepositoryResult, utc_now
from repo_improver.providers.base import VcsProvider
from repo_improver.providers.detection import ProviderRegistry
from repo_improver.rendering import SecureTemplateEngine

log = structlog.get_logger(__name__)

AGENTS_MD_TITLE = "docs: Add AGENTS.md - Coding Agent Guidelines"
PRIORITY_LABEL = "opencode-priority"
QUESTION_LABEL = "opencode-question"


class ProcessingRun:
    """State of one repository as it moves through the pipeline."""

    def __init__(self, reference: RepositoryReference):
        self.reference = reference
        self.state = ProcessingState.CLONING
        self.history: list[ProcessingState] = [ProcessingState.CLONING]
        self.pull_request: PullRequestRecord | None = None
        self.error: str | None = None

    def transition(self, target: ProcessingState) -> None:
        """Move to ``target``.

        Raises:
            WorkflowError: If the transition is not allowed from the current state
        """
        if self.state.is_terminal:
            raise WorkflowError(f"{self.reference}: already finished in state {self.state}")
        if target != ProcessingState.FAILED and target not in ALLOWED_TRANSITIONS.get(self.state, frozenset()):
            raise WorkflowError(f"{self.reference}: illegal transition {self.state} -> {target}")

        log.debug("state_transition", from_state=str(self.state), to_state=str(target))
        self.state = target
        self.history.append(target)

    def fail(self, target: ProcessingState, error: str) -> None:
        self.error = error
        if not self.state.is_terminal:
            self.transition(target)

    def result(self) -> RepositoryResult:
        return RepositoryResult(
            reference=self.reference,
            state=self.state,
            pull_request=self.pull_request,
            error=self.error,
            history=list(self.history),
        )


class RepositoryProcessor:
    """Runs the configured mode against one repository at a time."""

    def __init__(
        self,
        settings: ImproverSettings,
        registry: ProviderRegistry,
        runner: ImprovementRunner,
        publisher: PullRequestPublisher,
        artifacts: ArtifactStore,
        templates: SecureTemplateEngine,
    ):
        self.settings = settings
        self.registry = registry
        self.runner = runner
        self.publisher = publisher
        self.artifacts = artifacts
        self.templates = templates

    async def process(self, reference: RepositoryReference) -> RepositoryResult:
        """Process one repository. Never raises for stage failures."""
        run = ProcessingRun(reference)
        structlog.contextvars.bind_contextvars(repo=reference.raw)
        try:
            provider = self.registry.detect(reference)
            log.info("processing_repository", provider=provider.name, mode=str(self.settings.run_mode))

            if self.settings.run_mode == RunMode.AUTONOMOUS:
                await self._process_continuous(run, provider)
            else:
                await self._process_one_shot(run, provider)
        except PublishError as e:
            log.error("publish_failed", error=e.message, bases=e.attempted_bases)
            run.fail(ProcessingState.PUBLISH_FAILED, e.message)
        except RepoImproverError as e:
            log.error("repository_failed", state=str(run.state), error=e.message)
            run.fail(ProcessingState.FAILED, e.message)
        except OSError as e:
            log.error("repository_failed", state=str(run.state), error=str(e))
            run.fail(ProcessingState.FAILED, str(e))
        finally:
            structlog.contextvars.unbind_contextvars("repo")

        result = run.result()
        log.info("repository_finished", repo=reference.raw, state=str(result.state), succeeded=result.succeeded)
        return result

    def _workspace(self, reference: RepositoryReference, provider: VcsProvider, suffix: str | None = None) -> Workspace:
        return Workspace(
            reference,
            provider.build_clone_url(reference),
            Workspace.directory_for(self.settings.workspace_dir, reference, suffix=suffix),
            author_name=self.settings.git_author_name,
            author_email=self.settings.git_author_email,
        )

    def one_shot_prompt(self, reference: RepositoryReference) -> str:
        """User prompt file if present, otherwise the packaged AGENTS.md prompt."""
        prompt_file: Path = self.settings.prompt_file
        if prompt_file.is_file():
            log.debug("using_prompt_file", path=str(prompt_file))
            return prompt_file.read_text(encoding="utf-8")
        return self.templates.render("prompts/agents_md.md.j2", {"repository": reference.raw})

    async def _process_one_shot(self, run: ProcessingRun, provider: VcsProvider) -> None:
        reference = run.reference
        log_path = self.artifacts.analysis_log(reference)

        async with self._workspace(reference, provider) as workspace:
            branch = f"{self.settings.branch_prefix}-{utc_now().strftime('%Y%m%d-%H%M%S')}"
            await workspace.start_branch(branch)
            run.transition(ProcessingState.BRANCH_READY)

            if workspace.file(AGENTS_ARTIFACT).is_file():
                log.warning("artifact_already_exists", artifact=AGENTS_ARTIFACT, detail="will be updated")

            run.transition(ProcessingState.IMPROVING)
            result = await self.runner.run_one_shot(workspace, self.one_shot_prompt(reference), log_path)
            if not result.changes_made:
                raise WorkflowError(f"{AGENTS_ARTIFACT} was not created after {result.attempts} attempts")

            self.artifacts.backup(reference, workspace.file(AGENTS_ARTIFACT))

            message = self.templates.render("commits/agents_md.txt.j2", {"model": self.settings.model_ref})
            await workspace.commit_paths([AGENTS_ARTIFACT], message)
            run.transition(ProcessingState.COMMITTED)
            await workspace.push(branch)

            body = self.templates.render(
                "pull_requests/agents_md.md.j2",
                {"model": self.settings.model_ref, "timestamp": audit_timestamp()},
            )
            await self._publish(run, provider, branch, AGENTS_MD_TITLE, body, auto_merge=False)

    async def _process_continuous(self, run: ProcessingRun, provider: VcsProvider) -> None:
        reference = run.reference
        work_branch = self.settings.branch_work
        log_path = self.artifacts.analysis_log(reference)

        async with self._workspace(reference, provider, suffix=work_branch) as workspace:
            created = await workspace.checkout_work_branch(work_branch)
            state = StateTracker(workspace.path, self.templates)
            if created and not state.exists:
                paths = state.initialize(work_branch)
                message = self.templates.render("commits/state_init.txt.j2", {"state_dir": state.state_dir})
                await workspace.commit_paths(paths, message)
                await workspace.push(work_branch, set_upstream=True)
            run.transition(ProcessingState.BRANCH_READY)

            priority_issues = await self._issues(provider, reference, PRIORITY_LABEL)
            questions = await self._issues(provider, reference, QUESTION_LABEL)
            if priority_issues:
                log.warning("priority_issues_found", count=len(priority_issues))
            if questions:
                log.warning("maintainer_questions_found", count=len(questions))

            prompt = self.templates.render(
                "prompts/autonomous.md.j2",
                {
                    "work_branch": work_branch,
                    "main_branch": self.settings.branch_main,
                    "priority_issues": priority_issues,
                    "questions": questions,
                    "current_state": state.read_state(),
                },
            )

            run.transition(ProcessingState.IMPROVING)
            result = await self.runner.run_continuous(workspace, prompt, log_path)

            if not result.changes_made:
                state.record_no_change()
                self.artifacts.backup(reference, state.state_file)
                run.transition(ProcessingState.NO_CHANGE)
                log.info("no_improvement_needed")
                return

            run.transition(ProcessingState.TESTING)
            test_command = " ".join(result.test_command) if result.test_command else None

            if not result.tests_passed:
                run.transition(ProcessingState.REVERTED)
                run.error = "Tests failed; changes reverted"
                state.record_test_failure(test_command, str(log_path))
                await self._record_failure(workspace, state, str(log_path))
                return

            test_status = "Passing" if test_command else "Passing (no test command detected)"
            state.record_improvement(self.settings.model_ref, test_status)
            message = self.templates.render(
                "commits/autonomous.txt.j2",
                {"model": self.settings.model_ref, "timestamp": audit_timestamp(), "test_status": test_status},
            )
            await workspace.commit_all(message)
            run.transition(ProcessingState.COMMITTED)
            await workspace.push(work_branch)

            body = self.templates.render(
                "pull_requests/autonomous.md.j2",
                {
                    "model": self.settings.model_ref,
                    "timestamp": audit_timestamp(),
                    "work_branch": work_branch,
                    "test_command": test_command,
                },
            )
            await self._publish(
                run,
                provider,
                work_branch,
                f"auto: Autonomous improvements from {work_branch}",
                body,
                auto_merge=self.settings.auto_merge,
            )

    async def _publish(
        self,
        run: ProcessingRun,
        provider: VcsProvider,
        branch: str,
        title: str,
        body: str,
        auto_merge: bool,
    ) -> None:
        run.transition(ProcessingState.PUBLISHING)
        record = await self.publisher.publish(
            run.reference,
            provider,
            branch=branch,
            base_candidates=self.settings.base_branch_candidates,
            auto_merge=auto_merge,
            title=title,
            body=body,
        )
        run.pull_request = record
        if record.created:
            self.artifacts.ledger.record(record)
        run.transition(ProcessingState.PUBLISHED)

    async def _issues(self, provider: VcsProvider, reference: RepositoryReference, label: str) -> list[Issue]:
        """Open issues carrying ``label``; lookup failures are warnings."""
        try:
            return await provider.list_issues(reference, label)
        except ExternalServiceError as e:
            log.warning("issue_lookup_failed", label=label, error=e.message)
            return []

    async def _record_failure(self, workspace: Workspace, state: StateTracker, analysis_log: str) -> None:
        """Commit and push the failure entry; git errors are logged only."""
        message = self.templates.render("commits/test_failure.txt.j2", {"analysis_log": analysis_log})
        try:
            await workspace.commit_paths([state.relative("STATE.md")], message)
            await workspace.push()
        except GitOperationError as e:
            log.warning("failure_record_not_pushed", error=e.message)
