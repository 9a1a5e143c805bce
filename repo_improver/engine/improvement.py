"""Improvement runner: invoke the agent and classify what it did.

One-shot mode expects a specific artifact (AGENTS.md) and retries once with a
reworded prompt and a shorter deadline when it is missing.

Continuous mode accepts any working-tree change. No change is a valid
outcome. A change is checked by the project's own test command, detected
from marker files in a fixed priority order; if the tests fail the working
tree is reverted to the checked-out branch.
"""

from pathlib import Path
from typing import Protocol

import structlog

from repo_improver.config.settings import ImproverSettings
from repo_improver.git.workspace import Workspace
from repo_improver.models.domain import AgentRun, ImprovementResult
from repo_improver.rendering import SecureTemplateEngine
from repo_improver.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

AGENTS_ARTIFACT = "AGENTS.md"


class Agent(Protocol):
    async def run(self, workdir: Path, prompt: str, timeout: float, log_path: Path) -> AgentRun: ...


def _mentions_test(path: Path) -> bool:
    return path.is_file() and "test" in path.read_text(encoding="utf-8", errors="replace")


def detect_test_command(project_dir: Path) -> list[str] | None:
    """Find the project's test command from its build files.

    Checked in order, first match wins:
        1. package.json that mentions "test" -> npm test
        2. Makefile that mentions "test" -> make test
        3. pyproject.toml or setup.py -> python -m pytest
        4. Cargo.toml -> cargo test

    Returns:
        Command argv, or None when no marker is present.
    """
    if _mentions_test(project_dir / "package.json"):
        return ["npm", "test"]
    if _mentions_test(project_dir / "Makefile"):
        return ["make", "test"]
    if (project_dir / "pyproject.toml").is_file() or (project_dir / "setup.py").is_file():
        return ["python", "-m", "pytest"]
    if (project_dir / "Cargo.toml").is_file():
        return ["cargo", "test"]
    return None


class ImprovementRunner:
    """Runs the agent against a workspace and inspects the result."""

    def __init__(self, agent: Agent, settings: ImproverSettings, templates: SecureTemplateEngine):
        self.agent = agent
        self.settings = settings
        self.templates = templates

    async def run_one_shot(
        self,
        workspace: Workspace,
        prompt: str,
        log_path: Path,
        artifact: str = AGENTS_ARTIFACT,
    ) -> ImprovementResult:
        """Ask for a specific artifact, retrying once if it is not produced."""
        target = workspace.file(artifact)

        run = await self.agent.run(workspace.path, prompt, self.settings.agent_timeout, log_path)
        if run.completed_with_warnings:
            log.warning("agent_completed_with_warnings", timed_out=run.timed_out, exit_code=run.exit_code)

        output = run.output
        attempts = 1
        if not target.is_file():
            log.warning("artifact_missing_retrying", artifact=artifact, timeout=self.settings.agent_retry_timeout)
            retry_prompt = self.templates.render(
                "prompts/agents_md_retry.md.j2",
                {"artifact": artifact, "repository": workspace.reference.raw},
            )
            run = await self.agent.run(workspace.path, retry_prompt, self.settings.agent_retry_timeout, log_path)
            output += run.output
            attempts = 2

        produced = target.is_file()
        if not produced:
            log.error("artifact_not_created", artifact=artifact, attempts=attempts)

        return ImprovementResult(
            changes_made=produced,
            log=output,
            timed_out=run.timed_out,
            attempts=attempts,
        )

    async def run_continuous(
        self,
        workspace: Workspace,
        prompt: str,
        log_path: Path,
    ) -> ImprovementResult:
        """Ask for any improvement; test it and revert on failure."""
        run = await self.agent.run(workspace.path, prompt, self.settings.agent_timeout, log_path)
        if run.completed_with_warnings:
            log.warning("agent_completed_with_warnings", timed_out=run.timed_out, exit_code=run.exit_code)

        if not await workspace.has_changes():
            log.info("no_changes_made")
            return ImprovementResult(changes_made=False, log=run.output, timed_out=run.timed_out)

        command = detect_test_command(workspace.path)
        passed, test_output = await self.run_tests(workspace.path, command, log_path)

        if not passed:
            await workspace.revert()

        return ImprovementResult(
            changes_made=True,
            log=run.output + test_output,
            tests_passed=passed,
            timed_out=run.timed_out,
            test_command=command,
        )

    async def run_tests(
        self,
        project_dir: Path,
        command: list[str] | None,
        log_path: Path,
    ) -> tuple[bool, str]:
        """Run the detected test command; no command counts as a pass.

        Output is appended to the analysis log.
        """
        if command is None:
            log.warning("no_test_command_found", detail="assuming tests pass")
            return True, ""

        log.info("running_tests", command=" ".join(command), timeout=self.settings.test_timeout)
        try:
            stdout, stderr, code = await run_command(
                *command,
                cwd=project_dir,
                check=False,
                timeout=self.settings.test_timeout,
            )
        except TimeoutError:
            stdout, stderr, code = "", f"Test command timed out after {self.settings.test_timeout}s\n", -1
        except FileNotFoundError:
            stdout, stderr, code = "", f"Test command not found: {command[0]}\n", 127

        output = stdout + stderr
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(output)

        passed = code == 0
        if passed:
            log.info("tests_passed", command=" ".join(command))
        else:
            log.error("tests_failed", command=" ".join(command), exit_code=code)
        return passed, output
