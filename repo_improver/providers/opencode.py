"""External agent provider that runs the opencode CLI against a workspace."""

import asyncio
import tempfile
import time
from collections.abc import Mapping
from pathlib import Path

import structlog

from repo_improver.config.settings import ImproverSettings
from repo_improver.enums import ModelProvider
from repo_improver.exceptions import AgentError
from repo_improver.models.domain import AgentRun

log = structlog.get_logger(__name__)


class OpenCodeAgent:
    """Runs ``opencode run --model <provider>/<model>`` in a working directory.

    The prompt is written to a temporary file that becomes the process's
    stdin, so prompt text is never parsed as command-line arguments. Output
    (stdout and stderr combined) streams straight into the analysis log.
    """

    def __init__(
        self,
        settings: ImproverSettings,
        base_env: Mapping[str, str] | None = None,
    ):
        """Initialize the agent runner.

        Args:
            settings: Run settings (command, model selection, hosts)
            base_env: Environment the agent process inherits; the model
                selection variables are layered on top
        """
        self.command = settings.agent_command
        self.model_ref = settings.model_ref
        self.env = self._build_env(settings, base_env or {})

    @staticmethod
    def _build_env(settings: ImproverSettings, base_env: Mapping[str, str]) -> dict[str, str]:
        env = dict(base_env)
        env["OPENCODE_PROVIDER"] = str(settings.model_provider)
        env["OPENCODE_MODEL"] = settings.model_name
        if settings.model_provider == ModelProvider.OLLAMA:
            env["OLLAMA_HOST"] = settings.ollama_host
        else:
            env["ZEN_HOST"] = settings.zen_host
            env["ZEN_API_KEY"] = settings.zen_api_key.get_secret_value()
        return env

    def build_command(self) -> list[str]:
        return [self.command, "run", "--model", self.model_ref]

    async def run(
        self,
        workdir: Path,
        prompt: str,
        timeout: float,
        log_path: Path,
    ) -> AgentRun:
        """Run the agent once.

        Args:
            workdir: Repository checkout the agent operates on
            prompt: Instruction text
            timeout: Deadline in seconds; the process is killed on expiry
            log_path: Analysis log; output is appended

        Returns:
            AgentRun. A timeout or non-zero exit is reported on the result,
            not raised.

        Raises:
            AgentError: If the agent executable cannot be started
        """
        cmd = self.build_command()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log.info("agent_starting", model=self.model_ref, timeout=timeout, cwd=str(workdir))

        with tempfile.NamedTemporaryFile("w+", suffix=".prompt.txt", encoding="utf-8") as prompt_file:
            prompt_file.write(prompt)
            prompt_file.flush()
            prompt_file.seek(0)
            offset = log_path.stat().st_size if log_path.exists() else 0

            with open(log_path, "ab") as log_file:
                started = time.monotonic()
                try:
                    process = await asyncio.create_subprocess_exec(
                        *cmd,
                        cwd=workdir,
                        stdin=prompt_file,
                        stdout=log_file,
                        stderr=asyncio.subprocess.STDOUT,
                        env=self.env or None,
                    )
                except FileNotFoundError as e:
                    log.error("agent_cli_not_found", command=self.command)
                    raise AgentError(f"{self.command} CLI not found in PATH", agent_type=self.command) from e
                except PermissionError as e:
                    raise AgentError(f"{self.command} is not executable", agent_type=self.command) from e

                timed_out = False
                try:
                    await asyncio.wait_for(process.wait(), timeout=timeout)
                except TimeoutError:
                    timed_out = True
                    process.kill()
                    await process.wait()

                duration = time.monotonic() - started

        output = self._read_from(log_path, offset)
        exit_code = None if timed_out else process.returncode

        if timed_out:
            log.warning("agent_timed_out", timeout=timeout, duration=round(duration, 1))
        elif exit_code != 0:
            log.warning("agent_exited_nonzero", exit_code=exit_code, duration=round(duration, 1))
        else:
            log.info("agent_completed", duration=round(duration, 1), output_length=len(output))

        return AgentRun(exit_code=exit_code, timed_out=timed_out, output=output, duration=duration)

    @staticmethod
    def _read_from(path: Path, offset: int) -> str:
        with open(path, "rb") as f:
            f.seek(offset)
            return f.read().decode("utf-8", errors="replace")
